"""Collaborator interfaces consumed by the rotation controller.

The account store (scan + activate) and the usage provider live outside the
rotation engine; the controller only depends on these protocols.
"""

import re
from enum import StrEnum
from typing import Protocol, runtime_checkable

from code_revolver.exceptions import UNAUTHORIZED_STATUS_CODES, UsageFetchError
from code_revolver.rotation.models import Account, ScanResult, UsageSnapshot


@runtime_checkable
class AccountStore(Protocol):
    """Source of truth for the account list and the active account."""

    async def scan_accounts(self) -> ScanResult:
        """Return all accounts. Raises ScanError on I/O or parse failure."""
        ...

    async def activate_account(self, account: Account) -> None:
        """Make `account` the active one. Raises ActivationError on failure."""
        ...


@runtime_checkable
class UsageProvider(Protocol):
    """Fetches live quota usage for an account."""

    async def fetch_usage(self, account: Account) -> UsageSnapshot:
        """Return current usage. Raises UsageFetchError on failure."""
        ...


class FetchFailure(StrEnum):
    """Classification of a failed usage fetch."""

    UNAUTHORIZED = "unauthorized"
    OTHER = "other"


# Only consulted for exceptions that carry no structured status
_UNAUTHORIZED_MESSAGE_PATTERN = re.compile(
    r"\b(?:status:?|http)\s*(?:code\s*)?(401|403)\b", re.IGNORECASE
)


def classify_fetch_failure(error: BaseException) -> FetchFailure:
    """Decide whether a fetch failure means the account's token was rejected.

    A `UsageFetchError` with a status code is authoritative. Other exceptions
    fall back to matching "Status: 401" / "HTTP 403" style text in the message.
    """
    if isinstance(error, UsageFetchError) and error.upstream_status is not None:
        if error.upstream_status in UNAUTHORIZED_STATUS_CODES:
            return FetchFailure.UNAUTHORIZED
        return FetchFailure.OTHER

    if _UNAUTHORIZED_MESSAGE_PATTERN.search(str(error)):
        return FetchFailure.UNAUTHORIZED
    return FetchFailure.OTHER
