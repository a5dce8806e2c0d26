"""Candidate selection over the live account set.

All functions here are pure: they read the accounts they are given, never
mutate them and do no I/O, so they are safe to call on every render.
"""

import time
from collections.abc import Iterable

from code_revolver.rotation.constants import (
    BEST_CANDIDATE_MAX_USED_PERCENT,
    DEFAULT_RANKED_CANDIDATES_LIMIT,
    UNKNOWN_USED_PERCENT,
)
from code_revolver.rotation.models import Account
from code_revolver.rotation.scoring import switch_score


def is_below_limit(account: Account, used_percent_limit: float) -> bool:
    """Both windows strictly under the limit. Unknown windows count as full."""
    return (
        account.primary_used_percent(UNKNOWN_USED_PERCENT) < used_percent_limit
        and account.secondary_used_percent(UNKNOWN_USED_PERCENT) < used_percent_limit
    )


def is_switchable(account: Account, used_percent_limit: float) -> bool:
    return not account.is_token_expired and is_below_limit(account, used_percent_limit)


def rank_by_score(accounts: Iterable[Account], now: float | None = None) -> list[Account]:
    """Sort by switch score descending; ties resolve by file path."""
    if now is None:
        now = time.time()
    return sorted(
        accounts,
        key=lambda account: (-switch_score(account, now), account.file_path),
    )


def best_switch_target(
    accounts: Iterable[Account], now: float | None = None
) -> Account | None:
    """The highest-scoring account that is not expired and not near exhaustion.

    The active account is eligible; this answers "which account is best right
    now", not "where should we switch to".
    """
    ranked = rank_by_score(
        (a for a in accounts if is_switchable(a, BEST_CANDIDATE_MAX_USED_PERCENT)),
        now,
    )
    return ranked[0] if ranked else None


def ranked_candidates(
    accounts: Iterable[Account],
    limit: int = DEFAULT_RANKED_CANDIDATES_LIMIT,
    now: float | None = None,
) -> list[Account]:
    """Top alternatives to the active account, best first."""
    candidates = (
        a
        for a in accounts
        if not a.is_active and is_switchable(a, BEST_CANDIDATE_MAX_USED_PERCENT)
    )
    return rank_by_score(candidates, now)[: max(0, limit)]


def find_active(accounts: Iterable[Account]) -> Account | None:
    return next((a for a in accounts if a.is_active), None)


def needs_rotation(account: Account, used_percent_limit: float) -> bool:
    """Whether the active account must be rotated away from."""
    return account.is_token_expired or not is_below_limit(account, used_percent_limit)


def auto_switch_target(
    accounts: Iterable[Account],
    threshold_percent: int,
    now: float | None = None,
) -> Account | None:
    """Pick the account the auto-switch loop should move to, if any.

    Returns None when there is no active account, the active account is still
    healthy, or no other account is safely below the limit.
    """
    accounts = list(accounts)
    active = find_active(accounts)
    if active is None:
        return None

    used_percent_limit = 100 - threshold_percent
    if not needs_rotation(active, used_percent_limit):
        return None

    candidates = [
        a
        for a in accounts
        if not a.is_active and is_switchable(a, used_percent_limit)
    ]
    if not candidates:
        return None
    return rank_by_score(candidates, now)[0]
