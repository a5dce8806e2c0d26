"""HTTP usage provider.

Queries the upstream usage endpoint for an account's rate-limit windows.
Several endpoint variants exist; they are tried in order until one answers.

Example:
    >>> provider = HttpUsageProvider(credentials_loader=load_credentials)
    >>> usage = await provider.fetch_usage(account)
    >>> usage.primary_used_percent()
    42.0
"""

import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import httpx
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from code_revolver.config.settings import DEFAULT_USAGE_ENDPOINTS
from code_revolver.exceptions import UNAUTHORIZED_STATUS_CODES, UsageFetchError
from code_revolver.rotation.models import Account, UsageSnapshot, UsageWindow


logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_ORIGIN = "https://chatgpt.com"


@dataclass(frozen=True)
class UsageCredentials:
    """Bearer token and upstream account id for a usage request."""

    access_token: str
    account_id: str = ""


CredentialsLoader = Callable[[Account], UsageCredentials | Awaitable[UsageCredentials]]


class _TransientUsageError(Exception):
    """Internal: 5xx answer that should be retried."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"Transient error: {response.status_code}")


def _should_retry(exception: BaseException) -> bool:
    return isinstance(exception, httpx.TransportError | _TransientUsageError)


def _parse_window(data: Any) -> UsageWindow | None:
    if not isinstance(data, dict) or data.get("used_percent") is None:
        return None
    limit_seconds = data.get("limit_window_seconds")
    window_minutes = (
        math.ceil(int(limit_seconds) / 60) if limit_seconds is not None else None
    )
    reset_at = data.get("reset_at")
    return UsageWindow(
        used_percent=float(data["used_percent"]),
        resets_at=int(reset_at) if reset_at is not None else None,
        window_minutes=window_minutes,
    )


def parse_usage_response(payload: Any) -> UsageSnapshot:
    """Convert the upstream usage JSON into a `UsageSnapshot`.

    Raises:
        ValueError: If the payload is not an object
        TypeError: If a window field has the wrong type
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected usage payload type: {type(payload).__name__}")

    rate_limit = payload.get("rate_limit") or {}
    if not isinstance(rate_limit, dict):
        raise ValueError("Unexpected rate_limit format")

    return UsageSnapshot(
        primary_window=_parse_window(rate_limit.get("primary_window")),
        secondary_window=_parse_window(rate_limit.get("secondary_window")),
        plan_type=payload.get("plan_type"),
    )


class HttpUsageProvider:
    """`UsageProvider` backed by the upstream usage HTTP API."""

    def __init__(
        self,
        credentials_loader: CredentialsLoader,
        endpoints: Sequence[str] = DEFAULT_USAGE_ENDPOINTS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = 2,
        retry_wait: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the provider.

        Args:
            credentials_loader: Returns the bearer token and account id for an
                account (sync or async)
            endpoints: Usage URLs tried in order
            timeout: Per-request timeout in seconds
            max_retries: Retries per endpoint for transport errors and 5xx
            retry_wait: Seconds between retries
            client: Optional shared client; one is created per call otherwise
        """
        if not endpoints:
            raise ValueError("At least one usage endpoint is required")
        self._credentials_loader = credentials_loader
        self._endpoints = tuple(endpoints)
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_wait = retry_wait
        self._client = client

    async def _load_credentials(self, account: Account) -> UsageCredentials:
        result = self._credentials_loader(account)
        if isinstance(result, Awaitable):
            result = await result
        return result

    def _build_headers(self, credentials: UsageCredentials) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "User-Agent": DEFAULT_USER_AGENT,
            "Origin": DEFAULT_ORIGIN,
        }
        if credentials.account_id:
            headers["ChatGPT-Account-Id"] = credentials.account_id
        return headers

    async def _get_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        account: Account,
    ) -> httpx.Response:
        """GET one endpoint, retrying transport errors and 5xx answers.

        Returns the final response (possibly a 5xx after retries ran out).

        Raises:
            httpx.TransportError: If every attempt failed to connect
        """
        try:
            async for attempt in AsyncRetrying(
                wait=wait_fixed(self._retry_wait),
                stop=stop_after_attempt(self._max_retries + 1),
                retry=retry_if_exception(_should_retry),
                before_sleep=lambda rs: logger.info(
                    "usage_fetch_retry",
                    account=account.name,
                    url=url,
                    attempt=rs.attempt_number,
                ),
                reraise=True,
            ):
                with attempt:
                    response = await client.get(url, headers=headers)
                    if response.status_code >= 500:
                        raise _TransientUsageError(response)
                    return response
        except _TransientUsageError as e:
            return e.response
        raise AssertionError("unreachable")  # pragma: no cover

    async def fetch_usage(self, account: Account) -> UsageSnapshot:
        """Fetch usage for `account`.

        Raises:
            UsageFetchError: If no endpoint answered successfully. The status
                code is 401/403 when any endpoint rejected the credentials.
        """
        try:
            credentials = await self._load_credentials(account)
        except (OSError, KeyError, ValueError) as e:
            raise UsageFetchError(f"Failed to load credentials: {e}") from e

        headers = self._build_headers(credentials)
        attempt_errors: list[str] = []
        auth_status: int | None = None
        last_status: int | None = None

        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            for url in self._endpoints:
                try:
                    response = await self._get_with_retry(client, url, headers, account)
                except httpx.TransportError as e:
                    attempt_errors.append(f"{url} -> {e}")
                    continue

                if response.is_success:
                    try:
                        usage = parse_usage_response(response.json())
                    except (ValueError, TypeError) as e:
                        raise UsageFetchError(
                            f"Failed to parse usage response: {e}",
                            response_text=response.text[:200],
                        ) from e
                    logger.debug(
                        "usage_fetch_success",
                        account=account.name,
                        url=url,
                        primary=usage.primary_used_percent(),
                        secondary=usage.secondary_used_percent(),
                    )
                    return usage

                last_status = response.status_code
                if response.status_code in UNAUTHORIZED_STATUS_CODES:
                    auth_status = response.status_code
                attempt_errors.append(f"{url} -> HTTP {response.status_code}")
        finally:
            if self._client is None:
                await client.aclose()

        status_code = auth_status if auth_status is not None else last_status
        message = "All usage requests failed"
        if attempt_errors:
            message = f"{message}: {' | '.join(attempt_errors)}"
        logger.warning(
            "usage_fetch_all_endpoints_failed",
            account=account.name,
            status=status_code,
            attempts=len(attempt_errors),
        )
        raise UsageFetchError(message, status_code=status_code)
