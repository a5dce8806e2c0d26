"""In-memory collaborators and builders for rotation tests."""

import asyncio
from pathlib import Path

from code_revolver.config.rotation import (
    PoolMetadata,
    RotationConfig,
    RotationConfigStore,
)
from code_revolver.exceptions import UsageFetchError
from code_revolver.rotation.models import (
    Account,
    ScanResult,
    UsageSnapshot,
    UsageWindow,
)


NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)
HOUR = 3600
DAY = 86400


def make_usage(
    primary: float | None = None,
    secondary: float | None = None,
    *,
    primary_resets_in: float | None = 5 * HOUR,
    secondary_resets_in: float | None = 3 * DAY,
    plan_type: str | None = "plus",
) -> UsageSnapshot:
    """Build a usage snapshot; a window given as None is unknown."""
    primary_window = (
        UsageWindow(
            used_percent=primary,
            resets_at=int(NOW + primary_resets_in) if primary_resets_in else None,
            window_minutes=300,
        )
        if primary is not None
        else None
    )
    secondary_window = (
        UsageWindow(
            used_percent=secondary,
            resets_at=int(NOW + secondary_resets_in) if secondary_resets_in else None,
            window_minutes=10080,
        )
        if secondary is not None
        else None
    )
    return UsageSnapshot(
        primary_window=primary_window,
        secondary_window=secondary_window,
        plan_type=plan_type,
    )


def make_account(
    name: str,
    *,
    account_id: str | None = None,
    priority: int = 5,
    is_active: bool = False,
    is_token_expired: bool = False,
    usage: UsageSnapshot | None = None,
) -> Account:
    return Account(
        id=f"acct-{name}" if account_id is None else account_id,
        name=name,
        file_path=f"/accounts/{name}.json",
        email=f"{name}@example.com",
        is_active=is_active,
        is_token_expired=is_token_expired,
        pool=PoolMetadata(priority=priority),
        usage=usage,
    )


class FakeAccountStore:
    """In-memory account store that records activations."""

    def __init__(self, accounts: list[Account], accounts_dir: str = "/accounts"):
        self.accounts = {a.file_path: a.copy(usage=None) for a in accounts}
        self.accounts_dir = accounts_dir
        self.scan_calls = 0
        self.activate_calls: list[str] = []
        self.scan_error: BaseException | None = None
        self.activation_error: BaseException | None = None

    async def scan_accounts(self) -> ScanResult:
        self.scan_calls += 1
        if self.scan_error is not None:
            raise self.scan_error
        return ScanResult(
            accounts=[a.copy() for a in self.accounts.values()],
            accounts_dir=self.accounts_dir,
        )

    async def activate_account(self, account: Account) -> None:
        self.activate_calls.append(account.file_path)
        if self.activation_error is not None:
            raise self.activation_error
        self.accounts = {
            key: a.copy(is_active=key == account.file_path)
            for key, a in self.accounts.items()
        }


class FakeUsageProvider:
    """Usage provider answering from a per-account result table.

    A result may be a snapshot or an exception to raise. Fetches for an
    account with a gate wait until the gate is set.
    """

    def __init__(self, results: dict[str, UsageSnapshot | BaseException] | None = None):
        self.results = dict(results or {})
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    def gate(self, file_path: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[file_path] = event
        return event

    async def fetch_usage(self, account: Account) -> UsageSnapshot:
        self.calls.append(account.file_path)
        gate = self.gates.get(account.file_path)
        if gate is not None:
            await gate.wait()
        result = self.results.get(account.file_path)
        if result is None:
            raise UsageFetchError("No usage configured", status_code=404)
        if isinstance(result, BaseException):
            raise result
        return result


class CountingConfigStore(RotationConfigStore):
    """Config store that counts saves."""

    def __init__(self, file_path: Path) -> None:
        super().__init__(file_path)
        self.save_count = 0

    def save(self, config: RotationConfig) -> bool:
        self.save_count += 1
        return super().save(config)
