"""Account and usage models for the rotation engine.

Accounts come from the external store's scan; usage snapshots come from the
usage provider or the persistent cache. The JSON shapes use camelCase keys to
stay compatible with the store and with cache files written by the desktop app.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any

from code_revolver.config.rotation import PoolMetadata
from code_revolver.rotation.constants import UNKNOWN_USED_PERCENT


def clamp_percent(value: float) -> float:
    """Clamp a usage percentage to [0, 100]."""
    return max(0.0, min(100.0, value))


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class UsageWindow:
    """Quota usage for one rolling window."""

    used_percent: float
    resets_at: int | None = None  # Unix timestamp in seconds
    window_minutes: int | None = None

    def __post_init__(self) -> None:
        try:
            percent = float(self.used_percent)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid used_percent: {self.used_percent!r}") from e
        if math.isnan(percent):
            raise ValueError("used_percent must be a number")
        object.__setattr__(self, "used_percent", clamp_percent(percent))

    @property
    def remaining_percent(self) -> float:
        return 100.0 - self.used_percent

    def to_dict(self) -> dict[str, Any]:
        return {
            "usedPercent": self.used_percent,
            "resetsAt": self.resets_at,
            "windowMinutes": self.window_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UsageWindow":
        return cls(
            used_percent=data["usedPercent"],
            resets_at=_optional_int(data.get("resetsAt")),
            window_minutes=_optional_int(data.get("windowMinutes")),
        )


@dataclass(frozen=True)
class UsageSnapshot:
    """Usage for both quota windows. A missing window is unknown, not zero."""

    primary_window: UsageWindow | None = None
    secondary_window: UsageWindow | None = None
    plan_type: str | None = None

    def primary_used_percent(self, default: float = UNKNOWN_USED_PERCENT) -> float:
        if self.primary_window is None:
            return default
        return self.primary_window.used_percent

    def secondary_used_percent(self, default: float = UNKNOWN_USED_PERCENT) -> float:
        if self.secondary_window is None:
            return default
        return self.secondary_window.used_percent

    @property
    def secondary_resets_at(self) -> int | None:
        return self.secondary_window.resets_at if self.secondary_window else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "primaryWindow": self.primary_window.to_dict()
            if self.primary_window
            else None,
            "secondaryWindow": self.secondary_window.to_dict()
            if self.secondary_window
            else None,
            "planType": self.plan_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UsageSnapshot":
        primary = data.get("primaryWindow")
        secondary = data.get("secondaryWindow")
        return cls(
            primary_window=UsageWindow.from_dict(primary) if primary else None,
            secondary_window=UsageWindow.from_dict(secondary) if secondary else None,
            plan_type=data.get("planType"),
        )


@dataclass
class Account:
    """A credential profile in the rotation pool.

    Combines the store's scan data with runtime state (usage, expiry flag)
    that is never written back to the store.
    """

    id: str
    name: str
    file_path: str
    email: str = ""
    plan_type: str = "unknown"
    subscription_end: str | None = None
    is_active: bool = False

    # Runtime state (not persisted to the store)
    is_token_expired: bool = False
    pool: PoolMetadata = field(default_factory=PoolMetadata)
    usage: UsageSnapshot | None = None
    last_usage_update: int | None = None  # Unix timestamp ms

    @property
    def priority(self) -> int:
        return self.pool.priority

    @property
    def key(self) -> str:
        """Stable identity used for the usage cache."""
        return self.file_path

    def primary_used_percent(self, default: float = UNKNOWN_USED_PERCENT) -> float:
        if self.usage is None:
            return default
        return self.usage.primary_used_percent(default)

    def secondary_used_percent(self, default: float = UNKNOWN_USED_PERCENT) -> float:
        if self.usage is None:
            return default
        return self.usage.secondary_used_percent(default)

    @property
    def secondary_resets_at(self) -> int | None:
        return self.usage.secondary_resets_at if self.usage else None

    def copy(self, **changes: Any) -> "Account":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "filePath": self.file_path,
            "email": self.email,
            "planType": self.plan_type,
            "subscriptionEnd": self.subscription_end,
            "isActive": self.is_active,
            "isTokenExpired": self.is_token_expired,
            "pool": {"priority": self.pool.priority},
            "usage": self.usage.to_dict() if self.usage else None,
            "lastUsageUpdate": self.last_usage_update,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Account":
        """Create from the store's scan payload."""
        usage = data.get("usage")
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "Untitled",
            file_path=data["filePath"],
            email=data.get("email") or "",
            plan_type=data.get("planType") or "unknown",
            subscription_end=data.get("subscriptionEnd"),
            is_active=bool(data.get("isActive", False)),
            pool=PoolMetadata.coerce(data.get("pool")),
            usage=UsageSnapshot.from_dict(usage) if usage else None,
            last_usage_update=_optional_int(data.get("lastUsageUpdate")),
        )


@dataclass
class ScanResult:
    """Result of scanning the account store."""

    accounts: list[Account]
    accounts_dir: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScanResult":
        return cls(
            accounts=[Account.from_dict(item) for item in data.get("accounts", [])],
            accounts_dir=data.get("accountsDir", ""),
        )
