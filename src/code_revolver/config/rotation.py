"""User-editable rotation configuration.

Holds the per-account pool metadata (priority) and the auto-check /
auto-switch preferences. Persisted as camelCase JSON next to the usage cache.
Every value read from disk or from an API payload is normalised on the way in,
so a hand-edited or half-written file degrades to defaults instead of failing.
"""

import math
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from structlog import get_logger

from code_revolver.exceptions import ConfigurationError


if TYPE_CHECKING:
    from code_revolver.rotation.models import Account


logger = get_logger(__name__)

DEFAULT_PRIORITY = 5
MIN_PRIORITY = 1
MAX_PRIORITY = 10

DEFAULT_AUTO_SWITCH_THRESHOLD = 5
MIN_AUTO_SWITCH_THRESHOLD = 1
MAX_AUTO_SWITCH_THRESHOLD = 50

DEFAULT_CHECK_INTERVAL_MINUTES = 30
MAX_CHECK_INTERVAL_MINUTES = 24 * 60

CONFIG_FILE_VERSION = 1


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _as_finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_priority(value: Any) -> int:
    """Normalise an externally supplied priority to an integer in [1, 10].

    Accepts a bare number, a mapping with a ``priority`` key or a
    `PoolMetadata`. Anything non-numeric falls back to the default.

    >>> normalize_priority(13), normalize_priority(0), normalize_priority("7.5")
    (10, 1, 8)
    """
    if isinstance(value, PoolMetadata):
        return value.priority
    if isinstance(value, dict):
        value = value.get("priority", DEFAULT_PRIORITY)
    number = _as_finite_number(value)
    if number is None:
        return DEFAULT_PRIORITY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, _round_half_up(number)))


def normalize_threshold(value: Any) -> int:
    """Clamp the auto-switch threshold (remaining percent) to [1, 50]."""
    number = _as_finite_number(value)
    if not number:
        return DEFAULT_AUTO_SWITCH_THRESHOLD
    return max(
        MIN_AUTO_SWITCH_THRESHOLD,
        min(MAX_AUTO_SWITCH_THRESHOLD, _round_half_up(number)),
    )


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class PoolMetadata(_CamelModel):
    """User-assigned pool weight for one account."""

    priority: int = Field(default=DEFAULT_PRIORITY, ge=MIN_PRIORITY, le=MAX_PRIORITY)

    @field_validator("priority", mode="before")
    @classmethod
    def clamp_priority(cls, v: Any) -> int:
        return normalize_priority(v)

    @classmethod
    def coerce(cls, value: Any) -> "PoolMetadata":
        """Build metadata from a number, mapping or existing instance."""
        if isinstance(value, PoolMetadata):
            return value
        return cls(priority=normalize_priority(value))


class AutoSwitchConfig(_CamelModel):
    """Automatic rotation preferences."""

    enabled: bool = False
    threshold_percent: int = Field(
        default=DEFAULT_AUTO_SWITCH_THRESHOLD,
        ge=MIN_AUTO_SWITCH_THRESHOLD,
        le=MAX_AUTO_SWITCH_THRESHOLD,
        description="Remaining-quota percentage below which the active account is rotated away from",
    )

    @field_validator("threshold_percent", mode="before")
    @classmethod
    def clamp_threshold(cls, v: Any) -> int:
        return normalize_threshold(v)

    @property
    def used_percent_limit(self) -> int:
        """Usage percentage at or above which an account counts as exhausted."""
        return 100 - self.threshold_percent


class RotationConfig(_CamelModel):
    """Complete rotation configuration passed into the controller."""

    auto_check: bool = True
    check_interval: int = Field(
        default=DEFAULT_CHECK_INTERVAL_MINUTES,
        ge=0,
        le=MAX_CHECK_INTERVAL_MINUTES,
        description="Minutes between background refresh cycles (0 disables)",
    )
    auto_switch: AutoSwitchConfig = Field(default_factory=AutoSwitchConfig)
    account_pool: dict[str, PoolMetadata] = Field(default_factory=dict)

    @field_validator("check_interval", mode="before")
    @classmethod
    def clamp_interval(cls, v: Any) -> int:
        number = _as_finite_number(v)
        if number is None:
            return DEFAULT_CHECK_INTERVAL_MINUTES
        return max(0, min(MAX_CHECK_INTERVAL_MINUTES, _round_half_up(number)))

    @field_validator("auto_switch", mode="before")
    @classmethod
    def coerce_auto_switch(cls, v: Any) -> Any:
        return v if v is not None else AutoSwitchConfig()

    @field_validator("account_pool", mode="before")
    @classmethod
    def coerce_pool(cls, v: Any) -> dict[str, PoolMetadata]:
        if not isinstance(v, dict):
            return {}
        return {str(key): PoolMetadata.coerce(value) for key, value in v.items()}

    def priority_for(self, key: str) -> int | None:
        metadata = self.account_pool.get(key)
        return metadata.priority if metadata else None

    def merged(self, **changes: Any) -> "RotationConfig":
        """Return a new config with `changes` applied.

        ``account_pool`` and ``auto_switch`` merge into the existing values
        rather than replacing them.

        Raises:
            ConfigurationError: If a change names an unknown setting or holds
                a value that cannot be normalised
        """
        unknown = sorted(set(changes) - set(RotationConfig.model_fields))
        if unknown:
            raise ConfigurationError(
                f"Unknown rotation settings: {', '.join(unknown)}",
                details={"fields": unknown},
            )

        data = self.model_dump()
        if "account_pool" in changes:
            pool = dict(data["account_pool"])
            pool.update(changes.pop("account_pool") or {})
            data["account_pool"] = pool
        if "auto_switch" in changes:
            auto_switch = changes.pop("auto_switch")
            if isinstance(auto_switch, AutoSwitchConfig):
                auto_switch = auto_switch.model_dump()
            data["auto_switch"] = {**data["auto_switch"], **(auto_switch or {})}
        data.update(changes)
        try:
            return RotationConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid rotation settings", details={"errors": e.errors()}
            ) from e


class RotationConfigStore:
    """JSON file storage for `RotationConfig`."""

    def __init__(self, file_path: Path) -> None:
        self.file_path = Path(file_path).expanduser()

    def load(self) -> RotationConfig:
        """Load the configuration, falling back to defaults on any problem."""
        if not self.file_path.exists():
            return RotationConfig()

        try:
            data = orjson.loads(self.file_path.read_bytes())
        except orjson.JSONDecodeError:
            logger.warning("rotation_config_json_decode_error", path=str(self.file_path))
            return RotationConfig()
        except OSError as e:
            logger.warning(
                "rotation_config_read_error", path=str(self.file_path), error=str(e)
            )
            return RotationConfig()

        if not isinstance(data, dict):
            logger.warning("rotation_config_invalid_format", path=str(self.file_path))
            return RotationConfig()

        data.pop("version", None)
        try:
            return RotationConfig.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "rotation_config_invalid", path=str(self.file_path), error=str(e)
            )
            return RotationConfig()

    def save(self, config: RotationConfig) -> bool:
        """Persist the configuration atomically.

        Returns:
            True if saved successfully
        """
        payload = {"version": CONFIG_FILE_VERSION, **config.model_dump(by_alias=True)}
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.file_path.with_suffix(".json.tmp")
            temp_path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
            temp_path.replace(self.file_path)
        except OSError as e:
            logger.error(
                "rotation_config_save_failed", path=str(self.file_path), error=str(e)
            )
            return False

        logger.debug("rotation_config_saved", path=str(self.file_path))
        return True


def resolve_pool(
    config: RotationConfig, account: "Account"
) -> tuple[PoolMetadata, bool]:
    """Find pool metadata for an account.

    Metadata is keyed by account id; older configs keyed it by file path.
    Returns the metadata and whether it was found only under the legacy key
    (meaning the caller should migrate it to the id key and persist).
    """
    by_id = config.account_pool.get(account.id) if account.id else None
    if by_id is not None:
        return by_id, False

    by_path = config.account_pool.get(account.file_path)
    if by_path is not None:
        return by_path, bool(account.id)

    return PoolMetadata(), False
