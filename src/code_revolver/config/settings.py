"""Process-level settings for Code Revolver."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


__all__ = [
    "DEFAULT_USAGE_ENDPOINTS",
    "Settings",
    "get_settings",
]

# Tried in order until one answers 2xx
DEFAULT_USAGE_ENDPOINTS: tuple[str, ...] = (
    "https://chatgpt.com/backend-api/wham/usage",
    "https://api.openai.com/backend-api/wham/usage",
    "https://api.openai.com/api/codex/usage",
    "https://chat.openai.com/backend-api/wham/usage",
)


class Settings(BaseSettings):
    """
    Storage locations and usage-fetch tuning.

    Loaded from environment variables with the CODE_REVOLVER_ prefix and from a
    .env file. User-facing rotation preferences live in `RotationConfig`, not here.
    """

    model_config = SettingsConfigDict(
        env_prefix="CODE_REVOLVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    data_dir: Path = Field(
        default=Path("~/.code-revolver"),
        description="Directory holding the usage cache and rotation settings",
    )

    usage_cache_filename: str = Field(
        default="usage_cache.json",
        description="File name of the persistent usage cache inside data_dir",
    )

    config_filename: str = Field(
        default="settings.json",
        description="File name of the rotation configuration inside data_dir",
    )

    usage_fetch_timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Timeout in seconds for a single usage request",
    )

    usage_fetch_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries per endpoint for transient usage fetch failures",
    )

    usage_endpoints: tuple[str, ...] = Field(
        default=DEFAULT_USAGE_ENDPOINTS,
        description="Usage endpoints tried in order",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @property
    def usage_cache_path(self) -> Path:
        """Full path of the usage cache file."""
        return self.data_dir / self.usage_cache_filename

    @property
    def config_path(self) -> Path:
        """Full path of the rotation configuration file."""
        return self.data_dir / self.config_filename


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
