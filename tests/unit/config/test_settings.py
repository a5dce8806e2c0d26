"""Tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from code_revolver.config.settings import (
    DEFAULT_USAGE_ENDPOINTS,
    Settings,
    get_settings,
)


@pytest.mark.unit
class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CODE_REVOLVER_DATA_DIR", raising=False)

        settings = Settings(_env_file=None)

        assert settings.data_dir == Path("~/.code-revolver").expanduser()
        assert settings.usage_cache_path.name == "usage_cache.json"
        assert settings.config_path.name == "settings.json"
        assert settings.usage_endpoints == DEFAULT_USAGE_ENDPOINTS
        assert settings.usage_fetch_retries == 2

    def test_environment_overrides(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv("CODE_REVOLVER_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("CODE_REVOLVER_USAGE_FETCH_RETRIES", "4")
        monkeypatch.setenv("CODE_REVOLVER_USAGE_FETCH_TIMEOUT", "12.5")

        settings = Settings(_env_file=None)

        assert settings.data_dir == tmp_path
        assert settings.usage_cache_path == tmp_path / "usage_cache.json"
        assert settings.config_path == tmp_path / "settings.json"
        assert settings.usage_fetch_retries == 4
        assert settings.usage_fetch_timeout == 12.5

    def test_out_of_range_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, usage_fetch_timeout=0)

    def test_get_settings_is_cached(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
