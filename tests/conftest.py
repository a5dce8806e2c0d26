"""Shared fixtures for rotation tests."""

from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import NOW, CountingConfigStore, FakeAccountStore, FakeUsageProvider

from code_revolver.config.rotation import RotationConfig
from code_revolver.rotation.cache import UsageCache
from code_revolver.rotation.controller import RotationController


@pytest.fixture
def usage_cache(tmp_path: Path) -> UsageCache:
    return UsageCache(tmp_path / "usage_cache.json")


@pytest.fixture
def config_store(tmp_path: Path) -> CountingConfigStore:
    return CountingConfigStore(tmp_path / "settings.json")


@pytest.fixture
def make_controller(
    usage_cache: UsageCache, config_store: CountingConfigStore
) -> Callable[..., RotationController]:
    """Factory for controllers wired to the fakes and a fixed clock."""

    def _make(
        store: FakeAccountStore,
        provider: FakeUsageProvider,
        config: RotationConfig | None = None,
    ) -> RotationController:
        return RotationController(
            store=store,
            provider=provider,
            cache=usage_cache,
            config=config or RotationConfig(),
            config_store=config_store,
            clock=lambda: NOW,
        )

    return _make
