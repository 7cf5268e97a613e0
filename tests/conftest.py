"""Shared test fixtures and marker registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from remote_ops._region import RegionCache

if TYPE_CHECKING:
    from tests.fakes import MemorySession


def pytest_configure(config: object) -> None:
    """Register custom markers."""
    if isinstance(config, pytest.Config):
        config.addinivalue_line("markers", "integration: requires external services")


@pytest.fixture()
def region_cache() -> RegionCache:
    """A private region cache, so tests do not share resolved regions."""
    return RegionCache()


@pytest.fixture()
def memory_session() -> MemorySession:
    from tests.fakes import MemorySession

    return MemorySession()
