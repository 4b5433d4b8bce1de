"""
Pytest configuration and fixtures for elsync tests.
"""

from __future__ import annotations

import pytest
from _elsync_test_helpers import FakeChainBackend, FakeDeriver

from elsync.database.memory import MemoryDatabase
from elsync.sync import ElectrumLikeSync


@pytest.fixture
def backend() -> FakeChainBackend:
    return FakeChainBackend()


@pytest.fixture
def database() -> MemoryDatabase:
    return MemoryDatabase()


@pytest.fixture
def deriver() -> FakeDeriver:
    return FakeDeriver()


@pytest.fixture
def engine(
    backend: FakeChainBackend, database: MemoryDatabase, deriver: FakeDeriver
) -> ElectrumLikeSync:
    """Sync engine with a small gap limit to keep scans short."""
    return ElectrumLikeSync(backend, database, stop_gap=5, deriver=deriver)
