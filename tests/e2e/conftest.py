"""
E2E test configuration and fixtures.

The tests in this directory talk to a live Esplora server. They are skipped
when none is reachable at --esplora-url (or ELSYNC_E2E_ESPLORA_URL).
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from loguru import logger

from elsync.backends.esplora import EsploraBackend

DEFAULT_E2E_ESPLORA_URL = "http://127.0.0.1:3002/api"


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for e2e tests."""
    parser.addoption(
        "--esplora-url",
        action="store",
        default=os.environ.get("ELSYNC_E2E_ESPLORA_URL", DEFAULT_E2E_ESPLORA_URL),
        help="Esplora REST API URL",
    )


@pytest.fixture(scope="session")
def esplora_url(request: pytest.FixtureRequest) -> str:
    return request.config.getoption("--esplora-url")


@pytest_asyncio.fixture
async def esplora_backend(esplora_url: str) -> AsyncGenerator[EsploraBackend, None]:
    """Esplora backend, skipping the test when the server is unreachable."""
    backend = EsploraBackend(base_url=esplora_url, timeout=10.0)
    try:
        height = await backend.get_tip_height()
    except Exception as e:
        await backend.close()
        pytest.skip(f"Esplora not available at {esplora_url}: {e}")

    logger.info(f"Using Esplora at {esplora_url}, tip height {height}")
    try:
        yield backend
    finally:
        await backend.close()


@pytest.fixture(scope="session")
def funded_script() -> bytes | None:
    """Optional scriptPubKey (hex in ELSYNC_E2E_FUNDED_SCRIPT) known to have history."""
    script_hex = os.environ.get("ELSYNC_E2E_FUNDED_SCRIPT")
    return bytes.fromhex(script_hex) if script_hex else None

