"""API test fixtures."""

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient, Timeout

from pap.pipeline import Platform

# Default timeout configuration
DEFAULT_TIMEOUT: Timeout = Timeout(
    timeout=5.0,  # Default total timeout
    connect=2.0,  # Connection timeout
    read=5.0,  # Read timeout
    write=5.0,  # Write timeout
    pool=2.0,  # Pool timeout
)


@pytest.fixture
def test_app(platform: Platform) -> Generator[FastAPI, None, None]:
    """The application with the test platform installed.

    ASGITransport does not run startup handlers, so the platform is put on
    ``app.state`` directly and the dispatcher is driven by the tests.
    """
    from pap.main import app

    app.state.platform = platform
    yield app
    del app.state.platform


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the application."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        timeout=DEFAULT_TIMEOUT,
    ) as test_client:
        yield test_client
