"""Test configuration."""

import os
from collections.abc import Generator
from pathlib import Path

import pytest
from pytest import Config

os.environ.setdefault("TESTING", "true")

from dotenv import load_dotenv  # noqa: E402

from pap.core.logging import configure_logging  # noqa: E402

# Load .env.test file for tests if present; never the production .env
_env_test_file = Path(__file__).parent.parent / ".env.test"
if _env_test_file.exists():
    load_dotenv(_env_test_file, override=True)

fixture = pytest.fixture


@fixture(scope="session")
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


pytest_plugins: list[str] = [
    "tests.fixtures.packages",
    "tests.fixtures.platform",
    "tests.fixtures.api",
]


def get_worker_id() -> str:
    """Get the current worker ID for parallel test execution.

    Returns:
        str: Worker ID (e.g., 'gw0', 'gw1') or 'master' for single process
    """
    worker_id = os.environ.get("PYTEST_XDIST_WORKER", "")
    return worker_id if worker_id else "master"


@fixture(scope="session", name="worker_resources", autouse=True)
def worker_resources_fixture() -> Generator[None, None, None]:
    """Configure resources for each test worker.

    Each worker gets its own Redis key prefix so queue keys never collide
    when tests talk to a shared Redis.

    Yields:
        None: Resource configuration context
    """
    worker_id = get_worker_id()
    os.environ["TEST_REDIS_PREFIX"] = f"test:{worker_id}:"
    os.environ["TESTING"] = "true"
    yield


def pytest_configure(config: Config) -> None:
    """Configure pytest.

    Args:
        config: Pytest configuration object
    """
    configure_logging(testing=True)
    config.addinivalue_line(
        "markers", "integration: tests that spawn real subprocesses"
    )
