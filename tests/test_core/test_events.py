"""Tests for application startup and shutdown handlers."""

from types import SimpleNamespace

from pap.core.config import settings
from pap.core.events import create_start_app_handler, create_stop_app_handler
from pap.submissions.models import SubmissionState
from tests.fixtures.platform import make_hash


class TestAppEvents:
    """Test startup recovery and dispatcher lifecycle."""

    async def test_should_install_platform_and_recover_on_startup(
        self, platform, monkeypatch
    ):
        """Startup should repair records interrupted by a previous process."""
        monkeypatch.setattr(settings, "DISPATCHER_ENABLED", False)
        content_hash = make_hash("interrupted")
        platform.ledger.admit(content_hash, enqueued_at=10.0)
        platform.ledger.claim_next()
        platform.ledger.leases.release(content_hash)
        app = SimpleNamespace(state=SimpleNamespace())

        await create_start_app_handler(app)()

        assert app.state.platform is platform
        record = platform.store.require(content_hash)
        assert record.state is SubmissionState.QUEUED
        assert record.attempts == 0
        assert record.enqueued_at == 10.0
        assert content_hash in platform.queue
        assert not platform.dispatcher.is_running

    async def test_should_start_and_stop_dispatcher(self, platform, monkeypatch):
        """The dispatcher should run between startup and shutdown."""
        monkeypatch.setattr(settings, "DISPATCHER_ENABLED", True)
        app = SimpleNamespace(state=SimpleNamespace())

        await create_start_app_handler(app)()
        assert platform.dispatcher.is_running

        await create_stop_app_handler(app)()
        assert not platform.dispatcher.is_running

    async def test_should_ignore_shutdown_without_startup(self):
        """Shutdown before startup should be a no-op."""
        app = SimpleNamespace(state=SimpleNamespace())

        await create_stop_app_handler(app)()
