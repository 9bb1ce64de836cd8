"""Tests for pipeline wiring and the process-wide platform."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from pap.pipeline import build_platform, get_platform, reset_platform
from pap.queue.leases import MemoryAttemptLeases, RedisAttemptLeases
from pap.queue.redis_queue import RedisJobQueue


@pytest.fixture
def no_platform():
    reset_platform()
    yield
    reset_platform()


class TestGetPlatform:
    def test_should_build_once_under_concurrent_first_use(self, no_platform):
        built = []

        def slow_build(config):
            time.sleep(0.05)
            platform = MagicMock()
            platform.dispatcher.is_running = False
            built.append(platform)
            return platform

        results = []
        with patch("pap.pipeline.build_platform", side_effect=slow_build):
            threads = [
                threading.Thread(target=lambda: results.append(get_platform()))
                for _ in range(8)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(5)

        assert len(built) == 1
        assert len(results) == 8
        assert all(result is built[0] for result in results)


class TestBuildPlatform:
    """Test how settings select the backend."""

    def test_should_wire_memory_backend(self, test_settings, fake_runner):
        config = test_settings.model_copy(
            update={"ATTEMPT_LEASE_SECONDS": 12.0, "MAX_ARCHIVE_BYTES": 4096}
        )

        platform = build_platform(config, runner=fake_runner)

        assert isinstance(platform.ledger.leases, MemoryAttemptLeases)
        assert platform.ledger.leases.ttl == 12.0
        assert platform.max_upload_bytes == 4096
        assert platform.gate.ledger is platform.ledger
        assert platform.dispatcher.ledger is platform.ledger
        assert platform.dispatcher.recovery_interval == config.RECOVERY_INTERVAL_SECONDS

    def test_should_share_one_redis_connection(self, test_settings, fake_runner):
        config = test_settings.model_copy(
            update={"LEDGER_BACKEND": "redis", "ATTEMPT_LEASE_SECONDS": 9.0}
        )
        redis_conn = MagicMock()

        platform = build_platform(config, runner=fake_runner, redis_conn=redis_conn)

        assert isinstance(platform.queue, RedisJobQueue)
        leases = platform.ledger.leases
        assert isinstance(leases, RedisAttemptLeases)
        assert leases.redis is redis_conn
        assert leases.prefix == config.REDIS_LEASE_PREFIX
        assert leases.ttl == 9.0
