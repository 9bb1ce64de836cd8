"""Wiring of the submission pipeline from settings."""

import threading
from dataclasses import dataclass
from typing import Optional

import redis

from pap.core.config import Settings, settings
from pap.dispatch.dispatcher import Dispatcher
from pap.dispatch.sandbox import ProcessSandbox, SandboxRunner
from pap.intake.gate import AdmissionGate
from pap.intake.validator import ArchiveValidator, ZipPackageValidator
from pap.queue.leases import MemoryAttemptLeases, RedisAttemptLeases
from pap.queue.ledger import Ledger, RedisLedgerLock, ThreadLedgerLock
from pap.queue.memory import MemoryJobQueue
from pap.queue.models import JobQueue
from pap.queue.redis_queue import RedisJobQueue
from pap.status.resolver import StatusResolver
from pap.submissions.store import SubmissionStore


@dataclass
class Platform:
    """The object graph shared by the API and the dispatcher."""

    ledger: Ledger
    gate: AdmissionGate
    dispatcher: Dispatcher
    resolver: StatusResolver
    max_upload_bytes: int = 8 * 1024 * 1024

    @property
    def store(self) -> SubmissionStore:
        return self.ledger.store

    @property
    def queue(self) -> JobQueue:
        return self.ledger.queue


def build_platform(
    config: Settings,
    runner: SandboxRunner | None = None,
    validator: ArchiveValidator | None = None,
    redis_conn: redis.Redis | None = None,
) -> Platform:
    """Build the pipeline.

    Args:
        config: Settings to build from
        runner: Sandbox runner override (defaults to ProcessSandbox)
        validator: Archive validator override (defaults to ZipPackageValidator)
        redis_conn: Redis client override for the redis backend

    Returns:
        Platform with every component wired to the same ledger
    """
    store_path = config.STORE_PATH
    store_path.mkdir(parents=True, exist_ok=True)
    store = SubmissionStore(store_path, max_attempts=config.MAX_ATTEMPTS)

    if config.LEDGER_BACKEND == "redis":
        conn = redis_conn or redis.Redis.from_url(
            config.REDIS_URL,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        queue: JobQueue = RedisJobQueue(conn, key=config.REDIS_QUEUE_KEY)
        lock = RedisLedgerLock(conn, key=config.REDIS_LOCK_KEY)
        leases = RedisAttemptLeases(
            conn, prefix=config.REDIS_LEASE_PREFIX, ttl=config.ATTEMPT_LEASE_SECONDS
        )
        ledger = Ledger(
            store,
            queue,
            lock,
            lock_timeout=config.LEDGER_LOCK_TIMEOUT,
            leases=leases,
        )
    else:
        ledger = Ledger(
            store,
            MemoryJobQueue(),
            ThreadLedgerLock(),
            lock_timeout=config.LEDGER_LOCK_TIMEOUT,
            leases=MemoryAttemptLeases(ttl=config.ATTEMPT_LEASE_SECONDS),
        )

    gate = AdmissionGate(
        ledger, validator or ZipPackageValidator.from_settings(config)
    )
    dispatcher = Dispatcher(
        ledger,
        runner or ProcessSandbox.from_settings(config),
        slots=config.SANDBOX_SLOTS,
        timeout=config.SANDBOX_TIMEOUT_SECONDS,
        poll_interval=config.DISPATCH_POLL_INTERVAL,
        recovery_interval=config.RECOVERY_INTERVAL_SECONDS,
    )
    resolver = StatusResolver(store, ledger.queue)
    return Platform(
        ledger=ledger,
        gate=gate,
        dispatcher=dispatcher,
        resolver=resolver,
        max_upload_bytes=config.MAX_ARCHIVE_BYTES,
    )


# Global instance
_platform_instance: Optional[Platform] = None
_platform_lock = threading.Lock()


def get_platform() -> Platform:
    """Get the process-wide platform, building it on first use."""
    global _platform_instance

    if _platform_instance is None:
        with _platform_lock:
            # Request handlers may race here before the startup handler ran
            if _platform_instance is None:
                _platform_instance = build_platform(settings)
    return _platform_instance


def set_platform(platform: Platform) -> None:
    """Install a prebuilt platform. Used for testing."""
    global _platform_instance
    _platform_instance = platform


def reset_platform() -> None:
    """Reset platform singleton. Used for testing."""
    global _platform_instance
    if _platform_instance is not None and _platform_instance.dispatcher.is_running:
        _platform_instance.dispatcher.stop()
    _platform_instance = None
