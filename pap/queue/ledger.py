"""The ledger: the one place where the store and the queue change together."""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol

import redis
from redis.exceptions import LockError

from pap.core.errors import InvalidTransition, LedgerBusy
from pap.core.logging import get_logger
from pap.queue.leases import AttemptLeases, MemoryAttemptLeases
from pap.queue.models import JobQueue
from pap.submissions.models import SubmissionRecord, SubmissionState
from pap.submissions.store import SubmissionStore

logger = get_logger(__name__)


def infrastructure_error(attempts: int, detail: str) -> str:
    """Message shown once the retry budget is spent."""
    return f"analysis infrastructure failed after {attempts} attempts: {detail}"


class LedgerLock(Protocol):
    """Mutual exclusion with a bounded wait."""

    def acquire(self, timeout: float) -> bool: ...

    def release(self) -> None: ...


class ThreadLedgerLock:
    """Process-local lock for the in-memory backend."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def acquire(self, timeout: float) -> bool:
        return self._lock.acquire(timeout=timeout)

    def release(self) -> None:
        self._lock.release()


class RedisLedgerLock:
    """Cross-process lock stored in Redis.

    The lock expires on its own after ``lease`` seconds so a process that
    dies inside a critical section cannot wedge the platform.
    """

    def __init__(
        self, redis_conn: redis.Redis, key: str = "pap:ledger-lock", lease: float = 30.0
    ) -> None:
        self._lock = redis_conn.lock(key, timeout=lease, thread_local=True)

    def acquire(self, timeout: float) -> bool:
        return bool(self._lock.acquire(blocking=True, blocking_timeout=timeout))

    def release(self) -> None:
        try:
            self._lock.release()
        except LockError as e:
            # The lease ran out before release; another holder may own it now
            logger.warning("ledger_lock_lost", error=str(e))


class Ledger:
    """Serializes every mutation that spans SubmissionStore and JobQueue.

    Invariant kept by this class: a hash is in the queue if and only if its
    record is Queued. Each public mutator is one critical section; readers
    (status queries) go to the store and queue directly and never wait.
    """

    def __init__(
        self,
        store: SubmissionStore,
        queue: JobQueue,
        lock: LedgerLock | None = None,
        lock_timeout: float = 5.0,
        leases: AttemptLeases | None = None,
    ) -> None:
        self.store = store
        self.queue = queue
        self.lock = lock or ThreadLedgerLock()
        self.lock_timeout = lock_timeout
        self.leases = leases or MemoryAttemptLeases()

    @property
    def max_attempts(self) -> int:
        return self.store.max_attempts

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Hold the ledger lock for one short critical section.

        Raises:
            LedgerBusy: If the lock could not be acquired within the timeout
        """
        if not self.lock.acquire(self.lock_timeout):
            raise LedgerBusy(
                f"ledger lock not acquired within {self.lock_timeout:.1f}s"
            )
        try:
            yield
        finally:
            self.lock.release()

    def admit(self, content_hash: str, enqueued_at: float | None = None) -> bool:
        """Create a Queued record and its queue entry in one step.

        Returns:
            True if the hash was new, False if a record already existed
        """
        enqueued_at = time.time() if enqueued_at is None else enqueued_at
        with self.atomic():
            if self.store.has_record(content_hash):
                return False
            self.store.create(content_hash, enqueued_at)
            try:
                self.queue.enqueue(content_hash, enqueued_at)
            except Exception:
                self.store.discard_unstarted(content_hash)
                raise
            return True

    def claim_next(self) -> SubmissionRecord | None:
        """Pop the head of the queue, mark it Running and lease the attempt.

        Returns:
            The Running record, or None if nothing is queued
        """
        with self.atomic():
            while True:
                entry = self.queue.dequeue()
                if entry is None:
                    return None
                try:
                    record = self.store.mark_running(entry.hash)
                except InvalidTransition as e:
                    # A stray entry for a record that is no longer Queued
                    logger.error(
                        "queue_entry_dropped",
                        hash=entry.hash,
                        reason=str(e),
                    )
                    continue
                except Exception:
                    self.queue.enqueue(entry.hash, entry.enqueued_at)
                    raise
                self.leases.grant(record.hash)
                return record

    def complete(self, content_hash: str, result: Any) -> SubmissionRecord:
        with self.atomic():
            record = self.store.mark_completed(content_hash, result)
            self.leases.release(content_hash)
            return record

    def fail_terminal(self, content_hash: str, error: str) -> SubmissionRecord:
        with self.atomic():
            record = self.store.mark_terminal_failed(content_hash, error)
            self.leases.release(content_hash)
            return record

    def fail_retryable(self, content_hash: str, error: str) -> SubmissionRecord:
        """Record an infrastructure failure and requeue while attempts remain.

        Returns:
            The record after the step: Queued if it was requeued, otherwise
            RetryableFailed with the attempt budget exhausted
        """
        with self.atomic():
            record = self._fail_retryable(content_hash, error)
            self.leases.release(content_hash)
            return record

    def _fail_retryable(self, content_hash: str, error: str) -> SubmissionRecord:
        current = self.store.require(content_hash)
        if not self.store.has_attempts_left(current):
            error = infrastructure_error(current.attempts, error)
        record = self.store.mark_retryable_failed(content_hash, error)
        if not self.store.has_attempts_left(record):
            return record
        record = self.store.mark_requeued(content_hash)
        self.queue.enqueue(content_hash, record.enqueued_at)
        return record

    def recover(self) -> dict[str, int]:
        """Repair state left behind by a previous process.

        Running records whose attempt lease is gone (the slot or the whole
        worker process died) go back to Queued with the interrupted attempt
        refunded. Running records with a live lease are left alone. Queued
        records missing from the queue are put back with their original
        enqueue time, and queue entries whose record is not Queued are
        dropped.

        Returns:
            Counts of interrupted, requeued and dropped entries
        """
        stats = {"interrupted": 0, "requeued": 0, "dropped": 0}
        live = 0
        with self.atomic():
            for record in self.store.list_records(SubmissionState.RUNNING):
                if self.leases.is_live(record.hash):
                    live += 1
                    continue
                self.store.mark_interrupted(
                    record.hash, "analysis interrupted: attempt lease expired"
                )
                self.store.mark_requeued(record.hash)
                stats["interrupted"] += 1

            queued = {
                record.hash: record
                for record in self.store.list_records(SubmissionState.QUEUED)
            }
            for entry in self.queue.snapshot():
                if entry.hash not in queued:
                    self.queue.discard(entry.hash)
                    stats["dropped"] += 1
            for content_hash, record in queued.items():
                if self.queue.enqueue(content_hash, record.enqueued_at):
                    stats["requeued"] += 1

        logger.info("ledger_recovered", still_running=live, **stats)
        return stats
