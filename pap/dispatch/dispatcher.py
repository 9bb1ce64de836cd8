"""Dispatcher: a fixed pool of sandbox slots fed from the job queue."""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from redis.exceptions import RedisError
from structlog.stdlib import BoundLogger

from pap.core.errors import (
    AnalysisReportedError,
    ExecutionCrash,
    ExecutionTimeout,
    InvalidTransition,
    LedgerBusy,
    RecordNotFound,
)
from pap.core.events import (
    BUSY_SLOTS,
    DISPATCH_OUTCOMES_TOTAL,
    EXECUTION_SECONDS,
    JOBS_REQUEUED_TOTAL,
    QUEUE_SIZE,
)
from pap.core.logging import get_logger
from pap.dispatch.sandbox import RunOutcome, RunResult, SandboxRunner
from pap.intake.hashing import decode_tree
from pap.queue.ledger import Ledger
from pap.submissions.models import SubmissionRecord, SubmissionState

logger = get_logger(__name__)

# Backoff bounds for writing an outcome while the ledger is unavailable
RECORD_RETRY_DELAY = 0.05
RECORD_RETRY_MAX_DELAY = 2.0


@dataclass
class ExecutionAttempt:
    """One sandboxed run of one package in one slot."""

    slot_id: int
    hash: str
    attempt: int
    started_at: float
    deadline: float
    finished_at: Optional[float] = None

    @property
    def duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    @property
    def overran(self) -> bool:
        """Whether the attempt finished (or is still running) past its deadline."""
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end > self.deadline


class Dispatcher:
    """Pulls jobs from the ledger and runs each one in its own sandbox.

    Each slot thread loops over :meth:`dispatch_next`. A slot takes a new
    job only after the previous runner call has returned, and runners
    return only after their sandbox is torn down. Anything that goes wrong
    inside a run is turned into a state transition here; nothing escapes
    to kill the slot.
    """

    def __init__(
        self,
        ledger: Ledger,
        runner: SandboxRunner,
        slots: int = 2,
        timeout: float = 300.0,
        poll_interval: float = 0.5,
        recovery_interval: float | None = None,
    ) -> None:
        """Initialize dispatcher.

        Args:
            ledger: Shared ledger of records and queue
            runner: Sandbox runner used for every attempt
            slots: Number of concurrent sandboxes
            timeout: Seconds each attempt may run
            poll_interval: Seconds an idle slot waits before polling again
            recovery_interval: Seconds between background recovery passes,
                None to recover only when asked
        """
        if slots < 1:
            raise ValueError("Dispatcher needs at least one slot")
        self.ledger = ledger
        self.runner = runner
        self.slots = slots
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.recovery_interval = recovery_interval

        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._active: dict[str, ExecutionAttempt] = {}
        self._active_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def active_attempts(self) -> list[ExecutionAttempt]:
        with self._active_lock:
            return list(self._active.values())

    # Pool lifecycle

    def start(self) -> None:
        """Start one thread per slot."""
        if self.is_running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self._slot_loop,
                args=(slot_id,),
                name=f"pap-slot-{slot_id}",
                daemon=True,
            )
            for slot_id in range(self.slots)
        ]
        if self.recovery_interval is not None:
            self._threads.append(
                threading.Thread(
                    target=self._recovery_loop,
                    args=(self.recovery_interval,),
                    name="pap-recovery",
                    daemon=True,
                )
            )
        for thread in self._threads:
            thread.start()
        logger.info("dispatcher_started", slots=self.slots, timeout=self.timeout)

    def stop(self, timeout: float | None = None) -> None:
        """Stop taking new jobs and wait for running attempts to finish."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [thread for thread in self._threads if thread.is_alive()]
        logger.info("dispatcher_stopped", still_running=len(self._threads))

    def run_forever(self) -> None:
        """Start the pool and block until :meth:`stop` is called."""
        self.start()
        try:
            while not self._stop.wait(self.poll_interval):
                pass
        finally:
            self.stop()

    def _slot_loop(self, slot_id: int) -> None:
        while not self._stop.is_set():
            try:
                worked = self.dispatch_next(slot_id)
            except Exception:
                logger.exception("slot_iteration_failed", slot=slot_id)
                worked = False
            if not worked:
                self._stop.wait(self.poll_interval)

    def _recovery_loop(self, interval: float) -> None:
        """Reclaim jobs whose worker died, for as long as the pool runs."""
        while not self._stop.wait(interval):
            try:
                self.ledger.recover()
            except LedgerBusy as e:
                logger.warning("recovery_ledger_busy", error=str(e))
            except Exception:
                logger.exception("recovery_failed")

    # Dispatch

    def dispatch_next(self, slot_id: int = 0) -> bool:
        """Claim the next queued job and run it to an outcome.

        Returns:
            True if a job was processed, False if the queue was empty or
            the ledger was busy
        """
        try:
            record = self.ledger.claim_next()
        except LedgerBusy as e:
            logger.warning("dispatch_ledger_busy", slot=slot_id, error=str(e))
            return False
        if record is None:
            return False

        QUEUE_SIZE.set(len(self.ledger.queue))
        self._execute(slot_id, record)
        return True

    def drain(self, slot_id: int = 0) -> int:
        """Process jobs in this thread until the queue is empty.

        Returns:
            Number of attempts run
        """
        processed = 0
        while self.dispatch_next(slot_id):
            processed += 1
        return processed

    @contextmanager
    def _attempt(self, slot_id: int, record: SubmissionRecord) -> Iterator[ExecutionAttempt]:
        """Own the slot for one attempt; released on every exit path."""
        started_at = time.monotonic()
        attempt = ExecutionAttempt(
            slot_id=slot_id,
            hash=record.hash,
            attempt=record.attempts,
            started_at=started_at,
            deadline=started_at + self.timeout,
        )
        with self._active_lock:
            if record.hash in self._active:
                raise RuntimeError(
                    f"{record.hash[:12]} is already running in slot "
                    f"{self._active[record.hash].slot_id}"
                )
            self._active[record.hash] = attempt
        BUSY_SLOTS.inc()
        try:
            yield attempt
        finally:
            attempt.finished_at = time.monotonic()
            with self._active_lock:
                self._active.pop(record.hash, None)
            BUSY_SLOTS.dec()
            EXECUTION_SECONDS.observe(attempt.duration)

    def _execute(self, slot_id: int, record: SubmissionRecord) -> None:
        log = logger.bind(hash=record.hash, slot=slot_id, attempt=record.attempts)
        log.info("job_dispatched", max_attempts=self.ledger.max_attempts)

        with self._heartbeat(record.hash, log):
            with self._attempt(slot_id, record) as attempt:
                result = self._run(attempt, log)

            if result.outcome is RunOutcome.SUCCESS and attempt.overran:
                result = RunResult.timed_out(
                    f"analysis finished {attempt.duration:.1f}s after start, "
                    f"past the {self.timeout:.0f}s deadline"
                )

            self._record(record, result, attempt, log)

    @contextmanager
    def _heartbeat(self, content_hash: str, log: BoundLogger) -> Iterator[None]:
        """Renew the attempt lease until the outcome has been written."""
        leases = self.ledger.leases
        done = threading.Event()

        def beat() -> None:
            while not done.wait(leases.ttl / 3):
                try:
                    if not leases.renew(content_hash):
                        log.warning("attempt_lease_lost")
                except RedisError as e:
                    log.warning("attempt_lease_renew_failed", error=str(e))

        thread = threading.Thread(
            target=beat, name=f"pap-lease-{content_hash[:8]}", daemon=True
        )
        thread.start()
        try:
            yield
        finally:
            done.set()
            thread.join()

    def _run(self, attempt: ExecutionAttempt, log: BoundLogger) -> RunResult:
        try:
            tree = decode_tree(self.ledger.store.load_package(attempt.hash))
        except (RecordNotFound, ValueError) as e:
            log.error("package_unavailable", error=str(e))
            return RunResult.crashed(f"stored package unavailable: {e}")

        try:
            return self.runner.run(tree, attempt.deadline)
        except ExecutionTimeout as e:
            return RunResult.timed_out(str(e) or "deadline exceeded")
        except AnalysisReportedError as e:
            return RunResult.failure(str(e) or "analysis failed")
        except ExecutionCrash as e:
            log.warning("sandbox_crashed", error=str(e))
            return RunResult.crashed(str(e) or "no detail")
        except Exception as e:
            log.exception("sandbox_raised")
            return RunResult.crashed(f"{type(e).__name__}: {e}")

    def _record(
        self,
        record: SubmissionRecord,
        result: RunResult,
        attempt: ExecutionAttempt,
        log: BoundLogger,
    ) -> None:
        DISPATCH_OUTCOMES_TOTAL.labels(outcome=result.outcome.value).inc()

        retry = 0
        while True:
            try:
                self._apply(record, result, attempt, log)
                return
            except (InvalidTransition, RecordNotFound) as e:
                # The record moved on without us; there is nothing left to write
                log.error("outcome_discarded", outcome=result.outcome.value, error=str(e))
                return
            except Exception as e:
                retry += 1
                log.warning("outcome_write_failed", retry=retry, error=str(e))
            delay = min(RECORD_RETRY_DELAY * 2 ** min(retry, 10), RECORD_RETRY_MAX_DELAY)
            if self._stop.wait(delay):
                # Shutting down: the lease runs out and recovery requeues the job
                log.error("outcome_write_abandoned", outcome=result.outcome.value)
                return

    def _apply(
        self,
        record: SubmissionRecord,
        result: RunResult,
        attempt: ExecutionAttempt,
        log: BoundLogger,
    ) -> None:
        if result.outcome is RunOutcome.SUCCESS:
            self.ledger.complete(record.hash, result.payload)
            log.info("job_completed", duration=round(attempt.duration, 3))
            return

        if result.outcome is RunOutcome.STRUCTURED_FAILURE:
            error = result.error or "analysis failed"
            self.ledger.fail_terminal(record.hash, error)
            log.info("job_failed", failure_kind="analysis", error=error)
            return

        if result.outcome is RunOutcome.TIMED_OUT:
            detail = f"analysis timed out after {self.timeout:.0f}s"
            if result.error:
                detail = f"{detail}: {result.error}"
        else:
            detail = f"sandbox crashed: {result.error or 'no detail'}"

        updated = self.ledger.fail_retryable(record.hash, detail)
        if updated.state is SubmissionState.QUEUED:
            JOBS_REQUEUED_TOTAL.inc()
            QUEUE_SIZE.set(len(self.ledger.queue))
            log.warning(
                "job_requeued",
                outcome=result.outcome.value,
                error=detail,
                attempts=updated.attempts,
            )
        else:
            log.error(
                "job_failed",
                failure_kind="infrastructure",
                error=updated.error,
                attempts=updated.attempts,
            )
