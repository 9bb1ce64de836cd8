"""Read-only status projection over the submission store and job queue."""

from pap.intake.hashing import is_valid_hash
from pap.queue.models import JobQueue
from pap.status.models import StatusView
from pap.submissions.models import SubmissionState
from pap.submissions.states import is_terminal
from pap.submissions.store import SubmissionStore


class StatusResolver:
    """Answers status queries without taking the ledger lock.

    The record is read first and the queue is consulted only when the
    record says Queued. Positions are advisory: a slot may claim the entry
    a moment later. If the entry is already gone when the position is read
    the job has just been claimed and is reported as running.
    """

    def __init__(self, store: SubmissionStore, queue: JobQueue) -> None:
        self.store = store
        self.queue = queue

    def status(self, content_hash: str) -> StatusView:
        if not is_valid_hash(content_hash):
            return StatusView.not_found()

        record = self.store.get(content_hash)
        if record is None:
            return StatusView.not_found()

        if record.state is SubmissionState.QUEUED:
            position = self.queue.position_of(content_hash)
            if position is None:
                return StatusView.running()
            return StatusView.queued(position)

        if record.state is SubmissionState.RUNNING:
            return StatusView.running()

        if record.state is SubmissionState.COMPLETED:
            return StatusView.completed(record.result)

        if not is_terminal(record.state, record.attempts, self.store.max_attempts):
            # Caught between the failure and the requeue of a retry
            return StatusView.running()

        return StatusView.failed(record.error or "analysis failed", record.failure_kind)
