"""Submission state machine.

::

    queued -> running -> completed
                      -> terminal_failed
                      -> retryable_failed -> queued   (attempts < max)

``retryable_failed`` is terminal once the attempt budget is spent; the
store enforces that by refusing the edge back to ``queued`` for exhausted
records.
"""

from pap.core.errors import InvalidTransition
from pap.submissions.models import SubmissionState

ALLOWED_TRANSITIONS: dict[SubmissionState, frozenset[SubmissionState]] = {
    SubmissionState.QUEUED: frozenset({SubmissionState.RUNNING}),
    SubmissionState.RUNNING: frozenset(
        {
            SubmissionState.COMPLETED,
            SubmissionState.TERMINAL_FAILED,
            SubmissionState.RETRYABLE_FAILED,
        }
    ),
    SubmissionState.RETRYABLE_FAILED: frozenset({SubmissionState.QUEUED}),
    SubmissionState.COMPLETED: frozenset(),
    SubmissionState.TERMINAL_FAILED: frozenset(),
}

TERMINAL_STATES = frozenset(
    {SubmissionState.COMPLETED, SubmissionState.TERMINAL_FAILED}
)


def can_transition(current: SubmissionState, target: SubmissionState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(
    content_hash: str,
    current: SubmissionState,
    target: SubmissionState,
    attempts: int = 0,
    max_attempts: int | None = None,
) -> None:
    """Raise InvalidTransition unless ``current -> target`` is allowed.

    Args:
        content_hash: Hash of the record being moved (for the error message)
        current: State the record is in now
        target: Requested state
        attempts: Dispatch attempts recorded so far
        max_attempts: Attempt budget; required to leave retryable_failed
    """
    if not can_transition(current, target):
        raise InvalidTransition(content_hash, current.value, target.value)
    if (
        current is SubmissionState.RETRYABLE_FAILED
        and target is SubmissionState.QUEUED
        and (max_attempts is None or attempts >= max_attempts)
    ):
        raise InvalidTransition(content_hash, current.value, target.value)


def is_terminal(
    state: SubmissionState, attempts: int = 0, max_attempts: int | None = None
) -> bool:
    """Whether a record in ``state`` can never move again."""
    if state in TERMINAL_STATES:
        return True
    if state is SubmissionState.RETRYABLE_FAILED:
        return max_attempts is None or attempts >= max_attempts
    return False
