"""Submission records and their state machine."""

from pap.submissions.models import FailureKind, SubmissionRecord, SubmissionState
from pap.submissions.states import ALLOWED_TRANSITIONS, TERMINAL_STATES, is_terminal

__all__ = [
    "ALLOWED_TRANSITIONS",
    "FailureKind",
    "SubmissionRecord",
    "SubmissionState",
    "TERMINAL_STATES",
    "is_terminal",
]
