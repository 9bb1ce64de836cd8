"""Submission lifecycle models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel


class SubmissionState(str, Enum):
    """Submission state enum."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    RETRYABLE_FAILED = "retryable_failed"
    TERMINAL_FAILED = "terminal_failed"


class FailureKind(str, Enum):
    """Who is to blame for a failed submission."""

    INFRASTRUCTURE = "infrastructure"
    ANALYSIS = "analysis"


class SubmissionRecord(BaseModel):
    """Lifecycle record for one distinct package hash."""

    hash: str
    state: SubmissionState
    created_at: datetime
    enqueued_at: float
    updated_at: datetime | None = None
    queue_position_hint: int | None = None
    result: Any = None
    error: str | None = None
    failure_kind: FailureKind | None = None
    attempts: int = 0

    @property
    def is_failed(self) -> bool:
        return self.state in (
            SubmissionState.RETRYABLE_FAILED,
            SubmissionState.TERMINAL_FAILED,
        )
