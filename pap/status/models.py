"""Externally visible submission status."""

from enum import Enum
from typing import Any

from pydantic import BaseModel

from pap.submissions.models import FailureKind


class StatusKind(str, Enum):
    """Status values reported to submitters."""

    NOT_FOUND = "not_found"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StatusView(BaseModel):
    """Status of one package hash as seen from outside."""

    status: StatusKind
    position: int | None = None
    result: Any = None
    error: str | None = None
    failure_kind: FailureKind | None = None

    @classmethod
    def not_found(cls) -> "StatusView":
        return cls(status=StatusKind.NOT_FOUND)

    @classmethod
    def queued(cls, position: int) -> "StatusView":
        return cls(status=StatusKind.QUEUED, position=position)

    @classmethod
    def running(cls) -> "StatusView":
        return cls(status=StatusKind.RUNNING)

    @classmethod
    def completed(cls, result: Any) -> "StatusView":
        return cls(status=StatusKind.COMPLETED, result=result)

    @classmethod
    def failed(cls, error: str, failure_kind: FailureKind | None) -> "StatusView":
        return cls(status=StatusKind.FAILED, error=error, failure_kind=failure_kind)

    def to_response(self) -> dict[str, Any]:
        """Wire form: only the fields meaningful for this status."""
        body: dict[str, Any] = {"status": self.status.value}
        if self.status is StatusKind.QUEUED:
            body["position"] = self.position
        elif self.status is StatusKind.COMPLETED:
            body["result"] = self.result
        elif self.status is StatusKind.FAILED:
            body["error"] = self.error
            body["failure_kind"] = (
                self.failure_kind.value if self.failure_kind else None
            )
        return body
