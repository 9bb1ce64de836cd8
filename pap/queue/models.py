"""Queue models and types."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, order=True)
class QueueEntry:
    """A queued hash; ordering is FIFO by enqueue time, ties broken by hash."""

    enqueued_at: float
    hash: str


class JobQueue(Protocol):
    """Ordered queue of admitted, not-yet-dispatched jobs."""

    def enqueue(self, content_hash: str, enqueued_at: float) -> bool:
        """Add a hash; returns False if it was already queued."""
        ...

    def dequeue(self) -> QueueEntry | None:
        """Remove and return the head entry, or None when empty. Never blocks."""
        ...

    def position_of(self, content_hash: str) -> int | None:
        """1-based rank of a queued hash, or None if not queued. Advisory."""
        ...

    def discard(self, content_hash: str) -> bool:
        """Drop a hash regardless of position. Used only by recovery."""
        ...

    def snapshot(self) -> list[QueueEntry]:
        """Entries in dispatch order."""
        ...

    def clear(self) -> None: ...

    def __len__(self) -> int: ...

    def __contains__(self, content_hash: object) -> bool: ...
