"""In-process job queue."""

import bisect
import threading

from pap.queue.models import QueueEntry


class MemoryJobQueue:
    """Sorted list of queue entries guarded by a lock.

    The list is kept in ``(enqueued_at, hash)`` order so the head is always
    the next job to dispatch and a position is a binary search away.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[QueueEntry] = []
        self._index: dict[str, QueueEntry] = {}

    def enqueue(self, content_hash: str, enqueued_at: float) -> bool:
        entry = QueueEntry(enqueued_at=enqueued_at, hash=content_hash)
        with self._lock:
            if content_hash in self._index:
                return False
            bisect.insort(self._entries, entry)
            self._index[content_hash] = entry
            return True

    def dequeue(self) -> QueueEntry | None:
        with self._lock:
            if not self._entries:
                return None
            entry = self._entries.pop(0)
            del self._index[entry.hash]
            return entry

    def position_of(self, content_hash: str) -> int | None:
        with self._lock:
            entry = self._index.get(content_hash)
            if entry is None:
                return None
            return bisect.bisect_left(self._entries, entry) + 1

    def discard(self, content_hash: str) -> bool:
        with self._lock:
            entry = self._index.pop(content_hash, None)
            if entry is None:
                return False
            self._entries.pop(bisect.bisect_left(self._entries, entry))
            return True

    def snapshot(self) -> list[QueueEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._index.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, content_hash: object) -> bool:
        with self._lock:
            return content_hash in self._index
