"""Redis-backed job queue."""

import redis

from pap.queue.models import QueueEntry


def _decode(member: bytes | str) -> str:
    return member.decode() if isinstance(member, bytes) else member


class RedisJobQueue:
    """Sorted-set queue scored by enqueue time.

    Redis orders members with equal scores lexicographically, which gives
    the hash tie-break for free. ``ZPOPMIN`` removes and returns the head in
    one command, so two workers can never pop the same entry.
    """

    def __init__(self, redis_conn: redis.Redis, key: str = "pap:queue") -> None:
        """Initialize queue.

        Args:
            redis_conn: Redis client
            key: Sorted set key holding the queue
        """
        self.redis = redis_conn
        self.key = key

    def enqueue(self, content_hash: str, enqueued_at: float) -> bool:
        added = self.redis.zadd(self.key, {content_hash: enqueued_at}, nx=True)
        return bool(added)

    def dequeue(self) -> QueueEntry | None:
        popped = self.redis.zpopmin(self.key, 1)
        if not popped:
            return None
        member, score = popped[0]
        return QueueEntry(enqueued_at=float(score), hash=_decode(member))

    def position_of(self, content_hash: str) -> int | None:
        rank = self.redis.zrank(self.key, content_hash)
        if rank is None:
            return None
        return int(rank) + 1

    def discard(self, content_hash: str) -> bool:
        return bool(self.redis.zrem(self.key, content_hash))

    def snapshot(self) -> list[QueueEntry]:
        members = self.redis.zrange(self.key, 0, -1, withscores=True)
        return [
            QueueEntry(enqueued_at=float(score), hash=_decode(member))
            for member, score in members
        ]

    def clear(self) -> None:
        self.redis.delete(self.key)

    def __len__(self) -> int:
        return int(self.redis.zcard(self.key))

    def __contains__(self, content_hash: object) -> bool:
        if not isinstance(content_hash, str):
            return False
        return self.redis.zscore(self.key, content_hash) is not None
