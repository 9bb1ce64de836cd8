"""FIFO job queue backends."""

from pap.queue.leases import AttemptLeases, MemoryAttemptLeases, RedisAttemptLeases
from pap.queue.memory import MemoryJobQueue
from pap.queue.models import JobQueue, QueueEntry
from pap.queue.redis_queue import RedisJobQueue

__all__ = [
    "AttemptLeases",
    "JobQueue",
    "MemoryAttemptLeases",
    "MemoryJobQueue",
    "QueueEntry",
    "RedisAttemptLeases",
    "RedisJobQueue",
]
