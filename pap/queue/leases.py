"""Attempt leases: proof that a Running record still has a live attempt.

A slot takes a lease when it claims a job, renews it while the sandbox
runs and gives it back when the outcome is written. Recovery only reclaims
Running records whose lease is gone, so a job that another slot or another
worker process is still executing is never requeued under it.
"""

import os
import socket
import threading
import time
from typing import Protocol

import redis


def default_owner() -> str:
    """Identify this process in lease values and logs."""
    return f"{socket.gethostname()}:{os.getpid()}"


class AttemptLeases(Protocol):
    """Time-limited ownership of running hashes."""

    ttl: float

    def grant(self, content_hash: str) -> None: ...

    def renew(self, content_hash: str) -> bool: ...

    def release(self, content_hash: str) -> None: ...

    def is_live(self, content_hash: str) -> bool: ...


class MemoryAttemptLeases:
    """Process-local leases for the in-memory backend.

    A fresh process starts with no leases, so every Running record left by
    a previous process is reclaimable at startup.
    """

    def __init__(self, ttl: float = 30.0) -> None:
        self.ttl = ttl
        self._lock = threading.Lock()
        self._expires: dict[str, float] = {}

    def grant(self, content_hash: str) -> None:
        with self._lock:
            self._expires[content_hash] = time.monotonic() + self.ttl

    def renew(self, content_hash: str) -> bool:
        with self._lock:
            if content_hash not in self._expires:
                return False
            self._expires[content_hash] = time.monotonic() + self.ttl
            return True

    def release(self, content_hash: str) -> None:
        with self._lock:
            self._expires.pop(content_hash, None)

    def is_live(self, content_hash: str) -> bool:
        with self._lock:
            expires = self._expires.get(content_hash)
            return expires is not None and expires > time.monotonic()


class RedisAttemptLeases:
    """Leases shared by every process using the same Redis.

    Each lease is a key holding the owner id with a TTL, so the lease of a
    worker that died without releasing it simply runs out.
    """

    def __init__(
        self,
        redis_conn: redis.Redis,
        prefix: str = "pap:lease:",
        ttl: float = 30.0,
        owner: str | None = None,
    ) -> None:
        self.redis = redis_conn
        self.prefix = prefix
        self.ttl = ttl
        self.owner = owner or default_owner()

    def _key(self, content_hash: str) -> str:
        return f"{self.prefix}{content_hash}"

    def _owned(self, content_hash: str) -> bool:
        value = self.redis.get(self._key(content_hash))
        if isinstance(value, bytes):
            value = value.decode()
        return value == self.owner

    def grant(self, content_hash: str) -> None:
        self.redis.set(self._key(content_hash), self.owner, px=int(self.ttl * 1000))

    def renew(self, content_hash: str) -> bool:
        if not self._owned(content_hash):
            return False
        return bool(self.redis.pexpire(self._key(content_hash), int(self.ttl * 1000)))

    def release(self, content_hash: str) -> None:
        # Callers hold the ledger lock, so get-then-delete cannot interleave
        if self._owned(content_hash):
            self.redis.delete(self._key(content_hash))

    def is_live(self, content_hash: str) -> bool:
        return bool(self.redis.exists(self._key(content_hash)))
