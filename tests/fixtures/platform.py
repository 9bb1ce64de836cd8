"""Platform fixtures for tests."""

import hashlib
import threading
from collections import defaultdict, deque
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Union

import pytest

from pap.core.config import Settings
from pap.dispatch.sandbox import RunResult
from pap.intake.hashing import hash_tree
from pap.intake.models import PackageTree
from pap.pipeline import Platform, build_platform, reset_platform, set_platform
from pap.queue.ledger import Ledger
from pap.queue.memory import MemoryJobQueue
from pap.submissions.store import SubmissionStore

ScriptedResult = Union[RunResult, Callable[[PackageTree, float], RunResult]]


def make_hash(seed: str) -> str:
    """A well-formed package hash derived from a short seed."""
    return hashlib.sha3_256(seed.encode()).hexdigest()


class FakeRunner:
    """Sandbox runner that replays scripted results per package hash.

    Unscripted packages succeed with ``default``. The runner also records
    every call and notices if one hash is ever run twice at the same time.
    """

    def __init__(self, default: RunResult | None = None) -> None:
        self.default = default or RunResult.success({"score": 100})
        self.calls: list[str] = []
        self.overlaps: list[str] = []
        self.max_concurrency = 0
        self._scripts: dict[str, deque[ScriptedResult]] = defaultdict(deque)
        self._active: set[str] = set()
        self._lock = threading.Lock()
        self.release = threading.Event()
        self.release.set()

    def script(self, content_hash: str, *results: ScriptedResult) -> None:
        self._scripts[content_hash].extend(results)

    def run(self, tree: PackageTree, deadline: float) -> RunResult:
        content_hash = hash_tree(tree)
        with self._lock:
            self.calls.append(content_hash)
            if content_hash in self._active:
                self.overlaps.append(content_hash)
            self._active.add(content_hash)
            self.max_concurrency = max(self.max_concurrency, len(self._active))
            scripted = (
                self._scripts[content_hash].popleft()
                if self._scripts[content_hash]
                else self.default
            )
        try:
            self.release.wait(timeout=5)
            if callable(scripted):
                return scripted(tree, deadline)
            return scripted
        finally:
            with self._lock:
                self._active.discard(content_hash)

    def calls_for(self, content_hash: str) -> int:
        with self._lock:
            return self.calls.count(content_hash)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary store with fast polling."""
    return Settings(
        _env_file=None,
        STORE_PATH=tmp_path / "store",
        LEDGER_BACKEND="memory",
        LEDGER_LOCK_TIMEOUT=2.0,
        SANDBOX_SLOTS=2,
        SANDBOX_TIMEOUT_SECONDS=5.0,
        MAX_ATTEMPTS=3,
        DISPATCH_POLL_INTERVAL=0.01,
        DISPATCHER_ENABLED=False,
    )


@pytest.fixture
def store(tmp_path: Path) -> SubmissionStore:
    """Provide an empty submission store."""
    return SubmissionStore(tmp_path / "store", max_attempts=3)


@pytest.fixture
def memory_queue() -> MemoryJobQueue:
    return MemoryJobQueue()


@pytest.fixture
def ledger(store: SubmissionStore, memory_queue: MemoryJobQueue) -> Ledger:
    """Provide a ledger over the temporary store and an in-memory queue."""
    return Ledger(store, memory_queue, lock_timeout=2.0)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def platform(
    test_settings: Settings, fake_runner: FakeRunner
) -> Generator[Platform, None, None]:
    """Provide a fully wired platform installed as the process default."""
    reset_platform()
    built = build_platform(test_settings, runner=fake_runner)
    set_platform(built)

    yield built

    reset_platform()
