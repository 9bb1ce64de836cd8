"""Durable store of submission lifecycle records."""

import json
import os
import sqlite3
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pap.core.errors import InvalidTransition, RecordNotFound
from pap.intake.hashing import validate_hash
from pap.submissions.models import FailureKind, SubmissionRecord, SubmissionState
from pap.submissions.retry import with_db_retry, with_transaction_retry
from pap.submissions.states import check_transition

_COLUMNS = (
    "hash, state, created_at, enqueued_at, updated_at, result, error, "
    "failure_kind, attempts"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionStore:
    """Stores one lifecycle record per package hash in SQLite.

    Normalized packages are kept next to the index so the dispatcher can
    re-materialize them. Every state change is a compare-and-set on the
    current state, so a writer that lost a race gets InvalidTransition
    instead of silently overwriting a newer state.

    The store does not serialize multi-step sequences on its own; callers
    that need a record change and a queue change to be one step go through
    the ledger.
    """

    def __init__(self, store_path: Path, max_attempts: int = 3):
        """Initialize submission store.

        Args:
            store_path: Base directory for the index and package files
            max_attempts: Dispatch attempt budget per submission
        """
        self.store_path = Path(store_path)
        self.max_attempts = max_attempts
        self.db_path = self.store_path / "index.db"
        self.packages_path = self.store_path / "packages"

        self._init_directories()
        self._init_database()

    def _init_directories(self) -> None:
        """Create necessary directory structure."""
        self.packages_path.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @with_db_retry()
    def _init_database(self) -> None:
        """Initialize SQLite database for the submission index."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS submissions (
                    hash TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    enqueued_at REAL NOT NULL,
                    updated_at TIMESTAMP,
                    result TEXT,
                    error TEXT,
                    failure_kind TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_submissions_state "
                "ON submissions (state, enqueued_at, hash)"
            )

    # Packages

    def _get_package_path(self, content_hash: str) -> Path:
        """Get path for a normalized package file.

        Raises:
            ValueError: If hash format is invalid
        """
        validate_hash(content_hash)
        return self.packages_path / content_hash[:2] / f"{content_hash}.pkg"

    def save_package(self, content_hash: str, normalized: bytes) -> Path:
        """Persist normalized package bytes, replacing any partial copy."""
        path = self._get_package_path(content_hash)
        if path.exists():
            return path
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(normalized)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path

    def load_package(self, content_hash: str) -> bytes:
        """Read the normalized bytes of a stored package.

        Raises:
            RecordNotFound: If no package was saved for the hash
        """
        path = self._get_package_path(content_hash)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise RecordNotFound(content_hash) from e

    # Records

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> SubmissionRecord:
        return SubmissionRecord(
            hash=row["hash"],
            state=SubmissionState(row["state"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            enqueued_at=row["enqueued_at"],
            updated_at=(
                datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None
            ),
            result=json.loads(row["result"]) if row["result"] is not None else None,
            error=row["error"],
            failure_kind=(
                FailureKind(row["failure_kind"]) if row["failure_kind"] else None
            ),
            attempts=row["attempts"],
        )

    @with_db_retry()
    def get(self, content_hash: str) -> Optional[SubmissionRecord]:
        """Get the record for a hash.

        Raises:
            ValueError: If hash format is invalid
        """
        validate_hash(content_hash)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM submissions WHERE hash = ?", (content_hash,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def require(self, content_hash: str) -> SubmissionRecord:
        record = self.get(content_hash)
        if record is None:
            raise RecordNotFound(content_hash)
        return record

    def has_record(self, content_hash: str) -> bool:
        return self.get(content_hash) is not None

    @with_transaction_retry
    def create(
        self,
        content_hash: str,
        enqueued_at: float,
        created_at: datetime | None = None,
    ) -> bool:
        """Create a Queued record unless one already exists.

        Returns:
            True if a record was created, False if the hash was already known
        """
        validate_hash(content_hash)
        created_at = created_at or _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO submissions
                (hash, state, created_at, enqueued_at, updated_at, attempts)
                VALUES (?, ?, ?, ?, ?, 0)
            """,
                (
                    content_hash,
                    SubmissionState.QUEUED.value,
                    created_at.isoformat(),
                    enqueued_at,
                    created_at.isoformat(),
                ),
            )
            return cursor.rowcount == 1

    @with_transaction_retry
    def _update(
        self,
        content_hash: str,
        target: SubmissionState,
        increment_attempts: bool = False,
        refund_attempt: bool = False,
        **fields: Any,
    ) -> SubmissionRecord:
        record = self.require(content_hash)
        check_transition(
            content_hash,
            record.state,
            target,
            attempts=record.attempts,
            max_attempts=self.max_attempts,
        )

        assignments = ["state = ?", "updated_at = ?"]
        values: list[Any] = [target.value, _utcnow().isoformat()]
        if increment_attempts:
            assignments.append("attempts = attempts + 1")
        elif refund_attempt:
            assignments.append("attempts = MAX(attempts - 1, 0)")
        for column, value in fields.items():
            assignments.append(f"{column} = ?")
            values.append(value)

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE submissions SET {', '.join(assignments)} "
                "WHERE hash = ? AND state = ?",
                (*values, content_hash, record.state.value),
            )
            if cursor.rowcount != 1:
                # Somebody else moved the record first
                current = self.get(content_hash)
                raise InvalidTransition(
                    content_hash,
                    current.state.value if current else "missing",
                    target.value,
                )
        return self.require(content_hash)

    def mark_running(self, content_hash: str) -> SubmissionRecord:
        """Queued -> Running, counting one dispatch attempt."""
        return self._update(
            content_hash, SubmissionState.RUNNING, increment_attempts=True
        )

    def mark_completed(self, content_hash: str, result: Any) -> SubmissionRecord:
        """Running -> Completed with the analysis payload."""
        return self._update(
            content_hash,
            SubmissionState.COMPLETED,
            result=json.dumps(result),
            error=None,
            failure_kind=None,
        )

    def mark_terminal_failed(self, content_hash: str, error: str) -> SubmissionRecord:
        """Running -> TerminalFailed with the analysis-reported error."""
        return self._update(
            content_hash,
            SubmissionState.TERMINAL_FAILED,
            error=error,
            failure_kind=FailureKind.ANALYSIS.value,
        )

    def mark_retryable_failed(self, content_hash: str, error: str) -> SubmissionRecord:
        """Running -> RetryableFailed after a timeout or crash."""
        return self._update(
            content_hash,
            SubmissionState.RETRYABLE_FAILED,
            error=error,
            failure_kind=FailureKind.INFRASTRUCTURE.value,
        )

    def mark_interrupted(self, content_hash: str, error: str) -> SubmissionRecord:
        """Running -> RetryableFailed for an attempt cut short by a restart.

        The attempt never produced an outcome, so it is not charged against
        the budget and the record can always be requeued.
        """
        return self._update(
            content_hash,
            SubmissionState.RETRYABLE_FAILED,
            refund_attempt=True,
            error=error,
            failure_kind=FailureKind.INFRASTRUCTURE.value,
        )

    def mark_requeued(self, content_hash: str) -> SubmissionRecord:
        """RetryableFailed -> Queued while attempts are left.

        ``enqueued_at`` is left untouched so the job keeps its place in line.
        """
        return self._update(
            content_hash,
            SubmissionState.QUEUED,
            error=None,
            failure_kind=None,
        )

    @with_transaction_retry
    def discard_unstarted(self, content_hash: str) -> bool:
        """Delete a Queued record that was never dispatched.

        Only used to undo an admission whose enqueue step failed.
        """
        validate_hash(content_hash)
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM submissions WHERE hash = ? AND state = ? AND attempts = 0",
                (content_hash, SubmissionState.QUEUED.value),
            )
            return cursor.rowcount == 1

    def has_attempts_left(self, record: SubmissionRecord) -> bool:
        return record.attempts < self.max_attempts

    @with_db_retry()
    def list_records(
        self, state: SubmissionState | None = None
    ) -> list[SubmissionRecord]:
        """List records in FIFO order, optionally filtered by state."""
        query = f"SELECT {_COLUMNS} FROM submissions"
        params: tuple[Any, ...] = ()
        if state is not None:
            query += " WHERE state = ?"
            params = (state.value,)
        query += " ORDER BY enqueued_at, hash"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    @with_db_retry()
    def count_by_state(self) -> dict[str, int]:
        """Count records per state; every state is present in the result."""
        counts = {state.value: 0 for state in SubmissionState}
        with self._connect() as conn:
            for row in conn.execute(
                "SELECT state, COUNT(*) AS n FROM submissions GROUP BY state"
            ):
                counts[row["state"]] = row["n"]
        return counts

    def get_statistics(self) -> dict[str, Any]:
        """Get statistics about stored submissions.

        Returns:
            Dictionary with statistics
        """
        counts = self.count_by_state()
        store_size = sum(f.stat().st_size for f in self.packages_path.rglob("*.pkg"))
        return {
            "total_submissions": sum(counts.values()),
            "by_state": counts,
            "package_bytes": store_size,
        }
