"""Persistence hooks for the pattern store.

The store itself is in-memory; a backend lets it survive restarts. Backends
are synchronous and are called from worker threads by the store.
"""

import sqlite3
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from sentinel_engine.errors import PatternStoreCorruptError
from sentinel_engine.logging import get_logger
from sentinel_engine.models import PatternEntry, PatternFamily, PatternState

log = get_logger("sentinel_engine.learning.backends")


class PatternBackend(Protocol):
    """Load/save hook for persisted pattern entries."""

    def load(self) -> list[PatternEntry]:
        """Return every persisted entry.

        Raises:
            PatternStoreCorruptError: If persisted state cannot be read.
        """
        ...

    def save(self, entries: Iterable[PatternEntry]) -> None:
        """Replace persisted state with *entries*."""
        ...


class InMemoryPatternBackend:
    """Backend that keeps serialised entries in process memory."""

    def __init__(self) -> None:
        self._rows: list[dict[str, Any]] = []

    def load(self) -> list[PatternEntry]:
        try:
            return [PatternEntry.from_dict(row) for row in self._rows]
        except (KeyError, TypeError, ValueError) as e:
            raise PatternStoreCorruptError(f"invalid pattern row: {e}") from e

    def save(self, entries: Iterable[PatternEntry]) -> None:
        self._rows = [entry.to_dict() for entry in entries]


class SQLitePatternBackend:
    """SQLite persistence for learned patterns."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS patterns (
        signature TEXT PRIMARY KEY,
        family TEXT NOT NULL,
        confidence REAL NOT NULL,
        anchor_confidence REAL NOT NULL,
        occurrences INTEGER NOT NULL DEFAULT 1,
        first_seen DATETIME NOT NULL,
        last_seen DATETIME NOT NULL,
        state TEXT NOT NULL,
        feedback_bias INTEGER NOT NULL DEFAULT 0
    );

    CREATE INDEX IF NOT EXISTS idx_patterns_last_seen ON patterns(last_seen);
    """

    def __init__(self, db_path: str = "data/patterns.db"):
        """Initialize the pattern backend.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with the schema in place."""
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        try:
            conn.executescript(self.SCHEMA)
            yield conn
        finally:
            conn.close()

    def load(self) -> list[PatternEntry]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute("SELECT * FROM patterns").fetchall()
            entries = [self._row_to_entry(row) for row in rows]
        except (sqlite3.DatabaseError, KeyError, TypeError, ValueError) as e:
            raise PatternStoreCorruptError(f"cannot load patterns from {self._db_path}: {e}") from e

        log.info("patterns_loaded", count=len(entries), db_path=str(self._db_path))
        return entries

    def save(self, entries: Iterable[PatternEntry]) -> None:
        rows = [
            (
                e.signature,
                e.family.value,
                e.confidence,
                e.anchor_confidence,
                e.occurrences,
                e.first_seen.isoformat(),
                e.last_seen.isoformat(),
                e.state.value,
                e.feedback_bias,
            )
            for e in entries
            if e.state != PatternState.EVICTED
        ]
        with self._get_connection() as conn:
            conn.execute("DELETE FROM patterns")
            conn.executemany(
                """
                INSERT INTO patterns
                    (signature, family, confidence, anchor_confidence, occurrences,
                     first_seen, last_seen, state, feedback_bias)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
        log.debug("patterns_saved", count=len(rows))

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> PatternEntry:
        confidence = float(row["confidence"])
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence out of range: {confidence}")
        return PatternEntry(
            signature=row["signature"],
            family=PatternFamily(row["family"]),
            confidence=confidence,
            occurrences=int(row["occurrences"]),
            first_seen=datetime.fromisoformat(row["first_seen"]),
            last_seen=datetime.fromisoformat(row["last_seen"]),
            state=PatternState(row["state"]),
            anchor_confidence=float(row["anchor_confidence"]),
            feedback_bias=int(row["feedback_bias"]),
        )
