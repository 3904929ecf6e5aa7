"""Shared SQLite connection with re-entrant, all-or-nothing transactions."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class Database:
    """
    One SQLite connection shared by the ledger, task store and OTP store.

    The connection runs in autocommit mode. ``transaction()`` opens a
    ``BEGIN IMMEDIATE`` block that commits on success and rolls back on any
    exception; nested calls join the outermost block, so stores can be
    composed into a single atomic unit by the caller.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements atomically, joining an open transaction."""
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._db.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self._db
            except BaseException:
                self._depth -= 1
                if outermost:
                    with contextlib.suppress(sqlite3.Error):
                        self._db.execute("ROLLBACK")
                raise
            self._depth -= 1
            if outermost:
                self._db.execute("COMMIT")

    def init_schema(self, script: str) -> None:
        """Apply idempotent ``CREATE ... IF NOT EXISTS`` statements."""
        with self._lock:
            self._db.executescript(script)

    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Execute a write statement and return the affected row count."""
        with self._lock:
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    def fetch_one(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            row: sqlite3.Row | None = self._db.execute(query, params).fetchone()
        return row

    def fetch_all(self, query: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            rows: list[sqlite3.Row] = self._db.execute(query, params).fetchall()
        return rows

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
