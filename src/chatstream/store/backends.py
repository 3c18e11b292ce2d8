"""Database backends for the persistent store."""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


class DatabaseBackend(ABC):
    """Minimal blocking database interface used by the store."""

    @abstractmethod
    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement and return the last inserted row id."""

    @abstractmethod
    def executescript(self, script: str) -> None:
        """Execute several statements at once."""

    @abstractmethod
    def fetchone(self, query: str, params: Sequence[Any] = ()) -> dict | None:
        """Fetch a single row as a dict."""

    @abstractmethod
    def fetchall(self, query: str, params: Sequence[Any] = ()) -> list[dict]:
        """Fetch all rows as dicts."""

    @abstractmethod
    def transaction(self):
        """Context manager grouping statements into one atomic unit."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""


class SQLiteBackend(DatabaseBackend):
    """SQLite backend.

    A single connection is shared by every executor thread; an RLock
    serializes statements so each single-record write is atomic and a
    ``transaction()`` block is never interleaved with another writer in this
    process. Other processes writing the same file resolve last-write-wins.
    """

    def __init__(self, db_path: str | Path = MEMORY_PATH, timeout: float = 5.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._in_transaction = False

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.db_path != MEMORY_PATH:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,  # autocommit; transaction() issues BEGIN
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != MEMORY_PATH:
                conn.execute("PRAGMA journal_mode = WAL")
            self._conn = conn
            logger.debug(f"Opened SQLite database: {self.db_path}")
        return self._conn

    def execute(self, query: str, params: Sequence[Any] = ()) -> int:
        with self._lock:
            cursor = self._get_conn().execute(query, tuple(params))
            return cursor.lastrowid or 0

    def executescript(self, script: str) -> None:
        with self._lock:
            self._get_conn().executescript(script)

    def fetchone(self, query: str, params: Sequence[Any] = ()) -> dict | None:
        with self._lock:
            row = self._get_conn().execute(query, tuple(params)).fetchone()
            return dict(row) if row is not None else None

    def fetchall(self, query: str, params: Sequence[Any] = ()) -> list[dict]:
        with self._lock:
            rows = self._get_conn().execute(query, tuple(params)).fetchall()
            return [dict(row) for row in rows]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group statements; commits on success, rolls back on error."""
        with self._lock:
            if self._in_transaction:
                # Nested blocks join the outer transaction
                yield
                return
            conn = self._get_conn()
            conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
            finally:
                self._in_transaction = False

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug(f"Closed SQLite database: {self.db_path}")


def create_backend(url: str | None = None, db_path: str | None = None) -> DatabaseBackend:
    """Create a backend from a database URL.

    Args:
        url: ``sqlite:///relative.db``, ``sqlite:////abs/path.db`` or
            ``sqlite:///:memory:``.
        db_path: SQLite path used when no URL is given.

    Raises:
        ValueError: If the URL scheme is not supported.
    """
    if url is None:
        return SQLiteBackend(db_path=db_path or MEMORY_PATH)

    prefix = "sqlite:///"
    if url.startswith(prefix):
        return SQLiteBackend(db_path=url[len(prefix):] or MEMORY_PATH)

    raise ValueError(f"Unsupported database URL: {url!r} (only sqlite:/// is supported)")
