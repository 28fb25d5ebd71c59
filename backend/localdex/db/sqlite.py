"""SQLite connection handling for the durable stores.

Each thread gets its own connection; WAL mode lets the search path read while
a sync writes. The schema lives in ``schema.sql`` next to this module and is
stamped with ``PRAGMA user_version``.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

from localdex.core.errors import LocaldexError
from localdex.core.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1
SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_PRAGMAS = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "foreign_keys": "ON",
    "temp_store": "MEMORY",
    "busy_timeout": "5000",
}


class SchemaVersionError(LocaldexError):
    """The database was written by a newer localdex."""


class SQLiteDatabase:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path).expanduser()
        self._local = threading.local()
        self._open: list[sqlite3.Connection] = []
        self._lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        for name, value in _PRAGMAS.items():
            conn.execute(f"PRAGMA {name}={value}")
        self._local.conn = conn
        with self._lock:
            self._open.append(conn)
        return conn

    def close(self) -> None:
        """Close every thread's connection; safe to call more than once."""
        with self._lock:
            conns, self._open = self._open, []
        for conn in conns:
            conn.close()
        self._local = threading.local()

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        return self.connect().execute(sql, params or [])

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self.connect()
        cur = conn.cursor()
        try:
            yield cur
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            cur.close()

    def schema_version(self) -> int:
        return int(self.query_one("PRAGMA user_version")[0])

    def ensure_schema(self) -> None:
        current = self.schema_version()
        if current > SCHEMA_VERSION:
            raise SchemaVersionError(
                f"{self.db_path} has schema version {current}; this build supports up to {SCHEMA_VERSION}"
            )
        conn = self.connect()
        conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
        if current < SCHEMA_VERSION:
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            conn.commit()
            logger.info("Initialised schema v%s at %s", SCHEMA_VERSION, self.db_path)


def iter_rows(cursor: sqlite3.Cursor, batch: int = 256) -> Iterator[sqlite3.Row]:
    """Yield rows from ``cursor`` in batches of ``batch`` without materialising the result."""
    while True:
        rows = cursor.fetchmany(batch)
        if not rows:
            return
        yield from rows


__all__ = ["SCHEMA_VERSION", "SQLiteDatabase", "SchemaVersionError", "iter_rows"]
