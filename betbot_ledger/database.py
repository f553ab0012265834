"""SQLite persistence layer for betbot-ledger.

Every repository method is async and hands a synchronous unit of work to
``LedgerDatabase.run``, which executes it in the default executor.
A new connection is opened per unit of work (WAL mode, busy timeout taken
from the caller, Row factory, foreign keys on). Connections run in
autocommit mode so that every write, DDL included, happens inside an explicit
``BEGIN IMMEDIATE`` ... ``COMMIT`` owned by ``transaction()``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from .errors import StoreTimeoutError

T = TypeVar("T")


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


class LedgerDatabase:
    """Connection and transaction policy for the ledger store."""

    def __init__(self, db_path: str, logger: logging.Logger, timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._logger = logger
        self._timeout = timeout

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def timeout(self) -> float:
        return self._timeout

    def _get_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings."""
        try:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise sqlite3.OperationalError(f"unable to create database directory: {e}") from e
        conn = sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={int(self._timeout * 1000)}")
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error:
            conn.close()
            raise
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _lock_errors(self) -> Iterator[None]:
        """Surface lock waits that outlived the timeout as StoreTimeoutError."""
        try:
            yield
        except sqlite3.OperationalError as e:
            if _is_lock_error(e):
                raise StoreTimeoutError(
                    f"Store locked for more than {self._timeout:g}s: {self._db_path}"
                ) from e
            raise

    # ══════════════════════════════════════════════════════════
    #  Units of work
    # ══════════════════════════════════════════════════════════

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """All-or-nothing write scope.

        Takes the write lock up front (BEGIN IMMEDIATE) so two writers never
        interleave their read-then-write steps. Any exception raised inside the
        block rolls the whole transaction back and propagates.
        """
        with self._lock_errors():
            conn = self._get_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        """Read-only scope; WAL readers never block the writer."""
        with self._lock_errors():
            conn = self._get_connection()
            try:
                yield conn
            finally:
                conn.close()

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a synchronous unit of work off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    # ══════════════════════════════════════════════════════════
    #  Schema probes
    # ══════════════════════════════════════════════════════════

    @staticmethod
    def table_exists(conn: sqlite3.Connection, table: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        ).fetchone()
        return row is not None

    @staticmethod
    def column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
        rows = conn.execute(f'PRAGMA table_info("{table}")').fetchall()
        return any(row["name"] == column for row in rows)
