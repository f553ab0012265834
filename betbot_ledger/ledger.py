"""Ledger repository — the append-only record of balance changes.

An entry is written together with the matching change to the account's
cached balance, in the same transaction, so that for every account
``balance == SUM(ledger_entries.amount)`` holds at every commit.
Entries are never updated or deleted.
"""

from __future__ import annotations

import logging
import sqlite3
from enum import Enum

from .database import LedgerDatabase
from .errors import AccountNotFoundError


class EntryKind(str, Enum):
    INITIAL_GRANT = "initial-grant"
    ADJUSTMENT = "adjustment"


class LedgerRepository:
    """Append and inspect ledger entries."""

    def __init__(self, database: LedgerDatabase, logger: logging.Logger) -> None:
        self._db = database
        self._logger = logger

    # ══════════════════════════════════════════════════════════
    #  Writes
    # ══════════════════════════════════════════════════════════

    def append_in(
        self,
        conn: sqlite3.Connection,
        account_id: str,
        amount: int,
        kind: EntryKind | str,
        reference_id: int | None = None,
    ) -> int:
        """Apply ``amount`` to the balance and log it, inside the caller's open transaction.

        Returns the new entry id. Raises AccountNotFoundError if the account
        does not exist; the caller's transaction is then rolled back whole.
        """
        cursor = conn.execute(
            "UPDATE accounts SET balance = balance + ? WHERE id = ?",
            (amount, account_id),
        )
        if cursor.rowcount == 0:
            raise AccountNotFoundError(account_id)
        cursor = conn.execute(
            "INSERT INTO ledger_entries (account_id, amount, kind, reference_id) "
            "VALUES (?, ?, ?, ?)",
            (account_id, amount, kind.value if isinstance(kind, EntryKind) else kind, reference_id),
        )
        return cursor.lastrowid

    async def append_entry(
        self,
        account_id: str,
        amount: int,
        kind: EntryKind | str = EntryKind.ADJUSTMENT,
        reference_id: int | None = None,
    ) -> int:
        """Atomically adjust an account's balance and record the entry. Returns entry id."""

        def _sync() -> int:
            with self._db.transaction() as conn:
                return self.append_in(conn, account_id, amount, kind, reference_id)

        entry_id = await self._db.run(_sync)
        self._logger.debug("Ledger entry %d: %s %+d (%s)", entry_id, account_id, amount, kind)
        return entry_id

    # ══════════════════════════════════════════════════════════
    #  Reads
    # ══════════════════════════════════════════════════════════

    async def sum_for(self, account_id: str) -> int:
        """SUM(amount) over an account's entries, 0 if it has none."""

        def _sync() -> int:
            with self._db.reading() as conn:
                row = conn.execute(
                    "SELECT COALESCE(SUM(amount), 0) AS total FROM ledger_entries WHERE account_id = ?",
                    (account_id,),
                ).fetchone()
                return row["total"]

        return await self._db.run(_sync)

    async def history(self, account_id: str, limit: int = 10) -> list[dict]:
        """Most recent entries first."""

        def _sync() -> list[dict]:
            with self._db.reading() as conn:
                rows = conn.execute(
                    "SELECT * FROM ledger_entries WHERE account_id = ? ORDER BY id DESC LIMIT ?",
                    (account_id, limit),
                ).fetchall()
                return [dict(r) for r in rows]

        return await self._db.run(_sync)

    async def find_drift(self) -> list[dict]:
        """Accounts whose cached balance disagrees with their ledger sum."""

        def _sync() -> list[dict]:
            with self._db.reading() as conn:
                rows = conn.execute("""
                    SELECT a.id, a.display_name, a.balance,
                           COALESCE(SUM(e.amount), 0) AS ledger_sum
                    FROM accounts a
                    LEFT JOIN ledger_entries e ON e.account_id = a.id
                    GROUP BY a.id
                    HAVING a.balance != COALESCE(SUM(e.amount), 0)
                    ORDER BY a.id
                """).fetchall()
                return [dict(r) for r in rows]

        return await self._db.run(_sync)
