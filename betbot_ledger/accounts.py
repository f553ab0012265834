"""Account repository.

An account is created exactly once, funded by an ``initial-grant`` ledger
entry written in the same transaction. Afterwards only its display name is
ever changed here; balance moves go through LedgerRepository.
"""

from __future__ import annotations

import logging
import sqlite3

from .database import LedgerDatabase
from .errors import AccountNotFoundError, DuplicateAccountError
from .ledger import EntryKind, LedgerRepository


class AccountRepository:
    """Account lookups, creation and identity updates."""

    def __init__(
        self,
        database: LedgerDatabase,
        ledger: LedgerRepository,
        logger: logging.Logger,
    ) -> None:
        self._db = database
        self._ledger = ledger
        self._logger = logger

    async def exists(self, external_id: str) -> bool:
        def _sync() -> bool:
            with self._db.reading() as conn:
                row = conn.execute(
                    "SELECT 1 FROM accounts WHERE id = ? LIMIT 1", (external_id,)
                ).fetchone()
                return row is not None

        return await self._db.run(_sync)

    async def get(self, external_id: str) -> dict | None:
        """Return account row as dict, or None if not exists."""

        def _sync() -> dict | None:
            with self._db.reading() as conn:
                row = conn.execute(
                    "SELECT * FROM accounts WHERE id = ?", (external_id,)
                ).fetchone()
                return dict(row) if row else None

        return await self._db.run(_sync)

    async def create_with_initial_balance(
        self, external_id: str, display_name: str, initial_balance: int
    ) -> str:
        """Create the account and its initial-grant entry atomically.

        The row starts at balance 0 and the grant is applied through the
        ledger, so the balance is never set without a matching entry.
        Raises DuplicateAccountError if the id is already taken, including
        when a concurrent run created it first.
        """

        def _sync() -> str:
            with self._db.transaction() as conn:
                try:
                    conn.execute(
                        "INSERT INTO accounts (id, display_name, balance) VALUES (?, ?, 0)",
                        (external_id, display_name),
                    )
                except sqlite3.IntegrityError as e:
                    raise DuplicateAccountError(external_id) from e
                self._ledger.append_in(conn, external_id, initial_balance, EntryKind.INITIAL_GRANT)
                return external_id

        account_id = await self._db.run(_sync)
        self._logger.info("Created account %s (%s) with %d", account_id, display_name, initial_balance)
        return account_id

    async def update_display_name(self, external_id: str, new_display_name: str) -> None:
        """Overwrite the display name. Balance is never touched."""

        def _sync() -> None:
            with self._db.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE accounts SET display_name = ? WHERE id = ?",
                    (new_display_name, external_id),
                )
                if cursor.rowcount == 0:
                    raise AccountNotFoundError(external_id)

        await self._db.run(_sync)

    async def count(self) -> int:
        def _sync() -> int:
            with self._db.reading() as conn:
                row = conn.execute("SELECT COUNT(*) AS cnt FROM accounts").fetchone()
                return row["cnt"]

        return await self._db.run(_sync)

    async def leaderboard(self, limit: int = 5) -> list[dict]:
        """Top accounts by balance."""

        def _sync() -> list[dict]:
            with self._db.reading() as conn:
                rows = conn.execute(
                    "SELECT id, display_name, balance FROM accounts "
                    "ORDER BY balance DESC, id LIMIT ?",
                    (limit,),
                ).fetchall()
                return [dict(r) for r in rows]

        return await self._db.run(_sync)
