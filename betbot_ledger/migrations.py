"""Schema evolution for the ledger store.

Each step adds exactly one table or one column; nothing is ever renamed or
dropped. Applied steps are recorded in ``schema_migrations``. A step whose
target already exists (a store upgraded by the old maintenance scripts) is
recorded without running its DDL.

One ``apply_migrations()`` call is one transaction: if any step fails, every
step of that call is rolled back and ``SchemaError`` is raised.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from .database import LedgerDatabase
from .errors import SchemaError, StoreTimeoutError


@dataclass(frozen=True)
class MigrationStep:
    """One additive change. ``column`` is None for a table step."""

    name: str
    table: str
    ddl: str
    column: str | None = None
    indexes: tuple[str, ...] = ()


def _add_column(table: str, column: str, decl: str) -> MigrationStep:
    return MigrationStep(
        name=f"add_{table}_{column}",
        table=table,
        column=column,
        ddl=f"ALTER TABLE {table} ADD COLUMN {column} {decl}",
    )


MIGRATIONS: list[MigrationStep] = [
    MigrationStep(
        name="create_accounts_table",
        table="accounts",
        ddl="""
            CREATE TABLE accounts (
                id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                balance INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """,
    ),
    MigrationStep(
        name="create_ledger_entries_table",
        table="ledger_entries",
        ddl="""
            CREATE TABLE ledger_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id TEXT NOT NULL REFERENCES accounts(id),
                amount INTEGER NOT NULL,
                kind TEXT NOT NULL,
                reference_id INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """,
        indexes=(
            "CREATE INDEX IF NOT EXISTS idx_ledger_entries_account "
            "ON ledger_entries(account_id, id)",
        ),
    ),
    MigrationStep(
        name="create_matches_table",
        table="matches",
        ddl="""
            CREATE TABLE matches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                status TEXT NOT NULL DEFAULT 'none',
                team1 TEXT,
                team2 TEXT,
                winner TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """,
    ),
    _add_column("matches", "match_type", "TEXT DEFAULT 'team'"),
    _add_column("matches", "player1_id", "TEXT"),
    _add_column("matches", "player2_id", "TEXT"),
    _add_column("matches", "game_type", "TEXT"),
    _add_column("matches", "event_title", "TEXT"),
    _add_column("matches", "event_description", "TEXT"),
    _add_column("matches", "participant_id", "TEXT"),
    _add_column("matches", "started_at", "TIMESTAMP"),
]


class SchemaManager:
    """Applies MIGRATIONS to a LedgerDatabase exactly once each."""

    def __init__(
        self,
        database: LedgerDatabase,
        logger: logging.Logger,
        steps: list[MigrationStep] | None = None,
    ) -> None:
        self._db = database
        self._logger = logger
        self._steps = steps if steps is not None else MIGRATIONS

    async def apply_migrations(self) -> int:
        """Apply every pending step. Returns how many steps ran DDL."""
        try:
            applied = await self._db.run(self._apply_sync)
        except (sqlite3.Error, StoreTimeoutError) as e:
            self._logger.error("Schema migration failed, rolled back: %s", e)
            raise SchemaError(f"Schema migration failed: {e}") from e
        if applied:
            self._logger.info("Applied %d schema migration step(s)", applied)
        else:
            self._logger.info("Schema up to date")
        return applied

    async def applied_steps(self) -> list[str]:
        """Names recorded in schema_migrations, in application order."""

        def _sync() -> list[str]:
            with self._db.reading() as conn:
                if not self._db.table_exists(conn, "schema_migrations"):
                    return []
                rows = conn.execute(
                    "SELECT name FROM schema_migrations ORDER BY rowid"
                ).fetchall()
                return [row["name"] for row in rows]

        try:
            return await self._db.run(_sync)
        except (sqlite3.Error, StoreTimeoutError) as e:
            raise SchemaError(f"Cannot read schema version: {e}") from e

    def pending(self, applied: list[str]) -> list[str]:
        done = set(applied)
        return [step.name for step in self._steps if step.name not in done]

    def _apply_sync(self) -> int:
        with self._db.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    name TEXT PRIMARY KEY,
                    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            recorded = {
                row["name"] for row in conn.execute("SELECT name FROM schema_migrations")
            }
            applied = 0
            for step in self._steps:
                if step.name in recorded:
                    continue
                if self._target_exists(conn, step):
                    self._logger.info("Migration %s: target already present, recording", step.name)
                else:
                    self._logger.info("Applying migration: %s", step.name)
                    conn.execute(step.ddl)
                    for index_ddl in step.indexes:
                        conn.execute(index_ddl)
                    applied += 1
                conn.execute("INSERT INTO schema_migrations (name) VALUES (?)", (step.name,))
            return applied

    def _target_exists(self, conn: sqlite3.Connection, step: MigrationStep) -> bool:
        if step.column is None:
            return self._db.table_exists(conn, step.table)
        return self._db.column_exists(conn, step.table, step.column)
