"""Shared test fixtures for betbot-ledger."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import AsyncGenerator, Iterable

import pytest
import pytest_asyncio

from betbot_ledger.accounts import AccountRepository
from betbot_ledger.config import LedgerConfig
from betbot_ledger.database import LedgerDatabase
from betbot_ledger.ledger import LedgerRepository
from betbot_ledger.migrations import SchemaManager
from betbot_ledger.reconciler import Reconciler
from betbot_ledger.roster import RosterEntry, StaticRoster


# ── Minimal config dict matching LedgerConfig schema ─────────

def make_config_dict(tmp_path: Path, **overrides) -> dict:
    """Build a valid config dict with test paths under tmp_path."""
    base = {
        "database": {"path": str(tmp_path / "data" / "betting.db"), "timeout_seconds": 5},
        "reconciliation": {
            "start_balance": 1000,
            "progress_every": 10,
            "max_failures_reported": 3,
            "fail_on_account_errors": False,
        },
        "discord": {
            "token": "test-token",
            "api_base": "https://discord.test/api/v10",
            "guild_ids": [],
            "page_size": 2,
        },
        "snapshots": {"directory": str(tmp_path / "backups"), "prefix": "betting", "retention": 10},
        "schedule": {"reconcile_cron": "0 * * * *", "snapshot_cron": "30 3 * * *"},
    }
    base.update(overrides)
    return base


def make_roster(*entries: tuple) -> StaticRoster:
    """make_roster(("A", "Alice"), ("B", "Bot1", True))"""
    return StaticRoster(RosterEntry(*e) for e in entries)


def query(db_path: str, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    """Direct read against the store, bypassing the repositories."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        return conn.execute(sql, tuple(params)).fetchall()
    finally:
        conn.close()


@pytest.fixture
def sample_config_dict(tmp_path: Path) -> dict:
    return make_config_dict(tmp_path)


@pytest.fixture
def sample_config(sample_config_dict: dict) -> LedgerConfig:
    return LedgerConfig(**sample_config_dict)


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_ledger.db")


@pytest.fixture
def raw_database(tmp_db_path: str) -> LedgerDatabase:
    """A store with no schema applied."""
    return LedgerDatabase(tmp_db_path, logging.getLogger("test"), timeout=5)


@pytest_asyncio.fixture
async def database(raw_database: LedgerDatabase) -> AsyncGenerator[LedgerDatabase, None]:
    """Provide a fully migrated database in a temp file."""
    await SchemaManager(raw_database, logging.getLogger("test")).apply_migrations()
    yield raw_database


@pytest.fixture
def ledger(database: LedgerDatabase) -> LedgerRepository:
    return LedgerRepository(database, logging.getLogger("test"))


@pytest.fixture
def accounts(database: LedgerDatabase, ledger: LedgerRepository) -> AccountRepository:
    return AccountRepository(database, ledger, logging.getLogger("test"))


@pytest.fixture
def reconciler(accounts: AccountRepository) -> Reconciler:
    return Reconciler(accounts, logging.getLogger("test"), progress_every=2)
