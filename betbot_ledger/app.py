"""Application orchestrator — LedgerApp.

Wires config → store → schema → repositories → reconciler/snapshots.
Every public command is an independent unit of work returning a process
exit code: 0 on success, 1 when a fatal failure occurred.
"""

from __future__ import annotations

import asyncio
import logging

from .accounts import AccountRepository
from .config import LedgerConfig
from .database import LedgerDatabase
from .errors import LedgerError, RosterUnavailableError, SchemaError, SnapshotError
from .ledger import LedgerRepository
from .migrations import SchemaManager
from .reconciler import Reconciler
from .roster import DiscordRoster, RosterSource
from .scheduler import Scheduler
from .snapshots import SnapshotManager


class LedgerApp:
    """Top-level application orchestrator."""

    def __init__(self, config: LedgerConfig) -> None:
        self.config = config
        self.logger = logging.getLogger("ledger")

        self.db = LedgerDatabase(
            config.database.path,
            logging.getLogger("ledger.db"),
            timeout=config.database.timeout_seconds,
        )
        self.schema = SchemaManager(self.db, logging.getLogger("ledger.migrations"))
        self.ledger = LedgerRepository(self.db, logging.getLogger("ledger.ledger"))
        self.accounts = AccountRepository(self.db, self.ledger, logging.getLogger("ledger.accounts"))
        self.reconciler = Reconciler(
            self.accounts,
            logging.getLogger("ledger.reconcile"),
            progress_every=config.reconciliation.progress_every,
        )
        self.snapshots = SnapshotManager(
            config.snapshots, config.database.path, logging.getLogger("ledger.snapshots"),
        )
        self._schema_ready = False

    async def ensure_schema(self) -> int:
        """Migrate once per process; repositories must not run before this."""
        if self._schema_ready:
            return 0
        applied = await self.schema.apply_migrations()
        self._schema_ready = True
        return applied

    # ══════════════════════════════════════════════════════════
    #  Commands
    # ══════════════════════════════════════════════════════════

    async def migrate(self) -> int:
        try:
            applied = await self.ensure_schema()
        except SchemaError as e:
            self.logger.error("%s", e)
            return 1
        print(f"Database schema update completed: {applied} step(s) applied")
        return 0

    async def reconcile(
        self,
        roster: RosterSource | None = None,
        names_only: bool = False,
        start_balance: int | None = None,
    ) -> int:
        """Sync accounts with the roster (Discord unless one is given)."""
        try:
            await self.ensure_schema()
        except SchemaError as e:
            self.logger.error("Not reconciling against a stale schema: %s", e)
            return 1

        rc = self.config.reconciliation
        if start_balance is None:
            start_balance = rc.start_balance

        discord_roster: DiscordRoster | None = None
        if roster is None:
            discord_roster = DiscordRoster(self.config.discord, logging.getLogger("ledger.roster"))
            roster = discord_roster
        try:
            if discord_roster:
                await discord_roster.start()
            report = await self.reconciler.reconcile(
                roster.entries(), start_balance, create_missing=not names_only,
            )
        except RosterUnavailableError as e:
            self.logger.error("Reconciliation aborted: %s", e)
            if e.report is not None:
                for line in e.report.summary_lines(rc.max_failures_reported, title="Progress before abort:"):
                    print(line)
            print(f"Reconciliation aborted: {e}")
            return 1
        finally:
            if discord_roster:
                await discord_roster.stop()

        report.group_failures = list(roster.group_failures)
        for line in report.summary_lines(rc.max_failures_reported):
            print(line)
        if not report.ok and rc.fail_on_account_errors:
            return 1
        return 0

    async def snapshot(self) -> int:
        loop = asyncio.get_running_loop()
        try:
            path = await loop.run_in_executor(None, self.snapshots.create)
        except SnapshotError as e:
            self.logger.error("%s", e)
            return 1
        print(f"Backup created: {path}")
        return 0

    async def verify(self) -> int:
        """Check balance == SUM(ledger) for every account."""
        try:
            await self.ensure_schema()
            drift = await self.ledger.find_drift()
            total = await self.accounts.count()
        except LedgerError as e:
            self.logger.error("%s", e)
            return 1
        if not drift:
            print(f"Ledger consistent: {total} account(s) checked")
            return 0
        print(f"Balance drift in {len(drift)} of {total} account(s):")
        for row in drift:
            print(
                f"  - {row['display_name']} ({row['id']}): "
                f"balance {row['balance']}, ledger {row['ledger_sum']}"
            )
        return 1

    async def history(self, account_id: str, limit: int = 10) -> int:
        try:
            await self.ensure_schema()
            account = await self.accounts.get(account_id)
            entries = await self.ledger.history(account_id, limit) if account else []
        except LedgerError as e:
            self.logger.error("%s", e)
            return 1
        if account is None:
            print(f"Account not found: {account_id}")
            return 1
        print(f"{account['display_name']} ({account['id']}): balance {account['balance']}")
        for entry in entries:
            print(f"  #{entry['id']} {entry['created_at']} {entry['kind']:<14} {entry['amount']:+d}")
        return 0

    async def status(self) -> int:
        try:
            applied = await self.schema.applied_steps()
        except SchemaError as e:
            self.logger.error("%s", e)
            return 1
        pending = self.schema.pending(applied)
        print(f"Database: {self.db.path}")
        print(f"Schema steps applied: {len(applied)}, pending: {len(pending)}")
        for name in pending:
            print(f"  pending: {name}")
        if "create_accounts_table" in applied:
            try:
                total = await self.accounts.count()
                top = await self.accounts.leaderboard(5)
            except LedgerError as e:
                self.logger.error("%s", e)
                return 1
            print(f"Accounts: {total}")
            for row in top:
                print(f"  {row['display_name']} ({row['id']}): {row['balance']}")
        snaps = self.snapshots.list_snapshots()
        print(f"Snapshots in {self.snapshots.directory}: {len(snaps)}")
        return 0

    async def serve(self, stop_event: asyncio.Event | None = None) -> int:
        """Run reconcile/snapshot on their cron schedules until stopped."""
        try:
            await self.ensure_schema()
        except SchemaError as e:
            self.logger.error("%s", e)
            return 1

        scheduler = Scheduler(
            self.config.schedule,
            {"reconcile": self.reconcile, "snapshot": self.snapshot},
            logging.getLogger("ledger.scheduler"),
        )
        try:
            await scheduler.start()
        except ValueError as e:
            self.logger.error("%s", e)
            await scheduler.stop()
            return 1

        stop_event = stop_event or asyncio.Event()
        self.logger.info("Scheduler running")
        try:
            await stop_event.wait()
        finally:
            await scheduler.stop()
            self.logger.info("Scheduler stopped")
        return 0
