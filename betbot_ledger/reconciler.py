"""Reconciliation engine — one-way sync from the roster into accounts.

For each roster entry, one account at a time:
  * bots are skipped;
  * known ids get their display name refreshed (balance untouched);
  * unknown ids get an account funded with an initial-grant ledger entry.

A failure on one entry is recorded and the run moves on; only a roster that
cannot be enumerated aborts the run. Re-running over an unchanged roster
adds and updates nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterable

from .accounts import AccountRepository
from .errors import DuplicateAccountError, LedgerError, RosterUnavailableError
from .roster import GroupFailure, RosterEntry


@dataclass(frozen=True)
class PerAccountFailure:
    external_id: str
    display_name: str
    error: str
    retryable: bool = False


@dataclass
class ReconciliationReport:
    total_seen: int = 0
    added_count: int = 0
    updated_count: int = 0
    skipped_bots: int = 0
    concurrent_creates: int = 0
    unknown_skipped: int = 0
    duplicate_entries: int = 0
    per_account_failures: list[PerAccountFailure] = field(default_factory=list)
    group_failures: list[GroupFailure] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.added_count + self.updated_count

    @property
    def ok(self) -> bool:
        return not self.per_account_failures

    def summary_lines(
        self, max_failures: int = 10, title: str = "Synchronization complete!"
    ) -> list[str]:
        lines = [
            title,
            f"Total members seen: {self.total_seen}",
            f"Bots skipped: {self.skipped_bots}",
            f"New accounts added: {self.added_count}",
            f"Display names updated: {self.updated_count}",
        ]
        if self.concurrent_creates:
            lines.append(f"Created concurrently by another run: {self.concurrent_creates}")
        if self.unknown_skipped:
            lines.append(f"Unknown members skipped: {self.unknown_skipped}")
        if self.duplicate_entries:
            lines.append(f"Repeated roster entries ignored: {self.duplicate_entries}")
        if self.group_failures:
            lines.append(f"Guilds that failed to list: {len(self.group_failures)}")
            for gf in self.group_failures:
                lines.append(f"  - {gf.group_name} ({gf.group_id}): {gf.error}")
        if self.per_account_failures:
            lines.append(f"Per-account failures: {len(self.per_account_failures)}")
            for failure in self.per_account_failures[:max_failures]:
                hint = " (retryable)" if failure.retryable else ""
                lines.append(
                    f"  - {failure.display_name} ({failure.external_id}): {failure.error}{hint}"
                )
            hidden = len(self.per_account_failures) - max_failures
            if hidden > 0:
                lines.append(f"  ... and {hidden} more")
        return lines


class Reconciler:
    """Brings the account set in line with a roster snapshot."""

    def __init__(
        self,
        accounts: AccountRepository,
        logger: logging.Logger,
        progress_every: int = 10,
    ) -> None:
        self._accounts = accounts
        self._logger = logger
        self._progress_every = progress_every

    async def reconcile(
        self,
        roster: AsyncIterable[RosterEntry],
        start_balance: int,
        create_missing: bool = True,
    ) -> ReconciliationReport:
        """Drain ``roster`` and return what changed.

        With ``create_missing=False`` only display names of existing accounts
        are refreshed. An id seen twice in one roster (a member of several
        guilds) is handled on its first occurrence only. Raises
        RosterUnavailableError, carrying the partial report, if the roster
        itself fails; entries already processed stay committed.
        """
        report = ReconciliationReport()
        seen: set[str] = set()
        try:
            async for entry in roster:
                if entry.external_id in seen:
                    report.duplicate_entries += 1
                    continue
                seen.add(entry.external_id)
                await self._process(entry, report, start_balance, create_missing)
        except RosterUnavailableError as e:
            self._logger.error("Roster unavailable after %d entries; run aborted", report.total_seen)
            e.report = report
            raise
        except Exception as e:
            self._logger.error("Roster enumeration failed after %d entries: %s", report.total_seen, e)
            raise RosterUnavailableError(f"Roster enumeration failed: {e}", report) from e

        self._logger.info(
            "Reconciled %d members: %d added, %d updated, %d bots, %d failures",
            report.total_seen, report.added_count, report.updated_count,
            report.skipped_bots, len(report.per_account_failures),
        )
        return report

    async def _process(
        self,
        entry: RosterEntry,
        report: ReconciliationReport,
        start_balance: int,
        create_missing: bool,
    ) -> None:
        report.total_seen += 1
        if entry.is_bot:
            report.skipped_bots += 1
            return

        before = report.processed
        try:
            account = await self._accounts.get(entry.external_id)
            if account is not None:
                if account["display_name"] != entry.display_name:
                    await self._accounts.update_display_name(entry.external_id, entry.display_name)
                    report.updated_count += 1
            elif create_missing:
                try:
                    await self._accounts.create_with_initial_balance(
                        entry.external_id, entry.display_name, start_balance
                    )
                    report.added_count += 1
                except DuplicateAccountError:
                    self._logger.info(
                        "Account %s was created concurrently, skipping", entry.external_id
                    )
                    report.concurrent_creates += 1
            else:
                self._logger.debug(
                    "Member %s (%s) has no account, skipping", entry.display_name, entry.external_id
                )
                report.unknown_skipped += 1
        except Exception as e:
            retryable = isinstance(e, LedgerError) and e.retryable
            self._logger.warning(
                "Failed to reconcile %s (%s): %s", entry.display_name, entry.external_id, e
            )
            report.per_account_failures.append(
                PerAccountFailure(entry.external_id, entry.display_name, str(e), retryable)
            )
            return

        if (
            self._progress_every > 0
            and report.processed != before
            and report.processed % self._progress_every == 0
        ):
            self._logger.info("Processed %d accounts so far...", report.processed)
