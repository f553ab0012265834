"""Typed failures raised by the ledger core.

Every error carries a ``retryable`` flag so callers (the reconciler, the CLI,
the scheduler) can tell a transient store/roster problem from a data error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .reconciler import ReconciliationReport


class LedgerError(Exception):
    """Base class for all betbot-ledger failures."""

    retryable = False


class SchemaError(LedgerError):
    """A migration step failed. The store was rolled back; the process must stop."""


class DuplicateAccountError(LedgerError):
    """An account with this external id already exists."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account already exists: {account_id}")
        self.account_id = account_id


class AccountNotFoundError(LedgerError):
    """An operation referenced an account that does not exist."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class RosterUnavailableError(LedgerError):
    """The external roster could not be enumerated at all.

    ``report`` holds what a reconciliation had done before the roster failed,
    or None when no run had started.
    """

    retryable = True

    def __init__(self, message: str, report: ReconciliationReport | None = None) -> None:
        super().__init__(message)
        self.report = report


class StoreTimeoutError(LedgerError):
    """The store stayed locked past the caller's timeout."""

    retryable = True


class SnapshotError(LedgerError):
    """A snapshot could not be written."""
