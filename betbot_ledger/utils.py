"""Shared utility helpers for betbot-ledger."""

from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def file_timestamp(dt: datetime | None = None) -> str:
    """Return a filesystem-safe UTC stamp like '2026-03-01T12-00-00-123456Z'."""
    if dt is None:
        dt = now_utc()
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
