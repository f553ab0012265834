"""Configuration system for betbot-ledger.

All Pydantic models are defined here with sensible defaults, so an empty
config file (or none at all) yields a runnable setup against ./data.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


# ═══════════════════════════════════════════════════════════════
#  Store
# ═══════════════════════════════════════════════════════════════

class DatabaseConfig(BaseModel):
    path: str = "data/betting.db"
    timeout_seconds: float = Field(default=30.0, gt=0, description="Lock wait before a store call fails")


# ═══════════════════════════════════════════════════════════════
#  Reconciliation
# ═══════════════════════════════════════════════════════════════

class ReconciliationConfig(BaseModel):
    start_balance: int = 1000
    progress_every: int = 10
    max_failures_reported: int = 10
    fail_on_account_errors: bool = False


class DiscordConfig(BaseModel):
    token: str = ""
    api_base: str = "https://discord.com/api/v10"
    guild_ids: list[str] = Field(default_factory=list, description="Empty = every guild the bot is in")
    page_size: int = Field(default=1000, ge=1, le=1000)
    request_timeout_seconds: float = 10.0
    max_retries: int = 3

    @field_validator("guild_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, v: Any) -> Any:
        # YAML turns bare snowflakes into ints
        if isinstance(v, list):
            return [str(item) for item in v]
        return v


# ═══════════════════════════════════════════════════════════════
#  Snapshots & Scheduling
# ═══════════════════════════════════════════════════════════════

class SnapshotConfig(BaseModel):
    directory: str = "data/backups"
    prefix: str = "betting"
    retention: int = Field(default=10, ge=1)


class ScheduleConfig(BaseModel):
    reconcile_cron: str = "0 * * * *"
    snapshot_cron: str = "30 3 * * *"


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class LedgerConfig(BaseModel):
    """Full betbot-ledger config."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    snapshots: SnapshotConfig = Field(default_factory=SnapshotConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> LedgerConfig:
    """Load and validate YAML config file into LedgerConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return LedgerConfig(**raw)
