"""CLI entry point for betbot-ledger."""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from . import __version__
from .app import LedgerApp
from .config import LedgerConfig, load_config


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="betbot-ledger",
        description="Betting bot ledger maintenance: migrations, roster sync, backups",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("migrate", help="Apply pending schema migrations")

    rec = sub.add_parser("reconcile", help="Sync accounts with Discord guild members")
    rec.add_argument("--names-only", action="store_true", help="Only refresh names of existing accounts")
    rec.add_argument("--start-balance", type=int, help="Initial grant for new accounts")

    sub.add_parser("snapshot", help="Back up the database and prune old backups")
    sub.add_parser("verify", help="Check every balance against its ledger")
    sub.add_parser("status", help="Show schema, account and backup status")

    hist = sub.add_parser("history", help="Show an account's recent ledger entries")
    hist.add_argument("account_id")
    hist.add_argument("--limit", type=int, default=10)

    sub.add_parser("serve", help="Run reconcile/snapshot on their cron schedules")
    sub.add_parser("validate-config", help="Validate config and exit")
    return parser.parse_args(argv)


def resolve_config(config_path: str | None) -> LedgerConfig:
    """--config, else ./config.yaml, else built-in defaults."""
    if config_path:
        return load_config(config_path)
    if Path("config.yaml").exists():
        return load_config("config.yaml")
    return LedgerConfig()


async def run_command(app: LedgerApp, args: argparse.Namespace) -> int:
    if args.command == "migrate":
        return await app.migrate()
    if args.command == "reconcile":
        return await app.reconcile(names_only=args.names_only, start_balance=args.start_balance)
    if args.command == "snapshot":
        return await app.snapshot()
    if args.command == "verify":
        return await app.verify()
    if args.command == "status":
        return await app.status()
    if args.command == "history":
        return await app.history(args.account_id, args.limit)
    if args.command == "serve":
        stop_event = asyncio.Event()
        # Signal handling (Unix only; Windows uses KeyboardInterrupt)
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, stop_event.set)
        return await app.serve(stop_event)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Sync entry point for pyproject.toml [project.scripts]."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("ledger")

    try:
        config = resolve_config(args.config)
    except Exception as e:
        logger.error("Config load failed: %s", e)
        return 1

    if args.command == "validate-config":
        logger.info("Config is valid.")
        return 0

    app = LedgerApp(config)
    try:
        return asyncio.run(run_command(app, args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
