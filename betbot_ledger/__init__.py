"""betbot-ledger — Account & balance ledger tooling for the betting bot."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("betbot-ledger")
except PackageNotFoundError:
    __version__ = "0.0.0"
