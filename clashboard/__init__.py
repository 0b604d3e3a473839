"""clashboard: live connection dashboard for Clash-compatible proxies."""

from .config import load_config
from .core.ledger import ConnectionLedger
from .core.reconciler import reconcile
from .types import (
    ClashboardConfig,
    ConnectionRecord,
    ControllerError,
    LedgerEntry,
)

__version__ = "0.1.0"

__all__ = [
    "ConnectionLedger",
    "reconcile",
    "load_config",
    "ClashboardConfig",
    "ConnectionRecord",
    "ControllerError",
    "LedgerEntry",
]
