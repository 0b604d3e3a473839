"""ConnectionLedger: live connection state with retention and subscribers."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from ..types import ConnectionRecord, Ledger, LedgerEntry, Listener
from .reconciler import reconcile

logger = logging.getLogger(__name__)


class ConnectionLedger:
    """Holds the latest reconciled view of open (and retained) connections.

    Not thread-safe: ``ingest()`` and ``toggle()`` are expected to run on a
    single event loop. Listeners are called synchronously after each commit
    and must only read from the ledger.
    """

    def __init__(self, retain: bool = False) -> None:
        self._entries: Ledger = {}
        self._retain = retain
        self._listeners: list[Listener] = []

    # -- state container ---------------------------------------------------

    def apply(self, entries: Ledger) -> None:
        """Replace the current state with a reconciliation result."""
        self._entries = dict(entries)

    def values(self) -> list[LedgerEntry]:
        """Return a new list of the current entries."""
        return list(self._entries.values())

    def get(self, conn_id: str) -> LedgerEntry | None:
        return self._entries.get(conn_id)

    def __len__(self) -> int:
        return len(self._entries)

    def mode(self) -> bool:
        """Whether closed connections are kept as completed entries."""
        return self._retain

    # -- ingestion ---------------------------------------------------------

    def ingest(self, records: Iterable[ConnectionRecord | Mapping]) -> None:
        """Reconcile a full snapshot of open connections and notify listeners."""
        self.apply(reconcile(self._entries, records, self._retain))
        self._notify()

    # -- retention ---------------------------------------------------------

    def toggle(self) -> bool:
        """Flip retention mode. Turning it off purges completed entries."""
        if self._retain:
            self._retain = False
            kept = {k: e for k, e in self._entries.items() if not e.completed}
            purged = len(self._entries) - len(kept)
            self.apply(kept)
            logger.info("Retention off, purged %d completed connection(s)", purged)
        else:
            self._retain = True
            logger.info("Retention on")
        self._notify()
        return self._retain

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, listener: Listener) -> Listener:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)
        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            if subscribed:
                subscribed = False
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in tuple(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Ledger listener %r failed", listener)
