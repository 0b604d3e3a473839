"""Reconciliation of a connection snapshot into the previous ledger.

A snapshot is the complete list of connections open at one point in time.
Throughput is not reported by the controller; it is derived here as the
difference between the cumulative counters of two consecutive snapshots.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from ..types import ConnectionRecord, Ledger, LedgerEntry

logger = logging.getLogger(__name__)


def _counter(raw: Mapping, *names: str) -> int:
    for name in names:
        value = raw.get(name)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return 0


def parse_record(raw: Mapping) -> ConnectionRecord | None:
    """Build a ConnectionRecord from a controller JSON object.

    Returns None when the object has no usable id.
    """
    if not isinstance(raw, Mapping):
        return None
    conn_id = raw.get("id")
    if not isinstance(conn_id, str) or not conn_id:
        return None

    metadata = raw.get("metadata")
    chains = raw.get("chains")
    return ConnectionRecord(
        id=conn_id,
        upload_total=_counter(raw, "upload", "uploadTotal"),
        download_total=_counter(raw, "download", "downloadTotal"),
        metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        chains=tuple(str(c) for c in chains) if isinstance(chains, list) else (),
        rule=str(raw.get("rule") or ""),
        rule_payload=str(raw.get("rulePayload") or ""),
        start=str(raw.get("start") or ""),
    )


def index_snapshot(
    snapshot: Iterable[ConnectionRecord | Mapping],
) -> dict[str, ConnectionRecord]:
    """Key a snapshot by id. Later duplicates replace earlier ones."""
    mapping: dict[str, ConnectionRecord] = {}
    dropped = 0
    for item in snapshot:
        record = item if isinstance(item, ConnectionRecord) else parse_record(item)
        if record is None or not isinstance(record.id, str) or not record.id:
            dropped += 1
            continue
        mapping[record.id] = record
    if dropped:
        logger.debug("Dropped %d malformed connection record(s)", dropped)
    return mapping


def reconcile(
    previous: Mapping[str, LedgerEntry],
    snapshot: Iterable[ConnectionRecord | Mapping],
    retain: bool,
) -> Ledger:
    """Merge *snapshot* into *previous* and return the next ledger.

    ``previous`` is never mutated. Ids missing from the snapshot are dropped,
    or kept as completed entries with zero speed when *retain* is set.
    Negative deltas (a counter that went backwards) are returned as-is.
    """
    incoming = index_snapshot(snapshot)
    nxt: Ledger = {}

    for conn_id, entry in previous.items():
        if conn_id in incoming or not retain:
            continue
        if entry.completed:
            nxt[conn_id] = entry
        else:
            nxt[conn_id] = LedgerEntry(
                record=entry.record,
                upload_speed=0,
                download_speed=0,
                completed=True,
            )

    for conn_id, record in incoming.items():
        old = previous.get(conn_id)
        if old is None or old.completed:
            # No baseline: first sight, or a retained id that came back
            nxt[conn_id] = LedgerEntry(record=record)
            continue
        nxt[conn_id] = LedgerEntry(
            record=record,
            upload_speed=record.upload_total - old.record.upload_total,
            download_speed=record.download_total - old.record.download_total,
        )

    return nxt
