"""Display formatting and traffic aggregation for ledger entries."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from pathlib import PurePath, PureWindowsPath

from ..types import ConnectionRow, LedgerEntry, LogEntry, TrafficSummary

_UNITS = ["B", "KB", "MB", "GB", "TB"]
_FRACTION = re.compile(r"\.\d+")


def format_bytes(n: int) -> str:
    """Human-readable size, 1024-based (``1.5 KB``)."""
    value = float(n)
    sign = "-" if value < 0 else ""
    value = abs(value)
    if value < 1024:
        return f"{sign}{int(value)} B"
    unit = _UNITS[0]
    for unit in _UNITS[1:]:
        value /= 1024
        if value < 1024:
            break
    return f"{sign}{value:.2f} {unit}"


def format_speed(n: int) -> str:
    return f"{format_bytes(n)}/s"


def _parse_start(value: str) -> datetime | None:
    if not value:
        return None
    # Controllers emit RFC 3339 with a trailing Z and nanoseconds
    text = _FRACTION.sub(lambda m: m.group(0)[:7].ljust(7, "0"), value.replace("Z", "+00:00"))
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _process_name(path: str) -> str:
    if not path:
        return ""
    if "\\" in path:
        return PureWindowsPath(path).name
    return PurePath(path).name


def _join_addr(ip: str, port) -> str:
    if not ip:
        return ""
    return f"{ip}:{port}" if port not in (None, "", 0, "0") else ip


def format_connection(entry: LedgerEntry) -> ConnectionRow:
    record = entry.record
    meta = record.metadata
    host = meta.get("host") or meta.get("destinationIP") or ""
    rule = record.rule
    if record.rule_payload:
        rule = f"{rule}({record.rule_payload})"
    network = str(meta.get("network") or "")
    conn_type = str(meta.get("type") or "")

    return ConnectionRow(
        id=record.id,
        host=_join_addr(host, meta.get("destinationPort")),
        sniff_host=str(meta.get("sniffHost") or "-"),
        chains=" / ".join(reversed(record.chains)),
        rule=rule,
        time=_parse_start(record.start),
        upload=record.upload_total,
        download=record.download_total,
        type=f"{conn_type}({network})" if network else conn_type,
        network=network,
        process=_process_name(str(meta.get("processPath") or "")),
        source_ip=_join_addr(str(meta.get("sourceIP") or ""), meta.get("sourcePort")),
        destination_ip=str(meta.get("destinationIP") or ""),
        upload_speed=entry.upload_speed,
        download_speed=entry.download_speed,
        completed=entry.completed,
    )


def filter_rows(rows: Iterable[ConnectionRow], keyword: str) -> list[ConnectionRow]:
    """Keep rows whose host, chains, rule, process or addresses contain *keyword*."""
    needle = keyword.strip().lower()
    if not needle:
        return list(rows)
    result = []
    for row in rows:
        haystack = " ".join((
            row.host, row.sniff_host, row.chains, row.rule,
            row.process, row.source_ip, row.destination_ip,
        )).lower()
        if needle in haystack:
            result.append(row)
    return result


def summarize(entries: Iterable[LedgerEntry]) -> TrafficSummary:
    summary = TrafficSummary()
    for e in entries:
        if e.completed:
            summary.completed += 1
        else:
            summary.active += 1
        summary.upload_speed += e.upload_speed
        summary.download_speed += e.download_speed
        summary.upload_total += e.upload_total
        summary.download_total += e.download_total
    return summary


def format_log(entry: LogEntry) -> str:
    """``[2026-01-15 10:00:00] [INFO] payload``"""
    return f"[{entry.time:%Y-%m-%d %H:%M:%S}] [{entry.type.upper()}] {entry.payload}"
