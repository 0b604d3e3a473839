"""All dataclasses and type aliases for clashboard."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionRecord:
    """One open connection as reported by the controller, unmodified."""
    id: str
    upload_total: int = 0  # cumulative bytes sent since connection start
    download_total: int = 0  # cumulative bytes received since connection start
    # Read-only view; left out of the hash since mappings are unhashable
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)
    chains: tuple[str, ...] = ()
    rule: str = ""
    rule_payload: str = ""
    start: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict:
        """Wire-shaped dict, using the controller's field names."""
        return {
            "id": self.id,
            "upload": self.upload_total,
            "download": self.download_total,
            "metadata": dict(self.metadata),
            "chains": list(self.chains),
            "rule": self.rule,
            "rulePayload": self.rule_payload,
            "start": self.start,
        }


@dataclass(frozen=True)
class LedgerEntry:
    """Latest record for a connection plus throughput derived from its counters."""
    record: ConnectionRecord
    upload_speed: int = 0
    download_speed: int = 0
    completed: bool = False

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def upload_total(self) -> int:
        return self.record.upload_total

    @property
    def download_total(self) -> int:
        return self.record.download_total

    def to_dict(self) -> dict:
        d = self.record.to_dict()
        d["uploadSpeed"] = self.upload_speed
        d["downloadSpeed"] = self.download_speed
        d["completed"] = self.completed
        return d


Ledger = dict[str, LedgerEntry]
Listener = Callable[[], None]


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------

# Levels the controller accepts on /logs, most verbose first
LOG_LEVELS = ("debug", "info", "warning", "error", "silent")


@dataclass(frozen=True)
class LogEntry:
    """One controller log line, stamped with the time it was received."""
    type: str
    payload: str
    time: datetime

    def to_dict(self) -> dict:
        return {"type": self.type, "payload": self.payload, "time": self.time.isoformat()}


@dataclass
class ConnectionRow:
    """Display-ready view of a ledger entry."""
    id: str
    host: str
    sniff_host: str
    chains: str
    rule: str
    time: datetime | None
    upload: int
    download: int
    type: str
    network: str
    process: str
    source_ip: str
    destination_ip: str
    upload_speed: int
    download_speed: int
    completed: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "host": self.host,
            "sniffHost": self.sniff_host,
            "chains": self.chains,
            "rule": self.rule,
            "time": self.time.isoformat() if self.time else None,
            "upload": self.upload,
            "download": self.download,
            "type": self.type,
            "network": self.network,
            "process": self.process,
            "sourceIP": self.source_ip,
            "destinationIP": self.destination_ip,
            "speed": {"upload": self.upload_speed, "download": self.download_speed},
            "completed": self.completed,
        }


@dataclass
class TrafficSummary:
    active: int = 0
    completed: int = 0
    upload_speed: int = 0
    download_speed: int = 0
    upload_total: int = 0
    download_total: int = 0

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "completed": self.completed,
            "upload_speed": self.upload_speed,
            "download_speed": self.download_speed,
            "upload_total": self.upload_total,
            "download_total": self.download_total,
        }


class ControllerError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class ControllerConfig:
    url: str = "http://127.0.0.1:9090"
    secret: str = ""
    timeout: float = 10.0


@dataclass
class StreamConfig:
    interval: float = 1.0  # wait before reopening a response the server closed
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0


@dataclass
class LedgerConfig:
    retain_closed: bool = False


@dataclass
class LogsConfig:
    level: str = ""  # empty: whatever level the controller runs at
    max_entries: int = 500
    keep_entries: int = 300  # kept from the tail once max_entries is exceeded


@dataclass
class DashboardConfig:
    host: str = "127.0.0.1"
    port: int = 9191


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class ClashboardConfig:
    version: str = "0.1"
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
