"""Shared fixtures for clashboard tests."""

from __future__ import annotations

import json

import httpx
import pytest

from clashboard.core.ledger import ConnectionLedger
from clashboard.types import ConnectionRecord


def make_record(
    conn_id: str,
    upload: int = 0,
    download: int = 0,
    **fields,
) -> ConnectionRecord:
    return ConnectionRecord(id=conn_id, upload_total=upload, download_total=download, **fields)


def wire(conn_id: str, upload: int = 0, download: int = 0, **extra) -> dict:
    """A connection object shaped like the controller's JSON."""
    d = {
        "id": conn_id,
        "upload": upload,
        "download": download,
        "metadata": {
            "network": "tcp",
            "type": "HTTPS",
            "host": f"{conn_id}.example.com",
            "sourceIP": "192.168.1.10",
            "sourcePort": "51234",
            "destinationIP": "93.184.216.34",
            "destinationPort": "443",
            "processPath": "/usr/bin/curl",
        },
        "chains": ["DIRECT"],
        "rule": "Match",
        "rulePayload": "",
        "start": "2026-01-15T10:00:00.123456789Z",
    }
    d.update(extra)
    return d


def frame(*connections: dict) -> str:
    return json.dumps({
        "downloadTotal": sum(c.get("download", 0) for c in connections),
        "uploadTotal": sum(c.get("upload", 0) for c in connections),
        "connections": list(connections),
    })


class ListenerSpy:
    """Counts notifications and captures what the ledger held at each one."""

    def __init__(self, ledger: ConnectionLedger):
        self.ledger = ledger
        self.calls = 0
        self.seen: list[list] = []

    def __call__(self) -> None:
        self.calls += 1
        self.seen.append(self.ledger.values())


@pytest.fixture
def ledger() -> ConnectionLedger:
    return ConnectionLedger()


@pytest.fixture
def spy(ledger) -> ListenerSpy:
    s = ListenerSpy(ledger)
    ledger.subscribe(s)
    return s


@pytest.fixture
def controller_transport():
    """MockTransport recording requests; canned responses keyed by (method, path)."""

    class Recorder:
        def __init__(self):
            self.requests: list[httpx.Request] = []
            self._responses: dict[tuple[str, str], tuple[int, dict]] = {}
            self.transport = httpx.MockTransport(self.handler)

        def respond(self, method: str, path: str, status: int = 200, **kwargs) -> None:
            self._responses[(method, path)] = (status, kwargs)

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            canned = self._responses.get((request.method, request.url.path))
            if canned is None:
                return httpx.Response(404, text="not found")
            status, kwargs = canned
            return httpx.Response(status, **kwargs)

    return Recorder()
