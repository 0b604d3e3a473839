"""Tests for the web dashboard routes."""

from __future__ import annotations

import asyncio
import json

import pytest
from conftest import wire

from clashboard.controller.client import ControllerClient
from clashboard.core.ledger import ConnectionLedger
from clashboard.dashboard.server import build_state, create_app


@pytest.fixture
def dashboard(controller_transport):
    from starlette.testclient import TestClient

    ledger = ConnectionLedger()
    client = ControllerClient("http://ctl:9090", transport=controller_transport.transport)
    app = create_app(ledger=ledger, client=client, start_stream=False)
    with TestClient(app) as test_client:
        yield test_client, ledger, controller_transport


class TestBuildState:
    def test_empty(self):
        state = build_state(ConnectionLedger())
        assert state["retain"] is False
        assert state["connections"] == []
        assert state["summary"]["active"] == 0

    def test_open_before_closed(self):
        ledger = ConnectionLedger(retain=True)
        ledger.ingest([wire("old"), wire("new")])
        ledger.ingest([wire("new")])
        state = build_state(ledger)
        assert [c["id"] for c in state["connections"]] == ["new", "old"]
        assert state["connections"][1]["completed"] is True
        assert state["summary"] == {
            "active": 1,
            "completed": 1,
            "upload_speed": 0,
            "download_speed": 0,
            "upload_total": 0,
            "download_total": 0,
        }

    def test_keyword(self):
        ledger = ConnectionLedger()
        ledger.ingest([wire("alpha"), wire("beta")])
        state = build_state(ledger, keyword="beta.example")
        assert [c["id"] for c in state["connections"]] == ["beta"]
        assert state["summary"]["active"] == 2


class TestDashboardRoutes:
    def test_page_served(self, dashboard):
        client, _, _ = dashboard
        resp = client.get("/")
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        assert "EventSource" in resp.text
        assert "/api/events" in resp.text

    def test_list_connections(self, dashboard):
        client, ledger, _ = dashboard
        ledger.ingest([wire("a", 100, 50)])
        ledger.ingest([wire("a", 150, 80)])
        resp = client.get("/api/connections")
        assert resp.status_code == 200
        data = resp.json()
        [conn] = data["connections"]
        assert conn["speed"] == {"upload": 50, "download": 30}
        assert conn["host"] == "a.example.com:443"
        assert data["summary"]["upload_speed"] == 50

    def test_list_connections_keyword(self, dashboard):
        client, ledger, _ = dashboard
        ledger.ingest([wire("a"), wire("b")])
        data = client.get("/api/connections", params={"keyword": "a.example"}).json()
        assert [c["id"] for c in data["connections"]] == ["a"]

    def test_toggle_retention(self, dashboard):
        client, ledger, _ = dashboard
        assert client.post("/api/retention").json() == {"retain": True}
        ledger.ingest([wire("a")])
        ledger.ingest([])
        assert len(client.get("/api/connections").json()["connections"]) == 1

        assert client.post("/api/retention").json() == {"retain": False}
        assert client.get("/api/connections").json()["connections"] == []
        assert ledger.mode() is False

    def test_close_connection(self, dashboard):
        client, _, transport = dashboard
        transport.respond("DELETE", "/connections/abc", status=204)
        resp = client.delete("/api/connections/abc")
        assert resp.status_code == 200
        assert resp.json() == {"closed": "abc"}
        assert transport.requests[-1].url.path == "/connections/abc"

    def test_close_all(self, dashboard):
        client, _, transport = dashboard
        transport.respond("DELETE", "/connections", status=204)
        resp = client.delete("/api/connections")
        assert resp.json() == {"closed": "all"}

    def test_close_failure_maps_to_502(self, dashboard):
        client, _, transport = dashboard
        transport.respond("DELETE", "/connections/abc", status=401, text="Unauthorized")
        resp = client.delete("/api/connections/abc")
        assert resp.status_code == 502
        assert "401" in resp.json()["error"]


class EventsClient:
    """Drives /api/events over raw ASGI so frames can be read as they are sent.

    TestClient collects the whole body before returning, which never
    happens for an open event stream.
    """

    def __init__(self, app):
        self.app = app
        self.messages: asyncio.Queue[dict] = asyncio.Queue()
        self.disconnected = asyncio.Event()
        self._request_sent = False
        self.task: asyncio.Task | None = None
        self.status: int | None = None
        self.headers: dict[str, str] = {}

    async def _receive(self) -> dict:
        if not self._request_sent:
            self._request_sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await self.disconnected.wait()
        return {"type": "http.disconnect"}

    async def _send(self, message: dict) -> None:
        self.messages.put_nowait(message)

    async def __aenter__(self) -> EventsClient:
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/api/events",
            "raw_path": b"/api/events",
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"testserver")],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
        }
        self.task = asyncio.create_task(self.app(scope, self._receive, self._send))
        start = await asyncio.wait_for(self.messages.get(), timeout=2)
        assert start["type"] == "http.response.start"
        self.status = start["status"]
        self.headers = {k.decode(): v.decode() for k, v in start["headers"]}
        return self

    async def next_frame(self, timeout: float = 2.0) -> dict:
        while True:
            message = await asyncio.wait_for(self.messages.get(), timeout=timeout)
            body = message.get("body", b"").decode()
            if body:
                assert body.startswith("data: ") and body.endswith("\n\n")
                return json.loads(body[len("data: "):])

    async def __aexit__(self, *exc_info) -> None:
        self.disconnected.set()
        await asyncio.wait_for(self.task, timeout=5)


@pytest.fixture
def events_app(controller_transport):
    ledger = ConnectionLedger()
    client = ControllerClient("http://ctl:9090", transport=controller_transport.transport)
    return create_app(ledger=ledger, client=client, start_stream=False), ledger


class TestEventStream:
    @pytest.mark.asyncio
    async def test_initial_frame_carries_full_state(self, events_app):
        app, ledger = events_app
        ledger.ingest([wire("a", 10, 20)])
        async with EventsClient(app) as events:
            assert events.status == 200
            assert events.headers["content-type"].startswith("text/event-stream")
            assert events.headers["cache-control"] == "no-cache"
            state = await events.next_frame()
        assert state == build_state(ledger)
        assert [c["id"] for c in state["connections"]] == ["a"]

    @pytest.mark.asyncio
    async def test_one_frame_per_ingest_and_toggle(self, events_app):
        app, ledger = events_app
        async with EventsClient(app) as events:
            assert (await events.next_frame())["connections"] == []

            ledger.ingest([wire("a", 100, 100)])
            state = await events.next_frame()
            assert [c["id"] for c in state["connections"]] == ["a"]

            ledger.ingest([wire("a", 150, 300)])
            state = await events.next_frame()
            assert state["connections"][0]["speed"] == {"upload": 50, "download": 200}

            ledger.toggle()
            state = await events.next_frame()
            assert state["retain"] is True

            with pytest.raises(asyncio.TimeoutError):
                await events.next_frame(timeout=0.3)

    @pytest.mark.asyncio
    async def test_pending_notifications_coalesce(self, events_app):
        app, ledger = events_app
        async with EventsClient(app) as events:
            await events.next_frame()
            ledger.ingest([wire("a", 0, 0)])
            ledger.ingest([wire("a", 10, 0)])
            ledger.ingest([wire("a", 30, 0), wire("b")])

            state = await events.next_frame()
            assert sorted(c["id"] for c in state["connections"]) == ["a", "b"]
            assert state["summary"]["upload_speed"] == 20
            with pytest.raises(asyncio.TimeoutError):
                await events.next_frame(timeout=0.3)

    @pytest.mark.asyncio
    async def test_disconnect_unsubscribes(self, events_app):
        app, ledger = events_app
        before = len(ledger._listeners)
        async with EventsClient(app) as events:
            await events.next_frame()
            assert len(ledger._listeners) == before + 1
        assert len(ledger._listeners) == before
        # no listener left behind to wake
        ledger.ingest([wire("a")])
