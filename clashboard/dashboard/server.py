"""Live web dashboard for the connection ledger.

Serves a self-contained single-page HTML view at ``/``, JSON endpoints under
``/api`` and an SSE event stream at ``/api/events``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse

from ..controller.client import ControllerClient
from ..controller.stream import ConnectionStream
from ..core.formatting import filter_rows, format_connection, summarize
from ..core.ledger import ConnectionLedger
from ..types import ClashboardConfig, ControllerError

logger = logging.getLogger(__name__)


def build_state(ledger: ConnectionLedger, keyword: str = "") -> dict:
    """Current ledger state as served to the browser."""
    entries = ledger.values()
    rows = filter_rows((format_connection(e) for e in entries), keyword)
    # Open before closed, newest first
    rows.sort(key=lambda r: (r.completed, -r.time.timestamp() if r.time else 0.0))
    return {
        "retain": ledger.mode(),
        "summary": summarize(entries).to_dict(),
        "connections": [r.to_dict() for r in rows],
    }


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def create_app(
    config: ClashboardConfig | None = None,
    *,
    ledger: ConnectionLedger | None = None,
    stream: ConnectionStream | None = None,
    client: ControllerClient | None = None,
    start_stream: bool = True,
) -> FastAPI:
    """Create the dashboard application.

    Args:
        config: Loaded configuration; defaults are used when omitted.
        ledger: Ledger to expose. A new one is created from config otherwise.
        stream: Snapshot source feeding the ledger while the app runs.
        client: Controller client used to close connections.
        start_stream: Set False to serve a ledger that is fed elsewhere.
    """
    config = config or ClashboardConfig()
    ledger = ledger or ConnectionLedger(retain=config.ledger.retain_closed)
    client = client or ControllerClient.from_config(config.controller)
    shutdown_event = asyncio.Event()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        nonlocal stream
        task: asyncio.Task | None = None
        if start_stream:
            stream = stream or ConnectionStream.from_config(config.controller, config.stream)
            task = asyncio.create_task(stream.run(ledger.ingest, shutdown_event))
        yield
        shutdown_event.set()
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if stream is not None:
            await stream.aclose()
        await client.aclose()

    app = FastAPI(title="clashboard", lifespan=lifespan)
    app.state.ledger = ledger

    @app.get("/")
    async def dashboard_page():
        return HTMLResponse(_DASHBOARD_HTML)

    @app.get("/api/connections")
    async def list_connections(keyword: str = ""):
        return JSONResponse(build_state(ledger, keyword))

    @app.post("/api/retention")
    async def toggle_retention():
        return JSONResponse({"retain": ledger.toggle()})

    @app.delete("/api/connections/{conn_id}")
    async def close_connection(conn_id: str):
        try:
            await client.close_connection(conn_id)
        except ControllerError as e:
            logger.error("Close %s failed: %s", conn_id, e)
            return JSONResponse({"error": str(e)}, status_code=502)
        return JSONResponse({"closed": conn_id})

    @app.delete("/api/connections")
    async def close_all_connections():
        try:
            await client.close_all()
        except ControllerError as e:
            logger.error("Close all failed: %s", e)
            return JSONResponse({"error": str(e)}, status_code=502)
        return JSONResponse({"closed": "all"})

    @app.get("/api/events")
    async def events(request: Request):
        # Holds at most one pending wake-up; every frame carries full state
        pending: asyncio.Queue[None] = asyncio.Queue(maxsize=1)

        def on_change() -> None:
            if pending.empty():
                pending.put_nowait(None)

        unsubscribe = ledger.subscribe(on_change)

        async def event_stream():
            try:
                yield _sse(build_state(ledger))
                while True:
                    if await request.is_disconnected():
                        break
                    if shutdown_event.is_set():
                        break
                    try:
                        await asyncio.wait_for(pending.get(), timeout=1.0)
                    except asyncio.TimeoutError:
                        continue
                    yield _sse(build_state(ledger))
            except asyncio.CancelledError:
                return
            finally:
                unsubscribe()

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    return app


_DASHBOARD_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>clashboard</title>
<style>
  body { font-family: -apple-system, "Segoe UI", sans-serif; margin: 0; background: #f4f5f7; color: #222; }
  header { display: flex; align-items: center; gap: 1.5rem; padding: .75rem 1.25rem; background: #2c3e50; color: #fff; }
  header h1 { font-size: 1.1rem; margin: 0; }
  header .stat { font-size: .85rem; opacity: .9; }
  header button { margin-left: auto; }
  main { padding: 1rem 1.25rem; }
  input[type=search] { width: 20rem; padding: .35rem .5rem; margin-bottom: .75rem; }
  table { width: 100%; border-collapse: collapse; background: #fff; font-size: .8rem; }
  th, td { text-align: left; padding: .35rem .5rem; border-bottom: 1px solid #eee; white-space: nowrap; }
  th { background: #fafafa; position: sticky; top: 0; }
  tr.completed td { color: #999; }
  td.num { text-align: right; font-variant-numeric: tabular-nums; }
</style>
</head>
<body>
<header>
  <h1>clashboard</h1>
  <span class="stat" id="counts">-</span>
  <span class="stat" id="speed">-</span>
  <span class="stat" id="totals">-</span>
  <button id="retain"></button>
  <button id="close-all">Close all</button>
</header>
<main>
  <input type="search" id="keyword" placeholder="Filter host, rule, chain, process">
  <table>
    <thead><tr>
      <th>Host</th><th>Sniff host</th><th>Process</th><th>Type</th><th>Chains</th><th>Rule</th>
      <th>Start</th><th>Upload speed</th><th>Download speed</th><th>Upload</th><th>Download</th>
      <th>Source</th><th>Destination</th>
    </tr></thead>
    <tbody id="rows"></tbody>
  </table>
</main>
<script>
const UNITS = ["B", "KB", "MB", "GB", "TB"];
function fmtBytes(n) {
  let v = Math.abs(n), i = 0;
  if (v < 1024) return (n < 0 ? "-" : "") + v + " B";
  while (v >= 1024 && i < UNITS.length - 1) { v /= 1024; i++; }
  return (n < 0 ? "-" : "") + v.toFixed(2) + " " + UNITS[i];
}
function esc(s) {
  return String(s ?? "").replace(/[&<>"]/g, c => ({"&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&quot;"}[c]));
}
let state = null;
function render() {
  if (!state) return;
  const s = state.summary;
  document.getElementById("counts").textContent = `${s.active} open, ${s.completed} closed`;
  document.getElementById("speed").textContent = `up ${fmtBytes(s.upload_speed)}/s  down ${fmtBytes(s.download_speed)}/s`;
  document.getElementById("totals").textContent = `total up ${fmtBytes(s.upload_total)}  down ${fmtBytes(s.download_total)}`;
  document.getElementById("retain").textContent = state.retain ? "Keep closed: on" : "Keep closed: off";
  const kw = document.getElementById("keyword").value.trim().toLowerCase();
  const rows = state.connections.filter(c => !kw ||
    [c.host, c.sniffHost, c.chains, c.rule, c.process, c.sourceIP, c.destinationIP].join(" ").toLowerCase().includes(kw));
  document.getElementById("rows").innerHTML = rows.map(c => `
    <tr class="${c.completed ? "completed" : ""}">
      <td>${esc(c.host)}</td><td>${esc(c.sniffHost)}</td><td>${esc(c.process)}</td><td>${esc(c.type)}</td>
      <td>${esc(c.chains)}</td><td>${esc(c.rule)}</td><td>${c.time ? new Date(c.time).toLocaleTimeString() : "-"}</td>
      <td class="num">${fmtBytes(c.speed.upload)}/s</td><td class="num">${fmtBytes(c.speed.download)}/s</td>
      <td class="num">${fmtBytes(c.upload)}</td><td class="num">${fmtBytes(c.download)}</td>
      <td>${esc(c.sourceIP)}</td><td>${esc(c.destinationIP)}</td>
    </tr>`).join("");
}
document.getElementById("keyword").addEventListener("input", render);
document.getElementById("retain").addEventListener("click", () => fetch("/api/retention", {method: "POST"}));
document.getElementById("close-all").addEventListener("click", () => fetch("/api/connections", {method: "DELETE"}));
const source = new EventSource("/api/events");
source.onmessage = ev => { state = JSON.parse(ev.data); render(); };
</script>
</body>
</html>
"""
