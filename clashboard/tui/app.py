"""ConnectionsApp: Textual application wiring the stream, ledger, and TUI together."""

from __future__ import annotations

import asyncio

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Input

from ..controller.client import ControllerClient
from ..controller.stream import ConnectionStream
from ..core.formatting import filter_rows, format_connection, summarize
from ..core.ledger import ConnectionLedger
from ..core.logs import LogBuffer
from ..types import ClashboardConfig, ControllerError
from .modals.log_viewer import LogViewer
from .widgets.connection_table import ConnectionTable
from .widgets.summary_bar import SummaryBar


class ConnectionsApp(App):
    """Live connection table for a proxy controller."""

    CSS = """
    #filter {
        margin: 0 1;
    }
    #connection-table {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("s", "toggle_retention", "Keep Closed"),
        Binding("x", "close_all", "Close All"),
        Binding("l", "show_logs", "Logs"),
    ]

    def __init__(
        self,
        config: ClashboardConfig | None = None,
        ledger: ConnectionLedger | None = None,
        *,
        stream: ConnectionStream | None = None,
        client: ControllerClient | None = None,
        start_stream: bool = True,
    ) -> None:
        super().__init__()
        self._config = config or ClashboardConfig()
        self.ledger = ledger or ConnectionLedger(retain=self._config.ledger.retain_closed)
        self._stream = stream
        self._client = client
        self._start_stream = start_stream
        self._keyword = ""
        self._stop = asyncio.Event()
        self._unsubscribe = None
        self.log_buffer = LogBuffer(
            self._config.logs.max_entries, self._config.logs.keep_entries,
        )
        # Held directly so refreshes keep working while a modal screen is active
        self._table = ConnectionTable(id="connection-table")
        self._summary_bar = SummaryBar(id="summary-bar")

    def on_mount(self) -> None:
        self._unsubscribe = self.ledger.subscribe(self.refresh_view)
        self.refresh_view()
        if self._start_stream:
            self._stream_connections()
        self._table.focus()

    async def on_unmount(self) -> None:
        self._stop.set()
        if self._unsubscribe is not None:
            self._unsubscribe()
        if self._stream is not None:
            await self._stream.aclose()
        if self._client is not None:
            await self._client.aclose()

    @work(exclusive=True)
    async def _stream_connections(self) -> None:
        if self._stream is None:
            self._stream = ConnectionStream.from_config(
                self._config.controller, self._config.stream,
            )
        await self._stream.run(self.ledger.ingest, self._stop)

    def refresh_view(self) -> None:
        """Re-read the ledger into the table and summary bar."""
        entries = self.ledger.values()
        rows = filter_rows((format_connection(e) for e in entries), self._keyword)
        rows.sort(key=lambda r: (r.completed, r.host))
        self._table.show_rows(rows)
        self._summary_bar.update_summary(summarize(entries), self.ledger.mode())

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "filter":
            self._keyword = event.value
            self.refresh_view()

    def action_toggle_retention(self) -> None:
        retain = self.ledger.toggle()
        self.notify(f"Keep closed connections: {'on' if retain else 'off'}")

    def action_close_all(self) -> None:
        self._close_all()

    @work(exclusive=True, group="close")
    async def _close_all(self) -> None:
        if self._client is None:
            self._client = ControllerClient.from_config(self._config.controller)
        try:
            await self._client.close_all()
        except ControllerError as e:
            self.notify(f"Close failed: {e}", severity="error")
            return
        self.notify("Closed all connections")

    def action_show_logs(self) -> None:
        self.push_screen(
            LogViewer(self._config, self.log_buffer, start_stream=self._start_stream)
        )

    def compose(self) -> ComposeResult:
        yield self._summary_bar
        yield Input(placeholder="Filter host, rule, chain, process", id="filter")
        yield self._table
        yield Footer()


def run_watch(config: ClashboardConfig | None = None) -> None:
    """Entry point for the TUI."""
    app = ConnectionsApp(config=config)
    app.run()
