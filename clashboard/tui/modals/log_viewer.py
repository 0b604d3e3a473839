"""Modal that follows the controller's log stream."""

from __future__ import annotations

import asyncio

from rich.text import Text
from textual import work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import RichLog, Static

from ...controller.stream import LogStream
from ...core.formatting import format_log
from ...core.logs import LogBuffer
from ...types import ClashboardConfig, LogEntry

_LEVEL_STYLES = {
    "debug": "cyan",
    "info": "blue",
    "warning": "magenta",
    "error": "red",
}


class LogViewer(ModalScreen[None]):
    """Shows buffered controller log lines and appends new ones as they arrive.

    The buffer belongs to the app, so lines survive closing and reopening
    the modal. The stream only runs while the modal is open.
    """

    BINDINGS = [
        Binding("escape", "dismiss", "Close"),
        Binding("c", "clear_logs", "Clear", priority=True),
    ]

    DEFAULT_CSS = """
    LogViewer {
        align: center middle;
    }
    LogViewer > Vertical {
        width: 90%;
        height: 85%;
        border: thick $accent;
        background: $surface;
        padding: 1 2;
    }
    LogViewer #logs-header {
        height: auto;
        margin-bottom: 1;
    }
    LogViewer #logs-view {
        height: 1fr;
    }
    """

    def __init__(
        self,
        config: ClashboardConfig,
        buffer: LogBuffer,
        *,
        stream: LogStream | None = None,
        start_stream: bool = True,
    ) -> None:
        super().__init__()
        self._config = config
        self.buffer = buffer
        self._stream = stream
        self._start_stream = start_stream
        self._stop = asyncio.Event()

    def compose(self) -> ComposeResult:
        with Vertical():
            level = self._config.logs.level or "controller default"
            yield Static(
                f"[bold]Controller log[/bold]  level: {level}  "
                "[dim]c clear, Esc close[/dim]",
                id="logs-header",
            )
            yield RichLog(id="logs-view", wrap=True, markup=False, auto_scroll=True)

    @property
    def _view(self) -> RichLog:
        return self.query_one("#logs-view", RichLog)

    def on_mount(self) -> None:
        self._replay()
        if self._start_stream:
            self._stream_logs()

    async def on_unmount(self) -> None:
        self._stop.set()
        if self._stream is not None:
            await self._stream.aclose()

    @work(exclusive=True)
    async def _stream_logs(self) -> None:
        if self._stream is None:
            self._stream = LogStream.from_config(
                self._config.controller, self._config.stream, self._config.logs,
            )
        await self._stream.run(self.add_entry, self._stop)

    def add_entry(self, entry: LogEntry) -> None:
        if self.buffer.extend([entry]):
            self._replay()
        else:
            self._write(entry)

    def _write(self, entry: LogEntry) -> None:
        self._view.write(Text(format_log(entry), style=_LEVEL_STYLES.get(entry.type, "")))

    def _replay(self) -> None:
        self._view.clear()
        for entry in self.buffer.values():
            self._write(entry)

    def action_clear_logs(self) -> None:
        self.buffer.clear()
        self._view.clear()
