"""Traffic summary line: connection counts, throughput, totals."""

from __future__ import annotations

from textual.widgets import Static

from ...core.formatting import format_bytes, format_speed
from ...types import TrafficSummary


class SummaryBar(Static):
    """Shows aggregate traffic for the current ledger and the retention state."""

    DEFAULT_CSS = """
    SummaryBar {
        padding: 0 1;
        height: auto;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__("", **kwargs)
        self._summary = TrafficSummary()
        self._retain = False

    def on_mount(self) -> None:
        self._refresh_display()

    @property
    def summary(self) -> TrafficSummary:
        return self._summary

    @property
    def retain(self) -> bool:
        return self._retain

    def update_summary(self, summary: TrafficSummary, retain: bool) -> None:
        self._summary = summary
        self._retain = retain
        self._refresh_display()

    def _refresh_display(self) -> None:
        s = self._summary
        retain = "[green]on[/green]" if self._retain else "[dim]off[/dim]"
        self.update(
            f"[bold]CONNECTIONS[/bold] {s.active} open, {s.completed} closed  "
            f"[bold]↑[/bold] {format_speed(s.upload_speed)}  "
            f"[bold]↓[/bold] {format_speed(s.download_speed)}  "
            f"[dim]total ↑ {format_bytes(s.upload_total)} "
            f"↓ {format_bytes(s.download_total)}[/dim]  "
            f"keep closed: {retain}"
        )
