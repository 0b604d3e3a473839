"""Connection table widget."""

from __future__ import annotations

from rich.text import Text
from textual.coordinate import Coordinate
from textual.widgets import DataTable

from ...core.formatting import format_bytes, format_speed
from ...types import ConnectionRow

COLUMNS = (
    "Host", "Process", "Type", "Chains", "Rule",
    "↑/s", "↓/s", "↑", "↓", "Source",
)


class ConnectionTable(DataTable):
    """One row per ledger entry; closed connections are dimmed.

    Rows are rebuilt on every refresh. The cursor follows the connection it
    was on, and stays at the same position when that connection is gone.
    """

    def on_mount(self) -> None:
        self.cursor_type = "row"
        self.zebra_stripes = True
        self._ensure_columns()

    def _ensure_columns(self) -> None:
        if not self.columns:
            self.add_columns(*COLUMNS)

    @property
    def selected_id(self) -> str | None:
        """Connection id under the cursor."""
        if not 0 <= self.cursor_row < self.row_count:
            return None
        return self.coordinate_to_cell_key(Coordinate(self.cursor_row, 0)).row_key.value

    def show_rows(self, rows: list[ConnectionRow]) -> None:
        self._ensure_columns()
        selected = self.selected_id
        cursor_row = self.cursor_row
        scroll_x, scroll_y = self.scroll_x, self.scroll_y

        self.clear()
        target = None
        for index, r in enumerate(rows):
            cells = (
                r.host, r.process, r.type, r.chains, r.rule,
                format_speed(r.upload_speed), format_speed(r.download_speed),
                format_bytes(r.upload), format_bytes(r.download), r.source_ip,
            )
            style = "dim" if r.completed else ""
            self.add_row(*(Text(c, style=style) for c in cells), key=r.id)
            if r.id == selected:
                target = index

        if not rows:
            return
        if target is None:
            target = min(cursor_row, len(rows) - 1)
        self.move_cursor(row=target, animate=False)
        self.scroll_to(scroll_x, scroll_y, animate=False)
