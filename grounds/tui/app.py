"""Proving Grounds TUI — live board of practice environments.

The board is an observer of the session store: it never trusts its own
table as state.  Every store notification (local write, or a change from
another process found by polling) rebuilds the rows from the store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from textual import work
from textual.app import App, ComposeResult
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Header

from grounds.engine.controller import LifecycleController
from grounds.engine.errors import PersistenceError
from grounds.engine.models import EnvironmentDefinition, LabView, OperationResult
from grounds.engine.reconciler import LabBoard
from grounds.shared.formatters.lab_view import COLUMNS, outcome_line, view_cells
from grounds.shared.services.session_store import FileSessionStore
from grounds.tui.widgets.status_bar import StatusBar

logger = logging.getLogger(__name__)


class GroundsApp(App):
    """Terminal board for starting and stopping labs."""

    TITLE = "Proving Grounds"
    SUB_TITLE = "Vulnerable Environments"

    BINDINGS = [
        ("s", "start_lab", "Start"),
        ("x", "stop_lab", "Stop"),
        ("r", "refresh", "Refresh"),
        ("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        controller: LifecycleController,
        catalog: Sequence[EnvironmentDefinition],
        *,
        owner: str | None = None,
        backend: str = "simulated",
        poll_interval: float = 1.0,
    ) -> None:
        super().__init__()
        self.controller = controller
        self._catalog = list(catalog)
        self._owner = owner
        self._backend = backend
        self._poll_interval = poll_interval
        self.board: LabBoard | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield DataTable(id="lab-table", cursor_type="row", zebra_stripes=True)
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#lab-table", DataTable)
        for column in COLUMNS:
            table.add_column(column, key=column.lower())

        status_bar = self.query_one(StatusBar)
        status_bar.backend = self._backend
        status_bar.user = self._owner or ""

        self.board = LabBoard(self._catalog, self.controller.store, on_change=self._render_views)
        self._render_views(self.board.views)

        store = self.controller.store
        if isinstance(store, FileSessionStore):
            self.set_interval(self._poll_interval, self._poll_store)
        table.focus()

    def _poll_store(self) -> None:
        store = self.controller.store
        if not isinstance(store, FileSessionStore):
            return
        try:
            store.poll()
        except PersistenceError as exc:
            logger.warning("Board poll failed: %s", exc)

    async def on_unmount(self) -> None:
        if self.board is not None:
            self.board.close()
        # The aiohttp session is bound to this loop.
        await self.controller.client.close()

    # ── Rendering ──

    def _render_views(self, views: list[LabView]) -> None:
        try:
            table = self.query_one("#lab-table", DataTable)
        except NoMatches:
            return  # torn down
        cursor_row = table.cursor_row
        table.clear()
        for view in views:
            table.add_row(*view_cells(view), key=str(view.id))
        if views:
            table.move_cursor(row=min(cursor_row, len(views) - 1))
        if self.board is not None:
            self.query_one(StatusBar).update_summary(self.board.summary)

    def selected_environment(self) -> int | None:
        table = self.query_one("#lab-table", DataTable)
        if table.row_count == 0:
            return None
        row_key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        return int(row_key.value) if row_key.value is not None else None

    def _name_of(self, environment_id: int) -> str | None:
        view = self.board.find(environment_id) if self.board else None
        return view.name if view else None

    # ── Actions ──

    def action_start_lab(self) -> None:
        env_id = self.selected_environment()
        if env_id is not None:
            self.start_lab(env_id)

    def action_stop_lab(self) -> None:
        env_id = self.selected_environment()
        if env_id is not None:
            self.stop_lab(env_id)

    def action_refresh(self) -> None:
        if self.board is not None:
            self._render_views(self.board.refresh())

    @work(group="lifecycle", name="start-lab")
    async def start_lab(self, environment_id: int) -> None:
        try:
            result = await self.controller.start(environment_id, owner=self._owner)
        except PersistenceError as exc:
            self.notify(str(exc), severity="error")
            return
        self._report(result)

    @work(group="lifecycle", name="stop-lab")
    async def stop_lab(self, environment_id: int) -> None:
        try:
            result = await self.controller.stop(environment_id)
        except PersistenceError as exc:
            self.notify(str(exc), severity="error")
            return
        self._report(result)

    def _report(self, result: OperationResult) -> None:
        line = outcome_line(result, self._name_of(result.environment_id))
        severity = "information" if result.ok else (
            "error" if "failed" in result.outcome.value else "warning"
        )
        self.notify(line.plain, severity=severity)
