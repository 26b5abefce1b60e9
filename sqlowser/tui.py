import subprocess
import sys
from typing import Protocol, runtime_checkable

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import Key, Resize
from textual.widgets import DataTable, Header, Static

from sqlowser.commands import CommandKind
from sqlowser.config import AppConfig
from sqlowser.diagram_canvas import DiagramCanvas
from sqlowser.dispatcher import KeyEvent, dispatch_key
from sqlowser.session import (
    ContentView,
    Mode,
    Pane,
    RenderModel,
    RowEditStyle,
    SessionController,
)
from sqlowser.sqlite_driver import ConnectionGateway, RowWindow, format_value
from sqlowser.ui_screens import CellDetailScreen, HelpScreen, KeyBindingBar
from sqlowser.worker import BackgroundWorker


MAX_TABLE_CELL_WIDTH = 40
POLL_INTERVAL_SECONDS = 0.05
# Rows used by the bars above and below the panes.
CHROME_HEIGHT = 6


@runtime_checkable
class _KeyHandlingApp(Protocol):
    def handle_session_key(self, event: Key) -> None: ...


class SessionSurface(Vertical):
    """Single focus target; every key is routed through the dispatcher."""

    can_focus = True

    def on_key(self, event: Key) -> None:
        app = self.app
        if isinstance(app, _KeyHandlingApp):
            app.handle_session_key(event)
        event.stop()
        event.prevent_default()


def _editor_text(lines: tuple[str, ...], cursor: tuple[int, int]) -> Text:
    text = Text()
    cursor_line, cursor_column = cursor
    for index, line in enumerate(lines):
        if index:
            text.append("\n")
        if index != cursor_line:
            text.append(line)
            continue
        text.append(line[:cursor_column])
        text.append(line[cursor_column : cursor_column + 1] or " ", style="reverse")
        text.append(line[cursor_column + 1 :])
    return text


class SqliteBrowserApp(App):
    ENABLE_COMMAND_PALETTE = False

    DEFAULT_CSS = """
    #top-bar {
        height: 1;
    }

    #selected-status {
        width: 1fr;
    }

    #loading-indicator {
        width: auto;
        content-align: right middle;
        color: rgb(255, 170, 60);
    }

    #keybinds-bar {
        height: auto;
        min-height: 1;
        text-wrap: wrap;
    }

    #view-bar {
        height: 1;
        background: rgb(18, 60, 90);
        color: rgb(235, 245, 255);
        padding: 0 1;
    }

    #view-bar-left {
        width: 1fr;
        content-align: left middle;
    }

    #view-bar-text {
        width: auto;
        content-align: center middle;
    }

    #mode-indicator {
        width: 1fr;
        content-align: right middle;
        text-style: bold;
    }

    #browse-panes {
        height: 1fr;
    }

    #tables-pane {
        width: 28;
        border: round rgb(70, 80, 90);
    }

    #content-pane {
        width: 1fr;
        border: round rgb(70, 80, 90);
    }

    #info-pane {
        width: 36;
        border: round rgb(70, 80, 90);
    }

    #browse-panes .focused {
        border: round rgb(80, 160, 255);
    }

    #rows-table {
        height: 1fr;
    }

    #diagram-view {
        height: 1fr;
    }

    #sql-editor {
        height: 1fr;
    }

    #sql-editor-text {
        height: 40%;
        border: round rgb(80, 120, 180);
    }

    #results-table {
        height: 1fr;
    }

    #row-editor {
        height: auto;
        border: round rgb(200, 160, 60);
    }

    #row-editor.fullscreen {
        height: 1fr;
    }

    #prompt-line {
        height: 1;
        padding: 0 1;
        color: rgb(160, 200, 255);
    }

    #message-line {
        height: auto;
        background: rgb(28, 32, 36);
        color: rgb(200, 210, 220);
        padding: 0 1;
    }

    #message-line.error {
        background: rgb(90, 10, 10);
        color: rgb(255, 230, 230);
    }

    #help-dialog {
        width: 80%;
        max-width: 100;
        height: 80%;
        padding: 1 2;
        background: rgb(20, 24, 30);
        border: heavy rgb(80, 120, 180);
        color: rgb(230, 240, 255);
    }

    HelpScreen {
        align: center middle;
    }

    #help-title {
        text-style: bold;
    }
    """

    def __init__(
        self,
        gateway: ConnectionGateway,
        config: AppConfig,
        worker: BackgroundWorker | None = None,
    ) -> None:
        super().__init__()
        self._config = config
        self._controller = SessionController(
            gateway,
            page_size=config.page_size,
            show_internal=config.show_internal_tables,
            worker=worker,
            timeout_seconds=config.query_timeout_seconds,
        )
        self._modal_open = False
        self._shown_window: RowWindow | None = None
        self._shown_results: RowWindow | None = None
        self._canvas: DiagramCanvas | None = None
        self._session_ready = False

    @property
    def controller(self) -> SessionController:
        return self._controller

    def compose(self) -> ComposeResult:
        yield Header()
        with SessionSurface(id="session-surface"):
            with Horizontal(id="top-bar"):
                yield Static("", id="selected-status", markup=False)
                yield Static("", id="loading-indicator")
            keybinds = KeyBindingBar()
            keybinds.id = "keybinds-bar"
            yield keybinds
            with Horizontal(id="view-bar"):
                yield Static("", id="view-bar-left")
                yield Static("", id="view-bar-text", markup=False)
                yield Static("", id="mode-indicator")
            with Horizontal(id="browse-panes"):
                yield Static("", id="tables-pane")
                with Vertical(id="content-pane"):
                    yield DataTable(id="rows-table")
                    yield Static("", id="schema-view", markup=False)
                yield Static("", id="info-pane", markup=False)
            yield Static("", id="diagram-view")
            with Vertical(id="sql-editor"):
                yield Static("", id="sql-editor-text")
                yield DataTable(id="results-table")
            yield Static("", id="row-editor")
            yield Static("", id="prompt-line")
            yield Static("", id="message-line", markup=False)

    def on_mount(self) -> None:
        self.title = "sqlowser"
        self.sub_title = str(self._config.database_path)
        for table_id in ("#rows-table", "#results-table"):
            table = self.query_one(table_id, DataTable)
            table.can_focus = False
            table.cursor_type = "cell"
        self.query_one("#results-table", DataTable).show_cursor = False
        self.query_one("#session-surface", SessionSurface).focus()
        self._controller.start()
        self.set_interval(POLL_INTERVAL_SECONDS, self._poll_results)
        self._session_ready = True
        self._render_session()

    def on_resize(self, event: Resize) -> None:
        self._controller.set_viewport(
            event.size.width,
            max(1, event.size.height - CHROME_HEIGHT),
        )
        if self._session_ready:
            self._render_session()

    def on_unmount(self) -> None:
        self._controller.shutdown()

    def _poll_results(self) -> None:
        if self._controller.process_results():
            self._render_session()

    def handle_session_key(self, event: Key) -> None:
        if self._modal_open:
            return
        key_event = KeyEvent(
            key=event.key,
            character=event.character if event.is_printable else None,
        )
        command = dispatch_key(self._controller.state, key_event)
        if command is None:
            return
        self._controller.execute(command)
        if self._controller.state.mode is Mode.TERMINATED:
            self.exit()
            return
        request = self._controller.take_ui_request()
        if request is CommandKind.SHOW_HELP:
            self._open_modal(HelpScreen())
        elif request is CommandKind.VIEW_CELL:
            self._show_cell_detail()
        elif request is CommandKind.YANK_CELL:
            self._yank_cell()
        self._render_session()

    def _open_modal(self, screen: HelpScreen | CellDetailScreen) -> None:
        if self._modal_open:
            return
        self._modal_open = True
        self.push_screen(screen)

    def _show_cell_detail(self) -> None:
        cell = self._controller.current_cell()
        if cell is None:
            self._update_message("No cell to view.")
            return
        column, value = cell
        table_text = self._controller.state.active_table or "<none>"
        self._open_modal(
            CellDetailScreen(
                value,
                self._status_text(self._controller.render_model()),
                f"Cell Detail ({table_text}.{column})",
            )
        )

    def _yank_cell(self) -> None:
        cell = self._controller.current_cell()
        if cell is None:
            self._update_message("No cell to yank.")
            return
        self.copy_text_to_clipboard(cell[1])
        self._update_message("Yanked cell to clipboard.")

    def copy_text_to_clipboard(self, text: str) -> None:
        self.copy_to_clipboard(text)
        if sys.platform == "darwin":
            subprocess.run(["pbcopy"], input=text, text=True, check=True)

    def _update_message(self, message: str, is_error: bool = False) -> None:
        message_line = self.query_one("#message-line", Static)
        message_line.update(message)
        message_line.set_class(is_error, "error")

    # -- rendering --------------------------------------------------------

    def _status_text(self, model: RenderModel) -> str:
        policy = "read-write" if model.read_write else "read-only"
        table_text = model.active_table or "<none>"
        window = model.window
        page_text = ""
        if window.columns:
            total = window.total_rows
            pages = "?" if window.last_page is None else str(window.last_page + 1)
            page_text = f" | page {window.page_index + 1}/{pages} | {total if total is not None else '?'} rows"
        filter_text = f" | filter: {model.filter_text}" if model.filter_text else ""
        return (
            f"{self._config.database_path.name} ({policy}) | table: {table_text}"
            f"{page_text}{filter_text}"
        )

    def _render_session(self) -> None:
        model = self._controller.render_model()
        self.query_one("#selected-status", Static).update(self._status_text(model))
        self.query_one("#loading-indicator", Static).update("loading..." if model.loading else "")
        self.query_one("#keybinds-bar", KeyBindingBar).show_hints(model.hints)
        self.query_one("#mode-indicator", Static).update(self._mode_text(model))
        self.query_one("#view-bar-text", Static).update(self._view_text(model))

        fullscreen_edit = (
            model.mode is Mode.ROW_EDIT and model.row_edit_style is RowEditStyle.FULLSCREEN
        )
        self.query_one("#browse-panes", Horizontal).display = (
            model.mode in (Mode.BROWSE, Mode.ROW_EDIT) and not fullscreen_edit
        )
        self.query_one("#diagram-view", Static).display = model.mode is Mode.DIAGRAM
        self.query_one("#sql-editor", Vertical).display = model.mode is Mode.SQL_EDITOR
        row_editor = self.query_one("#row-editor", Static)
        row_editor.display = model.mode is Mode.ROW_EDIT
        row_editor.set_class(fullscreen_edit, "fullscreen")
        prompt_line = self.query_one("#prompt-line", Static)
        prompt_line.display = model.prompt is not None

        if model.mode in (Mode.BROWSE, Mode.ROW_EDIT):
            self._render_browse(model)
        if model.mode is Mode.DIAGRAM:
            self._render_diagram(model)
        if model.mode is Mode.SQL_EDITOR:
            self._render_sql_editor(model)
        if model.mode is Mode.ROW_EDIT:
            row_editor.update(_editor_text(model.editor_lines, model.editor_cursor))
        if model.prompt is not None:
            prompt_line.update(_editor_text((model.prompt,), (0, model.prompt_cursor)))

        if model.status is not None:
            self._update_message(model.status.text, model.status.is_error)
        else:
            self._update_message("")

    def _mode_text(self, model: RenderModel) -> str:
        if model.mode is Mode.ROW_EDIT and model.row_edit_style is not None:
            return f"EDIT ({model.row_edit_style.value})"
        return model.mode.value.replace("_", " ").upper()

    def _view_text(self, model: RenderModel) -> str:
        if model.mode is Mode.DIAGRAM:
            return "Relationship Diagram"
        if model.mode is Mode.SQL_EDITOR:
            return "SQL Editor"
        if model.content_view is ContentView.SCHEMA:
            return f"Schema ({model.active_table or '<none>'})"
        return f"Table Row Data ({model.active_table or '<none>'})"

    def _render_browse(self, model: RenderModel) -> None:
        tables_pane = self.query_one("#tables-pane", Static)
        tables_pane.update(self._tables_text(model))
        tables_pane.set_class(model.focused_pane is Pane.TABLES, "focused")
        tables_pane.border_title = f"Tables /{model.table_filter}" if model.table_filter else "Tables"

        content_pane = self.query_one("#content-pane", Vertical)
        content_pane.set_class(model.focused_pane is Pane.CONTENT, "focused")
        content_pane.border_title = model.active_table or "Content"
        rows_table = self.query_one("#rows-table", DataTable)
        schema_view = self.query_one("#schema-view", Static)
        rows_table.display = model.content_view is ContentView.ROWS
        schema_view.display = model.content_view is ContentView.SCHEMA
        if model.content_view is ContentView.ROWS:
            if model.window is not self._shown_window:
                self._fill_table(rows_table, model.window)
                self._shown_window = model.window
            if model.window.rows:
                row, column = model.cursor
                rows_table.move_cursor(row=row, column=column)
        else:
            schema_view.update("\n".join(model.schema_lines))

        info_pane = self.query_one("#info-pane", Static)
        info_pane.update("\n".join(model.info_lines))
        info_pane.set_class(model.focused_pane is Pane.INFO, "focused")
        info_pane.border_title = "Info"

    def _tables_text(self, model: RenderModel) -> Text:
        text = Text(no_wrap=True, overflow="ellipsis")
        for index, table in enumerate(model.tables):
            if index:
                text.append("\n")
            marker = "▸ " if table.name == model.active_table else "  "
            count = "" if table.row_count is None else f" ({table.row_count})"
            style = ""
            if index == model.table_index:
                style = "reverse" if model.focused_pane is Pane.TABLES else "bold"
            text.append(f"{marker}{table.name}{count}", style=style or None)
        if not model.tables:
            text.append("<no tables>", style="dim")
        return text

    def _fill_table(self, table: DataTable, window: RowWindow) -> None:
        table.clear(columns=True)
        if not window.columns:
            return
        table.add_columns(*window.columns)
        for row in window.rows:
            table.add_row(
                *[
                    Text("NULL", style="dim italic")
                    if value is None
                    else format_value(value, MAX_TABLE_CELL_WIDTH)
                    for value in row
                ]
            )

    def _render_diagram(self, model: RenderModel) -> None:
        layout = model.diagram
        diagram_view = self.query_one("#diagram-view", Static)
        if layout is None or not layout.boxes:
            diagram_view.update("No tables to draw.")
            return
        if self._canvas is None or self._canvas.layout is not layout:
            self._canvas = DiagramCanvas(layout)
        size = diagram_view.size
        width = size.width or model.diagram_scroll[0] + layout.width
        height = size.height or layout.height
        diagram_view.update(self._canvas.crop(model.diagram_scroll, (width, height)))

    def _render_sql_editor(self, model: RenderModel) -> None:
        editor = self.query_one("#sql-editor-text", Static)
        editor.update(_editor_text(model.editor_lines, model.editor_cursor))
        editor.border_title = "SQL"
        results = self.query_one("#results-table", DataTable)
        if model.results is not self._shown_results:
            self._fill_table(results, model.results)
            self._shown_results = model.results
