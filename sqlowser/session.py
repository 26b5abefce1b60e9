from dataclasses import dataclass, field
from enum import Enum
from functools import partial
import logging
from pathlib import Path
from typing import Callable

from sqlowser.commands import Command, CommandKind, UI_COMMANDS
from sqlowser.diagram_canvas import clamp_scroll
from sqlowser.diagram_layout import DiagramLayout, layout_diagram
from sqlowser.errors import (
    PolicyError,
    QueryError,
    SqlowserError,
    WriteInProgressError,
)
from sqlowser.export import ExportFormat, export_source
from sqlowser.pagination import PaginationCache, SqlSource, TableSource
from sqlowser.relationship_graph import RelationshipGraph, build_relationship_graph
from sqlowser.sqlite_driver import (
    BlobPreview,
    ConnectionGateway,
    RowValue,
    RowWindow,
    TableDescriptor,
    coerce_edit_value,
    format_value,
    is_mutating_statement,
)
from sqlowser.text_editor import (
    CellOrigin,
    Direction,
    EditBuffer,
    EditorAction,
    EditorMode,
    SQL_ORIGIN,
)
from sqlowser.worker import BackgroundWorker, WorkerResult


logger = logging.getLogger(__name__)

FULLSCREEN_EDIT_THRESHOLD = 50
READ_ONLY_MESSAGE = "Database is opened read-only. Use --read-write to enable editing"


class Mode(Enum):
    BROWSE = "browse"
    DIAGRAM = "diagram"
    SQL_EDITOR = "sql_editor"
    ROW_EDIT = "row_edit"
    TERMINATED = "terminated"


class RowEditStyle(Enum):
    INLINE = "inline"
    FULLSCREEN = "fullscreen"


class Pane(Enum):
    TABLES = "tables"
    CONTENT = "content"
    INFO = "info"


PANE_ORDER = (Pane.TABLES, Pane.CONTENT, Pane.INFO)


class ContentView(Enum):
    ROWS = "rows"
    SCHEMA = "schema"


class PromptKind(Enum):
    FILTER = "filter"
    COMMAND = "command"


@dataclass(frozen=True)
class StatusMessage:
    text: str
    is_error: bool = False


@dataclass
class Prompt:
    kind: PromptKind
    buffer: EditBuffer
    target: Pane = Pane.TABLES
    previous: str = ""

    @property
    def label(self) -> str:
        return ":" if self.kind is PromptKind.COMMAND else "/"


@dataclass
class SessionState:
    read_write: bool
    browse: PaginationCache = field(repr=False)
    results: PaginationCache = field(repr=False)
    mode: Mode = Mode.BROWSE
    row_edit_style: RowEditStyle | None = None
    focused_pane: Pane = Pane.TABLES
    tables: tuple[TableDescriptor, ...] = ()
    table_filter: str = ""
    table_index: int = 0
    active_table: str | None = None
    filter_text: str = ""
    query_text: str = ""
    content_view: ContentView = ContentView.ROWS
    cursor_row: int = 0
    cursor_column: int = 0
    prompt: Prompt | None = None
    editor: EditBuffer | None = None
    status: StatusMessage | None = None
    diagram_scroll: tuple[int, int] = (0, 0)
    viewport: tuple[int, int] = (80, 24)
    show_internal: bool = False
    tables_loading: bool = False
    ui_request: CommandKind | None = None

    def visible_tables(self) -> tuple[TableDescriptor, ...]:
        if not self.table_filter:
            return self.tables
        needle = self.table_filter.lower()
        return tuple(table for table in self.tables if needle in table.name.lower())

    def selected_table(self) -> TableDescriptor | None:
        visible = self.visible_tables()
        if not visible:
            return None
        return visible[min(self.table_index, len(visible) - 1)]

    def table(self, name: str | None) -> TableDescriptor | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None


@dataclass(frozen=True)
class RenderModel:
    mode: Mode
    row_edit_style: RowEditStyle | None
    focused_pane: Pane
    content_view: ContentView
    read_write: bool
    tables: tuple[TableDescriptor, ...]
    table_index: int
    table_filter: str
    active_table: str | None
    filter_text: str
    window: RowWindow
    results: RowWindow
    cursor: tuple[int, int]
    editor_lines: tuple[str, ...]
    editor_cursor: tuple[int, int]
    prompt: str | None
    prompt_cursor: int
    status: StatusMessage | None
    info_lines: tuple[str, ...]
    schema_lines: tuple[str, ...]
    diagram: DiagramLayout | None
    diagram_scroll: tuple[int, int]
    loading: bool
    hints: tuple[tuple[str, str], ...]


def edit_text_for(value: RowValue) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return repr(value)
    return str(value)


def table_info_lines(table: TableDescriptor) -> tuple[str, ...]:
    count = "?" if table.row_count is None else str(table.row_count)
    lines = [f"{table.name}", f"rows: {count}", f"columns: {len(table.columns)}"]
    if table.primary_keys:
        lines.append(f"primary key: {', '.join(table.ordered_primary_keys)}")
    if table.foreign_keys:
        lines.append("foreign keys:")
        lines.extend(
            f"  {edge.source_column} -> {edge.target_table}.{edge.target_column or '?'}"
            for edge in table.foreign_keys
        )
    if table.indexes:
        lines.append("indexes:")
        for index in table.indexes:
            unique = " unique" if index.unique else ""
            lines.append(f"  {index.name}{unique} ({', '.join(index.columns)})")
    return tuple(lines)


def schema_lines(table: TableDescriptor) -> tuple[str, ...]:
    lines = [f"Table: {table.name}", ""]
    name_width = max([len("column"), *(len(column.name) for column in table.columns)])
    type_width = max([len("type"), *(len(column.declared_type) for column in table.columns)])
    lines.append(f"{'column'.ljust(name_width)}  {'type'.ljust(type_width)}  null  pk  default")
    for column in table.columns:
        lines.append(
            f"{column.name.ljust(name_width)}  {column.declared_type.ljust(type_width)}  "
            f"{'yes ' if column.nullable else 'no  '}  "
            f"{str(column.primary_key) if column.primary_key else '-':<2}  "
            f"{column.default if column.default is not None else ''}"
        )
    for edge in table.foreign_keys:
        lines.append(
            f"FK {edge.source_column} -> {edge.target_table}.{edge.target_column or '?'} "
            f"(on update {edge.on_update}, on delete {edge.on_delete})"
        )
    for index in table.indexes:
        kind = "UNIQUE INDEX" if index.unique else "INDEX"
        lines.append(f"{kind} {index.name} ({', '.join(index.columns)})")
    if table.sql:
        lines.extend(["", *table.sql.splitlines()])
    return tuple(lines)


_HINTS = {
    Mode.BROWSE: (
        ("tab", "Pane"),
        ("enter", "Open/Edit"),
        ("/", "Filter"),
        ("n/p", "Page"),
        ("s", "Schema"),
        ("d", "Diagram"),
        ("e", "SQL"),
        (":", "Command"),
        ("?", "Help"),
        ("q", "Quit"),
    ),
    Mode.DIAGRAM: (("hjkl", "Scroll"), ("esc", "Back"), ("q", "Quit")),
    Mode.SQL_EDITOR: (
        ("ctrl+enter/f5", "Run"),
        ("ctrl+n/p", "Results page"),
        ("ctrl+l", "Clear"),
        ("esc", "Back"),
    ),
}
_INLINE_EDIT_HINTS = (
    ("enter", "Save"),
    ("up/down", "Edit row"),
    ("ctrl+e", "Expand"),
    ("esc", "Cancel"),
)
_FULLSCREEN_EDIT_HINTS = (("ctrl+s", "Save"), ("enter", "Newline"), ("esc", "Cancel"))
_PROMPT_HINTS = (("enter", "Apply"), ("esc", "Cancel"))


def _same_shape(left: TableDescriptor, right: TableDescriptor) -> bool:
    return left.columns == right.columns and left.without_rowid == right.without_rowid


class SessionController:
    """Owns the single `SessionState` and applies commands to it."""

    def __init__(
        self,
        gateway: ConnectionGateway,
        *,
        page_size: int = 100,
        show_internal: bool = False,
        worker: BackgroundWorker | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._gateway = gateway
        self._worker = worker or BackgroundWorker(gateway, timeout_seconds=timeout_seconds)
        self.state = SessionState(
            read_write=gateway.read_write,
            browse=PaginationCache(self._worker, "browse", page_size),
            results=PaginationCache(self._worker, "query", page_size),
            show_internal=show_internal,
        )
        self._graph: RelationshipGraph | None = None
        self._layout: DiagramLayout | None = None
        self._layout_viewport: tuple[int, int] | None = None
        self._write_purpose = ""
        self._write_label = ""
        self._handlers = {
            CommandKind.QUIT: self.quit,
            CommandKind.FOCUS_NEXT: self.focus_next_pane,
            CommandKind.FOCUS_PREVIOUS: self.focus_previous_pane,
            CommandKind.OPEN_DIAGRAM: self.open_diagram,
            CommandKind.CLOSE_DIAGRAM: self.close_diagram,
            CommandKind.OPEN_SQL_EDITOR: self.open_sql_editor,
            CommandKind.CANCEL_SQL_EDITOR: self.cancel_sql_editor,
            CommandKind.EXECUTE_SQL: self.execute_sql,
            CommandKind.RESULTS_NEXT_PAGE: self.state.results.next_page,
            CommandKind.RESULTS_PREV_PAGE: self.state.results.prev_page,
            CommandKind.TOGGLE_CONTENT_VIEW: self.toggle_content_view,
            CommandKind.OPEN_FILTER_PROMPT: self.open_filter_prompt,
            CommandKind.OPEN_COMMAND_PROMPT: self.open_command_prompt,
            CommandKind.CANCEL_PROMPT: self.cancel_prompt,
            CommandKind.REFRESH: self.refresh,
            CommandKind.DISMISS: self.dismiss,
            CommandKind.NEXT_PAGE: self.next_page,
            CommandKind.PREV_PAGE: self.prev_page,
            CommandKind.FIRST_ROW: self.first_row,
            CommandKind.LAST_ROW: self.last_row,
            CommandKind.ACTIVATE: self.activate,
            CommandKind.EXPAND_ROW_EDIT: self.expand_row_edit,
            CommandKind.SAVE_ROW_EDIT: self.save_row_edit,
            CommandKind.CANCEL_ROW_EDIT: self.cancel_row_edit,
        }

    @property
    def worker(self) -> BackgroundWorker:
        return self._worker

    def start(self) -> None:
        self.load_tables()

    def shutdown(self) -> None:
        self._worker.shutdown()

    def _set_status(self, text: str, is_error: bool = False) -> None:
        self.state.status = StatusMessage(text=text, is_error=is_error)

    def _set_error(self, error: SqlowserError) -> None:
        self._set_status(str(error), is_error=True)

    def execute(self, command: Command) -> None:
        if command.kind in UI_COMMANDS:
            self.state.ui_request = command.kind
            return
        if command.kind is CommandKind.MOVE:
            if command.direction is not None:
                self.move(command.direction)
            return
        if command.kind is CommandKind.MOVE_ROW_EDIT:
            if command.direction is not None:
                self.move_row_edit(command.direction)
            return
        if command.kind is CommandKind.SCROLL_DIAGRAM:
            if command.direction is not None:
                self.scroll_diagram(command.direction)
            return
        if command.kind is CommandKind.EDIT:
            self._edit(command)
            return
        self._handlers[command.kind]()

    def take_ui_request(self) -> CommandKind | None:
        request = self.state.ui_request
        self.state.ui_request = None
        return request

    # -- tables -----------------------------------------------------------

    def load_tables(self) -> None:
        self.state.tables_loading = True
        self._worker.submit(
            "tables",
            self._gateway.list_tables,
            self.state.show_internal,
        )

    def _apply_tables(self, tables: list[TableDescriptor]) -> None:
        state = self.state
        state.tables = tuple(tables)
        state.tables_loading = False
        self._graph = None
        self._layout = None
        visible = state.visible_tables()
        state.table_index = min(state.table_index, max(0, len(visible) - 1))
        active = state.table(state.active_table)
        if active is not None:
            source = state.browse.source
            if not isinstance(source, TableSource) or not _same_shape(source.table, active):
                state.browse.set_source(TableSource(active), state.filter_text)
            return
        if state.active_table is not None:
            logger.info("Table %s disappeared", state.active_table)
            state.active_table = None
            state.filter_text = ""
            state.browse.clear()
        if visible:
            self._open_table(visible[state.table_index])

    def _open_table(self, table: TableDescriptor) -> None:
        state = self.state
        state.active_table = table.name
        state.filter_text = ""
        state.cursor_row = 0
        state.cursor_column = 0
        state.content_view = ContentView.ROWS
        state.browse.set_source(TableSource(table))
        logger.debug("Opened table %s", table.name)

    def select_table(self) -> None:
        table = self.state.selected_table()
        if table is None:
            return
        self._open_table(table)
        self.state.focused_pane = Pane.CONTENT

    # -- mode transitions -------------------------------------------------

    def quit(self) -> None:
        self.state.mode = Mode.TERMINATED

    def focus_next_pane(self) -> None:
        self._cycle_pane(1)

    def focus_previous_pane(self) -> None:
        self._cycle_pane(-1)

    def _cycle_pane(self, step: int) -> None:
        if self.state.mode is not Mode.BROWSE:
            return
        position = PANE_ORDER.index(self.state.focused_pane)
        self.state.focused_pane = PANE_ORDER[(position + step) % len(PANE_ORDER)]

    def open_diagram(self) -> None:
        if self.state.mode is not Mode.BROWSE:
            return
        self.state.mode = Mode.DIAGRAM
        self.state.diagram_scroll = (0, 0)
        graph = self.relationship_graph()
        if graph.dropped:
            self._set_status(
                f"{len(graph.dropped)} foreign key(s) skipped: {graph.dropped[0]}",
                is_error=True,
            )

    def close_diagram(self) -> None:
        if self.state.mode is Mode.DIAGRAM:
            self.state.mode = Mode.BROWSE

    def relationship_graph(self) -> RelationshipGraph:
        if self._graph is None:
            self._graph = build_relationship_graph(self.state.tables)
        return self._graph

    def diagram_layout(self) -> DiagramLayout:
        viewport = self.state.viewport
        if self._layout is None or self._layout_viewport != viewport:
            self._layout = layout_diagram(self.relationship_graph(), viewport)
            self._layout_viewport = viewport
        return self._layout

    def scroll_diagram(self, direction: Direction) -> None:
        if self.state.mode is not Mode.DIAGRAM:
            return
        steps = {
            Direction.UP: (0, -1),
            Direction.DOWN: (0, 1),
            Direction.LEFT: (-4, 0),
            Direction.RIGHT: (4, 0),
        }
        dx, dy = steps[direction]
        x, y = self.state.diagram_scroll
        self.state.diagram_scroll = clamp_scroll(
            self.diagram_layout(),
            (x + dx, y + dy),
            self.state.viewport,
        )

    def open_sql_editor(self) -> None:
        if self.state.mode is not Mode.BROWSE:
            return
        self.state.mode = Mode.SQL_EDITOR
        self.state.editor = EditBuffer(self.state.query_text, EditorMode.MULTI_LINE, SQL_ORIGIN)

    def cancel_sql_editor(self) -> None:
        if self.state.mode is not Mode.SQL_EDITOR:
            return
        if self.state.editor is not None:
            self.state.query_text = self.state.editor.text
        self.state.editor = None
        self.state.mode = Mode.BROWSE

    def execute_sql(self) -> None:
        state = self.state
        if state.mode is not Mode.SQL_EDITOR or state.editor is None:
            return
        state.query_text = state.editor.text
        sql = state.query_text.strip()
        if not sql:
            self._set_error(QueryError("Query is empty"))
            return
        if not is_mutating_statement(sql):
            logger.debug("Running query from editor")
            state.results.set_source(SqlSource(sql))
            return
        if not state.read_write:
            self._set_error(PolicyError(READ_ONLY_MESSAGE))
            return
        self._submit_write("statement", "Statement", self._gateway.execute_statement, sql)

    def begin_row_edit(self) -> None:
        state = self.state
        if state.mode is not Mode.BROWSE or state.content_view is not ContentView.ROWS:
            return
        if not state.read_write:
            self._set_error(PolicyError(READ_ONLY_MESSAGE))
            return
        source = state.browse.source
        if (
            state.browse.loading
            or not isinstance(source, TableSource)
            or source.table.name != state.active_table
        ):
            self._set_status("Rows are still loading; try again when the table is shown")
            return
        # Columns and row ids come from the shown window's own table.
        table = source.table
        window = state.browse.current_window()
        if not window.rows:
            return
        self._clamp_cursor(window)
        row = window.rows[state.cursor_row]
        column_name = window.columns[state.cursor_column]
        value = row[state.cursor_column]
        if isinstance(value, BlobPreview):
            self._set_error(QueryError("BLOB values cannot be edited here"))
            return
        origin = self._cell_origin(table, window, column_name)
        if origin is None:
            self._set_error(QueryError(f"Rows of {table.name} have no rowid or primary key"))
            return
        text = edit_text_for(value)
        fullscreen = len(text) > FULLSCREEN_EDIT_THRESHOLD or "\n" in text
        state.row_edit_style = RowEditStyle.FULLSCREEN if fullscreen else RowEditStyle.INLINE
        state.editor = EditBuffer(
            text,
            EditorMode.MULTI_LINE if fullscreen else EditorMode.SINGLE_LINE,
            origin,
        )
        state.mode = Mode.ROW_EDIT

    def _cell_origin(
        self,
        table: TableDescriptor,
        window: RowWindow,
        column_name: str,
    ) -> CellOrigin | None:
        row_index = self.state.cursor_row
        if window.row_ids is not None:
            return CellOrigin(
                table=table.name,
                column=column_name,
                row_index=row_index,
                row_id=window.row_ids[row_index],
            )
        key_columns = table.ordered_primary_keys
        if not key_columns:
            return None
        row = window.rows[row_index]
        key_values = tuple(
            (name, row[window.columns.index(name)]) for name in key_columns
        )
        return CellOrigin(
            table=table.name,
            column=column_name,
            row_index=row_index,
            key_values=key_values,
        )

    def move_row_edit(self, direction: Direction) -> None:
        """Moves the inline editor to the same column of the adjacent row.

        Unsaved text in the current cell is discarded.
        """
        state = self.state
        if (
            state.mode is not Mode.ROW_EDIT
            or state.row_edit_style is not RowEditStyle.INLINE
            or state.editor is None
            or direction not in (Direction.UP, Direction.DOWN)
        ):
            return
        origin = state.editor.origin
        if not isinstance(origin, CellOrigin):
            return
        target = origin.row_index + (-1 if direction is Direction.UP else 1)
        if not 0 <= target < len(state.browse.current_window().rows):
            return
        self._leave_row_edit()
        state.cursor_row = target
        self.begin_row_edit()

    def expand_row_edit(self) -> None:
        state = self.state
        if (
            state.mode is not Mode.ROW_EDIT
            or state.row_edit_style is not RowEditStyle.INLINE
            or state.editor is None
        ):
            return
        state.editor = EditBuffer(state.editor.text, EditorMode.MULTI_LINE, state.editor.origin)
        state.row_edit_style = RowEditStyle.FULLSCREEN

    def save_row_edit(self) -> None:
        state = self.state
        if state.mode is not Mode.ROW_EDIT or state.editor is None:
            return
        origin = state.editor.origin
        table = state.table(origin.table) if isinstance(origin, CellOrigin) else None
        if not isinstance(origin, CellOrigin) or table is None:
            self._set_error(QueryError("The edited table is no longer available"))
            return
        update = partial(
            self._gateway.update_cell,
            table,
            origin.column,
            coerce_edit_value(state.editor.text),
            row_id=origin.row_id,
            key_values=dict(origin.key_values) or None,
        )
        self._submit_write("cell", f"{table.name}.{origin.column}", update)

    def cancel_row_edit(self) -> None:
        if self.state.mode is not Mode.ROW_EDIT:
            return
        self._leave_row_edit()

    def _leave_row_edit(self) -> None:
        self.state.editor = None
        self.state.row_edit_style = None
        self.state.mode = Mode.BROWSE

    def _submit_write(
        self,
        purpose: str,
        label: str,
        fn: Callable[..., object],
        *args: object,
    ) -> None:
        try:
            self._worker.submit_write(fn, *args)
        except WriteInProgressError as error:
            self._set_error(error)
            return
        self._write_purpose = purpose
        self._write_label = label
        self._set_status(f"Saving {label}...")

    # -- browse navigation ------------------------------------------------

    def move(self, direction: Direction) -> None:
        state = self.state
        if state.mode is not Mode.BROWSE:
            return
        if state.focused_pane is Pane.TABLES:
            if direction in (Direction.UP, Direction.DOWN):
                step = -1 if direction is Direction.UP else 1
                last = max(0, len(state.visible_tables()) - 1)
                state.table_index = min(max(state.table_index + step, 0), last)
            return
        if state.focused_pane is not Pane.CONTENT or state.content_view is not ContentView.ROWS:
            return
        window = state.browse.current_window()
        if direction is Direction.UP:
            state.cursor_row -= 1
        elif direction is Direction.DOWN:
            state.cursor_row += 1
        elif direction is Direction.LEFT:
            state.cursor_column -= 1
        else:
            state.cursor_column += 1
        self._clamp_cursor(window)

    def _clamp_cursor(self, window: RowWindow) -> None:
        state = self.state
        state.cursor_row = min(max(state.cursor_row, 0), max(0, len(window.rows) - 1))
        state.cursor_column = min(max(state.cursor_column, 0), max(0, len(window.columns) - 1))

    def next_page(self) -> None:
        if self.state.mode is Mode.BROWSE and self.state.focused_pane is Pane.CONTENT:
            self.state.browse.next_page()

    def prev_page(self) -> None:
        if self.state.mode is Mode.BROWSE and self.state.focused_pane is Pane.CONTENT:
            self.state.browse.prev_page()

    def first_row(self) -> None:
        state = self.state
        if state.focused_pane is Pane.TABLES:
            state.table_index = 0
        else:
            state.cursor_row = 0

    def last_row(self) -> None:
        state = self.state
        if state.focused_pane is Pane.TABLES:
            state.table_index = max(0, len(state.visible_tables()) - 1)
        else:
            state.cursor_row = max(0, len(state.browse.current_window().rows) - 1)

    def activate(self) -> None:
        if self.state.mode is not Mode.BROWSE:
            return
        if self.state.focused_pane is Pane.TABLES:
            self.select_table()
        elif self.state.focused_pane is Pane.CONTENT:
            self.begin_row_edit()

    def toggle_content_view(self) -> None:
        state = self.state
        if state.mode is not Mode.BROWSE:
            return
        state.content_view = (
            ContentView.SCHEMA if state.content_view is ContentView.ROWS else ContentView.ROWS
        )

    def refresh(self) -> None:
        self.load_tables()
        self.state.browse.refresh()

    def dismiss(self) -> None:
        state = self.state
        if state.status is not None:
            state.status = None
        elif state.focused_pane is Pane.CONTENT and state.filter_text:
            state.filter_text = ""
            state.browse.set_filter("")
        elif state.table_filter:
            state.table_filter = ""

    def set_viewport(self, width: int, height: int) -> None:
        self.state.viewport = (max(1, width), max(1, height))
        if self.state.mode is Mode.DIAGRAM:
            self.state.diagram_scroll = clamp_scroll(
                self.diagram_layout(),
                self.state.diagram_scroll,
                self.state.viewport,
            )

    # -- prompt line ------------------------------------------------------

    def open_filter_prompt(self) -> None:
        state = self.state
        if state.mode is not Mode.BROWSE:
            return
        if state.focused_pane is Pane.TABLES:
            current = state.table_filter
        elif state.focused_pane is Pane.CONTENT:
            current = state.filter_text
        else:
            return
        state.prompt = Prompt(
            kind=PromptKind.FILTER,
            buffer=EditBuffer(current, EditorMode.SINGLE_LINE),
            target=state.focused_pane,
            previous=current,
        )

    def open_command_prompt(self) -> None:
        if self.state.mode is not Mode.BROWSE:
            return
        self.state.prompt = Prompt(
            kind=PromptKind.COMMAND,
            buffer=EditBuffer("", EditorMode.SINGLE_LINE),
        )

    def cancel_prompt(self) -> None:
        prompt = self.state.prompt
        if prompt is None:
            return
        if prompt.kind is PromptKind.FILTER and prompt.target is Pane.TABLES:
            self._set_table_filter(prompt.previous)
        self.state.prompt = None

    def _set_table_filter(self, text: str) -> None:
        self.state.table_filter = text
        self.state.table_index = min(
            self.state.table_index,
            max(0, len(self.state.visible_tables()) - 1),
        )

    def _submit_prompt(self) -> None:
        state = self.state
        prompt = state.prompt
        if prompt is None:
            return
        state.prompt = None
        text = prompt.buffer.text.strip()
        if prompt.kind is PromptKind.COMMAND:
            self.run_command(text)
            return
        if prompt.target is Pane.TABLES:
            self._set_table_filter(text)
            return
        table = state.table(state.active_table)
        state.filter_text = text
        state.cursor_row = 0
        state.browse.set_filter(text)
        if text and table is not None and not table.text_columns:
            self._set_status(f"{table.name} has no text columns; filter ignored")

    def run_command(self, text: str) -> None:
        parts = text.split(maxsplit=2)
        if not parts:
            return
        name = parts[0].lower()
        if name in ("q", "quit"):
            self.quit()
        elif name == "help":
            self.state.ui_request = CommandKind.SHOW_HELP
        elif name in ("r", "refresh"):
            self.refresh()
        elif name == "internal":
            self.state.show_internal = not self.state.show_internal
            self.load_tables()
        elif name == "pagesize":
            self._set_page_size(parts[1:])
        elif name == "export":
            self._start_export(parts[1:])
        else:
            self._set_error(QueryError(f"Unknown command: {name}"))

    def _set_page_size(self, arguments: list[str]) -> None:
        try:
            page_size = int(arguments[0])
        except (IndexError, ValueError):
            self._set_error(QueryError("Usage: pagesize N"))
            return
        if page_size < 1:
            self._set_error(QueryError("Page size must be at least 1"))
            return
        self.state.cursor_row = 0
        self.state.browse.set_page_size(page_size)
        self.state.results.set_page_size(page_size)
        self._set_status(f"Page size set to {page_size}")

    def _start_export(self, arguments: list[str]) -> None:
        if len(arguments) != 2:
            self._set_error(QueryError("Usage: export csv|json PATH"))
            return
        try:
            export_format = ExportFormat.parse(arguments[0])
        except ValueError as error:
            self._set_error(QueryError(str(error)))
            return
        source = self.state.browse.source
        if source is None:
            self._set_error(QueryError("Nothing to export; open a table first"))
            return
        path = Path(arguments[1]).expanduser()
        self._worker.submit(
            "export",
            partial(
                export_source,
                self._gateway,
                source,
                export_format,
                path,
                filter_text=self.state.filter_text,
            ),
        )
        self._set_status(f"Exporting to {path}...")

    def _edit(self, command: Command) -> None:
        state = self.state
        if command.edit is None:
            return
        if state.mode is Mode.BROWSE and state.prompt is not None:
            prompt = state.prompt
            action = prompt.buffer.apply(command.edit, text=command.text, direction=command.direction)
            if action is EditorAction.COMMIT:
                self._submit_prompt()
            elif prompt.kind is PromptKind.FILTER and prompt.target is Pane.TABLES:
                self._set_table_filter(prompt.buffer.text.strip())
            return
        if state.editor is None or state.mode not in (Mode.SQL_EDITOR, Mode.ROW_EDIT):
            return
        action = state.editor.apply(command.edit, text=command.text, direction=command.direction)
        if action is EditorAction.COMMIT and state.mode is Mode.ROW_EDIT:
            self.save_row_edit()

    # -- results ----------------------------------------------------------

    def process_results(self) -> bool:
        changed = False
        for result in self._worker.drain():
            changed = self._apply_result(result) or changed
        return changed

    def _apply_result(self, result: WorkerResult) -> bool:
        state = self.state
        if result.slot == "tables":
            state.tables_loading = False
            if result.error is not None:
                self._set_error(result.error)
            elif isinstance(result.value, list):
                self._apply_tables(result.value)
            return True
        if result.slot == "browse":
            if not state.browse.apply_result(result):
                return False
            if result.error is not None:
                self._set_error(result.error)
            self._clamp_cursor(state.browse.current_window())
            return True
        if result.slot == "query":
            if not state.results.apply_result(result):
                return False
            if result.error is not None:
                self._set_error(result.error)
            else:
                window = state.results.current_window()
                self._set_status(f"{len(window.rows)} row(s) in {window.exec_ms} ms")
            return True
        if result.slot == "export":
            if result.error is not None:
                self._set_error(result.error)
            else:
                self._set_status(f"Exported {result.value} row(s)")
            return True
        if result.slot == "write":
            self._apply_write(result)
            return True
        return False

    def _apply_write(self, result: WorkerResult) -> None:
        state = self.state
        if result.error is not None:
            self._set_error(result.error)
            return
        affected = result.value if isinstance(result.value, int) else 0
        if self._write_purpose == "cell":
            if state.mode is Mode.ROW_EDIT:
                self._leave_row_edit()
            self._set_status(f"Updated {self._write_label}")
            state.browse.refresh()
            return
        state.results.show_window(
            RowWindow(
                columns=("affected_rows",),
                rows=((affected,),),
                offset=0,
                page_size=state.results.page_size,
                has_more=False,
                total_rows=1,
                total_is_exact=True,
                affected_rows=affected,
            )
        )
        self._set_status(f"{affected} row(s) affected")
        self.refresh()

    # -- rendering --------------------------------------------------------

    def current_cell(self) -> tuple[str, str] | None:
        """Column name and full display text of the cell under the cursor."""
        state = self.state
        window = state.browse.current_window()
        if not window.rows or not window.columns:
            return None
        row = window.rows[min(state.cursor_row, len(window.rows) - 1)]
        column = min(state.cursor_column, len(window.columns) - 1)
        return window.columns[column], format_value(row[column])

    def render_model(self) -> RenderModel:
        state = self.state
        editor = state.editor
        prompt = state.prompt
        if state.focused_pane is Pane.TABLES:
            info_table = state.selected_table()
        else:
            info_table = state.table(state.active_table) or state.selected_table()
        active = state.table(state.active_table)
        if state.mode is Mode.ROW_EDIT:
            hints = (
                _INLINE_EDIT_HINTS
                if state.row_edit_style is RowEditStyle.INLINE
                else _FULLSCREEN_EDIT_HINTS
            )
        elif prompt is not None:
            hints = _PROMPT_HINTS
        else:
            hints = _HINTS.get(state.mode, ())
        return RenderModel(
            mode=state.mode,
            row_edit_style=state.row_edit_style,
            focused_pane=state.focused_pane,
            content_view=state.content_view,
            read_write=state.read_write,
            tables=state.visible_tables(),
            table_index=state.table_index,
            table_filter=state.table_filter,
            active_table=state.active_table,
            filter_text=state.filter_text,
            window=state.browse.current_window(),
            results=state.results.current_window(),
            cursor=(state.cursor_row, state.cursor_column),
            editor_lines=editor.contents() if editor is not None else (),
            editor_cursor=editor.cursor if editor is not None else (0, 0),
            prompt=f"{prompt.label}{prompt.buffer.text}" if prompt is not None else None,
            prompt_cursor=prompt.buffer.cursor[1] + 1 if prompt is not None else 0,
            status=state.status,
            info_lines=table_info_lines(info_table) if info_table is not None else (),
            schema_lines=schema_lines(active) if active is not None else (),
            diagram=self.diagram_layout() if state.mode is Mode.DIAGRAM else None,
            diagram_scroll=state.diagram_scroll,
            loading=state.tables_loading or state.browse.loading or state.results.loading,
            hints=hints,
        )
