from pathlib import Path
import sqlite3

from sqlowser.commands import Command, CommandKind
from sqlowser.session import (
    READ_ONLY_MESSAGE,
    ContentView,
    Mode,
    Pane,
    RowEditStyle,
    SessionController,
    edit_text_for,
)
from sqlowser.text_editor import CellOrigin, Direction, EditOp
from sqlowser.worker import BackgroundWorker
from conftest import EVENT_COUNT, LONG_TEXT_VALUE, settle


def _run(controller: SessionController, kind: CommandKind, **kwargs) -> None:
    controller.execute(Command(kind, **kwargs))
    settle(controller)


def _type(controller: SessionController, text: str) -> None:
    _run(controller, CommandKind.EDIT, edit=EditOp.INSERT, text=text)


def _open_table(controller: SessionController, name: str) -> None:
    names = [table.name for table in controller.state.visible_tables()]
    controller.state.focused_pane = Pane.TABLES
    controller.state.table_index = names.index(name)
    _run(controller, CommandKind.ACTIVATE)


def _move_to_column(controller: SessionController, column: str) -> None:
    window = controller.state.browse.current_window()
    controller.state.cursor_column = window.columns.index(column)


def test_start_loads_tables_and_opens_the_first(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    state = controller.state

    assert [table.name for table in state.tables] == [
        "events",
        "orders",
        "settings",
        "staff",
        "users",
    ]
    assert state.active_table == "events"
    window = state.browse.current_window()
    assert len(window.rows) == 50
    assert window.total_rows == EVENT_COUNT
    assert state.focused_pane is Pane.TABLES


def test_tab_cycles_panes(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.FOCUS_NEXT)
    assert controller.state.focused_pane is Pane.CONTENT
    _run(controller, CommandKind.FOCUS_NEXT)
    _run(controller, CommandKind.FOCUS_NEXT)
    assert controller.state.focused_pane is Pane.TABLES
    _run(controller, CommandKind.FOCUS_PREVIOUS)
    assert controller.state.focused_pane is Pane.INFO


def test_paging_through_a_table(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.FOCUS_NEXT)
    for _ in range(3):
        _run(controller, CommandKind.NEXT_PAGE)

    window = controller.state.browse.current_window()
    assert window.page_index == 2
    assert len(window.rows) == 25

    _run(controller, CommandKind.LAST_ROW)
    assert controller.state.cursor_row == 24
    _run(controller, CommandKind.PREV_PAGE)
    assert controller.state.browse.current_window().page_index == 1


def test_cursor_moves_are_clamped(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _open_table(controller, "settings")
    for _ in range(5):
        _run(controller, CommandKind.MOVE, direction=Direction.DOWN)
        _run(controller, CommandKind.MOVE, direction=Direction.RIGHT)
    assert (controller.state.cursor_row, controller.state.cursor_column) == (1, 1)
    _run(controller, CommandKind.FIRST_ROW)
    assert controller.state.cursor_row == 0


def test_moving_in_tables_pane_changes_selection(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.MOVE, direction=Direction.DOWN)
    assert controller.state.selected_table().name == "orders"
    assert controller.state.active_table == "events"
    _run(controller, CommandKind.ACTIVATE)
    assert controller.state.active_table == "orders"
    assert controller.state.focused_pane is Pane.CONTENT


def test_toggle_schema_view(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _open_table(controller, "orders")
    _run(controller, CommandKind.TOGGLE_CONTENT_VIEW)

    model = controller.render_model()
    assert model.content_view is ContentView.SCHEMA
    assert model.schema_lines[0] == "Table: orders"
    assert any(line.startswith("FK user_id -> users.id") for line in model.schema_lines)
    assert any("idx_orders_user" in line for line in model.schema_lines)


def test_edit_is_refused_when_read_only(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _open_table(controller, "users")
    _run(controller, CommandKind.ACTIVATE)

    assert controller.state.mode is Mode.BROWSE
    assert controller.state.status.is_error
    assert controller.state.status.text == READ_ONLY_MESSAGE


def test_inline_edit_saves_cell(rw_gateway, make_controller, db_path: Path) -> None:
    controller = make_controller(rw_gateway)
    _open_table(controller, "users")
    _move_to_column(controller, "name")
    _run(controller, CommandKind.ACTIVATE)

    state = controller.state
    assert state.mode is Mode.ROW_EDIT
    assert state.row_edit_style is RowEditStyle.INLINE
    assert state.editor.text == "alice"
    assert state.editor.origin == CellOrigin(table="users", column="name", row_index=0, row_id=1)

    _run(controller, CommandKind.EDIT, edit=EditOp.CLEAR_LINE)
    _type(controller, "alicia")
    _run(controller, CommandKind.EDIT, edit=EditOp.NEWLINE)

    assert state.mode is Mode.BROWSE
    assert state.status.text == "Updated users.name"
    window = state.browse.current_window()
    assert window.rows[0][window.columns.index("name")] == "alicia"
    connection = sqlite3.connect(db_path)
    try:
        assert connection.execute("SELECT name FROM users WHERE id = 1").fetchone() == ("alicia",)
    finally:
        connection.close()


def test_long_values_open_fullscreen(rw_gateway, make_controller) -> None:
    controller = make_controller(rw_gateway)
    _open_table(controller, "users")
    _move_to_column(controller, "bio")
    _run(controller, CommandKind.ACTIVATE)

    assert controller.state.row_edit_style is RowEditStyle.FULLSCREEN
    assert controller.state.editor.text == LONG_TEXT_VALUE
    _run(controller, CommandKind.EDIT, edit=EditOp.NEWLINE)
    assert controller.state.mode is Mode.ROW_EDIT
    _run(controller, CommandKind.CANCEL_ROW_EDIT)
    assert controller.state.mode is Mode.BROWSE
    assert controller.state.editor is None


def test_inline_edit_can_expand(rw_gateway, make_controller) -> None:
    controller = make_controller(rw_gateway)
    _open_table(controller, "users")
    _move_to_column(controller, "email")
    _run(controller, CommandKind.ACTIVATE)
    _run(controller, CommandKind.EXPAND_ROW_EDIT)

    assert controller.state.row_edit_style is RowEditStyle.FULLSCREEN
    assert controller.state.editor.text == "alice@example.com"
    _run(controller, CommandKind.SAVE_ROW_EDIT)
    assert controller.state.mode is Mode.BROWSE


def test_failed_save_keeps_editor_open(rw_gateway, make_controller) -> None:
    controller = make_controller(rw_gateway)
    _open_table(controller, "orders")
    _move_to_column(controller, "user_id")
    _run(controller, CommandKind.ACTIVATE)
    _run(controller, CommandKind.EDIT, edit=EditOp.CLEAR_LINE)
    _type(controller, "999")
    _run(controller, CommandKind.SAVE_ROW_EDIT)

    state = controller.state
    assert state.mode is Mode.ROW_EDIT
    assert state.editor.text == "999"
    assert state.status.is_error
    assert "Constraint violation" in state.status.text


def test_blob_cells_are_not_editable(rw_gateway, make_controller) -> None:
    controller = make_controller(rw_gateway)
    _open_table(controller, "users")
    _move_to_column(controller, "avatar")
    _run(controller, CommandKind.ACTIVATE)
    assert controller.state.mode is Mode.BROWSE
    assert "BLOB" in controller.state.status.text


def test_without_rowid_tables_edit_by_primary_key(rw_gateway, make_controller) -> None:
    controller = make_controller(rw_gateway)
    _open_table(controller, "settings")
    first_key = controller.state.browse.current_window().rows[0][0]
    _move_to_column(controller, "value")
    _run(controller, CommandKind.ACTIVATE)

    assert controller.state.editor.origin.key_values == (("key", first_key),)
    _run(controller, CommandKind.EDIT, edit=EditOp.CLEAR_LINE)
    _type(controller, "changed")
    _run(controller, CommandKind.SAVE_ROW_EDIT)

    assert controller.state.mode is Mode.BROWSE
    rows = dict(controller.state.browse.current_window().rows)
    assert rows[first_key] == "changed"


def test_sql_editor_runs_queries(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.OPEN_SQL_EDITOR)
    assert controller.state.mode is Mode.SQL_EDITOR
    _type(controller, "SELECT name FROM users ORDER BY id")
    _run(controller, CommandKind.EXECUTE_SQL)

    results = controller.state.results.current_window()
    assert results.columns == ("name",)
    assert [row[0] for row in results.rows] == ["alice", "bob", "carol"]
    assert controller.state.status.text.startswith("3 row(s) in ")


def test_sql_editor_pages_results(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.OPEN_SQL_EDITOR)
    _type(controller, "SELECT id FROM events ORDER BY id")
    _run(controller, CommandKind.EXECUTE_SQL)
    _run(controller, CommandKind.RESULTS_NEXT_PAGE)

    assert controller.state.results.current_window().rows[0][0] == 51
    _run(controller, CommandKind.RESULTS_PREV_PAGE)
    assert controller.state.results.current_window().rows[0][0] == 1


def test_sql_editor_keeps_text_between_visits(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.OPEN_SQL_EDITOR)
    _type(controller, "SELECT 1")
    _run(controller, CommandKind.CANCEL_SQL_EDITOR)
    assert controller.state.mode is Mode.BROWSE
    _run(controller, CommandKind.OPEN_SQL_EDITOR)
    assert controller.state.editor.text == "SELECT 1"


def test_sql_editor_rejects_empty_query(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.OPEN_SQL_EDITOR)
    _run(controller, CommandKind.EXECUTE_SQL)
    assert controller.state.status.is_error
    assert controller.state.status.text == "Query is empty"


def test_mutating_sql_is_blocked_when_read_only(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.OPEN_SQL_EDITOR)
    _type(controller, "DELETE FROM orders")
    _run(controller, CommandKind.EXECUTE_SQL)

    assert controller.state.status.text == READ_ONLY_MESSAGE
    assert controller.worker.write_in_progress is False


def test_mutating_sql_reports_affected_rows(rw_gateway, make_controller) -> None:
    controller = make_controller(rw_gateway)
    _run(controller, CommandKind.OPEN_SQL_EDITOR)
    _type(controller, "UPDATE orders SET note = 'checked'")
    _run(controller, CommandKind.EXECUTE_SQL)

    assert controller.state.status.text == "3 row(s) affected"
    assert controller.state.results.current_window().affected_rows == 3


def test_table_filter_prompt_filters_live_and_cancels(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.OPEN_FILTER_PROMPT)
    _type(controller, "us")

    assert [table.name for table in controller.state.visible_tables()] == ["users"]
    assert controller.render_model().prompt == "/us"
    _run(controller, CommandKind.CANCEL_PROMPT)
    assert controller.state.table_filter == ""
    assert controller.state.prompt is None
    assert len(controller.state.visible_tables()) == 5


def test_row_filter_prompt_applies_on_submit(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.FOCUS_NEXT)
    _run(controller, CommandKind.OPEN_FILTER_PROMPT)
    _type(controller, "event 12")
    assert controller.state.browse.current_window().total_rows == EVENT_COUNT
    _run(controller, CommandKind.EDIT, edit=EditOp.NEWLINE)

    assert controller.state.filter_text == "event 12"
    assert controller.state.browse.current_window().total_rows == 6

    _run(controller, CommandKind.DISMISS)
    assert controller.state.filter_text == ""
    assert controller.state.browse.current_window().total_rows == EVENT_COUNT


def test_command_prompt_sets_page_size(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.OPEN_COMMAND_PROMPT)
    _type(controller, "pagesize 10")
    _run(controller, CommandKind.EDIT, edit=EditOp.NEWLINE)

    assert controller.state.status.text == "Page size set to 10"
    assert len(controller.state.browse.current_window().rows) == 10


def test_unknown_command_reports_error(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    controller.run_command("frobnicate now")
    assert controller.state.status.is_error
    assert controller.state.status.text == "Unknown command: frobnicate"


def test_export_command_writes_file(gateway, make_controller, tmp_path: Path) -> None:
    controller = make_controller(gateway)
    target = tmp_path / "events.csv"
    controller.run_command(f"export csv {target}")
    settle(controller)

    assert controller.state.status.text == f"Exported {EVENT_COUNT} row(s)"
    assert len(target.read_text().splitlines()) == EVENT_COUNT + 1


def test_quit_command_terminates(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    controller.run_command("q")
    assert controller.state.mode is Mode.TERMINATED


def test_diagram_mode(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.OPEN_DIAGRAM)

    model = controller.render_model()
    assert model.mode is Mode.DIAGRAM
    assert model.diagram.box_for("users").layer == 0
    assert model.diagram.box_for("orders").layer == 1

    _run(controller, CommandKind.SCROLL_DIAGRAM, direction=Direction.UP)
    assert controller.state.diagram_scroll == (0, 0)
    _run(controller, CommandKind.CLOSE_DIAGRAM)
    assert controller.state.mode is Mode.BROWSE


def test_ui_requests_are_taken_once(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _run(controller, CommandKind.VIEW_CELL)
    assert controller.take_ui_request() is CommandKind.VIEW_CELL
    assert controller.take_ui_request() is None


def test_current_cell_returns_full_text(gateway, make_controller) -> None:
    controller = make_controller(gateway)
    _open_table(controller, "users")
    _move_to_column(controller, "bio")
    assert controller.current_cell() == ("bio", LONG_TEXT_VALUE)


def test_refresh_picks_up_external_changes(gateway, make_controller, db_path: Path) -> None:
    controller = make_controller(gateway)
    _open_table(controller, "users")
    connection = sqlite3.connect(db_path)
    connection.execute("INSERT INTO users (name) VALUES ('dave')")
    connection.commit()
    connection.close()

    _run(controller, CommandKind.REFRESH)

    assert controller.state.table("users").row_count == 4
    assert controller.state.browse.current_window().total_rows == 4


def test_edit_text_for_values() -> None:
    assert edit_text_for(None) == ""
    assert edit_text_for(3) == "3"
    assert edit_text_for(0.1) == "0.1"
    assert edit_text_for("x") == "x"


def _pump(controller: SessionController, executor) -> None:
    while executor.tasks:
        executor.run_all()
        settle(controller)


def _manual_controller(gateway, manual_executor) -> SessionController:
    worker = BackgroundWorker(gateway, executor=manual_executor)
    controller = SessionController(gateway, page_size=50, worker=worker)
    controller.start()
    _pump(controller, manual_executor)
    return controller


def _select_without_loading(controller: SessionController, name: str) -> None:
    names = [table.name for table in controller.state.visible_tables()]
    controller.state.focused_pane = Pane.TABLES
    controller.state.table_index = names.index(name)
    controller.execute(Command(CommandKind.ACTIVATE))


def test_row_edit_waits_for_switched_table_to_load(rw_gateway, manual_executor) -> None:
    controller = _manual_controller(rw_gateway, manual_executor)
    _select_without_loading(controller, "users")
    _pump(controller, manual_executor)
    _select_without_loading(controller, "staff")

    state = controller.state
    assert state.active_table == "staff"
    assert state.browse.loading
    state.cursor_row = 1
    state.cursor_column = 1
    controller.execute(Command(CommandKind.ACTIVATE))

    assert state.mode is Mode.BROWSE
    assert state.editor is None
    assert "loading" in state.status.text

    _pump(controller, manual_executor)
    controller.execute(Command(CommandKind.ACTIVATE))
    assert state.mode is Mode.ROW_EDIT
    assert state.editor.text == "worker"
    assert state.editor.origin == CellOrigin(table="staff", column="name", row_index=1, row_id=2)


def test_row_edit_on_stale_without_rowid_window_is_refused(rw_gateway, manual_executor) -> None:
    controller = _manual_controller(rw_gateway, manual_executor)
    _select_without_loading(controller, "settings")
    _pump(controller, manual_executor)
    _select_without_loading(controller, "users")

    controller.execute(Command(CommandKind.ACTIVATE))

    assert controller.state.mode is Mode.BROWSE
    assert controller.state.editor is None


def test_inline_edit_moves_between_rows(rw_gateway, make_controller) -> None:
    controller = make_controller(rw_gateway)
    _open_table(controller, "users")
    _move_to_column(controller, "name")
    _run(controller, CommandKind.ACTIVATE)
    _type(controller, "!")

    _run(controller, CommandKind.MOVE_ROW_EDIT, direction=Direction.DOWN)
    state = controller.state
    assert state.mode is Mode.ROW_EDIT
    assert state.row_edit_style is RowEditStyle.INLINE
    assert state.editor.text == "bob"
    assert state.editor.origin.row_index == 1
    assert state.cursor_row == 1

    _run(controller, CommandKind.MOVE_ROW_EDIT, direction=Direction.UP)
    _run(controller, CommandKind.MOVE_ROW_EDIT, direction=Direction.UP)
    assert state.editor.text == "alice"
    assert state.editor.origin.row_index == 0
    assert state.browse.current_window().rows[0][1] == "alice"
