from dataclasses import dataclass
from enum import Enum

from sqlowser.text_editor import Direction, EditOp


class CommandKind(Enum):
    QUIT = "quit"
    SHOW_HELP = "show_help"
    FOCUS_NEXT = "focus_next"
    FOCUS_PREVIOUS = "focus_previous"
    OPEN_DIAGRAM = "open_diagram"
    CLOSE_DIAGRAM = "close_diagram"
    SCROLL_DIAGRAM = "scroll_diagram"
    OPEN_SQL_EDITOR = "open_sql_editor"
    CANCEL_SQL_EDITOR = "cancel_sql_editor"
    EXECUTE_SQL = "execute_sql"
    RESULTS_NEXT_PAGE = "results_next_page"
    RESULTS_PREV_PAGE = "results_prev_page"
    TOGGLE_CONTENT_VIEW = "toggle_content_view"
    OPEN_FILTER_PROMPT = "open_filter_prompt"
    OPEN_COMMAND_PROMPT = "open_command_prompt"
    CANCEL_PROMPT = "cancel_prompt"
    REFRESH = "refresh"
    DISMISS = "dismiss"
    MOVE = "move"
    NEXT_PAGE = "next_page"
    PREV_PAGE = "prev_page"
    FIRST_ROW = "first_row"
    LAST_ROW = "last_row"
    ACTIVATE = "activate"
    VIEW_CELL = "view_cell"
    YANK_CELL = "yank_cell"
    EXPAND_ROW_EDIT = "expand_row_edit"
    MOVE_ROW_EDIT = "move_row_edit"
    SAVE_ROW_EDIT = "save_row_edit"
    CANCEL_ROW_EDIT = "cancel_row_edit"
    EDIT = "edit"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    direction: Direction | None = None
    edit: EditOp | None = None
    text: str | None = None


# Handled by the UI layer rather than the session.
UI_COMMANDS = frozenset({CommandKind.SHOW_HELP, CommandKind.VIEW_CELL, CommandKind.YANK_CELL})
