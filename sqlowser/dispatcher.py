from dataclasses import dataclass

from sqlowser.commands import UI_COMMANDS, Command, CommandKind
from sqlowser.session import Mode, RowEditStyle, SessionState
from sqlowser.text_editor import Direction, EditOp

__all__ = ["Command", "CommandKind", "KeyEvent", "UI_COMMANDS", "dispatch_key"]


@dataclass(frozen=True)
class KeyEvent:
    key: str
    character: str | None = None

    @property
    def printable(self) -> str | None:
        character = self.character
        if character is None and len(self.key) == 1:
            character = self.key
        if character and len(character) == 1 and character.isprintable():
            return character
        return None

    @property
    def token(self) -> str:
        """Printable character when there is one, otherwise the key name."""
        return self.printable or self.key


_ARROWS = {
    "up": Direction.UP,
    "down": Direction.DOWN,
    "left": Direction.LEFT,
    "right": Direction.RIGHT,
}
_VI_ARROWS = {
    "k": Direction.UP,
    "j": Direction.DOWN,
    "h": Direction.LEFT,
    "l": Direction.RIGHT,
}

_EDITOR_KEYS = {
    "backspace": EditOp.DELETE_BACKWARD,
    "ctrl+h": EditOp.DELETE_BACKWARD,
    "delete": EditOp.DELETE_FORWARD,
    "ctrl+d": EditOp.DELETE_FORWARD,
    "ctrl+w": EditOp.DELETE_WORD_BACKWARD,
    "ctrl+u": EditOp.KILL_TO_LINE_START,
    "ctrl+k": EditOp.KILL_TO_LINE_END,
    "home": EditOp.LINE_START,
    "ctrl+a": EditOp.LINE_START,
    "end": EditOp.LINE_END,
}

_BROWSE_KEYS = {
    "q": CommandKind.QUIT,
    "?": CommandKind.SHOW_HELP,
    "tab": CommandKind.FOCUS_NEXT,
    "shift+tab": CommandKind.FOCUS_PREVIOUS,
    "d": CommandKind.OPEN_DIAGRAM,
    "e": CommandKind.OPEN_SQL_EDITOR,
    "s": CommandKind.TOGGLE_CONTENT_VIEW,
    "/": CommandKind.OPEN_FILTER_PROMPT,
    ":": CommandKind.OPEN_COMMAND_PROMPT,
    "r": CommandKind.REFRESH,
    "escape": CommandKind.DISMISS,
    "n": CommandKind.NEXT_PAGE,
    "pagedown": CommandKind.NEXT_PAGE,
    "p": CommandKind.PREV_PAGE,
    "pageup": CommandKind.PREV_PAGE,
    "g": CommandKind.FIRST_ROW,
    "G": CommandKind.LAST_ROW,
    "enter": CommandKind.ACTIVATE,
    "v": CommandKind.VIEW_CELL,
    "y": CommandKind.YANK_CELL,
}


def _editor_command(event: KeyEvent) -> Command | None:
    if event.key in _ARROWS:
        return Command(CommandKind.EDIT, direction=_ARROWS[event.key], edit=EditOp.MOVE)
    if event.key in _EDITOR_KEYS:
        return Command(CommandKind.EDIT, edit=_EDITOR_KEYS[event.key])
    if event.key == "enter":
        return Command(CommandKind.EDIT, edit=EditOp.NEWLINE)
    if event.key == "tab":
        return Command(CommandKind.EDIT, edit=EditOp.INSERT, text="    ")
    if event.printable is not None:
        return Command(CommandKind.EDIT, edit=EditOp.INSERT, text=event.printable)
    return None


def _dispatch_prompt(event: KeyEvent) -> Command | None:
    if event.key == "escape":
        return Command(CommandKind.CANCEL_PROMPT)
    if event.key in ("up", "down", "tab"):
        return None
    return _editor_command(event)


def _dispatch_browse(event: KeyEvent) -> Command | None:
    if event.key in _ARROWS:
        return Command(CommandKind.MOVE, direction=_ARROWS[event.key])
    token = event.token
    if token in _VI_ARROWS:
        return Command(CommandKind.MOVE, direction=_VI_ARROWS[token])
    kind = _BROWSE_KEYS.get(token)
    if kind is None:
        return None
    return Command(kind)


def _dispatch_diagram(event: KeyEvent) -> Command | None:
    if event.key in _ARROWS:
        return Command(CommandKind.SCROLL_DIAGRAM, direction=_ARROWS[event.key])
    token = event.token
    if token in _VI_ARROWS:
        return Command(CommandKind.SCROLL_DIAGRAM, direction=_VI_ARROWS[token])
    if token in ("escape", "d"):
        return Command(CommandKind.CLOSE_DIAGRAM)
    if token == "q":
        return Command(CommandKind.QUIT)
    if token == "?":
        return Command(CommandKind.SHOW_HELP)
    return None


def _dispatch_sql_editor(event: KeyEvent) -> Command | None:
    key = event.key
    if key in ("ctrl+enter", "f5", "ctrl+r"):
        return Command(CommandKind.EXECUTE_SQL)
    if key == "escape":
        return Command(CommandKind.CANCEL_SQL_EDITOR)
    if key == "ctrl+n":
        return Command(CommandKind.RESULTS_NEXT_PAGE)
    if key == "ctrl+p":
        return Command(CommandKind.RESULTS_PREV_PAGE)
    if key == "ctrl+l":
        return Command(CommandKind.EDIT, edit=EditOp.CLEAR_ALL)
    if key == "ctrl+e":
        return Command(CommandKind.EDIT, edit=EditOp.LINE_END)
    return _editor_command(event)


def _dispatch_row_edit(state: SessionState, event: KeyEvent) -> Command | None:
    key = event.key
    if key == "escape":
        return Command(CommandKind.CANCEL_ROW_EDIT)
    if key == "ctrl+s":
        return Command(CommandKind.SAVE_ROW_EDIT)
    if state.row_edit_style is RowEditStyle.INLINE:
        if key == "ctrl+e":
            return Command(CommandKind.EXPAND_ROW_EDIT)
        if key in ("up", "down"):
            direction = Direction.UP if key == "up" else Direction.DOWN
            return Command(CommandKind.MOVE_ROW_EDIT, direction=direction)
    elif key == "ctrl+e":
        return Command(CommandKind.EDIT, edit=EditOp.LINE_END)
    return _editor_command(event)


def dispatch_key(state: SessionState, event: KeyEvent) -> Command | None:
    """Maps a key to a command for the current mode; None means ignore it."""
    if state.mode is Mode.BROWSE:
        if state.prompt is not None:
            return _dispatch_prompt(event)
        return _dispatch_browse(event)
    if state.mode is Mode.DIAGRAM:
        return _dispatch_diagram(event)
    if state.mode is Mode.SQL_EDITOR:
        return _dispatch_sql_editor(event)
    if state.mode is Mode.ROW_EDIT:
        return _dispatch_row_edit(state, event)
    return None
