from dataclasses import dataclass
from enum import Enum


class EditorMode(Enum):
    SINGLE_LINE = "single_line"
    MULTI_LINE = "multi_line"


class EditorAction(Enum):
    EDITED = "edited"
    COMMIT = "commit"


class Direction(Enum):
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"


class EditOp(Enum):
    INSERT = "insert"
    NEWLINE = "newline"
    DELETE_BACKWARD = "delete_backward"
    DELETE_FORWARD = "delete_forward"
    DELETE_WORD_BACKWARD = "delete_word_backward"
    KILL_TO_LINE_START = "kill_to_line_start"
    KILL_TO_LINE_END = "kill_to_line_end"
    LINE_START = "line_start"
    LINE_END = "line_end"
    MOVE = "move"
    CLEAR_LINE = "clear_line"
    CLEAR_ALL = "clear_all"


@dataclass(frozen=True)
class CellOrigin:
    table: str
    column: str
    row_index: int
    row_id: int | None = None
    key_values: tuple[tuple[str, object], ...] = ()


@dataclass(frozen=True)
class SqlOrigin:
    label: str = "ad-hoc SQL"


SQL_ORIGIN = SqlOrigin()


class EditBuffer:
    """Line buffer with a clamped (line, column) cursor.

    Shared by the SQL editor, cell editors and the prompt line. The mode is
    fixed for the lifetime of the buffer; callers create a new buffer to
    switch between single-line and multi-line editing.
    """

    def __init__(
        self,
        text: str = "",
        mode: EditorMode = EditorMode.MULTI_LINE,
        origin: CellOrigin | SqlOrigin = SQL_ORIGIN,
    ) -> None:
        self._mode = mode
        self._origin = origin
        self._lines = self._split(text)
        self._line = len(self._lines) - 1
        self._column = len(self._lines[-1])
        self.dirty = False

    @property
    def mode(self) -> EditorMode:
        return self._mode

    @property
    def origin(self) -> CellOrigin | SqlOrigin:
        return self._origin

    @property
    def cursor(self) -> tuple[int, int]:
        return self._line, self._column

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def current_line(self) -> str:
        return self._lines[self._line]

    @property
    def text(self) -> str:
        return "\n".join(self._lines)

    def contents(self) -> tuple[str, ...]:
        return tuple(self._lines)

    def _split(self, text: str) -> list[str]:
        normalized = text.replace("\r\n", "\n").replace("\r", "\n")
        if self._mode is EditorMode.SINGLE_LINE:
            return [normalized.replace("\n", " ")]
        return normalized.split("\n")

    def _clamp(self) -> None:
        self._line = min(max(self._line, 0), len(self._lines) - 1)
        self._column = min(max(self._column, 0), len(self._lines[self._line]))

    def _set_line(self, text: str) -> None:
        if self._lines[self._line] != text:
            self._lines[self._line] = text
            self.dirty = True

    def insert(self, char: str) -> EditorAction:
        if char == "\n":
            return self.newline()
        self.insert_text(char)
        return EditorAction.EDITED

    def insert_text(self, text: str) -> None:
        if not text:
            return
        pieces = self._split(text)
        line = self._lines[self._line]
        head, tail = line[: self._column], line[self._column :]
        if len(pieces) == 1:
            self._lines[self._line] = head + pieces[0] + tail
            self._column += len(pieces[0])
        else:
            replacement = [head + pieces[0], *pieces[1:-1], pieces[-1] + tail]
            self._lines[self._line : self._line + 1] = replacement
            self._line += len(pieces) - 1
            self._column = len(pieces[-1])
        self.dirty = True
        self._clamp()

    def newline(self) -> EditorAction:
        if self._mode is EditorMode.SINGLE_LINE:
            return EditorAction.COMMIT
        line = self._lines[self._line]
        self._lines[self._line : self._line + 1] = [line[: self._column], line[self._column :]]
        self._line += 1
        self._column = 0
        self.dirty = True
        return EditorAction.EDITED

    def _join_with_previous(self) -> None:
        previous = self._lines[self._line - 1]
        self._lines[self._line - 1 : self._line + 1] = [previous + self._lines[self._line]]
        self._line -= 1
        self._column = len(previous)
        self.dirty = True

    def delete_backward(self) -> None:
        if self._column > 0:
            line = self._lines[self._line]
            self._set_line(line[: self._column - 1] + line[self._column :])
            self._column -= 1
        elif self._line > 0:
            self._join_with_previous()
        self._clamp()

    def delete_forward(self) -> None:
        line = self._lines[self._line]
        if self._column < len(line):
            self._set_line(line[: self._column] + line[self._column + 1 :])
        elif self._line < len(self._lines) - 1:
            self._lines[self._line : self._line + 2] = [line + self._lines[self._line + 1]]
            self.dirty = True
        self._clamp()

    def delete_word_backward(self) -> None:
        if self._column == 0:
            if self._line > 0:
                self._join_with_previous()
            return
        line = self._lines[self._line]
        start = self._column
        while start > 0 and line[start - 1].isspace():
            start -= 1
        while start > 0 and not line[start - 1].isspace():
            start -= 1
        self._set_line(line[:start] + line[self._column :])
        self._column = start
        self._clamp()

    def move_cursor(self, direction: Direction) -> None:
        multi_line = self._mode is EditorMode.MULTI_LINE
        if direction is Direction.LEFT:
            if self._column > 0:
                self._column -= 1
            elif multi_line and self._line > 0:
                self._line -= 1
                self._column = len(self._lines[self._line])
        elif direction is Direction.RIGHT:
            if self._column < len(self._lines[self._line]):
                self._column += 1
            elif multi_line and self._line < len(self._lines) - 1:
                self._line += 1
                self._column = 0
        elif multi_line and direction is Direction.UP:
            self._line -= 1
        elif multi_line and direction is Direction.DOWN:
            self._line += 1
        self._clamp()

    def move_to_line_start(self) -> None:
        self._column = 0

    def move_to_line_end(self) -> None:
        self._column = len(self._lines[self._line])

    def kill_to_line_start(self) -> None:
        self._set_line(self._lines[self._line][self._column :])
        self._column = 0

    def kill_to_line_end(self) -> None:
        self._set_line(self._lines[self._line][: self._column])
        self._clamp()

    def clear_line(self) -> None:
        self._set_line("")
        self._column = 0

    def clear_all(self) -> None:
        if self._lines != [""]:
            self.dirty = True
        self._lines = [""]
        self._line = 0
        self._column = 0

    def apply(
        self,
        op: EditOp,
        *,
        text: str | None = None,
        direction: Direction | None = None,
    ) -> EditorAction | None:
        """Runs one editing operation; only NEWLINE and INSERT report an action."""
        if op is EditOp.INSERT:
            return self.insert(text) if text and len(text) == 1 else self._insert_many(text)
        if op is EditOp.NEWLINE:
            return self.newline()
        if op is EditOp.MOVE:
            if direction is not None:
                self.move_cursor(direction)
            return None
        handlers = {
            EditOp.DELETE_BACKWARD: self.delete_backward,
            EditOp.DELETE_FORWARD: self.delete_forward,
            EditOp.DELETE_WORD_BACKWARD: self.delete_word_backward,
            EditOp.KILL_TO_LINE_START: self.kill_to_line_start,
            EditOp.KILL_TO_LINE_END: self.kill_to_line_end,
            EditOp.LINE_START: self.move_to_line_start,
            EditOp.LINE_END: self.move_to_line_end,
            EditOp.CLEAR_LINE: self.clear_line,
            EditOp.CLEAR_ALL: self.clear_all,
        }
        handlers[op]()
        return None

    def _insert_many(self, text: str | None) -> EditorAction:
        self.insert_text(text or "")
        return EditorAction.EDITED
