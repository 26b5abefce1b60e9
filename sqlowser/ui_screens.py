from typing import Protocol, Sequence, runtime_checkable

from rich.markup import escape
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.events import Key
from textual.screen import ModalScreen
from textual.widgets import Header, Static


HELP_TEXT = """\
[bold]Browse[/]
  tab / shift+tab   cycle Tables, Content and Info panes
  enter             open table (Tables) or edit cell (Content, --read-write)
  j k h l / arrows  move
  n p / pgdn pgup   next and previous page
  g G               first and last row
  /                 filter tables or rows
  s                 toggle rows and schema
  v                 view cell
  y                 yank cell
  r                 refresh
  d                 relationship diagram
  e                 SQL editor
  :                 command (q, help, pagesize N, export csv|json PATH, internal)
  esc               dismiss message or clear filter
  q                 quit

[bold]SQL editor[/]
  ctrl+enter / f5   run query
  ctrl+n ctrl+p     next and previous result page
  ctrl+l            clear editor
  esc               back to browse

[bold]Cell editor[/]
  enter             save (inline) or newline (fullscreen)
  up / down         edit the same column of the adjacent row (inline)
  ctrl+e            expand inline editor to fullscreen
  ctrl+s            save
  esc               cancel

[bold]Editing keys[/]
  ctrl+a home / end      line start and end
  ctrl+w                 delete word
  ctrl+u / ctrl+k        delete to line start / end
  ctrl+d delete          delete forward
"""


@runtime_checkable
class _AppWithModalGuard(Protocol):
    _modal_open: bool


@runtime_checkable
class _AppWithClipboard(Protocol):
    def copy_text_to_clipboard(self, text: str) -> None: ...


def format_hints(hints: Sequence[tuple[str, str]]) -> str:
    return "  ".join(f"[bold cyan]{escape(key)}[/] {escape(label)}" for key, label in hints)


class KeyBindingBar(Static):
    def __init__(self) -> None:
        super().__init__("", markup=True)

    def show_hints(self, hints: Sequence[tuple[str, str]]) -> None:
        self.update(format_hints(hints))


class _GuardedModal(ModalScreen[None]):
    def on_unmount(self) -> None:
        app = self.app
        if isinstance(app, _AppWithModalGuard):
            app._modal_open = False


class HelpScreen(_GuardedModal):
    BINDINGS = [
        ("escape", "dismiss", "Close"),
        ("q", "dismiss", "Close"),
        ("question_mark", "dismiss", "Close"),
    ]

    def compose(self) -> ComposeResult:
        with Vertical(id="help-dialog"):
            yield Static("sqlowser keys", id="help-title")
            with VerticalScroll():
                yield Static(HELP_TEXT, id="help-text")

    def on_mount(self) -> None:
        self.focus()


class CellDetailScreen(_GuardedModal):
    BINDINGS = [
        ("escape", "dismiss", "Close"),
        ("y", "yank", "Yank Cell"),
    ]

    def __init__(self, cell_text: str, status_text: str, view_text: str) -> None:
        super().__init__()
        self._cell_text = cell_text
        self._status_text = status_text
        self._view_text = view_text

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical():
            with Horizontal(id="top-bar"):
                yield Static(self._status_text, id="selected-status", markup=False)
            keybinds = KeyBindingBar()
            keybinds.id = "keybinds-bar"
            keybinds.show_hints([("y", "Yank"), ("esc", "Back")])
            yield keybinds
            with Horizontal(id="view-bar"):
                yield Static("", id="view-bar-left")
                yield Static(self._view_text, id="view-bar-text", markup=False)
                yield Static("", id="mode-indicator")
            with VerticalScroll():
                yield Static(self._cell_text, id="cell-detail-text", markup=False)

    def on_mount(self) -> None:
        self.focus()

    def on_key(self, event: Key) -> None:
        if event.key == "q":
            self.dismiss()
            event.stop()

    def action_yank(self) -> None:
        app = self.app
        if isinstance(app, _AppWithClipboard):
            app.copy_text_to_clipboard(self._cell_text)
        self.notify("Yanked cell to clipboard.")
