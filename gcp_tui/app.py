"""
Terminal front-end.

The app renders the top frame of the session's stack and turns key presses
into session commands. It holds no navigation state of its own apart from
the `:` command prompt.
"""

import logging
from typing import Dict, List, Optional, Tuple

from rich.json import JSON
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import DataTable, Input, Static

from .navigation import Frame, PickerPurpose, ViewKind, active_list
from .schema import ResourceSchema
from .session import Session

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.1

Command = Tuple

MOVEMENT: Dict[str, Command] = {
    "down": ("move", 1),
    "j": ("move", 1),
    "up": ("move", -1),
    "k": ("move", -1),
    "pagedown": ("move", 10),
    "pageup": ("move", -10),
    "g": ("move_to", "top"),
    "home": ("move_to", "top"),
    "G": ("move_to", "bottom"),
    "end": ("move_to", "bottom"),
}

KEYMAP: Dict[ViewKind, Dict[str, Command]] = {
    ViewKind.LIST: {
        **MOVEMENT,
        "d": ("describe",),
        "enter": ("describe",),
        "r": ("refresh",),
        "q": ("quit",),
        "/": ("start_filter",),
        ":": ("prompt_command",),
        "?": ("show_help",),
        "escape": ("back",),
        "backspace": ("back",),
        "ctrl+o": ("open_picker", PickerPurpose.RESOURCE),
        "ctrl+p": ("open_picker", PickerPurpose.PROJECT),
        "ctrl+l": ("open_picker", PickerPurpose.ZONE),
    },
    ViewKind.DESCRIBE: {
        **MOVEMENT,
        "q": ("back",),
        "escape": ("back",),
        "backspace": ("back",),
    },
    ViewKind.DIALOG: {
        "y": ("confirm", True),
        "n": ("confirm", False),
        "escape": ("confirm", False),
        "enter": ("confirm",),
        "left": ("toggle_choice",),
        "right": ("toggle_choice",),
        "tab": ("toggle_choice",),
    },
    ViewKind.PICKER: {
        "down": ("move", 1),
        "up": ("move", -1),
        "enter": ("picker_select",),
        "escape": ("back",),
    },
    ViewKind.FILTER: {
        "enter": ("commit_filter",),
        "escape": ("cancel_filter",),
    },
}

NAVIGATION_HELP = [
    ("j / down", "Move down"),
    ("k / up", "Move up"),
    ("g / G", "Go to top / bottom"),
    ("pgup / pgdn", "Move by a page"),
]

VIEW_HELP = [
    ("d / enter", "Describe item"),
    ("r", "Refresh now"),
    ("/", "Filter rows"),
    (":", "Command prompt (tab completes)"),
    ("?", "Toggle help"),
    ("esc", "Close / clear filter / back"),
    ("q", "Quit"),
]

PICKER_HELP = [
    ("ctrl+o", "Select resource"),
    ("ctrl+p", "Select project"),
    ("ctrl+l", "Select zone"),
]

COMMAND_HELP = [
    (":<resource>", "Open a resource list"),
    (":projects", "Select project"),
    (":zones", "Select zone"),
    (":project <id>", "Switch project"),
    (":zone <zone>", "Switch zone"),
    (":back", "Go back"),
    (":q", "Quit"),
]

HelpSection = Tuple[str, List[Tuple[str, str]]]


def help_sections(schema: Optional[ResourceSchema], read_only: bool = False) -> List[HelpSection]:
    """Key reference for the help overlay, including the current schema's shortcuts."""
    sections = [
        ("Navigation", NAVIGATION_HELP),
        ("Views", VIEW_HELP),
        ("Pickers", PICKER_HELP),
        ("Commands", COMMAND_HELP),
    ]
    if schema is None:
        return sections

    actions = []
    for action in schema.actions:
        label = action.display_name
        if action.confirm is not None and action.confirm.destructive:
            label += " (destructive)"
        if read_only:
            label += " [disabled]"
        actions.append((action.shortcut, label))
    if actions:
        sections.append((f"{schema.display_name} actions", actions))
    if schema.sub_resources:
        sections.append((f"{schema.display_name} sub-resources", schema.sub_resource_hints()))
    return sections


def format_hints(hints: List[Tuple[str, str]]) -> str:
    return "  ".join(f"<{key}> {name}" for key, name in hints)


def cycle(index: int, delta: int, size: int) -> int:
    """Moves a suggestion highlight, wrapping at both ends."""
    if size == 0:
        return 0
    return (index + delta) % size


def command_for_key(kind: ViewKind, key: str, character: Optional[str] = None) -> Optional[Command]:
    """
    Translates a key press in a view into a command tuple `(name, *args)`.

    Navigation keys win. Any other printable character on a list is offered
    to the schema as a shortcut.
    """
    keymap = KEYMAP.get(kind, {})
    printable = character if character and len(character) == 1 and character.isprintable() else None
    if printable is not None and printable in keymap:
        return keymap[printable]
    if key in keymap:
        return keymap[key]
    if kind is ViewKind.LIST and printable is not None:
        return ("shortcut", printable)
    return None


def _cell_text(text: str, color) -> Text:
    if color is None:
        return Text(text)
    r, g, b = color
    return Text(text, style=f"rgb({r},{g},{b})")


class DashboardApp(App):
    CSS = """
    #header { height: auto; background: $primary; color: $text; }
    #status { height: 1; }
    #status.error { color: $error; }
    #prompt { dock: bottom; }
    #detail-scroll { height: 1fr; }
    """

    ENABLE_COMMAND_PALETTE = False

    # Checked before the focused widget, so the prompt cannot move focus on tab.
    BINDINGS = [Binding("tab", "tab", show=False, priority=True)]

    def __init__(self, session: Session, tick_seconds: float = TICK_SECONDS):
        super().__init__()
        self.session = session
        self.tick_seconds = tick_seconds
        # "filter", "picker", "command" or None.
        self._prompt_mode: Optional[str] = None
        self._help_visible = False
        self._suggestions: List[str] = []
        self._suggestion_index = 0
        self._rendered = None

    def compose(self) -> ComposeResult:
        yield Static(id="header")
        yield DataTable(id="table", cursor_type="row", zebra_stripes=True)
        with VerticalScroll(id="detail-scroll"):
            yield Static(id="detail")
        yield Static(id="status")
        yield Input(id="prompt")

    def on_mount(self):
        table = self.query_one("#table", DataTable)
        table.can_focus = False
        self.query_one("#prompt", Input).display = False
        self.set_interval(self.tick_seconds, self._tick)
        self._render_session()

    def _tick(self):
        self.session.tick()
        if not self.session.running:
            self.exit()
            return
        self._render_session()

    # --- Input ---

    def on_key(self, event):
        frame = self.session.top
        if frame is None:
            return
        prompt = self.query_one("#prompt", Input)
        if self.focused is prompt:
            # The prompt owns printable keys; only steering keys reach here.
            if event.key not in ("escape", "up", "down"):
                return
            if self._prompt_mode == "command":
                event.stop()
                if event.key == "escape":
                    self._close_prompt()
                else:
                    self._move_suggestion(1 if event.key == "down" else -1)
                self._render_session()
                return

        if self._help_visible:
            if event.key in ("escape", "backspace", "q", "question_mark") or event.character == "?":
                self._help_visible = False
            event.stop()
            self._render_session()
            return

        if self._handle_key(frame, event.key, event.character):
            event.stop()

    def action_tab(self):
        if self._prompt_mode == "command":
            self._complete_command()
            self._render_session()
            return
        frame = self.session.top
        if frame is not None and not self._help_visible:
            self._handle_key(frame, "tab", None)

    def _handle_key(self, frame: Frame, key: str, character: Optional[str]) -> bool:
        command = command_for_key(frame.kind, key, character)
        if command is None:
            return False
        self._apply(command)
        self._render_session()
        return True

    def _apply(self, command: Command):
        name, args = command[0], command[1:]
        logger.debug("Command %s%s", name, args)
        if name == "prompt_command":
            self._open_prompt("command", "")
        elif name == "show_help":
            self._help_visible = True
        elif name == "shortcut":
            if not self.session.shortcut(*args):
                self.session.set_status(f"No action bound to '{args[0]}'")
        else:
            getattr(self.session, name)(*args)

    def on_input_changed(self, event: Input.Changed):
        if self._prompt_mode == "filter":
            self.session.filter_input(event.value)
        elif self._prompt_mode == "picker":
            self.session.picker_query(event.value)
        elif self._prompt_mode == "command":
            self._update_suggestions(event.value)
        self._render_session()

    def on_input_submitted(self, event: Input.Submitted):
        mode = self._prompt_mode
        if mode == "filter":
            self.session.commit_filter()
        elif mode == "picker":
            self.session.picker_select()
        elif mode == "command":
            self._close_prompt()
            if event.value.strip():
                self.session.execute_command(event.value)
            else:
                self.session.open_picker(PickerPurpose.RESOURCE)
        self._render_session()

    def _open_prompt(self, mode: str, value: str):
        prompt = self.query_one("#prompt", Input)
        self._prompt_mode = mode
        with prompt.prevent(Input.Changed):
            prompt.value = value
        if mode == "command":
            self._update_suggestions(value)
        prompt.placeholder = {"filter": "/ filter", "picker": "search", "command": ":"}[mode]
        prompt.display = True
        prompt.focus()

    def _close_prompt(self):
        prompt = self.query_one("#prompt", Input)
        self._prompt_mode = None
        prompt.display = False
        self.set_focus(None)
        self._suggestions = []

    def _update_suggestions(self, text: str):
        self._suggestions = self.session.command_suggestions(text)
        self._suggestion_index = 0

    def _move_suggestion(self, delta: int):
        self._suggestion_index = cycle(self._suggestion_index, delta, len(self._suggestions))
        # A new list object marks the state as changed for the renderer.
        self._suggestions = list(self._suggestions)

    def _complete_command(self):
        if not self._suggestions:
            return
        prompt = self.query_one("#prompt", Input)
        prompt.value = self._suggestions[self._suggestion_index]
        prompt.cursor_position = len(prompt.value)

    # --- Rendering ---

    def _render_session(self):
        session = self.session
        state = (
            session.stack,
            session.status,
            session.is_loading(),
            self._prompt_mode,
            self._help_visible,
            self._suggestions,
        )
        if self._rendered is not None and all(a is b for a, b in zip(state, self._rendered)):
            return
        self._rendered = state

        frame = session.top
        if frame is None:
            return
        self._sync_prompt(frame)
        self._render_header()
        self._render_status()

        table = self.query_one("#table", DataTable)
        detail = self.query_one("#detail", Static)
        scroll = self.query_one("#detail-scroll", VerticalScroll)
        showing_list = frame.kind in (ViewKind.LIST, ViewKind.FILTER) and not self._help_visible
        table.display = showing_list
        scroll.display = not showing_list

        if self._help_visible:
            detail.update(self._help_text())
            scroll.scroll_to(y=0, animate=False)
        elif showing_list:
            self._render_table(table, active_list(session.stack))
        elif frame.kind is ViewKind.DESCRIBE:
            detail.update(JSON.from_data(frame.view.row.item, indent=2))
            scroll.scroll_to(y=frame.view.scroll, animate=False)
        elif frame.kind is ViewKind.DIALOG:
            detail.update(self._dialog_text(frame))
        elif frame.kind is ViewKind.PICKER:
            detail.update(self._picker_text(frame))

    def _sync_prompt(self, frame: Frame):
        if frame.kind is ViewKind.FILTER and self._prompt_mode != "filter":
            self._open_prompt("filter", frame.view.text)
        elif frame.kind is ViewKind.PICKER and self._prompt_mode != "picker":
            self._open_prompt("picker", frame.view.query)
        elif frame.kind not in (ViewKind.FILTER, ViewKind.PICKER) and self._prompt_mode in ("filter", "picker"):
            self._close_prompt()

    def _render_header(self):
        session = self.session
        frame = active_list(session.stack)
        parts = [f"Project: {session.project or '-'}", f"Zone: {session.zone or '-'}"]
        if frame is not None:
            schema = session.registry.get(frame.schema_key)
            parts.append(schema.display_name if schema else frame.schema_key)
            if frame.view.breadcrumb:
                parts.append(frame.view.breadcrumb)
            if frame.view.filter_text:
                parts.append(f"/{frame.view.filter_text}")
        if session.is_loading():
            parts.append("loading...")
        if session.read_only:
            parts.append("[READ-ONLY]")

        text = Text(" | ".join(parts))
        actions, sub_resources = session.shortcut_hints()
        hints = []
        if actions:
            hints.append("Actions: " + format_hints(actions))
        if sub_resources:
            hints.append("Open: " + format_hints(sub_resources))
        if hints:
            text.append("\n" + "  |  ".join(hints), style="dim")
        self.query_one("#header", Static).update(text)

    def _render_status(self):
        status = self.session.status
        widget = self.query_one("#status", Static)
        if self._prompt_mode == "command":
            widget.update(self._suggestion_text())
            widget.set_class(False, "error")
            return
        widget.update(status.text if status else "")
        widget.set_class(bool(status and status.error), "error")

    def _render_table(self, table: DataTable, frame: Optional[Frame]):
        table.clear(columns=True)
        if frame is None:
            return
        schema = self.session.registry.get(frame.schema_key)
        if schema is None:
            return
        for column in schema.columns:
            table.add_column(column.header, width=column.width)
        for row in frame.view.visible:
            table.add_row(*(_cell_text(cell.text, cell.color) for cell in row.cells))
        if frame.view.visible:
            table.move_cursor(row=frame.view.selected)

    def _suggestion_text(self) -> Text:
        text = Text()
        if not self._suggestions:
            text.append("no matching command", style="dim")
            return text
        for index, suggestion in enumerate(self._suggestions):
            text.append(f" {suggestion} ", style="reverse" if index == self._suggestion_index else "")
        return text

    def _help_text(self) -> Text:
        text = Text()
        text.append("Help", style="bold")
        text.append("  (esc or ? to close)\n", style="dim")
        schema = self.session.current_schema()
        for title, entries in help_sections(schema, self.session.read_only):
            text.append(f"\n{title}\n", style="bold yellow")
            for key, description in entries:
                text.append(f"  {key:>15}", style="bold green")
                text.append(f"  {description}\n")
        return text

    def _dialog_text(self, frame: Frame) -> Text:
        view = frame.view
        text = Text()
        text.append(f"{view.action.display_name}\n\n", style="bold")
        text.append(view.message + "\n\n", style="bold red" if view.destructive else "")
        yes_style = "reverse" if view.selected_yes else ""
        no_style = "" if view.selected_yes else "reverse"
        text.append(" Yes ", style=yes_style)
        text.append("  ")
        text.append(" No ", style=no_style)
        return text

    def _picker_text(self, frame: Frame) -> Text:
        view = frame.view
        text = Text()
        text.append(f"Select {view.purpose.value}\n\n", style="bold")
        if not view.loaded:
            text.append("loading...")
            return text
        if not view.entries:
            text.append("no matches")
            return text
        for index, entry in enumerate(view.entries):
            label = entry.value if entry.label == entry.value else f"{entry.value}  {entry.label}"
            text.append(f"{label}\n", style="reverse" if index == view.selected else "")
        return text
