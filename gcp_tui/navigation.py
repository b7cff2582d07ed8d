"""
The view stack.

A frame is a tagged variant: `kind` says which of the five views it is and
`view` holds the payload shape of that kind. Transitions are pure functions
from (stack, event) to a new stack, so a sequence of events can be replayed
deterministically. Network calls and
persistence belong to `gcp_tui.session`.

Every frame carries a generation number. Results of background work are
tagged with the generation they were started for and are dropped when the
active list frame no longer has that generation.
"""

import enum
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional, Sequence, Tuple, Type, Union

from .models import Context, Row
from .schema import ActionDefinition


class ViewKind(enum.Enum):
    LIST = "list"
    DESCRIBE = "describe"
    DIALOG = "dialog"
    PICKER = "picker"
    FILTER = "filter"


class PickerPurpose(enum.Enum):
    RESOURCE = "resource"
    PROJECT = "project"
    ZONE = "zone"


def filter_rows(rows: Sequence[Row], text: str) -> Tuple[Row, ...]:
    """Case-insensitive substring match on the row's name and id."""
    needle = text.lower()
    if not needle:
        return tuple(rows)
    return tuple(row for row in rows if needle in row.name.lower() or needle in row.id.lower())


@dataclass(frozen=True)
class ListView:
    rows: Tuple[Row, ...] = ()
    filter_text: str = ""
    # Index into `visible`.
    selected: int = 0
    loaded: bool = False
    # "parent-key:parent-name" for sub-resource lists.
    breadcrumb: str = ""

    @property
    def visible(self) -> Tuple[Row, ...]:
        return filter_rows(self.rows, self.filter_text)

    @property
    def selected_row(self) -> Optional[Row]:
        visible = self.visible
        if 0 <= self.selected < len(visible):
            return visible[self.selected]
        return None


@dataclass(frozen=True)
class DescribeView:
    row: Row
    scroll: int = 0


@dataclass(frozen=True)
class DialogView:
    action: ActionDefinition
    row: Row
    message: str
    destructive: bool
    # Dialogs start on "Cancel".
    selected_yes: bool = False


@dataclass(frozen=True)
class PickerEntry:
    value: str
    label: str


@dataclass(frozen=True)
class PickerView:
    purpose: PickerPurpose
    entries: Tuple[PickerEntry, ...] = ()
    query: str = ""
    selected: int = 0
    loaded: bool = True

    @property
    def selected_entry(self) -> Optional[PickerEntry]:
        if 0 <= self.selected < len(self.entries):
            return self.entries[self.selected]
        return None


@dataclass(frozen=True)
class FilterView:
    text: str = ""


View = Union[ListView, DescribeView, DialogView, PickerView, FilterView]


@dataclass(frozen=True)
class Frame:
    kind: ViewKind
    schema_key: str
    context: Context
    generation: int
    view: View


Stack = Tuple[Frame, ...]


# --- Events ---


@dataclass(frozen=True)
class ResetList:
    """Replaces the whole stack with a fresh list frame."""

    schema_key: str
    context: Context
    generation: int


@dataclass(frozen=True)
class PushList:
    """Opens a sub-resource list above the current frame."""

    schema_key: str
    context: Context
    generation: int
    breadcrumb: str = ""


@dataclass(frozen=True)
class Rescope:
    """
    Moves every list frame to another project and zone.

    Each rescoped frame gets one of `generations`, bottom first, and starts
    empty so no rows of the previous scope stay on screen.
    """

    project: str
    zone: str
    generations: Tuple[int, ...]


@dataclass(frozen=True)
class RowsLoaded:
    generation: int
    rows: Tuple[Row, ...]


@dataclass(frozen=True)
class MoveSelection:
    delta: int = 0
    # "top" or "bottom"; takes precedence over `delta`.
    to: Optional[str] = None


@dataclass(frozen=True)
class PushDescribe:
    generation: int


@dataclass(frozen=True)
class PushDialog:
    generation: int
    action: ActionDefinition
    row: Row
    message: str
    destructive: bool


@dataclass(frozen=True)
class ToggleChoice:
    pass


@dataclass(frozen=True)
class PushPicker:
    generation: int
    purpose: PickerPurpose
    entries: Tuple[PickerEntry, ...] = ()
    loaded: bool = True


@dataclass(frozen=True)
class PickerEntries:
    generation: int
    entries: Tuple[PickerEntry, ...]
    query: Optional[str] = None


@dataclass(frozen=True)
class PushFilter:
    generation: int


@dataclass(frozen=True)
class FilterText:
    text: str


@dataclass(frozen=True)
class PopFilter:
    # False clears the filter of the list beneath.
    keep: bool


@dataclass(frozen=True)
class ClearFilter:
    """Drops the filter of the list on top."""


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class Quit:
    pass


Event = Union[
    ResetList,
    PushList,
    Rescope,
    RowsLoaded,
    MoveSelection,
    PushDescribe,
    PushDialog,
    ToggleChoice,
    PushPicker,
    PickerEntries,
    PushFilter,
    FilterText,
    PopFilter,
    ClearFilter,
    Back,
    Quit,
]


# --- Helpers ---


def top(stack: Stack) -> Optional[Frame]:
    return stack[-1] if stack else None


def _active_list_index(stack: Stack) -> Optional[int]:
    for index in range(len(stack) - 1, -1, -1):
        if stack[index].kind is ViewKind.LIST:
            return index
    return None


def active_list(stack: Stack) -> Optional[Frame]:
    """The topmost list frame, whatever sits above it."""
    index = _active_list_index(stack)
    return None if index is None else stack[index]


def _replace_top(stack: Stack, frame: Frame) -> Stack:
    return stack[:-1] + (frame,)


def _list_frame(schema_key: str, context: Context, generation: int, breadcrumb: str = "") -> Frame:
    return Frame(
        kind=ViewKind.LIST,
        schema_key=schema_key,
        context=context,
        generation=generation,
        view=ListView(breadcrumb=breadcrumb),
    )


def _reselect(view: ListView, previous: Optional[Row]) -> ListView:
    """Keeps the previously selected row selected if it is still visible."""
    if previous is not None:
        for i, row in enumerate(view.visible):
            if row.id == previous.id:
                return replace(view, selected=i)
    return replace(view, selected=0)


def _clamp(value: int, size: int) -> int:
    if size <= 0:
        return 0
    return max(0, min(value, size - 1))


def _moved(current: int, size: int, event: MoveSelection) -> int:
    if event.to == "top":
        return 0
    if event.to == "bottom":
        return max(size - 1, 0)
    return _clamp(current + event.delta, size)


# --- Transitions ---


def _reset_list(stack: Stack, event: ResetList) -> Stack:
    return (_list_frame(event.schema_key, event.context, event.generation),)


def _push_list(stack: Stack, event: PushList) -> Stack:
    return stack + (
        _list_frame(event.schema_key, event.context, event.generation, event.breadcrumb),
    )


def _rescope(stack: Stack, event: Rescope) -> Stack:
    generations = iter(event.generations)
    rescoped = []
    for frame in stack:
        if frame.kind is not ViewKind.LIST:
            continue
        rescoped.append(
            replace(
                frame,
                context=frame.context.with_project(event.project).with_zone(event.zone),
                generation=next(generations),
                view=ListView(breadcrumb=frame.view.breadcrumb),
            )
        )
    return tuple(rescoped)


def _rows_loaded(stack: Stack, event: RowsLoaded) -> Stack:
    # Overlays (filter, describe, dialog, picker) do not make a list stale.
    index = _active_list_index(stack)
    if index is None or stack[index].generation != event.generation:
        return stack
    frame = stack[index]
    previous = frame.view.selected_row
    view = replace(frame.view, rows=tuple(event.rows), loaded=True)
    return stack[:index] + (replace(frame, view=_reselect(view, previous)),) + stack[index + 1 :]


def _move_selection(stack: Stack, event: MoveSelection) -> Stack:
    frame = top(stack)
    if frame is None:
        return stack
    view = frame.view
    if frame.kind is ViewKind.LIST:
        view = replace(view, selected=_moved(view.selected, len(view.visible), event))
    elif frame.kind is ViewKind.PICKER:
        view = replace(view, selected=_moved(view.selected, len(view.entries), event))
    elif frame.kind is ViewKind.DESCRIBE:
        if event.to == "top":
            view = replace(view, scroll=0)
        elif event.to is None:
            view = replace(view, scroll=max(0, view.scroll + event.delta))
    else:
        return stack
    return _replace_top(stack, replace(frame, view=view))


def _push_describe(stack: Stack, event: PushDescribe) -> Stack:
    frame = top(stack)
    if frame is None or frame.kind is not ViewKind.LIST:
        return stack
    row = frame.view.selected_row
    if row is None:
        return stack
    return stack + (
        Frame(ViewKind.DESCRIBE, frame.schema_key, frame.context, event.generation, DescribeView(row=row)),
    )


def _push_dialog(stack: Stack, event: PushDialog) -> Stack:
    frame = top(stack)
    if frame is None or frame.kind is not ViewKind.LIST:
        return stack
    view = DialogView(
        action=event.action,
        row=event.row,
        message=event.message,
        destructive=event.destructive,
    )
    return stack + (Frame(ViewKind.DIALOG, frame.schema_key, frame.context, event.generation, view),)


def _toggle_choice(stack: Stack, event: ToggleChoice) -> Stack:
    frame = top(stack)
    if frame is None or frame.kind is not ViewKind.DIALOG:
        return stack
    view = replace(frame.view, selected_yes=not frame.view.selected_yes)
    return _replace_top(stack, replace(frame, view=view))


def _push_picker(stack: Stack, event: PushPicker) -> Stack:
    base = top(stack)
    schema_key = base.schema_key if base else ""
    context = base.context if base else Context()
    view = PickerView(purpose=event.purpose, entries=tuple(event.entries), loaded=event.loaded)
    return stack + (Frame(ViewKind.PICKER, schema_key, context, event.generation, view),)


def _picker_entries(stack: Stack, event: PickerEntries) -> Stack:
    frame = top(stack)
    if frame is None or frame.kind is not ViewKind.PICKER or frame.generation != event.generation:
        return stack
    view = replace(frame.view, entries=tuple(event.entries), selected=0, loaded=True)
    if event.query is not None:
        view = replace(view, query=event.query)
    return _replace_top(stack, replace(frame, view=view))


def _push_filter(stack: Stack, event: PushFilter) -> Stack:
    frame = top(stack)
    if frame is None or frame.kind is not ViewKind.LIST:
        return stack
    view = FilterView(text=frame.view.filter_text)
    return stack + (Frame(ViewKind.FILTER, frame.schema_key, frame.context, event.generation, view),)


def _with_list_filter(stack: Stack, text: str) -> Stack:
    """Sets the filter of the list directly beneath the filter frame."""
    frame = stack[-2]
    previous = frame.view.selected_row
    view = _reselect(replace(frame.view, filter_text=text), previous)
    return stack[:-2] + (replace(frame, view=view), stack[-1])


def _filter_text(stack: Stack, event: FilterText) -> Stack:
    frame = top(stack)
    if frame is None or frame.kind is not ViewKind.FILTER or len(stack) < 2:
        return stack
    stack = _with_list_filter(stack, event.text)
    return _replace_top(stack, replace(stack[-1], view=FilterView(text=event.text)))


def _pop_filter(stack: Stack, event: PopFilter) -> Stack:
    frame = top(stack)
    if frame is None or frame.kind is not ViewKind.FILTER or len(stack) < 2:
        return stack
    if not event.keep:
        stack = _with_list_filter(stack, "")
    return stack[:-1]


def _clear_filter(stack: Stack, event: ClearFilter) -> Stack:
    frame = top(stack)
    if frame is None or frame.kind is not ViewKind.LIST or not frame.view.filter_text:
        return stack
    previous = frame.view.selected_row
    view = _reselect(replace(frame.view, filter_text=""), previous)
    return _replace_top(stack, replace(frame, view=view))


def _back(stack: Stack, event: Back) -> Stack:
    # The root frame is never popped; only an explicit quit unwinds it.
    if len(stack) <= 1:
        return stack
    return stack[:-1]


def _quit(stack: Stack, event: Quit) -> Stack:
    return ()


_TRANSITIONS: Dict[Type, Callable[[Stack, Event], Stack]] = {
    ResetList: _reset_list,
    PushList: _push_list,
    Rescope: _rescope,
    RowsLoaded: _rows_loaded,
    MoveSelection: _move_selection,
    PushDescribe: _push_describe,
    PushDialog: _push_dialog,
    ToggleChoice: _toggle_choice,
    PushPicker: _push_picker,
    PickerEntries: _picker_entries,
    PushFilter: _push_filter,
    FilterText: _filter_text,
    PopFilter: _pop_filter,
    ClearFilter: _clear_filter,
    Back: _back,
    Quit: _quit,
}


def reduce(stack: Stack, event: Event) -> Stack:
    """Applies one event to a stack and returns the new stack."""
    return _TRANSITIONS[type(event)](stack, event)
