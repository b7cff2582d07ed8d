"""
The owner of the view stack.

`Session` is driven from a single control path (the front-end's event loop):
key commands and `tick()` are the only things that touch the stack. Network
work is handed to a `submit` callable, typically a thread pool, and its
results are queued and applied by the next `tick()` or `process_pending()`.
"""

import itertools
import logging
import queue
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .actions import ActionExecutor, ConfirmationRequired
from .dispatch import DispatchEngine
from .errors import DashboardError, MissingContextValue
from .helpers import DEFAULT_ZONES, REFRESH_INTERVAL_SECONDS, extract_value
from .models import Context, Row
from .navigation import (
    Back,
    ClearFilter,
    FilterText,
    Frame,
    MoveSelection,
    PickerEntries,
    PickerEntry,
    PickerPurpose,
    PopFilter,
    PushDescribe,
    PushDialog,
    PushFilter,
    PushList,
    PushPicker,
    Quit,
    Rescope,
    ResetList,
    RowsLoaded,
    Stack,
    ToggleChoice,
    ViewKind,
    active_list,
    reduce,
    top,
)
from .registry import Registry, fuzzy_score
from .schema import ActionDefinition, ResourceSchema, SubResourceRef
from .settings import UserConfig

logger = logging.getLogger(__name__)

PROJECTS_RESOURCE = "projects"
STATUS_SECONDS = 5.0

# Commands offered by `:` completion besides resource keys.
BUILTIN_COMMANDS = ("back", "projects", "quit", "zones")

Submit = Callable[[Callable[[], None]], Any]


def run_inline(job: Callable[[], None]):
    job()


@dataclass(frozen=True)
class StatusMessage:
    text: str
    error: bool
    expires_at: float


def _rank(query: str, entries: List[PickerEntry]) -> List[PickerEntry]:
    scored = []
    for position, entry in enumerate(entries):
        scores = [s for s in (fuzzy_score(query, entry.value), fuzzy_score(query, entry.label)) if s is not None]
        if scores:
            scored.append((-max(scores), position, entry))
    scored.sort(key=lambda item: (item[0], item[1]))
    return [entry for _, _, entry in scored]


class Session:
    """
    Routes operator commands to the view stack, the dispatch engine and the
    action executor.

    Every error other than a schema error ends up in `status`; none of them
    ends the session.
    """

    def __init__(
        self,
        registry: Registry,
        engine: DispatchEngine,
        executor: ActionExecutor,
        project: str = "",
        zone: str = "",
        config: Optional[UserConfig] = None,
        config_file: Optional[Path] = None,
        refresh_interval: float = REFRESH_INTERVAL_SECONDS,
        submit: Submit = run_inline,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.engine = engine
        self.executor = executor
        self.project = project
        self.zone = zone
        self.config = config or UserConfig()
        self.config_file = config_file
        self.refresh_interval = refresh_interval
        self.status: Optional[StatusMessage] = None
        self.running = True

        self._submit = submit
        self._clock = clock
        self._stack: Stack = ()
        self._results: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self._generations = itertools.count(1)
        self._in_flight = set()
        self._refreshed_at: Dict[int, float] = {}
        self._project_entries: List[PickerEntry] = []

    # --- State ---

    @property
    def stack(self) -> Stack:
        return self._stack

    @property
    def top(self) -> Optional[Frame]:
        return top(self._stack)

    @property
    def read_only(self) -> bool:
        return self.executor.read_only

    def schema_for(self, frame: Frame) -> ResourceSchema:
        return self.registry.require(frame.schema_key)

    def current_schema(self) -> Optional[ResourceSchema]:
        """Schema of the list the operator is looking at, under any overlay."""
        frame = active_list(self._stack)
        return self.registry.get(frame.schema_key) if frame is not None else None

    def shortcut_hints(self) -> Tuple[List[Tuple[str, str]], List[Tuple[str, str]]]:
        """Action and sub-resource `(shortcut, display_name)` pairs of the current list."""
        schema = self.current_schema()
        if schema is None:
            return [], []
        return schema.action_hints(), schema.sub_resource_hints()

    def is_loading(self) -> bool:
        frame = active_list(self._stack)
        return frame is not None and frame.generation in self._in_flight

    def set_status(self, text: str, error: bool = False):
        self.status = StatusMessage(text, error, self._clock() + STATUS_SECONDS)

    def _report(self, error: Exception):
        logger.warning("%s: %s", type(error).__name__, error)
        self.set_status(str(error), error=True)

    def _dispatch(self, event):
        self._stack = reduce(self._stack, event)

    def _next_generation(self) -> int:
        return next(self._generations)

    def _scope(self) -> Context:
        return Context(project=self.project, zone=self.zone)

    def _persist(self, **changes):
        self.config = self.config.model_copy(update=changes)
        if self.config_file is not None:
            self.config.save(self.config_file)

    # --- Background work ---

    def _run(
        self,
        job: Callable[[], Any],
        on_success: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ):
        def work():
            try:
                result = job()
            except DashboardError as e:
                self._results.put(lambda error=e: on_error(error))
            except Exception as e:
                logger.exception("Unexpected failure in background job")
                self._results.put(lambda error=e: on_error(error))
            else:
                self._results.put(lambda: on_success(result))

        self._submit(work)

    def process_pending(self) -> int:
        """Applies every queued result. Returns how many were applied."""
        applied = 0
        while True:
            try:
                apply = self._results.get_nowait()
            except queue.Empty:
                return applied
            apply()
            applied += 1

    def tick(self):
        """
        Applies finished work, expires the status line and refreshes the list
        on top of the stack when its interval has elapsed.
        """
        self.process_pending()
        if self.status is not None and self._clock() >= self.status.expires_at:
            self.status = None

        frame = self.top
        if frame is None or frame.kind is not ViewKind.LIST:
            return
        if frame.generation in self._in_flight:
            return
        last = self._refreshed_at.get(frame.generation)
        if last is None or self._clock() - last >= self.refresh_interval:
            self._fetch(frame)

    def _fetch(self, frame: Frame):
        generation = frame.generation
        try:
            schema = self.schema_for(frame)
        except DashboardError as e:
            self._report(e)
            return

        live = {f.generation for f in self._stack}
        self._refreshed_at = {g: t for g, t in self._refreshed_at.items() if g in live}
        self._refreshed_at[generation] = self._clock()
        self._in_flight.add(generation)
        context = frame.context
        self._run(
            lambda: tuple(self.engine.list(schema, context)),
            lambda rows: self._rows_arrived(generation, rows),
            lambda error: self._fetch_failed(generation, error),
        )

    def _is_current(self, generation: int) -> bool:
        frame = active_list(self._stack)
        return frame is not None and frame.generation == generation

    def _rows_arrived(self, generation: int, rows):
        self._in_flight.discard(generation)
        if not self._is_current(generation):
            logger.debug("Discarding %d rows for stale generation %d", len(rows), generation)
            return
        self._dispatch(RowsLoaded(generation, rows))

    def _fetch_failed(self, generation: int, error: Exception):
        self._in_flight.discard(generation)
        if not self._is_current(generation):
            logger.debug("Discarding error for stale generation %d: %s", generation, error)
            return
        # The rows on screen stay as they were; the next tick retries.
        self._report(error)

    # --- Lists ---

    def start(self, resource_key: str):
        """Opens the initial list."""
        self.select_resource(resource_key, persist=False)

    def select_resource(self, key: str, persist: bool = True):
        if key not in self.registry:
            self.set_status(f"Unknown resource: {key}", error=True)
            return
        self._dispatch(ResetList(key, self._scope(), self._next_generation()))
        self._fetch(self.top)
        if persist:
            self._persist(last_resource=key)

    def refresh(self):
        """Re-lists the list on top right away."""
        frame = self.top
        if frame is None or frame.kind is not ViewKind.LIST:
            return
        self._refresh_generation(frame.generation)

    def _refresh_generation(self, generation: int):
        frame = self.top
        if (
            frame is not None
            and frame.kind is ViewKind.LIST
            and frame.generation == generation
            and generation not in self._in_flight
        ):
            self._fetch(frame)
            return
        # Due: the next tick that finds this list on top and idle fetches it.
        self._refreshed_at.pop(generation, None)

    def move(self, delta: int):
        self._dispatch(MoveSelection(delta=delta))

    def move_to(self, where: str):
        self._dispatch(MoveSelection(to=where))

    def selected_row(self) -> Optional[Row]:
        frame = self.top
        if frame is None or frame.kind is not ViewKind.LIST:
            return None
        return frame.view.selected_row

    def describe(self):
        if self.selected_row() is None:
            self.set_status("No item selected", error=True)
            return
        self._dispatch(PushDescribe(self._next_generation()))

    def back(self):
        frame = self.top
        if frame is None:
            return
        if frame.kind is ViewKind.FILTER:
            self._dispatch(PopFilter(keep=False))
        elif frame.kind is ViewKind.LIST and frame.view.filter_text:
            self._dispatch(ClearFilter())
        else:
            self._dispatch(Back())

    def quit(self):
        self._dispatch(Quit())
        self.running = False

    # --- Filter ---

    def start_filter(self):
        self._dispatch(PushFilter(self._next_generation()))

    def filter_input(self, text: str):
        self._dispatch(FilterText(text))

    def commit_filter(self):
        self._dispatch(PopFilter(keep=True))

    def cancel_filter(self):
        self._dispatch(PopFilter(keep=False))

    # --- Shortcuts, sub-resources and actions ---

    def shortcut(self, key: str) -> bool:
        """
        Runs the sub-resource or action bound to a key on the selected row.
        Sub-resources win over actions. Returns False when nothing is bound.
        """
        frame = self.top
        if frame is None or frame.kind is not ViewKind.LIST:
            return False
        schema = self.schema_for(frame)
        sub = schema.sub_resource_for_shortcut(key)
        action = schema.action_for_shortcut(key) if sub is None else None
        if sub is None and action is None:
            return False

        row = frame.view.selected_row
        if row is None:
            self.set_status("No item selected", error=True)
            return True
        if sub is not None:
            self.open_sub_resource(sub, row)
        else:
            self.run_action(action, row)
        return True

    def open_sub_resource(self, sub: SubResourceRef, row: Row):
        frame = self.top
        try:
            child = self.registry.resolve_sub_resource(sub)
            value = extract_value(row.item, sub.parent_id_field)
            if value is None or value == "":
                raise MissingContextValue(sub.parent_id_field)
        except DashboardError as e:
            self._report(e)
            return

        parent = self.schema_for(frame)
        context = frame.context.with_filter(sub.filter_param, str(value))
        breadcrumb = f"{parent.display_name}: {row.name}"
        logger.info("Opening %s for %s", child.display_name, breadcrumb)
        self._dispatch(PushList(child.key, context, self._next_generation(), breadcrumb))
        self._fetch(self.top)

    def run_action(self, action: ActionDefinition, row: Row):
        frame = self.top
        schema = self.schema_for(frame)
        context = frame.context
        generation = frame.generation
        self._run(
            lambda: self.executor.invoke(schema, action, row, confirmed=False, context=context),
            lambda outcome: self._action_finished(generation, action, row, outcome),
            self._report,
        )

    def _action_finished(self, generation: int, action: ActionDefinition, row: Row, outcome):
        if isinstance(outcome, ConfirmationRequired):
            frame = self.top
            if frame is None or frame.kind is not ViewKind.LIST or frame.generation != generation:
                logger.debug("Dropping confirmation for %s: view changed", action.display_name)
                return
            self._dispatch(
                PushDialog(
                    self._next_generation(),
                    action=action,
                    row=row,
                    message=outcome.message,
                    destructive=outcome.destructive,
                )
            )
            return

        self.set_status(f"{action.display_name} '{row.name}' succeeded")
        self._refresh_generation(generation)

    def toggle_choice(self):
        self._dispatch(ToggleChoice())

    def confirm(self, approved: Optional[bool] = None):
        """
        Closes the dialog on top. `approved` defaults to the highlighted
        button; an approved action is executed.
        """
        frame = self.top
        if frame is None or frame.kind is not ViewKind.DIALOG:
            return
        dialog = frame.view
        if approved is None:
            approved = dialog.selected_yes
        self._dispatch(Back())
        if not approved:
            self.set_status("Cancelled")
            return

        base = self.top
        schema = self.schema_for(base)
        context = base.context
        self._run(
            lambda: self.executor.invoke(schema, dialog.action, dialog.row, confirmed=True, context=context),
            lambda outcome: self._action_finished(base.generation, dialog.action, dialog.row, outcome),
            self._report,
        )

    # --- Pickers ---

    def open_picker(self, purpose: PickerPurpose):
        generation = self._next_generation()
        if purpose is PickerPurpose.RESOURCE:
            self._dispatch(PushPicker(generation, purpose, tuple(self._resource_entries(""))))
        elif purpose is PickerPurpose.ZONE:
            self._dispatch(PushPicker(generation, purpose, tuple(self._zone_entries(""))))
        else:
            self._open_project_picker(generation)

    def _resource_entries(self, query: str) -> List[PickerEntry]:
        return [
            PickerEntry(key, self.registry.require(key).display_name)
            for key, _ in self.registry.search(query)
        ]

    def _zone_entries(self, query: str) -> List[PickerEntry]:
        return _rank(query, [PickerEntry(zone, zone) for zone in DEFAULT_ZONES])

    def _open_project_picker(self, generation: int):
        try:
            schema = self.registry.require(PROJECTS_RESOURCE)
        except DashboardError as e:
            self._report(e)
            return
        self._dispatch(PushPicker(generation, PickerPurpose.PROJECT, (), loaded=False))
        self._run(
            lambda: self.engine.list(schema, self._scope()),
            lambda rows: self._projects_arrived(generation, rows),
            self._report,
        )

    def _projects_arrived(self, generation: int, rows):
        self._project_entries = [PickerEntry(row.id, row.name) for row in rows]
        frame = self.top
        query = frame.view.query if frame is not None and frame.kind is ViewKind.PICKER else ""
        self._dispatch(PickerEntries(generation, tuple(_rank(query, self._project_entries))))

    def picker_query(self, query: str):
        frame = self.top
        if frame is None or frame.kind is not ViewKind.PICKER:
            return
        purpose = frame.view.purpose
        if purpose is PickerPurpose.RESOURCE:
            entries = self._resource_entries(query)
        elif purpose is PickerPurpose.ZONE:
            entries = self._zone_entries(query)
        else:
            entries = _rank(query, self._project_entries)
        self._dispatch(PickerEntries(frame.generation, tuple(entries), query=query))

    def picker_select(self):
        frame = self.top
        if frame is None or frame.kind is not ViewKind.PICKER:
            return
        entry = frame.view.selected_entry
        self._dispatch(Back())
        if entry is None:
            return
        purpose = frame.view.purpose
        if purpose is PickerPurpose.RESOURCE:
            self.select_resource(entry.value)
        elif purpose is PickerPurpose.PROJECT:
            self.switch_project(entry.value)
        else:
            self.switch_zone(entry.value)

    # --- Scope ---

    def _rescope(self):
        count = sum(1 for frame in self._stack if frame.kind is ViewKind.LIST)
        generations = tuple(self._next_generation() for _ in range(count))
        self._dispatch(Rescope(self.project, self.zone, generations))
        if self.top is not None:
            self._fetch(self.top)

    def switch_project(self, project: str):
        self.project = project
        self._rescope()
        self._persist(project=project)
        self.set_status(f"Switched to project {project}")

    def switch_zone(self, zone: str):
        self.zone = zone
        self._rescope()
        self._persist(zone=zone)
        self.set_status(f"Switched to zone {zone}")

    # --- Command line ---

    def execute_command(self, text: str):
        """Runs a `:` command."""
        parts = text.strip().split()
        if not parts:
            return
        name, args = parts[0], parts[1:]

        if name in ("q", "quit"):
            self.quit()
        elif name == "back":
            self.back()
        elif name == "projects":
            self.open_picker(PickerPurpose.PROJECT)
        elif name == "zones":
            self.open_picker(PickerPurpose.ZONE)
        elif name in ("project", "zone"):
            if not args:
                self.set_status(f"Usage: {name} <{name}>", error=True)
            elif name == "project":
                self.switch_project(args[0])
            else:
                self.switch_zone(args[0])
        else:
            self._navigate_to(name)

    def _navigate_to(self, key: str):
        frame = self.top
        if frame is not None and frame.kind is ViewKind.LIST:
            sub = self.schema_for(frame).sub_resource_for_key(key)
            row = frame.view.selected_row
            if sub is not None and row is not None:
                self.open_sub_resource(sub, row)
                return
        self.select_resource(key)

    def command_suggestions(self, text: str) -> List[str]:
        """
        Completions for a partly typed `:` command: every resource key and
        built-in command containing the typed text, sorted.
        """
        needle = text.strip().lower()
        commands = sorted(set(self.registry.keys()) | set(BUILTIN_COMMANDS))
        return [command for command in commands if needle in command.lower()]
