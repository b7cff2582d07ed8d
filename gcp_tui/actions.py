"""
Execution of the mutating operations a schema declares for its rows.

Each invocation is packaged as an `ActionCommand`: a self-contained object
holding the resolved method, URL, and payload. Building the command is where
placeholders are checked; executing it is the only place a write request is
sent.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .dispatch import DispatchEngine, join_url, resolve_path
from .errors import ReadOnlyModeError, UnknownAction
from .helpers import derive_region, extract_value, last_segment, substitute
from .models import Context, Row
from .schema import ActionDefinition, ResourceSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationRequired:
    """Returned instead of executing when the operator must approve first."""

    action: ActionDefinition
    message: str
    destructive: bool


@dataclass(frozen=True)
class ActionSucceeded:
    action: ActionDefinition
    status: int


ActionOutcome = Union[ConfirmationRequired, ActionSucceeded]


def _raw_string(item: Any, path: str, fallback: str) -> str:
    # URLs need the untouched value, e.g. a full "projects/.../secrets/x" name.
    value = extract_value(item, path)
    if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
        return str(value)
    return fallback


def action_context(schema: ResourceSchema, row: Row, context: Context) -> Context:
    """
    The list context extended with the selected row's identifying fields.

    Zonal and regional items carry their location as a self-link; when present
    it takes precedence over the context's zone and region.
    """
    values: Dict[str, str] = {
        "name": _raw_string(row.item, schema.name_field, row.name),
        "id": _raw_string(row.item, schema.id_field, row.id),
    }
    zone = extract_value(row.item, "zone")
    if isinstance(zone, str) and zone:
        values["zone"] = last_segment(zone)
        values["region"] = derive_region(values["zone"])
    region = extract_value(row.item, "region")
    if isinstance(region, str) and region:
        values["region"] = last_segment(region)
    return context.with_values(**values)


def confirmation_message(action: ActionDefinition, row: Row) -> str:
    if action.confirm is None:
        return ""
    return substitute(action.confirm.message, {"name": row.name, "id": row.id}, strict=False)


class ActionCommand:
    """A single resolved write request."""

    def __init__(
        self,
        engine: DispatchEngine,
        description: str,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]] = None,
    ):
        self.engine = engine
        self.description = description
        self.method = method
        self.url = url
        self.body = body

    @classmethod
    def build(
        cls,
        engine: DispatchEngine,
        schema: ResourceSchema,
        action: ActionDefinition,
        row: Row,
        context: Context,
    ) -> "ActionCommand":
        """Resolves the action's path against the list context and the row."""
        path = resolve_path(action.api.path, action_context(schema, row, context))
        return cls(
            engine,
            f"{action.display_name} {schema.display_name} '{row.name}'",
            action.api.method,
            join_url(schema.api.base, path),
            action.api.body,
        )

    def execute(self) -> int:
        """
        Sends the request. Only the status is inspected; any 2xx is success and
        anything else raises `ApiError` from the engine.
        """
        logger.info("Executing action: %s", self.description)
        logger.debug("Action URL: %s %s", self.method, self.url)
        response = self.engine.send(self.method, self.url, body=self.body)
        return response.status


class ActionExecutor:
    """Gates actions behind read-only mode and operator confirmation."""

    def __init__(self, engine: DispatchEngine, read_only: bool = False):
        self.engine = engine
        self.read_only = read_only

    def invoke(
        self,
        schema: ResourceSchema,
        action: ActionDefinition,
        row: Row,
        confirmed: bool = False,
        context: Optional[Context] = None,
    ) -> ActionOutcome:
        """
        Runs an action on a selected row.

        Returns `ConfirmationRequired` without sending anything when the action
        asks for confirmation and `confirmed` is false. Destructive and
        non-destructive actions behave the same once confirmed.

        Raises:
            ReadOnlyModeError: always, in read-only mode.
            UnknownAction: the action is not declared by the schema.
            DispatchError: the request failed.
        """
        if self.read_only:
            raise ReadOnlyModeError()
        if action not in schema.actions:
            raise UnknownAction(
                f"'{action.display_name}' is not an action of {schema.display_name}"
            )

        if action.confirm is not None and not confirmed:
            return ConfirmationRequired(
                action=action,
                message=confirmation_message(action, row),
                destructive=action.confirm.destructive,
            )

        command = ActionCommand.build(self.engine, schema, action, row, context or Context())
        return ActionSucceeded(action=action, status=command.execute())
