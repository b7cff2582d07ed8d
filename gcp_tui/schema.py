"""
Declarative resource definitions.

A schema document is a map with an optional `color_maps` section and a
`resources` section keyed by resource key. The models below only check the
structure of a document; cross-document rules (unique keys, shortcut
collisions, non-empty field paths) are enforced by the registry once every
document has been parsed.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ApiTemplate(BaseModel):
    """Where and how to list a resource."""

    model_config = ConfigDict(frozen=True)

    # Scheme and host plus the API version prefix, e.g. "https://compute.googleapis.com/compute/v1".
    base: str

    # Path template with `{placeholder}` tokens, e.g. "projects/{project}/zones/{zone}/instances".
    path: str

    method: str = "GET"

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.upper()


class ColumnDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    header: str
    json_path: str
    width: int = 20

    # Name of a color map declared in any loaded document.
    color_map: Optional[str] = None


class ConfirmDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    # May reference `{name}` and `{id}` of the selected row.
    message: str
    destructive: bool = False


class ActionApi(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    path: str

    # Optional JSON payload sent with the request.
    body: Optional[Dict[str, Any]] = None

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.upper()


class ActionDefinition(BaseModel):
    """A mutating operation on a selected row, e.g. "Stop" or "Delete"."""

    model_config = ConfigDict(frozen=True)

    display_name: str
    api: ActionApi
    shortcut: str
    confirm: Optional[ConfirmDescriptor] = None


class SubResourceRef(BaseModel):
    """
    A child resource listed in the scope of a selected parent item.

    `resource_key` is resolved lazily, when the operator actually navigates.
    """

    model_config = ConfigDict(frozen=True)

    resource_key: str
    display_name: str
    shortcut: str

    # Field of the parent item supplying the value (field path grammar).
    parent_id_field: str

    # Name under which that value is injected into the child's context.
    filter_param: str


class ResourceSchema(BaseModel):
    """The full declarative definition of one resource type."""

    model_config = ConfigDict(frozen=True)

    # Filled from the map key of the `resources` section.
    key: str
    display_name: str
    service: str
    api: ApiTemplate

    # Dot path to the item array in the response. "a.*.b" collects the `b`
    # arrays of every value of the map at `a`. Empty means the whole body.
    response_path: str = ""

    id_field: str
    name_field: str
    columns: List[ColumnDefinition]
    actions: List[ActionDefinition] = Field(default_factory=list)
    sub_resources: List[SubResourceRef] = Field(default_factory=list)

    def action_for_shortcut(self, shortcut: str) -> Optional[ActionDefinition]:
        for action in self.actions:
            if action.shortcut == shortcut:
                return action
        return None

    def sub_resource_for_shortcut(self, shortcut: str) -> Optional[SubResourceRef]:
        for sub in self.sub_resources:
            if sub.shortcut == shortcut:
                return sub
        return None

    def sub_resource_for_key(self, resource_key: str) -> Optional[SubResourceRef]:
        for sub in self.sub_resources:
            if sub.resource_key == resource_key:
                return sub
        return None

    def action_hints(self) -> List[Tuple[str, str]]:
        """`(shortcut, display_name)` for every action, in declaration order."""
        return [(action.shortcut, action.display_name) for action in self.actions]

    def sub_resource_hints(self) -> List[Tuple[str, str]]:
        return [(sub.shortcut, sub.display_name) for sub in self.sub_resources]


class ColorRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    color: Tuple[int, int, int]


class SchemaDocument(BaseModel):
    """One decoded schema document, typically one per cloud service."""

    color_maps: Dict[str, List[ColorRule]] = Field(default_factory=dict)
    resources: Dict[str, ResourceSchema] = Field(default_factory=dict)

    @field_validator("resources", mode="before")
    @classmethod
    def inject_keys(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        return {
            key: {**raw, "key": key} if isinstance(raw, dict) else raw
            for key, raw in v.items()
        }
