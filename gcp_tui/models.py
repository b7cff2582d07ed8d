"""
This module defines the runtime data structures passed between the dispatch
engine, the action executor, and the navigation layer.

The declarative resource definitions themselves live in `gcp_tui.schema`;
the types here are produced fresh at runtime and never persisted.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from .helpers import derive_region

# An RGB triple resolved from a named color map.
Color = Tuple[int, int, int]


@dataclass(frozen=True)
class Context:
    """
    Runtime values available for placeholder substitution.

    Rebuilt on every navigation transition. `values` holds the extra named
    values contributed by a parent item or a selected row (e.g. `name`).
    """

    project: str = ""
    zone: str = ""
    values: Mapping[str, str] = field(default_factory=dict)

    # Names in `values` that came from a parent item and narrow the listing.
    filters: Tuple[str, ...] = ()

    @property
    def region(self) -> str:
        return derive_region(self.zone) if self.zone else ""

    def substitutions(self) -> Dict[str, str]:
        """All substitution values, extra values taking precedence."""
        merged = {"project": self.project, "zone": self.zone, "region": self.region}
        merged.update(self.values)
        return merged

    def with_values(self, **extra: str) -> "Context":
        merged = dict(self.values)
        merged.update(extra)
        return replace(self, values=merged)

    def with_filter(self, name: str, value: str) -> "Context":
        merged = dict(self.values)
        merged[name] = value
        filters = self.filters if name in self.filters else self.filters + (name,)
        return replace(self, values=merged, filters=filters)

    def with_project(self, project: str) -> "Context":
        return replace(self, project=project)

    def with_zone(self, zone: str) -> "Context":
        return replace(self, zone=zone)


@dataclass(frozen=True)
class Cell:
    text: str
    # Set only when the column names a color map and the value has a rule.
    color: Optional[Color] = None


@dataclass(frozen=True)
class Row:
    """
    One remote item projected through a schema's id/name/column paths.

    The raw item is kept for the describe view but does not take part in
    equality, so two refreshes of unchanged data compare equal.
    """

    id: str
    name: str
    cells: Tuple[Cell, ...]
    item: Any = field(default=None, compare=False, repr=False)

    @property
    def texts(self) -> Tuple[str, ...]:
        return tuple(cell.text for cell in self.cells)


@dataclass
class Credential:
    """A bearer token, when it expires (epoch seconds), and who produced it."""

    token: str
    expires_at: Optional[float]
    source: str

    def is_fresh(self, now: float, safety_margin: float) -> bool:
        if self.expires_at is None:
            return True
        return now < self.expires_at - safety_margin
