"""Shared helper functions and constants."""

import logging
import re
from typing import Any, Mapping

from .errors import MissingContextValue, SchemaError

logger = logging.getLogger(__name__)

# Keys the navigation layer binds itself. Actions may not claim them.
RESERVED_SHORTCUTS = frozenset(
    ["d", "g", "G", "j", "k", "r", "q", "?", ":", "/", "Backspace"]
)

# Rendered for missing, null, or empty values.
EMPTY_PLACEHOLDER = "-"

DEFAULT_ZONE = "us-central1-a"
DEFAULT_RESOURCE = "vm-instances"
REFRESH_INTERVAL_SECONDS = 5.0

DEFAULT_ZONES = [
    "us-central1-a",
    "us-central1-b",
    "us-central1-c",
    "us-east1-b",
    "us-east1-c",
    "us-west1-a",
    "us-west1-b",
    "europe-west1-b",
    "europe-west1-c",
    "asia-east1-a",
    "asia-east1-b",
    "asia-northeast1-a",
]

API_LINK_PREFIX = "https://www.googleapis.com/"

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_-]*)\}")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


class ValidationErrorCollector:
    """A simple class to collect and report validation errors."""

    def __init__(self):
        self.errors: list[SchemaError] = []

    def add_error(self, error: SchemaError):
        self.errors.append(error)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def report(self):
        """Logs all collected errors and raises the first one if any exist."""
        if self.has_errors:
            logger.error(
                "Schema loading failed with the following errors:",
            )
            for i, error in enumerate(self.errors, 1):
                logger.error("  %d. %s", i, error)
            first = self.errors[0]
            first.errors = list(self.errors)
            raise first


def derive_region(zone: str) -> str:
    """Derives a region from a zone, e.g. "us-central1-a" -> "us-central1"."""
    if "-" in zone:
        return zone.rsplit("-", 1)[0]
    return zone


def last_segment(value: str) -> str:
    return value.rsplit("/", 1)[-1]


def placeholders(template: str) -> list[str]:
    """Returns the placeholder names of a template in order of appearance."""
    return PLACEHOLDER_PATTERN.findall(template)


def substitute(template: str, values: Mapping[str, Any], strict: bool = True) -> str:
    """
    Replaces every `{name}` token in the template with its value.

    Empty and missing values are unresolved. In strict mode an unresolved
    placeholder raises `MissingContextValue`; otherwise the token is kept as-is.
    """

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        value = values.get(name)
        if value is None or value == "":
            if strict:
                raise MissingContextValue(name, template)
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def _split_path(path: str) -> list[str]:
    # "networkInterfaces[0].natIP" and "networkInterfaces.0.natIP" are equivalent.
    return [part for part in _INDEX_PATTERN.sub(r".\1", path).split(".") if part]


def extract_value(item: Any, path: str, default: Any = None) -> Any:
    """
    Reads a value out of a decoded JSON document using a field path.

    Supported grammar: dotted keys, list indices as `[n]` or `.n`, a direct
    lookup of the whole path first (for keys containing dots), and a
    `labels.<key>` fallback for label keys containing dots.
    """
    if isinstance(item, dict) and path in item:
        return item[path]

    current = item
    for part in _split_path(path):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            current = default
            break
    else:
        return current

    if path.startswith("labels.") and isinstance(item, dict):
        labels = item.get("labels")
        if isinstance(labels, dict):
            return labels.get(path[len("labels."):], default)
    return current


def format_value(value: Any) -> str:
    """Formats a JSON value for display in a table cell."""
    if value is None:
        return EMPTY_PLACEHOLDER
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        # Self-links and relative resource names are shown by their last segment.
        if value.startswith(API_LINK_PREFIX) or value.startswith("projects/"):
            return last_segment(value)
        return value
    if isinstance(value, list):
        return f"[{len(value)} items]" if value else EMPTY_PLACEHOLDER
    if isinstance(value, dict):
        return "[object]"
    return str(value)


def render_field(item: Any, path: str) -> str:
    return format_value(extract_value(item, path))
