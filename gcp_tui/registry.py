"""
Loads, validates, and indexes the declarative resource definitions.

Validation runs once, after every document has been parsed, because key
uniqueness can only be judged over the full set. Problems are collected and
reported together; the first one is raised.
"""

import logging
from importlib import resources as package_resources
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import yaml
from pydantic import ValidationError

from .errors import (
    DuplicateResourceKey,
    InvalidColumnSpec,
    InvalidSchemaDocument,
    ShortcutConflict,
    UnknownResourceKey,
)
from .helpers import RESERVED_SHORTCUTS, ValidationErrorCollector
from .models import Color
from .schema import ColorRule, ResourceSchema, SchemaDocument, SubResourceRef

logger = logging.getLogger(__name__)

Document = Union[bytes, str]

_WORD_SEPARATORS = "-_ "


def fuzzy_score(query: str, candidate: str) -> Optional[int]:
    """
    Scores `candidate` against `query` as a case-insensitive subsequence match.

    Returns None when the query is not a subsequence of the candidate. Matched
    characters score 1, plus 5 when directly following the previous match and
    3 at the start of a word. A prefix match adds 10 and an exact match 20.
    """
    q = query.lower()
    c = candidate.lower()
    if not q:
        return 0

    score = 0
    qi = 0
    previous = -2
    for ci, ch in enumerate(c):
        if qi == len(q):
            break
        if ch != q[qi]:
            continue
        score += 1
        if ci == previous + 1:
            score += 5
        if ci == 0 or c[ci - 1] in _WORD_SEPARATORS:
            score += 3
        previous = ci
        qi += 1

    if qi < len(q):
        return None
    if c.startswith(q):
        score += 10
    if c == q:
        score += 20
    return score


class Registry:
    """The validated, immutable set of resource definitions."""

    def __init__(
        self,
        schemas: Dict[str, ResourceSchema],
        color_maps: Dict[str, List[ColorRule]],
    ):
        self._schemas = schemas
        self._color_maps = color_maps

    def __contains__(self, key: str) -> bool:
        return key in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def keys(self) -> List[str]:
        return sorted(self._schemas)

    def get(self, key: str) -> Optional[ResourceSchema]:
        return self._schemas.get(key)

    def require(self, key: str) -> ResourceSchema:
        schema = self._schemas.get(key)
        if schema is None:
            raise UnknownResourceKey(key)
        return schema

    def resolve_sub_resource(self, sub: SubResourceRef) -> ResourceSchema:
        """Resolves a sub-resource reference at navigation time."""
        return self.require(sub.resource_key)

    def color_for(self, color_map: str, value: str) -> Optional[Color]:
        for rule in self._color_maps.get(color_map, []):
            if rule.value == value:
                return rule.color
        return None

    def search(self, query: str) -> List[Tuple[str, int]]:
        """
        Fuzzy-matches the query against every key and display name.

        Ordered by descending score, then shorter key, then key.
        """
        matches = []
        for key, schema in self._schemas.items():
            scores = [
                s
                for s in (fuzzy_score(query, key), fuzzy_score(query, schema.display_name))
                if s is not None
            ]
            if scores:
                matches.append((key, max(scores)))
        matches.sort(key=lambda match: (-match[1], len(match[0]), match[0]))
        return matches


def _decode(index: int, document: Document, collector: ValidationErrorCollector) -> Optional[SchemaDocument]:
    # JSON is a subset of YAML, so one decoder serves both formats.
    try:
        raw = yaml.safe_load(document)
    except yaml.YAMLError as e:
        collector.add_error(InvalidSchemaDocument(f"Document {index}: cannot be decoded: {e}"))
        return None

    if not isinstance(raw, dict):
        collector.add_error(
            InvalidSchemaDocument(f"Document {index}: expected a map at the top level.")
        )
        return None

    try:
        return SchemaDocument.model_validate(raw)
    except ValidationError as e:
        collector.add_error(InvalidSchemaDocument(f"Document {index}: {e}"))
        return None


def _validate_schema(schema: ResourceSchema, collector: ValidationErrorCollector):
    """Per-schema rules: field paths and action shortcuts."""
    for field_name in ("id_field", "name_field"):
        if not getattr(schema, field_name).strip():
            collector.add_error(InvalidColumnSpec(schema.key, f"'{field_name}' must not be empty."))

    for i, column in enumerate(schema.columns):
        if not column.json_path.strip():
            collector.add_error(
                InvalidColumnSpec(schema.key, f"column {i} ('{column.header}') has an empty json_path.")
            )
        if column.width <= 0:
            collector.add_error(
                InvalidColumnSpec(schema.key, f"column {i} ('{column.header}') must have a positive width.")
            )

    seen_shortcuts = {}
    for action in schema.actions:
        shortcut = action.shortcut
        if len(shortcut) != 1 or shortcut.isspace():
            collector.add_error(
                ShortcutConflict(schema.key, shortcut, f"of '{action.display_name}' must be a single key")
            )
        elif shortcut in RESERVED_SHORTCUTS:
            collector.add_error(ShortcutConflict(schema.key, shortcut, "is reserved for navigation"))
        elif shortcut in seen_shortcuts:
            collector.add_error(
                ShortcutConflict(
                    schema.key,
                    shortcut,
                    f"is used by both '{seen_shortcuts[shortcut]}' and '{action.display_name}'",
                )
            )
        else:
            seen_shortcuts[shortcut] = action.display_name


def load(documents: Sequence[Document]) -> Registry:
    """
    Parses and validates a full set of schema documents.

    Raises:
        SchemaError: the first problem found; `.errors` lists all of them.
    """
    collector = ValidationErrorCollector()
    schemas: Dict[str, ResourceSchema] = {}
    color_maps: Dict[str, List[ColorRule]] = {}

    # 1. Decode every document; structural problems are collected, not skipped.
    parsed = [_decode(i, document, collector) for i, document in enumerate(documents)]

    # 2. Merge, detecting keys defined by more than one document.
    for document in parsed:
        if document is None:
            continue
        color_maps.update(document.color_maps)
        for key, schema in document.resources.items():
            if key in schemas:
                collector.add_error(DuplicateResourceKey(key))
                continue
            schemas[key] = schema

    # 3. Per-schema rules.
    for schema in schemas.values():
        _validate_schema(schema, collector)

    collector.report()

    # Sub-resource targets are resolved lazily; a dangling one only fails on use.
    for schema in schemas.values():
        for sub in schema.sub_resources:
            if sub.resource_key not in schemas:
                logger.warning(
                    "Resource '%s' declares sub-resource '%s' which is not loaded.",
                    schema.key,
                    sub.resource_key,
                )
            if sub.shortcut in RESERVED_SHORTCUTS:
                logger.warning(
                    "Resource '%s': sub-resource shortcut '%s' is shadowed by a navigation key.",
                    schema.key,
                    sub.shortcut,
                )

    logger.info("Loaded %d resource definitions from %d documents", len(schemas), len(documents))
    return Registry(schemas, color_maps)


def builtin_documents() -> List[str]:
    """Returns the schema documents shipped with the package, in name order."""
    folder = package_resources.files("gcp_tui").joinpath("resources")
    entries = sorted(
        (entry for entry in folder.iterdir() if entry.name.endswith((".json", ".yaml", ".yml"))),
        key=lambda entry: entry.name,
    )
    return [entry.read_text(encoding="utf-8") for entry in entries]


def documents_from_dir(directory: Union[str, Path]) -> List[str]:
    paths = sorted(
        path
        for path in Path(directory).iterdir()
        if path.suffix in (".json", ".yaml", ".yml")
    )
    return [path.read_text(encoding="utf-8") for path in paths]


def load_default(extra_dirs: Iterable[Union[str, Path]] = ()) -> Registry:
    """Loads the shipped documents plus every document in `extra_dirs`."""
    documents = builtin_documents()
    for directory in extra_dirs:
        documents.extend(documents_from_dir(directory))
    return load(documents)
