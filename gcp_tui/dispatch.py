"""
The generic engine that turns a resource definition plus a runtime context
into an HTTP call and flattens the response into table rows.

The engine only knows a closed set of operations: placeholder substitution,
field-path extraction, and projection. Nothing in a schema document is ever
evaluated as code.
"""

import json
import logging
from typing import Any, Callable, List, Mapping, Optional
from urllib.parse import urlencode

from .auth import CredentialProvider
from .errors import ApiError, DispatchError, TransportError
from .helpers import extract_value, placeholders, render_field, substitute
from .http_client import HttpClient, HttpResponse
from .models import Cell, Color, Context, Row
from .schema import ResourceSchema

logger = logging.getLogger(__name__)

# (color_map_name, rendered_value) -> color
ColorResolver = Callable[[str, str], Optional[Color]]

MAX_ATTEMPTS = 2


def join_url(base: str, path: str) -> str:
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def resolve_path(template: str, context: Context) -> str:
    """Substitutes context values into a path template."""
    return substitute(template, context.substitutions())


def build_list_url(schema: ResourceSchema, context: Context) -> str:
    """
    Resolves the list URL of a schema.

    Filter values that the path template does not mention are sent as query
    parameters instead.
    """
    path = resolve_path(schema.api.path, context)
    url = join_url(schema.api.base, path)

    used = set(placeholders(schema.api.path))
    query = [
        (name, context.values[name])
        for name in context.filters
        if name not in used and context.values.get(name)
    ]
    if query:
        separator = "&" if "?" in url else "?"
        url += separator + urlencode(query)
    return url


def _error_detail(body: bytes) -> Optional[str]:
    # Google APIs answer with {"error": {"code": ..., "message": ...}}.
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"].get("message")
    return None


def extract_items(body: Any, response_path: str) -> List[Any]:
    """
    Returns the item array found at `response_path`.

    A missing or non-array path yields an empty list: some endpoints omit the
    array entirely when there is nothing to list.
    """
    if body is None:
        return []

    if not response_path:
        if isinstance(body, list):
            return body
        return [body]

    if ".*." in response_path:
        # Aggregated lists: a map of scope -> {field: [...]}.
        head, tail = response_path.split(".*.", 1)
        container = extract_value(body, head)
        if not isinstance(container, dict):
            return []
        items: List[Any] = []
        for scoped in container.values():
            nested = extract_value(scoped, tail)
            if isinstance(nested, list):
                items.extend(nested)
        return items

    value = extract_value(body, response_path)
    return value if isinstance(value, list) else []


def project_rows(
    schema: ResourceSchema,
    items: List[Any],
    color_resolver: Optional[ColorResolver] = None,
) -> List[Row]:
    """Projects raw items through the id, name, and column paths of a schema."""
    rows = []
    for item in items:
        cells = []
        for column in schema.columns:
            text = render_field(item, column.json_path)
            color = None
            if column.color_map and color_resolver is not None:
                color = color_resolver(column.color_map, text)
            cells.append(Cell(text=text, color=color))
        rows.append(
            Row(
                id=render_field(item, schema.id_field),
                name=render_field(item, schema.name_field),
                cells=tuple(cells),
                item=item,
            )
        )
    return rows


class DispatchEngine:
    """Executes schema-driven requests against Google Cloud REST APIs."""

    def __init__(
        self,
        http: HttpClient,
        credentials: CredentialProvider,
        color_resolver: Optional[ColorResolver] = None,
    ):
        self.http = http
        self.credentials = credentials
        self.color_resolver = color_resolver

    def send(
        self, method: str, url: str, body: Optional[Mapping[str, Any]] = None
    ) -> HttpResponse:
        """
        Sends an authorized request.

        Transient transport failures are retried once. Non-2xx answers raise
        `ApiError` and are never retried.
        """
        headers = {
            "Authorization": f"Bearer {self.credentials.get_token()}",
            "Content-Type": "application/json",
        }
        payload = json.dumps(body).encode() if body is not None else None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = self.http.send(method, url, headers=headers, body=payload)
                break
            except TransportError as e:
                if not e.transient or attempt == MAX_ATTEMPTS:
                    raise
                logger.warning("Retrying %s %s after transient failure: %s", method, url, e)

        if not response.ok:
            logger.error("API error %d: %s %s\nResponse: %s", response.status, method, url, response.text())
            raise ApiError(response.status, response.text(), _error_detail(response.body))
        return response

    def fetch_items(self, schema: ResourceSchema, context: Context) -> List[Any]:
        url = build_list_url(schema, context)
        logger.debug("Listing resources: %s -> %s", schema.display_name, url)

        response = self.send(schema.api.method, url)
        if not response.body.strip():
            body = None
        else:
            try:
                body = json.loads(response.body)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise DispatchError(
                    f"API returned a success status ({response.status}) but the response was not valid JSON."
                ) from e

        items = extract_items(body, schema.response_path)
        logger.info("Listed %d %s items", len(items), schema.display_name)
        return items

    def list(self, schema: ResourceSchema, context: Context) -> List[Row]:
        """Lists a resource and returns one row per item, in API order."""
        return project_rows(schema, self.fetch_items(schema, context), self.color_resolver)
