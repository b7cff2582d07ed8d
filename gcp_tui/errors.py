"""
Exception hierarchy shared by every layer of the dashboard.

Load-time problems (`SchemaError`) abort startup. Everything else is scoped to
the single operation that raised it and ends up as a status message in the
active view.
"""

from typing import List, Optional


class DashboardError(Exception):
    """Base class for all errors raised by the dashboard engine."""


# --- Schema loading ---


class SchemaError(DashboardError):
    """A schema document is invalid. Fatal to startup."""

    def __init__(self, message: str, errors: Optional[List["SchemaError"]] = None):
        super().__init__(message)
        self.message = message
        # Every problem found in the same validation pass, this one included.
        self.errors: List[SchemaError] = errors if errors is not None else [self]


class InvalidSchemaDocument(SchemaError):
    """A document could not be decoded or does not have the expected shape."""


class DuplicateResourceKey(SchemaError):
    def __init__(self, key: str):
        super().__init__(f"Resource key '{key}' is defined more than once.")
        self.key = key


class ShortcutConflict(SchemaError):
    def __init__(self, resource_key: str, shortcut: str, reason: str):
        super().__init__(
            f"Resource '{resource_key}': shortcut '{shortcut}' {reason}."
        )
        self.resource_key = resource_key
        self.shortcut = shortcut


class InvalidColumnSpec(SchemaError):
    def __init__(self, resource_key: str, detail: str):
        super().__init__(f"Resource '{resource_key}': {detail}")
        self.resource_key = resource_key


class UnknownResourceKey(DashboardError):
    """A resource key (typically a sub-resource target) is not in the registry."""

    def __init__(self, key: str):
        super().__init__(f"Unknown resource: {key}")
        self.key = key


# --- Credentials ---


class AuthError(DashboardError):
    """No usable credential could be produced."""


class NoCredentialSource(AuthError):
    def __init__(self):
        super().__init__(
            "No valid GCP credentials found. Please either:\n"
            " - Run 'gcloud auth application-default login'\n"
            " - Set GOOGLE_APPLICATION_CREDENTIALS to a service account JSON file\n"
            " - Set GCP_ACCESS_TOKEN environment variable"
        )


class CredentialExchangeError(AuthError):
    """A configured source failed to produce a token."""


# --- Dispatch ---


class DispatchError(DashboardError):
    """Base class for failures while talking to a remote API."""


class TransportError(DispatchError):
    """The request never produced an HTTP response."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class ApiError(DispatchError):
    """The remote API answered with a non-2xx status."""

    BODY_EXCERPT_LIMIT = 500

    def __init__(self, status: int, body: str, detail: Optional[str] = None):
        self.status = status
        self.body = body[: self.BODY_EXCERPT_LIMIT]
        self.detail = detail
        super().__init__(f"API error {status}: {detail or self.body}")


class MissingContextValue(DispatchError):
    """A `{placeholder}` could not be resolved from the runtime context."""

    def __init__(self, name: str, template: str = ""):
        message = f"Missing context value '{name}'"
        if template:
            message += f" for '{template}'"
        super().__init__(message)
        self.name = name
        self.template = template


# --- Actions ---


class ActionError(DashboardError):
    """An action invocation was refused or could not be located."""


class ReadOnlyModeError(ActionError):
    def __init__(self):
        super().__init__("This operation is not supported in read-only mode")


class UnknownAction(ActionError):
    pass
