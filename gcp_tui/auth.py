"""
Bearer token resolution.

Sources are tried in priority order until one produces a token:

1. `GCP_ACCESS_TOKEN` (used verbatim, never expires)
2. `GOOGLE_CREDENTIALS` (inline JSON credentials)
3. `GOOGLE_APPLICATION_CREDENTIALS` (path to a JSON credentials file)
4. Application Default Credentials in the gcloud config directory
5. The instance metadata server

The source that produced the cached token is remembered for the lifetime of
the provider; refreshes go back to it directly instead of walking the chain
again, so a flaky higher-priority source cannot make the provider oscillate.
"""

import enum
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

import jwt

from .errors import AuthError, CredentialExchangeError, NoCredentialSource, TransportError
from .http_client import HttpClient
from .models import Credential

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
METADATA_TOKEN_URL = (
    "http://metadata.google.internal/computeMetadata/v1/instance/service-accounts/default/token"
)
METADATA_PROJECT_URL = "http://metadata.google.internal/computeMetadata/v1/project/project-id"
METADATA_HEADERS = {"Metadata-Flavor": "Google"}
METADATA_TIMEOUT_SECONDS = 2.0
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
SAFETY_MARGIN_SECONDS = 60.0

ADC_FILENAME = "application_default_credentials.json"
PROJECT_ENV_VARS = ("GCP_PROJECT", "GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT")


class ProviderState(enum.Enum):
    UNRESOLVED = "unresolved"
    CACHED = "cached"
    EXPIRED = "expired"


def adc_paths(environ: Mapping[str, str]) -> List[Path]:
    """All candidate locations of the Application Default Credentials file."""
    paths = []
    if environ.get("CLOUDSDK_CONFIG"):
        paths.append(Path(environ["CLOUDSDK_CONFIG"]) / ADC_FILENAME)
    paths.append(Path.home() / ".config" / "gcloud" / ADC_FILENAME)
    if environ.get("APPDATA"):
        paths.append(Path(environ["APPDATA"]) / "gcloud" / ADC_FILENAME)
    return paths


def _request_token(
    http: HttpClient,
    url: str,
    form: Dict[str, str],
    clock: Callable[[], float],
) -> Tuple[str, float]:
    """POSTs a token grant and returns the access token with its expiry."""
    try:
        response = http.send(
            "POST",
            url,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            body=urlencode(form).encode(),
        )
    except TransportError as e:
        raise CredentialExchangeError(f"Failed to request token: {e}") from e

    if not response.ok:
        raise CredentialExchangeError(
            f"Token exchange failed ({response.status}): {response.text()}"
        )
    return _parse_token_response(response.body, clock)


def _parse_token_response(body: bytes, clock: Callable[[], float]) -> Tuple[str, float]:
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CredentialExchangeError(f"Failed to parse token response: {e}") from e

    token = payload.get("access_token") if isinstance(payload, dict) else None
    if not token:
        raise CredentialExchangeError("Token response has no 'access_token'.")
    expires_in = payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS
    try:
        lifetime = float(expires_in)
    except (TypeError, ValueError) as e:
        raise CredentialExchangeError(f"Token response has an invalid 'expires_in': {expires_in!r}") from e
    return token, clock() + lifetime


def exchange_json_credentials(
    info: Dict[str, Any], http: HttpClient, clock: Callable[[], float]
) -> Tuple[str, float]:
    """Exchanges service-account or authorized-user credentials for a token."""
    cred_type = info.get("type", "service_account")

    if cred_type == "service_account":
        client_email = info.get("client_email")
        private_key = info.get("private_key")
        if not client_email or not private_key:
            raise CredentialExchangeError(
                "Service account credentials need 'client_email' and 'private_key'."
            )
        token_uri = info.get("token_uri") or TOKEN_URI
        now = int(clock())
        claims = {
            "iss": client_email,
            "sub": client_email,
            "aud": token_uri,
            "iat": now,
            "exp": now + DEFAULT_TOKEN_LIFETIME_SECONDS,
            "scope": CLOUD_PLATFORM_SCOPE,
        }
        try:
            assertion = jwt.encode(claims, private_key, algorithm="RS256")
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise CredentialExchangeError(f"Failed to sign JWT assertion: {e}") from e
        return _request_token(
            http, token_uri, {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}, clock
        )

    if cred_type == "authorized_user":
        missing = [
            name
            for name in ("client_id", "client_secret", "refresh_token")
            if not info.get(name)
        ]
        if missing:
            raise CredentialExchangeError(
                f"User credentials are missing: {', '.join(missing)}"
            )
        return _request_token(
            http,
            TOKEN_URI,
            {
                "client_id": info["client_id"],
                "client_secret": info["client_secret"],
                "refresh_token": info["refresh_token"],
                "grant_type": "refresh_token",
            },
            clock,
        )

    raise CredentialExchangeError(f"Unknown credential type: {cred_type}")


class CredentialSource(ABC):
    """One entry of the resolution chain."""

    name: str = ""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether this source should be attempted at all."""

    @abstractmethod
    def fetch(self, http: HttpClient, clock: Callable[[], float]) -> Credential:
        """Produces a fresh credential or raises `CredentialExchangeError`."""


class EnvTokenSource(CredentialSource):
    name = "GCP_ACCESS_TOKEN"

    def is_configured(self) -> bool:
        return bool(self.environ.get(self.name))

    def fetch(self, http, clock) -> Credential:
        # A direct token is trusted for the whole process lifetime.
        return Credential(token=self.environ[self.name], expires_at=None, source=self.name)


class JsonCredentialSource(CredentialSource):
    """Base for sources that hold credentials as a JSON document."""

    @abstractmethod
    def read(self) -> str: ...

    def info(self) -> Dict[str, Any]:
        try:
            info = json.loads(self.read())
        except (OSError, json.JSONDecodeError) as e:
            raise CredentialExchangeError(f"{self.name}: cannot read credentials: {e}") from e
        if not isinstance(info, dict):
            raise CredentialExchangeError(f"{self.name}: credentials must be a JSON object.")
        return info

    def fetch(self, http, clock) -> Credential:
        token, expires_at = exchange_json_credentials(self.info(), http, clock)
        return Credential(token=token, expires_at=expires_at, source=self.name)


class InlineJsonSource(JsonCredentialSource):
    name = "GOOGLE_CREDENTIALS"

    def is_configured(self) -> bool:
        return bool(self.environ.get(self.name))

    def read(self) -> str:
        return self.environ[self.name]


class FileSource(JsonCredentialSource):
    name = "GOOGLE_APPLICATION_CREDENTIALS"

    def is_configured(self) -> bool:
        return bool(self.environ.get(self.name))

    def read(self) -> str:
        return Path(self.environ[self.name]).read_text(encoding="utf-8")


class AdcSource(JsonCredentialSource):
    name = "application-default"

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        paths: Optional[List[Path]] = None,
    ):
        super().__init__(environ)
        self.paths = paths if paths is not None else adc_paths(self.environ)

    def _existing_path(self) -> Optional[Path]:
        for path in self.paths:
            if path.is_file():
                return path
        return None

    def is_configured(self) -> bool:
        return self._existing_path() is not None

    def read(self) -> str:
        path = self._existing_path()
        if path is None:
            raise OSError("Application Default Credentials file disappeared")
        logger.debug("Reading Application Default Credentials from %s", path)
        return path.read_text(encoding="utf-8")


class MetadataSource(CredentialSource):
    name = "metadata-server"

    def is_configured(self) -> bool:
        # Only a request can tell whether we run on GCP infrastructure.
        return True

    def fetch(self, http, clock) -> Credential:
        try:
            response = http.send(
                "GET",
                METADATA_TOKEN_URL,
                headers=METADATA_HEADERS,
                timeout=METADATA_TIMEOUT_SECONDS,
            )
        except TransportError as e:
            raise CredentialExchangeError(f"Metadata server unreachable: {e}") from e
        if not response.ok:
            raise CredentialExchangeError(f"Metadata server returned {response.status}")
        token, expires_at = _parse_token_response(response.body, clock)
        return Credential(token=token, expires_at=expires_at, source=self.name)


def default_sources(environ: Optional[Mapping[str, str]] = None) -> List[CredentialSource]:
    return [
        EnvTokenSource(environ),
        InlineJsonSource(environ),
        FileSource(environ),
        AdcSource(environ),
        MetadataSource(environ),
    ]


class CredentialProvider:
    """
    Resolves, caches, and refreshes the bearer token shared by all requests.

    The cache is read by any number of threads. A refresh is flagged with
    `_refreshing`; callers arriving during a refresh wait for its outcome and
    reuse it instead of starting another exchange.
    """

    def __init__(
        self,
        http: HttpClient,
        sources: Optional[List[CredentialSource]] = None,
        clock: Callable[[], float] = time.time,
        safety_margin: float = SAFETY_MARGIN_SECONDS,
    ):
        self.http = http
        self.sources = sources if sources is not None else default_sources()
        self.clock = clock
        self.safety_margin = safety_margin

        self._lock = threading.Lock()
        self._refresh_done = threading.Condition(self._lock)
        self._refreshing = False
        self._round = 0
        self._last_error: Optional[AuthError] = None
        self._credential: Optional[Credential] = None
        self._source: Optional[CredentialSource] = None

    @property
    def state(self) -> ProviderState:
        with self._lock:
            if self._credential is None:
                return ProviderState.UNRESOLVED
            if self._credential.is_fresh(self.clock(), self.safety_margin):
                return ProviderState.CACHED
            return ProviderState.EXPIRED

    @property
    def source_name(self) -> Optional[str]:
        return self._source.name if self._source else None

    def get_token(self) -> str:
        with self._lock:
            if self._refreshing:
                round_seen = self._round
                self._refresh_done.wait_for(lambda: self._round != round_seen)
                if self._last_error is not None:
                    raise self._last_error
                if self._credential is None:
                    raise CredentialExchangeError("Credential refresh was interrupted.")
                return self._credential.token

            if self._credential is not None and self._credential.is_fresh(
                self.clock(), self.safety_margin
            ):
                return self._credential.token
            self._refreshing = True

        credential = None
        error: Optional[AuthError] = None
        try:
            credential = self._resolve()
        except AuthError as e:
            error = e
            raise
        except Exception as e:
            logger.exception("Unexpected failure while resolving credentials")
            error = CredentialExchangeError(f"Failed to resolve credentials: {e}")
            raise error from e
        finally:
            with self._lock:
                if credential is not None:
                    self._credential = credential
                self._last_error = error
                self._finish_refresh()
        return credential.token

    def _finish_refresh(self):
        self._refreshing = False
        self._round += 1
        self._refresh_done.notify_all()

    def _resolve(self) -> Credential:
        if self._source is not None:
            logger.debug("Refreshing token from sticky source %s", self._source.name)
            return self._source.fetch(self.http, self.clock)

        for source in self.sources:
            if not source.is_configured():
                continue
            try:
                credential = source.fetch(self.http, self.clock)
            except CredentialExchangeError as e:
                logger.warning("Credential source %s failed: %s", source.name, e)
                continue
            logger.info("Using credentials from %s", source.name)
            self._source = source
            return credential

        logger.warning("No valid GCP credentials found")
        raise NoCredentialSource()


def _project_from_json(text: str) -> Optional[str]:
    try:
        info = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(info, dict):
        return None
    return info.get("project_id") or info.get("quota_project_id")


def discover_project(
    http: HttpClient,
    environ: Optional[Mapping[str, str]] = None,
    paths: Optional[List[Path]] = None,
) -> Optional[str]:
    """
    Finds a default project from the environment, credentials, or metadata server.
    """
    environ = os.environ if environ is None else environ

    for name in PROJECT_ENV_VARS:
        if environ.get(name):
            logger.info("Using project from %s: %s", name, environ[name])
            return environ[name]

    if environ.get("GOOGLE_CREDENTIALS"):
        project = _project_from_json(environ["GOOGLE_CREDENTIALS"])
        if project:
            return project

    candidates = []
    if environ.get("GOOGLE_APPLICATION_CREDENTIALS"):
        candidates.append(Path(environ["GOOGLE_APPLICATION_CREDENTIALS"]))
    candidates.extend(paths if paths is not None else adc_paths(environ))
    for path in candidates:
        try:
            project = _project_from_json(path.read_text(encoding="utf-8"))
        except OSError:
            continue
        if project:
            logger.info("Using project from %s: %s", path, project)
            return project

    try:
        response = http.send(
            "GET", METADATA_PROJECT_URL, headers=METADATA_HEADERS, timeout=METADATA_TIMEOUT_SECONDS
        )
    except TransportError:
        return None
    project = response.text().strip()
    # Captive portals answer with HTML instead of a project id.
    if not response.ok or not project or "<" in project or "html" in project.lower():
        return None
    return project
