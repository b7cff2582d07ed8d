"""The generic request/response transport used by every remote call."""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

from .errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode(errors="ignore")


class HttpClient:
    """
    A thin wrapper around `httpx.Client`.

    Only transport-level failures raise; any HTTP status, success or not, is
    returned to the caller as an `HttpResponse`.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def send(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        logger.debug("HTTP %s %s", method, url)
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = self._client.request(
                method, url, headers=dict(headers or {}), content=body, **kwargs
            )
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
            # Resets, refused connections, and timeouts are worth one more try.
            raise TransportError(f"{method} {url} failed: {e}", transient=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        logger.debug("HTTP %s %s -> %d", method, url, response.status_code)
        return HttpResponse(status=response.status_code, body=response.content)

    def close(self):
        self._client.close()
