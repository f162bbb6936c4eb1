"""Minimal JSON-over-HTTP client used to reach backend collaborators."""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from .errors import CollaboratorError

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:5000/api"


@dataclass(slots=True)
class HttpRequest:
    """Transport-level request description."""

    method: str
    url: str
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class HttpResponse:
    """Transport-level response with a decoded JSON body when available."""

    status: int
    body: Any = None
    text: str = ""


Transport = Callable[[HttpRequest], HttpResponse]


class TransportError(CollaboratorError):
    """Raised when the remote endpoint cannot be reached at all."""


def _decode_body(raw: bytes) -> tuple[Any, str]:
    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        return None, text
    try:
        return json.loads(text), text
    except json.JSONDecodeError:
        return None, text


def urllib_transport(timeout: float = 60.0) -> Transport:
    """Return a transport that performs requests with ``urllib``."""

    def _send(request: HttpRequest) -> HttpResponse:
        data = None
        headers = {"Accept": "application/json", **request.headers}
        if request.body is not None:
            data = json.dumps(request.body).encode("utf-8")
            headers.setdefault("Content-Type", "application/json")
        http_request = urllib.request.Request(
            request.url,
            data=data,
            headers=headers,
            method=request.method,
        )
        try:
            with urllib.request.urlopen(http_request, timeout=timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except urllib.error.HTTPError as error:
            body, text = _decode_body(error.read())
            return HttpResponse(status=error.code, body=body, text=text)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise TransportError(f"Request to {request.url} timed out.") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise TransportError(f"Failed to reach {request.url}: {error.reason}") from error

        body, text = _decode_body(raw)
        return HttpResponse(status=status, body=body, text=text)

    return _send


class JsonHttpClient:
    """Issue JSON requests relative to a base URL and raise on error statuses."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport or urllib_transport(timeout)
        self._headers = dict(headers or {})

    @property
    def base_url(self) -> str:
        return self._base_url

    def url_for(self, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
        url = f"{self._base_url}/{path.lstrip('/')}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        return url

    def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> HttpResponse:
        """Send a request and return the response, raising for statuses >= 400."""
        url = self.url_for(path, params)
        response = self._transport(
            HttpRequest(method=method, url=url, body=body, headers=dict(self._headers))
        )
        if response.status >= 400:
            LOGGER.debug("%s %s -> HTTP %s", method, url, response.status)
            message = f"{method} {url} failed with HTTP {response.status}"
            if isinstance(response.body, Mapping) and isinstance(response.body.get("error"), str):
                message = f"{message}: {response.body['error']}"
            raise CollaboratorError(message, status=response.status, payload=response.body)
        return response

    def get(self, path: str, *, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params).body

    def post(self, path: str, body: Any = None) -> Any:
        return self.request("POST", path, body=body).body

    def put(self, path: str, body: Any = None) -> Any:
        return self.request("PUT", path, body=body).body


def quote_path(path: str) -> str:
    """Percent-encode a repo path while keeping its separators."""
    return urllib.parse.quote(path, safe="/")


__all__ = [
    "DEFAULT_BASE_URL",
    "HttpRequest",
    "HttpResponse",
    "JsonHttpClient",
    "Transport",
    "TransportError",
    "quote_path",
    "urllib_transport",
]
