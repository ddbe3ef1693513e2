"""Thread-safe HTTP client shared by every probe in a run."""
from __future__ import annotations

import json
import logging
import ssl
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass, field
from http.client import HTTPException
from typing import Any

from .context import RunContext

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
HEADER_AUTHORIZATION = "Authorization"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_ACCEPT = "Accept"
CONTENT_TYPE_JSON = "application/json"


class HttpError(RuntimeError):
    """Raised when a request cannot be completed at the transport level."""


@dataclass(slots=True, frozen=True)
class HttpResponse:
    """Status, headers and body of a completed request."""

    status: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Return ``True`` for 2xx responses."""
        return 200 <= self.status < 300

    def text(self) -> str:
        """Return the body decoded as UTF-8."""
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Return the body parsed as JSON."""
        try:
            return json.loads(self.body)
        except ValueError as exc:
            raise HttpError(f"invalid JSON in response: {exc}") from exc


class HttpClient:
    """Small wrapper over ``urllib.request`` openers.

    Openers hold no per-request state, so one client can serve concurrent
    probes. Non-2xx responses are returned rather than raised.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        """Build verified and unverified openers sharing *timeout*."""
        self.timeout = timeout
        verified = ssl_context or ssl.create_default_context()
        unverified = ssl.create_default_context()
        unverified.check_hostname = False
        unverified.verify_mode = ssl.CERT_NONE
        self._opener = urllib.request.build_opener(urllib.request.HTTPSHandler(context=verified))
        self._insecure_opener = urllib.request.build_opener(
            urllib.request.HTTPSHandler(context=unverified)
        )

    def request(
        self,
        ctx: RunContext,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        body: bytes | None = None,
        timeout: float | None = None,
        verify: bool = True,
    ) -> HttpResponse:
        """Send a request bounded by *ctx* and return the response."""
        if ctx.cancelled:
            raise HttpError(f"{method} {url}: context cancelled")
        if params:
            separator = "&" if urllib.parse.urlsplit(url).query else "?"
            url = f"{url}{separator}{urllib.parse.urlencode(dict(params))}"
        try:
            request = urllib.request.Request(
                url,
                data=body,
                headers=dict(headers or {}),
                method=method.upper(),
            )
        except ValueError as exc:
            raise HttpError(f"{method.upper()} {url}: invalid request: {exc}") from exc
        effective_timeout = ctx.timeout(timeout if timeout is not None else self.timeout)
        opener = self._opener if verify else self._insecure_opener
        LOGGER.debug("%s %s (timeout=%.2fs)", request.get_method(), url, effective_timeout)
        try:
            with opener.open(request, timeout=max(effective_timeout, 0.001)) as resp:
                return HttpResponse(
                    status=resp.status,
                    body=resp.read(),
                    headers=dict(resp.headers.items()),
                )
        except urllib.error.HTTPError as exc:
            payload = exc.read() if exc.fp is not None else b""
            return HttpResponse(
                status=exc.code,
                body=payload,
                headers=dict(exc.headers.items()) if exc.headers else {},
            )
        except (urllib.error.URLError, OSError, HTTPException, ValueError) as exc:
            raise HttpError(f"{method.upper()} {url} failed: {exc}") from exc

    def get(self, ctx: RunContext, url: str, **kwargs: Any) -> HttpResponse:
        """Shortcut for ``request(ctx, "GET", url, ...)``."""
        return self.request(ctx, "GET", url, **kwargs)

    def post(self, ctx: RunContext, url: str, **kwargs: Any) -> HttpResponse:
        """Shortcut for ``request(ctx, "POST", url, ...)``."""
        return self.request(ctx, "POST", url, **kwargs)


__all__ = [
    "CONTENT_TYPE_JSON",
    "DEFAULT_TIMEOUT",
    "HEADER_ACCEPT",
    "HEADER_AUTHORIZATION",
    "HEADER_CONTENT_TYPE",
    "HttpClient",
    "HttpError",
    "HttpResponse",
]
