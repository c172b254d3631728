"""
HTTP access logging.

``AccessLogMiddleware`` writes one INFO line per request on the
``fizzbuzz_api.access`` logger, once the response body has been fully
sent, in the form::

    172.17.0.1 0.000003s GET /api/v2/fizzbuzz?limit=100

The client address is the first entry of ``X-Forwarded-For`` when that
entry is a valid IP address, the peer address otherwise.
"""

import ipaddress
import logging
import time
from typing import Optional

from starlette.types import ASGIApp, Receive, Scope, Send

ACCESS_LOGGER = "fizzbuzz_api.access"


def client_host(scope: Scope) -> str:
    """Return the client IP of an HTTP scope, honouring ``X-Forwarded-For``."""
    for name, value in scope.get("headers", []):
        if name == b"x-forwarded-for":
            first = value.decode("latin-1").split(",")[0].strip()
            try:
                ipaddress.ip_address(first)
            except ValueError:
                break
            return first
    client = scope.get("client")
    return client[0] if client else "-"


class AccessLogMiddleware:
    """Pure ASGI middleware, so streamed bodies are included in the timing."""

    def __init__(self, app: ASGIApp, logger: Optional[logging.Logger] = None) -> None:
        self.app = app
        self.logger = logger or logging.getLogger(ACCESS_LOGGER)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        start = time.perf_counter()
        try:
            await self.app(scope, receive, send)
        finally:
            url = scope.get("path", "")
            query = scope.get("query_string", b"")
            if query:
                url += "?" + query.decode("latin-1")
            self.logger.info(
                "%s %.6fs %s %s",
                client_host(scope),
                time.perf_counter() - start,
                scope.get("method", "-"),
                url,
            )
