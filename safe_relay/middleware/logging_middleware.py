"""
Request logging for the relay, as plain ASGI middleware.

HTTP requests get an ``x-request-id`` response header and one log line with
status and duration. Status WebSockets get one line when they end, with the
subscription kind and close code. Health checks log at DEBUG.
"""

import logging
import time
import uuid

import structlog

logger = structlog.stdlib.get_logger("http")

QUIET_PATHS = frozenset({"/healthz"})


def _header(scope, name: bytes) -> str:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return ""


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _subscription(scope) -> str:
    query = scope.get("query_string", b"").decode("latin-1")
    if "txId=" in query:
        return "txId"
    if "recipient=" in query:
        return "recipient"
    return "none"


class RequestLoggingMiddleware:
    """Bind a request id into structlog context and log each request."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        request_id = _header(scope, b"x-request-id") or uuid.uuid4().hex[:12]
        path = scope.get("path", "")

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=path)

        if scope["type"] == "websocket":
            await self._websocket(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500

        async def send_with_request_id(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            level = _level_for(status_code)
            if path in QUIET_PATHS and level == logging.INFO:
                level = logging.DEBUG
            logger.log(
                level,
                "relay_request",
                method=scope.get("method"),
                status=status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 1),
            )

    async def _websocket(self, scope, receive, send):
        start = time.perf_counter()
        close_code = None

        async def send_tracking_close(message):
            nonlocal close_code
            if message["type"] == "websocket.close":
                close_code = message.get("code", 1000)
            await send(message)

        async def receive_tracking_close():
            nonlocal close_code
            message = await receive()
            if message["type"] == "websocket.disconnect" and close_code is None:
                close_code = message.get("code", 1000)
            return message

        try:
            await self.app(scope, receive_tracking_close, send_tracking_close)
        finally:
            level = logging.INFO if close_code in (None, 1000, 1001) else logging.WARNING
            logger.log(
                level,
                "relay_websocket",
                subscription=_subscription(scope),
                close_code=close_code,
                duration_s=round(time.perf_counter() - start, 2),
            )
