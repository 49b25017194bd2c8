"""Request and response body capture for HTTP logging.

Response capture wraps the ASGI `send` callable of a single request. ASGI
funnels every response-writing operation through `send`: the start message
carrying the status, a body message for a whole-body response, a series of
`more_body` chunks for a streamed one, and the terminal body message. Each
body message is copied into the capture and then forwarded unchanged.
"""

import json
from typing import Any, Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from shared.logging import bound_request, get_logger

logger = get_logger(__name__)

UNSERIALIZABLE_BODY = "[unserializable body]"


def serialize_request_body(body: Any) -> str:
    """
    Render a parsed request body for logging.

    Returns an empty string for an empty body and a placeholder for values
    that cannot be serialized.
    """
    if body is None or body == {} or body == []:
        return ""
    try:
        return json.dumps(body, separators=(",", ":"))
    except (TypeError, ValueError):
        return UNSERIALIZABLE_BODY


class CapturingSend:
    """
    Pass-through ASGI `send` that keeps a copy of the response body.

    Created fresh for each request. Once the client connection is gone,
    further messages are dropped instead of raising.
    """

    def __init__(self, send: Send) -> None:
        self._send = send
        self.chunks: list[bytes] = []
        self.status_code: Optional[int] = None
        self.started = False
        self.finished = False
        self.disconnected = False

    async def __call__(self, message: Message) -> None:
        message_type = message["type"]
        if message_type == "http.response.start":
            self.status_code = message["status"]
            self.started = True
        elif message_type == "http.response.body":
            body = message.get("body", b"")
            if body:
                self.chunks.append(bytes(body))
            if not message.get("more_body", False):
                self.finished = True

        if self.disconnected:
            return
        try:
            await self._send(message)
        except OSError as e:
            self.disconnected = True
            logger.debug("Client disconnected, dropping response output", error=str(e))

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)

    def body_text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class BodyCaptureMiddleware:
    """
    ASGI middleware logging each response with its body.

    The liveness route `GET /` is not captured; it only gets an access line.
    """

    def __init__(self, app: ASGIApp, liveness_path: str = "/") -> None:
        self.app = app
        self.liveness_path = liveness_path

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope["method"]
        path = scope["path"]
        client = scope.get("client")
        remote = client[0] if client else None

        if method == "GET" and path == self.liveness_path:
            logger.debug("HTTP request", method=method, path=path, remote=remote)
            await self.app(scope, receive, send)
            return

        capture = CapturingSend(send)
        with bound_request(method=method, path=path, remote=remote):
            try:
                await self.app(scope, receive, capture)
            finally:
                logger.debug(
                    "HTTP response",
                    method=method,
                    path=path,
                    status=capture.status_code,
                    body=capture.body_text()
                )
