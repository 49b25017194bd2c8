"""Tests for request and response body capture."""

import pytest
from structlog.testing import capture_logs

from tool_server.capture import (
    UNSERIALIZABLE_BODY,
    BodyCaptureMiddleware,
    CapturingSend,
    serialize_request_body,
)


def make_app(messages):
    """ASGI app replaying the given response messages."""
    async def app(scope, receive, send):
        for message in messages:
            await send(message)
    return app


STREAMED = [
    {"type": "http.response.start", "status": 200, "headers": []},
    {"type": "http.response.body", "body": b"data: one\n\n", "more_body": True},
    {"type": "http.response.body", "body": b"data: two\n\n", "more_body": True},
    {"type": "http.response.body", "body": b"", "more_body": False},
]

WHOLE_BODY = [
    {"type": "http.response.start", "status": 401, "headers": []},
    {"type": "http.response.body", "body": b'{"error":"Invalid bearer token"}'},
]


async def run_app(app, method="POST", path="/"):
    sent = []

    async def send(message):
        sent.append(message)

    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    scope = {"type": "http", "method": method, "path": path, "client": ("127.0.0.1", 5000)}
    await app(scope, receive, send)
    return sent


def wire_bytes(messages):
    return b"".join(m.get("body", b"") for m in messages if m["type"] == "http.response.body")


class TestCapturingSend:
    """Tests for the pass-through send wrapper."""

    @pytest.mark.asyncio
    async def test_forwards_messages_unchanged(self):
        """Test every message reaches the client as given."""
        sent = []

        async def send(message):
            sent.append(message)

        capture = CapturingSend(send)
        for message in STREAMED:
            await capture(message)

        assert sent == STREAMED
        assert capture.body == b"data: one\n\ndata: two\n\n"
        assert capture.status_code == 200
        assert capture.started
        assert capture.finished

    @pytest.mark.asyncio
    async def test_whole_body_response(self):
        """Test a single body message is captured and finishes the response."""
        capture = CapturingSend(lambda message: _noop())
        for message in WHOLE_BODY:
            await capture(message)

        assert capture.status_code == 401
        assert capture.body_text() == '{"error":"Invalid bearer token"}'
        assert capture.finished

    @pytest.mark.asyncio
    async def test_disconnected_client_becomes_noop(self):
        """Test sends after a lost connection are dropped instead of raising."""
        calls = []

        async def send(message):
            calls.append(message)
            if len(calls) == 2:
                raise ConnectionResetError("client went away")

        capture = CapturingSend(send)
        for message in STREAMED:
            await capture(message)

        assert capture.disconnected
        assert len(calls) == 2
        # Capture still reflects what the app produced
        assert capture.body == b"data: one\n\ndata: two\n\n"


async def _noop():
    return None


class TestBodyCaptureMiddleware:
    """Tests for the capture middleware."""

    @pytest.mark.asyncio
    async def test_wire_bytes_identical_with_capture(self):
        """Test capture does not change what the client receives."""
        plain = await run_app(make_app(STREAMED))
        captured = await run_app(BodyCaptureMiddleware(make_app(STREAMED)))

        assert wire_bytes(captured) == wire_bytes(plain)
        assert captured == plain

    @pytest.mark.asyncio
    async def test_logs_response_body(self):
        """Test the response is logged with method, path, status and body."""
        with capture_logs() as logs:
            await run_app(BodyCaptureMiddleware(make_app(WHOLE_BODY)))

        responses = [entry for entry in logs if entry["event"] == "HTTP response"]
        assert len(responses) == 1
        assert responses[0]["method"] == "POST"
        assert responses[0]["path"] == "/"
        assert responses[0]["status"] == 401
        assert responses[0]["body"] == '{"error":"Invalid bearer token"}'

    @pytest.mark.asyncio
    async def test_liveness_route_not_captured(self):
        """Test GET / only produces an access log line."""
        app = make_app([
            {"type": "http.response.start", "status": 200, "headers": []},
            {"type": "http.response.body", "body": b"ok"},
        ])
        with capture_logs() as logs:
            sent = await run_app(BodyCaptureMiddleware(app), method="GET", path="/")

        assert wire_bytes(sent) == b"ok"
        events = [entry["event"] for entry in logs]
        assert "HTTP request" in events
        assert "HTTP response" not in events

    @pytest.mark.asyncio
    async def test_fresh_capture_per_request(self):
        """Test a second request does not see the first request's bytes."""
        middleware = BodyCaptureMiddleware(make_app(WHOLE_BODY))
        with capture_logs() as logs:
            await run_app(middleware)
            await run_app(middleware)

        bodies = [entry["body"] for entry in logs if entry["event"] == "HTTP response"]
        assert bodies == ['{"error":"Invalid bearer token"}'] * 2


class TestSerializeRequestBody:
    """Tests for request body rendering."""

    def test_empty_body(self):
        """Test empty bodies log as an empty string."""
        assert serialize_request_body({}) == ""
        assert serialize_request_body(None) == ""

    def test_json_body(self):
        """Test bodies are rendered as compact JSON."""
        assert serialize_request_body({"a": [1, 2]}) == '{"a":[1,2]}'

    def test_unserializable_body(self):
        """Test a placeholder replaces bodies that cannot be serialized."""
        assert serialize_request_body({"a": {1, 2}}) == UNSERIALIZABLE_BODY
