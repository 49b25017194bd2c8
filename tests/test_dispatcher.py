"""Tests for the JSON-RPC tool dispatcher."""

import json

import pytest
from structlog.testing import capture_logs

from shared.models import ServerInfo
from shared.schema import object_schema
from tool_server.dispatcher import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ToolDispatcher,
)


def call(name, arguments=None, request_id=1):
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments or {}},
    }


@pytest.fixture
def dispatcher():
    dispatcher = ToolDispatcher(ServerInfo(name="test-server", version="2.0.0"))

    async def echo(arguments, extra):
        return {"text": arguments["text"], "token": extra.get("bearer_token")}

    dispatcher.tool("echo", "Echo", object_schema({"text": {"type": "string"}}), echo)
    return dispatcher


class TestToolDispatcher:
    """Tests for ToolDispatcher."""

    @pytest.mark.asyncio
    async def test_initialize(self, dispatcher):
        """Test initialize announces the server info."""
        response = await dispatcher.handle(
            {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}, {}
        )

        result = response["result"]
        assert result["serverInfo"] == {"name": "test-server", "version": "2.0.0"}
        assert "tools" in result["capabilities"]

    @pytest.mark.asyncio
    async def test_list_tools(self, dispatcher):
        """Test tools/list returns registered tools."""
        response = await dispatcher.handle(
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, {}
        )

        tools = response["result"]["tools"]
        assert [t["name"] for t in tools] == ["echo"]
        assert tools[0]["inputSchema"]["required"] == ["text"]

    @pytest.mark.asyncio
    async def test_call_tool_receives_extra(self, dispatcher):
        """Test handlers get the caller's extra with the bearer token."""
        response = await dispatcher.handle(call("echo", {"text": "hi"}), {"bearer_token": "tok"})

        content = response["result"]["content"]
        assert json.loads(content[0]["text"]) == {"text": "hi", "token": "tok"}
        assert response["id"] == 1

    @pytest.mark.asyncio
    async def test_dispatcher_fields_layered_on_extra(self):
        """Test request_id and tool_name are added without dropping caller keys."""
        dispatcher = ToolDispatcher(ServerInfo(name="s", version="1"))
        seen = {}

        async def handler(arguments, extra):
            seen.update(extra)
            return {"content": [{"type": "text", "text": "ok"}]}

        dispatcher.tool("probe", "Probe", None, handler)
        await dispatcher.handle(call("probe", request_id="r-9"), {"bearer_token": "tok", "custom": 1})

        assert seen == {"bearer_token": "tok", "custom": 1, "request_id": "r-9", "tool_name": "probe"}

    @pytest.mark.asyncio
    async def test_sync_handler(self):
        """Test plain function handlers run and results are wrapped."""
        dispatcher = ToolDispatcher(ServerInfo(name="s", version="1"))
        dispatcher.tool("add", "Add", None, lambda arguments, extra: arguments["a"] + arguments["b"])

        response = await dispatcher.handle(call("add", {"a": 2, "b": 3}), {})

        assert response["result"]["content"][0]["text"] == "5"

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, dispatcher):
        """Test arguments failing the schema are rejected."""
        response = await dispatcher.handle(call("echo", {"text": 5}), {})

        assert response["error"]["code"] == INVALID_PARAMS
        assert response["error"]["data"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher):
        """Test calling an unregistered tool is an error."""
        response = await dispatcher.handle(call("missing"), {})
        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher):
        """Test unknown methods are reported."""
        response = await dispatcher.handle({"jsonrpc": "2.0", "id": 3, "method": "nope"}, {})
        assert response["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalid_request(self, dispatcher):
        """Test a non JSON-RPC body is an invalid request."""
        response = await dispatcher.handle({"foo": "bar"}, {})
        assert response["error"]["code"] == INVALID_REQUEST

        response = await dispatcher.handle([], {})
        assert response["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_notification_has_no_response(self, dispatcher):
        """Test notifications are not answered."""
        response = await dispatcher.handle(
            {"jsonrpc": "2.0", "method": "notifications/initialized"}, {}
        )
        assert response is None

    @pytest.mark.asyncio
    async def test_batch(self, dispatcher):
        """Test a batch returns one response per request, skipping notifications."""
        response = await dispatcher.handle(
            [
                {"jsonrpc": "2.0", "id": 1, "method": "ping"},
                {"jsonrpc": "2.0", "method": "notifications/initialized"},
                call("echo", {"text": "x"}, request_id=2),
            ],
            {},
        )

        assert [r["id"] for r in response] == [1, 2]

    @pytest.mark.asyncio
    async def test_handler_error_is_tool_error(self):
        """Test a raising handler yields an isError result, not a crash."""
        dispatcher = ToolDispatcher(ServerInfo(name="s", version="1"))

        async def broken(arguments, extra):
            raise ValueError("bad input")

        dispatcher.tool("broken", "Broken", None, broken)
        response = await dispatcher.handle(call("broken"), {})

        assert response["result"]["isError"] is True
        assert response["result"]["content"][0]["text"] == "bad input"

    @pytest.mark.asyncio
    async def test_reregistration_replaces_handler(self):
        """Test registering a name twice keeps exactly one handler, the last."""
        dispatcher = ToolDispatcher(ServerInfo(name="s", version="1"))
        dispatcher.tool("dup", "First", None, lambda arguments, extra: "first")

        with capture_logs() as logs:
            dispatcher.tool("dup", "Second", None, lambda arguments, extra: "second")

        assert dispatcher.tool_count == 1
        assert dispatcher.get("dup").description == "Second"
        assert any(entry["log_level"] == "warning" for entry in logs)

        response = await dispatcher.handle(call("dup"), {})
        assert json.loads(response["result"]["content"][0]["text"]) == "second"

    def test_non_callable_handler(self):
        """Test a non-callable handler is refused at registration."""
        dispatcher = ToolDispatcher(ServerInfo(name="s", version="1"))
        with pytest.raises(TypeError):
            dispatcher.tool("bad", "Bad", None, "not a function")
