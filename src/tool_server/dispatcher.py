"""Tool dispatcher for the tool server.

Routes JSON-RPC messages to registered tool handlers. The HTTP front end
treats the dispatcher as opaque: it only relies on `handle(message, extra)`
and, during plugin loading, on the `tool()` registration API.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from shared.logging import get_logger
from shared.models import ServerInfo, ToolDefinition
from shared.schema import validate_schema
from tool_server.responses import build_response, is_tool_result

logger = get_logger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-03-26"

# JSON-RPC 2.0 error codes
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

ToolHandler = Callable[[dict[str, Any], dict[str, Any]], Union[Any, Awaitable[Any]]]


class Dispatcher(Protocol):
    """What the HTTP front end and the plugin loader need from a dispatcher."""

    def tool(
        self,
        name: str,
        description: str,
        input_schema: Optional[dict[str, Any]],
        handler: ToolHandler
    ) -> None: ...

    async def handle(self, message: Any, extra: dict[str, Any]) -> Any: ...


class DispatchError(Exception):
    """A JSON-RPC level error for a single message."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_error(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ToolDispatcher:
    """
    JSON-RPC dispatcher for tools.

    Responsibilities:
    - Hold tool definitions and handlers
    - Answer initialize, ping and tools/list
    - Validate tools/call arguments and run the handler
    """

    def __init__(self, server_info: ServerInfo) -> None:
        self.server_info = server_info
        self._tools: dict[str, ToolDefinition] = {}
        self._handlers: dict[str, ToolHandler] = {}
        self._methods: dict[str, Callable[[dict[str, Any], dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    def tool(
        self,
        name: str,
        description: str,
        input_schema: Optional[dict[str, Any]],
        handler: ToolHandler
    ) -> None:
        """
        Register a tool.

        Registering a name twice replaces the earlier handler.

        Args:
            name: Unique tool name
            description: Description shown to clients
            input_schema: JSON Schema for the arguments (None for no arguments)
            handler: `handler(arguments, extra)`, sync or async
        """
        if not callable(handler):
            raise TypeError(f"Handler for tool '{name}' is not callable")

        if name in self._tools:
            logger.warning("Tool re-registered, replacing previous handler", tool=name)

        definition = ToolDefinition(name=name, description=description)
        if input_schema:
            definition.input_schema = input_schema

        self._tools[name] = definition
        self._handlers[name] = handler
        logger.info("Tool registered", tool=name)

    def get(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool definition by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[ToolDefinition]:
        """List all registered tools."""
        return list(self._tools.values())

    @property
    def tool_count(self) -> int:
        return len(self._tools)

    async def handle(self, message: Any, extra: dict[str, Any]) -> Any:
        """
        Handle a JSON-RPC message or batch.

        Args:
            message: Parsed JSON body
            extra: Request context from the HTTP front end

        Returns:
            A response object, a list of them for a batch, or None when
            nothing needs answering (notifications only)
        """
        if isinstance(message, list):
            if not message:
                return self._error_response(
                    None, DispatchError(INVALID_REQUEST, "Empty batch")
                )
            responses = [await self._handle_one(item, extra) for item in message]
            responses = [r for r in responses if r is not None]
            return responses or None

        return await self._handle_one(message, extra)

    async def _handle_one(self, message: Any, extra: dict[str, Any]) -> Optional[dict[str, Any]]:
        if (
            not isinstance(message, dict)
            or message.get("jsonrpc") != JSONRPC_VERSION
            or not isinstance(message.get("method"), str)
        ):
            request_id = message.get("id") if isinstance(message, dict) else None
            return self._error_response(
                request_id, DispatchError(INVALID_REQUEST, "Invalid Request")
            )

        method = message["method"]
        is_notification = "id" not in message
        request_id = message.get("id")
        params = message.get("params") or {}

        handler = self._methods.get(method)
        if handler is None:
            if is_notification:
                logger.debug("Ignoring notification", method=method)
                return None
            return self._error_response(
                request_id, DispatchError(METHOD_NOT_FOUND, f"Method not found: {method}")
            )

        logger.debug("Handling message", method=method, request_id=request_id)

        try:
            if not isinstance(params, dict):
                raise DispatchError(INVALID_PARAMS, "params must be an object")
            result = await handler(params, {**extra, "request_id": request_id})
        except DispatchError as e:
            if is_notification:
                return None
            return self._error_response(request_id, e)

        if is_notification:
            return None
        return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}

    @staticmethod
    def _error_response(request_id: Any, error: DispatchError) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_error()}

    async def _initialize(self, params: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
        return {
            "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": self.server_info.model_dump(),
        }

    async def _ping(self, params: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [tool.to_wire() for tool in self._tools.values()]}

    async def _call_tool(self, params: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments") or {}

        tool = self._tools.get(name) if isinstance(name, str) else None
        if tool is None:
            raise DispatchError(INVALID_PARAMS, f"Unknown tool: {name}")

        is_valid, errors = validate_schema(arguments, tool.input_schema)
        if not is_valid:
            raise DispatchError(
                INVALID_PARAMS,
                f"Invalid arguments for tool {name}",
                data=errors
            )

        return await self._execute(name, arguments, {**extra, "tool_name": name})

    async def _execute(
        self,
        name: str,
        arguments: dict[str, Any],
        extra: dict[str, Any]
    ) -> dict[str, Any]:
        """Run a tool handler and normalize its result."""
        handler = self._handlers[name]

        try:
            if inspect.iscoroutinefunction(handler):
                result = await handler(arguments, extra)
            else:
                # to_thread copies the current context, so current_bearer_token() still works
                result = await asyncio.to_thread(handler, arguments, extra)
                if inspect.isawaitable(result):
                    result = await result
        except Exception as e:
            logger.error(
                "Tool execution failed",
                tool=name,
                error=str(e),
                exc_info=True
            )
            return {
                "content": [{"type": "text", "text": str(e) or type(e).__name__}],
                "isError": True,
            }

        if is_tool_result(result):
            return result
        return build_response(result)
