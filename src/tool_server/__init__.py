"""Tool Server - HTTP front end for dynamically registered tools.

Plugins in a tools directory register tools with a shared dispatcher at
startup. `POST /` authenticates the caller's bearer token and hands the
request to the dispatcher with the token in the handler context.
"""

from shared.schema import validate_schema
from tool_server.auth import Authenticator, CallbackAuth, StaticToken, extract_bearer
from tool_server.context import current_bearer_token, last_seen_bearer_token
from tool_server.dispatcher import ToolDispatcher
from tool_server.main import ServerConfig, build_config, create_app, run_server
from tool_server.registry import ToolRegistry
from tool_server.responses import build_response, convert_big_int_to_string

__all__ = [
    "Authenticator",
    "CallbackAuth",
    "StaticToken",
    "extract_bearer",
    "current_bearer_token",
    "last_seen_bearer_token",
    "ToolDispatcher",
    "ServerConfig",
    "build_config",
    "create_app",
    "run_server",
    "ToolRegistry",
    "build_response",
    "convert_big_int_to_string",
    "validate_schema",
]
