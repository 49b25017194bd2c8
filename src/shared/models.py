"""Core data models for the tool server.

This module defines the shared data structures passed between the plugin
loader, the dispatcher and the HTTP front end.
"""

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field


class ServerInfo(BaseModel):
    """Name and version announced by the dispatcher."""
    name: str
    version: str


class ToolDefinition(BaseModel):
    """
    Definition of a registered tool.

    Tools are registered by plugins through the dispatcher's `tool()` API;
    the handler itself is kept by the dispatcher, not on the definition.
    """
    name: str = Field(..., description="Unique tool name")
    description: str = Field(default="", description="Description for protocol clients")
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for the tool arguments"
    )

    def to_wire(self) -> dict[str, Any]:
        """Return the tool as listed by `tools/list`."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class ToolRegistration(BaseModel):
    """A plugin entry point resolved from a tools directory."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., description="Plugin id, derived from the file stem")
    registration_fn: Callable[..., Any]


class PluginFailure(BaseModel):
    """A plugin that could not be loaded or registered."""
    plugin_id: str
    error: str


class PluginLoadResult(BaseModel):
    """Outcome of loading a tools directory."""
    registered_count: int = 0
    failures: list[PluginFailure] = Field(default_factory=list)


class RequestContext(BaseModel):
    """
    Per-request metadata handed to the dispatcher.

    Created when a POST reaches the dispatch step and discarded with the
    response. The bearer token is derived from the Authorization header.
    """
    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    remote_address: Optional[str] = None
    raw_body: Any = None
    bearer_token: Optional[str] = None
