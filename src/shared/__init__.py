"""Shared utilities and models for the tool server."""

from shared.models import (
    PluginFailure,
    PluginLoadResult,
    RequestContext,
    ServerInfo,
    ToolDefinition,
    ToolRegistration,
)
from shared.config import ServerSettings, Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "PluginFailure",
    "PluginLoadResult",
    "RequestContext",
    "ServerInfo",
    "ToolDefinition",
    "ToolRegistration",
    "ServerSettings",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
