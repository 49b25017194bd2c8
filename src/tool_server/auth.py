"""Authentication for the tool server.

Handles:
- Bearer token extraction from request headers
- The choice between a static token and a pluggable callback
- The authorization decision for the dispatch route
"""

import inspect
import traceback
from collections.abc import Mapping
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from shared.logging import get_logger

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "

MISSING_HEADER = "Missing or invalid Authorization header"
INVALID_TOKEN = "Invalid bearer token"
INVALID_TOKEN_CALLBACK = "Invalid bearer token (authCallback)"
TOKEN_NOT_SET = "MCP_TOKEN not set in environment"
CALLBACK_ERROR = "Auth callback error"

AuthCallback = Callable[[Optional[str]], Any]


def extract_bearer(headers: Mapping[str, str]) -> Optional[str]:
    """
    Extract the bearer token from an Authorization header.

    The header name is matched case-insensitively; the scheme prefix is not.

    Returns:
        The trimmed token, or None for a missing header, another scheme,
        or an empty token
    """
    value = headers.get("authorization")
    if value is None:
        value = next(
            (v for k, v in headers.items() if k.lower() == "authorization"),
            None
        )
    if not value or not value.startswith(BEARER_PREFIX):
        return None
    token = value[len(BEARER_PREFIX):].strip()
    return token or None


class StaticToken(BaseModel):
    """Authenticate by exact comparison against a configured token."""
    model_config = ConfigDict(frozen=True)

    token: str


class CallbackAuth(BaseModel):
    """Authenticate by delegating to a sync or async predicate over the token."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    callback: AuthCallback


AuthStrategy = Union[StaticToken, CallbackAuth]


def resolve_auth_strategy(
    token: Optional[str] = None,
    callback: Optional[AuthCallback] = None
) -> Optional[AuthStrategy]:
    """
    Select the authentication strategy for a server.

    A callback takes precedence over a static token. When both are given
    the token is ignored and a warning is logged.
    """
    if callback is not None:
        if token:
            logger.warning(
                "Both auth callback and static token configured, using callback"
            )
        return CallbackAuth(callback=callback)
    if token:
        return StaticToken(token=token)
    return None


class AuthOutcome(str, Enum):
    """Result class of an authorization check."""
    ALLOWED = "allowed"
    DENIED = "denied"
    MISCONFIGURED = "misconfigured"


class AuthDecision(BaseModel):
    """Decision returned by the Authenticator."""
    outcome: AuthOutcome
    reason: Optional[str] = None
    details: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == AuthOutcome.ALLOWED

    @classmethod
    def allow(cls) -> "AuthDecision":
        return cls(outcome=AuthOutcome.ALLOWED)

    @classmethod
    def deny(cls, reason: str) -> "AuthDecision":
        return cls(outcome=AuthOutcome.DENIED, reason=reason)

    @classmethod
    def misconfigured(cls, reason: str, details: Optional[str] = None) -> "AuthDecision":
        return cls(outcome=AuthOutcome.MISCONFIGURED, reason=reason, details=details)


class Authenticator:
    """
    Authorization check for the dispatch route.

    Decision order:
    1. Callback strategy: exception is a server error, falsy denies,
       truthy allows
    2. No strategy at all: server error, nobody can authenticate
    3. No usable bearer token: denied
    4. Static token: exact comparison
    """

    def __init__(self, strategy: Optional[AuthStrategy]) -> None:
        self.strategy = strategy

    async def authorize(self, token: Optional[str]) -> AuthDecision:
        """
        Decide whether a request carrying `token` may proceed.

        Args:
            token: Bearer token from extract_bearer, or None

        Returns:
            The authorization decision
        """
        if isinstance(self.strategy, CallbackAuth):
            return await self._authorize_callback(token)

        if self.strategy is None:
            logger.error("No static token or auth callback configured")
            return AuthDecision.misconfigured(TOKEN_NOT_SET)

        if token is None:
            logger.warning("Request without bearer token rejected")
            return AuthDecision.deny(MISSING_HEADER)

        if token != self.strategy.token:
            logger.warning("Request with invalid bearer token rejected")
            return AuthDecision.deny(INVALID_TOKEN)

        return AuthDecision.allow()

    async def _authorize_callback(self, token: Optional[str]) -> AuthDecision:
        try:
            result = self.strategy.callback(token)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error("Auth callback raised", error=str(e), exc_info=True)
            return AuthDecision.misconfigured(CALLBACK_ERROR, details=traceback.format_exc())

        if not result:
            logger.warning("Auth callback rejected bearer token")
            return AuthDecision.deny(INVALID_TOKEN_CALLBACK)

        return AuthDecision.allow()
