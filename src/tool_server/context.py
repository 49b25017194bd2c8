"""Bearer token propagation into tool handler context.

The dispatcher's `handle(message, extra)` contract has no dedicated slot
for the caller's credential, so the token is merged into `extra` for the
single dispatch call of each request. Handlers read it from
`extra["bearer_token"]`; code that cannot reach `extra` may use
`current_bearer_token()`, which is task-local.
"""

import warnings
from contextvars import ContextVar
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import RequestContext
from tool_server.dispatcher import Dispatcher

logger = get_logger(__name__)

BEARER_TOKEN_KEY = "bearer_token"
REQUEST_CONTEXT_KEY = "request_context"

_bearer_token: ContextVar[Optional[str]] = ContextVar("bearer_token", default=None)

# Process-wide, shared by all requests. Kept only for older tools.
_last_seen_token: Optional[str] = None


def merge_bearer_token(
    extra: Optional[dict[str, Any]],
    token: Optional[str]
) -> dict[str, Any]:
    """
    Return a copy of `extra` carrying the bearer token.

    A token already present in `extra` is kept; no other key is touched.
    """
    merged = dict(extra or {})
    if token and not merged.get(BEARER_TOKEN_KEY):
        merged[BEARER_TOKEN_KEY] = token
    return merged


async def dispatch_with_bearer(
    dispatcher: Dispatcher,
    context: RequestContext,
    message: Any,
    extra: Optional[dict[str, Any]] = None
) -> Any:
    """
    Make the one dispatcher call for a request with its credential attached.

    Args:
        dispatcher: Protocol runtime exposing `handle(message, extra)`
        context: Metadata of the current HTTP request
        message: Parsed request body
        extra: Context the caller already has for the dispatcher

    Returns:
        Whatever the dispatcher returns
    """
    global _last_seen_token

    merged = merge_bearer_token(extra, context.bearer_token)
    merged.setdefault(REQUEST_CONTEXT_KEY, context)

    token = merged.get(BEARER_TOKEN_KEY)
    if token:
        _last_seen_token = token

    logger.debug("Dispatching request", url=context.url, has_token=token is not None)
    reset = _bearer_token.set(token)
    try:
        return await dispatcher.handle(message, merged)
    finally:
        _bearer_token.reset(reset)


def current_bearer_token() -> Optional[str]:
    """Return the bearer token of the dispatch call running in this task."""
    return _bearer_token.get()


def last_seen_bearer_token() -> Optional[str]:
    """
    Return the most recently extracted bearer token, from any request.

    Deprecated: concurrent requests overwrite each other's value. Read
    `extra["bearer_token"]` or use `current_bearer_token()` instead.
    """
    warnings.warn(
        "last_seen_bearer_token() is shared across requests; "
        "read extra['bearer_token'] instead",
        DeprecationWarning,
        stacklevel=2,
    )
    return _last_seen_token
