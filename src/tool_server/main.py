"""Tool Server - FastAPI Application.

Exposes two routes: `GET /` for liveness and `POST /` for tool dispatch.
A POST goes through body parsing, request logging, bearer token
extraction and authorization before the single dispatcher call.
"""

import json
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from importlib import metadata
from pathlib import Path
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict

from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from shared.models import PluginLoadResult, RequestContext, ServerInfo
from tool_server.auth import (
    AuthCallback,
    AuthOutcome,
    AuthStrategy,
    Authenticator,
    extract_bearer,
    resolve_auth_strategy,
)
from tool_server.capture import BodyCaptureMiddleware, serialize_request_body
from tool_server.context import dispatch_with_bearer
from tool_server.dispatcher import Dispatcher, ToolDispatcher
from tool_server.registry import ToolRegistry
from tool_server.responses import convert_big_int_to_string

logger = get_logger(__name__)

DISTRIBUTION_NAME = "mcp-tool-server"
DEFAULT_NAME = "mcp-tool-server"
DEFAULT_VERSION = "1.0.0"
DEFAULT_TOOLS_DIR = Path(__file__).parent / "tools"
LIVENESS_BODY = "GET / endpoint - no action"


class ServerConfig(BaseModel):
    """Resolved configuration of one server instance."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = DEFAULT_NAME
    version: str = DEFAULT_VERSION
    host: str = "0.0.0.0"
    port: int = 1234
    auth: Optional[AuthStrategy] = None
    tools_dir: Path = DEFAULT_TOOLS_DIR


class RequestRejected(Exception):
    """A request answered with a JSON error body instead of being dispatched."""

    def __init__(self, status_code: int, error: str, details: Optional[str] = None) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details

    def to_response(self) -> JSONResponse:
        content: dict[str, Any] = {"error": self.error}
        if self.details is not None:
            content["details"] = self.details
        return JSONResponse(status_code=self.status_code, content=content)


def _package_metadata() -> tuple[Optional[str], Optional[str]]:
    try:
        meta = metadata.metadata(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        logger.warning("Could not read package metadata for name and version")
        return None, None
    return meta.get("Name"), meta.get("Version")


def build_config(
    settings: Optional[Settings] = None,
    *,
    name: Optional[str] = None,
    version: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    auth_token: Optional[str] = None,
    auth_callback: Optional[AuthCallback] = None,
    tools_dir: Optional[str | Path] = None,
) -> ServerConfig:
    """
    Resolve a ServerConfig from arguments, falling back to settings.

    Name and version fall back further to the installed package metadata
    and then to built-in defaults.
    """
    server = (settings or get_settings()).server

    name = name or server.name
    version = version or server.version
    if not name or not version:
        meta_name, meta_version = _package_metadata()
        name = name or meta_name or DEFAULT_NAME
        version = version or meta_version or DEFAULT_VERSION

    return ServerConfig(
        name=name,
        version=version,
        host=host or server.host,
        port=server.port if port is None else port,
        auth=resolve_auth_strategy(auth_token or server.token, auth_callback),
        tools_dir=Path(tools_dir or server.tools_dir or DEFAULT_TOOLS_DIR),
    )


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def parse_json_body(raw: bytes) -> Any:
    """
    Parse a request body as strict JSON.

    An empty body is `{}`. `NaN` and `Infinity` are rejected, and so is a
    top-level value that is neither an object nor an array.

    Raises:
        ValueError: If the body is not acceptable JSON
    """
    if not raw.strip():
        return {}
    body = json.loads(raw, parse_constant=_reject_constant)
    if not isinstance(body, (dict, list)):
        raise ValueError(f"top-level {type(body).__name__} is not an object or array")
    return body


async def read_json_body(request: Request) -> Any:
    """Parse the request body as JSON and log it."""
    raw = await request.body()
    try:
        body = parse_json_body(raw)
    except ValueError as e:
        logger.warning("Rejected request with invalid JSON", path=request.url.path, error=str(e))
        raise RequestRejected(status.HTTP_406_NOT_ACCEPTABLE, "Invalid JSON")

    logger.debug(
        "HTTP request",
        method=request.method,
        path=request.url.path,
        remote=request.client.host if request.client else None,
        body=serialize_request_body(body)
    )
    return body


def bearer_token(request: Request) -> Optional[str]:
    """Bearer token of the request, whether or not auth is enforced."""
    return extract_bearer(request.headers)


async def require_authorization(
    request: Request,
    token: Optional[str] = Depends(bearer_token)
) -> Optional[str]:
    """Run the Authenticator and reject the request unless it is allowed."""
    authenticator: Authenticator = request.app.state.authenticator
    decision = await authenticator.authorize(token)

    if decision.outcome == AuthOutcome.DENIED:
        raise RequestRejected(status.HTTP_401_UNAUTHORIZED, decision.reason)
    if decision.outcome == AuthOutcome.MISCONFIGURED:
        raise RequestRejected(
            status.HTTP_500_INTERNAL_SERVER_ERROR, decision.reason, details=decision.details
        )
    return token


async def _guard_stream(chunks: AsyncIterator[Any]) -> AsyncIterator[Any]:
    # Headers are already out once streaming starts, so errors are only logged
    try:
        async for chunk in chunks:
            yield chunk
    except Exception as e:
        logger.error("Error while streaming dispatcher response", error=str(e), exc_info=True)


def render_result(result: Any) -> Response:
    """Turn a dispatcher result into an HTTP response."""
    if result is None:
        return Response(status_code=status.HTTP_202_ACCEPTED)
    if isinstance(result, Response):
        return result
    if isinstance(result, AsyncIterator):
        return StreamingResponse(_guard_stream(result), media_type="text/event-stream")
    return JSONResponse(content=convert_big_int_to_string(result))


def create_app(config: ServerConfig, dispatcher: Optional[Dispatcher] = None) -> FastAPI:
    """
    Create the FastAPI application for a server instance.

    Plugins from `config.tools_dir` are loaded into the dispatcher during
    the application lifespan, before requests are served.

    Args:
        config: Resolved server configuration
        dispatcher: Dispatcher to use; a ToolDispatcher by default
    """
    if dispatcher is None:
        dispatcher = ToolDispatcher(ServerInfo(name=config.name, version=config.version))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting tool server", name=config.name, version=config.version)
        app.state.load_result = await ToolRegistry(dispatcher).load(config.tools_dir)
        yield
        logger.info("Shutting down tool server")

    app = FastAPI(
        title=config.name,
        version=config.version,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.dispatcher = dispatcher
    app.state.authenticator = Authenticator(config.auth)
    app.state.load_result = PluginLoadResult()

    app.add_middleware(BodyCaptureMiddleware)

    @app.exception_handler(RequestRejected)
    async def request_rejected_handler(request: Request, exc: RequestRejected) -> JSONResponse:
        return exc.to_response()

    @app.get("/", response_class=PlainTextResponse)
    async def liveness() -> PlainTextResponse:
        """Liveness check, no auth."""
        return PlainTextResponse(LIVENESS_BODY)

    @app.post("/")
    async def dispatch(
        request: Request,
        body: Any = Depends(read_json_body),
        token: Optional[str] = Depends(require_authorization)
    ) -> Response:
        """Forward an authorized request to the dispatcher."""
        context = RequestContext(
            method=request.method,
            url=request.url.path,
            remote_address=request.client.host if request.client else None,
            raw_body=body,
            bearer_token=token,
        )
        try:
            result = await dispatch_with_bearer(dispatcher, context, body)
            return render_result(result)
        except Exception as e:
            logger.error("Error handling POST request", error=str(e), exc_info=True)
            raise RequestRejected(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Internal MCP server error",
                details=traceback.format_exc()
            )

    return app


async def run_server(config: ServerConfig, dispatcher: Optional[Dispatcher] = None) -> None:
    """Serve the application until shut down."""
    import uvicorn

    app = create_app(config, dispatcher)
    server = uvicorn.Server(uvicorn.Config(app, host=config.host, port=config.port, log_config=None))
    logger.info("Tool server listening", host=config.host, port=config.port)
    await server.serve()


def main():
    """Run the tool server."""
    import asyncio

    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.environment == "production")
    asyncio.run(run_server(build_config(settings)))


if __name__ == "__main__":
    main()
