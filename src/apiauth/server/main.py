"""Demo API protected by ApiAuth request signatures."""

import json
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from urllib.parse import parse_qsl

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route
import uvicorn

from apiauth.common.errors import ErrorCode, error_response
from apiauth.common.http import RequestIdMiddleware
from apiauth.common.logging import get_logger, setup_logging
from apiauth.common.metrics import MetricsMiddleware, metrics_endpoint
from apiauth.common.settings import Settings, get_settings
from apiauth.common.tracing import configure_tracing
from apiauth.hmac.replay import ReplayCache, ReplayCacheSweeper, create_replay_cache
from apiauth.hmac.secrets import SecretProvider, provider_from_settings
from apiauth.hmac.validator import AuthenticationValidator
from apiauth.server.middleware import HmacAuthMiddleware, ResponseContentMd5Middleware

logger = get_logger(__name__)


class UsersApi:
    """Echo endpoints used to exercise signed GET and POST requests."""

    async def get_user(self, request: Request) -> Response:
        username = request.path_params["username"]
        return JSONResponse(username)

    async def post_user(self, request: Request) -> Response:
        username = request.path_params["username"]
        content_type = request.headers.get("content-type", "")
        media_type = content_type.split(";", 1)[0].strip().lower()
        data = (await request.body()).decode("utf-8")

        if media_type == "application/json":
            try:
                parsed = json.loads(data)
            except json.JSONDecodeError as exc:
                return error_response(ErrorCode.BAD_REQUEST, f"Invalid JSON: {exc.msg}", 400)
            return JSONResponse({"Username": username, "Data": parsed})

        if media_type == "application/x-www-form-urlencoded":
            return JSONResponse(dict(parse_qsl(data, keep_blank_values=True)))

        if media_type == "text/plain":
            return PlainTextResponse(f"{username} says...\n\n{data}")

        return error_response(
            ErrorCode.UNSUPPORTED_MEDIA_TYPE,
            f"Unsupported media type: {media_type or 'none'}",
            415,
        )

    async def handle_health(self, request: Request) -> JSONResponse:
        """Health check."""
        return JSONResponse({"status": "healthy"})


def create_app(
    settings: Settings | None = None,
    secret_provider: SecretProvider | None = None,
    replay_cache: ReplayCache | None = None,
    clock: Callable[[], float] = time.time,
) -> Starlette:
    """Create the Starlette application."""
    settings = settings or get_settings()
    secret_provider = secret_provider or provider_from_settings(settings)
    replay_cache = replay_cache if replay_cache is not None else create_replay_cache(settings)
    validator = AuthenticationValidator(
        secret_provider,
        replay_cache,
        settings=settings,
        clock=clock,
    )
    sweeper = ReplayCacheSweeper(
        replay_cache,
        interval=settings.replay_cache_sweep_interval,
        clock=clock,
    )
    api = UsersApi()

    @asynccontextmanager
    async def lifespan(app: Starlette):
        sweeper.start()
        logger.info(
            "ApiAuth server started",
            validity_window_seconds=settings.validity_window_seconds,
            replay_cache=type(replay_cache).__name__,
            debug_diagnostics=settings.debug_diagnostics,
        )
        yield
        await sweeper.stop()

    routes = [
        Route("/api/users/{username}", api.get_user, methods=["GET"]),
        Route("/api/users/{username}", api.post_user, methods=["POST"]),
        Route("/health", api.handle_health, methods=["GET"]),
        Route("/metrics", metrics_endpoint, methods=["GET"]),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.validator = validator

    app.add_middleware(ResponseContentMd5Middleware)
    app.add_middleware(HmacAuthMiddleware, settings=settings, validator=validator)
    app.add_middleware(
        MetricsMiddleware,
        exclude_paths=["/health", "/metrics"],
    )
    app.add_middleware(RequestIdMiddleware)

    return app


def main():
    """Entry point for the demo API server."""
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)
    if settings.debug_diagnostics:
        logger.warning("Debug diagnostics enabled: 401 bodies include signature details")
    configure_tracing(settings)
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
