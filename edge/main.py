"""Edge server FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app(): testable application factory
  - lifespan: @asynccontextmanager startup/shutdown sequence
  - app = create_app(): module-level instance for uvicorn

Startup sequence:
  1. load_config()             → app.state.config (unless create_app() was given one)
  2. init_telemetry()          → app.state.telemetry (exporters only when enabled)
  3. create_http_client()      → app.state.http_client (shared proxy pool)
  4. create_origin_client()    → app.state.origin_client
  5. create_render_handler()   → app.state.render_handler, then prepare()
  6. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → close render handler → close proxy client →
  flush telemetry

Middleware (outermost first):
  ObservabilityMiddleware → SecurityHeadersMiddleware → CompressionMiddleware → routes
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import Response

from edge.config import Config, load_config
from edge.observability.middleware import ObservabilityMiddleware
from edge.observability.telemetry import init_telemetry
from edge.origin.client import create_origin_client
from edge.proxy.engine import create_http_client
from edge.render.factory import create_render_handler
from edge.render.protocol import RenderHandlerError
from edge.routing import StaticFileMissing, install_routes, request_logger
from edge.security.middleware import CompressionMiddleware, SecurityHeadersMiddleware
from edge.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other module logs).
DEV = os.getenv("NODE_ENV") != "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEV else "INFO")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown sequence.

    Any exception raised before ``yield`` aborts startup; uvicorn then exits
    non-zero and edge.run:main maps that to exit status 1.
    """
    logger.info("Edge server starting up...")

    config: Config = app.state.config or load_config()
    app.state.config = config

    telemetry = init_telemetry(config)
    app.state.telemetry = telemetry

    http_client = create_http_client(config.origin.proxy_timeout_s)
    app.state.http_client = http_client

    app.state.origin_client = create_origin_client(config)

    render_handler = create_render_handler(config, http_client)
    try:
        await render_handler.prepare()
    except RenderHandlerError as exc:
        logger.error("Render handler could not be prepared", error=str(exc))
        await http_client.aclose()
        telemetry.shutdown()
        raise
    app.state.render_handler = render_handler

    app.state.ready = True
    logger.info(
        "Edge server ready",
        origin=config.origin.url,
        host=config.server.host,
        port=config.server.port,
        dev=config.server.dev,
    )

    # ── Server runs here ──────────────────────────────────────────────────────
    yield

    logger.info("Edge server shutting down...")
    app.state.ready = False

    try:
        await render_handler.close()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Render handler close error (non-fatal)", error=str(exc))

    try:
        await http_client.aclose()
        logger.info("HTTP proxy client closed")
    except Exception as exc:  # noqa: BLE001
        logger.warning("HTTP proxy client close error (non-fatal)", error=str(exc))

    telemetry.shutdown()
    logger.info("Edge server shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


async def static_file_missing_handler(request: Request, exc: Exception) -> Response:
    request_logger(request).info("Static file missing", path=request.url.path)
    return Response(status_code=404)


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create and configure the edge server application.

    Call this function directly in tests to get an isolated app instance:
        app = create_app(Config.defaults())

    Without ``config`` the lifespan loads it (file + environment) at startup.
    """
    application = FastAPI(
        title="writing-edge",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    application.state.config = config
    application.state.ready = False

    # NOTE: In Starlette, the LAST-added middleware is OUTERMOST (runs first).
    application.add_middleware(CompressionMiddleware)
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(ObservabilityMiddleware)

    install_routes(application)

    application.add_exception_handler(StaticFileMissing, static_file_missing_handler)

    return application


app = create_app()
