"""Render handler factory.

Selection logic:
  1. ``render.handler`` / ``RENDER_HANDLER`` set to ``package.module:factory`` →
     import it and call ``factory(config, http_client)``
  2. Otherwise → RendererProxyHandler bound to ``render.origin``

The chosen handler is prepared in the lifespan, not here.
"""

from __future__ import annotations

import importlib

import httpx

from edge.config import Config, ConfigError
from edge.render.protocol import RenderHandler
from edge.render.upstream import RendererProxyHandler
from edge.utils.logger import get_logger

logger = get_logger(__name__)


def create_render_handler(config: Config, http_client: httpx.AsyncClient) -> RenderHandler:
    """Build the configured RenderHandler.

    Raises:
        ConfigError: the import string is malformed, cannot be imported, or the
            factory returns something that is not a RenderHandler.
    """
    if config.render.handler:
        handler = _load_factory(config.render.handler)(config, http_client)
        if not isinstance(handler, RenderHandler):
            raise ConfigError(
                f"{config.render.handler} returned {type(handler).__name__}, "
                "which does not implement RenderHandler"
            )
        logger.info("render_handler_selected", handler=config.render.handler)
        return handler

    logger.info(
        "render_handler_selected",
        handler="RendererProxyHandler",
        renderer=config.render.origin,
    )
    return RendererProxyHandler(config.render.origin, http_client, dev=config.server.dev)


def _load_factory(target: str):
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"render handler must look like 'package.module:factory', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"cannot import render handler module {module_name!r}: {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigError(f"{module_name!r} has no attribute {attr!r}") from exc
