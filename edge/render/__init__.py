"""Pluggable page rendering.

Re-exports the public API:

    from edge.render import RenderHandler, ParsedURL, create_render_handler

Layout:
    protocol.py: RenderHandler Protocol + ParsedURL + RenderHandlerError
    upstream.py: RendererProxyHandler (forwards to an HTTP rendering server)
    factory.py:  create_render_handler(), selection by config / RENDER_HANDLER
"""

from edge.render.factory import create_render_handler
from edge.render.protocol import ParsedURL, RenderHandler, RenderHandlerError
from edge.render.upstream import RendererProxyHandler

__all__ = [
    "ParsedURL",
    "RenderHandler",
    "RenderHandlerError",
    "RendererProxyHandler",
    "create_render_handler",
]
