"""RenderHandler Protocol + ParsedURL.

The page-rendering layer is opaque to the edge server. Whatever produces HTML
is injected behind this interface and selected by create_render_handler()
(render/factory.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from starlette.requests import Request
from starlette.responses import Response


class RenderHandlerError(Exception):
    """The rendering layer could not be prepared."""


@dataclass(frozen=True)
class ParsedURL:
    """Path and query of the inbound request, as handed to the rendering layer."""

    path: str
    query: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request) -> "ParsedURL":
        query: dict[str, list[str]] = {}
        for name, value in request.query_params.multi_items():
            query.setdefault(name, []).append(value)
        return cls(path=request.url.path, query=query)


@runtime_checkable
class RenderHandler(Protocol):
    """Pluggable page renderer.

    Implementations: RendererProxyHandler (default), or any object returned by
    the factory named in ``RENDER_HANDLER``.

    Every method that answers a request returns the complete Response; the edge
    server passes it to the client unchanged (a 404 or 500 from the renderer is
    what the client sees).
    """

    async def prepare(self) -> None:
        """One-time initialisation before the first request.

        Raises:
            RenderHandlerError: the rendering layer is unusable. Fatal in production.
        """
        ...

    async def render(self, request: Request, page: str, query: dict[str, Any]) -> Response:
        """Render ``page`` (e.g. ``/post``) with ``query`` (e.g. ``{"id": "42"}``)."""
        ...

    async def handle(self, request: Request, parsed_url: ParsedURL) -> Response:
        """Answer a request no edge rule matched."""
        ...

    async def close(self) -> None:
        """Release resources. Called once at shutdown."""
        ...
