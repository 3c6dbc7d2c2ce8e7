"""RendererProxyHandler, the default RenderHandler.

Pages are rendered by a separate HTTP rendering server (``RENDERER_ORIGIN``,
``http://127.0.0.1:3000`` by default). Requests are relayed through the same
streaming proxy used for the GraphQL origin, but the client's ``Host`` header
is kept so the renderer builds absolute URLs for the public site.

``render(page, query)`` requests ``<renderer><page>?<query>``; ``handle()``
requests the inbound path and query unchanged.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from starlette.requests import Request
from starlette.responses import Response

from edge.proxy.engine import forward
from edge.render.protocol import ParsedURL, RenderHandlerError
from edge.utils.logger import get_logger

logger = get_logger(__name__)

PROBE_TIMEOUT_S: float = 5.0


class RendererProxyHandler:
    """Relay page requests to an HTTP rendering server.

    Args:
        origin:      Renderer base URL.
        http_client: Shared proxy client (``app.state.http_client``).
        dev:         Development mode. An unreachable renderer only warns.
    """

    def __init__(self, origin: str, http_client: httpx.AsyncClient, *, dev: bool = True) -> None:
        self.origin = origin.rstrip("/")
        self.http_client = http_client
        self.dev = dev

    async def prepare(self) -> None:
        try:
            response = await self.http_client.get(
                f"{self.origin}/", timeout=PROBE_TIMEOUT_S
            )
        except httpx.TransportError as exc:
            if not self.dev:
                raise RenderHandlerError(
                    f"renderer at {self.origin} is unreachable: {exc}"
                ) from exc
            logger.warning(
                "Renderer unreachable, pages will answer 502 until it starts",
                renderer=self.origin,
                error=str(exc),
            )
            return
        logger.info("Renderer reachable", renderer=self.origin, status_code=response.status_code)

    async def render(self, request: Request, page: str, query: dict[str, Any]) -> Response:
        return await forward(
            request,
            self.http_client,
            self.origin,
            path=page,
            query=query,
            change_origin=False,
            proxied=False,
            log=getattr(request.state, "log", None),
        )

    async def handle(self, request: Request, parsed_url: ParsedURL) -> Response:
        # An untouched URL goes out as received, percent-encoding included.
        path: Optional[str] = None
        query: Optional[dict[str, list[str]]] = None
        if parsed_url != ParsedURL.from_request(request):
            path, query = parsed_url.path, parsed_url.query
        return await forward(
            request,
            self.http_client,
            self.origin,
            path=path,
            query=query,
            change_origin=False,
            proxied=False,
            log=getattr(request.state, "log", None),
        )

    async def close(self) -> None:
        # The shared client belongs to the app lifespan.
        return None
