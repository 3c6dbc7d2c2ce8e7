"""Streaming reverse proxy.

Used for two upstreams:
  - the GraphQL origin, for ``/login``, ``/logout``, ``/callback``, ``/admin``
    and ``/graphql`` (``changeOrigin``: the outbound Host is the origin's host);
  - the rendering server, by RendererProxyHandler (client Host preserved).

Key properties:
  - Shared httpx.AsyncClient at app.state.http_client, never instantiated per-request
  - Request bodies are streamed upstream chunk by chunk; response bodies are
    relayed with ``aiter_raw()`` so bytes (and Content-Encoding) are unchanged
  - Hop-by-hop headers stripped in both directions (see headers.py)
  - Cookies and Authorization pass through unmodified

Failure modes:
  - httpx.TransportError (connect failure, timeout, protocol error) → HTTP 502,
    empty body, error-level log record
  - httpx.InvalidURL → HTTP 500 (configuration error)
  - Upstream HTTP 4xx/5xx → passed through as-is (NOT converted to 502)
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Optional
from urllib.parse import urlencode, urlsplit

import httpx
from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response, StreamingResponse

from edge.constants import (
    POOL_KEEPALIVE_EXPIRY,
    POOL_MAX_CONNECTIONS,
    POOL_MAX_KEEPALIVE,
    PROXY_TIMEOUT_S,
)
from edge.proxy.headers import build_client_response_headers, build_upstream_headers
from edge.utils.logger import get_logger

logger = get_logger(__name__)

# Status used in logs when the client vanished while its body was being relayed.
CLIENT_CLOSED_REQUEST: int = 499


def create_http_client(timeout_s: float = PROXY_TIMEOUT_S) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient used for proxying.

    Created once at lifespan startup and stored in app.state.http_client.
    Redirects are never followed: 3xx responses (login flows) go to the client.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=False,
    )


def upstream_url(
    target: str,
    path: str,
    query: Optional[Mapping[str, Any]] = None,
    raw_query: str = "",
) -> str:
    """Join the upstream base URL with a request path and query string."""
    base = target.rstrip("/")
    query_string = urlencode(query, doseq=True) if query is not None else raw_query
    url = f"{base}{path}"
    if query_string:
        url = f"{url}?{query_string}"
    return url


async def _relay(upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    finally:
        await upstream.aclose()


def _raw_path(request: Request) -> str:
    raw = request.scope.get("raw_path")
    return raw.decode("latin-1") if raw else request.url.path


def _has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


async def forward(
    request: Request,
    client: httpx.AsyncClient,
    target: str,
    *,
    path: Optional[str] = None,
    query: Optional[Mapping[str, Any]] = None,
    change_origin: bool = True,
    proxied: bool = True,
    log: Any = None,
) -> Response:
    """Forward ``request`` to ``target`` and stream the answer back.

    Args:
        request:       Inbound request.
        client:        Shared proxy client.
        target:        Upstream base URL (scheme + host, optional base path).
        path:          Upstream path; defaults to the inbound path as received.
        query:         Replacement query mapping; defaults to the inbound query string.
        change_origin: Rewrite ``Host`` to the target's host.
        proxied:       Mark the response as relayed, so the security middleware
                       keeps the upstream's own security headers.
        log:           Request-scoped logger (falls back to the module logger).

    Returns:
        StreamingResponse relaying the upstream status, headers and raw body,
        or an empty 502 when the upstream cannot be reached.
    """
    log = log or logger
    request.state.proxied = proxied

    url = upstream_url(
        target,
        path if path is not None else _raw_path(request),
        query,
        raw_query=request.url.query,
    )
    target_host = urlsplit(target).netloc if change_origin else None
    headers = build_upstream_headers(request.headers.items(), target_host)

    try:
        upstream_request = client.build_request(
            method=request.method,
            url=url,
            headers=headers,
            content=request.stream() if _has_body(request) else None,
        )
    except httpx.InvalidURL as exc:
        log.error("Invalid upstream URL", upstream_url=url, error=str(exc))
        return Response(status_code=500)

    try:
        upstream = await client.send(upstream_request, stream=True)
    except httpx.TransportError as exc:
        log.error(
            "Upstream unavailable",
            upstream_url=url,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return Response(status_code=502)
    except ClientDisconnect:
        log.info("Client disconnected while request body was relayed", upstream_url=url)
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    log.debug(
        "Request proxied",
        method=request.method,
        upstream_url=url,
        status_code=upstream.status_code,
    )

    response = StreamingResponse(_relay(upstream), status_code=upstream.status_code)
    response.raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in build_client_response_headers(upstream.headers)
    ]
    return response
