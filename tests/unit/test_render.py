"""Unit tests for the render handler layer (protocol, factory, RendererProxyHandler)."""

from __future__ import annotations

import sys
import types
from typing import Any

import httpx
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route
from starlette.testclient import TestClient
from structlog.testing import capture_logs

from edge.config import Config, ConfigError
from edge.render.factory import create_render_handler
from edge.render.protocol import ParsedURL, RenderHandler, RenderHandlerError
from edge.render.upstream import RendererProxyHandler

RENDERER = "http://renderer.internal:3000"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _streamed(status: int, body: bytes = b"", headers: Any = None) -> httpx.Response:
    return httpx.Response(status, headers=headers, stream=httpx.ByteStream(body))


# ─── ParsedURL ────────────────────────────────────────────────────────────────


class TestParsedURL:
    def test_from_request(self) -> None:
        request = Request(
            {"type": "http", "method": "GET", "path": "/about", "query_string": b"a=1&a=2&b=", "headers": []}
        )
        parsed = ParsedURL.from_request(request)
        assert parsed.path == "/about"
        assert parsed.query == {"a": ["1", "2"], "b": [""]}

    def test_empty_query(self) -> None:
        request = Request({"type": "http", "method": "GET", "path": "/", "query_string": b"", "headers": []})
        assert ParsedURL.from_request(request) == ParsedURL(path="/")


# ─── create_render_handler() ──────────────────────────────────────────────────


class _Custom:
    def __init__(self, config: Config, http_client: httpx.AsyncClient) -> None:
        self.config = config

    async def prepare(self) -> None: ...

    async def render(self, request: Request, page: str, query: dict[str, Any]) -> Response:
        return Response()

    async def handle(self, request: Request, parsed_url: ParsedURL) -> Response:
        return Response()

    async def close(self) -> None: ...


@pytest.fixture
def renderers_module(monkeypatch: pytest.MonkeyPatch) -> str:
    module = types.ModuleType("site_renderers")
    module.custom = _Custom  # type: ignore[attr-defined]
    module.not_a_handler = lambda config, client: object()  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "site_renderers", module)
    return "site_renderers"


class TestCreateRenderHandler:
    @pytest.mark.asyncio
    async def test_default_is_renderer_proxy(self) -> None:
        config = Config.defaults()
        config.render.origin = RENDERER
        config.server.dev = False
        async with httpx.AsyncClient() as client:
            handler = create_render_handler(config, client)

        assert isinstance(handler, RendererProxyHandler)
        assert isinstance(handler, RenderHandler)
        assert handler.origin == RENDERER
        assert handler.dev is False

    @pytest.mark.asyncio
    async def test_import_string(self, renderers_module: str) -> None:
        config = Config.defaults()
        config.render.handler = f"{renderers_module}:custom"
        async with httpx.AsyncClient() as client:
            handler = create_render_handler(config, client)

        assert isinstance(handler, _Custom)
        assert handler.config is config

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "target",
        [
            "no_colon_here",
            "site_renderers:",
            ":custom",
            "site_renderers:missing",
            "site_renderers:not_a_handler",
            "definitely_not_a_module_xyz:factory",
        ],
    )
    async def test_bad_import_string(self, renderers_module: str, target: str) -> None:
        config = Config.defaults()
        config.render.handler = target
        async with httpx.AsyncClient() as client:
            with pytest.raises(ConfigError):
                create_render_handler(config, client)


# ─── RendererProxyHandler ─────────────────────────────────────────────────────


class TestPrepare:
    @pytest.mark.asyncio
    async def test_reachable_renderer(self) -> None:
        probes: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            probes.append(str(request.url))
            return httpx.Response(200)

        async with _client(handler) as client:
            await RendererProxyHandler(RENDERER, client, dev=False).prepare()
        assert probes == [f"{RENDERER}/"]

    @pytest.mark.asyncio
    async def test_unreachable_in_production_is_fatal(self) -> None:
        async with _client(_refused) as client:
            with pytest.raises(RenderHandlerError):
                await RendererProxyHandler(RENDERER, client, dev=False).prepare()

    @pytest.mark.asyncio
    async def test_unreachable_in_development_warns(self) -> None:
        async with _client(_refused) as client:
            with capture_logs() as logs:
                await RendererProxyHandler(RENDERER, client, dev=True).prepare()
        assert [e["log_level"] for e in logs] == ["warning"]

    @pytest.mark.asyncio
    async def test_renderer_error_status_is_not_fatal(self) -> None:
        async with _client(lambda request: httpx.Response(500)) as client:
            await RendererProxyHandler(RENDERER, client, dev=False).prepare()


class TestForwarding:
    def _app(self, upstream_handler) -> Starlette:
        handler = RendererProxyHandler(RENDERER, _client(upstream_handler))

        async def post(request: Request) -> Response:
            return await handler.render(request, "/post", {"id": request.path_params["id"]})

        async def other(request: Request) -> Response:
            return await handler.handle(request, ParsedURL.from_request(request))

        return Starlette(routes=[Route("/post/{id}", post), Route("/{path:path}", other)])

    def test_render_requests_page_with_query(self) -> None:
        received: list[httpx.Request] = []

        def upstream(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return _streamed(200, b"<html>post</html>", headers={"content-type": "text/html"})

        with TestClient(self._app(upstream)) as client:
            response = client.get("/post/42", headers={"host": "writing.natwelch.com"})

        assert response.status_code == 200
        assert response.text == "<html>post</html>"
        assert str(received[0].url) == f"{RENDERER}/post?id=42"
        assert received[0].headers["host"] == "writing.natwelch.com"

    def test_handle_forwards_path_and_query(self) -> None:
        received: list[httpx.Request] = []

        def upstream(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return _streamed(404, b"not found")

        with TestClient(self._app(upstream)) as client:
            response = client.get("/about?a=1&a=2")

        assert response.status_code == 404
        assert str(received[0].url) == f"{RENDERER}/about?a=1&a=2"

    def test_handle_keeps_encoded_path(self) -> None:
        received: list[httpx.Request] = []

        def upstream(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return _streamed(200)

        with TestClient(self._app(upstream)) as client:
            client.get("/tag/a%2Fb?q=x%20y")

        assert received[0].url.raw_path == b"/tag/a%2Fb?q=x%20y"

    def test_handle_uses_rewritten_url(self) -> None:
        received: list[httpx.Request] = []

        def upstream(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return _streamed(200)

        handler = RendererProxyHandler(RENDERER, _client(upstream))

        async def rewritten(request: Request) -> Response:
            return await handler.handle(request, ParsedURL(path="/404", query={"from": ["/old"]}))

        with TestClient(Starlette(routes=[Route("/{path:path}", rewritten)])) as client:
            client.get("/old")

        assert received[0].url.raw_path == b"/404?from=%2Fold"

    def test_unreachable_renderer_is_502(self) -> None:
        with TestClient(self._app(_refused)) as client:
            response = client.get("/post/1")
        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_close_leaves_shared_client_open(self) -> None:
        async with _client(lambda request: httpx.Response(200)) as client:
            await RendererProxyHandler(RENDERER, client).close()
            assert not client.is_closed
