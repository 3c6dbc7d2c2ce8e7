"""Root test configuration for the edge server.

Provides:
  - logging reconfigured per test with logger caching off, so
    ``structlog.testing.capture_logs()`` sees every module-level logger
  - environment scrubbed of the variables load_config() reads
  - MockOrigin: an httpx.MockTransport standing in for the GraphQL origin
    (both the ``/graphql`` endpoint and the proxied auth/admin paths)
  - FakeRenderHandler: a RenderHandler that echoes its arguments as JSON
  - build_app: create_app() wired to the two fakes above
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import httpx
import pytest
from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from edge.config import Config
from edge.main import create_app
from edge.origin.client import OriginClient
from edge.render.protocol import ParsedURL
from edge.utils.logger import configure_logging

ENV_VARS = (
    "EDGE_CONFIG",
    "GRAPHQL_ORIGIN",
    "PORT",
    "HOST",
    "NODE_ENV",
    "ENABLE_STACKDRIVER",
    "GOOGLE_PROJECT",
    "PUBLIC_URL",
    "RENDERER_ORIGIN",
    "RENDER_HANDLER",
    "TRUST_PROXY",
    "STATIC_DIR",
)


@pytest.fixture(autouse=True)
def uncached_logging() -> None:
    configure_logging(log_level="DEBUG", json_output=True, cache_logger_on_first_use=False)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ─── Fakes ────────────────────────────────────────────────────────────────────


class MockOrigin:
    """In-process GraphQL origin.

    ``/graphql`` requests carrying a ``posts`` query are answered from
    ``posts``; every other request gets ``proxy_status`` / ``proxy_body``.
    Set ``fail`` to an exception to make every request raise it.
    """

    def __init__(self, posts: Optional[list[dict[str, Any]]] = None) -> None:
        self.posts: list[dict[str, Any]] = posts if posts is not None else []
        self.fail: Optional[Exception] = None
        self.graphql_errors: Optional[list[dict[str, Any]]] = None
        self.proxy_status = 200
        self.proxy_body = b'{"data":{"__typename":"Query"}}'
        self.proxy_headers: list[tuple[str, str]] = [("content-type", "application/json")]
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail is not None:
            raise self.fail

        if request.url.path == "/graphql" and request.method == "POST":
            payload = json.loads(request.content or b"{}")
            query = payload.get("query", "")
            if "posts(" in query:
                if self.graphql_errors:
                    return httpx.Response(200, json={"errors": self.graphql_errors})
                return httpx.Response(200, json={"data": {"posts": self.posts}})

        # Left unread so the proxy relays it with aiter_raw() as in production.
        return httpx.Response(
            self.proxy_status,
            headers=self.proxy_headers,
            stream=httpx.ByteStream(self.proxy_body),
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def origin_client(self, url: str = "https://graphql.natwelch.com") -> OriginClient:
        return OriginClient(url, transport=self.transport)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, follow_redirects=False)

    @property
    def graphql_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if b"posts(" in (r.content or b"")]


class FakeRenderHandler:
    """RenderHandler that echoes what it was asked to render."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.prepared = False
        self.closed = False
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def prepare(self) -> None:
        self.prepared = True

    async def render(self, request: Request, page: str, query: dict[str, Any]) -> Response:
        self.calls.append(("render", page, dict(query)))
        return JSONResponse({"page": page, "query": query}, status_code=self.status_code)

    async def handle(self, request: Request, parsed_url: ParsedURL) -> Response:
        self.calls.append(("handle", parsed_url.path, dict(parsed_url.query)))
        return JSONResponse(
            {"path": parsed_url.path, "query": parsed_url.query},
            status_code=self.status_code,
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def mock_origin() -> MockOrigin:
    return MockOrigin()


@pytest.fixture
def render_handler() -> FakeRenderHandler:
    return FakeRenderHandler()


@pytest.fixture
def build_app(
    monkeypatch: pytest.MonkeyPatch,
    mock_origin: MockOrigin,
    render_handler: FakeRenderHandler,
) -> Callable[..., FastAPI]:
    """Return a factory building an app whose upstreams are the fakes above.

    The lifespan still runs for real; only the three collaborator factories in
    edge.main are replaced.
    """

    def _build(config: Optional[Config] = None) -> FastAPI:
        monkeypatch.setattr(
            "edge.main.create_http_client", lambda *args, **kwargs: mock_origin.http_client()
        )
        monkeypatch.setattr(
            "edge.main.create_origin_client",
            lambda cfg: mock_origin.origin_client(cfg.origin.url),
        )
        monkeypatch.setattr(
            "edge.main.create_render_handler", lambda cfg, client: render_handler
        )
        return create_app(config or Config.defaults())

    return _build
