"""Declarative route table for the edge server.

RULES is evaluated in order and the first full match wins (Starlette's router
semantics). A rule whose path matches but whose method does not is only a
partial match, so such requests fall through to the final catch-all and the
render handler decides what to answer.

    1. GET  /healthz                 health probe
    2. GET  /post/{id}               render page /post with {id}
    3. GET  /tags/{id}               302 → /tag/{id}
    4. GET  /tag/{id}                render page /tag with {id}
    5. GET  /feed.rss                RSS 2.0 feed
    6. GET  /feed.atom               Atom 1.0 feed
    7. GET  /sitemap.xml             XML sitemap
    8. ANY  /login /logout /callback /admin /graphql (and below)  → GraphQL origin
    9. GET  rooted static files      served from server.static_dir
   10. ANY  /{path}                  configured redirects, else render handler

``/sitemap.xml`` appears in both 7 and 9; rule 7 always wins for GET.
"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import FileResponse, RedirectResponse, Response

from edge.constants import PROXY_PREFIXES, ROOT_STATIC_FILES
from edge.feeds.feed import FeedDocument, build_feed
from edge.feeds.sitemap import build_sitemap
from edge.health import HEALTH_PATH, healthz
from edge.proxy.engine import forward
from edge.render.protocol import ParsedURL
from edge.utils.cancel import watch_disconnect
from edge.utils.logger import get_logger

logger = get_logger(__name__)

Endpoint = Callable[[Request], Awaitable[Response]]

RSS_MEDIA_TYPE = "application/rss+xml"
ATOM_MEDIA_TYPE = "application/atom+xml"
SITEMAP_MEDIA_TYPE = "application/xml"

# Starlette treats a function endpoint without methods as GET-only.
ANY_METHOD: tuple[str, ...] = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


class StaticFileMissing(Exception):
    """A rooted static file is listed but not present on disk."""

    def __init__(self, path: str) -> None:
        super().__init__(f"static file not found: {path}")
        self.path = path


@dataclass(frozen=True)
class Rule:
    """One route: ``methods=None`` matches any method."""

    path: str
    endpoint: Endpoint
    methods: Optional[tuple[str, ...]] = ("GET",)
    name: Optional[str] = None


def request_logger(request: Request) -> Any:
    """The request-scoped child logger, or the module logger outside the middleware."""
    return getattr(request.state, "log", logger)


def _redirect_for(request: Request) -> Optional[Response]:
    target = request.app.state.config.redirects.get(request.url.path)
    if target is None:
        return None
    return RedirectResponse(target, status_code=302)


# ─── Endpoints ────────────────────────────────────────────────────────────────


async def render_post(request: Request) -> Response:
    return await request.app.state.render_handler.render(
        request, "/post", {"id": request.path_params["id"]}
    )


async def redirect_tags(request: Request) -> Response:
    return RedirectResponse(
        f"/tag/{quote(request.path_params['id'], safe='')}", status_code=302
    )


async def render_tag(request: Request) -> Response:
    return await request.app.state.render_handler.render(
        request, "/tag", {"id": request.path_params["id"]}
    )


async def _feed(request: Request) -> FeedDocument:
    state = request.app.state
    async with watch_disconnect(request) as cancel:
        return await build_feed(
            state.origin_client, state.config.site, request_logger(request), cancel=cancel
        )


async def feed_rss(request: Request) -> Response:
    feed = await _feed(request)
    return Response(feed.to_rss(), media_type=RSS_MEDIA_TYPE)


async def feed_atom(request: Request) -> Response:
    feed = await _feed(request)
    return Response(feed.to_atom(), media_type=ATOM_MEDIA_TYPE)


async def sitemap_xml(request: Request) -> Response:
    state = request.app.state
    async with watch_disconnect(request) as cancel:
        sitemap = await build_sitemap(
            state.origin_client,
            state.config.site.public_url,
            request_logger(request),
            cancel=cancel,
        )
    return Response(sitemap.to_xml(), media_type=SITEMAP_MEDIA_TYPE)


async def proxy_to_origin(request: Request) -> Response:
    state = request.app.state
    return await forward(
        request,
        state.http_client,
        state.config.origin.url,
        change_origin=True,
        log=request_logger(request),
    )


async def serve_static(request: Request) -> Response:
    """Serve a rooted static file.

    Raises:
        StaticFileMissing: the file is not in the static directory (answered 404).
    """
    redirect = _redirect_for(request)
    if redirect is not None:
        return redirect

    static_dir = pathlib.Path(request.app.state.config.server.static_dir)
    path = static_dir / request.url.path.lstrip("/")
    if not path.is_file():
        raise StaticFileMissing(request.url.path)
    return FileResponse(path)


async def fallback(request: Request) -> Response:
    redirect = _redirect_for(request)
    if redirect is not None:
        return redirect
    return await request.app.state.render_handler.handle(
        request, ParsedURL.from_request(request)
    )


# ─── Rule table ───────────────────────────────────────────────────────────────


def _proxy_rules(prefixes: tuple[str, ...]) -> tuple[Rule, ...]:
    rules: list[Rule] = []
    for prefix in prefixes:
        name = f"proxy{prefix.replace('/', '.')}"
        rules.append(Rule(prefix, proxy_to_origin, methods=None, name=name))
        rules.append(Rule(f"{prefix}/{{rest:path}}", proxy_to_origin, methods=None, name=f"{name}.sub"))
    return tuple(rules)


RULES: tuple[Rule, ...] = (
    Rule(HEALTH_PATH, healthz, name="healthz"),
    Rule("/post/{id}", render_post, name="post"),
    Rule("/tags/{id}", redirect_tags, name="tags"),
    Rule("/tag/{id}", render_tag, name="tag"),
    Rule("/feed.rss", feed_rss, name="feed.rss"),
    Rule("/feed.atom", feed_atom, name="feed.atom"),
    Rule("/sitemap.xml", sitemap_xml, name="sitemap"),
    *_proxy_rules(PROXY_PREFIXES),
    *(Rule(path, serve_static, name=f"static{path}") for path in ROOT_STATIC_FILES),
    Rule("/{path:path}", fallback, methods=None, name="fallback"),
)


def install_routes(app: FastAPI, rules: tuple[Rule, ...] = RULES) -> None:
    """Register ``rules`` on ``app`` in table order."""
    for rule in rules:
        app.add_route(
            rule.path,
            rule.endpoint,
            methods=list(rule.methods or ANY_METHOD),
            name=rule.name,
            include_in_schema=False,
        )
