"""GraphQL client for the post origin.

Speaks GraphQL-over-HTTP: ``POST <origin>/graphql`` with a JSON body of
``{query, variables, operationName}``, expecting ``{data, errors}`` back.

Clients are cheap: every call opens its own ``httpx.AsyncClient`` bound to the
origin URL. There are no retries at this layer. Each call carries a total
deadline (10 s by default); anything that prevents a usable ``data`` payload is
raised as an OriginError subclass with the original cause attached.

A call may be given a cancellation ``asyncio.Event``. When the event is set
before the origin answers (the inbound client disconnected), the in-flight HTTP
request is cancelled and OriginCancelled is raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx

from edge.config import Config
from edge.constants import GRAPHQL_PATH, ORIGIN_SLOW_MS, ORIGIN_TIMEOUT_S
from edge.utils.logger import PerformanceLogger, get_logger

logger = get_logger(__name__)


# ─── Errors ───────────────────────────────────────────────────────────────────


class OriginError(Exception):
    """Base class for origin failures. ``cause`` is the underlying exception."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class OriginUnavailable(OriginError):
    """Transport failure, timeout, non-2xx status, or undecodable body."""


class OriginResponseError(OriginError):
    """The origin answered, but with GraphQL errors or without ``data``."""


class OriginCancelled(OriginError):
    """The caller went away before the origin answered."""


# ─── Queries ──────────────────────────────────────────────────────────────────

RECENT_POSTS_QUERY = """
query recentPosts {
  posts(limit: %d, offset: 0) {
    id
    title
    datetime
    summary
  }
}
"""

POST_IDS_QUERY = """
query mostPosts {
  posts(limit: %d, offset: 0) {
    id
  }
}
"""


@dataclass(frozen=True)
class PostSummary:
    """A post as returned by the ``posts`` query."""

    id: str
    title: str = ""
    published: Optional[datetime] = None
    summary: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "PostSummary":
        """Build from a GraphQL ``posts`` element.

        Raises:
            ValueError: when ``id`` is missing/empty, ``datetime`` is not RFC 3339,
                or ``title``, ``datetime`` or ``summary`` is not a string.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"post is not an object: {raw!r}")
        post_id = raw.get("id")
        if post_id is None or str(post_id) == "":
            raise ValueError("post has no id")

        title = _optional_str(raw, "title")
        when = _optional_str(raw, "datetime")
        summary = _optional_str(raw, "summary")

        return cls(
            id=str(post_id),
            title=title or "",
            published=parse_instant(when) if when else None,
            summary=summary,
        )


def _optional_str(raw: dict[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"post {key} is not a string: {value!r}")
    return value


def parse_instant(value: str) -> datetime:
    """Parse an RFC 3339 instant; naive values are rejected."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        raise ValueError(f"instant has no offset: {value!r}")
    return parsed


# ─── Client ───────────────────────────────────────────────────────────────────


class OriginClient:
    """Stateless GraphQL issuer bound to one origin URL.

    Args:
        url:       Origin base URL (``https://graphql.natwelch.com``).
        timeout_s: Total deadline per call.
        transport: Optional httpx transport; tests inject ``httpx.MockTransport``.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = ORIGIN_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.url}{GRAPHQL_PATH}"

    async def execute(
        self,
        query: str,
        variables: Optional[dict[str, Any]] = None,
        operation_name: Optional[str] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> dict[str, Any]:
        """Execute one GraphQL operation and return its ``data`` object.

        Raises:
            OriginUnavailable:   transport error, deadline exceeded, non-2xx, bad JSON.
            OriginResponseError: GraphQL ``errors`` present or ``data`` missing.
            OriginCancelled:     ``cancel`` was set before the origin answered.
        """
        payload = {
            "query": query,
            "variables": variables or {},
            "operationName": operation_name,
        }

        with PerformanceLogger(
            "origin query",
            logger,
            slow_ms=ORIGIN_SLOW_MS,
            expected=(OriginCancelled,),
            operation_name=operation_name,
        ):
            call = asyncio.ensure_future(
                asyncio.wait_for(self._post(payload), timeout=self.timeout_s)
            )
            if cancel is None:
                body = await self._result(call)
            else:
                waiter = asyncio.ensure_future(cancel.wait())
                try:
                    await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    waiter.cancel()
                if not call.done():
                    call.cancel()
                    raise OriginCancelled("inbound request disconnected")
                body = await self._result(call)

        errors = body.get("errors")
        if errors:
            raise OriginResponseError(f"origin returned GraphQL errors: {errors!r}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise OriginResponseError("origin response has no data object")
        return data

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(self.timeout_s),
        ) as client:
            response = await client.post(self.endpoint, json=payload)
            response.raise_for_status()
            body = response.json()
        if not isinstance(body, dict):
            raise ValueError("GraphQL response body is not a JSON object")
        return body

    async def _result(self, call: "asyncio.Future[dict[str, Any]]") -> dict[str, Any]:
        try:
            return await call
        except asyncio.TimeoutError as exc:
            raise OriginUnavailable(
                f"origin did not answer within {self.timeout_s}s", cause=exc
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise OriginUnavailable(f"origin request failed: {exc}", cause=exc) from exc

    # ── Queries used by the edge server ──────────────────────────────────────

    async def recent_posts(
        self, limit: int, *, cancel: Optional[asyncio.Event] = None
    ) -> list[PostSummary]:
        """The ``limit`` most recent posts, in origin order (newest first)."""
        data = await self.execute(RECENT_POSTS_QUERY % limit, operation_name="recentPosts", cancel=cancel)
        return _posts_from(data)

    async def post_ids(
        self, limit: int, *, cancel: Optional[asyncio.Event] = None
    ) -> list[str]:
        """Identifiers of up to ``limit`` posts."""
        data = await self.execute(POST_IDS_QUERY % limit, operation_name="mostPosts", cancel=cancel)
        return [post.id for post in _posts_from(data)]


def _posts_from(data: dict[str, Any]) -> list[PostSummary]:
    raw_posts = data.get("posts")
    if raw_posts is None:
        return []
    if not isinstance(raw_posts, list):
        raise OriginResponseError("'posts' is not a list")

    posts: list[PostSummary] = []
    for raw in raw_posts:
        try:
            posts.append(PostSummary.from_dict(raw))
        except ValueError as exc:
            logger.warning("Skipping malformed post from origin", error=str(exc))
    return posts


def create_origin_client(config: Config) -> OriginClient:
    """Build the OriginClient for the configured origin."""
    return OriginClient(config.origin.url, timeout_s=config.origin.timeout_s)
