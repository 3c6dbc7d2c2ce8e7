"""Response security posture and compression.

SecurityHeadersMiddleware runs just inside the observability middleware and,
for every response:

  1. sets the baseline hardening headers (frame, sniffing, HSTS, referrer, Expect-CT)
  2. sets the Content-Security-Policy and the ``Report-To`` group it reports to
  3. when ``server.trust_proxy`` is on, answers plaintext requests
     (``X-Forwarded-Proto: http``) with a 301 to the https URL; ``/healthz`` is exempt
  4. strips ``Server`` and ``X-Powered-By``

Responses relayed from an upstream (``request.state.proxied``) keep the headers
the upstream chose; ours are only added where the upstream set none.

It is also the top-level error boundary: an exception escaping a handler is
logged and turned into an empty 500, which still carries the security headers.

CompressionMiddleware wraps Starlette's GZipMiddleware and applies it only to
text-like responses that the edge server itself produces or serves.
"""

from __future__ import annotations

import json
import mimetypes
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.middleware.gzip import GZipMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from edge.config import Config
from edge.constants import (
    EXPECT_CT_MAX_AGE_S,
    GZIP_MINIMUM_SIZE,
    HSTS_MAX_AGE_S,
    PROXY_PREFIXES,
    REPORT_TO_MAX_AGE_S,
)
from edge.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Header policy ────────────────────────────────────────────────────────────

BASELINE_HEADERS: dict[str, str] = {
    "X-DNS-Prefetch-Control": "off",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "0",
    "Strict-Transport-Security": f"max-age={HSTS_MAX_AGE_S}; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Expect-CT": f"max-age={EXPECT_CT_MAX_AGE_S}",
}

IDENTIFYING_HEADERS: tuple[str, ...] = ("server", "x-powered-by")

REPORT_GROUP = "default"

HTTPS_REDIRECT_EXEMPT: frozenset[str] = frozenset({"/healthz"})


def build_csp(config: Config) -> str:
    """Render the Content-Security-Policy header value."""
    security = config.security
    directives = [
        ("default-src", ["'self'", config.origin.url, security.auth_jwks_url]),
        ("style-src", ["'self'", "'unsafe-inline'", "https://fonts.googleapis.com/"]),
        ("font-src", ["https://fonts.gstatic.com"]),
        ("img-src", ["'self'", "blob:", "data:", *security.asset_hosts]),
        (
            "script-src",
            ["'self'", "'unsafe-inline'", "'unsafe-eval'", security.analytics_script_url],
        ),
        ("object-src", ["'none'"]),
        ("upgrade-insecure-requests", []),
        ("report-uri", [security.report_uri]),
        ("report-to", [REPORT_GROUP]),
    ]
    return "; ".join(" ".join([name, *sources]) for name, sources in directives)


def build_report_to(config: Config) -> str:
    """``Report-To`` header declaring the group named in the CSP."""
    return json.dumps(
        {
            "group": REPORT_GROUP,
            "max_age": REPORT_TO_MAX_AGE_S,
            "endpoints": [{"url": config.security.report_uri}],
            "include_subdomains": True,
        },
        separators=(",", ":"),
    )


def security_headers(config: Config) -> dict[str, str]:
    """Every header the middleware sets, in application order."""
    headers = dict(BASELINE_HEADERS)
    headers["Content-Security-Policy"] = build_csp(config)
    headers["Report-To"] = build_report_to(config)
    return headers


def _forwarded_proto(request: Request) -> Optional[str]:
    value = request.headers.get("x-forwarded-proto")
    if not value:
        return None
    return value.split(",")[0].strip().lower()


# ─── Middleware ───────────────────────────────────────────────────────────────


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Apply the header policy and act as the request error boundary.

    Header values are computed once, from ``app.state.config``, on the first
    request (the config is only known once the lifespan has run).
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self._config: Optional[Config] = None
        self._headers: dict[str, str] = {}

    def _load(self, config: Config) -> None:
        if self._config is not config:
            self._config = config
            self._headers = security_headers(config)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        config: Config = request.app.state.config or self._config or Config.defaults()
        self._load(config)

        if self._needs_https_redirect(request, config):
            target = request.url.replace(scheme="https")
            response: Response = RedirectResponse(str(target), status_code=301)
        else:
            try:
                response = await call_next(request)
            except Exception as exc:  # noqa: BLE001
                log = getattr(request.state, "log", logger)
                log.error(
                    "Unhandled exception",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    path=request.url.path,
                    exc_info=exc,
                )
                response = Response(status_code=500)

        proxied = getattr(request.state, "proxied", False)
        for name, value in self._headers.items():
            if proxied and name in response.headers:
                continue
            response.headers[name] = value

        for name in IDENTIFYING_HEADERS:
            if name in response.headers:
                del response.headers[name]

        return response

    def _needs_https_redirect(self, request: Request, config: Config) -> bool:
        if not config.server.trust_proxy or request.url.path in HTTPS_REDIRECT_EXEMPT:
            return False
        return _forwarded_proto(request) == "http"


_TEXT_LIKE_APPLICATION_TYPES: frozenset[str] = frozenset(
    {"application/javascript", "application/json", "application/xml"}
)


def is_text_like(content_type: Optional[str]) -> bool:
    if content_type is None:
        return True
    return (
        content_type.startswith("text/")
        or content_type in _TEXT_LIKE_APPLICATION_TYPES
        or content_type.endswith("+xml")
        or content_type.endswith("+json")
    )


class CompressionMiddleware:
    """Gzip text-like responses when the client accepts it.

    Skipped for proxied prefixes (the upstream negotiates its own encoding) and
    for paths whose extension names a binary type (images, fonts, archives).
    Paths without an extension are pages and feeds, which are always text.
    """

    def __init__(
        self,
        app: ASGIApp,
        minimum_size: int = GZIP_MINIMUM_SIZE,
        skip_prefixes: tuple[str, ...] = PROXY_PREFIXES,
    ) -> None:
        self.app = app
        self.gzip = GZipMiddleware(app, minimum_size=minimum_size)
        self.skip_prefixes = skip_prefixes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.compressible(scope["path"]):
            await self.gzip(scope, receive, send)
        else:
            await self.app(scope, receive, send)

    def compressible(self, path: str) -> bool:
        for prefix in self.skip_prefixes:
            if path == prefix or path.startswith(prefix + "/"):
                return False
        content_type, _ = mimetypes.guess_type(path)
        return is_text_like(content_type)
