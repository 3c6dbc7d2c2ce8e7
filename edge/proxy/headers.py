"""HTTP header processing for the upstream proxy.

Implements the header rules for origin-bound requests and client-facing
responses:

  - build_upstream_headers(): strips hop-by-hop headers, rewrites ``Host`` to
    the target's host when ``change_origin`` is set, forwards everything else
    (cookies and ``Authorization`` included) unchanged.

  - build_client_response_headers(): strips hop-by-hop headers from the origin
    response and forwards the rest unchanged. Repeated headers such as
    ``Set-Cookie`` are kept as separate entries.

RFC 7230 §6.1: hop-by-hop headers MUST NOT be forwarded by intermediaries.
"""

from __future__ import annotations

from typing import Iterable, Optional

import httpx

# ─── Constants ────────────────────────────────────────────────────────────────

# Hop-by-hop headers are stripped in both directions (RFC 7230 §6.1).
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


def _connection_tokens(headers: Iterable[tuple[str, str]]) -> frozenset[str]:
    """Header names listed in ``Connection:`` are hop-by-hop for this message too."""
    tokens: set[str] = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return frozenset(tokens)


# ─── Public API ───────────────────────────────────────────────────────────────


def build_upstream_headers(
    request_headers: Iterable[tuple[str, str]],
    target_host: Optional[str] = None,
) -> list[tuple[str, str]]:
    """Build the header list to send to the upstream.

    Rules applied (in order):
      1. Strip hop-by-hop headers, plus any header named in ``Connection``.
      2. When ``target_host`` is given, replace ``Host`` with it
         (``changeOrigin`` behaviour); otherwise keep the client's Host.
      3. Forward all remaining headers unchanged.

    Args:
        request_headers: (name, value) pairs, typically ``request.headers.items()``.
        target_host:     ``host[:port]`` of the upstream, or None to keep Host.

    Returns:
        list of (name, value) pairs, a list so repeated headers survive.
    """
    pairs = list(request_headers)
    extra = _connection_tokens(pairs)
    headers: list[tuple[str, str]] = []

    for name, value in pairs:
        lower_name = name.lower()
        if lower_name in HOP_BY_HOP_HEADERS or lower_name in extra:
            continue
        if lower_name == "host" and target_host is not None:
            continue
        headers.append((name, value))

    if target_host is not None:
        headers.append(("host", target_host))

    return headers


def build_client_response_headers(
    upstream_headers: httpx.Headers,
) -> list[tuple[str, str]]:
    """Build the header list returned to the client from an upstream response.

    ``Content-Length`` and ``Content-Encoding`` are kept: the body is relayed
    as raw bytes, so they still describe it exactly.
    """
    pairs = list(upstream_headers.multi_items())
    extra = _connection_tokens(pairs)
    return [
        (name, value)
        for name, value in pairs
        if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in extra
    ]
