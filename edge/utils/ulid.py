"""ULID generation utility for the edge server.

Provides a single `generate_ulid()` function that returns a 26-character ULID
(Universally Unique Lexicographically Sortable Identifier) used as:
  - ``request_id`` bound into every log line emitted while a request is in flight
  - ``X-Request-ID`` response header value

Uses the `python-ulid` library (see pyproject.toml).
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: Crockford Base32 string, charset ``[0-9A-HJKMNP-TV-Z]``, exactly 26 chars.
    """
    return str(ULID())
