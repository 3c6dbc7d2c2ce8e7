"""Markdown → sanitised HTML for feed item content.

Post summaries are Markdown source that may carry inline HTML. Feed readers
render item content as HTML, so the output is cleaned with bleach to an
allow-list of presentational tags before it goes into a feed.
"""

from __future__ import annotations

from typing import Optional

import bleach
import markdown

ALLOWED_TAGS: frozenset[str] = frozenset({
    "a", "abbr", "b", "blockquote", "br", "code", "del", "em", "h1", "h2", "h3",
    "h4", "h5", "h6", "hr", "i", "img", "li", "ol", "p", "pre", "strong", "sub",
    "sup", "table", "tbody", "td", "th", "thead", "tr", "ul",
})

ALLOWED_ATTRIBUTES: dict[str, list[str]] = {
    "a": ["href", "title"],
    "abbr": ["title"],
    "img": ["src", "alt", "title"],
    "td": ["align"],
    "th": ["align"],
}

ALLOWED_PROTOCOLS: frozenset[str] = frozenset({"http", "https", "mailto"})

_EXTENSIONS = ["extra", "sane_lists"]


def render_markdown(source: Optional[str]) -> str:
    """Render Markdown to HTML safe to embed in a feed. ``None`` renders as ``""``."""
    if not source:
        return ""
    html = markdown.markdown(source, extensions=_EXTENSIONS, output_format="html")
    return bleach.clean(
        html,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
    )
