"""RSS 2.0 / Atom 1.0 feed builder.

build_feed() asks the origin for the most recent posts and turns them into a
FeedDocument; the document serialises to either dialect. Origin failures never
escape: they are logged and the feed is built with no items, so the response
is always a well-formed document.

Both serialisations are produced with xml.etree.ElementTree, which escapes
text and attribute values, and are prefixed with a UTF-8 ``<?xml ?>`` prologue.
"""

from __future__ import annotations

import asyncio
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Optional
from urllib.parse import quote

from edge.config import SiteConfig
from edge.constants import FEED_POST_LIMIT
from edge.feeds.markdown import render_markdown
from edge.origin.client import OriginCancelled, OriginClient, OriginError, PostSummary
from edge.utils.logger import get_logger

logger = get_logger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"
XML_PROLOGUE = '<?xml version="1.0" encoding="UTF-8"?>\n'
GENERATOR = "writing-edge"

# Anything outside the XML 1.0 Char production, which no parser accepts.
_XML_ILLEGAL = re.compile(r"[^\t\n\r\x20-\uD7FF\uE000-\uFFFD\U00010000-\U0010FFFF]")


@dataclass(frozen=True)
class Author:
    name: str
    email: str
    link: str

    def rss(self) -> str:
        """RSS ``<author>`` value: ``email (name)``."""
        return f"{self.email} ({self.name})"


@dataclass(frozen=True)
class FeedItem:
    title: str
    link: str
    date: datetime
    content: str
    author: Author


@dataclass
class FeedDocument:
    """In-memory feed; items are kept in insertion (origin) order."""

    title: str
    description: str
    link: str
    favicon: str
    author: Author
    language: str
    items: list[FeedItem] = field(default_factory=list)

    @classmethod
    def for_site(cls, site: SiteConfig) -> "FeedDocument":
        return cls(
            title=site.title,
            description=site.description,
            link=site.public_url,
            favicon=site.favicon,
            author=Author(site.author_name, site.author_email, site.author_link),
            language=site.language,
        )

    def add_post(self, post: PostSummary) -> None:
        self.items.append(
            FeedItem(
                title=post.title,
                link=f"{self.link}/post/{quote(post.id, safe='')}",
                date=post.published or datetime.now(timezone.utc),
                content=render_markdown(post.summary),
                author=self.author,
            )
        )

    @property
    def updated(self) -> datetime:
        """Newest item date, or now for an empty feed."""
        if not self.items:
            return datetime.now(timezone.utc)
        return max(item.date for item in self.items)

    # ── Serialisation ────────────────────────────────────────────────────────

    def to_rss(self) -> str:
        rss = ET.Element("rss", {"version": "2.0", "xmlns:atom": ATOM_NS})
        channel = ET.SubElement(rss, "channel")
        _text(channel, "title", self.title)
        _text(channel, "link", self.link)
        _text(channel, "description", self.description)
        _text(channel, "language", self.language)
        _text(channel, "lastBuildDate", rfc822(self.updated))
        _text(channel, "docs", "https://validator.w3.org/feed/docs/rss2.html")
        _text(channel, "generator", GENERATOR)
        ET.SubElement(
            channel,
            "atom:link",
            {"href": f"{self.link}/feed.rss", "rel": "self", "type": "application/rss+xml"},
        )
        image = ET.SubElement(channel, "image")
        _text(image, "title", self.title)
        _text(image, "url", self.favicon)
        _text(image, "link", self.link)

        for item in self.items:
            node = ET.SubElement(channel, "item")
            _text(node, "title", item.title)
            _text(node, "link", item.link)
            ET.SubElement(node, "guid", {"isPermaLink": "true"}).text = xml_safe(item.link)
            _text(node, "pubDate", rfc822(item.date))
            _text(node, "description", item.content)
            _text(node, "author", item.author.rss())

        return _serialise(rss)

    def to_atom(self) -> str:
        feed = ET.Element("feed", {"xmlns": ATOM_NS, "xml:lang": self.language})
        _text(feed, "id", f"{self.link}/")
        _text(feed, "title", self.title)
        _text(feed, "subtitle", self.description)
        _text(feed, "updated", rfc3339(self.updated))
        _text(feed, "generator", GENERATOR)
        _text(feed, "icon", self.favicon)
        ET.SubElement(feed, "link", {"rel": "alternate", "href": self.link})
        ET.SubElement(
            feed,
            "link",
            {"rel": "self", "href": f"{self.link}/feed.atom", "type": "application/atom+xml"},
        )
        _atom_author(feed, self.author)

        for item in self.items:
            entry = ET.SubElement(feed, "entry")
            _text(entry, "title", item.title)
            _text(entry, "id", item.link)
            ET.SubElement(entry, "link", {"href": item.link})
            _text(entry, "updated", rfc3339(item.date))
            ET.SubElement(entry, "content", {"type": "html"}).text = xml_safe(item.content)
            _atom_author(entry, item.author)

        return _serialise(feed)


def rfc822(when: datetime) -> str:
    """``Tue, 02 Jan 2024 03:04:05 GMT``."""
    return format_datetime(when.astimezone(timezone.utc), usegmt=True)


def rfc3339(when: datetime) -> str:
    """``2024-01-02T03:04:05Z``."""
    return when.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def xml_safe(value: Optional[str]) -> str:
    """Drop characters an XML 1.0 document cannot carry, even escaped."""
    return _XML_ILLEGAL.sub("", value or "")


def _text(parent: ET.Element, tag: str, value: Optional[str]) -> ET.Element:
    node = ET.SubElement(parent, tag)
    node.text = xml_safe(value)
    return node


def _atom_author(parent: ET.Element, author: Author) -> None:
    node = ET.SubElement(parent, "author")
    _text(node, "name", author.name)
    _text(node, "email", author.email)
    _text(node, "uri", author.link)


def _serialise(root: ET.Element) -> str:
    return XML_PROLOGUE + ET.tostring(root, encoding="unicode")


# ─── Builder ──────────────────────────────────────────────────────────────────


async def build_feed(
    origin: OriginClient,
    site: SiteConfig,
    log: Any = logger,
    *,
    cancel: Optional[asyncio.Event] = None,
    limit: int = FEED_POST_LIMIT,
) -> FeedDocument:
    """Fetch recent posts and build the feed. Never raises for origin failures."""
    feed = FeedDocument.for_site(site)

    try:
        posts = await origin.recent_posts(limit, cancel=cancel)
    except OriginCancelled:
        log.warning("Feed generation abandoned: client disconnected")
        posts = []
    except OriginError as exc:
        log.error(
            "Could not fetch recent posts for feed",
            error=str(exc),
            error_type=type(exc).__name__,
            cause=repr(exc.cause) if exc.cause else None,
        )
        posts = []

    for post in posts:
        feed.add_post(post)
    return feed
