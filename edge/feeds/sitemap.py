"""XML sitemap builder.

The sitemap lists the site root followed by one ``/post/<id>`` URL per post the
origin returns (up to 1000). When the origin is unavailable the sitemap still
renders, containing only the root.
"""

from __future__ import annotations

import asyncio
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote

from edge.constants import SITEMAP_CACHE_TIME_MS, SITEMAP_POST_LIMIT
from edge.feeds.feed import XML_PROLOGUE
from edge.origin.client import OriginCancelled, OriginClient, OriginError
from edge.utils.logger import get_logger

logger = get_logger(__name__)

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"


@dataclass
class SitemapDocument:
    """Hostname plus site-relative URLs.

    ``cache_time_ms`` is an informational hint for downstream caches; the edge
    server regenerates the document on every request.
    """

    hostname: str
    urls: list[str] = field(default_factory=list)
    cache_time_ms: int = SITEMAP_CACHE_TIME_MS

    def locations(self) -> list[str]:
        return [f"{self.hostname}{url}" for url in self.urls]

    def to_xml(self) -> str:
        urlset = ET.Element("urlset", {"xmlns": SITEMAP_NS})
        for loc in self.locations():
            url = ET.SubElement(urlset, "url")
            ET.SubElement(url, "loc").text = loc
        return XML_PROLOGUE + ET.tostring(urlset, encoding="unicode")


async def build_sitemap(
    origin: OriginClient,
    hostname: str,
    log: Any = logger,
    *,
    cancel: Optional[asyncio.Event] = None,
    limit: int = SITEMAP_POST_LIMIT,
) -> SitemapDocument:
    """Fetch post ids and build the sitemap. Never raises for origin failures."""
    sitemap = SitemapDocument(hostname=hostname.rstrip("/"), urls=["/"])

    try:
        post_ids = await origin.post_ids(limit, cancel=cancel)
    except OriginCancelled:
        log.warning("Sitemap generation abandoned: client disconnected")
        post_ids = []
    except OriginError as exc:
        log.error(
            "Could not fetch post ids for sitemap",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        post_ids = []

    sitemap.urls.extend(f"/post/{quote(post_id, safe='')}" for post_id in post_ids)
    return sitemap
