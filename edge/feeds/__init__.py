"""Feed and sitemap documents built from origin data.

Public API:
    build_feed()    : FeedDocument (serialises to RSS 2.0 or Atom 1.0)
    build_sitemap() : SitemapDocument
"""
from edge.feeds.feed import FeedDocument, build_feed
from edge.feeds.sitemap import SitemapDocument, build_sitemap

__all__ = ["FeedDocument", "SitemapDocument", "build_feed", "build_sitemap"]
