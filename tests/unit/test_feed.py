"""Unit tests for the RSS / Atom feed builder."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import feedparser
import httpx
import pytest
from structlog.testing import capture_logs

from edge.config import SiteConfig
from edge.feeds.feed import ATOM_NS, FeedDocument, build_feed, rfc3339, rfc822
from edge.origin.client import OriginClient, PostSummary

SITE = SiteConfig()


def _posts_client(posts: list[dict]) -> OriginClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"posts": posts}})

    return OriginClient("https://graphql.example", transport=httpx.MockTransport(handler))


def _failing_client(exc_factory) -> OriginClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_factory(request)

    return OriginClient("https://graphql.example", transport=httpx.MockTransport(handler))


POSTS = [
    {"id": "3", "title": "Third", "datetime": "2024-03-01T12:00:00Z", "summary": "**bold**"},
    {"id": "2", "title": "Second", "datetime": "2024-02-01T12:00:00Z", "summary": None},
    {"id": "1", "title": "A", "datetime": "2024-01-02T03:04:05Z", "summary": "s"},
]


# ─── Date formats ─────────────────────────────────────────────────────────────


class TestDates:
    def test_rfc822(self) -> None:
        when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert rfc822(when) == "Tue, 02 Jan 2024 03:04:05 GMT"

    def test_rfc3339(self) -> None:
        when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert rfc3339(when) == "2024-01-02T03:04:05Z"


# ─── Document ─────────────────────────────────────────────────────────────────


class TestFeedDocument:
    def test_item_fields(self) -> None:
        feed = FeedDocument.for_site(SITE)
        feed.add_post(PostSummary.from_dict(POSTS[2]))
        item = feed.items[0]
        assert item.title == "A"
        assert item.link == "https://writing.natwelch.com/post/1"
        assert item.date == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert item.content == "<p>s</p>"
        assert item.author == feed.author

    def test_rss_prologue_and_metadata(self) -> None:
        body = FeedDocument.for_site(SITE).to_rss()
        assert body.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        channel = ET.fromstring(body).find("channel")
        assert channel.findtext("title") == "Nat? Nat. Nat!"
        assert channel.findtext("description") == "Nat Welch's Blog about random stuff."
        assert channel.findtext("link") == "https://writing.natwelch.com"
        assert channel.findall("item") == []

    def test_rss_item(self) -> None:
        feed = FeedDocument.for_site(SITE)
        feed.add_post(PostSummary.from_dict(POSTS[2]))
        body = feed.to_rss()
        assert "<link>https://writing.natwelch.com/post/1</link>" in body
        assert "<pubDate>Tue, 02 Jan 2024 03:04:05 GMT</pubDate>" in body
        item = ET.fromstring(body).find("channel/item")
        assert item.findtext("author") == "nat@natwelch.com (Nat Welch)"
        assert item.findtext("description") == "<p>s</p>"

    def test_atom_structure(self) -> None:
        feed = FeedDocument.for_site(SITE)
        feed.add_post(PostSummary.from_dict(POSTS[2]))
        root = ET.fromstring(feed.to_atom())
        assert root.tag == f"{{{ATOM_NS}}}feed"
        entries = root.findall(f"{{{ATOM_NS}}}entry")
        assert len(entries) == 1
        entry = entries[0]
        assert entry.findtext(f"{{{ATOM_NS}}}updated") == "2024-01-02T03:04:05Z"
        assert entry.find(f"{{{ATOM_NS}}}content").get("type") == "html"
        assert entry.find(f"{{{ATOM_NS}}}link").get("href") == "https://writing.natwelch.com/post/1"
        assert entry.findtext(f"{{{ATOM_NS}}}author/{{{ATOM_NS}}}name") == "Nat Welch"

    def test_special_characters_are_escaped(self) -> None:
        feed = FeedDocument.for_site(SITE)
        feed.add_post(PostSummary.from_dict({"id": "9", "title": "Second & more"}))
        for body in (feed.to_rss(), feed.to_atom()):
            ET.fromstring(body)
            assert "Second &amp; more" in body

    def test_ids_are_url_quoted(self) -> None:
        feed = FeedDocument.for_site(SITE)
        feed.add_post(PostSummary.from_dict({"id": "a b/c", "title": "t"}))
        assert feed.items[0].link == "https://writing.natwelch.com/post/a%20b%2Fc"

    def test_control_characters_are_dropped(self) -> None:
        feed = FeedDocument.for_site(SITE)
        feed.add_post(PostSummary.from_dict({"id": "1", "title": "A\x0bB", "summary": "x\x1by"}))

        rss = ET.fromstring(feed.to_rss())
        atom = ET.fromstring(feed.to_atom())

        assert rss.findtext("channel/item/title") == "AB"
        assert atom.findtext(f"{{{ATOM_NS}}}entry/{{{ATOM_NS}}}title") == "AB"
        assert "\x1b" not in rss.findtext("channel/item/description")


# ─── Round trip through a real feed parser ────────────────────────────────────


class TestRoundTrip:
    def _feed(self) -> FeedDocument:
        feed = FeedDocument.for_site(SITE)
        for raw in POSTS:
            feed.add_post(PostSummary.from_dict(raw))
        return feed

    def _expected(self) -> list[tuple[str, str, datetime]]:
        return [
            (p["title"], f"https://writing.natwelch.com/post/{p['id']}", PostSummary.from_dict(p).published)
            for p in POSTS
        ]

    @staticmethod
    def _parsed(entries) -> list[tuple[str, str, datetime]]:
        result = []
        for entry in entries:
            parsed = entry.get("published_parsed") or entry.get("updated_parsed")
            when = datetime(*parsed[:6], tzinfo=timezone.utc)
            result.append((entry.title, entry.link, when))
        return result

    def test_rss_round_trip(self) -> None:
        parsed = feedparser.parse(self._feed().to_rss())
        assert not parsed.bozo
        assert self._parsed(parsed.entries) == self._expected()

    def test_atom_round_trip(self) -> None:
        parsed = feedparser.parse(self._feed().to_atom())
        assert not parsed.bozo
        assert self._parsed(parsed.entries) == self._expected()


# ─── build_feed() ─────────────────────────────────────────────────────────────


class TestBuildFeed:
    @pytest.mark.asyncio
    async def test_items_in_origin_order(self) -> None:
        feed = await build_feed(_posts_client(POSTS), SITE)
        assert [item.title for item in feed.items] == ["Third", "Second", "A"]

    @pytest.mark.asyncio
    async def test_zero_posts_is_valid_empty_feed(self) -> None:
        feed = await build_feed(_posts_client([]), SITE)
        assert feed.items == []
        assert ET.fromstring(feed.to_rss()).findall("channel/item") == []
        assert ET.fromstring(feed.to_atom()).findall(f"{{{ATOM_NS}}}entry") == []

    @pytest.mark.asyncio
    async def test_origin_timeout_degrades_to_empty_and_logs_error(self) -> None:
        client = _failing_client(lambda r: httpx.ReadTimeout("slow", request=r))
        with capture_logs() as logs:
            feed = await build_feed(client, SITE)
        assert feed.items == []
        errors = [e for e in logs if e["log_level"] == "error" and "feed" in e["event"]]
        assert len(errors) == 1
        assert errors[0]["error_type"] == "OriginUnavailable"

    @pytest.mark.asyncio
    async def test_posts_with_non_string_fields_are_skipped(self) -> None:
        posts = [
            {"id": "1", "title": "epoch", "datetime": 1704164645},
            {"id": "2", "title": 42},
            {"id": "3", "title": "ok", "datetime": "2024-01-02T03:04:05Z", "summary": ["a"]},
            {"id": "4", "title": "kept", "datetime": "2024-01-02T03:04:05Z"},
        ]
        with capture_logs() as logs:
            feed = await build_feed(_posts_client(posts), SITE)

        assert [item.title for item in feed.items] == ["kept"]
        ET.fromstring(feed.to_rss())
        skipped = [e for e in logs if e["event"] == "Skipping malformed post from origin"]
        assert len(skipped) == 3
