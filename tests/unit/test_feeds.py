"""
test_feeds.py - Unit tests for per-miner log line feeds.
"""

import asyncio

import pytest

from coinbase_builder import log_frame
from poolcheck.feeds import FeedRegistry, LineFeed

pytestmark = pytest.mark.asyncio


async def _drain(feed: LineFeed):
    return [entry async for entry in feed]


class TestLineFeed:

    async def test_parsed_lines_are_yielded(self):
        feed = LineFeed("m1")
        assert feed.push_line(log_frame("one"))
        assert feed.push_line(log_frame("two"))
        feed.close()
        entries = await asyncio.wait_for(_drain(feed), 1)
        assert [e.message for e in entries] == ["one", "two"]

    async def test_non_frames_dropped(self):
        feed = LineFeed("m1")
        assert not feed.push_line("garbage")
        assert feed.push_lines([log_frame("a"), "", log_frame("b")]) == 2
        assert feed.lines_received == 4
        feed.close()
        assert len(await asyncio.wait_for(_drain(feed), 1)) == 2

    async def test_closed_feed_rejects_lines(self):
        feed = LineFeed("m1")
        feed.close()
        feed.close()
        assert feed.closed
        assert not feed.push_line(log_frame("late"))
        assert await asyncio.wait_for(_drain(feed), 1) == []

    async def test_full_feed_drops(self):
        feed = LineFeed("m1", maxsize=1)
        assert feed.push_line(log_frame("a"))
        assert not feed.push_line(log_frame("b"))
        assert feed.lines_dropped == 1
        # close still terminates iteration by evicting the oldest entry
        feed.close()
        assert await asyncio.wait_for(_drain(feed), 1) == []


class TestFeedRegistry:

    async def test_get_or_create_reuses_open_feed(self):
        registry = FeedRegistry()
        feed = registry.get_or_create("m1")
        assert registry.get_or_create("m1") is feed
        assert len(registry) == 1

    async def test_closed_feed_replaced(self):
        registry = FeedRegistry()
        feed = registry.get_or_create("m1")
        feed.close()
        assert registry.get_or_create("m1") is not feed

    async def test_remove_closes_feed(self):
        registry = FeedRegistry()
        feed = registry.get_or_create("m1")
        registry.remove("m1")
        registry.remove("m1")
        assert feed.closed
        assert registry.get("m1") is None

    async def test_close_all(self):
        registry = FeedRegistry()
        feeds = [registry.get_or_create(f"m{i}") for i in range(3)]
        registry.close_all()
        assert all(f.closed for f in feeds)
        assert len(registry) == 0
