"""
feeds.py - Per-miner log line feeds.

A LineFeed turns raw text lines pushed by a log collector (HTTP ingest,
replay script, websocket bridge) into an async stream of LogEntry objects
the monitor can subscribe to. Lines that are not log frames are dropped.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from poolcheck.logline import LogEntry, parse_log_line

logger = logging.getLogger("feeds")

FEED_QUEUE_SIZE = 1000

_CLOSED = object()


class LineFeed:
    def __init__(self, miner_id: str, maxsize: int = FEED_QUEUE_SIZE):
        self.miner_id = miner_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.lines_received = 0
        self.lines_dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def push_line(self, raw: str) -> bool:
        """Parse and enqueue one raw line. Returns False if it was dropped."""
        if self._closed:
            return False
        self.lines_received += 1
        entry = parse_log_line(raw)
        if entry is None:
            return False
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self.lines_dropped += 1
            logger.warning("Feed for %s full, dropping line", self.miner_id)
            return False
        return True

    def push_lines(self, lines: List[str]) -> int:
        return sum(1 for line in lines if self.push_line(line))

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer is behind; drop the oldest entry to make room for the sentinel.
            self._queue.get_nowait()
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> LogEntry:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FeedRegistry:
    """One LineFeed per miner id."""

    def __init__(self):
        self._feeds: Dict[str, LineFeed] = {}

    def get_or_create(self, miner_id: str) -> LineFeed:
        feed = self._feeds.get(miner_id)
        if feed is None or feed.closed:
            feed = LineFeed(miner_id)
            self._feeds[miner_id] = feed
        return feed

    def get(self, miner_id: str) -> Optional[LineFeed]:
        return self._feeds.get(miner_id)

    def remove(self, miner_id: str):
        feed = self._feeds.pop(miner_id, None)
        if feed is not None:
            feed.close()

    def close_all(self):
        for feed in self._feeds.values():
            feed.close()
        self._feeds.clear()

    def __len__(self) -> int:
        return len(self._feeds)
