"""Conversation list freshness feed.

The session controller marks a conversation stale after each completed turn;
list views subscribe here to know when to reload ordering metadata.
"""

import asyncio
from typing import List
from uuid import UUID

import structlog

logger = structlog.get_logger()

CONVERSATION_UPDATED = "conversation:updated"


class ConversationFeed:
    """In-process pub/sub of stale conversation ids."""

    def __init__(self, maxsize: int = 100) -> None:
        self._maxsize = maxsize
        self._subscribers: List[asyncio.Queue] = []
        self._lock = asyncio.Lock()

    async def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        async with self._lock:
            self._subscribers.append(queue)
        logger.info("feed_subscribed", subscribers=len(self._subscribers))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue) -> None:
        async with self._lock:
            try:
                self._subscribers.remove(queue)
            except ValueError:
                pass
        logger.info("feed_unsubscribed", subscribers=len(self._subscribers))

    async def mark_stale(self, conversation_id: UUID) -> None:
        async with self._lock:
            for queue in self._subscribers:
                try:
                    queue.put_nowait(conversation_id)
                except asyncio.QueueFull:
                    logger.warning("feed_queue_full", conversation_id=str(conversation_id))
