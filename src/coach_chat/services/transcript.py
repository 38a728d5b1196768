"""Visible transcript of one conversation, with change subscriptions."""

import asyncio
from typing import Dict, List, Union
from uuid import UUID

import structlog

from ..domain.models import Message, PendingAssistantMessage, TranscriptUpdate

logger = structlog.get_logger()

Entry = Union[Message, PendingAssistantMessage]


class TranscriptView:
    """Ordered, id-keyed message map.

    Updates to an existing id replace the entry in place and keep its
    position. Every change is published to subscriber queues as a
    ``TranscriptUpdate``.
    """

    def __init__(self, conversation_id: UUID) -> None:
        self.conversation_id = conversation_id
        self._entries: Dict[UUID, Entry] = {}
        self._subscribers: List[asyncio.Queue] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id: UUID) -> bool:
        return message_id in self._entries

    def messages(self) -> List[Entry]:
        return list(self._entries.values())

    def persisted(self) -> List[Message]:
        """Entries that are not in-progress assistant snapshots."""
        return [m for m in self._entries.values() if isinstance(m, Message)]

    def get(self, message_id: UUID) -> Entry:
        return self._entries[message_id]

    def load(self, messages: List[Message]) -> None:
        """Replace the whole transcript with stored messages, silently."""
        self._entries = {message.id: message for message in messages}

    def upsert(self, entry: Entry) -> None:
        kind = "updated" if entry.id in self._entries else "appended"
        self._entries[entry.id] = entry
        self._publish(TranscriptUpdate(kind=kind, message=entry))

    def discard(self, message_id: UUID) -> bool:
        entry = self._entries.pop(message_id, None)
        if entry is None:
            return False
        self._publish(TranscriptUpdate(kind="removed", message=entry))
        return True

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass

    def _publish(self, update: TranscriptUpdate) -> None:
        for queue in self._subscribers:
            try:
                queue.put_nowait(update)
            except asyncio.QueueFull:
                logger.warning(
                    "transcript_subscriber_full",
                    conversation_id=str(self.conversation_id),
                )
