"""In-memory conversation and transcript store."""

import asyncio
from typing import Dict, List, Optional
from uuid import UUID

import structlog

from ..domain.errors import RecordNotFound
from ..domain.models import DEFAULT_CONVERSATION_TITLE, Conversation, Message, utcnow
from .base import ConversationStore, TranscriptStore

logger = structlog.get_logger()


class InMemoryRepository(ConversationStore, TranscriptStore):
    """Async-safe in-memory conversation and transcript storage."""

    def __init__(self) -> None:
        self._conversations: Dict[UUID, Conversation] = {}
        self._messages: Dict[UUID, List[Message]] = {}
        self._async_lock = asyncio.Lock()
        logger.info("repository_initialized")

    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        async with self._async_lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=str(conversation_id))
            return conversation

    async def list_conversations(self, limit: int = 100, offset: int = 0) -> List[Conversation]:
        """List conversations, most recently updated first."""
        async with self._async_lock:
            conversations = sorted(
                self._conversations.values(),
                key=lambda c: c.updated_at,
                reverse=True
            )
            return conversations[offset : offset + limit]

    async def create_conversation(self, title: Optional[str] = None) -> Conversation:
        """Create a new conversation."""
        conversation = Conversation(title=title or DEFAULT_CONVERSATION_TITLE)
        async with self._async_lock:
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
            logger.info("conversation_created", conversation_id=str(conversation.id))
        return conversation

    async def update_title(self, conversation_id: UUID, title: str) -> Conversation:
        async with self._async_lock:
            conversation = self._require(conversation_id)
            conversation.title = title
            conversation.updated_at = utcnow()
            logger.info("conversation_renamed", conversation_id=str(conversation_id))
            return conversation

    async def delete_conversation(self, conversation_id: UUID) -> None:
        async with self._async_lock:
            self._require(conversation_id)
            del self._conversations[conversation_id]
            self._messages.pop(conversation_id, None)
            logger.info("conversation_deleted", conversation_id=str(conversation_id))

    async def add_message(self, message: Message) -> Message:
        """Append a message and bump the conversation's ``updated_at``."""
        async with self._async_lock:
            conversation = self._require(message.conversation_id)
            self._messages.setdefault(message.conversation_id, []).append(message)
            conversation.updated_at = max(conversation.updated_at, message.created_at)

            logger.info(
                "message_added",
                conversation_id=str(message.conversation_id),
                message_role=message.role.value
            )
            return message

    async def get_messages(
        self, conversation_id: UUID, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        """Get messages for a conversation, oldest first."""
        async with self._async_lock:
            self._require(conversation_id)
            messages = sorted(
                self._messages.get(conversation_id, []),
                key=lambda m: m.created_at
            )
            if limit is None:
                return messages[offset:]
            return messages[offset : offset + limit]

    def _require(self, conversation_id: UUID) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            logger.error("conversation_not_found", conversation_id=str(conversation_id))
            raise RecordNotFound("conversation", conversation_id)
        return conversation
