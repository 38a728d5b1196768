"""Domain models for the chat application."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

DEFAULT_CONVERSATION_TITLE = "New conversation"
MAX_TITLE_LENGTH = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """Persisted message model."""

    id: UUID = Field(default_factory=uuid4)
    conversation_id: UUID
    role: Role = Role.USER
    content: str
    created_at: datetime = Field(default_factory=utcnow)

    def as_prompt(self) -> dict:
        """Shape sent to the completion endpoint."""
        return {"role": self.role.value, "content": self.content}


class PendingAssistantMessage(BaseModel):
    """Assistant reply that is still streaming.

    Lives only for one turn. Every snapshot of the same turn shares ``id``,
    and the persisted Message reuses it once the stream completes.
    """

    id: UUID = Field(default_factory=uuid4)
    conversation_id: UUID
    content: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    role: Role = Role.ASSISTANT
    pending: bool = True

    def finalize(self) -> Message:
        return Message(
            id=self.id,
            conversation_id=self.conversation_id,
            role=Role.ASSISTANT,
            content=self.content,
            created_at=utcnow(),
        )


class Conversation(BaseModel):
    """Conversation model."""

    id: UUID = Field(default_factory=uuid4)
    title: str = DEFAULT_CONVERSATION_TITLE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ConversationCreate(BaseModel):
    title: Optional[str] = None


class ConversationUpdate(BaseModel):
    """Title edit; trimmed, 1 to 100 characters."""

    title: str

    @field_validator("title")
    @classmethod
    def _validate_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title cannot be empty")
        if len(value) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
        return value


class MessageCreate(BaseModel):
    """Defines the structure for message creation requests"""

    content: str


class TranscriptUpdate(BaseModel):
    """One change to a visible transcript, as seen by subscribers."""

    kind: Literal["appended", "updated", "removed"]
    message: Union[Message, PendingAssistantMessage]


def prompt_history(messages: List[Message]) -> List[dict]:
    return [message.as_prompt() for message in messages]
