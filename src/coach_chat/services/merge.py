"""Folds streamed deltas into one growing assistant message."""

from typing import Optional
from uuid import UUID, uuid4

from ..domain.models import Message, PendingAssistantMessage
from .decoder import Delta


class DeltaMergeEngine:
    """Accumulates ``Delta`` text for a single turn.

    Text is concatenated raw, in arrival order. Each ``apply`` returns a fresh
    snapshot that shares the turn's message id, so consumers replace the
    previous snapshot instead of appending a new message.
    """

    def __init__(self, conversation_id: UUID, message_id: Optional[UUID] = None) -> None:
        self._pending = PendingAssistantMessage(
            id=message_id or uuid4(),
            conversation_id=conversation_id,
        )

    @property
    def message_id(self) -> UUID:
        return self._pending.id

    @property
    def content(self) -> str:
        return self._pending.content

    def apply(self, delta: Delta) -> PendingAssistantMessage:
        self._pending = self._pending.model_copy(
            update={"content": self._pending.content + delta.text}
        )
        return self._pending

    def snapshot(self) -> PendingAssistantMessage:
        return self._pending

    def finalize(self) -> Message:
        return self._pending.finalize()
