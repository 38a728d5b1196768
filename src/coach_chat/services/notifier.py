"""User-facing error reporting, injected into the session controller."""

from typing import Protocol
from uuid import UUID

import structlog

from ..domain.errors import ChatError

logger = structlog.get_logger()


class Notifier(Protocol):
    def notify(self, conversation_id: UUID, error: ChatError) -> None:
        ...


class LoggingNotifier:
    """Writes each notification to the structured log."""

    def notify(self, conversation_id: UUID, error: ChatError) -> None:
        logger.warning(
            "user_notified",
            conversation_id=str(conversation_id),
            kind=error.kind,
            message=error.user_message,
            detail=error.detail,
        )
