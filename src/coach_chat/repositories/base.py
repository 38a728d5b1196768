"""Base repository interfaces."""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, List, Optional
from uuid import UUID

import structlog

from ..domain.errors import PersistenceFailure
from ..domain.models import Conversation, Message
from ..domain.planner import CalendarEvent, Habit, HabitStatus, HabitTracking, Task

logger = structlog.get_logger()


@asynccontextmanager
async def store_call(action: str, resource: str) -> AsyncIterator[None]:
    """Re-raise unexpected store errors as ``PersistenceFailure``."""
    try:
        yield
    except PersistenceFailure:
        raise
    except Exception as e:
        logger.error("store_call_failed", action=action, resource=resource, error=str(e))
        raise PersistenceFailure(action, resource, detail=str(e)) from e


class ConversationStore(ABC):
    """Conversation metadata CRUD."""

    @abstractmethod
    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        pass

    @abstractmethod
    async def list_conversations(self, limit: int = 100, offset: int = 0) -> List[Conversation]:
        """List conversations, most recently updated first."""
        pass

    @abstractmethod
    async def create_conversation(self, title: Optional[str] = None) -> Conversation:
        """Create a new conversation."""
        pass

    @abstractmethod
    async def update_title(self, conversation_id: UUID, title: str) -> Conversation:
        """Rename a conversation."""
        pass

    @abstractmethod
    async def delete_conversation(self, conversation_id: UUID) -> None:
        """Delete a conversation and its transcript."""
        pass


class TranscriptStore(ABC):
    """Ordered message log per conversation."""

    @abstractmethod
    async def add_message(self, message: Message) -> Message:
        """Add a message to a conversation."""
        pass

    @abstractmethod
    async def get_messages(
        self, conversation_id: UUID, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        """Get messages for a conversation, oldest first."""
        pass


class TaskStore(ABC):
    @abstractmethod
    async def list_tasks(self, completed: Optional[bool] = None) -> List[Task]:
        pass

    @abstractmethod
    async def add_task(self, task: Task) -> Task:
        pass

    @abstractmethod
    async def toggle_task(self, task_id: UUID) -> Task:
        pass

    @abstractmethod
    async def delete_task(self, task_id: UUID) -> None:
        pass


class EventStore(ABC):
    @abstractmethod
    async def list_events(self) -> List[CalendarEvent]:
        pass

    @abstractmethod
    async def add_event(self, event: CalendarEvent) -> CalendarEvent:
        pass

    @abstractmethod
    async def toggle_event(self, event_id: UUID) -> CalendarEvent:
        pass

    @abstractmethod
    async def delete_event(self, event_id: UUID) -> None:
        pass


class HabitStore(ABC):
    @abstractmethod
    async def list_habits(self) -> List[Habit]:
        """Active habits only."""
        pass

    @abstractmethod
    async def add_habit(self, habit: Habit) -> Habit:
        pass

    @abstractmethod
    async def deactivate_habit(self, habit_id: UUID) -> Habit:
        pass

    @abstractmethod
    async def list_tracking(self, habit_id: UUID) -> List[HabitTracking]:
        pass

    @abstractmethod
    async def set_tracking(self, habit_id: UUID, day: date, status: HabitStatus) -> HabitTracking:
        pass
