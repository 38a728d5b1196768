"""Planner records: tasks, calendar events and habits."""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from .models import utcnow


def _required_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class Task(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    title: str
    description: Optional[str] = None
    completed: bool = False
    due_date: Optional[date] = None
    created_at: datetime = Field(default_factory=utcnow)


class TaskCreate(BaseModel):
    title: str
    description: Optional[str] = None
    due_date: Optional[date] = None

    check_title = field_validator("title")(_required_text)


class EventType(str, Enum):
    GOAL = "goal"
    APPOINTMENT = "appointment"


class CalendarEvent(BaseModel):
    """A dated goal or appointment on the calendar."""

    id: UUID = Field(default_factory=uuid4)
    title: str
    description: Optional[str] = None
    event_date: datetime
    event_type: EventType = EventType.GOAL
    completed: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class CalendarEventCreate(BaseModel):
    title: str
    description: Optional[str] = None
    event_date: datetime
    event_type: EventType = EventType.GOAL

    check_title = field_validator("title")(_required_text)


class HabitStatus(str, Enum):
    """Daily habit cell state; clicking a cell cycles through these in order."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    def next(self) -> "HabitStatus":
        cycle = list(HabitStatus)
        return cycle[(cycle.index(self) + 1) % len(cycle)]


class Habit(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str
    color: str = "#10b981"
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class HabitCreate(BaseModel):
    name: str
    color: str = "#10b981"

    check_name = field_validator("name")(_required_text)


class HabitTracking(BaseModel):
    """Status of one habit on one day."""

    id: UUID = Field(default_factory=uuid4)
    habit_id: UUID
    date: date
    status: HabitStatus = HabitStatus.PENDING


class CompletionRate(BaseModel):
    habit_id: UUID
    tracked: int
    completed: int
    percent: int
