"""Task, calendar and habit operations on top of the planner stores."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from ..domain.planner import (
    CalendarEvent,
    CalendarEventCreate,
    CompletionRate,
    Habit,
    HabitCreate,
    HabitStatus,
    HabitTracking,
    Task,
    TaskCreate,
)
from ..repositories.base import EventStore, HabitStore, TaskStore, store_call


def completion_rate(habit_id: UUID, records: List[HabitTracking]) -> CompletionRate:
    """Share of tracked days marked completed, rounded half up to a whole percent."""
    completed = sum(1 for record in records if record.status == HabitStatus.COMPLETED)
    total = len(records)
    percent = int(completed * 100 / total + 0.5) if total else 0
    return CompletionRate(habit_id=habit_id, tracked=total, completed=completed, percent=percent)


class PlannerService:
    def __init__(self, tasks: TaskStore, events: EventStore, habits: HabitStore) -> None:
        self.tasks = tasks
        self.events = events
        self.habits = habits

    async def list_tasks(self, completed: Optional[bool] = None) -> List[Task]:
        async with store_call("load", "tasks"):
            return await self.tasks.list_tasks(completed)

    async def create_task(self, data: TaskCreate) -> Task:
        async with store_call("save", "task"):
            return await self.tasks.add_task(Task(**data.model_dump()))

    async def toggle_task(self, task_id: UUID) -> Task:
        async with store_call("update", "task"):
            return await self.tasks.toggle_task(task_id)

    async def delete_task(self, task_id: UUID) -> None:
        async with store_call("delete", "task"):
            await self.tasks.delete_task(task_id)

    async def list_events(self) -> List[CalendarEvent]:
        async with store_call("load", "events"):
            return await self.events.list_events()

    async def create_event(self, data: CalendarEventCreate) -> CalendarEvent:
        async with store_call("save", "event"):
            return await self.events.add_event(CalendarEvent(**data.model_dump()))

    async def toggle_event(self, event_id: UUID) -> CalendarEvent:
        async with store_call("update", "event"):
            return await self.events.toggle_event(event_id)

    async def delete_event(self, event_id: UUID) -> None:
        async with store_call("delete", "event"):
            await self.events.delete_event(event_id)

    async def list_habits(self) -> List[Habit]:
        async with store_call("load", "habits"):
            return await self.habits.list_habits()

    async def create_habit(self, data: HabitCreate) -> Habit:
        async with store_call("save", "habit"):
            return await self.habits.add_habit(Habit(**data.model_dump()))

    async def deactivate_habit(self, habit_id: UUID) -> Habit:
        async with store_call("delete", "habit"):
            return await self.habits.deactivate_habit(habit_id)

    async def list_tracking(self, habit_id: UUID) -> List[HabitTracking]:
        async with store_call("load", "habit tracking"):
            return await self.habits.list_tracking(habit_id)

    async def cycle_day(self, habit_id: UUID, day: date) -> HabitTracking:
        """Advance one day's cell: pending -> completed -> failed -> pending.

        An untracked day counts as pending, so the first cycle completes it.
        """
        async with store_call("update", "habit status"):
            records = await self.habits.list_tracking(habit_id)
            current = next((r.status for r in records if r.date == day), HabitStatus.PENDING)
            return await self.habits.set_tracking(habit_id, day, current.next())

    async def completion_rate(self, habit_id: UUID) -> CompletionRate:
        async with store_call("load", "habit tracking"):
            records = await self.habits.list_tracking(habit_id)
        return completion_rate(habit_id, records)
