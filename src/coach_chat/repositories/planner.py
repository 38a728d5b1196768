"""In-memory task, calendar and habit storage."""

import asyncio
from datetime import date
from typing import Dict, List, Optional, Tuple
from uuid import UUID

import structlog

from ..domain.errors import RecordNotFound
from ..domain.planner import CalendarEvent, Habit, HabitStatus, HabitTracking, Task
from .base import EventStore, HabitStore, TaskStore

logger = structlog.get_logger()


class InMemoryPlannerRepository(TaskStore, EventStore, HabitStore):
    """Planner records kept in process memory, guarded by one asyncio lock."""

    def __init__(self) -> None:
        self._tasks: Dict[UUID, Task] = {}
        self._events: Dict[UUID, CalendarEvent] = {}
        self._habits: Dict[UUID, Habit] = {}
        self._tracking: Dict[Tuple[UUID, date], HabitTracking] = {}
        self._async_lock = asyncio.Lock()

    # Tasks

    async def list_tasks(self, completed: Optional[bool] = None) -> List[Task]:
        async with self._async_lock:
            tasks = [
                task for task in self._tasks.values()
                if completed is None or task.completed == completed
            ]
            return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    async def add_task(self, task: Task) -> Task:
        async with self._async_lock:
            self._tasks[task.id] = task
            logger.info("task_created", task_id=str(task.id))
            return task

    async def toggle_task(self, task_id: UUID) -> Task:
        async with self._async_lock:
            task = self._get(self._tasks, "task", task_id)
            task.completed = not task.completed
            logger.info("task_toggled", task_id=str(task_id), completed=task.completed)
            return task

    async def delete_task(self, task_id: UUID) -> None:
        async with self._async_lock:
            self._get(self._tasks, "task", task_id)
            del self._tasks[task_id]
            logger.info("task_deleted", task_id=str(task_id))

    # Calendar events

    async def list_events(self) -> List[CalendarEvent]:
        async with self._async_lock:
            return sorted(self._events.values(), key=lambda e: e.event_date)

    async def add_event(self, event: CalendarEvent) -> CalendarEvent:
        async with self._async_lock:
            self._events[event.id] = event
            logger.info("event_created", event_id=str(event.id), event_type=event.event_type.value)
            return event

    async def toggle_event(self, event_id: UUID) -> CalendarEvent:
        async with self._async_lock:
            event = self._get(self._events, "event", event_id)
            event.completed = not event.completed
            logger.info("event_toggled", event_id=str(event_id), completed=event.completed)
            return event

    async def delete_event(self, event_id: UUID) -> None:
        async with self._async_lock:
            self._get(self._events, "event", event_id)
            del self._events[event_id]
            logger.info("event_deleted", event_id=str(event_id))

    # Habits

    async def list_habits(self) -> List[Habit]:
        async with self._async_lock:
            habits = [habit for habit in self._habits.values() if habit.is_active]
            return sorted(habits, key=lambda h: h.created_at)

    async def add_habit(self, habit: Habit) -> Habit:
        async with self._async_lock:
            self._habits[habit.id] = habit
            logger.info("habit_created", habit_id=str(habit.id))
            return habit

    async def deactivate_habit(self, habit_id: UUID) -> Habit:
        """Soft delete; tracking history is kept."""
        async with self._async_lock:
            habit = self._get(self._habits, "habit", habit_id)
            habit.is_active = False
            logger.info("habit_deactivated", habit_id=str(habit_id))
            return habit

    async def list_tracking(self, habit_id: UUID) -> List[HabitTracking]:
        async with self._async_lock:
            self._get(self._habits, "habit", habit_id)
            records = [t for (hid, _), t in self._tracking.items() if hid == habit_id]
            return sorted(records, key=lambda t: t.date)

    async def set_tracking(self, habit_id: UUID, day: date, status: HabitStatus) -> HabitTracking:
        async with self._async_lock:
            self._get(self._habits, "habit", habit_id)
            record = self._tracking.get((habit_id, day))
            if record is None:
                record = HabitTracking(habit_id=habit_id, date=day, status=status)
                self._tracking[(habit_id, day)] = record
            else:
                record.status = status
            logger.info("habit_tracked", habit_id=str(habit_id), day=day.isoformat(), status=status.value)
            return record

    @staticmethod
    def _get(records: Dict, resource: str, record_id: UUID):
        record = records.get(record_id)
        if record is None:
            logger.warning("record_not_found", resource=resource, record_id=str(record_id))
            raise RecordNotFound(resource, record_id)
        return record
