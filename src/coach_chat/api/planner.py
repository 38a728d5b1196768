"""Task, calendar event and habit routes."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response

from ..domain.planner import (
    CalendarEvent,
    CalendarEventCreate,
    CompletionRate,
    Habit,
    HabitCreate,
    HabitTracking,
    Task,
    TaskCreate,
)
from ..services.planner import PlannerService
from .dependencies import get_planner_service

router = APIRouter()


@router.get("/tasks", response_model=List[Task])
async def list_tasks(
    completed: Optional[bool] = None,
    planner: PlannerService = Depends(get_planner_service)
) -> List[Task]:
    """Lists tasks newest first, optionally only open or only completed ones"""
    return await planner.list_tasks(completed)


@router.post("/tasks", response_model=Task)
async def create_task(data: TaskCreate, planner: PlannerService = Depends(get_planner_service)) -> Task:
    return await planner.create_task(data)


@router.post("/tasks/{task_id}/toggle", response_model=Task)
async def toggle_task(task_id: UUID, planner: PlannerService = Depends(get_planner_service)) -> Task:
    return await planner.toggle_task(task_id)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(task_id: UUID, planner: PlannerService = Depends(get_planner_service)) -> Response:
    await planner.delete_task(task_id)
    return Response(status_code=204)


@router.get("/events", response_model=List[CalendarEvent])
async def list_events(planner: PlannerService = Depends(get_planner_service)) -> List[CalendarEvent]:
    """Lists goals and appointments in date order"""
    return await planner.list_events()


@router.post("/events", response_model=CalendarEvent)
async def create_event(
    data: CalendarEventCreate,
    planner: PlannerService = Depends(get_planner_service)
) -> CalendarEvent:
    return await planner.create_event(data)


@router.post("/events/{event_id}/toggle", response_model=CalendarEvent)
async def toggle_event(event_id: UUID, planner: PlannerService = Depends(get_planner_service)) -> CalendarEvent:
    return await planner.toggle_event(event_id)


@router.delete("/events/{event_id}", status_code=204)
async def delete_event(event_id: UUID, planner: PlannerService = Depends(get_planner_service)) -> Response:
    await planner.delete_event(event_id)
    return Response(status_code=204)


@router.get("/habits", response_model=List[Habit])
async def list_habits(planner: PlannerService = Depends(get_planner_service)) -> List[Habit]:
    return await planner.list_habits()


@router.post("/habits", response_model=Habit)
async def create_habit(data: HabitCreate, planner: PlannerService = Depends(get_planner_service)) -> Habit:
    return await planner.create_habit(data)


@router.delete("/habits/{habit_id}", response_model=Habit)
async def delete_habit(habit_id: UUID, planner: PlannerService = Depends(get_planner_service)) -> Habit:
    """Deactivates a habit; its tracking history is kept"""
    return await planner.deactivate_habit(habit_id)


@router.get("/habits/{habit_id}/tracking", response_model=List[HabitTracking])
async def list_tracking(
    habit_id: UUID,
    planner: PlannerService = Depends(get_planner_service)
) -> List[HabitTracking]:
    return await planner.list_tracking(habit_id)


@router.post("/habits/{habit_id}/tracking/{day}/cycle", response_model=HabitTracking)
async def cycle_tracking(
    habit_id: UUID,
    day: date,
    planner: PlannerService = Depends(get_planner_service)
) -> HabitTracking:
    """Advances the day's status: pending, completed, failed, then pending again"""
    return await planner.cycle_day(habit_id, day)


@router.get("/habits/{habit_id}/completion-rate", response_model=CompletionRate)
async def get_completion_rate(
    habit_id: UUID,
    planner: PlannerService = Depends(get_planner_service)
) -> CompletionRate:
    return await planner.completion_rate(habit_id)
