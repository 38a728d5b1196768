"""Test suite for the task, calendar and habit planners."""

import asyncio
from datetime import date
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from coach_chat.api.app import app
from coach_chat.api.dependencies import get_planner_service
from coach_chat.domain.errors import PersistenceFailure
from coach_chat.domain.planner import HabitStatus, HabitTracking, TaskCreate
from coach_chat.repositories.planner import InMemoryPlannerRepository
from coach_chat.services.planner import PlannerService, completion_rate


@pytest.fixture
def planner():
    store = InMemoryPlannerRepository()
    service = PlannerService(store, store, store)
    app.dependency_overrides[get_planner_service] = lambda: service
    yield service
    app.dependency_overrides.clear()


def client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_task_lifecycle(planner):
    async with client() as ac:
        response = await ac.post("/tasks", json={"title": "  Walk 20 minutes ", "due_date": "2024-05-02"})
        assert response.status_code == 200
        task = response.json()
        assert task["title"] == "Walk 20 minutes"
        assert task["completed"] is False

        toggled = (await ac.post(f"/tasks/{task['id']}/toggle")).json()
        assert toggled["completed"] is True

        open_tasks = (await ac.get("/tasks", params={"completed": "false"})).json()
        done_tasks = (await ac.get("/tasks", params={"completed": "true"})).json()
        assert open_tasks == []
        assert [t["id"] for t in done_tasks] == [task["id"]]

        assert (await ac.delete(f"/tasks/{task['id']}")).status_code == 204
        assert (await ac.get("/tasks")).json() == []


@pytest.mark.asyncio
async def test_tasks_newest_first(planner):
    async with client() as ac:
        first = (await ac.post("/tasks", json={"title": "first"})).json()
        await asyncio.sleep(0.001)
        second = (await ac.post("/tasks", json={"title": "second"})).json()
        listed = [t["id"] for t in (await ac.get("/tasks")).json()]
        assert listed == [second["id"], first["id"]]


@pytest.mark.asyncio
async def test_blank_titles_are_rejected(planner):
    async with client() as ac:
        assert (await ac.post("/tasks", json={"title": "   "})).status_code == 422
        response = await ac.post("/events", json={"title": "", "event_date": "2024-05-02T10:00:00"})
        assert response.status_code == 422
        assert (await ac.post("/habits", json={"name": " "})).status_code == 422


@pytest.mark.asyncio
async def test_missing_records_return_not_found(planner):
    async with client() as ac:
        missing = uuid4()
        assert (await ac.post(f"/tasks/{missing}/toggle")).status_code == 404
        assert (await ac.delete(f"/events/{missing}")).status_code == 404
        assert (await ac.delete(f"/habits/{missing}")).status_code == 404


@pytest.mark.asyncio
async def test_events_in_date_order(planner):
    async with client() as ac:
        later = (await ac.post("/events", json={
            "title": "Dentist", "event_date": "2024-06-10T09:30:00", "event_type": "appointment"
        })).json()
        sooner = (await ac.post("/events", json={
            "title": "Run 5k", "event_date": "2024-06-01T00:00:00"
        })).json()

        assert sooner["event_type"] == "goal"
        listed = [e["id"] for e in (await ac.get("/events")).json()]
        assert listed == [sooner["id"], later["id"]]

        toggled = (await ac.post(f"/events/{later['id']}/toggle")).json()
        assert toggled["completed"] is True

        bad = await ac.post("/events", json={
            "title": "Party", "event_date": "2024-06-01T00:00:00", "event_type": "birthday"
        })
        assert bad.status_code == 422


@pytest.mark.asyncio
async def test_habit_day_cycles_through_statuses(planner):
    """Test a day cell advancing completed, failed, pending, completed."""
    async with client() as ac:
        habit = (await ac.post("/habits", json={"name": "Meditate"})).json()
        assert habit["color"] == "#10b981"
        url = f"/habits/{habit['id']}/tracking/2024-05-02/cycle"

        statuses = [(await ac.post(url)).json()["status"] for _ in range(4)]
        assert statuses == ["completed", "failed", "pending", "completed"]

        tracking = (await ac.get(f"/habits/{habit['id']}/tracking")).json()
        assert len(tracking) == 1
        assert tracking[0]["date"] == "2024-05-02"


@pytest.mark.asyncio
async def test_completion_rate(planner):
    async with client() as ac:
        habit = (await ac.post("/habits", json={"name": "Read", "color": "#3b82f6"})).json()
        base = f"/habits/{habit['id']}"

        empty = (await ac.get(f"{base}/completion-rate")).json()
        assert empty["percent"] == 0

        await ac.post(f"{base}/tracking/2024-05-01/cycle")
        await ac.post(f"{base}/tracking/2024-05-02/cycle")
        for _ in range(2):
            await ac.post(f"{base}/tracking/2024-05-03/cycle")

        rate = (await ac.get(f"{base}/completion-rate")).json()
        assert rate == {"habit_id": habit["id"], "tracked": 3, "completed": 2, "percent": 67}


@pytest.mark.asyncio
async def test_deleted_habit_is_hidden_but_keeps_history(planner):
    async with client() as ac:
        habit = (await ac.post("/habits", json={"name": "Stretch"})).json()
        await ac.post(f"/habits/{habit['id']}/tracking/2024-05-02/cycle")

        response = await ac.delete(f"/habits/{habit['id']}")
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        assert (await ac.get("/habits")).json() == []
        assert len((await ac.get(f"/habits/{habit['id']}/tracking")).json()) == 1


@pytest.mark.parametrize(
    "statuses, percent",
    [
        ([], 0),
        ([HabitStatus.COMPLETED], 100),
        ([HabitStatus.COMPLETED, HabitStatus.FAILED], 50),
        ([HabitStatus.COMPLETED, HabitStatus.PENDING, HabitStatus.PENDING], 33),
        ([HabitStatus.COMPLETED] * 5 + [HabitStatus.FAILED] * 3, 63),
    ],
)
def test_completion_rate_rounds_half_up(statuses, percent):
    habit_id = uuid4()
    records = [
        HabitTracking(habit_id=habit_id, date=date(2024, 5, day + 1), status=status)
        for day, status in enumerate(statuses)
    ]
    assert completion_rate(habit_id, records).percent == percent


@pytest.mark.asyncio
async def test_store_errors_become_persistence_failures():
    class BrokenTasks:
        async def add_task(self, task):
            raise OSError("connection lost")

    store = InMemoryPlannerRepository()
    service = PlannerService(BrokenTasks(), store, store)

    with pytest.raises(PersistenceFailure) as exc_info:
        await service.create_task(TaskCreate(title="x"))
    assert exc_info.value.user_message == "Could not save the task."
