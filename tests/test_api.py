"""Test suite for the API endpoints."""

import asyncio
import json
from typing import List, Tuple
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from coach_chat.api.app import app
from coach_chat.api.dependencies import get_feed, get_repository, get_session_controller
from coach_chat.domain.errors import QuotaExceeded, RateLimited
from coach_chat.services.feed import ConversationFeed
from coach_chat.services.session import SessionController

from conftest import DONE, ScriptedCompletion, frame


class Harness:
    """Fresh services wired into the app for one test."""

    def __init__(self, repository, notifier):
        self.repository = repository
        self.notifier = notifier
        self.feed = ConversationFeed()
        self.controller = SessionController(
            repository, ScriptedCompletion([frame("ok"), DONE]), notifier, feed=self.feed
        )

    def reply_with(self, completion: ScriptedCompletion) -> ScriptedCompletion:
        self.controller.completion = completion
        return completion


@pytest.fixture
def harness(repository, notifier):
    harness = Harness(repository, notifier)
    app.dependency_overrides[get_repository] = lambda: harness.repository
    app.dependency_overrides[get_session_controller] = lambda: harness.controller
    app.dependency_overrides[get_feed] = lambda: harness.feed
    yield harness
    app.dependency_overrides.clear()


def client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def parse_events(body: str) -> List[Tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        name, data = None, None
        for line in block.splitlines():
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        if name is not None:
            events.append((name, data))
    return events


@pytest.mark.asyncio
async def test_create_conversation(harness):
    """Test creating a new conversation."""
    async with client() as ac:
        response = await ac.post("/conversations")
        assert response.status_code == 200
        data = response.json()
        assert "id" in data
        assert data["title"] == "New conversation"
        assert "created_at" in data
        assert "updated_at" in data

        response = await ac.post("/conversations", json={"title": "  Morning routine  "})
        assert response.json()["title"] == "Morning routine"


@pytest.mark.asyncio
async def test_get_conversation(harness):
    async with client() as ac:
        created = (await ac.post("/conversations")).json()
        response = await ac.get(f"/conversations/{created['id']}")
        assert response.status_code == 200
        assert response.json() == created


@pytest.mark.asyncio
async def test_get_nonexistent_conversation(harness):
    async with client() as ac:
        missing = uuid4()
        assert (await ac.get(f"/conversations/{missing}")).status_code == 404
        assert (await ac.get(f"/conversations/{missing}/messages")).status_code == 404
        assert (await ac.patch(f"/conversations/{missing}", json={"title": "x"})).status_code == 404
        assert (await ac.delete(f"/conversations/{missing}")).status_code == 404
        response = await ac.post(f"/conversations/{missing}/messages", json={"content": "hi"})
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_error_handling(harness):
    """Test request validation errors."""
    async with client() as ac:
        response = await ac.get("/conversations/invalid-uuid")
        assert response.status_code == 422

        conversation_id = (await ac.post("/conversations")).json()["id"]
        response = await ac.post(
            f"/conversations/{conversation_id}/messages",
            json={"invalid_field": "test"}
        )
        assert response.status_code == 422

        response = await ac.post(f"/conversations/{conversation_id}/messages", json={"content": "   "})
        assert response.status_code == 422
        assert harness.controller.completion.requests == []


@pytest.mark.asyncio
async def test_rename_conversation(harness):
    async with client() as ac:
        conversation_id = (await ac.post("/conversations")).json()["id"]

        response = await ac.patch(f"/conversations/{conversation_id}", json={"title": "  Sleep plan "})
        assert response.status_code == 200
        assert response.json()["title"] == "Sleep plan"

        for title in ["", "   ", "x" * 101]:
            response = await ac.patch(f"/conversations/{conversation_id}", json={"title": title})
            assert response.status_code == 422

        response = await ac.patch(f"/conversations/{conversation_id}", json={"title": "x" * 100})
        assert response.status_code == 200


@pytest.mark.asyncio
async def test_delete_conversation_removes_messages(harness):
    async with client() as ac:
        conversation_id = (await ac.post("/conversations")).json()["id"]
        await ac.post(f"/conversations/{conversation_id}/messages", json={"content": "hi"})

        response = await ac.delete(f"/conversations/{conversation_id}")
        assert response.status_code == 204
        assert (await ac.get(f"/conversations/{conversation_id}")).status_code == 404
        assert (await ac.get(f"/conversations/{conversation_id}/messages")).status_code == 404
        assert UUID(conversation_id) not in harness.controller._views


@pytest.mark.asyncio
async def test_list_conversations_most_recent_first(harness):
    """Test that a conversation with a new turn moves to the top."""
    async with client() as ac:
        ids = []
        for _ in range(3):
            ids.append((await ac.post("/conversations")).json()["id"])
            await asyncio.sleep(0.001)

        listed = [c["id"] for c in (await ac.get("/conversations")).json()]
        assert listed == list(reversed(ids))

        await ac.post(f"/conversations/{ids[0]}/messages", json={"content": "hi"})
        listed = [c["id"] for c in (await ac.get("/conversations")).json()]
        assert listed[0] == ids[0]


@pytest.mark.asyncio
async def test_conversation_list_pagination(harness):
    async with client() as ac:
        for _ in range(5):
            await ac.post("/conversations")

        page = (await ac.get("/conversations", params={"limit": 2, "offset": 0})).json()
        rest = (await ac.get("/conversations", params={"limit": 10, "offset": 2})).json()
        assert len(page) == 2
        assert len(rest) == 3
        assert not {c["id"] for c in page} & {c["id"] for c in rest}


@pytest.mark.asyncio
async def test_streamed_turn(harness):
    """Test one turn streamed as transcript events and a final done event."""
    harness.reply_with(ScriptedCompletion([frame("Hola"), frame(" "), frame("mundo"), DONE]))
    async with client() as ac:
        conversation_id = (await ac.post("/conversations")).json()["id"]

        response = await ac.post(
            f"/conversations/{conversation_id}/messages",
            json={"content": "¿Por dónde empiezo?"}
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        events = parse_events(response.text)
        names = [name for name, _ in events]
        assert names == ["transcript"] * 5 + ["done"]

        updates = [data for _, data in events[:-1]]
        assert [u["kind"] for u in updates] == ["appended", "appended", "updated", "updated", "updated"]
        assert updates[0]["message"]["role"] == "user"
        assert [u["message"]["content"] for u in updates[1:4]] == ["Hola", "Hola ", "Hola mundo"]
        assert all(u["message"]["pending"] for u in updates[1:4])
        assert len({u["message"]["id"] for u in updates[1:]}) == 1

        done = events[-1][1]
        assert done["content"] == "Hola mundo"
        assert done["role"] == "assistant"

        history = (await ac.get(f"/conversations/{conversation_id}/messages")).json()
        assert [(m["role"], m["content"]) for m in history] == [
            ("user", "¿Por dónde empiezo?"),
            ("assistant", "Hola mundo"),
        ]
        assert history[1]["id"] == done["id"]


@pytest.mark.asyncio
@pytest.mark.parametrize("error, kind", [(RateLimited(), "rate_limited"), (QuotaExceeded(), "quota_exceeded")])
async def test_rejected_turn_streams_error(harness, error, kind):
    harness.reply_with(ScriptedCompletion(error=error))
    async with client() as ac:
        conversation_id = (await ac.post("/conversations")).json()["id"]

        response = await ac.post(f"/conversations/{conversation_id}/messages", json={"content": "hello"})
        events = parse_events(response.text)

        assert events[0][0] == "transcript"
        assert events[-1] == ("error", {"kind": kind, "message": error.user_message})

        history = (await ac.get(f"/conversations/{conversation_id}/messages")).json()
        assert [m["content"] for m in history] == ["hello"]
        assert len(harness.notifier.notifications) == 1


@pytest.mark.asyncio
async def test_busy_conversation_returns_conflict(harness):
    gate = asyncio.Event()
    harness.reply_with(ScriptedCompletion([frame("a"), frame("b"), DONE], gate=gate))
    async with client() as ac:
        conversation_id = (await ac.post("/conversations")).json()["id"]
        task = harness.controller.start(UUID(conversation_id), "first")
        await asyncio.sleep(0.01)

        response = await ac.post(f"/conversations/{conversation_id}/messages", json={"content": "second"})
        assert response.status_code == 409

        gate.set()
        outcome = await task
        assert outcome.ok

        history = (await ac.get(f"/conversations/{conversation_id}/messages")).json()
        assert [m["content"] for m in history] == ["first", "ab"]


@pytest.mark.asyncio
async def test_message_history_pagination(harness):
    async with client() as ac:
        conversation_id = (await ac.post("/conversations")).json()["id"]
        for i in range(3):
            harness.reply_with(ScriptedCompletion([frame(f"reply {i}"), DONE]))
            await ac.post(f"/conversations/{conversation_id}/messages", json={"content": f"message {i}"})

        page = (await ac.get(
            f"/conversations/{conversation_id}/messages", params={"limit": 2, "offset": 2}
        )).json()
        assert [m["content"] for m in page] == ["message 1", "reply 1"]


@pytest.mark.asyncio
async def test_metrics_endpoint(harness):
    async with client() as ac:
        await ac.get("/conversations")
        response = await ac.get("/metrics")
        assert response.status_code == 200
        assert "requests_total" in response.text
