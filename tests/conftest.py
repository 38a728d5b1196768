"""Shared fakes for the chat pipeline tests."""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import List, Optional

import pytest

from coach_chat.repositories.memory import InMemoryRepository


def frame(text: str) -> bytes:
    """One SSE completion frame carrying ``text`` as the delta."""
    payload = {"choices": [{"index": 0, "delta": {"content": text}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


DONE = b"data: [DONE]\n\n"


class ScriptedCompletion:
    """Completion backend that replays canned chunks.

    Items in ``chunks`` that are exceptions are raised mid-stream. When
    ``gate`` is set, the stream pauses after the first chunk until the gate
    opens.
    """

    def __init__(self, chunks=(), error: Optional[Exception] = None, gate: Optional[asyncio.Event] = None):
        self.chunks = list(chunks)
        self.error = error
        self.gate = gate
        self.requests: List[List[dict]] = []
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def stream(self, messages):
        self.requests.append(messages)
        if self.error is not None:
            raise self.error
        self.opened += 1
        try:
            yield self._chunks()
        finally:
            self.closed += 1

    async def _chunks(self):
        for index, chunk in enumerate(self.chunks):
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk
            if index == 0 and self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)


class RecordingNotifier:
    def __init__(self):
        self.notifications = []

    def notify(self, conversation_id, error):
        self.notifications.append((conversation_id, error))


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()
