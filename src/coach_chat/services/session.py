"""Conversation session controller: drives one chat turn end to end.

A turn moves through ``idle -> user_turn_persisted -> stream_open ->
streaming -> finalizing -> idle``. Any failure after the turn starts passes
through ``failed`` back to ``idle``, discards the in-progress assistant
message and reports the error once through the notifier. The user message
stays in the transcript once it has been persisted; the assistant reply is
persisted only after the stream completes.

Turns are serialized per conversation id: a second submission while one is
in flight raises ``ConversationBusy`` instead of queueing. Different
conversations stream concurrently.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set
from uuid import UUID

import structlog

from ..domain.errors import (
    ChatError,
    ConversationBusy,
    PersistenceFailure,
    StreamTimeout,
    TransportFailure,
)
from ..domain.models import Message, Role, prompt_history
from ..repositories.base import TranscriptStore, store_call
from .completion import CompletionBackend
from .decoder import DEFAULT_MAX_REBUFFER_ATTEMPTS, Delta, Done, Malformed, decode_stream
from .feed import ConversationFeed
from .merge import DeltaMergeEngine
from .notifier import Notifier
from .transcript import TranscriptView

logger = structlog.get_logger()


class TurnState(str, Enum):
    IDLE = "idle"
    USER_TURN_PERSISTED = "user_turn_persisted"
    STREAM_OPEN = "stream_open"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    FAILED = "failed"


@dataclass
class TurnOutcome:
    """Result of one turn. ``error`` is set when the turn failed."""

    conversation_id: UUID
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None
    error: Optional[ChatError] = None
    states: List[TurnState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class SessionController:
    """Owns the visible transcripts and in-flight turns of a chat surface."""

    def __init__(
        self,
        store: TranscriptStore,
        completion: CompletionBackend,
        notifier: Notifier,
        feed: Optional[ConversationFeed] = None,
        stream_timeout: Optional[float] = None,
        max_rebuffer_attempts: int = DEFAULT_MAX_REBUFFER_ATTEMPTS,
    ) -> None:
        self.store = store
        self.completion = completion
        self.notifier = notifier
        self.feed = feed
        self.stream_timeout = stream_timeout
        self.max_rebuffer_attempts = max_rebuffer_attempts
        self._views: Dict[UUID, TranscriptView] = {}
        self._busy: Set[UUID] = set()
        self._states: Dict[UUID, TurnState] = {}
        self._tasks: Dict[UUID, asyncio.Task] = {}

    def view(self, conversation_id: UUID) -> TranscriptView:
        view = self._views.get(conversation_id)
        if view is None:
            view = self._views[conversation_id] = TranscriptView(conversation_id)
        return view

    def is_busy(self, conversation_id: UUID) -> bool:
        return conversation_id in self._busy or conversation_id in self._tasks

    def state(self, conversation_id: UUID) -> TurnState:
        return self._states.get(conversation_id, TurnState.IDLE)

    async def open(self, conversation_id: UUID) -> TranscriptView:
        """Load the stored transcript into the conversation's view.

        A view with a turn in flight is returned as is.
        """
        view = self.view(conversation_id)
        if self.is_busy(conversation_id):
            return view
        try:
            async with store_call("load", "messages"):
                messages = await self.store.get_messages(conversation_id, limit=None)
        except PersistenceFailure as e:
            self.notifier.notify(conversation_id, e)
            raise
        view.load(messages)
        return view

    async def submit(self, conversation_id: UUID, text: str) -> TurnOutcome:
        """Run one turn. Failures are notified and returned in the outcome."""
        content = self._claim(conversation_id, text)
        return await self._run_turn(conversation_id, content)

    def start(self, conversation_id: UUID, text: str) -> "asyncio.Task[TurnOutcome]":
        """Run a turn as a task that ``cancel`` can stop.

        The conversation is busy from the moment this returns.
        """
        content = self._claim(conversation_id, text)
        task = asyncio.create_task(self._run_turn(conversation_id, content))
        self._tasks[conversation_id] = task

        def _forget(finished: asyncio.Task) -> None:
            if self._tasks.get(conversation_id) is finished:
                del self._tasks[conversation_id]
                # A task cancelled before it ran never reached its own cleanup.
                self._busy.discard(conversation_id)

        task.add_done_callback(_forget)
        return task

    def _claim(self, conversation_id: UUID, text: str) -> str:
        content = text.strip()
        if not content:
            raise ValueError("message text must not be blank")
        if self.is_busy(conversation_id):
            logger.warning("turn_rejected_busy", conversation_id=str(conversation_id))
            raise ConversationBusy()
        self._busy.add(conversation_id)
        return content

    async def _run_turn(self, conversation_id: UUID, content: str) -> TurnOutcome:
        log = logger.bind(conversation_id=str(conversation_id))
        view = self.view(conversation_id)
        outcome = TurnOutcome(conversation_id=conversation_id)
        engine: Optional[DeltaMergeEngine] = None
        log.info("turn_started", message_length=len(content))

        try:
            user_message = Message(conversation_id=conversation_id, role=Role.USER, content=content)
            view.upsert(user_message)
            try:
                async with store_call("save", "message"):
                    await self.store.add_message(user_message)
            except PersistenceFailure:
                view.discard(user_message.id)
                raise
            outcome.user_message = user_message
            self._set_state(outcome, TurnState.USER_TURN_PERSISTED)

            history = prompt_history(view.persisted())
            engine = DeltaMergeEngine(conversation_id)
            try:
                await asyncio.wait_for(
                    self._stream_reply(outcome, view, history, engine),
                    timeout=self.stream_timeout,
                )
            except asyncio.TimeoutError as e:
                raise StreamTimeout(detail=f"no completion within {self.stream_timeout}s") from e

            if not engine.content:
                raise TransportFailure(detail="completion stream ended without content")

            self._set_state(outcome, TurnState.FINALIZING)
            reply = engine.finalize()
            async with store_call("save", "reply"):
                await self.store.add_message(reply)
            view.upsert(reply)
            outcome.assistant_message = reply
            log.info("turn_completed", reply_length=len(reply.content))

            if self.feed is not None:
                await self.feed.mark_stale(conversation_id)
        except ChatError as e:
            self._fail(outcome, view, engine, e)
        except asyncio.CancelledError:
            if engine is not None:
                view.discard(engine.message_id)
            log.info("turn_cancelled")
            raise
        finally:
            self._busy.discard(conversation_id)
            self._set_state(outcome, TurnState.IDLE)
        return outcome

    async def cancel(self, conversation_id: UUID) -> bool:
        """Abort the in-flight turn, closing its transport. Nothing is persisted."""
        task = self._tasks.get(conversation_id)
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    def forget(self, conversation_id: UUID) -> None:
        """Drop the cached view and state of a conversation with no turn in flight."""
        if self.is_busy(conversation_id):
            raise ConversationBusy()
        self._views.pop(conversation_id, None)
        self._states.pop(conversation_id, None)

    async def aclose(self) -> None:
        for conversation_id in list(self._tasks):
            await self.cancel(conversation_id)

    async def _stream_reply(
        self,
        outcome: TurnOutcome,
        view: TranscriptView,
        history: List[dict],
        engine: DeltaMergeEngine,
    ) -> None:
        self._set_state(outcome, TurnState.STREAM_OPEN)
        async with self.completion.stream(history) as chunks:
            self._set_state(outcome, TurnState.STREAMING)
            events = decode_stream(chunks, max_rebuffer_attempts=self.max_rebuffer_attempts)
            try:
                async for event in events:
                    if isinstance(event, Delta):
                        view.upsert(engine.apply(event))
                    elif isinstance(event, Malformed):
                        logger.debug("stream_frame_skipped", conversation_id=str(outcome.conversation_id))
                    elif isinstance(event, Done):
                        break
            finally:
                await events.aclose()

    def _fail(
        self,
        outcome: TurnOutcome,
        view: TranscriptView,
        engine: Optional[DeltaMergeEngine],
        error: ChatError,
    ) -> None:
        if engine is not None:
            view.discard(engine.message_id)
        outcome.error = error
        self._set_state(outcome, TurnState.FAILED)
        logger.error(
            "turn_failed",
            conversation_id=str(outcome.conversation_id),
            kind=error.kind,
            detail=error.detail,
        )
        self.notifier.notify(outcome.conversation_id, error)

    def _set_state(self, outcome: TurnOutcome, state: TurnState) -> None:
        self._states[outcome.conversation_id] = state
        outcome.states.append(state)
        logger.debug("turn_state", conversation_id=str(outcome.conversation_id), state=state.value)
