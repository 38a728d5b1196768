"""
FastAPI Application Module

HTTP surface of the coaching assistant: conversations with streamed AI
replies, plus the task, calendar and habit planners.

Key Features:
- Chat turns streamed to the client as server-sent events
- Per-conversation turn serialization (409 while a reply is in flight)
- Structured logging and Prometheus metrics
- CORS and OpenTelemetry support
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Counter, generate_latest
from structlog import get_logger

from ..domain.errors import ChatError, ConversationBusy, PersistenceFailure, RecordNotFound
from ..domain.models import (
    Conversation,
    ConversationCreate,
    ConversationUpdate,
    Message,
    MessageCreate,
)
from ..repositories.memory import InMemoryRepository
from ..services.feed import CONVERSATION_UPDATED, ConversationFeed
from ..services.session import SessionController
from ..services.transcript import TranscriptView
from .dependencies import (
    completion_client,
    get_feed,
    get_repository,
    get_session_controller,
)
from .planner import router as planner_router
from .sse import KEEP_ALIVE, SSEEvent

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

# Core operational metrics for monitoring
REQUESTS = Counter("requests_total", "Total requests", registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total failed requests", registry=CUSTOM_REGISTRY)
TURNS = Counter("chat_turns_total", "Chat turns started", registry=CUSTOM_REGISTRY)
TURN_FAILURES = Counter(
    "chat_turn_failures_total", "Chat turns that failed", ["kind"], registry=CUSTOM_REGISTRY
)

FEED_KEEP_ALIVE_SECONDS = 15.0

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles app startup/shutdown and resource management"""
    logger.info("application_startup_complete")

    yield

    await get_session_controller().aclose()
    await completion_client.aclose()
    logger.info("application_shutdown_complete")


app = FastAPI(
    title="Coach Chat API",
    description="Personal coaching assistant with streamed AI replies and planners",
    version="0.1.0",
    lifespan=lifespan
)

# Enable cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Set up request tracing
FastAPIInstrumentor.instrument_app(app)

app.include_router(planner_router)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Logs and counts requests"""
    logger.info("request_started", path=request.url.path, method=request.method)
    REQUESTS.inc()
    try:
        response = await call_next(request)
    except Exception as e:
        ERRORS.inc()
        logger.error("request_failed", path=request.url.path, error=str(e))
        raise
    if response.status_code >= 500:
        ERRORS.inc()
    return response


@app.exception_handler(RecordNotFound)
async def not_found_handler(request: Request, exc: RecordNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": exc.user_message})


@app.exception_handler(PersistenceFailure)
async def persistence_failure_handler(request: Request, exc: PersistenceFailure) -> JSONResponse:
    logger.error("persistence_failure", path=request.url.path, detail=exc.detail)
    return JSONResponse(status_code=500, content={"detail": exc.user_message})


@app.exception_handler(ConversationBusy)
async def busy_handler(request: Request, exc: ConversationBusy) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": exc.user_message})


@app.get("/conversations", response_model=List[Conversation])
async def list_conversations(
    limit: int = 100,
    offset: int = 0,
    repository: InMemoryRepository = Depends(get_repository)
) -> List[Conversation]:
    """Gets paginated conversation list, most recently updated first"""
    return await repository.list_conversations(limit=limit, offset=offset)


@app.post("/conversations", response_model=Conversation)
async def create_conversation(
    data: Optional[ConversationCreate] = None,
    repository: InMemoryRepository = Depends(get_repository)
) -> Conversation:
    """Starts a new conversation thread"""
    title = data.title.strip() if data and data.title else None
    return await repository.create_conversation(title)


@app.get("/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: UUID,
    repository: InMemoryRepository = Depends(get_repository)
) -> Conversation:
    """Retrieves a specific conversation by its ID"""
    conversation = await repository.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@app.patch("/conversations/{conversation_id}", response_model=Conversation)
async def rename_conversation(
    conversation_id: UUID,
    data: ConversationUpdate,
    repository: InMemoryRepository = Depends(get_repository)
) -> Conversation:
    return await repository.update_title(conversation_id, data.title)


@app.delete("/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: UUID,
    repository: InMemoryRepository = Depends(get_repository),
    controller: SessionController = Depends(get_session_controller)
) -> Response:
    await controller.cancel(conversation_id)
    await repository.delete_conversation(conversation_id)
    controller.forget(conversation_id)
    return Response(status_code=204)


@app.get("/conversations/{conversation_id}/messages", response_model=List[Message])
async def get_messages(
    conversation_id: UUID,
    limit: int = 100,
    offset: int = 0,
    repository: InMemoryRepository = Depends(get_repository)
) -> List[Message]:
    """Gets paginated message history for a conversation, oldest first"""
    return await repository.get_messages(conversation_id, limit=limit, offset=offset)


@app.post("/conversations/{conversation_id}/messages")
async def create_message(
    conversation_id: UUID,
    message: MessageCreate,
    repository: InMemoryRepository = Depends(get_repository),
    controller: SessionController = Depends(get_session_controller)
) -> StreamingResponse:
    """
    Runs one chat turn and streams it back as server-sent events.

    Each transcript change is sent as a ``transcript`` event; the stream
    ends with ``done`` (the stored reply) or ``error``.
    """
    if not message.content.strip():
        raise HTTPException(status_code=422, detail="Message content is required")
    conversation = await repository.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if controller.is_busy(conversation_id):
        raise ConversationBusy()

    view = await controller.open(conversation_id)
    updates = view.subscribe()
    try:
        task = controller.start(conversation_id, message.content)
    except ConversationBusy:
        view.unsubscribe(updates)
        raise
    task.add_done_callback(lambda _: updates.put_nowait(None))
    TURNS.inc()

    return StreamingResponse(
        _turn_events(controller, view, updates, task),
        media_type="text/event-stream",
    )


async def _turn_events(
    controller: SessionController,
    view: TranscriptView,
    updates: asyncio.Queue,
    task: asyncio.Task,
) -> AsyncIterator[str]:
    try:
        while True:
            update = await updates.get()
            if update is None:
                break
            yield SSEEvent("transcript", update.model_dump(mode="json")).encode()

        if task.cancelled():
            return
        outcome = task.result()
        if outcome.ok:
            yield SSEEvent("done", outcome.assistant_message.model_dump(mode="json")).encode()
        else:
            TURN_FAILURES.labels(kind=outcome.error.kind).inc()
            yield SSEEvent("error", _error_body(outcome.error)).encode()
    finally:
        view.unsubscribe(updates)
        if not task.done():
            # Client went away mid-stream.
            await controller.cancel(view.conversation_id)


def _error_body(error: ChatError) -> dict:
    return {"kind": error.kind, "message": error.user_message}


@app.get("/feed")
async def conversation_feed(feed: ConversationFeed = Depends(get_feed)) -> StreamingResponse:
    """Streams ``conversation:updated`` events when a conversation changes"""
    queue = await feed.subscribe()

    async def events() -> AsyncIterator[str]:
        try:
            while True:
                try:
                    conversation_id = await asyncio.wait_for(
                        queue.get(), timeout=FEED_KEEP_ALIVE_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield KEEP_ALIVE
                    continue
                yield SSEEvent(
                    CONVERSATION_UPDATED, {"conversation_id": str(conversation_id)}
                ).encode()
        finally:
            await feed.unsubscribe(queue)

    return StreamingResponse(events(), media_type="text/event-stream")


@app.get("/metrics")
async def metrics():
    """Provides Prometheus metrics for system monitoring"""
    return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")
