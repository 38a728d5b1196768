"""Service instances shared by the API routes."""

from ..config import Settings
from ..repositories.memory import InMemoryRepository
from ..repositories.planner import InMemoryPlannerRepository
from ..services.completion import CompletionClient
from ..services.feed import ConversationFeed
from ..services.notifier import LoggingNotifier
from ..services.planner import PlannerService
from ..services.session import SessionController

settings = Settings()

# Core service instances
repository = InMemoryRepository()
planner_repository = InMemoryPlannerRepository()
planner_service = PlannerService(planner_repository, planner_repository, planner_repository)
feed = ConversationFeed()
completion_client = CompletionClient(settings)
session_controller = SessionController(
    repository,
    completion_client,
    LoggingNotifier(),
    feed=feed,
    stream_timeout=settings.stream_timeout,
    max_rebuffer_attempts=settings.max_rebuffer_attempts,
)


def get_repository() -> InMemoryRepository:
    """Returns the conversation storage instance"""
    return repository


def get_planner_service() -> PlannerService:
    return planner_service


def get_feed() -> ConversationFeed:
    return feed


def get_session_controller() -> SessionController:
    """Returns the chat turn controller"""
    return session_controller
