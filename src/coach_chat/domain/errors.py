"""Error taxonomy for chat turns and store operations.

Every error carries ``user_message``, the text shown to the person using the
app. Turn-level errors (``RateLimited``, ``QuotaExceeded``,
``TransportFailure``) are reported once per failed turn through the injected
notifier; store errors abort the operation without partial commits.
"""

from typing import Optional


class ChatError(Exception):
    """Base class for errors surfaced to users."""

    kind = "error"
    default_message = "Something went wrong."

    def __init__(self, user_message: Optional[str] = None, *, detail: Optional[str] = None):
        self.user_message = user_message or self.default_message
        self.detail = detail
        super().__init__(detail or self.user_message)


class RateLimited(ChatError):
    """Completion endpoint answered 429."""

    kind = "rate_limited"
    status_code = 429
    default_message = "Request limit exceeded. Please try again in a few moments."


class QuotaExceeded(ChatError):
    """Completion endpoint answered 402."""

    kind = "quota_exceeded"
    status_code = 402
    default_message = "AI credits are exhausted. Add credits to your account to keep chatting."


class TransportFailure(ChatError):
    """Network error, unexpected status, missing body or empty completion."""

    kind = "transport_failure"
    default_message = "Could not get a response from the assistant."


class StreamTimeout(TransportFailure):
    kind = "stream_timeout"
    default_message = "The assistant took too long to respond."


class PersistenceFailure(ChatError):
    """A store CRUD call failed."""

    kind = "persistence_failure"

    def __init__(self, action: str, resource: str, *, detail: Optional[str] = None):
        self.action = action
        self.resource = resource
        super().__init__(f"Could not {action} the {resource}.", detail=detail)


class RecordNotFound(PersistenceFailure):
    kind = "not_found"

    def __init__(self, resource: str, record_id: object):
        self.record_id = record_id
        super().__init__("find", resource, detail=f"{resource} {record_id} not found")


class ConversationBusy(ChatError):
    """A turn is already in flight for this conversation."""

    kind = "busy"
    default_message = "Wait for the current reply to finish before sending another message."
