"""Exception hierarchy for conversation-sync.

Every error raised across module boundaries derives from ChatSyncError so
callers can catch the whole family in one place.
"""


class ChatSyncError(Exception):
    """Base class for conversation-sync errors.

    Attributes:
        code: Machine readable error code (e.g. "NETWORK_ERROR")
        message: Human readable message
        extra: Additional context (conversation_id, http_status, ...)
    """

    def __init__(self, code: str, message: str, **extra: object) -> None:
        self.code = code
        self.message = message
        self.extra = extra
        super().__init__(message)


class NetworkError(ChatSyncError):
    """Connection failures, timeouts and other transport level errors."""


class ApiError(ChatSyncError):
    """The REST API answered with an error status or an unsuccessful envelope."""

    def __init__(self, code: str, message: str, http_status: int | None = None, **extra: object) -> None:
        super().__init__(code, message, **extra)
        self.http_status = http_status


class NotFoundError(ApiError):
    """The requested resource does not exist."""


class MalformedEvent(ChatSyncError):
    """A push event or API record could not be parsed."""


class InvariantViolation(ChatSyncError):
    """A store operation would break the id uniqueness or ordering invariants."""


class ConversationNotFound(ChatSyncError, KeyError):
    """A store operation referenced a conversation id that is not present."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(
            "CONVERSATION_NOT_FOUND",
            f"Unknown conversation: {conversation_id}",
            conversation_id=conversation_id,
        )
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return self.message
