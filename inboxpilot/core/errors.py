"""
Application errors for clean API error handling.

Use ServiceUnavailableError when a dependency (vector store, embeddings, LLM,
mailbox, CRM) is misconfigured or unreachable so the API can return 503 with a
user-facing message. NotFoundError covers both "does not exist" and "belongs to
another owner"; callers never learn which.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. vector store, embeddings API) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a conversation or task does not exist or is not owned by the caller."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidStateError(NotFoundError):
    """Raised when a task is already terminal (completed or cancelled)."""


class TurnFailedError(Exception):
    """Raised when the language model fails mid-turn. No partial answer is kept."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ToolValidationError(ValueError):
    """Tool arguments do not satisfy the tool's parameter schema."""
