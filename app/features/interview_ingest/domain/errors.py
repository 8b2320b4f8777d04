"""
Error taxonomy for conversation ingestion.

InsufficientDataError and ValidationFailureError are permanent for the
item that raised them. TransientFailureError is eligible for backoff retry
through the poison handler. PoisonedConversationError marks an item that
exhausted its retry budget and waits for manual intervention.
"""


class IngestError(Exception):
    """Base class for per-conversation ingest failures."""

    retryable: bool = False

    def __init__(self, message: str, conversation_id: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.conversation_id = conversation_id
        self.details = details or {}


class InsufficientDataError(IngestError):
    """Neither a usable name nor a usable email could be extracted."""


class ValidationFailureError(IngestError):
    """Payload failed schema or agent authorization checks."""


class TransientFailureError(IngestError):
    """Network, rate-limit or unknown failure; retry with backoff."""

    retryable = True


class PoisonedConversationError(IngestError):
    """Conversation exceeded its retry ceiling."""
