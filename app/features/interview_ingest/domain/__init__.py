"""
Domain subpackage for the interview ingest feature.
"""

from .errors import (
    IngestError,
    InsufficientDataError,
    PoisonedConversationError,
    TransientFailureError,
    ValidationFailureError,
)
from .models import (
    Candidate,
    CandidateDraft,
    Conversation,
    Interview,
    PollSummary,
    TrackingRecord,
    TranscriptTurn,
)

__all__ = [
    "Candidate",
    "CandidateDraft",
    "Conversation",
    "IngestError",
    "InsufficientDataError",
    "Interview",
    "PoisonedConversationError",
    "PollSummary",
    "TrackingRecord",
    "TranscriptTurn",
    "TransientFailureError",
    "ValidationFailureError",
]
