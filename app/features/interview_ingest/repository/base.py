"""
Storage interface consumed by the ingest pipeline.

The poller, ingest service and reconciler receive an object satisfying
CandidateStore through their constructors; production wiring passes the
Postgres implementation and tests pass an in-memory one.
"""

from datetime import datetime
from typing import Any, Protocol

from app.features.interview_ingest.domain.models import (
    AUDIT_ACTOR,
    AUDIT_PATH,
    Candidate,
    CandidateUpsert,
    Interview,
    InterviewCreate,
    TrackingRecord,
)

TRACKING_COLUMNS = frozenset(
    {
        "is_active",
        "last_processed_at",
        "last_conversation_id",
        "total_processed",
        "total_failed",
        "last_error",
        "last_error_at",
    }
)


class CandidateStore(Protocol):
    async def get_tracking(self, agent_id: str) -> TrackingRecord | None: ...

    async def upsert_tracking(self, record: TrackingRecord) -> TrackingRecord: ...

    async def update_tracking(self, agent_id: str, changes: dict[str, Any]) -> TrackingRecord | None: ...

    async def get_candidate_by_conversation_id(self, conversation_id: str) -> Candidate | None: ...

    async def upsert_candidate(self, values: CandidateUpsert) -> tuple[Candidate, bool]:
        """Create or merge by email in one atomic step; returns (candidate, created)."""
        ...

    async def create_interview(self, values: InterviewCreate) -> Interview: ...

    async def create_audit_log(
        self,
        action: str,
        payload: dict[str, Any],
        actor: str = AUDIT_ACTOR,
        path_used: str = AUDIT_PATH,
    ) -> None: ...

    async def list_conversation_candidates(self, since: datetime | None = None) -> list[Candidate]:
        """Candidates with a non-null conversation_id, optionally interviewed on/after `since`."""
        ...
