"""
Domain models for the interview ingest feature.

Conversations come from the provider and are read-only; candidates,
interviews and tracking records are owned by the local store. Result
objects returned by the poller and the reconciler live here too so the
API layer can serialize them without importing service code.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

PIPELINE_STAGE_FIRST_INTERVIEW = "FIRST_INTERVIEW"
UNKNOWN_CANDIDATE_NAME = "Unknown Candidate"
AUDIT_ACTOR = "elevenlabs_agent"
AUDIT_PATH = "elevenlabs_api"

IngestAction = Literal["created", "updated"]


class PoisonErrorType(StrEnum):
    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    API_ERROR = "API_ERROR"
    UNKNOWN = "UNKNOWN"


class SyncStatus(StrEnum):
    SYNCED = "synced"
    PARTIAL = "partial"
    OUT_OF_SYNC = "out_of_sync"


class SyncHealth(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass(slots=True)
class TranscriptTurn:
    """One speaker-tagged utterance."""

    role: str
    message: str
    time_in_call_secs: float | None = None

    @property
    def is_candidate(self) -> bool:
        return self.role in ("user", "human", "candidate")


@dataclass(slots=True)
class Conversation:
    """Provider conversation after key normalization (snake_case only)."""

    conversation_id: str
    agent_id: str | None = None
    created_at: datetime | None = None
    ended_at: datetime | None = None
    status: str | None = None
    transcript: list[TranscriptTurn] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    analysis: dict[str, Any] = field(default_factory=dict)
    data_collection_results: dict[str, Any] = field(default_factory=dict)
    evaluation_details: dict[str, Any] = field(default_factory=dict)
    conversation_metadata: dict[str, Any] = field(default_factory=dict)
    agent_data: dict[str, Any] = field(default_factory=dict)
    call_duration_secs: float | None = None
    audio_recording_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def activity_at(self) -> datetime | None:
        """Timestamp used for cursor advancement and window filtering."""
        return self.created_at or self.ended_at

    def candidate_utterances(self) -> list[str]:
        return [
            turn.message.strip()
            for turn in self.transcript
            if turn.is_candidate and len(turn.message.strip()) > 3
        ]


@dataclass(slots=True)
class CandidateDraft:
    """Extractor output. Every field is either present or None."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    overall_score: int | None = None
    sub_scores: dict[str, float] = field(default_factory=dict)
    structured_fields: dict[str, Any] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    development_areas: list[str] = field(default_factory=list)
    summary: str | None = None
    transcript_text: str = ""


@dataclass(slots=True)
class CandidateUpsert:
    """Values Ingest hands to the store for one atomic create-or-update."""

    email: str
    name: str | None
    phone: str | None
    conversation_id: str
    agent_id: str | None
    synthetic_email: bool
    score: int | None
    interview_date: datetime | None
    call_duration_secs: float | None
    interview_transcript: str
    interview_summary: str | None
    sub_scores: dict[str, float]
    structured_fields: dict[str, Any]
    audio_recording_url: str | None = None
    local_audio_file_id: str | None = None
    local_transcript_file_id: str | None = None
    pipeline_stage: str = PIPELINE_STAGE_FIRST_INTERVIEW

    @property
    def source_ref(self) -> str:
        return f"elevenlabs_{self.conversation_id}"

    @property
    def notes(self) -> str:
        return (
            "ElevenLabs interview processed automatically from conversation "
            f"{self.conversation_id}"
        )


@dataclass(slots=True)
class Candidate:
    id: str
    email: str
    name: str
    phone: str | None = None
    conversation_id: str | None = None
    agent_id: str | None = None
    pipeline_stage: str = PIPELINE_STAGE_FIRST_INTERVIEW
    score: int = 0
    source_ref: str | None = None
    synthetic_email: bool = False
    interview_date: datetime | None = None
    call_duration_secs: float | None = None
    interview_transcript: str | None = None
    interview_summary: str | None = None
    sub_scores: dict[str, float] = field(default_factory=dict)
    structured_fields: dict[str, Any] = field(default_factory=dict)
    audio_recording_url: str | None = None
    local_audio_file_id: str | None = None
    local_transcript_file_id: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class InterviewCreate:
    candidate_id: str
    candidate_email: str
    conversation_id: str
    scheduled_at: datetime | None
    completed_at: datetime | None
    summary: str | None
    transcript_url: str | None
    scorecard: dict[str, Any]
    green_flags: list[str]
    red_flags: list[str]
    status: str = "completed"


@dataclass(slots=True)
class Interview:
    id: str
    candidate_id: str
    conversation_id: str
    status: str
    scheduled_at: datetime | None = None
    completed_at: datetime | None = None
    summary: str | None = None
    scorecard: dict[str, Any] = field(default_factory=dict)
    green_flags: list[str] = field(default_factory=list)
    red_flags: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TrackingRecord:
    """High-water mark for one monitored agent."""

    agent_id: str
    is_active: bool = True
    last_processed_at: datetime | None = None
    last_conversation_id: str | None = None
    total_processed: int = 0
    total_failed: int = 0
    last_error: str | None = None
    last_error_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class IngestResult:
    action: IngestAction
    candidate: Candidate
    interview: Interview
    synthetic_email: bool = False


@dataclass(slots=True)
class PollSummary:
    found: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SyncVerificationResult:
    status: SyncStatus
    health: SyncHealth
    external_count: int
    local_count: int
    missing: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    duplicate: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)
    checked_at: datetime | None = None
    last_successful_sync_at: datetime | None = None
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def issue_count(self) -> int:
        return len(self.missing) + len(self.orphaned) + len(self.duplicate) + len(self.invalid)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["issue_count"] = self.issue_count
        return data


@dataclass(slots=True)
class BackfillResult:
    total: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    dry_run: bool = False
    would_process: int = 0
    conversation_ids: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        if not self.total:
            return self.failed == 0
        return self.failed < self.total / 2

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        return data


@dataclass(slots=True)
class GapAnalysis:
    window_days: int
    external_count: int
    local_count: int
    missing: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    inconsistent: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_gaps(self) -> bool:
        return bool(self.missing or self.orphaned or self.inconsistent)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["has_gaps"] = self.has_gaps
        return data


@dataclass(slots=True)
class HealResult:
    processed: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        if not self.processed:
            return self.failed == 0
        return self.failed < self.processed / 2

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        return data
