import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from app.auth.verify import admin_dependency
from app.features.interview_ingest.domain.models import (
    UNKNOWN_CANDIDATE_NAME,
    Candidate,
    CandidateUpsert,
    Interview,
    InterviewCreate,
    TrackingRecord,
)
from app.features.interview_ingest.repository.base import TRACKING_COLUMNS
from app.services.elevenlabs import ConversationAudio, ConversationPage, ElevenLabsAPIError

AGENT_ID = "agent_test"
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


class FakeCandidateStore:
    """In-memory CandidateStore with the same merge rules as the SQL upsert."""

    def __init__(self):
        self.tracking: dict[str, TrackingRecord] = {}
        self.candidates: dict[str, Candidate] = {}
        self.interviews: list[Interview] = []
        self.audit_logs: list[dict] = []
        self.extra_candidates: list[Candidate] = []

    async def get_tracking(self, agent_id):
        record = self.tracking.get(agent_id)
        return replace(record) if record else None

    async def upsert_tracking(self, record):
        self.tracking[record.agent_id] = replace(record)
        return replace(record)

    async def update_tracking(self, agent_id, changes):
        unknown = set(changes) - TRACKING_COLUMNS
        if unknown:
            raise ValueError(f"Unknown tracking columns: {unknown}")
        record = self.tracking.get(agent_id)
        if record is None:
            return None
        for key, value in changes.items():
            setattr(record, key, value)
        return replace(record)

    async def get_candidate_by_conversation_id(self, conversation_id):
        for candidate in self.candidates.values():
            if candidate.conversation_id == conversation_id:
                return candidate
        return None

    async def upsert_candidate(self, values: CandidateUpsert):
        existing = self.candidates.get(values.email)
        if existing is None:
            candidate = Candidate(
                id=str(uuid.uuid4()),
                email=values.email,
                name=values.name or UNKNOWN_CANDIDATE_NAME,
                phone=values.phone,
                conversation_id=values.conversation_id,
                agent_id=values.agent_id,
                pipeline_stage=values.pipeline_stage,
                score=values.score or 0,
                source_ref=values.source_ref,
                synthetic_email=values.synthetic_email,
                interview_date=values.interview_date,
                call_duration_secs=values.call_duration_secs,
                interview_transcript=values.interview_transcript,
                interview_summary=values.interview_summary,
                sub_scores=values.sub_scores,
                structured_fields=values.structured_fields,
                audio_recording_url=values.audio_recording_url,
                local_audio_file_id=values.local_audio_file_id,
                local_transcript_file_id=values.local_transcript_file_id,
                notes=values.notes,
            )
            self.candidates[values.email] = candidate
            return candidate, True

        if values.name and values.name.strip():
            existing.name = values.name
        if values.phone:
            existing.phone = values.phone
        if values.score is not None:
            existing.score = values.score
        existing.conversation_id = values.conversation_id
        existing.agent_id = values.agent_id
        existing.interview_date = values.interview_date
        existing.call_duration_secs = values.call_duration_secs
        existing.interview_transcript = values.interview_transcript
        existing.interview_summary = values.interview_summary
        existing.sub_scores = values.sub_scores
        existing.structured_fields = values.structured_fields
        existing.synthetic_email = existing.synthetic_email and values.synthetic_email
        return existing, False

    async def create_interview(self, values: InterviewCreate):
        interview = Interview(
            id=str(uuid.uuid4()),
            candidate_id=values.candidate_id,
            conversation_id=values.conversation_id,
            status=values.status,
            scheduled_at=values.scheduled_at,
            completed_at=values.completed_at,
            summary=values.summary,
            scorecard=values.scorecard,
            green_flags=values.green_flags,
            red_flags=values.red_flags,
        )
        self.interviews.append(interview)
        return interview

    async def create_audit_log(self, action, payload, actor="elevenlabs_agent", path_used="elevenlabs_api"):
        self.audit_logs.append(
            {"action": action, "payload": payload, "actor": actor, "path_used": path_used}
        )

    async def list_conversation_candidates(self, since=None):
        rows = [c for c in self.candidates.values() if c.conversation_id] + self.extra_candidates
        if since is None:
            return rows
        return [c for c in rows if c.interview_date and c.interview_date >= since]

    def audit_actions(self) -> list[str]:
        return [entry["action"] for entry in self.audit_logs]


class FakeElevenLabsClient:
    """Serves canned listing pages and conversation details."""

    def __init__(self):
        self.details: dict[str, dict] = {}
        self.pages: list[ConversationPage] = []
        self.list_error: Exception | None = None
        self.detail_errors: dict[str, Exception] = {}
        self.audio: dict[str, ConversationAudio] = {}
        self.list_calls: list[dict] = []
        self.detail_calls: list[str] = []

    def add_conversation(self, payload: dict, listed: bool = True) -> None:
        self.details[payload["conversation_id"]] = payload
        if listed:
            if not self.pages:
                self.pages.append(ConversationPage())
            self.pages[0].conversations.append(
                {
                    "conversation_id": payload["conversation_id"],
                    "agent_id": payload.get("agent_id"),
                    "start_time_unix_secs": payload.get("metadata", {}).get("start_time_unix_secs"),
                    "call_duration_secs": payload.get("metadata", {}).get("call_duration_secs"),
                }
            )

    async def list_conversations(self, agent_id, limit=50, cursor=None, after=None, before=None):
        self.list_calls.append(
            {"agent_id": agent_id, "limit": limit, "cursor": cursor, "after": after, "before": before}
        )
        if self.list_error is not None:
            raise self.list_error
        if not self.pages:
            return ConversationPage()
        index = int(cursor) if cursor else 0
        return self.pages[index] if index < len(self.pages) else ConversationPage()

    async def get_conversation(self, conversation_id):
        self.detail_calls.append(conversation_id)
        if conversation_id in self.detail_errors:
            raise self.detail_errors[conversation_id]
        if conversation_id not in self.details:
            raise ElevenLabsAPIError("404 Not Found: conversation does not exist", status_code=404)
        return self.details[conversation_id]

    async def get_conversation_audio(self, conversation_id):
        if conversation_id not in self.audio:
            raise ElevenLabsAPIError("404 Not Found: conversation does not exist", status_code=404)
        return self.audio[conversation_id]

    async def close(self):
        return None


class RecordingPublisher:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def broadcast(self, event_type, data):
        self.events.append((event_type, data))
        return 0

    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


def make_conversation(
    conversation_id: str,
    *,
    start: datetime = NOW,
    agent_id: str = AGENT_ID,
    transcript: list[dict] | None = None,
    data_collection: dict | None = None,
    duration: float = 600,
) -> dict:
    if transcript is None:
        transcript = [
            {"role": "agent", "message": "Hi! Thanks for calling. What's your name?"},
            {"role": "user", "message": "My name is Dana Whitfield and I'm excited to be here."},
            {"role": "user", "message": "You can reach me at dana.whitfield@example.com anytime."},
        ]
    return {
        "conversation_id": conversation_id,
        "agent_id": agent_id,
        "status": "done",
        "transcript": transcript,
        "metadata": {
            "start_time_unix_secs": int(start.timestamp()),
            "call_duration_secs": duration,
        },
        "analysis": {
            "transcript_summary": "Candidate discussed sales background.",
            "data_collection_results": data_collection or {},
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeCandidateStore()


@pytest.fixture
def fake_client():
    return FakeElevenLabsClient()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def admin_override():
    def _override():
        return "test-admin-key"

    return _override


@pytest.fixture
def apply_admin_override(admin_override):
    def _apply(app):
        app.dependency_overrides[admin_dependency] = admin_override

    return _apply
