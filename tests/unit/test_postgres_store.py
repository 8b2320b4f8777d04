from unittest.mock import AsyncMock

import pytest

from app.features.interview_ingest.domain.models import (
    CandidateUpsert,
    InterviewCreate,
    TrackingRecord,
)
from app.features.interview_ingest.repository import PostgresCandidateStore
from tests.conftest import AGENT_ID, NOW

MODULE = "app.features.interview_ingest.repository.postgres_store"


def _candidate_row(**overrides):
    row = {
        "id": "5f0c7f5e-0000-4000-8000-000000000001",
        "email": "dana@example.com",
        "name": "Dana Whitfield",
        "phone": None,
        "conversation_id": "conv_1",
        "agent_id": AGENT_ID,
        "pipeline_stage": "FIRST_INTERVIEW",
        "score": 80,
        "source_ref": "elevenlabs_conv_1",
        "synthetic_email": False,
        "interview_date": NOW,
        "call_duration_secs": 600.0,
        "interview_transcript": "user: hi",
        "interview_summary": "summary",
        "sub_scores": {"communication_score": 80},
        "structured_fields": {},
        "audio_recording_url": None,
        "local_audio_file_id": None,
        "local_transcript_file_id": None,
        "notes": "notes",
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def _upsert_values(**overrides):
    values = {
        "email": "dana@example.com",
        "name": "Dana Whitfield",
        "phone": None,
        "conversation_id": "conv_1",
        "agent_id": AGENT_ID,
        "synthetic_email": False,
        "score": 80,
        "interview_date": NOW,
        "call_duration_secs": 600.0,
        "interview_transcript": "user: hi",
        "interview_summary": "summary",
        "sub_scores": {"communication_score": 80},
        "structured_fields": {},
    }
    values.update(overrides)
    return CandidateUpsert(**values)


@pytest.mark.asyncio
async def test_upsert_candidate_reports_insert(monkeypatch):
    fetch_one = AsyncMock(return_value=_candidate_row(inserted=True))
    monkeypatch.setattr(f"{MODULE}.fetch_one", fetch_one)

    candidate, created = await PostgresCandidateStore().upsert_candidate(_upsert_values())

    assert created is True
    assert candidate.email == "dana@example.com"
    assert candidate.sub_scores == {"communication_score": 80}
    query, params = fetch_one.await_args.args
    assert "ON CONFLICT (email)" in query
    assert params["source_ref"] == "elevenlabs_conv_1"
    assert params["default_name"] == "Unknown Candidate"


@pytest.mark.asyncio
async def test_upsert_candidate_reports_update(monkeypatch):
    monkeypatch.setattr(
        f"{MODULE}.fetch_one", AsyncMock(return_value=_candidate_row(inserted=False))
    )

    _, created = await PostgresCandidateStore().upsert_candidate(_upsert_values(name=None))

    assert created is False


@pytest.mark.asyncio
async def test_update_tracking_rejects_unknown_columns(monkeypatch):
    fetch_one = AsyncMock()
    monkeypatch.setattr(f"{MODULE}.fetch_one", fetch_one)

    with pytest.raises(ValueError, match="agent_id"):
        await PostgresCandidateStore().update_tracking(AGENT_ID, {"agent_id": "other"})

    fetch_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_tracking_binds_named_params(monkeypatch):
    fetch_one = AsyncMock(
        return_value={
            "agent_id": AGENT_ID,
            "is_active": True,
            "last_processed_at": NOW,
            "last_conversation_id": "conv_9",
            "total_processed": 3,
            "total_failed": 0,
            "last_error": None,
            "last_error_at": None,
        }
    )
    monkeypatch.setattr(f"{MODULE}.fetch_one", fetch_one)

    record = await PostgresCandidateStore().update_tracking(
        AGENT_ID, {"last_processed_at": NOW, "last_conversation_id": "conv_9"}
    )

    assert record == TrackingRecord(
        agent_id=AGENT_ID,
        last_processed_at=NOW,
        last_conversation_id="conv_9",
        total_processed=3,
    )
    _, params = fetch_one.await_args.args
    assert params == {"last_processed_at": NOW, "last_conversation_id": "conv_9", "agent_id": AGENT_ID}


@pytest.mark.asyncio
async def test_get_tracking_missing(monkeypatch):
    monkeypatch.setattr(f"{MODULE}.fetch_one", AsyncMock(return_value=None))

    assert await PostgresCandidateStore().get_tracking(AGENT_ID) is None


@pytest.mark.asyncio
async def test_create_interview_maps_row(monkeypatch):
    fetch_one = AsyncMock(
        return_value={
            "id": "i-1",
            "candidate_id": "c-1",
            "conversation_id": "conv_1",
            "status": "completed",
            "scheduled_at": NOW,
            "completed_at": NOW,
            "summary": "summary",
            "scorecard_json": {"overall_score": 80},
            "green_flags": ["Rapport"],
            "red_flags": [],
        }
    )
    monkeypatch.setattr(f"{MODULE}.fetch_one", fetch_one)

    interview = await PostgresCandidateStore().create_interview(
        InterviewCreate(
            candidate_id="c-1",
            candidate_email="dana@example.com",
            conversation_id="conv_1",
            scheduled_at=NOW,
            completed_at=NOW,
            summary="summary",
            transcript_url=None,
            scorecard={"overall_score": 80},
            green_flags=["Rapport"],
            red_flags=[],
        )
    )

    assert interview.id == "i-1"
    assert interview.scorecard == {"overall_score": 80}
    assert interview.green_flags == ["Rapport"]


@pytest.mark.asyncio
async def test_list_conversation_candidates_filters_by_window(monkeypatch):
    fetch_all = AsyncMock(return_value=[_candidate_row()])
    monkeypatch.setattr(f"{MODULE}.fetch_all", fetch_all)

    candidates = await PostgresCandidateStore().list_conversation_candidates(since=NOW)

    assert [c.conversation_id for c in candidates] == ["conv_1"]
    query, params = fetch_all.await_args.args
    assert "interview_date >= %s" in query
    assert params == (NOW,)


@pytest.mark.asyncio
async def test_create_audit_log(monkeypatch):
    execute_query = AsyncMock(return_value=1)
    monkeypatch.setattr(f"{MODULE}.execute_query", execute_query)

    await PostgresCandidateStore().create_audit_log("conversation_processing_failed", {"a": 1})

    _, params = execute_query.await_args.args
    assert params[0] == "elevenlabs_agent"
    assert params[1] == "conversation_processing_failed"
    assert params[3] == "elevenlabs_api"
