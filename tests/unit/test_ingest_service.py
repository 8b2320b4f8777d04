from unittest.mock import AsyncMock

import httpx
import pytest

from app.features.interview_ingest.domain.errors import (
    InsufficientDataError,
    TransientFailureError,
    ValidationFailureError,
)
from app.features.interview_ingest.pipeline.ingest import IngestService, synthetic_email_for
from app.services.elevenlabs import ConversationAudio, ElevenLabsNetworkError
from app.services.storage import LocalFileStorage
from tests.conftest import AGENT_ID, make_conversation

NAME_ONLY_TRANSCRIPT = [
    {"role": "agent", "message": "Can I get your name?"},
    {"role": "user", "message": "My name is Sam Carter, happy to chat."},
]


@pytest.fixture
def ingest(store, fake_client, publisher):
    return IngestService(store, fake_client, AGENT_ID, publisher=publisher)


def test_synthetic_email_format():
    assert (
        synthetic_email_for("Dana Whitfield", "conv_0123456789abcdef")
        == "dana-whitfield.89abcdef@internal.temp"
    )
    assert synthetic_email_for(None, "conv_x") == "candidate.convx@internal.temp"


@pytest.mark.asyncio
async def test_processing_twice_keeps_one_candidate(ingest, store, fake_client, publisher):
    fake_client.add_conversation(make_conversation("conv_1"))

    first = await ingest.process_conversation("conv_1")
    second = await ingest.process_conversation("conv_1")

    assert first.action == "created"
    assert second.action == "updated"
    assert list(store.candidates) == ["dana.whitfield@example.com"]
    assert len(store.interviews) == 2
    assert store.audit_actions() == [
        "candidate_created_from_interview",
        "candidate_updated_from_interview",
    ]
    assert publisher.types() == ["candidate-created"]


@pytest.mark.asyncio
async def test_new_candidate_fields(ingest, store, fake_client):
    fake_client.add_conversation(
        make_conversation(
            "conv_1",
            data_collection={
                "communication_score": 80,
                "motivation_score": 90,
                "strengths": ["Rapport"],
                "development_areas": "Closing, Follow-up",
            },
        )
    )

    result = await ingest.process_conversation("conv_1")

    candidate = result.candidate
    assert candidate.name == "Dana Whitfield"
    assert candidate.score == 85
    assert candidate.pipeline_stage == "FIRST_INTERVIEW"
    assert candidate.source_ref == "elevenlabs_conv_1"
    assert candidate.agent_id == AGENT_ID
    assert candidate.call_duration_secs == 600.0
    assert candidate.synthetic_email is False

    interview = store.interviews[0]
    assert interview.scorecard == {
        "overall_score": 85,
        "communication_score": 80.0,
        "motivation_score": 90.0,
    }
    assert interview.green_flags == ["Rapport"]
    assert interview.red_flags == ["Closing", "Follow-up"]
    assert interview.status == "completed"


@pytest.mark.asyncio
async def test_name_only_gets_synthetic_email(ingest, store, fake_client):
    fake_client.add_conversation(
        make_conversation("conv_0123456789abcdef", transcript=NAME_ONLY_TRANSCRIPT)
    )

    result = await ingest.process_conversation("conv_0123456789abcdef")

    assert result.synthetic_email is True
    assert result.candidate.email == "sam-carter.89abcdef@internal.temp"
    assert result.candidate.synthetic_email is True


@pytest.mark.asyncio
async def test_reprocessing_reuses_email_found_by_conversation(ingest, store, fake_client):
    fake_client.add_conversation(make_conversation("conv_1", transcript=NAME_ONLY_TRANSCRIPT))
    first = await ingest.process_conversation("conv_1")

    second = await ingest.process_conversation("conv_1")

    assert second.action == "updated"
    assert second.candidate.email == first.candidate.email
    assert len(store.candidates) == 1


@pytest.mark.asyncio
async def test_update_keeps_known_fields(ingest, store, fake_client):
    fake_client.add_conversation(
        make_conversation(
            "conv_1",
            transcript=[
                {"role": "user", "message": "My name is Dana Whitfield, call 555-123-4567"},
                {"role": "user", "message": "Email is dana.whitfield@example.com"},
            ],
        )
    )
    fake_client.add_conversation(
        make_conversation(
            "conv_2",
            transcript=[{"role": "user", "message": "reach me at dana.whitfield@example.com"}],
        )
    )

    await ingest.process_conversation("conv_1")
    result = await ingest.process_conversation("conv_2")

    assert result.action == "updated"
    assert result.candidate.name == "Dana Whitfield"
    assert result.candidate.phone == "+15551234567"
    assert result.candidate.conversation_id == "conv_2"


@pytest.mark.asyncio
async def test_no_name_or_email_is_insufficient(ingest, store, fake_client):
    fake_client.add_conversation(
        make_conversation("conv_1", transcript=[{"role": "user", "message": "hello there"}])
    )

    with pytest.raises(InsufficientDataError):
        await ingest.process_conversation("conv_1")

    assert store.candidates == {}
    assert store.audit_actions() == ["conversation_processing_failed"]


@pytest.mark.asyncio
async def test_other_agent_is_rejected(ingest, store, fake_client):
    fake_client.add_conversation(make_conversation("conv_1", agent_id="agent_other"))

    with pytest.raises(ValidationFailureError):
        await ingest.process_conversation("conv_1")

    assert store.candidates == {}
    assert store.audit_logs[0]["payload"]["error_class"] == "ValidationFailureError"


@pytest.mark.asyncio
async def test_provider_error_is_transient(ingest, fake_client):
    fake_client.detail_errors["conv_1"] = ElevenLabsNetworkError("Network error: connection refused")

    with pytest.raises(TransientFailureError):
        await ingest.process_conversation("conv_1")


@pytest.mark.asyncio
async def test_store_error_is_transient(ingest, store, fake_client, monkeypatch):
    fake_client.add_conversation(make_conversation("conv_1"))
    monkeypatch.setattr(store, "upsert_candidate", AsyncMock(side_effect=RuntimeError("db down")))

    with pytest.raises(TransientFailureError) as exc_info:
        await ingest.process_conversation("conv_1")

    assert "db down" in str(exc_info.value)
    assert store.audit_actions() == ["conversation_processing_failed"]


@pytest.mark.asyncio
async def test_files_are_stored_when_storage_configured(store, fake_client, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"ID3audio", headers={"content-type": "audio/mpeg"})

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    storage = LocalFileStorage(tmp_path, http_client=http_client)
    ingest = IngestService(store, fake_client, AGENT_ID, file_storage=storage)

    payload = make_conversation("conv_1")
    payload["audio_recording_url"] = "https://audio.example.com/conv_1.mp3"
    fake_client.add_conversation(payload)

    result = await ingest.process_conversation("conv_1")
    await http_client.aclose()

    assert result.candidate.local_transcript_file_id == "transcripts/conv_1.txt"
    assert result.candidate.local_audio_file_id.startswith("audio/conv_1")
    assert await storage.retrieve(result.candidate.local_audio_file_id) == b"ID3audio"
    transcript = await storage.retrieve("transcripts/conv_1.txt")
    assert b"Dana Whitfield" in transcript


@pytest.mark.asyncio
async def test_audio_fetched_from_provider_when_no_url(store, fake_client, tmp_path):
    storage = LocalFileStorage(tmp_path)
    ingest = IngestService(store, fake_client, AGENT_ID, file_storage=storage)
    payload = make_conversation("conv_1")
    payload["has_audio"] = True
    fake_client.add_conversation(payload)
    fake_client.audio["conv_1"] = ConversationAudio(content=b"RIFFdata", content_type="audio/wav")

    result = await ingest.process_conversation("conv_1")

    assert result.candidate.local_audio_file_id.startswith("audio/conv_1")
    assert await storage.retrieve(result.candidate.local_audio_file_id) == b"RIFFdata"


@pytest.mark.asyncio
async def test_audio_failure_does_not_block_ingest(store, fake_client, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    ingest = IngestService(
        store, fake_client, AGENT_ID, file_storage=LocalFileStorage(tmp_path, http_client=http_client)
    )
    payload = make_conversation("conv_1")
    payload["audio_recording_url"] = "https://audio.example.com/conv_1.mp3"
    fake_client.add_conversation(payload)

    result = await ingest.process_conversation("conv_1")
    await http_client.aclose()

    assert result.action == "created"
    assert result.candidate.local_audio_file_id is None


@pytest.mark.asyncio
async def test_structured_name_is_kept_verbatim(ingest, fake_client):
    fake_client.add_conversation(
        make_conversation(
            "conv_0123456789abcdef",
            transcript=[{"role": "user", "message": "hello there"}],
            data_collection={"name": "Howard Stone"},
        )
    )

    result = await ingest.process_conversation("conv_0123456789abcdef")

    assert result.candidate.name == "Howard Stone"
    assert result.candidate.email == "howard-stone.89abcdef@internal.temp"


@pytest.mark.asyncio
async def test_structured_name_with_email(ingest, fake_client):
    fake_client.add_conversation(
        make_conversation(
            "conv_1",
            transcript=[{"role": "user", "message": "hello there"}],
            data_collection={"name": "Sandra Goodwin", "email": "sandra@example.com"},
        )
    )

    result = await ingest.process_conversation("conv_1")

    assert result.candidate.name == "Sandra Goodwin"
    assert result.candidate.email == "sandra@example.com"


@pytest.mark.asyncio
async def test_placeholder_name_is_not_an_identity(ingest, store, fake_client):
    fake_client.add_conversation(
        make_conversation(
            "conv_1",
            transcript=[{"role": "user", "message": "hello there"}],
            data_collection={"name": "Unknown Candidate"},
        )
    )

    with pytest.raises(InsufficientDataError):
        await ingest.process_conversation("conv_1")

    assert store.candidates == {}
