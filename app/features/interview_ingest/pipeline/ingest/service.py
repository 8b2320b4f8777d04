"""
Ingest - turns one extracted conversation into exactly one candidate.

The candidate write is a single atomic upsert keyed on email, so the
poller and the reconciler can ingest the same conversation concurrently
without creating duplicates. Every processed conversation leaves exactly
one audit entry, whether it succeeded or failed.
"""

import re
from typing import Any

from app.features.interview_ingest.domain.errors import (
    IngestError,
    InsufficientDataError,
    TransientFailureError,
    ValidationFailureError,
)
from app.features.interview_ingest.domain.models import (
    AUDIT_ACTOR,
    AUDIT_PATH,
    UNKNOWN_CANDIDATE_NAME,
    CandidateDraft,
    CandidateUpsert,
    Conversation,
    IngestResult,
    InterviewCreate,
)
from app.features.interview_ingest.pipeline.extraction import CandidateExtractor, candidate_extractor
from app.features.interview_ingest.pipeline.extraction.service import call_duration_seconds
from app.features.interview_ingest.pipeline.extraction.strategies import is_acceptable_email
from app.features.interview_ingest.pipeline.normalization import normalize_conversation
from app.features.interview_ingest.repository.base import CandidateStore
from app.infrastructure.audit import AuditLogger
from app.infrastructure.events import EventPublisher
from app.infrastructure.observability.logging import get_logger
from app.services.elevenlabs import ElevenLabsAPIError, ElevenLabsClient
from app.services.storage import FileStorage, FileStorageError

logger = get_logger(__name__)

SYNTHETIC_EMAIL_DOMAIN = "internal.temp"

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def usable_name(value: str | None) -> str | None:
    """Any non-blank name except the placeholder; transcript strategies filter their own matches."""
    if not value or not value.strip():
        return None
    name = value.strip()
    if name.lower() == UNKNOWN_CANDIDATE_NAME.lower():
        return None
    return name


def synthetic_email_for(name: str | None, conversation_id: str) -> str:
    """Deterministic placeholder: `{slug(name)}.{last 8 of conversation id}@internal.temp`."""
    slug = _SLUG_INVALID.sub("-", (name or "").lower()).strip("-") or "candidate"
    suffix = _SLUG_INVALID.sub("", conversation_id.lower())[-8:] or "unknown"
    return f"{slug}.{suffix}@{SYNTHETIC_EMAIL_DOMAIN}"


class IngestService:
    """Fetch, extract and upsert a conversation into the candidate store."""

    def __init__(
        self,
        store: CandidateStore,
        client: ElevenLabsClient,
        agent_id: str,
        extractor: CandidateExtractor | None = None,
        audit_logger: AuditLogger | None = None,
        publisher: EventPublisher | None = None,
        file_storage: FileStorage | None = None,
    ):
        self.store = store
        self.client = client
        self.agent_id = agent_id
        self.extractor = extractor or candidate_extractor
        self.audit = audit_logger or AuditLogger(store, actor=AUDIT_ACTOR, path_used=AUDIT_PATH)
        self.publisher = publisher
        self.file_storage = file_storage

    async def process_conversation(self, conversation_id: str) -> IngestResult:
        """
        Full pipeline for one conversation id.

        Raises:
            ValidationFailureError: payload unreadable or owned by another agent
            InsufficientDataError: neither a name nor an email could be extracted
            TransientFailureError: provider or storage failure worth retrying
        """
        try:
            try:
                payload = await self.client.get_conversation(conversation_id)
            except ElevenLabsAPIError as e:
                raise TransientFailureError(
                    str(e),
                    conversation_id=conversation_id,
                    details={"status_code": e.status_code},
                ) from e

            conversation = normalize_conversation(payload)
            if conversation.agent_id and conversation.agent_id != self.agent_id:
                raise ValidationFailureError(
                    f"Conversation belongs to unauthorized agent {conversation.agent_id}",
                    conversation_id=conversation_id,
                    details={"agent_id": conversation.agent_id, "expected": self.agent_id},
                )

            draft = self.extractor.extract(conversation)
            file_ids = await self._store_files(conversation, draft)
            return await self.ingest(draft, conversation, **file_ids)

        except IngestError as e:
            await self._audit_failure(conversation_id, e)
            raise
        except Exception as e:
            # Store/database failures surface here; the poller retries them.
            await self._audit_failure(conversation_id, e)
            raise TransientFailureError(str(e), conversation_id=conversation_id) from e

    async def ingest(
        self,
        draft: CandidateDraft,
        conversation: Conversation,
        local_audio_file_id: str | None = None,
        local_transcript_file_id: str | None = None,
    ) -> IngestResult:
        conversation_id = conversation.conversation_id
        name = usable_name(draft.name)
        real_email = draft.email if is_acceptable_email(draft.email) else None

        if not name and not real_email:
            raise InsufficientDataError(
                "No usable name or email extracted",
                conversation_id=conversation_id,
                details={"extracted_email": draft.email, "extracted_phone": draft.phone},
            )

        email, synthetic = await self._resolve_email(name, real_email, conversation_id)

        values = CandidateUpsert(
            email=email,
            name=name,
            phone=draft.phone,
            conversation_id=conversation_id,
            agent_id=conversation.agent_id or self.agent_id,
            synthetic_email=synthetic,
            score=draft.overall_score,
            interview_date=conversation.activity_at,
            call_duration_secs=call_duration_seconds(conversation),
            interview_transcript=draft.transcript_text,
            interview_summary=draft.summary,
            sub_scores=draft.sub_scores,
            structured_fields=draft.structured_fields,
            audio_recording_url=conversation.audio_recording_url,
            local_audio_file_id=local_audio_file_id,
            local_transcript_file_id=local_transcript_file_id,
        )
        candidate, created = await self.store.upsert_candidate(values)

        scorecard: dict[str, Any] = {"overall_score": draft.overall_score, **draft.sub_scores}
        interview = await self.store.create_interview(
            InterviewCreate(
                candidate_id=candidate.id,
                candidate_email=candidate.email,
                conversation_id=conversation_id,
                scheduled_at=conversation.created_at,
                completed_at=conversation.ended_at or conversation.created_at,
                summary=draft.summary,
                transcript_url=conversation.audio_recording_url,
                scorecard=scorecard,
                green_flags=draft.strengths,
                red_flags=draft.development_areas,
            )
        )

        action = "created" if created else "updated"
        logger.info(
            "Conversation ingested",
            conversation_id=conversation_id,
            candidate_id=candidate.id,
            action=action,
            synthetic_email=synthetic,
            score=draft.overall_score,
        )

        await self.audit.log(
            f"candidate_{action}_from_interview",
            {
                "candidate_id": candidate.id,
                "interview_id": interview.id,
                "conversation_id": conversation_id,
                "agent_id": values.agent_id,
                "email": candidate.email,
                "synthetic_email": synthetic,
                "score": draft.overall_score,
            },
        )
        if created and self.publisher is not None:
            self.publisher.broadcast(
                "candidate-created",
                {
                    "candidate_id": candidate.id,
                    "name": candidate.name,
                    "email": candidate.email,
                    "conversation_id": conversation_id,
                    "score": candidate.score,
                    "pipeline_stage": candidate.pipeline_stage,
                },
            )

        return IngestResult(
            action=action, candidate=candidate, interview=interview, synthetic_email=synthetic
        )

    async def _resolve_email(
        self, name: str | None, real_email: str | None, conversation_id: str
    ) -> tuple[str, bool]:
        if real_email:
            return real_email.strip().lower(), False

        existing = await self.store.get_candidate_by_conversation_id(conversation_id)
        if existing is not None:
            return existing.email, existing.synthetic_email

        placeholder = synthetic_email_for(name, conversation_id)
        logger.warning(
            "No usable email, using placeholder",
            conversation_id=conversation_id,
            placeholder=placeholder,
        )
        return placeholder, True

    async def _store_files(
        self, conversation: Conversation, draft: CandidateDraft
    ) -> dict[str, str | None]:
        file_ids: dict[str, str | None] = {
            "local_audio_file_id": None,
            "local_transcript_file_id": None,
        }
        if self.file_storage is None:
            return file_ids

        conversation_id = conversation.conversation_id
        if draft.transcript_text:
            try:
                file_ids["local_transcript_file_id"] = await self.file_storage.store_transcript(
                    draft.transcript_text, conversation_id
                )
            except (FileStorageError, OSError) as e:
                logger.error(
                    "Failed to store transcript", conversation_id=conversation_id, error=str(e)
                )

        if conversation.audio_recording_url or conversation.raw.get("has_audio"):
            try:
                file_ids["local_audio_file_id"] = await self._store_audio(conversation)
            except (FileStorageError, ElevenLabsAPIError, OSError) as e:
                logger.error(
                    "Failed to store audio recording",
                    conversation_id=conversation_id,
                    error=str(e),
                )
        return file_ids

    async def _store_audio(self, conversation: Conversation) -> str | None:
        """Download from the recording URL, else fetch the audio from the provider."""
        conversation_id = conversation.conversation_id
        if conversation.audio_recording_url:
            return await self.file_storage.download_audio(
                conversation.audio_recording_url, conversation_id
            )

        audio = await self.client.get_conversation_audio(conversation_id)
        if audio.content:
            return await self.file_storage.store_audio(
                audio.content, conversation_id, audio.content_type
            )
        if audio.url:
            return await self.file_storage.download_audio(audio.url, conversation_id)
        return None

    async def _audit_failure(self, conversation_id: str, error: Exception) -> None:
        await self.audit.log(
            "conversation_processing_failed",
            {
                "conversation_id": conversation_id,
                "agent_id": self.agent_id,
                "error": str(error),
                "error_class": type(error).__name__,
            },
        )
