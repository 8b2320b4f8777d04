"""
Postgres implementation of the candidate store.

Candidate writes go through a single INSERT ... ON CONFLICT (email) statement
so two concurrent ingest callers (poller and reconciler) cannot both insert
the same never-seen candidate. `xmax = 0` on the returned row tells a fresh
insert apart from a conflict update.
"""

import json
from datetime import datetime
from functools import partial
from typing import Any

from psycopg import sql
from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one
from app.features.interview_ingest.domain.models import (
    AUDIT_ACTOR,
    AUDIT_PATH,
    UNKNOWN_CANDIDATE_NAME,
    Candidate,
    CandidateUpsert,
    Interview,
    InterviewCreate,
    TrackingRecord,
)
from app.infrastructure.observability.logging import get_logger

from .base import TRACKING_COLUMNS

logger = get_logger(__name__)

_json_dumps = partial(json.dumps, default=str)


def _jsonb(value: Any) -> Jsonb:
    return Jsonb(value, dumps=_json_dumps)


CANDIDATE_COLUMNS = """
    id::text AS id, email, name, phone, conversation_id, agent_id, pipeline_stage,
    score, source_ref, synthetic_email, interview_date, call_duration_secs,
    interview_transcript, interview_summary, sub_scores, structured_fields,
    audio_recording_url, local_audio_file_id, local_transcript_file_id, notes,
    created_at, updated_at
"""

TRACKING_SELECT = """
    SELECT agent_id, is_active, last_processed_at, last_conversation_id,
           total_processed, total_failed, last_error, last_error_at
    FROM elevenlabs_tracking
"""

UPSERT_CANDIDATE_SQL = f"""
    INSERT INTO candidates (
        email, name, phone, conversation_id, agent_id, pipeline_stage, score,
        source_ref, synthetic_email, interview_date, call_duration_secs,
        interview_score, interview_transcript, interview_summary, sub_scores,
        structured_fields, audio_recording_url, local_audio_file_id,
        local_transcript_file_id, notes, created_at, updated_at
    ) VALUES (
        %(email)s,
        COALESCE(NULLIF(%(name)s::text, ''), %(default_name)s),
        NULLIF(%(phone)s::text, ''),
        %(conversation_id)s, %(agent_id)s, %(pipeline_stage)s,
        COALESCE(%(score)s::int, 0),
        %(source_ref)s, %(synthetic_email)s, %(interview_date)s, %(call_duration_secs)s,
        %(score)s::int, %(interview_transcript)s, %(interview_summary)s, %(sub_scores)s,
        %(structured_fields)s, %(audio_recording_url)s, %(local_audio_file_id)s,
        %(local_transcript_file_id)s, %(notes)s, NOW(), NOW()
    )
    ON CONFLICT (email) DO UPDATE SET
        name = CASE
            WHEN NULLIF(%(name)s::text, '') IS NULL THEN candidates.name
            ELSE EXCLUDED.name
        END,
        phone = COALESCE(EXCLUDED.phone, candidates.phone),
        conversation_id = EXCLUDED.conversation_id,
        agent_id = EXCLUDED.agent_id,
        score = COALESCE(%(score)s::int, candidates.score),
        interview_score = EXCLUDED.interview_score,
        interview_date = EXCLUDED.interview_date,
        call_duration_secs = EXCLUDED.call_duration_secs,
        interview_transcript = EXCLUDED.interview_transcript,
        interview_summary = EXCLUDED.interview_summary,
        sub_scores = EXCLUDED.sub_scores,
        structured_fields = EXCLUDED.structured_fields,
        audio_recording_url = COALESCE(EXCLUDED.audio_recording_url, candidates.audio_recording_url),
        local_audio_file_id = COALESCE(EXCLUDED.local_audio_file_id, candidates.local_audio_file_id),
        local_transcript_file_id = COALESCE(
            EXCLUDED.local_transcript_file_id, candidates.local_transcript_file_id
        ),
        synthetic_email = candidates.synthetic_email AND EXCLUDED.synthetic_email,
        updated_at = NOW()
    RETURNING {CANDIDATE_COLUMNS}, (xmax = 0) AS inserted
"""


def _row_to_candidate(row: dict[str, Any]) -> Candidate:
    return Candidate(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        phone=row.get("phone"),
        conversation_id=row.get("conversation_id"),
        agent_id=row.get("agent_id"),
        pipeline_stage=row.get("pipeline_stage") or "FIRST_INTERVIEW",
        score=row.get("score") or 0,
        source_ref=row.get("source_ref"),
        synthetic_email=bool(row.get("synthetic_email")),
        interview_date=row.get("interview_date"),
        call_duration_secs=row.get("call_duration_secs"),
        interview_transcript=row.get("interview_transcript"),
        interview_summary=row.get("interview_summary"),
        sub_scores=row.get("sub_scores") or {},
        structured_fields=row.get("structured_fields") or {},
        audio_recording_url=row.get("audio_recording_url"),
        local_audio_file_id=row.get("local_audio_file_id"),
        local_transcript_file_id=row.get("local_transcript_file_id"),
        notes=row.get("notes"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_tracking(row: dict[str, Any]) -> TrackingRecord:
    return TrackingRecord(
        agent_id=row["agent_id"],
        is_active=row["is_active"],
        last_processed_at=row.get("last_processed_at"),
        last_conversation_id=row.get("last_conversation_id"),
        total_processed=row.get("total_processed") or 0,
        total_failed=row.get("total_failed") or 0,
        last_error=row.get("last_error"),
        last_error_at=row.get("last_error_at"),
    )


class PostgresCandidateStore:
    """CandidateStore backed by the shared psycopg pool."""

    async def get_tracking(self, agent_id: str) -> TrackingRecord | None:
        row = await fetch_one(TRACKING_SELECT + " WHERE agent_id = %s", (agent_id,))
        return _row_to_tracking(row) if row else None

    async def upsert_tracking(self, record: TrackingRecord) -> TrackingRecord:
        query = """
            INSERT INTO elevenlabs_tracking (
                agent_id, is_active, last_processed_at, last_conversation_id,
                total_processed, total_failed, last_error, last_error_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (agent_id)
            DO UPDATE SET
                is_active = EXCLUDED.is_active,
                last_processed_at = EXCLUDED.last_processed_at,
                last_conversation_id = EXCLUDED.last_conversation_id,
                total_processed = EXCLUDED.total_processed,
                total_failed = EXCLUDED.total_failed,
                last_error = EXCLUDED.last_error,
                last_error_at = EXCLUDED.last_error_at,
                updated_at = NOW()
            RETURNING agent_id, is_active, last_processed_at, last_conversation_id,
                      total_processed, total_failed, last_error, last_error_at
        """
        row = await fetch_one(
            query,
            (
                record.agent_id,
                record.is_active,
                record.last_processed_at,
                record.last_conversation_id,
                record.total_processed,
                record.total_failed,
                record.last_error,
                record.last_error_at,
            ),
        )
        return _row_to_tracking(row)

    async def update_tracking(self, agent_id: str, changes: dict[str, Any]) -> TrackingRecord | None:
        unknown = set(changes) - TRACKING_COLUMNS
        if unknown:
            raise ValueError(f"Unknown tracking columns: {', '.join(sorted(unknown))}")
        if not changes:
            return await self.get_tracking(agent_id)

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder(column))
            for column in changes
        )
        query = sql.SQL(
            """
            UPDATE elevenlabs_tracking
            SET {assignments}, updated_at = NOW()
            WHERE agent_id = {agent_id}
            RETURNING agent_id, is_active, last_processed_at, last_conversation_id,
                      total_processed, total_failed, last_error, last_error_at
            """
        ).format(assignments=assignments, agent_id=sql.Placeholder("agent_id"))
        row = await fetch_one(query, {**changes, "agent_id": agent_id})
        return _row_to_tracking(row) if row else None

    async def get_candidate_by_conversation_id(self, conversation_id: str) -> Candidate | None:
        row = await fetch_one(
            f"""
            SELECT {CANDIDATE_COLUMNS} FROM candidates
            WHERE conversation_id = %s
            ORDER BY created_at ASC
            LIMIT 1
            """,
            (conversation_id,),
        )
        return _row_to_candidate(row) if row else None

    async def upsert_candidate(self, values: CandidateUpsert) -> tuple[Candidate, bool]:
        params = {
            "email": values.email,
            "name": values.name,
            "default_name": UNKNOWN_CANDIDATE_NAME,
            "phone": values.phone,
            "conversation_id": values.conversation_id,
            "agent_id": values.agent_id,
            "pipeline_stage": values.pipeline_stage,
            "score": values.score,
            "source_ref": values.source_ref,
            "synthetic_email": values.synthetic_email,
            "interview_date": values.interview_date,
            "call_duration_secs": values.call_duration_secs,
            "interview_transcript": values.interview_transcript,
            "interview_summary": values.interview_summary,
            "sub_scores": _jsonb(values.sub_scores),
            "structured_fields": _jsonb(values.structured_fields),
            "audio_recording_url": values.audio_recording_url,
            "local_audio_file_id": values.local_audio_file_id,
            "local_transcript_file_id": values.local_transcript_file_id,
            "notes": values.notes,
        }
        row = await fetch_one(UPSERT_CANDIDATE_SQL, params)
        created = bool(row.pop("inserted"))
        logger.debug(
            "Candidate upserted",
            candidate_id=row["id"],
            conversation_id=values.conversation_id,
            created=created,
        )
        return _row_to_candidate(row), created

    async def create_interview(self, values: InterviewCreate) -> Interview:
        query = """
            INSERT INTO interviews (
                candidate_id, candidate_email, conversation_id, scheduled_at, completed_at,
                status, summary, transcript_url, scorecard_json, green_flags, red_flags,
                created_at
            ) VALUES (%s::uuid, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
            RETURNING id::text AS id, candidate_id::text AS candidate_id, conversation_id,
                      status, scheduled_at, completed_at, summary, scorecard_json,
                      green_flags, red_flags
        """
        row = await fetch_one(
            query,
            (
                values.candidate_id,
                values.candidate_email,
                values.conversation_id,
                values.scheduled_at,
                values.completed_at,
                values.status,
                values.summary,
                values.transcript_url,
                _jsonb(values.scorecard),
                _jsonb(values.green_flags),
                _jsonb(values.red_flags),
            ),
        )
        return Interview(
            id=row["id"],
            candidate_id=row["candidate_id"],
            conversation_id=row["conversation_id"],
            status=row["status"],
            scheduled_at=row.get("scheduled_at"),
            completed_at=row.get("completed_at"),
            summary=row.get("summary"),
            scorecard=row.get("scorecard_json") or {},
            green_flags=row.get("green_flags") or [],
            red_flags=row.get("red_flags") or [],
        )

    async def create_audit_log(
        self,
        action: str,
        payload: dict[str, Any],
        actor: str = AUDIT_ACTOR,
        path_used: str = AUDIT_PATH,
    ) -> None:
        await execute_query(
            """
            INSERT INTO audit_logs (actor, action, payload_json, path_used, created_at)
            VALUES (%s, %s, %s, %s, NOW())
            """,
            (actor, action, _jsonb(payload), path_used),
        )

    async def list_conversation_candidates(self, since: datetime | None = None) -> list[Candidate]:
        if since is None:
            rows = await fetch_all(
                f"SELECT {CANDIDATE_COLUMNS} FROM candidates WHERE conversation_id IS NOT NULL"
            )
        else:
            rows = await fetch_all(
                f"""
                SELECT {CANDIDATE_COLUMNS} FROM candidates
                WHERE conversation_id IS NOT NULL
                  AND interview_date >= %s
                """,
                (since,),
            )
        return [_row_to_candidate(row) for row in rows]
