"""
Payload normalization at the ingestion boundary.

Provider payloads (and payloads replayed from older exports) spell the same
field in snake_case or camelCase. Everything downstream reads a single
canonical snake_case field set produced here. When both spellings carry a
value, the snake_case one wins.
"""

import json
import re
from datetime import UTC, datetime, timedelta
from typing import Any

from app.features.interview_ingest.domain.errors import ValidationFailureError
from app.features.interview_ingest.domain.models import Conversation, TranscriptTurn

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_SPEAKER_LINE = re.compile(r"^\s*([A-Za-z_]+)\s*:\s*(.*)$")

# Roles that appear in exported transcripts under a different label
_ROLE_ALIASES = {"agent": "agent", "assistant": "agent", "ai": "agent", "interviewer": "agent"}


def to_snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def canonicalize_keys(value: Any) -> Any:
    """Recursively rewrite dict keys to snake_case, snake_case spelling first."""
    if isinstance(value, list):
        return [canonicalize_keys(item) for item in value]
    if not isinstance(value, dict):
        return value

    canonical: dict[str, Any] = {}
    converted: dict[str, Any] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            canonical[key] = canonicalize_keys(item)
            continue
        snake = to_snake_case(key)
        target = canonical if snake == key else converted
        target[snake] = canonicalize_keys(item)

    for key, item in converted.items():
        if canonical.get(key) is None:
            canonical[key] = item
    return canonical


def parse_timestamp(value: Any) -> datetime | None:
    """ISO-8601 strings, unix seconds or datetimes; anything else is None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(float(value), tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return {}
        return canonicalize_keys(decoded) if isinstance(decoded, dict) else {}
    return {}


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _normalize_role(raw_role: Any) -> str:
    role = str(raw_role or "unknown").strip().lower()
    return _ROLE_ALIASES.get(role, role)


def _turn_from_item(item: Any) -> TranscriptTurn | None:
    if isinstance(item, str):
        return TranscriptTurn(role="user", message=item)
    if not isinstance(item, dict):
        return None
    message = item.get("message") or item.get("text") or item.get("content") or ""
    if not isinstance(message, str):
        message = str(message)
    return TranscriptTurn(
        role=_normalize_role(item.get("role") or item.get("speaker")),
        message=message,
        time_in_call_secs=_as_float(item.get("time_in_call_secs")),
    )


def _turns_from_text(text: str) -> list[TranscriptTurn]:
    """Plain-text transcripts use 'speaker: message' lines; bare lines count as candidate speech."""
    turns: list[TranscriptTurn] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        match = _SPEAKER_LINE.match(line)
        if match:
            turns.append(TranscriptTurn(role=_normalize_role(match.group(1)), message=match.group(2)))
        else:
            turns.append(TranscriptTurn(role="user", message=line.strip()))
    return turns


def normalize_transcript(raw: Any) -> list[TranscriptTurn]:
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return _turns_from_text(raw)
        if isinstance(decoded, list):
            raw = canonicalize_keys(decoded)
        else:
            return _turns_from_text(raw)
    if not isinstance(raw, list):
        return []
    return [turn for turn in (_turn_from_item(item) for item in raw) if turn is not None]


def normalize_conversation(payload: dict[str, Any]) -> Conversation:
    """
    Map a provider conversation (list item or full detail) to a Conversation.

    Raises:
        ValidationFailureError: payload is not a dict or has no conversation id
    """
    if not isinstance(payload, dict):
        raise ValidationFailureError("Conversation payload must be an object")

    data = canonicalize_keys(payload)
    conversation_id = data.get("conversation_id") or data.get("id")
    if not conversation_id or not isinstance(conversation_id, str):
        raise ValidationFailureError("Conversation payload has no conversation_id")

    metadata = _as_dict(data.get("metadata"))
    analysis = _as_dict(data.get("analysis"))

    created_at = parse_timestamp(data.get("created_at")) or parse_timestamp(
        metadata.get("start_time_unix_secs") or data.get("start_time_unix_secs")
    )
    call_duration = _as_float(
        metadata.get("call_duration_secs")
        if metadata.get("call_duration_secs") is not None
        else data.get("call_duration_secs")
    )
    ended_at = parse_timestamp(data.get("ended_at")) or parse_timestamp(
        metadata.get("end_time_unix_secs")
    )
    if ended_at is None and created_at is not None and call_duration is not None:
        ended_at = created_at + timedelta(seconds=call_duration)

    data_collection = _as_dict(data.get("data_collection_results")) or _as_dict(
        analysis.get("data_collection_results")
    )

    return Conversation(
        conversation_id=conversation_id,
        agent_id=data.get("agent_id"),
        created_at=created_at,
        ended_at=ended_at,
        status=data.get("status"),
        transcript=normalize_transcript(data.get("transcript")),
        metadata=metadata,
        analysis=analysis,
        data_collection_results=data_collection,
        evaluation_details=_as_dict(data.get("evaluation_details")),
        conversation_metadata=_as_dict(data.get("conversation_metadata")),
        agent_data=_as_dict(data.get("agent_data")),
        call_duration_secs=call_duration,
        audio_recording_url=data.get("audio_recording_url") or metadata.get("audio_recording_url"),
        raw=data,
    )


def normalize_listing_item(item: Any) -> dict[str, Any]:
    """Canonical snake_case form of one conversation list entry."""
    return canonicalize_keys(item) if isinstance(item, dict) else {}


def listing_conversation_id(item: dict[str, Any]) -> str | None:
    return item.get("conversation_id")


def listing_timestamp(item: dict[str, Any]) -> datetime | None:
    """Activity time of a normalized list entry (start time, else end time)."""
    for key in ("created_at", "start_time_unix_secs", "ended_at", "end_time_unix_secs"):
        parsed = parse_timestamp(item.get(key))
        if parsed is not None:
            return parsed
    return None
