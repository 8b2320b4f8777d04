"""
Candidate extraction - maps a normalized Conversation to a CandidateDraft.

Extraction is deterministic and never raises: a field that cannot be read
is left as None and the caller (Ingest) decides whether the draft is
sufficient.
"""

import json
import math
from typing import Any

from app.features.interview_ingest.domain.models import CandidateDraft, Conversation
from app.infrastructure.observability.logging import get_logger

from .strategies import (
    EMAIL_STRATEGIES,
    NAME_STRATEGIES,
    PHONE_STRATEGIES,
    Strategy,
    run_strategies,
    structured_value,
    unwrap_value,
)

logger = get_logger(__name__)

SUB_SCORE_KEYS = (
    "communication_score",
    "sales_aptitude_score",
    "motivation_score",
    "coachability_score",
    "professional_presence_score",
)
OVERALL_SCORE_KEYS = ("overall_score", "interview_score")

NARRATIVE_FIELDS = (
    "why_insurance",
    "why_now",
    "sales_experience",
    "difficult_customer_story",
    "consultative_selling",
    "timeline",
    "recommended_next_steps",
)
FLAG_FIELDS = ("demo_call_performed", "kevin_persona_used", "coaching_given", "pitch_delivered")

TRANSCRIPT_SUMMARY_CHARS = 500


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_number(value: Any) -> float | None:
    value = unwrap_value(value)
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_flag(value: Any) -> bool | None:
    value = unwrap_value(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "y", "1"):
            return True
        if lowered in ("false", "no", "n", "0"):
            return False
    if isinstance(value, int | float):
        return bool(value)
    return None


def normalize_list_field(value: Any) -> list[str]:
    """Lists pass through; strings are parsed as JSON arrays or split on commas."""
    value = unwrap_value(value)
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            decoded = json.loads(text)
        except ValueError:
            decoded = None
        if isinstance(decoded, list):
            return normalize_list_field(decoded)
        if "," in text:
            return [item.strip() for item in text.split(",") if item.strip()]
        return [text]
    return [str(value)]


def format_transcript(conversation: Conversation) -> str:
    """Plain 'speaker: message' lines."""
    return "\n".join(
        f"{turn.role}: {turn.message.strip()}"
        for turn in conversation.transcript
        if turn.message and turn.message.strip()
    )


def describe_duration(conversation: Conversation) -> str:
    if conversation.created_at and conversation.ended_at:
        minutes = int((conversation.ended_at - conversation.created_at).total_seconds() // 60)
        return f"{minutes} minutes"
    return "Unknown duration"


def call_duration_seconds(conversation: Conversation) -> float | None:
    if conversation.call_duration_secs is not None:
        return conversation.call_duration_secs
    if conversation.created_at and conversation.ended_at:
        return float(int((conversation.ended_at - conversation.created_at).total_seconds()))
    return None


def summarize_conversation(conversation: Conversation) -> str:
    if not conversation.transcript:
        return "Interview conversation completed"
    candidate_turns = sum(1 for turn in conversation.transcript if turn.is_candidate)
    return (
        f"Interview with {len(conversation.transcript)} total messages "
        f"({candidate_turns} from candidate)"
    )


def transcript_summary(conversation: Conversation) -> str:
    summary = unwrap_value(conversation.analysis.get("transcript_summary"))
    if isinstance(summary, str) and summary.strip():
        return summary.strip()
    text = " ".join(turn.message for turn in conversation.transcript if turn.is_candidate)
    if not text:
        return "No transcript summary available"
    if len(text) > TRANSCRIPT_SUMMARY_CHARS:
        return text[:TRANSCRIPT_SUMMARY_CHARS] + "..."
    return text


class CandidateExtractor:
    """Runs the per-field strategy chains and collects scores and structured answers."""

    def __init__(
        self,
        name_strategies: tuple[Strategy, ...] = NAME_STRATEGIES,
        email_strategies: tuple[Strategy, ...] = EMAIL_STRATEGIES,
        phone_strategies: tuple[Strategy, ...] = PHONE_STRATEGIES,
    ):
        self.name_strategies = name_strategies
        self.email_strategies = email_strategies
        self.phone_strategies = phone_strategies

    def extract(self, conversation: Conversation) -> CandidateDraft:
        name, name_source = run_strategies(self.name_strategies, conversation)
        email, email_source = run_strategies(self.email_strategies, conversation)
        phone, phone_source = run_strategies(self.phone_strategies, conversation)

        sub_scores = self._sub_scores(conversation)
        draft = CandidateDraft(
            name=name,
            email=email,
            phone=phone,
            overall_score=self._overall_score(conversation, sub_scores),
            sub_scores=sub_scores,
            structured_fields=self._structured_fields(conversation),
            strengths=normalize_list_field(structured_value(conversation, "strengths")),
            development_areas=normalize_list_field(
                structured_value(conversation, "development_areas")
            ),
            summary=summarize_conversation(conversation),
            transcript_text=format_transcript(conversation),
        )

        logger.info(
            "Candidate data extracted",
            conversation_id=conversation.conversation_id,
            has_name=bool(name),
            has_email=bool(email),
            has_phone=bool(phone),
            name_source=name_source,
            email_source=email_source,
            phone_source=phone_source,
            overall_score=draft.overall_score,
        )
        return draft

    @staticmethod
    def _sub_scores(conversation: Conversation) -> dict[str, float]:
        scores: dict[str, float] = {}
        for key in SUB_SCORE_KEYS:
            number = _as_number(structured_value(conversation, key))
            if number is not None and number > 0:
                scores[key] = number
        return scores

    @staticmethod
    def _overall_score(conversation: Conversation, sub_scores: dict[str, float]) -> int | None:
        for key in OVERALL_SCORE_KEYS:
            number = _as_number(structured_value(conversation, key))
            if number is not None and number > 0:
                return max(0, min(100, _round_half_up(number)))
        if not sub_scores:
            return None
        average = sum(sub_scores.values()) / len(sub_scores)
        return max(0, min(100, _round_half_up(average)))

    @staticmethod
    def _structured_fields(conversation: Conversation) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for key in NARRATIVE_FIELDS:
            value = unwrap_value(structured_value(conversation, key))
            if value is not None:
                fields[key] = value
        markets = normalize_list_field(structured_value(conversation, "preferred_markets"))
        if markets:
            fields["preferred_markets"] = markets
        for key in FLAG_FIELDS:
            flag = _as_flag(structured_value(conversation, key))
            if flag is not None:
                fields[key] = flag
        criteria = structured_value(conversation, "evaluation_criteria_results")
        if criteria:
            fields["evaluation_criteria_results"] = criteria
        fields["transcript_summary"] = transcript_summary(conversation)
        fields["duration"] = describe_duration(conversation)
        return fields


candidate_extractor = CandidateExtractor()
