"""
Field extraction strategies.

Each candidate field has an ordered list of independent strategies. A
strategy takes a normalized Conversation and returns a value or None; the
first strategy (lowest priority number) that yields a value wins. Keeping the
heuristics as separate functions lets every one of them be tested alone.
"""

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from app.features.interview_ingest.domain.models import Conversation
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
REAL_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
SPOKEN_EMAIL_PATTERN = re.compile(
    r"([a-zA-Z0-9._%+-]+)\s+at\s+([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})", re.IGNORECASE
)
PHONE_PATTERN = re.compile(r"(\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}|\d{10})")

# Lead-ins are case-insensitive, the captured name must be capitalized
EXPLICIT_NAME_PATTERN = re.compile(
    r"\b(?i:my name is|i['\u2019]m|i am|call me|this is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)"
)
INLINE_NAME_QUESTION_PATTERN = re.compile(
    r"(?i:\bname\b)[^?]*\?.*?\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)"
)
NAME_QUESTION_PATTERN = re.compile(r"\bname\b[^?]*\?", re.IGNORECASE)
SPOKEN_EMAIL_NAME_PATTERN = re.compile(
    r"\b([A-Z][a-z]+)\s+(?i:at)\s+[A-Za-z0-9.-]+\.[A-Za-z]{2,}"
)
CAPITALIZED_WORDS_PATTERN = re.compile(r"\b([A-Z][a-z]{2,}(?:\s+[A-Z][a-z]+)?)\b")
CAPITALIZED_ANSWER_PATTERN = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)")

# Artifacts of the recording pipeline, never a real address
REJECTED_EMAIL_MARKERS = (
    "conversation-",
    "conv_",
    "@temp.elevenlabs.com",
    "@ifast-internal.temp",
    "@internal.temp",
)

NON_NAME_TOKENS = (
    "conv_",
    "conversation",
    "elevenlabs",
    "constance",
    "agent",
    "tell me",
    "what",
    "how",
    "why",
    "good",
    "future",
    "sales",
    "pro",
)

# Leading words that start answers but are never names
FILLER_WORDS = frozenset(
    {
        "hi",
        "hello",
        "hey",
        "yes",
        "yeah",
        "yep",
        "sure",
        "okay",
        "ok",
        "well",
        "thanks",
        "thank",
        "sorry",
        "absolutely",
        "definitely",
        "great",
        "the",
        "and",
        "but",
        "i",
        "it",
        "its",
        "my",
    }
)

# (source attribute, key) pairs in lookup order; "agent_data.user" walks one level down
NAME_SOURCES = (
    ("data_collection_results", "name"),
    ("data_collection_results", "candidate_name"),
    ("evaluation_details", "candidate_name"),
    ("conversation_metadata", "candidate_name"),
    ("agent_data.user", "name"),
    ("metadata", "candidate_name"),
)
EMAIL_SOURCES = (
    ("data_collection_results", "email"),
    ("data_collection_results", "candidate_email"),
    ("evaluation_details", "email"),
    ("conversation_metadata", "email"),
    ("agent_data.user", "email"),
    ("metadata", "email"),
)
PHONE_SOURCES = (
    ("data_collection_results", "phone"),
    ("data_collection_results", "phone_number"),
    ("evaluation_details", "phone"),
    ("conversation_metadata", "phone"),
    ("agent_data.user", "phone"),
    ("metadata", "phone"),
)

# Generic lookup order for scores and structured answers
STRUCTURED_SOURCES = (
    "raw",
    "data_collection_results",
    "evaluation_details",
    "analysis",
    "metadata",
)


@dataclass(frozen=True, slots=True)
class Strategy:
    name: str
    priority: int
    extract: Callable[[Conversation], str | None]


def run_strategies(
    strategies: Iterable[Strategy], conversation: Conversation
) -> tuple[str | None, str | None]:
    """Return (value, strategy name) from the first strategy that yields a value."""
    for strategy in sorted(strategies, key=lambda s: s.priority):
        try:
            value = strategy.extract(conversation)
        except Exception as e:
            # Malformed input degrades the field to absent
            logger.warning(
                "Extraction strategy failed",
                strategy=strategy.name,
                conversation_id=conversation.conversation_id,
                error=str(e),
            )
            continue
        if value:
            return value, strategy.name
    return None, None


def unwrap_value(value: Any) -> Any:
    """Data-collection entries arrive as {"value": ..., "rationale": ...}."""
    if isinstance(value, dict) and "value" in value:
        return value["value"]
    return value


def _source_dict(conversation: Conversation, source: str) -> dict[str, Any]:
    head, _, tail = source.partition(".")
    data = getattr(conversation, head, None)
    if tail and isinstance(data, dict):
        data = data.get(tail)
    return data if isinstance(data, dict) else {}


def source_value(conversation: Conversation, sources: Sequence[tuple[str, str]]) -> Any:
    for source, key in sources:
        value = unwrap_value(_source_dict(conversation, source).get(key))
        if value not in (None, "", [], {}):
            return value
    return None


def structured_value(conversation: Conversation, key: str) -> Any:
    """First non-empty value for `key` across the structured payload sections."""
    return source_value(conversation, [(source, key) for source in STRUCTURED_SOURCES])


# --- validators -------------------------------------------------------------


def is_acceptable_email(value: str | None) -> bool:
    if not value or not isinstance(value, str):
        return False
    lowered = value.strip().lower()
    if any(marker in lowered for marker in REJECTED_EMAIL_MARKERS):
        return False
    return bool(REAL_EMAIL_PATTERN.match(lowered))


def is_plausible_name(value: str | None) -> bool:
    if not value or not isinstance(value, str):
        return False
    clean = value.strip()
    if len(clean) < 2:
        return False
    lowered = clean.lower()
    if any(token in lowered for token in NON_NAME_TOKENS):
        return False
    if clean.islower() or any(ch.isdigit() for ch in clean):
        return False
    words = clean.split()
    if len(words) > 3:
        return False
    return words[0].lower() not in FILLER_WORDS


def normalize_phone(value: Any) -> str | None:
    if value is None:
        return None
    digits = re.sub(r"\D", "", str(value))
    if not digits:
        return None
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return digits


def _first_plausible(matches: Iterable[str]) -> str | None:
    for match in matches:
        candidate = match.strip()
        if is_plausible_name(candidate):
            return candidate
    return None


# --- email ------------------------------------------------------------------


def email_from_metadata(conversation: Conversation) -> str | None:
    value = source_value(conversation, EMAIL_SOURCES)
    if isinstance(value, str) and is_acceptable_email(value):
        return value.strip().lower()
    return None


def email_from_transcript(conversation: Conversation) -> str | None:
    text = " ".join(conversation.candidate_utterances())
    for match in EMAIL_PATTERN.finditer(text):
        email = match.group(0).lower()
        if is_acceptable_email(email):
            return email
    return None


def email_from_spoken_pattern(conversation: Conversation) -> str | None:
    text = " ".join(conversation.candidate_utterances())
    for match in SPOKEN_EMAIL_PATTERN.finditer(text):
        email = f"{match.group(1)}@{match.group(2)}".lower()
        if is_acceptable_email(email):
            return email
    return None


# --- phone ------------------------------------------------------------------


def phone_from_metadata(conversation: Conversation) -> str | None:
    return normalize_phone(source_value(conversation, PHONE_SOURCES))


def phone_from_transcript(conversation: Conversation) -> str | None:
    text = " ".join(conversation.candidate_utterances())
    match = PHONE_PATTERN.search(text)
    return normalize_phone(match.group(0)) if match else None


# --- name -------------------------------------------------------------------


def name_from_metadata(conversation: Conversation) -> str | None:
    value = source_value(conversation, NAME_SOURCES)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def name_from_introduction(conversation: Conversation) -> str | None:
    for utterance in conversation.candidate_utterances():
        found = _first_plausible(m.group(1) for m in EXPLICIT_NAME_PATTERN.finditer(utterance))
        if found:
            return found
    return None


def name_from_question_answer(conversation: Conversation) -> str | None:
    """Answer to a "what's your name?" prompt, asked by the interviewer or echoed inline."""
    turns = conversation.transcript
    for index, turn in enumerate(turns):
        if turn.is_candidate or not NAME_QUESTION_PATTERN.search(turn.message):
            continue
        answer = next((t for t in turns[index + 1 :] if t.is_candidate), None)
        if answer is None:
            continue
        found = _first_plausible(
            m.group(1) for m in CAPITALIZED_ANSWER_PATTERN.finditer(answer.message)
        )
        if found:
            return found

    for utterance in conversation.candidate_utterances():
        match = INLINE_NAME_QUESTION_PATTERN.search(utterance)
        if match and is_plausible_name(match.group(1)):
            return match.group(1).strip()
    return None


def name_from_spoken_email(conversation: Conversation) -> str | None:
    for utterance in conversation.candidate_utterances():
        found = _first_plausible(
            m.group(1) for m in SPOKEN_EMAIL_NAME_PATTERN.finditer(utterance)
        )
        if found:
            return found
    return None


def name_from_capitalized_words(conversation: Conversation) -> str | None:
    utterances = conversation.candidate_utterances()
    if not utterances:
        return None
    return _first_plausible(
        m.group(1) for m in CAPITALIZED_WORDS_PATTERN.finditer(utterances[0])
    )


EMAIL_STRATEGIES: tuple[Strategy, ...] = (
    Strategy("metadata", 10, email_from_metadata),
    Strategy("transcript_address", 20, email_from_transcript),
    Strategy("transcript_spoken_address", 30, email_from_spoken_pattern),
)

PHONE_STRATEGIES: tuple[Strategy, ...] = (
    Strategy("metadata", 10, phone_from_metadata),
    Strategy("transcript_number", 20, phone_from_transcript),
)

NAME_STRATEGIES: tuple[Strategy, ...] = (
    Strategy("metadata", 10, name_from_metadata),
    Strategy("introduction", 20, name_from_introduction),
    Strategy("question_answer", 30, name_from_question_answer),
    Strategy("spoken_email", 40, name_from_spoken_email),
    Strategy("capitalized_words", 50, name_from_capitalized_words),
)
