"""
Poison handler - per-conversation retry state and backoff.

Each conversation id moves through clean -> retrying(n) -> poisoned. A
failure calls should_retry_conversation(), which records the attempt and
returns the wait before the next attempt. After max_attempts failures the
next one poisons the id: it is excluded from automatic processing until an
operator calls manual_retry() or clears the records.

State lives in a PoisonStore owned by one handler instance. The default
store is in-memory; snapshot()/restore() plus an optional persistence
backend let poisoned status survive restarts.
"""

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from app.config import settings
from app.features.interview_ingest.domain.models import PoisonErrorType
from app.infrastructure.events import EventPublisher
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_NETWORK_MARKERS = (
    "econnrefused",
    "connection refused",
    "econnreset",
    "connection reset",
    "enotfound",
    "etimedout",
    "timed out",
    "timeout",
    "network",
    "socket",
    "dns",
    "connecterror",
    "all connection attempts failed",
)
_RATE_LIMIT_MARKERS = ("429", "rate limit", "rate-limit", "too many requests", "quota")
_CLIENT_ERROR = re.compile(r"\b4\d\d\b")
_CLIENT_ERROR_MARKERS = ("bad request", "unauthorized", "forbidden", "not found")


def categorize_error(error_message: str | None) -> PoisonErrorType:
    """Advisory classification from the error text; does not change backoff."""
    lowered = (error_message or "").lower()
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return PoisonErrorType.NETWORK
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return PoisonErrorType.RATE_LIMIT
    if _CLIENT_ERROR.search(lowered) or any(m in lowered for m in _CLIENT_ERROR_MARKERS):
        return PoisonErrorType.API_ERROR
    return PoisonErrorType.UNKNOWN


@dataclass(slots=True)
class PoisonRecord:
    conversation_id: str
    first_failed_at: datetime
    last_failed_at: datetime
    attempt_count: int = 0
    error_type: PoisonErrorType = PoisonErrorType.UNKNOWN
    next_backoff_ms: int = 0
    is_poisoned: bool = False
    last_error: str | None = None
    next_retry_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "first_failed_at": self.first_failed_at.isoformat(),
            "last_failed_at": self.last_failed_at.isoformat(),
            "attempt_count": self.attempt_count,
            "error_type": self.error_type.value,
            "next_backoff_ms": self.next_backoff_ms,
            "is_poisoned": self.is_poisoned,
            "last_error": self.last_error,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PoisonRecord":
        next_retry_at = data.get("next_retry_at")
        return cls(
            conversation_id=data["conversation_id"],
            first_failed_at=datetime.fromisoformat(data["first_failed_at"]),
            last_failed_at=datetime.fromisoformat(data["last_failed_at"]),
            attempt_count=int(data.get("attempt_count", 0)),
            error_type=PoisonErrorType(data.get("error_type", PoisonErrorType.UNKNOWN)),
            next_backoff_ms=int(data.get("next_backoff_ms", 0)),
            is_poisoned=bool(data.get("is_poisoned", False)),
            last_error=data.get("last_error"),
            next_retry_at=datetime.fromisoformat(next_retry_at) if next_retry_at else None,
        )


@dataclass(frozen=True, slots=True)
class RetryDecision:
    should_retry: bool
    wait_ms: int
    attempt: int
    error_type: PoisonErrorType
    poisoned: bool
    reason: str = ""


class PoisonStore(Protocol):
    def get(self, conversation_id: str) -> PoisonRecord | None: ...

    def put(self, record: PoisonRecord) -> None: ...

    def delete(self, conversation_id: str) -> PoisonRecord | None: ...

    def clear(self) -> int: ...

    def __iter__(self) -> Iterator[PoisonRecord]: ...

    def __len__(self) -> int: ...


class InMemoryPoisonStore:
    def __init__(self):
        self._records: dict[str, PoisonRecord] = {}

    def get(self, conversation_id: str) -> PoisonRecord | None:
        return self._records.get(conversation_id)

    def put(self, record: PoisonRecord) -> None:
        self._records[record.conversation_id] = record

    def delete(self, conversation_id: str) -> PoisonRecord | None:
        return self._records.pop(conversation_id, None)

    def clear(self) -> int:
        count = len(self._records)
        self._records.clear()
        return count

    def __iter__(self) -> Iterator[PoisonRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)


class PoisonPersistence(Protocol):
    async def load(self) -> list[dict[str, Any]]: ...

    async def save(self, records: list[dict[str, Any]]) -> bool: ...


class PoisonHandler:
    """Retry bookkeeping for conversations that fail processing."""

    def __init__(
        self,
        store: PoisonStore | None = None,
        backoff_schedule_ms: tuple[int, ...] | None = None,
        max_attempts: int | None = None,
        publisher: EventPublisher | None = None,
        persistence: PoisonPersistence | None = None,
        record_ttl: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store if store is not None else InMemoryPoisonStore()
        self.backoff_schedule_ms = backoff_schedule_ms or settings.poison_backoff_schedule()
        self.max_attempts = max_attempts or settings.POISON_MAX_ATTEMPTS
        self.publisher = publisher
        self.persistence = persistence
        self.record_ttl = record_ttl or timedelta(hours=settings.POISON_RECORD_TTL_HOURS)
        self._clock = clock or (lambda: datetime.now(UTC))

    def backoff_for_attempt(self, attempt: int) -> int:
        index = min(max(attempt, 1) - 1, len(self.backoff_schedule_ms) - 1)
        return self.backoff_schedule_ms[index]

    def should_retry_conversation(self, conversation_id: str, error_message: str) -> RetryDecision:
        """Record a failure and decide whether (and when) to retry."""
        now = self._clock()
        record = self.store.get(conversation_id)

        if record is not None and record.is_poisoned:
            return RetryDecision(
                should_retry=False,
                wait_ms=0,
                attempt=record.attempt_count,
                error_type=record.error_type,
                poisoned=True,
                reason="Conversation already poisoned",
            )

        if record is None:
            record = PoisonRecord(
                conversation_id=conversation_id, first_failed_at=now, last_failed_at=now
            )

        record.attempt_count += 1
        record.error_type = categorize_error(error_message)
        record.last_error = (error_message or "")[:500]
        record.last_failed_at = now

        if record.attempt_count > self.max_attempts:
            record.is_poisoned = True
            record.next_backoff_ms = 0
            record.next_retry_at = None
            self.store.put(record)

            logger.error(
                "Conversation poisoned",
                conversation_id=conversation_id,
                attempts=record.attempt_count,
                error_type=record.error_type.value,
                first_failed_at=record.first_failed_at.isoformat(),
            )
            self._publish(
                "conversation-poisoned",
                {
                    "conversation_id": conversation_id,
                    "attempts": record.attempt_count,
                    "error_type": record.error_type.value,
                    "first_failed_at": record.first_failed_at.isoformat(),
                    "last_error": record.last_error,
                },
            )
            return RetryDecision(
                should_retry=False,
                wait_ms=0,
                attempt=record.attempt_count,
                error_type=record.error_type,
                poisoned=True,
                reason=f"Conversation poisoned after {record.attempt_count} attempts",
            )

        wait_ms = self.backoff_for_attempt(record.attempt_count)
        record.next_backoff_ms = wait_ms
        record.next_retry_at = now + timedelta(milliseconds=wait_ms)
        self.store.put(record)

        logger.warning(
            "Conversation processing failed, scheduling retry",
            conversation_id=conversation_id,
            attempt=record.attempt_count,
            max_attempts=self.max_attempts,
            wait_ms=wait_ms,
            error_type=record.error_type.value,
        )
        return RetryDecision(
            should_retry=True,
            wait_ms=wait_ms,
            attempt=record.attempt_count,
            error_type=record.error_type,
            poisoned=False,
            reason=f"Retry attempt {record.attempt_count}/{self.max_attempts} in {wait_ms}ms",
        )

    def mark_success(self, conversation_id: str) -> None:
        record = self.store.delete(conversation_id)
        if record is None:
            return
        logger.info(
            "Conversation recovered",
            conversation_id=conversation_id,
            attempts=record.attempt_count,
        )
        self._publish(
            "conversation-recovered",
            {
                "conversation_id": conversation_id,
                "attempts": record.attempt_count,
                "first_failed_at": record.first_failed_at.isoformat(),
                "recovered_at": self._clock().isoformat(),
            },
        )

    def manual_retry(self, conversation_id: str) -> bool:
        """Un-poison a conversation and give it a fresh retry budget."""
        record = self.store.get(conversation_id)
        if record is None:
            return False
        record.is_poisoned = False
        record.attempt_count = 0
        record.next_backoff_ms = 0
        record.next_retry_at = None
        self.store.put(record)
        logger.info("Conversation released for manual retry", conversation_id=conversation_id)
        return True

    def force_mark_as_poisoned(self, conversation_id: str, reason: str) -> PoisonRecord:
        """Poison immediately, used for failures that retrying cannot fix."""
        now = self._clock()
        record = self.store.get(conversation_id) or PoisonRecord(
            conversation_id=conversation_id, first_failed_at=now, last_failed_at=now
        )
        record.attempt_count += 1
        record.is_poisoned = True
        record.error_type = categorize_error(reason)
        record.last_error = reason[:500]
        record.last_failed_at = now
        record.next_backoff_ms = 0
        record.next_retry_at = None
        self.store.put(record)

        logger.error("Conversation force-poisoned", conversation_id=conversation_id, reason=reason)
        self._publish(
            "conversation-poisoned",
            {
                "conversation_id": conversation_id,
                "attempts": record.attempt_count,
                "error_type": record.error_type.value,
                "first_failed_at": record.first_failed_at.isoformat(),
                "last_error": record.last_error,
                "forced": True,
            },
        )
        return record

    def is_poisoned(self, conversation_id: str) -> bool:
        record = self.store.get(conversation_id)
        return bool(record and record.is_poisoned)

    def is_ready_for_retry(self, conversation_id: str, now: datetime | None = None) -> bool:
        record = self.store.get(conversation_id)
        if record is None:
            return True
        if record.is_poisoned:
            return False
        if record.next_retry_at is None:
            return True
        return (now or self._clock()) >= record.next_retry_at

    def get_record(self, conversation_id: str) -> PoisonRecord | None:
        return self.store.get(conversation_id)

    def get_poisoned_conversations(self) -> list[PoisonRecord]:
        return [record for record in self.store if record.is_poisoned]

    def get_conversations_ready_for_retry(self) -> list[str]:
        now = self._clock()
        return [
            record.conversation_id
            for record in self.store
            if not record.is_poisoned and self.is_ready_for_retry(record.conversation_id, now)
        ]

    def clear_all_poison_records(self) -> int:
        count = self.store.clear()
        logger.info("Cleared poison records", count=count)
        return count

    def cleanup_old_records(self, max_age: timedelta | None = None) -> int:
        """Drop retrying records whose first failure is older than max_age; poisoned ones stay."""
        cutoff = self._clock() - (max_age or self.record_ttl)
        stale = [
            record.conversation_id
            for record in self.store
            if not record.is_poisoned and record.first_failed_at < cutoff
        ]
        for conversation_id in stale:
            self.store.delete(conversation_id)
        if stale:
            logger.info("Cleaned up stale poison records", count=len(stale))
        return len(stale)

    def get_stats(self) -> dict[str, Any]:
        records = list(self.store)
        by_error_type = {error_type.value: 0 for error_type in PoisonErrorType}
        for record in records:
            by_error_type[record.error_type.value] += 1
        poisoned = sum(1 for record in records if record.is_poisoned)
        return {
            "total_failed": len(records),
            "poisoned": poisoned,
            "awaiting_retry": len(records) - poisoned,
            "by_error_type": by_error_type,
            "max_attempts": self.max_attempts,
            "backoff_schedule_ms": list(self.backoff_schedule_ms),
        }

    def snapshot(self) -> list[dict[str, Any]]:
        return [record.to_dict() for record in self.store]

    def restore(self, records: list[dict[str, Any]]) -> int:
        restored = 0
        for data in records:
            try:
                self.store.put(PoisonRecord.from_dict(data))
                restored += 1
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping unreadable poison record", error=str(e))
        return restored

    async def persist(self) -> bool:
        if self.persistence is None:
            return False
        return await self.persistence.save(self.snapshot())

    async def load_persisted(self) -> int:
        if self.persistence is None:
            return 0
        restored = self.restore(await self.persistence.load())
        logger.info("Poison records restored", count=restored)
        return restored

    def _publish(self, event_type: str, data: dict[str, Any]) -> None:
        if self.publisher is not None:
            self.publisher.broadcast(event_type, data)
