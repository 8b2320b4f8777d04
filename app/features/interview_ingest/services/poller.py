"""
Conversation poller - pulls new conversations for the monitored agent on a
fixed interval and drives each one through the ingest pipeline.

The tracking record's last_processed_at is the high-water mark. Each cycle
lists conversations after it, processes them one at a time and writes the
tracking record once at the end. Per-item failures are handed to the poison
handler and never abort the batch; a failure of the listing call aborts
the cycle and is recorded on the tracking record.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.features.interview_ingest.domain.errors import (
    InsufficientDataError,
    ValidationFailureError,
)
from app.features.interview_ingest.domain.models import PollSummary, TrackingRecord
from app.features.interview_ingest.pipeline.ingest import IngestService
from app.features.interview_ingest.pipeline.normalization import (
    listing_conversation_id,
    listing_timestamp,
    normalize_listing_item,
)
from app.features.interview_ingest.repository.base import CandidateStore
from app.infrastructure.events import EventPublisher
from app.infrastructure.observability.logging import get_logger
from app.services.elevenlabs import ElevenLabsClient

from .poison_handler import PoisonHandler

logger = get_logger(__name__)

PERMANENT_ERRORS = (InsufficientDataError, ValidationFailureError)
LAST_ERROR_MAX_CHARS = 1000


class ConversationPoller:
    """Interval poller for one agent; owns its asyncio task."""

    def __init__(
        self,
        store: CandidateStore,
        client: ElevenLabsClient,
        ingest_service: IngestService,
        poison_handler: PoisonHandler,
        agent_id: str | None = None,
        publisher: EventPublisher | None = None,
        poll_interval_seconds: float | None = None,
        warmup_seconds: float | None = None,
        page_size: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.client = client
        self.ingest_service = ingest_service
        self.poison_handler = poison_handler
        self.agent_id = agent_id or settings.ELEVENLABS_AGENT_ID
        self.publisher = publisher
        self.poll_interval_seconds = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else settings.INGEST_POLL_INTERVAL_SECONDS
        )
        self.warmup_seconds = (
            warmup_seconds if warmup_seconds is not None else settings.INGEST_WARMUP_SECONDS
        )
        self.page_size = page_size or settings.INGEST_PAGE_SIZE
        self._clock = clock or (lambda: datetime.now(UTC))
        self._task: asyncio.Task | None = None
        self._cycle_lock = asyncio.Lock()
        self.last_summary: PollSummary | None = None
        self.last_cycle_at: datetime | None = None

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> asyncio.Task:
        """Start the polling loop; returns the running task if already started."""
        if self.is_polling:
            logger.info("Poller already running", agent_id=self.agent_id)
            return self._task

        tracking = await self._ensure_tracking()
        self._publish(
            "elevenlabs-tracking-status",
            {
                "agent_id": self.agent_id,
                "is_active": tracking.is_active,
                "total_processed": tracking.total_processed,
                "last_processed_at": tracking.last_processed_at,
            },
        )

        self._task = asyncio.create_task(self._run_loop(), name=f"interview-poller-{self.agent_id}")
        logger.info(
            "Poller started",
            agent_id=self.agent_id,
            interval_seconds=self.poll_interval_seconds,
            warmup_seconds=self.warmup_seconds,
        )
        return self._task

    async def stop(self) -> None:
        """Cancel the timer; a cycle already running finishes first."""
        if not self.is_polling:
            return
        task, self._task = self._task, None
        async with self._cycle_lock:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Poller stopped", agent_id=self.agent_id)

    async def _run_loop(self) -> None:
        await asyncio.sleep(self.warmup_seconds)
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(
                    "Poll cycle failed", agent_id=self.agent_id, error=str(e), error_type=type(e).__name__
                )
            await asyncio.sleep(self.poll_interval_seconds)

    async def _ensure_tracking(self) -> TrackingRecord:
        tracking = await self.store.get_tracking(self.agent_id)
        if tracking is not None:
            return tracking
        logger.info("Creating tracking record", agent_id=self.agent_id)
        return await self.store.upsert_tracking(
            TrackingRecord(agent_id=self.agent_id, last_processed_at=self._clock())
        )

    async def trigger_manual_poll(self) -> PollSummary:
        logger.info("Manual poll triggered", agent_id=self.agent_id)
        await self._ensure_tracking()
        return await self.poll_once()

    async def poll_once(self) -> PollSummary:
        async with self._cycle_lock:
            summary = await self._poll_cycle()
        self.last_summary = summary
        self.last_cycle_at = self._clock()
        self.poison_handler.cleanup_old_records()
        await self.poison_handler.persist()
        return summary

    async def _poll_cycle(self) -> PollSummary:
        summary = PollSummary()
        tracking = await self.store.get_tracking(self.agent_id)
        if tracking is None or not tracking.is_active:
            logger.info("Tracking inactive or missing, skipping poll", agent_id=self.agent_id)
            return summary

        try:
            page = await self.client.list_conversations(
                self.agent_id, limit=self.page_size, after=tracking.last_processed_at
            )
        except Exception as e:
            await self._record_batch_error(e)
            raise

        items = [normalize_listing_item(item) for item in page.conversations]
        summary.found = len(items)
        retry_ids = self.poison_handler.get_conversations_ready_for_retry()
        if not items and not retry_ids:
            logger.info("No new conversations", agent_id=self.agent_id)
            return summary

        cursor = tracking.last_processed_at
        last_conversation_id = tracking.last_conversation_id
        seen: set[str] = set()

        for item in items:
            conversation_id = listing_conversation_id(item)
            if not conversation_id:
                summary.skipped += 1
                continue
            seen.add(conversation_id)

            timestamp = await self._process_item(conversation_id, summary)
            if timestamp is None:
                continue
            item_at = listing_timestamp(item) or timestamp
            if cursor is None or item_at > cursor:
                cursor = item_at
            last_conversation_id = conversation_id

        # Retries whose listing entry is already behind the cursor
        for conversation_id in retry_ids:
            if conversation_id not in seen:
                await self._process_item(conversation_id, summary)

        changes: dict[str, Any] = {}
        if summary.processed or summary.failed:
            changes["total_processed"] = tracking.total_processed + summary.processed
            changes["total_failed"] = tracking.total_failed + summary.failed
        if items:
            changes.update(
                last_processed_at=cursor,
                last_conversation_id=last_conversation_id,
                last_error=None,
                last_error_at=None,
            )
        # A retry-only cycle leaves the cursor and the last error as they were
        if changes:
            await self.store.update_tracking(self.agent_id, changes)

        logger.info(
            "Poll cycle complete",
            agent_id=self.agent_id,
            found=summary.found,
            processed=summary.processed,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        self._publish(
            "elevenlabs-automation-update",
            {
                "agent_id": self.agent_id,
                "new_conversations": summary.processed,
                "failed": summary.failed,
                "total_processed": tracking.total_processed + summary.processed,
                "last_processed_at": cursor,
            },
        )
        return summary

    async def _process_item(self, conversation_id: str, summary: PollSummary) -> datetime | None:
        """Process one conversation; returns its activity timestamp on success."""
        if self.poison_handler.is_poisoned(conversation_id):
            logger.debug("Skipping poisoned conversation", conversation_id=conversation_id)
            summary.skipped += 1
            return None
        if not self.poison_handler.is_ready_for_retry(conversation_id):
            logger.debug("Conversation still in backoff", conversation_id=conversation_id)
            summary.skipped += 1
            return None

        try:
            result = await self.ingest_service.process_conversation(conversation_id)
        except PERMANENT_ERRORS as e:
            self.poison_handler.force_mark_as_poisoned(conversation_id, str(e))
            summary.failed += 1
            summary.errors.append(
                {"conversation_id": conversation_id, "error": str(e), "permanent": True}
            )
            return None
        except Exception as e:
            decision = self.poison_handler.should_retry_conversation(conversation_id, str(e))
            summary.failed += 1
            summary.errors.append(
                {
                    "conversation_id": conversation_id,
                    "error": str(e),
                    "permanent": False,
                    "attempt": decision.attempt,
                    "poisoned": decision.poisoned,
                }
            )
            return None

        self.poison_handler.mark_success(conversation_id)
        summary.processed += 1
        return result.candidate.interview_date or self._clock()

    async def _record_batch_error(self, error: Exception) -> None:
        message = str(error)[:LAST_ERROR_MAX_CHARS]
        logger.error("Conversation listing failed", agent_id=self.agent_id, error=message)
        try:
            await self.store.update_tracking(
                self.agent_id, {"last_error": message, "last_error_at": self._clock()}
            )
        except Exception as e:
            logger.error("Failed to record tracking error", agent_id=self.agent_id, error=str(e))
        self._publish("elevenlabs-automation-error", {"agent_id": self.agent_id, "error": message})

    async def get_status(self) -> dict[str, Any]:
        tracking = await self.store.get_tracking(self.agent_id)
        return {
            "is_polling": self.is_polling,
            "agent_id": self.agent_id,
            "poll_interval_seconds": self.poll_interval_seconds,
            "tracking": tracking.to_dict() if tracking else None,
            "last_cycle_at": self.last_cycle_at,
            "last_summary": self.last_summary.to_dict() if self.last_summary else None,
            "poison": self.poison_handler.get_stats(),
        }

    def _publish(self, event_type: str, data: dict[str, Any]) -> None:
        if self.publisher is not None:
            self.publisher.broadcast(event_type, data)
