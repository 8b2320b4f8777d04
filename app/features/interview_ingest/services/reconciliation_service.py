"""
Reconciliation between the provider's conversation set and local candidates.

verify_sync_status() and detect_gaps() are read-only set comparisons over a
bounded window. perform_backfill() and heal_gaps() replay conversations
through the same IngestService the poller uses, so a conversation ingested
by both paths still yields one candidate.
"""

import asyncio
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.features.interview_ingest.domain.errors import PoisonedConversationError
from app.features.interview_ingest.domain.models import (
    UNKNOWN_CANDIDATE_NAME,
    BackfillResult,
    Candidate,
    GapAnalysis,
    HealResult,
    SyncHealth,
    SyncStatus,
    SyncVerificationResult,
)
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

RECONCILE_PAGE_SIZE = 100
PAGE_PAUSE_SECONDS = 0.2
PROGRESS_EVERY = 10
PARTIAL_SYNC_RATIO = 0.05
GAP_SAMPLE_SIZE = 50
DURATION_MISMATCH_SECONDS = 10
PLACEHOLDER_EMAILS = frozenset({"unknown@email.com"})


def _is_invalid(candidate: Candidate) -> bool:
    if not candidate.email or not candidate.name or candidate.name == UNKNOWN_CANDIDATE_NAME:
        return True
    return candidate.synthetic_email or candidate.email.lower() in PLACEHOLDER_EMAILS


def classify_sync(issue_count: int, external_count: int) -> tuple[SyncStatus, SyncHealth]:
    if issue_count == 0:
        return SyncStatus.SYNCED, SyncHealth.HEALTHY
    if issue_count < external_count * PARTIAL_SYNC_RATIO:
        return SyncStatus.PARTIAL, SyncHealth.DEGRADED
    return SyncStatus.OUT_OF_SYNC, SyncHealth.CRITICAL


class ReconciliationService:
    """Verify, backfill and heal the local candidate set for one agent."""

    def __init__(
        self,
        store: CandidateStore,
        client: ElevenLabsClient,
        ingest_service: IngestService,
        agent_id: str | None = None,
        publisher: EventPublisher | None = None,
        poison_handler: PoisonHandler | None = None,
        page_pause_seconds: float = PAGE_PAUSE_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.client = client
        self.ingest_service = ingest_service
        self.agent_id = agent_id or settings.ELEVENLABS_AGENT_ID
        self.publisher = publisher
        self.poison_handler = poison_handler
        self.page_pause_seconds = page_pause_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self.last_verification: SyncVerificationResult | None = None

    async def _fetch_window(
        self,
        after: datetime,
        before: datetime | None = None,
        max_items: int | None = None,
    ) -> list[dict[str, Any]]:
        """Page through the provider listing for [after, before); entries come back normalized and deduplicated by id."""
        limit = max_items or settings.RECONCILE_MAX_CONVERSATIONS
        items: list[dict[str, Any]] = []
        seen: set[str] = set()
        cursor: str | None = None
        page_after = after

        while len(items) < limit:
            page = await self.client.list_conversations(
                self.agent_id,
                limit=RECONCILE_PAGE_SIZE,
                cursor=cursor,
                after=page_after,
                before=before,
            )
            entries = [normalize_listing_item(item) for item in page.conversations]
            if not entries:
                break

            for item in entries:
                conversation_id = listing_conversation_id(item)
                if conversation_id and conversation_id not in seen:
                    seen.add(conversation_id)
                    items.append(item)

            if not page.has_more:
                break
            if page.cursor:
                cursor = page.cursor
            else:
                timestamps = [ts for ts in map(listing_timestamp, entries) if ts]
                next_after = max(timestamps) if timestamps else None
                if next_after is None or next_after <= page_after:
                    break
                page_after = next_after

            logger.debug("Fetched conversation page", agent_id=self.agent_id, total=len(items))
            await asyncio.sleep(self.page_pause_seconds)

        return items[:limit]

    async def verify_sync_status(self, days: int | None = None) -> SyncVerificationResult:
        days = days or settings.RECONCILE_VERIFY_DAYS
        now = self._clock()
        since = now - timedelta(days=days)
        logger.info("Starting sync verification", agent_id=self.agent_id, days=days)

        try:
            tracking = await self.store.get_tracking(self.agent_id)
            external = await self._fetch_window(since)
            local = await self.store.list_conversation_candidates(since=since)

            external_ids = {listing_conversation_id(item) for item in external}
            counts = Counter(candidate.conversation_id for candidate in local)
            local_ids = set(counts)

            missing = sorted(external_ids - local_ids)
            orphaned = sorted(local_ids - external_ids)
            duplicate = sorted(cid for cid, count in counts.items() if count > 1)
            invalid = sorted({c.conversation_id for c in local if _is_invalid(c)})

            issue_count = len(missing) + len(orphaned) + len(duplicate) + len(invalid)
            status, health = classify_sync(issue_count, len(external))
            result = SyncVerificationResult(
                status=status,
                health=health,
                external_count=len(external),
                local_count=len(local),
                missing=missing,
                orphaned=orphaned,
                duplicate=duplicate,
                invalid=invalid,
                checked_at=now,
                last_successful_sync_at=tracking.last_processed_at if tracking else None,
                details={
                    "window_days": days,
                    "tracking": tracking.to_dict() if tracking else None,
                },
            )
        except Exception as e:
            logger.error("Sync verification failed", agent_id=self.agent_id, error=str(e))
            result = SyncVerificationResult(
                status=SyncStatus.OUT_OF_SYNC,
                health=SyncHealth.CRITICAL,
                external_count=0,
                local_count=0,
                checked_at=now,
                error=str(e),
            )
            self.last_verification = result
            self._publish("sync-verification-error", {"error": str(e)})
            return result

        logger.info(
            "Sync verification complete",
            agent_id=self.agent_id,
            status=result.status.value,
            health=result.health.value,
            missing=len(missing),
            orphaned=len(orphaned),
            duplicate=len(duplicate),
            invalid=len(invalid),
        )
        self.last_verification = result
        self._publish("sync-verification-complete", result.to_dict())
        return result

    async def perform_backfill(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        dry_run: bool = False,
        max_conversations: int | None = None,
        skip_processed: bool = True,
    ) -> BackfillResult:
        now = self._clock()
        start = start or now - timedelta(days=settings.RECONCILE_BACKFILL_DAYS)
        end = end or now
        max_conversations = max_conversations or settings.RECONCILE_MAX_CONVERSATIONS
        result = BackfillResult(dry_run=dry_run, started_at=now)

        logger.info(
            "Starting backfill",
            agent_id=self.agent_id,
            start=start.isoformat(),
            end=end.isoformat(),
            dry_run=dry_run,
            max_conversations=max_conversations,
        )

        try:
            conversations = await self._fetch_window(start, before=end, max_items=max_conversations)
        except Exception as e:
            logger.error("Backfill listing failed", agent_id=self.agent_id, error=str(e))
            result.failed = 1
            result.errors.append({"conversation_id": None, "error": str(e)})
            result.finished_at = self._clock()
            self._publish("backfill-error", {"error": str(e)})
            return result

        result.total = len(conversations)
        ids = [cid for cid in map(listing_conversation_id, conversations) if cid]

        if dry_run:
            result.would_process = len(ids)
            result.conversation_ids = ids
            result.finished_at = self._clock()
            logger.info("Backfill dry run", agent_id=self.agent_id, would_process=len(ids))
            self._publish("backfill-complete", result.to_dict())
            return result

        for index, conversation_id in enumerate(ids, start=1):
            if skip_processed and await self._already_ingested(conversation_id):
                result.skipped += 1
            else:
                await self._replay(conversation_id, result)

            if index % PROGRESS_EVERY == 0:
                self._publish(
                    "backfill-progress",
                    {
                        "handled": index,
                        "total": result.total,
                        "created": result.created,
                        "updated": result.updated,
                        "failed": result.failed,
                        "skipped": result.skipped,
                    },
                )

        result.finished_at = self._clock()
        logger.info(
            "Backfill complete",
            agent_id=self.agent_id,
            total=result.total,
            created=result.created,
            updated=result.updated,
            failed=result.failed,
            skipped=result.skipped,
        )
        self._publish("backfill-complete", result.to_dict())
        return result

    async def _already_ingested(self, conversation_id: str) -> bool:
        try:
            return await self.store.get_candidate_by_conversation_id(conversation_id) is not None
        except Exception as e:
            logger.warning(
                "Processed check failed, replaying", conversation_id=conversation_id, error=str(e)
            )
            return False

    def _guard_poisoned(self, conversation_id: str) -> None:
        if self.poison_handler is not None and self.poison_handler.is_poisoned(conversation_id):
            raise PoisonedConversationError(
                "Conversation is poisoned; clear it with a manual retry first",
                conversation_id=conversation_id,
            )

    async def _replay(self, conversation_id: str, result: BackfillResult | HealResult) -> None:
        try:
            self._guard_poisoned(conversation_id)
            ingested = await self.ingest_service.process_conversation(conversation_id)
        except Exception as e:
            result.failed += 1
            result.errors.append({"conversation_id": conversation_id, "error": str(e)})
            logger.warning("Replay failed", conversation_id=conversation_id, error=str(e))
            return

        if self.poison_handler is not None:
            self.poison_handler.mark_success(conversation_id)
        result.processed += 1
        if ingested.action == "created":
            result.created += 1
        else:
            result.updated += 1

    async def detect_gaps(self, days: int | None = None) -> GapAnalysis:
        days = days or settings.RECONCILE_VERIFY_DAYS
        since = self._clock() - timedelta(days=days)

        external = await self._fetch_window(since)
        local = await self.store.list_conversation_candidates(since=since)
        by_conversation = {c.conversation_id: c for c in local}

        external_ids = {listing_conversation_id(item) for item in external}
        analysis = GapAnalysis(
            window_days=days,
            external_count=len(external),
            local_count=len(local),
            missing=sorted(external_ids - set(by_conversation)),
            orphaned=sorted(set(by_conversation) - external_ids),
        )

        for item in external[:GAP_SAMPLE_SIZE]:
            candidate = by_conversation.get(listing_conversation_id(item))
            remote_duration = item.get("call_duration_secs")
            if candidate is None or not candidate.call_duration_secs or not remote_duration:
                continue
            try:
                delta = abs(float(candidate.call_duration_secs) - float(remote_duration))
            except (TypeError, ValueError):
                continue
            if delta > DURATION_MISMATCH_SECONDS:
                analysis.inconsistent.append(
                    {
                        "conversation_id": candidate.conversation_id,
                        "issue": "call_duration_mismatch",
                        "local": candidate.call_duration_secs,
                        "external": remote_duration,
                    }
                )

        logger.info(
            "Gap analysis complete",
            agent_id=self.agent_id,
            days=days,
            missing=len(analysis.missing),
            orphaned=len(analysis.orphaned),
            inconsistent=len(analysis.inconsistent),
        )
        return analysis

    async def heal_gaps(
        self, days: int | None = None, analysis: GapAnalysis | None = None
    ) -> HealResult:
        """Replay conversations missing locally. Orphans and inconsistencies are reported only."""
        analysis = analysis or await self.detect_gaps(days)
        result = HealResult()
        logger.info("Healing gaps", agent_id=self.agent_id, missing=len(analysis.missing))

        for conversation_id in analysis.missing:
            await self._replay(conversation_id, result)

        logger.info(
            "Gap healing complete",
            agent_id=self.agent_id,
            processed=result.processed,
            created=result.created,
            failed=result.failed,
        )
        return result

    def _publish(self, event_type: str, data: dict[str, Any]) -> None:
        if self.publisher is not None:
            self.publisher.broadcast(event_type, data)
