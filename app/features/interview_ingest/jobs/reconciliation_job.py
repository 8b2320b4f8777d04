"""
Periodic sync verification with automatic healing.

Each run verifies the local candidate set against the provider and, when
anything is missing, replays the missing conversations.
"""

import asyncio
from datetime import UTC, datetime

from app.config import settings
from app.features.interview_ingest.domain.models import SyncStatus
from app.features.interview_ingest.services import ReconciliationService
from app.infrastructure.observability.logging import get_logger

from .bootstrap import worker_container

logger = get_logger(__name__)

RETRY_AFTER_ERROR_SECONDS = 300


class ReconciliationJob:
    def __init__(self, reconciliation: ReconciliationService, auto_heal: bool = True):
        self.reconciliation = reconciliation
        self.auto_heal = auto_heal
        self.is_running = False
        self.last_run_time: datetime | None = None

    async def run_once(self) -> dict:
        if self.is_running:
            logger.warning("Reconciliation job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        start_time = datetime.now(UTC)
        try:
            self.is_running = True
            verification = await self.reconciliation.verify_sync_status()
            metrics = {
                "job_run": "interview_reconcile",
                "start_time": start_time.isoformat(),
                "sync_status": verification.status.value,
                "sync_health": verification.health.value,
                "missing": len(verification.missing),
                "orphaned": len(verification.orphaned),
                "duplicate": len(verification.duplicate),
                "invalid": len(verification.invalid),
            }
            if verification.error:
                metrics["job_error"] = verification.error

            elif self.auto_heal and verification.status != SyncStatus.SYNCED and verification.missing:
                heal = await self.reconciliation.heal_gaps()
                metrics["healed"] = heal.to_dict()

            self.last_run_time = datetime.now(UTC)
            metrics["total_duration_seconds"] = round(
                (self.last_run_time - start_time).total_seconds(), 2
            )
            logger.info(
                "Reconciliation job completed", **{k: v for k, v in metrics.items() if k != "healed"}
            )
            return metrics

        except Exception as e:
            logger.error("Reconciliation job failed", error=str(e), error_type=type(e).__name__)
            return {"job_run": "interview_reconcile", "job_error": str(e)}

        finally:
            self.is_running = False


async def start_interview_reconcile_scheduler() -> None:
    """Run reconciliation every RECONCILE_INTERVAL_MINUTES."""
    async with worker_container() as container:
        job = ReconciliationJob(container.reconciliation)
        logger.info(
            "Reconciliation scheduler started",
            interval_minutes=settings.RECONCILE_INTERVAL_MINUTES,
        )

        while True:
            try:
                await job.run_once()
                await asyncio.sleep(settings.RECONCILE_INTERVAL_MINUTES * 60)

            except Exception as e:
                logger.error(
                    "Error in reconciliation scheduler", error=str(e), error_type=type(e).__name__
                )
                await asyncio.sleep(RETRY_AFTER_ERROR_SECONDS)


if __name__ == "__main__":
    asyncio.run(start_interview_reconcile_scheduler())
