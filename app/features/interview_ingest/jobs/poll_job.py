"""
Interview poll job for the background worker.

Runs one poll cycle per interval outside the API process. Use either this
job or the API's in-process poller (INGEST_AUTOSTART) for a given agent.
"""

import asyncio
from datetime import UTC, datetime

from app.config import settings
from app.features.interview_ingest.services import ConversationPoller
from app.infrastructure.observability.logging import get_logger

from .bootstrap import worker_container

logger = get_logger(__name__)

RETRY_AFTER_ERROR_SECONDS = 60


class PollJobMetrics:
    """Metrics tracking for poll job runs."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(UTC)
        self.found = 0
        self.processed = 0
        self.failed = 0
        self.skipped = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_summary(self, summary) -> None:
        self.found = summary.found
        self.processed = summary.processed
        self.failed = summary.failed
        self.skipped = summary.skipped
        self.errors = list(summary.errors)

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "interview_poll",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "found": self.found,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors_count": len(self.errors),
        }


class InterviewPollJob:
    """Wraps one poller cycle with run metrics and a re-entrancy guard."""

    def __init__(self, poller: ConversationPoller):
        self.poller = poller
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = PollJobMetrics()

    async def run_once(self) -> dict:
        if self.is_running:
            logger.warning("Interview poll job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            summary = await self.poller.trigger_manual_poll()
            self.job_metrics.record_summary(summary)
            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)

            metrics = self.job_metrics.to_dict()
            logger.info("Interview poll job completed", **metrics)
            if self.job_metrics.errors:
                logger.warning(
                    "Interview poll job had failures",
                    error_count=len(self.job_metrics.errors),
                    errors=self.job_metrics.errors[:10],
                )
            return metrics

        except Exception as e:
            logger.error("Interview poll job failed", error=str(e), error_type=type(e).__name__)
            self.job_metrics.finalize()
            metrics = self.job_metrics.to_dict()
            metrics["job_error"] = str(e)
            return metrics

        finally:
            self.is_running = False


async def start_interview_poll_scheduler() -> None:
    """Run the poll job forever at INGEST_POLL_INTERVAL_SECONDS."""
    async with worker_container() as container:
        job = InterviewPollJob(container.poller)
        logger.info(
            "Interview poll scheduler started",
            agent_id=container.poller.agent_id,
            interval_seconds=settings.INGEST_POLL_INTERVAL_SECONDS,
        )

        await asyncio.sleep(settings.INGEST_WARMUP_SECONDS)
        while True:
            try:
                await job.run_once()
                await asyncio.sleep(settings.INGEST_POLL_INTERVAL_SECONDS)

            except Exception as e:
                logger.error(
                    "Error in interview poll scheduler", error=str(e), error_type=type(e).__name__
                )
                await asyncio.sleep(RETRY_AFTER_ERROR_SECONDS)


if __name__ == "__main__":
    asyncio.run(start_interview_poll_scheduler())
