"""
Sync monitoring helpers.

Combines sync verification, poison statistics and the tracking record into
dashboard metrics, alerts and recommendations for operators.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.features.interview_ingest.domain.models import (
    GapAnalysis,
    SyncHealth,
    SyncVerificationResult,
    TrackingRecord,
)
from app.features.interview_ingest.repository.base import CandidateStore
from app.infrastructure.observability.logging import get_logger

from .poison_handler import PoisonHandler
from .reconciliation_service import ReconciliationService

logger = get_logger(__name__)

POISONED_ALERT_THRESHOLD = 5
RECENT_ERROR_WINDOW = timedelta(minutes=30)


def calculate_sync_health_score(verification: SyncVerificationResult) -> int:
    total = verification.external_count
    if total == 0:
        return 100
    issues = len(verification.missing) + len(verification.duplicate) + len(verification.invalid)
    return max(0, round((1 - issues / total) * 100))


def calculate_poison_health_score(poison_stats: dict[str, Any]) -> int:
    total = poison_stats.get("total_failed", 0)
    if total == 0:
        return 100
    return max(0, round((1 - poison_stats.get("poisoned", 0) / total) * 100))


def generate_alerts(
    verification: SyncVerificationResult,
    poison_stats: dict[str, Any],
    tracking: TrackingRecord | None,
    now: datetime,
) -> list[dict[str, str]]:
    alerts: list[dict[str, str]] = []

    if verification.health == SyncHealth.CRITICAL:
        alerts.append(
            {
                "type": "critical",
                "title": "Sync Health Critical",
                "message": "Multiple sync issues detected requiring immediate attention",
                "action": "Run backfill or auto-heal",
            }
        )

    poisoned = poison_stats.get("poisoned", 0)
    if poisoned > POISONED_ALERT_THRESHOLD:
        alerts.append(
            {
                "type": "warning",
                "title": "Multiple Poisoned Conversations",
                "message": f"{poisoned} conversations are repeatedly failing",
                "action": "Review and manually retry or fix root cause",
            }
        )

    if tracking and tracking.last_error and tracking.last_error_at:
        if now - tracking.last_error_at < RECENT_ERROR_WINDOW:
            alerts.append(
                {
                    "type": "error",
                    "title": "Recent Automation Error",
                    "message": tracking.last_error,
                    "action": "Check automation service health",
                }
            )

    return alerts


def generate_recommendations(verification: SyncVerificationResult, gaps: GapAnalysis) -> list[str]:
    recommendations: list[str] = []
    if gaps.missing:
        recommendations.append(f"Run backfill to process {len(gaps.missing)} missing conversations")
    if verification.duplicate:
        recommendations.append(f"Resolve {len(verification.duplicate)} duplicate conversations")
    if verification.invalid:
        recommendations.append(f"Clean up {len(verification.invalid)} invalid candidates")
    if gaps.inconsistent:
        recommendations.append(f"Review {len(gaps.inconsistent)} conversations with mismatched data")
    if verification.health == SyncHealth.CRITICAL:
        recommendations.append("Consider running auto-heal to fix detected issues")
    return recommendations


class SyncMonitoringService:
    """Compile sync metrics for dashboards and the operator API."""

    def __init__(
        self,
        store: CandidateStore,
        reconciliation: ReconciliationService,
        poison_handler: PoisonHandler,
        agent_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.reconciliation = reconciliation
        self.poison_handler = poison_handler
        self.agent_id = agent_id or settings.ELEVENLABS_AGENT_ID
        self._clock = clock or (lambda: datetime.now(UTC))
        self._started = time.monotonic()

    async def get_dashboard(self) -> dict[str, Any]:
        now = self._clock()
        verification = await self.reconciliation.verify_sync_status()
        poison_stats = self.poison_handler.get_stats()
        tracking = await self.store.get_tracking(self.agent_id)

        dashboard = {
            "timestamp": now.isoformat(),
            "system_health": {
                "status": verification.health.value,
                "uptime_seconds": round(time.monotonic() - self._started, 1),
                "environment": settings.environment,
            },
            "sync_metrics": {
                "status": verification.status.value,
                "external_conversations": verification.external_count,
                "local_candidates": verification.local_count,
                "missing": len(verification.missing),
                "orphaned": len(verification.orphaned),
                "duplicate": len(verification.duplicate),
                "invalid": len(verification.invalid),
                "last_successful_sync_at": verification.last_successful_sync_at,
                "sync_health_score": calculate_sync_health_score(verification),
                "error": verification.error,
            },
            "automation_metrics": tracking.to_dict() if tracking else None,
            "poison_metrics": {
                **poison_stats,
                "health_score": calculate_poison_health_score(poison_stats),
            },
            "alerts": generate_alerts(verification, poison_stats, tracking, now),
        }
        logger.info(
            "Sync dashboard generated",
            agent_id=self.agent_id,
            sync_status=verification.status.value,
            alerts=len(dashboard["alerts"]),
        )
        return dashboard

    async def get_alerts(self) -> list[dict[str, str]]:
        verification = self.reconciliation.last_verification
        if verification is None:
            verification = await self.reconciliation.verify_sync_status()
        tracking = await self.store.get_tracking(self.agent_id)
        return generate_alerts(
            verification, self.poison_handler.get_stats(), tracking, self._clock()
        )

    async def get_sync_report(self, days: int | None = None) -> dict[str, Any]:
        verification = await self.reconciliation.verify_sync_status(days)
        gaps = await self.reconciliation.detect_gaps(days)
        return {
            "verification": verification.to_dict(),
            "gaps": gaps.to_dict(),
            "recommendations": generate_recommendations(verification, gaps),
            "timestamp": self._clock().isoformat(),
        }

    async def auto_heal(self, days: int | None = None) -> dict[str, Any]:
        gaps = await self.reconciliation.detect_gaps(days)
        result = await self.reconciliation.heal_gaps(analysis=gaps)
        return {**result.to_dict(), "missing_before": len(gaps.missing)}
