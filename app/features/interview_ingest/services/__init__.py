"""
Service layer for the interview ingest feature.
"""

from .monitoring_service import SyncMonitoringService
from .poison_handler import InMemoryPoisonStore, PoisonHandler, RetryDecision, categorize_error
from .poison_persistence import RedisPoisonPersistence
from .poller import ConversationPoller
from .reconciliation_service import ReconciliationService

__all__ = [
    "ConversationPoller",
    "InMemoryPoisonStore",
    "PoisonHandler",
    "ReconciliationService",
    "RedisPoisonPersistence",
    "RetryDecision",
    "SyncMonitoringService",
    "categorize_error",
]
