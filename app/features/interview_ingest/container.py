"""
Wiring for the interview ingest feature.

build_container() constructs every collaborator once and hands them to
each other through constructors. The FastAPI app keeps the container on
app.state; worker jobs build their own.
"""

from dataclasses import dataclass

from app.config import settings
from app.features.interview_ingest.domain.models import AUDIT_ACTOR, AUDIT_PATH
from app.features.interview_ingest.pipeline.extraction import candidate_extractor
from app.features.interview_ingest.pipeline.ingest import IngestService
from app.features.interview_ingest.repository import CandidateStore, PostgresCandidateStore
from app.features.interview_ingest.services import (
    ConversationPoller,
    PoisonHandler,
    ReconciliationService,
    RedisPoisonPersistence,
    SyncMonitoringService,
)
from app.infrastructure.audit import AuditLogger
from app.infrastructure.events import EventBroadcaster
from app.infrastructure.observability.logging import get_logger
from app.services.elevenlabs import ElevenLabsClient
from app.services.redis_client import FastRedisClient
from app.services.storage import FileStorage, LocalFileStorage

logger = get_logger(__name__)


@dataclass(slots=True)
class InterviewIngestContainer:
    store: CandidateStore
    client: ElevenLabsClient
    broadcaster: EventBroadcaster
    poison_handler: PoisonHandler
    ingest_service: IngestService
    poller: ConversationPoller
    reconciliation: ReconciliationService
    monitoring: SyncMonitoringService
    file_storage: FileStorage | None = None

    async def aclose(self) -> None:
        await self.poller.stop()
        await self.poison_handler.persist()
        await self.client.close()


def build_container(
    store: CandidateStore | None = None,
    client: ElevenLabsClient | None = None,
    broadcaster: EventBroadcaster | None = None,
    redis_client: FastRedisClient | None = None,
    file_storage: FileStorage | None = None,
    agent_id: str | None = None,
) -> InterviewIngestContainer:
    agent_id = agent_id or settings.ELEVENLABS_AGENT_ID
    store = store if store is not None else PostgresCandidateStore()
    client = client or ElevenLabsClient()
    broadcaster = broadcaster or EventBroadcaster()
    if file_storage is None and settings.FILE_STORAGE_DIR:
        file_storage = LocalFileStorage(settings.FILE_STORAGE_DIR)

    persistence = None
    if settings.POISON_PERSISTENCE_ENABLED and redis_client is not None:
        persistence = RedisPoisonPersistence(redis_client)

    poison_handler = PoisonHandler(publisher=broadcaster, persistence=persistence)
    ingest_service = IngestService(
        store=store,
        client=client,
        agent_id=agent_id,
        extractor=candidate_extractor,
        audit_logger=AuditLogger(store, actor=AUDIT_ACTOR, path_used=AUDIT_PATH),
        publisher=broadcaster,
        file_storage=file_storage,
    )
    poller = ConversationPoller(
        store=store,
        client=client,
        ingest_service=ingest_service,
        poison_handler=poison_handler,
        agent_id=agent_id,
        publisher=broadcaster,
    )
    reconciliation = ReconciliationService(
        store=store,
        client=client,
        ingest_service=ingest_service,
        agent_id=agent_id,
        publisher=broadcaster,
        poison_handler=poison_handler,
    )
    monitoring = SyncMonitoringService(
        store=store,
        reconciliation=reconciliation,
        poison_handler=poison_handler,
        agent_id=agent_id,
    )

    logger.info(
        "Interview ingest wired",
        agent_id=agent_id,
        file_storage=file_storage is not None,
        poison_persistence=persistence is not None,
    )
    return InterviewIngestContainer(
        store=store,
        client=client,
        broadcaster=broadcaster,
        poison_handler=poison_handler,
        ingest_service=ingest_service,
        poller=poller,
        reconciliation=reconciliation,
        monitoring=monitoring,
        file_storage=file_storage,
    )
