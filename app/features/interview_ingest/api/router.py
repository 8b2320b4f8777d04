"""
Interview sync operator routes.

Everything under /interviews/sync requires the admin API key. Results are
plain dicts built from the domain result objects.
"""

import asyncio
import json
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from app.auth.verify import admin_dependency
from app.features.interview_ingest.container import InterviewIngestContainer
from app.infrastructure.observability.logging import get_logger
from app.services.elevenlabs import ElevenLabsAPIError

logger = get_logger(__name__)

router = APIRouter(
    prefix="/interviews/sync",
    tags=["interview-sync"],
    dependencies=[Depends(admin_dependency)],
)

SSE_KEEPALIVE_SECONDS = 15.0


class BackfillRequest(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    dry_run: bool = False
    max_conversations: int | None = Field(default=None, ge=1, le=10000)
    skip_processed: bool = True


def get_container(request: Request) -> InterviewIngestContainer:
    container = getattr(request.app.state, "interview_ingest", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Interview ingest not initialized",
        )
    return container


@router.get("/status")
async def get_sync_status(container: InterviewIngestContainer = Depends(get_container)) -> dict:
    return await container.poller.get_status()


@router.post("/start")
async def start_polling(container: InterviewIngestContainer = Depends(get_container)) -> dict:
    already_running = container.poller.is_polling
    await container.poller.start()
    return {"started": not already_running, "is_polling": True}


@router.post("/stop")
async def stop_polling(container: InterviewIngestContainer = Depends(get_container)) -> dict:
    was_running = container.poller.is_polling
    await container.poller.stop()
    return {"stopped": was_running, "is_polling": False}


@router.post("/poll")
async def trigger_poll(container: InterviewIngestContainer = Depends(get_container)) -> dict:
    try:
        summary = await container.poller.trigger_manual_poll()
    except ElevenLabsAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Conversation listing failed: {e}",
        ) from e
    return summary.to_dict()


@router.get("/verify")
async def verify_sync(
    days: int = Query(default=30, ge=1, le=365),
    container: InterviewIngestContainer = Depends(get_container),
) -> dict:
    result = await container.reconciliation.verify_sync_status(days)
    return result.to_dict()


@router.post("/backfill")
async def backfill(
    request: BackfillRequest,
    container: InterviewIngestContainer = Depends(get_container),
) -> dict:
    if request.start_date and request.end_date and request.start_date >= request.end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be before end_date",
        )
    result = await container.reconciliation.perform_backfill(
        start=request.start_date,
        end=request.end_date,
        dry_run=request.dry_run,
        max_conversations=request.max_conversations,
        skip_processed=request.skip_processed,
    )
    return result.to_dict()


@router.get("/gaps")
async def detect_gaps(
    days: int = Query(default=30, ge=1, le=365),
    container: InterviewIngestContainer = Depends(get_container),
) -> dict:
    try:
        analysis = await container.reconciliation.detect_gaps(days)
    except ElevenLabsAPIError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    return analysis.to_dict()


@router.post("/heal")
async def heal_gaps(
    days: int = Query(default=30, ge=1, le=365),
    container: InterviewIngestContainer = Depends(get_container),
) -> dict:
    try:
        return await container.monitoring.auto_heal(days)
    except ElevenLabsAPIError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e


@router.get("/dashboard")
async def sync_dashboard(container: InterviewIngestContainer = Depends(get_container)) -> dict:
    return await container.monitoring.get_dashboard()


@router.get("/alerts")
async def sync_alerts(container: InterviewIngestContainer = Depends(get_container)) -> dict:
    alerts = await container.monitoring.get_alerts()
    return {"total": len(alerts), "alerts": alerts}


@router.get("/report")
async def sync_report(
    days: int = Query(default=30, ge=1, le=365),
    container: InterviewIngestContainer = Depends(get_container),
) -> dict:
    try:
        return await container.monitoring.get_sync_report(days)
    except ElevenLabsAPIError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e


@router.get("/poison")
async def list_poisoned(container: InterviewIngestContainer = Depends(get_container)) -> dict:
    handler = container.poison_handler
    records = handler.get_poisoned_conversations()
    return {
        "total": len(records),
        "conversations": [record.to_dict() for record in records],
        "statistics": handler.get_stats(),
    }


@router.post("/poison/{conversation_id}/retry")
async def retry_poisoned(
    conversation_id: str, container: InterviewIngestContainer = Depends(get_container)
) -> dict:
    if not container.poison_handler.manual_retry(conversation_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found in poison records",
        )
    await container.poison_handler.persist()
    return {"success": True, "conversation_id": conversation_id}


@router.delete("/poison")
async def clear_poisoned(container: InterviewIngestContainer = Depends(get_container)) -> dict:
    count = container.poison_handler.clear_all_poison_records()
    await container.poison_handler.persist()
    return {"success": True, "cleared": count}


@router.get("/events/recent")
async def recent_events(
    event_type: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    container: InterviewIngestContainer = Depends(get_container),
) -> dict:
    events = container.broadcaster.recent(event_type, limit)
    return {"total": len(events), "events": events}


def _format_sse(event: dict[str, Any]) -> str:
    payload = json.dumps(event, default=str)
    return f"event: {event['type']}\ndata: {payload}\n\n"


@router.get("/events")
async def stream_events(
    request: Request, container: InterviewIngestContainer = Depends(get_container)
) -> StreamingResponse:
    broadcaster = container.broadcaster
    queue = broadcaster.subscribe()

    async def event_stream():
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield _format_sse(event)
        finally:
            broadcaster.unsubscribe(queue)
            logger.debug("Event stream closed", subscribers=broadcaster.subscriber_count)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
