"""
AuditLogger - audit trail for conversation processing.

Every processed conversation (success or failure) produces exactly one
audit entry. Entries go to structured logs first and then to the audit
sink (the candidate store's audit_logs table).

Usage:
    audit = AuditLogger(sink=store, actor="elevenlabs_agent", path_used="elevenlabs_api")

    await audit.log(
        action="candidate_created_from_interview",
        payload={"candidate_id": candidate.id, "conversation_id": conversation_id},
    )

Design Principles:
- Write to both the sink (queryable) and structured logs (searchable)
- Never fail the pipeline if audit logging fails
"""

from typing import Any, Protocol

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditSink(Protocol):
    async def create_audit_log(
        self, action: str, payload: dict[str, Any], actor: str, path_used: str
    ) -> None: ...


class AuditLogger:
    """
    Audit entry writer bound to one sink and one actor identity.

    Returns a bool from log() and never raises.
    """

    def __init__(self, sink: AuditSink | None, actor: str = "system", path_used: str = "internal"):
        self.sink = sink
        self.actor = actor
        self.path_used = path_used

    async def log(self, action: str, payload: dict[str, Any] | None = None) -> bool:
        """
        Log an audit event to structured logs and the sink.

        Args:
            action: Action name (e.g. "candidate_created_from_interview")
            payload: JSON-serializable context for the entry

        Returns:
            True if the sink accepted the entry, False otherwise (never raises)
        """
        payload = payload or {}

        logger.info(
            "Audit event",
            audit_action=action,
            actor=self.actor,
            path_used=self.path_used,
            conversation_id=payload.get("conversation_id"),
            candidate_id=payload.get("candidate_id"),
        )

        if self.sink is None:
            return False

        try:
            await self.sink.create_audit_log(
                action=action, payload=payload, actor=self.actor, path_used=self.path_used
            )
            return True

        except Exception as e:
            logger.error(
                "Failed to write audit log",
                audit_action=action,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
