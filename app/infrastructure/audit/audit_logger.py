"""
AuditLogger - audit trail for collaboration lifecycle and payment events.

Every committed state transition, payment capture and payout attempt is
recorded twice:
1. Structured logs (stdout) for real-time monitoring
2. The ``audit_logs`` collection of the document store for investigations

Usage:
    await AuditLogger(store).log_transition(
        collaboration_id=collab_id,
        from_status="in_progress",
        to_status="completed",
        action="release_payout",
        actor_id=user_id,
    )

Audit failures never fail the request.
"""

from datetime import UTC, datetime
from typing import Any

import structlog

from app.db.document_store import DocumentStore, document_store
from app.infrastructure.observability.logging import get_logger, log_transition

logger = get_logger(__name__)

AUDIT_COLLECTION = "audit_logs"


class AuditLogger:
    def __init__(self, store: DocumentStore | None = None):
        self.store = store or document_store

    async def log(
        self,
        action: str,
        actor_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Record an audit event.

        Returns:
            True if persisted, False if the store write failed (never raises)
        """
        request_id = structlog.contextvars.get_contextvars().get("request_id")

        logger.info(
            "Audit event",
            audit_action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            request_id=request_id,
        )

        entry = {
            "action": action,
            "actorId": actor_id,
            "resourceType": resource_type,
            "resourceId": resource_id,
            "requestId": request_id,
            "metadata": metadata or {},
            "createdAt": datetime.now(UTC).isoformat(),
        }

        try:
            await self.store.create(AUDIT_COLLECTION, entry)
            return True
        except Exception as e:
            logger.error(
                "CRITICAL: Failed to write audit log",
                error=str(e),
                error_type=type(e).__name__,
                fallback_data=entry,
            )
            return False

    async def log_transition(
        self,
        collaboration_id: str,
        from_status: str,
        to_status: str,
        action: str,
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        log_transition(collaboration_id, from_status, to_status, action, actor_id)
        return await self.log(
            action=action,
            actor_id=actor_id,
            resource_type="collaboration",
            resource_id=collaboration_id,
            metadata={"fromStatus": from_status, "toStatus": to_status, **(metadata or {})},
        )

