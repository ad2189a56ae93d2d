"""
Persistence layer for collaborations and their scheduling sub-records.

Wraps the document store with typed reads and version-checked writes so the
lifecycle and scheduling services can stay focused on guards and transitions.
"""

from typing import Any

from pydantic_core import to_jsonable_python

from app.db.document_store import ConcurrentModificationError, DocumentStore, WriteBatch
from app.infrastructure.observability.logging import get_logger
from app.models.domain.collaboration_domain import (
    OPEN_STATUSES,
    Collaboration,
    CollaborationFeedback,
    CollaborationStatus,
    CollaborationType,
    FeedbackStats,
    PayoutError,
    ProposalStatus,
    RescheduleRequest,
    ScheduleProposal,
)
from app.models.domain.directory_domain import (
    PodcastRecord,
    ServiceOwnerType,
    ServiceRecord,
    UserRecord,
)
from app.services.errors import NotFoundError, StateConflictError
from app.utils.clock import utc_now

logger = get_logger(__name__)

COLLABORATIONS = "collaborations"
SCHEDULE_PROPOSALS = "schedule_proposals"
RESCHEDULE_REQUESTS = "reschedule_requests"
USERS = "users"
PODCASTS = "podcasts"
SERVICES = "services"
FEEDBACK = "collaboration_feedback"
RECORDING_REMINDERS = "recording_reminders"

CONCURRENT_MODIFICATION_MESSAGE = "Collaboration was modified concurrently, please retry"


def jsonable(changes: dict[str, Any]) -> dict[str, Any]:
    """Convert datetimes, enums and models to their stored JSON form."""
    return to_jsonable_python(changes, by_alias=True, exclude_none=False)


class CollaborationRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    # ------------------------------------------------------------------
    # Collaborations
    # ------------------------------------------------------------------

    async def get_collaboration(self, collaboration_id: str) -> Collaboration:
        doc = await self.store.get(COLLABORATIONS, collaboration_id)
        if not doc:
            raise NotFoundError("Collaboration not found", collaboration_id=collaboration_id)
        return Collaboration.from_document(doc)

    async def create_collaboration(self, collaboration: Collaboration) -> Collaboration:
        doc = await self.store.create(COLLABORATIONS, collaboration.to_document())
        logger.info(
            "Collaboration created",
            collaboration_id=doc["id"],
            collaboration_type=collaboration.type.value,
            status=collaboration.status.value,
        )
        return Collaboration.from_document(doc)

    async def update_collaboration(
        self, collaboration: Collaboration, changes: dict[str, Any]
    ) -> int:
        """Version-checked update against the snapshot ``collaboration`` was read at."""
        try:
            return await self.store.update(
                COLLABORATIONS, collaboration.id, jsonable(changes), collaboration.version
            )
        except ConcurrentModificationError as e:
            raise StateConflictError(
                CONCURRENT_MODIFICATION_MESSAGE, collaboration_id=collaboration.id
            ) from e

    async def commit(self, batch: WriteBatch, collaboration_id: str | None = None) -> None:
        try:
            await self.store.commit(batch)
        except ConcurrentModificationError as e:
            raise StateConflictError(
                CONCURRENT_MODIFICATION_MESSAGE, collaboration_id=collaboration_id
            ) from e

    def batch(self) -> WriteBatch:
        return self.store.batch()

    async def record_payout_error(self, collaboration_id: str, message: str) -> None:
        """Unversioned write; the failure must be visible even if the snapshot is stale."""
        now = utc_now()
        try:
            await self.store.update(
                COLLABORATIONS,
                collaboration_id,
                jsonable(
                    {"payoutError": PayoutError(message=message, timestamp=now), "updatedAt": now}
                ),
            )
        except Exception as e:
            logger.error(
                "Failed to record payout error",
                collaboration_id=collaboration_id,
                payout_error=message,
                error=str(e),
            )

    async def find_open_collaboration(
        self,
        collaboration_type: CollaborationType,
        party_filters: list[tuple[str, str]],
        statuses: frozenset[CollaborationStatus] = OPEN_STATUSES,
    ) -> Collaboration | None:
        """First collaboration of this type between the parties that is still open."""
        docs = await self.store.query(
            COLLABORATIONS,
            [
                ("type", "==", collaboration_type.value),
                *[(field, "==", value) for field, value in party_filters],
                ("status", "in", sorted(s.value for s in statuses)),
            ],
            limit=1,
        )
        return Collaboration.from_document(docs[0]) if docs else None

    # ------------------------------------------------------------------
    # Directory reads
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str | None) -> UserRecord | None:
        if not user_id:
            return None
        doc = await self.store.get(USERS, user_id)
        return UserRecord.from_document(doc) if doc else None

    async def require_user(self, user_id: str, label: str = "User") -> UserRecord:
        user = await self.get_user(user_id)
        if not user:
            raise NotFoundError(f"{label} not found")
        return user

    async def get_podcast(self, podcast_id: str) -> PodcastRecord:
        doc = await self.store.get(PODCASTS, podcast_id)
        if not doc:
            raise NotFoundError("Podcast not found")
        return PodcastRecord.from_document(doc)

    async def list_podcasts(self, owner_id: str | None = None) -> list[PodcastRecord]:
        filters = [("ownerId", "==", owner_id)] if owner_id else None
        docs = await self.store.query(PODCASTS, filters)
        return [PodcastRecord.from_document(d) for d in docs]

    async def list_guests(self) -> list[UserRecord]:
        docs = await self.store.query(USERS, [("isGuest", "==", True)])
        return [UserRecord.from_document(d) for d in docs]

    async def get_service(self, service_id: str | None) -> ServiceRecord | None:
        if not service_id:
            return None
        doc = await self.store.get(SERVICES, service_id)
        return ServiceRecord.from_document(doc) if doc else None

    async def has_active_service(self, owner_type: ServiceOwnerType, owner_id: str) -> bool:
        count = await self.store.count(
            SERVICES,
            [
                ("ownerType", "==", owner_type.value),
                ("ownerId", "==", owner_id),
                ("isActive", "==", True),
            ],
        )
        return count > 0

    # ------------------------------------------------------------------
    # Schedule proposals / reschedule requests
    # ------------------------------------------------------------------

    async def get_proposal(self, proposal_id: str, collaboration_id: str) -> ScheduleProposal:
        doc = await self.store.get(SCHEDULE_PROPOSALS, proposal_id)
        if not doc or doc.get("collaborationId") != collaboration_id:
            raise NotFoundError("Proposal not found", collaboration_id=collaboration_id)
        return ScheduleProposal.from_document(doc)

    async def get_reschedule_request(
        self, request_id: str, collaboration_id: str
    ) -> RescheduleRequest:
        doc = await self.store.get(RESCHEDULE_REQUESTS, request_id)
        if not doc or doc.get("collaborationId") != collaboration_id:
            raise NotFoundError("Reschedule request not found", collaboration_id=collaboration_id)
        return RescheduleRequest.from_document(doc)

    async def list_proposals(self, collaboration_id: str) -> list[ScheduleProposal]:
        docs = await self.store.query(
            SCHEDULE_PROPOSALS,
            [("collaborationId", "==", collaboration_id)],
            order_by="createdAt",
            descending=True,
        )
        return [ScheduleProposal.from_document(d) for d in docs]

    async def list_reschedule_requests(self, collaboration_id: str) -> list[RescheduleRequest]:
        docs = await self.store.query(
            RESCHEDULE_REQUESTS,
            [("collaborationId", "==", collaboration_id)],
            order_by="createdAt",
            descending=True,
        )
        return [RescheduleRequest.from_document(d) for d in docs]

    async def outstanding(
        self, collection: str, collaboration_id: str, proposed_by: str | None = None
    ) -> list[dict[str, Any]]:
        filters = [
            ("collaborationId", "==", collaboration_id),
            ("status", "==", ProposalStatus.PROPOSED.value),
        ]
        if proposed_by:
            filters.append(("proposedBy", "==", proposed_by))
        return await self.store.query(collection, filters)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def get_feedback(self, feedback_id: str) -> CollaborationFeedback | None:
        doc = await self.store.get(FEEDBACK, feedback_id)
        return CollaborationFeedback.from_document(doc) if doc else None

    async def create_feedback(
        self, feedback: CollaborationFeedback, feedback_id: str
    ) -> CollaborationFeedback:
        doc = await self.store.create(FEEDBACK, feedback.to_document(), feedback_id)
        return CollaborationFeedback.from_document(doc)

    async def list_feedback(
        self, field: str, value: str, public_only: bool = False
    ) -> list[CollaborationFeedback]:
        filters = [(field, "==", value)]
        if public_only:
            filters.append(("isPublic", "==", True))
        docs = await self.store.query(FEEDBACK, filters, order_by="createdAt", descending=True)
        return [CollaborationFeedback.from_document(d) for d in docs]

    async def set_feedback_stats(self, user_id: str, stats: FeedbackStats) -> None:
        await self.store.update(USERS, user_id, {"feedbackStats": stats.model_dump(by_alias=True)})
