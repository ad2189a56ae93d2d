"""
Recording schedule negotiation for guest appearances.

Two parallel protocols share the same shape:
    - schedule proposals move a collaboration from ``scheduling`` to ``scheduled``
    - reschedule requests replace the agreed slot of a ``scheduled`` recording,
      bounded by the collaboration's reschedule ceiling

Either party proposes one or more slots; the other party accepts one slot
or declines. Acceptance is a single batch: the chosen record, the
collaboration and every sibling still outstanding (now superseded) commit
together or not at all.
"""

import re
from datetime import date
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings
from app.db.document_store import DocumentStore, get_document_store
from app.infrastructure.audit import AuditLogger
from app.infrastructure.observability.logging import get_logger
from app.models.domain.collaboration_domain import (
    Collaboration,
    CollaborationType,
    PartyRole,
    ProposalStatus,
    RescheduleRequest,
    ScheduleProposal,
    ScheduleSlot,
)
from app.repositories.collaboration_repository import (
    COLLABORATIONS,
    RESCHEDULE_REQUESTS,
    SCHEDULE_PROPOSALS,
    CollaborationRepository,
    jsonable,
)
from app.services.collaboration.counterparts import CollaborationParties, resolve_parties
from app.services.collaboration.locking import exclusive
from app.services.collaboration.state_machine import Action, transition
from app.services.errors import AuthorizationError, StateConflictError, ValidationError
from app.services.notifications import templates
from app.services.notifications.notifier import Notifier, get_notifier
from app.services.redis_client import FastRedisClient, get_redis
from app.utils.clock import utc_now

logger = get_logger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
DEFAULT_DURATION = "60 minutes"
RESPONSE_ACTIONS = ("accept", "decline")


def validate_slot(raw: dict[str, Any] | ScheduleSlot, position: int) -> ScheduleSlot:
    """Check one slot: ISO date, 24h HH:MM time, IANA timezone."""
    data = raw.model_dump() if isinstance(raw, ScheduleSlot) else dict(raw or {})
    slot_date = (data.get("date") or "").strip()
    slot_time = (data.get("time") or "").strip()
    timezone = (data.get("timezone") or "").strip()
    duration = (data.get("duration") or "").strip() or DEFAULT_DURATION

    label = f"Slot {position + 1}"
    try:
        date.fromisoformat(slot_date)
    except ValueError:
        raise ValidationError(f"{label}: date must be YYYY-MM-DD") from None
    if not TIME_PATTERN.match(slot_time):
        raise ValidationError(f"{label}: time must be HH:MM")
    if not timezone:
        raise ValidationError(f"{label}: timezone is required")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"{label}: unknown timezone {timezone}") from None

    return ScheduleSlot(date=slot_date, time=slot_time, timezone=timezone, duration=duration)


def validate_slots(raw_slots: list[Any] | None) -> list[ScheduleSlot]:
    if not raw_slots:
        raise ValidationError("At least one time slot is required")
    return [validate_slot(raw, i) for i, raw in enumerate(raw_slots)]


def slot_summary(slot: ScheduleSlot) -> str:
    return f"{slot.date} at {slot.time} ({slot.timezone})"


def _parse_role(role: str | PartyRole) -> PartyRole:
    try:
        return PartyRole(role)
    except ValueError:
        raise ValidationError("Role must be one of: guest, podcast_owner") from None


class SchedulingService:
    def __init__(
        self,
        store: DocumentStore,
        notifier: Notifier,
        locks: FastRedisClient,
        audit: AuditLogger | None = None,
    ):
        self.store = store
        self.repo = CollaborationRepository(store)
        self.notifier = notifier
        self.locks = locks
        self.audit = audit or AuditLogger(store)

    async def _load_for_party(
        self, caller_id: str, collaboration_id: str
    ) -> tuple[Collaboration, CollaborationParties]:
        collaboration = await self.repo.get_collaboration(collaboration_id)
        if collaboration.type != CollaborationType.GUEST_APPEARANCE:
            raise ValidationError(
                "Scheduling is only available for guest appearances",
                collaboration_id=collaboration_id,
            )
        parties = await resolve_parties(collaboration, self.store)
        if not parties.is_party(caller_id):
            raise AuthorizationError(
                "You are not a party to this collaboration", collaboration_id=collaboration_id
            )
        return collaboration, parties

    def _author_lock(self, kind: str, collaboration_id: str, caller_id: str):
        return exclusive(
            self.locks,
            f"{kind}:{collaboration_id}:{caller_id}",
            settings.CREATE_LOCK_TTL_SECONDS,
            busy_message="Your previous request is still being processed, please retry",
            collaboration_id=collaboration_id,
        )

    def _check_role(
        self, parties: CollaborationParties, caller_id: str, role: str | PartyRole
    ) -> PartyRole:
        claimed = _parse_role(role)
        if parties.role_of(caller_id) != claimed:
            raise AuthorizationError(f"You are not the {claimed.value} in this collaboration")
        return claimed

    async def _notify(self, user_id: str, build, event: str, collaboration_id: str) -> None:
        try:
            user = await self.repo.get_user(user_id)
        except Exception as e:
            logger.warning(
                "Failed to load notification recipient",
                notification_event=event,
                user_id=user_id,
                error=str(e),
            )
            return
        if not user:
            return
        await self.notifier.dispatch(
            build(user.email, user.label), event, collaboration_id=collaboration_id
        )

    async def _label(self, user_id: str) -> str:
        try:
            user = await self.repo.get_user(user_id)
        except Exception:
            logger.warning("Failed to load user label", user_id=user_id)
            return "A UvoCollab member"
        return user.label if user else "A UvoCollab member"

    @staticmethod
    def _parse_response(action: str) -> bool:
        if action not in RESPONSE_ACTIONS:
            raise ValidationError("Action must be one of: accept, decline")
        return action == "accept"

    @staticmethod
    def _pick_slot(slots: list[ScheduleSlot], slot_index: int | None) -> ScheduleSlot:
        if slot_index is None or not 0 <= slot_index < len(slots):
            raise ValidationError("Invalid slot index")
        return slots[slot_index]

    def _stage_supersede(
        self, batch, collection: str, siblings: list[dict[str, Any]], keep_id: str, now
    ) -> int:
        superseded = 0
        for doc in siblings:
            if doc["id"] == keep_id:
                continue
            batch.update(
                collection,
                doc["id"],
                jsonable({"status": ProposalStatus.SUPERSEDED, "respondedAt": now}),
                expected_version=doc["version"],
            )
            superseded += 1
        return superseded

    # ------------------------------------------------------------------
    # Schedule proposals
    # ------------------------------------------------------------------

    async def propose_schedule(
        self,
        caller_id: str,
        collaboration_id: str,
        proposed_by_role: str,
        slots: list[Any],
        message: str | None = None,
    ) -> ScheduleProposal:
        collaboration, parties = await self._load_for_party(caller_id, collaboration_id)
        role = self._check_role(parties, caller_id, proposed_by_role)
        transition(collaboration.status, Action.CONFIRM_SCHEDULE)
        valid_slots = validate_slots(slots)

        proposal = ScheduleProposal(
            collaboration_id=collaboration_id,
            proposed_by=caller_id,
            proposed_by_role=role,
            slots=valid_slots,
            message=(message or "").strip(),
            created_at=utc_now(),
        )
        async with self._author_lock("proposal", collaboration_id, caller_id):
            pending = await self.repo.outstanding(SCHEDULE_PROPOSALS, collaboration_id, caller_id)
            if pending:
                raise StateConflictError(
                    "You already have a pending proposal for this collaboration",
                    collaboration_id=collaboration_id,
                )
            doc = await self.store.create(SCHEDULE_PROPOSALS, proposal.to_document())
        proposal = ScheduleProposal.from_document(doc)

        logger.info(
            "Schedule proposed",
            collaboration_id=collaboration_id,
            proposal_id=proposal.id,
            slot_count=len(valid_slots),
        )

        proposer_name = await self._label(caller_id)
        await self._notify(
            parties.other(caller_id),
            lambda email, name: templates.schedule_proposed(
                email, name, proposer_name, len(valid_slots), collaboration_id
            ),
            "schedule_proposed",
            collaboration_id,
        )
        return proposal

    async def respond_to_schedule(
        self,
        caller_id: str,
        collaboration_id: str,
        proposal_id: str,
        action: str,
        slot_index: int | None = None,
        decline_reason: str | None = None,
    ) -> ScheduleProposal:
        """
        Accept one slot of a proposal (confirming the recording) or decline it.

        Declining leaves the collaboration in ``scheduling`` so either side
        can propose again.
        """
        accept = self._parse_response(action)
        collaboration, parties = await self._load_for_party(caller_id, collaboration_id)
        proposal = await self.repo.get_proposal(proposal_id, collaboration_id)
        if proposal.proposed_by == caller_id:
            raise AuthorizationError(
                "You cannot respond to your own proposal", collaboration_id=collaboration_id
            )
        if proposal.status != ProposalStatus.PROPOSED:
            raise StateConflictError(
                f"Proposal has already been {proposal.status.value}",
                collaboration_id=collaboration_id,
            )

        now = utc_now()
        batch = self.repo.batch()

        if accept:
            new_status = transition(collaboration.status, Action.CONFIRM_SCHEDULE)
            slot = self._pick_slot(proposal.slots, slot_index)
            batch.update(
                SCHEDULE_PROPOSALS,
                proposal.id,
                jsonable(
                    {
                        "status": ProposalStatus.ACCEPTED,
                        "acceptedSlotIndex": slot_index,
                        "respondedAt": now,
                    }
                ),
                expected_version=proposal.version,
            )
            batch.update(
                COLLABORATIONS,
                collaboration.id,
                jsonable({"status": new_status, "schedulingDetails": slot, "updatedAt": now}),
                expected_version=collaboration.version,
            )
            siblings = await self.repo.outstanding(SCHEDULE_PROPOSALS, collaboration_id)
            superseded = self._stage_supersede(
                batch, SCHEDULE_PROPOSALS, siblings, proposal.id, now
            )
            await self.repo.commit(batch, collaboration_id)

            await self.audit.log_transition(
                collaboration_id=collaboration_id,
                from_status=collaboration.status.value,
                to_status=new_status.value,
                action=Action.CONFIRM_SCHEDULE.value,
                actor_id=caller_id,
                metadata={"proposalId": proposal.id, "supersededCount": superseded},
            )
            summary = slot_summary(slot)
        else:
            reason = (decline_reason or "").strip() or None
            batch.update(
                SCHEDULE_PROPOSALS,
                proposal.id,
                jsonable(
                    {
                        "status": ProposalStatus.DECLINED,
                        "declineReason": reason,
                        "respondedAt": now,
                    }
                ),
                expected_version=proposal.version,
            )
            await self.repo.commit(batch, collaboration_id)
            logger.info(
                "Schedule proposal declined",
                collaboration_id=collaboration_id,
                proposal_id=proposal.id,
            )
            summary = None

        responder_name = await self._label(caller_id)
        await self._notify(
            proposal.proposed_by,
            lambda email, name: templates.schedule_decided(
                email, name, responder_name, accept, summary, collaboration_id
            ),
            "schedule_accepted" if accept else "schedule_declined",
            collaboration_id,
        )
        return await self.repo.get_proposal(proposal.id, collaboration_id)

    async def list_schedule_proposals(
        self, caller_id: str, collaboration_id: str
    ) -> list[ScheduleProposal]:
        await self._load_for_party(caller_id, collaboration_id)
        return await self.repo.list_proposals(collaboration_id)

    # ------------------------------------------------------------------
    # Reschedule requests
    # ------------------------------------------------------------------

    async def request_reschedule(
        self,
        caller_id: str,
        collaboration_id: str,
        requested_by_role: str,
        slots: list[Any],
        reason: str,
        message: str | None = None,
    ) -> RescheduleRequest:
        collaboration, parties = await self._load_for_party(caller_id, collaboration_id)
        role = self._check_role(parties, caller_id, requested_by_role)
        transition(collaboration.status, Action.ACCEPT_RESCHEDULE)
        if not collaboration.can_reschedule():
            raise ValidationError(
                f"Maximum reschedule limit ({collaboration.max_reschedules}) reached",
                collaboration_id=collaboration_id,
            )
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reschedule")
        valid_slots = validate_slots(slots)

        request = RescheduleRequest(
            collaboration_id=collaboration_id,
            proposed_by=caller_id,
            proposed_by_role=role,
            slots=valid_slots,
            message=(message or "").strip(),
            reason=reason.strip(),
            previous_schedule=collaboration.scheduling_details,
            created_at=utc_now(),
        )
        async with self._author_lock("reschedule", collaboration_id, caller_id):
            pending = await self.repo.outstanding(RESCHEDULE_REQUESTS, collaboration_id, caller_id)
            if pending:
                raise StateConflictError(
                    "You already have a pending reschedule request for this collaboration",
                    collaboration_id=collaboration_id,
                )
            doc = await self.store.create(RESCHEDULE_REQUESTS, request.to_document())
        request = RescheduleRequest.from_document(doc)

        logger.info(
            "Reschedule requested",
            collaboration_id=collaboration_id,
            request_id=request.id,
            reschedule_count=collaboration.reschedule_count,
            max_reschedules=collaboration.max_reschedules,
        )

        requester_name = await self._label(caller_id)
        await self._notify(
            parties.other(caller_id),
            lambda email, name: templates.reschedule_requested(
                email, name, requester_name, request.reason, collaboration_id
            ),
            "reschedule_requested",
            collaboration_id,
        )
        return request

    async def respond_to_reschedule(
        self,
        caller_id: str,
        collaboration_id: str,
        request_id: str,
        action: str,
        slot_index: int | None = None,
        decline_reason: str | None = None,
    ) -> RescheduleRequest:
        accept = self._parse_response(action)
        collaboration, parties = await self._load_for_party(caller_id, collaboration_id)
        request = await self.repo.get_reschedule_request(request_id, collaboration_id)
        if request.proposed_by == caller_id:
            raise AuthorizationError(
                "You cannot respond to your own reschedule request",
                collaboration_id=collaboration_id,
            )
        if request.status != ProposalStatus.PROPOSED:
            raise StateConflictError(
                f"Reschedule request has already been {request.status.value}",
                collaboration_id=collaboration_id,
            )

        now = utc_now()
        batch = self.repo.batch()

        if accept:
            new_status = transition(collaboration.status, Action.ACCEPT_RESCHEDULE)
            if not collaboration.can_reschedule():
                raise ValidationError(
                    f"Maximum reschedule limit ({collaboration.max_reschedules}) reached",
                    collaboration_id=collaboration_id,
                )
            slot = self._pick_slot(request.slots, slot_index)
            batch.update(
                RESCHEDULE_REQUESTS,
                request.id,
                jsonable(
                    {
                        "status": ProposalStatus.ACCEPTED,
                        "acceptedSlotIndex": slot_index,
                        "previousSchedule": collaboration.scheduling_details,
                        "respondedAt": now,
                    }
                ),
                expected_version=request.version,
            )
            batch.update(
                COLLABORATIONS,
                collaboration.id,
                jsonable(
                    {
                        "status": new_status,
                        "schedulingDetails": slot,
                        "rescheduleCount": collaboration.reschedule_count + 1,
                        "updatedAt": now,
                    }
                ),
                expected_version=collaboration.version,
            )
            siblings = await self.repo.outstanding(RESCHEDULE_REQUESTS, collaboration_id)
            superseded = self._stage_supersede(
                batch, RESCHEDULE_REQUESTS, siblings, request.id, now
            )
            await self.repo.commit(batch, collaboration_id)

            await self.audit.log_transition(
                collaboration_id=collaboration_id,
                from_status=collaboration.status.value,
                to_status=new_status.value,
                action=Action.ACCEPT_RESCHEDULE.value,
                actor_id=caller_id,
                metadata={
                    "requestId": request.id,
                    "rescheduleCount": collaboration.reschedule_count + 1,
                    "supersededCount": superseded,
                },
            )
            summary = slot_summary(slot)
        else:
            batch.update(
                RESCHEDULE_REQUESTS,
                request.id,
                jsonable(
                    {
                        "status": ProposalStatus.DECLINED,
                        "declineReason": (decline_reason or "").strip() or None,
                        "respondedAt": now,
                    }
                ),
                expected_version=request.version,
            )
            await self.repo.commit(batch, collaboration_id)
            logger.info(
                "Reschedule request declined",
                collaboration_id=collaboration_id,
                request_id=request.id,
            )
            summary = None

        responder_name = await self._label(caller_id)
        await self._notify(
            request.proposed_by,
            lambda email, name: templates.schedule_decided(
                email, name, responder_name, accept, summary, collaboration_id, reschedule=True
            ),
            "reschedule_accepted" if accept else "reschedule_declined",
            collaboration_id,
        )
        return await self.repo.get_reschedule_request(request.id, collaboration_id)

    async def list_reschedule_requests(
        self, caller_id: str, collaboration_id: str
    ) -> list[RescheduleRequest]:
        await self._load_for_party(caller_id, collaboration_id)
        return await self.repo.list_reschedule_requests(collaboration_id)


def get_scheduling_service() -> SchedulingService:
    return SchedulingService(
        store=get_document_store(), notifier=get_notifier(), locks=get_redis()
    )
