"""
schedule.py
-----------
Purpose:
    Recording schedule negotiation for guest appearances.

Usage:
    1. POST /schedule/propose - Party proposes recording slots
    2. POST /schedule/respond - Other party accepts a slot or declines
    3. GET /schedule/{collaboration_id} - Proposal history, newest first
    4. POST /schedule/reschedule - Request a new slot for a scheduled recording
    5. POST /schedule/reschedule/respond - Accept or decline the request
    6. GET /schedule/{collaboration_id}/reschedules - Reschedule history
"""

from fastapi import APIRouter, Depends

from app.auth.verify import auth_dependency, ensure_caller
from app.infrastructure.observability.logging import get_logger
from app.models.api.collaboration_response import (
    ProposalListResponse,
    ProposalResponse,
    RescheduleListResponse,
    RescheduleResponse,
)
from app.models.api.schedule_request import (
    ProposeScheduleRequest,
    RescheduleCreateRequest,
    RescheduleResponseRequest,
    ScheduleResponseRequest,
)
from app.routes.errors import http_error
from app.services.collaboration.scheduling_service import (
    SchedulingService,
    get_scheduling_service,
)
from app.services.errors import CollaborationServiceError

router = APIRouter(prefix="/schedule", tags=["schedule"])
logger = get_logger(__name__)


@router.post("/propose", response_model=ProposalResponse)
async def propose_schedule(
    body: ProposeScheduleRequest,
    claims: dict = Depends(auth_dependency),
    service: SchedulingService = Depends(get_scheduling_service),
):
    user_id = ensure_caller(claims, body.proposed_by)
    try:
        proposal = await service.propose_schedule(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            proposed_by_role=body.proposed_by_role,
            slots=[slot.model_dump() for slot in body.slots],
            message=body.message,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "propose_schedule", user_id=user_id) from e

    return ProposalResponse(proposal=proposal)


@router.post("/respond", response_model=ProposalResponse)
async def respond_to_schedule(
    body: ScheduleResponseRequest,
    claims: dict = Depends(auth_dependency),
    service: SchedulingService = Depends(get_scheduling_service),
):
    user_id = ensure_caller(claims, body.user_id)
    try:
        proposal = await service.respond_to_schedule(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            proposal_id=body.proposal_id,
            action=body.action,
            slot_index=body.accepted_slot_index,
            decline_reason=body.decline_reason,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "respond_to_schedule", user_id=user_id, action=body.action) from e

    return ProposalResponse(proposal=proposal)


@router.post("/reschedule", response_model=RescheduleResponse)
async def request_reschedule(
    body: RescheduleCreateRequest,
    claims: dict = Depends(auth_dependency),
    service: SchedulingService = Depends(get_scheduling_service),
):
    user_id = ensure_caller(claims, body.requested_by)
    try:
        request = await service.request_reschedule(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            requested_by_role=body.requested_by_role,
            slots=[slot.model_dump() for slot in body.proposed_slots],
            reason=body.reason,
            message=body.message,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "request_reschedule", user_id=user_id) from e

    return RescheduleResponse(reschedule_request=request)


@router.post("/reschedule/respond", response_model=RescheduleResponse)
async def respond_to_reschedule(
    body: RescheduleResponseRequest,
    claims: dict = Depends(auth_dependency),
    service: SchedulingService = Depends(get_scheduling_service),
):
    user_id = ensure_caller(claims, body.user_id)
    try:
        request = await service.respond_to_reschedule(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            request_id=body.reschedule_id,
            action=body.action,
            slot_index=body.accepted_slot_index,
            decline_reason=body.decline_reason,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "respond_to_reschedule", user_id=user_id, action=body.action) from e

    return RescheduleResponse(reschedule_request=request)


@router.get("/{collaboration_id}", response_model=ProposalListResponse)
async def list_schedule_proposals(
    collaboration_id: str,
    claims: dict = Depends(auth_dependency),
    service: SchedulingService = Depends(get_scheduling_service),
):
    user_id = claims["sub"]
    try:
        proposals = await service.list_schedule_proposals(user_id, collaboration_id)
    except CollaborationServiceError as e:
        raise http_error(e, "list_schedule_proposals", user_id=user_id) from e

    return ProposalListResponse(proposals=proposals, count=len(proposals))


@router.get("/{collaboration_id}/reschedules", response_model=RescheduleListResponse)
async def list_reschedule_requests(
    collaboration_id: str,
    claims: dict = Depends(auth_dependency),
    service: SchedulingService = Depends(get_scheduling_service),
):
    user_id = claims["sub"]
    try:
        requests = await service.list_reschedule_requests(user_id, collaboration_id)
    except CollaborationServiceError as e:
        raise http_error(e, "list_reschedule_requests", user_id=user_id) from e

    return RescheduleListResponse(reschedule_requests=requests, count=len(requests))
