"""
collaboration.py
----------------
Purpose:
    API endpoints for the collaboration lifecycle: guest appearance
    initiation and terms negotiation, legend/podcast pitches, deliverables,
    recording completion and payout release.

Architecture:
    - API layer: auth, request validation, error translation
    - Service layer: CollaborationLifecycleService returns domain models

Usage:
    1. POST /collaborations/guest/initiate - Guest or podcast owner opens terms
    2. POST /collaborations/terms/respond - Accept, decline or counter terms
    3. POST /collaborations/pitch - Pitch a legend's or podcast's service
    4. POST /collaborations/pitch/respond - Provider accepts or declines
    5. POST /collaborations/deliverables - Receiving party uploads work
    6. POST /collaborations/recording-complete - Buyer marks recording done
    7. POST /collaborations/trigger-payout - Buyer releases escrow
    8. POST /collaborations/recording-link - Podcast owner sets the session link
    9. POST /collaborations/feedback - Rate the other party after completion
    10. GET /collaborations/feedback - Feedback by collaboration, giver or recipient
    11. GET /collaborations/{collaboration_id} - Read (parties only)
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.auth.verify import auth_dependency, ensure_caller
from app.infrastructure.observability.logging import get_logger
from app.models.api.collaboration_request import (
    CollaborationIdRequest,
    DeliverableRequest,
    FeedbackRequest,
    InitiateGuestCollaborationRequest,
    PitchResponseRequest,
    RecordingCompleteRequest,
    RecordingLinkRequest,
    SubmitPitchRequest,
    TermsResponseRequest,
)
from app.models.api.collaboration_response import (
    CollaborationResponse,
    FeedbackListResponse,
    FeedbackResponse,
    PayoutResponse,
)
from app.models.domain.collaboration_domain import CollaborationType
from app.routes.errors import http_error
from app.services.collaboration.lifecycle_service import (
    CollaborationLifecycleService,
    get_lifecycle_service,
)
from app.services.errors import CollaborationServiceError

router = APIRouter(prefix="/collaborations", tags=["collaborations"])
logger = get_logger(__name__)

TERMS_MESSAGES = {
    "accept": "Terms accepted",
    "decline": "Collaboration declined",
    "counter": "Counter-offer sent",
}


@router.post("/guest/initiate", response_model=CollaborationResponse)
async def initiate_guest_collaboration(
    body: InitiateGuestCollaborationRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    """
    Open a guest appearance negotiation.

    Raises:
        400: Invalid terms, duplicate open collaboration
        403: Caller is neither the guest nor the podcast owner
        404: Guest, podcast or service not found
    """
    user_id = ensure_caller(claims, body.initiator_id)
    try:
        collaboration = await service.initiate_guest_collaboration(
            caller_id=user_id,
            guest_id=body.guest_id,
            podcast_id=body.podcast_id,
            service_id=body.service_id,
            price=body.price,
            proposed_topics=body.topics(),
            proposed_dates=body.proposed_dates,
            message=body.message,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "initiate_guest_collaboration", user_id=user_id) from e

    return CollaborationResponse(
        message="Collaboration request sent", collaboration=collaboration
    )


@router.post("/terms/respond", response_model=CollaborationResponse)
async def respond_to_terms(
    body: TermsResponseRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = ensure_caller(claims, body.responder_id)
    try:
        collaboration = await service.respond_to_terms(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            action=body.action,
            price=body.price,
            topics=body.topics,
            dates=body.dates,
            message=body.message,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "respond_to_terms", user_id=user_id, action=body.action) from e

    return CollaborationResponse(message=TERMS_MESSAGES[body.action], collaboration=collaboration)


@router.post("/pitch", response_model=CollaborationResponse)
async def submit_pitch(
    body: SubmitPitchRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = ensure_caller(claims, body.buyer_id)
    target_id = body.target_id()
    if not target_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{'legendId' if body.type == 'legend' else 'podcastId'} is required",
        )

    try:
        collaboration = await service.submit_pitch(
            caller_id=user_id,
            collaboration_type=CollaborationType(body.type),
            target_id=target_id,
            service_id=body.service_id,
            price=body.price,
            pitch_message=body.pitch_message,
            best_work_url=body.pitch_best_work_url,
            demo_url=body.pitch_demo_url,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "submit_pitch", user_id=user_id) from e

    return CollaborationResponse(message="Pitch submitted", collaboration=collaboration)


@router.post("/pitch/respond", response_model=CollaborationResponse)
async def respond_to_pitch(
    body: PitchResponseRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = claims["sub"]
    accept = body.action == "accept"
    try:
        collaboration = await service.respond_to_pitch(
            caller_id=user_id, collaboration_id=body.collaboration_id, accept=accept
        )
    except CollaborationServiceError as e:
        raise http_error(e, "respond_to_pitch", user_id=user_id, action=body.action) from e

    return CollaborationResponse(
        message="Pitch accepted" if accept else "Pitch declined", collaboration=collaboration
    )


@router.post("/deliverables", response_model=CollaborationResponse)
async def add_deliverable(
    body: DeliverableRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = claims["sub"]
    try:
        collaboration = await service.add_deliverable(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            file_name=body.file_name,
            file_url=body.file_url,
            file_size=body.file_size,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "add_deliverable", user_id=user_id) from e

    return CollaborationResponse(message="Deliverable uploaded", collaboration=collaboration)


@router.post("/recording-complete", response_model=CollaborationResponse)
async def complete_recording(
    body: RecordingCompleteRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = claims["sub"]
    try:
        collaboration = await service.complete_recording(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            recording_notes=body.recording_notes,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "complete_recording", user_id=user_id) from e

    return CollaborationResponse(
        message="Recording marked complete", collaboration=collaboration
    )


@router.post("/trigger-payout", response_model=PayoutResponse)
async def trigger_payout(
    body: CollaborationIdRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    """
    Release escrow to the receiving party.

    Raises:
        400: Not in progress, no deliverables, already released, payout in flight
        403: Caller is not the buyer
        500: Transfer failed; the collaboration stays in progress and can be retried
    """
    user_id = claims["sub"]
    try:
        payout = await service.trigger_payout(
            caller_id=user_id, collaboration_id=body.collaboration_id
        )
    except CollaborationServiceError as e:
        raise http_error(e, "trigger_payout", user_id=user_id) from e

    return PayoutResponse(message="Payout initiated successfully", payout=payout)


@router.post("/recording-link", response_model=CollaborationResponse)
async def set_recording_link(
    body: RecordingLinkRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    """
    Podcast owner attaches the recording session link.

    Raises:
        400: Invalid URL, not a guest appearance, recording already done
        403: Caller is not the podcast owner
        404: Collaboration not found
    """
    user_id = ensure_caller(claims, body.user_id)
    try:
        collaboration = await service.set_recording_link(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            recording_url=body.recording_url,
            recording_platform=body.recording_platform,
            prep_notes=body.prep_notes,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "set_recording_link", user_id=user_id) from e

    return CollaborationResponse(
        message="Recording link updated successfully", collaboration=collaboration
    )


@router.post("/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    body: FeedbackRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = ensure_caller(claims, body.user_id)
    try:
        feedback = await service.submit_feedback(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            rating=body.rating,
            would_collaborate_again=body.would_collaborate_again,
            review=body.review,
            is_public=body.is_public,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "submit_feedback", user_id=user_id) from e

    return FeedbackResponse(
        message="Feedback submitted successfully", feedback_id=feedback.id, feedback=feedback
    )


@router.get("/feedback", response_model=FeedbackListResponse)
async def list_feedback(
    collaboration_id: str | None = Query(default=None, alias="collaborationId"),
    from_user_id: str | None = Query(default=None, alias="userId"),
    to_user_id: str | None = Query(default=None, alias="toUserId"),
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = claims["sub"]
    try:
        feedback = await service.list_feedback(
            user_id,
            collaboration_id=collaboration_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
        )
    except CollaborationServiceError as e:
        raise http_error(e, "list_feedback", user_id=user_id) from e

    return FeedbackListResponse(feedback=feedback, count=len(feedback))


@router.get("/{collaboration_id}", response_model=CollaborationResponse)
async def get_collaboration(
    collaboration_id: str,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = claims["sub"]
    try:
        collaboration = await service.get_collaboration(user_id, collaboration_id)
    except CollaborationServiceError as e:
        raise http_error(e, "get_collaboration", user_id=user_id) from e

    return CollaborationResponse(collaboration=collaboration)
