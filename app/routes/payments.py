"""
payments.py
-----------
Purpose:
    Escrow payment endpoints. Initialisation issues a transaction reference
    for the gateway checkout; verification captures the completed payment
    and advances the collaboration.
"""

from fastapi import APIRouter, Depends

from app.auth.verify import auth_dependency
from app.infrastructure.observability.logging import get_logger
from app.models.api.collaboration_request import CollaborationIdRequest, VerifyPaymentRequest
from app.models.api.collaboration_response import CollaborationResponse, PaymentInitResponse
from app.routes.errors import http_error
from app.services.collaboration.lifecycle_service import (
    CollaborationLifecycleService,
    get_lifecycle_service,
)
from app.services.errors import CollaborationServiceError

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)


@router.post("/initialize", response_model=PaymentInitResponse)
async def initialize_payment(
    body: CollaborationIdRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    user_id = claims["sub"]
    try:
        checkout = await service.initialize_payment(user_id, body.collaboration_id)
    except CollaborationServiceError as e:
        raise http_error(e, "initialize_payment", user_id=user_id) from e

    return PaymentInitResponse(checkout=checkout)


@router.post("/verify", response_model=CollaborationResponse)
async def verify_payment(
    body: VerifyPaymentRequest,
    claims: dict = Depends(auth_dependency),
    service: CollaborationLifecycleService = Depends(get_lifecycle_service),
):
    """
    Capture a completed checkout into escrow.

    Raises:
        400: Reference or amount mismatch, stale price, payment not successful
        403: Caller is not the buyer
        500: Gateway unavailable; nothing was changed
    """
    user_id = claims["sub"]
    try:
        collaboration = await service.verify_payment(
            caller_id=user_id,
            collaboration_id=body.collaboration_id,
            transaction_id=body.transaction_id,
            tx_ref=body.tx_ref,
        )
    except CollaborationServiceError as e:
        raise http_error(
            e, "verify_payment", user_id=user_id, transaction_id=body.transaction_id
        ) from e

    logger.info(
        "Payment verified",
        user_id=user_id,
        collaboration_id=collaboration.id,
        status=collaboration.status.value,
    )
    return CollaborationResponse(
        message="Payment verified successfully", collaboration=collaboration
    )
