# app/models/api/collaboration_request.py
from typing import Literal

from pydantic import Field

from app.models.domain.base import CamelModel
from app.models.domain.collaboration_domain import CollaborationType


class InitiateGuestCollaborationRequest(CamelModel):
    """Request body for POST /collaborations/guest/initiate."""

    guest_id: str = Field(..., min_length=1)
    podcast_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    price: float
    proposed_topics: list[str] = Field(default_factory=list)
    agreed_topics: list[str] = Field(default_factory=list)
    proposed_dates: list[str] = Field(default_factory=list)
    message: str | None = None
    initiator_id: str | None = None

    def topics(self) -> list[str]:
        return self.proposed_topics or self.agreed_topics


class SubmitPitchRequest(CamelModel):
    """Request body for POST /collaborations/pitch."""

    type: Literal["legend", "podcast"]
    legend_id: str | None = None
    podcast_id: str | None = None
    service_id: str = Field(..., min_length=1)
    price: float
    pitch_message: str
    pitch_best_work_url: str
    pitch_demo_url: str
    buyer_id: str | None = None

    def target_id(self) -> str | None:
        if self.type == CollaborationType.LEGEND.value:
            return self.legend_id
        return self.podcast_id


class PitchResponseRequest(CamelModel):
    collaboration_id: str = Field(..., min_length=1)
    action: Literal["accept", "decline"]


class TermsResponseRequest(CamelModel):
    """Request body for POST /collaborations/terms/respond."""

    collaboration_id: str = Field(..., min_length=1)
    action: Literal["accept", "decline", "counter"]
    price: float | None = None
    topics: list[str] | None = None
    dates: list[str] | None = None
    message: str | None = None
    responder_id: str | None = None


class DeliverableRequest(CamelModel):
    collaboration_id: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    file_url: str = Field(..., min_length=1)
    file_size: int | None = Field(default=None, ge=0)


class RecordingCompleteRequest(CamelModel):
    collaboration_id: str = Field(..., min_length=1)
    recording_notes: str | None = None


class CollaborationIdRequest(CamelModel):
    """Body carrying only the collaboration id (payout, payment init)."""

    collaboration_id: str = Field(..., min_length=1)


class VerifyPaymentRequest(CamelModel):
    collaboration_id: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)
    tx_ref: str = Field(..., min_length=1)


class RecordingLinkRequest(CamelModel):
    """Request body for POST /collaborations/recording-link."""

    collaboration_id: str = Field(..., min_length=1)
    recording_url: str = Field(..., min_length=1)
    recording_platform: str | None = None
    prep_notes: str | None = None
    user_id: str | None = None


class FeedbackRequest(CamelModel):
    """Request body for POST /collaborations/feedback."""

    collaboration_id: str = Field(..., min_length=1)
    rating: int
    would_collaborate_again: bool
    review: str | None = None
    is_public: bool = True
    user_id: str | None = None
