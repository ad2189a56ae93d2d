# app/models/api/collaboration_response.py
"""
Response envelopes. Domain models serialize with camelCase aliases, which
FastAPI applies by default (response_model_by_alias).
"""

from app.models.domain.base import CamelModel
from app.models.domain.collaboration_domain import (
    Collaboration,
    CollaborationFeedback,
    PaymentCheckout,
    PayoutResult,
    RescheduleRequest,
    ScheduleProposal,
)
from app.models.domain.matching_domain import (
    Match,
    MatchStatistics,
    Recommendation,
    SweepResult,
)


class CollaborationResponse(CamelModel):
    success: bool = True
    message: str | None = None
    collaboration: Collaboration


class PaymentInitResponse(CamelModel):
    success: bool = True
    checkout: PaymentCheckout


class PayoutResponse(CamelModel):
    success: bool = True
    message: str
    payout: PayoutResult


class ProposalResponse(CamelModel):
    success: bool = True
    proposal: ScheduleProposal


class ProposalListResponse(CamelModel):
    proposals: list[ScheduleProposal]
    count: int


class RescheduleResponse(CamelModel):
    success: bool = True
    reschedule_request: RescheduleRequest


class RescheduleListResponse(CamelModel):
    reschedule_requests: list[RescheduleRequest]
    count: int


class MatchResponse(CamelModel):
    success: bool = True
    match: Match


class MatchListResponse(CamelModel):
    matches: list[Match]
    count: int


class SweepResponse(CamelModel):
    success: bool = True
    result: SweepResult


class MatchStatisticsResponse(CamelModel):
    statistics: MatchStatistics


class RecommendationsResponse(CamelModel):
    success: bool = True
    user_type: str
    recommendations: list[Recommendation]


class FeedbackResponse(CamelModel):
    success: bool = True
    message: str
    feedback_id: str
    feedback: CollaborationFeedback


class FeedbackListResponse(CamelModel):
    feedback: list[CollaborationFeedback]
    count: int
