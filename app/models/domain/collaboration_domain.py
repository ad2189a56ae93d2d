"""
Collaboration domain models.

A Collaboration is a tagged variant over three kinds of deal (legend,
podcast, guest_appearance). The counterpart party is resolved from ``type``
by app.services.collaboration.counterparts rather than by branching on
which id field happens to be set.
"""

from datetime import datetime
from enum import Enum

from pydantic import Field

from app.models.domain.base import CamelModel, DocumentModel


class CollaborationType(str, Enum):
    LEGEND = "legend"
    PODCAST = "podcast"
    GUEST_APPEARANCE = "guest_appearance"


class CollaborationStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    PENDING_AGREEMENT = "pending_agreement"
    PENDING_PAYMENT = "pending_payment"
    SCHEDULING = "scheduling"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DECLINED = "declined"


# A pair of parties may hold at most one collaboration in any of these.
OPEN_STATUSES = frozenset(
    {
        CollaborationStatus.PENDING_AGREEMENT,
        CollaborationStatus.PENDING_PAYMENT,
        CollaborationStatus.SCHEDULING,
        CollaborationStatus.SCHEDULED,
        CollaborationStatus.IN_PROGRESS,
    }
)

TERMINAL_STATUSES = frozenset({CollaborationStatus.COMPLETED, CollaborationStatus.DECLINED})


class EscrowStatus(str, Enum):
    HELD = "held"
    RELEASED = "released"


class PaymentDirection(str, Enum):
    PODCAST_PAYS_GUEST = "podcast_pays_guest"
    GUEST_PAYS_PODCAST = "guest_pays_podcast"
    FREE = "free"


class ProposalStatus(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    SUPERSEDED = "superseded"


class PartyRole(str, Enum):
    GUEST = "guest"
    PODCAST_OWNER = "podcast_owner"


class ScheduleSlot(CamelModel):
    date: str
    time: str
    timezone: str
    duration: str = "60 minutes"


class NegotiationEntry(CamelModel):
    proposed_by: str
    proposed_price: float | None = None
    proposed_topics: list[str] = Field(default_factory=list)
    proposed_dates: list[str] = Field(default_factory=list)
    message: str = ""
    timestamp: datetime


class Deliverable(CamelModel):
    file_name: str
    file_url: str
    uploaded_by: str
    uploaded_at: datetime
    file_size: int | None = None


class PayoutError(CamelModel):
    message: str
    timestamp: datetime


class Collaboration(DocumentModel):
    type: CollaborationType
    status: CollaborationStatus

    # Parties
    buyer_id: str
    legend_id: str | None = None
    podcast_id: str | None = None
    guest_id: str | None = None
    podcast_owner_id: str | None = None

    # Commercial
    service_id: str | None = None
    price: float = 0.0
    payment_direction: PaymentDirection | None = None
    escrow_status: EscrowStatus | None = None

    # Pitch (legend / podcast)
    pitch_message: str | None = None
    pitch_best_work_url: str | None = None
    pitch_demo_url: str | None = None

    # Terms (guest appearance)
    initiated_by: str | None = None
    proposed_topics: list[str] | None = None
    proposed_dates: list[str] | None = None
    agreed_topics: list[str] | None = None
    negotiation_history: list[NegotiationEntry] = Field(default_factory=list)
    recording_notes: str | None = None

    # Recording session (guest appearance)
    recording_url: str | None = None
    recording_platform: str | None = None
    prep_notes: str | None = None

    # Scheduling
    scheduling_details: ScheduleSlot | None = None
    reschedule_count: int = 0
    max_reschedules: int = 2

    deliverables: list[Deliverable] = Field(default_factory=list)

    # Payment capture
    pending_tx_ref: str | None = None
    transaction_id: str | None = None
    tx_ref: str | None = None

    # Settlement, written once at payout
    platform_commission: float | None = None
    legend_amount: float | None = None
    payout_reference: str | None = None
    payout_transfer_id: str | None = None
    payout_initiated_at: datetime | None = None
    payout_error: PayoutError | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    accepted_at: datetime | None = None
    paid_at: datetime | None = None
    recording_completed_at: datetime | None = None
    completed_at: datetime | None = None

    def latest_offer(self) -> NegotiationEntry | None:
        return self.negotiation_history[-1] if self.negotiation_history else None

    def can_reschedule(self) -> bool:
        return self.reschedule_count < self.max_reschedules


class ScheduleProposal(DocumentModel):
    collaboration_id: str
    proposed_by: str
    proposed_by_role: PartyRole
    slots: list[ScheduleSlot]
    message: str = ""
    status: ProposalStatus = ProposalStatus.PROPOSED
    accepted_slot_index: int | None = None
    decline_reason: str | None = None
    created_at: datetime | None = None
    responded_at: datetime | None = None


class RescheduleRequest(ScheduleProposal):
    reason: str
    previous_schedule: ScheduleSlot | None = None


class PaymentCheckout(CamelModel):
    """Parameters the client needs to open the gateway's checkout."""

    public_key: str | None
    tx_ref: str
    amount: float
    currency: str
    customer: dict[str, str | None]
    customizations: dict[str, str]


class PayoutResult(CamelModel):
    collaboration_id: str
    transfer_id: str | None = None
    reference: str | None = None
    legend_amount: float
    platform_commission: float
    transfer_status: str | None = None


class RecordingPlatform(str, Enum):
    ZOOM = "zoom"
    RIVERSIDE = "riverside"
    STREAMYARD = "streamyard"
    ZENCASTR = "zencastr"
    OTHER = "other"


class CollaborationFeedback(DocumentModel):
    """One party's rating of the other after a completed collaboration."""

    collaboration_id: str
    from_user_id: str
    to_user_id: str
    rating: int
    review: str = ""
    would_collaborate_again: bool
    is_public: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class FeedbackStats(CamelModel):
    average_rating: float
    total_reviews: int
    would_collaborate_again_percentage: float


class RecordingReminder(DocumentModel):
    """Reminder bookkeeping for one scheduled recording, keyed by collaboration id."""

    collaboration_id: str
    recording_at: datetime
    reminder_24h_sent: bool = Field(default=False, alias="reminder24hSent")
    reminder_1h_sent: bool = Field(default=False, alias="reminder1hSent")
    created_at: datetime | None = None


class SentReminder(CamelModel):
    type: str
    collaboration_id: str


class ReminderRunResult(CamelModel):
    collaborations_checked: int = 0
    reminders_sent: int = 0
    old_reminders_deleted: int = 0
    sent: list[SentReminder] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
