"""
Collaboration lifecycle service.

Drives a Collaboration from creation to payout:
    - guest appearance initiation and terms negotiation
    - legend / podcast pitches and the provider's response
    - escrow payment initialisation and capture
    - recording link, deliverable upload, recording completion and payout release
    - post-completion feedback between the parties

Every transition reads a snapshot, checks its guards against it and writes
with the snapshot's version, so of two racing transitions at most one
commits. Notifications go out after the write and never fail the caller.

Service layer returns domain models only - API layer handles HTTP concerns.
"""

import uuid
from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal
from urllib.parse import urlparse

from app.config import settings
from app.db.document_store import DocumentStore, get_document_store
from app.infrastructure.audit import AuditLogger
from app.infrastructure.observability.logging import get_logger
from app.models.domain.collaboration_domain import (
    OPEN_STATUSES,
    Collaboration,
    CollaborationFeedback,
    CollaborationStatus,
    CollaborationType,
    Deliverable,
    EscrowStatus,
    FeedbackStats,
    NegotiationEntry,
    PartyRole,
    PaymentCheckout,
    PayoutResult,
    RecordingPlatform,
)
from app.models.domain.directory_domain import ServiceOwnerType, ServiceRecord
from app.repositories.collaboration_repository import CollaborationRepository
from app.repositories.matching_repository import MatchingRepository
from app.services.collaboration.counterparts import (
    CollaborationParties,
    buyer_for,
    payment_direction_for,
    resolve_parties,
    service_owner,
)
from app.services.collaboration.locking import exclusive
from app.services.collaboration.state_machine import (
    Action,
    payment_capture_action,
    terms_acceptance_action,
    transition,
)
from app.services.errors import (
    AuthorizationError,
    DownstreamError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.services.notifications import templates
from app.services.notifications.mailgun_client import EmailMessage
from app.services.notifications.notifier import Notifier, get_notifier
from app.services.payments.flutterwave_client import (
    PaymentGateway,
    PaymentGatewayError,
    TransferRequest,
    get_payment_gateway,
)
from app.services.redis_client import FastRedisClient, get_redis
from app.utils.clock import utc_now

logger = get_logger(__name__)

MIN_PITCH_LENGTH = 50
PITCH_TYPES = frozenset({CollaborationType.LEGEND, CollaborationType.PODCAST})

# A buyer may not hold two pitches to the same provider while one is undecided.
PITCH_BLOCKING_STATUSES = OPEN_STATUSES | {CollaborationStatus.PENDING_REVIEW}

TERMS_ACTIONS = ("accept", "decline", "counter")

STALE_PRICE_MESSAGE = "Service price has changed. Please refresh and try again."
PAYOUT_FAILED_MESSAGE = "Failed to initiate payout. Please contact support."
PAIR_BUSY_MESSAGE = "A request between you and this party is already in progress, please retry"

MIN_RATING = 1
MAX_RATING = 5

RECORDING_LINK_STATUSES = frozenset(
    {CollaborationStatus.SCHEDULING, CollaborationStatus.SCHEDULED}
)

PLATFORM_HOSTS = (
    ("zoom.us", RecordingPlatform.ZOOM),
    ("riverside.fm", RecordingPlatform.RIVERSIDE),
    ("streamyard.com", RecordingPlatform.STREAMYARD),
    ("zencastr.com", RecordingPlatform.ZENCASTR),
)

# (email, display name) -> message
MessageBuilder = Callable[[str | None, str], EmailMessage]


def _to_cents(amount: float) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def split_payout(price: float, commission_rate: float) -> tuple[float, float]:
    """
    Split an escrowed price into (platform commission, receiving party amount).

    Both parts are rounded to cents and always sum to the rounded price.
    """
    commission = _to_cents(price * commission_rate)
    payout = _to_cents(price) - commission
    return float(commission), float(payout)


def generate_tx_ref(collaboration_id: str) -> str:
    return f"UVOC-{collaboration_id}-{uuid.uuid4()}"


def generate_payout_reference(collaboration_id: str) -> str:
    return f"PAYOUT-{collaboration_id}-{int(utc_now().timestamp() * 1000)}"


def _is_http_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def detect_recording_platform(url: str) -> RecordingPlatform:
    lowered = url.lower()
    for host, platform in PLATFORM_HOSTS:
        if host in lowered:
            return platform
    return RecordingPlatform.OTHER


def _clean_topics(topics: list[str] | None) -> list[str]:
    return [t.strip() for t in topics or [] if t and t.strip()]


class CollaborationLifecycleService:
    def __init__(
        self,
        store: DocumentStore,
        notifier: Notifier,
        gateway: PaymentGateway,
        locks: FastRedisClient,
        audit: AuditLogger | None = None,
    ):
        self.store = store
        self.repo = CollaborationRepository(store)
        self.matches = MatchingRepository(store)
        self.notifier = notifier
        self.gateway = gateway
        self.locks = locks
        self.audit = audit or AuditLogger(store)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _load_with_parties(
        self, collaboration_id: str
    ) -> tuple[Collaboration, CollaborationParties]:
        collaboration = await self.repo.get_collaboration(collaboration_id)
        parties = await resolve_parties(collaboration, self.store)
        return collaboration, parties

    def _require_party(
        self, parties: CollaborationParties, caller_id: str, collaboration_id: str
    ) -> None:
        if not parties.is_party(caller_id):
            raise AuthorizationError(
                "You are not a party to this collaboration", collaboration_id=collaboration_id
            )

    def _require_buyer(self, collaboration: Collaboration, caller_id: str, message: str) -> None:
        if collaboration.buyer_id != caller_id:
            raise AuthorizationError(message, collaboration_id=collaboration.id)

    async def _notify_user(
        self,
        user_id: str | None,
        build: MessageBuilder,
        event: str,
        collaboration_id: str | None,
    ) -> bool:
        """Look up the recipient and dispatch. Never raises."""
        if not user_id:
            return False
        try:
            user = await self.repo.get_user(user_id)
            if not user:
                logger.warning(
                    "Notification recipient not found",
                    notification_event=event,
                    user_id=user_id,
                    collaboration_id=collaboration_id,
                )
                return False
            message = build(user.email, user.label)
        except Exception as e:
            logger.warning(
                "Failed to prepare notification",
                notification_event=event,
                user_id=user_id,
                collaboration_id=collaboration_id,
                error=str(e),
            )
            return False
        return await self.notifier.dispatch(message, event, collaboration_id=collaboration_id)

    async def _user_label(self, user_id: str | None) -> str:
        try:
            user = await self.repo.get_user(user_id)
        except Exception as e:
            logger.warning("Failed to load user label", user_id=user_id, error=str(e))
            return "A UvoCollab member"
        return user.label if user else "A UvoCollab member"

    async def _record_transition(
        self,
        collaboration: Collaboration,
        to_status: CollaborationStatus,
        action: str,
        actor_id: str | None,
        **metadata,
    ) -> None:
        await self.audit.log_transition(
            collaboration_id=collaboration.id,
            from_status=collaboration.status.value,
            to_status=to_status.value,
            action=action,
            actor_id=actor_id,
            metadata=metadata or None,
        )

    async def _require_offered_service(
        self, service_id: str | None, owner_type: ServiceOwnerType, owner_id: str
    ) -> ServiceRecord:
        service = await self.repo.get_service(service_id)
        if not service or service.owner_type != owner_type or service.owner_id != owner_id:
            raise NotFoundError("Service not found")
        if not service.is_active:
            raise ValidationError("Service is not available")
        return service

    # ------------------------------------------------------------------
    # Guest appearances
    # ------------------------------------------------------------------

    async def initiate_guest_collaboration(
        self,
        caller_id: str,
        guest_id: str,
        podcast_id: str,
        service_id: str,
        price: float,
        proposed_topics: list[str] | None = None,
        proposed_dates: list[str] | None = None,
        message: str | None = None,
    ) -> Collaboration:
        """
        Open a guest appearance negotiation in ``pending_agreement``.

        Either the guest or the podcast owner may initiate. The initiator's
        side determines who pays: the guest pays to appear, or the podcast
        pays the guest; a zero price makes the appearance free.

        Raises:
            ValidationError: bad price/topics, user not a guest, service inactive
            AuthorizationError: caller is neither the guest nor the owner
            NotFoundError: guest, podcast or service missing
            StateConflictError: an open collaboration already exists for the pair
        """
        topics = _clean_topics(proposed_topics)
        if price is None or price < 0:
            raise ValidationError("Price must be zero or greater")
        if not topics:
            raise ValidationError("At least one topic is required")

        guest = await self.repo.require_user(guest_id, "Guest")
        if not guest.is_guest:
            raise ValidationError("User is not a registered guest")

        podcast = await self.repo.get_podcast(podcast_id)
        owner_id = podcast.owner_id
        if caller_id not in (guest_id, owner_id):
            raise AuthorizationError(
                "Only the guest or the podcast owner can initiate this collaboration"
            )
        if guest_id == owner_id:
            raise ValidationError("Cannot start a guest appearance on your own podcast")

        await self._require_offered_service(service_id, ServiceOwnerType.PODCAST, podcast_id)

        now = utc_now()
        direction = payment_direction_for(price, initiator_is_guest=caller_id == guest_id)
        dates = [d for d in proposed_dates or [] if d]
        history = []
        if message and message.strip():
            history.append(
                NegotiationEntry(
                    proposed_by=caller_id,
                    proposed_price=price,
                    proposed_topics=topics,
                    proposed_dates=dates,
                    message=message.strip(),
                    timestamp=now,
                )
            )

        draft = Collaboration(
            type=CollaborationType.GUEST_APPEARANCE,
            status=CollaborationStatus.PENDING_AGREEMENT,
            buyer_id=buyer_for(direction, guest_id, owner_id, caller_id),
            podcast_id=podcast_id,
            guest_id=guest_id,
            podcast_owner_id=owner_id,
            service_id=service_id,
            price=price,
            payment_direction=direction,
            initiated_by=caller_id,
            proposed_topics=topics,
            proposed_dates=dates,
            negotiation_history=history,
            max_reschedules=settings.DEFAULT_MAX_RESCHEDULES,
            created_at=now,
            updated_at=now,
        )

        async with exclusive(
            self.locks,
            f"collab-open:{CollaborationType.GUEST_APPEARANCE.value}:{guest_id}:{podcast_id}",
            settings.CREATE_LOCK_TTL_SECONDS,
            busy_message=PAIR_BUSY_MESSAGE,
        ):
            existing = await self.repo.find_open_collaboration(
                CollaborationType.GUEST_APPEARANCE,
                [("guestId", guest_id), ("podcastId", podcast_id)],
            )
            if existing:
                raise StateConflictError(
                    "An active collaboration already exists between you and this party",
                    collaboration_id=existing.id,
                )
            collaboration = await self.repo.create_collaboration(draft)

        await self.audit.log(
            action="initiate_guest_collaboration",
            actor_id=caller_id,
            resource_type="collaboration",
            resource_id=collaboration.id,
            metadata={"price": price, "paymentDirection": direction.value},
        )

        initiator_name = await self._user_label(caller_id)
        recipient_id = owner_id if caller_id == guest_id else guest_id
        await self._notify_user(
            recipient_id,
            lambda email, name: templates.guest_collaboration_request(
                email, name, initiator_name, podcast.label, price, collaboration.id
            ),
            "guest_collaboration_request",
            collaboration.id,
        )

        try:
            await self.matches.mark_collaboration_started(guest_id, podcast_id, collaboration.id)
        except Exception as e:
            logger.warning(
                "Failed to mark matches as collaboration_started",
                collaboration_id=collaboration.id,
                error=str(e),
            )

        return collaboration

    async def respond_to_terms(
        self,
        caller_id: str,
        collaboration_id: str,
        action: str,
        price: float | None = None,
        topics: list[str] | None = None,
        dates: list[str] | None = None,
        message: str | None = None,
    ) -> Collaboration:
        """
        Accept, decline or counter the current guest appearance terms.

        The author of the latest offer cannot accept it. A counter-offer
        replaces price and topics and re-derives who pays.
        """
        if action not in TERMS_ACTIONS:
            raise ValidationError("Action must be one of: accept, decline, counter")

        collaboration, parties = await self._load_with_parties(collaboration_id)
        if collaboration.type != CollaborationType.GUEST_APPEARANCE:
            raise ValidationError(
                "Terms can only be negotiated for guest appearances",
                collaboration_id=collaboration_id,
            )
        self._require_party(parties, caller_id, collaboration_id)

        now = utc_now()
        latest = collaboration.latest_offer()

        if action == "accept":
            author = latest.proposed_by if latest else collaboration.initiated_by
            if author == caller_id:
                raise AuthorizationError(
                    "You cannot accept your own offer", collaboration_id=collaboration_id
                )
            step = terms_acceptance_action(collaboration.price)
            new_status = transition(collaboration.status, step)
            agreed = (latest.proposed_topics if latest and latest.proposed_topics else None) or (
                collaboration.proposed_topics or []
            )
            changes = {
                "status": new_status,
                "agreedTopics": agreed,
                "acceptedAt": now,
                "updatedAt": now,
            }
        elif action == "decline":
            step = Action.DECLINE_TERMS
            new_status = transition(collaboration.status, step)
            changes = {"status": new_status, "updatedAt": now}
        else:
            step = Action.COUNTER_OFFER
            new_status = transition(collaboration.status, step)
            new_topics = _clean_topics(topics)
            if price is None or price < 0:
                raise ValidationError("Price must be zero or greater")
            if not new_topics:
                raise ValidationError("At least one topic is required")
            if not message or not message.strip():
                raise ValidationError("A message is required with a counter-offer")

            guest_id = collaboration.guest_id
            owner_id = parties.other(guest_id)
            direction = payment_direction_for(
                price, initiator_is_guest=collaboration.initiated_by == guest_id
            )
            new_dates = [d for d in dates or [] if d]
            entry = NegotiationEntry(
                proposed_by=caller_id,
                proposed_price=price,
                proposed_topics=new_topics,
                proposed_dates=new_dates,
                message=message.strip(),
                timestamp=now,
            )
            changes = {
                "price": price,
                "proposedTopics": new_topics,
                "paymentDirection": direction,
                "buyerId": buyer_for(
                    direction, guest_id, owner_id, collaboration.initiated_by or caller_id
                ),
                "negotiationHistory": [*collaboration.negotiation_history, entry],
                "updatedAt": now,
            }
            if new_dates:
                changes["proposedDates"] = new_dates

        await self.repo.update_collaboration(collaboration, changes)
        await self._record_transition(collaboration, new_status, step.value, caller_id)

        responder_name = await self._user_label(caller_id)
        offered_price = price if action == "counter" else collaboration.price
        await self._notify_user(
            parties.other(caller_id),
            lambda email, name: templates.terms_response(
                email, name, responder_name, action, offered_price, collaboration_id
            ),
            f"terms_{action}",
            collaboration_id,
        )

        return await self.repo.get_collaboration(collaboration_id)

    async def complete_recording(
        self, caller_id: str, collaboration_id: str, recording_notes: str | None = None
    ) -> Collaboration:
        collaboration, parties = await self._load_with_parties(collaboration_id)
        if collaboration.type != CollaborationType.GUEST_APPEARANCE:
            raise ValidationError(
                "Only guest appearances have a recording step", collaboration_id=collaboration_id
            )
        self._require_buyer(
            collaboration, caller_id, "Only the paying party can mark the recording complete"
        )

        new_status = transition(collaboration.status, Action.COMPLETE_RECORDING)
        now = utc_now()
        changes = {"status": new_status, "recordingCompletedAt": now, "updatedAt": now}
        if recording_notes and recording_notes.strip():
            changes["recordingNotes"] = recording_notes.strip()

        await self.repo.update_collaboration(collaboration, changes)
        await self._record_transition(
            collaboration, new_status, Action.COMPLETE_RECORDING.value, caller_id
        )

        await self._notify_user(
            parties.other(caller_id),
            lambda email, name: templates.recording_completed(email, name, collaboration_id),
            "recording_completed",
            collaboration_id,
        )
        return await self.repo.get_collaboration(collaboration_id)

    async def set_recording_link(
        self,
        caller_id: str,
        collaboration_id: str,
        recording_url: str,
        recording_platform: str | None = None,
        prep_notes: str | None = None,
    ) -> Collaboration:
        """
        Attach the session link for a guest appearance.

        Only the podcast owner sets it, while the recording is being arranged
        or is booked. The platform is inferred from the URL when not given.
        Once the recording is booked the guest is emailed the link.
        """
        url = (recording_url or "").strip()
        if not _is_http_url(url):
            raise ValidationError("Invalid URL format")

        collaboration, parties = await self._load_with_parties(collaboration_id)
        if collaboration.type != CollaborationType.GUEST_APPEARANCE:
            raise ValidationError(
                "Recording links are only for guest appearances",
                collaboration_id=collaboration_id,
            )
        if parties.role_of(caller_id) != PartyRole.PODCAST_OWNER:
            raise AuthorizationError(
                "Only the podcast owner can set the recording link",
                collaboration_id=collaboration_id,
            )
        if collaboration.status not in RECORDING_LINK_STATUSES:
            raise StateConflictError(
                "Recording links can only be set before the recording "
                f"(status: {collaboration.status.value})",
                collaboration_id=collaboration_id,
            )

        if recording_platform:
            try:
                platform = RecordingPlatform(recording_platform.strip().lower())
            except ValueError as e:
                raise ValidationError(
                    f"Unknown recording platform '{recording_platform}'",
                    collaboration_id=collaboration_id,
                ) from e
        else:
            platform = detect_recording_platform(url)

        now = utc_now()
        changes = {"recordingUrl": url, "recordingPlatform": platform, "updatedAt": now}
        if prep_notes and prep_notes.strip():
            changes["prepNotes"] = prep_notes.strip()
        await self.repo.update_collaboration(collaboration, changes)
        logger.info(
            "Recording link set",
            collaboration_id=collaboration_id,
            user_id=caller_id,
            platform=platform.value,
        )

        if collaboration.status == CollaborationStatus.SCHEDULED:
            slot = collaboration.scheduling_details
            notes = changes.get("prepNotes", collaboration.prep_notes)
            if slot:
                await self._notify_user(
                    collaboration.guest_id,
                    lambda email, name: templates.recording_link_added(
                        email, name, slot, platform.value, url, notes, collaboration_id
                    ),
                    "recording_link_added",
                    collaboration_id,
                )
        return await self.repo.get_collaboration(collaboration_id)

    # ------------------------------------------------------------------
    # Pitches (legend / podcast)
    # ------------------------------------------------------------------

    async def submit_pitch(
        self,
        caller_id: str,
        collaboration_type: CollaborationType,
        target_id: str,
        service_id: str,
        price: float,
        pitch_message: str,
        best_work_url: str,
        demo_url: str,
    ) -> Collaboration:
        """
        Send a pitch for a legend's or podcast's service.

        The offered price must equal the service's live price; a mismatch
        means the buyer saw a stale listing.
        """
        if collaboration_type not in PITCH_TYPES:
            raise ValidationError("Pitches are only available for legends and podcasts")
        message = (pitch_message or "").strip()
        if len(message) < MIN_PITCH_LENGTH:
            raise ValidationError(
                f"Pitch message must be at least {MIN_PITCH_LENGTH} characters"
            )
        if not _is_http_url(best_work_url):
            raise ValidationError("A valid best work URL is required")
        if not demo_url or not demo_url.strip():
            raise ValidationError("A demo upload is required")
        if price is None or price <= 0:
            raise ValidationError("Price must be greater than zero")

        if collaboration_type == CollaborationType.LEGEND:
            legend = await self.repo.require_user(target_id, "Legend")
            if legend.role != "legend":
                raise ValidationError("User is not a legend")
            provider_id = target_id
            owner_type, target_field = ServiceOwnerType.LEGEND, "legendId"
            provider_label = legend.label
        else:
            podcast = await self.repo.get_podcast(target_id)
            if podcast.status != "approved":
                raise ValidationError("Podcast is not accepting pitches")
            provider_id = podcast.owner_id
            owner_type, target_field = ServiceOwnerType.PODCAST, "podcastId"
            provider_label = podcast.label

        if provider_id == caller_id:
            raise AuthorizationError("You cannot pitch to yourself")

        service = await self._require_offered_service(service_id, owner_type, target_id)
        if _to_cents(service.price) != _to_cents(price):
            raise ValidationError(STALE_PRICE_MESSAGE)

        now = utc_now()
        collaboration = Collaboration(
            type=collaboration_type,
            status=CollaborationStatus.PENDING_REVIEW,
            buyer_id=caller_id,
            service_id=service_id,
            price=price,
            pitch_message=message,
            pitch_best_work_url=best_work_url.strip(),
            pitch_demo_url=demo_url.strip(),
            max_reschedules=settings.DEFAULT_MAX_RESCHEDULES,
            created_at=now,
            updated_at=now,
        )
        if collaboration_type == CollaborationType.LEGEND:
            collaboration.legend_id = target_id
        else:
            collaboration.podcast_id = target_id
            collaboration.podcast_owner_id = provider_id

        async with exclusive(
            self.locks,
            f"collab-open:{collaboration_type.value}:{caller_id}:{target_id}",
            settings.CREATE_LOCK_TTL_SECONDS,
            busy_message=PAIR_BUSY_MESSAGE,
        ):
            existing = await self.repo.find_open_collaboration(
                collaboration_type,
                [("buyerId", caller_id), (target_field, target_id)],
                statuses=PITCH_BLOCKING_STATUSES,
            )
            if existing:
                raise StateConflictError(
                    "You already have an active collaboration with this party",
                    collaboration_id=existing.id,
                )
            collaboration = await self.repo.create_collaboration(collaboration)

        await self.audit.log(
            action="submit_pitch",
            actor_id=caller_id,
            resource_type="collaboration",
            resource_id=collaboration.id,
            metadata={"type": collaboration_type.value, "price": price},
        )

        buyer_name = await self._user_label(caller_id)
        await self._notify_user(
            provider_id,
            lambda email, _name: templates.pitch_received(
                email, provider_label, buyer_name, service.title, collaboration.id
            ),
            "pitch_received",
            collaboration.id,
        )
        return collaboration

    async def respond_to_pitch(
        self, caller_id: str, collaboration_id: str, accept: bool
    ) -> Collaboration:
        collaboration, parties = await self._load_with_parties(collaboration_id)
        if collaboration.type not in PITCH_TYPES:
            raise ValidationError(
                "Collaboration is not a pitch", collaboration_id=collaboration_id
            )
        if caller_id != parties.provider_id:
            raise AuthorizationError(
                "Only the service owner can respond to this pitch",
                collaboration_id=collaboration_id,
            )

        step = Action.ACCEPT_PITCH if accept else Action.DECLINE_PITCH
        new_status = transition(collaboration.status, step)
        now = utc_now()
        changes = {"status": new_status, "updatedAt": now}
        if accept:
            changes["acceptedAt"] = now

        await self.repo.update_collaboration(collaboration, changes)
        await self._record_transition(collaboration, new_status, step.value, caller_id)

        provider_name = await self._user_label(caller_id)
        await self._notify_user(
            collaboration.buyer_id,
            lambda email, name: templates.pitch_decided(
                email, name, provider_name, accept, collaboration_id
            ),
            "pitch_accepted" if accept else "pitch_declined",
            collaboration_id,
        )
        return await self.repo.get_collaboration(collaboration_id)

    # ------------------------------------------------------------------
    # Payment capture
    # ------------------------------------------------------------------

    async def initialize_payment(self, caller_id: str, collaboration_id: str) -> PaymentCheckout:
        """Issue a fresh transaction reference and the checkout parameters for it."""
        collaboration = await self.repo.get_collaboration(collaboration_id)
        self._require_buyer(collaboration, caller_id, "Only the buyer can pay for this collaboration")
        transition(collaboration.status, payment_capture_action(collaboration.type))
        if collaboration.price <= 0:
            raise ValidationError(
                "This collaboration has no payment due", collaboration_id=collaboration_id
            )

        tx_ref = generate_tx_ref(collaboration_id)
        await self.repo.update_collaboration(
            collaboration, {"pendingTxRef": tx_ref, "updatedAt": utc_now()}
        )

        buyer = await self.repo.get_user(caller_id)
        service = await self.repo.get_service(collaboration.service_id)
        title = service.title if service and service.title else "UvoCollab collaboration"

        logger.info(
            "Payment initialized",
            collaboration_id=collaboration_id,
            tx_ref=tx_ref,
            amount=collaboration.price,
        )
        return PaymentCheckout(
            public_key=settings.FLUTTERWAVE_PUBLIC_KEY,
            tx_ref=tx_ref,
            amount=collaboration.price,
            currency=settings.PAYOUT_CURRENCY,
            customer={
                "email": buyer.email if buyer else None,
                "name": buyer.label if buyer else None,
            },
            customizations={"title": "UvoCollab", "description": title},
        )

    async def verify_payment(
        self, caller_id: str, collaboration_id: str, transaction_id: str, tx_ref: str
    ) -> Collaboration:
        """
        Capture a completed checkout into escrow.

        Raises:
            ValidationError: reference/amount mismatch, stale price, unsuccessful payment
            DownstreamError: the gateway could not be reached; state unchanged
        """
        collaboration, parties = await self._load_with_parties(collaboration_id)
        self._require_buyer(collaboration, caller_id, "Only the buyer can pay for this collaboration")

        step = payment_capture_action(collaboration.type)
        new_status = transition(collaboration.status, step)

        if not transaction_id or not tx_ref:
            raise ValidationError("Transaction id and reference are required")
        if not collaboration.pending_tx_ref or tx_ref != collaboration.pending_tx_ref:
            raise ValidationError(
                "Transaction reference does not match this collaboration",
                collaboration_id=collaboration_id,
            )

        # Negotiated guest appearance prices are not tied to the listing price
        if collaboration.type in PITCH_TYPES:
            owner_type, owner_id = service_owner(collaboration)
            service = await self.repo.get_service(collaboration.service_id)
            if (
                not service
                or service.owner_type != owner_type
                or service.owner_id != owner_id
                or _to_cents(service.price) != _to_cents(collaboration.price)
            ):
                raise ValidationError(STALE_PRICE_MESSAGE, collaboration_id=collaboration_id)

        try:
            verification = await self.gateway.verify_transaction(transaction_id)
        except PaymentGatewayError as e:
            logger.error(
                "Payment verification failed",
                collaboration_id=collaboration_id,
                transaction_id=transaction_id,
                rejected=e.rejected,
                error=str(e),
            )
            if e.rejected:
                raise ValidationError(
                    "Payment could not be verified", collaboration_id=collaboration_id
                ) from e
            raise DownstreamError(
                "Payment verification is temporarily unavailable, please retry",
                collaboration_id=collaboration_id,
            ) from e

        if verification.status != "successful":
            raise ValidationError(
                "Payment was not successful", collaboration_id=collaboration_id
            )
        if _to_cents(verification.amount) != _to_cents(collaboration.price):
            raise ValidationError(
                "Payment amount does not match the collaboration price",
                collaboration_id=collaboration_id,
            )
        if verification.tx_ref != tx_ref:
            raise ValidationError(
                "Transaction reference does not match this collaboration",
                collaboration_id=collaboration_id,
            )

        now = utc_now()
        changes = {
            "status": new_status,
            "paidAt": now,
            "transactionId": str(verification.transaction_id),
            "txRef": tx_ref,
            "pendingTxRef": None,
            "updatedAt": now,
        }
        if collaboration.price > 0:
            changes["escrowStatus"] = EscrowStatus.HELD

        await self.repo.update_collaboration(collaboration, changes)
        await self._record_transition(
            collaboration,
            new_status,
            step.value,
            caller_id,
            transactionId=str(verification.transaction_id),
            amount=collaboration.price,
        )

        buyer_name = await self._user_label(caller_id)
        await self._notify_user(
            parties.other(caller_id),
            lambda email, name: templates.payment_received(
                email, name, buyer_name, collaboration.price, collaboration_id
            ),
            "payment_received",
            collaboration_id,
        )
        return await self.repo.get_collaboration(collaboration_id)

    # ------------------------------------------------------------------
    # Delivery and payout
    # ------------------------------------------------------------------

    async def add_deliverable(
        self,
        caller_id: str,
        collaboration_id: str,
        file_name: str,
        file_url: str,
        file_size: int | None = None,
    ) -> Collaboration:
        collaboration, parties = await self._load_with_parties(collaboration_id)
        uploaders = {parties.provider_id, parties.payee_id} - {None}
        if caller_id not in uploaders:
            raise AuthorizationError(
                "Only the receiving party can upload deliverables",
                collaboration_id=collaboration_id,
            )
        if collaboration.status != CollaborationStatus.IN_PROGRESS:
            raise StateConflictError(
                "Deliverables can only be added while the collaboration is in progress "
                f"(status: {collaboration.status.value})",
                collaboration_id=collaboration_id,
            )
        if not file_name or not file_name.strip() or not file_url or not file_url.strip():
            raise ValidationError("File name and URL are required")

        now = utc_now()
        deliverable = Deliverable(
            file_name=file_name.strip(),
            file_url=file_url.strip(),
            uploaded_by=caller_id,
            uploaded_at=now,
            file_size=file_size,
        )
        await self.repo.update_collaboration(
            collaboration,
            {"deliverables": [*collaboration.deliverables, deliverable], "updatedAt": now},
        )
        logger.info(
            "Deliverable added",
            collaboration_id=collaboration_id,
            uploaded_by=caller_id,
            deliverable_count=len(collaboration.deliverables) + 1,
        )

        uploader_name = await self._user_label(caller_id)
        await self._notify_user(
            parties.other(caller_id),
            lambda email, name: templates.deliverable_uploaded(
                email, name, uploader_name, deliverable.file_name, collaboration_id
            ),
            "deliverable_uploaded",
            collaboration_id,
        )
        return await self.repo.get_collaboration(collaboration_id)

    def _check_payout_ready(self, collaboration: Collaboration) -> None:
        if collaboration.escrow_status == EscrowStatus.RELEASED:
            raise StateConflictError(
                "Payout has already been released", collaboration_id=collaboration.id
            )
        transition(collaboration.status, Action.RELEASE_PAYOUT)
        if not collaboration.deliverables:
            raise ValidationError(
                "At least one deliverable is required before payout",
                collaboration_id=collaboration.id,
            )

    async def trigger_payout(self, caller_id: str, collaboration_id: str) -> PayoutResult:
        """
        Release escrow to the receiving party and complete the collaboration.

        The transfer is initiated first; the collaboration only moves to
        ``completed`` once it succeeds. A per-collaboration lock keeps a
        second request from initiating a duplicate transfer while one is
        in flight.
        """
        collaboration = await self.repo.get_collaboration(collaboration_id)
        self._require_buyer(
            collaboration, caller_id, "Only the buyer can release payment for this collaboration"
        )
        self._check_payout_ready(collaboration)

        async with exclusive(
            self.locks,
            f"payout:{collaboration_id}",
            settings.PAYOUT_LOCK_TTL_SECONDS,
            busy_message="Payout already in progress",
            collaboration_id=collaboration_id,
        ):
            return await self._release_payout(caller_id, collaboration_id)

    async def _release_payout(self, caller_id: str, collaboration_id: str) -> PayoutResult:
        # Re-read under the lock; the pre-lock snapshot may be stale
        collaboration, parties = await self._load_with_parties(collaboration_id)
        self._check_payout_ready(collaboration)

        price = collaboration.price
        commission, amount = split_payout(price, settings.PLATFORM_COMMISSION_RATE)
        reference = generate_payout_reference(collaboration_id)
        transfer_id = None
        transfer_status = None
        now = utc_now()

        if price > 0:
            payee = await self.repo.get_user(parties.payee_id)
            if not payee or not payee.payout_details:
                raise ValidationError(
                    "Receiving party has not set up payout details",
                    collaboration_id=collaboration_id,
                )
            details = payee.payout_details
            try:
                transfer = await self.gateway.initiate_transfer(
                    TransferRequest(
                        account_bank=details.account_bank,
                        account_number=details.account_number,
                        amount=amount,
                        narration=f"UvoCollab payout {collaboration_id}",
                        reference=reference,
                        currency=settings.PAYOUT_CURRENCY,
                        beneficiary_name=details.beneficiary_name,
                    )
                )
            except PaymentGatewayError as e:
                logger.error(
                    "Payout transfer failed",
                    collaboration_id=collaboration_id,
                    reference=reference,
                    error=str(e),
                )
                await self.repo.record_payout_error(collaboration_id, str(e))
                await self.audit.log(
                    action="payout_failed",
                    actor_id=caller_id,
                    resource_type="collaboration",
                    resource_id=collaboration_id,
                    metadata={"reference": reference, "error": str(e)},
                )
                raise DownstreamError(PAYOUT_FAILED_MESSAGE, collaboration_id=collaboration_id) from e
            transfer_id = transfer.transfer_id
            transfer_status = transfer.status

        new_status = transition(collaboration.status, Action.RELEASE_PAYOUT)
        changes = {
            "status": new_status,
            "escrowStatus": EscrowStatus.RELEASED,
            "platformCommission": commission,
            "legendAmount": amount,
            "payoutReference": reference,
            "payoutTransferId": transfer_id,
            "payoutInitiatedAt": now,
            "payoutError": None,
            "completedAt": now,
            "updatedAt": now,
        }

        try:
            await self.repo.update_collaboration(collaboration, changes)
        except StateConflictError:
            # Money has moved; only give up if another writer already settled it
            latest = await self.repo.get_collaboration(collaboration_id)
            if (
                latest.status != CollaborationStatus.IN_PROGRESS
                or latest.escrow_status == EscrowStatus.RELEASED
            ):
                logger.critical(
                    "Payout transferred but collaboration was settled concurrently",
                    collaboration_id=collaboration_id,
                    reference=reference,
                    transfer_id=transfer_id,
                    status=latest.status.value,
                )
                raise
            await self.repo.update_collaboration(latest, changes)

        await self._record_transition(
            collaboration,
            new_status,
            Action.RELEASE_PAYOUT.value,
            caller_id,
            reference=reference,
            transferId=transfer_id,
            legendAmount=amount,
            platformCommission=commission,
        )

        if price > 0:
            await self._notify_user(
                parties.payee_id,
                lambda email, name: templates.payout_released(
                    email, name, amount, reference, collaboration_id
                ),
                "payout_released",
                collaboration_id,
            )

        return PayoutResult(
            collaboration_id=collaboration_id,
            transfer_id=transfer_id,
            reference=reference,
            legend_amount=amount,
            platform_commission=commission,
            transfer_status=transfer_status,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_collaboration(self, caller_id: str, collaboration_id: str) -> Collaboration:
        collaboration, parties = await self._load_with_parties(collaboration_id)
        self._require_party(parties, caller_id, collaboration_id)
        return collaboration

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def submit_feedback(
        self,
        caller_id: str,
        collaboration_id: str,
        rating: int,
        would_collaborate_again: bool,
        review: str | None = None,
        is_public: bool = True,
    ) -> CollaborationFeedback:
        """
        Rate the other party of a completed collaboration, once per direction.

        Raises:
            ValidationError: rating outside 1..5
            AuthorizationError: caller is not a party
            StateConflictError: not completed, or feedback already given
        """
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")

        collaboration, parties = await self._load_with_parties(collaboration_id)
        if not parties.is_party(caller_id):
            raise AuthorizationError(
                "User not part of this collaboration", collaboration_id=collaboration_id
            )
        if collaboration.status != CollaborationStatus.COMPLETED:
            raise StateConflictError(
                "Feedback can only be submitted for completed collaborations",
                collaboration_id=collaboration_id,
            )

        to_user_id = parties.other(caller_id)
        feedback_id = f"{collaboration_id}_{caller_id}_{to_user_id}"
        now = utc_now()
        feedback = CollaborationFeedback(
            collaboration_id=collaboration_id,
            from_user_id=caller_id,
            to_user_id=to_user_id,
            rating=rating,
            review=(review or "").strip(),
            would_collaborate_again=would_collaborate_again,
            is_public=is_public,
            created_at=now,
            updated_at=now,
        )

        async with exclusive(
            self.locks,
            f"feedback:{feedback_id}",
            settings.CREATE_LOCK_TTL_SECONDS,
            busy_message="Your feedback is already being submitted",
            collaboration_id=collaboration_id,
        ):
            if await self.repo.get_feedback(feedback_id):
                raise StateConflictError(
                    "Feedback already submitted for this collaboration",
                    collaboration_id=collaboration_id,
                )
            saved = await self.repo.create_feedback(feedback, feedback_id)

        logger.info(
            "Feedback submitted",
            collaboration_id=collaboration_id,
            user_id=caller_id,
            to_user_id=to_user_id,
            rating=rating,
        )
        await self._refresh_feedback_stats(to_user_id)
        return saved

    async def _refresh_feedback_stats(self, user_id: str) -> None:
        """Recompute the public rating summary on the user's record. Never raises."""
        try:
            received = await self.repo.list_feedback("toUserId", user_id, public_only=True)
            if not received:
                return
            total = len(received)
            again = sum(1 for f in received if f.would_collaborate_again)
            stats = FeedbackStats(
                average_rating=round(sum(f.rating for f in received) / total, 2),
                total_reviews=total,
                would_collaborate_again_percentage=round(again / total * 100, 1),
            )
            await self.repo.set_feedback_stats(user_id, stats)
        except Exception as e:
            logger.warning("Failed to update feedback stats", user_id=user_id, error=str(e))

    async def list_feedback(
        self,
        caller_id: str,
        collaboration_id: str | None = None,
        from_user_id: str | None = None,
        to_user_id: str | None = None,
    ) -> list[CollaborationFeedback]:
        """
        Feedback on one collaboration (parties only), given by the caller,
        or received by a user (public entries only).
        """
        if collaboration_id:
            _, parties = await self._load_with_parties(collaboration_id)
            self._require_party(parties, caller_id, collaboration_id)
            return await self.repo.list_feedback("collaborationId", collaboration_id)
        if from_user_id:
            if from_user_id != caller_id:
                raise AuthorizationError("You can only list feedback you have given")
            return await self.repo.list_feedback("fromUserId", from_user_id)
        if to_user_id:
            return await self.repo.list_feedback("toUserId", to_user_id, public_only=True)
        raise ValidationError("Missing query parameter: collaborationId, userId, or toUserId")


def get_lifecycle_service() -> CollaborationLifecycleService:
    """FastAPI dependency; tests override it with fakes."""
    return CollaborationLifecycleService(
        store=get_document_store(),
        notifier=get_notifier(),
        gateway=get_payment_gateway(),
        locks=get_redis(),
    )
