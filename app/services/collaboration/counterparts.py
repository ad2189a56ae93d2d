"""
Counterpart resolution for the three collaboration variants.

    legend            buyer <-> legend user          payee: legend
    podcast           buyer <-> podcast owner        payee: podcast owner
    guest_appearance  guest <-> podcast owner        payee: by payment direction

Lifecycle code asks "who is the other side / who gets paid / whose service is
this" here instead of branching on which id field is populated.
"""

from dataclasses import dataclass, field

from app.db.document_store import DocumentStore
from app.models.domain.collaboration_domain import (
    Collaboration,
    CollaborationType,
    PartyRole,
    PaymentDirection,
)
from app.models.domain.directory_domain import PodcastRecord, ServiceOwnerType
from app.services.errors import NotFoundError


@dataclass(frozen=True)
class CollaborationParties:
    buyer_id: str
    provider_id: str
    payee_id: str | None
    roles: dict[str, PartyRole] = field(default_factory=dict)

    @property
    def user_ids(self) -> tuple[str, str]:
        return (self.buyer_id, self.provider_id)

    def is_party(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id in self.user_ids

    def other(self, user_id: str) -> str:
        return self.provider_id if user_id == self.buyer_id else self.buyer_id

    def role_of(self, user_id: str) -> PartyRole | None:
        return self.roles.get(user_id)


def payment_direction_for(price: float, initiator_is_guest: bool) -> PaymentDirection:
    if price <= 0:
        return PaymentDirection.FREE
    if initiator_is_guest:
        return PaymentDirection.GUEST_PAYS_PODCAST
    return PaymentDirection.PODCAST_PAYS_GUEST


def buyer_for(
    direction: PaymentDirection, guest_id: str, owner_id: str, initiator_id: str
) -> str:
    """The party that pays; for free appearances the initiator stays the buyer."""
    if direction == PaymentDirection.GUEST_PAYS_PODCAST:
        return guest_id
    if direction == PaymentDirection.PODCAST_PAYS_GUEST:
        return owner_id
    return initiator_id


def service_owner(collaboration: Collaboration) -> tuple[ServiceOwnerType, str | None]:
    if collaboration.type == CollaborationType.LEGEND:
        return ServiceOwnerType.LEGEND, collaboration.legend_id
    return ServiceOwnerType.PODCAST, collaboration.podcast_id


async def _podcast_owner_id(collaboration: Collaboration, store: DocumentStore) -> str:
    if collaboration.podcast_owner_id:
        return collaboration.podcast_owner_id
    if not collaboration.podcast_id:
        raise NotFoundError("Collaboration has no podcast", collaboration_id=collaboration.id)
    doc = await store.get("podcasts", collaboration.podcast_id)
    if not doc:
        raise NotFoundError("Podcast not found", collaboration_id=collaboration.id)
    return PodcastRecord.from_document(doc).owner_id


async def resolve_parties(
    collaboration: Collaboration, store: DocumentStore
) -> CollaborationParties:
    if collaboration.type == CollaborationType.LEGEND:
        if not collaboration.legend_id:
            raise NotFoundError("Collaboration has no legend", collaboration_id=collaboration.id)
        return CollaborationParties(
            buyer_id=collaboration.buyer_id,
            provider_id=collaboration.legend_id,
            payee_id=collaboration.legend_id,
        )

    owner_id = await _podcast_owner_id(collaboration, store)

    if collaboration.type == CollaborationType.PODCAST:
        return CollaborationParties(
            buyer_id=collaboration.buyer_id, provider_id=owner_id, payee_id=owner_id
        )

    guest_id = collaboration.guest_id
    if not guest_id:
        raise NotFoundError("Collaboration has no guest", collaboration_id=collaboration.id)

    direction = collaboration.payment_direction or PaymentDirection.FREE
    if direction == PaymentDirection.PODCAST_PAYS_GUEST:
        payee = guest_id
    elif direction == PaymentDirection.GUEST_PAYS_PODCAST:
        payee = owner_id
    else:
        payee = None

    return CollaborationParties(
        buyer_id=collaboration.buyer_id,
        provider_id=owner_id if collaboration.buyer_id == guest_id else guest_id,
        payee_id=payee,
        roles={guest_id: PartyRole.GUEST, owner_id: PartyRole.PODCAST_OWNER},
    )
