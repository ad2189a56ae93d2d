"""
Compatibility scoring for guest/podcast wishlist pairs.

Score out of 100:
    topics        40  (shared / union, case-insensitive)
    budget        30  (see _budget_points)
    verification  15  (guest is a verified guest)
    availability  15  (podcast has at least one active service)
"""

from app.models.domain.matching_domain import (
    BudgetAlignment,
    CompatibilityResult,
    GuestWishlist,
    PodcastGuestWishlist,
)

TOPIC_WEIGHT = 40
BUDGET_WEIGHT = 30
VERIFICATION_BONUS = 15
AVAILABILITY_BONUS = 15


def topic_overlap(guest_topics: list[str], podcast_topics: list[str]) -> list[str]:
    """Guest topics also wanted by the podcast, keeping the guest's spelling."""
    wanted = {t.strip().lower() for t in podcast_topics}
    overlap = []
    seen = set()
    for topic in guest_topics:
        key = topic.strip().lower()
        if key in wanted and key not in seen:
            overlap.append(topic)
            seen.add(key)
    return overlap


def topic_union_size(guest_topics: list[str], podcast_topics: list[str]) -> int:
    return len({t.strip().lower() for t in [*guest_topics, *podcast_topics]})


def _budget_points(offer: float, budget: float) -> int:
    if offer <= 0:
        # Free guest: ideal whether or not the podcast pays
        return BUDGET_WEIGHT
    if budget <= 0:
        return 25
    return 15


def budget_alignment(offer: float, budget: float) -> BudgetAlignment:
    if offer <= 0:
        return BudgetAlignment.PERFECT
    if budget <= 0:
        return BudgetAlignment.CLOSE
    return BudgetAlignment.NEGOTIABLE


def score(
    guest_wishlist: GuestWishlist,
    podcast_wishlist: PodcastGuestWishlist,
    guest_verified: bool,
    service_available: bool,
) -> CompatibilityResult:
    """Score a mutually-interested pair. Pure; never raises on sparse input."""
    guest_topics = guest_wishlist.topics or []
    podcast_topics = podcast_wishlist.preferred_topics or []
    offer = guest_wishlist.offer_amount or 0.0
    budget = podcast_wishlist.budget_amount or 0.0

    overlap = topic_overlap(guest_topics, podcast_topics)
    union = topic_union_size(guest_topics, podcast_topics)

    total = (len(overlap) / union) * TOPIC_WEIGHT if union else 0.0
    total += _budget_points(offer, budget)
    if guest_verified:
        total += VERIFICATION_BONUS
    if service_available:
        total += AVAILABILITY_BONUS

    return CompatibilityResult(
        score=max(0, min(100, round(total))),
        topic_overlap=overlap,
        budget_alignment=budget_alignment(offer, budget),
    )
