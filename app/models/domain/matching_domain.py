"""
Wishlist and Match domain models.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from app.models.domain.base import CamelModel, DocumentModel


class WishlistStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    DECLINED = "declined"
    COMPLETED = "completed"


class MatchStatus(str, Enum):
    ACTIVE = "active"
    COLLABORATION_STARTED = "collaboration_started"
    DISMISSED_BY_GUEST = "dismissed_by_guest"
    DISMISSED_BY_PODCAST = "dismissed_by_podcast"


# At most one match per (guest, podcast) pair may sit in these.
LIVE_MATCH_STATUSES = frozenset({MatchStatus.ACTIVE, MatchStatus.COLLABORATION_STARTED})


class BudgetAlignment(str, Enum):
    PERFECT = "perfect"
    CLOSE = "close"
    NEGOTIABLE = "negotiable"


def _coerce_topics(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [t for t in value if isinstance(t, str) and t.strip()]


def _coerce_amount(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, int | float):
        return float(value) if value > 0 else 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    return amount if amount > 0 else 0.0


class GuestWishlist(DocumentModel):
    """A guest's wish to appear on a podcast."""

    guest_id: str
    podcast_id: str
    topics: list[str] = Field(default_factory=list)
    offer_amount: float = 0.0
    status: WishlistStatus = WishlistStatus.PENDING

    @field_validator("topics", mode="before")
    @classmethod
    def coerce_topics(cls, value: Any) -> list[str]:
        return _coerce_topics(value)

    @field_validator("offer_amount", mode="before")
    @classmethod
    def coerce_offer(cls, value: Any) -> float:
        return _coerce_amount(value)


class PodcastGuestWishlist(DocumentModel):
    """A podcast's wish to host a guest."""

    podcast_id: str
    guest_id: str
    preferred_topics: list[str] = Field(default_factory=list)
    budget_amount: float = 0.0
    is_registered: bool = False
    status: WishlistStatus = WishlistStatus.PENDING

    @field_validator("preferred_topics", mode="before")
    @classmethod
    def coerce_topics(cls, value: Any) -> list[str]:
        return _coerce_topics(value)

    @field_validator("budget_amount", mode="before")
    @classmethod
    def coerce_budget(cls, value: Any) -> float:
        return _coerce_amount(value)


class CompatibilityResult(CamelModel):
    score: int
    topic_overlap: list[str]
    budget_alignment: BudgetAlignment


class Match(DocumentModel):
    guest_id: str
    podcast_id: str
    podcast_owner_id: str | None = None
    guest_wishlist_id: str
    podcast_wishlist_id: str

    # Party snapshots at match time
    guest_name: str | None = None
    guest_image: str | None = None
    guest_rate: float | None = None
    guest_topics: list[str] = Field(default_factory=list)
    podcast_name: str | None = None
    podcast_image: str | None = None
    podcast_topics: list[str] = Field(default_factory=list)

    compatibility_score: int
    topic_overlap: list[str] = Field(default_factory=list)
    budget_alignment: BudgetAlignment
    offer_amount: float = 0.0
    budget_amount: float = 0.0

    status: MatchStatus = MatchStatus.ACTIVE
    matched_at: datetime
    expires_at: datetime
    notified_at: datetime | None = None
    collaboration_id: str | None = None
    dismissed_at: datetime | None = None
    dismissed_by: str | None = None


class SweepResult(CamelModel):
    pairs_examined: int = 0
    matches_created: int = 0
    skipped_existing: int = 0
    match_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class MatchStatistics(CamelModel):
    total_matches: int
    active_matches: int
    pending_guest_wishlists: int
    pending_podcast_wishlists: int


class SimilarityFactors(CamelModel):
    topic_score: float
    budget_score: int
    popularity_score: int
    recent_activity_score: int


class Recommendation(CamelModel):
    """A scored suggestion; computed per request, never stored."""

    target_user_id: str
    target_user_type: str
    recommended_id: str
    recommended_type: str
    recommended_name: str
    recommended_image_url: str | None = None
    compatibility_score: int
    reasons: list[str] = Field(default_factory=list)
    topic_matches: list[str] = Field(default_factory=list)
    budget_match: bool
    similarity_factors: SimilarityFactors
    status: str = "active"
    created_at: datetime


class RecommendationSet(CamelModel):
    user_type: str
    recommendations: list[Recommendation] = Field(default_factory=list)
