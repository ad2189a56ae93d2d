"""
Persistence layer for wishlists and matches.
"""

from typing import Any

from app.db.document_store import DocumentStore, WriteBatch
from app.infrastructure.observability.logging import get_logger
from app.models.domain.matching_domain import (
    LIVE_MATCH_STATUSES,
    GuestWishlist,
    Match,
    MatchStatus,
    PodcastGuestWishlist,
    WishlistStatus,
)
from app.repositories.collaboration_repository import jsonable
from app.services.errors import NotFoundError
from app.utils.clock import utc_now

logger = get_logger(__name__)

GUEST_WISHLISTS = "guest_wishlists"
PODCAST_GUEST_WISHLISTS = "podcast_guest_wishlists"
MATCHES = "matches"


class MatchingRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def pending_guest_wishlists(self) -> list[dict[str, Any]]:
        return await self.store.query(
            GUEST_WISHLISTS, [("status", "==", WishlistStatus.PENDING.value)]
        )

    async def pending_podcast_wishlists(self) -> list[dict[str, Any]]:
        """Pending podcast wishlists naming guests who have an account."""
        return await self.store.query(
            PODCAST_GUEST_WISHLISTS,
            [
                ("status", "==", WishlistStatus.PENDING.value),
                ("isRegistered", "==", True),
            ],
        )

    async def live_match_exists(self, guest_id: str, podcast_id: str) -> bool:
        count = await self.store.count(
            MATCHES,
            [
                ("guestId", "==", guest_id),
                ("podcastId", "==", podcast_id),
                ("status", "in", [s.value for s in LIVE_MATCH_STATUSES]),
            ],
        )
        return count > 0

    def stage_match(
        self,
        batch: WriteBatch,
        match: Match,
        guest_wishlist: GuestWishlist,
        podcast_wishlist: PodcastGuestWishlist,
    ) -> str:
        """Add match creation plus both wishlist flips to ``batch``; returns the match id."""
        now = utc_now()
        match_id = batch.create(MATCHES, match.to_document())
        matched = jsonable({"status": WishlistStatus.MATCHED, "updatedAt": now})
        batch.update(
            GUEST_WISHLISTS, guest_wishlist.id, matched, expected_version=guest_wishlist.version
        )
        batch.update(
            PODCAST_GUEST_WISHLISTS,
            podcast_wishlist.id,
            matched,
            expected_version=podcast_wishlist.version,
        )
        return match_id

    async def get_match(self, match_id: str) -> Match:
        doc = await self.store.get(MATCHES, match_id)
        if not doc:
            raise NotFoundError("Match not found")
        return Match.from_document(doc)

    async def update_match(
        self, match: Match, changes: dict[str, Any], check_version: bool = True
    ) -> int:
        return await self.store.update(
            MATCHES,
            match.id,
            jsonable(changes),
            match.version if check_version else None,
        )

    async def matches_for(self, field: str, user_id: str) -> list[Match]:
        docs = await self.store.query(
            MATCHES,
            [
                (field, "==", user_id),
                ("status", "in", [s.value for s in LIVE_MATCH_STATUSES]),
            ],
            order_by="matchedAt",
            descending=True,
        )
        return [Match.from_document(d) for d in docs]

    async def mark_collaboration_started(
        self, guest_id: str, podcast_id: str, collaboration_id: str
    ) -> int:
        docs = await self.store.query(
            MATCHES,
            [
                ("guestId", "==", guest_id),
                ("podcastId", "==", podcast_id),
                ("status", "==", MatchStatus.ACTIVE.value),
            ],
        )
        if not docs:
            return 0

        batch = self.store.batch()
        changes = jsonable(
            {
                "status": MatchStatus.COLLABORATION_STARTED,
                "collaborationId": collaboration_id,
                "updatedAt": utc_now(),
            }
        )
        for doc in docs:
            batch.update(MATCHES, doc["id"], changes, expected_version=doc["version"])
        await self.store.commit(batch)

        logger.info(
            "Matches marked collaboration_started",
            collaboration_id=collaboration_id,
            match_count=len(docs),
        )
        return len(docs)

    async def wishlisted_podcast_ids(self, guest_id: str) -> set[str]:
        docs = await self.store.query(GUEST_WISHLISTS, [("guestId", "==", guest_id)])
        return {d["podcastId"] for d in docs if d.get("podcastId")}

    async def wishlisted_guest_ids(self, podcast_id: str) -> set[str]:
        docs = await self.store.query(PODCAST_GUEST_WISHLISTS, [("podcastId", "==", podcast_id)])
        return {d["guestId"] for d in docs if d.get("guestId")}

    async def count_matches(self, status: MatchStatus | None = None) -> int:
        filters = [("status", "==", status.value)] if status else None
        return await self.store.count(MATCHES, filters)

    async def count_pending_wishlists(self) -> tuple[int, int]:
        guest = await self.store.count(
            GUEST_WISHLISTS, [("status", "==", WishlistStatus.PENDING.value)]
        )
        podcast = await self.store.count(
            PODCAST_GUEST_WISHLISTS,
            [
                ("status", "==", WishlistStatus.PENDING.value),
                ("isRegistered", "==", True),
            ],
        )
        return guest, podcast
