"""
Match engine: pairs mutually-interested guest and podcast wishlists.

A sweep looks only at exact (podcastId, guestId) pairs where both sides have
a pending wishlist entry naming each other; it never searches across pairs.
Each new Match is created together with both wishlist status flips in one
version-guarded batch, so a pair is matched at most once even if two sweeps
race. A Redis lock additionally keeps scheduled and on-demand sweeps from
overlapping.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.db.document_store import (
    ConcurrentModificationError,
    DocumentStore,
    get_document_store,
)
from app.infrastructure.observability.logging import get_logger
from app.models.domain.directory_domain import PodcastRecord, ServiceOwnerType, UserRecord
from app.models.domain.matching_domain import (
    GuestWishlist,
    Match,
    MatchStatistics,
    MatchStatus,
    PodcastGuestWishlist,
    Recommendation,
    RecommendationSet,
    SimilarityFactors,
    SweepResult,
)
from app.repositories.collaboration_repository import PODCASTS, CollaborationRepository
from app.repositories.matching_repository import MATCHES, MatchingRepository
from app.services.errors import (
    AuthorizationError,
    DownstreamError,
    StateConflictError,
    ValidationError,
)
from app.services.matching import recommendations
from app.services.matching.compatibility import score, topic_overlap
from app.services.notifications import templates
from app.services.notifications.notifier import Notifier, get_notifier
from app.services.redis_client import FastRedisClient, LockError, get_redis
from app.utils.clock import utc_now

logger = get_logger(__name__)

SWEEP_LOCK = "match-sweep"
SWEEP_RUNNING_MESSAGE = "Match sweep already running"

DISMISS_STATUS = {
    "guest": MatchStatus.DISMISSED_BY_GUEST,
    "podcast": MatchStatus.DISMISSED_BY_PODCAST,
}


class MatchEngine:
    def __init__(self, store: DocumentStore, notifier: Notifier, locks: FastRedisClient):
        self.store = store
        self.repo = MatchingRepository(store)
        self.directory = CollaborationRepository(store)
        self.notifier = notifier
        self.locks = locks

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def run_sweep(self, triggered_by: str | None = None) -> SweepResult:
        """
        Run one matching sweep under the sweep lock.

        Returns an empty result carrying an error entry if another sweep holds
        the lock.

        Raises:
            DownstreamError: Redis could not be reached to take the lock
        """
        token = uuid.uuid4().hex
        try:
            acquired = await self.locks.acquire_lock(
                SWEEP_LOCK, token, settings.MATCH_SWEEP_LOCK_TTL_SECONDS
            )
        except LockError as e:
            raise DownstreamError("Matching is temporarily unavailable, please retry") from e

        if not acquired:
            logger.info("Match sweep skipped, lock held", triggered_by=triggered_by)
            return SweepResult(errors=[SWEEP_RUNNING_MESSAGE])

        try:
            return await self._sweep(triggered_by)
        finally:
            await self.locks.release_lock(SWEEP_LOCK, token)

    async def _sweep(self, triggered_by: str | None) -> SweepResult:
        result = SweepResult()
        guest_docs = await self.repo.pending_guest_wishlists()
        podcast_docs = await self.repo.pending_podcast_wishlists()

        podcast_side: dict[tuple[str, str], PodcastGuestWishlist] = {}
        for doc in podcast_docs:
            wishlist = self._parse(PodcastGuestWishlist, doc, result)
            if wishlist:
                podcast_side.setdefault((wishlist.podcast_id, wishlist.guest_id), wishlist)

        logger.info(
            "Match sweep started",
            triggered_by=triggered_by,
            guest_wishlists=len(guest_docs),
            podcast_wishlists=len(podcast_side),
        )

        for doc in guest_docs:
            guest_wishlist = self._parse(GuestWishlist, doc, result)
            if not guest_wishlist:
                continue
            podcast_wishlist = podcast_side.get(
                (guest_wishlist.podcast_id, guest_wishlist.guest_id)
            )
            if not podcast_wishlist:
                continue

            result.pairs_examined += 1
            try:
                match_id = await self._match_pair(guest_wishlist, podcast_wishlist, result)
            except Exception as e:
                logger.error(
                    "Failed to match pair",
                    guest_id=guest_wishlist.guest_id,
                    podcast_id=guest_wishlist.podcast_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.errors.append(
                    f"Pair {guest_wishlist.guest_id}/{guest_wishlist.podcast_id}: {e}"
                )
                continue

            if match_id:
                result.matches_created += 1
                result.match_ids.append(match_id)

        logger.info(
            "Match sweep finished",
            triggered_by=triggered_by,
            pairs_examined=result.pairs_examined,
            matches_created=result.matches_created,
            skipped_existing=result.skipped_existing,
            error_count=len(result.errors),
        )
        return result

    @staticmethod
    def _parse(model, doc: dict[str, Any], result: SweepResult):
        try:
            return model.from_document(doc)
        except PydanticValidationError as e:
            logger.warning("Skipping malformed wishlist", wishlist_id=doc.get("id"), error=str(e))
            result.errors.append(f"Wishlist {doc.get('id')}: malformed entry")
            return None

    async def _match_pair(
        self,
        guest_wishlist: GuestWishlist,
        podcast_wishlist: PodcastGuestWishlist,
        result: SweepResult,
    ) -> str | None:
        guest_id = guest_wishlist.guest_id
        podcast_id = guest_wishlist.podcast_id

        if await self.repo.live_match_exists(guest_id, podcast_id):
            result.skipped_existing += 1
            return None

        guest = await self.directory.get_user(guest_id)
        if not guest:
            result.errors.append(f"Guest {guest_id} not found")
            return None
        podcast_doc = await self.store.get(PODCASTS, podcast_id)
        if not podcast_doc:
            result.errors.append(f"Podcast {podcast_id} not found")
            return None
        podcast = PodcastRecord.from_document(podcast_doc)

        service_available = await self.directory.has_active_service(
            ServiceOwnerType.PODCAST, podcast_id
        )
        compatibility = score(
            guest_wishlist, podcast_wishlist, guest.is_verified_guest, service_available
        )

        now = utc_now()
        match = Match(
            guest_id=guest_id,
            podcast_id=podcast_id,
            podcast_owner_id=podcast.owner_id,
            guest_wishlist_id=guest_wishlist.id,
            podcast_wishlist_id=podcast_wishlist.id,
            guest_name=guest.label,
            guest_image=guest.profile_image_url,
            guest_rate=guest.guest_rate,
            guest_topics=guest.guest_topics or guest_wishlist.topics,
            podcast_name=podcast.label,
            podcast_image=podcast.image_url,
            podcast_topics=podcast_wishlist.preferred_topics,
            compatibility_score=compatibility.score,
            topic_overlap=compatibility.topic_overlap,
            budget_alignment=compatibility.budget_alignment,
            offer_amount=guest_wishlist.offer_amount,
            budget_amount=podcast_wishlist.budget_amount,
            matched_at=now,
            expires_at=now + timedelta(days=settings.MATCH_EXPIRY_DAYS),
        )

        batch = self.store.batch()
        match_id = self.repo.stage_match(batch, match, guest_wishlist, podcast_wishlist)
        try:
            await self.store.commit(batch)
        except ConcurrentModificationError:
            result.errors.append(
                f"Pair {guest_id}/{podcast_id}: wishlists changed during sweep"
            )
            return None

        logger.info(
            "Match created",
            match_id=match_id,
            guest_id=guest_id,
            podcast_id=podcast_id,
            compatibility_score=compatibility.score,
            budget_alignment=compatibility.budget_alignment.value,
        )

        try:
            await self._notify_match(match_id, match, guest, podcast)
        except Exception as e:
            logger.warning("Match notification failed", match_id=match_id, error=str(e))
        return match_id

    async def _notify_match(
        self, match_id: str, match: Match, guest: UserRecord, podcast: PodcastRecord
    ) -> None:
        owner = await self.directory.get_user(podcast.owner_id)
        sent_guest = await self.notifier.dispatch(
            templates.match_for_guest(
                guest.email,
                guest.label,
                podcast.label,
                match.compatibility_score,
                match.topic_overlap,
                match_id,
            ),
            "match_created",
            match_id=match_id,
        )
        sent_owner = await self.notifier.dispatch(
            templates.match_for_podcast_owner(
                owner.email if owner else None,
                guest.label,
                podcast.label,
                match.compatibility_score,
                match.topic_overlap,
                match_id,
            ),
            "match_created",
            match_id=match_id,
        )
        if not (sent_guest or sent_owner):
            return

        try:
            await self.store.update(MATCHES, match_id, {"notifiedAt": utc_now().isoformat()})
        except Exception as e:
            logger.warning("Failed to record match notification", match_id=match_id, error=str(e))

    # ------------------------------------------------------------------
    # Match reads and dismissal
    # ------------------------------------------------------------------

    async def dismiss_match(self, caller_id: str, match_id: str, dismissed_by: str) -> Match:
        if dismissed_by not in DISMISS_STATUS:
            raise ValidationError("dismissedBy must be one of: guest, podcast")

        match = await self.repo.get_match(match_id)
        if dismissed_by == "guest":
            entitled = caller_id == match.guest_id
        else:
            owner_id = match.podcast_owner_id
            if not owner_id:
                owner_id = (await self.directory.get_podcast(match.podcast_id)).owner_id
            entitled = caller_id == owner_id
        if not entitled:
            raise AuthorizationError("You cannot dismiss this match")

        if match.status != MatchStatus.ACTIVE:
            raise StateConflictError(
                f"Only active matches can be dismissed (status: {match.status.value})"
            )

        try:
            await self.repo.update_match(
                match,
                {
                    "status": DISMISS_STATUS[dismissed_by],
                    "dismissedAt": utc_now(),
                    "dismissedBy": dismissed_by,
                },
            )
        except ConcurrentModificationError as e:
            raise StateConflictError("Match was modified concurrently, please retry") from e

        logger.info("Match dismissed", match_id=match_id, dismissed_by=dismissed_by)
        return await self.repo.get_match(match_id)

    async def list_matches_for_user(self, caller_id: str) -> list[Match]:
        """Live matches where the caller is the guest or owns the podcast, newest first."""
        as_guest = await self.repo.matches_for("guestId", caller_id)
        as_owner = await self.repo.matches_for("podcastOwnerId", caller_id)

        by_id = {m.id: m for m in [*as_guest, *as_owner]}
        return sorted(by_id.values(), key=lambda m: m.matched_at, reverse=True)

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    async def recommend(self, caller_id: str) -> RecommendationSet:
        """
        Suggest podcasts to a guest and guests to a podcast owner.

        Candidates already on the caller's wishlist, and the caller
        themselves, are left out. At most MAX_RECOMMENDATIONS are returned,
        best first.

        Raises:
            NotFoundError: caller has no user record
            ValidationError: caller is neither a guest nor a podcast owner
        """
        user = await self.directory.require_user(caller_id)
        owned = await self.directory.list_podcasts(owner_id=caller_id)
        if not user.is_guest and not owned:
            raise ValidationError("User is neither a guest nor a podcast owner")

        now = utc_now()
        suggestions: list[Recommendation] = []
        if user.is_guest:
            suggestions.extend(await self._podcasts_for_guest(caller_id, user, now))
        if owned:
            # Recommendations are drawn for the owner's first podcast only
            suggestions.extend(await self._guests_for_podcast(caller_id, owned[0], now))

        suggestions.sort(key=lambda r: r.compatibility_score, reverse=True)
        top = suggestions[:recommendations.MAX_RECOMMENDATIONS]
        logger.info(
            "Recommendations generated",
            user_id=caller_id,
            candidate_count=len(suggestions),
            returned=len(top),
        )
        return RecommendationSet(
            user_type="guest" if user.is_guest else "podcast", recommendations=top
        )

    async def _podcasts_for_guest(
        self, guest_id: str, guest: UserRecord, now: datetime
    ) -> list[Recommendation]:
        wishlisted = await self.repo.wishlisted_podcast_ids(guest_id)
        rate = guest.guest_rate or 0.0
        found = []

        for podcast in await self.directory.list_podcasts():
            if podcast.id in wishlisted or podcast.owner_id == guest_id:
                continue
            if podcast.status and podcast.status != "approved":
                continue

            podcast_topics = [podcast.category] if podcast.category else []
            topics = recommendations.topic_score(guest.guest_topics, podcast_topics)
            # Podcasts publish no guest budget, so they count as unpaid
            budget = recommendations.budget_score(0.0, rate)
            popularity = activity = recommendations.NEUTRAL_SIGNAL
            total = recommendations.weighted_score(topics, budget, popularity, activity)
            if total < recommendations.MIN_RECOMMENDATION_SCORE:
                continue

            matches = topic_overlap(guest.guest_topics, podcast_topics)
            budget_match = budget >= recommendations.BUDGET_MATCH_THRESHOLD
            found.append(
                Recommendation(
                    target_user_id=guest_id,
                    target_user_type="guest",
                    recommended_id=podcast.id,
                    recommended_type="podcast",
                    recommended_name=podcast.name or podcast.title or "Podcast",
                    recommended_image_url=podcast.image_url,
                    compatibility_score=total,
                    reasons=recommendations.recommendation_reasons(
                        matches, budget_match, False, True
                    ),
                    topic_matches=matches,
                    budget_match=budget_match,
                    similarity_factors=SimilarityFactors(
                        topic_score=topics,
                        budget_score=budget,
                        popularity_score=popularity,
                        recent_activity_score=activity,
                    ),
                    created_at=now,
                )
            )
        return found

    async def _guests_for_podcast(
        self, owner_id: str, podcast: PodcastRecord, now: datetime
    ) -> list[Recommendation]:
        wishlisted = await self.repo.wishlisted_guest_ids(podcast.id)
        podcast_topics = [podcast.category] if podcast.category else []
        found = []

        for guest in await self.directory.list_guests():
            if guest.id in wishlisted or guest.id == owner_id:
                continue

            topics = recommendations.topic_score(podcast_topics, guest.guest_topics)
            budget = recommendations.budget_score(0.0, guest.guest_rate or 0.0)
            popularity = recommendations.guest_popularity(
                guest.is_verified_guest, len(guest.previous_appearances)
            )
            activity = recommendations.NEUTRAL_SIGNAL
            total = recommendations.weighted_score(topics, budget, popularity, activity)
            if total < recommendations.MIN_RECOMMENDATION_SCORE:
                continue

            matches = topic_overlap(podcast_topics, guest.guest_topics)
            budget_match = budget >= recommendations.BUDGET_MATCH_THRESHOLD
            found.append(
                Recommendation(
                    target_user_id=owner_id,
                    target_user_type="podcast",
                    recommended_id=guest.id,
                    recommended_type="guest",
                    recommended_name=guest.display_name or "Guest",
                    recommended_image_url=guest.profile_image_url,
                    compatibility_score=total,
                    reasons=recommendations.recommendation_reasons(
                        matches, budget_match, guest.is_verified_guest, True
                    ),
                    topic_matches=matches,
                    budget_match=budget_match,
                    similarity_factors=SimilarityFactors(
                        topic_score=topics,
                        budget_score=budget,
                        popularity_score=popularity,
                        recent_activity_score=activity,
                    ),
                    created_at=now,
                )
            )
        return found

    async def statistics(self) -> MatchStatistics:
        total = await self.repo.count_matches()
        active = await self.repo.count_matches(MatchStatus.ACTIVE)
        guest_pending, podcast_pending = await self.repo.count_pending_wishlists()
        return MatchStatistics(
            total_matches=total,
            active_matches=active,
            pending_guest_wishlists=guest_pending,
            pending_podcast_wishlists=podcast_pending,
        )


def get_match_engine() -> MatchEngine:
    return MatchEngine(store=get_document_store(), notifier=get_notifier(), locks=get_redis())
