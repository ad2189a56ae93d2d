import pytest
from conftest import ARTIST_ID, GUEST_ID, OWNER_ID, PODCAST_ID

from app.services.errors import NotFoundError, ValidationError
from app.services.matching import recommendations


def test_topic_score_is_shared_over_union():
    assert recommendations.topic_score(["AI", "growth"], ["ai"]) == 50.0
    assert recommendations.topic_score([], ["ai"]) == 0.0
    assert recommendations.topic_score(["ai"], []) == 0.0


@pytest.mark.parametrize(
    "budget, rate, expected",
    [
        (0, 0, 100),
        (100, 0, 90),
        (0, 100, 20),
        (100, 105, 100),
        (100, 120, 80),
        (100, 150, 60),
        (100, 250, 40),
        (100, 1000, 20),
    ],
)
def test_budget_score_bands(budget, rate, expected):
    assert recommendations.budget_score(budget, rate) == expected


def test_guest_popularity_caps_appearance_bonus():
    assert recommendations.guest_popularity(False, 0) == 30
    assert recommendations.guest_popularity(True, 1) == 70
    assert recommendations.guest_popularity(True, 9) == 100


def test_reasons_list_at_most_three_topics():
    reasons = recommendations.recommendation_reasons(["a", "b", "c", "d"], True, True, True)

    assert reasons == [
        "Shared interests: a, b, c",
        "Budget/rate alignment",
        "Verified guest",
        "Recently active on platform",
    ]


def _seed_podcast(store, podcast_id, owner_id="owner-2", **fields):
    data = {"ownerId": owner_id, "title": podcast_id, "status": "approved"}
    data.update(fields)
    return store.seed("podcasts", data, podcast_id)


@pytest.mark.asyncio
async def test_guest_gets_scored_podcasts_minus_wishlist_and_unapproved(directory, match_engine):
    _seed_podcast(directory, "ai-weekly", category="AI", name="AI Weekly")
    _seed_podcast(directory, "pending-show", status="pending")
    _seed_podcast(directory, "wishlisted-show")
    directory.seed("guest_wishlists", {"guestId": GUEST_ID, "podcastId": "wishlisted-show"})

    found = await match_engine.recommend(GUEST_ID)

    assert found.user_type == "guest"
    assert [(r.recommended_id, r.compatibility_score) for r in found.recommendations] == [
        ("ai-weekly", 65),
        (PODCAST_ID, 45),
    ]
    top = found.recommendations[0]
    assert top.recommended_name == "AI Weekly"
    assert top.topic_matches == ["ai"]
    assert top.budget_match is True
    assert top.reasons == [
        "Shared interests: ai",
        "Budget/rate alignment",
        "Recently active on platform",
    ]
    assert top.similarity_factors.topic_score == 50.0


@pytest.mark.asyncio
async def test_guest_rate_can_push_podcasts_below_threshold(directory, match_engine):
    await directory.update("users", GUEST_ID, {"guestRate": 100})
    _seed_podcast(directory, "ai-weekly", category="ai")

    found = await match_engine.recommend(GUEST_ID)

    assert [(r.recommended_id, r.compatibility_score) for r in found.recommendations] == [
        ("ai-weekly", 41)
    ]
    assert found.recommendations[0].budget_match is False


@pytest.mark.asyncio
async def test_owner_gets_scored_guests_minus_wishlist(directory, match_engine):
    await directory.update("podcasts", PODCAST_ID, {"category": "ai"})
    directory.seed(
        "users",
        {
            "displayName": "Vera Verified",
            "isGuest": True,
            "isVerifiedGuest": True,
            "guestTopics": ["AI"],
            "previousAppearances": [{"podcast": "Elsewhere"}],
        },
        "guest-verified",
    )
    directory.seed("users", {"isGuest": True, "guestTopics": ["ai"]}, "guest-wishlisted")
    directory.seed(
        "users", {"isGuest": True, "guestTopics": ["cooking"], "guestRate": 500}, "guest-pricey"
    )
    directory.seed(
        "podcast_guest_wishlists", {"podcastId": PODCAST_ID, "guestId": "guest-wishlisted"}
    )

    found = await match_engine.recommend(OWNER_ID)

    assert found.user_type == "podcast"
    assert [(r.recommended_id, r.compatibility_score) for r in found.recommendations] == [
        ("guest-verified", 88),
        (GUEST_ID, 62),
    ]
    verified = found.recommendations[0]
    assert verified.target_user_id == OWNER_ID
    assert verified.recommended_type == "guest"
    assert "Verified guest" in verified.reasons
    assert verified.similarity_factors.popularity_score == 70


@pytest.mark.asyncio
async def test_guest_who_owns_a_podcast_never_sees_themselves(directory, match_engine):
    await directory.update("users", OWNER_ID, {"isGuest": True, "guestTopics": ["ai"]})
    await directory.update("podcasts", PODCAST_ID, {"category": "ai"})

    found = await match_engine.recommend(OWNER_ID)

    ids = [r.recommended_id for r in found.recommendations]
    assert found.user_type == "guest"
    assert PODCAST_ID not in ids
    assert OWNER_ID not in ids
    assert GUEST_ID in ids


@pytest.mark.asyncio
async def test_recommendations_are_capped(directory, match_engine):
    for n in range(25):
        _seed_podcast(directory, f"show-{n}")

    found = await match_engine.recommend(GUEST_ID)

    assert len(found.recommendations) == recommendations.MAX_RECOMMENDATIONS


@pytest.mark.asyncio
async def test_recommendations_need_a_guest_or_owner(directory, match_engine):
    with pytest.raises(ValidationError):
        await match_engine.recommend(ARTIST_ID)

    with pytest.raises(NotFoundError):
        await match_engine.recommend("nobody")
