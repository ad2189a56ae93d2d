import asyncio

import pytest
from conftest import ARTIST_ID, GUEST_ID, OWNER_ID, seed_collaboration

from app.services.errors import AuthorizationError, StateConflictError, ValidationError


def seed_completed(store, **overrides):
    return seed_collaboration(store, status="completed", escrowStatus="released", **overrides)


@pytest.mark.asyncio
async def test_party_rates_the_other_side(directory, lifecycle_service):
    collab_id = seed_completed(directory)

    feedback = await lifecycle_service.submit_feedback(
        GUEST_ID, collab_id, rating=4, would_collaborate_again=True, review="  Great host  "
    )

    assert feedback.id == f"{collab_id}_{GUEST_ID}_{OWNER_ID}"
    assert feedback.to_user_id == OWNER_ID
    assert feedback.review == "Great host"
    assert feedback.is_public is True
    assert directory.raw("users", OWNER_ID)["feedbackStats"] == {
        "averageRating": 4.0,
        "totalReviews": 1,
        "wouldCollaborateAgainPercentage": 100.0,
    }


@pytest.mark.asyncio
async def test_stats_count_public_feedback_only(directory, lifecycle_service):
    first = seed_completed(directory)
    second = seed_completed(directory)
    third = seed_completed(directory)

    await lifecycle_service.submit_feedback(GUEST_ID, first, 5, True)
    await lifecycle_service.submit_feedback(GUEST_ID, second, 2, False)
    await lifecycle_service.submit_feedback(GUEST_ID, third, 1, False, is_public=False)

    assert directory.raw("users", OWNER_ID)["feedbackStats"] == {
        "averageRating": 3.5,
        "totalReviews": 2,
        "wouldCollaborateAgainPercentage": 50.0,
    }


@pytest.mark.asyncio
async def test_feedback_once_per_direction(directory, lifecycle_service):
    collab_id = seed_completed(directory)
    await lifecycle_service.submit_feedback(GUEST_ID, collab_id, 5, True)

    with pytest.raises(StateConflictError, match="already submitted"):
        await lifecycle_service.submit_feedback(GUEST_ID, collab_id, 3, True)

    reply = await lifecycle_service.submit_feedback(OWNER_ID, collab_id, 5, True)
    assert reply.to_user_id == GUEST_ID


@pytest.mark.asyncio
async def test_racing_duplicate_feedback_saves_one(directory, lifecycle_service, monkeypatch):
    collab_id = seed_completed(directory)
    get = directory.get

    async def get_then_yield(*args, **kwargs):
        doc = await get(*args, **kwargs)
        await asyncio.sleep(0)
        return doc

    monkeypatch.setattr(directory, "get", get_then_yield)

    results = await asyncio.gather(
        lifecycle_service.submit_feedback(GUEST_ID, collab_id, 5, True),
        lifecycle_service.submit_feedback(GUEST_ID, collab_id, 1, False),
        return_exceptions=True,
    )

    assert sum(isinstance(r, StateConflictError) for r in results) == 1
    assert len(directory.all("collaboration_feedback")) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6])
async def test_rating_must_be_one_to_five(directory, lifecycle_service, rating):
    collab_id = seed_completed(directory)

    with pytest.raises(ValidationError):
        await lifecycle_service.submit_feedback(GUEST_ID, collab_id, rating, True)


@pytest.mark.asyncio
async def test_feedback_needs_completed_collaboration_and_party(directory, lifecycle_service):
    open_id = seed_collaboration(directory, status="in_progress")
    done_id = seed_completed(directory)

    with pytest.raises(StateConflictError, match="completed"):
        await lifecycle_service.submit_feedback(GUEST_ID, open_id, 5, True)
    with pytest.raises(AuthorizationError):
        await lifecycle_service.submit_feedback(ARTIST_ID, done_id, 5, True)


@pytest.mark.asyncio
async def test_stats_failure_does_not_fail_submission(directory, lifecycle_service, monkeypatch):
    collab_id = seed_completed(directory)

    async def broken(*args, **kwargs):
        raise RuntimeError("store hiccup")

    monkeypatch.setattr(lifecycle_service.repo, "set_feedback_stats", broken)

    feedback = await lifecycle_service.submit_feedback(GUEST_ID, collab_id, 5, True)

    assert feedback.rating == 5
    assert "feedbackStats" not in directory.raw("users", OWNER_ID)


@pytest.mark.asyncio
async def test_listing_feedback(directory, lifecycle_service):
    collab_id = seed_completed(directory)
    await lifecycle_service.submit_feedback(GUEST_ID, collab_id, 5, True)
    await lifecycle_service.submit_feedback(OWNER_ID, collab_id, 4, True, is_public=False)

    on_collab = await lifecycle_service.list_feedback(OWNER_ID, collaboration_id=collab_id)
    received = await lifecycle_service.list_feedback(ARTIST_ID, to_user_id=GUEST_ID)
    given = await lifecycle_service.list_feedback(OWNER_ID, from_user_id=OWNER_ID)

    assert len(on_collab) == 2
    assert received == []
    assert [f.to_user_id for f in given] == [GUEST_ID]

    with pytest.raises(AuthorizationError):
        await lifecycle_service.list_feedback(ARTIST_ID, collaboration_id=collab_id)
    with pytest.raises(AuthorizationError):
        await lifecycle_service.list_feedback(ARTIST_ID, from_user_id=OWNER_ID)
    with pytest.raises(ValidationError):
        await lifecycle_service.list_feedback(ARTIST_ID)
