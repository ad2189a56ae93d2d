"""
Scoring for on-demand recommendations.

Unlike the wishlist compatibility score, a recommendation compares a user
with candidates they have not named yet, so it leans on profile data:

    topics           40%  (shared / union, case-insensitive, 0..100)
    budget vs rate   30%  (see budget_score)
    popularity       15%
    recent activity  15%
"""

import math

TOPIC_WEIGHT = 0.40
BUDGET_WEIGHT = 0.30
POPULARITY_WEIGHT = 0.15
ACTIVITY_WEIGHT = 0.15

MIN_RECOMMENDATION_SCORE = 30
MAX_RECOMMENDATIONS = 20
BUDGET_MATCH_THRESHOLD = 60

# No activity or popularity signal is tracked for podcasts yet
NEUTRAL_SIGNAL = 50

GUEST_BASE_POPULARITY = 30
VERIFIED_GUEST_BONUS = 30
APPEARANCE_BONUS = 10
MAX_APPEARANCE_BONUS = 40


def topic_score(user_topics: list[str], target_topics: list[str]) -> float:
    if not user_topics or not target_topics:
        return 0.0

    mine = [t.strip().lower() for t in user_topics]
    theirs = {t.strip().lower() for t in target_topics}
    shared = sum(1 for t in mine if t in theirs)
    union = len(set(mine) | theirs)
    return shared / union * 100 if union else 0.0


def budget_score(budget: float, rate: float) -> int:
    """How well a host's budget covers a guest's rate, 20..100."""
    if budget <= 0 and rate <= 0:
        return 100
    if rate <= 0:
        return 90
    if budget <= 0:
        return 20

    difference_pct = abs(budget - rate) / ((budget + rate) / 2) * 100
    for limit, points in ((10, 100), (25, 80), (50, 60), (100, 40)):
        if difference_pct <= limit:
            return points
    return 20


def guest_popularity(is_verified: bool, appearance_count: int) -> int:
    points = GUEST_BASE_POPULARITY
    if is_verified:
        points += VERIFIED_GUEST_BONUS
    return points + min(MAX_APPEARANCE_BONUS, appearance_count * APPEARANCE_BONUS)


def weighted_score(topics: float, budget: int, popularity: int, activity: int) -> int:
    total = (
        topics * TOPIC_WEIGHT
        + budget * BUDGET_WEIGHT
        + popularity * POPULARITY_WEIGHT
        + activity * ACTIVITY_WEIGHT
    )
    # Half-up, so 44.5 scores 45
    return math.floor(total + 0.5)


def recommendation_reasons(
    topic_matches: list[str], budget_match: bool, is_verified: bool, is_active: bool
) -> list[str]:
    reasons = []
    if topic_matches:
        reasons.append(f"Shared interests: {', '.join(topic_matches[:3])}")
    if budget_match:
        reasons.append("Budget/rate alignment")
    if is_verified:
        reasons.append("Verified guest")
    if is_active:
        reasons.append("Recently active on platform")
    return reasons
