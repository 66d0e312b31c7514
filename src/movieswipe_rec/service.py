"""
Recommendations for stored users.

Loads the user's settings and lists from the store, runs the primary
recommender and drops to the fallback strategy when the primary path is
unavailable or comes back empty. Mood presets and "more like what you liked"
refreshes run through the same recommender with their own candidate sources.
"""
import logging
from datetime import datetime

from .candidates import fetch_fallback_candidates, fetch_mood_candidates, fetch_similar_candidates
from .database import UserMovieLists, load_user_movie_lists, load_user_preferences
from .filters import FilterCriteria
from .metadata_provider import MetadataProvider
from .profile import UserPreferenceProfile
from .recommender import (
    FallbackScorer,
    PrimaryScorer,
    RecommendationUnavailable,
    ScoredMovie,
    recommend,
)
from .scoring_weights import ScoringWeights
from .utils import parse_number, pick
from .config import LIKED_RATING

logger = logging.getLogger(__name__)


def _load_user(uid: str) -> tuple[dict, UserMovieLists]:
    prefs = load_user_preferences(uid)
    if prefs is None:
        raise LookupError(f"User '{uid}' not found")
    return prefs, load_user_movie_lists(uid)


async def _fetch_fallback(
    provider: MetadataProvider,
    profile: UserPreferenceProfile,
    filters: FilterCriteria,
    min_pool: int,
) -> list[dict]:
    return await fetch_fallback_candidates(provider, profile.fallback_genres())


async def get_personalized_recommendations(
    uid: str,
    provider: MetadataProvider,
    *,
    filters: FilterCriteria | None = None,
    weights: ScoringWeights | None = None,
    enrich: bool = False,
    reference_time: datetime | None = None,
) -> list[ScoredMovie]:
    """
    Ranked recommendations for a stored user.

    Raises:
        LookupError: No user with this uid in the store
        RecommendationUnavailable: The provider is not configured, so neither
            strategy can fetch candidates
    """
    prefs, lists = _load_user(uid)
    args = (uid, prefs, lists.watched, lists.watchlist, filters)

    try:
        results = await recommend(
            *args,
            provider=provider,
            scorer=PrimaryScorer(weights, reference_time),
            enrich=enrich,
            reference_time=reference_time,
        )
        if results:
            return results
        logger.info(f"Primary recommender returned nothing for {uid}, using fallback")
    except RecommendationUnavailable as e:
        logger.warning(f"Primary recommender unavailable for {uid}: {e}")

    return await recommend(
        *args,
        provider=provider,
        scorer=FallbackScorer(weights, reference_time),
        fetch=_fetch_fallback,
        reference_time=reference_time,
    )


async def get_mood_recommendations(
    mood: str,
    provider: MetadataProvider,
    *,
    uid: str | None = None,
    filters: FilterCriteria | None = None,
    weights: ScoringWeights | None = None,
    enrich: bool = False,
    reference_time: datetime | None = None,
) -> list[ScoredMovie]:
    """
    Ranked recommendations for a mood preset.

    Without a uid the ranking uses an empty profile. filters override the
    preset's genres, services, minimum rating and year range.

    Raises:
        ValueError: Unknown mood
        LookupError: uid given but not in the store
        RecommendationUnavailable: The provider is not configured
    """
    mood_filters = FilterCriteria.for_mood(mood, filters)

    prefs, watched, watchlist = None, [], []
    if uid is not None:
        prefs, lists = _load_user(uid)
        watched, watchlist = lists.watched, lists.watchlist

    return await recommend(
        uid or "anonymous",
        prefs,
        watched,
        watchlist,
        mood_filters,
        provider=provider,
        scorer=PrimaryScorer(weights, reference_time),
        fetch=fetch_mood_candidates,
        enrich=enrich,
        reference_time=reference_time,
    )


def latest_liked_movie(lists: UserMovieLists) -> dict | None:
    """Most recently added favourite or watched title rated LIKED_RATING or higher."""
    liked = list(lists.favorites)
    liked += [
        m for m in lists.watched
        if (parse_number(pick(m, 'user_rating', 'userRating')) or 0) >= LIKED_RATING
    ]
    return max(liked, key=lambda m: m.get('added_at') or '', default=None)


async def get_feedback_recommendations(
    uid: str,
    provider: MetadataProvider,
    *,
    weights: ScoringWeights | None = None,
    enrich: bool = False,
    reference_time: datetime | None = None,
) -> list[ScoredMovie]:
    """
    Recommendations refreshed from the user's most recently liked movie.

    Movies similar to it are scored against the user's profile, with watched
    and watchlisted titles excluded. A user who has liked nothing yet gets
    get_personalized_recommendations instead.

    Raises:
        LookupError: No user with this uid in the store
        RecommendationUnavailable: The provider is not configured
    """
    prefs, lists = _load_user(uid)
    liked = latest_liked_movie(lists)
    if liked is None:
        logger.info(f"No liked movies for {uid}, using personalized recommendations")
        return await get_personalized_recommendations(
            uid, provider, weights=weights, enrich=enrich, reference_time=reference_time,
        )

    async def _fetch_similar(provider, profile, filters, min_pool):
        return await fetch_similar_candidates(provider, liked['id'])

    logger.info(f"Refreshing recommendations for {uid} from {liked.get('title') or liked['id']}")
    return await recommend(
        uid,
        prefs,
        lists.watched,
        lists.watchlist,
        provider=provider,
        scorer=PrimaryScorer(weights, reference_time),
        fetch=_fetch_similar,
        enrich=enrich,
        reference_time=reference_time,
    )
