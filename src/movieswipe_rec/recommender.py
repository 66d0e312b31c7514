"""
Scoring and ranking of candidate movies.

Two strategies share the Scorer interface: PrimaryScorer runs the full
additive formula with filter bonuses/penalties folded into the score;
FallbackScorer is the reduced genre/rating/year score used when the primary
path cannot produce results, and applies filters as hard constraints instead.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Protocol

from .candidates import enrich_candidates, fetch_candidates, fetch_similar_candidates
from .filters import FilterCriteria
from .metadata_provider import MetadataProvider
from .profile import UserPreferenceProfile, build_profile
from .scoring_weights import DEFAULT_WEIGHTS, ScoringWeights
from .utils import get_list, normalize_id, parse_number, parse_year, pick
from .config import MIN_CANDIDATE_POOL, RELATED_LIMIT

logger = logging.getLogger(__name__)

CandidateFetcher = Callable[
    [MetadataProvider, UserPreferenceProfile, FilterCriteria, int],
    Awaitable[list[dict]],
]


class RecommendationUnavailable(RuntimeError):
    """No recommendations can be produced; callers serve a static catalog instead."""


@dataclass
class ScoredMovie:
    movie: dict
    score: float
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def id(self):
        return self.movie.get('id')

    @property
    def title(self) -> str:
        return self.movie.get('title') or ''

    @property
    def year(self) -> int | None:
        return parse_year(self.movie.get('year'))

    def to_dict(self) -> dict:
        return {
            **self.movie,
            'recommendation_score': self.score,
            'reasons': list(self.reasons),
            'warnings': list(self.warnings),
        }


# -- Components --------------------------------------------------------------

def genre_score(movie: dict, profile: UserPreferenceProfile, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    """
    Genre affinity in [0, 1].

    Each of the movie's genres can add a favourite bonus, a share scaled by
    how often the user watched it, a share scaled by the user's average
    rating for it and a watchlist bonus. The sum is capped at 1.
    """
    genres = get_list(movie, 'genre')
    if not genres:
        return 0.0

    max_count = profile.max_genre_count()
    score = 0.0
    for genre in genres:
        if genre in profile.favorite_genres:
            score += weights.genre_favorite
        if max_count and genre in profile.genre_preferences:
            score += weights.genre_watched * profile.genre_preferences[genre] / max_count
        avg = profile.rated_genre_average(genre)
        if avg:
            score += weights.genre_rated * (avg / weights.rating_scale)
        if genre in profile.watchlist_genres:
            score += weights.genre_watchlist
    return min(score, 1.0)


def recency_score(movie: dict, current_year: int, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    year = parse_year(movie.get('year'))
    if year is None:
        return weights.neutral
    age = current_year - year
    if age <= weights.recency_full_years:
        return 1.0
    return max(0.0, 1 - age / weights.recency_decay_years)


def popularity_score(movie: dict, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    """Community rating on a 0-10 scale mapped to [0, 1]; neutral when unrated."""
    rating = parse_number(movie.get('rating'))
    if not rating:
        return weights.neutral
    return rating / 10


def streaming_score(movie: dict, profile: UserPreferenceProfile, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    available = get_list(movie, 'streaming_on', 'streamingOn')
    if not profile.streaming_services or not available:
        return weights.neutral
    return 1.0 if any(s in profile.streaming_services for s in available) else 0.0


def year_score(
    movie: dict,
    profile: UserPreferenceProfile,
    filters: FilterCriteria | None = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> float:
    """
    Release-year fit in [0, 1].

    An active year range decides on its own. Without one the movie's decade
    is scored by how often the user watched that decade, with a floor.
    """
    year = parse_year(movie.get('year'))
    if year is None:
        return weights.neutral

    if filters is not None and filters.year_range is not None:
        return weights.year_in_range if filters.in_year_range(year) else weights.year_out_of_range

    decade = (year // 10) * 10
    max_count = profile.max_decade_count()
    if max_count and decade in profile.decade_preferences:
        share = profile.decade_preferences[decade] / max_count
        return share * (1 - weights.decade_floor) + weights.decade_floor
    return weights.neutral


def people_bonus(movie: dict, profile: UserPreferenceProfile, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    """Flat points for a favourite director and for favourite actors (capped)."""
    bonus = 0.0
    if any(d in profile.top_directors for d in get_list(movie, 'director')):
        bonus += weights.director_bonus

    matched_actors = sum(1 for actor in get_list(movie, 'cast') if actor in profile.top_actors)
    bonus += min(matched_actors * weights.actor_bonus, weights.actor_bonus_cap)
    return bonus


def _service_filter_applies(movie: dict, filters: FilterCriteria) -> bool:
    # Records that never carried availability are not judged on it
    return bool(filters.services) and pick(movie, 'streaming_on', 'streamingOn') is not None


def apply_filter_adjustments(
    score: float,
    movie: dict,
    filters: FilterCriteria | None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> float:
    """
    Fold active filters into a score as bonuses and penalties.

    The result is not clamped and may go negative.
    """
    if filters is None or not filters.is_active:
        return score

    if filters.genres:
        if filters.matches_genre(movie):
            score += weights.genre_filter_bonus
        else:
            score -= weights.genre_filter_penalty

    rating = parse_number(movie.get('rating'))
    if filters.min_rating and rating:
        if rating >= filters.min_rating:
            score += weights.rating_filter_bonus
        else:
            score -= weights.rating_filter_penalty

    if _service_filter_applies(movie, filters):
        if filters.matches_service(movie):
            score += weights.service_filter_bonus
        else:
            score -= weights.service_filter_penalty

    return score


def _explain(
    movie: dict,
    profile: UserPreferenceProfile,
    filters: FilterCriteria | None,
    current_year: int,
    weights: ScoringWeights,
) -> tuple[list[str], list[str]]:
    reasons: list[str] = []
    warnings: list[str] = []

    genres = get_list(movie, 'genre')
    favorites = [g for g in genres if g in profile.favorite_genres]
    if favorites:
        reasons.append(f"Favorite genre: {', '.join(favorites)}")
    watched = [g for g in genres if g in profile.top_genres and g not in favorites]
    if watched:
        reasons.append(f"Genre: {', '.join(watched[:2])}")

    directors = [d for d in get_list(movie, 'director') if d in profile.top_directors]
    if directors:
        reasons.append(f"Director: {directors[0]}")
    actors = [a for a in get_list(movie, 'cast') if a in profile.top_actors]
    if actors:
        reasons.append(f"Cast: {', '.join(actors[:3])}")

    services = [s for s in get_list(movie, 'streaming_on', 'streamingOn') if s in profile.streaming_services]
    if services:
        reasons.append(f"On {services[0]}")

    year = parse_year(movie.get('year'))
    if year is not None and current_year - year <= weights.recency_full_years:
        reasons.append("New release")

    if filters is not None and filters.is_active:
        if filters.genres and not filters.matches_genre(movie):
            warnings.append("⚠️ Not in selected genres")
        rating = parse_number(movie.get('rating'))
        if filters.min_rating and rating and rating < filters.min_rating:
            warnings.append(f"⚠️ Rated {rating:.1f}, below {filters.min_rating:g}")
        if _service_filter_applies(movie, filters) and not filters.matches_service(movie):
            warnings.append("⚠️ Not on selected services")
        if filters.year_range is not None and year is not None and not filters.in_year_range(year):
            warnings.append("⚠️ Outside selected years")

    return reasons, warnings


# -- Strategies --------------------------------------------------------------

class Scorer(Protocol):
    name: str

    def score(
        self,
        candidates: list[dict],
        profile: UserPreferenceProfile,
        filters: FilterCriteria | None = None,
    ) -> list[ScoredMovie]: ...

    def admits(self, movie: dict, filters: FilterCriteria | None) -> bool: ...


class PrimaryScorer:
    """
    Full additive score. Filters adjust the score; only a mood's excluded
    genres keep a movie out.
    """

    name = "primary"

    def __init__(self, weights: ScoringWeights | None = None, reference_time: datetime | None = None):
        self.weights = weights or DEFAULT_WEIGHTS
        self.reference_time = reference_time

    def _current_year(self) -> int:
        return (self.reference_time or datetime.now()).year

    def score_movie(
        self,
        movie: dict,
        profile: UserPreferenceProfile,
        filters: FilterCriteria | None,
        current_year: int,
    ) -> ScoredMovie:
        w = self.weights
        score = (
            w.base_score
            + genre_score(movie, profile, w) * w.genre_weight
            + recency_score(movie, current_year, w) * w.recency_weight
            + popularity_score(movie, w) * w.popularity_weight
            + streaming_score(movie, profile, w) * w.streaming_weight
            + year_score(movie, profile, filters, w) * w.year_weight
            + people_bonus(movie, profile, w)
        )
        score = apply_filter_adjustments(score, movie, filters, w)
        reasons, warnings = _explain(movie, profile, filters, current_year, w)
        return ScoredMovie(movie=movie, score=score, reasons=reasons, warnings=warnings)

    def score(
        self,
        candidates: list[dict],
        profile: UserPreferenceProfile,
        filters: FilterCriteria | None = None,
    ) -> list[ScoredMovie]:
        current_year = self._current_year()
        return [self.score_movie(movie, profile, filters, current_year) for movie in candidates]

    def admits(self, movie: dict, filters: FilterCriteria | None) -> bool:
        return filters is None or not filters.matches_excluded_genre(movie)


class FallbackScorer:
    """
    Reduced score over genre share, community rating and release year.

    Active filters are hard constraints here: a movie must overlap the genre
    and service filters, meet the minimum rating, fall inside the year range
    and avoid excluded genres to be admitted.
    """

    name = "fallback"

    def __init__(self, weights: ScoringWeights | None = None, reference_time: datetime | None = None):
        self.weights = weights or DEFAULT_WEIGHTS
        self.reference_time = reference_time

    def score(
        self,
        candidates: list[dict],
        profile: UserPreferenceProfile,
        filters: FilterCriteria | None = None,
    ) -> list[ScoredMovie]:
        w = self.weights
        preferred = profile.fallback_genres()
        results = []
        for movie in candidates:
            genres = get_list(movie, 'genre')
            matched = [g for g in genres if g in preferred]
            genre_share = len(matched) / len(genres) if genres else 0.0
            score = (
                w.base_score
                + genre_share * w.genre_weight
                + popularity_score(movie, w) * w.popularity_weight
                + year_score(movie, profile, filters, w) * w.year_weight
            )
            reasons = [f"Genre: {', '.join(matched[:2])}"] if matched else []
            results.append(ScoredMovie(movie=movie, score=score, reasons=reasons))
        return results

    def admits(self, movie: dict, filters: FilterCriteria | None) -> bool:
        if filters is None or not filters.is_active:
            return True
        if filters.matches_excluded_genre(movie):
            return False
        if filters.genres and not filters.matches_genre(movie):
            return False
        if filters.min_rating:
            rating = parse_number(movie.get('rating'))
            if rating is None or rating < filters.min_rating:
                return False
        if filters.year_range is not None and not filters.in_year_range(parse_year(movie.get('year'))):
            return False
        if filters.services and not filters.matches_service(movie):
            return False
        return True


# -- Assembly ----------------------------------------------------------------

def rank(
    scored: list[ScoredMovie],
    exclude_ids,
    scorer: Scorer | None = None,
    filters: FilterCriteria | None = None,
) -> list[ScoredMovie]:
    """
    Drop excluded and non-admitted movies and sort by score, highest first.

    Ids are compared in string form. Ties keep input order. The full list is
    returned; callers truncate for display.
    """
    excluded = {normalize_id(i) for i in exclude_ids if i is not None}
    kept = [
        s for s in scored
        if normalize_id(s.id) not in excluded
        and (scorer is None or scorer.admits(s.movie, filters))
    ]
    return sorted(kept, key=lambda s: -s.score)


async def recommend(
    user_id: str,
    explicit_prefs: dict | None,
    watched: list[dict] | None,
    watchlist: list[dict] | None,
    filters: FilterCriteria | None = None,
    *,
    provider: MetadataProvider,
    scorer: Scorer | None = None,
    fetch: CandidateFetcher | None = None,
    min_pool: int = MIN_CANDIDATE_POOL,
    enrich: bool = False,
    reference_time: datetime | None = None,
) -> list[ScoredMovie]:
    """
    Build a profile, fetch and score candidates, and return them ranked.

    Args:
        user_id: Used for logging only
        explicit_prefs: User settings (favourite genres, streaming services)
        watched: Watched movie records, optionally rated
        watchlist: Watchlist movie records
        filters: Optional request filters
        provider: Metadata provider for candidate acquisition
        scorer: Scoring strategy, PrimaryScorer by default
        fetch: Candidate acquisition, fetch_candidates by default
        min_pool: Pool size below which the director search runs
        enrich: Fetch credits for each candidate so people bonuses apply
        reference_time: Clock used for recency scoring

    Raises:
        RecommendationUnavailable: The provider is not configured or
            candidate acquisition failed outright
    """
    if not provider.is_configured:
        raise RecommendationUnavailable("Metadata provider is not configured")

    filters = filters or FilterCriteria()
    scorer = scorer or PrimaryScorer(reference_time=reference_time)
    fetch = fetch or fetch_candidates

    profile = build_profile(explicit_prefs, watched, watchlist)

    try:
        candidates = await fetch(provider, profile, filters, min_pool)
    except Exception as e:
        raise RecommendationUnavailable(f"Candidate acquisition failed: {e}") from e

    if not candidates:
        logger.info(f"No candidates for user {user_id}")
        return []

    if enrich:
        candidates = await enrich_candidates(provider, candidates)

    scored = scorer.score(candidates, profile, filters)
    seen_ids = [m.get('id') for m in (watched or []) if isinstance(m, dict)]
    seen_ids += [m.get('id') for m in (watchlist or []) if isinstance(m, dict)]
    results = rank(scored, seen_ids, scorer, filters)

    logger.info(
        f"{scorer.name} scorer: {len(results)} recommendations for user {user_id} "
        f"from {len(candidates)} candidates"
    )
    return results


async def related_recommendations(
    provider: MetadataProvider,
    movie_id: int | str,
    *,
    limit: int = RELATED_LIMIT,
    enrich: bool = False,
) -> list[dict]:
    """
    Movies similar to one movie, in the provider's order.

    Not personalised: nothing is scored or excluded beyond the movie itself.
    enrich fetches director and cast for each result.

    Raises:
        RecommendationUnavailable: The provider is not configured
    """
    if not provider.is_configured:
        raise RecommendationUnavailable("Metadata provider is not configured")

    movies = await fetch_similar_candidates(provider, movie_id, limit)
    if enrich:
        movies = await enrich_candidates(provider, movies)

    logger.info(f"{len(movies)} movies similar to {movie_id}")
    return movies
