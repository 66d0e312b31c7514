import logging
from collections import defaultdict
from dataclasses import dataclass, field

from .utils import get_list, parse_number, parse_year, pick
from .config import (
    TOP_GENRES_LIMIT,
    TOP_ACTORS_LIMIT,
    TOP_DIRECTORS_LIMIT,
    DEFAULT_DECADE_YEAR,
    FALLBACK_UNRATED_GENRE_WEIGHT,
    FALLBACK_GENRES_LIMIT,
)

logger = logging.getLogger(__name__)


@dataclass
class RatedGenre:
    count: int = 0
    total_rating: float = 0.0

    @property
    def average(self) -> float:
        return self.total_rating / self.count if self.count else 0.0


@dataclass
class UserPreferenceProfile:
    """Preference signals derived from one snapshot of a user's lists."""
    # Explicit preferences
    favorite_genres: list[str] = field(default_factory=list)
    streaming_services: list[str] = field(default_factory=list)

    # Implicit preferences from watch history
    genre_preferences: dict[str, int] = field(default_factory=dict)
    rated_genres: dict[str, RatedGenre] = field(default_factory=dict)
    actor_preferences: dict[str, int] = field(default_factory=dict)
    director_preferences: dict[str, int] = field(default_factory=dict)
    decade_preferences: dict[int, int] = field(default_factory=dict)

    average_rating: float = 0.0
    rating_variance: float = 0.0

    # Watchlist signals
    watchlist_genres: dict[str, int] = field(default_factory=dict)

    top_genres: list[str] = field(default_factory=list)
    top_actors: list[str] = field(default_factory=list)
    top_directors: list[str] = field(default_factory=list)

    # Genre affinity weighted by rating, used by the fallback scorer
    rating_weighted_genres: dict[str, float] = field(default_factory=dict)

    n_watched: int = 0
    n_rated: int = 0
    n_watchlist: int = 0

    def max_genre_count(self) -> int:
        return max(self.genre_preferences.values(), default=0)

    def max_decade_count(self) -> int:
        return max(self.decade_preferences.values(), default=0)

    def rated_genre_average(self, genre: str) -> float | None:
        rated = self.rated_genres.get(genre)
        if not rated or not rated.count:
            return None
        return rated.average

    def fallback_genres(self, limit: int = FALLBACK_GENRES_LIMIT) -> list[str]:
        """Explicit favourites, else the strongest rating-weighted genres."""
        if self.favorite_genres:
            return list(self.favorite_genres)
        return _top_keys(self.rating_weighted_genres, limit)


def _unique(values: list) -> list[str]:
    """Ordered de-duplication of string preferences."""
    return list(dict.fromkeys(str(v) for v in values))


def _top_keys(counts: dict, limit: int) -> list:
    """Keys sorted by count descending; ties keep encounter order."""
    return [key for key, _ in sorted(counts.items(), key=lambda kv: -kv[1])[:limit]]


def _explicit_list(prefs: dict, *keys: str) -> list[str]:
    for key in keys:
        if prefs.get(key) is not None:
            return _unique(get_list(prefs, key))
    return []


def build_profile(
    explicit_prefs: dict | None,
    watched: list[dict] | None,
    watchlist: list[dict] | None,
    top_genres_limit: int = TOP_GENRES_LIMIT,
    top_actors_limit: int = TOP_ACTORS_LIMIT,
    top_directors_limit: int = TOP_DIRECTORS_LIMIT,
) -> UserPreferenceProfile:
    """
    Build a preference profile from explicit settings and the user's lists.

    Args:
        explicit_prefs: User settings ('favorite_genres', 'streaming_services';
            the camelCase keys written by the web client are accepted too)
        watched: Watched movie records, optionally with 'user_rating'
            ('userRating')
        watchlist: Watchlist movie records
        top_*_limit: Cutoffs for the top genre/actor/director lists

    Records with missing or malformed 'genre', 'cast' or 'director' fields
    contribute nothing for that field. A rating of 0 or None is treated as
    unrated. The result depends only on the arguments.
    """
    explicit_prefs = explicit_prefs or {}
    watched = [m for m in (watched or []) if isinstance(m, dict)]
    watchlist = [m for m in (watchlist or []) if isinstance(m, dict)]

    profile = UserPreferenceProfile(
        favorite_genres=_explicit_list(explicit_prefs, 'favorite_genres', 'favoriteGenres'),
        streaming_services=_explicit_list(explicit_prefs, 'streaming_services', 'streamingServices'),
    )

    genre_counts: dict[str, int] = defaultdict(int)
    actor_counts: dict[str, int] = defaultdict(int)
    director_counts: dict[str, int] = defaultdict(int)
    decade_counts: dict[int, int] = defaultdict(int)
    rated_genres: dict[str, RatedGenre] = {}
    weighted_genres: dict[str, float] = defaultdict(float)
    ratings: list[float] = []

    for movie in watched:
        genres = get_list(movie, 'genre')
        rating = parse_number(pick(movie, 'user_rating', 'userRating'))

        if rating:
            ratings.append(rating)
            for genre in genres:
                rated = rated_genres.setdefault(genre, RatedGenre())
                rated.count += 1
                rated.total_rating += rating

        for genre in genres:
            genre_counts[genre] += 1
            weighted_genres[genre] += rating / 5 if rating else FALLBACK_UNRATED_GENRE_WEIGHT

        for actor in get_list(movie, 'cast'):
            actor_counts[actor] += 1

        for director in get_list(movie, 'director'):
            director_counts[director] += 1

        year = parse_year(movie.get('year')) or DEFAULT_DECADE_YEAR
        decade_counts[(year // 10) * 10] += 1

    if ratings:
        profile.average_rating = sum(ratings) / len(ratings)
    # Variance needs the finished mean, hence the second pass
    if len(ratings) > 1:
        profile.rating_variance = sum(
            (r - profile.average_rating) ** 2 for r in ratings
        ) / len(ratings)

    profile.genre_preferences = dict(genre_counts)
    profile.rated_genres = rated_genres
    profile.actor_preferences = dict(actor_counts)
    profile.director_preferences = dict(director_counts)
    profile.decade_preferences = dict(decade_counts)
    profile.rating_weighted_genres = dict(weighted_genres)

    profile.top_genres = _top_keys(profile.genre_preferences, top_genres_limit)
    profile.top_actors = _top_keys(profile.actor_preferences, top_actors_limit)
    profile.top_directors = _top_keys(profile.director_preferences, top_directors_limit)

    watchlist_counts: dict[str, int] = defaultdict(int)
    for movie in watchlist:
        for genre in get_list(movie, 'genre'):
            watchlist_counts[genre] += 1
    profile.watchlist_genres = dict(watchlist_counts)

    profile.n_watched = len(watched)
    profile.n_rated = len(ratings)
    profile.n_watchlist = len(watchlist)

    logger.debug(
        f"Built profile: {profile.n_watched} watched ({profile.n_rated} rated), "
        f"{profile.n_watchlist} watchlisted, top genres {profile.top_genres}"
    )
    return profile
