"""
Candidate acquisition over a metadata provider.

Sources are merged in a fixed priority order and de-duplicated by movie id,
so the first source to return a movie owns its record. Provider failures end
up as an empty pool; they never propagate to the scorer.
"""
import asyncio
import logging

from .filters import FilterCriteria
from .metadata_provider import MetadataProvider
from .profile import UserPreferenceProfile
from .utils import normalize_id
from .config import MIN_CANDIDATE_POOL, RELATED_LIMIT

logger = logging.getLogger(__name__)


def add_unique_candidates(candidates: list[dict], new_movies: list[dict], seen_ids: set[str]) -> int:
    """Append movies whose id has not been seen yet; returns how many were added."""
    added = 0
    for movie in new_movies or []:
        if not isinstance(movie, dict) or movie.get('id') is None:
            continue
        key = normalize_id(movie['id'])
        if key in seen_ids:
            continue
        seen_ids.add(key)
        candidates.append(movie)
        added += 1
    return added


async def _genre_id_lookup(provider: MetadataProvider) -> dict[str, int]:
    genres = await provider.list_genres()
    return {
        str(g['name']).lower(): g['id']
        for g in genres or []
        if isinstance(g, dict) and g.get('name') and g.get('id') is not None
    }


def _ids_for(lookup: dict[str, int], names: list[str]) -> list[int]:
    return [lookup[n.lower()] for n in names if isinstance(n, str) and n.lower() in lookup]


async def map_genres_to_ids(provider: MetadataProvider, genre_names: list[str]) -> list[int]:
    """Translate genre names to provider ids (case-insensitive); [] on any failure."""
    if not genre_names:
        return []
    try:
        return _ids_for(await _genre_id_lookup(provider), genre_names)
    except Exception as e:
        logger.warning(f"Failed to map genres to ids: {type(e).__name__}: {e}")
        return []


async def fetch_candidates(
    provider: MetadataProvider,
    profile: UserPreferenceProfile,
    filters: FilterCriteria | None = None,
    min_pool: int = MIN_CANDIDATE_POOL,
) -> list[dict]:
    """
    Collect an unscored candidate pool.

    Priority order:
    1. Most popular movies in the user's top genre (explicit favourites when
       there is no watch history)
    2. Trending movies
    3. Movies in the first genre of an active genre filter
    4. Text search for the user's top director, only while the pool is
       smaller than min_pool

    Sources 1-3 are requested concurrently and merged in that order.
    """
    filters = filters or FilterCriteria()
    try:
        genre_ids = await map_genres_to_ids(provider, profile.top_genres or profile.favorite_genres)
        filter_ids = await map_genres_to_ids(provider, filters.genres)

        sources = []
        if genre_ids:
            sources.append(provider.search_by_genre(genre_ids[0]))
        sources.append(provider.trending())
        if filter_ids:
            sources.append(provider.search_by_genre(filter_ids[0]))

        candidates: list[dict] = []
        seen_ids: set[str] = set()
        for batch in await asyncio.gather(*sources):
            add_unique_candidates(candidates, batch, seen_ids)

        if len(candidates) >= min_pool:
            return candidates

        if profile.top_directors:
            director_movies = await provider.search_by_text(profile.top_directors[0])
            added = add_unique_candidates(candidates, director_movies, seen_ids)
            logger.debug(f"Director search for {profile.top_directors[0]!r} added {added} candidates")

        return candidates

    except Exception as e:
        logger.error(f"Error getting candidate movies: {type(e).__name__}: {e}")
        return []


async def fetch_fallback_candidates(provider: MetadataProvider, genres: list[str]) -> list[dict]:
    """
    Candidate pool for the fallback strategy.

    Uses the first genre that yields any movies, otherwise trending.
    """
    try:
        movies: list[dict] = []
        for genre_id in await map_genres_to_ids(provider, genres):
            movies = await provider.search_by_genre(genre_id)
            if movies:
                break

        if not movies:
            movies = await provider.trending()

        candidates: list[dict] = []
        add_unique_candidates(candidates, movies, set())
        return candidates

    except Exception as e:
        logger.error(f"Error getting fallback candidates: {type(e).__name__}: {e}")
        return []


async def fetch_mood_candidates(
    provider: MetadataProvider,
    profile: UserPreferenceProfile,
    filters: FilterCriteria | None = None,
    min_pool: int = MIN_CANDIDATE_POOL,
) -> list[dict]:
    """
    Candidate pool for a mood preset.

    One provider query carries the mood's genres, excluded genres, rating and
    vote floors and year range. While the pool is smaller than min_pool, the
    user's top genre under the same limits tops it up. Movies in an excluded
    genre are dropped even if the provider returned them.
    """
    filters = filters or FilterCriteria()
    try:
        genre_ids = await map_genres_to_ids(provider, filters.genres)
        limits = {
            'exclude_genre_ids': await map_genres_to_ids(provider, filters.exclude_genres),
            'min_rating': filters.min_rating,
            'min_votes': filters.min_votes,
            'year_range': filters.year_range,
        }

        candidates: list[dict] = []
        seen_ids: set[str] = set()
        # Genres that map to nothing would otherwise widen the query to every genre
        if genre_ids or not filters.genres:
            add_unique_candidates(candidates, await provider.discover(genre_ids=genre_ids, **limits), seen_ids)

        seeds = [g for g in (profile.top_genres or profile.favorite_genres) if g not in filters.exclude_genres]
        if len(candidates) < min_pool and seeds:
            seed_ids = await map_genres_to_ids(provider, seeds[:1])
            if seed_ids:
                added = add_unique_candidates(
                    candidates, await provider.discover(genre_ids=seed_ids, **limits), seen_ids,
                )
                logger.debug(f"Top genre {seeds[0]!r} added {added} mood candidates")

        return [m for m in candidates if not filters.matches_excluded_genre(m)]

    except Exception as e:
        logger.error(f"Error getting mood candidates: {type(e).__name__}: {e}")
        return []


async def fetch_similar_candidates(
    provider: MetadataProvider,
    movie_id: int | str,
    limit: int = RELATED_LIMIT,
) -> list[dict]:
    """Movies similar to movie_id, de-duplicated and without movie_id itself; at most limit."""
    try:
        movies = await provider.similar(movie_id)
    except Exception as e:
        logger.error(f"Error getting movies similar to {movie_id}: {type(e).__name__}: {e}")
        return []

    candidates: list[dict] = []
    add_unique_candidates(candidates, movies, {normalize_id(movie_id)})
    return candidates[:limit]


async def enrich_candidates(provider: MetadataProvider, candidates: list[dict]) -> list[dict]:
    """
    Merge director/cast/runtime from detail lookups into candidate records.

    Lookups run concurrently (the provider bounds concurrency). A failed or
    empty lookup keeps the candidate unchanged; order is preserved.
    """
    if not candidates:
        return []

    results = await asyncio.gather(
        *(provider.movie_details(movie['id']) for movie in candidates),
        return_exceptions=True,
    )

    enriched = []
    failed = 0
    for movie, details in zip(candidates, results):
        if isinstance(details, Exception) or not details:
            if isinstance(details, Exception):
                logger.debug(f"Detail lookup failed for {movie.get('id')}: {type(details).__name__}: {details}")
            failed += 1
            enriched.append(movie)
            continue

        merged = dict(movie)
        for key in ('director', 'cast', 'runtime'):
            if details.get(key):
                merged[key] = details[key]
        if not merged.get('genre') and details.get('genre'):
            merged['genre'] = details['genre']
        enriched.append(merged)

    if failed:
        logger.info(f"Enrichment complete: {len(candidates) - failed}/{len(candidates)} enriched")
    return enriched
