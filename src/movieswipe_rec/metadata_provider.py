import asyncio
import logging
from typing import Protocol, runtime_checkable

import httpx

from .utils import get_list, parse_number, parse_year
from .config import (
    TMDB_API_KEY,
    TMDB_BASE_URL,
    IMAGE_BASE_URL,
    PLACEHOLDER_POSTER_URL,
    HTTP_TIMEOUT,
    MAX_HTTP_RETRIES,
    DEFAULT_RETRY_AFTER,
    MAX_RETRY_AFTER,
    DEFAULT_MAX_CONCURRENT,
    DETAILS_CAST_LIMIT,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class MetadataProvider(Protocol):
    """
    Read-only movie metadata source.

    Implementations never raise for unreachable or unconfigured backends:
    list methods return [] and lookups return None.
    """

    @property
    def is_configured(self) -> bool: ...

    async def search_by_genre(self, genre_id: int) -> list[dict]: ...

    async def discover(
        self,
        genre_ids: list[int] | None = None,
        exclude_genre_ids: list[int] | None = None,
        min_rating: float | None = None,
        min_votes: int | None = None,
        year_range: tuple[int, int] | None = None,
    ) -> list[dict]: ...

    async def similar(self, movie_id: int | str) -> list[dict]: ...

    async def trending(self) -> list[dict]: ...

    async def search_by_text(self, query: str) -> list[dict]: ...

    async def list_genres(self) -> list[dict]: ...

    async def movie_details(self, movie_id: int | str) -> dict | None: ...


def _image_url(path: str | None, fallback: str | None = None) -> str | None:
    return f"{IMAGE_BASE_URL}{path}" if path else fallback


def transform_movie(raw: dict, genre_names: dict[int, str] | None = None) -> dict:
    """
    Map a TMDb movie result to the app's movie record.

    List endpoints only carry 'genre_ids'; those are resolved through
    genre_names and unknown ids are dropped. Detail payloads carry 'genres'
    as {id, name} objects, which take precedence.
    """
    genre_names = genre_names or {}
    if isinstance(raw.get('genres'), list):
        genres = [g['name'] for g in raw['genres'] if isinstance(g, dict) and g.get('name')]
    else:
        genres = [genre_names[gid] for gid in (raw.get('genre_ids') or []) if gid in genre_names]

    return {
        'id': raw.get('id'),
        'title': raw.get('title') or raw.get('original_title') or '',
        'year': parse_year(raw.get('release_date')),
        'genre': genres,
        'rating': parse_number(raw.get('vote_average')),
        'description': raw.get('overview') or '',
        'poster_url': _image_url(raw.get('poster_path'), PLACEHOLDER_POSTER_URL),
        'backdrop_url': _image_url(raw.get('backdrop_path')),
        'popularity': parse_number(raw.get('popularity')),
        # Availability is not part of TMDb's basic movie payloads
        'streaming_on': [],
    }


def transform_movie_details(raw: dict) -> dict:
    """Movie record plus credits-derived fields from a /movie/{id} payload."""
    movie = transform_movie(raw)
    credits = raw.get('credits') or {}

    crew = credits.get('crew') or []
    movie['director'] = next(
        (c.get('name') for c in crew if isinstance(c, dict) and c.get('job') == 'Director' and c.get('name')),
        None,
    )
    cast = [c.get('name') for c in (credits.get('cast') or []) if isinstance(c, dict) and c.get('name')]
    movie['cast'] = cast[:DETAILS_CAST_LIMIT]
    movie['runtime'] = raw.get('runtime') or None
    return movie


def _retry_after_seconds(resp: httpx.Response) -> float:
    try:
        retry_after = float(resp.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
    except ValueError:
        retry_after = DEFAULT_RETRY_AFTER
    return max(0.0, min(retry_after, MAX_RETRY_AFTER))


class TMDbProvider:
    """
    Async TMDb client.

    Use as an async context manager to share one connection pool across
    calls; used standalone, each request opens a temporary client.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = TMDB_BASE_URL,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = TMDB_API_KEY if api_key is None else api_key
        self.base_url = base_url.rstrip("/")
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.client = client
        self._owns_client = False
        self._genre_names: dict[int, str] | None = None
        self._warned_unconfigured = False

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"Accept": "application/json", "User-Agent": "movieswipe-rec/1.0"},
            timeout=HTTP_TIMEOUT,
            follow_redirects=True,
        )

    async def __aenter__(self):
        """Async context manager entry."""
        if self.client is None:
            self.client = self._new_client()
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None
            self._owns_client = False
        return False

    async def _get_json(self, endpoint: str, params: dict | None = None) -> dict | None:
        """GET an API endpoint; None on any failure or when no key is configured."""
        if not self.is_configured:
            if not self._warned_unconfigured:
                logger.warning("TMDb API key not configured; metadata provider returns no results")
                self._warned_unconfigured = True
            return None

        if self.client is not None:
            return await self._request(self.client, endpoint, params)

        async with self._new_client() as temp_client:
            return await self._request(temp_client, endpoint, params)

    async def _request(self, client: httpx.AsyncClient, endpoint: str, params: dict | None) -> dict | None:
        """Internal GET with 429 handling and timeout retries."""
        url = f"{self.base_url}{endpoint}"
        query = {"api_key": self.api_key, **(params or {})}

        async with self.semaphore:
            for attempt in range(MAX_HTTP_RETRIES):
                try:
                    resp = await client.get(url, params=query)

                    if resp.status_code == 404:
                        logger.debug(f"Not found: {endpoint}")
                        return None

                    if resp.status_code == 429:
                        retry_after = _retry_after_seconds(resp)
                        logger.warning(
                            f"Rate limited on {endpoint}, retrying in {retry_after:.0f}s "
                            f"(attempt {attempt + 1}/{MAX_HTTP_RETRIES})"
                        )
                        await asyncio.sleep(retry_after)
                        continue

                    resp.raise_for_status()
                    data = resp.json()
                    if not isinstance(data, dict):
                        logger.error(f"Unexpected payload type from {endpoint}: {type(data).__name__}")
                        return None
                    return data

                except httpx.TimeoutException:
                    wait_time = 2 ** attempt
                    logger.warning(
                        f"Timeout on {endpoint}, retrying in {wait_time}s (attempt {attempt + 1}/{MAX_HTTP_RETRIES})"
                    )
                    await asyncio.sleep(wait_time)

                except httpx.HTTPStatusError as exc:
                    logger.error(f"HTTP {exc.response.status_code} on {endpoint}")
                    return None

                except httpx.HTTPError as exc:
                    logger.error(f"Request error on {endpoint}: {type(exc).__name__}: {exc}")
                    return None

                except ValueError as exc:
                    logger.error(f"Invalid JSON from {endpoint}: {exc}")
                    return None

            logger.error(f"Max retries exceeded for {endpoint}")
            return None

    async def list_genres(self) -> list[dict]:
        """Genre list as [{'id': int, 'name': str}]; cached per provider instance."""
        if self._genre_names:
            return [{'id': gid, 'name': name} for gid, name in self._genre_names.items()]

        data = await self._get_json("/genre/movie/list")
        genres = [
            {'id': g['id'], 'name': g['name']}
            for g in get_list(data, 'genres')
            if isinstance(g, dict) and g.get('id') is not None and g.get('name')
        ]
        if genres:
            self._genre_names = {g['id']: g['name'] for g in genres}
        return genres

    async def _genre_lookup(self) -> dict[int, str]:
        if self._genre_names is None:
            await self.list_genres()
        return self._genre_names or {}

    async def _movie_list(self, endpoint: str, params: dict | None = None) -> list[dict]:
        data = await self._get_json(endpoint, params)
        results = [r for r in get_list(data, 'results') if isinstance(r, dict) and r.get('id') is not None]
        if not results:
            return []
        genre_names = await self._genre_lookup()
        return [transform_movie(r, genre_names) for r in results]

    async def search_by_genre(self, genre_id: int) -> list[dict]:
        """Most popular movies in a genre."""
        return await self.discover(genre_ids=[genre_id])

    async def discover(
        self,
        genre_ids: list[int] | None = None,
        exclude_genre_ids: list[int] | None = None,
        min_rating: float | None = None,
        min_votes: int | None = None,
        year_range: tuple[int, int] | None = None,
    ) -> list[dict]:
        """
        Most popular movies matching any of genre_ids.

        Excluded genres, the rating and vote-count floors and the release year
        range are applied by TMDb.
        """
        params = {"sort_by": "popularity.desc"}
        if genre_ids:
            params["with_genres"] = "|".join(str(g) for g in genre_ids)
        if exclude_genre_ids:
            params["without_genres"] = ",".join(str(g) for g in exclude_genre_ids)
        if min_rating:
            params["vote_average.gte"] = min_rating
        if min_votes:
            params["vote_count.gte"] = min_votes
        if year_range:
            params["primary_release_date.gte"] = f"{year_range[0]}-01-01"
            params["primary_release_date.lte"] = f"{year_range[1]}-12-31"
        return await self._movie_list("/discover/movie", params)

    async def similar(self, movie_id: int | str) -> list[dict]:
        """Movies TMDb considers similar to movie_id."""
        return await self._movie_list(f"/movie/{movie_id}/similar")

    async def trending(self, time_window: str = "week") -> list[dict]:
        return await self._movie_list(f"/trending/movie/{time_window}")

    async def search_by_text(self, query: str) -> list[dict]:
        if not query or not query.strip():
            return []
        return await self._movie_list("/search/movie", {"query": query.strip(), "include_adult": "false"})

    async def movie_details(self, movie_id: int | str) -> dict | None:
        """Full record including director and cast, or None."""
        data = await self._get_json(f"/movie/{movie_id}", {"append_to_response": "credits"})
        if not data or data.get('id') is None:
            return None
        return transform_movie_details(data)
