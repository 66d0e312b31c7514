import httpx
import pytest

from movieswipe_rec import metadata_provider
from movieswipe_rec.metadata_provider import (
    MetadataProvider,
    TMDbProvider,
    transform_movie,
    transform_movie_details,
)

GENRES = {"genres": [{"id": 878, "name": "Science Fiction"}, {"id": 18, "name": "Drama"}]}

RESULT = {
    "id": 438631,
    "title": "Dune",
    "release_date": "2021-09-15",
    "genre_ids": [878, 12],
    "vote_average": 7.8,
    "overview": "Paul Atreides...",
    "poster_path": "/d5NXSklXo0qyIYkgV94XAgMIckC.jpg",
    "backdrop_path": None,
    "popularity": 120.5,
}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_transform_movie_maps_fields_and_drops_unknown_genres():
    movie = transform_movie(RESULT, {878: "Science Fiction"})

    assert movie["id"] == 438631
    assert movie["year"] == 2021
    assert movie["genre"] == ["Science Fiction"]
    assert movie["rating"] == 7.8
    assert movie["poster_url"].endswith("/d5NXSklXo0qyIYkgV94XAgMIckC.jpg")
    assert movie["backdrop_url"] is None
    assert movie["streaming_on"] == []


def test_transform_movie_handles_sparse_payloads():
    movie = transform_movie({"id": 1})

    assert movie["title"] == ""
    assert movie["year"] is None
    assert movie["rating"] is None
    assert movie["genre"] == []
    assert movie["poster_url"] == metadata_provider.PLACEHOLDER_POSTER_URL


def test_transform_movie_details_extracts_credits():
    payload = {
        **RESULT,
        "genres": [{"id": 878, "name": "Science Fiction"}, {"id": 12, "name": "Adventure"}],
        "runtime": 155,
        "credits": {
            "crew": [{"job": "Producer", "name": "Mary Parent"}, {"job": "Director", "name": "Denis Villeneuve"}],
            "cast": [{"name": f"Actor {i}"} for i in range(15)],
        },
    }
    movie = transform_movie_details(payload)

    assert movie["genre"] == ["Science Fiction", "Adventure"]
    assert movie["director"] == "Denis Villeneuve"
    assert movie["cast"] == [f"Actor {i}" for i in range(10)]
    assert movie["runtime"] == 155

    assert transform_movie_details({"id": 2})["director"] is None


def test_provider_satisfies_protocol():
    assert isinstance(TMDbProvider(api_key="k"), MetadataProvider)


@pytest.mark.asyncio
async def test_unconfigured_provider_returns_empty_without_requests():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected request {request.url}")

    async with _client(handler) as client:
        provider = TMDbProvider(api_key="", client=client)
        assert not provider.is_configured
        assert await provider.trending() == []
        assert await provider.list_genres() == []
        assert await provider.movie_details(1) is None


@pytest.mark.asyncio
async def test_search_by_genre_sends_discover_query_and_resolves_genres():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        if request.url.path.endswith("/genre/movie/list"):
            return httpx.Response(200, json=GENRES)
        return httpx.Response(200, json={"results": [RESULT, {"title": "no id"}]})

    async with _client(handler) as client:
        provider = TMDbProvider(api_key="secret", base_url="https://tmdb.test/3", client=client)
        movies = await provider.search_by_genre(878)
        await provider.trending()

    assert [m["id"] for m in movies] == [438631]
    assert movies[0]["genre"] == ["Science Fiction"]

    discover = next(url for url in seen if url.path.endswith("/discover/movie"))
    assert discover.params["with_genres"] == "878"
    assert discover.params["sort_by"] == "popularity.desc"
    assert discover.params["api_key"] == "secret"
    # Genre names are fetched once per provider
    assert sum(url.path.endswith("/genre/movie/list") for url in seen) == 1


@pytest.mark.asyncio
async def test_search_by_text_skips_blank_queries():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url)
        return httpx.Response(200, json={"results": []})

    async with _client(handler) as client:
        provider = TMDbProvider(api_key="k", client=client)
        assert await provider.search_by_text("   ") == []
        assert await provider.search_by_text(" Nolan ") == []

    assert len(calls) == 1
    assert calls[0].params["query"] == "Nolan"


@pytest.mark.asyncio
async def test_errors_fail_soft():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/movie/404"):
            return httpx.Response(404)
        if request.url.path.endswith("/movie/500"):
            return httpx.Response(500)
        if request.url.path.endswith("/movie/bad"):
            return httpx.Response(200, content=b"not json")
        if request.url.path.endswith("/movie/list"):
            return httpx.Response(200, json=[1, 2, 3])
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        provider = TMDbProvider(api_key="k", client=client)
        assert await provider.movie_details(404) is None
        assert await provider.movie_details(500) is None
        assert await provider.movie_details("bad") is None
        assert await provider.movie_details("list") is None
        assert await provider.trending() == []


@pytest.mark.asyncio
async def test_rate_limit_and_timeout_are_retried(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(metadata_provider.asyncio, "sleep", fake_sleep)

    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 1:
            return httpx.Response(429, headers={"Retry-After": "120"})
        if attempts["count"] == 2:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"id": 7, "title": "Heat", "credits": {}})

    async with _client(handler) as client:
        provider = TMDbProvider(api_key="k", client=client)
        movie = await provider.movie_details(7)

    assert movie["title"] == "Heat"
    # Retry-After is capped, timeouts back off exponentially
    assert sleeps == [metadata_provider.MAX_RETRY_AFTER, 2]


@pytest.mark.asyncio
async def test_context_manager_owns_only_its_own_client():
    async with TMDbProvider(api_key="k") as provider:
        assert provider.client is not None
    assert provider.client is None

    async with _client(lambda request: httpx.Response(200, json={})) as client:
        async with TMDbProvider(api_key="k", client=client) as provider:
            pass
        assert provider.client is client
        assert not client.is_closed


@pytest.mark.asyncio
async def test_discover_sends_mood_limits_and_similar_hits_its_endpoint():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        if request.url.path.endswith("/genre/movie/list"):
            return httpx.Response(200, json=GENRES)
        return httpx.Response(200, json={"results": [RESULT]})

    async with _client(handler) as client:
        provider = TMDbProvider(api_key="k", client=client)
        await provider.discover(
            genre_ids=[27, 53], exclude_genre_ids=[35, 10751], min_rating=6.0, min_votes=500,
            year_range=(1900, 2000),
        )
        similar = await provider.similar(438631)
        genres = await provider.list_genres()

    discover = next(url for url in seen if url.path.endswith("/discover/movie"))
    assert discover.params["with_genres"] == "27|53"
    assert discover.params["without_genres"] == "35,10751"
    assert discover.params["vote_average.gte"] == "6.0"
    assert discover.params["vote_count.gte"] == "500"
    assert discover.params["primary_release_date.gte"] == "1900-01-01"
    assert discover.params["primary_release_date.lte"] == "2000-12-31"

    assert any(url.path.endswith("/movie/438631/similar") for url in seen)
    assert [m["id"] for m in similar] == [438631]
    # The cached genre list is served without another request
    assert genres == GENRES["genres"]
    assert sum(url.path.endswith("/genre/movie/list") for url in seen) == 1
