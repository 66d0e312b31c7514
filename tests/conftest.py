import importlib
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from movieswipe_rec.profile import build_profile  # noqa: E402

REFERENCE_TIME = datetime(2024, 6, 1)


class FakeProvider:
    """In-memory metadata provider recording the calls it receives."""

    def __init__(
        self,
        genres=None,
        by_genre=None,
        trending=None,
        by_text=None,
        details=None,
        discovered=None,
        similar=None,
        configured=True,
        fail=False,
    ):
        self.genres = genres if genres is not None else [
            {"id": 878, "name": "Science Fiction"},
            {"id": 18, "name": "Drama"},
            {"id": 35, "name": "Comedy"},
            {"id": 27, "name": "Horror"},
        ]
        self.by_genre = by_genre or {}
        self.trending_movies = trending or []
        self.by_text = by_text or {}
        self.details = details or {}
        self.discovered = discovered or {}
        self.similar_movies = similar or {}
        self.configured = configured
        self.fail = fail
        self.calls = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def _record(self, *call):
        self.calls.append(call)
        if self.fail:
            raise RuntimeError("provider down")

    async def list_genres(self):
        self._record("list_genres")
        return list(self.genres)

    async def search_by_genre(self, genre_id):
        self._record("search_by_genre", genre_id)
        return list(self.by_genre.get(genre_id, []))

    async def discover(self, genre_ids=None, exclude_genre_ids=None, min_rating=None, min_votes=None, year_range=None):
        self._record(
            "discover", tuple(genre_ids or ()), tuple(exclude_genre_ids or ()), min_rating, min_votes, year_range,
        )
        return list(self.discovered.get(tuple(genre_ids or ()), []))

    async def similar(self, movie_id):
        self._record("similar", movie_id)
        return list(self.similar_movies.get(movie_id, []))

    async def trending(self):
        self._record("trending")
        return list(self.trending_movies)

    async def search_by_text(self, query):
        self._record("search_by_text", query)
        return list(self.by_text.get(query, []))

    async def movie_details(self, movie_id):
        self._record("movie_details", movie_id)
        detail = self.details.get(movie_id)
        if isinstance(detail, Exception):
            raise detail
        return detail


def movie(movie_id, **fields):
    record = {"id": movie_id, "title": f"Movie {movie_id}", "genre": [], "rating": None, "year": None}
    record.update(fields)
    return record


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def make_movie():
    return movie


@pytest.fixture
def reference_time():
    return REFERENCE_TIME


@pytest.fixture
def empty_profile():
    return build_profile({}, [], [])


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("MOVIESWIPE_DB", str(db_path))
    import movieswipe_rec.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("MOVIESWIPE_DB", str(db_path))

    import movieswipe_rec.config as config
    import movieswipe_rec.database as database

    importlib.reload(config)
    importlib.reload(database)
    database.init_db()

    yield database
    database.close_pool()
