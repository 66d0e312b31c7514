import json
import logging
import sys
from argparse import Namespace

import pytest

from movieswipe_rec import cli
from movieswipe_rec.filters import FilterCriteria
from movieswipe_rec.recommender import RecommendationUnavailable, ScoredMovie


def _recommend_args(**overrides):
    args = dict(
        uid="u1", genres=None, services=None, min_rating=None, year_range=None,
        limit=20, with_credits=False, weights=None, format="text",
    )
    args.update(overrides)
    return Namespace(**args)


def _mood_args(**overrides):
    args = dict(
        mood="spooky", uid=None, genres=None, services=None, min_rating=None, year_range=None,
        limit=20, with_credits=False, weights=None, format="text",
    )
    args.update(overrides)
    return Namespace(**args)


def _similar_args(**overrides):
    args = dict(movie_id=None, uid=None, limit=10, with_credits=False, weights=None, format="text")
    args.update(overrides)
    return Namespace(**args)


def test_cli_dispatch_stats(monkeypatch):
    called = {}

    def fake_stats(args):
        called["command"] = args.command

    monkeypatch.setattr(cli, "cmd_stats", fake_stats)
    monkeypatch.setattr(sys, "argv", ["prog", "stats"])

    cli.main()
    assert called["command"] == "stats"


def test_cli_parses_recommend_args(monkeypatch):
    captured = {}

    def fake_recommend(args):
        captured.update(vars(args))

    monkeypatch.setattr(cli, "cmd_recommend", fake_recommend)
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "prog", "recommend", "u1",
            "--genres", "Horror", "Drama",
            "--services", "Netflix",
            "--min-rating", "7.5",
            "--year-range", "1990", "1999",
            "--limit", "5",
            "--with-credits",
            "--format", "json",
        ],
    )

    cli.main()

    assert captured["uid"] == "u1"
    assert captured["genres"] == ["Horror", "Drama"]
    assert captured["services"] == ["Netflix"]
    assert captured["min_rating"] == 7.5
    assert captured["year_range"] == [1990, 1999]
    assert captured["limit"] == 5
    assert captured["with_credits"] is True
    assert captured["format"] == "json"


def test_build_filters_validates_year_range():
    filters = cli._build_filters(_recommend_args(genres=["Drama"], year_range=[1990, 1999]))
    assert filters == FilterCriteria(genres=["Drama"], year_range=(1990, 1999))

    with pytest.raises(ValueError):
        cli._build_filters(_recommend_args(year_range=[2000, 1990]))


def test_invalid_input_exits_with_usage_error(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["prog", "recommend", "u1", "--year-range", "2000", "1990"])

    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 2


def test_cmd_recommend_outputs_json(monkeypatch, fresh_db, caplog):
    recs = [
        ScoredMovie({"id": 1, "title": "Arrival", "year": 2016}, 81.234, ["Genre: Sci-Fi"]),
        ScoredMovie({"id": 2, "title": "Heat", "year": 1995}, 60.0),
    ]

    async def fake_get(uid, provider, **kwargs):
        assert kwargs["filters"] == FilterCriteria(min_rating=7.0)
        return recs

    monkeypatch.setattr(cli, "get_personalized_recommendations", fake_get)

    with caplog.at_level(logging.INFO, logger="movieswipe_rec.cli"):
        cli.cmd_recommend(_recommend_args(min_rating=7.0, limit=1, format="json"))

    dumped = [r.getMessage() for r in caplog.records if r.getMessage().startswith("[")]
    output = json.loads(dumped[-1])
    assert output == [{
        "id": 1,
        "title": "Arrival",
        "year": 2016,
        "recommendation_score": 81.23,
        "reasons": ["Genre: Sci-Fi"],
        "warnings": [],
    }]


def test_cmd_recommend_reports_unknown_user_and_unavailable(monkeypatch, fresh_db, caplog):
    async def missing(uid, provider, **kwargs):
        raise LookupError(uid)

    monkeypatch.setattr(cli, "get_personalized_recommendations", missing)
    with caplog.at_level(logging.ERROR, logger="movieswipe_rec.cli"):
        cli.cmd_recommend(_recommend_args())
    assert "No data for 'u1'" in caplog.text

    async def unavailable(uid, provider, **kwargs):
        raise RecommendationUnavailable("no key")

    monkeypatch.setattr(cli, "get_personalized_recommendations", unavailable)
    with caplog.at_level(logging.ERROR, logger="movieswipe_rec.cli"):
        cli.cmd_recommend(_recommend_args())
    assert "Recommendations unavailable" in caplog.text


def test_cmd_import_and_profile(fresh_db, tmp_path, caplog):
    payload = {
        "users": [
            {
                "uid": "u1",
                "username": "alice",
                "favoriteGenres": ["Sci-Fi"],
                "streamingServices": ["Netflix"],
                "watched": [
                    {"id": 1, "title": "Arrival", "genre": ["Sci-Fi", "Drama"], "director": "Denis Villeneuve",
                     "year": 2016, "userRating": 5},
                ],
                "watchlist": [{"id": 2, "title": "Heat", "genre": ["Crime"]}],
                "favorites": [{"id": 1, "title": "Arrival"}],
            },
            {"username": "no uid"},
        ]
    }
    path = tmp_path / "users.json"
    path.write_text(json.dumps(payload))

    with caplog.at_level(logging.INFO, logger="movieswipe_rec.cli"):
        cli.cmd_import(Namespace(file=str(path)))
    assert "Imported 1 users and 3 list entries" in caplog.text

    assert fresh_db.load_user_preferences("u1")["favorite_genres"] == ["Sci-Fi"]

    caplog.clear()
    with caplog.at_level(logging.INFO, logger="movieswipe_rec.cli"):
        cli.cmd_profile(Namespace(uid="u1"))
    assert "Profile for alice" in caplog.text
    assert "Denis Villeneuve: 1" in caplog.text
    assert "1. Arrival" in caplog.text


def test_cmd_import_rejects_unexpected_shape(fresh_db, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"films": []}))

    with pytest.raises(ValueError):
        cli.cmd_import(Namespace(file=str(path)))


def test_cmd_stats(fresh_db, caplog):
    fresh_db.save_user("u1")
    fresh_db.save_user_movies("u1", "watched", [{"id": 1, "user_rating": 3}])

    with caplog.at_level(logging.INFO, logger="movieswipe_rec.cli"):
        cli.cmd_stats(Namespace())

    assert "Users: 1" in caplog.text
    assert "Watched entries: 1 (1 rated)" in caplog.text


class _StubProvider:
    def __init__(self, configured=True):
        self.is_configured = configured

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def list_genres(self):
        return [{"id": 18, "name": "Drama"}, {"id": 35, "name": "Comedy"}]

    async def similar(self, movie_id):
        return [{"id": 2, "title": "Heat", "year": 1995, "rating": 8.3}, {"id": 3, "title": "Ronin"}]


def test_cmd_genres_lists_provider_genres(monkeypatch, caplog):
    monkeypatch.setattr(cli, "TMDbProvider", _StubProvider)

    with caplog.at_level(logging.INFO, logger="movieswipe_rec.cli"):
        cli.cmd_genres(Namespace())

    assert "Drama" in caplog.text
    assert "Comedy" in caplog.text


def test_cmd_genres_without_key(monkeypatch, caplog):
    monkeypatch.setattr(cli, "TMDbProvider", lambda: _StubProvider(configured=False))

    with caplog.at_level(logging.ERROR, logger="movieswipe_rec.cli"):
        cli.cmd_genres(Namespace())

    assert "TMDb API key not configured" in caplog.text


def test_cli_parses_mood_and_similar_args(monkeypatch):
    captured = {}
    monkeypatch.setattr(cli, "cmd_mood", lambda args: captured.update(mood=vars(args)))
    monkeypatch.setattr(cli, "cmd_similar", lambda args: captured.update(similar=vars(args)))

    monkeypatch.setattr(sys, "argv", ["prog", "mood", "date-night", "--uid", "u1", "--services", "Netflix"])
    cli.main()
    monkeypatch.setattr(sys, "argv", ["prog", "similar", "27205", "--format", "json"])
    cli.main()

    assert captured["mood"]["mood"] == "date-night"
    assert captured["mood"]["uid"] == "u1"
    assert captured["mood"]["services"] == ["Netflix"]
    assert captured["similar"]["movie_id"] == "27205"
    assert captured["similar"]["limit"] == 10

    monkeypatch.setattr(sys, "argv", ["prog", "mood", "sleepy"])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 2


def test_cmd_mood_passes_overrides(monkeypatch, caplog):
    captured = {}

    async def fake_mood(mood, provider, **kwargs):
        captured.update(kwargs, mood=mood)
        return [ScoredMovie({"id": 1, "title": "Hereditary", "year": 2018}, 77.0, ["Genre: Horror"])]

    monkeypatch.setattr(cli, "get_mood_recommendations", fake_mood)

    with caplog.at_level(logging.INFO, logger="movieswipe_rec.cli"):
        cli.cmd_mood(_mood_args(genres=["Horror"]))

    assert captured["mood"] == "spooky"
    assert captured["uid"] is None
    assert captured["filters"] == FilterCriteria(genres=["Horror"])
    assert "Top 1 recommendations for 'spooky'" in caplog.text
    assert "1. Hereditary (2018) - Score: 77.0" in caplog.text


def test_cmd_similar_lists_related_movies(monkeypatch, caplog):
    monkeypatch.setattr(cli, "TMDbProvider", _StubProvider)

    with caplog.at_level(logging.INFO, logger="movieswipe_rec.cli"):
        cli.cmd_similar(_similar_args(movie_id="949"))

    assert "2 movies similar to 949" in caplog.text
    assert "1. Heat (1995) - Rated 8.3" in caplog.text
    assert "2. Ronin" in caplog.text


def test_cmd_similar_for_user_uses_latest_like(monkeypatch, fresh_db, caplog):
    async def fake_feedback(uid, provider, **kwargs):
        return [ScoredMovie({"id": 4, "title": "Collateral", "year": 2004}, 70.0)]

    monkeypatch.setattr(cli, "get_feedback_recommendations", fake_feedback)

    with caplog.at_level(logging.INFO, logger="movieswipe_rec.cli"):
        cli.cmd_similar(_similar_args(uid="u1"))

    assert "1. Collateral (2004) - Score: 70.0" in caplog.text


def test_cmd_similar_needs_exactly_one_source():
    with pytest.raises(ValueError):
        cli.cmd_similar(_similar_args())
    with pytest.raises(ValueError):
        cli.cmd_similar(_similar_args(movie_id="949", uid="u1"))
