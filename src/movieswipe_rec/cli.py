import argparse
import asyncio
import atexit
import json
import logging

from .database import (
    init_db, close_pool, save_user, save_user_movies, load_user_preferences,
    load_user_movie_lists, get_store_stats, LIST_TYPES,
)
from .filters import MOODS, FilterCriteria
from .metadata_provider import TMDbProvider
from .profile import build_profile
from .recommender import RecommendationUnavailable, ScoredMovie, related_recommendations
from .scoring_weights import load_scoring_weights
from .service import get_feedback_recommendations, get_mood_recommendations, get_personalized_recommendations
from .utils import get_list
from .config import FAVORITES_LIMIT, RELATED_LIMIT

logger = logging.getLogger(__name__)

atexit.register(close_pool)


def _validate_uid(uid: str) -> str:
    cleaned = (uid or "").strip()
    if not cleaned:
        raise ValueError("User id must not be empty")
    return cleaned


def _build_filters(args: argparse.Namespace) -> FilterCriteria:
    if args.year_range:
        start, end = args.year_range
        if start > end:
            raise ValueError(f"Invalid year range {start}-{end}: start is after end")

    return FilterCriteria.from_dict({
        'genres': args.genres,
        'services': args.services,
        'min_rating': args.min_rating,
        'year_range': args.year_range,
    })


def _output_recommendations(recs: list[ScoredMovie], args: argparse.Namespace, label: str) -> None:
    """Format and log recommendations in the requested format."""
    if args.format == 'json':
        output = []
        for r in recs:
            data = r.to_dict()
            data['recommendation_score'] = round(r.score, 2)
            output.append(data)
        logger.info(json.dumps(output, indent=2))
        return

    logger.info(f"\nTop {len(recs)} recommendations for {label}:")
    for i, r in enumerate(recs, 1):
        year = f" ({r.year})" if r.year else ""
        logger.info(f"{i}. {r.title}{year} - Score: {r.score:.1f}")
        if r.reasons:
            logger.info(f"   Why: {', '.join(r.reasons)}")
        for warning in r.warnings:
            logger.info(f"   {warning}")


def _output_movies(movies: list[dict], args: argparse.Namespace, label: str) -> None:
    """Format and log unscored movies in the requested format."""
    if args.format == 'json':
        logger.info(json.dumps(movies, indent=2))
        return

    logger.info(f"\n{len(movies)} movies similar to {label}:")
    for i, movie in enumerate(movies, 1):
        year = f" ({movie['year']})" if movie.get('year') else ""
        rating = f" - Rated {movie['rating']:.1f}" if movie.get('rating') else ""
        logger.info(f"{i}. {movie.get('title') or movie['id']}{year}{rating}")
        if movie.get('director'):
            logger.info(f"   Director: {movie['director']}")


async def _recommend(args: argparse.Namespace, uid: str, filters: FilterCriteria) -> list[ScoredMovie]:
    weights = load_scoring_weights(args.weights)
    async with TMDbProvider() as provider:
        return await get_personalized_recommendations(
            uid, provider, filters=filters, weights=weights, enrich=args.with_credits,
        )


def _run_recommendations(coro, args: argparse.Namespace, uid: str | None, label: str) -> None:
    try:
        recs = asyncio.run(coro)
    except LookupError:
        logger.error(f"No data for '{uid}'. Run: movieswipe-rec import FILE")
        return
    except RecommendationUnavailable as e:
        logger.error(f"Recommendations unavailable: {e}. Set MOVIESWIPE_TMDB_API_KEY to enable them.")
        return

    if not recs:
        logger.info(f"No recommendations found for {label}")
        return
    _output_recommendations(recs[:args.limit], args, label)


def cmd_recommend(args: argparse.Namespace) -> None:
    """Generate recommendations for a stored user."""
    uid = _validate_uid(args.uid)
    filters = _build_filters(args)

    init_db()
    _run_recommendations(_recommend(args, uid, filters), args, uid, uid)


async def _mood(args: argparse.Namespace, uid: str | None, filters: FilterCriteria) -> list[ScoredMovie]:
    weights = load_scoring_weights(args.weights)
    async with TMDbProvider() as provider:
        return await get_mood_recommendations(
            args.mood, provider, uid=uid, filters=filters, weights=weights, enrich=args.with_credits,
        )


def cmd_mood(args: argparse.Namespace) -> None:
    """Recommendations for a mood preset, personalised when a uid is given."""
    uid = _validate_uid(args.uid) if args.uid is not None else None
    filters = _build_filters(args)

    if uid is not None:
        init_db()
    label = f"'{args.mood}'" + (f" ({uid})" if uid else "")
    _run_recommendations(_mood(args, uid, filters), args, uid, label)


async def _similar(args: argparse.Namespace) -> list[dict]:
    async with TMDbProvider() as provider:
        return await related_recommendations(
            provider, args.movie_id, limit=args.limit, enrich=args.with_credits,
        )


async def _feedback(args: argparse.Namespace, uid: str) -> list[ScoredMovie]:
    weights = load_scoring_weights(args.weights)
    async with TMDbProvider() as provider:
        return await get_feedback_recommendations(uid, provider, weights=weights, enrich=args.with_credits)


def cmd_similar(args: argparse.Namespace) -> None:
    """Movies similar to one movie, or to a stored user's most recently liked movie."""
    if (args.movie_id is None) == (args.uid is None):
        raise ValueError("Give either a MOVIE_ID or --uid")

    if args.uid is not None:
        uid = _validate_uid(args.uid)
        init_db()
        _run_recommendations(_feedback(args, uid), args, uid, uid)
        return

    try:
        movies = asyncio.run(_similar(args))
    except RecommendationUnavailable as e:
        logger.error(f"Recommendations unavailable: {e}. Set MOVIESWIPE_TMDB_API_KEY to enable them.")
        return

    if not movies:
        logger.info(f"No movies similar to {args.movie_id}")
        return
    _output_movies(movies, args, args.movie_id)


def cmd_profile(args: argparse.Namespace) -> None:
    """Show a user's preference profile."""
    uid = _validate_uid(args.uid)

    init_db()
    prefs = load_user_preferences(uid)
    if prefs is None:
        logger.error(f"No data for '{uid}'. Run: movieswipe-rec import FILE")
        return

    lists = load_user_movie_lists(uid)
    profile = build_profile(prefs, lists.watched, lists.watchlist)

    logger.info(f"\nProfile for {prefs.get('username') or uid}")
    logger.info(
        f"  Movies: {profile.n_watched} watched ({profile.n_rated} rated), "
        f"{profile.n_watchlist} on watchlist"
    )
    if profile.n_rated:
        logger.info(f"  Average rating: {profile.average_rating:.2f} (variance {profile.rating_variance:.2f})")
    if profile.favorite_genres:
        logger.info(f"  Favorite genres: {', '.join(profile.favorite_genres)}")
    if profile.streaming_services:
        logger.info(f"  Streaming services: {', '.join(profile.streaming_services)}")

    if profile.top_genres:
        logger.info("\nTop genres:")
        for genre in profile.top_genres:
            avg = profile.rated_genre_average(genre)
            rating_str = f", avg {avg:.1f}" if avg else ""
            logger.info(f"  {genre}: {profile.genre_preferences[genre]} watched{rating_str}")

    if profile.top_directors:
        logger.info("\nTop directors:")
        for director in profile.top_directors:
            logger.info(f"  {director}: {profile.director_preferences[director]}")

    if profile.top_actors:
        logger.info("\nTop actors:")
        for actor in profile.top_actors:
            logger.info(f"  {actor}: {profile.actor_preferences[actor]}")

    if profile.decade_preferences:
        logger.info("\nDecades:")
        for decade in sorted(profile.decade_preferences):
            count = profile.decade_preferences[decade]
            logger.info(f"  {decade}s: {'█' * count} ({count})")

    if lists.favorites:
        logger.info(f"\nTop {FAVORITES_LIMIT}:")
        for i, movie in enumerate(lists.favorites[:FAVORITES_LIMIT], 1):
            logger.info(f"  {i}. {movie.get('title') or movie['id']}")


def cmd_genres(args: argparse.Namespace) -> None:
    """List the metadata provider's genres."""
    async def _list_genres():
        async with TMDbProvider() as provider:
            if not provider.is_configured:
                raise RecommendationUnavailable("TMDb API key not configured")
            return await provider.list_genres()

    try:
        genres = asyncio.run(_list_genres())
    except RecommendationUnavailable as e:
        logger.error(f"{e}. Set MOVIESWIPE_TMDB_API_KEY.")
        return

    if not genres:
        logger.warning("Provider returned no genres")
        return
    for genre in genres:
        logger.info(f"  {genre['id']:>6}  {genre['name']}")


def cmd_import(args: argparse.Namespace) -> None:
    """
    Import users and their lists from a JSON file.

    Expected shape: {"users": [{"uid": ..., "username": ..., "favorite_genres": [...],
    "streaming_services": [...], "watchlist": [...], "watched": [...], "favorites": [...]}]}
    camelCase keys as exported by the web client are accepted too.
    """
    with open(args.file, 'r') as f:
        data = json.load(f)

    users = data.get('users') if isinstance(data, dict) else data
    if not isinstance(users, list):
        raise ValueError(f"{args.file} must contain a list of users or an object with a 'users' list")

    init_db()
    imported_users = 0
    imported_movies = 0
    for user in users:
        uid = str(user.get('uid') or '').strip() if isinstance(user, dict) else ''
        if not uid:
            logger.warning("Skipping user entry without uid")
            continue

        save_user(
            uid,
            username=user.get('username'),
            favorite_genres=get_list(user, 'favorite_genres') or get_list(user, 'favoriteGenres'),
            streaming_services=get_list(user, 'streaming_services') or get_list(user, 'streamingServices'),
        )
        for list_type in LIST_TYPES:
            imported_movies += save_user_movies(uid, list_type, user.get(list_type) or [])
        imported_users += 1

    logger.info(f"Imported {imported_users} users and {imported_movies} list entries from {args.file}")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show store statistics."""
    init_db()
    stats = get_store_stats()

    logger.info("\nStore Statistics:")
    logger.info(f"  Users: {stats['users']}")
    logger.info(f"  Watchlist entries: {stats['watchlist']}")
    logger.info(f"  Watched entries: {stats['watched']} ({stats['rated']} rated)")
    logger.info(f"  Favorites: {stats['favorites']}")


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--genres", nargs="+", help="Filter by genres")
    parser.add_argument("--services", nargs="+", help="Filter by streaming services")
    parser.add_argument("--min-rating", type=float, help="Minimum community rating (0-10)")
    parser.add_argument("--year-range", type=int, nargs=2, metavar=("START", "END"),
                        help="Release year range, inclusive")


def _add_output_args(parser: argparse.ArgumentParser, default_limit: int = 20) -> None:
    parser.add_argument("--limit", type=int, default=default_limit, help="Number of recommendations")
    parser.add_argument("--with-credits", action="store_true",
                        help="Fetch director and cast for each candidate (slower)")
    parser.add_argument("--weights", help="Scoring weights JSON file")
    parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")


def main():
    parser = argparse.ArgumentParser(description="MovieSwipe recommendation engine")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Recommend command
    rec_parser = subparsers.add_parser("recommend", help="Generate recommendations")
    rec_parser.add_argument("uid", help="User id")
    _add_filter_args(rec_parser)
    _add_output_args(rec_parser)
    rec_parser.set_defaults(func=cmd_recommend)

    # Mood command
    mood_parser = subparsers.add_parser("mood", help="Recommendations for a mood")
    mood_parser.add_argument("mood", choices=list(MOODS), help="Mood preset")
    mood_parser.add_argument("--uid", help="Personalise for this stored user")
    _add_filter_args(mood_parser)
    _add_output_args(mood_parser)
    mood_parser.set_defaults(func=cmd_mood)

    # Similar command
    similar_parser = subparsers.add_parser("similar", help="Movies similar to a movie or to a user's latest like")
    similar_parser.add_argument("movie_id", nargs="?", help="TMDb movie id")
    similar_parser.add_argument("--uid", help="Use this stored user's most recently liked movie")
    _add_output_args(similar_parser, default_limit=RELATED_LIMIT)
    similar_parser.set_defaults(func=cmd_similar)

    # Profile command
    profile_parser = subparsers.add_parser("profile", help="Show user's preference profile")
    profile_parser.add_argument("uid", help="User id")
    profile_parser.set_defaults(func=cmd_profile)

    # Genres command
    genres_parser = subparsers.add_parser("genres", help="List provider genres")
    genres_parser.set_defaults(func=cmd_genres)

    # Import command
    import_parser = subparsers.add_parser("import", help="Import users and lists from JSON")
    import_parser.add_argument("file", help="Input JSON file path")
    import_parser.set_defaults(func=cmd_import)

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show store statistics")
    stats_parser.set_defaults(func=cmd_stats)

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        args.func(args)
    except ValueError as e:
        parser.error(str(e))


if __name__ == "__main__":
    main()
