"""
Configuration constants for the movie swipe recommender.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables; scoring weights can
additionally be overridden from a JSON file (see scoring_weights.py).
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


# User store
DB_PATH = Path(os.environ.get("MOVIESWIPE_DB", "data/movieswipe.db"))

# Metadata provider (TMDb). An empty key disables the provider; every call
# then returns an empty result so callers can fall back.
TMDB_API_KEY = os.environ.get("MOVIESWIPE_TMDB_API_KEY") or os.environ.get("TMDB_API_KEY") or ""
TMDB_BASE_URL = os.environ.get("MOVIESWIPE_TMDB_URL", "https://api.themoviedb.org/3").rstrip("/")
IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"
PLACEHOLDER_POSTER_URL = "https://placehold.co/500x750/png"

# HTTP behaviour
HTTP_TIMEOUT = _get_float_env("MOVIESWIPE_HTTP_TIMEOUT", 10.0, min_val=1.0)
MAX_HTTP_RETRIES = _get_int_env("MOVIESWIPE_MAX_RETRIES", 3, min_val=1)
DEFAULT_RETRY_AFTER = 2  # Seconds to wait on 429 without a Retry-After header
MAX_RETRY_AFTER = 30  # Never sleep longer than this on a single 429
DEFAULT_MAX_CONCURRENT = _get_int_env("MOVIESWIPE_MAX_CONCURRENT", 5, min_val=1)
DETAILS_CAST_LIMIT = 10  # Cast members kept from a credits payload

# Candidate acquisition
MIN_CANDIDATE_POOL = _get_int_env("MOVIESWIPE_MIN_POOL", 20, min_val=1)

# Profile builder cutoffs
TOP_GENRES_LIMIT = _get_int_env("MOVIESWIPE_TOP_GENRES", 5)
TOP_ACTORS_LIMIT = _get_int_env("MOVIESWIPE_TOP_ACTORS", 10)
TOP_DIRECTORS_LIMIT = _get_int_env("MOVIESWIPE_TOP_DIRECTORS", 5)
DEFAULT_DECADE_YEAR = 2000  # Decade bucket for watched titles without a year

# Similar-movie recommendations
RELATED_LIMIT = _get_int_env("MOVIESWIPE_RELATED_LIMIT", 10)
LIKED_RATING = 4  # Watched titles rated at least this count as liked

# Fallback strategy: genres considered when the user set no favourites
FALLBACK_GENRES_LIMIT = 5
FALLBACK_UNRATED_GENRE_WEIGHT = 0.5

# Favourites ("Top 5") shown by the profile command
FAVORITES_LIMIT = 5

# Scoring weights override file
SCORING_WEIGHTS_PATH = Path(os.environ.get("MOVIESWIPE_WEIGHTS", "data/scoring_weights.json"))

# Import batching
IMPORT_CHUNK_SIZE = 500
