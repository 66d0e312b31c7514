import logging
from dataclasses import dataclass, field

from .utils import get_list, parse_number, parse_year, pick

logger = logging.getLogger(__name__)

# Mood presets offered by the swipe UI. Genres are "any of"; excluded genres,
# the rating floor, the vote-count floor and the year range are hard limits
# on what the provider is asked for.
MOODS = {
    'date-night': {
        'genres': ['Romance', 'Drama', 'Comedy'],
        'exclude_genres': ['Horror', 'War', 'Documentary'],
        'min_rating': 6.5,
    },
    'feel-good': {
        'genres': ['Comedy', 'Family', 'Adventure'],
        'exclude_genres': ['Horror', 'War', 'Thriller'],
        'min_rating': 7.0,
    },
    'adrenaline': {
        'genres': ['Action', 'Thriller', 'Adventure'],
        'exclude_genres': ['Documentary', 'Family'],
        'min_rating': 6.5,
    },
    'thought-provoking': {
        'genres': ['Drama', 'Mystery', 'Science Fiction'],
        'exclude_genres': ['Family', 'Comedy'],
        'min_rating': 7.0,
    },
    'spooky': {
        'genres': ['Horror', 'Thriller', 'Mystery'],
        'exclude_genres': ['Family', 'Comedy', 'Animation'],
        'min_rating': 6.0,
    },
    'adventure': {
        'genres': ['Adventure', 'Action', 'Fantasy'],
        'exclude_genres': ['Horror', 'War'],
        'min_rating': 6.5,
    },
    'award-winners': {
        'min_rating': 8.0,
        'min_votes': 1000,
    },
    'sci-fi': {
        'genres': ['Science Fiction', 'Fantasy'],
        'exclude_genres': ['Documentary', 'Western'],
        'min_rating': 6.5,
    },
    'family': {
        'genres': ['Family', 'Animation', 'Adventure'],
        'exclude_genres': ['Horror', 'Thriller', 'War'],
        'min_rating': 6.5,
    },
    'classics': {
        'year_range': (1900, 2000),
        'min_rating': 7.5,
        'min_votes': 500,
    },
}


@dataclass
class FilterCriteria:
    """
    Filters chosen by the user for one recommendation request.

    Values are not validated: an inverted year range simply matches nothing.
    exclude_genres and min_votes come from mood presets; excluded genres are
    never recommended, min_votes only narrows the provider query.
    """
    genres: list[str] = field(default_factory=list)
    services: list[str] = field(default_factory=list)
    min_rating: float | None = None
    year_range: tuple[int, int] | None = None
    exclude_genres: list[str] = field(default_factory=list)
    min_votes: int | None = None

    @property
    def is_active(self) -> bool:
        return bool(
            self.genres or self.services or self.min_rating or self.year_range
            or self.exclude_genres or self.min_votes
        )

    @classmethod
    def from_dict(cls, payload: dict | None) -> "FilterCriteria":
        """
        Build criteria from request data.

        Accepts snake_case keys and the camelCase keys sent by the web client
        ('minRating', 'yearRange', 'excludeGenres', 'minVotes'). A year range
        must have exactly two usable years, otherwise it is ignored.
        """
        payload = payload or {}
        min_rating = parse_number(pick(payload, 'min_rating', 'minRating'))
        min_votes = parse_number(pick(payload, 'min_votes', 'minVotes'))

        year_range = None
        raw_range = pick(payload, 'year_range', 'yearRange')
        if isinstance(raw_range, (list, tuple)) and len(raw_range) == 2:
            start, end = parse_year(raw_range[0]), parse_year(raw_range[1])
            if start is not None and end is not None:
                year_range = (start, end)
            else:
                logger.debug(f"Ignoring unusable year range {raw_range!r}")

        return cls(
            genres=[str(g) for g in get_list(payload, 'genres')],
            services=[str(s) for s in get_list(payload, 'services')],
            min_rating=min_rating or None,
            year_range=year_range,
            exclude_genres=[str(g) for g in get_list(payload, 'exclude_genres', 'excludeGenres')],
            min_votes=int(min_votes) if min_votes else None,
        )

    @classmethod
    def for_mood(cls, mood: str, overrides: "FilterCriteria | None" = None) -> "FilterCriteria":
        """
        Criteria for a named mood preset.

        Genres, services, minimum rating and year range set on overrides
        replace the preset's own. A genre chosen explicitly is no longer
        excluded.

        Raises:
            ValueError: Unknown mood
        """
        try:
            preset = MOODS[mood]
        except KeyError:
            raise ValueError(f"Unknown mood '{mood}' (expected one of {', '.join(MOODS)})") from None

        overrides = overrides or cls()
        genres = list(overrides.genres or preset.get('genres', []))
        return cls(
            genres=genres,
            services=list(overrides.services),
            min_rating=overrides.min_rating or preset.get('min_rating'),
            year_range=overrides.year_range or preset.get('year_range'),
            exclude_genres=[g for g in preset.get('exclude_genres', []) if g not in genres],
            min_votes=preset.get('min_votes'),
        )

    def matches_genre(self, movie: dict) -> bool:
        return any(g in self.genres for g in get_list(movie, 'genre'))

    def matches_excluded_genre(self, movie: dict) -> bool:
        return any(g in self.exclude_genres for g in get_list(movie, 'genre'))

    def matches_service(self, movie: dict) -> bool:
        return any(s in self.services for s in get_list(movie, 'streaming_on', 'streamingOn'))

    def in_year_range(self, year: int | None) -> bool:
        if self.year_range is None or year is None:
            return False
        return self.year_range[0] <= year <= self.year_range[1]
