"""
Weights and thresholds for the additive recommendation score.

Defaults reproduce the hand-tuned formula: base 50, weighted 0-1 components,
flat people bonuses and flat filter bonuses/penalties. Scores are left
unbounded; only the relative order of candidates is meaningful.

Overrides are loaded from a JSON file. Missing keys keep their default so a
partial file only changes what it names.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from .config import SCORING_WEIGHTS_PATH

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    """Every constant the scorers use."""

    base_score: float = 50.0

    # Component multipliers (components are 0-1)
    genre_weight: float = 15.0
    recency_weight: float = 5.0
    popularity_weight: float = 10.0
    streaming_weight: float = 5.0
    year_weight: float = 5.0

    # Genre component contributions
    genre_favorite: float = 0.3
    genre_watched: float = 0.3
    genre_rated: float = 0.2
    genre_watchlist: float = 0.2
    rating_scale: float = 5.0  # user ratings are out of 5

    # Recency window (years)
    recency_full_years: int = 2
    recency_decay_years: int = 20

    # Year component
    year_in_range: float = 1.0
    year_out_of_range: float = 0.2
    decade_floor: float = 0.2

    neutral: float = 0.5

    # People bonus (flat points)
    director_bonus: float = 10.0
    actor_bonus: float = 2.0
    actor_bonus_cap: float = 10.0

    # Filter adjustments (flat points)
    genre_filter_bonus: float = 20.0
    genre_filter_penalty: float = 30.0
    rating_filter_bonus: float = 10.0
    rating_filter_penalty: float = 20.0
    service_filter_bonus: float = 15.0
    service_filter_penalty: float = 25.0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ScoringWeights":
        """Build weights from a mapping, keeping defaults for absent or invalid keys."""
        defaults = cls()
        values: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in payload:
                continue
            raw = payload[f.name]
            default = getattr(defaults, f.name)
            try:
                values[f.name] = int(raw) if isinstance(default, int) else float(raw)
            except (TypeError, ValueError):
                logger.warning(f"Invalid scoring weight {f.name}={raw!r}, using default {default}")

        unknown = set(payload) - {f.name for f in fields(cls)}
        if unknown:
            logger.debug(f"Ignoring unknown scoring weight keys: {sorted(unknown)}")

        return cls(**values)


DEFAULT_WEIGHTS = ScoringWeights()


def load_scoring_weights(path: str | Path | None = None) -> ScoringWeights:
    """Load weights from disk; return the defaults if missing or invalid."""
    weight_path = Path(path) if path else SCORING_WEIGHTS_PATH
    if not weight_path.exists():
        logger.debug("Scoring weights file not found at %s; using defaults", weight_path)
        return DEFAULT_WEIGHTS

    try:
        payload = json.loads(weight_path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to load scoring weights from %s: %s", weight_path, exc)
        return DEFAULT_WEIGHTS

    if not isinstance(payload, dict):
        logger.warning("Scoring weights file %s must contain a JSON object", weight_path)
        return DEFAULT_WEIGHTS

    return ScoringWeights.from_dict(payload)


def save_scoring_weights(weights: ScoringWeights, path: str | Path | None = None) -> Path:
    """Persist weights to disk."""
    weight_path = Path(path) if path else SCORING_WEIGHTS_PATH
    weight_path.parent.mkdir(parents=True, exist_ok=True)
    weight_path.write_text(json.dumps(weights.to_dict(), indent=2))
    return weight_path
