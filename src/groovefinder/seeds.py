"""
Recommendation seed building.

Turns a recommendations request (mood keyword, explicit numeric overrides,
raw seed lists) plus an optional stored user profile into the parameter set
sent to Spotify's /recommendations endpoint.

Precedence, later steps overwriting earlier ones:

1. explicit seed lists from the request
2. the mood table
3. explicit ``energy_level`` / ``dance_level`` overrides
4. the stored profile's preference triple and first three favorite genres
5. default genres when no seed is set at all

Step 4 replaces step 3 unconditionally, so a request carrying a ``user_id``
cannot tune energy/danceability per request. This matches the behavior the
web client was built against; see DESIGN.md before changing it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


MAX_SEED_IDS = 5
PROFILE_GENRE_SEEDS = 3
DEFAULT_SEED_GENRES = ["pop", "rock", "hip-hop"]
SEED_KINDS = ("seed_genres", "seed_artists", "seed_tracks")

MOOD_TABLE: Dict[str, Dict[str, float]] = {
    "happy": {"target_valence": 0.8, "target_energy": 0.7},
    "sad": {"target_valence": 0.2, "target_energy": 0.3},
    "energetic": {"target_energy": 0.9, "target_danceability": 0.8},
    "chill": {"target_energy": 0.3, "target_valence": 0.5},
    "focus": {"target_energy": 0.4, "target_valence": 0.6, "min_instrumentalness": 0.3},
}

# Fields sent to /recommendations, in wire order.
_WIRE_NUMERIC_FIELDS = (
    "target_energy",
    "target_danceability",
    "target_valence",
    "target_popularity",
    "min_energy",
    "max_energy",
    "min_danceability",
    "max_danceability",
    "min_valence",
    "max_valence",
    "min_tempo",
    "max_tempo",
)


@dataclass
class RecommendationSeed:
    seed_genres: Optional[List[str]] = None
    seed_artists: Optional[List[str]] = None
    seed_tracks: Optional[List[str]] = None

    target_energy: Optional[float] = None
    target_danceability: Optional[float] = None
    target_valence: Optional[float] = None
    target_popularity: Optional[float] = None  # 0-100, unlike the other targets

    min_energy: Optional[float] = None
    max_energy: Optional[float] = None
    min_danceability: Optional[float] = None
    max_danceability: Optional[float] = None
    min_valence: Optional[float] = None
    max_valence: Optional[float] = None
    min_tempo: Optional[float] = None
    max_tempo: Optional[float] = None
    min_instrumentalness: Optional[float] = None

    @property
    def has_seeds(self) -> bool:
        return any(getattr(self, kind) for kind in SEED_KINDS)

    def set_seeds(self, kind: str, values: Sequence[str]) -> None:
        """Replace whatever seed list is set with ``values`` of ``kind``."""
        if kind not in SEED_KINDS:
            raise ValueError(f"Unknown seed kind: {kind!r}")
        for other in SEED_KINDS:
            setattr(self, other, None)
        ids = list(values)
        if len(ids) > MAX_SEED_IDS:
            logger.warning(f"Truncating {kind} from {len(ids)} to {MAX_SEED_IDS} identifiers")
            ids = ids[:MAX_SEED_IDS]
        setattr(self, kind, ids)

    def to_params(self) -> Dict[str, str]:
        """Query parameters for Spotify's /recommendations endpoint."""
        params: Dict[str, str] = {}
        for kind in SEED_KINDS:
            ids = getattr(self, kind)
            if ids:
                params[kind] = ",".join(ids)
                break
        for name in _WIRE_NUMERIC_FIELDS:
            value = getattr(self, name)
            if value is not None:
                params[name] = _format_number(value)
        return params

    def to_dict(self) -> Dict[str, object]:
        """The fields that are set, as echoed back to the web client."""
        out: Dict[str, object] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[f.name] = list(value) if isinstance(value, list) else value
        return out


@dataclass
class RecommendationQuery:
    """Raw parameters of a recommendations request."""

    seed_genres: Optional[str] = None
    seed_artists: Optional[str] = None
    seed_tracks: Optional[str] = None
    user_id: Optional[str] = None
    mood: Optional[str] = None
    energy_level: Optional[float] = None
    dance_level: Optional[float] = None


@dataclass
class StoredPreferences:
    """The slice of a user profile the seed builder reads."""

    energy: float
    danceability: float
    valence: float
    favorite_genres: List[str] = field(default_factory=list)


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def split_ids(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def apply_mood(seed: RecommendationSeed, mood: Optional[str]) -> bool:
    """Apply the mood table entry for ``mood``; unknown moods change nothing."""
    if not mood:
        return False
    mapping = MOOD_TABLE.get(mood.strip().lower())
    if mapping is None:
        logger.info(f"Unrecognized mood {mood!r}, leaving targets unchanged")
        return False
    logger.info(f"Applying mood: {mood}")
    for name, value in mapping.items():
        setattr(seed, name, value)
    return True


def build_seed(
    query: RecommendationQuery,
    profile: Optional[StoredPreferences] = None,
) -> RecommendationSeed:
    seed = RecommendationSeed()

    for kind in SEED_KINDS:
        ids = split_ids(getattr(query, kind))
        if ids:
            seed.set_seeds(kind, ids)
            break

    apply_mood(seed, query.mood)

    if query.energy_level is not None:
        seed.target_energy = query.energy_level
        logger.info(f"Energy level override: {seed.target_energy}")
    if query.dance_level is not None:
        seed.target_danceability = query.dance_level
        logger.info(f"Dance level override: {seed.target_danceability}")

    if profile is not None:
        logger.info("Applying stored user preferences")
        seed.target_energy = profile.energy
        seed.target_danceability = profile.danceability
        seed.target_valence = profile.valence
        if profile.favorite_genres:
            seed.set_seeds("seed_genres", profile.favorite_genres[:PROFILE_GENRE_SEEDS])

    if not seed.has_seeds:
        logger.info(f"Using default genres: {', '.join(DEFAULT_SEED_GENRES)}")
        seed.set_seeds("seed_genres", DEFAULT_SEED_GENRES)

    return seed


def trending_seed() -> RecommendationSeed:
    seed = RecommendationSeed(target_popularity=80)
    seed.set_seeds("seed_genres", ["pop", "hip-hop", "electronic"])
    return seed


__all__ = [
    "DEFAULT_SEED_GENRES",
    "MOOD_TABLE",
    "RecommendationQuery",
    "RecommendationSeed",
    "StoredPreferences",
    "apply_mood",
    "build_seed",
    "split_ids",
    "trending_seed",
]
