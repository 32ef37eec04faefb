"""
Recommendation flow shared by the HTTP API and the CLI.

Steps:
1) Resolve the optional user profile (a miss only skips personalization).
2) Build the recommendation seed from the request and the profile.
3) Ask the catalog for recommendations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .profiles import ProfileStore
from .seeds import RecommendationQuery, RecommendationSeed, StoredPreferences, build_seed, trending_seed
from .spotify import CatalogClient

logger = logging.getLogger(__name__)

# A store, or a zero-argument callable that builds one on first use.
StoreSource = Union[ProfileStore, Callable[[], ProfileStore], None]


@dataclass
class RecommendationResult:
    tracks: List[dict]
    seed: RecommendationSeed
    personalized: bool = False


def _resolve_profile(store: StoreSource, user_id: Optional[str]) -> Optional[StoredPreferences]:
    if not user_id or store is None:
        return None
    try:
        if not isinstance(store, ProfileStore):
            store = store()
        profile = store.find_user(user_id)
    except Exception as exc:
        logger.warning(f"Could not load user preferences for {user_id}: {exc}")
        return None
    if profile is None:
        logger.warning(f"No profile for user {user_id}, skipping personalization")
        return None
    logger.info(f"Loading preferences for user: {user_id}")
    return profile.stored_preferences()


def recommend(
    catalog: CatalogClient,
    store: StoreSource,
    query: RecommendationQuery,
) -> RecommendationResult:
    preferences = _resolve_profile(store, query.user_id)
    seed = build_seed(query, preferences)
    tracks = catalog.recommend(seed)
    return RecommendationResult(tracks=tracks, seed=seed, personalized=preferences is not None)


def recommend_for_mood(
    catalog: CatalogClient,
    store: StoreSource,
    mood: str,
    user_id: Optional[str] = None,
) -> RecommendationResult:
    logger.info(f"Getting {mood} mood recommendations")
    return recommend(catalog, store, RecommendationQuery(mood=mood, user_id=user_id))


def trending(catalog: CatalogClient) -> List[dict]:
    logger.info("Getting trending tracks")
    return catalog.recommend(trending_seed())


__all__ = ["RecommendationResult", "StoreSource", "recommend", "recommend_for_mood", "trending"]
