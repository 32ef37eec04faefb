"""
Music catalog clients for GrooveFinder.

- LiveCatalogClient talks to the Spotify Web API with a client-credentials
  token from a shared CredentialCache.
- FixtureCatalogClient answers from a small built-in track set so the web
  client can be developed and demoed without Spotify credentials.

Both expose the same read-only interface and return Spotify-shaped JSON
objects (plain dicts). Nothing is cached and nothing is retried.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .config import AppConfig, SpotifyConfig, load_config
from .credentials import CredentialCache
from .errors import CatalogError, CatalogTimeoutError, UpstreamError, ValidationError
from .seeds import RecommendationSeed

logger = logging.getLogger(__name__)


RECOMMENDATION_LIMIT = 20


def _require_query(query: Optional[str]) -> str:
    if not query or not query.strip():
        raise ValidationError("Search query cannot be empty")
    return query.strip()


class CatalogClient(ABC):
    """Read-only music catalog interface used by the API and the CLI."""

    source: str = "unknown"

    @abstractmethod
    def search(self, query: str, *, limit: int = 20) -> List[dict]:
        ...

    @abstractmethod
    def recommend(self, seed: RecommendationSeed, *, limit: int = RECOMMENDATION_LIMIT) -> List[dict]:
        ...

    @abstractmethod
    def track_features(self, track_ids: Sequence[str]) -> List[dict]:
        ...

    @abstractmethod
    def get_track(self, track_id: str) -> dict:
        ...

    @abstractmethod
    def get_tracks(self, track_ids: Sequence[str]) -> List[dict]:
        ...

    def test_connection(self) -> Dict[str, Any]:
        """
        Exercise search and recommendations once; never raises.
        """
        logger.info(f"Testing catalog connection ({self.source})")
        try:
            self.search("test", limit=1)
            seed = RecommendationSeed()
            seed.set_seeds("seed_genres", ["pop"])
            self.recommend(seed)
        except CatalogError as exc:
            logger.error(f"Catalog connection test failed: {exc}")
            return {"success": False, "error": str(exc)}
        logger.info("Catalog connection test successful")
        return {"success": True, "message": "Spotify connection working"}

    def close(self) -> None:
        return None


class LiveCatalogClient(CatalogClient):
    """
    Spotify Web API client (client-credentials flow, read-only).
    """

    source = "spotify_api"

    def __init__(
        self,
        cfg: SpotifyConfig,
        *,
        credentials: Optional[CredentialCache] = None,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self._cfg = cfg
        self._http = http if http is not None else httpx.Client(timeout=cfg.request_timeout)
        self._credentials = credentials if credentials is not None else CredentialCache(cfg)

    @property
    def credentials(self) -> CredentialCache:
        return self._credentials

    # --------------------------------------------------------------------- #
    # Low-level request helper
    # --------------------------------------------------------------------- #
    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        token = self._credentials.get_token()
        url = f"{self._cfg.api_base_url}{path}"
        headers = {
            "Authorization": f"Bearer {token.value}",
            "Accept": "application/json",
        }

        logger.debug(f"Spotify API request: GET {path} {params or {}}")
        try:
            resp = self._http.request(
                "GET",
                url,
                params=params,
                headers=headers,
                timeout=self._cfg.request_timeout,
            )
        except httpx.TimeoutException as exc:
            logger.error(f"Spotify API request {path} timed out after {self._cfg.request_timeout}s")
            raise CatalogTimeoutError(
                f"Request timeout after {self._cfg.request_timeout}s on {path}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error(f"HTTP error calling Spotify API {path}: {exc}")
            raise UpstreamError(f"Error calling Spotify API: {exc}") from exc

        if resp.status_code == 401:
            # Body may be empty or not JSON; drop the token before parsing it.
            self._credentials.invalidate()

        if not resp.text or not resp.text.strip():
            logger.error(f"Empty response from Spotify on {path} ({resp.status_code})")
            raise UpstreamError("Empty response from Spotify API", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            logger.error(f"Error parsing Spotify response on {path}: {resp.text[:200]!r}")
            raise UpstreamError(
                "Invalid JSON response from Spotify API", status_code=resp.status_code
            ) from exc

        if not resp.is_success:
            message = "Unknown error"
            if isinstance(data, dict) and isinstance(data.get("error"), dict):
                message = data["error"].get("message") or message
            logger.error(f"Spotify API error {resp.status_code} on {path}: {message}")
            raise UpstreamError(
                f"Spotify API error: {resp.status_code} - {message}",
                status_code=resp.status_code,
            )

        logger.debug(f"Spotify API request successful: GET {path} -> {resp.status_code}")
        return data

    # --------------------------------------------------------------------- #
    # Public read-only methods
    # --------------------------------------------------------------------- #
    def search(self, query: str, *, limit: int = 20) -> List[dict]:
        """
        Search for tracks by free-text query.
        """
        q = _require_query(query)
        if limit <= 0:
            raise ValidationError("Search limit must be positive")
        logger.info(f"Searching Spotify tracks: query={q!r}, limit={limit}")
        params = {
            "q": q,
            "type": "track",
            "limit": limit,
            "market": self._cfg.market,
        }
        data = self._get("/search", params)
        tracks = data.get("tracks") if isinstance(data, dict) else None
        items = tracks.get("items") if isinstance(tracks, dict) else None
        if not isinstance(items, list):
            logger.error("Spotify search response missing tracks.items")
            raise UpstreamError("Invalid search response format")
        logger.info(f"Found {len(items)} tracks for {q!r}")
        return items

    def recommend(self, seed: RecommendationSeed, *, limit: int = RECOMMENDATION_LIMIT) -> List[dict]:
        params: Dict[str, Any] = seed.to_params()
        params["limit"] = limit
        params["market"] = self._cfg.market
        logger.info(f"Getting Spotify recommendations: {params}")
        data = self._get("/recommendations", params)
        tracks = data.get("tracks") if isinstance(data, dict) else None
        if not isinstance(tracks, list):
            logger.error("Spotify recommendations response missing tracks")
            raise UpstreamError("Invalid recommendations response format")
        logger.info(f"Got {len(tracks)} Spotify recommendations")
        return tracks

    def track_features(self, track_ids: Sequence[str]) -> List[dict]:
        """
        Audio features for the given track IDs, in Spotify's order.
        """
        ids = [tid for tid in track_ids if tid]
        if not ids:
            return []
        data = self._get("/audio-features", {"ids": ",".join(ids)})
        features = data.get("audio_features") if isinstance(data, dict) else None
        if not isinstance(features, list):
            raise UpstreamError("Invalid audio-features response format")
        logger.info(f"Audio features retrieved for {len(features)}/{len(ids)} tracks")
        return features

    def get_track(self, track_id: str) -> dict:
        if not track_id or not track_id.strip():
            raise ValidationError("Track id cannot be empty")
        data = self._get(f"/tracks/{track_id.strip()}", {"market": self._cfg.market})
        if not isinstance(data, dict):
            raise UpstreamError("Invalid track response format")
        return data

    def get_tracks(self, track_ids: Sequence[str]) -> List[dict]:
        ids = [tid for tid in track_ids if tid]
        if not ids:
            return []
        data = self._get("/tracks", {"ids": ",".join(ids), "market": self._cfg.market})
        tracks = data.get("tracks") if isinstance(data, dict) else None
        if not isinstance(tracks, list):
            raise UpstreamError("Invalid tracks response format")
        return tracks

    def close(self) -> None:
        logger.debug("Closing LiveCatalogClient HTTP connections")
        self._http.close()
        self._credentials.close()


def _fixture_track(
    track_id: str,
    name: str,
    artist: str,
    album: str,
    genre: str,
    popularity: int,
    *,
    energy: float,
    danceability: float,
    valence: float,
    tempo: float,
    instrumentalness: float = 0.0,
) -> Dict[str, Any]:
    return {
        "id": track_id,
        "name": name,
        "uri": f"spotify:track:{track_id}",
        "popularity": popularity,
        "preview_url": None,
        "artists": [{"id": f"artist-{track_id}", "name": artist}],
        "album": {"name": album, "images": []},
        "external_urls": {"spotify": f"https://open.spotify.com/track/{track_id}"},
        "_genre": genre,
        "_features": {
            "id": track_id,
            "energy": energy,
            "danceability": danceability,
            "valence": valence,
            "tempo": tempo,
            "instrumentalness": instrumentalness,
        },
    }


FIXTURE_TRACKS: List[Dict[str, Any]] = [
    _fixture_track("fx-sunrise", "Sunrise Parade", "The Daylights", "Morning Songs", "pop", 86,
                   energy=0.74, danceability=0.70, valence=0.86, tempo=118.0),
    _fixture_track("fx-neon", "Neon Rush", "Circuit Kids", "Overdrive", "electronic", 81,
                   energy=0.93, danceability=0.84, valence=0.62, tempo=128.0),
    _fixture_track("fx-gravel", "Gravel Road", "Stone Harbor", "Wide Open", "rock", 67,
                   energy=0.81, danceability=0.45, valence=0.55, tempo=140.0),
    _fixture_track("fx-cipher", "Cipher Verse", "MC Northside", "Blocks", "hip-hop", 78,
                   energy=0.70, danceability=0.88, valence=0.58, tempo=94.0),
    _fixture_track("fx-rain", "Rain on Glass", "Ada Vale", "Grey Weather", "indie", 52,
                   energy=0.28, danceability=0.35, valence=0.18, tempo=76.0),
    _fixture_track("fx-lowtide", "Low Tide", "Harbor Lights", "Slow Water", "chill", 61,
                   energy=0.30, danceability=0.52, valence=0.50, tempo=85.0),
    _fixture_track("fx-study", "Study Hall", "Quiet Keys", "Paper Lanterns", "classical", 48,
                   energy=0.38, danceability=0.30, valence=0.60, tempo=90.0, instrumentalness=0.92),
    _fixture_track("fx-heartache", "Heartache Avenue", "Mara Lynn", "Letters", "pop", 73,
                   energy=0.35, danceability=0.48, valence=0.22, tempo=70.0),
]

_FEATURE_TARGETS = ("energy", "danceability", "valence")


class FixtureCatalogClient(CatalogClient):
    """
    Offline catalog backed by FIXTURE_TRACKS.
    """

    source = "fixtures"

    def __init__(self, tracks: Optional[List[Dict[str, Any]]] = None) -> None:
        self._tracks = tracks if tracks is not None else FIXTURE_TRACKS

    @staticmethod
    def _public(track: Dict[str, Any]) -> dict:
        return {k: v for k, v in track.items() if not k.startswith("_")}

    def search(self, query: str, *, limit: int = 20) -> List[dict]:
        q = _require_query(query).lower()
        if limit <= 0:
            raise ValidationError("Search limit must be positive")
        matches = [
            t
            for t in self._tracks
            if q in t["name"].lower()
            or q in t["album"]["name"].lower()
            or any(q in a["name"].lower() for a in t["artists"])
        ]
        if not matches:
            logger.debug(f"No fixture matches for {q!r}, returning all fixtures")
            matches = list(self._tracks)
        return [self._public(t) for t in matches[:limit]]

    def recommend(self, seed: RecommendationSeed, *, limit: int = RECOMMENDATION_LIMIT) -> List[dict]:
        candidates = list(self._tracks)
        if seed.seed_genres:
            by_genre = [t for t in candidates if t["_genre"] in seed.seed_genres]
            if by_genre:
                candidates = by_genre

        def within_bounds(track: Dict[str, Any]) -> bool:
            feats = track["_features"]
            for name in _FEATURE_TARGETS + ("tempo",):
                lo = getattr(seed, f"min_{name}")
                hi = getattr(seed, f"max_{name}")
                if lo is not None and feats[name] < lo:
                    return False
                if hi is not None and feats[name] > hi:
                    return False
            if seed.min_instrumentalness is not None and feats["instrumentalness"] < seed.min_instrumentalness:
                return False
            return True

        def distance(track: Dict[str, Any]) -> float:
            feats = track["_features"]
            total = 0.0
            for name in _FEATURE_TARGETS:
                target = getattr(seed, f"target_{name}")
                if target is not None:
                    total += abs(feats[name] - target)
            if seed.target_popularity is not None:
                total += abs(track["popularity"] - seed.target_popularity) / 100.0
            return total

        ranked = sorted((t for t in candidates if within_bounds(t)), key=distance)
        logger.info(f"Fixture recommendations: {len(ranked)} candidates")
        return [self._public(t) for t in ranked[:limit]]

    def track_features(self, track_ids: Sequence[str]) -> List[dict]:
        by_id = {t["id"]: t for t in self._tracks}
        return [dict(by_id[tid]["_features"]) for tid in track_ids if tid in by_id]

    def get_track(self, track_id: str) -> dict:
        for t in self._tracks:
            if t["id"] == track_id:
                return self._public(t)
        raise UpstreamError(f"Spotify API error: 404 - non existing id {track_id}", status_code=404)

    def get_tracks(self, track_ids: Sequence[str]) -> List[dict]:
        by_id = {t["id"]: t for t in self._tracks}
        return [self._public(by_id[tid]) for tid in track_ids if tid in by_id]


def create_catalog_client(cfg: Optional[AppConfig] = None) -> CatalogClient:
    """
    Build the catalog client selected by ``cfg.catalog_backend``.
    """
    if cfg is None:
        cfg = load_config()
    if cfg.catalog_backend == "fixture":
        logger.info("Using fixture catalog backend")
        return FixtureCatalogClient()
    logger.debug("Using live Spotify Web API backend")
    return LiveCatalogClient(cfg.spotify)


__all__ = [
    "CatalogClient",
    "FixtureCatalogClient",
    "LiveCatalogClient",
    "create_catalog_client",
]
