"""
FastAPI service for GrooveFinder.

Exposes the JSON API used by the web client:

- GET    /api/search?q=...
- GET    /api/recommendations?seed_genres&seed_artists&seed_tracks&user_id&mood&energy_level&dance_level
- GET    /api/recommendations/mood/{mood}?user_id=...
- GET    /api/trending
- POST   /api/users                         {name, email, favoriteGenres}
- GET    /api/users/{user_id}
- PUT    /api/users/{user_id}/preferences   {energy, danceability, valence, favoriteGenres}
- POST   /api/users/{user_id}/favorites     {trackId, name, artist, album, imageUrl, previewUrl}
- GET    /api/users/{user_id}/favorites
- DELETE /api/users/{user_id}/favorites/{track_id}
- GET    /api/test

Errors are returned as {"error": "...", "message": "..."} with status
400 (bad input), 404 (unknown user) or 500 (catalog failure).
"""

import logging
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .config import load_config
from .errors import CatalogError, NotFoundError, ValidationError
from .pipeline import RecommendationResult, recommend, recommend_for_mood, trending
from .profiles import ProfileStore, TrackRef, create_profile_store
from .seeds import RecommendationQuery
from .spotify import CatalogClient, create_catalog_client

logger = logging.getLogger(__name__)

_cfg = load_config()

_catalog: Optional[CatalogClient] = None
_store: Optional[ProfileStore] = None
_init_lock = threading.Lock()


def get_catalog() -> CatalogClient:
    global _catalog
    if _catalog is None:
        with _init_lock:
            if _catalog is None:
                _catalog = create_catalog_client(_cfg)
    return _catalog


def get_store() -> ProfileStore:
    global _store
    if _store is None:
        with _init_lock:
            if _store is None:
                _store = create_profile_store(_cfg)
    return _store


def get_store_provider(request: Request) -> Callable[[], ProfileStore]:
    """
    Hand out ``get_store`` (or its override) uncalled; the recommendation
    flow builds the store only when a request names a user.
    """
    return request.app.dependency_overrides.get(get_store, get_store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"GrooveFinder API starting (catalog={_cfg.catalog_backend}, store={_cfg.store.backend})"
    )
    yield
    global _catalog, _store
    if _catalog is not None:
        _catalog.close()
        _catalog = None
    if _store is not None:
        _store.close()
        _store = None


# Rate limiter to stay clear of Spotify's own rate limits
limiter = Limiter(key_func=get_remote_address, enabled=_cfg.rate_limit_enabled)

app = FastAPI(
    title="GrooveFinder API",
    description="GrooveFinder – music search, mood-tuned recommendations and saved preferences.",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cfg.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": error}
    if message:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)


def _catalog_failure(error: str, exc: CatalogError) -> JSONResponse:
    logger.error(f"{error}: {exc}")
    return _error(500, error, str(exc))


@app.exception_handler(ValidationError)
def _handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
    return _error(400, str(exc))


@app.exception_handler(RequestValidationError)
def _handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    logger.warning(f"Invalid request {request.method} {request.url.path}: {details}")
    return _error(400, "Invalid request", details)


@app.exception_handler(NotFoundError)
def _handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path}: {exc}")
    return _error(404, str(exc))


@app.exception_handler(Exception)
def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return _error(500, "Internal server error", str(exc))


class CreateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    favoriteGenres: Optional[List[str]] = None


class UpdatePreferencesRequest(BaseModel):
    energy: Optional[float] = None
    danceability: Optional[float] = None
    valence: Optional[float] = None
    favoriteGenres: Optional[List[str]] = None


class AddFavoriteRequest(BaseModel):
    trackId: Optional[str] = None
    name: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    imageUrl: Optional[str] = None
    previewUrl: Optional[str] = None


@app.get("/health", tags=["system"])
def health() -> dict:
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


@app.get("/api", tags=["system"])
def api_info() -> dict:
    return {"message": "GrooveFinder API - music search and mood-tuned recommendations"}


@app.get("/api/test", tags=["system"])
def api_test(catalog: CatalogClient = Depends(get_catalog)) -> dict:
    """
    Report whether credentials are configured and whether the catalog answers.
    """
    connection = catalog.test_connection()
    return {
        "message": "API is working",
        "spotifyCredentials": {
            "clientId": "Set" if _cfg.spotify.client_id else "MISSING",
            "clientSecret": "Set" if _cfg.spotify.client_secret else "MISSING",
        },
        "spotifyConnection": connection,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "note": f"Catalog backend: {catalog.source}",
    }


@app.get("/api/search", tags=["catalog"])
@limiter.limit(_cfg.rate_limit)
def api_search(
    request: Request,
    q: Optional[str] = Query(None),
    catalog: CatalogClient = Depends(get_catalog),
) -> JSONResponse:
    if not q or not q.strip():
        raise ValidationError("Search query is required")

    logger.info(f"API search request: q={q!r}")
    try:
        tracks = catalog.search(q)
    except CatalogError as exc:
        return _catalog_failure("Failed to search tracks from Spotify", exc)

    return JSONResponse(
        {"tracks": tracks, "count": len(tracks), "query": q, "source": catalog.source}
    )


def _recommendations_body(result: RecommendationResult, catalog: CatalogClient) -> dict:
    return {
        "recommendations": result.tracks,
        "appliedPreferences": result.seed.to_dict(),
        "count": len(result.tracks),
        "source": catalog.source,
    }


@app.get("/api/recommendations", tags=["catalog"])
@limiter.limit(_cfg.rate_limit)
def api_recommendations(
    request: Request,
    seed_genres: Optional[str] = Query(None),
    seed_artists: Optional[str] = Query(None),
    seed_tracks: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    mood: Optional[str] = Query(None),
    energy_level: Optional[float] = Query(None),
    dance_level: Optional[float] = Query(None),
    catalog: CatalogClient = Depends(get_catalog),
    store: Callable[[], ProfileStore] = Depends(get_store_provider),
) -> JSONResponse:
    query = RecommendationQuery(
        seed_genres=seed_genres,
        seed_artists=seed_artists,
        seed_tracks=seed_tracks,
        user_id=user_id,
        mood=mood,
        energy_level=energy_level,
        dance_level=dance_level,
    )
    logger.info(f"API recommendations request: {query}")
    try:
        result = recommend(catalog, store, query)
    except CatalogError as exc:
        return _catalog_failure("Failed to get recommendations from Spotify", exc)
    return JSONResponse(_recommendations_body(result, catalog))


@app.get("/api/recommendations/mood/{mood}", tags=["catalog"])
@limiter.limit(_cfg.rate_limit)
def api_mood_recommendations(
    request: Request,
    mood: str,
    user_id: Optional[str] = Query(None),
    catalog: CatalogClient = Depends(get_catalog),
    store: Callable[[], ProfileStore] = Depends(get_store_provider),
) -> JSONResponse:
    try:
        result = recommend_for_mood(catalog, store, mood, user_id=user_id)
    except CatalogError as exc:
        return _catalog_failure("Failed to get mood recommendations", exc)
    return JSONResponse(_recommendations_body(result, catalog))


@app.get("/api/trending", tags=["catalog"])
@limiter.limit(_cfg.rate_limit)
def api_trending(request: Request, catalog: CatalogClient = Depends(get_catalog)) -> JSONResponse:
    try:
        tracks = trending(catalog)
    except CatalogError as exc:
        return _catalog_failure("Failed to get trending tracks from Spotify", exc)
    return JSONResponse({"tracks": tracks, "count": len(tracks), "source": catalog.source})


@app.post("/api/users", tags=["users"])
def api_create_user(body: CreateUserRequest, store: ProfileStore = Depends(get_store)) -> JSONResponse:
    profile, created = store.create_user(body.name, body.email, body.favoriteGenres)
    return JSONResponse(status_code=201 if created else 200, content={"user": profile.to_dict()})


@app.get("/api/users/{user_id}", tags=["users"])
def api_get_user(user_id: str, store: ProfileStore = Depends(get_store)) -> dict:
    return {"user": store.get_user(user_id).to_dict()}


@app.put("/api/users/{user_id}/preferences", tags=["users"])
def api_update_preferences(
    user_id: str,
    body: UpdatePreferencesRequest,
    store: ProfileStore = Depends(get_store),
) -> dict:
    profile = store.update_preferences(
        user_id,
        energy=body.energy,
        danceability=body.danceability,
        valence=body.valence,
        favorite_genres=body.favoriteGenres,
    )
    return {
        "message": "Preferences updated",
        "preferences": profile.preferences.to_dict(),
        "favoriteGenres": list(profile.favorite_genres),
    }


@app.post("/api/users/{user_id}/favorites", tags=["users"])
def api_add_favorite(
    user_id: str,
    body: AddFavoriteRequest,
    store: ProfileStore = Depends(get_store),
) -> dict:
    track = TrackRef(
        track_id=body.trackId or "",
        name=body.name,
        artist=body.artist,
        album=body.album,
        image_url=body.imageUrl,
        preview_url=body.previewUrl,
    )
    favorites = store.add_favorite(user_id, track)
    return {"message": "Track added to favorites", "favorites": [t.to_dict() for t in favorites]}


@app.get("/api/users/{user_id}/favorites", tags=["users"])
def api_list_favorites(user_id: str, store: ProfileStore = Depends(get_store)) -> dict:
    return {"favorites": [t.to_dict() for t in store.list_favorites(user_id)]}


@app.delete("/api/users/{user_id}/favorites/{track_id}", tags=["users"])
def api_remove_favorite(user_id: str, track_id: str, store: ProfileStore = Depends(get_store)) -> dict:
    favorites = store.remove_favorite(user_id, track_id)
    return {"message": "Track removed from favorites", "favorites": [t.to_dict() for t in favorites]}


# Static web client, mounted last so the API routes above take precedence.
if _cfg.static_dir is not None:
    if _cfg.static_dir.is_dir():
        logger.info(f"Serving static files from {_cfg.static_dir}")
        app.mount("/", StaticFiles(directory=str(_cfg.static_dir), html=True), name="static")
    else:
        logger.warning(f"GROOVEFINDER_STATIC_DIR {_cfg.static_dir} is not a directory, not serving it")
