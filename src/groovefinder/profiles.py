"""
User profiles: preferences, favorite genres and saved tracks.

ProfileStore holds the rules (required fields, clamping, duplicate
favorites); the subclasses only know how to load and write one profile
document atomically.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import AppConfig, StoreConfig, load_config
from .errors import NotFoundError, ValidationError
from .seeds import StoredPreferences

logger = logging.getLogger(__name__)


DEFAULT_FAVORITE_GENRES = ["pop", "rock"]
DEFAULT_PREFERENCE = 0.5


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Preferences:
    energy: float = DEFAULT_PREFERENCE
    danceability: float = DEFAULT_PREFERENCE
    valence: float = DEFAULT_PREFERENCE

    def to_dict(self) -> Dict[str, float]:
        return {"energy": self.energy, "danceability": self.danceability, "valence": self.valence}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Preferences":
        data = data or {}
        return cls(
            energy=float(data.get("energy", DEFAULT_PREFERENCE)),
            danceability=float(data.get("danceability", DEFAULT_PREFERENCE)),
            valence=float(data.get("valence", DEFAULT_PREFERENCE)),
        )


@dataclass
class TrackRef:
    track_id: str
    name: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    image_url: Optional[str] = None
    preview_url: Optional[str] = None
    saved_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trackId": self.track_id,
            "name": self.name,
            "artist": self.artist,
            "album": self.album,
            "imageUrl": self.image_url,
            "previewUrl": self.preview_url,
            "savedAt": _iso(self.saved_at),
        }

    def to_document(self) -> Dict[str, Any]:
        doc = self.to_dict()
        doc["savedAt"] = self.saved_at
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TrackRef":
        return cls(
            track_id=doc["trackId"],
            name=doc.get("name"),
            artist=doc.get("artist"),
            album=doc.get("album"),
            image_url=doc.get("imageUrl"),
            preview_url=doc.get("previewUrl"),
            saved_at=doc.get("savedAt") or _now(),
        )


@dataclass
class Playlist:
    name: str
    track_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tracks": list(self.track_ids), "createdAt": _iso(self.created_at)}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Playlist":
        return cls(
            name=doc.get("name", ""),
            track_ids=list(doc.get("tracks") or []),
            created_at=doc.get("createdAt") or _now(),
        )


@dataclass
class UserProfile:
    id: str
    name: str
    email: str
    favorite_genres: List[str] = field(default_factory=list)
    preferences: Preferences = field(default_factory=Preferences)
    saved_tracks: List[TrackRef] = field(default_factory=list)
    playlists: List[Playlist] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)

    def stored_preferences(self) -> StoredPreferences:
        return StoredPreferences(
            energy=self.preferences.energy,
            danceability=self.preferences.danceability,
            valence=self.preferences.valence,
            favorite_genres=list(self.favorite_genres),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "favoriteGenres": list(self.favorite_genres),
            "preferences": self.preferences.to_dict(),
            "savedTracks": [t.to_dict() for t in self.saved_tracks],
            "playlists": [p.to_dict() for p in self.playlists],
            "createdAt": _iso(self.created_at),
        }


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required")
    return str(value).strip()


class ProfileStore(ABC):
    """
    Gateway to wherever user profiles live.
    """

    # ------------------------------------------------------------------ #
    # Storage primitives
    # ------------------------------------------------------------------ #
    @abstractmethod
    def _load(self, user_id: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    def _load_by_email(self, email: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    def _insert(self, profile: UserProfile) -> Tuple[UserProfile, bool]:
        """Insert unless the email is taken; returns (stored profile, created)."""

    @abstractmethod
    def _set_fields(self, user_id: str, updates: Dict[str, Any]) -> Optional[UserProfile]:
        ...

    @abstractmethod
    def _push_track(self, user_id: str, track: TrackRef) -> Optional[bool]:
        """True if added, False if already present, None if no such user."""

    @abstractmethod
    def _pull_track(self, user_id: str, track_id: str) -> Optional[UserProfile]:
        ...

    def close(self) -> None:
        return None

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #
    def create_user(
        self,
        name: Optional[str],
        email: Optional[str],
        favorite_genres: Optional[Sequence[str]] = None,
    ) -> Tuple[UserProfile, bool]:
        name = _require_text(name, "name")
        email = _require_text(email, "email")

        existing = self._load_by_email(email)
        if existing is not None:
            logger.info(f"User with email {email!r} already exists: {existing.id}")
            return existing, False

        genres = list(favorite_genres) if favorite_genres else list(DEFAULT_FAVORITE_GENRES)
        profile = UserProfile(id="", name=name, email=email, favorite_genres=genres)
        stored, created = self._insert(profile)
        if created:
            logger.info(f"Created user {stored.id} ({email})")
        return stored, created

    def find_user(self, user_id: Optional[str]) -> Optional[UserProfile]:
        if not user_id:
            return None
        return self._load(user_id)

    def get_user(self, user_id: str) -> UserProfile:
        profile = self.find_user(user_id)
        if profile is None:
            raise NotFoundError("User not found")
        return profile

    def update_preferences(
        self,
        user_id: str,
        *,
        energy: Optional[float] = None,
        danceability: Optional[float] = None,
        valence: Optional[float] = None,
        favorite_genres: Optional[Sequence[str]] = None,
    ) -> UserProfile:
        updates: Dict[str, Any] = {}
        if energy is not None:
            updates["preferences.energy"] = clamp(float(energy))
        if danceability is not None:
            updates["preferences.danceability"] = clamp(float(danceability))
        if valence is not None:
            updates["preferences.valence"] = clamp(float(valence))
        if favorite_genres is not None:
            updates["favoriteGenres"] = [str(g) for g in favorite_genres]

        if not updates:
            return self.get_user(user_id)

        profile = self._set_fields(user_id, updates)
        if profile is None:
            raise NotFoundError("User not found")
        logger.info(f"Updated preferences for user {user_id}: {sorted(updates)}")
        return profile

    def add_favorite(self, user_id: str, track: TrackRef) -> List[TrackRef]:
        if not track.track_id or not str(track.track_id).strip():
            raise ValidationError("trackId is required")
        added = self._push_track(user_id, track)
        if added is None:
            raise NotFoundError("User not found")
        if not added:
            raise ValidationError("Track already in favorites")
        logger.info(f"Track {track.track_id} added to favorites of user {user_id}")
        return self.list_favorites(user_id)

    def list_favorites(self, user_id: str) -> List[TrackRef]:
        return self.get_user(user_id).saved_tracks

    def remove_favorite(self, user_id: str, track_id: str) -> List[TrackRef]:
        profile = self._pull_track(user_id, track_id)
        if profile is None:
            raise NotFoundError("User not found")
        logger.info(f"Track {track_id} removed from favorites of user {user_id}")
        return profile.saved_tracks


class MemoryProfileStore(ProfileStore):
    """
    In-process profile store; profiles are lost on restart.
    """

    def __init__(self) -> None:
        self._profiles: Dict[str, UserProfile] = {}
        self._lock = threading.Lock()

    def _load(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            profile = self._profiles.get(user_id)
            return copy.deepcopy(profile) if profile is not None else None

    def _load_by_email(self, email: str) -> Optional[UserProfile]:
        with self._lock:
            for profile in self._profiles.values():
                if profile.email == email:
                    return copy.deepcopy(profile)
        return None

    def _insert(self, profile: UserProfile) -> Tuple[UserProfile, bool]:
        with self._lock:
            for existing in self._profiles.values():
                if existing.email == profile.email:
                    return copy.deepcopy(existing), False
            profile.id = uuid.uuid4().hex
            self._profiles[profile.id] = copy.deepcopy(profile)
            return profile, True

    def _set_fields(self, user_id: str, updates: Dict[str, Any]) -> Optional[UserProfile]:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                return None
            for key, value in updates.items():
                if key == "favoriteGenres":
                    profile.favorite_genres = list(value)
                else:
                    setattr(profile.preferences, key.split(".", 1)[1], value)
            return copy.deepcopy(profile)

    def _push_track(self, user_id: str, track: TrackRef) -> Optional[bool]:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                return None
            if any(t.track_id == track.track_id for t in profile.saved_tracks):
                return False
            profile.saved_tracks.append(copy.deepcopy(track))
            return True

    def _pull_track(self, user_id: str, track_id: str) -> Optional[UserProfile]:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                return None
            profile.saved_tracks = [t for t in profile.saved_tracks if t.track_id != track_id]
            return copy.deepcopy(profile)


class MongoProfileStore(ProfileStore):
    """
    One document per profile in the ``users`` collection.

    Every operation is a single-document read or atomic update.
    """

    def __init__(self, cfg: StoreConfig, *, client: Any = None) -> None:
        self._client = client if client is not None else MongoClient(cfg.mongodb_uri, serverSelectionTimeoutMS=10000)
        self._users = self._client[cfg.database]["users"]
        self._indexed = False
        self._ensure_indexes()
        logger.info(f"Using MongoDB profile store: database={cfg.database}")

    def _ensure_indexes(self) -> None:
        # Retried before the next insert while the server is unreachable.
        try:
            self._users.create_index([("email", ASCENDING)], unique=True)
        except PyMongoError as exc:
            logger.warning(f"Could not create MongoDB email index, will retry: {exc}")
            return
        self._indexed = True

    def _oid(self, user_id: str):
        try:
            return ObjectId(user_id)
        except (InvalidId, TypeError):
            logger.debug(f"Invalid profile id {user_id!r}")
            return None

    @staticmethod
    def _from_document(doc: Dict[str, Any]) -> UserProfile:
        return UserProfile(
            id=str(doc["_id"]),
            name=doc.get("name", ""),
            email=doc.get("email", ""),
            favorite_genres=list(doc.get("favoriteGenres") or []),
            preferences=Preferences.from_dict(doc.get("preferences")),
            saved_tracks=[TrackRef.from_document(t) for t in doc.get("savedTracks") or []],
            playlists=[Playlist.from_document(p) for p in doc.get("playlists") or []],
            created_at=doc.get("createdAt") or _now(),
        )

    def _load(self, user_id: str) -> Optional[UserProfile]:
        oid = self._oid(user_id)
        if oid is None:
            return None
        doc = self._users.find_one({"_id": oid})
        return self._from_document(doc) if doc else None

    def _load_by_email(self, email: str) -> Optional[UserProfile]:
        doc = self._users.find_one({"email": email})
        return self._from_document(doc) if doc else None

    def _insert(self, profile: UserProfile) -> Tuple[UserProfile, bool]:
        if not self._indexed:
            self._ensure_indexes()
        doc = {
            "name": profile.name,
            "email": profile.email,
            "favoriteGenres": list(profile.favorite_genres),
            "preferences": profile.preferences.to_dict(),
            "savedTracks": [],
            "playlists": [],
            "createdAt": profile.created_at,
        }
        try:
            result = self._users.insert_one(doc)
        except DuplicateKeyError:
            # Lost a race with a concurrent create for the same email.
            existing = self._load_by_email(profile.email)
            if existing is None:
                raise
            return existing, False
        profile.id = str(result.inserted_id)
        return profile, True

    def _set_fields(self, user_id: str, updates: Dict[str, Any]) -> Optional[UserProfile]:
        oid = self._oid(user_id)
        if oid is None:
            return None
        doc = self._users.find_one_and_update(
            {"_id": oid}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
        return self._from_document(doc) if doc else None

    def _push_track(self, user_id: str, track: TrackRef) -> Optional[bool]:
        oid = self._oid(user_id)
        if oid is None:
            return None
        result = self._users.update_one(
            {"_id": oid, "savedTracks.trackId": {"$ne": track.track_id}},
            {"$push": {"savedTracks": track.to_document()}},
        )
        if result.modified_count:
            return True
        return False if self._users.count_documents({"_id": oid}, limit=1) else None

    def _pull_track(self, user_id: str, track_id: str) -> Optional[UserProfile]:
        oid = self._oid(user_id)
        if oid is None:
            return None
        doc = self._users.find_one_and_update(
            {"_id": oid},
            {"$pull": {"savedTracks": {"trackId": track_id}}},
            return_document=ReturnDocument.AFTER,
        )
        return self._from_document(doc) if doc else None

    def close(self) -> None:
        logger.debug("Closing MongoDB client")
        self._client.close()


def create_profile_store(cfg: Optional[AppConfig] = None) -> ProfileStore:
    if cfg is None:
        cfg = load_config()
    if cfg.store.backend == "mongo":
        return MongoProfileStore(cfg.store)
    logger.info("Using in-memory profile store")
    return MemoryProfileStore()


__all__ = [
    "MemoryProfileStore",
    "MongoProfileStore",
    "Playlist",
    "Preferences",
    "ProfileStore",
    "TrackRef",
    "UserProfile",
    "clamp",
    "create_profile_store",
]
