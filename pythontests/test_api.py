from __future__ import annotations

import logging
from typing import List

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

from groovefinder import api
from groovefinder.api import app
from groovefinder.errors import AuthError, CatalogTimeoutError
from groovefinder.profiles import MemoryProfileStore
from groovefinder.seeds import RecommendationSeed
from groovefinder.spotify import FixtureCatalogClient


class _RecordingCatalog(FixtureCatalogClient):
    def __init__(self) -> None:
        super().__init__()
        self.seeds: List[RecommendationSeed] = []

    def recommend(self, seed: RecommendationSeed, *, limit: int = 20) -> List[dict]:
        self.seeds.append(seed)
        return super().recommend(seed, limit=limit)


class _FailingCatalog(FixtureCatalogClient):
    def search(self, query, *, limit=20):
        raise AuthError("Token request failed: 400 invalid_client", status_code=400)

    def recommend(self, seed, *, limit=20):
        raise CatalogTimeoutError("Request timeout after 20.0s on /recommendations")


@pytest.fixture
def catalog() -> _RecordingCatalog:
    return _RecordingCatalog()


@pytest.fixture
def client(catalog: _RecordingCatalog, store: MemoryProfileStore) -> TestClient:
    app.dependency_overrides[api.get_catalog] = lambda: catalog
    app.dependency_overrides[api.get_store] = lambda: store
    return TestClient(app)


@pytest.fixture
def failing_client(store: MemoryProfileStore) -> TestClient:
    app.dependency_overrides[api.get_catalog] = lambda: _FailingCatalog()
    app.dependency_overrides[api.get_store] = lambda: store
    return TestClient(app)


def _create_user(client: TestClient, **body) -> dict:
    payload = {"name": "Ada", "email": "ada@example.com"}
    payload.update(body)
    resp = client.post("/api/users", json=payload)
    assert resp.status_code in (200, 201)
    return resp.json()["user"]


def test_health_endpoint(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_api_info_and_test_route(client: TestClient) -> None:
    assert "message" in client.get("/api").json()

    data = client.get("/api/test").json()
    assert data["message"] == "API is working"
    assert set(data["spotifyCredentials"]) == {"clientId", "clientSecret"}
    assert data["spotifyConnection"]["success"] is True
    assert "timestamp" in data


class TestSearch:
    def test_requires_query(self, client: TestClient) -> None:
        for url in ("/api/search", "/api/search?q=", "/api/search?q=%20%20"):
            resp = client.get(url)
            assert resp.status_code == 400
            assert resp.json() == {"error": "Search query is required"}

    def test_returns_tracks(self, client: TestClient) -> None:
        resp = client.get("/api/search", params={"q": "neon"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["query"] == "neon"
        assert data["count"] == 1
        assert data["tracks"][0]["name"] == "Neon Rush"
        assert data["source"] == "fixtures"

    def test_catalog_failure_is_500_with_message(self, failing_client: TestClient) -> None:
        resp = failing_client.get("/api/search", params={"q": "neon"})

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Failed to search tracks from Spotify",
            "message": "Token request failed: 400 invalid_client",
        }


class TestRecommendations:
    def test_mood_without_user(self, client: TestClient) -> None:
        resp = client.get("/api/recommendations", params={"mood": "energetic"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["appliedPreferences"] == {
            "seed_genres": ["pop", "rock", "hip-hop"],
            "target_energy": 0.9,
            "target_danceability": 0.8,
        }
        assert data["count"] == len(data["recommendations"]) > 0
        assert data["source"] == "fixtures"

    def test_explicit_energy_beats_mood(self, client: TestClient) -> None:
        resp = client.get("/api/recommendations", params={"mood": "happy", "energy_level": "0.1"})

        applied = resp.json()["appliedPreferences"]
        assert applied["target_valence"] == 0.8
        assert applied["target_energy"] == 0.1

    def test_seed_lists_from_query(self, client: TestClient, catalog: _RecordingCatalog) -> None:
        client.get("/api/recommendations", params={"seed_artists": "a1,a2", "dance_level": "0.7"})

        seed = catalog.seeds[-1]
        assert seed.seed_artists == ["a1", "a2"]
        assert seed.seed_genres is None
        assert seed.target_danceability == 0.7

    def test_invalid_number_is_400(self, client: TestClient) -> None:
        resp = client.get("/api/recommendations", params={"energy_level": "loud"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request"
        assert "energy_level" in resp.json()["message"]

    def test_user_preferences_are_applied(self, client: TestClient) -> None:
        user = _create_user(client, favoriteGenres=["jazz", "soul", "funk", "disco"])
        client.put(
            f"/api/users/{user['id']}/preferences",
            json={"energy": 0.2, "danceability": 0.3, "valence": 0.4},
        )

        resp = client.get(
            "/api/recommendations",
            params={"user_id": user["id"], "mood": "happy", "energy_level": "0.9"},
        )

        assert resp.json()["appliedPreferences"] == {
            "seed_genres": ["jazz", "soul", "funk"],
            "target_energy": 0.2,
            "target_danceability": 0.3,
            "target_valence": 0.4,
        }

    def test_unknown_user_still_recommends(self, client: TestClient) -> None:
        resp = client.get("/api/recommendations", params={"user_id": "ghost", "mood": "sad"})

        assert resp.status_code == 200
        assert resp.json()["appliedPreferences"]["target_valence"] == 0.2

    def test_mood_route_matches_query_route(self, client: TestClient) -> None:
        user = _create_user(client)

        via_path = client.get("/api/recommendations/mood/chill", params={"user_id": user["id"]}).json()
        via_query = client.get("/api/recommendations", params={"mood": "chill", "user_id": user["id"]}).json()

        assert via_path == via_query

    def test_catalog_timeout_is_500(self, failing_client: TestClient) -> None:
        resp = failing_client.get("/api/recommendations/mood/happy")

        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to get mood recommendations"
        assert "timeout" in resp.json()["message"]

    def test_trending(self, client: TestClient, catalog: _RecordingCatalog) -> None:
        resp = client.get("/api/trending")

        assert resp.status_code == 200
        assert resp.json()["count"] > 0
        assert catalog.seeds[-1].target_popularity == 80

    def test_trending_failure(self, failing_client: TestClient) -> None:
        resp = failing_client.get("/api/trending")

        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to get trending tracks from Spotify"


class TestUsers:
    def test_create_then_fetch_existing(self, client: TestClient) -> None:
        resp = client.post("/api/users", json={"name": "Ada", "email": "ada@example.com"})
        assert resp.status_code == 201
        user = resp.json()["user"]
        assert user["favoriteGenres"] == ["pop", "rock"]
        assert user["preferences"] == {"energy": 0.5, "danceability": 0.5, "valence": 0.5}

        again = client.post("/api/users", json={"name": "Other", "email": "ada@example.com"})
        assert again.status_code == 200
        assert again.json()["user"]["id"] == user["id"]

    def test_create_requires_email(self, client: TestClient) -> None:
        resp = client.post("/api/users", json={"name": "Ada"})

        assert resp.status_code == 400
        assert resp.json() == {"error": "email is required"}

    def test_get_user(self, client: TestClient) -> None:
        user = _create_user(client)

        resp = client.get(f"/api/users/{user['id']}")

        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "ada@example.com"

    def test_unknown_user_is_404(self, client: TestClient) -> None:
        for method, url in (
            ("GET", "/api/users/ghost"),
            ("PUT", "/api/users/ghost/preferences"),
            ("GET", "/api/users/ghost/favorites"),
            ("DELETE", "/api/users/ghost/favorites/t1"),
        ):
            resp = client.request(method, url, json={} if method == "PUT" else None)
            assert resp.status_code == 404, url
            assert resp.json() == {"error": "User not found"}

    def test_update_preferences_clamps(self, client: TestClient) -> None:
        user = _create_user(client)

        resp = client.put(
            f"/api/users/{user['id']}/preferences",
            json={"energy": 1.5, "danceability": -1, "favoriteGenres": ["house"]},
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "message": "Preferences updated",
            "preferences": {"energy": 1.0, "danceability": 0.0, "valence": 0.5},
            "favoriteGenres": ["house"],
        }


class TestFavorites:
    TRACK = {
        "trackId": "fx-neon",
        "name": "Neon Rush",
        "artist": "Circuit Kids",
        "album": "Overdrive",
        "imageUrl": "https://img.example/neon.jpg",
        "previewUrl": None,
    }

    def test_add_list_remove(self, client: TestClient) -> None:
        user = _create_user(client)
        base = f"/api/users/{user['id']}/favorites"

        added = client.post(base, json=self.TRACK)
        assert added.status_code == 200
        assert added.json()["message"] == "Track added to favorites"
        assert [f["trackId"] for f in added.json()["favorites"]] == ["fx-neon"]

        listed = client.get(base).json()["favorites"]
        assert listed[0]["imageUrl"] == "https://img.example/neon.jpg"

        removed = client.delete(f"{base}/fx-neon")
        assert removed.status_code == 200
        assert removed.json() == {"message": "Track removed from favorites", "favorites": []}

    def test_duplicate_is_400_and_set_unchanged(self, client: TestClient) -> None:
        user = _create_user(client)
        base = f"/api/users/{user['id']}/favorites"
        client.post(base, json=self.TRACK)

        dup = client.post(base, json=dict(self.TRACK, name="Renamed"))

        assert dup.status_code == 400
        assert dup.json() == {"error": "Track already in favorites"}
        favorites = client.get(base).json()["favorites"]
        assert [(f["trackId"], f["name"]) for f in favorites] == [("fx-neon", "Neon Rush")]

    def test_remove_absent_track_succeeds(self, client: TestClient) -> None:
        user = _create_user(client)
        base = f"/api/users/{user['id']}/favorites"
        client.post(base, json=self.TRACK)

        resp = client.delete(f"{base}/not-saved")

        assert resp.status_code == 200
        assert [f["trackId"] for f in resp.json()["favorites"]] == ["fx-neon"]

    def test_missing_track_id_is_400(self, client: TestClient) -> None:
        user = _create_user(client)

        resp = client.post(f"/api/users/{user['id']}/favorites", json={"name": "No id"})

        assert resp.status_code == 400


def test_search_over_rate_limit_is_throttled(client: TestClient) -> None:
    """
    The default budget is 60 requests per minute per client address.
    """
    statuses = {client.get("/api/search", params={"q": "rain"}).status_code for _ in range(65)}

    assert statuses == {200, 429}


class TestStoreOutage:
    """Recommendations keep working while the profile database is down."""

    @pytest.fixture
    def store_calls(self, catalog: _RecordingCatalog) -> List[str]:
        calls: List[str] = []

        def unreachable_store():
            calls.append("get_store")
            raise ServerSelectionTimeoutError("127.0.0.1:1: [Errno 111] Connection refused")

        app.dependency_overrides[api.get_catalog] = lambda: catalog
        app.dependency_overrides[api.get_store] = unreachable_store
        return calls

    def test_anonymous_requests_never_build_the_store(self, store_calls: List[str]) -> None:
        client = TestClient(app)

        by_query = client.get("/api/recommendations", params={"mood": "happy"})
        by_path = client.get("/api/recommendations/mood/chill")

        assert by_query.status_code == 200
        assert by_query.json()["appliedPreferences"]["target_valence"] == 0.8
        assert by_path.status_code == 200
        assert store_calls == []

    def test_user_request_skips_personalization(self, store_calls: List[str]) -> None:
        client = TestClient(app)

        resp = client.get(
            "/api/recommendations/mood/sad", params={"user_id": "64b7f0c2a1b2c3d4e5f60718"}
        )

        assert resp.status_code == 200
        assert resp.json()["appliedPreferences"]["target_valence"] == 0.2
        assert store_calls == ["get_store"]


def test_unexpected_error_is_500_and_logged_with_traceback(caplog) -> None:
    class _BuggyCatalog(FixtureCatalogClient):
        def recommend(self, seed, *, limit=20):
            raise RuntimeError("fixture index corrupted")

    app.dependency_overrides[api.get_catalog] = lambda: _BuggyCatalog()
    client = TestClient(app, raise_server_exceptions=False)

    with caplog.at_level(logging.ERROR, logger="groovefinder.api"):
        resp = client.get("/api/trending")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "message": "fixture index corrupted"}
    records = [r for r in caplog.records if r.getMessage() == "Unhandled error on GET /api/trending"]
    assert records
    assert records[0].exc_info[0] is RuntimeError
    assert "Traceback" in caplog.text
    assert "NoneType: None" not in caplog.text
