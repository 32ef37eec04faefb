from __future__ import annotations

import pytest

from groovefinder import api
from groovefinder.profiles import MemoryProfileStore
from groovefinder.spotify import FixtureCatalogClient


@pytest.fixture(autouse=True)
def reset_api_state():
    """Reset rate limiter storage and dependency overrides between tests."""
    api.limiter.reset()
    yield
    api.app.dependency_overrides.clear()
    api.limiter.reset()


@pytest.fixture
def store() -> MemoryProfileStore:
    return MemoryProfileStore()


@pytest.fixture
def fixture_catalog() -> FixtureCatalogClient:
    return FixtureCatalogClient()
