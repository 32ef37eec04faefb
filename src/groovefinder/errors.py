"""
Exception taxonomy shared by the catalog, the profile store and the API layer.
"""

from __future__ import annotations

from typing import Optional


class GrooveFinderError(Exception):
    """Base exception for GrooveFinder."""


class ValidationError(GrooveFinderError):
    """Missing, empty or otherwise invalid input."""


class NotFoundError(GrooveFinderError):
    """No user profile exists for the requested id."""


class CatalogError(GrooveFinderError):
    """Base for failures talking to the music catalog."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(CatalogError):
    """Client-credentials exchange failed."""


class UpstreamError(CatalogError):
    """Transport failure, non-2xx status or malformed catalog response."""


class CatalogTimeoutError(CatalogError):
    """An outbound call exceeded its configured time bound."""


__all__ = [
    "GrooveFinderError",
    "ValidationError",
    "NotFoundError",
    "CatalogError",
    "AuthError",
    "UpstreamError",
    "CatalogTimeoutError",
]
