"""
Client-credentials token cache for the Spotify Web API.

One cache object owns one token slot. Callers share the object (the live
catalog client holds a reference to it); the slot is replaced as a whole
whenever a new token is issued.
"""

from __future__ import annotations

import base64
import logging
import threading
from dataclasses import dataclass
from time import time
from typing import Callable, Optional

import httpx

from .config import SpotifyConfig
from .errors import AuthError, CatalogTimeoutError

logger = logging.getLogger(__name__)

# Tokens are treated as expired this many seconds before Spotify says so.
REFRESH_MARGIN_SECONDS = 60
DEFAULT_TOKEN_LIFETIME = 3600


@dataclass(frozen=True)
class BearerToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class CredentialCache:
    """
    Holds a single bearer token and refreshes it via the client-credentials
    grant when it is missing or expired.

    Refreshes are serialized: a caller that waited on the lock re-checks the
    slot first, so concurrent requests during expiry trigger one exchange.
    """

    def __init__(
        self,
        cfg: SpotifyConfig,
        *,
        http: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time,
    ) -> None:
        self._cfg = cfg
        self._http = http if http is not None else httpx.Client(timeout=cfg.token_timeout)
        self._clock = clock
        self._token: Optional[BearerToken] = None
        self._lock = threading.Lock()

    @property
    def token(self) -> Optional[BearerToken]:
        return self._token

    def get_token(self) -> BearerToken:
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            logger.debug("Using cached Spotify access token")
            return token

        with self._lock:
            token = self._token
            if token is not None and token.is_valid(self._clock()):
                logger.debug("Token refreshed by a concurrent caller, reusing it")
                return token
            token = self._exchange()
            self._token = token
            return token

    def invalidate(self) -> None:
        logger.info("Discarding cached Spotify access token")
        self._token = None

    def _exchange(self) -> BearerToken:
        if not self._cfg.has_credentials:
            logger.error("Spotify credentials missing: client_id or client_secret not set")
            raise AuthError(
                "Spotify client ID/secret are missing. "
                "Set GROOVEFINDER_SPOTIFY_CLIENT_ID and GROOVEFINDER_SPOTIFY_CLIENT_SECRET."
            )

        logger.info("Requesting new Spotify access token (client credentials)")
        auth_header = base64.b64encode(
            f"{self._cfg.client_id}:{self._cfg.client_secret}".encode("utf-8")
        ).decode("utf-8")

        try:
            resp = self._http.post(
                self._cfg.token_url,
                data={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {auth_header}"},
                timeout=self._cfg.token_timeout,
            )
        except httpx.TimeoutException as exc:
            logger.error(f"Spotify token request timed out after {self._cfg.token_timeout}s")
            raise CatalogTimeoutError(
                f"Token request timed out after {self._cfg.token_timeout}s"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error(f"Failed to contact Spotify token endpoint: {exc}")
            raise AuthError(f"Failed to contact Spotify token endpoint: {exc}") from exc

        if resp.status_code != 200:
            logger.error(f"Spotify auth failed: {resp.status_code} {resp.text}")
            raise AuthError(
                f"Token request failed: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            logger.error(f"Spotify token response is not JSON: {resp.text[:200]!r}")
            raise AuthError("Spotify token response is not valid JSON.", status_code=200) from exc

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            logger.error("Spotify token response missing access_token")
            raise AuthError("No access token received.", status_code=200)

        expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        token = BearerToken(
            value=access_token,
            expires_at=self._clock() + expires_in - REFRESH_MARGIN_SECONDS,
        )
        logger.info(f"Spotify access token obtained (expires in {expires_in}s)")
        return token

    def close(self) -> None:
        logger.debug("Closing CredentialCache HTTP connection")
        self._http.close()


__all__ = ["BearerToken", "CredentialCache", "REFRESH_MARGIN_SECONDS"]
