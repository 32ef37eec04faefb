"""
Configuration loading for GrooveFinder.

Everything is read from environment variables (optionally via a .env file).
Spotify credentials are not validated here: a missing client ID/secret only
surfaces when the first catalog call needs a token.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from platformdirs import user_config_dir
from dotenv import load_dotenv
import os
import logging
from logging.handlers import RotatingFileHandler


APP_NAME = "groovefinder"
APP_AUTHOR = "GrooveFinder"

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"

CATALOG_BACKENDS = ("live", "fixture")
STORE_BACKENDS = ("memory", "mongo")

logger = logging.getLogger(__name__)


@dataclass
class SpotifyConfig:
    client_id: str
    client_secret: str
    token_url: str = SPOTIFY_TOKEN_URL
    api_base_url: str = SPOTIFY_API_BASE_URL
    market: str = "US"
    token_timeout: float = 15.0  # seconds, client-credentials exchange
    request_timeout: float = 20.0  # seconds, search / recommendations / lookups

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass
class StoreConfig:
    backend: str = "memory"
    mongodb_uri: str = "mongodb://localhost:27017"
    database: str = "groovefinder"


@dataclass
class AppConfig:
    spotify: SpotifyConfig
    store: StoreConfig = field(default_factory=StoreConfig)
    catalog_backend: str = "live"
    static_dir: Optional[Path] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    rate_limit: str = "60/minute"
    rate_limit_enabled: bool = True


def get_default_config_dir() -> Path:
    """
    Returns the platform-appropriate directory for persistent GrooveFinder config.
    """
    return Path(user_config_dir(APP_NAME, APP_AUTHOR))


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring non-positive {name}={raw!r}, using {default}")
        return default
    return value


def _env_choice(name: str, default: str, choices: tuple) -> str:
    value = os.getenv(name, default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)} (got {value!r})")
    return value


def load_config() -> AppConfig:
    """
    Load configuration from environment variables / .env file.
    """
    # Load from a .env file in the project root or current directory, if present.
    load_dotenv()

    spotify_cfg = SpotifyConfig(
        client_id=os.getenv("GROOVEFINDER_SPOTIFY_CLIENT_ID", ""),
        client_secret=os.getenv("GROOVEFINDER_SPOTIFY_CLIENT_SECRET", ""),
        token_url=os.getenv("GROOVEFINDER_SPOTIFY_TOKEN_URL", SPOTIFY_TOKEN_URL),
        api_base_url=os.getenv("GROOVEFINDER_SPOTIFY_API_BASE_URL", SPOTIFY_API_BASE_URL).rstrip("/"),
        market=os.getenv("GROOVEFINDER_SPOTIFY_MARKET", "US"),
        token_timeout=_env_float("GROOVEFINDER_SPOTIFY_TOKEN_TIMEOUT", 15.0),
        request_timeout=_env_float("GROOVEFINDER_SPOTIFY_REQUEST_TIMEOUT", 20.0),
    )

    store_cfg = StoreConfig(
        backend=_env_choice("GROOVEFINDER_STORE_BACKEND", "memory", STORE_BACKENDS),
        mongodb_uri=os.getenv("GROOVEFINDER_MONGODB_URI", "mongodb://localhost:27017"),
        database=os.getenv("GROOVEFINDER_MONGODB_DATABASE", "groovefinder"),
    )

    static_dir_raw = os.getenv("GROOVEFINDER_STATIC_DIR")
    origins_raw = os.getenv("GROOVEFINDER_CORS_ORIGINS", "*")

    return AppConfig(
        spotify=spotify_cfg,
        store=store_cfg,
        catalog_backend=_env_choice("GROOVEFINDER_CATALOG_BACKEND", "live", CATALOG_BACKENDS),
        static_dir=Path(static_dir_raw) if static_dir_raw else None,
        cors_origins=[o.strip() for o in origins_raw.split(",") if o.strip()] or ["*"],
        rate_limit=os.getenv("GROOVEFINDER_RATE_LIMIT", "60/minute"),
        rate_limit_enabled=_env_flag("GROOVEFINDER_RATE_LIMIT_ENABLED", True),
    )


def setup_logging() -> None:
    """
    Configure centralized logging for GrooveFinder using Python's built-in logging module.

    - Logs to <user config dir>/logs/groovefinder.log
    - Uses RotatingFileHandler with 10MB max size and 5 backup files
    - Logs to both file and console (console only if the log dir is not writable)
    - Default level: INFO (can be overridden via GROOVEFINDER_LOG_LEVEL env var)
    """
    log_level_str = os.getenv("GROOVEFINDER_LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_format = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(log_format, date_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_dir = get_default_config_dir() / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_dir / "groovefinder.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        logger.warning(f"File logging disabled, cannot write to {log_dir}: {exc}")
        return

    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


# Initialize logging when module is imported (after get_default_config_dir is defined)
setup_logging()

__all__ = [
    "AppConfig",
    "SpotifyConfig",
    "StoreConfig",
    "get_default_config_dir",
    "load_config",
    "setup_logging",
]
