import logging
import os
from pathlib import Path

from dotenv import load_dotenv

"""
Configuration settings for the Pokedex data layer.

This module loads environment variables, defines constants for the client's
operation, and validates the configuration to ensure stability. It covers
the PokeAPI endpoint, cache sizing, retry behaviour, connectivity polling
and search tuning.
"""

load_dotenv()

logger = logging.getLogger("pokedex.config")


def _env_int(name: str, default: int) -> int:
    """Read an integer setting, failing loudly on garbage."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"❌ {name} must be a valid integer (got {raw!r})!\n\n"
            f"Fix the value in your .env file or unset it to use the default ({default})."
        )


def _env_float(name: str, default: float) -> float:
    """Read a float setting, failing loudly on garbage."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"❌ {name} must be a number (got {raw!r})!\n\n"
            f"Fix the value in your .env file or unset it to use the default ({default})."
        )


# Data Storage
DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Database Configuration
# Format: scheme://path_or_host
# Defaults to a local SQLite file if not specified in environment
DB_CONNECTION_STRING = os.getenv(
    "DB_CONNECTION_STRING", f"sqlite:///{DATA_DIR / 'pokedex.db'}"
)

# API Configuration
POKEAPI_URL = os.getenv("POKEAPI_URL", "https://pokeapi.co/api/v2").rstrip("/")
SPRITES_BASE_URL = "https://raw.githubusercontent.com/PokeAPI/sprites/master"
USER_AGENT = "Pokedex-Client/1.0"

# Pagination
PAGE_SIZE = _env_int("PAGE_SIZE", 20)
MAX_PAGE_SIZE = 100  # PokeAPI accepts larger, but the list screen never asked for more

# Detail memoization (in-process)
DETAIL_CACHE_TTL = _env_float("DETAIL_CACHE_TTL", 24 * 60 * 60)
DETAIL_CACHE_MAX_ENTRIES = _env_int("DETAIL_CACHE_MAX_ENTRIES", 100)

# Local response cache (SQLite), also the offline fallback
CACHE_TIMEOUT = _env_float("CACHE_TIMEOUT", 24 * 60 * 60)
MAX_CACHE_SIZE = _env_int("MAX_CACHE_SIZE", 1000)
CACHE_CLEANUP_INTERVAL = _env_float("CACHE_CLEANUP_INTERVAL", 300)

# API Rate Limiting (for the external API, not per user)
MAX_CONCURRENT_API_REQUESTS = _env_int("MAX_CONCURRENT_API_REQUESTS", 5)
API_REQUEST_TIMEOUT = _env_float("API_REQUEST_TIMEOUT", 30)

# Retry Configuration (HTTP 429 only)
MAX_RETRY_ATTEMPTS = _env_int("MAX_RETRY_ATTEMPTS", 3)
RETRY_BASE_DELAY = _env_float("RETRY_BASE_DELAY", 1)
RETRY_MAX_DELAY = _env_float("RETRY_MAX_DELAY", 10)

# Connectivity
CONNECTIVITY_CHECK_INTERVAL = _env_float("CONNECTIVITY_CHECK_INTERVAL", 15)
CONNECTIVITY_TIMEOUT = _env_float("CONNECTIVITY_TIMEOUT", 5)

# Search
SEARCH_DEBOUNCE_SECONDS = _env_float("SEARCH_DEBOUNCE_SECONDS", 0.3)
SEARCH_MIN_RESULTS = _env_int("SEARCH_MIN_RESULTS", 5)
SEARCH_MAX_AUTO_PAGES = _env_int("SEARCH_MAX_AUTO_PAGES", 3)

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "pokedex.log")

# Default user settings mirrored into the document store
DEFAULT_THEME = "light"
DEFAULT_LANGUAGE = "en"


def validate_settings():
    """
    Validate all configuration settings to catch errors at startup.

    Raises:
        ValueError: If any configuration value is invalid (e.g., negative
            timeouts, a page size the API would reject).
    """
    if not POKEAPI_URL.startswith(("http://", "https://")):
        raise ValueError("POKEAPI_URL must be an http(s) URL")

    # Validate pagination
    if PAGE_SIZE < 1 or PAGE_SIZE > MAX_PAGE_SIZE:
        raise ValueError(f"PAGE_SIZE must be between 1 and {MAX_PAGE_SIZE}")

    # Validate cache settings
    if DETAIL_CACHE_TTL <= 0:
        raise ValueError("DETAIL_CACHE_TTL must be positive")

    if DETAIL_CACHE_MAX_ENTRIES < 1:
        raise ValueError("DETAIL_CACHE_MAX_ENTRIES must be at least 1")

    if CACHE_TIMEOUT <= 0:
        raise ValueError("CACHE_TIMEOUT must be positive")

    if MAX_CACHE_SIZE < 1:
        raise ValueError("MAX_CACHE_SIZE must be at least 1")

    if CACHE_CLEANUP_INTERVAL <= 0:
        raise ValueError("CACHE_CLEANUP_INTERVAL must be positive")

    # Validate API settings
    if MAX_CONCURRENT_API_REQUESTS < 1:
        raise ValueError("MAX_CONCURRENT_API_REQUESTS must be at least 1")

    if API_REQUEST_TIMEOUT <= 0:
        raise ValueError("API_REQUEST_TIMEOUT must be positive")

    # Validate retry settings
    if MAX_RETRY_ATTEMPTS < 1:
        raise ValueError("MAX_RETRY_ATTEMPTS must be at least 1")

    if RETRY_BASE_DELAY < 0:
        raise ValueError("RETRY_BASE_DELAY must be non-negative")

    if RETRY_MAX_DELAY < RETRY_BASE_DELAY:
        raise ValueError("RETRY_MAX_DELAY must be >= RETRY_BASE_DELAY")

    # Validate connectivity settings
    if CONNECTIVITY_CHECK_INTERVAL <= 0:
        raise ValueError("CONNECTIVITY_CHECK_INTERVAL must be positive")

    if CONNECTIVITY_TIMEOUT <= 0:
        raise ValueError("CONNECTIVITY_TIMEOUT must be positive")

    # Validate search settings
    if SEARCH_DEBOUNCE_SECONDS < 0:
        raise ValueError("SEARCH_DEBOUNCE_SECONDS must be non-negative")

    if SEARCH_MIN_RESULTS < 0:
        raise ValueError("SEARCH_MIN_RESULTS must be non-negative")

    if SEARCH_MAX_AUTO_PAGES < 0:
        raise ValueError("SEARCH_MAX_AUTO_PAGES must be non-negative")

    logger.info("✅ Configuration validation completed successfully")
