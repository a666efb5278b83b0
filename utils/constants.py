"""
This module contains static constant definitions used throughout the application,
including:
- PokeAPI resource paths and artwork locations
- API configuration (timeouts, concurrency limits)
- Regular expressions for input validation
- Document store collection names
- User-facing messages (errors, status updates)
"""

import re

# PokeAPI Resource Paths
POKEMON_PATH = "/pokemon"
SPECIES_PATH = "/pokemon-species"
EVOLUTION_CHAIN_PATH = "/evolution-chain"
ABILITY_PATH = "/ability"
MOVE_PATH = "/move"
TYPE_PATH = "/type"

# Sprite locations under SPRITES_BASE_URL
DEFAULT_SPRITE_PATH = "/sprites/pokemon"
SHINY_SPRITE_PATH = "/sprites/pokemon/shiny"
OFFICIAL_ARTWORK_PATH = "/sprites/pokemon/other/official-artwork"

# Global API Rate Limiting
# Maximum number of concurrent API calls permitted across the whole process.
# PokeAPI is a free service and bans abusive clients.
GLOBAL_API_MAX_CONCURRENT = 10
API_STARTUP_VALIDATION_TIMEOUT = 10  # Seconds

# Connection pool settings
CONNECTION_POOL_LIMIT = 100  # Total connections across all hosts
CONNECTION_POOL_LIMIT_PER_HOST = 30  # Max connections per host
CONNECTION_KEEPALIVE_TIMEOUT = 30  # Seconds to keep idle connections

# Cache Configuration
CACHE_KEY_HASH_ALGORITHM = "md5"  # Algorithm for cache key hashing
CACHE_EVICTION_FRACTION = 10  # Evict max_size // N rows when the table is full

# Document Store Collections
USERS_COLLECTION = "users"
SETTINGS_COLLECTION = "settings"
FAVORITES_COLLECTION_TEMPLATE = "users/{user_id}/favorites"

# Input Validation
MAX_POKEMON_NAME_LENGTH = 50
MAX_SEARCH_QUERY_LENGTH = 50
MAX_NOTE_LENGTH = 500
MAX_NICKNAME_LENGTH = 30
MAX_USER_ID_LENGTH = 128
POKEMON_NAME_PATTERN = re.compile(r"^[a-z0-9\-]+$")
USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")
DOCUMENT_FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
SUPPORTED_THEMES = ("light", "dark", "system")
SUPPORTED_LANGUAGES = ("en", "id", "ja", "de", "fr", "es")

# Text cleanup for flavor text
FLAVOR_TEXT_WHITESPACE = re.compile(r"[\n\f\r\t ]+")

# Error Messages
ERROR_POKEMON_NOT_FOUND = "Pokemon not found. Check spelling and try again."
ERROR_API_UNAVAILABLE = (
    "API service is temporarily unavailable. Please try again later."
)
ERROR_NETWORK_ERROR = "Network error occurred. Please check your connection."
ERROR_NO_CONNECTION = "No internet connection and no saved copy is available."
ERROR_INVALID_INPUT = "Invalid input provided."
ERROR_RATE_LIMITED = "Too many requests to the Pokemon API. Please wait a moment."
ERROR_DECODE = "Received unexpected data from the Pokemon API."
ERROR_CANCELLED = "Request was cancelled."
ERROR_FAVORITE_EXISTS = "Pokemon is already in your favorites."
ERROR_FAVORITE_NOT_FOUND = "Favorite not found."
ERROR_PROFILE_NOT_FOUND = "User profile not found."
ERROR_UNKNOWN = "An unknown error occurred."
