"""
Input validation and sanitization functions.

This module ensures that caller input is well-formed before it reaches the
API client or the document store: Pokemon ids and names, page bounds, user
ids, free-text notes and settings values.

Validators return `(is_valid, error_message)` tuples, or
`(is_valid, error_message, normalized_value)` where normalization applies;
services turn a failed check into `ValidationError`.
"""

from typing import Any, Optional, Tuple, Union

from config.settings import MAX_PAGE_SIZE
from utils.constants import (
    MAX_NICKNAME_LENGTH,
    MAX_NOTE_LENGTH,
    MAX_POKEMON_NAME_LENGTH,
    MAX_SEARCH_QUERY_LENGTH,
    MAX_USER_ID_LENGTH,
    POKEMON_NAME_PATTERN,
    SUPPORTED_LANGUAGES,
    SUPPORTED_THEMES,
    USER_ID_PATTERN,
)
from utils.errors import ValidationError


def sanitize_input(text: str) -> str:
    """
    Sanitize user input by removing unexpected characters.

    Allowed characters are: alphanumeric, hyphens, underscores, and spaces.

    Args:
        text: Raw user input string.

    Returns:
        Sanitized string with special characters removed.
    """
    if not text:
        return ""

    text = text.strip()
    return "".join(c for c in text if c.isalnum() or c in "-_ ")


def sanitize_query(query: str) -> str:
    """Sanitized, lower-cased search query truncated to the maximum length."""
    return sanitize_input(query).lower()[:MAX_SEARCH_QUERY_LENGTH]


def validate_pokemon_id(pokemon_id: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate a Pokemon id: a positive integer (bools rejected).

    Returns:
        Tuple containing (is_valid, error_message).
    """
    if isinstance(pokemon_id, bool) or not isinstance(pokemon_id, int):
        return False, f"Pokemon id must be an integer, got {pokemon_id!r}."

    if pokemon_id <= 0:
        return False, f"Pokemon id must be positive, got {pokemon_id}."

    return True, None


def validate_resource_name(name: str) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate and normalize a PokeAPI resource name (move, type, ability).

    Spaces become hyphens and case is folded, so 'Thunder Punch' becomes
    'thunder-punch'.

    Returns:
        Tuple containing (is_valid, error_message, normalized_name).
    """
    if not name or not name.strip():
        return False, "Name cannot be empty.", None

    normalized = "-".join(name.strip().lower().split())

    if len(normalized) > MAX_POKEMON_NAME_LENGTH:
        return (
            False,
            f"Name is too long (max {MAX_POKEMON_NAME_LENGTH} characters).",
            None,
        )

    if not POKEMON_NAME_PATTERN.match(normalized):
        return (
            False,
            "Name contains invalid characters. Use only letters, numbers, hyphens, and spaces.",
            None,
        )

    return True, None, normalized


def validate_page(offset: Any, limit: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate pagination bounds: offset >= 0 and 1 <= limit <= MAX_PAGE_SIZE.

    Returns:
        Tuple containing (is_valid, error_message).
    """
    for label, value in (("offset", offset), ("limit", limit)):
        if isinstance(value, bool) or not isinstance(value, int):
            return False, f"Page {label} must be an integer, got {value!r}."

    if offset < 0:
        return False, f"Page offset cannot be negative, got {offset}."

    if not 1 <= limit <= MAX_PAGE_SIZE:
        return False, f"Page limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}."

    return True, None


def validate_user_id(user_id: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a user id used as a document path segment.

    Returns:
        Tuple containing (is_valid, error_message).
    """
    if not user_id:
        return False, "User id cannot be empty."

    if len(user_id) > MAX_USER_ID_LENGTH:
        return False, f"User id is too long (max {MAX_USER_ID_LENGTH} characters)."

    if not USER_ID_PATTERN.match(user_id):
        return False, "User id may only contain letters, numbers, hyphens and underscores."

    return True, None


def validate_note(note: Optional[str]) -> Tuple[bool, Optional[str]]:
    if note is not None and len(note) > MAX_NOTE_LENGTH:
        return False, f"Note is too long (max {MAX_NOTE_LENGTH} characters)."
    return True, None


def validate_nickname(nickname: Optional[str]) -> Tuple[bool, Optional[str]]:
    if nickname is not None and len(nickname) > MAX_NICKNAME_LENGTH:
        return False, f"Nickname is too long (max {MAX_NICKNAME_LENGTH} characters)."
    return True, None


def validate_theme(theme: str) -> Tuple[bool, Optional[str]]:
    if theme not in SUPPORTED_THEMES:
        return False, f"Invalid theme. Valid options: {', '.join(SUPPORTED_THEMES)}"
    return True, None


def validate_language(language: str) -> Tuple[bool, Optional[str]]:
    if language not in SUPPORTED_LANGUAGES:
        return False, f"Invalid language. Valid options: {', '.join(SUPPORTED_LANGUAGES)}"
    return True, None


def ensure_valid(result: Union[Tuple[bool, Optional[str]], Tuple[bool, Optional[str], Any]]) -> Any:
    """
    Raise `ValidationError` for a failed validator result.

    Returns:
        The normalized value for three-element results, otherwise None.
    """
    if not result[0]:
        raise ValidationError(result[1])
    return result[2] if len(result) == 3 else None
