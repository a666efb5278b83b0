"""
Error taxonomy for the Pokedex data layer.

Every failure surfaced to callers is a `PokedexError` carrying an `ErrorKind`
and a human-readable message suitable for an error dialog. Service code
raises the specific subclass; `describe_error` turns any exception into the
string a UI should show.
"""

import asyncio
from enum import Enum
from typing import Optional

from utils.constants import (
    ERROR_API_UNAVAILABLE,
    ERROR_CANCELLED,
    ERROR_DECODE,
    ERROR_FAVORITE_EXISTS,
    ERROR_FAVORITE_NOT_FOUND,
    ERROR_INVALID_INPUT,
    ERROR_NETWORK_ERROR,
    ERROR_NO_CONNECTION,
    ERROR_POKEMON_NOT_FOUND,
    ERROR_RATE_LIMITED,
    ERROR_UNKNOWN,
)


class ErrorKind(Enum):
    """Classification of failures, independent of which service raised them."""

    NETWORK = "network"
    NO_CONNECTION = "no_connection"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    INVALID_INPUT = "invalid_input"
    ALREADY_EXISTS = "already_exists"
    DECODE = "decode"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


_DEFAULT_MESSAGES = {
    ErrorKind.NETWORK: ERROR_NETWORK_ERROR,
    ErrorKind.NO_CONNECTION: ERROR_NO_CONNECTION,
    ErrorKind.NOT_FOUND: ERROR_POKEMON_NOT_FOUND,
    ErrorKind.RATE_LIMITED: ERROR_RATE_LIMITED,
    ErrorKind.UNAVAILABLE: ERROR_API_UNAVAILABLE,
    ErrorKind.INVALID_INPUT: ERROR_INVALID_INPUT,
    ErrorKind.ALREADY_EXISTS: ERROR_FAVORITE_EXISTS,
    ErrorKind.DECODE: ERROR_DECODE,
    ErrorKind.CANCELLED: ERROR_CANCELLED,
    ErrorKind.UNKNOWN: ERROR_UNKNOWN,
}


class PokedexError(Exception):
    """
    Base class for all errors raised by the data layer.

    Attributes:
        kind: The error classification.
        message: Human-readable message for display.
    """

    kind = ErrorKind.UNKNOWN

    def __init__(self, message: Optional[str] = None, *, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[self.kind]
        super().__init__(self.message)


class NetworkError(PokedexError):
    """Transport-level failure (DNS, connection reset, timeout)."""

    kind = ErrorKind.NETWORK


class OfflineError(PokedexError):
    """The device is offline and no cached copy can serve the request."""

    kind = ErrorKind.NO_CONNECTION


class PokeAPIError(PokedexError):
    """Non-success HTTP response from PokeAPI."""

    kind = ErrorKind.UNKNOWN

    def __init__(self, message: Optional[str] = None, *, status: Optional[int] = None, url: str = ""):
        self.status = status
        self.url = url
        super().__init__(message)


class NotFoundError(PokeAPIError):
    kind = ErrorKind.NOT_FOUND


class RateLimitedError(PokeAPIError):
    """HTTP 429. `retry_after` is the server hint in seconds, if any."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status: Optional[int] = 429,
        url: str = "",
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, status=status, url=url)


class ServerError(PokeAPIError):
    kind = ErrorKind.UNAVAILABLE


class ServiceUnavailableError(PokedexError):
    """Raised when a circuit breaker is open and refusing requests."""

    kind = ErrorKind.UNAVAILABLE


class DecodeError(PokedexError):
    """A payload did not match the expected schema."""

    kind = ErrorKind.DECODE


class RequestCancelledError(PokedexError):
    kind = ErrorKind.CANCELLED


class ValidationError(PokedexError):
    """Caller supplied an invalid argument."""

    kind = ErrorKind.INVALID_INPUT


class FavoriteError(PokedexError):
    """Favorites collection conflict (duplicate add, missing remove)."""

    @classmethod
    def already_exists(cls) -> "FavoriteError":
        return cls(ERROR_FAVORITE_EXISTS, kind=ErrorKind.ALREADY_EXISTS)

    @classmethod
    def not_found(cls) -> "FavoriteError":
        return cls(ERROR_FAVORITE_NOT_FOUND, kind=ErrorKind.NOT_FOUND)


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify any exception into an `ErrorKind`.

    Args:
        error: The exception raised by a data-layer call.

    Returns:
        The matching ErrorKind, UNKNOWN for foreign exceptions.
    """
    if isinstance(error, PokedexError):
        return error.kind
    if isinstance(error, asyncio.CancelledError):
        return ErrorKind.CANCELLED
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def describe_error(error: BaseException) -> str:
    """
    Translate an exception into the message a UI should display.

    Args:
        error: The exception to describe.

    Returns:
        Human-readable message.
    """
    if isinstance(error, PokedexError):
        return error.message
    return _DEFAULT_MESSAGES[classify_error(error)]
