"""
Circuit breaker for async calls to PokeAPI.

When the API keeps failing, the breaker opens and further calls fail fast
with `CircuitBreakerError` instead of piling up timeouts. After
`recovery_timeout` seconds it lets a probe through (half-open) and closes
again once `success_threshold` probes succeed.

States:
- CLOSED: Normal operation, requests pass through.
- OPEN: Service unhealthy, requests fail immediately.
- HALF_OPEN: Probing recovery, one failure reopens the circuit.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from utils.errors import ServiceUnavailableError

logger = logging.getLogger("pokedex.circuit_breaker")


class CircuitState(Enum):
    """Enumeration of circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(ServiceUnavailableError):
    """Raised when the circuit is open and the call was not attempted."""


class CircuitBreaker:
    """
    Async circuit breaker.

    Only exceptions listed in `expected_exceptions` count as failures; a 404
    or a validation problem says nothing about the health of the service and
    passes straight through without touching the counters.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 2,
        expected_exceptions: tuple = (Exception,),
        name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening the circuit.
            recovery_timeout: Seconds to stay OPEN before probing recovery.
            success_threshold: Consecutive HALF_OPEN successes needed to close.
            expected_exceptions: Exception types that count as failures.
            name: Name used in logs and stats.
            clock: Monotonic time source, replaceable in tests.
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.expected_exceptions = expected_exceptions
        self.name = name or "circuit_breaker"
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._lock = asyncio.Lock()

        logger.debug(
            f"Circuit breaker '{self.name}' initialized",
            extra={
                "breaker_name": self.name,
                "failure_threshold": failure_threshold,
                "recovery_timeout": recovery_timeout,
            },
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute `func` under breaker protection.

        Args:
            func: The async function to execute.
            *args: Positional arguments for func.
            **kwargs: Keyword arguments for func.

        Returns:
            Whatever func returns.

        Raises:
            CircuitBreakerError: If the circuit is OPEN.
            Exception: Anything func raises, re-raised unchanged.
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    logger.info(
                        f"Circuit breaker '{self.name}' entering half-open state",
                        extra={"breaker_name": self.name},
                    )
                    self._state = CircuitState.HALF_OPEN
                    self._success_count = 0
                else:
                    raise CircuitBreakerError()

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            await self._on_failure()
            raise

        await self._on_success()
        return result

    async def _on_success(self) -> None:
        async with self._lock:
            self._failure_count = 0

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    logger.info(
                        f"Circuit breaker '{self.name}' closing after recovery",
                        extra={"breaker_name": self.name},
                    )
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                logger.error(
                    f"Circuit breaker '{self.name}' failed during recovery, reopening",
                    extra={"breaker_name": self.name},
                )
                self._state = CircuitState.OPEN
                self._success_count = 0

            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                logger.error(
                    f"Circuit breaker '{self.name}' opening due to failures",
                    extra={
                        "breaker_name": self.name,
                        "failure_count": self._failure_count,
                    },
                )
                self._state = CircuitState.OPEN

    def _should_attempt_reset(self) -> bool:
        if self._last_failure_time is None:
            return True
        return (self._clock() - self._last_failure_time) >= self.recovery_timeout

    def get_stats(self) -> dict:
        """Current state, counters and configuration."""
        return {
            "breaker_name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }

    async def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        async with self._lock:
            logger.info(
                f"Circuit breaker '{self.name}' manually reset",
                extra={"breaker_name": self.name},
            )
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
