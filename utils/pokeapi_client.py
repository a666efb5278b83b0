"""
API client module for PokeAPI.

Handles every HTTP interaction with PokeAPI. The client is a thin, read-only
JSON fetcher: it knows the resource paths, pools connections, bounds
concurrency, merges duplicate in-flight requests, trips a circuit breaker
when the service is sick, and translates HTTP/transport failures into the
error taxonomy in `utils.errors`. Decoding into models and caching happen a
layer up, in the services.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Union

import aiohttp

from config.settings import (
    API_REQUEST_TIMEOUT,
    CONNECTIVITY_TIMEOUT,
    MAX_CONCURRENT_API_REQUESTS,
    MAX_RETRY_ATTEMPTS,
    POKEAPI_URL,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
    USER_AGENT,
)
from utils.api_models import DeduplicationStats
from utils.cancellation import CancellationToken, run_with_token
from utils.circuit_breaker import CircuitBreaker
from utils.constants import (
    ABILITY_PATH,
    API_STARTUP_VALIDATION_TIMEOUT,
    CONNECTION_KEEPALIVE_TIMEOUT,
    CONNECTION_POOL_LIMIT,
    CONNECTION_POOL_LIMIT_PER_HOST,
    EVOLUTION_CHAIN_PATH,
    GLOBAL_API_MAX_CONCURRENT,
    MOVE_PATH,
    POKEMON_PATH,
    SPECIES_PATH,
    TYPE_PATH,
)
from utils.decorators import retry_on_rate_limit
from utils.errors import (
    DecodeError,
    NetworkError,
    NotFoundError,
    PokeAPIError,
    RateLimitedError,
    ServerError,
    ValidationError,
)

logger = logging.getLogger("pokedex.api")

JSON = Dict[str, Any]


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


async def read_response(resp: aiohttp.ClientResponse, url: str) -> JSON:
    """
    Map a PokeAPI response to its JSON body or to a typed error.

    Raises:
        NotFoundError: 404.
        RateLimitedError: 429, carrying the Retry-After hint.
        ServerError: Any 5xx.
        PokeAPIError: Any other non-200 status.
        DecodeError: 200 with a body that is not a JSON object.
    """
    if resp.status == 200:
        try:
            data = await resp.json(content_type=None)
        except ValueError as e:
            raise DecodeError(f"Response from {url} is not valid JSON") from e
        if not isinstance(data, dict):
            raise DecodeError(f"Expected a JSON object from {url}, got {type(data).__name__}")
        return data

    if resp.status == 404:
        logger.debug("Resource not found", extra={"url": url})
        raise NotFoundError(status=404, url=url)

    if resp.status == 429:
        retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
        logger.warning("PokeAPI rate limit hit", extra={"url": url, "retry_after": retry_after})
        raise RateLimitedError(url=url, retry_after=retry_after)

    if resp.status >= 500:
        logger.warning(f"PokeAPI server error {resp.status}", extra={"url": url})
        raise ServerError(status=resp.status, url=url)

    logger.warning(f"PokeAPI error {resp.status}", extra={"url": url})
    raise PokeAPIError(
        f"Unexpected response from the Pokemon API (HTTP {resp.status}).",
        status=resp.status,
        url=url,
    )


class PokeAPIClient:
    """
    Client for fetching raw resources from PokeAPI.

    Key Features:
    - **Connection Pooling**: Uses `aiohttp.TCPConnector` to reuse connections.
    - **Circuit Breaker**: Fails fast with `ServiceUnavailableError` while
      PokeAPI keeps failing with network errors or 5xx responses.
    - **Request Deduplication**: Merges simultaneous requests for the same URL
      into a single API call. The shared call is cancelled once every caller
      waiting on it has been cancelled.
    - **Rate Limiting**: A global and a per-client semaphore bound concurrency;
      HTTP 429 is retried with capped exponential backoff.
    """

    def __init__(
        self,
        base_url: str = POKEAPI_URL,
        max_concurrent: int = MAX_CONCURRENT_API_REQUESTS,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session: Optional[aiohttp.ClientSession] = None

        # Session creation lock to prevent race conditions during lazy loading
        self._session_lock = asyncio.Lock()

        self._global_rate_limiter = asyncio.Semaphore(GLOBAL_API_MAX_CONCURRENT)
        self._rate_limiter = asyncio.Semaphore(max_concurrent)

        self._breaker = breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60.0,
            success_threshold=2,
            expected_exceptions=(NetworkError, ServerError),
            name="pokeapi",
        )

        # In-flight requests keyed by URL, and how many callers await each
        self._pending_requests: Dict[str, asyncio.Task] = {}
        self._waiters: Dict[asyncio.Task, int] = {}

        self.requests_made = 0
        self.requests_deduplicated = 0

    # ==================== SESSION ====================

    async def get_session(self) -> aiohttp.ClientSession:
        """
        Get or create the aiohttp session with connection pooling configuration.

        Returns:
            Active aiohttp ClientSession.
        """
        async with self._session_lock:
            if self.session is None or self.session.closed:
                timeout = aiohttp.ClientTimeout(total=API_REQUEST_TIMEOUT)

                connector = aiohttp.TCPConnector(
                    limit=CONNECTION_POOL_LIMIT,
                    limit_per_host=CONNECTION_POOL_LIMIT_PER_HOST,
                    ttl_dns_cache=300,
                    keepalive_timeout=CONNECTION_KEEPALIVE_TIMEOUT,
                    force_close=False,
                    enable_cleanup_closed=True,
                )

                self.session = aiohttp.ClientSession(
                    timeout=timeout,
                    connector=connector,
                    headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                )

                logger.info(
                    "Created aiohttp session with connection pooling",
                    extra={
                        "total_limit": CONNECTION_POOL_LIMIT,
                        "per_host_limit": CONNECTION_POOL_LIMIT_PER_HOST,
                        "keepalive": CONNECTION_KEEPALIVE_TIMEOUT,
                    },
                )

        return self.session

    async def close(self) -> None:
        """Cancel in-flight requests and close the aiohttp session."""
        for task in list(self._pending_requests.values()):
            task.cancel()
        self._pending_requests.clear()
        self._waiters.clear()

        if self.session and not self.session.closed:
            await self.session.close()
            logger.info(
                "API client session closed",
                extra={
                    "requests_made": self.requests_made,
                    "requests_deduplicated": self.requests_deduplicated,
                },
            )
            logger.info("PokeAPI circuit breaker stats", extra=self._breaker.get_stats())

    # ==================== REQUEST PIPELINE ====================

    def resolve_url(self, path_or_url: str) -> str:
        """
        Turn an API path or an absolute resource URL into a request URL.

        Absolute URLs come from links inside API payloads and must point
        under the configured base URL.

        Raises:
            ValidationError: For an absolute URL on another host or path.
        """
        if path_or_url.startswith(("http://", "https://")):
            if not path_or_url.startswith(f"{self.base_url}/"):
                raise ValidationError(f"Refusing to fetch a URL outside PokeAPI: {path_or_url}")
            return path_or_url
        if not path_or_url.startswith("/"):
            path_or_url = f"/{path_or_url}"
        return f"{self.base_url}{path_or_url}"

    async def _deduplicate_request(self, key: str, fetch_func, *args, **kwargs) -> Any:
        """
        Deduplicate concurrent requests for the same resource.

        The first caller starts the request as its own task; later callers
        await the same task through `asyncio.shield`, so cancelling one caller
        does not cancel the request for the others. When the last waiting
        caller goes away, the request task is cancelled too.

        Args:
            key: Unique key identifying this request resource.
            fetch_func: Async function to call if no request is pending.
            *args: Arguments for fetch_func.
            **kwargs: Keyword arguments for fetch_func.

        Returns:
            Result from fetch_func or shared result from a pending request.
        """
        # No await between lookup and insert, so check-and-create is atomic
        task = self._pending_requests.get(key)
        if task is None or task.done():
            task = asyncio.create_task(fetch_func(*args, **kwargs))
            self._pending_requests[key] = task
            self._waiters[task] = 0
            task.add_done_callback(lambda t, k=key: self._forget_request(k, t))
            logger.debug(
                "Request deduplication: Starting new request",
                extra={"key": key[:80]},
            )
        else:
            self.requests_deduplicated += 1
            logger.debug(
                "Request deduplication: Joining existing request",
                extra={"key": key[:80]},
            )

        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        finally:
            remaining = self._waiters.get(task, 0) - 1
            if remaining > 0:
                self._waiters[task] = remaining
            else:
                self._waiters.pop(task, None)
                if not task.done():
                    logger.debug(
                        "Request deduplication: All callers cancelled, abandoning request",
                        extra={"key": key[:80]},
                    )
                    task.cancel()
                    # Later callers must start a fresh request, not join this one
                    if self._pending_requests.get(key) is task:
                        del self._pending_requests[key]

    def _forget_request(self, key: str, task: asyncio.Task) -> None:
        if self._pending_requests.get(key) is task:
            del self._pending_requests[key]
        self._waiters.pop(task, None)
        # Retrieve the exception so an abandoned request never logs as unretrieved
        if not task.cancelled():
            task.exception()

    @retry_on_rate_limit(
        max_retries=MAX_RETRY_ATTEMPTS,
        base_delay=RETRY_BASE_DELAY,
        max_delay=RETRY_MAX_DELAY,
    )
    async def _fetch_json(self, url: str) -> JSON:
        """Breaker-protected fetch, retried on HTTP 429 only."""
        return await self._breaker.call(self._request_json, url)

    async def _request_json(self, url: str) -> JSON:
        """
        Perform one GET request.

        Raises:
            NetworkError: Connection failures and timeouts.
            PokeAPIError: Any non-success status (see `read_response`).
        """
        session = await self.get_session()
        logger.debug(f"Fetching {url}")

        try:
            async with self._global_rate_limiter:
                async with self._rate_limiter:
                    self.requests_made += 1
                    async with session.get(url) as resp:
                        return await read_response(resp, url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(
                "Network error talking to PokeAPI",
                extra={"url": url, "error": type(e).__name__},
            )
            raise NetworkError() from e

    async def get_json(
        self, path_or_url: str, token: Optional[CancellationToken] = None
    ) -> JSON:
        """
        Fetch a PokeAPI resource as JSON.

        Args:
            path_or_url: API path (e.g. '/pokemon/25') or an absolute URL
                under the base URL.
            token: Optional cancellation token owning this request.

        Returns:
            Decoded JSON object.
        """
        url = self.resolve_url(path_or_url)
        key = url.rstrip("/")
        return await run_with_token(self._deduplicate_request(key, self._fetch_json, url), token)

    # ==================== RESOURCES ====================

    async def get_pokemon_list(
        self, offset: int, limit: int, token: Optional[CancellationToken] = None
    ) -> JSON:
        """`/pokemon?offset=&limit=`: count, next, previous and name/url results."""
        return await self.get_json(f"{POKEMON_PATH}?offset={offset}&limit={limit}", token)

    async def get_pokemon(
        self, id_or_name: Union[int, str], token: Optional[CancellationToken] = None
    ) -> JSON:
        return await self.get_json(f"{POKEMON_PATH}/{id_or_name}", token)

    async def get_species(
        self, id_or_name: Union[int, str], token: Optional[CancellationToken] = None
    ) -> JSON:
        return await self.get_json(f"{SPECIES_PATH}/{id_or_name}", token)

    async def get_evolution_chain(
        self, chain_id: int, token: Optional[CancellationToken] = None
    ) -> JSON:
        return await self.get_json(f"{EVOLUTION_CHAIN_PATH}/{chain_id}", token)

    async def get_ability(self, name: str, token: Optional[CancellationToken] = None) -> JSON:
        return await self.get_json(f"{ABILITY_PATH}/{name}", token)

    async def get_move(self, name: str, token: Optional[CancellationToken] = None) -> JSON:
        return await self.get_json(f"{MOVE_PATH}/{name}", token)

    async def get_type(self, name: str, token: Optional[CancellationToken] = None) -> JSON:
        return await self.get_json(f"{TYPE_PATH}/{name}", token)

    async def get_resource(self, url: str, token: Optional[CancellationToken] = None) -> JSON:
        """Follow a resource link found inside another payload."""
        return await self.get_json(url, token)

    # ==================== HEALTH ====================

    async def ping(self, timeout: float = CONNECTIVITY_TIMEOUT) -> bool:
        """
        Cheap reachability probe, used by the connectivity monitor.

        Bypasses deduplication, retries and the circuit breaker.
        """
        try:
            session = await self.get_session()
            async with asyncio.timeout(timeout):
                async with session.get(f"{self.base_url}{POKEMON_PATH}?limit=1") as resp:
                    return resp.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("PokeAPI ping failed", extra={"error": type(e).__name__})
            return False

    async def validate_api_connectivity(self) -> Dict[str, bool]:
        """
        Validate connectivity to PokeAPI on startup.

        Returns:
            Dictionary mapping 'pokeapi' to its reachability.
        """
        results = {"pokeapi": False}
        logger.info("Validating API connectivity", extra={"apis": ["pokeapi"]})

        try:
            session = await self.get_session()
            async with asyncio.timeout(API_STARTUP_VALIDATION_TIMEOUT):
                async with session.get(f"{self.base_url}{POKEMON_PATH}/1") as resp:
                    if resp.status == 200:
                        results["pokeapi"] = True
                        logger.info("API reachable", extra={"api": "pokeapi", "status": "success"})
                    else:
                        logger.warning(
                            "API returned non-200 status",
                            extra={"api": "pokeapi", "status_code": resp.status},
                        )
        except asyncio.TimeoutError:
            logger.error(
                "API connection timed out",
                extra={"api": "pokeapi", "timeout_seconds": API_STARTUP_VALIDATION_TIMEOUT},
            )
        except aiohttp.ClientError as e:
            logger.error("API validation failed", extra={"api": "pokeapi", "error": str(e)})

        if not results["pokeapi"]:
            logger.warning(
                "PokeAPI is unreachable. Continuing with cached data only."
            )
        return results

    # ==================== STATS ====================

    def get_deduplication_stats(self) -> DeduplicationStats:
        return {
            "pending_requests": len(self._pending_requests),
            "waiters": sum(self._waiters.values()),
        }

    def get_circuit_breaker_stats(self) -> Dict[str, dict]:
        return {"pokeapi": self._breaker.get_stats()}

    def get_stats(self) -> Dict[str, Any]:
        """Deduplication, breaker and request counters in one mapping."""
        return {
            "requests_made": self.requests_made,
            "requests_deduplicated": self.requests_deduplicated,
            "deduplication": self.get_deduplication_stats(),
            "circuit_breakers": self.get_circuit_breaker_stats(),
        }
