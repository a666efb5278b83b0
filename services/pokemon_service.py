"""
Pokemon catalog service.

Turns raw PokeAPI resources into models and decides where each answer comes
from: the in-memory detail memo, the network, or the local SQLite cache when
the network is unavailable. Every successful network answer is written to the
local cache so it can be served offline later.
"""

import asyncio
import hashlib
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar

import aiosqlite
from pydantic import BaseModel

from config.settings import (
    CACHE_CLEANUP_INTERVAL,
    CACHE_TIMEOUT,
    DETAIL_CACHE_MAX_ENTRIES,
    DETAIL_CACHE_TTL,
    MAX_CACHE_SIZE,
    PAGE_SIZE,
)
from utils.api_models import (
    CacheStats,
    MoveDetail,
    PokemonDetail,
    PokemonPage,
    PokemonSummary,
    decode,
    decoding,
    id_from_url,
)
from utils.cache import TTLCache
from utils.cancellation import CancellationToken, run_with_token
from utils.connectivity import ConnectivityMonitor
from utils.constants import CACHE_KEY_HASH_ALGORITHM
from utils.database import Database
from utils.decorators import log_operation
from utils.errors import DecodeError, NetworkError, OfflineError, ServiceUnavailableError
from utils.pokeapi_client import PokeAPIClient
from utils.validators import (
    ensure_valid,
    validate_page,
    validate_pokemon_id,
    validate_resource_name,
)

logger = logging.getLogger("pokedex.pokemon_service")

T = TypeVar("T")


async def gather_or_cancel(coros: Iterable[Awaitable[T]]) -> List[T]:
    """
    Run awaitables concurrently; on the first failure cancel the rest and re-raise.
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        raise


class PokemonService:
    """
    Read access to the Pokemon catalog.

    Source selection for every read:
    1. Online: fetch from PokeAPI, store the result in the local cache.
    2. Online but PokeAPI is unreachable (network error, or the circuit
       breaker is open): serve the local cache, re-raise when there is none.
    3. Offline: serve the local cache or raise `OfflineError`.

    Details are additionally memoized in a `TTLCache`; a memo hit returns the
    same object and never touches the network.
    """

    def __init__(
        self,
        client: PokeAPIClient,
        database: Database,
        connectivity: ConnectivityMonitor,
        memo: Optional[TTLCache[PokemonDetail]] = None,
    ):
        self.client = client
        self.db = database
        self.connectivity = connectivity
        self.memo: TTLCache[PokemonDetail] = memo if memo is not None else TTLCache(
            ttl=DETAIL_CACHE_TTL, max_entries=DETAIL_CACHE_MAX_ENTRIES
        )

        # Local cache statistics (in-memory for performance)
        self.cache_hits = 0
        self.cache_misses = 0

        self._cleanup_task: Optional[asyncio.Task] = None

    # ==================== LIFECYCLE ====================

    def start(self) -> None:
        """Start the background cache cleanup task."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cache_cleanup_loop())
            logger.info("Started cache cleanup background task")

    async def close(self) -> None:
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            logger.info("Cancelled cache cleanup task")
        self._cleanup_task = None

    async def _cache_cleanup_loop(self) -> None:
        """Background task to periodically clean expired cache entries."""
        while True:
            try:
                await asyncio.sleep(CACHE_CLEANUP_INTERVAL)
                await self._cleanup_expired_cache()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cache cleanup task: {e}")

    async def _cleanup_expired_cache(self) -> None:
        purged = self.memo.purge_expired()
        try:
            deleted_count = await self.db.cleanup_expired_cache(CACHE_TIMEOUT)
        except aiosqlite.Error as e:
            logger.error(f"Error cleaning cache: {e}", exc_info=True)
            return
        if deleted_count or purged:
            logger.debug(
                "Cleaned expired cache entries",
                extra={"count": deleted_count, "memo_count": purged},
            )

    # ==================== LOCAL CACHE ====================

    def _hash_cache_key(self, key: str) -> str:
        hash_obj = hashlib.new(CACHE_KEY_HASH_ALGORITHM)
        hash_obj.update(key.encode("utf-8"))
        return hash_obj.hexdigest()

    async def _get_cached(self, key: str, decoder: Callable[[Any], T]) -> Optional[T]:
        """
        Read and decode a local cache entry.

        A row that no longer decodes is treated as a miss.
        """
        try:
            data = await self.db.get_cache(self._hash_cache_key(key), CACHE_TIMEOUT)
        except aiosqlite.Error as e:
            logger.error(f"Error getting cache: {e}", exc_info=True)
            data = None

        if data is None:
            self.cache_misses += 1
            return None

        try:
            value = decoder(data)
        except (DecodeError, TypeError) as e:
            logger.warning("Discarding undecodable cache entry", extra={"cache_key": key, "error": str(e)})
            self.cache_misses += 1
            return None

        self.cache_hits += 1
        logger.debug("Cache hit", extra={"cache_key": key})
        return value

    async def _set_cache(self, key: str, value: Any) -> None:
        data = value.model_dump(mode="json") if isinstance(value, BaseModel) else value
        try:
            await self.db.set_cache(self._hash_cache_key(key), data, MAX_CACHE_SIZE)
            logger.debug("Data cached", extra={"cache_key": key})
        except aiosqlite.Error as e:
            logger.error(f"Error setting cache: {e}", exc_info=True)

    async def _fetch_with_fallback(
        self,
        cache_key: str,
        fetch: Callable[[], Awaitable[T]],
        decoder: Callable[[Any], T],
        token: Optional[CancellationToken],
    ) -> T:
        if not await self.connectivity.has_connection():
            cached = await self._get_cached(cache_key, decoder)
            if cached is None:
                logger.info("Offline with no cached copy", extra={"cache_key": cache_key})
                raise OfflineError()
            logger.info("Serving cached copy while offline", extra={"cache_key": cache_key})
            return cached

        try:
            result = await run_with_token(fetch(), token)
        except (NetworkError, ServiceUnavailableError) as e:
            cached = await self._get_cached(cache_key, decoder)
            if cached is None:
                raise
            logger.warning(
                "PokeAPI unreachable, serving cached copy",
                extra={"cache_key": cache_key, "error": type(e).__name__},
            )
            return cached

        await self._set_cache(cache_key, result)
        return result

    # ==================== CATALOG ====================

    @log_operation
    async def get_pokemon_page(
        self,
        offset: int = 0,
        limit: int = PAGE_SIZE,
        token: Optional[CancellationToken] = None,
    ) -> PokemonPage:
        """
        Fetch one page of the catalog.

        Args:
            offset: Index of the first Pokemon.
            limit: Page size.
            token: Optional cancellation token.

        Returns:
            The page. `has_more` is True only when the page is full and the
            server reports a next page.

        Raises:
            ValidationError: For a negative offset or an out-of-range limit.
            OfflineError: Offline and the page was never cached.
        """
        ensure_valid(validate_page(offset, limit))
        return await self._fetch_with_fallback(
            f"page:{limit}:{offset}",
            lambda: self._fetch_page(offset, limit),
            lambda data: decode(PokemonPage, data),
            token,
        )

    async def _fetch_page(self, offset: int, limit: int) -> PokemonPage:
        listing = await self.client.get_pokemon_list(offset, limit)
        with decoding("pokemon list"):
            urls = [entry["url"] for entry in listing["results"]]
            total = listing.get("count")
            has_next = bool(listing.get("next"))

        payloads = await gather_or_cancel(self.client.get_resource(url) for url in urls)
        items = tuple(PokemonSummary.from_api(payload) for payload in payloads)

        logger.info(
            "Fetched Pokemon page",
            extra={"offset": offset, "limit": limit, "count": len(items)},
        )
        with decoding("pokemon list"):
            return PokemonPage(
                items=items,
                offset=offset,
                limit=limit,
                has_more=has_next and len(items) == limit,
                total=total,
            )

    @log_operation
    async def get_pokemon_detail(
        self, pokemon_id: int, token: Optional[CancellationToken] = None
    ) -> PokemonDetail:
        """
        Fetch the full record for one Pokemon.

        Lookup order: memo, then network (online) or local cache (offline).
        The record is composed from the pokemon, species, evolution-chain and
        ability resources; if any of them fails the whole call fails.

        Raises:
            ValidationError: If `pokemon_id` is not a positive integer.
            OfflineError: Offline and the Pokemon was never cached.
            DecodeError: A resource was malformed or the resources disagree
                about which species they describe.
        """
        ensure_valid(validate_pokemon_id(pokemon_id))

        memoized = self.memo.get(pokemon_id)
        if memoized is not None:
            logger.debug("Detail memo hit", extra={"pokemon_id": pokemon_id})
            return memoized

        detail = await self._fetch_with_fallback(
            f"detail:{pokemon_id}",
            lambda: self._compose_detail(pokemon_id),
            lambda data: decode(PokemonDetail, data),
            token,
        )
        self.memo.set(pokemon_id, detail)
        return detail

    async def _compose_detail(self, pokemon_id: int) -> PokemonDetail:
        pokemon = await self.client.get_pokemon(pokemon_id)
        with decoding("pokemon"):
            species_id = id_from_url(pokemon["species"]["url"])
            ability_slots = [slot["ability"] for slot in pokemon.get("abilities") or []]

        species = await self.client.get_species(species_id)
        with decoding("pokemon species"):
            chain_id = id_from_url(species["evolution_chain"]["url"])

        chain, *ability_payloads = await gather_or_cancel(
            [
                self.client.get_evolution_chain(chain_id),
                *(self.client.get_ability(ability["name"]) for ability in ability_slots),
            ]
        )
        abilities = {
            ability["name"]: payload for ability, payload in zip(ability_slots, ability_payloads)
        }

        detail = PokemonDetail.compose(pokemon, species, chain, abilities)
        logger.info(
            "Composed Pokemon detail",
            extra={"pokemon_id": pokemon_id, "pokemon_name": detail.name},
        )
        return detail

    @log_operation
    async def get_move_detail(
        self, name: str, token: Optional[CancellationToken] = None
    ) -> MoveDetail:
        """
        Fetch one move's detail record (power, accuracy, effect text).

        Args:
            name: Move name; spaces and case are normalized ('Thunder Punch').
        """
        move_name = ensure_valid(validate_resource_name(name))
        return await self._fetch_with_fallback(
            f"move:{move_name}",
            lambda: self._fetch_move(move_name),
            lambda data: decode(MoveDetail, data),
            token,
        )

    async def _fetch_move(self, move_name: str) -> MoveDetail:
        return MoveDetail.from_api(await self.client.get_move(move_name))

    @log_operation
    async def get_pokemon_by_type(
        self, type_name: str, token: Optional[CancellationToken] = None
    ) -> List[str]:
        """
        Names of every Pokemon that has `type_name`, in API order.
        """
        normalized = ensure_valid(validate_resource_name(type_name))
        return await self._fetch_with_fallback(
            f"type:{normalized}",
            lambda: self._fetch_type_members(normalized),
            lambda data: [str(name) for name in data],
            token,
        )

    async def _fetch_type_members(self, type_name: str) -> List[str]:
        payload = await self.client.get_type(type_name)
        with decoding("type"):
            return [entry["pokemon"]["name"] for entry in payload["pokemon"]]

    # ==================== MAINTENANCE ====================

    async def clear_cache(self) -> None:
        """Clear the detail memo and every locally cached response."""
        self.memo.clear()
        try:
            await self.db.clear_cache()
        except aiosqlite.Error as e:
            logger.error(f"Error clearing cache: {e}", exc_info=True)
        self.cache_hits = 0
        self.cache_misses = 0
        logger.info("Cache cleared")

    def get_cache_stats(self) -> CacheStats:
        """
        Get local cache statistics.

        Returns:
            CacheStats object containing hit rates and counts.
        """
        total_requests = self.cache_hits + self.cache_misses
        hit_rate = (self.cache_hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "size": "N/A",
            "max_size": MAX_CACHE_SIZE,
            "hits": self.cache_hits,
            "misses": self.cache_misses,
            "hit_rate": f"{hit_rate:.1f}%",
        }

    def get_memo_stats(self) -> CacheStats:
        return self.memo.get_stats()
