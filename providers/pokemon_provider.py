"""
State store for the Pokemon list and detail screens.

State changes go through one pure function, `reduce(state, action)`; the
store applies it, keeps the result and notifies subscribers in subscription
order. All I/O lives in the store's async methods, which call
`PokemonService` and dispatch actions describing what happened.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from config.settings import (
    PAGE_SIZE,
    SEARCH_DEBOUNCE_SECONDS,
    SEARCH_MAX_AUTO_PAGES,
    SEARCH_MIN_RESULTS,
)
from services.pokemon_service import PokemonService
from utils.api_models import PokemonDetail, PokemonPage, PokemonSummary
from utils.cancellation import CancellationToken
from utils.errors import ErrorKind, PokedexError, RequestCancelledError
from utils.matching import filter_pokemon, get_close_matches_async
from utils.validators import sanitize_query

logger = logging.getLogger("pokedex.provider")


class LoadStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADING_MORE = "loading_more"
    ERROR = "error"


@dataclass(frozen=True)
class PokemonListState:
    """
    Snapshot of the list screen.

    Attributes:
        items: Every Pokemon loaded so far, unique by id, in catalog order.
        visible: `items` filtered by `query`.
        next_offset: Offset of the next page to request.
        has_more: Whether the catalog has unloaded pages.
        suggestions: Fuzzy name suggestions when `visible` is empty.
    """

    items: Tuple[PokemonSummary, ...] = ()
    query: str = ""
    visible: Tuple[PokemonSummary, ...] = ()
    next_offset: int = 0
    has_more: bool = True
    total: Optional[int] = None
    status: LoadStatus = LoadStatus.IDLE
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    suggestions: Tuple[str, ...] = ()
    initialized: bool = False

    @property
    def is_loading(self) -> bool:
        return self.status in (LoadStatus.LOADING, LoadStatus.LOADING_MORE)


# ==================== ACTIONS ====================


@dataclass(frozen=True)
class LoadStarted:
    more: bool = False


@dataclass(frozen=True)
class PageLoaded:
    page: PokemonPage


@dataclass(frozen=True)
class LoadFailed:
    message: str
    kind: ErrorKind = ErrorKind.UNKNOWN


@dataclass(frozen=True)
class LoadCancelled:
    pass


@dataclass(frozen=True)
class QueryChanged:
    query: str


@dataclass(frozen=True)
class SuggestionsFound:
    query: str
    suggestions: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Reset:
    pass


Action = Union[
    LoadStarted, PageLoaded, LoadFailed, LoadCancelled, QueryChanged, SuggestionsFound, Reset
]


def merge_unique(
    existing: Tuple[PokemonSummary, ...], incoming: Tuple[PokemonSummary, ...]
) -> Tuple[PokemonSummary, ...]:
    """Append `incoming`, skipping ids already present."""
    seen = {pokemon.id for pokemon in existing}
    merged = list(existing)
    for pokemon in incoming:
        if pokemon.id not in seen:
            seen.add(pokemon.id)
            merged.append(pokemon)
    return tuple(merged)


def reduce(state: PokemonListState, action: Action) -> PokemonListState:
    """Pure transition function. Unknown actions return `state` unchanged."""
    if isinstance(action, LoadStarted):
        return replace(
            state,
            status=LoadStatus.LOADING_MORE if action.more else LoadStatus.LOADING,
            error=None,
            error_kind=None,
        )

    if isinstance(action, PageLoaded):
        page = action.page
        items = merge_unique(state.items, page.items)
        visible = tuple(filter_pokemon(items, state.query))
        return replace(
            state,
            items=items,
            visible=visible,
            next_offset=max(state.next_offset, page.offset + page.limit),
            has_more=page.has_more,
            total=page.total if page.total is not None else state.total,
            status=LoadStatus.IDLE,
            error=None,
            error_kind=None,
            suggestions=() if visible else state.suggestions,
            initialized=True,
        )

    if isinstance(action, LoadFailed):
        return replace(
            state, status=LoadStatus.ERROR, error=action.message, error_kind=action.kind
        )

    if isinstance(action, LoadCancelled):
        if not state.is_loading:
            return state
        return replace(state, status=LoadStatus.IDLE)

    if isinstance(action, QueryChanged):
        if action.query == state.query:
            return state
        return replace(
            state,
            query=action.query,
            visible=tuple(filter_pokemon(state.items, action.query)),
            suggestions=(),
        )

    if isinstance(action, SuggestionsFound):
        # A slower suggestion lookup for an older query must not win
        if action.query != state.query:
            return state
        return replace(state, suggestions=action.suggestions)

    if isinstance(action, Reset):
        return PokemonListState()

    return state


Listener = Callable[[PokemonListState], None]


class PokemonListStore:
    """
    Holds `PokemonListState` and runs the list/detail workflows.

    Loading is re-entrancy guarded: while a page request is in flight,
    further `load_more()` calls return immediately. Detail requests carry one
    cancellation token per Pokemon id; asking again for the same id cancels
    the older request.
    """

    def __init__(self, service: PokemonService, page_size: int = PAGE_SIZE):
        self.service = service
        self.page_size = page_size

        self._state = PokemonListState()
        self._listeners: List[Listener] = []

        self._list_token: Optional[CancellationToken] = None
        self._detail_tokens: Dict[int, CancellationToken] = {}
        self._search_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> PokemonListState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._list_token is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register `listener`, called with the new state after every change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> PokemonListState:
        new_state = reduce(self._state, action)
        if new_state is self._state:
            return new_state

        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.error(f"Error in state listener: {e}", exc_info=True)
        return new_state

    # ==================== LIST ====================

    async def initialize(self) -> None:
        """Load the first page, once."""
        if self._state.initialized or self.is_loading:
            return
        await self._load_page(more=False)

    async def load_more(self) -> bool:
        """
        Load the next page.

        Returns:
            True if a page was loaded; False when a load is already running,
            nothing is left, or the load failed (see `state.error`).
        """
        if self.is_loading or not self._state.has_more:
            return False
        return await self._load_page(more=self._state.initialized)

    async def refresh(self) -> None:
        """Cancel everything in flight, clear the list and reload the first page."""
        self.cancel_all()
        self.dispatch(Reset())
        await self._load_page(more=False)

    async def _load_page(self, more: bool) -> bool:
        token = CancellationToken("pokemon-list")
        self._list_token = token
        offset = self._state.next_offset
        self.dispatch(LoadStarted(more=more))

        try:
            page = await self.service.get_pokemon_page(offset, self.page_size, token=token)
        except RequestCancelledError:
            logger.debug("Page load cancelled", extra={"offset": offset})
            if self._list_token is None:
                self.dispatch(LoadCancelled())
            return False
        except asyncio.CancelledError:
            if self._list_token is token:
                self.dispatch(LoadCancelled())
            raise
        except PokedexError as e:
            logger.warning(
                "Page load failed",
                extra={"offset": offset, "error_kind": e.kind.value},
            )
            self.dispatch(LoadFailed(e.message, e.kind))
            return False
        finally:
            if self._list_token is token:
                self._list_token = None

        # Cancelled after the page arrived: drop it
        if token.is_cancelled:
            logger.debug("Discarding page loaded after cancel", extra={"offset": offset})
            if self._list_token is None:
                self.dispatch(LoadCancelled())
            return False

        self.dispatch(PageLoaded(page))
        return True

    # ==================== SEARCH ====================

    async def search(self, query: str) -> Tuple[PokemonSummary, ...]:
        """
        Filter the loaded list, loading more pages when too little matches.

        At most `SEARCH_MAX_AUTO_PAGES` extra pages are loaded per search.
        When nothing matches, fuzzy name suggestions are published in
        `state.suggestions`.

        Returns:
            The visible (matching) Pokemon.
        """
        query = sanitize_query(query)
        self.dispatch(QueryChanged(query))

        if query:
            loaded = 0
            while (
                len(self._state.visible) < SEARCH_MIN_RESULTS
                and self._state.has_more
                and loaded < SEARCH_MAX_AUTO_PAGES
            ):
                if not await self.load_more():
                    break
                loaded += 1

            if not self._state.visible:
                names = [pokemon.name for pokemon in self._state.items]
                suggestions = await get_close_matches_async(query, names)
                self.dispatch(SuggestionsFound(query, tuple(suggestions)))

        return self._state.visible

    def search_debounced(
        self, query: str, delay: float = SEARCH_DEBOUNCE_SECONDS
    ) -> asyncio.Task:
        """
        Schedule `search(query)` after `delay` seconds, cancelling the previous
        pending search. Must be called from a running event loop.
        """
        if self._search_task and not self._search_task.done():
            self._search_task.cancel()

        self._search_task = asyncio.create_task(self._debounced_search(query, delay))
        return self._search_task

    async def _debounced_search(self, query: str, delay: float) -> Tuple[PokemonSummary, ...]:
        await asyncio.sleep(delay)
        return await self.search(query)

    # ==================== DETAIL ====================

    async def get_detail(self, pokemon_id: int) -> PokemonDetail:
        """
        Fetch a Pokemon's detail, superseding any in-flight request for it.

        Raises:
            RequestCancelledError: This request was superseded or cancelled.
            PokedexError: Any service failure.
        """
        previous = self._detail_tokens.pop(pokemon_id, None)
        if previous is not None:
            previous.cancel("superseded")

        token = CancellationToken(f"detail-{pokemon_id}")
        self._detail_tokens[pokemon_id] = token
        try:
            return await self.service.get_pokemon_detail(pokemon_id, token=token)
        finally:
            if self._detail_tokens.get(pokemon_id) is token:
                del self._detail_tokens[pokemon_id]

    def cancel_detail(self, pokemon_id: int) -> bool:
        """Cancel the in-flight detail request for `pokemon_id`, if any."""
        token = self._detail_tokens.pop(pokemon_id, None)
        if token is None:
            return False
        token.cancel("cancelled by caller")
        return True

    def cancel_all(self) -> None:
        """Cancel the page load, every detail request and the pending search."""
        if self._list_token is not None:
            token, self._list_token = self._list_token, None
            token.cancel("cancelled by caller")

        for token in self._detail_tokens.values():
            token.cancel("cancelled by caller")
        self._detail_tokens.clear()

        if self._search_task and not self._search_task.done():
            self._search_task.cancel()
        self._search_task = None

        logger.debug("Cancelled all in-flight requests")

    async def close(self) -> None:
        self.cancel_all()
        self._listeners.clear()

    # ==================== HELPERS ====================

    def pokemon_by_type(self, type_name: str) -> List[PokemonSummary]:
        """Loaded Pokemon having `type_name`."""
        type_name = type_name.strip().lower()
        return [pokemon for pokemon in self._state.items if type_name in pokemon.types]

    def type_distribution(self) -> Dict[str, int]:
        """How many loaded Pokemon have each type, most common first."""
        counts = Counter(
            type_name for pokemon in self._state.items for type_name in pokemon.types
        )
        return dict(counts.most_common())
