"""
Search filtering and fuzzy name matching.

`filter_pokemon` is the pure, synchronous filter behind the list search box.
`get_close_matches_async` suggests names when a search comes back empty;
`difflib` is CPU-bound, so it runs in a worker thread to keep the event loop
responsive.
"""

import asyncio
import difflib
from typing import Iterable, List, Sequence

from utils.api_models import PokemonSummary


def normalize_query(query: str) -> str:
    return (query or "").strip().lower()


def matches_query(pokemon: PokemonSummary, query: str) -> bool:
    """
    Whether one Pokemon matches an already-normalized query.

    Matches on a name substring, the exact id (ASCII digits only), or a
    substring of any type.
    """
    if query in pokemon.name.lower():
        return True
    if query.isascii() and query.isdigit() and int(query) == pokemon.id:
        return True
    return any(query in type_name.lower() for type_name in pokemon.types)


def filter_pokemon(items: Sequence[PokemonSummary], query: str) -> List[PokemonSummary]:
    """
    Filter Pokemon by a free-text query, preserving order.

    An empty or whitespace-only query returns every item. Filtering the
    result again with the same query returns it unchanged.

    Args:
        items: Loaded Pokemon, in display order.
        query: Raw user query; case and surrounding whitespace are ignored.

    Returns:
        The matching items.
    """
    normalized = normalize_query(query)
    if not normalized:
        return list(items)
    return [pokemon for pokemon in items if matches_query(pokemon, normalized)]


def _get_close_matches_sync(
    word: str, possibilities: List[str], n: int = 3, cutoff: float = 0.6
) -> List[str]:
    """
    Synchronous wrapper for `difflib.get_close_matches`.

    Args:
        word: The string to find matches for.
        possibilities: A list of valid strings to search against.
        n: The maximum number of close matches to return.
        cutoff: A float in [0, 1]. Possibilities that don't score at least
            this similar to word are ignored.

    Returns:
        A list of the best matches, sorted by similarity score.
    """
    return difflib.get_close_matches(word, possibilities, n=n, cutoff=cutoff)


async def get_close_matches_async(
    word: str, possibilities: Iterable[str], n: int = 3, cutoff: float = 0.6
) -> List[str]:
    """
    Asynchronous fuzzy matching, offloaded with `asyncio.to_thread`.

    Args:
        word: The word to find matches for.
        possibilities: Valid words.
        n: Maximum number of matches to return.
        cutoff: Similarity threshold (0.0 to 1.0).

    Returns:
        List of matched strings.
    """
    possibilities = list(possibilities)
    if not possibilities:
        return []

    return await asyncio.to_thread(
        _get_close_matches_sync, normalize_query(word), possibilities, n, cutoff
    )
