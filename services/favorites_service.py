"""
Favorites service.

Each user's favorites live in their own collection,
`users/{user_id}/favorites`, keyed by `{user_id}_{pokemon_id}`. Reads work
offline against the local store; writes require a connection and are never
queued.
"""

import logging
from typing import List, Optional

from utils.api_models import Favorite, PokemonSummary, decode, favorite_id
from utils.connectivity import ConnectivityMonitor
from utils.constants import FAVORITES_COLLECTION_TEMPLATE
from utils.database import Database
from utils.decorators import log_operation
from utils.errors import FavoriteError, OfflineError
from utils.validators import (
    ensure_valid,
    validate_nickname,
    validate_note,
    validate_pokemon_id,
    validate_user_id,
)

logger = logging.getLogger("pokedex.favorites")

# Distinguishes "leave unchanged" from an explicit None (clear the field)
_UNSET = object()


def favorites_collection(user_id: str) -> str:
    return FAVORITES_COLLECTION_TEMPLATE.format(user_id=user_id)


class FavoritesService:
    """Add, remove and list a user's favorite Pokemon."""

    def __init__(self, database: Database, connectivity: ConnectivityMonitor):
        self.db = database
        self.connectivity = connectivity

    async def _require_connection(self, operation: str) -> None:
        if not await self.connectivity.has_connection():
            logger.info("Refusing favorites write while offline", extra={"operation": operation})
            raise OfflineError()

    @log_operation
    async def add_favorite(
        self,
        user_id: str,
        pokemon: PokemonSummary,
        note: Optional[str] = None,
        nickname: Optional[str] = None,
    ) -> Favorite:
        """
        Add a Pokemon to the user's favorites.

        Raises:
            ValidationError: Bad user id, note or nickname.
            OfflineError: No connection.
            FavoriteError: The Pokemon is already a favorite (already-exists).
        """
        ensure_valid(validate_user_id(user_id))
        ensure_valid(validate_note(note))
        ensure_valid(validate_nickname(nickname))
        await self._require_connection("add")

        favorite = Favorite.from_pokemon(user_id, pokemon, note=note, nickname=nickname)
        collection = favorites_collection(user_id)

        if await self.db.get_document(collection, favorite.id) is not None:
            raise FavoriteError.already_exists()

        await self.db.set_document(collection, favorite.id, favorite.model_dump(mode="json"))
        logger.info(
            "Favorite added",
            extra={"user_id": user_id, "pokemon_id": pokemon.id, "pokemon_name": pokemon.name},
        )
        return favorite

    @log_operation
    async def remove_favorite(self, user_id: str, pokemon_id: int) -> None:
        """
        Remove a Pokemon from the user's favorites.

        Raises:
            OfflineError: No connection.
            FavoriteError: The Pokemon is not a favorite (not-found).
        """
        ensure_valid(validate_user_id(user_id))
        ensure_valid(validate_pokemon_id(pokemon_id))
        await self._require_connection("remove")

        deleted = await self.db.delete_document(
            favorites_collection(user_id), favorite_id(user_id, pokemon_id)
        )
        if not deleted:
            raise FavoriteError.not_found()

        logger.info("Favorite removed", extra={"user_id": user_id, "pokemon_id": pokemon_id})

    async def list_favorites(self, user_id: str, limit: Optional[int] = None) -> List[Favorite]:
        """The user's favorites, most recently added first (by insertion time)."""
        ensure_valid(validate_user_id(user_id))
        documents = await self.db.query_documents(
            favorites_collection(user_id),
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        return [decode(Favorite, document) for document in documents]

    async def get_favorite(self, user_id: str, pokemon_id: int) -> Optional[Favorite]:
        ensure_valid(validate_user_id(user_id))
        ensure_valid(validate_pokemon_id(pokemon_id))
        document = await self.db.get_document(
            favorites_collection(user_id), favorite_id(user_id, pokemon_id)
        )
        return decode(Favorite, document) if document is not None else None

    async def is_favorite(self, user_id: str, pokemon_id: int) -> bool:
        return await self.get_favorite(user_id, pokemon_id) is not None

    @log_operation
    async def update_favorite(
        self,
        user_id: str,
        pokemon_id: int,
        note=_UNSET,
        nickname=_UNSET,
    ) -> Favorite:
        """
        Change the note and/or nickname of an existing favorite.

        Omitted arguments are left unchanged; passing None clears the field.

        Raises:
            OfflineError: No connection.
            FavoriteError: The Pokemon is not a favorite (not-found).
        """
        changes = {}
        if note is not _UNSET:
            ensure_valid(validate_note(note))
            changes["note"] = note
        if nickname is not _UNSET:
            ensure_valid(validate_nickname(nickname))
            changes["nickname"] = nickname

        existing = await self.get_favorite(user_id, pokemon_id)
        if existing is None:
            raise FavoriteError.not_found()
        if not changes:
            return existing

        await self._require_connection("update")
        updated = existing.model_copy(update=changes)
        await self.db.set_document(
            favorites_collection(user_id), updated.id, updated.model_dump(mode="json")
        )
        logger.info(
            "Favorite updated",
            extra={"user_id": user_id, "pokemon_id": pokemon_id, "fields": sorted(changes)},
        )
        return updated

    async def count_favorites(self, user_id: str) -> int:
        ensure_valid(validate_user_id(user_id))
        return await self.db.count_documents(favorites_collection(user_id))
