"""
Main entry point for the Pokedex data layer.

This module configures logging, validates settings and builds every
collaborator explicitly (database, API client, connectivity monitor,
services, list store). It also exposes a small command-line interface:

    pokedex list [--offset N] [--limit N]
    pokedex show ID
    pokedex search QUERY
    pokedex move NAME
    pokedex type NAME
    pokedex favorites list --user UID
    pokedex favorites add --user UID ID [--note TEXT] [--nickname TEXT]
    pokedex favorites remove --user UID ID
    pokedex cache {stats,clear}
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from config.settings import (
    DB_CONNECTION_STRING,
    LOG_FILE,
    LOG_LEVEL,
    PAGE_SIZE,
    POKEAPI_URL,
    validate_settings,
)
from providers.pokemon_provider import PokemonListStore
from services.favorites_service import FavoritesService
from services.pokemon_service import PokemonService
from services.profile_service import ProfileService
from utils.api_models import PokemonDetail, PokemonSummary
from utils.connectivity import ConnectivityMonitor
from utils.database import Database, create_database
from utils.errors import PokedexError, describe_error
from utils.pokeapi_client import PokeAPIClient

logger = logging.getLogger("pokedex")


def setup_logging(level: str = LOG_LEVEL, log_file: str = LOG_FILE) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


class PokedexApp:
    """
    Composition root: owns every long-lived collaborator and their lifecycle.

    Use `PokedexApp.create()` (or `async with await PokedexApp.create()`)
    rather than the constructor, which expects ready-made parts.
    """

    def __init__(
        self,
        database: Database,
        client: PokeAPIClient,
        connectivity: ConnectivityMonitor,
        pokemon: PokemonService,
        favorites: FavoritesService,
        profiles: ProfileService,
        store: PokemonListStore,
    ):
        self.database = database
        self.client = client
        self.connectivity = connectivity
        self.pokemon = pokemon
        self.favorites = favorites
        self.profiles = profiles
        self.store = store

    @classmethod
    async def create(
        cls,
        connection_string: str = DB_CONNECTION_STRING,
        base_url: str = POKEAPI_URL,
        offline: bool = False,
    ) -> "PokedexApp":
        database = await create_database(connection_string)
        client = PokeAPIClient(base_url=base_url)
        connectivity = ConnectivityMonitor(client.ping)
        if offline:
            connectivity.force_offline()

        pokemon = PokemonService(client, database, connectivity)
        app = cls(
            database=database,
            client=client,
            connectivity=connectivity,
            pokemon=pokemon,
            favorites=FavoritesService(database, connectivity),
            profiles=ProfileService(database, connectivity),
            store=PokemonListStore(pokemon),
        )
        logger.info("Pokedex initialized", extra={"offline": offline})
        return app

    def start_background_tasks(self) -> None:
        """Start connectivity polling and cache cleanup, for long-running hosts."""
        self.connectivity.start()
        self.pokemon.start()

    async def close(self) -> None:
        """Shut down in reverse order of construction."""
        logger.info("Shutting down...")
        await self.store.close()
        await self.pokemon.close()
        await self.connectivity.stop()
        await self.client.close()
        await self.database.close()
        logger.info("Shutdown complete")

    async def __aenter__(self) -> "PokedexApp":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


# ==================== CLI ====================


def _format_summary(pokemon: PokemonSummary) -> str:
    return f"#{pokemon.id:<5} {pokemon.name:<20} {'/'.join(pokemon.types)}"


def _format_detail(detail: PokemonDetail) -> str:
    stats = detail.stats
    lines = [
        f"#{detail.id} {detail.name.title()} - {detail.genus}",
        f"Types: {', '.join(detail.types)}",
        f"Height: {detail.height / 10:.1f} m  Weight: {detail.weight / 10:.1f} kg",
        f"Stats: HP {stats.hp} / Atk {stats.attack} / Def {stats.defense} / "
        f"SpA {stats.special_attack} / SpD {stats.special_defense} / Spe {stats.speed} "
        f"(total {stats.total})",
        f"Abilities: {', '.join(a.name + (' (hidden)' if a.is_hidden else '') for a in detail.abilities)}",
        f"Evolution: {' -> '.join(stage.name for stage in detail.evolution_chain)}",
        f"Generation {detail.generation}, habitat: {detail.habitat}",
        "",
        detail.description,
    ]
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pokedex", description="Browse PokeAPI from the terminal.")
    parser.add_argument("--offline", action="store_true", help="Serve cached data only")
    parser.add_argument("--db", default=DB_CONNECTION_STRING, help="Database connection string")
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List one page of Pokemon")
    list_cmd.add_argument("--offset", type=int, default=0)
    list_cmd.add_argument("--limit", type=int, default=PAGE_SIZE)

    show_cmd = commands.add_parser("show", help="Show a Pokemon's details")
    show_cmd.add_argument("pokemon_id", type=int)

    search_cmd = commands.add_parser("search", help="Search Pokemon by name, id or type")
    search_cmd.add_argument("query")

    move_cmd = commands.add_parser("move", help="Show a move's details")
    move_cmd.add_argument("name")

    type_cmd = commands.add_parser("type", help="List Pokemon of a type")
    type_cmd.add_argument("name")

    fav_cmd = commands.add_parser("favorites", help="Manage favorites")
    fav_actions = fav_cmd.add_subparsers(dest="action", required=True)
    fav_list = fav_actions.add_parser("list")
    fav_list.add_argument("--user", required=True)
    fav_add = fav_actions.add_parser("add")
    fav_add.add_argument("--user", required=True)
    fav_add.add_argument("pokemon_id", type=int)
    fav_add.add_argument("--note")
    fav_add.add_argument("--nickname")
    fav_remove = fav_actions.add_parser("remove")
    fav_remove.add_argument("--user", required=True)
    fav_remove.add_argument("pokemon_id", type=int)

    cache_cmd = commands.add_parser("cache", help="Inspect or clear the local cache")
    cache_cmd.add_argument("action", choices=["stats", "clear"])

    return parser


async def run_command(app: PokedexApp, args: argparse.Namespace) -> List[str]:
    """Execute one parsed CLI command and return the lines to print."""
    if args.command == "list":
        page = await app.pokemon.get_pokemon_page(args.offset, args.limit)
        lines = [_format_summary(pokemon) for pokemon in page.items]
        if page.has_more:
            lines.append(f"... more from offset {page.offset + page.limit}")
        return lines

    if args.command == "show":
        return [_format_detail(await app.pokemon.get_pokemon_detail(args.pokemon_id))]

    if args.command == "search":
        results = await app.store.search(args.query)
        if results:
            return [_format_summary(pokemon) for pokemon in results]
        suggestions = app.store.state.suggestions
        if suggestions:
            return [f"No matches. Did you mean: {', '.join(suggestions)}?"]
        return ["No matches."]

    if args.command == "move":
        move = await app.pokemon.get_move_detail(args.name)
        return [
            f"{move.name} ({move.type}, {move.category.value})",
            f"Power {move.display_power}  Accuracy {move.display_accuracy}  PP {move.pp}",
            move.short_effect,
        ]

    if args.command == "type":
        return await app.pokemon.get_pokemon_by_type(args.name)

    if args.command == "favorites":
        if args.action == "list":
            favorites = await app.favorites.list_favorites(args.user)
            if not favorites:
                return ["No favorites yet."]
            return [
                f"#{fav.pokemon_id:<5} {fav.nickname or fav.pokemon_name}"
                + (f"  - {fav.note}" if fav.note else "")
                for fav in favorites
            ]
        if args.action == "add":
            detail = await app.pokemon.get_pokemon_detail(args.pokemon_id)
            favorite = await app.favorites.add_favorite(
                args.user, detail.summary, note=args.note, nickname=args.nickname
            )
            return [f"Added {favorite.pokemon_name} to favorites."]
        await app.favorites.remove_favorite(args.user, args.pokemon_id)
        return [f"Removed #{args.pokemon_id} from favorites."]

    if args.action == "clear":
        await app.pokemon.clear_cache()
        return ["Cache cleared."]
    stats = await app.database.get_cache_stats()
    lines = [f"{key}: {value}" for key, value in stats.items()]
    lines.extend(f"memo_{key}: {value}" for key, value in app.pokemon.get_memo_stats().items())
    return lines


async def _main_async(args: argparse.Namespace) -> int:
    app = await PokedexApp.create(connection_string=args.db, offline=args.offline)
    async with app:
        app.start_background_tasks()
        try:
            lines = await run_command(app, args)
        except PokedexError as e:
            logger.debug("Command failed", extra={"error_kind": e.kind.value})
            print(describe_error(e), file=sys.stderr)
            return 1
    for line in lines:
        print(line)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        validate_settings()
    except ValueError as e:
        logger.critical(f"Configuration validation failed: {e}")
        return 1

    try:
        return asyncio.run(_main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
