"""
In-memory PokeAPI used by the tests.

`FakePokeAPIClient` overrides only the raw transport (`_request_json`), so
deduplication, retries, the circuit breaker and cancellation all run for
real against a fixed 40-Pokemon dataset.
"""

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

from utils.circuit_breaker import CircuitBreaker
from utils.errors import NetworkError, NotFoundError, ServerError
from utils.pokeapi_client import PokeAPIClient

FAKE_BASE_URL = "https://pokeapi.test/api/v2"

POKEMON = [
    ("bulbasaur", ("grass", "poison")),
    ("ivysaur", ("grass", "poison")),
    ("venusaur", ("grass", "poison")),
    ("charmander", ("fire",)),
    ("charmeleon", ("fire",)),
    ("charizard", ("fire", "flying")),
    ("squirtle", ("water",)),
    ("wartortle", ("water",)),
    ("blastoise", ("water",)),
    ("caterpie", ("bug",)),
    ("metapod", ("bug",)),
    ("butterfree", ("bug", "flying")),
    ("weedle", ("bug", "poison")),
    ("kakuna", ("bug", "poison")),
    ("beedrill", ("bug", "poison")),
    ("pidgey", ("normal", "flying")),
    ("pidgeotto", ("normal", "flying")),
    ("pidgeot", ("normal", "flying")),
    ("rattata", ("normal",)),
    ("raticate", ("normal",)),
    ("spearow", ("normal", "flying")),
    ("fearow", ("normal", "flying")),
    ("ekans", ("poison",)),
    ("arbok", ("poison",)),
    ("pikachu", ("electric",)),
    ("raichu", ("electric",)),
    ("sandshrew", ("ground",)),
    ("sandslash", ("ground",)),
    ("nidoran-f", ("poison",)),
    ("nidorina", ("poison",)),
    ("nidoqueen", ("poison", "ground")),
    ("nidoran-m", ("poison",)),
    ("nidorino", ("poison",)),
    ("nidoking", ("poison", "ground")),
    ("clefairy", ("fairy",)),
    ("clefable", ("fairy",)),
    ("vulpix", ("fire",)),
    ("ninetales", ("fire",)),
    ("jigglypuff", ("normal", "fairy")),
    ("wigglytuff", ("normal", "fairy")),
]

EVOLUTION_CHAINS = [
    [1, 2, 3], [4, 5, 6], [7, 8, 9], [10, 11, 12], [13, 14, 15], [16, 17, 18],
    [19, 20], [21, 22], [23, 24], [25, 26], [27, 28], [29, 30, 31], [32, 33, 34],
    [35, 36], [37, 38], [39, 40],
]

ABILITIES = {
    "overgrow": "Strengthens grass moves to inflict 1.5x damage at 1/3 max HP or less.",
    "blaze": "Strengthens fire moves to inflict 1.5x damage at 1/3 max HP or less.",
    "torrent": "Strengthens water moves to inflict 1.5x damage at 1/3 max HP or less.",
    "keen-eye": "Prevents accuracy from being lowered.",
    "run-away": "Ensures success fleeing from wild battles.",
}

STAT_NAMES = ["hp", "attack", "defense", "special-attack", "special-defense", "speed"]


def name_of(pokemon_id: int) -> str:
    return POKEMON[pokemon_id - 1][0]


def chain_id_of(pokemon_id: int) -> int:
    for index, members in enumerate(EVOLUTION_CHAINS, start=1):
        if pokemon_id in members:
            return index
    raise ValueError(pokemon_id)


def ability_of(pokemon_id: int) -> str:
    first_type = POKEMON[pokemon_id - 1][1][0]
    return {"grass": "overgrow", "fire": "blaze", "water": "torrent"}.get(first_type, "keen-eye")


def pokemon_payload(pokemon_id: int) -> Dict[str, Any]:
    name, types = POKEMON[pokemon_id - 1]
    ability = ability_of(pokemon_id)
    return {
        "id": pokemon_id,
        "name": name,
        "height": 7,
        "weight": 69,
        "base_experience": 64,
        # Slots deliberately listed in reverse to exercise ordering
        "types": [
            {"slot": slot, "type": {"name": type_name, "url": f"{FAKE_BASE_URL}/type/{type_name}/"}}
            for slot, type_name in reversed(list(enumerate(types, start=1)))
        ],
        "stats": [
            {"base_stat": 40 + i * 5, "effort": 0, "stat": {"name": stat}}
            for i, stat in enumerate(STAT_NAMES)
        ],
        "sprites": {
            "front_default": f"https://sprites.test/{pokemon_id}.png",
            "other": {"official-artwork": {"front_default": f"https://artwork.test/{pokemon_id}.png"}},
        },
        "species": {"name": name, "url": f"{FAKE_BASE_URL}/pokemon-species/{pokemon_id}/"},
        "abilities": [
            {
                "ability": {"name": ability, "url": f"{FAKE_BASE_URL}/ability/{ability}/"},
                "is_hidden": False,
                "slot": 1,
            },
            {
                "ability": {"name": "run-away", "url": f"{FAKE_BASE_URL}/ability/run-away/"},
                "is_hidden": True,
                "slot": 3,
            },
        ],
        "moves": [
            {
                "move": {"name": "tackle", "url": f"{FAKE_BASE_URL}/move/tackle/"},
                "version_group_details": [
                    {"level_learned_at": 1, "move_learn_method": {"name": "level-up"}},
                ],
            },
            {
                "move": {"name": "thunder-punch", "url": f"{FAKE_BASE_URL}/move/thunder-punch/"},
                "version_group_details": [
                    {"level_learned_at": 0, "move_learn_method": {"name": "machine"}},
                ],
            },
        ],
    }


def species_payload(pokemon_id: int) -> Dict[str, Any]:
    return {
        "id": pokemon_id,
        "name": name_of(pokemon_id),
        "evolution_chain": {"url": f"{FAKE_BASE_URL}/evolution-chain/{chain_id_of(pokemon_id)}/"},
        "flavor_text_entries": [
            {"flavor_text": "Eine seltsame Pflanze.", "language": {"name": "de"}},
            {
                "flavor_text": "A strange seed was\nplanted on its\fback at birth.",
                "language": {"name": "en"},
            },
        ],
        "genera": [{"genus": "Seed Pokémon", "language": {"name": "en"}}],
        "capture_rate": 45,
        "egg_groups": [{"name": "monster"}, {"name": "plant"}],
        "gender_rate": -1 if name_of(pokemon_id) == "clefable" else 1,
        "generation": {"name": "generation-i", "url": f"{FAKE_BASE_URL}/generation/1/"},
        "habitat": None if pokemon_id == 25 else {"name": "grassland"},
    }


def _chain_node(members: List[int], index: int) -> Dict[str, Any]:
    pokemon_id = members[index]
    return {
        "species": {
            "name": name_of(pokemon_id),
            "url": f"{FAKE_BASE_URL}/pokemon-species/{pokemon_id}/",
        },
        "evolution_details": []
        if index == 0
        else [{"trigger": {"name": "level-up"}, "min_level": 16 * index, "item": None}],
        "evolves_to": [_chain_node(members, index + 1)] if index + 1 < len(members) else [],
    }


def chain_payload(chain_id: int) -> Dict[str, Any]:
    return {"id": chain_id, "chain": _chain_node(EVOLUTION_CHAINS[chain_id - 1], 0)}


def ability_payload(name: str) -> Dict[str, Any]:
    return {
        "name": name,
        "effect_entries": [
            {"effect": ABILITIES[name], "short_effect": ABILITIES[name], "language": {"name": "en"}}
        ],
    }


def move_payloads() -> Dict[str, Dict[str, Any]]:
    return {
        "tackle": {
            "id": 33,
            "name": "tackle",
            "type": {"name": "normal"},
            "damage_class": {"name": "physical"},
            "power": 40,
            "accuracy": 100,
            "pp": 35,
            "priority": 0,
            "effect_chance": None,
            "effect_entries": [
                {
                    "effect": "Inflicts regular damage.",
                    "short_effect": "Inflicts regular damage with no additional effect.",
                    "language": {"name": "en"},
                }
            ],
            "target": {"name": "selected-pokemon"},
        },
        "thunder-punch": {
            "id": 9,
            "name": "thunder-punch",
            "type": {"name": "electric"},
            "damage_class": {"name": "physical"},
            "power": 75,
            "accuracy": 100,
            "pp": 15,
            "priority": 0,
            "effect_chance": 10,
            "effect_entries": [
                {
                    "effect": "Inflicts regular damage. Has a $effect_chance% chance to paralyze the target.",
                    "short_effect": "Has a $effect_chance% chance to paralyze the target.",
                    "language": {"name": "en"},
                }
            ],
            "target": {"name": "selected-pokemon"},
        },
        "growl": {
            "id": 45,
            "name": "growl",
            "type": {"name": "normal"},
            "damage_class": {"name": "status"},
            "power": None,
            "accuracy": 100,
            "pp": 40,
            "priority": 0,
            "effect_chance": None,
            "effect_entries": [],
            "target": {"name": "all-opponents"},
        },
    }


def type_payload(type_name: str) -> Dict[str, Any]:
    return {
        "name": type_name,
        "pokemon": [
            {
                "slot": 1,
                "pokemon": {"name": name, "url": f"{FAKE_BASE_URL}/pokemon/{i}/"},
            }
            for i, (name, types) in enumerate(POKEMON, start=1)
            if type_name in types
        ],
    }


def build_resources() -> Dict[str, Dict[str, Any]]:
    """Every resource keyed by its path, without trailing slash."""
    resources: Dict[str, Dict[str, Any]] = {}
    for pokemon_id in range(1, len(POKEMON) + 1):
        resources[f"/pokemon/{pokemon_id}"] = pokemon_payload(pokemon_id)
        resources[f"/pokemon-species/{pokemon_id}"] = species_payload(pokemon_id)
    for chain_id in range(1, len(EVOLUTION_CHAINS) + 1):
        resources[f"/evolution-chain/{chain_id}"] = chain_payload(chain_id)
    for name in ABILITIES:
        resources[f"/ability/{name}"] = ability_payload(name)
    for name, payload in move_payloads().items():
        resources[f"/move/{name}"] = payload
    for type_name in {t for _, types in POKEMON for t in types}:
        resources[f"/type/{type_name}"] = type_payload(type_name)
    return resources


class FakePokeAPIClient(PokeAPIClient):
    """
    PokeAPIClient whose transport serves the fixed dataset.

    Attributes:
        resources: Mutable path -> payload map; tests may replace entries.
        failures: Path -> exception raised instead of serving that path.
        network_down: When True every request raises NetworkError.
        latency: Seconds each request takes.
        calls: Every path requested, in order.
    """

    def __init__(self, latency: float = 0.0, breaker: Optional[CircuitBreaker] = None):
        super().__init__(
            base_url=FAKE_BASE_URL,
            breaker=breaker
            or CircuitBreaker(
                failure_threshold=100,
                recovery_timeout=60.0,
                expected_exceptions=(NetworkError, ServerError),
                name="fake_pokeapi",
            ),
        )
        self.resources = build_resources()
        self.failures: Dict[str, Exception] = {}
        self.network_down = False
        self.latency = latency
        self.calls: List[str] = []

    def calls_to(self, prefix: str) -> List[str]:
        return [path for path in self.calls if path.startswith(prefix)]

    async def _request_json(self, url: str) -> Dict[str, Any]:
        parts = urlsplit(url)
        path = parts.path[len(urlsplit(self.base_url).path):].rstrip("/")
        self.calls.append(path)
        self.requests_made += 1

        if self.latency:
            await asyncio.sleep(self.latency)
        if self.network_down:
            raise NetworkError()
        if path in self.failures:
            raise self.failures[path]

        if path == "/pokemon":
            query = parse_qs(parts.query)
            offset = int(query.get("offset", ["0"])[0])
            limit = int(query.get("limit", ["20"])[0])
            return self._listing(offset, limit)

        if path not in self.resources:
            raise NotFoundError(status=404, url=url)
        return self.resources[path]

    def _listing(self, offset: int, limit: int) -> Dict[str, Any]:
        total = len(POKEMON)
        end = min(offset + limit, total)
        return {
            "count": total,
            "next": f"{FAKE_BASE_URL}/pokemon?offset={end}&limit={limit}" if end < total else None,
            "previous": None,
            "results": [
                {"name": name_of(i), "url": f"{FAKE_BASE_URL}/pokemon/{i}/"}
                for i in range(offset + 1, end + 1)
            ],
        }
