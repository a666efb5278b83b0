"""
Typed models for PokeAPI payloads and for documents in the local store.

PokeAPI responses are loose JSON maps; everything is decoded into frozen
pydantic models at the boundary so that a missing key or a wrong type fails
immediately with `DecodeError` instead of surfacing later as a `None`.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Literal, Mapping, Optional, Tuple, Type, TypedDict, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt
from pydantic import ValidationError as PydanticValidationError

from config.settings import DEFAULT_LANGUAGE, DEFAULT_THEME, SPRITES_BASE_URL
from utils.constants import (
    DEFAULT_SPRITE_PATH,
    FLAVOR_TEXT_WHITESPACE,
    MAX_NICKNAME_LENGTH,
    MAX_NOTE_LENGTH,
    OFFICIAL_ARTWORK_PATH,
    SHINY_SPRITE_PATH,
)
from utils.errors import DecodeError

ModelT = TypeVar("ModelT", bound=BaseModel)

# PokeAPI stat name -> PokemonStats field
_STAT_FIELDS = {
    "hp": "hp",
    "attack": "attack",
    "defense": "defense",
    "special-attack": "special_attack",
    "special-defense": "special_defense",
    "speed": "speed",
}

NO_DESCRIPTION = "No description available"


@contextmanager
def decoding(resource: str) -> Iterator[None]:
    """Turn schema surprises inside the block into `DecodeError`."""
    try:
        yield
    except (KeyError, TypeError, ValueError, AttributeError, PydanticValidationError) as e:
        raise DecodeError(f"Malformed {resource} payload: {e}") from e


def decode(model: Type[ModelT], data: Any) -> ModelT:
    """Validate a plain mapping (e.g. a cached JSON document) into `model`."""
    with decoding(model.__name__):
        return model.model_validate(data)


def id_from_url(url: str) -> int:
    """
    Extract the trailing numeric id from a PokeAPI resource URL.

    Example: 'https://pokeapi.co/api/v2/pokemon-species/25/' -> 25
    """
    try:
        return int(str(url).rstrip("/").rsplit("/", 1)[-1])
    except ValueError as e:
        raise DecodeError(f"Cannot read a resource id from {url!r}") from e


def official_artwork_url(pokemon_id: int) -> str:
    return f"{SPRITES_BASE_URL}{OFFICIAL_ARTWORK_PATH}/{pokemon_id}.png"


def sprite_url(pokemon_id: int, shiny: bool = False) -> str:
    path = SHINY_SPRITE_PATH if shiny else DEFAULT_SPRITE_PATH
    return f"{SPRITES_BASE_URL}{path}/{pokemon_id}.png"


def english_entry(entries: Optional[List[Mapping[str, Any]]], field: str) -> Optional[str]:
    """First English value of `field` in a localized entry list."""
    for entry in entries or []:
        if entry.get("language", {}).get("name") == "en" and entry.get(field):
            return entry[field]
    return None


def clean_flavor_text(text: str) -> str:
    """Game flavor text is full of form feeds and hard line breaks."""
    return FLAVOR_TEXT_WHITESPACE.sub(" ", text).strip()


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# ==================== POKEMON ====================


class PokemonStats(_Frozen):
    hp: NonNegativeInt = 0
    attack: NonNegativeInt = 0
    defense: NonNegativeInt = 0
    special_attack: NonNegativeInt = 0
    special_defense: NonNegativeInt = 0
    speed: NonNegativeInt = 0

    @property
    def total(self) -> int:
        return (
            self.hp
            + self.attack
            + self.defense
            + self.special_attack
            + self.special_defense
            + self.speed
        )

    @classmethod
    def from_api(cls, stats: List[Mapping[str, Any]]) -> "PokemonStats":
        """Build from the `stats` array of a pokemon resource; absent stats are 0."""
        values = {}
        for stat in stats:
            field = _STAT_FIELDS.get(stat["stat"]["name"])
            if field:
                values[field] = stat["base_stat"]
        return cls(**values)


class PokemonSummary(_Frozen):
    """
    List-level Pokemon record. Identity is the integer id.

    Attributes:
        types: Type names in slot order.
        sprite_url: Official artwork when available, else the default sprite.
        height: Decimetres, as PokeAPI reports it.
        weight: Hectograms, as PokeAPI reports it.
    """

    id: PositiveInt
    name: str = Field(min_length=1)
    types: Tuple[str, ...]
    sprite_url: str
    height: NonNegativeInt
    weight: NonNegativeInt
    base_experience: NonNegativeInt = 0
    stats: PokemonStats

    @staticmethod
    def _summary_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
        pokemon_id = payload["id"]
        sprites = payload.get("sprites") or {}
        artwork = ((sprites.get("other") or {}).get("official-artwork") or {}).get(
            "front_default"
        )
        slots = sorted(payload["types"], key=lambda slot: slot.get("slot", 0))
        return {
            "id": pokemon_id,
            "name": payload["name"],
            "types": tuple(slot["type"]["name"] for slot in slots),
            "sprite_url": artwork
            or sprites.get("front_default")
            or official_artwork_url(pokemon_id),
            "height": payload["height"],
            "weight": payload["weight"],
            "base_experience": payload.get("base_experience") or 0,
            "stats": PokemonStats.from_api(payload["stats"]),
        }

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "PokemonSummary":
        """Decode a `/pokemon/{id}` resource."""
        with decoding("pokemon"):
            return cls(**cls._summary_fields(payload))


class PokemonAbility(_Frozen):
    name: str
    description: str = NO_DESCRIPTION
    is_hidden: bool = False


class PokemonMove(_Frozen):
    name: str
    learn_method: Optional[str] = None
    level_learned_at: Optional[NonNegativeInt] = None


class EvolutionStage(_Frozen):
    """
    One node of an evolution chain.

    `depth` is 0 for the base form. `trigger`, `min_level` and `item` describe
    how this stage is reached from its parent and are None for the base form.
    """

    pokemon_id: PositiveInt
    name: str
    sprite_url: str
    depth: NonNegativeInt = 0
    trigger: Optional[str] = None
    min_level: Optional[int] = None
    item: Optional[str] = None


def flatten_evolution_chain(node: Mapping[str, Any], depth: int = 0) -> List[EvolutionStage]:
    """Depth-first flattening of a chain node, preserving API branch order."""
    details = node.get("evolution_details") or []
    first = details[0] if details else {}
    species_id = id_from_url(node["species"]["url"])

    stages = [
        EvolutionStage(
            pokemon_id=species_id,
            name=node["species"]["name"],
            sprite_url=official_artwork_url(species_id),
            depth=depth,
            trigger=(first.get("trigger") or {}).get("name"),
            min_level=first.get("min_level"),
            item=(first.get("item") or {}).get("name"),
        )
    ]
    for child in node.get("evolves_to") or []:
        stages.extend(flatten_evolution_chain(child, depth + 1))
    return stages


class PokemonDetail(PokemonSummary):
    """
    Full Pokemon record composed from the pokemon, species and evolution-chain
    resources (plus one ability resource per ability for descriptions).
    """

    abilities: Tuple[PokemonAbility, ...] = ()
    moves: Tuple[PokemonMove, ...] = ()
    evolution_chain: Tuple[EvolutionStage, ...] = ()
    description: str = NO_DESCRIPTION
    genus: str = "Unknown"
    capture_rate: NonNegativeInt = 0
    egg_groups: Tuple[str, ...] = ()
    gender_ratio: Optional[float] = Field(default=None, ge=0, le=100)
    generation: PositiveInt = 1
    habitat: str = "unknown"

    @property
    def summary(self) -> PokemonSummary:
        return PokemonSummary(**{name: getattr(self, name) for name in PokemonSummary.model_fields})

    @classmethod
    def compose(
        cls,
        pokemon: Mapping[str, Any],
        species: Mapping[str, Any],
        chain: Mapping[str, Any],
        abilities: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> "PokemonDetail":
        """
        Assemble a detail record from its source resources.

        Args:
            pokemon: `/pokemon/{id}` payload.
            species: The species payload linked from `pokemon`.
            chain: The evolution-chain payload linked from `species`.
            abilities: Ability payloads keyed by ability name.

        Raises:
            DecodeError: If any payload is malformed or the three resources
                do not describe the same species.
        """
        abilities = abilities or {}
        with decoding("pokemon detail"):
            species_id = id_from_url(pokemon["species"]["url"])
            if species["id"] != species_id:
                raise DecodeError(
                    f"Species mismatch: pokemon {pokemon['id']} links species "
                    f"{species_id}, got {species['id']}"
                )
            chain_id = id_from_url(species["evolution_chain"]["url"])
            if chain["id"] != chain_id:
                raise DecodeError(
                    f"Evolution chain mismatch: species {species_id} links chain "
                    f"{chain_id}, got {chain['id']}"
                )

            stages = flatten_evolution_chain(chain["chain"])
            if species_id not in {stage.pokemon_id for stage in stages}:
                raise DecodeError(
                    f"Evolution chain {chain_id} does not contain species {species_id}"
                )

            ability_list = []
            for slot in pokemon.get("abilities") or []:
                name = slot["ability"]["name"]
                resource = abilities.get(name) or {}
                ability_list.append(
                    PokemonAbility(
                        name=name,
                        description=english_entry(resource.get("effect_entries"), "effect")
                        or NO_DESCRIPTION,
                        is_hidden=slot.get("is_hidden", False),
                    )
                )

            move_list = []
            for entry in pokemon.get("moves") or []:
                versions = entry.get("version_group_details") or []
                latest = versions[-1] if versions else {}
                move_list.append(
                    PokemonMove(
                        name=entry["move"]["name"],
                        learn_method=(latest.get("move_learn_method") or {}).get("name"),
                        level_learned_at=latest.get("level_learned_at"),
                    )
                )

            flavor = english_entry(species.get("flavor_text_entries"), "flavor_text")
            gender_rate = species.get("gender_rate", -1)

            return cls(
                **cls._summary_fields(pokemon),
                abilities=tuple(ability_list),
                moves=tuple(move_list),
                evolution_chain=tuple(stages),
                description=clean_flavor_text(flavor) if flavor else NO_DESCRIPTION,
                genus=english_entry(species.get("genera"), "genus") or "Unknown",
                capture_rate=species.get("capture_rate") or 0,
                egg_groups=tuple(g["name"] for g in species.get("egg_groups") or []),
                gender_ratio=None if gender_rate < 0 else gender_rate * 12.5,
                generation=id_from_url(species["generation"]["url"]),
                habitat=(species.get("habitat") or {}).get("name") or "unknown",
            )


class PokemonPage(_Frozen):
    """
    One page of the catalog.

    `has_more` is False once the server stops reporting a next page or a
    short page comes back. `total` is the server count when it provided one.
    """

    items: Tuple[PokemonSummary, ...]
    offset: NonNegativeInt
    limit: PositiveInt
    has_more: bool
    total: Optional[NonNegativeInt] = None


# ==================== MOVES ====================


class MoveCategory(str, Enum):
    PHYSICAL = "physical"
    SPECIAL = "special"
    STATUS = "status"


class MoveDetail(_Frozen):
    id: PositiveInt
    name: str
    type: str
    category: MoveCategory
    power: Optional[int] = None
    accuracy: Optional[int] = None
    pp: Optional[int] = None
    priority: int = 0
    effect: str = NO_DESCRIPTION
    short_effect: str = NO_DESCRIPTION
    effect_chance: Optional[int] = None
    target: str = "selected-pokemon"

    @property
    def display_power(self) -> str:
        return str(self.power) if self.power is not None else "-"

    @property
    def display_accuracy(self) -> str:
        return f"{self.accuracy}%" if self.accuracy is not None else "-"

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "MoveDetail":
        """Decode a `/move/{name}` resource, substituting `$effect_chance`."""
        with decoding("move"):
            chance = payload.get("effect_chance")
            entries = payload.get("effect_entries")

            def _effect(field: str) -> str:
                text = english_entry(entries, field) or NO_DESCRIPTION
                if chance is not None:
                    text = text.replace("$effect_chance", str(chance))
                return clean_flavor_text(text)

            return cls(
                id=payload["id"],
                name=payload["name"],
                type=payload["type"]["name"],
                category=payload["damage_class"]["name"],
                power=payload.get("power"),
                accuracy=payload.get("accuracy"),
                pp=payload.get("pp"),
                priority=payload.get("priority") or 0,
                effect=_effect("effect"),
                short_effect=_effect("short_effect"),
                effect_chance=chance,
                target=(payload.get("target") or {}).get("name") or "selected-pokemon",
            )


# ==================== USER DOCUMENTS ====================


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def favorite_id(user_id: str, pokemon_id: int) -> str:
    return f"{user_id}_{pokemon_id}"


class Favorite(_Frozen):
    """A user's saved reference to a Pokemon, with an optional note/nickname."""

    id: str
    user_id: str = Field(min_length=1)
    pokemon_id: PositiveInt
    pokemon_name: str
    pokemon_types: Tuple[str, ...] = ()
    image_url: str = ""
    note: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)
    nickname: Optional[str] = Field(default=None, max_length=MAX_NICKNAME_LENGTH)
    added_at: datetime

    @classmethod
    def from_pokemon(
        cls,
        user_id: str,
        pokemon: PokemonSummary,
        note: Optional[str] = None,
        nickname: Optional[str] = None,
        added_at: Optional[datetime] = None,
    ) -> "Favorite":
        with decoding("favorite"):
            return cls(
                id=favorite_id(user_id, pokemon.id),
                user_id=user_id,
                pokemon_id=pokemon.id,
                pokemon_name=pokemon.name,
                pokemon_types=pokemon.types,
                image_url=pokemon.sprite_url,
                note=note,
                nickname=nickname,
                added_at=added_at or utcnow(),
            )


class NotificationSettings(_Frozen):
    push_enabled: bool = True
    email_enabled: bool = True


class UserSettings(_Frozen):
    theme: Literal["light", "dark", "system"] = DEFAULT_THEME
    language: str = Field(default=DEFAULT_LANGUAGE, min_length=2, max_length=8)
    notifications: NotificationSettings = NotificationSettings()


class UserProfile(_Frozen):
    """Identity-provider profile mirrored into the document store."""

    id: str = Field(min_length=1)
    email: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    is_email_verified: bool = False
    settings: UserSettings = UserSettings()
    created_at: datetime = Field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None


# ==================== STATS ====================


class CacheStats(TypedDict):
    """
    Represents cache statistics.

    Attributes:
        size: Current number of entries in the cache (not bytes).
        max_size: Maximum allowed entries before eviction triggers.
        hits: Number of successful cache lookups.
        misses: Number of failed lookups.
        hit_rate: Percentage string (e.g., '85.5%').
    """

    size: Union[int, str]
    max_size: int
    hits: int
    misses: int
    hit_rate: str


class DeduplicationStats(TypedDict):
    """
    Represents request deduplication statistics.

    Attributes:
        pending_requests: Number of distinct requests currently in flight.
        waiters: Total callers waiting on those requests.
    """

    pending_requests: int
    waiters: int
