import os
import sys

import pytest
import pytest_asyncio

# Add project root to python path so we can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fake_pokeapi import FakePokeAPIClient  # noqa: E402
from providers.pokemon_provider import PokemonListStore  # noqa: E402
from services.favorites_service import FavoritesService  # noqa: E402
from services.pokemon_service import PokemonService  # noqa: E402
from services.profile_service import ProfileService  # noqa: E402
from utils.connectivity import ConnectivityMonitor  # noqa: E402
from utils.database import Database  # noqa: E402


class FakeProbe:
    """Connectivity probe whose answer the test controls."""

    def __init__(self, online: bool = True):
        self.online = online
        self.calls = 0

    async def __call__(self) -> bool:
        self.calls += 1
        return self.online


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory SQLite database per test."""
    db = Database("sqlite:///:memory:")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def connectivity(probe):
    return ConnectivityMonitor(probe, interval=0.01, timeout=1.0)


@pytest_asyncio.fixture
async def fake_client():
    client = FakePokeAPIClient()
    yield client
    await client.close()


@pytest.fixture
def pokemon_service(fake_client, database, connectivity):
    return PokemonService(fake_client, database, connectivity)


@pytest_asyncio.fixture
async def store(pokemon_service):
    list_store = PokemonListStore(pokemon_service, page_size=20)
    yield list_store
    await list_store.close()


@pytest.fixture
def favorites_service(database, connectivity):
    return FavoritesService(database, connectivity)


@pytest.fixture
def profile_service(database, connectivity):
    return ProfileService(database, connectivity)
