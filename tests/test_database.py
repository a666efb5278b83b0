import pytest

from utils.database import Database, create_database
from utils.errors import ValidationError


@pytest.mark.asyncio
class TestApiCache:
    async def test_set_and_get(self, database):
        await database.set_cache("k", {"name": "pikachu", "types": ["electric"]}, max_size=10)

        assert await database.get_cache("k", max_age=60) == {
            "name": "pikachu",
            "types": ["electric"],
        }
        assert await database.get_cache("missing", max_age=60) is None

    async def test_expired_entry_is_deleted(self, database):
        await database.set_cache("k", [1, 2, 3], max_size=10)

        assert await database.get_cache("k", max_age=0) is None
        # Deleted on the expired read, so a generous max_age finds nothing either
        assert await database.get_cache("k", max_age=3600) is None

    async def test_overwrite_keeps_single_row(self, database):
        await database.set_cache("k", 1, max_size=10)
        await database.set_cache("k", 2, max_size=10)

        assert await database.get_cache("k", max_age=60) == 2
        assert (await database.get_cache_stats())["size"] == 1

    async def test_evicts_oldest_when_full(self, database):
        for key in ("a", "b", "c"):
            await database.set_cache(key, key, max_size=3)

        await database.set_cache("d", "d", max_size=3)

        assert await database.get_cache("a", max_age=60) is None
        for key in ("b", "c", "d"):
            assert await database.get_cache(key, max_age=60) == key

    async def test_cleanup_and_clear(self, database):
        await database.set_cache("a", 1, max_size=10)
        await database.set_cache("b", 2, max_size=10)

        assert await database.cleanup_expired_cache(max_age=3600) == 0
        assert await database.cleanup_expired_cache(max_age=-1) == 2

        await database.set_cache("c", 3, max_size=10)
        await database.clear_cache()
        assert (await database.get_cache_stats())["size"] == 0

    async def test_stats_count_accesses(self, database):
        await database.set_cache("a", 1, max_size=10)
        await database.get_cache("a", max_age=60)
        await database.get_cache("a", max_age=60)

        stats = await database.get_cache_stats()
        assert stats["size"] == 1
        assert stats["total_accesses"] == 3


@pytest.mark.asyncio
class TestDocuments:
    async def test_set_get_delete(self, database):
        await database.set_document("users", "ash", {"email": "ash@example.com"})

        assert await database.get_document("users", "ash") == {"email": "ash@example.com"}
        assert await database.get_document("users", "misty") is None

        assert await database.delete_document("users", "ash") is True
        assert await database.delete_document("users", "ash") is False
        assert await database.get_document("users", "ash") is None

    async def test_merge_keeps_other_fields(self, database):
        await database.set_document("users", "ash", {"email": "ash@example.com", "name": "Ash"})
        merged = await database.set_document("users", "ash", {"name": "Ash K."}, merge=True)

        assert merged == {"email": "ash@example.com", "name": "Ash K."}
        assert await database.get_document("users", "ash") == merged

        await database.set_document("users", "ash", {"name": "Replaced"})
        assert await database.get_document("users", "ash") == {"name": "Replaced"}

    async def test_collections_are_isolated(self, database):
        await database.set_document("users/ash/favorites", "ash_25", {"pokemon_id": 25})
        await database.set_document("users/misty/favorites", "misty_120", {"pokemon_id": 120})

        docs = await database.query_documents("users/ash/favorites")
        assert docs == [{"pokemon_id": 25}]
        assert await database.count_documents("users/misty/favorites") == 1

    async def test_query_where_order_limit(self, database):
        collection = "pokemon"
        await database.set_document(collection, "1", {"name": "bulbasaur", "rank": 3, "starter": True})
        await database.set_document(collection, "4", {"name": "charmander", "rank": 1, "starter": True})
        await database.set_document(collection, "25", {"name": "pikachu", "rank": 2, "starter": False})

        starters = await database.query_documents(collection, where={"starter": True}, order_by="rank")
        assert [doc["name"] for doc in starters] == ["charmander", "bulbasaur"]

        ranked = await database.query_documents(collection, order_by="rank", descending=True, limit=2)
        assert [doc["name"] for doc in ranked] == ["bulbasaur", "pikachu"]

        by_insertion = await database.query_documents(collection, order_by="created_at", descending=True)
        assert [doc["name"] for doc in by_insertion] == ["pikachu", "charmander", "bulbasaur"]

    async def test_query_nested_field(self, database):
        await database.set_document("settings", "ash", {"settings": {"theme": "dark"}})
        await database.set_document("settings", "misty", {"settings": {"theme": "light"}})

        docs = await database.query_documents("settings", where={"settings.theme": "dark"})
        assert docs == [{"settings": {"theme": "dark"}}]

    async def test_query_rejects_unsafe_field_names(self, database):
        with pytest.raises(ValidationError):
            await database.query_documents("users", where={"name') OR 1=1 --": "x"})

        with pytest.raises(ValidationError):
            await database.query_documents("users", order_by="rank; DROP TABLE documents")


@pytest.mark.asyncio
async def test_unsupported_database_type():
    with pytest.raises(ValueError, match="Unsupported database type"):
        await create_database("postgres://localhost/pokedex")


def test_not_connected_raises():
    db = Database("sqlite:///:memory:")
    assert not db.is_connected
    with pytest.raises(RuntimeError):
        db._connection()
