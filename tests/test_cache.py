import pytest

from utils.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def test_get_returns_identical_object(clock):
    cache = TTLCache(ttl=60, max_entries=10, clock=clock)
    value = object()
    cache.set(1, value)

    assert cache.get(1) is value
    assert cache.hits == 1


def test_entries_expire_after_ttl(clock):
    cache = TTLCache(ttl=60, max_entries=10, clock=clock)
    cache.set(1, "bulbasaur")

    clock.advance(59)
    assert cache.get(1) == "bulbasaur"

    clock.advance(1)
    assert cache.get(1) is None
    assert 1 not in cache
    assert len(cache) == 0


def test_eviction_is_insertion_ordered(clock):
    cache = TTLCache(ttl=60, max_entries=2, clock=clock)
    cache.set(1, "a")
    cache.set(2, "b")

    # Reading does not protect an entry from eviction
    cache.get(1)
    cache.set(3, "c")

    assert 1 not in cache
    assert 2 in cache and 3 in cache
    assert cache.evictions == 1


def test_reset_moves_entry_to_newest(clock):
    cache = TTLCache(ttl=60, max_entries=2, clock=clock)
    cache.set(1, "a")
    cache.set(2, "b")
    cache.set(1, "a2")
    cache.set(3, "c")

    assert cache.get(1) == "a2"
    assert 2 not in cache


def test_reset_refreshes_expiry(clock):
    cache = TTLCache(ttl=60, max_entries=2, clock=clock)
    cache.set(1, "a")
    clock.advance(50)
    cache.set(1, "a")
    clock.advance(50)

    assert cache.get(1) == "a"


def test_purge_expired(clock):
    cache = TTLCache(ttl=60, max_entries=10, clock=clock)
    cache.set(1, "a")
    clock.advance(30)
    cache.set(2, "b")
    clock.advance(30)

    assert cache.purge_expired() == 1
    assert list(k for k in (1, 2) if k in cache) == [2]


def test_stats_and_clear(clock):
    cache = TTLCache(ttl=60, max_entries=5, clock=clock)
    cache.set(1, "a")
    cache.get(1)
    cache.get(2)

    stats = cache.get_stats()
    assert stats["size"] == 1
    assert stats["max_size"] == 5
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == "50.0%"

    cache.clear()
    assert len(cache) == 0
    assert cache.get_stats()["hits"] == 0


@pytest.mark.parametrize("ttl,max_entries", [(0, 1), (-1, 1), (10, 0)])
def test_rejects_invalid_configuration(ttl, max_entries):
    with pytest.raises(ValueError):
        TTLCache(ttl=ttl, max_entries=max_entries)


def test_delete(clock):
    cache = TTLCache(ttl=60, max_entries=5, clock=clock)
    cache.set(1, "bulbasaur")

    assert cache.delete(1) is True
    assert cache.delete(1) is False
    assert 1 not in cache
    assert len(cache) == 0
