import asyncio

import pytest

from utils.connectivity import ConnectivityMonitor, NetworkState


@pytest.mark.asyncio
async def test_first_query_probes_once(connectivity, probe):
    assert connectivity.state == NetworkState.UNKNOWN

    assert await connectivity.has_connection() is True
    assert await connectivity.has_connection() is True

    assert probe.calls == 1
    assert connectivity.is_online
    assert connectivity.last_online_at is not None


@pytest.mark.asyncio
async def test_check_reports_transitions(connectivity, probe):
    seen = []
    connectivity.subscribe(seen.append)

    await connectivity.check()
    probe.online = False
    await connectivity.check()
    await connectivity.check()

    assert seen == [NetworkState.ONLINE, NetworkState.OFFLINE]
    assert await connectivity.has_connection() is False


@pytest.mark.asyncio
async def test_force_offline(connectivity, probe):
    seen = []
    unsubscribe = connectivity.subscribe(seen.append)
    await connectivity.check()

    connectivity.force_offline()
    assert connectivity.state == NetworkState.OFFLINE
    assert await connectivity.has_connection() is False
    # Probe results do not override the forced state
    await connectivity.check()
    assert connectivity.state == NetworkState.OFFLINE

    connectivity.force_offline(False)
    assert await connectivity.has_connection() is True
    assert seen == [NetworkState.ONLINE, NetworkState.OFFLINE, NetworkState.ONLINE]

    unsubscribe()
    connectivity.force_offline()
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_probe_errors_mean_offline():
    async def broken_probe():
        raise ConnectionRefusedError()

    monitor = ConnectivityMonitor(broken_probe, interval=1, timeout=1)
    assert await monitor.has_connection() is False
    assert monitor.state == NetworkState.OFFLINE


@pytest.mark.asyncio
async def test_slow_probe_times_out():
    async def slow_probe():
        await asyncio.sleep(10)
        return True

    monitor = ConnectivityMonitor(slow_probe, interval=1, timeout=0.01)
    assert await monitor.check() == NetworkState.OFFLINE


@pytest.mark.asyncio
async def test_listener_errors_are_contained(connectivity):
    seen = []

    def broken(state):
        raise RuntimeError("boom")

    connectivity.subscribe(broken)
    connectivity.subscribe(seen.append)

    await connectivity.check()
    assert seen == [NetworkState.ONLINE]


@pytest.mark.asyncio
async def test_polling_follows_probe(connectivity, probe):
    connectivity.start()
    try:
        await asyncio.sleep(0.03)
        assert connectivity.is_online

        probe.online = False
        await asyncio.sleep(0.05)
        assert connectivity.state == NetworkState.OFFLINE
    finally:
        await connectivity.stop()

    calls = probe.calls
    await asyncio.sleep(0.03)
    assert probe.calls == calls
