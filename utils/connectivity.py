"""
Connectivity monitoring.

Tracks whether PokeAPI is reachable so services can decide between the
network and the local cache before issuing a request. The probe is any
zero-argument coroutine function returning a bool; in the application it is
`PokeAPIClient.ping`.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from config.settings import CONNECTIVITY_CHECK_INTERVAL, CONNECTIVITY_TIMEOUT

logger = logging.getLogger("pokedex.connectivity")

Probe = Callable[[], Awaitable[bool]]
Listener = Callable[["NetworkState"], None]


class NetworkState(Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class ConnectivityMonitor:
    """
    Observes network reachability and notifies listeners on transitions.

    The state starts UNKNOWN; the first `has_connection()` call probes.
    `force_offline()` pins the state to OFFLINE until `force_offline(False)`,
    which is how a user-facing "offline mode" toggle is honoured.
    """

    def __init__(
        self,
        probe: Probe,
        interval: float = CONNECTIVITY_CHECK_INTERVAL,
        timeout: float = CONNECTIVITY_TIMEOUT,
    ):
        self._probe = probe
        self.interval = interval
        self.timeout = timeout

        self._state = NetworkState.UNKNOWN
        self._forced_offline = False
        self._listeners: List[Listener] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._check_lock = asyncio.Lock()

        self.last_online_at: Optional[float] = None
        self.last_checked_at: Optional[float] = None

    @property
    def state(self) -> NetworkState:
        return NetworkState.OFFLINE if self._forced_offline else self._state

    @property
    def is_online(self) -> bool:
        return self.state == NetworkState.ONLINE

    async def has_connection(self) -> bool:
        """Current reachability, probing only when the state is unknown."""
        if self._forced_offline:
            return False
        if self._state == NetworkState.UNKNOWN:
            await self.check()
        return self._state == NetworkState.ONLINE

    async def check(self) -> NetworkState:
        """Probe now and update the state."""
        async with self._check_lock:
            try:
                async with asyncio.timeout(self.timeout):
                    reachable = await self._probe()
            except (asyncio.TimeoutError, OSError) as e:
                logger.debug("Connectivity probe failed", extra={"error": type(e).__name__})
                reachable = False

            self.last_checked_at = time.time()
            self._set_state(NetworkState.ONLINE if reachable else NetworkState.OFFLINE)
        return self.state

    def force_offline(self, enabled: bool = True) -> None:
        previous = self.state
        self._forced_offline = enabled
        logger.info(f"Forced offline mode {'enabled' if enabled else 'disabled'}")
        if self.state != previous:
            self._notify(self.state)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with the new state on every transition.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, new_state: NetworkState) -> None:
        if new_state == NetworkState.ONLINE:
            self.last_online_at = time.time()
        if new_state == self._state:
            return

        old_state, self._state = self._state, new_state
        logger.info(
            "Network state changed",
            extra={"from_state": old_state.value, "to_state": new_state.value},
        )
        if not self._forced_offline:
            self._notify(new_state)

    def _notify(self, state: NetworkState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Error in connectivity listener: {e}", exc_info=True)

    # ==================== POLLING ====================

    def start(self) -> None:
        """Start the background polling loop. Requires a running event loop."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())
            logger.info("Started connectivity polling", extra={"interval": self.interval})

    async def stop(self) -> None:
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            logger.info("Stopped connectivity polling")
        self._poll_task = None

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.check()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in connectivity polling: {e}", exc_info=True)
                await asyncio.sleep(self.interval)
