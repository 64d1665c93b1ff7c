"""Process-wide online/offline flag with subscribers.

Subscribers are called immediately with the current state and then on every
transition. Setting the same state twice does not notify.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from facesync.core.events import Channel, Listener
from facesync.core.logging_config import get_logger

logger = get_logger(__name__)

Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Tracks connectivity and fans out transitions.

    Example:
        >>> monitor = ConnectivityMonitor(initial=False)
        >>> monitor.subscribe(lambda online: print("online" if online else "offline"))
        offline
        >>> monitor.set_online(True)
        online
    """

    def __init__(self, initial: bool = False):
        self._channel: Channel[bool] = Channel(initial, name="connectivity")

    @property
    def is_online(self) -> bool:
        return self._channel.value

    def set_online(self, online: bool) -> None:
        """Record the current state; listeners only hear about transitions."""
        online = bool(online)
        if online == self._channel.value:
            return
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        self._channel.publish(online)

    def subscribe(self, listener: Listener) -> None:
        self._channel.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._channel.unsubscribe(listener)

    async def drain(self) -> None:
        """Wait until asynchronous listeners of past transitions have finished."""
        await self._channel.drain()

    async def watch(self, probe: Probe, interval: float = 5.0, stop: Optional[asyncio.Event] = None) -> None:
        """Poll ``probe`` every ``interval`` seconds and feed the result to set_online().

        Runs until ``stop`` is set or the task is cancelled. A probe that
        raises counts as offline.
        """
        logger.info(f"Watching connectivity every {interval:.1f}s")
        while stop is None or not stop.is_set():
            try:
                online = await probe()
            except Exception as e:
                logger.debug(f"Connectivity probe failed: {e}")
                online = False
            self.set_online(online)

            if stop is None:
                await asyncio.sleep(interval)
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Connectivity watch stopped")
