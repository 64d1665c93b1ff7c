"""Publish/subscribe channel with replay-on-subscribe.

Services that broadcast state (connectivity, sync status) own one Channel.
A new subscriber is called immediately with the current value, then on every
publish. Listeners may be plain callables or coroutine functions; coroutine
results are scheduled as tasks on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Generic, List, Set, TypeVar

from facesync.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Listener = Callable[[T], Any]


class Channel(Generic[T]):
    """Holds a current value and fans it out to subscribers.

    Example:
        >>> channel = Channel(False)
        >>> channel.subscribe(lambda online: print("online:", online))
        online: False
        >>> channel.publish(True)
        online: True
    """

    def __init__(self, initial: T, name: str = "channel"):
        self._value = initial
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self.name = name

    @property
    def value(self) -> T:
        """Last published value."""
        return self._value

    def subscribe(self, listener: Listener) -> None:
        """Register a listener and replay the current value to it."""
        self._listeners.append(listener)
        self._deliver(listener, self._value)

    def unsubscribe(self, listener: Listener) -> None:
        """Remove a listener; unknown listeners are ignored."""
        self._listeners = [l for l in self._listeners if l != listener]

    def publish(self, value: T) -> None:
        """Store a new value and notify every listener."""
        self._value = value
        for listener in list(self._listeners):
            self._deliver(listener, value)

    async def drain(self) -> None:
        """Wait for coroutine listeners scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _deliver(self, listener: Listener, value: T) -> None:
        try:
            result = listener(value)
        except Exception:
            # One faulty listener must not starve the others
            logger.exception(f"{self.name}: listener {listener!r} failed")
            return

        if inspect.iscoroutine(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                result.close()
                logger.error(f"{self.name}: no running event loop, async listener {listener!r} skipped")
                return
            task = loop.create_task(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"{self.name}: async listener failed: {task.exception()!r}"
            )

    def __len__(self) -> int:
        return len(self._listeners)

    def __repr__(self) -> str:
        return f"Channel(name={self.name!r}, value={self._value!r}, listeners={len(self)})"
