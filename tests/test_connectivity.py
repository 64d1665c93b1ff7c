"""Unit tests for the connectivity monitor and the event channel."""

from __future__ import annotations

import asyncio

import pytest

from facesync.core.events import Channel
from facesync.services.connectivity import ConnectivityMonitor


def test_subscriber_gets_current_state(connectivity):
    """Test that a new subscriber is told the current state immediately."""
    seen = []
    connectivity.subscribe(seen.append)

    assert seen == [False]


def test_only_transitions_are_published(connectivity):
    """Test that repeating the same state does not notify."""
    seen = []
    connectivity.subscribe(seen.append)

    connectivity.set_online(True)
    connectivity.set_online(True)
    connectivity.set_online(False)
    connectivity.set_online(False)

    assert seen == [False, True, False]
    assert connectivity.is_online is False


def test_unsubscribe_stops_notifications(connectivity):
    """Test that unsubscribed listeners (including bound methods) are not called."""

    class Listener:
        def __init__(self):
            self.seen = []

        def on_change(self, online):
            self.seen.append(online)

    listener = Listener()
    connectivity.subscribe(listener.on_change)
    connectivity.unsubscribe(listener.on_change)
    connectivity.set_online(True)

    assert listener.seen == [False]


def test_failing_listener_does_not_block_others():
    """Test that one raising listener does not starve the rest."""
    channel = Channel(0, name="test")
    seen = []

    def broken(value):
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(seen.append)
    channel.publish(1)

    assert seen == [0, 1]
    assert channel.value == 1
    assert len(channel) == 2


@pytest.mark.asyncio
async def test_async_listeners_are_scheduled(connectivity):
    """Test that coroutine listeners run and can be awaited with drain()."""
    seen = []

    async def listener(online):
        await asyncio.sleep(0)
        seen.append(online)

    connectivity.subscribe(listener)
    connectivity.set_online(True)
    await connectivity.drain()

    assert seen == [False, True]


def test_async_listener_without_running_loop_is_skipped():
    """Test that publishing outside an event loop skips coroutine listeners without raising."""
    channel = Channel(0, name="test")
    seen = []

    async def listener(value):
        seen.append(value)

    channel.subscribe(listener)
    channel.publish(1)

    assert seen == []
    assert channel._tasks == set()
    assert channel.value == 1


@pytest.mark.asyncio
async def test_watch_feeds_probe_results():
    """Test that the watch loop applies probe results until stopped."""
    monitor = ConnectivityMonitor(initial=False)
    stop = asyncio.Event()
    results = iter([True, True, False])
    seen = []
    monitor.subscribe(seen.append)

    async def probe():
        value = next(results, None)
        if value is None:
            stop.set()
            return False
        return value

    await asyncio.wait_for(monitor.watch(probe, interval=0.01, stop=stop), timeout=2.0)

    assert seen == [False, True, False]


@pytest.mark.asyncio
async def test_watch_treats_probe_errors_as_offline():
    """Test that a raising probe marks the monitor offline."""
    monitor = ConnectivityMonitor(initial=True)
    stop = asyncio.Event()

    async def probe():
        stop.set()
        raise OSError("network unreachable")

    await asyncio.wait_for(monitor.watch(probe, interval=0.01, stop=stop), timeout=2.0)

    assert monitor.is_online is False
