"""Unit tests for the single-holder camera manager."""

from __future__ import annotations

import pytest

from facesync.core.errors import CameraBusyError, CameraError
from facesync.services.camera import CameraManager

from fakes import FakeFrameSource


class SourceFactory:
    """Hands out fresh fake sources and remembers them."""

    def __init__(self, start_error=None):
        self.start_error = start_error
        self.created = []

    def __call__(self):
        source = FakeFrameSource(self.start_error)
        self.created.append(source)
        return source


@pytest.mark.asyncio
async def test_acquire_starts_source():
    """Test that acquire returns a started source."""
    factory = SourceFactory()
    camera = CameraManager(factory, settle_delay=0.0)

    source = await camera.acquire()

    assert source.is_opened
    assert camera.is_active
    assert camera.source is source


@pytest.mark.asyncio
async def test_acquire_releases_previous_stream_first():
    """Test that a second acquire stops the first source and detaches its consumer."""
    factory = SourceFactory()
    camera = CameraManager(factory, settle_delay=0.0)
    events = []

    first = await camera.acquire(lambda s: events.append(("first", s)))
    second = await camera.acquire(lambda s: events.append(("second", s)))

    assert first.stopped == 1
    assert not first.is_opened
    assert second.is_opened
    assert events == [("first", first), ("first", None), ("second", second)]


@pytest.mark.asyncio
async def test_release_is_idempotent():
    """Test that releasing twice stops the source once."""
    factory = SourceFactory()
    camera = CameraManager(factory, settle_delay=0.0)
    source = await camera.acquire()

    await camera.release()
    await camera.release()

    assert source.stopped == 1
    assert not camera.is_active


@pytest.mark.asyncio
async def test_acquire_failure_propagates_camera_error():
    """Test that device errors reach the caller and leave the manager idle."""
    camera = CameraManager(SourceFactory(CameraBusyError()), settle_delay=0.0)

    with pytest.raises(CameraError) as exc_info:
        await camera.acquire()

    assert isinstance(exc_info.value, CameraBusyError)
    assert "already in use" in exc_info.value.user_message
    assert not camera.is_active


@pytest.mark.asyncio
async def test_retry_after_failure():
    """Test that calling acquire again is the retry path."""
    factory = SourceFactory(CameraBusyError())
    camera = CameraManager(factory, settle_delay=0.0)

    with pytest.raises(CameraBusyError):
        await camera.acquire()

    factory.start_error = None
    source = await camera.acquire()

    assert source.is_opened
