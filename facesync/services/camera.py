"""Single-holder camera manager.

Only one consumer may hold the camera at a time. Acquiring a new stream
first fully releases the previous one (stop the source, detach its consumer,
wait for the device to settle) before a new source is started.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from facesync.core.config import Config
from facesync.core.errors import CameraError
from facesync.core.interfaces import FrameSource
from facesync.core.logging_config import get_logger
from facesync.core.video_io import WebcamSource

logger = get_logger(__name__)

# Called with the active source on acquire and with None on release
Consumer = Callable[[Optional[FrameSource]], None]


class CameraManager:
    """Owns the camera and hands a started FrameSource to one consumer.

    Example:
        >>> camera = CameraManager(lambda: WebcamSource(camera_id=0))
        >>> source = await camera.acquire()
        >>> try:
        ...     result = await liveness.check(source)
        ... finally:
        ...     await camera.release()
    """

    def __init__(
        self,
        source_factory: Callable[[], FrameSource],
        settle_delay: float = 0.1,
    ):
        """Initialize camera manager.

        Args:
            source_factory: Creates a new, not yet started FrameSource
            settle_delay: Seconds to wait after releasing a stream
        """
        self.source_factory = source_factory
        self.settle_delay = settle_delay
        self._source: Optional[FrameSource] = None
        self._consumer: Optional[Consumer] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: Config) -> CameraManager:
        return cls(
            lambda: WebcamSource(camera_id=config.camera_id),
            settle_delay=config.camera_settle_delay,
        )

    @property
    def is_active(self) -> bool:
        """True while a started source is held."""
        return self._source is not None

    @property
    def source(self) -> Optional[FrameSource]:
        return self._source

    async def acquire(self, consumer: Optional[Consumer] = None) -> FrameSource:
        """Release any active stream, then start and return a fresh source.

        Args:
            consumer: Optional sink attached to the new source

        Returns:
            Started FrameSource.

        Raises:
            CameraError: Subclass naming why the device could not be opened.
                Calling acquire() again is the retry path.
        """
        async with self._lock:
            if self._source is not None:
                await self._release_locked()

            source = self.source_factory()
            try:
                await asyncio.to_thread(source.start)
            except CameraError as e:
                logger.error(f"Camera acquisition failed: {e}")
                raise

            self._source = source
            self._consumer = consumer
            if consumer is not None:
                consumer(source)
            logger.info(f"Camera acquired: {source!r}")
            return source

    async def release(self) -> None:
        """Stop the active stream and detach its consumer. No-op when idle."""
        async with self._lock:
            if self._source is not None:
                await self._release_locked()

    async def _release_locked(self) -> None:
        source, consumer = self._source, self._consumer
        self._source = None
        self._consumer = None

        try:
            await asyncio.to_thread(source.stop)
        finally:
            if consumer is not None:
                consumer(None)

        logger.debug(f"Camera released, settling for {self.settle_delay:.2f}s")
        await asyncio.sleep(self.settle_delay)
