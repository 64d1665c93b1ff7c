"""Enrollment service for registering a user's face.

This module captures face samples from a live source, gates them behind a
liveness check, averages their descriptors and persists the result locally
(and remotely when online).
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

import numpy as np

from facesync.core.errors import FaceSyncError, LivenessError, NoFaceDetectedError
from facesync.core.interfaces import DescriptorExtractor, FaceSample, FrameSource, RemoteStore
from facesync.core.logging_config import get_logger
from facesync.core.utils import mean_descriptor, now_ms
from facesync.services.liveness import LivenessAnalyzer
from facesync.storage.local_store import LocalStore
from facesync.storage.schemas import REMOTE_DESCRIPTORS_TABLE, EnrolledDescriptor

logger = get_logger(__name__)


class EnrollmentService:
    """Service for capturing and enrolling a user's face descriptor.

    Workflow:
    1. Liveness check on the live source
    2. Extract descriptors from up to ``num_captures`` frames
    3. Require at least ``min_captures`` good samples
    4. Save the mean descriptor locally
    5. Upsert it into the remote gallery when online (best effort)

    Attributes:
        store: Local store for the descriptor gallery
        extractor: Descriptor extractor
        liveness: Liveness analyzer
        remote: Remote store (optional)

    Example:
        >>> service = EnrollmentService(store, extractor, liveness, remote)
        >>> enrolled = await service.enroll("user-1", source, online=True)
        >>> enrolled.descriptor.shape
        (128,)
    """

    def __init__(
        self,
        store: LocalStore,
        extractor: DescriptorExtractor,
        liveness: LivenessAnalyzer,
        remote: Optional[RemoteStore] = None,
        num_captures: int = 10,
        min_captures: int = 5,
        capture_timeout: float = 3.0,
        capture_delay: float = 0.2,
        liveness_duration: float = 2.0,
    ):
        """Initialize enrollment service.

        Args:
            store: Local store
            extractor: Descriptor extractor instance
            liveness: Liveness analyzer instance
            remote: Remote store for the shared gallery
            num_captures: Frames to try after the liveness check
            min_captures: Good samples required to enroll
            capture_timeout: Timeout per frame capture (seconds)
            capture_delay: Wait between captures (seconds)
            liveness_duration: Liveness sampling window (seconds)
        """
        if not 1 <= min_captures <= num_captures:
            raise ValueError(
                f"Need 1 <= min_captures <= num_captures, got {min_captures}, {num_captures}"
            )

        self.store = store
        self.extractor = extractor
        self.liveness = liveness
        self.remote = remote
        self.num_captures = num_captures
        self.min_captures = min_captures
        self.capture_timeout = capture_timeout
        self.capture_delay = capture_delay
        self.liveness_duration = liveness_duration

        logger.info(
            f"Initialized EnrollmentService: captures={min_captures}/{num_captures}, "
            f"liveness_duration={liveness_duration}s"
        )

    async def process_frame(self, frame: np.ndarray) -> Tuple[bool, Optional[FaceSample], str]:
        """Process a single frame for enrollment.

        Args:
            frame: Input frame in BGR format [H, W, 3]

        Returns:
            Tuple of (success, sample, message):
                - success: True if the frame yields a usable sample
                - sample: FaceSample if success, None otherwise
                - message: Status message explaining the result

        Example:
            >>> ok, sample, msg = await service.process_frame(frame)
            >>> if not ok:
            ...     print(f"Skipped: {msg}")
        """
        sample = await self.extractor.extract(frame)

        if sample is None:
            return False, None, "No face detected"

        if not sample.has_eyes:
            return False, None, "No landmarks detected"

        return True, sample, f"Captured face {sample.bbox.width}x{sample.bbox.height}"

    async def _capture_samples(self, source: FrameSource) -> List[FaceSample]:
        samples: List[FaceSample] = []

        for index in range(self.num_captures):
            try:
                frame = await asyncio.wait_for(
                    asyncio.to_thread(source.get_frame), timeout=self.capture_timeout
                )
                success, sample, message = await asyncio.wait_for(
                    self.process_frame(frame), timeout=self.capture_timeout
                )
            except asyncio.TimeoutError:
                success, sample, message = False, None, "Capture timed out"

            if success:
                samples.append(sample)
                logger.debug(f"Enrollment capture {index + 1}: {message}")
            else:
                logger.debug(f"Enrollment capture {index + 1} skipped: {message}")

            if index < self.num_captures - 1:
                await asyncio.sleep(self.capture_delay)

        return samples

    async def enroll(self, user_id: str, source: FrameSource, online: bool = False) -> EnrolledDescriptor:
        """Enroll the face currently in front of ``source``.

        Args:
            user_id: User to enroll
            source: Started frame source
            online: Also upsert into the remote gallery

        Returns:
            The enrolled descriptor.

        Raises:
            LivenessError: If the liveness check fails.
            NoFaceDetectedError: If fewer than ``min_captures`` samples were usable.
        """
        logger.info(f"Starting enrollment for {user_id}")

        result = await self.liveness.check(source, duration=self.liveness_duration)
        if not result.is_live:
            raise LivenessError(result.message, log_message=f"Enrollment liveness failed: {result!r}")

        samples = await self._capture_samples(source)
        if len(samples) < self.min_captures:
            raise NoFaceDetectedError(
                "Could not capture enough face samples. Please try again.",
                log_message=f"Only {len(samples)}/{self.min_captures} usable samples",
            )

        enrolled = EnrolledDescriptor(
            user_id=user_id,
            descriptor=mean_descriptor([s.descriptor for s in samples]),
            updated_at=now_ms(),
        )
        await self.store.save_descriptor(enrolled)
        logger.info(f"Enrolled {user_id} from {len(samples)} samples")

        if online and self.remote is not None:
            try:
                await self.remote.upsert(REMOTE_DESCRIPTORS_TABLE, enrolled.to_remote())
                logger.info(f"Uploaded descriptor for {user_id}")
            except FaceSyncError as e:
                logger.warning(f"Remote descriptor upload failed for {user_id}, kept locally: {e}")

        return enrolled

    async def has_enrollment(self, user_id: str) -> bool:
        return await self.store.has_descriptor(user_id)

    async def delete_enrollment(self, user_id: str) -> bool:
        """Remove the local descriptor. Returns True if one existed."""
        deleted = await self.store.delete_descriptor(user_id)
        if deleted:
            logger.info(f"Deleted enrollment for {user_id}")
        return deleted
