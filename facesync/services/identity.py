"""Identity resolution by nearest-neighbour search over descriptor galleries.

Galleries are scanned linearly with Euclidean distance: the local gallery
first, then (on a local miss) the remote one. A remote hit is written into
the local gallery so the next login resolves offline.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

import numpy as np

from facesync.core.errors import (
    AuthenticationError,
    CaptureTimeoutError,
    NoFaceDetectedError,
    StoreError,
    TransientError,
)
from facesync.core.interfaces import DESCRIPTOR_DIM, DescriptorExtractor, FrameSource, RemoteStore
from facesync.core.logging_config import get_logger
from facesync.core.utils import euclidean_distance, mean_descriptor
from facesync.storage.local_store import LocalStore
from facesync.storage.schemas import REMOTE_DESCRIPTORS_TABLE, EnrolledDescriptor

logger = get_logger(__name__)

RemoteGalleryFn = Callable[[], Awaitable[List[EnrolledDescriptor]]]


@dataclass
class Match:
    """Resolved identity.

    Attributes:
        user_id: Matched user
        distance: Euclidean distance to the enrolled descriptor
        source: "local" or "remote" gallery
    """

    user_id: str
    distance: float
    source: str = "local"

    def __repr__(self) -> str:
        """String representation."""
        return f"Match(user_id='{self.user_id}', distance={self.distance:.4f}, source={self.source})"


def nearest(
    captured: np.ndarray,
    gallery: Sequence[EnrolledDescriptor],
    threshold: float,
) -> Optional[tuple[EnrolledDescriptor, float]]:
    """Closest gallery entry strictly below ``threshold``.

    Ties keep the earliest entry in scan order.
    """
    best: Optional[EnrolledDescriptor] = None
    best_distance = threshold
    for entry in gallery:
        distance = euclidean_distance(captured, entry.descriptor)
        if distance < best_distance:
            best, best_distance = entry, distance
    if best is None:
        return None
    return best, best_distance


def remote_gallery(remote: RemoteStore) -> RemoteGalleryFn:
    """Build the remote gallery accessor over the descriptor table.

    Rows with a missing or wrong-sized descriptor are skipped.
    """

    async def fetch() -> List[EnrolledDescriptor]:
        rows = await remote.select_all(
            REMOTE_DESCRIPTORS_TABLE, ["user_id", "face_descriptor", "updated_at"]
        )
        gallery = []
        for row in rows:
            try:
                gallery.append(EnrolledDescriptor.from_remote(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping remote descriptor for {row.get('user_id')}: {e}")
        return gallery

    return fetch


class IdentityResolver:
    """Resolves a captured face descriptor to a user.

    Attributes:
        store: Local store holding the local gallery
        extractor: Descriptor extractor used by capture_descriptor()
        distance_threshold: Maximum Euclidean distance for a match

    Example:
        >>> resolver = IdentityResolver(store, extractor, distance_threshold=0.7)
        >>> descriptor = await resolver.capture_descriptor(source)
        >>> match = await resolver.identify(descriptor, remote_gallery(remote))
        >>> if match:
        ...     print(f"Welcome {match.user_id}")
    """

    def __init__(
        self,
        store: LocalStore,
        extractor: DescriptorExtractor,
        distance_threshold: float = 0.7,
        capture_timeout: float = 3.0,
        capture_target: int = 3,
        max_attempts: int = 5,
        attempt_delay: float = 0.3,
    ):
        if distance_threshold <= 0:
            raise ValueError(f"distance_threshold must be > 0, got {distance_threshold}")
        if capture_target > max_attempts:
            raise ValueError("capture_target cannot exceed max_attempts")

        self.store = store
        self.extractor = extractor
        self.distance_threshold = distance_threshold
        self.capture_timeout = capture_timeout
        self.capture_target = capture_target
        self.max_attempts = max_attempts
        self.attempt_delay = attempt_delay

    async def capture_descriptor(self, source: FrameSource) -> np.ndarray:
        """Average several independent extractions of the live face.

        Args:
            source: Started frame source

        Returns:
            Mean descriptor, shape [128].

        Raises:
            NoFaceDetectedError: If no attempt produced a descriptor.
            CaptureTimeoutError: If every attempt timed out.
        """
        descriptors: List[np.ndarray] = []
        timeouts = 0

        for attempt in range(self.max_attempts):
            try:
                sample = await asyncio.wait_for(
                    self._extract_once(source), timeout=self.capture_timeout
                )
            except asyncio.TimeoutError:
                logger.debug(f"Descriptor capture attempt {attempt + 1} timed out")
                timeouts += 1
                sample = None

            if sample is not None:
                descriptors.append(sample.descriptor)
                if len(descriptors) >= self.capture_target:
                    break
            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.attempt_delay)

        if timeouts == self.max_attempts:
            raise CaptureTimeoutError(
                log_message=f"All {self.max_attempts} capture attempts timed out after {self.capture_timeout}s"
            )
        if not descriptors:
            raise NoFaceDetectedError(
                log_message=f"No descriptor in {self.max_attempts} attempts"
            )
        if len(descriptors) < self.capture_target:
            logger.warning(
                f"Only {len(descriptors)}/{self.capture_target} descriptors captured, "
                f"matching on a noisier average"
            )

        return mean_descriptor(descriptors)

    async def _extract_once(self, source: FrameSource):
        frame = await asyncio.to_thread(source.get_frame)
        return await self.extractor.extract(frame)

    async def resolve(
        self,
        captured: np.ndarray,
        local_gallery: Sequence[EnrolledDescriptor],
        remote_gallery_fn: Optional[RemoteGalleryFn] = None,
        distance_threshold: Optional[float] = None,
    ) -> Optional[Match]:
        """Find the nearest enrolled user, local gallery first.

        Args:
            captured: Captured descriptor, shape [128]
            local_gallery: Locally enrolled descriptors, scanned in order
            remote_gallery_fn: Optional accessor for the remote gallery
            distance_threshold: Overrides the resolver's threshold

        Returns:
            Match, or None if nobody is below the threshold.
        """
        captured = np.asarray(captured, dtype=np.float32).reshape(-1)
        if captured.shape != (DESCRIPTOR_DIM,):
            raise ValueError(f"captured descriptor must have {DESCRIPTOR_DIM} values")
        threshold = self.distance_threshold if distance_threshold is None else distance_threshold

        hit = nearest(captured, local_gallery, threshold)
        if hit is not None:
            entry, distance = hit
            logger.info(f"Local gallery match: {entry.user_id} (distance={distance:.4f})")
            return Match(user_id=entry.user_id, distance=distance, source="local")

        if remote_gallery_fn is None:
            logger.info(f"No local match among {len(local_gallery)} descriptors")
            return None

        try:
            gallery = await remote_gallery_fn()
        except (TransientError, AuthenticationError) as e:
            logger.warning(f"Remote gallery unavailable, no match: {e}")
            return None

        hit = nearest(captured, gallery, threshold)
        if hit is None:
            logger.info(
                f"No match among {len(local_gallery)} local and {len(gallery)} remote descriptors"
            )
            return None

        entry, distance = hit
        logger.info(f"Remote gallery match: {entry.user_id} (distance={distance:.4f})")
        try:
            await self.store.save_descriptor(entry)
        except StoreError as e:
            logger.warning(f"Could not cache remote descriptor for {entry.user_id}: {e}")
        return Match(user_id=entry.user_id, distance=distance, source="remote")

    async def identify(
        self,
        captured: np.ndarray,
        remote_gallery_fn: Optional[RemoteGalleryFn] = None,
    ) -> Optional[Match]:
        """Resolve against the local store's gallery, then the remote one."""
        local = await self.store.get_all_descriptors()
        return await self.resolve(captured, local, remote_gallery_fn)
