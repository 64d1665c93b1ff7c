"""Core interfaces and data structures for the facesync services.

This module defines the abstract interfaces (Protocols) and data classes
that allow for swappable components: the descriptor extractor, the frame
source behind the camera, and the remote store.

Components depend on these abstractions rather than concrete
implementations, so tests can substitute in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

# Descriptor dimension of the dlib ResNet face encoder
DESCRIPTOR_DIM = 128

Point = Tuple[float, float]


@dataclass
class BBox:
    """Bounding box for a detected face.

    Attributes:
        x1: Left edge x-coordinate (pixels)
        y1: Top edge y-coordinate (pixels)
        x2: Right edge x-coordinate (pixels)
        y2: Bottom edge y-coordinate (pixels)
    """

    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def width(self) -> int:
        """Get bounding box width in pixels."""
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        """Get bounding box height in pixels."""
        return self.y2 - self.y1

    @property
    def area(self) -> int:
        """Get bounding box area in square pixels."""
        return self.width * self.height

    @classmethod
    def from_css(cls, location: Tuple[int, int, int, int]) -> BBox:
        """Build from a dlib/face_recognition (top, right, bottom, left) tuple."""
        top, right, bottom, left = location
        return cls(x1=left, y1=top, x2=right, y2=bottom)

    def to_css(self) -> Tuple[int, int, int, int]:
        """Convert back to (top, right, bottom, left)."""
        return (self.y1, self.x2, self.y2, self.x1)

    def __repr__(self) -> str:
        """String representation of bounding box."""
        return f"BBox(x1={self.x1}, y1={self.y1}, x2={self.x2}, y2={self.y2})"


@dataclass
class FaceSample:
    """One face observation extracted from a frame.

    Attributes:
        descriptor: Face descriptor, shape [128], dtype float32
        bbox: Bounding box of the face
        landmarks: Landmark groups keyed by feature name
                   ("left_eye", "right_eye", "nose_tip", ...), each a list of
                   (x, y) points as produced by the 68-point dlib model.
        timestamp: Monotonic capture time (seconds)
    """

    descriptor: np.ndarray
    bbox: BBox
    landmarks: Dict[str, List[Point]] = field(default_factory=dict)
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        """Validate descriptor shape after initialization."""
        self.descriptor = np.asarray(self.descriptor, dtype=np.float32).reshape(-1)
        if self.descriptor.shape != (DESCRIPTOR_DIM,):
            raise ValueError(
                f"descriptor must have shape ({DESCRIPTOR_DIM},), got {self.descriptor.shape}"
            )

    @property
    def has_eyes(self) -> bool:
        """True if both eye landmark groups are present."""
        return bool(self.landmarks.get("left_eye")) and bool(self.landmarks.get("right_eye"))

    def __repr__(self) -> str:
        """String representation of sample."""
        return f"FaceSample(bbox={self.bbox}, landmarks={sorted(self.landmarks)})"


@dataclass
class RemoteSession:
    """Session issued by the remote store after a successful sign-in.

    Attributes:
        user_id: Remote user identifier
        email: Account email
        access_token: Bearer token for data requests
        refresh_token: Optional refresh token
        expires_at: Expiry as epoch seconds, if known
    """

    user_id: str
    email: str
    access_token: str = ""
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None

    def __repr__(self) -> str:
        """String representation (token omitted)."""
        return f"RemoteSession(user_id={self.user_id!r}, email={self.email!r})"


@runtime_checkable
class DescriptorExtractor(Protocol):
    """Protocol for face descriptor extraction.

    Wraps an opaque pretrained model. Implementations load the model lazily,
    exactly once per process.
    """

    async def detect(self, frame_bgr: np.ndarray) -> bool:
        """Cheap check whether a face is present.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]

        Returns:
            True if at least one face is visible.
        """
        ...

    async def extract(self, frame_bgr: np.ndarray) -> Optional[FaceSample]:
        """Extract descriptor, bounding box and landmarks of the main face.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]

        Returns:
            FaceSample, or None if no face was found (caller retries).

        Raises:
            BiometricUnavailableError: If the model cannot be loaded.
        """
        ...


@runtime_checkable
class FrameSource(Protocol):
    """Protocol for a live video frame source with a start/stop lifecycle."""

    def start(self) -> None:
        """Open the device.

        Raises:
            CameraError: Subclass describing why the device cannot be opened.
        """
        ...

    def stop(self) -> None:
        """Stop capturing and release the device."""
        ...

    def get_frame(self) -> np.ndarray:
        """Return the latest BGR frame.

        Raises:
            CameraError: If no frame can be read.
        """
        ...

    @property
    def is_opened(self) -> bool:
        """True if the source is started and readable."""
        ...


@runtime_checkable
class RemoteStore(Protocol):
    """Protocol for the remote store (tables + auth).

    Rows are plain dicts with snake_case column names. All methods may raise
    RemoteUnavailableError (transient) or AuthenticationError.
    """

    async def get_by_user_id(self, table: str, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        ...

    async def update(self, table: str, user_id: str, patch: Dict[str, Any]) -> None:
        ...

    async def upsert(self, table: str, row: Dict[str, Any]) -> None:
        ...

    async def select_all(self, table: str, columns: Sequence[str]) -> List[Dict[str, Any]]:
        ...

    async def sign_in(self, email: str, password: str) -> RemoteSession:
        ...

    async def sign_up(self, email: str, password: str) -> RemoteSession:
        ...

    async def sign_out(self) -> None:
        ...

    async def ping(self) -> bool:
        ...
