"""Video input abstraction layer.

This module provides the webcam implementation of the FrameSource protocol.
It wraps OpenCV's VideoCapture behind an explicit start/stop lifecycle and
maps device failures onto categorized CameraError subclasses.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from facesync.core.errors import (
    CameraBusyError,
    CameraError,
    CameraNotFoundError,
    CameraPermissionError,
)
from facesync.core.logging_config import get_logger

logger = get_logger(__name__)


class WebcamSource:
    """Frame source reading from a webcam or USB camera.

    Attributes:
        camera_id: Camera device ID (0 for default camera)
        width: Requested frame width
        height: Requested frame height
        cap: OpenCV VideoCapture object (None until started)

    Example:
        >>> source = WebcamSource(camera_id=0)
        >>> source.start()
        >>> try:
        ...     frame = source.get_frame()
        ... finally:
        ...     source.stop()
    """

    def __init__(self, camera_id: int = 0, width: int = 640, height: int = 480):
        """Initialize webcam source (the device is opened by start()).

        Args:
            camera_id: Camera device index (default: 0 for first camera)
            width: Ideal frame width
            height: Ideal frame height
        """
        self.camera_id = camera_id
        self.width = width
        self.height = height
        self.cap: Optional[cv2.VideoCapture] = None

    def start(self) -> None:
        """Open the camera device.

        Raises:
            CameraNotFoundError: If the device node does not exist.
            CameraPermissionError: If the process may not open the device.
            CameraBusyError: If the device exists but cannot be opened.
        """
        if self.is_opened:
            return

        self._check_device_node()

        self.cap = cv2.VideoCapture(self.camera_id)
        if not self.cap.isOpened():
            self.cap.release()
            self.cap = None
            raise CameraBusyError(
                log_message=f"Failed to open webcam with camera_id={self.camera_id}"
            )

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Opened webcam {self.camera_id}: {width}x{height}")

    def _check_device_node(self) -> None:
        # Only V4L2 exposes a device node we can inspect before opening
        device = Path(f"/dev/video{self.camera_id}")
        if not Path("/dev").exists() or not any(Path("/dev").glob("video*")):
            return
        if not device.exists():
            raise CameraNotFoundError(log_message=f"{device} does not exist")
        if not os.access(device, os.R_OK | os.W_OK):
            raise CameraPermissionError(log_message=f"No read/write access to {device}")

    def get_frame(self) -> np.ndarray:
        """Read the next frame.

        Returns:
            BGR image [H, W, 3].

        Raises:
            CameraError: If the camera is not started or the read fails.
        """
        if not self.is_opened:
            raise CameraError(log_message="Webcam is not opened")

        success, frame = self.cap.read()
        if not success or frame is None:
            raise CameraError(log_message=f"Failed to read frame from webcam {self.camera_id}")

        return frame

    def stop(self) -> None:
        """Release webcam resources."""
        if self.cap is not None:
            if self.cap.isOpened():
                self.cap.release()
                logger.info(f"Released webcam {self.camera_id}")
            self.cap = None

    @property
    def is_opened(self) -> bool:
        """Check if webcam is successfully opened."""
        return self.cap is not None and self.cap.isOpened()

    def __repr__(self) -> str:
        """String representation."""
        status = "opened" if self.is_opened else "closed"
        return f"WebcamSource(camera_id={self.camera_id}, status={status})"

    def __enter__(self) -> WebcamSource:
        """Context manager entry (opens the device)."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit (auto-release)."""
        self.stop()
