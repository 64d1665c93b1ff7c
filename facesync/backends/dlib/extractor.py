"""Dlib descriptor extractor using the face_recognition library.

This module provides face descriptor extraction using dlib's ResNet-34 model
via the face_recognition library. It converts the main face of a frame into
a 128-dimensional descriptor together with its bounding box and 68-point
landmark groups.

The face_recognition package loads all dlib models when it is imported, so
"loading the model" means importing it. That happens lazily, exactly once per
process, the first time a frame is processed.
"""

from __future__ import annotations

import asyncio
import importlib
import time
from types import ModuleType
from typing import Any, Callable, List, Literal, Optional, Tuple

import cv2
import numpy as np

from facesync.core.errors import BiometricUnavailableError
from facesync.core.interfaces import DESCRIPTOR_DIM, BBox, FaceSample
from facesync.core.logging_config import get_logger

logger = get_logger(__name__)

CssLocation = Tuple[int, int, int, int]


def _import_face_recognition() -> ModuleType:
    return importlib.import_module("face_recognition")


class DlibDescriptorExtractor:
    """Dlib extractor producing 128-D face descriptors.

    The model achieves 99.38% accuracy on the Labeled Faces in the Wild (LFW)
    benchmark; two descriptors of the same person are usually closer than 0.6
    in Euclidean distance.

    Attributes:
        detector_model: Face detector ("hog" or "cnn")
        model: Landmark model size used for encoding ("large" or "small")
        num_jitters: Number of times to re-sample face for encoding
        upsample: Number of times to upsample image before detection

    Example:
        >>> extractor = DlibDescriptorExtractor(detector_model="hog")
        >>> sample = await extractor.extract(frame)
        >>> if sample is not None:
        ...     assert sample.descriptor.shape == (128,)
    """

    def __init__(
        self,
        detector_model: Literal["hog", "cnn"] = "hog",
        model: Literal["large", "small"] = "large",
        num_jitters: int = 1,
        upsample: int = 1,
        loader: Optional[Callable[[], Any]] = None,
    ):
        """Initialize dlib extractor (the model itself is loaded lazily).

        Args:
            detector_model: "hog" (faster, CPU-friendly) or "cnn" (more accurate)
            model: "large" (68 landmarks, default) or "small" (5 landmarks)
            num_jitters: Re-samples per encoding. Higher = more accurate, slower
            upsample: Upsampling passes before detection (finds smaller faces)
            loader: Callable returning the face_recognition API object.
                    Defaults to importing the face_recognition package.
        """
        if detector_model not in ("hog", "cnn"):
            raise ValueError(f"detector_model must be 'hog' or 'cnn', got '{detector_model}'")
        if model not in ("large", "small"):
            raise ValueError(f"model must be 'large' or 'small', got '{model}'")

        self.detector_model = detector_model
        self.model = model
        self.num_jitters = num_jitters
        self.upsample = upsample

        self._loader = loader or _import_face_recognition
        self._api: Any = None
        self._load_lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        """True once the underlying model has been loaded."""
        return self._api is not None

    async def ensure_loaded(self) -> Any:
        """Load the model once; concurrent callers wait for the same load.

        Returns:
            The loaded face_recognition API.

        Raises:
            BiometricUnavailableError: If the model cannot be loaded. The
                extractor stays unloaded so a later call can retry.
        """
        if self._api is not None:
            return self._api

        async with self._load_lock:
            if self._api is not None:
                return self._api

            logger.info(
                f"Loading dlib face models (detector={self.detector_model}, "
                f"model={self.model}, num_jitters={self.num_jitters})"
            )
            started = time.monotonic()
            try:
                api = await asyncio.to_thread(self._loader)
            except Exception as e:
                logger.error(f"Failed to load face recognition models: {e}")
                raise BiometricUnavailableError(
                    log_message=f"Face model load failed: {e}"
                ) from e

            self._api = api
            logger.info(f"Face models loaded in {time.monotonic() - started:.2f}s")
            return api

    async def detect(self, frame_bgr: np.ndarray) -> bool:
        """Check whether at least one face is visible.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            True if a face was detected.
        """
        if frame_bgr is None or frame_bgr.size == 0:
            return False

        api = await self.ensure_loaded()
        locations = await asyncio.to_thread(self._locate, api, frame_bgr)
        return len(locations) > 0

    async def extract(self, frame_bgr: np.ndarray) -> Optional[FaceSample]:
        """Extract descriptor, bounding box and landmarks of the largest face.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]

        Returns:
            FaceSample for the largest face, or None if no face was found.

        Raises:
            BiometricUnavailableError: If the model cannot be loaded.
        """
        if frame_bgr is None or frame_bgr.size == 0:
            logger.warning("Empty frame provided to extractor")
            return None

        api = await self.ensure_loaded()
        return await asyncio.to_thread(self._extract_sync, api, frame_bgr)

    def _locate(self, api: Any, frame_bgr: np.ndarray) -> List[CssLocation]:
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        return list(
            api.face_locations(
                frame_rgb,
                number_of_times_to_upsample=self.upsample,
                model=self.detector_model,
            )
        )

    def _extract_sync(self, api: Any, frame_bgr: np.ndarray) -> Optional[FaceSample]:
        # Convert BGR to RGB (face_recognition expects RGB)
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

        locations = list(
            api.face_locations(
                frame_rgb,
                number_of_times_to_upsample=self.upsample,
                model=self.detector_model,
            )
        )
        if not locations:
            logger.debug("No face found in frame")
            return None

        # Largest face wins when several are visible
        location = max(locations, key=lambda loc: BBox.from_css(loc).area)

        encodings = api.face_encodings(
            frame_rgb,
            known_face_locations=[location],
            num_jitters=self.num_jitters,
            model=self.model,
        )
        if not encodings:
            logger.debug("Face found but no encoding could be computed")
            return None

        descriptor = np.asarray(encodings[0], dtype=np.float32)
        if descriptor.shape != (DESCRIPTOR_DIM,):
            raise BiometricUnavailableError(
                log_message=(
                    f"Unexpected descriptor dimension {descriptor.shape}, "
                    f"expected {DESCRIPTOR_DIM}"
                )
            )

        landmark_sets = api.face_landmarks(
            frame_rgb, face_locations=[location], model=self.model
        )
        landmarks = landmark_sets[0] if landmark_sets else {}

        return FaceSample(
            descriptor=descriptor,
            bbox=BBox.from_css(location),
            landmarks={k: [tuple(p) for p in v] for k, v in landmarks.items()},
            timestamp=time.monotonic(),
        )

    def __repr__(self) -> str:
        """String representation of extractor."""
        state = "loaded" if self.is_loaded else "not loaded"
        return (
            f"DlibDescriptorExtractor(detector='{self.detector_model}', "
            f"model='{self.model}', num_jitters={self.num_jitters}, {state})"
        )
