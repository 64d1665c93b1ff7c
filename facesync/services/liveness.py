"""Liveness analysis over a short sequence of live frames.

A flat photo held in front of the camera produces almost no change in face
size, internal landmark geometry or descriptor between frames; a live face
produces small but measurable changes in all three. A large descriptor drift
means the subject changed or the capture is unreliable.

This is a heuristic gate, not a certified presentation-attack defence.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np

from facesync.core.interfaces import DescriptorExtractor, FaceSample, FrameSource
from facesync.core.logging_config import get_logger
from facesync.core.utils import (
    consecutive_relative_changes,
    euclidean_distance,
    eye_aspect_ratio,
    inter_eye_distance,
    max_relative_deviation,
    variance,
)

logger = get_logger(__name__)


class LivenessFailure(str, Enum):
    INSUFFICIENT_SAMPLES = "insufficient_samples"
    PHOTO_DETECTED = "photo_detected"
    INCONSISTENT_SUBJECT = "inconsistent_subject"


_FAILURE_MESSAGES = {
    LivenessFailure.INSUFFICIENT_SAMPLES: "Capture quality too low. Please try again.",
    LivenessFailure.PHOTO_DETECTED: "Photo detected. Please use a live camera.",
    LivenessFailure.INCONSISTENT_SUBJECT: "Face changed during capture. Please hold still and retry.",
}


@dataclass
class LivenessResult:
    """Outcome of a liveness check.

    Attributes:
        is_live: True if all signals indicate a live, moving subject
        failure: Failure category when is_live is False
        samples: Number of samples the decision was based on
        size_deviation: Max relative deviation of box area from its mean
        landmark_change: Max relative change of inter-eye distance
        descriptor_drift: Mean distance between consecutive descriptors
    """

    is_live: bool
    failure: Optional[LivenessFailure] = None
    samples: int = 0
    size_deviation: float = 0.0
    landmark_change: float = 0.0
    descriptor_drift: float = 0.0

    @property
    def message(self) -> str:
        """Short user-facing reason."""
        if self.is_live:
            return "Liveness verified."
        return _FAILURE_MESSAGES[self.failure]

    def __repr__(self) -> str:
        """String representation."""
        status = "live" if self.is_live else f"failed({self.failure.value})"
        return (
            f"LivenessResult({status}, samples={self.samples}, "
            f"size={self.size_deviation:.4f}, landmark={self.landmark_change:.4f}, "
            f"drift={self.descriptor_drift:.4f})"
        )


class LivenessAnalyzer:
    """Samples frames and decides whether the subject is live.

    Attributes:
        extractor: Descriptor extractor producing FaceSamples
        num_samples: Target number of samples per check
        min_samples: Samples required to make a decision at all
        capture_timeout: Timeout per capture attempt (seconds)
        capture_attempts: Attempts per sample
        retry_delay: Wait between attempts (seconds)

    Example:
        >>> analyzer = LivenessAnalyzer(extractor)
        >>> result = await analyzer.check(source, duration=3.0)
        >>> if not result.is_live:
        ...     print(result.message)
    """

    def __init__(
        self,
        extractor: DescriptorExtractor,
        num_samples: int = 6,
        min_samples: int = 4,
        capture_timeout: float = 3.0,
        capture_attempts: int = 2,
        retry_delay: float = 0.15,
        min_size_deviation: float = 0.005,
        min_landmark_change: float = 0.002,
        min_drift: float = 0.008,
        max_drift: float = 0.3,
    ):
        if min_samples < 2 or num_samples < min_samples:
            raise ValueError(
                f"Need 2 <= min_samples <= num_samples, got {min_samples}, {num_samples}"
            )

        self.extractor = extractor
        self.num_samples = num_samples
        self.min_samples = min_samples
        self.capture_timeout = capture_timeout
        self.capture_attempts = capture_attempts
        self.retry_delay = retry_delay
        self.min_size_deviation = min_size_deviation
        self.min_landmark_change = min_landmark_change
        self.min_drift = min_drift
        self.max_drift = max_drift

    async def check(
        self,
        source: FrameSource,
        duration: float = 3.0,
        variance_threshold: Optional[float] = None,
    ) -> LivenessResult:
        """Sample evenly spaced frames over ``duration`` and analyze them.

        Args:
            source: Started frame source
            duration: Sampling window in seconds
            variance_threshold: Overrides the minimum size deviation

        Returns:
            LivenessResult. Fewer than ``min_samples`` usable samples gives
            an INSUFFICIENT_SAMPLES failure.
        """
        interval = duration / self.num_samples
        samples: List[FaceSample] = []

        for i in range(self.num_samples):
            sample = await self._capture(source)
            if sample is not None:
                samples.append(sample)
            else:
                logger.debug(f"Liveness sample {i + 1}/{self.num_samples} missed")
            if i < self.num_samples - 1:
                await asyncio.sleep(interval)

        if len(samples) < self.min_samples:
            logger.warning(
                f"Liveness check: only {len(samples)}/{self.num_samples} samples "
                f"(need {self.min_samples})"
            )
            return LivenessResult(
                is_live=False,
                failure=LivenessFailure.INSUFFICIENT_SAMPLES,
                samples=len(samples),
            )

        return self.analyze(samples, variance_threshold)

    async def _capture(self, source: FrameSource) -> Optional[FaceSample]:
        for attempt in range(self.capture_attempts):
            try:
                sample = await asyncio.wait_for(
                    self._extract_from(source), timeout=self.capture_timeout
                )
            except asyncio.TimeoutError:
                logger.debug(f"Capture attempt {attempt + 1} timed out")
                sample = None

            if sample is not None and sample.has_eyes:
                return sample
            if attempt < self.capture_attempts - 1:
                await asyncio.sleep(self.retry_delay)
        return None

    async def _extract_from(self, source: FrameSource) -> Optional[FaceSample]:
        frame = await asyncio.to_thread(source.get_frame)
        return await self.extractor.extract(frame)

    def analyze(
        self,
        samples: List[FaceSample],
        variance_threshold: Optional[float] = None,
    ) -> LivenessResult:
        """Decide liveness from already captured samples.

        Args:
            samples: At least ``min_samples`` samples with eye landmarks
            variance_threshold: Overrides the minimum size deviation

        Returns:
            LivenessResult. A set failing any static check (size, landmark,
            too little drift) is PHOTO_DETECTED; otherwise too much drift is
            INCONSISTENT_SUBJECT.
        """
        if len(samples) < self.min_samples:
            return LivenessResult(
                is_live=False,
                failure=LivenessFailure.INSUFFICIENT_SAMPLES,
                samples=len(samples),
            )

        min_size = self.min_size_deviation if variance_threshold is None else variance_threshold

        # 1. Size variance
        areas = [float(s.bbox.area) for s in samples]
        size_deviation = max_relative_deviation(areas)

        # 2. Landmark variance
        eye_distances = [
            inter_eye_distance(s.landmarks["left_eye"], s.landmarks["right_eye"])
            for s in samples
        ]
        landmark_change = max(consecutive_relative_changes(eye_distances), default=0.0)

        # 3. Descriptor drift
        drifts = [
            euclidean_distance(a.descriptor, b.descriptor)
            for a, b in zip(samples, samples[1:])
        ]
        descriptor_drift = float(np.mean(drifts))

        self._warn_on_linear_motion(samples)

        size_ok = size_deviation >= min_size
        landmark_ok = landmark_change >= self.min_landmark_change
        drift_low = descriptor_drift < self.min_drift
        drift_high = descriptor_drift >= self.max_drift

        logger.debug(
            f"Liveness signals: size={size_deviation:.4f} ({'ok' if size_ok else 'flat'}), "
            f"landmark={landmark_change:.4f} ({'ok' if landmark_ok else 'rigid'}), "
            f"drift={descriptor_drift:.4f}"
        )

        failure: Optional[LivenessFailure] = None
        if not size_ok or not landmark_ok or drift_low:
            failure = LivenessFailure.PHOTO_DETECTED
        elif drift_high:
            failure = LivenessFailure.INCONSISTENT_SUBJECT

        result = LivenessResult(
            is_live=failure is None,
            failure=failure,
            samples=len(samples),
            size_deviation=size_deviation,
            landmark_change=landmark_change,
            descriptor_drift=descriptor_drift,
        )
        logger.info(f"Liveness check: {result!r}")
        return result

    @staticmethod
    def _warn_on_linear_motion(samples: List[FaceSample]) -> None:
        # A photo slid across the frame moves the box at constant speed
        centers = [(s.bbox.x1 + s.bbox.x2) / 2.0 for s in samples]
        steps = [b - a for a, b in zip(centers, centers[1:])]
        if len(steps) < 2:
            return
        mean_step = abs(float(np.mean(steps)))
        if mean_step > 1.0 and variance(steps) < 0.01 * mean_step ** 2:
            logger.warning(
                f"Suspiciously linear face movement ({mean_step:.1f}px per sample)"
            )

    async def detect_blink(
        self,
        source: FrameSource,
        timeout: float = 5.0,
        poll_interval: float = 0.1,
        open_threshold: float = 0.25,
        closed_threshold: float = 0.2,
    ) -> bool:
        """Wait for an eye blink (eye aspect ratio drop after an open eye).

        Args:
            source: Started frame source
            timeout: Give up after this many seconds
            poll_interval: Wait between frames
            open_threshold: EAR above which eyes count as open
            closed_threshold: EAR below which eyes count as closed

        Returns:
            True if a blink was seen within ``timeout``.
        """
        deadline = time.monotonic() + timeout
        seen_open = False

        while time.monotonic() < deadline:
            remaining = deadline - time.monotonic()
            try:
                sample = await asyncio.wait_for(
                    self._extract_from(source),
                    timeout=max(0.0, min(self.capture_timeout, remaining)),
                )
            except asyncio.TimeoutError:
                sample = None

            if sample is not None and sample.has_eyes:
                ear = (
                    eye_aspect_ratio(sample.landmarks["left_eye"])
                    + eye_aspect_ratio(sample.landmarks["right_eye"])
                ) / 2.0
                if ear > open_threshold:
                    seen_open = True
                elif seen_open and ear < closed_threshold:
                    logger.info(f"Blink detected (EAR={ear:.3f})")
                    return True

            await asyncio.sleep(poll_interval)

        logger.info("No blink detected before timeout")
        return False
