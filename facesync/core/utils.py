"""Utility functions shared by the biometric and sync services.

This module provides helpers for descriptor arithmetic, landmark geometry,
and the millisecond timestamps used for last-writer-wins conflict resolution.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import List, Sequence

import numpy as np

from facesync.core.interfaces import Point


def euclidean_distance(vec1: np.ndarray | Sequence[float], vec2: np.ndarray | Sequence[float]) -> float:
    """Compute Euclidean distance between two descriptors.

    Args:
        vec1: First descriptor, shape [D]
        vec2: Second descriptor, shape [D]

    Returns:
        Distance >= 0. Lower = more similar. Identical vectors give 0.0.

    Raises:
        ValueError: If the descriptors have different lengths.

    Example:
        >>> dist = euclidean_distance(captured, enrolled)
        >>> if dist < 0.7:
        ...     print("Same person")
    """
    a = np.asarray(vec1, dtype=np.float32).reshape(-1)
    b = np.asarray(vec2, dtype=np.float32).reshape(-1)
    if a.shape != b.shape:
        raise ValueError(f"Descriptor length mismatch: {a.shape[0]} != {b.shape[0]}")
    return float(np.linalg.norm(a - b))


def mean_descriptor(descriptors: Sequence[np.ndarray]) -> np.ndarray:
    """Componentwise mean of several descriptors of the same face.

    Averaging independent extractions reduces capture noise before matching.

    Args:
        descriptors: Non-empty list of descriptors, each shape [D]

    Returns:
        Mean descriptor, shape [D], dtype float32.

    Raises:
        ValueError: If the list is empty.
    """
    if len(descriptors) == 0:
        raise ValueError("Cannot average an empty list of descriptors")
    stacked = np.stack([np.asarray(d, dtype=np.float32).reshape(-1) for d in descriptors])
    return stacked.mean(axis=0).astype(np.float32)


def centroid(points: Sequence[Point]) -> np.ndarray:
    """Mean (x, y) of a landmark group."""
    return np.asarray(points, dtype=np.float64).mean(axis=0)


def inter_eye_distance(left_eye: Sequence[Point], right_eye: Sequence[Point]) -> float:
    """Distance between the centers of the two eye landmark groups (pixels)."""
    return float(np.linalg.norm(centroid(left_eye) - centroid(right_eye)))


def eye_aspect_ratio(eye: Sequence[Point]) -> float:
    """Compute the Eye Aspect Ratio (EAR) of a 6-point eye contour.

    EAR = (|p1-p5| + |p2-p4|) / (2 * |p0-p3|). It drops sharply when the eye
    closes, which makes it usable for blink detection.

    Args:
        eye: Six (x, y) points in dlib order

    Returns:
        EAR value, typically ~0.3 for an open eye and < 0.2 when closed.
    """
    p = np.asarray(eye, dtype=np.float64)
    if p.shape != (6, 2):
        raise ValueError(f"Eye contour must have shape (6, 2), got {p.shape}")

    v1 = np.linalg.norm(p[1] - p[5])
    v2 = np.linalg.norm(p[2] - p[4])
    h = np.linalg.norm(p[0] - p[3])
    if h < 1e-9:
        return 0.0
    return float((v1 + v2) / (2.0 * h))


def max_relative_deviation(values: Sequence[float]) -> float:
    """Largest |v - mean| / mean over the values (0.0 for a zero mean)."""
    arr = np.asarray(values, dtype=np.float64)
    mean = arr.mean()
    if mean == 0:
        return 0.0
    return float(np.max(np.abs(arr - mean) / mean))


def consecutive_relative_changes(values: Sequence[float]) -> List[float]:
    """Relative change |v[i] - v[i-1]| / v[i-1] between consecutive values."""
    changes = []
    for prev, curr in zip(values, values[1:]):
        changes.append(abs(curr - prev) / prev if prev else 0.0)
    return changes


def variance(values: Sequence[float]) -> float:
    """Population variance of a list of numbers."""
    return float(np.var(np.asarray(values, dtype=np.float64)))


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_iso(ms: int) -> str:
    """Epoch milliseconds to an ISO-8601 UTC timestamp."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).isoformat(timespec="milliseconds")


def iso_to_ms(value: str) -> int:
    """ISO-8601 timestamp (as returned by the remote store) to epoch milliseconds.

    Naive timestamps are treated as UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(round(parsed.timestamp() * 1000))
