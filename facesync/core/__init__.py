"""Core modules for the facesync services.

This package contains configuration, logging, the error taxonomy, the
component interfaces and small shared utilities.
"""

from facesync.core.config import Config, get_config
from facesync.core.events import Channel
from facesync.core.interfaces import (
    DESCRIPTOR_DIM,
    BBox,
    DescriptorExtractor,
    FaceSample,
    FrameSource,
    RemoteSession,
    RemoteStore,
)
from facesync.core.logging_config import get_logger, setup_logging
from facesync.core.utils import (
    euclidean_distance,
    eye_aspect_ratio,
    inter_eye_distance,
    iso_to_ms,
    mean_descriptor,
    ms_to_iso,
    now_ms,
)
from facesync.core.video_io import WebcamSource

__all__ = [
    # Config
    "Config",
    "get_config",
    # Events
    "Channel",
    # Interfaces
    "DESCRIPTOR_DIM",
    "BBox",
    "DescriptorExtractor",
    "FaceSample",
    "FrameSource",
    "RemoteSession",
    "RemoteStore",
    # Logging
    "setup_logging",
    "get_logger",
    # Utils
    "euclidean_distance",
    "eye_aspect_ratio",
    "inter_eye_distance",
    "iso_to_ms",
    "mean_descriptor",
    "ms_to_iso",
    "now_ms",
    # Video
    "WebcamSource",
]
