"""Backend factory for the descriptor extractor.

This module provides a single way to create the face descriptor extractor
from configuration. Only the dlib backend (HOG/CNN detector + ResNet-34
128-D descriptors) is available; the descriptors stored locally and remotely
are 128 floats, so any other backend would have to produce the same space.

Usage:
    extractor = create_extractor(config)
"""

from __future__ import annotations

from typing import Any, Callable, Literal, Optional

from facesync.core.config import Config
from facesync.core.interfaces import DescriptorExtractor
from facesync.core.logging_config import get_logger

logger = get_logger(__name__)

# Backend type alias
BackendType = Literal["dlib"]


def create_extractor(
    config: Optional[Config] = None,
    backend_type: BackendType = "dlib",
    *,
    loader: Optional[Callable[[], Any]] = None,
) -> DescriptorExtractor:
    """Create the descriptor extractor for the specified backend.

    The returned extractor has not loaded its model yet; that happens on the
    first detect/extract call.

    Args:
        config: Configuration object. If None, loads from .env
        backend_type: Backend to use (only "dlib")
        loader: Optional model loader override (tests, custom model paths)

    Returns:
        DescriptorExtractor instance.

    Example:
        >>> from facesync.core.config import get_config
        >>> extractor = create_extractor(get_config())
    """
    if config is None:
        from facesync.core.config import get_config
        config = get_config()

    if backend_type == "dlib":
        return _create_dlib_extractor(config, loader)
    raise ValueError(f"Unknown backend: '{backend_type}'. Supported backends: 'dlib'")


def _create_dlib_extractor(
    config: Config, loader: Optional[Callable[[], Any]]
) -> DescriptorExtractor:
    from facesync.backends.dlib.extractor import DlibDescriptorExtractor

    logger.info(
        f"Creating dlib extractor (detector={config.detector_model}, "
        f"model={config.embedder_model})"
    )
    return DlibDescriptorExtractor(
        detector_model=config.detector_model,
        model=config.embedder_model,
        num_jitters=config.num_jitters,
        loader=loader,
    )
