"""Backend implementations for face descriptor extraction.

- dlib: HOG/CNN detector + ResNet-34 descriptors (128-D)

Use the factory module to create the extractor.
"""

from facesync.backends.factory import BackendType, create_extractor

__all__ = [
    "create_extractor",
    "BackendType",
]
