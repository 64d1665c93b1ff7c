"""dlib backend for face descriptors.

Components:
- DlibDescriptorExtractor: HOG/CNN detection, 68-point landmarks and 128-D
  ResNet-34 descriptors via face_recognition
"""

from facesync.backends.dlib.extractor import DlibDescriptorExtractor

__all__ = [
    "DlibDescriptorExtractor",
]
