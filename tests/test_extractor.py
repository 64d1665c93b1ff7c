"""Unit tests for the dlib extractor with a stand-in face_recognition API."""

from __future__ import annotations

import asyncio
import time
from types import SimpleNamespace

import numpy as np
import pytest

from facesync.backends.dlib.extractor import DlibDescriptorExtractor
from facesync.backends.factory import create_extractor
from facesync.core.errors import BiometricUnavailableError

from fakes import eye


class FakeFaceApi:
    """Mimics the face_recognition functions used by the extractor."""

    def __init__(self, locations):
        self.locations = locations
        self.encoded = []

    def face_locations(self, image, number_of_times_to_upsample=1, model="hog"):
        return list(self.locations)

    def face_encodings(self, image, known_face_locations=None, num_jitters=1, model="large"):
        self.encoded.extend(known_face_locations)
        return [np.full(128, 0.1) for _ in known_face_locations]

    def face_landmarks(self, image, face_locations=None, model="large"):
        return [{"left_eye": eye(10, 10), "right_eye": eye(30, 10)} for _ in face_locations]


class CountingLoader:
    def __init__(self, api, failures: int = 0, delay: float = 0.0):
        self.api = api
        self.failures = failures
        self.delay = delay
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.calls <= self.failures:
            raise ImportError("No module named 'face_recognition'")
        return self.api


@pytest.fixture
def frame():
    return np.zeros((240, 320, 3), dtype=np.uint8)


def test_invalid_models_rejected():
    """Test that unknown detector or encoder models raise ValueError."""
    with pytest.raises(ValueError):
        DlibDescriptorExtractor(detector_model="mtcnn")
    with pytest.raises(ValueError):
        DlibDescriptorExtractor(model="medium")


def test_model_not_loaded_on_construction():
    """Test that creating the extractor does not load the model."""
    loader = CountingLoader(FakeFaceApi([]))

    extractor = DlibDescriptorExtractor(loader=loader)

    assert not extractor.is_loaded
    assert loader.calls == 0


@pytest.mark.asyncio
async def test_concurrent_first_calls_load_once(frame):
    """Test that simultaneous first calls share a single model load."""
    loader = CountingLoader(FakeFaceApi([(10, 60, 60, 10)]), delay=0.05)
    extractor = DlibDescriptorExtractor(loader=loader)

    results = await asyncio.gather(*(extractor.extract(frame) for _ in range(5)))

    assert loader.calls == 1
    assert extractor.is_loaded
    assert all(r is not None for r in results)


@pytest.mark.asyncio
async def test_load_failure_can_be_retried(frame):
    """Test that a failed load raises BiometricUnavailableError and retries next time."""
    loader = CountingLoader(FakeFaceApi([]), failures=1)
    extractor = DlibDescriptorExtractor(loader=loader)

    with pytest.raises(BiometricUnavailableError):
        await extractor.extract(frame)
    assert not extractor.is_loaded

    assert await extractor.extract(frame) is None
    assert loader.calls == 2
    assert extractor.is_loaded


@pytest.mark.asyncio
async def test_largest_face_is_extracted(frame):
    """Test that the largest face is chosen and converted to a FaceSample."""
    small = (10, 40, 40, 10)      # 30x30
    large = (50, 200, 150, 100)   # 100x100
    api = FakeFaceApi([small, large])
    extractor = DlibDescriptorExtractor(loader=lambda: api)

    sample = await extractor.extract(frame)

    assert api.encoded == [large]
    assert sample.descriptor.shape == (128,)
    assert sample.descriptor.dtype == np.float32
    assert (sample.bbox.x1, sample.bbox.y1, sample.bbox.x2, sample.bbox.y2) == (100, 50, 200, 150)
    assert sample.has_eyes


@pytest.mark.asyncio
async def test_detect(frame):
    """Test face presence detection."""
    assert await DlibDescriptorExtractor(loader=lambda: FakeFaceApi([(0, 5, 5, 0)])).detect(frame)
    assert not await DlibDescriptorExtractor(loader=lambda: FakeFaceApi([])).detect(frame)


@pytest.mark.asyncio
async def test_empty_frame_returns_none():
    """Test that an empty frame is not passed to the model."""
    loader = CountingLoader(FakeFaceApi([]))
    extractor = DlibDescriptorExtractor(loader=loader)

    assert await extractor.extract(np.zeros((0, 0, 3), dtype=np.uint8)) is None
    assert loader.calls == 0


def test_factory_creates_dlib_extractor():
    """Test that the factory maps configuration onto the dlib extractor."""
    config = SimpleNamespace(detector_model="cnn", embedder_model="small", num_jitters=2)

    extractor = create_extractor(config, loader=lambda: None)

    assert isinstance(extractor, DlibDescriptorExtractor)
    assert extractor.detector_model == "cnn"
    assert extractor.model == "small"
    assert extractor.num_jitters == 2

    with pytest.raises(ValueError):
        create_extractor(config, backend_type="insightface")
