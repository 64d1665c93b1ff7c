"""Unit tests for enrollment service."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest

from facesync.core.errors import LivenessError, NoFaceDetectedError
from facesync.core.interfaces import BBox, FaceSample
from facesync.services.enrollment import EnrollmentService
from facesync.services.liveness import LivenessFailure, LivenessResult
from facesync.storage.schemas import REMOTE_DESCRIPTORS_TABLE

from fakes import FakeExtractor, FakeFrameSource, make_sample, unit_descriptor


@pytest.fixture
def mock_liveness():
    """Create a liveness analyzer mock that passes."""
    liveness = Mock()
    liveness.check = AsyncMock(return_value=LivenessResult(is_live=True, samples=6))
    return liveness


@pytest.fixture
def test_frame():
    """Create a test frame (640x480 BGR)."""
    return np.random.randint(0, 255, (480, 640, 3), dtype=np.uint8)


def make_service(store, extractor, liveness, remote=None, **kwargs):
    params = dict(num_captures=4, min_captures=2, capture_delay=0.0, liveness_duration=0.01)
    params.update(kwargs)
    return EnrollmentService(store, extractor, liveness, remote=remote, **params)


def test_invalid_capture_counts(store, mock_liveness):
    """Test that min_captures must fit within num_captures."""
    with pytest.raises(ValueError):
        EnrollmentService(store, FakeExtractor(), mock_liveness, num_captures=3, min_captures=4)
    with pytest.raises(ValueError):
        EnrollmentService(store, FakeExtractor(), mock_liveness, min_captures=0)


@pytest.mark.asyncio
async def test_process_frame_no_face(store, mock_liveness, test_frame):
    """Test process_frame with no face detected."""
    service = make_service(store, FakeExtractor([None]), mock_liveness)

    success, sample, message = await service.process_frame(test_frame)

    assert not success
    assert sample is None
    assert "No face" in message


@pytest.mark.asyncio
async def test_process_frame_without_landmarks(store, mock_liveness, test_frame):
    """Test process_frame with a face but no eye landmarks."""
    no_eyes = FaceSample(descriptor=unit_descriptor(0), bbox=BBox(10, 10, 100, 100))
    service = make_service(store, FakeExtractor([no_eyes]), mock_liveness)

    success, sample, message = await service.process_frame(test_frame)

    assert not success
    assert "landmarks" in message


@pytest.mark.asyncio
async def test_process_frame_success(store, mock_liveness, test_frame):
    """Test process_frame with a usable face."""
    service = make_service(store, FakeExtractor([make_sample()]), mock_liveness)

    success, sample, message = await service.process_frame(test_frame)

    assert success
    assert sample is not None
    assert "100x100" in message


@pytest.mark.asyncio
async def test_enroll_saves_mean_descriptor(store, remote, mock_liveness):
    """Test that enrollment stores the mean of the captured descriptors."""
    extractor = FakeExtractor([
        make_sample(unit_descriptor(0, 1.0)),
        make_sample(unit_descriptor(0, 0.5)),
    ])
    service = make_service(store, extractor, mock_liveness, remote=remote, num_captures=2)

    enrolled = await service.enroll("u1", FakeFrameSource())

    assert enrolled.descriptor[0] == pytest.approx(0.75)
    assert await service.has_enrollment("u1")
    stored = await store.get_descriptor("u1")
    np.testing.assert_allclose(stored.descriptor, enrolled.descriptor)
    # Offline enrollment never touches the remote gallery
    assert remote.writes == []


@pytest.mark.asyncio
async def test_enroll_online_uploads_descriptor(store, remote, mock_liveness):
    """Test that an online enrollment is upserted into the remote gallery."""
    service = make_service(store, FakeExtractor([make_sample()]), mock_liveness, remote=remote)

    await service.enroll("u1", FakeFrameSource(), online=True)

    row = remote.rows(REMOTE_DESCRIPTORS_TABLE)["u1"]
    assert len(row["face_descriptor"]) == 128


@pytest.mark.asyncio
async def test_enroll_remote_failure_keeps_local(store, remote, mock_liveness):
    """Test that a failed upload does not undo the local enrollment."""
    remote.online = False
    service = make_service(store, FakeExtractor([make_sample()]), mock_liveness, remote=remote)

    await service.enroll("u1", FakeFrameSource(), online=True)

    assert await store.has_descriptor("u1")


@pytest.mark.asyncio
async def test_enroll_liveness_failure(store, mock_liveness):
    """Test that a failed liveness check aborts before any capture."""
    mock_liveness.check.return_value = LivenessResult(
        is_live=False, failure=LivenessFailure.PHOTO_DETECTED, samples=6
    )
    extractor = FakeExtractor([make_sample()])
    service = make_service(store, extractor, mock_liveness)

    with pytest.raises(LivenessError) as exc_info:
        await service.enroll("u1", FakeFrameSource())

    assert "Photo" in exc_info.value.user_message
    assert extractor.calls == 0
    assert not await store.has_descriptor("u1")


@pytest.mark.asyncio
async def test_enroll_not_enough_samples(store, mock_liveness):
    """Test that too few usable captures raise NoFaceDetectedError."""
    extractor = FakeExtractor([make_sample(), None])
    service = make_service(store, extractor, mock_liveness, num_captures=4, min_captures=2)

    with pytest.raises(NoFaceDetectedError):
        await service.enroll("u1", FakeFrameSource())

    assert extractor.calls == 4


@pytest.mark.asyncio
async def test_delete_enrollment(store, mock_liveness):
    """Test deleting an enrollment."""
    service = make_service(store, FakeExtractor([make_sample()]), mock_liveness)
    await service.enroll("u1", FakeFrameSource())

    assert await service.delete_enrollment("u1") is True
    assert await service.delete_enrollment("u1") is False
    assert not await service.has_enrollment("u1")
