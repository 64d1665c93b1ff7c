"""Unit tests for profile editing."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from facesync.core.errors import DataIntegrityError
from facesync.services.profile import ProfileService, validate_age
from facesync.storage.schemas import REMOTE_PROFILES_TABLE, ProfileRecord


@pytest.mark.parametrize("value,expected", [(None, None), ("", None), (1, 1), ("42", 42), (150, 150), (30.0, 30)])
def test_validate_age_accepts(value, expected):
    """Test accepted age values."""
    assert validate_age(value) == expected


@pytest.mark.parametrize("value", [0, 151, -5, "abc", 30.5])
def test_validate_age_rejects(value):
    """Test that ages outside 1-150 or non-integers are rejected."""
    with pytest.raises(DataIntegrityError):
        validate_age(value)


@pytest.mark.asyncio
async def test_save_marks_pending_and_calls_hook(store):
    """Test that a save is stored locally as pending and triggers the hook."""
    on_saved = AsyncMock()
    profiles = ProfileService(store, on_saved=on_saved)

    record = await profiles.save_profile("u1", {"name": " Alice ", "age": "30"})

    assert record.name == "Alice"
    assert record.age == 30
    assert record.pending_sync is True
    assert record.updated_at > 0
    on_saved.assert_awaited_once()


@pytest.mark.asyncio
async def test_updated_at_strictly_increases(store):
    """Test that back-to-back edits never share a timestamp."""
    profiles = ProfileService(store)
    await store.save_profile(ProfileRecord(user_id="u1", updated_at=10**15))

    first = await profiles.save_profile("u1", {"name": "A"})
    second = await profiles.save_profile("u1", {"name": "B"})

    assert first.updated_at == 10**15 + 1
    assert second.updated_at == 10**15 + 2


@pytest.mark.asyncio
async def test_partial_edit_keeps_other_fields(store):
    """Test that fields not given are left unchanged."""
    profiles = ProfileService(store)
    await profiles.save_profile("u1", {"name": "Alice", "phone": "555"})

    record = await profiles.save_profile("u1", {"age": 31})

    assert record.name == "Alice"
    assert record.phone == "555"
    assert record.age == 31


@pytest.mark.asyncio
async def test_invalid_edit_is_not_saved(store):
    """Test that a rejected field leaves the stored record untouched."""
    profiles = ProfileService(store)
    await profiles.save_profile("u1", {"name": "Alice", "age": 30})

    with pytest.raises(DataIntegrityError):
        await profiles.save_profile("u1", {"age": 200})
    with pytest.raises(ValueError):
        await profiles.save_profile("u1", {"email": "x@example.com"})

    assert (await store.get_profile("u1")).age == 30


@pytest.mark.asyncio
async def test_load_prefers_local_copy(store, remote):
    """Test that a local profile is returned without a remote call."""
    await store.save_profile(ProfileRecord(user_id="u1", name="Local", updated_at=1))
    profiles = ProfileService(store, remote)

    record = await profiles.load_profile("u1", online=True)

    assert record.name == "Local"
    assert remote.calls == []


@pytest.mark.asyncio
async def test_load_fetches_remote_when_missing(store, remote):
    """Test that a remote profile is cached locally as already synced."""
    remote.rows(REMOTE_PROFILES_TABLE)["u1"] = {
        "user_id": "u1",
        "name": "Remote",
        "age": 40,
        "phone": "",
        "date_of_birth": "1985-01-01",
        "updated_at": "2024-01-01T00:00:00+00:00",
    }
    profiles = ProfileService(store, remote)

    record = await profiles.load_profile("u1", online=True)

    assert record.name == "Remote"
    assert record.pending_sync is False
    assert record.updated_at == 1704067200000
    assert (await store.get_profile("u1")).name == "Remote"


@pytest.mark.asyncio
async def test_load_offline_or_unreachable(store, remote):
    """Test that no profile is returned when the remote cannot be used."""
    profiles = ProfileService(store, remote)

    assert await profiles.load_profile("u1", online=False) is None

    remote.online = False
    assert await profiles.load_profile("u1", online=True) is None
