"""Unit tests for the profile sync engine."""

from __future__ import annotations

import asyncio

import pytest

from facesync.core.errors import StoreError
from facesync.core.utils import ms_to_iso
from facesync.services.profile import ProfileService
from facesync.services.sync import AUTH_REQUIRED_MESSAGE, SyncStatus
from facesync.storage.schemas import REMOTE_PROFILES_TABLE, ProfileRecord


async def _pending(store, user_id, name, updated_at):
    return await store.save_profile(
        ProfileRecord(user_id=user_id, name=name, updated_at=updated_at, pending_sync=True)
    )


def _remote_row(user_id, name, updated_at):
    return {
        "user_id": user_id,
        "name": name,
        "age": None,
        "phone": "",
        "date_of_birth": None,
        "updated_at": ms_to_iso(updated_at),
    }


@pytest.mark.asyncio
async def test_offline_edits_are_inserted_on_first_sync(store, remote, sync_engine):
    """Test that two offline edits reach the remote as one row with the latest values."""
    profiles = ProfileService(store)
    await profiles.save_profile("u1", {"name": "Alice", "age": 30})
    await profiles.save_profile("u1", {"name": "Alicia"})

    await sync_engine.run()

    row = remote.rows(REMOTE_PROFILES_TABLE)["u1"]
    assert row["name"] == "Alicia"
    assert row["age"] == 30
    assert [c[0] for c in remote.writes] == ["insert"]
    assert await store.count_pending_profiles() == 0
    assert sync_engine.stats["inserted"] == 1


@pytest.mark.asyncio
async def test_newer_local_edit_updates_remote(store, remote, sync_engine):
    """Test that a local edit newer than the remote row overwrites it."""
    remote.rows(REMOTE_PROFILES_TABLE)["u1"] = _remote_row("u1", "Old", 1_000)
    await _pending(store, "u1", "New", 2_000)

    await sync_engine.run()

    row = remote.rows(REMOTE_PROFILES_TABLE)["u1"]
    assert row["name"] == "New"
    assert [c[0] for c in remote.writes] == ["update"]
    assert sync_engine.stats["updated"] == 1
    assert (await store.get_profile("u1")).pending_sync is False


@pytest.mark.asyncio
async def test_newer_remote_row_wins(store, remote, sync_engine):
    """Test that a local edit older than the remote row is dropped without a write."""
    remote.rows(REMOTE_PROFILES_TABLE)["u1"] = _remote_row("u1", "Remote", 5_000)
    await _pending(store, "u1", "Local", 4_000)

    await sync_engine.run()

    assert remote.rows(REMOTE_PROFILES_TABLE)["u1"]["name"] == "Remote"
    assert remote.writes == []
    assert sync_engine.stats["conceded"] == 1
    assert (await store.get_profile("u1")).pending_sync is False
    assert sync_engine.status.error is None


@pytest.mark.asyncio
async def test_equal_timestamps_concede_to_remote(store, remote, sync_engine):
    """Test that a tie on updated_at keeps the remote row."""
    remote.rows(REMOTE_PROFILES_TABLE)["u1"] = _remote_row("u1", "Remote", 5_000)
    await _pending(store, "u1", "Local", 5_000)

    await sync_engine.run()

    assert remote.rows(REMOTE_PROFILES_TABLE)["u1"]["name"] == "Remote"
    assert sync_engine.stats["conceded"] == 1


@pytest.mark.asyncio
async def test_second_run_writes_nothing(store, remote, sync_engine):
    """Test that a run with nothing pending performs no remote writes."""
    await _pending(store, "u1", "Alice", 1_000)
    await sync_engine.run()
    writes_after_first = len(remote.writes)

    await sync_engine.run()

    assert len(remote.writes) == writes_after_first
    assert sync_engine.status.pending_count == 0
    assert sync_engine.status.last_sync_time is not None


@pytest.mark.asyncio
async def test_concurrent_runs_are_single_flight(store, remote, sync_engine):
    """Test that a trigger during a run is ignored rather than queued."""
    await _pending(store, "u1", "Alice", 1_000)
    remote.get_delay = 0.05

    await asyncio.gather(sync_engine.run(), sync_engine.run(), sync_engine.run())

    gets = [c for c in remote.calls if c[0] == "get"]
    assert len(gets) == 1
    assert len(remote.writes) == 1
    assert sync_engine.is_running is False


@pytest.mark.asyncio
async def test_failed_record_does_not_block_others(store, remote, sync_engine):
    """Test that one failing record stays pending while the rest sync."""
    await _pending(store, "u1", "Alice", 1_000)
    await _pending(store, "u2", "Bob", 1_000)
    remote.failing_user_ids.add("u1")

    await sync_engine.run()

    assert "u2" in remote.rows(REMOTE_PROFILES_TABLE)
    assert (await store.get_profile("u1")).pending_sync is True
    assert (await store.get_profile("u2")).pending_sync is False

    status = sync_engine.status
    assert status.is_syncing is False
    assert status.pending_count == 1
    assert status.error is not None
    assert status.auth_required is False
    assert sync_engine.stats["failed"] == 1


@pytest.mark.asyncio
async def test_auth_rejection_sets_auth_required(store, remote, sync_engine):
    """Test that an authorization failure is reported as auth_required."""
    await _pending(store, "u1", "Alice", 1_000)
    remote.auth_rejected_tables.add(REMOTE_PROFILES_TABLE)

    await sync_engine.run()

    status = sync_engine.status
    assert status.auth_required is True
    assert status.error == AUTH_REQUIRED_MESSAGE
    assert status.pending_count == 1
    assert (await store.get_profile("u1")).pending_sync is True


@pytest.mark.asyncio
async def test_offline_remote_keeps_records_pending(store, remote, sync_engine):
    """Test that an unreachable remote leaves every record pending for a later run."""
    await _pending(store, "u1", "Alice", 1_000)
    remote.online = False

    await sync_engine.run()

    assert sync_engine.status.pending_count == 1
    assert sync_engine.status.last_sync_time is None

    remote.online = True
    await sync_engine.run()
    assert sync_engine.status.pending_count == 0


@pytest.mark.asyncio
async def test_pending_fetch_failure_aborts_run(store, remote, sync_engine, monkeypatch):
    """Test that a local read failure ends the run with an error status."""

    async def broken():
        raise StoreError(log_message="disk gone")

    monkeypatch.setattr(store, "get_pending_profiles", broken)

    await sync_engine.run()

    assert sync_engine.status.is_syncing is False
    assert sync_engine.status.error == StoreError.default_message
    assert remote.calls == []
    assert sync_engine.is_running is False


@pytest.mark.asyncio
async def test_edit_during_push_stays_pending(store, remote, sync_engine):
    """Test that an edit made while its previous version is being pushed is not lost."""
    await _pending(store, "u1", "Alice", 1_000)
    remote.get_delay = 0.05

    run = asyncio.ensure_future(sync_engine.run())
    while not remote.calls:
        await asyncio.sleep(0.001)
    await _pending(store, "u1", "Alicia", 1_001)
    await run

    profile = await store.get_profile("u1")
    assert profile.pending_sync is True
    assert profile.name == "Alicia"

    await sync_engine.run()
    assert remote.rows(REMOTE_PROFILES_TABLE)["u1"]["name"] == "Alicia"


@pytest.mark.asyncio
async def test_status_replayed_to_new_subscriber(store, remote, sync_engine):
    """Test that subscribers receive the current status on subscribe and every change."""
    received = []
    sync_engine.subscribe(received.append)

    assert received == [SyncStatus()]

    await _pending(store, "u1", "Alice", 1_000)
    await sync_engine.run()

    assert received[1].is_syncing is True
    assert received[-1].is_syncing is False
    assert received[-1].pending_count == 0

    late = []
    sync_engine.subscribe(late.append)
    assert late == [received[-1]]
