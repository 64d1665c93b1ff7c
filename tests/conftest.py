"""Shared fixtures for the facesync test suite."""

from __future__ import annotations

import pytest

from facesync.services.connectivity import ConnectivityMonitor
from facesync.services.credentials import CredentialCache, SecretBox
from facesync.services.sync import SyncEngine
from facesync.storage.local_store import LocalStore

from fakes import TEST_KEY, FakeRemoteStore


@pytest.fixture
def store(tmp_path):
    """Local store in a temporary directory (created on first use)."""
    return LocalStore(tmp_path / "facesync.db")


@pytest.fixture
def remote():
    """In-memory remote store, online."""
    return FakeRemoteStore()


@pytest.fixture
def secret_box():
    return SecretBox(TEST_KEY)


@pytest.fixture
def credentials(store, remote, secret_box):
    """Credential cache with the reversible secret enabled."""
    return CredentialCache(store, remote, secret_box, iterations=1000)


@pytest.fixture
def sync_engine(store, remote):
    return SyncEngine(store, remote)


@pytest.fixture
def connectivity():
    """Connectivity monitor starting offline."""
    return ConnectivityMonitor(initial=False)
