"""Persistence: local SQLite store, remote REST store and shared schemas."""

from facesync.storage.local_store import LocalStore
from facesync.storage.remote_store import RestRemoteStore
from facesync.storage.schemas import (
    REMOTE_DESCRIPTORS_TABLE,
    REMOTE_PROFILES_TABLE,
    CachedCredential,
    EnrolledDescriptor,
    ProfileRecord,
)

__all__ = [
    "LocalStore",
    "RestRemoteStore",
    "CachedCredential",
    "EnrolledDescriptor",
    "ProfileRecord",
    "REMOTE_PROFILES_TABLE",
    "REMOTE_DESCRIPTORS_TABLE",
]
