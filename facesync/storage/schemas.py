"""Schemas for the local SQLite store and the remote tables.

Defines the SQL for each schema version, the collection descriptors used by
the generic store operations, and the typed records exchanged with services.

Remote tables use snake_case columns and ISO-8601 ``updated_at``; locally the
same instant is kept as epoch milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from facesync.core.interfaces import DESCRIPTOR_DIM
from facesync.core.utils import iso_to_ms, ms_to_iso

# Remote table names
REMOTE_PROFILES_TABLE = "user_details"
REMOTE_DESCRIPTORS_TABLE = "user_face_data"


# =============================================================================
# SQLite table definitions
# =============================================================================

CREDENTIALS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS credentials (
    user_id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    password_verifier TEXT NOT NULL,
    reversible_secret TEXT,
    last_login_at INTEGER NOT NULL
);
"""

CREDENTIALS_INDEXES_SQL = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_credentials_email ON credentials(email);",
]

PROFILES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS profiles (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT,
    age INTEGER,
    phone TEXT,
    date_of_birth TEXT,
    updated_at INTEGER NOT NULL,
    pending_sync INTEGER NOT NULL DEFAULT 0
);
"""

PROFILES_INDEXES_SQL = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_profiles_user_id ON profiles(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_profiles_pending_sync ON profiles(pending_sync);",
]

DESCRIPTORS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS descriptors (
    user_id TEXT PRIMARY KEY,
    descriptor BLOB NOT NULL,
    updated_at INTEGER NOT NULL
);
"""

# Ordered schema versions; each entry is applied once and recorded in
# PRAGMA user_version. Later versions must never rewrite earlier tables.
MIGRATIONS: List[Tuple[int, List[str]]] = [
    (1, [CREDENTIALS_TABLE_SQL, *CREDENTIALS_INDEXES_SQL,
         PROFILES_TABLE_SQL, *PROFILES_INDEXES_SQL]),
    (2, [DESCRIPTORS_TABLE_SQL]),
]


@dataclass(frozen=True)
class Collection:
    """Description of one keyed collection.

    Attributes:
        name: Table name
        key: Primary key column
        columns: All columns, key included
        upsert_on: Column identifying the record for upserts. Differs from
                   ``key`` when the key is a surrogate (profiles).
        indexes: Columns that may be queried with get_by_index
    """

    name: str
    key: str
    columns: Tuple[str, ...]
    upsert_on: str
    indexes: Tuple[str, ...] = ()


CREDENTIALS = Collection(
    name="credentials",
    key="user_id",
    columns=("user_id", "email", "password_verifier", "reversible_secret", "last_login_at"),
    upsert_on="user_id",
    indexes=("email",),
)

PROFILES = Collection(
    name="profiles",
    key="local_id",
    columns=("local_id", "user_id", "name", "age", "phone", "date_of_birth",
             "updated_at", "pending_sync"),
    upsert_on="user_id",
    indexes=("user_id", "pending_sync"),
)

DESCRIPTORS = Collection(
    name="descriptors",
    key="user_id",
    columns=("user_id", "descriptor", "updated_at"),
    upsert_on="user_id",
)

COLLECTIONS: Dict[str, Collection] = {c.name: c for c in (CREDENTIALS, PROFILES, DESCRIPTORS)}


# =============================================================================
# Records
# =============================================================================


def remote_updated_at_ms(row: Dict[str, Any]) -> int:
    """Epoch ms of a remote row's ``updated_at`` (0 when absent)."""
    updated = row.get("updated_at")
    if updated is None:
        return 0
    if isinstance(updated, str):
        return iso_to_ms(updated)
    return int(updated)


@dataclass
class CachedCredential:
    """Offline-verifiable credential for one user.

    Attributes:
        user_id: Remote user identifier
        email: Login email (unique)
        password_verifier: Salted one-way verifier (never the password)
        reversible_secret: Encrypted password token for silent reauth, or None
        last_login_at: Epoch ms of the last successful login
    """

    user_id: str
    email: str
    password_verifier: str
    reversible_secret: Optional[str] = None
    last_login_at: int = 0

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "password_verifier": self.password_verifier,
            "reversible_secret": self.reversible_secret,
            "last_login_at": self.last_login_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> CachedCredential:
        return cls(
            user_id=row["user_id"],
            email=row["email"],
            password_verifier=row["password_verifier"],
            reversible_secret=row.get("reversible_secret"),
            last_login_at=int(row.get("last_login_at") or 0),
        )


@dataclass
class EnrolledDescriptor:
    """Face descriptor enrolled for one user (at most one per user_id)."""

    user_id: str
    descriptor: np.ndarray
    updated_at: int = 0

    def __post_init__(self) -> None:
        self.descriptor = np.asarray(self.descriptor, dtype=np.float32).reshape(-1)
        if self.descriptor.shape != (DESCRIPTOR_DIM,):
            raise ValueError(
                f"descriptor must have shape ({DESCRIPTOR_DIM},), got {self.descriptor.shape}"
            )

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "descriptor": self.descriptor.astype(np.float32).tobytes(),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> EnrolledDescriptor:
        return cls(
            user_id=row["user_id"],
            descriptor=np.frombuffer(row["descriptor"], dtype=np.float32).copy(),
            updated_at=int(row["updated_at"]),
        )

    def to_remote(self) -> Dict[str, Any]:
        """Row for the remote ``user_face_data`` table."""
        return {
            "user_id": self.user_id,
            "face_descriptor": [float(x) for x in self.descriptor],
            "updated_at": ms_to_iso(self.updated_at),
        }

    @classmethod
    def from_remote(cls, row: Dict[str, Any]) -> EnrolledDescriptor:
        return cls(
            user_id=row["user_id"],
            descriptor=np.asarray(row["face_descriptor"], dtype=np.float32),
            updated_at=remote_updated_at_ms(row),
        )


@dataclass
class ProfileRecord:
    """Local copy of a user's profile.

    Attributes:
        user_id: Owner (unique among local profiles)
        name: Display name
        age: Age in years (1-150) or None
        phone: Phone number
        date_of_birth: ISO date string
        updated_at: Epoch ms of the last edit; the sole conflict tie-break
        pending_sync: True while the edit has not been acknowledged remotely
        local_id: Surrogate key assigned by the store
    """

    user_id: str
    name: str = ""
    age: Optional[int] = None
    phone: str = ""
    date_of_birth: str = ""
    updated_at: int = 0
    pending_sync: bool = False
    local_id: Optional[int] = None

    # Fields editable through the profile form
    EDITABLE = ("name", "age", "phone", "date_of_birth")

    def to_row(self) -> Dict[str, Any]:
        row = {
            "user_id": self.user_id,
            "name": self.name,
            "age": self.age,
            "phone": self.phone,
            "date_of_birth": self.date_of_birth,
            "updated_at": self.updated_at,
            "pending_sync": 1 if self.pending_sync else 0,
        }
        if self.local_id is not None:
            row["local_id"] = self.local_id
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> ProfileRecord:
        return cls(
            user_id=row["user_id"],
            name=row.get("name") or "",
            age=row.get("age"),
            phone=row.get("phone") or "",
            date_of_birth=row.get("date_of_birth") or "",
            updated_at=int(row["updated_at"]),
            pending_sync=bool(row.get("pending_sync")),
            local_id=row.get("local_id"),
        )

    def to_remote(self) -> Dict[str, Any]:
        """Row for the remote ``user_details`` table."""
        return {
            "user_id": self.user_id,
            "name": self.name,
            "age": self.age,
            "phone": self.phone,
            "date_of_birth": self.date_of_birth or None,
            "updated_at": ms_to_iso(self.updated_at),
        }

    @classmethod
    def from_remote(cls, row: Dict[str, Any]) -> ProfileRecord:
        return cls(
            user_id=row["user_id"],
            name=row.get("name") or "",
            age=row.get("age"),
            phone=row.get("phone") or "",
            date_of_birth=row.get("date_of_birth") or "",
            updated_at=remote_updated_at_ms(row),
            pending_sync=False,
        )
