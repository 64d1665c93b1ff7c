"""Local durable store on SQLite.

Holds three keyed collections (credentials, profiles, descriptors) with
secondary indexes. Every operation opens its own connection and runs as one
transaction in a worker thread, so callers on the event loop never block on
disk I/O. A thread lock serializes access to the database file.

The schema is versioned through ``PRAGMA user_version``; opening an older
database applies only the missing migrations and never touches existing data.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from facesync.core.errors import StoreError
from facesync.core.logging_config import get_logger
from facesync.storage.schemas import (
    COLLECTIONS,
    CREDENTIALS,
    DESCRIPTORS,
    MIGRATIONS,
    PROFILES,
    CachedCredential,
    Collection,
    EnrolledDescriptor,
    ProfileRecord,
)

logger = get_logger(__name__)

T = TypeVar("T")

Row = Dict[str, Any]


class LocalStore:
    """SQLite-backed keyed store with typed helpers.

    Usage:
        store = LocalStore("data/facesync.db")
        await store.initialize()

        await store.save_profile(ProfileRecord(user_id="u1", name="Ana", updated_at=now_ms(),
                                               pending_sync=True))
        pending = await store.get_pending_profiles()
    """

    def __init__(
        self,
        db_path: str | Path,
        migrations: Sequence[Tuple[int, Sequence[str]]] = MIGRATIONS,
    ):
        """Initialize the store (the file is created by initialize()).

        Args:
            db_path: Path to SQLite database file
            migrations: Ordered (version, statements) pairs to apply
        """
        self.db_path = Path(db_path)
        self.migrations = list(migrations)
        self._lock = threading.Lock()
        self._initialized = False

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _migrate(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            current = conn.execute("PRAGMA user_version").fetchone()[0]
            for version, statements in self.migrations:
                if version <= current:
                    continue
                for statement in statements:
                    conn.execute(statement)
                conn.execute(f"PRAGMA user_version = {int(version)}")
                conn.commit()
                logger.info(f"Local store {self.db_path} migrated to schema v{version}")
                current = version
        finally:
            conn.close()

    def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        with self._lock:
            if not self._initialized:
                self._migrate()
                self._initialized = True
            conn = self._connect()
            try:
                result = fn(conn)
                conn.commit()
                return result
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    async def _call(self, fn: Callable[[sqlite3.Connection], T], action: str) -> T:
        try:
            return await asyncio.to_thread(self._run, fn)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Local store {action} failed: {e}")
            raise StoreError(log_message=f"{action} failed: {e}") from e

    @staticmethod
    def _collection(name: str) -> Collection:
        try:
            return COLLECTIONS[name]
        except KeyError:
            raise ValueError(f"Unknown collection: '{name}'") from None

    async def initialize(self) -> None:
        """Create or migrate the database. Safe to call multiple times."""
        await self._call(lambda conn: None, "initialize")

    async def schema_version(self) -> int:
        """Current ``PRAGMA user_version`` of the database."""
        return await self._call(
            lambda conn: int(conn.execute("PRAGMA user_version").fetchone()[0]),
            "schema_version",
        )

    # =========================================================================
    # Generic operations
    # =========================================================================

    async def upsert(self, collection: str, record: Row) -> Row:
        """Insert or replace a record, matched on the collection's upsert column.

        For profiles the existing surrogate ``local_id`` of the user is kept.

        Returns:
            The stored row.
        """
        coll = self._collection(collection)
        columns = [c for c in coll.columns if c in record]
        unknown = set(record) - set(coll.columns)
        if unknown:
            raise ValueError(f"Unknown columns for {collection}: {sorted(unknown)}")
        if coll.upsert_on not in columns:
            raise ValueError(f"{collection} record requires '{coll.upsert_on}'")

        updates = [c for c in columns if c not in (coll.key, coll.upsert_on)]
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {coll.name} ({', '.join(columns)}) VALUES ({placeholders}) "
        if updates:
            assignments = ", ".join(f"{c} = excluded.{c}" for c in updates)
            sql += f"ON CONFLICT({coll.upsert_on}) DO UPDATE SET {assignments}"
        else:
            sql += f"ON CONFLICT({coll.upsert_on}) DO NOTHING"
        values = [record[c] for c in columns]

        def op(conn: sqlite3.Connection) -> Row:
            conn.execute(sql, values)
            row = conn.execute(
                f"SELECT * FROM {coll.name} WHERE {coll.upsert_on} = ?",
                (record[coll.upsert_on],),
            ).fetchone()
            return dict(row)

        return await self._call(op, f"upsert into {collection}")

    async def get(self, collection: str, key: Any) -> Optional[Row]:
        """Fetch a record by primary key; None when absent."""
        coll = self._collection(collection)

        def op(conn: sqlite3.Connection) -> Optional[Row]:
            row = conn.execute(
                f"SELECT * FROM {coll.name} WHERE {coll.key} = ?", (key,)
            ).fetchone()
            return dict(row) if row else None

        return await self._call(op, f"get from {collection}")

    async def get_by_index(self, collection: str, index: str, value: Any) -> List[Row]:
        """Fetch all records whose indexed column equals ``value``."""
        coll = self._collection(collection)
        if index not in coll.indexes:
            raise ValueError(f"'{index}' is not an index of {collection}")

        def op(conn: sqlite3.Connection) -> List[Row]:
            rows = conn.execute(
                f"SELECT * FROM {coll.name} WHERE {index} = ? ORDER BY {coll.key}", (value,)
            ).fetchall()
            return [dict(r) for r in rows]

        return await self._call(op, f"index lookup on {collection}.{index}")

    async def get_all(self, collection: str) -> List[Row]:
        """Fetch every record of a collection."""
        coll = self._collection(collection)

        def op(conn: sqlite3.Connection) -> List[Row]:
            rows = conn.execute(f"SELECT * FROM {coll.name} ORDER BY {coll.key}").fetchall()
            return [dict(r) for r in rows]

        return await self._call(op, f"get_all from {collection}")

    async def delete(self, collection: str, key: Any) -> bool:
        """Delete a record by primary key. Returns True if a record was removed."""
        coll = self._collection(collection)

        def op(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(f"DELETE FROM {coll.name} WHERE {coll.key} = ?", (key,))
            return cursor.rowcount > 0

        return await self._call(op, f"delete from {collection}")

    # =========================================================================
    # Credentials
    # =========================================================================

    async def cache_credential(self, credential: CachedCredential) -> None:
        """Store the credential, replacing any stale holder of the same email."""
        record = credential.to_row()

        def op(conn: sqlite3.Connection) -> None:
            conn.execute(
                "DELETE FROM credentials WHERE email = ? AND user_id != ?",
                (credential.email, credential.user_id),
            )
            columns = list(CREDENTIALS.columns)
            assignments = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "user_id")
            conn.execute(
                f"INSERT INTO credentials ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)}) "
                f"ON CONFLICT(user_id) DO UPDATE SET {assignments}",
                [record[c] for c in columns],
            )

        await self._call(op, "cache credential")
        logger.debug(f"Cached credential for user {credential.user_id}")

    async def get_credential(self, user_id: str) -> Optional[CachedCredential]:
        row = await self.get(CREDENTIALS.name, user_id)
        return CachedCredential.from_row(row) if row else None

    async def get_credential_by_email(self, email: str) -> Optional[CachedCredential]:
        rows = await self.get_by_index(CREDENTIALS.name, "email", email)
        return CachedCredential.from_row(rows[0]) if rows else None

    async def get_all_credentials(self) -> List[CachedCredential]:
        return [CachedCredential.from_row(r) for r in await self.get_all(CREDENTIALS.name)]

    # =========================================================================
    # Profiles
    # =========================================================================

    async def save_profile(self, profile: ProfileRecord) -> ProfileRecord:
        """Upsert the user's profile, keeping its surrogate id. Returns the stored record."""
        row = profile.to_row()
        row.pop("local_id", None)
        stored = await self.upsert(PROFILES.name, row)
        return ProfileRecord.from_row(stored)

    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        rows = await self.get_by_index(PROFILES.name, "user_id", user_id)
        return ProfileRecord.from_row(rows[0]) if rows else None

    async def get_pending_profiles(self) -> List[ProfileRecord]:
        rows = await self.get_by_index(PROFILES.name, "pending_sync", 1)
        return [ProfileRecord.from_row(r) for r in rows]

    async def count_pending_profiles(self) -> int:
        def op(conn: sqlite3.Connection) -> int:
            return int(
                conn.execute("SELECT COUNT(*) FROM profiles WHERE pending_sync = 1").fetchone()[0]
            )

        return await self._call(op, "count pending profiles")

    async def mark_synced(self, user_id: str, updated_at: int) -> bool:
        """Clear the pending flag if the record still carries the pushed ``updated_at``.

        A record edited again while its push was in flight keeps its flag.

        Returns:
            True if the flag was cleared.
        """

        def op(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(
                "UPDATE profiles SET pending_sync = 0 WHERE user_id = ? AND updated_at = ?",
                (user_id, updated_at),
            )
            return cursor.rowcount > 0

        cleared = await self._call(op, "mark synced")
        if not cleared:
            logger.debug(f"Profile {user_id} changed during sync, keeping it pending")
        return cleared

    # =========================================================================
    # Descriptors
    # =========================================================================

    async def save_descriptor(self, descriptor: EnrolledDescriptor) -> None:
        await self.upsert(DESCRIPTORS.name, descriptor.to_row())
        logger.debug(f"Saved descriptor for user {descriptor.user_id}")

    async def get_descriptor(self, user_id: str) -> Optional[EnrolledDescriptor]:
        row = await self.get(DESCRIPTORS.name, user_id)
        return EnrolledDescriptor.from_row(row) if row else None

    async def get_all_descriptors(self) -> List[EnrolledDescriptor]:
        return [EnrolledDescriptor.from_row(r) for r in await self.get_all(DESCRIPTORS.name)]

    async def has_descriptor(self, user_id: str) -> bool:
        return await self.get(DESCRIPTORS.name, user_id) is not None

    async def delete_descriptor(self, user_id: str) -> bool:
        return await self.delete(DESCRIPTORS.name, user_id)

    def __repr__(self) -> str:
        return f"LocalStore(db_path='{self.db_path}')"
