"""Profile editing on the local copy, with sync on save."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from facesync.core.errors import AuthenticationError, DataIntegrityError, TransientError
from facesync.core.interfaces import RemoteStore
from facesync.core.logging_config import get_logger
from facesync.core.utils import now_ms
from facesync.storage.local_store import LocalStore
from facesync.storage.schemas import REMOTE_PROFILES_TABLE, ProfileRecord

logger = get_logger(__name__)

MIN_AGE = 1
MAX_AGE = 150


def validate_age(age: Any) -> Optional[int]:
    """Coerce an age field; None/empty means not given.

    Raises:
        DataIntegrityError: If the age is not a whole number in 1-150.
    """
    if age is None or age == "":
        return None
    try:
        value = int(age)
    except (TypeError, ValueError):
        raise DataIntegrityError(f"Age must be a number between {MIN_AGE} and {MAX_AGE}.") from None
    if isinstance(age, float) and not age.is_integer():
        raise DataIntegrityError(f"Age must be a number between {MIN_AGE} and {MAX_AGE}.")
    if not MIN_AGE <= value <= MAX_AGE:
        raise DataIntegrityError(f"Age must be between {MIN_AGE} and {MAX_AGE}.")
    return value


class ProfileService:
    """Reads and writes the user's profile, local copy first.

    Attributes:
        store: Local store
        remote: Remote store, used when no local copy exists yet
        on_saved: Called after each save; the session coordinator's
                  request_sync is the usual hook
    """

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteStore] = None,
        on_saved: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self.store = store
        self.remote = remote
        self.on_saved = on_saved

    async def save_profile(self, user_id: str, fields: Dict[str, Any]) -> ProfileRecord:
        """Apply edited fields to the local record and mark it pending.

        Args:
            user_id: Profile owner
            fields: Subset of name, age, phone, date_of_birth

        Returns:
            The stored record.

        Raises:
            DataIntegrityError: If a field is invalid.
            ValueError: If an unknown field is given.
        """
        unknown = set(fields) - set(ProfileRecord.EDITABLE)
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")

        existing = await self.store.get_profile(user_id)
        record = existing or ProfileRecord(user_id=user_id)

        for name in ProfileRecord.EDITABLE:
            if name not in fields:
                continue
            value = fields[name]
            if name == "age":
                value = validate_age(value)
            elif value is None:
                value = ""
            else:
                value = str(value).strip()
            setattr(record, name, value)

        # Strictly increasing per record, so an in-flight push never clears a newer edit
        timestamp = now_ms()
        if existing is not None and timestamp <= existing.updated_at:
            timestamp = existing.updated_at + 1
        record.updated_at = timestamp
        record.pending_sync = True

        stored = await self.store.save_profile(record)
        logger.info(f"Saved profile for {user_id} locally (pending sync)")

        if self.on_saved is not None:
            await self.on_saved()
        return stored

    async def load_profile(self, user_id: str, online: bool) -> Optional[ProfileRecord]:
        """Local copy if present; otherwise the remote copy when online.

        A remote copy is stored locally (not pending) before being returned.
        """
        local = await self.store.get_profile(user_id)
        if local is not None or not online or self.remote is None:
            return local

        try:
            row = await self.remote.get_by_user_id(REMOTE_PROFILES_TABLE, user_id)
        except (TransientError, AuthenticationError) as e:
            logger.warning(f"Could not load remote profile for {user_id}: {e}")
            return None
        if row is None:
            return None

        record = await self.store.save_profile(ProfileRecord.from_remote(row))
        logger.info(f"Loaded remote profile for {user_id}")
        return record
