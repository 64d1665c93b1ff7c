"""Local-first profile synchronization.

Pushes pending local profile edits to the remote ``user_details`` table with
last-writer-wins on ``updated_at``:

    no remote row                  -> insert
    local updated_at > remote      -> update
    local updated_at <= remote     -> local edit is dropped (flag cleared)

The dropped-edit case is not reported to the user; it is logged at WARNING
and counted in ``stats["conceded"]``. Timestamps are wall-clock, so clock
skew between devices can pick the wrong writer.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional

from facesync.core.errors import AuthenticationError, FaceSyncError
from facesync.core.events import Channel, Listener
from facesync.core.interfaces import RemoteStore
from facesync.core.logging_config import get_logger
from facesync.core.utils import now_ms
from facesync.storage.local_store import LocalStore
from facesync.storage.schemas import REMOTE_PROFILES_TABLE, ProfileRecord, remote_updated_at_ms

logger = get_logger(__name__)

AUTH_REQUIRED_MESSAGE = "Authentication required"


@dataclass(frozen=True)
class SyncStatus:
    """Broadcast state of the sync engine (never persisted).

    Attributes:
        is_syncing: True while a run is in progress
        last_sync_time: Epoch ms of the last fully successful run
        pending_count: Pending records, recomputed at the end of each run
        error: Short reason when the last run did not fully succeed
        auth_required: True when a push was rejected for authentication
    """

    is_syncing: bool = False
    last_sync_time: Optional[int] = None
    pending_count: int = 0
    error: Optional[str] = None
    auth_required: bool = False


class SyncEngine:
    """Single-flight synchronizer of pending profile records.

    A run() while another run is in flight returns immediately without
    queueing; callers that need another pass check pending_count() or watch
    the status.

    Example:
        >>> engine = SyncEngine(store, remote)
        >>> engine.subscribe(lambda status: print(status.pending_count))
        >>> await engine.run()
    """

    def __init__(self, store: LocalStore, remote: RemoteStore, table: str = REMOTE_PROFILES_TABLE):
        self.store = store
        self.remote = remote
        self.table = table
        self._running = False
        self._channel: Channel[SyncStatus] = Channel(SyncStatus(), name="sync")
        self.stats: Dict[str, int] = {
            "inserted": 0,
            "updated": 0,
            "conceded": 0,
            "failed": 0,
        }

    @property
    def status(self) -> SyncStatus:
        return self._channel.value

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, listener: Listener) -> None:
        """Register a status listener; it immediately receives the current status."""
        self._channel.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._channel.unsubscribe(listener)

    async def pending_count(self) -> int:
        return await self.store.count_pending_profiles()

    def _publish(self, **changes) -> None:
        self._channel.publish(replace(self.status, **changes))

    async def run(self) -> None:
        """Push every pending record once. No-op if a run is already in flight."""
        if self._running:
            logger.debug("Sync already running, ignoring trigger")
            return
        # Set before the first await so concurrent callers see it
        self._running = True
        try:
            await self._run()
        finally:
            self._running = False

    async def _run(self) -> None:
        self._publish(is_syncing=True, error=None, auth_required=False)

        try:
            pending = await self.store.get_pending_profiles()
        except Exception as e:
            logger.exception(f"Sync aborted, could not load pending records: {e}")
            message = e.user_message if isinstance(e, FaceSyncError) else "Sync failed."
            self._publish(
                is_syncing=False,
                pending_count=await self._remaining(),
                error=message,
            )
            return

        logger.info(f"Sync started: {len(pending)} pending record(s)")
        failures = 0
        auth_failed = False

        for record in pending:
            try:
                await self._push(record)
            except AuthenticationError as e:
                failures += 1
                auth_failed = True
                logger.warning(f"Sync of {record.user_id} rejected: {e}")
            except FaceSyncError as e:
                failures += 1
                logger.warning(f"Sync of {record.user_id} failed, will retry: {e}")
            except Exception as e:
                failures += 1
                logger.exception(f"Unexpected error syncing {record.user_id}: {e}")

        self.stats["failed"] += failures
        remaining = await self._remaining()

        if failures:
            error = AUTH_REQUIRED_MESSAGE if auth_failed else f"{failures} record(s) failed to sync"
            self._publish(
                is_syncing=False,
                pending_count=remaining,
                error=error,
                auth_required=auth_failed,
            )
            logger.warning(f"Sync finished with errors: {error} ({remaining} pending)")
        else:
            self._publish(
                is_syncing=False,
                pending_count=remaining,
                last_sync_time=now_ms(),
                error=None,
            )
            logger.info(f"Sync finished: {len(pending)} record(s), {remaining} pending")

    async def _push(self, record: ProfileRecord) -> None:
        remote_row = await self.remote.get_by_user_id(self.table, record.user_id)

        if remote_row is None:
            await self.remote.insert(self.table, record.to_remote())
            self.stats["inserted"] += 1
            logger.debug(f"Inserted remote profile for {record.user_id}")
        else:
            remote_ms = remote_updated_at_ms(remote_row)
            if record.updated_at > remote_ms:
                patch = record.to_remote()
                patch.pop("user_id")
                await self.remote.update(self.table, record.user_id, patch)
                self.stats["updated"] += 1
                logger.debug(f"Updated remote profile for {record.user_id}")
            else:
                self.stats["conceded"] += 1
                logger.warning(
                    f"Remote profile of {record.user_id} is newer "
                    f"({remote_ms} >= {record.updated_at}), discarding local edit"
                )

        await self.store.mark_synced(record.user_id, record.updated_at)

    async def _remaining(self) -> int:
        try:
            return await self.pending_count()
        except FaceSyncError as e:
            logger.error(f"Could not recount pending records: {e}")
            return self.status.pending_count
