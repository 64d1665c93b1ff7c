#!/usr/bin/env python3
"""Edit the profile of a user and keep it in sync.

Logs in with email and password, applies the given field edits to the local
profile (pending sync) and then watches connectivity: whenever the remote
store becomes reachable the session reauthenticates if needed and pushes the
pending edits.

Usage:
    python scripts/edit_profile.py --email ana@example.com --name Alicia --age 31
    python scripts/edit_profile.py --email ana@example.com --watch 60
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from facesync.core.config import Config
from facesync.core.errors import FaceSyncError
from facesync.core.logging_config import setup_logging
from facesync.services.connectivity import ConnectivityMonitor
from facesync.services.credentials import CredentialCache, SecretBox
from facesync.services.profile import ProfileService
from facesync.services.session import SessionCoordinator
from facesync.services.sync import SyncEngine, SyncStatus
from facesync.storage.local_store import LocalStore
from facesync.storage.remote_store import RestRemoteStore

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Edit a profile offline-first",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--email", type=str, required=True, help="Account email")
    parser.add_argument("--name", type=str, default=None, help="New display name")
    parser.add_argument("--age", type=str, default=None, help="New age (1-150)")
    parser.add_argument("--phone", type=str, default=None, help="New phone number")
    parser.add_argument("--dob", type=str, default=None, help="New date of birth (YYYY-MM-DD)")

    parser.add_argument(
        "--watch",
        type=float,
        default=0.0,
        help="Keep watching connectivity for this many seconds after saving",
    )

    return parser.parse_args()


async def ask_password() -> Optional[str]:
    """Reauth prompt shown when silent reauthentication is not possible."""
    print("Your session was established offline. Enter your password to sync.")
    return await asyncio.to_thread(getpass.getpass, "Password: ")


def print_status(status: SyncStatus) -> None:
    if status.is_syncing:
        print("  … syncing")
    elif status.error:
        print(f"  ⚠ {status.error} ({status.pending_count} pending)")
    elif status.last_sync_time:
        print(f"  ✓ synced ({status.pending_count} pending)")


async def run(args: argparse.Namespace, config: Config) -> int:
    fields = {
        key: value
        for key, value in (
            ("name", args.name),
            ("age", args.age),
            ("phone", args.phone),
            ("date_of_birth", args.dob),
        )
        if value is not None
    }

    store = LocalStore(config.db_path)
    await store.initialize()
    remote = RestRemoteStore.from_config(config)

    connectivity = ConnectivityMonitor()
    if config.remote_url:
        connectivity.set_online(await remote.ping())

    sync = SyncEngine(store, remote)
    sync.subscribe(print_status)
    credentials = CredentialCache(store, remote, SecretBox.from_config(config))
    coordinator = SessionCoordinator(credentials, sync, connectivity, prompt=ask_password)
    profiles = ProfileService(store, remote, on_saved=coordinator.request_sync)

    stop = asyncio.Event()
    watcher: Optional[asyncio.Task] = None
    coordinator.start()

    try:
        password = getpass.getpass(f"Password for {args.email}: ")
        session = await coordinator.login(args.email, password)
        print(f"✓ Logged in as {session.user_id} ({session.state.value})")

        if fields:
            record = await profiles.save_profile(session.user_id, fields)
        else:
            record = await profiles.load_profile(session.user_id, connectivity.is_online)

        if record is None:
            print("No profile yet")
        else:
            print(f"Profile: name={record.name!r}, age={record.age}, phone={record.phone!r}, "
                  f"date_of_birth={record.date_of_birth!r}, pending={record.pending_sync}")

        if args.watch > 0 and config.remote_url:
            watcher = asyncio.create_task(
                connectivity.watch(remote.ping, interval=config.connectivity_interval, stop=stop)
            )
            await asyncio.sleep(args.watch)

        print(f"Pending edits: {await sync.pending_count()}")
        return 0

    except FaceSyncError as e:
        logger.error(f"Profile edit failed: {e}")
        print(f"❌ {e.user_message}")
        return 1

    finally:
        stop.set()
        if watcher is not None:
            await watcher
        await connectivity.drain()
        coordinator.close()
        await remote.aclose()


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()
    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
