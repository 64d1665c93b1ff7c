#!/usr/bin/env python3
"""Enroll the face of a logged-in user.

Logs in with email and password (online when the remote store answers,
otherwise against the local credential cache), runs a liveness check on the
webcam and stores the averaged face descriptor.

Usage:
    python scripts/enroll_face.py --email ana@example.com
    python scripts/enroll_face.py --email ana@example.com --camera 1 --offline
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from facesync.backends.factory import create_extractor
from facesync.core.config import Config
from facesync.core.errors import FaceSyncError
from facesync.core.logging_config import setup_logging
from facesync.core.video_io import WebcamSource
from facesync.services.camera import CameraManager
from facesync.services.connectivity import ConnectivityMonitor
from facesync.services.credentials import CredentialCache, SecretBox
from facesync.services.enrollment import EnrollmentService
from facesync.services.liveness import LivenessAnalyzer
from facesync.services.session import SessionCoordinator
from facesync.services.sync import SyncEngine
from facesync.storage.local_store import LocalStore
from facesync.storage.remote_store import RestRemoteStore

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Enroll a user's face for face login",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--email", type=str, required=True, help="Account email")

    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera device ID (overrides .env CAMERA_ID)",
    )

    parser.add_argument(
        "--offline",
        action="store_true",
        help="Do not contact the remote store",
    )

    return parser.parse_args()


def print_section(title: str) -> None:
    """Print a section divider."""
    print()
    print("=" * 70)
    print(f"  {title}")
    print("=" * 70)


async def run(args: argparse.Namespace, config: Config) -> int:
    camera_id = args.camera if args.camera is not None else config.camera_id

    store = LocalStore(config.db_path)
    await store.initialize()
    remote = RestRemoteStore.from_config(config)

    connectivity = ConnectivityMonitor()
    if not args.offline and config.remote_url:
        connectivity.set_online(await remote.ping())

    credentials = CredentialCache(store, remote, SecretBox.from_config(config))
    coordinator = SessionCoordinator(credentials, SyncEngine(store, remote), connectivity)

    extractor = create_extractor(config)
    enrollment = EnrollmentService(
        store,
        extractor,
        LivenessAnalyzer(extractor, capture_timeout=config.capture_timeout),
        remote=remote,
        capture_timeout=config.capture_timeout,
    )
    camera = CameraManager(
        lambda: WebcamSource(camera_id=camera_id),
        settle_delay=config.camera_settle_delay,
    )

    try:
        print_section("Step 1: Login")
        password = getpass.getpass(f"Password for {args.email}: ")
        session = await coordinator.login(args.email, password)
        print(f"✓ Logged in as {session.user_id} ({session.state.value})")

        if await enrollment.has_enrollment(session.user_id):
            print("  A face is already enrolled for this user; it will be replaced")

        print_section("Step 2: Capture")
        print("Look at the camera and move your head slightly...")
        source = await camera.acquire()
        try:
            enrolled = await enrollment.enroll(
                session.user_id, source, online=connectivity.is_online
            )
        finally:
            await camera.release()

        print(f"✓ Enrolled face for {enrolled.user_id}")
        return 0

    except FaceSyncError as e:
        logger.error(f"Enrollment failed: {e}")
        print(f"❌ {e.user_message}")
        return 1

    finally:
        await remote.aclose()


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()

    print_section("Face Enrollment")
    print(f"Email:         {args.email}")
    print(f"Database:      {config.db_path}")
    print(f"Remote:        {'disabled' if args.offline else config.remote_url or 'not configured'}")

    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
