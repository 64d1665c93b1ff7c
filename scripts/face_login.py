#!/usr/bin/env python3
"""Log in by face.

Runs the liveness check on the webcam, averages several descriptors,
resolves them against the local gallery (then the remote one when online)
and establishes a session for the matched user.

Usage:
    python scripts/face_login.py
    python scripts/face_login.py --camera 1 --blink --threshold 0.6
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from facesync.backends.factory import create_extractor
from facesync.core.config import Config
from facesync.core.errors import FaceSyncError, LivenessError, NoMatchError
from facesync.core.logging_config import setup_logging
from facesync.core.video_io import WebcamSource
from facesync.services.camera import CameraManager
from facesync.services.connectivity import ConnectivityMonitor
from facesync.services.credentials import CredentialCache, SecretBox
from facesync.services.identity import IdentityResolver, remote_gallery
from facesync.services.liveness import LivenessAnalyzer
from facesync.services.session import SessionCoordinator
from facesync.services.sync import SyncEngine
from facesync.storage.local_store import LocalStore
from facesync.storage.remote_store import RestRemoteStore

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Face login with liveness check",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera device ID (overrides .env CAMERA_ID)",
    )

    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Match distance threshold (overrides .env MATCH_THRESHOLD)",
    )

    parser.add_argument(
        "--blink",
        action="store_true",
        help="Also require an eye blink",
    )

    parser.add_argument(
        "--offline",
        action="store_true",
        help="Only use the local gallery and credential cache",
    )

    return parser.parse_args()


async def run(args: argparse.Namespace, config: Config) -> int:
    camera_id = args.camera if args.camera is not None else config.camera_id
    threshold = args.threshold if args.threshold is not None else config.match_threshold

    store = LocalStore(config.db_path)
    await store.initialize()
    remote = RestRemoteStore.from_config(config)

    connectivity = ConnectivityMonitor()
    if not args.offline and config.remote_url:
        connectivity.set_online(await remote.ping())
    print(f"Connectivity:  {'online' if connectivity.is_online else 'offline'}")

    extractor = create_extractor(config)
    liveness = LivenessAnalyzer(extractor, capture_timeout=config.capture_timeout)
    resolver = IdentityResolver(
        store, extractor, distance_threshold=threshold, capture_timeout=config.capture_timeout
    )
    credentials = CredentialCache(store, remote, SecretBox.from_config(config))
    coordinator = SessionCoordinator(credentials, SyncEngine(store, remote), connectivity)
    camera = CameraManager(
        lambda: WebcamSource(camera_id=camera_id),
        settle_delay=config.camera_settle_delay,
    )

    try:
        source = await camera.acquire()
        try:
            print("Look at the camera and move your head slightly...")
            result = await liveness.check(source, duration=config.liveness_duration)
            if not result.is_live:
                raise LivenessError(result.message, log_message=repr(result))
            print("✓ Liveness verified")

            if args.blink:
                print("Please blink...")
                if not await liveness.detect_blink(source):
                    raise LivenessError("No blink detected. Please try again.")
                print("✓ Blink detected")

            descriptor = await resolver.capture_descriptor(source)
        finally:
            await camera.release()

        gallery_fn = remote_gallery(remote) if connectivity.is_online else None
        match = await resolver.identify(descriptor, gallery_fn)
        if match is None:
            raise NoMatchError()

        session = await coordinator.login_with_face(match)
        print(f"✓ Welcome {session.email} ({session.state.value}, distance={match.distance:.3f})")
        return 0

    except FaceSyncError as e:
        logger.error(f"Face login failed: {e}")
        print(f"❌ {e.user_message}")
        return 1

    finally:
        await remote.aclose()


def main() -> None:
    """Main function."""
    args = parse_args()
    config = Config.from_env()
    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
