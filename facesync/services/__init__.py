"""High-level services for offline-first auth, sync and face login.

This package contains the services that orchestrate the local store, the
remote store, the camera and the descriptor extractor.
"""

from facesync.services.camera import CameraManager
from facesync.services.connectivity import ConnectivityMonitor
from facesync.services.credentials import CredentialCache, Reauthenticator, SecretBox
from facesync.services.enrollment import EnrollmentService
from facesync.services.identity import IdentityResolver, Match, remote_gallery
from facesync.services.liveness import LivenessAnalyzer, LivenessFailure, LivenessResult
from facesync.services.profile import ProfileService
from facesync.services.session import SessionCoordinator, SessionState, UserSession
from facesync.services.sync import SyncEngine, SyncStatus

__all__ = [
    "CameraManager",
    "ConnectivityMonitor",
    "CredentialCache",
    "Reauthenticator",
    "SecretBox",
    "EnrollmentService",
    "IdentityResolver",
    "Match",
    "remote_gallery",
    "LivenessAnalyzer",
    "LivenessFailure",
    "LivenessResult",
    "ProfileService",
    "SessionCoordinator",
    "SessionState",
    "UserSession",
    "SyncEngine",
    "SyncStatus",
]
