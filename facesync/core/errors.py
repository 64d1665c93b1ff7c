"""Error taxonomy shared by all facesync services.

Every error carries a short, categorized ``user_message`` that is safe to
show to the user. The exception text (``str(exc)``) may contain technical
details and is meant for the log only.

Categories:
    TransientError      remote store unreachable, capture timeout
    DataIntegrityError  no face, no match, liveness failure
    AuthenticationError bad credential, reauth required
    ResourceError       camera unavailable, biometric model unavailable
    StoreError          local store I/O failure (never "not found")
"""

from __future__ import annotations

from typing import Optional


class FaceSyncError(Exception):
    """Base class for all facesync errors."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, user_message: Optional[str] = None, *, log_message: Optional[str] = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(log_message or self.user_message)


# =============================================================================
# Transient I/O
# =============================================================================


class TransientError(FaceSyncError):
    default_message = "Network problem. Please try again."


class RemoteUnavailableError(TransientError):
    default_message = "Server is unreachable. Please try again later."


class CaptureTimeoutError(TransientError):
    default_message = "Camera did not respond in time. Please try again."


# =============================================================================
# Data integrity
# =============================================================================


class DataIntegrityError(FaceSyncError):
    default_message = "The captured data could not be used."


class NoFaceDetectedError(DataIntegrityError):
    default_message = "No face detected. Please position your face in the camera."


class NoMatchError(DataIntegrityError):
    default_message = "Face not recognized. Please try again with better lighting."


class LivenessError(DataIntegrityError):
    default_message = "Liveness verification failed. Please use a live camera."


# =============================================================================
# Authentication
# =============================================================================


class AuthenticationError(FaceSyncError):
    default_message = "Authentication required."


class InvalidCredentialsError(AuthenticationError):
    default_message = "Invalid credentials."


class CredentialsNotFoundError(AuthenticationError):
    default_message = "No credentials found. Please login online first."


class ReauthRequiredError(AuthenticationError):
    default_message = "Please enter your password to sync your changes."


# =============================================================================
# Resource acquisition
# =============================================================================


class ResourceError(FaceSyncError):
    default_message = "A required device is unavailable."


class CameraError(ResourceError):
    default_message = "Failed to access camera."


class CameraNotFoundError(CameraError):
    default_message = "No camera found on your device."


class CameraPermissionError(CameraError):
    default_message = "Camera access denied. Please check camera permissions."


class CameraBusyError(CameraError):
    default_message = "Camera is already in use by another application."


class BiometricUnavailableError(ResourceError):
    default_message = "Biometric subsystem unavailable."


# =============================================================================
# Local storage
# =============================================================================


class StoreError(FaceSyncError):
    default_message = "Local storage error."
