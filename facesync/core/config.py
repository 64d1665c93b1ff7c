"""Configuration management for the offline-first auth and sync core.

This module loads configuration from environment variables (.env file) and
provides a centralized Config class for accessing application settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        db_path: Path of the local SQLite database
        remote_url: Base URL of the remote store (empty = offline only)
        remote_api_key: Public API key sent with every remote request
        remote_timeout: Timeout for a single remote request (seconds)
        camera_id: Camera device ID for video capture
        camera_settle_delay: Wait after releasing the camera (seconds)
        capture_timeout: Timeout for one frame capture + extraction (seconds)
        match_threshold: Maximum Euclidean distance for an identity match
        liveness_duration: Duration of the liveness sampling window (seconds)
        detector_model: dlib face detector ("hog" or "cnn")
        embedder_model: dlib landmark/encoding model ("large" or "small")
        num_jitters: Re-samples per descriptor extraction
        store_reversible_secret: Keep an encrypted password for silent reauth
        secret_key: Base64 AES key protecting the reversible secret
        connectivity_interval: Seconds between connectivity probes
    """

    log_level: str
    db_path: Path
    remote_url: str
    remote_api_key: str
    remote_timeout: float
    camera_id: int
    camera_settle_delay: float
    capture_timeout: float
    match_threshold: float
    liveness_duration: float
    detector_model: str
    embedder_model: str
    num_jitters: int
    store_reversible_secret: bool
    secret_key: str
    connectivity_interval: float

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment or defaults.

        Raises:
            ValueError: If environment variables are invalid.
        """
        # Get project root (parent of facesync/)
        project_root = Path(__file__).parent.parent.parent

        # Logging configuration
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got {log_level}")

        # Storage
        db_path = Path(os.getenv("DB_PATH", str(project_root / "data" / "facesync.db")))

        # Remote store
        remote_url = os.getenv("REMOTE_URL", "").rstrip("/")
        remote_api_key = os.getenv("REMOTE_API_KEY", "")
        remote_timeout = float(os.getenv("REMOTE_TIMEOUT", "15.0"))
        if remote_timeout <= 0:
            raise ValueError(f"REMOTE_TIMEOUT must be > 0, got {remote_timeout}")

        # Camera configuration
        camera_id = int(os.getenv("CAMERA_ID", "0"))
        if camera_id < 0:
            raise ValueError(f"CAMERA_ID must be >= 0, got {camera_id}")

        camera_settle_delay = float(os.getenv("CAMERA_SETTLE_DELAY", "0.1"))
        if camera_settle_delay < 0:
            raise ValueError(
                f"CAMERA_SETTLE_DELAY must be >= 0, got {camera_settle_delay}"
            )

        capture_timeout = float(os.getenv("CAPTURE_TIMEOUT", "3.0"))
        if capture_timeout <= 0:
            raise ValueError(f"CAPTURE_TIMEOUT must be > 0, got {capture_timeout}")

        # Biometrics
        match_threshold = float(os.getenv("MATCH_THRESHOLD", "0.7"))
        if not 0.0 < match_threshold <= 2.0:
            raise ValueError(
                f"MATCH_THRESHOLD must be in (0.0, 2.0], got {match_threshold}"
            )

        liveness_duration = float(os.getenv("LIVENESS_DURATION", "3.0"))
        if liveness_duration <= 0:
            raise ValueError(
                f"LIVENESS_DURATION must be > 0, got {liveness_duration}"
            )

        detector_model = os.getenv("DETECTOR_MODEL", "hog")
        if detector_model not in ("hog", "cnn"):
            raise ValueError(f"DETECTOR_MODEL must be 'hog' or 'cnn', got {detector_model}")

        embedder_model = os.getenv("EMBEDDER_MODEL", "large")
        if embedder_model not in ("large", "small"):
            raise ValueError(
                f"EMBEDDER_MODEL must be 'large' or 'small', got {embedder_model}"
            )

        num_jitters = int(os.getenv("NUM_JITTERS", "1"))
        if num_jitters < 1:
            raise ValueError(f"NUM_JITTERS must be >= 1, got {num_jitters}")

        # Credentials
        store_reversible_secret = bool(int(os.getenv("STORE_REVERSIBLE_SECRET", "0")))
        secret_key = os.getenv("SECRET_KEY", "")
        if store_reversible_secret and not secret_key:
            raise ValueError("SECRET_KEY is required when STORE_REVERSIBLE_SECRET=1")

        connectivity_interval = float(os.getenv("CONNECTIVITY_INTERVAL", "5.0"))
        if connectivity_interval <= 0:
            raise ValueError(
                f"CONNECTIVITY_INTERVAL must be > 0, got {connectivity_interval}"
            )

        return cls(
            log_level=log_level,
            db_path=db_path,
            remote_url=remote_url,
            remote_api_key=remote_api_key,
            remote_timeout=remote_timeout,
            camera_id=camera_id,
            camera_settle_delay=camera_settle_delay,
            capture_timeout=capture_timeout,
            match_threshold=match_threshold,
            liveness_duration=liveness_duration,
            detector_model=detector_model,
            embedder_model=embedder_model,
            num_jitters=num_jitters,
            store_reversible_secret=store_reversible_secret,
            secret_key=secret_key,
            connectivity_interval=connectivity_interval,
        )

    def __repr__(self) -> str:
        """Return string representation of config (secrets masked)."""
        return (
            f"Config(\n"
            f"  Log Level: {self.log_level},\n"
            f"  Database: {self.db_path},\n"
            f"  Remote: {self.remote_url or 'disabled'},\n"
            f"  Camera: {self.camera_id},\n"
            f"  Match Threshold: {self.match_threshold},\n"
            f"  Detector: {self.detector_model}, Embedder: {self.embedder_model},\n"
            f"  Reversible Secret: {'enabled' if self.store_reversible_secret else 'disabled'}\n"
            f")"
        )


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get global config instance (singleton pattern).

    Returns:
        Config instance loaded from environment.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
