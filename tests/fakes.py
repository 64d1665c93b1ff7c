"""In-memory stand-ins for the remote store, extractor and camera."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from facesync.core.errors import (
    AuthenticationError,
    CameraError,
    InvalidCredentialsError,
    RemoteUnavailableError,
)
from facesync.core.interfaces import DESCRIPTOR_DIM, BBox, FaceSample, RemoteSession

# 32-byte AES key for tests only
TEST_KEY = bytes(range(32))


def unit_descriptor(index: int, scale: float = 1.0) -> np.ndarray:
    """Descriptor with a single non-zero component."""
    vec = np.zeros(DESCRIPTOR_DIM, dtype=np.float32)
    vec[index] = scale
    return vec


def eye(cx: float, cy: float, width: float = 10.0, openness: float = 0.3) -> List[Tuple[float, float]]:
    """Six-point eye contour centred at (cx, cy) with the given aspect ratio."""
    half = width / 2.0
    lift = openness * width / 2.0
    return [
        (cx - half, cy),
        (cx - half / 3, cy - lift),
        (cx + half / 3, cy - lift),
        (cx + half, cy),
        (cx + half / 3, cy + lift),
        (cx - half / 3, cy + lift),
    ]


def make_sample(
    descriptor: Optional[np.ndarray] = None,
    box: Tuple[int, int, int, int] = (100, 100, 200, 200),
    eye_distance: float = 40.0,
    openness: float = 0.3,
) -> FaceSample:
    """FaceSample with a box (x1, y1, x2, y2) and both eyes."""
    x1, y1, x2, y2 = box
    cx, cy = (x1 + x2) / 2.0, (y1 + y2) / 2.0
    return FaceSample(
        descriptor=descriptor if descriptor is not None else unit_descriptor(0),
        bbox=BBox(x1, y1, x2, y2),
        landmarks={
            "left_eye": eye(cx - eye_distance / 2, cy, openness=openness),
            "right_eye": eye(cx + eye_distance / 2, cy, openness=openness),
        },
    )


class FakeFrameSource:
    """Frame source returning blank frames."""

    def __init__(self, start_error: Optional[CameraError] = None):
        self.start_error = start_error
        self.started = 0
        self.stopped = 0
        self._open = False

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started += 1
        self._open = True

    def stop(self) -> None:
        self.stopped += 1
        self._open = False

    def get_frame(self) -> np.ndarray:
        return np.zeros((8, 8, 3), dtype=np.uint8)

    @property
    def is_opened(self) -> bool:
        return self._open


class FakeExtractor:
    """Extractor replaying a scripted sequence of samples.

    ``None`` entries mean "no face". The last entry repeats once the script
    is exhausted. A ``delay`` makes every call slow (for timeout tests).
    """

    def __init__(self, samples: Iterable[Optional[FaceSample]] = (), delay: float = 0.0):
        self.samples = list(samples)
        self.delay = delay
        self.calls = 0

    async def detect(self, frame_bgr: np.ndarray) -> bool:
        return (await self.extract(frame_bgr)) is not None

    async def extract(self, frame_bgr: np.ndarray) -> Optional[FaceSample]:
        index = self.calls
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.samples:
            return None
        return self.samples[min(index, len(self.samples) - 1)]


class FakeRemoteStore:
    """Remote store keeping tables as dicts keyed by user_id."""

    def __init__(self) -> None:
        self.online = True
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.accounts: Dict[str, Tuple[str, str]] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.auth_rejected_tables: Set[str] = set()
        self.failing_user_ids: Set[str] = set()
        self.get_delay = 0.0
        self.sign_out_fails = False

    # -- helpers -------------------------------------------------------------

    def add_account(self, email: str, password: str, user_id: Optional[str] = None) -> str:
        user_id = user_id or f"user-{uuid.uuid4().hex[:8]}"
        self.accounts[email] = (user_id, password)
        return user_id

    def rows(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.setdefault(table, {})

    @property
    def writes(self) -> List[Tuple[str, Any]]:
        return [c for c in self.calls if c[0] in ("insert", "update", "upsert")]

    def _check(self, table: Optional[str] = None) -> None:
        if not self.online:
            raise RemoteUnavailableError(log_message="fake remote offline")
        if table is not None and table in self.auth_rejected_tables:
            raise AuthenticationError("Authentication required")

    # -- RemoteStore ---------------------------------------------------------

    async def get_by_user_id(self, table: str, user_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("get", (table, user_id)))
        if self.get_delay:
            await asyncio.sleep(self.get_delay)
        self._check(table)
        if user_id in self.failing_user_ids:
            raise RemoteUnavailableError(log_message=f"fake failure for {user_id}")
        row = self.rows(table).get(user_id)
        return dict(row) if row else None

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        self.calls.append(("insert", (table, row["user_id"])))
        self._check(table)
        self.rows(table)[row["user_id"]] = dict(row)

    async def update(self, table: str, user_id: str, patch: Dict[str, Any]) -> None:
        self.calls.append(("update", (table, user_id)))
        self._check(table)
        self.rows(table).setdefault(user_id, {"user_id": user_id}).update(patch)

    async def upsert(self, table: str, row: Dict[str, Any]) -> None:
        self.calls.append(("upsert", (table, row["user_id"])))
        self._check(table)
        self.rows(table).setdefault(row["user_id"], {}).update(row)

    async def select_all(self, table: str, columns: Sequence[str]) -> List[Dict[str, Any]]:
        self.calls.append(("select_all", table))
        self._check(table)
        return [{c: row.get(c) for c in columns} for row in self.rows(table).values()]

    async def sign_in(self, email: str, password: str) -> RemoteSession:
        self.calls.append(("sign_in", email))
        self._check()
        account = self.accounts.get(email)
        if account is None or account[1] != password:
            raise InvalidCredentialsError(log_message="fake: bad credentials")
        return RemoteSession(user_id=account[0], email=email, access_token="token")

    async def sign_up(self, email: str, password: str) -> RemoteSession:
        self.calls.append(("sign_up", email))
        self._check()
        if email in self.accounts:
            raise InvalidCredentialsError("User already registered.")
        user_id = self.add_account(email, password)
        return RemoteSession(user_id=user_id, email=email, access_token="token")

    async def sign_out(self) -> None:
        self.calls.append(("sign_out", None))
        if self.sign_out_fails:
            raise RemoteUnavailableError(log_message="fake sign-out failure")

    async def ping(self) -> bool:
        return self.online
