"""REST client for the remote store (tables + auth).

Talks to a Supabase-compatible backend: GoTrue-style auth endpoints under
``/auth/v1`` and PostgREST tables under ``/rest/v1``. Failures are mapped
onto the facesync error taxonomy:

    timeout / network error / 5xx        -> RemoteUnavailableError
    400/401/403 on auth endpoints        -> InvalidCredentialsError
    401/403 on table endpoints           -> AuthenticationError
    other 4xx on table endpoints         -> DataIntegrityError
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from facesync.core.config import Config
from facesync.core.errors import (
    AuthenticationError,
    DataIntegrityError,
    InvalidCredentialsError,
    RemoteUnavailableError,
)
from facesync.core.interfaces import RemoteSession
from facesync.core.logging_config import get_logger

logger = get_logger(__name__)


class RestRemoteStore:
    """Async REST implementation of the RemoteStore protocol.

    Example:
        >>> remote = RestRemoteStore("https://xyz.supabase.co", api_key="anon-key")
        >>> session = await remote.sign_in("ana@example.com", "secret")
        >>> row = await remote.get_by_user_id("user_details", session.user_id)
        >>> await remote.aclose()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Project URL (no trailing slash needed)
            api_key: Public API key sent as ``apikey`` header
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session: Optional[RemoteSession] = None
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"apikey": api_key} if api_key else {},
        )

    @classmethod
    def from_config(cls, config: Config) -> RestRemoteStore:
        return cls(config.remote_url, api_key=config.remote_api_key, timeout=config.remote_timeout)

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _auth_headers(self) -> Dict[str, str]:
        token = self.session.access_token if self.session and self.session.access_token else self.api_key
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _send(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"remote.{action}: request timeout")
            raise RemoteUnavailableError(log_message=f"{action}: timeout") from e
        except httpx.TransportError as e:
            logger.warning(f"remote.{action}: network error - {e}")
            raise RemoteUnavailableError(log_message=f"{action}: {e}") from e

    async def _data_request(self, method: str, table: str, action: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        response = await self._send(method, f"/rest/v1/{table}", action, headers=headers, **kwargs)

        status = response.status_code
        if status in (401, 403):
            logger.warning(f"remote.{action}: HTTP {status} on {table}")
            raise AuthenticationError(
                "Authentication required", log_message=f"{action}: HTTP {status} on {table}"
            )
        if status >= 500:
            logger.error(f"remote.{action}: HTTP {status} - {response.text}")
            raise RemoteUnavailableError(log_message=f"{action}: HTTP {status}")
        if status >= 400:
            logger.error(f"remote.{action}: HTTP {status} - {response.text}")
            raise DataIntegrityError(
                "The server rejected the data.", log_message=f"{action}: HTTP {status} - {response.text}"
            )
        return response

    async def _auth_request(self, path: str, action: str, **kwargs: Any) -> httpx.Response:
        response = await self._send("POST", f"/auth/v1/{path}", action, **kwargs)

        status = response.status_code
        if status in (400, 401, 403, 422):
            logger.info(f"remote.{action}: rejected with HTTP {status}")
            raise InvalidCredentialsError(log_message=f"{action}: HTTP {status} - {response.text}")
        if status >= 400:
            logger.error(f"remote.{action}: HTTP {status} - {response.text}")
            raise RemoteUnavailableError(log_message=f"{action}: HTTP {status}")
        return response

    @staticmethod
    def _session_from(data: Dict[str, Any], email: str) -> RemoteSession:
        user = data.get("user") or data
        user_id = user.get("id")
        if not user_id:
            raise RemoteUnavailableError(log_message=f"auth response missing user id: {sorted(data)}")

        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in") is not None:
            expires_at = time.time() + float(data["expires_in"])

        return RemoteSession(
            user_id=str(user_id),
            email=user.get("email") or email,
            access_token=data.get("access_token") or "",
            refresh_token=data.get("refresh_token"),
            expires_at=float(expires_at) if expires_at is not None else None,
        )

    # =========================================================================
    # Auth
    # =========================================================================

    async def sign_in(self, email: str, password: str) -> RemoteSession:
        """Password sign-in. Stores the session for subsequent table requests."""
        response = await self._auth_request(
            "token",
            "sign_in",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        self.session = self._session_from(response.json(), email)
        logger.info(f"remote.sign_in: signed in user {self.session.user_id}")
        return self.session

    async def sign_up(self, email: str, password: str) -> RemoteSession:
        """Create an account. The session may lack tokens if email confirmation is on."""
        response = await self._auth_request(
            "signup", "sign_up", json={"email": email, "password": password}
        )
        session = self._session_from(response.json(), email)
        if session.access_token:
            self.session = session
        logger.info(f"remote.sign_up: created user {session.user_id}")
        return session

    async def sign_out(self) -> None:
        """Revoke the current session remotely and forget it locally."""
        if self.session is None:
            return
        headers = self._auth_headers()
        self.session = None
        response = await self._send("POST", "/auth/v1/logout", "sign_out", headers=headers)
        if response.status_code >= 400:
            logger.warning(f"remote.sign_out: HTTP {response.status_code}")

    async def ping(self) -> bool:
        """True if the backend answers at all."""
        try:
            response = await self._client.get("/auth/v1/health")
        except httpx.HTTPError as e:
            logger.debug(f"remote.ping: {e}")
            return False
        return response.status_code < 500

    # =========================================================================
    # Tables
    # =========================================================================

    async def get_by_user_id(self, table: str, user_id: str) -> Optional[Dict[str, Any]]:
        response = await self._data_request(
            "GET",
            table,
            "get_by_user_id",
            params={"user_id": f"eq.{user_id}", "select": "*", "limit": "1"},
        )
        rows = response.json()
        return rows[0] if rows else None

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        await self._data_request(
            "POST", table, "insert", json=row, headers={"Prefer": "return=minimal"}
        )

    async def update(self, table: str, user_id: str, patch: Dict[str, Any]) -> None:
        await self._data_request(
            "PATCH",
            table,
            "update",
            params={"user_id": f"eq.{user_id}"},
            json=patch,
            headers={"Prefer": "return=minimal"},
        )

    async def upsert(self, table: str, row: Dict[str, Any]) -> None:
        await self._data_request(
            "POST",
            table,
            "upsert",
            params={"on_conflict": "user_id"},
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def select_all(self, table: str, columns: Sequence[str]) -> List[Dict[str, Any]]:
        response = await self._data_request(
            "GET", table, "select_all", params={"select": ",".join(columns)}
        )
        return list(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        state = "signed in" if self.session else "anonymous"
        return f"RestRemoteStore(base_url='{self.base_url}', {state})"
