"""Session state machine tying connectivity, reauthentication and sync together.

States:
    LOGGED_OUT  no user
    ONLINE      session validated by the remote store
    OFFLINE     session validated only against the local credential cache

``reauth_pending`` is raised whenever pushes need a fresh remote credential
first: an offline session coming back online with pending edits whose silent
reauth failed, or a sync rejected for authentication. Sync never runs while
it is set.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from facesync.core.errors import (
    AuthenticationError,
    CredentialsNotFoundError,
    FaceSyncError,
    ReauthRequiredError,
    TransientError,
)
from facesync.core.interfaces import RemoteSession
from facesync.core.logging_config import get_logger
from facesync.services.connectivity import ConnectivityMonitor
from facesync.services.credentials import CredentialCache, PasswordPrompt, Reauthenticator
from facesync.services.identity import Match
from facesync.services.sync import SyncEngine, SyncStatus

logger = get_logger(__name__)


def _fixed_prompt(password: str) -> PasswordPrompt:
    async def prompt() -> Optional[str]:
        return password

    return prompt


class SessionState(str, Enum):
    LOGGED_OUT = "logged_out"
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class UserSession:
    """Authenticated user.

    Attributes:
        user_id: Remote user identifier
        email: Account email
        state: ONLINE or OFFLINE
        via_face: True if established by face login
        remote: Remote session when ONLINE
    """

    user_id: str
    email: str
    state: SessionState
    via_face: bool = False
    remote: Optional[RemoteSession] = None

    @property
    def is_offline(self) -> bool:
        return self.state is SessionState.OFFLINE


class SessionCoordinator:
    """Decides, on each connectivity change, whether to reauthenticate and then sync.

    Example:
        >>> coordinator = SessionCoordinator(credentials, sync, connectivity, prompt=ask_password)
        >>> coordinator.start()
        >>> await coordinator.login("ana@example.com", "secret")
        >>> connectivity.set_online(True)   # reauth (if needed), then sync
    """

    def __init__(
        self,
        credentials: CredentialCache,
        sync: SyncEngine,
        connectivity: ConnectivityMonitor,
        reauthenticator: Optional[Reauthenticator] = None,
        prompt: Optional[PasswordPrompt] = None,
    ):
        """Initialize coordinator.

        Args:
            credentials: Credential cache (online/offline login)
            sync: Sync engine to trigger
            connectivity: Connectivity monitor to follow
            reauthenticator: Reauth protocol (defaults to one over ``credentials``)
            prompt: Asks the user for a password when silent reauth fails.
                    Without it, a failed silent reauth only raises reauth_pending.
        """
        self.credentials = credentials
        self.sync = sync
        self.connectivity = connectivity
        self.reauthenticator = reauthenticator or Reauthenticator(credentials)
        self.prompt = prompt

        self._session: Optional[UserSession] = None
        self._reauth_pending = False
        self._reauth_in_progress = False
        self._generation = 0
        self._started = False

    # =========================================================================
    # State
    # =========================================================================

    @property
    def session(self) -> Optional[UserSession]:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.LOGGED_OUT

    @property
    def reauth_pending(self) -> bool:
        return self._reauth_pending

    def start(self) -> None:
        """Subscribe to connectivity and sync status."""
        if self._started:
            return
        self._started = True
        self.sync.subscribe(self.handle_sync_status)
        self.connectivity.subscribe(self._on_connectivity)

    def close(self) -> None:
        """Unsubscribe from connectivity and sync status."""
        if not self._started:
            return
        self._started = False
        self.connectivity.unsubscribe(self._on_connectivity)
        self.sync.unsubscribe(self.handle_sync_status)

    def _on_connectivity(self, online: bool):
        if self._session is None:
            return None
        return self.handle_connectivity_change(online)

    # =========================================================================
    # Login / logout
    # =========================================================================

    async def login(self, email: str, password: str) -> UserSession:
        """Password login: remote first when online, local cache otherwise.

        The online path falls back to offline verification only when the
        remote store is unreachable; a rejected password is final.

        Raises:
            InvalidCredentialsError: Wrong password (remote or cached).
            CredentialsNotFoundError: Offline and nothing cached for the email.
        """
        if self.connectivity.is_online:
            try:
                remote = await self.credentials.login_online(email, password)
            except TransientError as e:
                logger.warning(f"Online login unavailable, falling back to offline: {e}")
            else:
                return await self._establish(
                    UserSession(remote.user_id, remote.email or email, SessionState.ONLINE, remote=remote)
                )

        credential = await self.credentials.verify_offline(email, password)
        return await self._establish(
            UserSession(credential.user_id, credential.email, SessionState.OFFLINE)
        )

    async def login_with_face(self, match: Match) -> UserSession:
        """Log in the user resolved by face identification.

        The session is ONLINE only if a silent remote sign-in with the cached
        secret succeeds; otherwise it is OFFLINE.

        Raises:
            CredentialsNotFoundError: If the user never logged in on this device.
        """
        credential = await self.credentials.store.get_credential(match.user_id)
        if credential is None:
            raise CredentialsNotFoundError(
                "No credentials found for this face. Please login with your password first.",
                log_message=f"Face matched {match.user_id} but no credential is cached",
            )

        remote = None
        if self.connectivity.is_online:
            remote = await self.credentials.silent_reauth(match.user_id)

        state = SessionState.ONLINE if remote is not None else SessionState.OFFLINE
        logger.info(f"Face login for {match.user_id} ({state.value}, distance={match.distance:.4f})")
        return await self._establish(
            UserSession(credential.user_id, credential.email, state, via_face=True, remote=remote)
        )

    async def _establish(self, session: UserSession) -> UserSession:
        self._generation += 1
        self._session = session
        self._reauth_pending = False
        self._reauth_in_progress = False
        logger.info(f"Session established for {session.user_id} ({session.state.value})")

        if self.connectivity.is_online:
            if session.state is SessionState.ONLINE:
                await self._trigger_sync()
            elif await self.sync.pending_count() > 0:
                # Online but only locally validated: pushes wait for a password
                self._reauth_pending = True
        return session

    async def logout(self) -> None:
        """Best-effort remote sign-out; local state is always cleared.

        A reauthentication still waiting on its prompt is invalidated: its
        result is signed out again instead of reviving the session.
        """
        session = self._session
        self._generation += 1
        self._session = None
        self._reauth_pending = False
        self._reauth_in_progress = False
        if session is None:
            return
        await self._sign_out_remote()
        logger.info(f"Logged out {session.user_id}")

    async def _sign_out_remote(self) -> None:
        try:
            await self.credentials.remote.sign_out()
        except FaceSyncError as e:
            logger.warning(f"Remote sign-out failed, local session cleared anyway: {e}")

    # =========================================================================
    # Connectivity / reauth / sync
    # =========================================================================

    async def handle_connectivity_change(self, online: bool) -> None:
        """React to a connectivity transition.

        Offline to online: an OFFLINE session with pending edits reauthenticates
        first; otherwise sync starts directly. Transitions arriving while one is
        still being handled are ignored.
        """
        if not online or self._session is None:
            return
        if self._reauth_in_progress:
            logger.debug("Reauthentication already in progress, ignoring transition")
            return

        # Claimed before the first await so a flapping link prompts once
        self._reauth_in_progress = True
        generation = self._generation
        try:
            needs_reauth = self._reauth_pending
            if self._session.is_offline and await self.sync.pending_count() > 0:
                needs_reauth = True
            if needs_reauth:
                await self._reauthenticate(self.prompt)
        except (AuthenticationError, TransientError) as e:
            if generation == self._generation:
                self._reauth_pending = True
            logger.warning(f"Reauthentication needed before sync: {e.user_message}")
            return
        finally:
            if generation == self._generation:
                self._reauth_in_progress = False

        if generation == self._generation:
            await self._trigger_sync()

    async def reauthenticate(self, password: Optional[str] = None) -> UserSession:
        """Reauthenticate the current session, then sync.

        Args:
            password: Password typed into the reauth prompt. Without it the
                configured prompt (if any) is used after silent reauth.

        Raises:
            ReauthRequiredError: No session, no password available, or the
                session ended while waiting for the password.
            InvalidCredentialsError: The password was rejected remotely.
        """
        if self._session is None:
            raise ReauthRequiredError("Please login first.")

        prompt = self.prompt if password is None else _fixed_prompt(password)
        generation = self._generation
        self._reauth_in_progress = True

        try:
            session = await self._reauthenticate(prompt)
        except (AuthenticationError, TransientError):
            if generation == self._generation:
                self._reauth_pending = True
            raise
        finally:
            if generation == self._generation:
                self._reauth_in_progress = False
        await self._trigger_sync()
        return session

    async def _reauthenticate(self, prompt: Optional[PasswordPrompt]) -> UserSession:
        session, generation = self._session, self._generation
        if session is None:
            raise ReauthRequiredError("Please login first.")

        remote = await self.reauthenticator.reauthenticate(session, prompt)

        if generation != self._generation:
            # Logged out or switched user while the prompt was open
            await self._sign_out_remote()
            if self._session is not None and self._session.state is SessionState.ONLINE:
                # The sign-out dropped the remote token of the active session too
                self._reauth_pending = True
            raise ReauthRequiredError(
                log_message=f"Session of {session.user_id} ended during reauthentication"
            )

        self._session = replace(session, state=SessionState.ONLINE, remote=remote)
        self._reauth_pending = False
        logger.info(f"Reauthenticated {session.user_id}, session is online")
        return self._session

    def handle_sync_status(self, status: SyncStatus) -> None:
        """Raise reauth_pending when a push was rejected for authentication."""
        if status.auth_required and self._session is not None:
            if not self._reauth_pending:
                logger.warning("Sync rejected for authentication, reauthentication required")
            self._reauth_pending = True

    async def _trigger_sync(self) -> bool:
        if self._session is None:
            return False
        if self._reauth_pending:
            logger.info("Sync deferred until reauthentication")
            return False
        await self.sync.run()
        return True

    async def request_sync(self) -> bool:
        """Sync now if online with a remotely validated session.

        Returns:
            True if a sync run was started.
        """
        if not self.connectivity.is_online or self.state is not SessionState.ONLINE:
            return False
        return await self._trigger_sync()
