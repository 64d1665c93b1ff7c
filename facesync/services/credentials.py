"""Credential cache and the reauthentication protocol.

Every successful online login caches a salted one-way verifier so the same
password can be checked later without the network. When
STORE_REVERSIBLE_SECRET is enabled, the password is additionally kept
encrypted (AES-GCM) so an offline-established session can be revalidated
remotely without prompting. Keeping a recoverable secret on the client is an
accepted risk of that opt-in mode.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import os
import secrets
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from facesync.core.config import Config
from facesync.core.errors import (
    CredentialsNotFoundError,
    FaceSyncError,
    InvalidCredentialsError,
    ReauthRequiredError,
)
from facesync.core.interfaces import RemoteSession, RemoteStore
from facesync.core.logging_config import get_logger
from facesync.core.utils import now_ms
from facesync.storage.local_store import LocalStore
from facesync.storage.schemas import CachedCredential

if TYPE_CHECKING:
    from facesync.services.session import UserSession

logger = get_logger(__name__)

PBKDF2_ITERATIONS = 260_000
_SCHEME = "pbkdf2_sha256"

# Asks the user for their password; None means the prompt was dismissed
PasswordPrompt = Callable[[], Awaitable[Optional[str]]]


def hash_password(password: str, salt: Optional[bytes] = None, iterations: int = PBKDF2_ITERATIONS) -> str:
    """
    Derive a storable verifier from a password.

    Format: pbkdf2_sha256$<iterations>$<salt b64>$<hash b64>
    """
    salt = salt if salt is not None else os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations)
    return "$".join([
        _SCHEME,
        str(iterations),
        base64.b64encode(salt).decode(),
        base64.b64encode(digest).decode(),
    ])


def verify_password(password: str, verifier: str) -> bool:
    """
    Check a password against a verifier from hash_password().

    Malformed verifiers never match.
    """
    try:
        scheme, iterations, salt_b64, digest_b64 = verifier.split("$")
        if scheme != _SCHEME:
            return False
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(digest_b64)
        rounds = int(iterations)
    except (ValueError, binascii.Error):
        return False

    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, rounds)
    return secrets.compare_digest(digest, expected)


class SecretBox:
    """AES-GCM encryption of the reversible secret, bound to its user_id."""

    def __init__(self, key: bytes):
        if len(key) not in (16, 24, 32):
            raise ValueError(f"AES key must be 16, 24 or 32 bytes, got {len(key)}")
        self._aes = AESGCM(key)

    @classmethod
    def from_config(cls, config: Config) -> Optional[SecretBox]:
        """Box for the configured key, or None when the opt-in flag is off."""
        if not config.store_reversible_secret:
            return None
        try:
            key = base64.b64decode(config.secret_key, validate=True)
        except binascii.Error as e:
            raise ValueError("SECRET_KEY must be base64 encoded") from e
        return cls(key)

    def encrypt(self, plaintext: str, user_id: str) -> str:
        nonce = os.urandom(12)
        blob = nonce + self._aes.encrypt(nonce, plaintext.encode(), user_id.encode())
        return base64.b64encode(blob).decode()

    def decrypt(self, token: str, user_id: str) -> str:
        """
        Raises:
            InvalidCredentialsError: If the token is corrupt, was made with
                another key or belongs to another user.
        """
        try:
            blob = base64.b64decode(token)
            plaintext = self._aes.decrypt(blob[:12], blob[12:], user_id.encode())
        except (InvalidTag, ValueError, binascii.Error) as e:
            raise InvalidCredentialsError(log_message="reversible secret cannot be decrypted") from e
        return plaintext.decode()


class CredentialCache:
    """Caches credentials locally and validates them online or offline.

    Attributes:
        store: Local store holding cached credentials
        remote: Remote store used for online validation
        secret_box: Encrypts the reversible secret; None disables it
        iterations: PBKDF2 rounds for new verifiers
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        secret_box: Optional[SecretBox] = None,
        iterations: int = PBKDF2_ITERATIONS,
    ):
        self.store = store
        self.remote = remote
        self.secret_box = secret_box
        self.iterations = iterations

    async def cache_credential(
        self,
        user_id: str,
        email: str,
        verifier: str,
        reversible_secret: Optional[str] = None,
    ) -> CachedCredential:
        """Write the credential record for a user (replaces the previous one)."""
        credential = CachedCredential(
            user_id=user_id,
            email=email,
            password_verifier=verifier,
            reversible_secret=reversible_secret,
            last_login_at=now_ms(),
        )
        await self.store.cache_credential(credential)
        return credential

    async def remember(self, user_id: str, email: str, password: str) -> CachedCredential:
        """Cache a verifier (and, when enabled, the encrypted password)."""
        secret = self.secret_box.encrypt(password, user_id) if self.secret_box else None
        verifier = await asyncio.to_thread(hash_password, password, None, self.iterations)
        return await self.cache_credential(user_id, email, verifier, secret)

    async def verify_offline(self, email: str, password: str) -> CachedCredential:
        """Validate a password against the cached verifier only.

        Returns:
            The cached credential.

        Raises:
            CredentialsNotFoundError: If nothing is cached for this email.
            InvalidCredentialsError: If the password does not match.
        """
        credential = await self.store.get_credential_by_email(email)
        if credential is None:
            raise CredentialsNotFoundError(log_message=f"No cached credential for {email}")
        if not await asyncio.to_thread(verify_password, password, credential.password_verifier):
            logger.info(f"Offline login rejected for {email}")
            raise InvalidCredentialsError(log_message=f"Verifier mismatch for {email}")
        return credential

    async def login_online(self, email: str, password: str) -> RemoteSession:
        """Sign in remotely and refresh the cached credential.

        Raises:
            InvalidCredentialsError: If the remote store rejects the password.
            RemoteUnavailableError: If the remote store cannot be reached.
        """
        session = await self.remote.sign_in(email, password)
        await self.remember(session.user_id, session.email or email, password)
        logger.info(f"Online login succeeded for {session.user_id}")
        return session

    async def sign_up(self, email: str, password: str) -> RemoteSession:
        """Create a remote account and cache its credential."""
        session = await self.remote.sign_up(email, password)
        await self.remember(session.user_id, session.email or email, password)
        logger.info(f"Signed up user {session.user_id}")
        return session

    async def silent_reauth(self, user_id: str) -> Optional[RemoteSession]:
        """Revalidate remotely with the reversible secret, without prompting.

        Returns:
            Fresh remote session, or None when unavailable. Failures are
            logged at debug level and never raised.
        """
        if self.secret_box is None:
            logger.debug("Silent reauth unavailable: reversible secret disabled")
            return None

        credential = await self.store.get_credential(user_id)
        if credential is None or not credential.reversible_secret:
            logger.debug(f"Silent reauth unavailable: no secret cached for {user_id}")
            return None

        try:
            password = self.secret_box.decrypt(credential.reversible_secret, user_id)
            return await self.login_online(credential.email, password)
        except FaceSyncError as e:
            logger.debug(f"Silent reauth failed for {user_id}: {e}")
            return None


class Reauthenticator:
    """Obtains a remote-validated credential for an offline-established session.

    Step 1 tries silent reauth; step 2 prompts for the password and validates
    it remotely. Only a step-2 failure reaches the caller.
    """

    def __init__(self, credentials: CredentialCache):
        self.credentials = credentials

    async def reauthenticate(
        self,
        session: UserSession,
        prompt: Optional[PasswordPrompt] = None,
    ) -> RemoteSession:
        """
        Raises:
            ReauthRequiredError: If silent reauth failed and no password was given.
            InvalidCredentialsError: If the prompted password is rejected.
            RemoteUnavailableError: If the remote store cannot be reached.
        """
        remote_session = await self.credentials.silent_reauth(session.user_id)
        if remote_session is not None:
            logger.info(f"Silent reauth succeeded for {session.user_id}")
            return remote_session

        if prompt is None:
            raise ReauthRequiredError(log_message=f"Password needed to reauthenticate {session.user_id}")

        password = await prompt()
        if not password:
            raise ReauthRequiredError(log_message="Reauth prompt dismissed")

        return await self.credentials.login_online(session.email, password)
