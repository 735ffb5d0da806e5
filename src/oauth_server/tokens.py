"""OAuth token service.

Handles:
- Authorization codes (single use, bound to client, redirect URI and PKCE)
- Stateless HMAC-signed access tokens
- Rotating opaque refresh tokens
"""

import base64
import binascii
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from shared.config import OAuthSettings
from shared.logging import get_logger
from shared.models import (
    AccessTokenResult,
    AuthorizationCode,
    OAuthPrincipal,
    RefreshTokenRecord,
    RefreshTokenResult,
    utcnow,
)
from oauth_server.store import TTLStore

logger = get_logger(__name__)

DEFAULT_SECRET = "change-me-sonos-smapi-bridge"
SIGNING_KEY_LENGTH = 32
AUTHORIZATION_CODE_BYTES = 32
REFRESH_TOKEN_BYTES = 48
PAYLOAD_SEPARATOR = "|"
TOKEN_SEPARATOR = "."


def base64url_encode(data: bytes) -> str:
    """Unpadded URL-safe base64."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(value: str) -> bytes:
    """Decode unpadded URL-safe base64; raises ValueError on bad input."""
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except binascii.Error as e:
        raise ValueError(str(e)) from e


def derive_signing_key(secret: str) -> bytes:
    """
    Fixed-length HMAC key from the configured secret.

    The secret is right-padded with "0" and truncated to 32 characters. No KDF
    is applied; changing this invalidates every outstanding access token.
    """
    secret = secret if secret and secret.strip() else DEFAULT_SECRET
    return secret.ljust(SIGNING_KEY_LENGTH, "0")[:SIGNING_KEY_LENGTH].encode("utf-8")


def compute_code_challenge(code_verifier: str, method: str) -> Optional[str]:
    """
    Challenge a client should have sent for ``code_verifier``.

    Returns None for methods other than ``plain`` and ``S256``.
    """
    method = (method or "plain").lower()
    if method == "s256":
        digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
        return base64url_encode(digest)
    if method == "plain":
        return code_verifier
    return None


def verify_pkce(stored: AuthorizationCode, code_verifier: Optional[str]) -> bool:
    """Check a verifier against the challenge stored with the code."""
    if not stored.code_challenge or not stored.code_challenge.strip():
        return True

    if not code_verifier or not code_verifier.strip():
        return False

    computed = compute_code_challenge(code_verifier, stored.code_challenge_method)
    if computed is None:
        logger.warning("Unsupported PKCE method", method=stored.code_challenge_method)
        return False

    return hmac.compare_digest(computed.encode("utf-8"), stored.code_challenge.encode("utf-8"))


class TokenService:
    """
    Issues and validates OAuth credentials for the Sonos integration.

    Authorization codes and refresh tokens live in in-memory TTL stores.
    Access tokens are never stored: they are validated by recomputing their
    signature.
    """

    def __init__(
        self,
        secret_key: str = "",
        settings: Optional[OAuthSettings] = None,
        clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.settings = settings or OAuthSettings()
        self._signing_key = derive_signing_key(secret_key)
        self._clock = clock

        self._codes: TTLStore[AuthorizationCode] = TTLStore(
            "authorization_codes", lambda c: c.expires_at
        )
        self._refresh_tokens: TTLStore[RefreshTokenRecord] = TTLStore(
            "refresh_tokens", lambda r: r.expires_at
        )

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_minutes)

    @property
    def authorization_code_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.authorization_code_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_days)

    # -- authorization codes ------------------------------------------------

    def create_authorization_code(
        self,
        user_id: str,
        username: str,
        client_id: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
        scope: Optional[str] = None
    ) -> str:
        """
        Create a short-lived authorization code bound to the client and redirect URI.

        ``scope`` is what the user consented to; it is issued on redemption.

        Returns:
            The opaque code string
        """
        code = secrets.token_urlsafe(AUTHORIZATION_CODE_BYTES)
        method = code_challenge_method.strip() if code_challenge_method else ""

        self._codes.put(code, AuthorizationCode(
            code=code,
            user_id=user_id,
            username=username,
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge or None,
            code_challenge_method=method or "plain",
            scope=(scope or "").strip() or None,
            expires_at=self._clock() + self.authorization_code_ttl,
        ))

        self._cleanup()
        logger.info("Authorization code issued", user=username, client_id=client_id)
        return code

    def try_redeem_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None
    ) -> Optional[AuthorizationCode]:
        """
        Redeem an authorization code.

        The code is removed before any check, so it is spent even when the
        redemption fails.

        Returns:
            The stored record on success, None otherwise
        """
        stored = self._codes.pop(code)
        if stored is None:
            logger.info("Authorization code not found")
            return None

        if self._clock() > stored.expires_at:
            logger.info("Authorization code expired", user=stored.username)
            return None

        if client_id != stored.client_id:
            logger.warning("Authorization code client mismatch", user=stored.username)
            return None

        if redirect_uri != stored.redirect_uri:
            logger.warning("Authorization code redirect URI mismatch", user=stored.username)
            return None

        if not verify_pkce(stored, code_verifier):
            logger.warning("PKCE verification failed", user=stored.username)
            return None

        return stored

    # -- access tokens ------------------------------------------------------

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self._signing_key, payload, hashlib.sha256).digest()

    def issue_access_token(self, user_id: str, username: str, scope: str) -> AccessTokenResult:
        """Issue a signed access token for the given principal."""
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self.access_token_ttl

        payload = PAYLOAD_SEPARATOR.join(
            [user_id, username, str(int(expires_at.timestamp())), scope]
        )
        token = TOKEN_SEPARATOR.join([
            base64url_encode(payload.encode("utf-8")),
            base64url_encode(self._sign(payload.encode("utf-8"))),
        ])

        return AccessTokenResult(
            token=token,
            expires_at=expires_at,
            expires_in=int((expires_at - issued_at).total_seconds()),
            scope=scope,
        )

    def validate_access_token(self, token: Optional[str]) -> Optional[OAuthPrincipal]:
        """
        Validate an access token's signature and expiry.

        Never raises.

        Returns:
            The principal on success, None otherwise
        """
        if not token or not token.strip():
            return None

        parts = token.strip().split(TOKEN_SEPARATOR)
        if len(parts) != 2:
            return None

        try:
            payload_bytes = base64url_decode(parts[0])
            provided_sig = base64url_decode(parts[1])
        except ValueError:
            return None

        if not hmac.compare_digest(provided_sig, self._sign(payload_bytes)):
            return None

        try:
            payload = payload_bytes.decode("utf-8")
        except UnicodeDecodeError:
            return None

        pieces = payload.split(PAYLOAD_SEPARATOR)
        if len(pieces) < 4:
            return None

        user_id, username, expires_raw, scope = pieces[0], pieces[1], pieces[2], pieces[3]
        if not user_id:
            return None

        try:
            expires_unix = int(expires_raw)
        except ValueError:
            return None

        now = self._clock()
        try:
            expires_at = datetime.fromtimestamp(expires_unix, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

        if now > expires_at:
            return None

        return OAuthPrincipal(
            user_id=user_id,
            username=username,
            scope=scope,
            expires_at=expires_at,
        )

    # -- refresh tokens -----------------------------------------------------

    def issue_refresh_token(self, user_id: str, username: str, scope: str) -> RefreshTokenResult:
        """Issue a refresh token, stored server-side for rotation."""
        token = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
        expires_at = self._clock() + self.refresh_token_ttl

        self._refresh_tokens.put(token, RefreshTokenRecord(
            token=token,
            user_id=user_id,
            username=username,
            scope=scope,
            expires_at=expires_at,
        ))

        self._cleanup()
        return RefreshTokenResult(token=token, expires_at=expires_at, scope=scope)

    def try_exchange_refresh_token(
        self,
        refresh_token: str
    ) -> Optional[tuple[AccessTokenResult, RefreshTokenResult]]:
        """
        Exchange a refresh token for a new access token and a rotated refresh token.

        The presented token is removed first and never becomes valid again.

        Returns:
            (access token, refresh token) on success, None otherwise
        """
        stored = self._refresh_tokens.pop(refresh_token)
        if stored is None:
            logger.info("Refresh token not found")
            return None

        if self._clock() > stored.expires_at:
            logger.info("Refresh token expired", user=stored.username)
            return None

        access = self.issue_access_token(stored.user_id, stored.username, stored.scope)
        rotated = self.issue_refresh_token(stored.user_id, stored.username, stored.scope)

        logger.info("Refresh token rotated", user=stored.username)
        return access, rotated

    # -- housekeeping -------------------------------------------------------

    def _cleanup(self) -> None:
        now = self._clock()
        self._codes.purge_expired(now)
        self._refresh_tokens.purge_expired(now)

    @property
    def pending_code_count(self) -> int:
        return len(self._codes)

    @property
    def live_refresh_token_count(self) -> int:
        return len(self._refresh_tokens)
