"""Tests for the OAuth token service and user directory."""

import base64
import hashlib
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from shared.models import AuthorizationCode


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


START = datetime(2026, 1, 1, 12, 0, 0, 500000, tzinfo=timezone.utc)
CLIENT_ID = "247"
REDIRECT_URI = "https://sonos.example/cb"
RACERS = 16


def race(func, *args) -> list:
    """Call ``func(*args)`` from ``RACERS`` threads released at the same moment."""
    barrier = threading.Barrier(RACERS)

    def attempt():
        barrier.wait()
        return func(*args)

    with ThreadPoolExecutor(max_workers=RACERS) as pool:
        futures = [pool.submit(attempt) for _ in range(RACERS)]
        return [f.result() for f in futures]


def _flip_first_byte(segment: str) -> str:
    from oauth_server.tokens import base64url_decode, base64url_encode

    raw = bytearray(base64url_decode(segment))
    raw[0] ^= 0x01
    return base64url_encode(bytes(raw))


class TestBase64Url:
    """Tests for the unpadded base64url helpers."""

    def test_encode_is_unpadded_and_url_safe(self):
        """Test that encoding strips padding and uses - and _."""
        from oauth_server.tokens import base64url_encode

        encoded = base64url_encode(b"\xfb\xff\xfe")

        assert "=" not in encoded
        assert "+" not in encoded and "/" not in encoded
        assert encoded == "-__-"

    def test_decode_restores_padding(self):
        """Test decoding strings whose length is not a multiple of four."""
        from oauth_server.tokens import base64url_decode

        assert base64url_decode("YQ") == b"a"
        assert base64url_decode("YWI") == b"ab"

    def test_decode_rejects_garbage(self):
        """Test that invalid characters raise ValueError."""
        from oauth_server.tokens import base64url_decode

        with pytest.raises(ValueError):
            base64url_decode("!!!")

    def test_signing_key_is_padded_and_truncated(self):
        """Test the fixed-length key derivation."""
        from oauth_server.tokens import DEFAULT_SECRET, derive_signing_key

        assert derive_signing_key("abc") == b"abc" + b"0" * 29
        assert derive_signing_key("x" * 40) == b"x" * 32
        assert derive_signing_key("") == derive_signing_key(DEFAULT_SECRET)


class TestAuthorizationCodes:
    """Tests for authorization code issue and redemption."""

    def setup_method(self):
        """Set up test fixtures."""
        from oauth_server.tokens import TokenService

        self.clock = FakeClock(START)
        self.service = TokenService(secret_key="test-secret", clock=self.clock)

    def _code(self, **kwargs) -> str:
        return self.service.create_authorization_code(
            user_id="u-1",
            username="alice",
            client_id=CLIENT_ID,
            redirect_uri=REDIRECT_URI,
            **kwargs
        )

    def test_code_redeems_once(self):
        """Test that a code can only be redeemed a single time."""
        code = self._code()

        first = self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI)
        second = self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI)

        assert first is not None
        assert first.username == "alice"
        assert second is None

    def test_concurrent_redemption_succeeds_once(self):
        """Test that racing redemptions of one code yield a single winner."""
        code = self._code()

        results = race(self.service.try_redeem_code, code, CLIENT_ID, REDIRECT_URI)

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].username == "alice"
        assert self.service.pending_code_count == 0

    def test_consented_scope_stored_with_code(self):
        """Test that the sign-in scope travels with the code."""
        scoped = self.service.try_redeem_code(self._code(scope=" playback "), CLIENT_ID, REDIRECT_URI)
        unscoped = self.service.try_redeem_code(self._code(scope=""), CLIENT_ID, REDIRECT_URI)

        assert scoped.scope == "playback"
        assert unscoped.scope is None

    def test_code_is_url_safe_and_long(self):
        """Test the shape of issued codes."""
        code = self._code()

        assert len(code) >= 43
        assert all(c.isalnum() or c in "-_" for c in code)

    def test_expired_code_rejected(self):
        """Test that codes expire after ten minutes."""
        code = self._code()
        self.clock.advance(minutes=10, seconds=1)

        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI) is None

    def test_code_valid_just_before_expiry(self):
        """Test redemption inside the lifetime."""
        code = self._code()
        self.clock.advance(minutes=9, seconds=59)

        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI) is not None

    def test_client_mismatch_spends_code(self):
        """Test that a failed redemption still consumes the code."""
        code = self._code()

        assert self.service.try_redeem_code(code, "999", REDIRECT_URI) is None
        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI) is None

    def test_redirect_uri_must_match_exactly(self):
        """Test redirect URI binding."""
        code = self._code()

        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI + "/") is None

    def test_unknown_code_rejected(self):
        """Test redeeming a code that was never issued."""
        assert self.service.try_redeem_code("nope", CLIENT_ID, REDIRECT_URI) is None

    def test_pkce_s256(self):
        """Test S256 PKCE verification."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        challenge = base64.urlsafe_b64encode(
            hashlib.sha256(verifier.encode()).digest()
        ).rstrip(b"=").decode()

        code = self._code(code_challenge=challenge, code_challenge_method="S256")

        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI, verifier) is not None

    def test_pkce_method_is_case_insensitive(self):
        """Test that s256 is accepted in lower case."""
        from oauth_server.tokens import compute_code_challenge

        challenge = compute_code_challenge("verifier-123", "S256")
        code = self._code(code_challenge=challenge, code_challenge_method="s256")

        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI, "verifier-123") is not None

    def test_pkce_plain_is_default(self):
        """Test that a blank method means plain."""
        code = self._code(code_challenge="plain-verifier")

        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI, "plain-verifier") is not None

    def test_pkce_mismatch_rejected(self):
        """Test a wrong verifier."""
        code = self._code(code_challenge="expected", code_challenge_method="plain")

        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI, "other") is None

    def test_pkce_missing_verifier_rejected(self):
        """Test that a stored challenge requires a verifier."""
        code = self._code(code_challenge="expected")

        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI) is None
        assert self.service.try_redeem_code(code, CLIENT_ID, REDIRECT_URI, "expected") is None

    def test_pkce_unknown_method_rejected(self):
        """Test that unsupported methods fail verification."""
        from oauth_server.tokens import verify_pkce

        stored = AuthorizationCode(
            code="c",
            user_id="u",
            username="alice",
            client_id=CLIENT_ID,
            redirect_uri=REDIRECT_URI,
            code_challenge="x",
            code_challenge_method="S512",
            expires_at=START,
        )

        assert verify_pkce(stored, "x") is False

    def test_expired_codes_purged_on_issue(self):
        """Test lazy cleanup when new codes are issued."""
        self._code()
        self._code()
        assert self.service.pending_code_count == 2

        self.clock.advance(minutes=11)
        self._code()

        assert self.service.pending_code_count == 1


class TestAccessTokens:
    """Tests for signed access tokens."""

    def setup_method(self):
        """Set up test fixtures."""
        from oauth_server.tokens import TokenService

        self.clock = FakeClock(START)
        self.service = TokenService(secret_key="test-secret", clock=self.clock)

    def test_issue_and_validate(self):
        """Test that a fresh token validates to its principal."""
        result = self.service.issue_access_token("u-1", "alice", "smapi")
        principal = self.service.validate_access_token(result.token)

        assert principal is not None
        assert principal.user_id == "u-1"
        assert principal.username == "alice"
        assert principal.scope == "smapi"

    def test_expires_in_is_one_hour(self):
        """Test the default lifetime."""
        result = self.service.issue_access_token("u-1", "alice", "smapi")

        assert result.expires_in == 3600
        assert result.expires_at == START.replace(microsecond=0) + timedelta(hours=1)

    def test_token_format(self):
        """Test the two-segment payload.signature layout."""
        from oauth_server.tokens import base64url_decode

        token = self.service.issue_access_token("u-1", "alice", "smapi").token
        payload, signature = token.split(".")

        fields = base64url_decode(payload).decode().split("|")
        assert fields[0] == "u-1"
        assert fields[1] == "alice"
        assert int(fields[2]) == int((START.replace(microsecond=0) + timedelta(hours=1)).timestamp())
        assert fields[3] == "smapi"
        assert len(base64url_decode(signature)) == 32
        assert "=" not in token

    def test_expired_token_rejected(self):
        """Test that tokens stop validating after expiry."""
        token = self.service.issue_access_token("u-1", "alice", "smapi").token

        self.clock.advance(minutes=59)
        assert self.service.validate_access_token(token) is not None

        self.clock.advance(minutes=2)
        assert self.service.validate_access_token(token) is None

    def test_valid_until_exact_expiry(self):
        """Test that a token validates at its expiry instant and not a second later."""
        result = self.service.issue_access_token("u-1", "alice", "smapi")

        self.clock.now = result.expires_at
        assert self.service.validate_access_token(result.token) is not None

        self.clock.advance(seconds=1)
        assert self.service.validate_access_token(result.token) is None

    def test_tampered_payload_rejected(self):
        """Test that flipping a payload bit breaks the signature."""
        token = self.service.issue_access_token("u-1", "alice", "smapi").token
        payload, signature = token.split(".")

        assert self.service.validate_access_token(f"{_flip_first_byte(payload)}.{signature}") is None

    def test_tampered_signature_rejected(self):
        """Test that flipping a signature bit is detected."""
        token = self.service.issue_access_token("u-1", "alice", "smapi").token
        payload, signature = token.split(".")

        assert self.service.validate_access_token(f"{payload}.{_flip_first_byte(signature)}") is None

    def test_other_secret_rejected(self):
        """Test that a token signed with another key is rejected."""
        from oauth_server.tokens import TokenService

        other = TokenService(secret_key="another-secret", clock=self.clock)
        token = other.issue_access_token("u-1", "alice", "smapi").token

        assert self.service.validate_access_token(token) is None

    @pytest.mark.parametrize("token", [
        None,
        "",
        "   ",
        "no-dot",
        "a.b.c",
        "!!!.???",
    ])
    def test_malformed_tokens_rejected(self, token):
        """Test that malformed input never raises."""
        assert self.service.validate_access_token(token) is None

    def test_signed_payload_with_missing_fields_rejected(self):
        """Test that a correctly signed but short payload is rejected."""
        from oauth_server.tokens import base64url_encode

        payload = b"u-1|alice|9999999999"
        token = f"{base64url_encode(payload)}.{base64url_encode(self.service._sign(payload))}"

        assert self.service.validate_access_token(token) is None

    def test_signed_payload_with_bad_expiry_rejected(self):
        """Test that a non-numeric expiry is rejected."""
        from oauth_server.tokens import base64url_encode

        payload = b"u-1|alice|soon|smapi"
        token = f"{base64url_encode(payload)}.{base64url_encode(self.service._sign(payload))}"

        assert self.service.validate_access_token(token) is None


class TestRefreshTokens:
    """Tests for refresh token rotation."""

    def setup_method(self):
        """Set up test fixtures."""
        from oauth_server.tokens import TokenService

        self.clock = FakeClock(START)
        self.service = TokenService(secret_key="test-secret", clock=self.clock)

    def test_exchange_rotates(self):
        """Test that an exchange returns a new pair and spends the old token."""
        refresh = self.service.issue_refresh_token("u-1", "alice", "smapi")

        exchanged = self.service.try_exchange_refresh_token(refresh.token)
        assert exchanged is not None

        access, rotated = exchanged
        assert rotated.token != refresh.token
        assert self.service.validate_access_token(access.token).username == "alice"
        assert self.service.try_exchange_refresh_token(refresh.token) is None
        assert self.service.try_exchange_refresh_token(rotated.token) is not None

    def test_concurrent_exchange_succeeds_once(self):
        """Test that racing exchanges of one refresh token yield a single new pair."""
        refresh = self.service.issue_refresh_token("u-1", "alice", "smapi")

        results = race(self.service.try_exchange_refresh_token, refresh.token)

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        access, rotated = winners[0]
        assert self.service.validate_access_token(access.token).username == "alice"
        assert self.service.try_exchange_refresh_token(rotated.token) is not None

    def test_scope_carried_forward(self):
        """Test that the scope survives rotation."""
        refresh = self.service.issue_refresh_token("u-1", "alice", "playback")

        access, rotated = self.service.try_exchange_refresh_token(refresh.token)

        assert access.scope == "playback"
        assert rotated.scope == "playback"

    def test_expired_refresh_token_rejected(self):
        """Test the thirty-day lifetime."""
        refresh = self.service.issue_refresh_token("u-1", "alice", "smapi")
        self.clock.advance(days=30, seconds=1)

        assert self.service.try_exchange_refresh_token(refresh.token) is None

    def test_unknown_refresh_token_rejected(self):
        """Test exchanging a token that was never issued."""
        assert self.service.try_exchange_refresh_token("unknown") is None

    def test_expired_refresh_tokens_purged(self):
        """Test lazy cleanup of refresh tokens."""
        self.service.issue_refresh_token("u-1", "alice", "smapi")
        self.clock.advance(days=31)
        self.service.issue_refresh_token("u-2", "bob", "smapi")

        assert self.service.live_refresh_token_count == 1


class TestTTLStore:
    """Tests for the expiring key/value store."""

    def test_pop_removes(self):
        """Test that pop returns the value once."""
        from oauth_server.store import TTLStore

        store = TTLStore("test", lambda v: v)
        store.put("a", START)

        assert "a" in store
        assert store.pop("a") == START
        assert store.pop("a") is None
        assert len(store) == 0

    def test_purge_expired(self):
        """Test that only expired entries are purged."""
        from oauth_server.store import TTLStore

        store = TTLStore("test", lambda v: v)
        store.put("old", START - timedelta(minutes=1))
        store.put("new", START + timedelta(minutes=1))

        assert store.purge_expired(START) == 1
        assert "new" in store
        assert "old" not in store


class TestUserDirectory:
    """Tests for the in-memory user directory."""

    def setup_method(self):
        """Set up test fixtures."""
        from oauth_server.users import InMemoryUserDirectory

        self.directory = InMemoryUserDirectory([
            {"username": "alice", "password": "wonderland"},
            {"username": "guest"},
        ])

    def test_lookup_is_case_insensitive(self):
        """Test username lookup ignores case."""
        assert self.directory.get_user_by_name("ALICE").username == "alice"
        assert self.directory.get_user_by_name("nobody") is None
        assert self.directory.get_user_by_name("") is None

    def test_user_ids_are_stable(self):
        """Test that generated ids do not change between loads."""
        from oauth_server.users import InMemoryUserDirectory

        again = InMemoryUserDirectory([{"username": "Alice"}])

        assert again.get_user_by_name("alice").user_id == self.directory.get_user_by_name("alice").user_id

    def test_password_check(self):
        """Test password verification."""
        alice = self.directory.get_user_by_name("alice")

        assert self.directory.verify_password(alice, "wonderland") is True
        assert self.directory.verify_password(alice, "wrong") is False
        assert self.directory.verify_password(alice, "") is False

    def test_user_without_password_accepts_any(self):
        """Test that users without a configured password accept any non-blank one."""
        guest = self.directory.get_user_by_name("guest")

        assert self.directory.verify_password(guest, "anything") is True
        assert self.directory.verify_password(guest, "") is False

    def test_from_yaml(self, tmp_path):
        """Test loading users from a YAML file."""
        from oauth_server.users import InMemoryUserDirectory

        path = tmp_path / "users.yaml"
        path.write_text("users:\n  - username: carol\n    password: pw\n    user_id: c-1\n")

        directory = InMemoryUserDirectory.from_yaml(path)

        assert directory.get_user_by_name("carol").user_id == "c-1"
        assert len(InMemoryUserDirectory.from_yaml(tmp_path / "missing.yaml")) == 0
