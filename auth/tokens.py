"""
auth/tokens.py -- Signed token codec and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. TokenCodec signs an arbitrary JSON payload plus
       iat/exp claims. verify() never raises on bad input; it returns a
       TokenVerification carrying either the payload or a VerificationError so
       callers can branch (401 for session tokens, 400 for reset codes).

  Clock: expiry is evaluated against an injectable clock instead of letting
       jose compare exp with wall time. Tests move the clock forward rather
       than sleeping.

  Purpose secrets: derive_secret() produces HMAC-SHA256(SECRET_KEY, purpose).
       Reset codes are signed with the "password-reset" secret, so an access
       token (which also carries user_id) is never accepted as a reset code and
       vice versa.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in AuthService.sign_in() so response time
       does not reveal whether an identifier exists [C1].

Layer rule: no imports from api/, mail/, or core/. Configuration arrives
through the TokenCodec constructor.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import bcrypt
from jose import JWTError, jwt

logger = logging.getLogger("authgate.auth")

_ALGORITHM = "HS256"

# bcrypt input limit. Longer passwords are rejected, never truncated.
PASSWORD_MAX_BYTES = 72

# Claims owned by the codec. They are stripped from verified payloads so that
# verify(sign(payload)).payload == payload.
_RESERVED_CLAIMS = ("exp", "iat")


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage)
# ---------------------------------------------------------------------------


def password_too_long(plain: str) -> bool:
    """True when plain exceeds bcrypt's 72-byte input limit once UTF-8 encoded."""
    return len(plain.encode("utf-8")) > PASSWORD_MAX_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for passwords over 72 UTF-8 bytes.
    """
    if password_too_long(plain):
        raise ValueError(f"password cannot be longer than {PASSWORD_MAX_BYTES} bytes")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash is a
    mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def generate_password() -> str:
    """Random password for accounts created without one (OAuth sign-ups).

    The value is hashed and then discarded by the caller; nobody ever learns it.
    """
    return secrets.token_urlsafe(24)


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first sign-in attempt is not measurably slower than later ones.
_DUMMY_HASH: str = hash_password("authgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison whose result is discarded.

    Called when no stored hash exists so the failure path costs the same as
    a real wrong-password check.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


class VerificationError(str, Enum):
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass
class TokenVerification:
    """Outcome of TokenCodec.verify(). Exactly one of payload / error is set."""

    payload: dict[str, Any] | None = None
    error: VerificationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Signs and verifies compact expiring tokens.

    Usage:
        codec = TokenCodec(secret_key=settings.secret_key, default_expire_seconds=3600)
        token = codec.sign({"user_id": 1})
        result = codec.verify(token)
        if result.ok:
            user_id = result.payload["user_id"]
    """

    def __init__(
        self,
        secret_key: str,
        default_expire_seconds: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.default_expire_seconds = default_expire_seconds
        self._clock = clock

    def derive_secret(self, purpose: str) -> str:
        """Return HMAC-SHA256(secret_key, purpose) as hex, a per-purpose signing key."""
        return hmac.new(self._secret_key.encode(), purpose.encode(), hashlib.sha256).hexdigest()

    def sign(
        self,
        payload: dict[str, Any],
        expire_seconds: int | None = None,
        secret_key: str | None = None,
    ) -> str:
        """Encode payload as an HS256 JWT expiring after expire_seconds.

        expire_seconds defaults to the codec's default_expire_seconds;
        secret_key defaults to the process secret.
        """
        duration = expire_seconds if expire_seconds is not None else self.default_expire_seconds
        now = self._clock()
        claims = dict(payload)
        claims["iat"] = int(now.timestamp())
        claims["exp"] = int((now + timedelta(seconds=duration)).timestamp())
        return jwt.encode(claims, secret_key or self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str | None, secret_key: str | None = None) -> TokenVerification:
        """Decode and check a token. Never raises for bad, foreign or expired tokens."""
        if not token:
            return TokenVerification(error=VerificationError.INVALID)
        try:
            claims = jwt.decode(
                token,
                secret_key or self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError:
            return TokenVerification(error=VerificationError.INVALID)

        exp = claims.get("exp")
        if not isinstance(exp, int):
            return TokenVerification(error=VerificationError.INVALID)
        if exp <= int(self._clock().timestamp()):
            return TokenVerification(error=VerificationError.EXPIRED)

        payload = {k: v for k, v in claims.items() if k not in _RESERVED_CLAIMS}
        return TokenVerification(payload=payload)
