"""
auth/tokens.py -- Password hashing, session token issue, and secret digests.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Bcrypt is the right choice
       for low-entropy secrets because its cost factor makes brute-force
       expensive. The cost is injected (Settings.bcrypt_rounds) so tests can
       run at the minimum of 4. PasswordHasher keeps a dummy digest computed
       at construction time so an unknown username costs exactly one bcrypt
       comparison, the same as a wrong password.

  Session secrets: secrets.token_hex(32) gives 256 bits of entropy --
       guessing is computationally infeasible. TokenIssuer owns the expiry
       policy: expires_at = issued_at + lifetime, and a token is expired from
       the instant now == expires_at onward.

  Stored form: HMAC-SHA256(SECRET_KEY, secret) as hex. Deterministic, so the
       store can look a secret up through a UNIQUE index in O(1). A leaked
       database alone does not yield usable secrets.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import bcrypt

from auth.models import IssuedToken, SessionToken

logger = logging.getLogger("wotapi.auth")

TOKEN_BYTE_LENGTH = 32
# bcrypt only reads this many bytes of a password; current releases reject more.
BCRYPT_MAX_PASSWORD_BYTES = 72


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


class PasswordHasher:
    """Salted, slow, one-way password hashing.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("hunter2")
        hasher.verify("hunter2", digest)   # True
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Computed once so the first failed login for an unknown user is not
        # measurably slower than later ones.
        self._dummy_hash = self.hash(secrets.token_hex(16))

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest of plaintext.

        Callers keep plaintext within BCRYPT_MAX_PASSWORD_BYTES (main.py
        create-user checks it before hashing).
        """
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, digest: str | None) -> bool:
        """Return True if plaintext matches digest.

        A missing or malformed digest is a mismatch, never an exception. So is
        a candidate that cannot be encoded or is longer than bcrypt accepts;
        create-user never stores such a password.
        """
        if not digest:
            return False
        try:
            candidate = plaintext.encode("utf-8")
        except UnicodeEncodeError:
            return False
        if len(candidate) > BCRYPT_MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(candidate, digest.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password digest is malformed; treating as mismatch")
            return False

    def verify_dummy(self, plaintext: str) -> bool:
        """Burn one bcrypt comparison against the dummy digest. Always False."""
        self.verify(plaintext, self._dummy_hash)
        return False


# ---------------------------------------------------------------------------
# Session token issue / expiry
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints opaque session secrets and owns the expiry policy."""

    def __init__(self, lifetime: timedelta, clock: Callable[[], datetime] = utcnow) -> None:
        if lifetime <= timedelta(0):
            raise ValueError("Token lifetime must be positive.")
        self.lifetime = lifetime
        self.clock = clock

    def issue(self, now: datetime | None = None) -> IssuedToken:
        issued_at = now if now is not None else self.clock()
        return IssuedToken(
            secret=generate_secret(),
            issued_at=issued_at,
            expires_at=issued_at + self.lifetime,
        )

    @staticmethod
    def is_expired(token: SessionToken | IssuedToken, now: datetime) -> bool:
        """Pure predicate. The boundary instant now == expires_at counts as expired."""
        return now >= token.expires_at


def generate_secret() -> str:
    """Return 32 random bytes as 64 hex characters (256 bits of entropy)."""
    return secrets.token_hex(TOKEN_BYTE_LENGTH)


def hash_secret(secret: str, key: str) -> str:
    """Return HMAC-SHA256(key, secret) as a hex string.

    This is the only form of a session secret that is ever persisted.
    """
    return hmac.new(key.encode("utf-8"), secret.encode("utf-8"), hashlib.sha256).hexdigest()
