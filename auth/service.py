"""
auth/service.py -- AuthService: credentials in, session token out.

AuthService is a stateless orchestrator over three injected collaborators:
UserStore (credentials and tokens), PasswordHasher and TokenIssuer. It is
constructed once in the API lifespan and stored on app.state -- there is no
module-level instance.

Information hiding:
  authenticate() returns None for every failure: unknown user, wrong
  password, malformed stored digest, store error, or anything unexpected
  (e.g. a driver refusing to bind the username). Unknown users still pay
  one bcrypt comparison (PasswordHasher.verify_dummy) so response time does
  not reveal whether a username exists. Errors are logged with a traceback
  for operators and otherwise look exactly like bad credentials.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from auth.models import SessionToken
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenIssuer, hash_secret
from core.errors import StoreUnavailableError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("wotapi.auth")


class AuthService:
    """Authenticates users and validates the session tokens they present.

    Usage:
        service = AuthService(store, PasswordHasher(12), TokenIssuer(timedelta(hours=8)), secret_key)
        token = service.authenticate("egwene", "secret")
        if token is not None:
            service.is_request_authorized(token.secret)   # True
    """

    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        secret_key: str,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._issuer = issuer
        self._secret_key = secret_key

    @classmethod
    def from_settings(cls, store: UserStore, settings: Settings) -> AuthService:
        """Wire an AuthService from application settings. Used by the API lifespan and the CLI."""
        return cls(
            store=store,
            hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
            issuer=TokenIssuer(lifetime=timedelta(seconds=settings.token_lifetime_seconds)),
            secret_key=settings.secret_key,
        )

    def authenticate(self, username: str, password: str) -> SessionToken | None:
        """Exchange a username/password for a new session token.

        On success any token the user already held is overwritten and stops
        working. The returned token is the only place the plaintext secret
        is ever disclosed.
        """
        try:
            user = self._store.get_by_username(username)
            if user is None:
                # Equalize timing -- do NOT return before running bcrypt.
                self._hasher.verify_dummy(password)
                return None
            if not self._hasher.verify(password, user.hashed_password):
                return None
            issued = self._issuer.issue()
            token = self._store.save_token(user.id, issued, hash_secret(issued.secret, self._secret_key))
        except SQLAlchemyError:
            logger.exception("Credential store error during authentication")
            return None
        except Exception:
            logger.exception("Unexpected error during authentication")
            return None
        logger.info("Session issued for user_id=%d (expires %s)", user.id, token.expires_at.isoformat())
        return token

    def get_token_by_secret(self, secret: str) -> SessionToken | None:
        """Exact-match lookup of a presented secret.

        The secret is HMAC'd and matched through the store's UNIQUE index; no
        character-by-character comparison of the secret happens here.

        Raises StoreUnavailableError if the store fails, so callers can fail
        closed without confusing an outage with a bad token.
        """
        if not secret:
            return None
        try:
            token = self._store.get_token_by_hash(hash_secret(secret, self._secret_key))
        except SQLAlchemyError as exc:
            logger.exception("Credential store error during token lookup")
            raise StoreUnavailableError() from exc
        if token is None:
            return None
        return replace(token, secret=secret)

    def is_valid(self, token: SessionToken, now: datetime | None = None) -> bool:
        """True until the instant the token reaches expires_at. No side effects."""
        when = now if now is not None else self._issuer.clock()
        return not self._issuer.is_expired(token, when)

    def is_request_authorized(self, secret: str) -> bool:
        """Outer-layer contract: does this secret admit a request right now?"""
        token = self.get_token_by_secret(secret)
        return token is not None and self.is_valid(token)
