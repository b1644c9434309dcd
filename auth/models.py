"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An identity allowed to call the authenticated card endpoints.

    Users are created by an operator (main.py create-user); there is no
    self-registration. A user holds at most one live SessionToken.
    """

    username: str
    hashed_password: str  # bcrypt digest
    id: int | None = None
    created_at: str | None = None


@dataclass
class IssuedToken:
    """Output of TokenIssuer.issue() before it is bound to a user."""

    secret: str
    issued_at: datetime
    expires_at: datetime


@dataclass
class SessionToken:
    """A user's current session.

    Security design:
    - secret is the opaque value handed to the client. It is only ever
      populated from an IssuedToken (at authentication) or from the value the
      client presented (at lookup). The store keeps an HMAC of it, never the
      plaintext.
    - id is the storage row id. It stays the same when the user
      re-authenticates (overwrite in place) and is never sent to a client.
    - expires_at is always issued_at + the configured lifetime.
    """

    user_id: int
    secret: str
    issued_at: datetime
    expires_at: datetime
    id: int | None = None
