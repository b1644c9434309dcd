"""
API request and response models for the card API REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import SessionToken

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /authenticate.

    password is capped at 72 characters: bcrypt only looks at the first 72
    bytes, and longer inputs are rejected by current bcrypt releases.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AuthenticateResponse(BaseModel):
    """Successful authentication.

    token is the opaque session secret -- send it back in the api-auth-key
    header on every authenticated request. The internal token id is never
    part of this payload.
    """

    model_config = ConfigDict(frozen=True)

    token: str
    issued_at: datetime
    expires_at: datetime
    expires_in: int = Field(description="Seconds until the token expires.")

    @classmethod
    def from_session(cls, session: SessionToken) -> "AuthenticateResponse":
        """Build the response from a domain SessionToken, dropping its id and user_id."""
        return cls(
            token=session.secret,
            issued_at=session.issued_at,
            expires_at=session.expires_at,
            expires_in=int((session.expires_at - session.issued_at).total_seconds()),
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
