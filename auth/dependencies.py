"""
auth/dependencies.py -- RequestGate: FastAPI Depends() admission check.

Every authenticated route sits behind require_session(), applied at router
level (APIRouter(dependencies=[Depends(require_session)])). FastAPI resolves
router dependencies before the handler body runs, so a rejection here
short-circuits the request before any handler side effect can happen.

The gate has exactly two outcomes per request:
  Admitted -- the SessionToken is placed on request.state.session.
  Rejected -- HTTP 401 {"error": {"code": "unauthorized", ...}}.

Every rejection reason (header missing, repeated, malformed, unknown token,
expired token) produces the identical 401 body. The reason is logged at
INFO for operators and never returned to the client.

Failure policy is fail closed: a store outage raises a generic 503, and any
other exception propagates to the catch-all 500 handler. Neither path ever
reaches the route handler.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
import re

from fastapi import HTTPException, Request

from auth.models import SessionToken
from auth.service import AuthService
from core.errors import AccessControlError, StoreUnavailableError, TokenExpiredError, TokenNotFoundError

logger = logging.getLogger("wotapi.gate")

# Issued secrets are 64 hex chars. Accept any url-safe token of sane length so
# a future change to the secret encoding does not lock every client out.
_SECRET_RE = re.compile(r"^[A-Za-z0-9_\-]{16,256}$")

_UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}


class RequestGate:
    """Admit-or-reject decision for one inbound request.

    Usage:
        gate = RequestGate(auth_service, header_name="api-auth-key")
        token = gate.admit(request)   # raises HTTPException(401) on reject
    """

    def __init__(self, auth_service: AuthService, header_name: str = "api-auth-key") -> None:
        self.auth_service = auth_service
        self.header_name = header_name

    def extract_secret(self, request: Request) -> str | None:
        """Return the single credential header value, or None.

        Repeated headers, empty values and values not shaped like an opaque
        secret are all treated as absent.
        """
        values = request.headers.getlist(self.header_name)
        if len(values) != 1:
            return None
        secret = values[0].strip()
        if not _SECRET_RE.match(secret):
            return None
        return secret

    def check(self, request: Request) -> SessionToken:
        """Run the gate. Raises an AccessControlError subclass on rejection."""
        secret = self.extract_secret(request)
        if secret is None:
            raise TokenNotFoundError("Credential header missing or malformed.")
        token = self.auth_service.get_token_by_secret(secret)
        if token is None:
            raise TokenNotFoundError()
        if not self.auth_service.is_valid(token):
            raise TokenExpiredError()
        return token

    def admit(self, request: Request) -> SessionToken:
        """Run the gate and translate the outcome to HTTP.

        All credential failures collapse to one 401. Store failures become a
        generic 503.
        """
        try:
            token = self.check(request)
        except StoreUnavailableError as exc:
            raise HTTPException(
                status_code=503,
                detail={"code": exc.code, "message": exc.message},
            ) from exc
        except AccessControlError as exc:
            logger.info(
                "Rejected %s %s: %s",
                request.method,
                request.url.path,
                exc.code,
            )
            raise HTTPException(
                status_code=401,
                detail=_UNAUTHORIZED,
            ) from exc
        request.state.session = token
        return token


def require_session(request: Request) -> SessionToken:
    """Require a valid session. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        router = APIRouter(dependencies=[Depends(require_session)])
    or per route:
        async def route(session: SessionToken = Depends(require_session)): ...
    """
    gate: RequestGate = request.app.state.gate
    return gate.admit(request)
