"""
api/routes/auth.py -- Session issue endpoint.

Routes:
  POST /authenticate   -- exchange username/password for a session token

Security:
  Rate-limited per client IP (Settings.login_rate_limit, default 10/minute).
  AuthService.authenticate() provides timing equalization -- use it, never
  inline get_by_username() + verify().
  Cache-Control: no-store on every response so the secret is never cached.
  Every failure returns the same 401 "bad_credentials" body.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import AuthenticateResponse, ErrorDetail, ErrorResponse, LoginRequest
from auth.service import AuthService
from core.errors import InvalidCredentialsError

# Auth policy:
# - POST /authenticate: public -- must be reachable without a session.
router = APIRouter()


@limiter.limit(login_limit)  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/authenticate", response_model=AuthenticateResponse)
def authenticate(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a new session token.

    A user who already holds a token gets it overwritten -- the old secret
    stops working immediately.
    """
    auth_service: AuthService = request.app.state.auth_service
    session = auth_service.authenticate(body.username, body.password)
    if session is None:
        exc = InvalidCredentialsError()
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(
        status_code=200,
        content=AuthenticateResponse.from_session(session).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp
