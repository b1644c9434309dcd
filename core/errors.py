"""
core/errors.py -- Error kinds raised across the access control boundary.

Two families with opposite disclosure rules:

  Authentication errors (InvalidCredentialsError, TokenNotFoundError,
  TokenExpiredError) are for internal flow and operator logs only. At the HTTP
  boundary every one of them collapses into the same 401 "unauthorized" body,
  so a caller can never tell an unknown user from a wrong password, or an
  unknown token from an expired one.

  Resource errors (MalformedIdentifierError, ResourceNotFoundError) ARE
  distinguished (400 vs 404). No credential is involved, so there is nothing
  to enumerate.

StoreUnavailableError wraps persistence failures. The gate fails closed on it
and the client sees a generic 503.

Layer rule: core/ is the kernel. This module imports nothing from the project.
"""


class AccessControlError(Exception):
    """Base class for all access-control failures."""

    code = "access_denied"

    def __init__(self, message: str = "Access denied.") -> None:
        super().__init__(message)
        self.message = message


class InvalidCredentialsError(AccessControlError):
    """Unknown username or wrong password. Deliberately indistinguishable."""

    code = "bad_credentials"

    def __init__(self, message: str = "Invalid username or password.") -> None:
        super().__init__(message)


class TokenNotFoundError(AccessControlError):
    code = "token_not_found"

    def __init__(self, message: str = "Session token not found.") -> None:
        super().__init__(message)


class TokenExpiredError(AccessControlError):
    code = "token_expired"

    def __init__(self, message: str = "Session token expired.") -> None:
        super().__init__(message)


class MalformedIdentifierError(AccessControlError):
    """The identifier would have changed the directory structure, or has the wrong shape."""

    code = "malformed_identifier"

    def __init__(self, identifier: str, reason: str = "malformed") -> None:
        super().__init__(f"Malformed resource identifier ({reason}).")
        self.identifier = identifier
        self.reason = reason


class ResourceNotFoundError(AccessControlError):
    code = "not_found"

    def __init__(self, identifier: str) -> None:
        super().__init__("Resource not found.")
        self.identifier = identifier


class StoreUnavailableError(AccessControlError):
    """The credential store could not be reached or raised mid-operation."""

    code = "service_unavailable"

    def __init__(self, message: str = "Service temporarily unavailable.") -> None:
        super().__init__(message)
