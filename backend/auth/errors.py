"""Error taxonomy for the authentication flows.

Every error carries an HTTP-equivalent status and a public message. The public
message is the only text that may reach a client; details go to the log.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple


class AuthError(Exception):
    status_code = 500
    public_message = "Internal server error."

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message

    def to_response(self) -> Tuple[int, Dict[str, Any]]:
        return self.status_code, {"message": self.public_message}


class ValidationError(AuthError):
    status_code = 400
    public_message = "Invalid request."

    def to_response(self) -> Tuple[int, Dict[str, Any]]:
        # Validation details describe the caller's own input, so they are safe to echo.
        return self.status_code, {"message": self.detail}


class Unauthenticated(AuthError):
    status_code = 401
    public_message = "Authentication required. Use 'Authorization: Bearer <token>'."


class Unauthorized(AuthError):
    status_code = 401
    public_message = "Invalid credentials."


class Forbidden(AuthError):
    status_code = 403
    public_message = "Invalid or expired token."


class RefreshTokenNotFound(Forbidden):
    public_message = "Invalid or expired refresh token."


class RefreshTokenExpired(Forbidden):
    public_message = "Invalid or expired refresh token."


class NotFound(AuthError):
    status_code = 404
    public_message = "User profile not found."


class Conflict(AuthError):
    status_code = 409
    public_message = "Email already registered."


class StoreUnavailable(AuthError):
    status_code = 500
    public_message = "Internal server error."


class CredentialProcessingError(AuthError):
    """Hashing or signing failed; the request cannot continue."""

    status_code = 500
    public_message = "Internal server error."


class MissingRefreshToken(Unauthorized):
    public_message = "Refresh token required."


class InsufficientRole(Forbidden):
    public_message = "You do not have permission to perform this action."
