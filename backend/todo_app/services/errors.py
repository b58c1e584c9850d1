"""Errors raised by the auth services.

The HTTP layer translates these in ``todo_app.api.errors``. Messages on
``Unauthorized`` are shown to callers, so they stay generic.
"""


class AuthError(Exception):
    """Base class for service-level failures."""

    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Unauthorized(AuthError):
    default_message = "Invalid authentication credentials"


class NotFound(AuthError):
    default_message = "Not found"


class Conflict(AuthError):
    default_message = "Conflict"


class InvalidRequest(AuthError):
    default_message = "Invalid request"


class RefreshTokenError(AuthError):
    """Refresh chain failures; never shown to callers as-is."""


class InvalidToken(RefreshTokenError):
    default_message = "Refresh token not recognised"


class ExpiredToken(RefreshTokenError):
    default_message = "Refresh token expired"


class TokenReuseDetected(RefreshTokenError):
    default_message = "Superseded refresh token presented"

    def __init__(self, session_id: str, message: str | None = None):
        super().__init__(message)
        self.session_id = session_id
