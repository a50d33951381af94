"""Failures raised by the session lifecycle service.

Each class carries a fixed public message. Callers branch on the type,
never on the message text.
"""


class AuthError(Exception):
    """Base class for authentication and session failures."""

    message = "Authentication failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Input was rejected; ``errors`` lists the offending fields."""

    message = "Validation failed"

    def __init__(self, errors: list[dict[str, str]]):
        self.errors = errors
        super().__init__()


class ConflictError(AuthError):
    """A uniqueness constraint fired in storage after the pre-checks passed."""

    message = "Account already exists"


class InvalidCredentialsError(AuthError):
    message = "Invalid credentials"


class EmailNotVerifiedError(AuthError):
    message = "Please verify your email before logging in"


class InvalidRefreshTokenError(AuthError):
    message = "Invalid refresh token"


class RefreshTokenExpiredError(AuthError):
    message = "Refresh token expired"


class InvalidVerificationTokenError(AuthError):
    message = "Invalid verification token"


class VerificationTokenExpiredError(AuthError):
    message = "Verification token expired. Please request a new one."
