from rythmix.schemas.auth import (
    AccessTokenResponse,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    RevokedSessionsResponse,
    TokenResponse,
    VerifyEmailRequest,
    VerifyEmailResponse,
)

__all__ = [
    "AccessTokenResponse",
    "LoginRequest",
    "LogoutRequest",
    "MeResponse",
    "MessageResponse",
    "RefreshRequest",
    "RegisterRequest",
    "RegisterResponse",
    "ResendVerificationRequest",
    "RevokedSessionsResponse",
    "TokenResponse",
    "VerifyEmailRequest",
    "VerifyEmailResponse",
]
