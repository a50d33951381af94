import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from rythmix.dependencies import (
    get_auth_service,
    get_current_access_token,
    get_current_user,
    require_role,
)
from rythmix.models import AccessToken, User
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
    UserProfile,
    UserProjection,
    VerifiedUser,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from rythmix.services.auth_service import AuthService
from rythmix.services.errors import (
    ConflictError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    InvalidVerificationTokenError,
    RefreshTokenExpiredError,
    ValidationError,
    VerificationTokenExpiredError,
)

router = APIRouter()
logger = logging.getLogger(__name__)

AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
def register(body: RegisterRequest, service: AuthServiceDep):
    """Create an account and send the email verification link."""
    try:
        user = service.register(
            email=body.email,
            username=body.username,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "errors": exc.errors},
        ) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc

    return RegisterResponse(data={"user": UserProjection.model_validate(user)})


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login and get access/refresh tokens",
)
def login(body: LoginRequest, service: AuthServiceDep):
    """Exchange email/password for a 15 minute access token and a 7 day refresh token."""
    try:
        pair = service.login(body.email, body.password)
    except InvalidCredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc
    except EmailNotVerifiedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc

    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.access_expires_in,
        refresh_expires_in=pair.refresh_expires_in,
    )


@router.post(
    "/refresh",
    response_model=AccessTokenResponse,
    summary="Get a new access token",
)
def refresh(body: RefreshRequest, service: AuthServiceDep):
    """Issue a fresh access token. The refresh token is not rotated."""
    try:
        access_token = service.refresh(body.refresh_token)
    except (InvalidRefreshTokenError, RefreshTokenExpiredError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc

    return AccessTokenResponse(
        access_token=access_token,
        expires_in=int(service.access_token_ttl.total_seconds()),
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Revoke the current access token and, optionally, a refresh token",
)
def logout(
    service: AuthServiceDep,
    token: Annotated[AccessToken, Depends(get_current_access_token)],
    body: LogoutRequest | None = None,
):
    refresh_token = body.refresh_token if body else None
    service.logout(token.user, token.identifier, refresh_token)
    return MessageResponse(message="Logout successful")


@router.post(
    "/logout-all",
    response_model=RevokedSessionsResponse,
    summary="Revoke every refresh token of the current user",
)
def logout_all(
    service: AuthServiceDep,
    current_user: Annotated[User, Depends(get_current_user)],
):
    revoked = service.revoke_all_refresh_tokens(current_user.id)
    return RevokedSessionsResponse(message="All sessions revoked", revoked=revoked)


@router.post(
    "/users/{user_id}/revoke-sessions",
    response_model=RevokedSessionsResponse,
    summary="Revoke every refresh token of a user (admin)",
)
def revoke_user_sessions(
    user_id: str,
    service: AuthServiceDep,
    admin: Annotated[User, Depends(require_role("admin"))],
):
    revoked = service.revoke_all_refresh_tokens(user_id)
    logger.info("Admin id=%s revoked %s sessions of user id=%s", admin.id, revoked, user_id)
    return RevokedSessionsResponse(message="All sessions revoked", revoked=revoked)


def _verify_email(service: AuthService, token: str | None) -> VerifyEmailResponse:
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Verification token is required")
    try:
        user = service.verify_email(token)
    except (InvalidVerificationTokenError, VerificationTokenExpiredError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    return VerifyEmailResponse(user=VerifiedUser.model_validate(user))


@router.get(
    "/verify-email",
    response_model=VerifyEmailResponse,
    summary="Confirm email from the emailed link",
)
def verify_email_link(
    service: AuthServiceDep,
    token: Annotated[str | None, Query()] = None,
):
    return _verify_email(service, token)


@router.post(
    "/verify-email",
    response_model=VerifyEmailResponse,
    summary="Confirm email verification token",
)
def verify_email(body: VerifyEmailRequest, service: AuthServiceDep):
    return _verify_email(service, body.token)


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    summary="Resend email verification link",
)
def resend_verification(body: ResendVerificationRequest, service: AuthServiceDep):
    """Same response whether or not the account exists or is already verified."""
    service.resend_verification_email(body.email)
    return MessageResponse(message="If the email exists and is not verified, a verification email has been sent")


@router.get(
    "/me",
    response_model=MeResponse,
    summary="Get current authenticated user profile",
)
def me(current_user: Annotated[User, Depends(get_current_user)]):
    return MeResponse(data={"user": UserProfile.model_validate(current_user)})
