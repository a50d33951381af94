from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from rythmix.config import settings
from rythmix.models import AccessToken, User, get_db
from rythmix.services.access_tokens import AccessTokenProvider
from rythmix.services.auth_service import AuthService, Mailer, build_auth_service
from rythmix.services.email_service import SmtpMailer

security = HTTPBearer(auto_error=False)


def get_mailer() -> Mailer:
    return SmtpMailer(settings)


def get_access_token_provider(
    db: Annotated[Session, Depends(get_db)],
) -> AccessTokenProvider:
    return AccessTokenProvider(db, settings.JWT_SECRET, settings.JWT_ALGORITHM)


def get_auth_service(
    db: Annotated[Session, Depends(get_db)],
    mailer: Annotated[Mailer, Depends(get_mailer)],
) -> AuthService:
    return build_auth_service(db, mailer, settings)


def get_current_access_token_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    provider: Annotated[AccessTokenProvider, Depends(get_access_token_provider)],
) -> AccessToken | None:
    if not credentials:
        return None
    record = provider.verify(credentials.credentials)
    if record is not None:
        provider.db.commit()
    return record


def get_current_access_token(
    token: Annotated[AccessToken | None, Depends(get_current_access_token_optional)],
) -> AccessToken:
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def get_current_user(
    token: Annotated[AccessToken, Depends(get_current_access_token)],
) -> User:
    return token.user


def require_role(*roles: str):
    def _check_role(user: Annotated[User, Depends(get_current_user)]) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access refused")
        return user

    return _check_role
