from rythmix.models.database import Base, get_db
from rythmix.models.user import USER_ROLES, User
from rythmix.models.auth_token import AccessToken, EmailVerificationToken, RefreshToken

__all__ = [
    "Base",
    "get_db",
    "USER_ROLES",
    "User",
    "AccessToken",
    "RefreshToken",
    "EmailVerificationToken",
]
