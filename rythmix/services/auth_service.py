"""Session lifecycle: registration, login, token refresh, logout and email verification.

``AuthService`` receives every collaborator through its constructor so the
store, the password hasher, the mail transport and the clock can be swapped
in tests. Each public operation commits its own unit of work.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from email_validator import EmailNotValidError, validate_email
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rythmix.config import Settings, settings as default_settings
from rythmix.models import EmailVerificationToken, RefreshToken, User
from rythmix.services.access_tokens import AccessTokenProvider
from rythmix.services.auth_tokens import SplitToken, as_utc, db_datetime, utcnow, verifier_matches
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
from rythmix.services.passwords import pwd_context

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 8


class Mailer(Protocol):
    def send_verify_email(self, to_email: str, username: str, token: str) -> None: ...


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    def __init__(
        self,
        db: Session,
        mailer: Mailer,
        access_tokens: AccessTokenProvider,
        hasher: CryptContext = pwd_context,
        clock: Callable[[], datetime] = utcnow,
        access_token_ttl: timedelta = timedelta(minutes=15),
        refresh_token_ttl: timedelta = timedelta(days=7),
        verification_token_ttl: timedelta = timedelta(hours=24),
    ):
        self.db = db
        self.mailer = mailer
        self.access_tokens = access_tokens
        self.hasher = hasher
        self.clock = clock
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.verification_token_ttl = verification_token_ttl

    def _active_users(self):
        return self.db.query(User).filter(User.deleted_at.is_(None))

    def get_user_by_email(self, email: str) -> User | None:
        return self._active_users().filter(User.email == normalize_email(email)).first()

    def register(
        self,
        email: str,
        username: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Create an unverified account and mail it a verification link.

        Raises:
            ValidationError: malformed email, short username or password, or
                email or username already taken.
            ConflictError: the store rejected the row on a unique constraint.
        """
        email = normalize_email(email)
        username = username.strip()

        errors = []
        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError:
            errors.append({"field": "email", "rule": "email", "message": "The email must be a valid email address"})
        if len(username) < MIN_USERNAME_LENGTH:
            errors.append(
                {
                    "field": "username",
                    "rule": "minLength",
                    "message": f"The username must have at least {MIN_USERNAME_LENGTH} characters",
                }
            )
        if len(password) < MIN_PASSWORD_LENGTH:
            errors.append(
                {
                    "field": "password",
                    "rule": "minLength",
                    "message": f"The password must have at least {MIN_PASSWORD_LENGTH} characters",
                }
            )
        if errors:
            raise ValidationError(errors)

        if self._active_users().filter(User.email == email).first():
            errors.append({"field": "email", "rule": "unique", "message": "The email has already been taken"})
        if self._active_users().filter(User.username == username).first():
            errors.append({"field": "username", "rule": "unique", "message": "The username has already been taken"})
        if errors:
            raise ValidationError(errors)

        user = User(
            email=email,
            username=username,
            hashed_password=self.hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
            role="user",
            email_verified_at=None,
        )
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("Registration hit a uniqueness constraint: %s", exc.orig)
            raise ConflictError() from exc

        logger.info("Registered user id=%s", user.id)
        self.send_verification_email(user)
        return user

    def login(self, email: str, password: str) -> TokenPair:
        user = self.get_user_by_email(email)
        if user is None:
            self.hasher.dummy_verify()
            raise InvalidCredentialsError()
        if not self.hasher.verify(password, user.hashed_password):
            logger.info("Rejected login for user id=%s: bad password", user.id)
            raise InvalidCredentialsError()
        if not user.is_email_verified:
            raise EmailNotVerifiedError()

        access = self.access_tokens.create(user, expires_in=self.access_token_ttl)
        refresh_token = self._issue_refresh_token(user)
        self.db.commit()
        logger.info("User id=%s logged in", user.id)

        return TokenPair(
            access_token=access.value,
            refresh_token=str(refresh_token),
            access_expires_in=int(self.access_token_ttl.total_seconds()),
            refresh_expires_in=int(self.refresh_token_ttl.total_seconds()),
        )

    def _issue_refresh_token(self, user: User) -> SplitToken:
        token = SplitToken.generate()
        self.db.add(
            RefreshToken(
                user_id=user.id,
                selector=token.selector,
                token_hash=token.verifier_hash,
                expires_at=self.clock() + self.refresh_token_ttl,
            )
        )
        self.db.flush()
        return token

    def refresh(self, refresh_token: str) -> str:
        """Mint a new access token. The refresh token itself stays valid until it expires."""
        token = SplitToken.parse(refresh_token)
        if token is None:
            raise InvalidRefreshTokenError()

        record = self.db.query(RefreshToken).filter(RefreshToken.selector == token.selector).first()
        if record is None:
            raise InvalidRefreshTokenError()

        if as_utc(record.expires_at) < self.clock():
            user_id = record.user_id
            self.db.delete(record)
            self.db.commit()
            logger.info("Purged expired refresh token for user id=%s", user_id)
            raise RefreshTokenExpiredError()

        if not verifier_matches(token.verifier, record.token_hash):
            raise InvalidRefreshTokenError()

        user = record.user
        if user is None or user.deleted_at is not None:
            raise InvalidRefreshTokenError()

        access = self.access_tokens.create(user, expires_in=self.access_token_ttl)
        self.db.commit()
        return access.value

    def logout(self, user: User, access_token_identifier: str, refresh_token: str | None = None) -> None:
        self.access_tokens.delete(user, access_token_identifier)

        token = SplitToken.parse(refresh_token)
        if token is not None:
            (
                self.db.query(RefreshToken)
                .filter(RefreshToken.selector == token.selector, RefreshToken.user_id == user.id)
                .delete(synchronize_session=False)
            )
        self.db.commit()
        logger.info("User id=%s logged out", user.id)

    def send_verification_email(self, user: User) -> None:
        """Replace the user's verification token with a fresh one and mail it.

        A mail transport failure is logged; the new token stays persisted so
        the user can ask for another send.
        """
        self.db.query(EmailVerificationToken).filter(EmailVerificationToken.user_id == user.id).delete(
            synchronize_session=False
        )

        token = SplitToken.generate()
        self.db.add(
            EmailVerificationToken(
                user_id=user.id,
                selector=token.selector,
                token_hash=token.verifier_hash,
                expires_at=self.clock() + self.verification_token_ttl,
            )
        )
        self.db.commit()

        try:
            self.mailer.send_verify_email(user.email, user.username, str(token))
        except Exception:
            logger.exception("Failed to send verification email to user id=%s", user.id)

    def resend_verification_email(self, email: str) -> None:
        user = self.get_user_by_email(email)
        if user is None or user.is_email_verified:
            return
        self.send_verification_email(user)

    def verify_email(self, token: str) -> User:
        parsed = SplitToken.parse(token)
        if parsed is None:
            raise InvalidVerificationTokenError()

        record = (
            self.db.query(EmailVerificationToken)
            .filter(EmailVerificationToken.selector == parsed.selector)
            .first()
        )
        if record is None:
            raise InvalidVerificationTokenError()

        if as_utc(record.expires_at) < self.clock():
            self.db.delete(record)
            self.db.commit()
            raise VerificationTokenExpiredError()

        if not verifier_matches(parsed.verifier, record.token_hash):
            raise InvalidVerificationTokenError()

        user = record.user
        if user is None or user.deleted_at is not None:
            raise InvalidVerificationTokenError()

        if not user.is_email_verified:
            user.email_verified_at = self.clock()
        self.db.delete(record)
        self.db.commit()
        self.db.refresh(user)
        logger.info("Verified email for user id=%s", user.id)
        return user

    def revoke_all_refresh_tokens(self, user_id: str) -> int:
        deleted = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Revoked %s refresh tokens for user id=%s", deleted, user_id)
        return deleted

    def clean_expired_tokens(self) -> int:
        deleted = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.expires_at < db_datetime(self.db, self.clock()))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Deleted %s expired refresh tokens", deleted)
        return deleted

    def clean_expired_verification_tokens(self) -> int:
        deleted = (
            self.db.query(EmailVerificationToken)
            .filter(EmailVerificationToken.expires_at < db_datetime(self.db, self.clock()))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Deleted %s expired email verification tokens", deleted)
        return deleted

    def clean_expired_access_tokens(self) -> int:
        deleted = self.access_tokens.prune_expired()
        self.db.commit()
        return deleted


def build_auth_service(
    db: Session,
    mailer: Mailer,
    settings: Settings = default_settings,
    clock: Callable[[], datetime] = utcnow,
) -> AuthService:
    return AuthService(
        db=db,
        mailer=mailer,
        access_tokens=AccessTokenProvider(db, settings.JWT_SECRET, settings.JWT_ALGORITHM, clock=clock),
        clock=clock,
        access_token_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_token_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        verification_token_ttl=timedelta(hours=settings.EMAIL_VERIFY_TOKEN_EXPIRE_HOURS),
    )
