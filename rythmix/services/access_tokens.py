import logging
import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from rythmix.models import AccessToken, User
from rythmix.services.auth_tokens import as_utc, db_datetime, utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class IssuedAccessToken:
    value: str
    record: AccessToken

    @property
    def identifier(self) -> str:
        return self.record.identifier


class AccessTokenProvider:
    """Issues signed bearer tokens that can each be revoked by identifier.

    The JWT carries the identifier in its ``jti`` claim; a token is only
    honoured while the matching ``access_tokens`` row exists and is unexpired.
    """

    def __init__(
        self,
        db: Session,
        secret: str,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.secret = secret
        self.algorithm = algorithm
        self.clock = clock

    def create(
        self,
        user: User,
        expires_in: timedelta,
        scopes: Sequence[str] = ("*",),
    ) -> IssuedAccessToken:
        expires_at = self.clock() + expires_in
        record = AccessToken(
            identifier=secrets.token_hex(16),
            user_id=user.id,
            scopes=list(scopes),
            expires_at=expires_at,
        )
        self.db.add(record)
        self.db.flush()

        claims = {
            "sub": str(user.id),
            "jti": record.identifier,
            "type": ACCESS_TOKEN_TYPE,
            "scopes": list(scopes),
            "exp": expires_at,
        }
        value = jwt.encode(claims, self.secret, algorithm=self.algorithm)
        return IssuedAccessToken(value=value, record=record)

    def verify(self, raw_token: str) -> AccessToken | None:
        try:
            payload = jwt.decode(raw_token, self.secret, algorithms=[self.algorithm])
        except JWTError:
            return None
        if payload.get("type") != ACCESS_TOKEN_TYPE:
            return None
        identifier = payload.get("jti")
        sub = payload.get("sub")
        if not identifier or not sub:
            return None

        record = (
            self.db.query(AccessToken)
            .join(User, User.id == AccessToken.user_id)
            .filter(
                AccessToken.identifier == identifier,
                AccessToken.user_id == str(sub),
                User.deleted_at.is_(None),
            )
            .first()
        )
        if not record:
            return None
        now = self.clock()
        if as_utc(record.expires_at) <= now:
            return None
        record.last_used_at = db_datetime(self.db, now)
        self.db.flush()
        return record

    def delete(self, user: User, identifier: str) -> bool:
        deleted = (
            self.db.query(AccessToken)
            .filter(AccessToken.user_id == user.id, AccessToken.identifier == identifier)
            .delete(synchronize_session=False)
        )
        return deleted > 0

    def prune_expired(self) -> int:
        deleted = (
            self.db.query(AccessToken)
            .filter(AccessToken.expires_at <= db_datetime(self.db, self.clock()))
            .delete(synchronize_session=False)
        )
        if deleted:
            logger.info("Pruned %s expired access tokens", deleted)
        return deleted
