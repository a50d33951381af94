import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

TOKEN_BYTES = 32


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def db_datetime(db: Session, value: datetime) -> datetime:
    bind = db.get_bind()
    if bind and bind.dialect.name == "sqlite":
        return as_utc(value).replace(tzinfo=None)
    return value


def hash_verifier(verifier: str) -> str:
    return hashlib.sha256(verifier.encode("utf-8")).hexdigest()


def verifier_matches(verifier: str, token_hash: str) -> bool:
    return hmac.compare_digest(hash_verifier(verifier), token_hash)


@dataclass(frozen=True)
class SplitToken:
    """Two-part token: a public ``selector`` for lookup and a secret ``verifier``.

    Only the verifier's hash is ever persisted. The external form is
    ``"<selector>.<verifier>"``.
    """

    selector: str
    verifier: str

    @classmethod
    def generate(cls) -> "SplitToken":
        return cls(selector=secrets.token_hex(TOKEN_BYTES), verifier=secrets.token_hex(TOKEN_BYTES))

    @classmethod
    def parse(cls, raw: str | None) -> "SplitToken | None":
        """Return the token parts, or ``None`` when ``raw`` is not ``selector.verifier``."""
        if not raw:
            return None
        parts = raw.split(".")
        if len(parts) != 2 or not all(parts):
            return None
        return cls(selector=parts[0], verifier=parts[1])

    @property
    def verifier_hash(self) -> str:
        return hash_verifier(self.verifier)

    def __str__(self) -> str:
        return f"{self.selector}.{self.verifier}"
