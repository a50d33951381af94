"""Expired-token cleanup for a cron-style caller.

Run with ``rythmix-maintenance`` or ``python -m rythmix.maintenance``.
"""

import logging

from rythmix.models.database import SessionLocal
from rythmix.services.auth_service import build_auth_service
from rythmix.services.email_service import SmtpMailer

logger = logging.getLogger("rythmix.maintenance")


def clean_expired(db) -> dict[str, int]:
    service = build_auth_service(db, SmtpMailer())
    return {
        "refresh_tokens": service.clean_expired_tokens(),
        "email_verification_tokens": service.clean_expired_verification_tokens(),
        "access_tokens": service.clean_expired_access_tokens(),
    }


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    db = SessionLocal()
    try:
        counts = clean_expired(db)
    finally:
        db.close()
    logger.info(
        "Token cleanup finished: %s",
        ", ".join(f"{name}={count}" for name, count in counts.items()),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
