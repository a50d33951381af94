"""Startup schema setup for the auth store."""

import logging
import time
from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from rythmix.config import settings
from rythmix.models.database import Base, _normalize_database_url, engine
from rythmix.models import AccessToken, EmailVerificationToken, RefreshToken, User  # noqa: F401 - register models

logger = logging.getLogger(__name__)

AUTH_TABLES = ("users", "access_tokens", "refresh_tokens", "email_verification_tokens")


def wait_for_db(bind: Engine | None = None, retries: int | None = None, retry_delay_seconds: int | None = None) -> None:
    bind = bind or engine
    retries = retries or settings.DB_CONNECT_RETRIES
    delay = settings.DB_CONNECT_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds

    for attempt in range(1, retries + 1):
        try:
            with bind.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as exc:
            logger.warning("Auth store not reachable (attempt %s/%s): %s", attempt, retries, exc)
            if attempt == retries:
                raise RuntimeError(
                    f"Auth store is unreachable after {retries} attempts. Check DATABASE_URL."
                ) from exc
            time.sleep(delay)
        else:
            logger.info("Auth store reachable on attempt %s", attempt)
            return


def missing_auth_tables(bind: Engine) -> list[str]:
    present = set(inspect(bind).get_table_names())
    return [name for name in AUTH_TABLES if name not in present]


def init_db(bind: Engine | None = None) -> None:
    """Make the users and token tables available before serving requests.

    SQLite stores (tests, local runs) are built from the models directly;
    anything else is brought to the Alembic head first.
    """
    bind = bind or engine
    wait_for_db(bind)
    if not bind.url.drivername.startswith("sqlite"):
        run_migrations()
    Base.metadata.create_all(bind=bind)

    missing = missing_auth_tables(bind)
    if missing:
        raise RuntimeError(f"Auth schema is incomplete, missing tables: {', '.join(missing)}")
    logger.info("Auth schema ready (%s)", ", ".join(AUTH_TABLES))


def run_migrations() -> None:
    from alembic import command
    from alembic.config import Config

    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError(f"Alembic configuration not found at {alembic_ini}")

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(project_root / "alembic"))
    config.set_main_option("sqlalchemy.url", _normalize_database_url(settings.DATABASE_URL).replace("%", "%%"))
    command.upgrade(config, "head")
    logger.info("Auth schema migrated to head")
