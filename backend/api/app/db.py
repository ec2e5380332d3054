# backend/api/app/db.py
from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from app.config import get_settings
from app.tables import metadata

_engine: Engine | None = None


def get_engine() -> Engine:
    """Process-wide engine for DATABASE_URL (or DB_URL), built on first use."""
    global _engine

    if _engine is not None:
        return _engine

    db_url = get_settings().database_url
    if not db_url:
        raise RuntimeError(
            "DATABASE_URL is not set. Put it in backend/api/.env, point ENV_PATH at an env file, "
            "or export it in the environment."
        )

    _engine = create_engine(db_url, pool_pre_ping=True, future=True)
    return _engine


def db_ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def init_schema(engine: Engine) -> None:
    """Create all tables directly. Production schemas go through alembic."""
    metadata.create_all(engine)
