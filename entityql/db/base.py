"""SQLAlchemy engine configuration."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine

from entityql.config import get_settings


def get_database_url() -> str:
    """Return the configured database URL."""

    return get_settings().database_url


def get_engine(url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine for the given or configured database."""

    return create_engine(
        url or get_database_url(),
        echo=get_settings().echo_sql,
        pool_pre_ping=True,
    )
