"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without triggering
alembic.context at import time.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_PREFIX = "postgresql+psycopg2://"


def to_sqlalchemy_url(url: str, db_password: str = "") -> str:
    """Turn a DATABASE_URL into a SQLAlchemy psycopg2 URL.

    - postgres:// and postgresql:// gain the +psycopg2 driver suffix
    - db_password is injected when the URL has none
    """
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = _DRIVER_PREFIX + url[len("postgresql://"):]
    if not url.startswith(_DRIVER_PREFIX):
        raise RuntimeError("DATABASE_URL must be a postgres:// or postgresql:// URL for migrations")

    parsed = urlparse(url)
    if db_password and not parsed.password:
        netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(db_password)}@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        url = urlunparse(parsed._replace(netloc=netloc))
    return url


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    return to_sqlalchemy_url(url, os.environ.get("DB_PASSWORD", ""))
