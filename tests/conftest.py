"""Shared pytest fixtures for evoinbox tests."""
import sys
sys.dont_write_bytecode = True

from pathlib import Path  # noqa: E402

import pytest  # noqa: E402

from helpers import RecordingSender  # noqa: E402

SCHEMA_SQL = Path(__file__).resolve().parents[1] / "migrations" / "sql" / "001_initial.sql"

# Child tables first
_TABLES = (
    "messages",
    "conversations",
    "contacts",
    "automation_rules",
    "instance_connection_state",
)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def failing_sender():
    return RecordingSender(fail=True)


def _truncate(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(f"TRUNCATE {', '.join(_TABLES)} CASCADE")
    conn.commit()


@pytest.fixture
def db_conn():
    """Connection to a test database with the schema applied and tables emptied.

    WARNING: truncates the evoinbox tables. Point DATABASE_URL at a test DB.
    """
    from evoinbox.infra.db import get_conn

    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL.read_text(encoding="utf-8"))
        conn.commit()
        _truncate(conn)
        yield conn
        conn.rollback()
        _truncate(conn)
    finally:
        conn.close()
