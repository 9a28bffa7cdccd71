"""Conversation resolution - one thread per (contact, instance) pair."""

from dataclasses import dataclass
from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from evoinbox.infra.db import fetchone

_COLUMNS = (
    "id, contact_id, instance_id, status, unread_count, last_message, last_message_at"
)


@dataclass(frozen=True)
class Conversation:
    id: str
    contact_id: str
    instance_id: str
    status: str
    unread_count: int
    last_message: str | None
    last_message_at: datetime | None


def _row_to_conversation(row: tuple) -> Conversation:
    return Conversation(
        id=str(row[0]),
        contact_id=str(row[1]),
        instance_id=row[2],
        status=row[3],
        unread_count=row[4],
        last_message=row[5],
        last_message_at=row[6],
    )


def resolve_conversation(cur: PgCursor, contact_id: str, instance_id: str) -> Conversation:
    """Find or create the conversation for (contact_id, instance_id).

    Inserts with status='active', unread_count=0. A concurrent insert of the
    same pair makes ours a no-op (UNIQUE (contact_id, instance_id)), after
    which the winner's row is read back.

    Args:
        cur: Database cursor (within transaction).
        contact_id: Contact UUID as string.
        instance_id: Gateway instance name.

    Returns:
        The stored conversation.
    """
    row = fetchone(
        cur,
        f"""
        INSERT INTO conversations (contact_id, instance_id, status, unread_count)
        VALUES (%s, %s, 'active', 0)
        ON CONFLICT (contact_id, instance_id) DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (contact_id, instance_id),
    )
    if row is None:
        row = fetchone(
            cur,
            f"""
            SELECT {_COLUMNS} FROM conversations
            WHERE contact_id = %s AND instance_id = %s
            """,
            (contact_id, instance_id),
        )
    return _row_to_conversation(row)


def get_conversation(cur: PgCursor, conversation_id: str) -> Conversation | None:
    """Get conversation by ID, None if not found."""
    row = fetchone(cur, f"SELECT {_COLUMNS} FROM conversations WHERE id = %s", (conversation_id,))
    return _row_to_conversation(row) if row else None
