"""Message ingestion - dedup insert plus conversation aggregate update.

Both statements run on the caller's cursor, so they commit or roll back
together.

Dedup relies on UNIQUE (instance_id, provider_message_id): a replayed
delivery hits ON CONFLICT DO NOTHING and leaves everything else untouched.
Messages without a provider id (NULL) never conflict.

The conversation update is a single UPDATE relative to the stored row:
- unread_count: +1 for incoming, reset to 0 for outgoing
- last_message / last_message_at: replaced only when the stored timestamp is
  NULL or not newer than this message (late older events keep the snapshot)
"""

from enum import Enum

from psycopg2.extensions import cursor as PgCursor

from evoinbox.domain.conversations import Conversation
from evoinbox.infra.db import execute, fetchone
from evoinbox.whatsapp.models import MessageRecord


class IngestResult(str, Enum):
    STORED = "stored"
    DUPLICATE_IGNORED = "duplicate_ignored"


def ingest_message(
    cur: PgCursor,
    conversation: Conversation,
    record: MessageRecord,
) -> IngestResult:
    """Persist a message once and update its conversation.

    Args:
        cur: Database cursor (within transaction).
        conversation: Owning conversation (from resolve_conversation).
        record: Normalized message.

    Returns:
        IngestResult.STORED, or IngestResult.DUPLICATE_IGNORED when the
        (instance_id, provider_message_id) pair was already stored.
    """
    inserted = fetchone(
        cur,
        """
        INSERT INTO messages (
            conversation_id, instance_id, provider_message_id, content,
            message_type, direction, status, sent_at, media_url
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (instance_id, provider_message_id) DO NOTHING
        RETURNING id
        """,
        (
            conversation.id,
            conversation.instance_id,
            record.provider_message_id,
            record.content,
            record.message_type,
            record.direction,
            record.status,
            record.sent_at,
            record.media_url,
        ),
    )
    if inserted is None:
        return IngestResult.DUPLICATE_IGNORED

    # All right-hand sides read the pre-update row
    execute(
        cur,
        """
        UPDATE conversations
        SET unread_count = CASE WHEN %(incoming)s THEN unread_count + 1 ELSE 0 END,
            last_message = CASE
                WHEN last_message_at IS NULL OR last_message_at <= %(sent_at)s
                THEN %(content)s ELSE last_message
            END,
            last_message_at = CASE
                WHEN last_message_at IS NULL OR last_message_at <= %(sent_at)s
                THEN %(sent_at)s ELSE last_message_at
            END,
            updated_at = now()
        WHERE id = %(conversation_id)s
        """,
        {
            "incoming": record.is_incoming,
            "sent_at": record.sent_at,
            "content": record.content,
            "conversation_id": conversation.id,
        },
    )
    return IngestResult.STORED
