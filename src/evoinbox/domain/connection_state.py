"""Instance connection state - latest status/QR snapshot per gateway instance.

Upserts are unconditional: whatever status the provider reports is stored
verbatim, with no transition checks.
"""

from psycopg2.extensions import cursor as PgCursor

from evoinbox.infra.db import execute, fetchone

# Status recorded while an instance waits for its QR code to be scanned
QR_PENDING_STATUS = "qr_code"


def apply_connection_update(
    cur: PgCursor,
    instance_id: str,
    status: str,
    phone_number: str | None = None,
) -> None:
    """Record a `connection.update` status; keep the bound phone if none reported."""
    execute(
        cur,
        """
        INSERT INTO instance_connection_state (instance_id, status, phone_number, last_seen_at)
        VALUES (%s, %s, %s, now())
        ON CONFLICT (instance_id) DO UPDATE
        SET status = EXCLUDED.status,
            phone_number = COALESCE(EXCLUDED.phone_number, instance_connection_state.phone_number),
            last_seen_at = EXCLUDED.last_seen_at,
            updated_at = now()
        """,
        (instance_id, status, phone_number),
    )


def apply_qr_update(cur: PgCursor, instance_id: str, qr_payload: str) -> None:
    """Record a fresh QR payload and mark the instance as awaiting scan."""
    execute(
        cur,
        """
        INSERT INTO instance_connection_state (instance_id, status, qr_code, last_seen_at)
        VALUES (%s, %s, %s, now())
        ON CONFLICT (instance_id) DO UPDATE
        SET status = EXCLUDED.status,
            qr_code = EXCLUDED.qr_code,
            last_seen_at = EXCLUDED.last_seen_at,
            updated_at = now()
        """,
        (instance_id, QR_PENDING_STATUS, qr_payload),
    )


def get_connection_state(cur: PgCursor, instance_id: str) -> dict | None:
    """Get the stored snapshot for an instance, None if never seen."""
    row = fetchone(
        cur,
        """
        SELECT instance_id, status, qr_code, phone_number, last_seen_at
        FROM instance_connection_state
        WHERE instance_id = %s
        """,
        (instance_id,),
    )
    if row is None:
        return None

    return {
        "instance_id": row[0],
        "status": row[1],
        "qr_code": row[2],
        "phone_number": row[3],
        "last_seen_at": row[4],
    }
