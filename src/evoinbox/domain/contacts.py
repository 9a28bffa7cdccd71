"""Contact resolution - phone identifier to a single contact row.

Concurrent deliveries for a brand-new phone converge on one row: the write is
a single INSERT ... ON CONFLICT against the UNIQUE (phone) constraint, never a
read followed by an insert.
"""

from dataclasses import dataclass

from psycopg2.extensions import cursor as PgCursor

from evoinbox.infra.db import fetchone
from evoinbox.whatsapp.evolution_adapter import normalize_phone

CONTACT_SOURCE = "whatsapp"

_COLUMNS = "id, phone, name, source"


@dataclass(frozen=True)
class Contact:
    id: str
    phone: str
    name: str | None
    source: str


def _row_to_contact(row: tuple) -> Contact:
    return Contact(id=str(row[0]), phone=row[1], name=row[2], source=row[3])


def resolve_contact(
    cur: PgCursor,
    phone_identifier: str,
    observed_name: str | None = None,
) -> Contact:
    """Find or create the contact for a phone identifier.

    - New phone: inserted with name = observed_name (or the phone itself).
    - Existing phone: name replaced only when observed_name is non-empty and
      differs from the stored one; otherwise the row is left untouched.

    Args:
        cur: Database cursor (within transaction).
        phone_identifier: Raw phone or JID; the transport suffix is stripped.
        observed_name: Display name reported by the provider, if any.

    Returns:
        The stored (possibly renamed) contact.

    Raises:
        ValueError: If the identifier is empty after normalization.
    """
    phone = normalize_phone(phone_identifier)
    if not phone:
        raise ValueError("phone identifier is empty")

    name = (observed_name or "").strip() or None

    row = fetchone(
        cur,
        f"""
        INSERT INTO contacts (phone, name, source)
        VALUES (%(phone)s, COALESCE(%(name)s, %(phone)s), %(source)s)
        ON CONFLICT (phone) DO UPDATE
        SET name = EXCLUDED.name, updated_at = now()
        WHERE %(name)s::text IS NOT NULL
          AND contacts.name IS DISTINCT FROM %(name)s::text
        RETURNING {_COLUMNS}
        """,
        {"phone": phone, "name": name, "source": CONTACT_SOURCE},
    )
    if row is not None:
        return _row_to_contact(row)

    # Conflict with nothing to change: the row exists and is committed
    return _row_to_contact(
        fetchone(cur, f"SELECT {_COLUMNS} FROM contacts WHERE phone = %s", (phone,))
    )
