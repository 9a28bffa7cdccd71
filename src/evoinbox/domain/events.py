"""Webhook event processing - kind -> handler table and the message pipeline.

messages.upsert:   contact -> conversation -> message -> automation match
connection.update: instance connection state
qr.updated:        instance QR payload

Handlers run inside one transaction and only *decide* on automation. The
reply is dispatched after commit so a slow or failing provider never holds
database locks or rolls back the stored message.
"""

from dataclasses import dataclass
from typing import Callable

from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

from evoinbox.domain.automation import (
    AutomationAction,
    automation_enabled,
    dispatch_automation,
    match_automation,
)
from evoinbox.domain.connection_state import apply_connection_update, apply_qr_update
from evoinbox.domain.contacts import resolve_contact
from evoinbox.domain.conversations import get_conversation, resolve_conversation
from evoinbox.domain.messages import IngestResult, ingest_message
from evoinbox.infra.db import txn
from evoinbox.infra.time import utc_now
from evoinbox.observability.logging import get_logger
from evoinbox.observability.redaction import mask_tail, safe_log_context
from evoinbox.whatsapp.evolution_adapter import (
    connection_state_from_update,
    message_record_from_upsert,
    qr_from_update,
)
from evoinbox.whatsapp.models import EventKind, MessageRecord, WebhookEnvelope
from evoinbox.whatsapp.outbound import OutboundSender, provider_message_id

logger = get_logger(__name__)

EventHandler = Callable[[PgCursor, WebhookEnvelope], AutomationAction | None]


@dataclass(frozen=True)
class EventOutcome:
    handled: bool
    action: AutomationAction | None = None
    reply_sent: bool = False


def handle_messages_upsert(cur: PgCursor, envelope: WebhookEnvelope) -> AutomationAction | None:
    """Store one upserted message; return the automation reply to send, if any.

    Raises:
        InvalidPayloadError: If the message data has no sender JID.
    """
    record = message_record_from_upsert(envelope.instance_id, envelope.payload)

    # pushName on our own messages is the instance owner's name, not the contact's
    observed_name = record.push_name if record.is_incoming else None
    contact = resolve_contact(cur, record.remote_phone, observed_name)
    conversation = resolve_conversation(cur, contact.id, envelope.instance_id)
    result = ingest_message(cur, conversation, record)

    logger.info(
        "message ingested",
        extra={
            "extra_fields": safe_log_context(
                instance_id=envelope.instance_id,
                conversation_id=conversation.id,
                result=result.value,
                direction=record.direction,
                message_type=record.message_type,
                contact_tail=mask_tail(contact.phone),
            )
        },
    )

    if result is not IngestResult.STORED or not record.is_incoming:
        return None
    if not automation_enabled():
        return None

    return match_automation(
        cur,
        conversation_id=conversation.id,
        instance_id=envelope.instance_id,
        recipient=contact.phone,
        text=record.content,
    )


def handle_connection_update(cur: PgCursor, envelope: WebhookEnvelope) -> None:
    status, phone_number = connection_state_from_update(envelope.payload)
    apply_connection_update(cur, envelope.instance_id, status, phone_number)
    logger.info(
        "connection state updated",
        extra={"extra_fields": safe_log_context(instance_id=envelope.instance_id, status=status)},
    )


def handle_qr_updated(cur: PgCursor, envelope: WebhookEnvelope) -> None:
    apply_qr_update(cur, envelope.instance_id, qr_from_update(envelope.payload))
    logger.info(
        "qr code updated",
        extra={"extra_fields": safe_log_context(instance_id=envelope.instance_id)},
    )


EVENT_HANDLERS: dict[EventKind, EventHandler] = {
    EventKind.MESSAGES_UPSERT: handle_messages_upsert,
    EventKind.CONNECTION_UPDATE: handle_connection_update,
    EventKind.QR_UPDATED: handle_qr_updated,
}


def record_automation_reply(
    cur: PgCursor,
    action: AutomationAction,
    send_result: dict | None,
) -> IngestResult | None:
    """Store a delivered automation reply as an outgoing message.

    Uses the provider's message id, so the provider's later `fromMe` echo of
    the same reply is deduplicated against it.
    """
    conversation = get_conversation(cur, action.conversation_id)
    if conversation is None:
        return None

    record = MessageRecord(
        instance_id=action.instance_id,
        provider_message_id=provider_message_id(send_result),
        remote_phone=action.recipient,
        content=action.text,
        message_type="text",
        direction="outgoing",
        status="sent",
        sent_at=utc_now(),
    )
    return ingest_message(cur, conversation, record)


def process_event(
    envelope: WebhookEnvelope,
    *,
    sender: OutboundSender,
    conn: PgConnection | None = None,
) -> EventOutcome:
    """Run the handler registered for the envelope's kind.

    Unknown kinds are a logged no-op with no database access.

    Args:
        envelope: Parsed webhook envelope.
        sender: Outbound collaborator for automation replies.
        conn: Optional connection; a fresh one per transaction when None.

    Returns:
        EventOutcome describing what happened.
    """
    kind = envelope.kind
    handler = EVENT_HANDLERS.get(kind) if kind is not None else None
    if handler is None:
        logger.info(
            "unhandled event ignored",
            extra={
                "extra_fields": safe_log_context(
                    event=envelope.event,
                    instance_id=envelope.instance_id,
                )
            },
        )
        return EventOutcome(handled=False)

    with txn(conn) as cur:
        action = handler(cur, envelope)

    if action is None:
        return EventOutcome(handled=True)

    send_result = dispatch_automation(action, sender)
    if send_result is None:
        return EventOutcome(handled=True, action=action)

    with txn(conn) as cur:
        record_automation_reply(cur, action, send_result)
    return EventOutcome(handled=True, action=action, reply_sent=True)
