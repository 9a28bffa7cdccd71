"""Evolution API adapter - validate and normalize webhook payloads."""

from typing import Any

from evoinbox.infra.time import from_epoch_seconds, utc_now

from .models import MessageRecord, MessageType, WebhookEnvelope

# Checked in this order; first present sub-payload decides the kind
_MEDIA_KINDS: tuple[tuple[str, MessageType], ...] = (
    ("imageMessage", "image"),
    ("videoMessage", "video"),
    ("audioMessage", "audio"),
    ("documentMessage", "document"),
)


class InvalidEnvelopeError(Exception):
    """Raised when the webhook body is not a usable `{event, instance, data}` object."""

    pass


class InvalidPayloadError(Exception):
    """Raised when an event's `data` has invalid shape."""

    pass


def parse_envelope(body: Any) -> WebhookEnvelope:
    """Validate the outer webhook envelope.

    Only the envelope is checked here. Whether `event` is a kind we handle is
    decided by the caller, so unknown events still parse.

    Raises:
        InvalidEnvelopeError: If the body is not an object, `event` or
            `instance` is missing/empty, or `data` is not an object.
    """
    if not isinstance(body, dict):
        raise InvalidEnvelopeError("body must be a JSON object")

    event = body.get("event")
    if not event or not isinstance(event, str):
        raise InvalidEnvelopeError("missing or invalid event")

    instance = body.get("instance")
    if not instance or not isinstance(instance, str):
        raise InvalidEnvelopeError("missing or invalid instance")

    data = body.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidEnvelopeError("data must be a JSON object")

    return WebhookEnvelope(event=event, instance_id=instance, payload=data)


def normalize_phone(remote_jid: str) -> str:
    """Strip the transport suffix from a JID.

    `5511999998888@s.whatsapp.net` -> `5511999998888`
    `5511999998888:12@s.whatsapp.net` -> `5511999998888` (multi-device)
    """
    phone = remote_jid.split("@", 1)[0]
    return phone.split(":", 1)[0].strip()


def classify_message_kind(message: dict[str, Any] | None) -> MessageType:
    """Classify a provider `message` object into a message type."""
    if not message:
        return "text"
    if message.get("conversation") or message.get("extendedTextMessage"):
        return "text"
    for key, kind in _MEDIA_KINDS:
        if message.get(key):
            return kind
    return "text"


def extract_text(message: dict[str, Any] | None) -> str:
    """Extract the body text: plain, extended, or media caption."""
    if not message:
        return ""
    text = message.get("conversation")
    if text:
        return str(text)
    extended = message.get("extendedTextMessage") or {}
    if extended.get("text"):
        return str(extended["text"])
    for key, _ in _MEDIA_KINDS:
        sub = message.get(key) or {}
        if isinstance(sub, dict) and sub.get("caption"):
            return str(sub["caption"])
    return ""


def _extract_media_url(message: dict[str, Any]) -> str | None:
    for key, _ in _MEDIA_KINDS:
        sub = message.get(key)
        if isinstance(sub, dict) and sub.get("url"):
            return str(sub["url"])
    return None


def message_record_from_upsert(instance_id: str, data: dict[str, Any]) -> MessageRecord:
    """Build a MessageRecord from `messages.upsert` data.

    Args:
        instance_id: Gateway instance the event was delivered for.
        data: The envelope's `data` object.

    Returns:
        MessageRecord with PII (remote phone, content) for in-process use.

    Raises:
        InvalidPayloadError: If `key.remoteJid` is missing.
    """
    key = data.get("key") or {}
    if not isinstance(key, dict):
        raise InvalidPayloadError("invalid key")

    remote_jid = key.get("remoteJid")
    if not remote_jid or not isinstance(remote_jid, str):
        raise InvalidPayloadError("missing remoteJid")

    phone = normalize_phone(remote_jid)
    if not phone:
        raise InvalidPayloadError("missing remoteJid")

    message_id = key.get("id")
    if not isinstance(message_id, str) or not message_id:
        message_id = None

    from_me = bool(key.get("fromMe"))
    message = data.get("message") or {}
    if not isinstance(message, dict):
        message = {}

    push_name = data.get("pushName")
    if not isinstance(push_name, str) or not push_name.strip():
        push_name = None

    status = data.get("status")
    if not isinstance(status, str) or not status:
        status = "sent" if from_me else "delivered"

    return MessageRecord(
        instance_id=instance_id,
        provider_message_id=message_id,
        remote_phone=phone,
        content=extract_text(message),
        message_type=classify_message_kind(message),
        direction="outgoing" if from_me else "incoming",
        status=status,
        sent_at=from_epoch_seconds(data.get("messageTimestamp")) or utc_now(),
        push_name=push_name.strip() if push_name else None,
        media_url=_extract_media_url(message),
    )


def connection_state_from_update(data: dict[str, Any]) -> tuple[str, str | None]:
    """Extract `(state, phone_number)` from `connection.update` data.

    Raises:
        InvalidPayloadError: If `state` is missing.
    """
    state = data.get("state")
    if not state or not isinstance(state, str):
        raise InvalidPayloadError("missing state")

    wuid = data.get("wuid")
    phone = normalize_phone(wuid) if isinstance(wuid, str) and wuid else None
    return state, phone or None


def qr_from_update(data: dict[str, Any]) -> str:
    """Extract the QR payload from `qr.updated` data.

    Accepts `{qr}` as well as the nested `{qrcode: {base64 | code}}` form.

    Raises:
        InvalidPayloadError: If no QR payload is present.
    """
    qr = data.get("qr")
    if not qr:
        nested = data.get("qrcode")
        if isinstance(nested, dict):
            qr = nested.get("base64") or nested.get("code")
    if not qr or not isinstance(qr, str):
        raise InvalidPayloadError("missing qr")
    return qr
