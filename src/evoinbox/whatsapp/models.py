"""Evolution webhook models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

MessageType = Literal["text", "image", "video", "audio", "document"]
Direction = Literal["incoming", "outgoing"]


class EventKind(str, Enum):
    """Webhook event kinds this service acts on.

    Anything else the provider sends is acknowledged and ignored.
    """

    MESSAGES_UPSERT = "messages.upsert"
    CONNECTION_UPDATE = "connection.update"
    QR_UPDATED = "qr.updated"

    @classmethod
    def lookup(cls, value: str) -> "EventKind | None":
        """Map a raw `event` value to a kind, None when unrecognized.

        Evolution sends either `messages.upsert` or `MESSAGES_UPSERT` depending
        on the instance's webhook settings; both are accepted.
        """
        normalized = value.strip().lower().replace("_", ".")
        try:
            return cls(normalized)
        except ValueError:
            return None


@dataclass(frozen=True)
class WebhookEnvelope:
    """Decoded `{event, instance, data}` webhook delivery."""

    event: str
    instance_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> EventKind | None:
        return EventKind.lookup(self.event)


@dataclass(frozen=True)
class MessageRecord:
    """One message extracted from a `messages.upsert` payload.

    `remote_phone` and `content` are PII: never log them in clear.
    """

    instance_id: str
    provider_message_id: str | None
    remote_phone: str
    content: str
    message_type: MessageType
    direction: Direction
    status: str
    sent_at: datetime
    push_name: str | None = None
    media_url: str | None = None

    @property
    def is_incoming(self) -> bool:
        return self.direction == "incoming"
