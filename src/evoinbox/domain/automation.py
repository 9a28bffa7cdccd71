"""Keyword automation - at most one canned reply per stored incoming message.

Rules are read-only here. They are evaluated in creation order and the first
rule with a matching keyword wins; evaluation stops there.
"""

import os
from dataclasses import dataclass
from typing import Any, Iterable

from psycopg2.extensions import cursor as PgCursor

from evoinbox.infra.db import fetchall
from evoinbox.observability.logging import get_logger
from evoinbox.observability.redaction import mask_tail, safe_log_context
from evoinbox.whatsapp.outbound import OutboundSender

logger = get_logger(__name__)

TRIGGER_KEYWORD = "keyword"


@dataclass(frozen=True)
class AutomationRule:
    id: str
    keywords: tuple[str, ...]
    response_message: str

    def matches(self, text: str) -> bool:
        """Case-insensitive substring match of any keyword. Blank keywords never match."""
        lowered = text.lower()
        return any(kw and kw.strip() and kw.lower() in lowered for kw in self.keywords)


@dataclass(frozen=True)
class AutomationAction:
    """Reply the outbound sender must deliver."""

    instance_id: str
    recipient: str
    text: str
    rule_id: str
    conversation_id: str


def automation_enabled() -> bool:
    """AUTOMATION_ENABLED env var (default on)."""
    return os.environ.get("AUTOMATION_ENABLED", "true").strip().lower() not in ("0", "false", "no", "off")


def load_active_keyword_rules(cur: PgCursor) -> list[AutomationRule]:
    """Active keyword rules in deterministic creation order."""
    rows = fetchall(
        cur,
        """
        SELECT id, trigger_keywords, response_message
        FROM automation_rules
        WHERE is_active AND trigger_type = %s
        ORDER BY created_at, id
        """,
        (TRIGGER_KEYWORD,),
    )
    return [
        AutomationRule(id=str(row[0]), keywords=tuple(row[1] or ()), response_message=row[2])
        for row in rows
    ]


def select_rule(rules: Iterable[AutomationRule], text: str | None) -> AutomationRule | None:
    """Return the first rule matching `text`, or None."""
    if not text:
        return None
    for rule in rules:
        if rule.matches(text):
            return rule
    return None


def match_automation(
    cur: PgCursor,
    *,
    conversation_id: str,
    instance_id: str,
    recipient: str,
    text: str | None,
) -> AutomationAction | None:
    """Evaluate active keyword rules against an incoming message.

    Callers must only pass stored incoming messages (never outgoing ones or
    duplicates).

    Args:
        cur: Database cursor.
        conversation_id: Conversation the message was stored in.
        instance_id: Gateway instance to reply through.
        recipient: Original sender's phone.
        text: Incoming message text.

    Returns:
        AutomationAction for the first matching rule, or None.
    """
    rule = select_rule(load_active_keyword_rules(cur), text)
    if rule is None:
        return None

    logger.info(
        "automation rule matched",
        extra={
            "extra_fields": safe_log_context(
                rule_id=rule.id,
                conversation_id=conversation_id,
            )
        },
    )
    return AutomationAction(
        instance_id=instance_id,
        recipient=recipient,
        text=rule.response_message,
        rule_id=rule.id,
        conversation_id=conversation_id,
    )


def dispatch_automation(action: AutomationAction, sender: OutboundSender) -> dict[str, Any] | None:
    """Hand the action to the outbound sender.

    Failures are logged and swallowed: the incoming message stays stored and
    nothing is re-queued.

    Returns:
        Provider send result, or None if the send failed.
    """
    log_ctx = dict(
        rule_id=action.rule_id,
        conversation_id=action.conversation_id,
        instance_id=action.instance_id,
        to_tail=mask_tail(action.recipient),
    )
    try:
        result = sender.send_message(action.instance_id, action.recipient, action.text)
    except Exception as e:
        logger.error(
            "automation dispatch failed",
            extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
        )
        return None

    logger.info(
        "automation dispatched",
        extra={"extra_fields": safe_log_context(**log_ctx)},
    )
    return result if isinstance(result, dict) else {}
