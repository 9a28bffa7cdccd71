"""Shared test helper functions for evoinbox tests.

This module contains helpers that can be imported by both conftest.py and
individual test files. These are NOT fixtures - they are regular functions
and classes.
"""

from __future__ import annotations

import threading


class RecordingSender:
    """Outbound sender double: records calls, returns a provider-like response."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self.fail = fail
        self._lock = threading.Lock()

    def send_message(self, instance_id: str, recipient_phone: str, text: str) -> dict:
        with self._lock:
            self.calls.append((instance_id, recipient_phone, text))
            n = len(self.calls)
        if self.fail:
            raise RuntimeError("provider unavailable")
        return {"key": {"id": f"REPLY{n:04d}", "fromMe": True}, "status": "PENDING"}


def count_rows(conn, table: str, where: str = "TRUE", params: tuple = ()) -> int:
    """Count rows in `table` on a committed snapshot."""
    with conn.cursor() as cur:
        cur.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params)
        count = cur.fetchone()[0]
    conn.commit()
    return count


def make_upsert_body(
    message_id: str | None,
    *,
    instance: str = "inst-test",
    remote_jid: str = "5511999998888@s.whatsapp.net",
    text: str = "hello",
    from_me: bool = False,
    timestamp: int = 1_760_000_000,
    push_name: str | None = "Maria",
) -> dict:
    """Build an Evolution messages.upsert webhook body."""
    key = {"remoteJid": remote_jid, "fromMe": from_me}
    if message_id is not None:
        key["id"] = message_id
    data = {
        "key": key,
        "message": {"conversation": text},
        "messageTimestamp": timestamp,
    }
    if push_name is not None:
        data["pushName"] = push_name
    return {"event": "messages.upsert", "instance": instance, "data": data}
