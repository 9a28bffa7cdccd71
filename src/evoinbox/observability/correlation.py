"""Correlation IDs: one per webhook delivery, stamped on every log line it causes.

The ID lives in a ContextVar. Worker threads see it only when the submitting
code copies the context (contextvars.copy_context().run).
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Longer inbound values are replaced, not truncated
MAX_CORRELATION_ID_LENGTH = 128

_correlation_id: ContextVar[str] = ContextVar("evoinbox_correlation_id", default="")


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def accept_correlation_id(raw: str | None) -> str:
    """Caller-supplied ID if usable, else a fresh one.

    Empty, oversized or non-printable header values are not echoed back.
    """
    value = (raw or "").strip()
    if not value or len(value) > MAX_CORRELATION_ID_LENGTH or not value.isprintable():
        return new_correlation_id()
    return value


def get_correlation_id() -> str:
    """Current correlation ID, "" outside any scope."""
    return _correlation_id.get()


@contextmanager
def correlation_scope(cid: str) -> Iterator[str]:
    """Bind `cid` for the duration of the block, restoring the previous value."""
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)
