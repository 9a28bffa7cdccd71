"""Evolution API webhook route.

ACK contract with the provider:
- 200 {"success": true} for every syntactically valid envelope, including
  unknown event kinds, duplicates, handler failures and timeouts. Provider
  retries would not fix a datastore outage; failures are logged for replay.
- 500 {"error": ...} only when the body is not a usable envelope.

Security:
- Message text and sender numbers never reach the logs in clear
- Optional shared secret (EVOLUTION_WEBHOOK_SECRET / X-Webhook-Secret)
"""

import asyncio
import contextvars
import functools
import hmac
import os
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from evoinbox.domain.events import process_event
from evoinbox.observability.correlation import get_correlation_id
from evoinbox.observability.logging import get_logger
from evoinbox.observability.redaction import safe_log_context
from evoinbox.whatsapp.evolution_adapter import InvalidEnvelopeError, InvalidPayloadError, parse_envelope
from evoinbox.whatsapp.outbound import EvolutionSender, OutboundSender

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_WORKERS = 8


def _get_workers() -> int:
    """Handler pool size from WEBHOOK_WORKERS."""
    try:
        value = int(os.environ.get("WEBHOOK_WORKERS", ""))
    except ValueError:
        return DEFAULT_WORKERS
    return value if value > 0 else DEFAULT_WORKERS


# Handler pool. Jobs are never cancelled: a job still queued or running when
# the timeout expires runs to completion after the ACK.
_executor = ThreadPoolExecutor(
    max_workers=_get_workers(),
    thread_name_prefix="evolution-webhook",
)

# Shared across requests; reads its config at send time
_sender = EvolutionSender()


def _get_sender() -> OutboundSender:
    """Get outbound sender instance (allows test injection)."""
    return _sender


def _get_timeout() -> float:
    """Per-event handling timeout from WEBHOOK_TIMEOUT_SECONDS."""
    raw = os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "")
    try:
        value = float(raw) if raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_TIMEOUT_SECONDS


def _log_late_outcome(log_ctx: dict[str, Any], future: Future) -> None:
    """Report how an event that outlived its timeout finished."""
    error = future.exception()
    if error is None:
        logger.info(
            "event handled after timeout",
            extra={"extra_fields": safe_log_context(**log_ctx)},
        )
        return
    logger.error(
        "event processing failed after timeout",
        exc_info=error,
        extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(error).__name__)},
    )


def _ack() -> JSONResponse:
    return JSONResponse(status_code=200, content={"success": True})


def _reject(reason: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": reason})


@router.post("/evolution")
async def evolution_webhook(
    request: Request,
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> JSONResponse:
    """Receive one Evolution API webhook delivery.

    Returns:
        200 {"success": true} for any valid envelope.
        401 if EVOLUTION_WEBHOOK_SECRET is set and the header does not match.
        500 {"error": ...} for unparseable or malformed envelopes.
    """
    correlation_id = get_correlation_id()

    expected_secret = os.environ.get("EVOLUTION_WEBHOOK_SECRET", "")
    if expected_secret and (
        not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected_secret)
    ):
        logger.warning(
            "evolution secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=401, content={"error": "unauthorized"})

    # 1. Parse JSON
    try:
        body: Any = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _reject("invalid json")

    # 2. Validate envelope
    try:
        envelope = parse_envelope(body)
    except InvalidEnvelopeError as e:
        logger.warning(
            "invalid evolution envelope",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, reason=str(e))},
        )
        return _reject(str(e))

    log_ctx = dict(
        correlationId=correlation_id,
        event=envelope.event,
        instance_id=envelope.instance_id,
    )
    logger.info("evolution event received", extra={"extra_fields": safe_log_context(**log_ctx)})

    # 3. Hand off to the pool and wait up to the per-event timeout.
    # The ACK does not depend on the outcome.
    call = functools.partial(process_event, envelope, sender=_get_sender())
    future = _executor.submit(contextvars.copy_context().run, call)

    # Blocking wait on a short-lived thread: returns at the timeout without
    # touching the job itself
    loop = asyncio.get_running_loop()
    done, _ = await loop.run_in_executor(
        None, functools.partial(wait, [future], timeout=_get_timeout())
    )
    if not done:
        future.add_done_callback(functools.partial(_log_late_outcome, log_ctx))
        logger.warning(
            "event handling timed out, continuing in background",
            extra={"extra_fields": safe_log_context(**log_ctx)},
        )
        return _ack()

    try:
        future.result()
    except InvalidPayloadError as e:
        logger.warning(
            "invalid event data",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx, reason=str(e), data=envelope.payload
                )
            },
        )
    except Exception:
        logger.exception(
            "event processing failed",
            extra={"extra_fields": safe_log_context(**log_ctx, data=envelope.payload)},
        )

    return _ack()
