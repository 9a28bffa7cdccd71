"""Outbound WhatsApp messaging via Evolution API.

Security: NEVER log recipient or text. Only log hashes and lengths.
"""

import hashlib
import os
import time
from typing import Any, Protocol

import requests

from evoinbox.observability.logging import get_logger
from evoinbox.observability.redaction import safe_log_context

from .evolution_adapter import normalize_phone

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 5

# Retry config
MAX_RETRIES = 1
RETRY_DELAY = 0.2


class OutboundSendError(Exception):
    """Raised when the provider rejects or never answers a send request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OutboundSender(Protocol):
    """Anything able to deliver a text message through a gateway instance."""

    def send_message(self, instance_id: str, recipient_phone: str, text: str) -> dict[str, Any]:
        """Send `text` and return the provider response (with `key.id`)."""
        ...


def _hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def _get_config() -> dict[str, str]:
    """Get Evolution API config from environment.

    Required env vars:
    - EVOLUTION_BASE_URL: Base URL (e.g., http://localhost:8080)
    - EVOLUTION_API_KEY: API token

    Optional:
    - EVOLUTION_SEND_PATH: Send endpoint path template
      (default: /message/sendText/{instance})
    """
    base_url = os.environ.get("EVOLUTION_BASE_URL", "")
    api_key = os.environ.get("EVOLUTION_API_KEY", "")

    if not base_url or not api_key:
        raise RuntimeError("Missing Evolution config: EVOLUTION_BASE_URL, EVOLUTION_API_KEY")

    return {
        "base_url": base_url.rstrip("/"),
        "api_key": api_key,
        "send_path": os.environ.get("EVOLUTION_SEND_PATH", "/message/sendText/{instance}"),
    }


def provider_message_id(result: dict[str, Any] | None) -> str | None:
    """Extract the provider message id (`key.id`) from a send response."""
    if not isinstance(result, dict):
        return None
    key = result.get("key")
    if isinstance(key, dict) and isinstance(key.get("id"), str) and key["id"]:
        return key["id"]
    return None


class EvolutionSender:
    """Sends text messages through the Evolution REST API."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    def send_message(self, instance_id: str, recipient_phone: str, text: str) -> dict[str, Any]:
        """Send text message via Evolution API.

        Args:
            instance_id: Evolution instance name.
            recipient_phone: Phone or JID. NEVER logged.
            text: Message text. NEVER logged.

        Returns:
            Decoded provider response.

        Raises:
            RuntimeError: If config is missing.
            OutboundSendError: On HTTP/network errors after retry.
        """
        config = _get_config()
        url = f"{config['base_url']}{config['send_path'].format(instance=instance_id)}"
        number = normalize_phone(recipient_phone)

        headers = {
            "Content-Type": "application/json",
            "apikey": config["api_key"],
        }
        body = {"number": number, "text": text}

        # Safe logging context - NEVER include number or text
        log_ctx = dict(
            instance_id=instance_id,
            to_hash=_hash_identifier(number),
            text_len=len(text),
        )
        logger.info("sending outbound message", extra={"extra_fields": safe_log_context(**log_ctx)})

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = self._session.post(url, json=body, headers=headers, timeout=HTTP_TIMEOUT)
            except requests.RequestException as e:
                retryable = True
                status_code = None
                error = e
            else:
                if response.ok:
                    logger.info(
                        "outbound message sent",
                        extra={"extra_fields": safe_log_context(**log_ctx, attempt=attempt)},
                    )
                    try:
                        return response.json()
                    except ValueError:
                        return {}
                status_code = response.status_code
                retryable = 500 <= status_code < 600
                error = None

            if attempt < MAX_RETRIES and retryable:
                logger.warning(
                    "outbound send failed, retrying",
                    extra={
                        "extra_fields": safe_log_context(
                            **log_ctx, attempt=attempt, status_code=status_code
                        )
                    },
                )
                time.sleep(RETRY_DELAY)
                continue

            logger.error(
                "outbound send failed",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        attempt=attempt,
                        status_code=status_code,
                        error_type=type(error).__name__ if error else "HTTPError",
                    )
                },
            )
            if error is not None:
                raise OutboundSendError("evolution send request failed") from error
            raise OutboundSendError(
                f"evolution send rejected with status {status_code}", status_code=status_code
            )

        raise OutboundSendError("evolution send exhausted retries")
