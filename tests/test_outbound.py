"""Tests for Evolution outbound sender - verifies NO PII in logs."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from evoinbox.whatsapp.outbound import (
    HTTP_TIMEOUT,
    EvolutionSender,
    OutboundSendError,
    provider_message_id,
)

TEST_JID = "5511999998888@s.whatsapp.net"
TEST_NUMBER = "5511999998888"
TEST_TEXT = "Sua tabela de precos segue anexa"


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def levels(self) -> list[str]:
        return [level for level, _, _ in self.calls]

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        return " ".join(f"{args} {kwargs}" for _, args, kwargs in self.calls)


def _response(status_code: int, payload: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def evolution_env(monkeypatch):
    """Set Evolution API environment variables."""
    monkeypatch.setenv("EVOLUTION_BASE_URL", "http://localhost:8080/")
    monkeypatch.setenv("EVOLUTION_API_KEY", "test-api-key")
    monkeypatch.delenv("EVOLUTION_SEND_PATH", raising=False)


@pytest.fixture
def recorder():
    rec = LogRecorder()
    with patch("evoinbox.whatsapp.outbound.logger", rec):
        yield rec


@pytest.fixture(autouse=True)
def _no_sleep():
    with patch("evoinbox.whatsapp.outbound.time.sleep") as sleep:
        yield sleep


class TestSendMessage:
    def test_posts_number_and_text(self, evolution_env, recorder):
        session = MagicMock()
        session.post.return_value = _response(201, {"key": {"id": "PROV-1"}})

        result = EvolutionSender(session).send_message("inst-1", TEST_JID, TEST_TEXT)

        assert result == {"key": {"id": "PROV-1"}}
        session.post.assert_called_once_with(
            "http://localhost:8080/message/sendText/inst-1",
            json={"number": TEST_NUMBER, "text": TEST_TEXT},
            headers={"Content-Type": "application/json", "apikey": "test-api-key"},
            timeout=HTTP_TIMEOUT,
        )

    def test_custom_send_path(self, evolution_env, monkeypatch, recorder):
        monkeypatch.setenv("EVOLUTION_SEND_PATH", "/v2/{instance}/send")
        session = MagicMock()
        session.post.return_value = _response(200, {})

        EvolutionSender(session).send_message("inst-1", TEST_NUMBER, TEST_TEXT)

        assert session.post.call_args[0][0] == "http://localhost:8080/v2/inst-1/send"

    def test_non_json_success_body(self, evolution_env, recorder):
        session = MagicMock()
        session.post.return_value = _response(200)

        assert EvolutionSender(session).send_message("inst-1", TEST_NUMBER, TEST_TEXT) == {}

    def test_server_error_retried_once(self, evolution_env, recorder, _no_sleep):
        session = MagicMock()
        session.post.side_effect = [_response(503), _response(200, {"key": {"id": "PROV-2"}})]

        result = EvolutionSender(session).send_message("inst-1", TEST_NUMBER, TEST_TEXT)

        assert result["key"]["id"] == "PROV-2"
        assert session.post.call_count == 2
        _no_sleep.assert_called_once()
        assert "warning" in recorder.levels()

    def test_server_error_after_retry_raises(self, evolution_env, recorder):
        session = MagicMock()
        session.post.return_value = _response(502)

        with pytest.raises(OutboundSendError) as exc_info:
            EvolutionSender(session).send_message("inst-1", TEST_NUMBER, TEST_TEXT)

        assert exc_info.value.status_code == 502
        assert session.post.call_count == 2
        assert recorder.levels()[-1] == "error"

    def test_client_error_not_retried(self, evolution_env, recorder):
        session = MagicMock()
        session.post.return_value = _response(400)

        with pytest.raises(OutboundSendError) as exc_info:
            EvolutionSender(session).send_message("inst-1", TEST_NUMBER, TEST_TEXT)

        assert exc_info.value.status_code == 400
        session.post.assert_called_once()

    def test_network_error_raises_after_retry(self, evolution_env, recorder):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(OutboundSendError) as exc_info:
            EvolutionSender(session).send_message("inst-1", TEST_NUMBER, TEST_TEXT)

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)
        assert session.post.call_count == 2

    def test_missing_config(self, monkeypatch):
        monkeypatch.delenv("EVOLUTION_BASE_URL", raising=False)
        monkeypatch.setenv("EVOLUTION_API_KEY", "k")
        session = MagicMock()

        with pytest.raises(RuntimeError, match="EVOLUTION_BASE_URL"):
            EvolutionSender(session).send_message("inst-1", TEST_NUMBER, TEST_TEXT)

        session.post.assert_not_called()


class TestNoPiiLeakage:
    def test_success_logs_no_recipient_or_text(self, evolution_env, recorder):
        session = MagicMock()
        session.post.return_value = _response(200, {"key": {"id": "PROV-1"}})

        EvolutionSender(session).send_message("inst-1", TEST_JID, TEST_TEXT)

        content = recorder.get_all_logged_content()
        assert TEST_NUMBER not in content
        assert TEST_TEXT not in content
        assert "to_hash" in content
        assert "text_len" in content

    def test_failure_logs_no_recipient_or_text(self, evolution_env, recorder):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("slow " + TEST_NUMBER)

        with pytest.raises(OutboundSendError):
            EvolutionSender(session).send_message("inst-1", TEST_JID, TEST_TEXT)

        content = recorder.get_all_logged_content()
        assert TEST_NUMBER not in content
        assert TEST_TEXT not in content
        assert "Timeout" in content


class TestProviderMessageId:
    def test_extracts_key_id(self):
        assert provider_message_id({"key": {"id": "ABC"}}) == "ABC"

    @pytest.mark.parametrize(
        "result",
        [None, {}, {"key": None}, {"key": {"id": ""}}, {"key": {"id": 7}}, ["key"]],
    )
    def test_missing_id(self, result):
        assert provider_message_id(result) is None
