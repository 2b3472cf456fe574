import json
import threading
from unittest.mock import Mock, patch

import pytest
import requests

from src.api.services.llm import ReasoningService, create_reasoning_service


def sse_lines(*chunks, done=True):
    lines = [b": keep-alive", b""]
    for chunk in chunks:
        payload = {"choices": [{"delta": {"content": chunk}}]}
        lines.append(f"data: {json.dumps(payload)}".encode())
    if done:
        lines.append(b"data: [DONE]")
    return lines


def stream_response(lines, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.headers = {"Content-Type": "text/event-stream; charset=utf-8"}
    response.iter_lines.return_value = iter(lines)
    return response


class TestReasoningService:
    """推論サービスのテスト"""

    @pytest.fixture
    def service(self):
        svc = ReasoningService(base_url="http://localhost:1234/", model_name="test-model")
        svc.min_call_interval = 0
        return svc

    def test_initialization(self, service):
        assert service.base_url == "http://localhost:1234"
        assert service.model_name == "test-model"
        assert service.timeout == 30.0
        assert service.chat_url == "http://localhost:1234/v1/chat/completions"
        assert len(service.system_prompt) > 0

    def test_availability_check_success(self, service):
        with patch("requests.get") as mock_get:
            mock_get.return_value = Mock(status_code=200)

            assert service.is_available() is True
            mock_get.assert_called_once_with(
                "http://localhost:1234/v1/models",
                headers={"Content-Type": "application/json"},
                timeout=5,
            )

    def test_availability_check_failure(self, service):
        with patch("requests.get", side_effect=requests.ConnectionError("refused")):
            assert service.is_available() is False

    def test_streamed_reply_is_joined(self, service):
        """SSEのdeltaを連結して返す"""
        response = stream_response(sse_lines('{"detected":', " false}"))
        with patch("requests.post", return_value=response) as mock_post:
            text = service.complete("hello")

        assert text == '{"detected": false}'
        _, kwargs = mock_post.call_args
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == 30.0
        assert kwargs["json"]["model"] == "test-model"
        assert kwargs["json"]["stream"] is True
        assert kwargs["json"]["messages"][1] == {"role": "user", "content": "hello"}
        response.close.assert_called()

    def test_stream_stops_at_done(self, service):
        lines = sse_lines("first")
        lines.append(b'data: {"choices": [{"delta": {"content": "ignored"}}]}')
        with patch("requests.post", return_value=stream_response(lines)):
            assert service.complete("p") == "first"

    def test_malformed_chunks_are_skipped(self, service):
        lines = [b"data: not-json", *sse_lines("ok")]
        with patch("requests.post", return_value=stream_response(lines)):
            assert service.complete("p") == "ok"

    def test_non_streaming_json_reply(self, service):
        response = Mock(status_code=200)
        response.headers = {"Content-Type": "application/json"}
        response.json.return_value = {"choices": [{"message": {"content": " answer "}}]}
        with patch("requests.post", return_value=response):
            assert service.complete("p") == "answer"

    def test_empty_reply_is_none(self, service):
        with patch("requests.post", return_value=stream_response(sse_lines())):
            assert service.complete("p") is None

    def test_http_error_returns_none(self, service):
        with patch("requests.post", return_value=stream_response([], status_code=500)):
            assert service.complete("p") is None

    def test_timeout_returns_none(self, service):
        with patch("requests.post", side_effect=requests.exceptions.Timeout()):
            assert service.complete("p") is None

    def test_connection_error_returns_none(self, service):
        with patch("requests.post", side_effect=requests.ConnectionError("down")):
            assert service.complete("p") is None

    def test_bearer_header(self):
        svc = ReasoningService("http://x", "m", api_key="secret")
        assert svc._headers()["Authorization"] == "Bearer secret"

    def test_cancel_closes_in_flight_response(self, service):
        """cancel() で読み取り中のレスポンスを閉じる"""
        reading = threading.Event()
        closed = threading.Event()

        def blocking_lines():
            yield b'data: {"choices": [{"delta": {"content": "partial"}}]}'
            reading.set()
            if not closed.wait(5):
                return
            raise requests.exceptions.ChunkedEncodingError("connection closed")

        response = stream_response(blocking_lines())
        response.close.side_effect = closed.set

        outcome = []
        with patch("requests.post", return_value=response):
            worker = threading.Thread(target=lambda: outcome.append(service.complete("p")))
            worker.start()
            assert reading.wait(5)
            service.cancel()
            worker.join(5)

        assert outcome == [None]
        response.close.assert_called()

    def test_deadline_closes_response(self):
        svc = ReasoningService("http://x", "m", timeout=0.1)
        svc.min_call_interval = 0
        closed = threading.Event()

        def slow_lines():
            yield b'data: {"choices": [{"delta": {"content": "partial"}}]}'
            if closed.wait(5):
                raise requests.exceptions.ConnectionError("closed")

        response = stream_response(slow_lines())
        response.close.side_effect = closed.set
        with patch("requests.post", return_value=response):
            assert svc.complete("p") is None
        assert closed.is_set()


class TestCreateReasoningService:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LLM_URL", "http://127.0.0.1:1234")
        monkeypatch.setenv("LLM_MODEL", "local-model")
        monkeypatch.setenv("LLM_API_KEY", "k")

        svc = create_reasoning_service(timeout=12)
        assert svc.base_url == "http://127.0.0.1:1234"
        assert svc.model_name == "local-model"
        assert svc.timeout == 12
        assert svc.api_key == "k"

    def test_missing_environment_raises(self, monkeypatch):
        monkeypatch.delenv("LLM_URL", raising=False)
        monkeypatch.delenv("LLM_MODEL", raising=False)
        with pytest.raises(RuntimeError):
            create_reasoning_service()


class TestCancelWhileConnecting:
    def test_cancel_during_connect_discards_response(self):
        """接続待ちの間に cancel() されたら応答を読まずに閉じる"""
        svc = ReasoningService("http://x", "m")
        svc.min_call_interval = 0
        response = stream_response(sse_lines("late"))

        def connect(*args, **kwargs):
            svc.cancel()
            return response

        with patch("requests.post", side_effect=connect):
            assert svc.complete("p") is None

        response.close.assert_called_once()
        response.iter_lines.assert_not_called()

    def test_later_calls_are_unaffected(self):
        svc = ReasoningService("http://x", "m")
        svc.min_call_interval = 0
        svc.cancel()
        with patch("requests.post", return_value=stream_response(sse_lines("ok"))):
            assert svc.complete("p") == "ok"
