"""Tests for symbeline_narrator.llm: HttpLLM wire format, parsing and retry."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from symbeline_narrator.llm import HttpLLM, LLMConfig, LLMMessage, LLMResponse


def _mock_response(body: dict | str, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = body if isinstance(body, str) else json.dumps(body)
    return resp


def _completion(text: str, tokens: int = 12) -> dict:
    return {"choices": [{"message": {"content": text}}], "usage": {"total_tokens": tokens}}


@pytest.fixture
def no_sleep():
    with patch("symbeline_narrator.llm.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# ---------------------------------------------------------------------------
# LLMResponse
# ---------------------------------------------------------------------------

class TestLLMResponse:
    def test_ok_sets_text_only(self) -> None:
        r = LLMResponse.ok("hello", 5)
        assert r.success and r.text == "hello" and r.error is None
        assert r.tokens_used == 5

    def test_failure_sets_error_only(self) -> None:
        r = LLMResponse.failure("boom", status_code=500)
        assert not r.success and r.text is None and r.error == "boom"

    @pytest.mark.parametrize("status,error,expected", [
        (404, "Not found", True),
        (None, "HTTP error 404", True),
        (500, "HTTP error 500", False),
        (None, "Cannot connect", False),
    ])
    def test_client_error_detection(self, status, error, expected) -> None:
        assert LLMResponse.failure(error, status_code=status).is_client_error is expected


# ---------------------------------------------------------------------------
# HttpLLM: wire format
# ---------------------------------------------------------------------------

class TestHttpLLMRequest:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(LLMConfig(endpoint="http://localhost:5000", max_retries=0))

    async def test_happy_path(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("The knights ride out.", 42)))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm.request("system", "Describe the charge.")
        assert result.success
        assert result.text == "The knights ride out."
        assert result.tokens_used == 42

    async def test_posts_to_chat_completions(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.request(None, "prompt")
        assert mock_post.call_args[0][0] == "http://localhost:5000/v1/chat/completions"

    async def test_trailing_slash_stripped_from_url(self) -> None:
        llm = HttpLLM(LLMConfig(endpoint="http://localhost:5000/"))
        mock_post = AsyncMock(return_value=_mock_response(_completion("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.request(None, "prompt")
        assert mock_post.call_args[0][0] == "http://localhost:5000/v1/chat/completions"

    async def test_body_carries_model_and_messages(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.request("be brief", "narrate")
        body = mock_post.call_args.kwargs["json"]
        assert body == {
            "model": "llama3",
            "messages": [
                {"role": "system", "content": "be brief"},
                {"role": "user", "content": "narrate"},
            ],
        }

    async def test_system_prompt_omitted_when_none(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.request(None, "narrate")
        assert [m["role"] for m in mock_post.call_args.kwargs["json"]["messages"]] == ["user"]

    async def test_bearer_token_sent_when_api_key_set(self) -> None:
        llm = HttpLLM(LLMConfig(api_key="secret"))
        mock_post = AsyncMock(return_value=_mock_response(_completion("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.request(None, "prompt")
        headers = mock_post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"
        assert headers["Content-Type"] == "application/json"

    async def test_no_auth_header_when_no_api_key(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("ok")))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.request(None, "prompt")
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    async def test_multi_turn_messages(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_completion("ok")))
        messages = [
            LLMMessage(role="system", content="s"),
            LLMMessage(role="user", content="u1"),
            LLMMessage(role="assistant", content="a1"),
            LLMMessage(role="user", content="u2"),
        ]
        with patch("httpx.AsyncClient.post", mock_post):
            await llm.request_messages(messages)
        sent = mock_post.call_args.kwargs["json"]["messages"]
        assert [m["role"] for m in sent] == ["system", "user", "assistant", "user"]

    async def test_empty_messages_rejected_without_request(self, llm: HttpLLM) -> None:
        mock_post = AsyncMock()
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm.request_messages([])
        assert result.error == "Invalid arguments"
        mock_post.assert_not_called()


# ---------------------------------------------------------------------------
# HttpLLM: response parsing
# ---------------------------------------------------------------------------

class TestHttpLLMParsing:
    @pytest.fixture
    def llm(self) -> HttpLLM:
        return HttpLLM(LLMConfig(max_retries=0))

    async def _call(self, llm: HttpLLM, resp: MagicMock) -> LLMResponse:
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            return await llm.request(None, "prompt")

    async def test_malformed_json(self, llm: HttpLLM) -> None:
        result = await self._call(llm, _mock_response("not json {"))
        assert not result.success
        assert result.error == "Failed to parse JSON response"

    async def test_api_error_message(self, llm: HttpLLM) -> None:
        result = await self._call(llm, _mock_response({"error": {"message": "model overloaded"}}))
        assert result.error == "model overloaded"

    async def test_api_error_without_message(self, llm: HttpLLM) -> None:
        result = await self._call(llm, _mock_response({"error": {}}))
        assert result.error == "Unknown API error"

    async def test_missing_content(self, llm: HttpLLM) -> None:
        result = await self._call(llm, _mock_response({"choices": []}))
        assert result.error == "No content in response"

    async def test_missing_usage_defaults_to_zero(self, llm: HttpLLM) -> None:
        result = await self._call(llm, _mock_response({"choices": [{"message": {"content": "hi"}}]}))
        assert result.text == "hi"
        assert result.tokens_used == 0

    async def test_http_error_uses_body_message(self, llm: HttpLLM) -> None:
        result = await self._call(llm, _mock_response({"error": {"message": "bad key"}}, status=401))
        assert result.error == "bad key"
        assert result.status_code == 401

    async def test_http_error_generic_message(self, llm: HttpLLM) -> None:
        result = await self._call(llm, _mock_response("<html>oops</html>", status=502))
        assert result.error == "HTTP error 502"

    async def test_connect_error_becomes_failure(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.ConnectError("refused"))):
            result = await llm.request(None, "prompt")
        assert not result.success
        assert "Cannot connect" in result.error

    async def test_timeout_becomes_failure(self, llm: HttpLLM) -> None:
        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=httpx.TimeoutException("slow"))):
            result = await llm.request(None, "prompt")
        assert "timed out" in result.error


# ---------------------------------------------------------------------------
# HttpLLM: retry policy
# ---------------------------------------------------------------------------

class TestHttpLLMRetry:
    async def test_server_error_then_success_retries_once(self, no_sleep) -> None:
        llm = HttpLLM(LLMConfig(max_retries=3))
        mock_post = AsyncMock(side_effect=[
            _mock_response({"error": {"message": "busy"}}, status=503),
            _mock_response(_completion("recovered")),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm.request(None, "prompt")
        assert result.text == "recovered"
        assert mock_post.call_count == 2
        no_sleep.assert_awaited_once_with(1.0)

    async def test_client_error_not_retried(self, no_sleep) -> None:
        llm = HttpLLM(LLMConfig(max_retries=3))
        mock_post = AsyncMock(return_value=_mock_response("", status=404))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm.request(None, "prompt")
        assert result.error == "HTTP error 404"
        assert mock_post.call_count == 1
        no_sleep.assert_not_awaited()

    async def test_backoff_doubles_and_caps(self, no_sleep) -> None:
        llm = HttpLLM(LLMConfig(max_retries=6))
        mock_post = AsyncMock(return_value=_mock_response("", status=500))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm.request(None, "prompt")
        assert not result.success
        assert mock_post.call_count == 7
        delays = [c.args[0] for c in no_sleep.await_args_list]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 16.0]

    async def test_transport_errors_are_retried(self, no_sleep) -> None:
        llm = HttpLLM(LLMConfig(max_retries=2))
        mock_post = AsyncMock(side_effect=[
            httpx.ConnectError("refused"),
            httpx.TimeoutException("slow"),
            _mock_response(_completion("third time")),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm.request(None, "prompt")
        assert result.text == "third time"
        assert no_sleep.await_count == 2

    async def test_zero_retries_single_attempt(self, no_sleep) -> None:
        llm = HttpLLM(LLMConfig(max_retries=0))
        mock_post = AsyncMock(return_value=_mock_response("", status=500))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm.request(None, "prompt")
        assert result.error == "HTTP error 500"
        assert mock_post.call_count == 1
        no_sleep.assert_not_awaited()
