"""LLM client: HTTP connection to an OpenAI-style chat-completion backend.

Callers depend on the protocol, not on the HTTP implementation:

    async def request(self, system_prompt: str | None, user_prompt: str) -> LLMResponse: ...
    async def request_messages(self, messages: list[LLMMessage]) -> LLMResponse: ...

Neither method raises for backend trouble. Every outcome, including
exhausted retries, comes back as an `LLMResponse` with exactly one of
`text` / `error` populated.

Wire format:
    POST {endpoint}/v1/chat/completions
         {"model": ..., "messages": [{"role": ..., "content": ...}, ...]}
    Response: {"choices": [{"message": {"content": "..."}}],
               "usage": {"total_tokens": N}}
    Error:    {"error": {"message": "..."}} or any non-2xx status.

Retry policy: up to `max_retries` extra attempts after the first, sleeping
1s, 2s, 4s, ... (capped at 16s) before each retry. 4xx responses are
returned immediately; only 5xx and transport failures are retried.

Tests use StubLLM (defined in conftest.py) instead of HttpLLM.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:5000"
DEFAULT_MODEL = "llama3"
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_RETRIES = 3
INITIAL_BACKOFF_MS = 1000
MAX_BACKOFF_MS = 16000

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

class LLMConfig(BaseModel):
    """Connection settings. Shared read-only by every request."""

    model_config = ConfigDict(frozen=True)

    endpoint: str = DEFAULT_ENDPOINT
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES


Role = Literal["system", "user", "assistant"]


class LLMMessage(BaseModel):
    role: Role
    content: str


class LLMResponse(BaseModel):
    text: str | None = None
    tokens_used: int = 0
    success: bool = False
    error: str | None = None
    status_code: int | None = None  # HTTP status, when one was received

    @classmethod
    def ok(cls, text: str, tokens_used: int = 0, status_code: int | None = 200) -> LLMResponse:
        return cls(text=text, tokens_used=tokens_used, success=True, status_code=status_code)

    @classmethod
    def failure(cls, error: str, status_code: int | None = None, tokens_used: int = 0) -> LLMResponse:
        return cls(error=error, status_code=status_code, tokens_used=tokens_used)

    @property
    def is_client_error(self) -> bool:
        """True for 4xx failures, which are never retried."""
        if self.status_code is not None and 400 <= self.status_code < 500:
            return True
        return self.error is not None and "HTTP error 4" in self.error


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def request(self, system_prompt: str | None, user_prompt: str) -> LLMResponse: ...

    async def request_messages(self, messages: list[LLMMessage]) -> LLMResponse: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

class HttpLLM:
    """Async HTTP client for chat-completion backends.

    Args:
        config: Endpoint, credentials, model, timeout and retry budget.
    """

    def __init__(self, config: LLMConfig) -> None:
        self._config = config
        self._base_url = config.endpoint.rstrip("/")

    @property
    def config(self) -> LLMConfig:
        return self._config

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    def _build_request(self, messages: list[LLMMessage]) -> tuple[str, dict]:
        """Return (url, body) for a chat-completion call."""
        url = f"{self._base_url}{CHAT_COMPLETIONS_PATH}"
        body: dict[str, Any] = {
            "model": self._config.model,
            "messages": [m.model_dump() for m in messages],
        }
        return url, body

    async def request(self, system_prompt: str | None, user_prompt: str) -> LLMResponse:
        messages: list[LLMMessage] = []
        if system_prompt is not None:
            messages.append(LLMMessage(role="system", content=system_prompt))
        messages.append(LLMMessage(role="user", content=user_prompt))
        return await self.request_messages(messages)

    async def request_messages(self, messages: list[LLMMessage]) -> LLMResponse:
        if not messages:
            return LLMResponse.failure("Invalid arguments")

        url, body = self._build_request(messages)
        backoff_ms = INITIAL_BACKOFF_MS
        response = LLMResponse.failure("No attempt made")

        for attempt in range(self._config.max_retries + 1):
            if attempt > 0:
                logger.debug(
                    "llm retry attempt=%d backoff_ms=%d last_error=%s",
                    attempt, backoff_ms, response.error,
                )
                await asyncio.sleep(backoff_ms / 1000)
                backoff_ms = min(backoff_ms * 2, MAX_BACKOFF_MS)

            try:
                response = await self._perform_request(url, body)
            except LLMError as e:
                response = LLMResponse.failure(str(e))

            if response.success:
                break
            if response.is_client_error:
                logger.warning("llm client error, not retrying: %s", response.error)
                break
        else:
            logger.warning(
                "llm request failed after %d attempts: %s",
                self._config.max_retries + 1, response.error,
            )

        return response

    async def _perform_request(self, url: str, body: dict) -> LLMResponse:
        """One HTTP round trip. Transport failures raise LLMError."""
        timeout = self._config.timeout_ms / 1000
        logger.debug("llm call url=%s messages=%d", url, len(body["messages"]))

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM transport error: {e}") from e

        status = resp.status_code
        if 200 <= status < 300:
            result = _parse_success(resp.text)
            result.status_code = status
            logger.debug(
                "llm response ok=%s tokens=%d len=%d",
                result.success, result.tokens_used, len(result.text or ""),
            )
            return result

        message = _extract_error_message(resp.text)
        return LLMResponse.failure(message or f"HTTP error {status}", status_code=status)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def _parse_success(raw: str) -> LLMResponse:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return LLMResponse.failure("Failed to parse JSON response")
    if not isinstance(data, dict):
        return LLMResponse.failure("Failed to parse JSON response")

    tokens = 0
    usage = data.get("usage")
    if isinstance(usage, dict) and isinstance(usage.get("total_tokens"), (int, float)):
        tokens = int(usage["total_tokens"])

    error = data.get("error")
    if error is not None:
        message = error.get("message") if isinstance(error, dict) else None
        if not isinstance(message, str):
            message = "Unknown API error"
        return LLMResponse.failure(message, tokens_used=tokens)

    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return LLMResponse.ok(message["content"], tokens)

    return LLMResponse.failure("No content in response", tokens_used=tokens)


def _extract_error_message(raw: str) -> str | None:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None


# ---------------------------------------------------------------------------
# LLMError: raised by the transport layer for connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached."""
