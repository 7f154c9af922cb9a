"""Completion client abstraction with OpenAI-compatible HTTP and Anthropic API backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from wa_autoreply.ai.prompt import build_messages
from wa_autoreply.config import CompletionConfig
from wa_autoreply.log import get_logger

logger = get_logger(__name__)


class UpstreamError(Exception):
    """The completion service failed: non-2xx status, timeout, network or bad payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CompletionClient(ABC):
    """Abstract base class for completion backends.

    Implementations never retry; a failed call raises :class:`UpstreamError`
    and the caller decides what to answer instead.
    """

    def __init__(self, config: CompletionConfig):
        self._config = config

    @property
    def model_name(self) -> str:
        return self._config.model

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str,
    ) -> str:
        """Return the generated reply for *user_message* given *history*."""
        ...

    async def close(self) -> None:
        """Release network resources."""


class OpenAIClient(CompletionClient):
    """Chat-completions endpoint of any OpenAI-compatible service."""

    def __init__(self, config: CompletionConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config)
        self._http = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=httpx.Timeout(config.timeout),
            headers={"Authorization": f"Bearer {config.api_key or ''}"},
            transport=transport,
        )

    async def complete(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str,
    ) -> str:
        messages = build_messages(
            system_prompt, history, user_message, max_turns=self._config.context_turns
        )
        payload: dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "max_tokens": self._config.max_tokens,
            "temperature": self._config.temperature,
        }

        logger.debug("completion_request", model=self._config.model, message_count=len(messages))
        try:
            response = await self._http.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"completion request timed out after {self._config.timeout}s") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"completion request failed: {e}") from e

        if not response.is_success:
            raise UpstreamError(
                f"completion API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamError(f"malformed completion response: {e}") from e

        if not isinstance(text, str) or not text.strip():
            raise UpstreamError("completion response contained no text")

        usage = data.get("usage") or {}
        logger.debug(
            "completion_response",
            model=self._config.model,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
        )
        return text.strip()

    async def close(self) -> None:
        await self._http.aclose()


class AnthropicClient(CompletionClient):
    """Anthropic Messages API backend using the official SDK."""

    def __init__(self, config: CompletionConfig):
        super().__init__(config)
        import anthropic

        self._anthropic = anthropic
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            max_retries=0,
            timeout=config.timeout,
        )

    async def complete(
        self,
        system_prompt: str,
        history: list[dict[str, str]],
        user_message: str,
    ) -> str:
        messages = build_messages(
            system_prompt, history, user_message, max_turns=self._config.context_turns
        )
        # The Messages API takes the system prompt separately.
        system = messages[0]["content"]
        turns = messages[1:]
        # ...and must open with a user turn.
        while turns and turns[0]["role"] != "user":
            turns.pop(0)

        logger.debug("completion_request", model=self._config.model, message_count=len(turns))
        try:
            response = await self._client.messages.create(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                system=system,
                messages=turns,
                temperature=self._config.temperature,
            )
        except self._anthropic.APIStatusError as e:
            raise UpstreamError(f"completion API error: {e.status_code}", status_code=e.status_code) from e
        except self._anthropic.APIError as e:
            raise UpstreamError(f"completion request failed: {e}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()
        if not text:
            raise UpstreamError("completion response contained no text")
        logger.debug(
            "completion_response",
            model=self._config.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return text

    async def close(self) -> None:
        await self._client.close()


def create_completion_client(config: CompletionConfig) -> CompletionClient | None:
    """Build the configured backend, or None when no credential is set."""
    if not config.enabled:
        logger.warning("completion_disabled", reason="no API key configured")
        return None
    match config.backend:
        case "openai":
            return OpenAIClient(config)
        case "anthropic":
            return AnthropicClient(config)
        case _:
            raise ValueError(f"Unknown completion backend: {config.backend}")
