"""Async OpenAI LLM client with retry logic."""

import time
from typing import Any

import orjson
from openai import AsyncOpenAI
from pydantic import BaseModel

from ..config import Settings, get_settings
from ..logging import get_logger, log_api_request, log_error
from ..utils import retry_async

logger = get_logger(__name__)


class ChatMessage(BaseModel):
    """Chat message for LLM interaction."""
    role: str
    content: str


class LLMResponse(BaseModel):
    """LLM response wrapper."""
    content: str
    model: str
    usage: dict[str, Any] | None = None
    response_time: float | None = None


class LLMError(Exception):
    """LLM-specific error."""
    pass


class LLMClient:
    """Async OpenAI chat client with retry capabilities."""

    def __init__(self, settings: Settings | None = None):
        """Initialize LLM client.

        Args:
            settings: Application settings; the OpenAI key and model come from here
        """
        self.settings = settings or get_settings()
        self.model = self.settings.llm_model

        if not self.settings.openai_api_key:
            raise LLMError("OPENAI_API_KEY is not set")

        self._client = AsyncOpenAI(
            api_key=self.settings.openai_api_key,
            timeout=self.settings.llm_timeout_seconds,
        )
        logger.info("OpenAI client initialized", model=self.model)

    async def _make_request(
        self,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Make request to OpenAI API."""
        start_time = time.time()

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=self.settings.llm_temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.settings.llm_max_tokens,
            )
        except Exception as e:
            error_msg = f"OpenAI API error for model {self.model}: {e}"
            logger.error(**log_error(e, context="openai_request", model=self.model))
            raise LLMError(error_msg) from e

        response_time = time.time() - start_time
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError("Empty response content from OpenAI")

        logger.info(**log_api_request(
            "POST", "chat.completions",
            response_time=response_time,
            model=self.model,
        ))

        return LLMResponse(
            content=content,
            model=self.model,
            usage={
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            } if response.usage else None,
            response_time=response_time,
        )

    async def chat(
        self,
        messages: list[ChatMessage] | list[dict[str, str]] | str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send chat messages to the LLM with retry.

        Args:
            messages: Chat messages (various formats accepted)
            temperature: Sampling temperature
            max_tokens: Maximum tokens

        Returns:
            LLM response

        Raises:
            LLMError: If all retries fail
        """
        normalized = self._normalize_messages(messages)
        if not normalized:
            raise LLMError("No messages provided")

        return await retry_async(
            lambda: self._make_request(normalized, temperature, max_tokens),
            max_retries=self.settings.retry_attempts,
            backoff_factor=self.settings.retry_backoff,
            exceptions=(LLMError,),
        )

    def _normalize_messages(
        self,
        messages: list[ChatMessage] | list[dict[str, str]] | str,
    ) -> list[ChatMessage]:
        """Normalize messages to ChatMessage format."""
        if isinstance(messages, str):
            return [ChatMessage(role="user", content=messages)]

        if not isinstance(messages, list):
            raise LLMError(f"Unsupported messages type: {type(messages)}")

        normalized = []
        for msg in messages:
            if isinstance(msg, ChatMessage):
                normalized.append(msg)
            elif isinstance(msg, dict) and "role" in msg and "content" in msg:
                normalized.append(ChatMessage(role=msg["role"], content=msg["content"]))
            else:
                raise LLMError(f"Invalid message format: {msg}")
        return normalized


class MockLLMClient(LLMClient):
    """Mock LLM client that echoes the articles it is asked to rewrite."""

    def __init__(self, settings: Settings | None = None):
        """Initialize mock client."""
        # Parent __init__ is skipped to avoid API key requirements
        self.settings = settings or get_settings()
        self.model = "mock-model"
        self.calls: list[list[ChatMessage]] = []

    async def chat(
        self,
        messages: list[ChatMessage] | list[dict[str, str]] | str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Return the JSON array found in the last message, with tips added."""
        normalized = self._normalize_messages(messages)
        self.calls.append(normalized)
        prompt = normalized[-1].content if normalized else ""

        start, end = prompt.find("["), prompt.rfind("]")
        items: list[dict[str, Any]] = []
        if start != -1 and end > start:
            try:
                items = orjson.loads(prompt[start:end + 1])
            except orjson.JSONDecodeError:
                items = []

        echoed = [
            {
                "title": item.get("title", ""),
                "summary": item.get("summary", ""),
                "tip": "Mock tip: review this update with your team.",
                "url": item.get("url", ""),
                "source": item.get("source", ""),
                "category": item.get("category", ""),
            }
            for item in items if isinstance(item, dict)
        ]

        return LLMResponse(
            content=orjson.dumps(echoed).decode(),
            model=self.model,
            usage={"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
            response_time=0.0,
        )


def create_llm_client(settings: Settings | None = None, mock: bool = False) -> LLMClient:
    """Factory function to create LLM client.

    Args:
        settings: Application settings
        mock: Whether to use mock client

    Returns:
        LLM client instance
    """
    settings = settings or get_settings()
    if mock or settings.mock:
        return MockLLMClient(settings)
    return LLMClient(settings)
