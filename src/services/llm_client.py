"""
LLM client abstraction for document classification and extraction.

This module provides a unified interface over multimodal LLM APIs: a message
may carry file attachments (a PDF or a photo) next to the prompt text.

Features:
- Async HTTP requests
- Retry logic with exponential backoff for transport errors and rate limits
- Provider-specific attachment encoding (Claude document/image blocks,
  Gemini inline_data parts)
- Mock client for testing
"""

import asyncio
import base64
import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from src.core.config import settings
from src.core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Enums and Constants
# =============================================================================


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    CLAUDE = "claude"
    GEMINI = "gemini"
    MOCK = "mock"


# API endpoints
CLAUDE_API_URL = "https://api.anthropic.com/v1/messages"
CLAUDE_API_VERSION = "2023-06-01"
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class LLMAttachment:
    """A file passed to the model alongside the prompt."""

    data: bytes
    mime_type: str

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == "application/pdf"

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass
class LLMMessage:
    """Represents a message in the conversation."""

    role: str  # "system", "user", or "assistant"
    content: str
    attachments: list[LLMAttachment] = field(default_factory=list)


@dataclass
class LLMResponse:
    """Response from an LLM API call."""

    content: str
    model: str
    provider: LLMProvider
    usage: dict[str, int] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def input_tokens(self) -> int:
        """Get input token count."""
        return self.usage.get("input_tokens", 0)

    @property
    def output_tokens(self) -> int:
        """Get output token count."""
        return self.usage.get("output_tokens", 0)

    @property
    def total_tokens(self) -> int:
        """Get total token count."""
        return self.input_tokens + self.output_tokens


# =============================================================================
# Exceptions
# =============================================================================


class LLMError(Exception):
    """Base exception for LLM client errors."""

    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limited by API."""

    pass


class LLMAPIError(LLMError):
    """Raised when API returns an error response."""

    pass


class LLMParseError(LLMError):
    """Raised when response parsing fails."""

    pass


# =============================================================================
# Base LLM Client
# =============================================================================


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    def __init__(self, model: str | None = None, timeout: float = 60.0):
        """
        Initialize LLM client.

        Args:
            model: Model identifier
            timeout: Per-request timeout in seconds
        """
        self.model = model
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BaseLLMClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client."""
        if self._client is None:
            raise RuntimeError(
                "LLM client must be used as async context manager: "
                "async with Client() as client: ..."
            )
        return self._client

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation messages (user messages may carry attachments)
            temperature: Sampling temperature (0.0 = deterministic)
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with generated content
        """
        pass

    @abstractmethod
    def provider(self) -> LLMProvider:
        """Get the provider type."""
        pass


def _raise_for_status(provider: str, response: httpx.Response, model: str | None) -> None:
    """Map non-200 responses onto the LLM error hierarchy."""
    if response.status_code == 200:
        return

    error_text = response.text[:500]
    logger.error(
        "LLM API error",
        provider=provider,
        status_code=response.status_code,
        response=error_text,
    )
    if response.status_code == 404:
        raise LLMAPIError(f"Model '{model}' not found")
    elif response.status_code == 400:
        raise LLMAPIError(f"Bad request: {error_text}")
    elif response.status_code in (401, 403):
        raise LLMAPIError("API key invalid or lacks permissions")
    else:
        raise LLMAPIError(f"API returned status {response.status_code}: {error_text}")


async def _backoff_for_rate_limit(provider: str, response: httpx.Response) -> None:
    """Honour retry-after on 429/529/503, then raise so tenacity retries."""
    retry_after = response.headers.get("retry-after")
    try:
        wait_time = min(int(retry_after), 60) if retry_after else 10
    except ValueError:
        wait_time = 10
    logger.warning(
        "LLM rate limit hit",
        provider=provider,
        status_code=response.status_code,
        retry_after=wait_time,
    )
    await asyncio.sleep(wait_time)
    raise LLMRateLimitError(f"Rate limited ({response.status_code}), waited {wait_time}s")


# =============================================================================
# Anthropic Claude Client
# =============================================================================


class ClaudeClient(BaseLLMClient):
    """Client for the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 60.0,
    ):
        super().__init__(model=model or settings.claude_model, timeout=timeout)
        self.api_key = api_key or settings.anthropic_api_key

        if not self.api_key:
            raise ValueError("Anthropic API key not configured. Set ANTHROPIC_API_KEY in .env")

    def provider(self) -> LLMProvider:
        """Get provider type."""
        return LLMProvider.CLAUDE

    @staticmethod
    def _content_blocks(msg: LLMMessage) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        for attachment in msg.attachments:
            blocks.append({
                "type": "document" if attachment.is_pdf else "image",
                "source": {
                    "type": "base64",
                    "media_type": attachment.mime_type,
                    "data": attachment.b64(),
                },
            })
        blocks.append({"type": "text", "text": msg.content})
        return blocks

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, LLMRateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=1, min=2, max=20),
    )
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Generate completion using the Anthropic Messages API."""
        system_text = None
        api_messages = []
        for msg in messages:
            if msg.role == "system":
                system_text = msg.content
            else:
                api_messages.append({"role": msg.role, "content": self._content_blocks(msg)})

        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": api_messages,
        }
        if system_text:
            payload["system"] = system_text

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": CLAUDE_API_VERSION,
            "content-type": "application/json",
        }

        logger.debug("Claude API request", model=self.model)

        response = await self.client.post(CLAUDE_API_URL, headers=headers, json=payload)

        # 529 is Anthropic's "overloaded"
        if response.status_code in (429, 503, 529):
            await _backoff_for_rate_limit("claude", response)

        _raise_for_status("claude", response, self.model)

        data = response.json()
        content = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        usage = data.get("usage", {})

        return LLMResponse(
            content=content,
            model=data.get("model", self.model),
            provider=LLMProvider.CLAUDE,
            usage={
                "input_tokens": usage.get("input_tokens", 0),
                "output_tokens": usage.get("output_tokens", 0),
            },
            raw_response=data,
        )


# =============================================================================
# Google Gemini Client
# =============================================================================


class GeminiClient(BaseLLMClient):
    """Client for Google Gemini API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 60.0,
    ):
        """
        Initialize Gemini client.

        Args:
            api_key: Google API key (defaults to settings)
            model: Model name (defaults to settings.gemini_model)
            timeout: Request timeout
        """
        super().__init__(model=model or settings.gemini_model, timeout=timeout)
        self.api_key = api_key or settings.google_api_key

        if not self.api_key:
            raise ValueError("Google API key not configured. Set GOOGLE_API_KEY in .env")

    def provider(self) -> LLMProvider:
        """Get provider type."""
        return LLMProvider.GEMINI

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, LLMRateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=1, min=2, max=20),
    )
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        """Generate completion using Google Gemini API."""
        url = f"{GEMINI_API_URL}/{self.model}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

        contents = []
        system_instruction_text = None

        for msg in messages:
            if msg.role == "system":
                system_instruction_text = msg.content
                continue
            # Gemini expects "model" for assistant responses
            role = "model" if msg.role == "assistant" else "user"
            parts: list[dict[str, Any]] = [
                {"inline_data": {"mime_type": a.mime_type, "data": a.b64()}}
                for a in msg.attachments
            ]
            parts.append({"text": msg.content})
            contents.append({"role": role, "parts": parts})

        payload: dict[str, Any] = {
            "contents": contents,
            "generation_config": {
                "temperature": temperature,
                "max_output_tokens": max_tokens,
                "response_mime_type": "application/json",
            },
        }
        if system_instruction_text:
            payload["system_instruction"] = {"parts": [{"text": system_instruction_text}]}

        logger.debug("Gemini API request", model=self.model)

        response = await self.client.post(url, headers=headers, json=payload)

        if response.status_code in (429, 503):
            await _backoff_for_rate_limit("gemini", response)

        _raise_for_status("gemini", response, self.model)

        data = response.json()

        # Gemini returns: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
        content = ""
        candidates = data.get("candidates", [])
        if candidates:
            for part in candidates[0].get("content", {}).get("parts", []):
                if "text" in part:
                    content += part["text"]

        usage_metadata = data.get("usageMetadata", {})

        return LLMResponse(
            content=content,
            model=self.model,
            provider=LLMProvider.GEMINI,
            usage={
                "input_tokens": usage_metadata.get("promptTokenCount", 0),
                "output_tokens": usage_metadata.get("candidatesTokenCount", 0),
            },
            raw_response=data,
        )


# =============================================================================
# Mock Client (for testing)
# =============================================================================


class MockLLMClient(BaseLLMClient):
    """
    Mock LLM client for testing without API calls.

    Returns scripted responses in order when set, otherwise a canned
    classification or extraction for a rabies vaccination card depending on
    the prompt. Every call is recorded in ``calls`` for assertions.
    """

    def __init__(self, model: str = "mock-model", timeout: float = 60.0):
        super().__init__(model=model, timeout=timeout)
        self._responses: list[str | Exception] = []
        self._call_count = 0
        self.delay: float = 0.0
        self.calls: list[list[LLMMessage]] = []

    def provider(self) -> LLMProvider:
        """Get provider type."""
        return LLMProvider.MOCK

    def set_responses(self, responses: list[str | Exception]) -> None:
        """Set predefined responses; an Exception entry is raised instead of returned."""
        self._responses = responses
        self._call_count = 0

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.0,  # noqa: ARG002 - Required by interface
        max_tokens: int = 4096,  # noqa: ARG002 - Required by interface
    ) -> LLMResponse:
        """Return mock response."""
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)

        if self._responses:
            idx = min(self._call_count, len(self._responses) - 1)
            scripted = self._responses[idx]
            self._call_count += 1
            if isinstance(scripted, Exception):
                raise scripted
            content = scripted
        else:
            content = self._generate_default_response(messages)

        return LLMResponse(
            content=content,
            model=self.model,
            provider=LLMProvider.MOCK,
            usage={"input_tokens": 100, "output_tokens": 50},
            raw_response={},
        )

    def _generate_default_response(self, messages: list[LLMMessage]) -> str:
        system_content = next((m.content for m in messages if m.role == "system"), "")

        if "classify" in system_content.lower():
            return json.dumps({
                "document_type": "vaccination_record",
                "confidence": 92,
                "explanation": "Vaccination certificate with vaccine names and dates",
                "summary": {
                    "medications_count": 0,
                    "conditions_count": 0,
                    "vaccinations_count": 1,
                    "allergies_count": 0,
                },
                "alternative_types": ["visit_summary"],
                "pet_name": "Max",
            })
        elif "extract" in system_content.lower():
            return json.dumps({
                "items": [
                    {
                        "record_type": "vaccination",
                        "confidence": 0.95,
                        "data": {
                            "name": "Rabies",
                            "administered_date": "2024-03-01",
                            "expiration_date": "2027-03-01",
                        },
                    }
                ]
            })
        else:
            return json.dumps({"result": "mock response"})


# =============================================================================
# Factory Function
# =============================================================================

LLMClientFactory = Callable[[], BaseLLMClient]


def get_llm_client(
    provider: str | LLMProvider | None = None,
    **kwargs,
) -> BaseLLMClient:
    """
    Factory function to get an LLM client.

    Args:
        provider: Provider name ("claude", "gemini", "mock")
        **kwargs: Additional arguments passed to client constructor

    Example:
        async with get_llm_client("claude") as client:
            response = await client.complete(messages)
    """
    if provider is None:
        provider = settings.llm_provider

    if isinstance(provider, str):
        provider = LLMProvider(provider.lower())

    if provider == LLMProvider.CLAUDE:
        return ClaudeClient(**kwargs)
    elif provider == LLMProvider.GEMINI:
        return GeminiClient(**kwargs)
    elif provider == LLMProvider.MOCK:
        return MockLLMClient(**kwargs)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
