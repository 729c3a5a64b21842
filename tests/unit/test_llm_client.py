"""Unit tests for LLM clients, using httpx.MockTransport instead of real APIs."""

import json

import httpx
import pytest

from src.services.llm_client import (
    ClaudeClient,
    GeminiClient,
    LLMAPIError,
    LLMAttachment,
    LLMMessage,
    LLMProvider,
    MockLLMClient,
    get_llm_client,
)

PDF = LLMAttachment(data=b"%PDF-1.4 test", mime_type="application/pdf")
JPEG = LLMAttachment(data=b"\xff\xd8\xff test", mime_type="image/jpeg")


def messages(attachment: LLMAttachment) -> list[LLMMessage]:
    return [
        LLMMessage(role="system", content="You classify pet health documents."),
        LLMMessage(role="user", content="Classify this document.", attachments=[attachment]),
    ]


def with_transport(client, handler) -> None:
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestClaudeClient:
    """Tests for the Anthropic Messages API client."""

    async def test_sends_document_block(self) -> None:
        """Test PDFs go out as document blocks with the system prompt separate."""
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "model": "claude-test",
                    "content": [{"type": "text", "text": '{"ok": true}'}],
                    "usage": {"input_tokens": 1200, "output_tokens": 80},
                },
            )

        client = ClaudeClient(api_key="test-key", model="claude-test")
        with_transport(client, handler)

        response = await client.complete(messages(PDF))

        body = captured["body"]
        assert body["system"] == "You classify pet health documents."
        blocks = body["messages"][0]["content"]
        assert blocks[0]["type"] == "document"
        assert blocks[0]["source"]["media_type"] == "application/pdf"
        assert blocks[-1] == {"type": "text", "text": "Classify this document."}
        assert captured["headers"]["x-api-key"] == "test-key"

        assert response.content == '{"ok": true}'
        assert response.total_tokens == 1280
        assert response.provider == LLMProvider.CLAUDE

    async def test_image_block(self) -> None:
        """Test images go out as image blocks."""
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": [], "usage": {}})

        client = ClaudeClient(api_key="test-key")
        with_transport(client, handler)
        await client.complete(messages(JPEG))

        assert captured["body"]["messages"][0]["content"][0]["type"] == "image"

    async def test_auth_error(self) -> None:
        """Test 401 maps to LLMAPIError without leaking the key."""
        client = ClaudeClient(api_key="secret-key")
        with_transport(client, lambda request: httpx.Response(401, json={"error": "unauthorized"}))

        with pytest.raises(LLMAPIError) as exc_info:
            await client.complete(messages(JPEG))
        assert "secret-key" not in str(exc_info.value)

    def test_requires_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a missing key fails fast."""
        from src.core.config import settings

        monkeypatch.setattr(settings, "anthropic_api_key", None)
        with pytest.raises(ValueError):
            ClaudeClient()


class TestGeminiClient:
    """Tests for the Gemini client."""

    async def test_inline_data(self) -> None:
        """Test attachments are sent as inline_data parts."""
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "candidates": [{"content": {"parts": [{"text": '{"items": []}'}]}}],
                    "usageMetadata": {"promptTokenCount": 500, "candidatesTokenCount": 20},
                },
            )

        client = GeminiClient(api_key="test-key", model="gemini-test")
        with_transport(client, handler)

        response = await client.complete(messages(PDF))

        assert captured["url"].endswith("/gemini-test:generateContent")
        parts = captured["body"]["contents"][0]["parts"]
        assert parts[0]["inline_data"]["mime_type"] == "application/pdf"
        assert captured["body"]["system_instruction"]["parts"][0]["text"].startswith("You classify")
        assert response.content == '{"items": []}'
        assert response.total_tokens == 520


class TestMockClient:
    """Tests for the mock client and factory."""

    async def test_scripted_responses(self) -> None:
        """Test scripted responses are returned in order and exceptions raised."""
        client = MockLLMClient()
        client.set_responses(['{"a": 1}', LLMAPIError("boom")])

        async with client:
            first = await client.complete(messages(JPEG))
            with pytest.raises(LLMAPIError):
                await client.complete(messages(JPEG))

        assert first.content == '{"a": 1}'
        assert len(client.calls) == 2

    def test_factory(self) -> None:
        """Test the factory resolves providers by name."""
        assert isinstance(get_llm_client("mock"), MockLLMClient)
        with pytest.raises(ValueError):
            get_llm_client("openai")
