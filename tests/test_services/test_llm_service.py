"""
Tests para LLMService y helpers de parseo.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from src.services.llm_service import LLMService, parse_json_response, to_openai_messages
from src.utils.errors import ServiceUnavailableError


def make_completion(content, total_tokens=12):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=total_tokens)
    )


@pytest.fixture
def mock_openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=make_completion("  OK  "))
    return client


@pytest.fixture
def llm_service(test_settings, mock_openai_client):
    return LLMService(test_settings, client=mock_openai_client)


class TestParsing:
    """Tests de helpers puros."""

    def test_plain_json(self):
        assert parse_json_response('{"intent": "greeting"}') == {"intent": "greeting"}

    def test_fenced_json(self):
        raw = '```json\n{"language": "en"}\n```'

        assert parse_json_response(raw) == {"language": "en"}

    def test_json_with_surrounding_text(self):
        raw = 'Voici le résultat : {"scores": [0.1, 0.9]} Merci.'

        assert parse_json_response(raw) == {"scores": [0.1, 0.9]}

    def test_no_json_raises(self):
        with pytest.raises(ValueError):
            parse_json_response("je ne sais pas")

    def test_prompt_messages_are_converted(self):
        # Act
        converted = to_openai_messages([
            SystemMessage(content="system"),
            HumanMessage(content="question"),
            AIMessage(content="answer"),
            {"role": "user", "content": "raw"}
        ])

        # Assert
        assert [m["role"] for m in converted] == ["system", "user", "assistant", "user"]
        assert converted[1]["content"] == "question"


class TestLLMService:
    """Tests del cliente con la API mockeada."""

    @pytest.mark.asyncio
    async def test_complete_returns_stripped_content(self, llm_service, mock_openai_client):
        # Act
        result = await llm_service.complete(
            [{"role": "user", "content": "ping"}], max_tokens=5, temperature=0
        )

        # Assert
        assert result == "OK"
        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["max_tokens"] == 5
        assert kwargs["temperature"] == 0

        stats = llm_service.get_stats()
        assert stats["successful_calls"] == 1
        assert stats["total_tokens_used"] == 12

    @pytest.mark.asyncio
    async def test_defaults_from_settings(self, llm_service, mock_openai_client, test_settings):
        await llm_service.complete([{"role": "user", "content": "ping"}])

        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["max_tokens"] == test_settings.OPENAI_MAX_TOKENS
        assert kwargs["temperature"] == test_settings.OPENAI_TEMPERATURE

    @pytest.mark.asyncio
    async def test_rate_limit_becomes_service_unavailable(self, llm_service, mock_openai_client):
        """Cuota o rate limit se distingue del resto de errores."""

        # Arrange
        response = httpx.Response(429, request=httpx.Request("POST", "https://api.test/chat/completions"))
        mock_openai_client.chat.completions.create.side_effect = openai.RateLimitError(
            "rate limited", response=response, body=None
        )

        # Act & Assert
        with pytest.raises(ServiceUnavailableError):
            await llm_service.complete([{"role": "user", "content": "ping"}])

        stats = llm_service.get_stats()
        assert stats["rate_limit_hits"] == 1
        assert stats["failed_calls"] == 1

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, llm_service, mock_openai_client):
        mock_openai_client.chat.completions.create.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await llm_service.complete([{"role": "user", "content": "ping"}])

    @pytest.mark.asyncio
    async def test_health_check(self, llm_service, mock_openai_client):
        # Healthy
        assert (await llm_service.health_check())["status"] == "healthy"

        # Unhealthy
        mock_openai_client.chat.completions.create.side_effect = RuntimeError("boom")
        health = await llm_service.health_check()
        assert health["status"] == "unhealthy"
        assert health["api_accessible"] is False
