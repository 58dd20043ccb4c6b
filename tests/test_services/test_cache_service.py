"""
Tests para CacheService y SessionService sobre fakeredis.
"""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from src.models.session import Session
from src.services.cache_service import hash_text


class TestCacheService:
    """Tests de operaciones básicas de cache."""

    @pytest.mark.asyncio
    async def test_set_and_get_json_values(self, cache_service):
        """Los valores se guardan como JSON con TTL."""

        # Act
        await cache_service.set("test:key", {"a": 1, "when": datetime(2024, 1, 1)}, ttl=60)
        value = await cache_service.get("test:key")
        ttl = await cache_service.ttl("test:key")

        # Assert
        assert value == {"a": 1, "when": "2024-01-01 00:00:00"}
        assert 0 < ttl <= 60

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self, cache_service):
        assert await cache_service.get("missing") is None
        assert cache_service.get_stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_get_swallows_errors(self, cache_service, redis_client):
        """`get` devuelve None ante errores de Redis."""

        # Arrange
        redis_client.get = AsyncMock(side_effect=ConnectionError("down"))

        # Act & Assert
        assert await cache_service.get("any") is None
        assert cache_service.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_set_propagates_errors(self, cache_service, redis_client):
        """`set` propaga errores para que el llamador decida."""

        # Arrange
        redis_client.setex = AsyncMock(side_effect=ConnectionError("down"))

        # Act & Assert
        with pytest.raises(ConnectionError):
            await cache_service.set("key", "value")

    @pytest.mark.asyncio
    async def test_delete_pattern(self, cache_service):
        """Elimina solo las claves que coinciden."""

        # Arrange
        await cache_service.set("tickets:user:1:all:10:0", [])
        await cache_service.set("tickets:user:1:OPEN:10:0", [])
        await cache_service.set("tickets:user:2:all:10:0", [])

        # Act
        deleted = await cache_service.delete_pattern("tickets:user:1:*")

        # Assert
        assert deleted == 2
        assert await cache_service.exists("tickets:user:2:all:10:0")

    @pytest.mark.asyncio
    async def test_health_check(self, cache_service):
        health = await cache_service.health_check()

        assert health["status"] == "healthy"
        assert "response_time_ms" in health

    def test_hash_text_is_stable(self):
        assert hash_text("Bonjour") == hash_text("Bonjour")
        assert hash_text("Bonjour") != hash_text("bonjour")


class TestSessionService:
    """Tests de persistencia de sesión."""

    @pytest.mark.asyncio
    async def test_session_round_trip(self, session_service):
        """La sesión se guarda con TTL y se recupera con su contexto."""

        # Arrange
        session = Session(
            conversation_id=3,
            language="en",
            context={"pendingHandoff": True, "handoffReason": "agent please"}
        )

        # Act
        await session_service.set_session("33612345678", session)
        restored = await session_service.get_session("33612345678")

        # Assert
        assert restored is not None
        assert restored.conversation_id == 3
        assert restored.language == "en"
        assert restored.context["pendingHandoff"] is True

    @pytest.mark.asyncio
    async def test_missing_session_returns_none(self, session_service):
        assert await session_service.get_session("nobody") is None

    @pytest.mark.asyncio
    async def test_corrupt_session_is_discarded(self, session_service, cache_service):
        """Datos inválidos en cache no rompen el pipeline."""

        # Arrange
        await cache_service.set("session:33600000000", {"language": "fr"})

        # Act & Assert
        assert await session_service.get_session("33600000000") is None

    @pytest.mark.asyncio
    async def test_delete_and_extend(self, session_service, cache_service):
        # Arrange
        await session_service.set_session("33611111111", Session(conversation_id=1, language="fr"))

        # Act
        extended = await session_service.extend_session("33611111111")
        deleted = await session_service.delete_session("33611111111")

        # Assert
        assert extended is True
        assert deleted is True
        assert await cache_service.get("session:33611111111") is None
