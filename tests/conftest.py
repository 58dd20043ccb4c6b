"""
Configuración global para tests pytest.

Define fixtures y configuración común para todos los tests: Redis en
memoria con fakeredis, SQLite temporal con aiosqlite y mocks del modelo
alojado y de la API de WhatsApp.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from src.agents.intent_classifier import IntentClassifierAgent
from src.agents.intent_handler import IntentHandler
from src.agents.message_processor import MessageProcessor
from src.agents.ticket_message_handler import TicketMessageHandler
from src.db.database import Database
from src.models.session import Session
from src.services.cache_service import CacheService, RedisConnectionManager, SessionService
from src.services.conversation_service import ConversationService
from src.services.knowledge_base_service import KnowledgeBaseService
from src.services.localization_service import LocalizationService
from src.services.message_formatter import MessageFormatter
from src.services.ticket_service import TicketService
from src.utils.config import Settings, set_settings_for_testing


@pytest.fixture(scope="session")
def test_settings():
    """Configuración de testing."""
    return Settings(
        # Modelo alojado
        OPENAI_API_KEY="sk-test-key-for-testing",
        OPENAI_MODEL="gpt-test",

        # WhatsApp
        WHATSAPP_TOKEN="test-token",
        WHATSAPP_PHONE_NUMBER_ID="123456789",
        WHATSAPP_VERIFY_TOKEN="verify-me",
        WHATSAPP_APP_SECRET=None,

        # Idiomas
        DEFAULT_LANGUAGE="fr",
        SUPPORTED_LANGUAGES=["fr", "en"],

        # Sin siembra ni barridos automáticos
        KB_SEED_DEFAULT_ENTRIES=False,
        TICKET_SWEEP_INTERVAL=0,

        # Environment
        ENVIRONMENT="testing",
        LOG_LEVEL="DEBUG",
        DEBUG=True,
        MOCK_EXTERNAL_SERVICES=True,

        INTENT_CONFIDENCE_THRESHOLD=0.5
    )


@pytest.fixture(autouse=True)
def setup_test_settings(test_settings):
    """Auto-setup settings de testing para todos los tests."""
    set_settings_for_testing(test_settings)


# ================================
# Infraestructura
# ================================

@pytest_asyncio.fixture
async def redis_client():
    """Cliente Redis en memoria."""
    client = FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def cache_service(test_settings, redis_client):
    manager = RedisConnectionManager(test_settings, client=redis_client)
    return CacheService(manager)


@pytest.fixture
def session_service(cache_service):
    return SessionService(cache_service)


@pytest_asyncio.fixture
async def database(test_settings, tmp_path):
    """Base de datos SQLite temporal por test."""
    db = Database(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", settings=test_settings)
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def mock_llm_service():
    """Mock del LLMService: `complete` devuelve JSON vacío salvo que el test lo cambie."""
    service = MagicMock()
    service.complete = AsyncMock(return_value="{}")
    service.health_check = AsyncMock(return_value={"status": "healthy"})
    service.get_stats = MagicMock(return_value={"total_calls": 0})
    return service


@pytest.fixture
def mock_whatsapp_service():
    """Mock del adaptador de WhatsApp."""
    service = MagicMock()
    service.send_response = AsyncMock(return_value="wamid.outgoing")
    service.send_text_message = AsyncMock(return_value="wamid.outgoing")
    service.mark_message_as_read = AsyncMock(return_value=True)
    service.check_api_health = AsyncMock(return_value={"status": "healthy"})
    service.get_stats = MagicMock(return_value={"messages_sent": 0})
    return service


# ================================
# Servicios de dominio
# ================================

@pytest.fixture
def localization(test_settings):
    return LocalizationService(test_settings)


@pytest.fixture
def formatter(localization):
    return MessageFormatter(localization)


@pytest.fixture
def conversation_service(database, test_settings):
    return ConversationService(database, test_settings)


@pytest.fixture
def knowledge_base_service(database, cache_service, mock_llm_service, test_settings):
    return KnowledgeBaseService(database, cache_service, mock_llm_service, test_settings)


@pytest.fixture
def ticket_service(database, cache_service, test_settings):
    return TicketService(database, cache_service, test_settings)


@pytest.fixture
def intent_classifier(mock_llm_service, cache_service, test_settings):
    return IntentClassifierAgent(mock_llm_service, cache_service, test_settings)


@pytest.fixture
def ticket_handler(ticket_service, localization, formatter):
    return TicketMessageHandler(ticket_service, localization, formatter)


@pytest.fixture
def intent_handler(localization, ticket_handler, knowledge_base_service, intent_classifier,
                   conversation_service, test_settings):
    return IntentHandler(
        localization=localization,
        ticket_handler=ticket_handler,
        knowledge_base=knowledge_base_service,
        classifier=intent_classifier,
        conversation_service=conversation_service,
        settings=test_settings
    )


@pytest.fixture
def message_processor(conversation_service, session_service, intent_classifier, intent_handler,
                      ticket_handler, localization, formatter, mock_whatsapp_service, test_settings):
    return MessageProcessor(
        conversation_service=conversation_service,
        session_service=session_service,
        classifier=intent_classifier,
        intent_handler=intent_handler,
        ticket_handler=ticket_handler,
        localization=localization,
        formatter=formatter,
        whatsapp_service=mock_whatsapp_service,
        settings=test_settings
    )


# ================================
# Datos de ejemplo
# ================================

@pytest_asyncio.fixture
async def sample_user(conversation_service):
    return await conversation_service.get_or_create_user("33612345678", "Marie")


@pytest_asyncio.fixture
async def sample_session(conversation_service, sample_user):
    conversation = await conversation_service.get_or_create_conversation(sample_user.id)
    return Session(conversation_id=conversation.id, language="fr")


@pytest.fixture
def webhook_payload():
    """Payload real del webhook con un mensaje de texto y un estado."""
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": "15550001111", "phone_number_id": "123456789"},
                    "contacts": [{"profile": {"name": "Marie"}, "wa_id": "33612345678"}],
                    "messages": [{
                        "from": "33612345678",
                        "id": "wamid.HBgLMzM2MTIzNDU2Nzg",
                        "timestamp": "1709289000",
                        "type": "text",
                        "text": {"body": "Bonjour"}
                    }],
                    "statuses": [{
                        "id": "wamid.out.001",
                        "status": "delivered",
                        "timestamp": "1709289005",
                        "recipient_id": "33612345678"
                    }]
                }
            }]
        }]
    }
