"""
FastAPI Main Application - Agente de soporte WhatsApp

Aplicación principal que recibe los webhooks de la WhatsApp Cloud API,
procesa cada mensaje con el pipeline de soporte (intención, base de
conocimiento, tickets, transferencia a humano) y responde por la Graph API.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from src.agents.intent_classifier import IntentClassifierAgent
from src.agents.intent_handler import IntentHandler
from src.agents.message_processor import MessageProcessor
from src.agents.ticket_message_handler import TicketMessageHandler
from src.db.database import Database
from src.models.messages import Contact, EventType, InboundMessage, MessageType
from src.services.cache_service import CacheService, RedisConnectionManager, SessionService
from src.services.conversation_service import ConversationService
from src.services.knowledge_base_service import KnowledgeBaseService
from src.services.llm_service import LLMService
from src.services.localization_service import LocalizationService
from src.services.message_formatter import MessageFormatter, format_uptime
from src.services.ticket_service import TicketService
from src.services.whatsapp_service import WhatsAppService, parse_webhook_payload, verify_signature
from src.utils.config import get_settings
from src.utils.errors import ChatbotError, InternalError
from src.utils.logger import LoggingMiddleware, get_logger

# Configuración
settings = get_settings()
logger = get_logger(__name__)

WEBHOOK_OBJECT = "whatsapp_business_account"

# Servicios globales - inicializados en startup
redis_manager: Optional[RedisConnectionManager] = None
cache_service: Optional[CacheService] = None
database: Optional[Database] = None
llm_service: Optional[LLMService] = None
whatsapp_service: Optional[WhatsAppService] = None
intent_classifier: Optional[IntentClassifierAgent] = None
knowledge_base_service: Optional[KnowledgeBaseService] = None
ticket_service: Optional[TicketService] = None
message_processor: Optional[MessageProcessor] = None

# Estadísticas globales
app_stats = {
    "webhooks_received": 0,
    "messages_received": 0,
    "status_events_received": 0,
    "invalid_signatures": 0,
    "uptime_start": time.time(),
    "last_activity": time.time()
}


class SimulatedMessageRequest(BaseModel):
    """Mensaje de prueba para ejecutar el pipeline sin WhatsApp."""
    sender: str = Field(alias="from", description="Número del remitente")
    text: str = Field(description="Texto del mensaje")
    name: Optional[str] = Field(default=None, description="Nombre del contacto")


class HealthResponse(BaseModel):
    """Respuesta del endpoint de health check."""
    status: str
    timestamp: float
    uptime_seconds: float
    uptime: str
    services: Dict[str, Any]
    stats: Dict[str, Any]


async def ticket_sweep_loop(interval: int):
    """
    Barrido periódico de tickets: escalación y cierre automático.

    Los fallos de una pasada se registran y no detienen el bucle.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            result = await ticket_service.run_maintenance()
            logger.info(f"🧹 Barrido de tickets: {result}")
        except Exception as e:
            logger.error(f"❌ Error en barrido de tickets: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifecycle manager para la aplicación.

    Inicializa servicios en startup y los libera en shutdown.
    """
    global redis_manager, cache_service, database, llm_service, whatsapp_service
    global intent_classifier, knowledge_base_service, ticket_service, message_processor

    logger.info("🚀 Iniciando agente de soporte WhatsApp...")
    sweep_task: Optional[asyncio.Task] = None

    try:
        logger.info("📦 Inicializando servicios...")

        redis_manager = RedisConnectionManager(settings)
        if not await redis_manager.initialize():
            raise RuntimeError("Redis initialization failed")
        cache_service = CacheService(redis_manager)
        session_service = SessionService(cache_service)

        database = Database(settings=settings)
        await database.initialize()

        llm_service = LLMService(settings)
        whatsapp_service = WhatsAppService(settings)

        localization = LocalizationService(settings)
        formatter = MessageFormatter(localization)
        conversation_service = ConversationService(database, settings)
        knowledge_base_service = KnowledgeBaseService(database, cache_service, llm_service, settings)
        ticket_service = TicketService(database, cache_service, settings)
        intent_classifier = IntentClassifierAgent(llm_service, cache_service, settings)

        ticket_handler = TicketMessageHandler(ticket_service, localization, formatter)
        intent_handler = IntentHandler(
            localization=localization,
            ticket_handler=ticket_handler,
            knowledge_base=knowledge_base_service,
            classifier=intent_classifier,
            conversation_service=conversation_service,
            settings=settings
        )
        message_processor = MessageProcessor(
            conversation_service=conversation_service,
            session_service=session_service,
            classifier=intent_classifier,
            intent_handler=intent_handler,
            ticket_handler=ticket_handler,
            localization=localization,
            formatter=formatter,
            whatsapp_service=whatsapp_service,
            settings=settings
        )

        if settings.KB_SEED_DEFAULT_ENTRIES:
            for language in settings.SUPPORTED_LANGUAGES:
                await knowledge_base_service.initialize_default_entries(language)

        if settings.TICKET_SWEEP_INTERVAL > 0:
            sweep_task = asyncio.create_task(ticket_sweep_loop(settings.TICKET_SWEEP_INTERVAL))

        logger.info("✅ Todos los servicios iniciados correctamente")

        yield  # Aquí la app está corriendo

    except Exception as e:
        logger.error(f"❌ Error en startup: {e}")
        raise

    finally:
        logger.info("🛑 Cerrando aplicación...")

        if sweep_task:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass

        if whatsapp_service:
            await whatsapp_service.close()

        if redis_manager:
            await redis_manager.close()

        if database:
            await database.close()

        logger.info("✅ Aplicación cerrada correctamente")


# Crear aplicación FastAPI
app = FastAPI(
    title="Agente de soporte WhatsApp",
    description="Atención al cliente por WhatsApp con intención, base de conocimiento y tickets",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
    allow_headers=["*"],
)

# Logging de requests HTTP
app.middleware("http")(LoggingMiddleware(logger))


def _require(service: Any, name: str) -> Any:
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not available")
    return service


async def handle_webhook_event(processor: MessageProcessor, event: InboundMessage):
    """
    Procesa un evento del webhook como unidad aislada.

    Ningún error sale de aquí: las tareas de fondo se ejecutan en serie y
    una excepción cancelaría los eventos siguientes de la misma entrega.
    """
    try:
        if event.type != EventType.MESSAGE:
            await processor.process_message_status(event)
            return

        if whatsapp_service is not None:
            try:
                await whatsapp_service.mark_message_as_read(event.message_id)
            except Exception as e:
                logger.warning(f"⚠️ Confirmación de lectura fallida para {event.message_id}: {e}")

        await processor.process_incoming_message(event)
    except Exception as e:
        logger.error(f"❌ Error procesando evento {event.message_id}: {e}", exc_info=True)


# ================================
# Webhook
# ================================

@app.get("/webhook")
async def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge")
):
    """Verificación del webhook por Meta: devuelve el challenge en texto plano."""
    if (
        hub_mode == "subscribe"
        and settings.WHATSAPP_VERIFY_TOKEN
        and hub_verify_token == settings.WHATSAPP_VERIFY_TOKEN
    ):
        logger.info("✅ Webhook verificado")
        return PlainTextResponse(hub_challenge or "")

    logger.warning(f"⚠️ Verificación de webhook rechazada (mode={hub_mode})")
    raise HTTPException(status_code=403, detail="Verification failed")


@app.post("/webhook")
async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Recepción de eventos de WhatsApp.

    Responde de inmediato; cada mensaje se procesa en una tarea de fondo
    independiente.
    """
    body = await request.body()

    if not verify_signature(body, request.headers.get("X-Hub-Signature-256"), settings.WHATSAPP_APP_SECRET):
        app_stats["invalid_signatures"] += 1
        logger.warning("⚠️ Firma de webhook inválida")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if not isinstance(payload, dict) or payload.get("object") != WEBHOOK_OBJECT:
        raise HTTPException(status_code=404, detail="Unsupported webhook object")

    processor = _require(message_processor, "Message processor")
    app_stats["webhooks_received"] += 1
    app_stats["last_activity"] = time.time()

    for event in parse_webhook_payload(payload):
        if event.type == EventType.MESSAGE:
            app_stats["messages_received"] += 1
        else:
            app_stats["status_events_received"] += 1
        background_tasks.add_task(handle_webhook_event, processor, event)

    return {"status": "received"}


@app.get("/webhook/health")
async def webhook_health():
    """Estado de la conexión con la Graph API."""
    service = _require(whatsapp_service, "WhatsApp service")
    return await service.check_api_health()


@app.get("/webhook/info")
async def webhook_info():
    """Configuración pública del webhook."""
    return {
        "endpoint": "/webhook",
        "api_version": settings.WHATSAPP_API_VERSION,
        "phone_number_configured": bool(settings.WHATSAPP_PHONE_NUMBER_ID),
        "verify_token_configured": bool(settings.WHATSAPP_VERIFY_TOKEN),
        "signature_verification": bool(settings.WHATSAPP_APP_SECRET),
        "supported_languages": settings.SUPPORTED_LANGUAGES,
        "default_language": settings.DEFAULT_LANGUAGE
    }


@app.post("/webhook/test")
async def webhook_test(request: SimulatedMessageRequest):
    """
    Ejecuta el pipeline completo con un mensaje de texto simulado.

    Deshabilitado en producción.
    """
    if settings.is_production:
        raise HTTPException(status_code=404, detail="Not found")

    processor = _require(message_processor, "Message processor")

    message = InboundMessage(
        type=EventType.MESSAGE,
        message_id=f"test_{int(time.time() * 1000)}",
        sender=request.sender,
        message_type=MessageType.TEXT,
        content={"text": request.text},
        contact=Contact(name=request.name, phone_number=request.sender)
    )

    response = await processor.process_incoming_message(message)
    return {
        "status": "processed",
        "message_id": message.message_id,
        "response": response.model_dump() if response is not None else None
    }


# ================================
# Monitoring
# ================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Endpoint de health check para monitoreo.

    Verifica Redis, base de datos, modelo y WhatsApp.
    """
    uptime = time.time() - app_stats["uptime_start"]
    checks = {
        "redis": cache_service.health_check if cache_service else None,
        "database": database.health_check if database else None,
        "llm": llm_service.health_check if llm_service else None,
        "whatsapp": whatsapp_service.check_api_health if whatsapp_service else None
    }

    services_status: Dict[str, Any] = {}
    for name, check in checks.items():
        if check is None:
            services_status[name] = {"status": "not_initialized"}
            continue
        try:
            services_status[name] = await check()
        except Exception as e:
            logger.error(f"❌ Error en health check de {name}: {e}")
            services_status[name] = {"status": "unhealthy", "error": str(e)}

    all_healthy = all(service.get("status") == "healthy" for service in services_status.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        timestamp=time.time(),
        uptime_seconds=uptime,
        uptime=format_uptime(uptime),
        services=services_status,
        stats=app_stats
    )


@app.get("/stats")
async def get_stats():
    """Estadísticas de todos los servicios."""
    stats: Dict[str, Any] = {
        "app_stats": app_stats,
        "uptime_seconds": time.time() - app_stats["uptime_start"],
    }

    if message_processor:
        stats["message_processor"] = message_processor.get_stats()
    if intent_classifier:
        stats["intent_classifier"] = intent_classifier.get_stats()
    if llm_service:
        stats["llm_service"] = llm_service.get_stats()
    if cache_service:
        stats["cache_service"] = cache_service.get_stats()
    if knowledge_base_service:
        stats["knowledge_base"] = knowledge_base_service.get_service_stats()
    if whatsapp_service:
        stats["whatsapp_service"] = whatsapp_service.get_stats()

    return stats


@app.get("/")
async def root():
    """Endpoint raíz con información básica."""
    return {
        "service": "Agente de soporte WhatsApp",
        "version": "1.0.0",
        "status": "running",
        "uptime_seconds": time.time() - app_stats["uptime_start"],
        "endpoints": {
            "webhook": "/webhook",
            "webhook_test": "POST /webhook/test",
            "health": "/health",
            "stats": "/stats",
            "tickets": {
                "escalations": "POST /tickets/escalations/check",
                "auto_close": "POST /tickets/auto-close"
            }
        }
    }


# ================================
# Ticket maintenance
# ================================

@app.post("/tickets/escalations/check")
async def check_escalations():
    """Escala los tickets abiertos que superaron el timeout."""
    service = _require(ticket_service, "Ticket service")
    escalated = await service.check_tickets_for_escalation()
    return {
        "escalated": len(escalated),
        "tickets": [ticket.model_dump(mode="json") for ticket in escalated]
    }


@app.post("/tickets/auto-close")
async def auto_close_tickets():
    """Cierra los tickets resueltos antiguos."""
    service = _require(ticket_service, "Ticket service")
    closed = await service.auto_close_resolved_tickets()
    return {"closed": closed}


# Error handlers
@app.exception_handler(ChatbotError)
async def chatbot_exception_handler(request: Request, exc: ChatbotError):
    """Errores de dominio con su código HTTP."""
    logger.warning(f"⚠️ {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handler global para excepciones no manejadas."""
    logger.error(f"❌ Excepción global no manejada: {exc}", exc_info=True)

    error = InternalError(
        str(exc) if settings.DEBUG else "An error occurred",
        {"path": request.url.path, "timestamp": time.time()}
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True
    )
