"""
Sistema de logging centralizado y estructurado.

Todos los módulos obtienen su logger con `get_logger`. Los helpers
`log_*` adjuntan al registro el contexto del agente de soporte (mensaje,
usuario, ticket, intención) como campos `extra`, que ambos formatters
saben presentar: JSON en producción y texto legible en desarrollo.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .config import get_settings

_log_initialized = False

# Campos de contexto: atributo del record -> etiqueta en consola
CONTEXT_FIELDS = {
    "message_id": "msg",
    "user_id": "user",
    "ticket_id": "ticket",
    "intent_type": "intent",
    "language": "lang",
    "service": "api",
    "processing_time": "ms",
}

# Campos que solo van al JSON
DETAIL_FIELDS = (
    "message_type", "message_stage", "delivery_status", "confidence_score", "fallback",
    "ticket_event", "ticket_details", "endpoint", "success", "error_message",
    "http_method", "http_path", "http_status",
)

# Rutas de sondeo que no se registran en cada request
QUIET_PATHS = {"/health", "/webhook/health"}

_MESSAGE_STAGE_ICONS = {
    "received": "📥",
    "processed": "✅",
    "status": "📬",
}


def _context_of(record: logging.LogRecord, fields) -> Dict[str, Any]:
    return {
        field: getattr(record, field)
        for field in fields
        if getattr(record, field, None) is not None
    }


class StructuredFormatter(logging.Formatter):
    """Una línea JSON por registro, para agregación de logs en producción."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        log_data.update(_context_of(record, CONTEXT_FIELDS))
        log_data.update(_context_of(record, DETAIL_FIELDS))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formato de consola para desarrollo, con el contexto entre corchetes."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        context = _context_of(record, CONTEXT_FIELDS)
        if "processing_time" in context:
            context["processing_time"] = f"{context['processing_time']:.0f}"
        if context:
            tags = ", ".join(f"{CONTEXT_FIELDS[field]}:{value}" for field, value in context.items())
            formatted += f" [{tags}]"

        return formatted


def setup_logging():
    """
    Configura el logging global una sola vez.

    Consola siempre; archivos rotativos (`logs/whatsapp_agent.log` y
    `logs/errors.log`) salvo con MOCK_EXTERNAL_SERVICES.
    """
    global _log_initialized

    if _log_initialized:
        return

    settings = get_settings()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    log_level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        StructuredFormatter() if settings.is_production else HumanReadableFormatter()
    )
    root_logger.addHandler(console_handler)

    if not settings.MOCK_EXTERNAL_SERVICES:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        for filename, level, backups in (("whatsapp_agent.log", logging.INFO, 5), ("errors.log", logging.ERROR, 3)):
            file_handler = logging.handlers.RotatingFileHandler(
                log_dir / filename,
                maxBytes=10*1024*1024,  # 10MB
                backupCount=backups,
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(StructuredFormatter())
            root_logger.addHandler(file_handler)

    _configure_external_loggers()

    _log_initialized = True

    logging.getLogger(__name__).info(
        f"📋 Logging configurado - Nivel: {settings.LOG_LEVEL}, Entorno: {settings.ENVIRONMENT}"
    )


def _configure_external_loggers():
    """Baja la verbosidad de los clientes HTTP, OpenAI, Redis y SQLAlchemy."""
    for logger_name in ('openai', 'httpx', 'httpcore', 'asyncio', 'sqlalchemy.engine', 'aiosqlite'):
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    # Redis: solo errores
    logging.getLogger('redis').setLevel(logging.ERROR)


def get_logger(name: str) -> logging.Logger:
    """Logger del módulo, con el logging global ya configurado."""
    if not _log_initialized:
        setup_logging()
    return logging.getLogger(name)


def log_message_event(
    logger: logging.Logger,
    stage: str,
    message_id: str,
    sender: Optional[str] = None,
    message_type: Optional[str] = None,
    processing_time: Optional[float] = None,
    status: Optional[str] = None
):
    """
    Log del recorrido de un mensaje de WhatsApp por el pipeline.

    Args:
        logger: Logger a usar
        stage: received, processed o status
        message_id: wamid del mensaje
        sender: Número del remitente o destinatario
        message_type: Tipo de mensaje (text, interactive, image...)
        processing_time: Tiempo total en ms (stage processed)
        status: Estado de entrega (stage status)
    """
    icon = _MESSAGE_STAGE_ICONS.get(stage, "💬")
    if stage == "processed" and processing_time is not None:
        text = f"{icon} Mensaje {message_id} procesado en {processing_time:.0f}ms"
    elif stage == "status":
        text = f"{icon} Estado de {message_id}: {status} (destinatario {sender})"
    else:
        text = f"{icon} Mensaje {message_id} de {sender} ({message_type})"

    logger.info(text, extra={
        'message_id': message_id,
        'message_stage': stage,
        'message_type': message_type,
        'processing_time': processing_time,
        'delivery_status': status
    })


def log_intent_classification(
    logger: logging.Logger,
    language: str,
    message: str,
    intent_type: str,
    confidence: float,
    processing_time: float,
    fallback: bool = False
):
    """
    Log especializado para clasificación de intenciones.

    Args:
        logger: Logger a usar
        language: Idioma del análisis
        message: Mensaje clasificado
        intent_type: Tipo de intención detectada
        confidence: Nivel de confianza
        processing_time: Tiempo de procesamiento en ms
        fallback: Si se usó la clasificación por palabras clave
    """
    preview = message[:50] + '...' if len(message) > 50 else message
    logger.info(
        f"🎯 Intent classified: {intent_type} (confidence: {confidence:.2f}{', fallback' if fallback else ''}) "
        f"- \"{preview}\"",
        extra={
            'language': language,
            'intent_type': intent_type,
            'confidence_score': confidence,
            'processing_time': processing_time,
            'fallback': fallback
        }
    )


def log_ticket_event(
    logger: logging.Logger,
    event: str,
    ticket_id: int,
    user_id: Optional[int] = None,
    **details: Any
):
    """Log de un evento del ciclo de vida de un ticket (created, status_changed, assigned...)."""
    logger.info(
        f"🎫 Ticket #{ticket_id}: {event}",
        extra={
            'ticket_id': ticket_id,
            'user_id': user_id,
            'ticket_event': event,
            'ticket_details': details
        }
    )


def log_api_call(
    logger: logging.Logger,
    service: str,
    endpoint: str,
    duration_ms: float,
    success: bool,
    error: Optional[str] = None
):
    """
    Log de una llamada a un servicio externo (OpenAI, Graph API).

    Los éxitos van a DEBUG para no duplicar el log de cada mensaje; los
    fallos a ERROR.
    """
    level = logging.DEBUG if success else logging.ERROR
    outcome = "ok" if success else f"failed: {error}"
    logger.log(level, f"{service} {endpoint} {outcome} ({duration_ms:.0f}ms)", extra={
        'service': service,
        'endpoint': endpoint,
        'processing_time': duration_ms,
        'success': success,
        'error_message': error
    })


class LoggingMiddleware:
    """
    Middleware HTTP de FastAPI: una línea por request con estado y duración.

    Los sondeos de salud solo se registran si fallan.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    async def __call__(self, request, call_next):
        start_time = time.perf_counter()
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                f"❌ HTTP {request.method} {path} falló",
                extra={
                    'http_method': request.method,
                    'http_path': path,
                    'error_message': str(e),
                    'processing_time': (time.perf_counter() - start_time) * 1000
                },
                exc_info=True
            )
            raise

        duration = (time.perf_counter() - start_time) * 1000
        if path not in QUIET_PATHS or response.status_code >= 400:
            self.logger.info(
                f"HTTP {request.method} {path} -> {response.status_code} ({duration:.0f}ms)",
                extra={
                    'http_method': request.method,
                    'http_path': path,
                    'http_status': response.status_code,
                    'processing_time': duration
                }
            )
        return response


# Auto-inicializar logging cuando se importa el módulo
setup_logging()
