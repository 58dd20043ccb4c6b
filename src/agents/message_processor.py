"""
Message Processor - Pipeline de procesamiento de mensajes entrantes

Orquesta un turno completo: usuario, conversación, persistencia del
mensaje, sesión, despacho por tipo, envío de la respuesta y
actualización de la sesión.

`process_incoming_message` es el único punto donde se capturan errores
del pipeline: ante cualquier fallo se envía el mensaje de error genérico
al remitente y nunca se propaga la excepción.
"""

import re
import time
from datetime import datetime
from typing import Any, Dict, Optional

from .intent_classifier import IntentClassifierAgent
from .intent_handler import IntentHandler
from .ticket_message_handler import TicketMessageHandler
from ..db.models import User
from ..models.intents import IntentType
from ..models.messages import BotResponse, InboundMessage, MessageType, TextResponse
from ..models.session import Session
from ..services.cache_service import SessionService
from ..services.conversation_service import ConversationService
from ..services.localization_service import LocalizationService
from ..services.message_formatter import MessageFormatter, format_phone_number
from ..services.whatsapp_service import WhatsAppService
from ..utils.config import Settings, get_settings
from ..utils.logger import get_logger, log_message_event

logger = get_logger(__name__)

TICKET_PREFILTER_CONFIDENCE = 0.7


def build_keyword_pattern(keywords) -> Optional[re.Pattern]:
    """Regex que encuentra cualquiera de las frases como palabras completas."""
    phrases = [re.escape(keyword.strip()) for keyword in keywords if keyword.strip()]
    if not phrases:
        return None
    return re.compile(r"(?<!\w)(?:" + "|".join(phrases) + r")s?(?!\w)", re.IGNORECASE)


class MessageProcessor:
    """
    Orquestador del pipeline de mensajes.

    Features:
    - Resolución de usuario, conversación y sesión por mensaje
    - Detección de idioma y cambio de idioma del usuario
    - Transferencia directa a agente por palabras clave
    - Pre-filtro local de tickets antes del clasificador
    - Umbral de confianza con KB, respuesta IA y menú como respaldo
    """

    def __init__(
        self,
        conversation_service: ConversationService,
        session_service: SessionService,
        classifier: IntentClassifierAgent,
        intent_handler: IntentHandler,
        ticket_handler: TicketMessageHandler,
        localization: LocalizationService,
        formatter: MessageFormatter,
        whatsapp_service: WhatsAppService,
        settings: Optional[Settings] = None
    ):
        self.conversation_service = conversation_service
        self.session_service = session_service
        self.classifier = classifier
        self.intent_handler = intent_handler
        self.ticket_handler = ticket_handler
        self.localization = localization
        self.formatter = formatter
        self.whatsapp_service = whatsapp_service
        self.settings = settings or get_settings()

        self.confidence_threshold = self.settings.INTENT_CONFIDENCE_THRESHOLD
        self.handoff_pattern = build_keyword_pattern(self.settings.AUTO_HANDOFF_KEYWORDS)

        self.stats = {
            "messages_processed": 0,
            "messages_failed": 0,
            "responses_sent": 0,
            "handoffs": 0,
            "status_events": 0,
            "average_processing_time_ms": 0.0
        }

    # ================================
    # Entry points
    # ================================

    async def process_incoming_message(self, message: InboundMessage) -> Optional[BotResponse]:
        """
        Procesa un mensaje entrante de principio a fin.

        Args:
            message: Mensaje ya parseado por la capa de transporte

        Returns:
            La respuesta enviada, o None si no hubo respuesta o falló
        """
        start_time = time.time()
        log_message_event(
            logger, "received", message.message_id, format_phone_number(message.sender), message.message_type.value
        )

        try:
            response = await self._process(message)

        except Exception as e:
            self.stats["messages_failed"] += 1
            logger.error(f"❌ Error procesando mensaje {message.message_id}: {e}", exc_info=True)
            await self._send_error_message(message.sender)
            return None

        processing_time = (time.time() - start_time) * 1000
        self._update_stats(processing_time)
        log_message_event(
            logger, "processed", message.message_id, format_phone_number(message.sender),
            message.message_type.value, processing_time=processing_time
        )
        return response

    async def process_message_status(self, event: InboundMessage) -> None:
        """Eventos de estado de entrega: solo se registran."""
        self.stats["status_events"] += 1
        log_message_event(
            logger, "status", event.message_id, format_phone_number(event.recipient_id or ""), status=event.status
        )

    async def _send_error_message(self, recipient: str):
        try:
            await self.whatsapp_service.send_text_message(
                recipient,
                self.localization.get_error_message(self.settings.DEFAULT_LANGUAGE)
            )
        except Exception as send_error:
            logger.error(f"❌ Error enviando mensaje de error a {format_phone_number(recipient)}: {send_error}")

    async def _process(self, message: InboundMessage) -> Optional[BotResponse]:
        contact_name = message.contact.name if message.contact else None
        phone_number = (message.contact.phone_number if message.contact else None) or message.sender

        user = await self.conversation_service.get_or_create_user(phone_number, contact_name)
        conversation = await self.conversation_service.get_or_create_conversation(user.id)

        saved = await self.conversation_service.save_message(conversation.id, message)
        await self.conversation_service.mark_message_processed(saved.id)

        session = await self.session_service.get_session(phone_number)
        if session is None:
            session = Session(
                conversation_id=conversation.id,
                language=self.localization.resolve_language(user.language),
                context={},
                last_activity=datetime.now()
            )
        session.conversation_id = conversation.id

        response = await self._dispatch(message, user, session)

        if response is not None:
            await self.whatsapp_service.send_response(message.sender, response)
            self.stats["responses_sent"] += 1

        session.last_activity = datetime.now()
        await self.session_service.set_session(phone_number, session)

        return response

    async def _dispatch(self, message: InboundMessage, user: User, session: Session) -> Optional[BotResponse]:
        message_type = message.message_type

        if message_type == MessageType.TEXT:
            return await self.process_text_message(message.text, user, session)
        if message_type == MessageType.INTERACTIVE:
            return await self.process_interactive_message(message.content, user, session)
        if message_type.is_media:
            return await self.process_media_message(message_type, message.content, user, session)
        if message_type == MessageType.LOCATION:
            return TextResponse(content=self.formatter.format_location_message(message.content, session.language))

        return self.get_default_response(session)

    # ================================
    # Handlers por tipo
    # ================================

    async def process_text_message(self, text: str, user: User, session: Session) -> BotResponse:
        """
        Texto libre: idioma, transferencia, pre-filtro de tickets,
        clasificador y respaldos por confianza.
        """
        detected = await self.classifier.detect_language(text)
        if (
            detected is not None
            and self.localization.is_language_supported(detected)
            and detected != user.language
        ):
            await self.conversation_service.update_user_language(user.id, detected)
            user.language = detected
            session.language = detected

        if self.should_transfer_to_human(text):
            self.stats["handoffs"] += 1
            return await self.intent_handler.initiate_human_handoff(user, session, text)

        ticket_intent = self.ticket_handler.analyze_ticket_intent(text, session.language)
        if ticket_intent is not None and ticket_intent.confidence > TICKET_PREFILTER_CONFIDENCE:
            if ticket_intent.intent == IntentType.CREATE_TICKET:
                return await self.ticket_handler.handle_create_ticket(user, session.language, text)
            return await self.ticket_handler.handle_check_ticket_status(user, session.language)

        analysis = await self.classifier.analyze_intent(text, session.language)
        if analysis.confidence >= self.confidence_threshold:
            return await self.intent_handler.handle_intent(analysis, user, session, text)

        return await self.intent_handler.handle_unmatched_text(user, session, text)

    async def process_interactive_message(
        self,
        content: Dict[str, Any],
        user: User,
        session: Session
    ) -> BotResponse:
        button_id = content.get("button_id") or content.get("list_id")
        title = content.get("button_title") or content.get("list_title") or ""

        if not button_id:
            return self.get_default_response(session)

        response = await self.intent_handler.handle_button(button_id, user, session, title)
        if response is not None:
            return response

        # ID desconocido: el título se procesa como texto libre
        return await self.process_text_message(title, user, session)

    async def process_media_message(
        self,
        message_type: MessageType,
        content: Dict[str, Any],
        user: User,
        session: Session
    ) -> BotResponse:
        caption = content.get("caption")
        logger.info(f"📎 Media {message_type.value} recibida (caption: {bool(caption)})", extra={"user_id": user.id})

        if caption:
            return await self.process_text_message(caption, user, session)

        return TextResponse(content=self.formatter.format_media_message(message_type, session.language))

    def get_default_response(self, session: Session) -> TextResponse:
        return TextResponse(content=self.localization.get_fallback_message(session.language))

    def should_transfer_to_human(self, text: str) -> bool:
        """Palabras o frases de transferencia completas, admitiendo plural."""
        return bool(self.handoff_pattern and self.handoff_pattern.search(text))

    # ================================
    # Stats
    # ================================

    def _update_stats(self, processing_time: float):
        self.stats["messages_processed"] += 1
        total = self.stats["messages_processed"]
        current_avg = self.stats["average_processing_time_ms"]
        self.stats["average_processing_time_ms"] = (current_avg * (total - 1) + processing_time) / total

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
