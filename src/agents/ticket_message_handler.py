"""
Ticket Message Handler - Detección y manejo de solicitudes de ticket

Detector local (sin modelo) de peticiones de creación y consulta de
tickets, extracción de título/descripción desde texto libre y
construcción de las respuestas correspondientes.
"""

import re
from typing import List, Optional

from ..db.models import User
from ..models.intents import IntentType
from ..models.messages import TextResponse
from ..models.tickets import TicketInfo, TicketIntent
from ..services.localization_service import LocalizationService, MessageKey
from ..services.message_formatter import MessageFormatter, clean_text, truncate_text
from ..services.ticket_service import (
    MAX_DESCRIPTION_LENGTH, MAX_TITLE_LENGTH, TicketService
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

TICKET_INTENT_CONFIDENCE = 0.8
RECENT_TICKETS_LIMIT = 5

CREATION_KEYWORDS = {
    "fr": ["créer un ticket", "nouveau ticket", "ouvrir un ticket", "créer ticket", "ticket"],
    "en": ["create ticket", "new ticket", "open ticket", "ticket"],
}

STATUS_KEYWORDS = {
    "fr": ["statut ticket", "état ticket", "vérifier ticket", "mes tickets", "ticket status"],
    "en": ["ticket status", "check ticket", "my tickets", "ticket state"],
}

# Se eliminan del texto antes de extraer título y descripción
TRIGGER_KEYWORDS = {
    "fr": ["créer un ticket", "nouveau ticket", "ouvrir un ticket", "problème", "bug", "aide"],
    "en": ["create ticket", "new ticket", "open ticket", "problem", "bug", "help"],
}

_SEPARATORS = re.compile(r"[:\n-]")


class TicketMessageHandler:
    """
    Puente entre mensajes de usuario y el TicketService.
    """

    def __init__(
        self,
        ticket_service: TicketService,
        localization: LocalizationService,
        formatter: MessageFormatter
    ):
        self.ticket_service = ticket_service
        self.localization = localization
        self.formatter = formatter

    # ================================
    # Detection
    # ================================

    @staticmethod
    def _contains_any(text: str, keywords: List[str]) -> bool:
        lower_text = text.lower()
        return any(keyword in lower_text for keyword in keywords)

    def is_ticket_creation_request(self, text: str, language: str) -> bool:
        return self._contains_any(text, CREATION_KEYWORDS.get(language, CREATION_KEYWORDS["fr"]))

    def is_ticket_status_request(self, text: str, language: str) -> bool:
        return self._contains_any(text, STATUS_KEYWORDS.get(language, STATUS_KEYWORDS["fr"]))

    def analyze_ticket_intent(self, text: str, language: str) -> Optional[TicketIntent]:
        """
        Detecta peticiones de ticket por palabras clave.

        Las frases de consulta se evalúan primero porque todas contienen
        también la palabra "ticket".

        Returns:
            TicketIntent con confianza 0.8, o None si no hay coincidencia
        """
        if self.is_ticket_status_request(text, language):
            return TicketIntent(
                intent=IntentType.CHECK_TICKET_STATUS,
                confidence=TICKET_INTENT_CONFIDENCE
            )

        if self.is_ticket_creation_request(text, language):
            info = self.extract_ticket_info(text, language)
            return TicketIntent(
                intent=IntentType.CREATE_TICKET,
                confidence=TICKET_INTENT_CONFIDENCE,
                entities=info.model_dump()
            )

        return None

    # ================================
    # Extraction
    # ================================

    def extract_ticket_info(self, text: str, language: str) -> TicketInfo:
        """
        Extrae título y descripción de un mensaje libre.

        Args:
            text: Mensaje del usuario
            language: Idioma para las palabras disparadoras

        Returns:
            TicketInfo; el título nunca está vacío
        """
        cleaned = clean_text(text)

        content = cleaned
        for keyword in TRIGGER_KEYWORDS.get(language, TRIGGER_KEYWORDS["fr"]):
            content = re.sub(re.escape(keyword), "", content, flags=re.IGNORECASE).strip()

        if len(content) < 10:
            content = cleaned

        parts = [part.strip() for part in _SEPARATORS.split(content) if part.strip()]
        if len(parts) >= 2:
            title = truncate_text(parts[0], 100)
            description = " ".join(parts[1:])
        else:
            title = self.generate_title_from_text(content, language)
            description = content

        return TicketInfo(
            title=title or self._default_title(language),
            description=description or content
        )

    def generate_title_from_text(self, text: str, language: str) -> str:
        if not text:
            return self._default_title(language)

        title = " ".join(text.split(" ")[:8])
        if len(title) > 50:
            title = title[:47] + "..."

        return title or self._default_title(language)

    def _default_title(self, language: str) -> str:
        return self.localization.get_message(MessageKey.TICKET_DEFAULT_TITLE, language)

    @staticmethod
    def validate_ticket_info(info: TicketInfo) -> List[str]:
        """
        Valida título y descripción.

        Returns:
            Lista de errores (vacía si es válido)
        """
        errors = []
        if not info.title or not info.title.strip():
            errors.append("Title is required")
        if not info.description or not info.description.strip():
            errors.append("Description is required")
        if info.title and len(info.title) > MAX_TITLE_LENGTH:
            errors.append(f"Title is too long (max {MAX_TITLE_LENGTH} characters)")
        if info.description and len(info.description) > MAX_DESCRIPTION_LENGTH:
            errors.append(f"Description is too long (max {MAX_DESCRIPTION_LENGTH} characters)")
        return errors

    # ================================
    # Handlers
    # ================================

    async def handle_create_ticket(self, user: User, language: str, text: str) -> TextResponse:
        """Crea un ticket a partir del mensaje y devuelve la confirmación."""
        info = self.extract_ticket_info(text, language)
        info.description = info.description[:MAX_DESCRIPTION_LENGTH]

        errors = self.validate_ticket_info(info)
        if errors:
            logger.info(f"🎫 Información insuficiente para ticket: {errors}", extra={"user_id": user.id})
            return TextResponse(content=self.localization.get_message(MessageKey.TICKET_NEED_MORE_INFO, language))

        try:
            ticket = await self.ticket_service.create_ticket(
                user.id,
                info.title,
                info.description,
                language=language
            )
        except Exception as e:
            logger.error(f"❌ Error creando ticket: {e}", extra={"user_id": user.id}, exc_info=True)
            return TextResponse(content=self.localization.get_message(MessageKey.TICKET_CREATION_ERROR, language))

        return TextResponse(content=self.formatter.format_ticket_confirmation(ticket, language))

    async def handle_check_ticket_status(self, user: User, language: str) -> TextResponse:
        """Lista los tickets más recientes del usuario."""
        try:
            tickets = await self.ticket_service.get_user_tickets(user.id, limit=RECENT_TICKETS_LIMIT)
        except Exception as e:
            logger.error(f"❌ Error consultando tickets: {e}", extra={"user_id": user.id}, exc_info=True)
            return TextResponse(content=self.localization.get_message(MessageKey.TICKET_STATUS_ERROR, language))

        if not tickets:
            return TextResponse(content=self.localization.get_message(MessageKey.TICKET_NO_TICKETS, language))

        return TextResponse(content=self.formatter.format_ticket_list(tickets, language))
