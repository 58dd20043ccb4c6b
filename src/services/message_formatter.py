"""
Message Formatter - Renderizado de tickets, fechas y avisos multimedia.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .localization_service import LocalizationService, MessageKey
from ..models.messages import MessageType
from ..models.tickets import TicketPriority, TicketRead, TicketStatus

STATUS_EMOJIS = {
    TicketStatus.OPEN: "🔴",
    TicketStatus.IN_PROGRESS: "🟡",
    TicketStatus.WAITING_CUSTOMER: "🔵",
    TicketStatus.RESOLVED: "🟢",
    TicketStatus.CLOSED: "⚫",
}

PRIORITY_EMOJIS = {
    TicketPriority.LOW: "🟢",
    TicketPriority.NORMAL: "🟡",
    TicketPriority.HIGH: "🟠",
    TicketPriority.URGENT: "🔴",
}

_MEDIA_KEYS = {
    MessageType.IMAGE: MessageKey.MEDIA_IMAGE_RECEIVED,
    MessageType.AUDIO: MessageKey.MEDIA_AUDIO_RECEIVED,
    MessageType.VIDEO: MessageKey.MEDIA_VIDEO_RECEIVED,
    MessageType.DOCUMENT: MessageKey.MEDIA_DOCUMENT_RECEIVED,
}

_DATE_FORMATS = {
    "fr": "%d/%m/%Y %H:%M",
    "en": "%m/%d/%Y, %I:%M %p",
}


def truncate_text(text: str, max_length: int = 100) -> str:
    """Trunca con '...' si excede `max_length`."""
    if not text or len(text) <= max_length:
        return text or ""
    return text[:max_length - 3] + "..."


def clean_text(text: Optional[str]) -> str:
    """Recorta y colapsa espacios consecutivos."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text.strip())


def format_phone_number(phone_number: str) -> str:
    """Enmascara el número dejando visibles los 4 últimos dígitos."""
    if not phone_number:
        return ""
    digits = phone_number.lstrip("+")
    if len(digits) <= 4:
        return digits
    return "*" * (len(digits) - 4) + digits[-4:]


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


class MessageFormatter:
    """
    Convierte entidades del dominio en texto para WhatsApp.

    Los textos fijos salen del LocalizationService.
    """

    def __init__(self, localization: LocalizationService):
        self.localization = localization

    def get_status_emoji(self, status: Any) -> str:
        try:
            return STATUS_EMOJIS[TicketStatus(status)]
        except ValueError:
            return "❓"

    def get_priority_emoji(self, priority: Any) -> str:
        try:
            return PRIORITY_EMOJIS[TicketPriority(priority)]
        except ValueError:
            return "⚪"

    def format_date(self, value: datetime, language: str) -> str:
        fmt = _DATE_FORMATS.get(language, _DATE_FORMATS["fr"])
        return value.strftime(fmt)

    def format_ticket_list(self, tickets: Sequence[TicketRead], language: str) -> str:
        """
        Lista de tickets con emoji de estado y prioridad.

        Args:
            tickets: Tickets a mostrar (ya ordenados)
            language: Idioma del usuario
        """
        header = self.localization.get_message(MessageKey.TICKET_STATUS_HEADER, language)
        priority_label = self.localization.get_message(MessageKey.TICKET_PRIORITY, language)
        created_label = self.localization.get_message(MessageKey.TICKET_CREATED, language)

        blocks: List[str] = []
        for ticket in tickets:
            blocks.append(
                f"{self.get_status_emoji(ticket.status)} *Ticket #{ticket.id}*\n"
                f"📋 {ticket.title}\n"
                f"{self.get_priority_emoji(ticket.priority)} {priority_label}: {ticket.priority.value}\n"
                f"📅 {created_label}: {self.format_date(ticket.created_at, language)}\n"
            )

        return f"{header}\n\n" + "\n---\n\n".join(blocks)

    def format_ticket_confirmation(self, ticket: TicketRead, language: str) -> str:
        return self.localization.get_message(
            MessageKey.TICKET_CREATED_SUCCESS,
            language,
            ticket_id=ticket.id,
            title=ticket.title,
            priority=ticket.priority.value
        )

    def format_location_message(self, content: Dict[str, Any], language: str) -> str:
        return self.localization.get_message(
            MessageKey.LOCATION_RECEIVED,
            language,
            name=content.get("name") or self.localization.get_message(MessageKey.LOCATION_DEFAULT_NAME, language),
            address=content.get("address") or self.localization.get_message(
                MessageKey.LOCATION_DEFAULT_ADDRESS, language
            )
        )

    def format_media_message(self, message_type: MessageType, language: str) -> str:
        key = _MEDIA_KEYS.get(message_type)
        if key is None:
            return self.localization.get_fallback_message(language)
        return self.localization.get_message(key, language)
