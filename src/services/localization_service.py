"""
Localization Service - Catálogo de mensajes por idioma

Catálogo indexado por `MessageKey` para cada idioma soportado. La
completitud de los catálogos se valida al importar el módulo.

Política de fallback: idioma pedido -> idioma por defecto -> clave cruda.
"""

from enum import Enum
from typing import Dict, List, Optional, Union

from ..utils.config import Settings, get_settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class MessageKey(str, Enum):
    GREETING_MORNING = "greeting.morning"
    GREETING_AFTERNOON = "greeting.afternoon"
    GREETING_EVENING = "greeting.evening"
    BUTTON_HELP = "buttons.help"
    BUTTON_FAQ = "buttons.faq"
    BUTTON_CONTACT_AGENT = "buttons.contact_agent"
    HELP_MAIN_TEXT = "help.main_text"
    HELP_BUTTON_TEXT = "help.button_text"
    HELP_TICKETS_TITLE = "help.tickets.title"
    HELP_TICKETS_CREATE = "help.tickets.create"
    HELP_TICKETS_CREATE_DESC = "help.tickets.create_desc"
    HELP_TICKETS_CHECK = "help.tickets.check"
    HELP_TICKETS_CHECK_DESC = "help.tickets.check_desc"
    HELP_SUPPORT_TITLE = "help.support.title"
    HELP_SUPPORT_FAQ = "help.support.faq"
    HELP_SUPPORT_FAQ_DESC = "help.support.faq_desc"
    HELP_SUPPORT_AGENT = "help.support.agent"
    HELP_SUPPORT_AGENT_DESC = "help.support.agent_desc"
    FAQ_MAIN_TEXT = "faq.main_text"
    FAQ_PRODUCTS = "faq.products"
    FAQ_SUPPORT = "faq.support"
    HANDOFF_INITIATED = "handoff.initiated"
    ERROR_GENERAL = "error.general"
    FALLBACK_MESSAGE = "fallback.message"
    FALLBACK_CONVERSATIONAL = "fallback.conversational"
    BOT_INTRODUCTION = "bot.introduction"
    BOT_CAPABILITIES = "bot.capabilities"
    GOODBYE_MESSAGE = "goodbye.message"
    TICKET_NEED_MORE_INFO = "ticket.need_more_info"
    TICKET_CREATED_SUCCESS = "ticket.created_success"
    TICKET_CREATION_ERROR = "ticket.creation_error"
    TICKET_NO_TICKETS = "ticket.no_tickets"
    TICKET_STATUS_HEADER = "ticket.status_header"
    TICKET_PRIORITY = "ticket.priority"
    TICKET_CREATED = "ticket.created"
    TICKET_STATUS_ERROR = "ticket.status_error"
    TICKET_DEFAULT_TITLE = "ticket.default_title"
    MEDIA_IMAGE_RECEIVED = "media.image_received"
    MEDIA_AUDIO_RECEIVED = "media.audio_received"
    MEDIA_VIDEO_RECEIVED = "media.video_received"
    MEDIA_DOCUMENT_RECEIVED = "media.document_received"
    LOCATION_RECEIVED = "location.received"
    LOCATION_DEFAULT_NAME = "location.default_name"
    LOCATION_DEFAULT_ADDRESS = "location.default_address"
    CUSTOMER_DEFAULT_NAME = "customer.default_name"


CATALOGS: Dict[str, Dict[MessageKey, str]] = {
    "fr": {
        MessageKey.GREETING_MORNING: "Bonjour {name} ! Comment puis-je vous aider aujourd'hui ?",
        MessageKey.GREETING_AFTERNOON: "Bon après-midi {name} ! Comment puis-je vous aider ?",
        MessageKey.GREETING_EVENING: "Bonsoir {name} ! Comment puis-je vous aider ce soir ?",
        MessageKey.BUTTON_HELP: "Aide",
        MessageKey.BUTTON_FAQ: "FAQ",
        MessageKey.BUTTON_CONTACT_AGENT: "Contacter un agent",
        MessageKey.HELP_MAIN_TEXT: "Voici comment je peux vous aider :",
        MessageKey.HELP_BUTTON_TEXT: "Choisir une option",
        MessageKey.HELP_TICKETS_TITLE: "Gestion des tickets",
        MessageKey.HELP_TICKETS_CREATE: "Créer un ticket",
        MessageKey.HELP_TICKETS_CREATE_DESC: "Signaler un problème ou faire une demande",
        MessageKey.HELP_TICKETS_CHECK: "Vérifier un ticket",
        MessageKey.HELP_TICKETS_CHECK_DESC: "Suivre l'état de votre demande",
        MessageKey.HELP_SUPPORT_TITLE: "Support client",
        MessageKey.HELP_SUPPORT_FAQ: "Questions fréquentes",
        MessageKey.HELP_SUPPORT_FAQ_DESC: "Réponses aux questions courantes",
        MessageKey.HELP_SUPPORT_AGENT: "Parler à un agent",
        MessageKey.HELP_SUPPORT_AGENT_DESC: "Être mis en relation avec un humain",
        MessageKey.FAQ_MAIN_TEXT: "Voici les questions fréquemment posées. Que souhaitez-vous savoir ?",
        MessageKey.FAQ_PRODUCTS: "Nos produits",
        MessageKey.FAQ_SUPPORT: "Support technique",
        MessageKey.HANDOFF_INITIATED: "Je vous mets en relation avec un agent humain. Veuillez patienter...",
        MessageKey.ERROR_GENERAL: "Désolé, une erreur s'est produite. Veuillez réessayer.",
        MessageKey.FALLBACK_MESSAGE: (
            "Je n'ai pas bien compris votre demande. "
            "Pouvez-vous reformuler ou choisir une option ci-dessous ?"
        ),
        MessageKey.FALLBACK_CONVERSATIONAL: (
            "Je comprends que vous cherchez de l'aide, mais je n'ai pas pu saisir exactement "
            "votre demande. Voici quelques suggestions :\n\n"
            "• Essayez de reformuler votre question plus simplement\n"
            "• Utilisez des mots-clés comme \"aide\", \"problème\", ou \"information\"\n"
            "• Ou choisissez une option ci-dessous pour que je puisse mieux vous aider"
        ),
        MessageKey.BOT_INTRODUCTION: (
            "Je suis votre assistant virtuel. Je peux vous aider avec vos questions, créer des "
            "tickets de support, et vous mettre en relation avec nos agents si nécessaire."
        ),
        MessageKey.BOT_CAPABILITIES: (
            "Je peux vous aider à :\n• Répondre à vos questions\n• Créer des tickets de support\n"
            "• Vous connecter avec un agent humain\n• Fournir des informations sur nos services"
        ),
        MessageKey.GOODBYE_MESSAGE: (
            "Merci d'avoir utilisé notre service. N'hésitez pas à revenir si vous avez "
            "d'autres questions. Bonne journée !"
        ),
        MessageKey.TICKET_NEED_MORE_INFO: (
            "Pour créer votre ticket, j'ai besoin de plus d'informations. "
            "Pouvez-vous décrire votre problème en détail ?"
        ),
        MessageKey.TICKET_CREATED_SUCCESS: (
            "✅ Votre ticket #{ticket_id} a été créé avec succès !\n\n"
            "📋 *Titre:* {title}\n🔥 *Priorité:* {priority}\n\n"
            "Nous traiterons votre demande dans les plus brefs délais. "
            "Vous pouvez vérifier le statut en tapant \"statut ticket\"."
        ),
        MessageKey.TICKET_CREATION_ERROR: (
            "Désolé, une erreur s'est produite lors de la création de votre ticket. "
            "Veuillez réessayer ou contacter un agent."
        ),
        MessageKey.TICKET_NO_TICKETS: (
            "Vous n'avez aucun ticket en cours. Tapez \"créer un ticket\" pour signaler un problème."
        ),
        MessageKey.TICKET_STATUS_HEADER: "📋 *Vos tickets de support*",
        MessageKey.TICKET_PRIORITY: "Priorité",
        MessageKey.TICKET_CREATED: "Créé le",
        MessageKey.TICKET_STATUS_ERROR: (
            "Impossible de récupérer le statut de vos tickets. Veuillez réessayer plus tard."
        ),
        MessageKey.TICKET_DEFAULT_TITLE: "Demande d'assistance",
        MessageKey.MEDIA_IMAGE_RECEIVED: "Image reçue. Comment puis-je vous aider avec cette image ?",
        MessageKey.MEDIA_AUDIO_RECEIVED: "Message audio reçu. Pouvez-vous reformuler par écrit ?",
        MessageKey.MEDIA_VIDEO_RECEIVED: "Vidéo reçue. Comment puis-je vous aider ?",
        MessageKey.MEDIA_DOCUMENT_RECEIVED: "Document reçu. Comment puis-je vous aider avec ce document ?",
        MessageKey.LOCATION_RECEIVED: "📍 Position reçue: {name}\n📍 Adresse: {address}",
        MessageKey.LOCATION_DEFAULT_NAME: "Position",
        MessageKey.LOCATION_DEFAULT_ADDRESS: "Adresse non disponible",
        MessageKey.CUSTOMER_DEFAULT_NAME: "cher client",
    },
    "en": {
        MessageKey.GREETING_MORNING: "Good morning {name}! How can I help you today?",
        MessageKey.GREETING_AFTERNOON: "Good afternoon {name}! How can I help you?",
        MessageKey.GREETING_EVENING: "Good evening {name}! How can I help you tonight?",
        MessageKey.BUTTON_HELP: "Help",
        MessageKey.BUTTON_FAQ: "FAQ",
        MessageKey.BUTTON_CONTACT_AGENT: "Contact agent",
        MessageKey.HELP_MAIN_TEXT: "Here's how I can help you:",
        MessageKey.HELP_BUTTON_TEXT: "Choose an option",
        MessageKey.HELP_TICKETS_TITLE: "Ticket Management",
        MessageKey.HELP_TICKETS_CREATE: "Create a ticket",
        MessageKey.HELP_TICKETS_CREATE_DESC: "Report an issue or make a request",
        MessageKey.HELP_TICKETS_CHECK: "Check a ticket",
        MessageKey.HELP_TICKETS_CHECK_DESC: "Track the status of your request",
        MessageKey.HELP_SUPPORT_TITLE: "Customer Support",
        MessageKey.HELP_SUPPORT_FAQ: "FAQ",
        MessageKey.HELP_SUPPORT_FAQ_DESC: "Answers to common questions",
        MessageKey.HELP_SUPPORT_AGENT: "Talk to an agent",
        MessageKey.HELP_SUPPORT_AGENT_DESC: "Connect with a human representative",
        MessageKey.FAQ_MAIN_TEXT: "Here are frequently asked questions. What would you like to know?",
        MessageKey.FAQ_PRODUCTS: "Our products",
        MessageKey.FAQ_SUPPORT: "Technical support",
        MessageKey.HANDOFF_INITIATED: "I'm connecting you with a human agent. Please wait...",
        MessageKey.ERROR_GENERAL: "Sorry, an error occurred. Please try again.",
        MessageKey.FALLBACK_MESSAGE: (
            "I didn't understand your request. Could you rephrase or choose an option below?"
        ),
        MessageKey.FALLBACK_CONVERSATIONAL: (
            "I understand you're looking for help, but I couldn't quite grasp your request. "
            "Here are some suggestions:\n\n"
            "• Try rephrasing your question more simply\n"
            "• Use keywords like \"help\", \"problem\", or \"information\"\n"
            "• Or choose an option below so I can better assist you"
        ),
        MessageKey.BOT_INTRODUCTION: (
            "I am your virtual assistant. I can help you with your questions, create support "
            "tickets, and connect you with our agents when needed."
        ),
        MessageKey.BOT_CAPABILITIES: (
            "I can help you with:\n• Answering your questions\n• Creating support tickets\n"
            "• Connecting you with human agents\n• Providing information about our services"
        ),
        MessageKey.GOODBYE_MESSAGE: (
            "Thank you for using our service. Feel free to come back if you have any other "
            "questions. Have a great day!"
        ),
        MessageKey.TICKET_NEED_MORE_INFO: (
            "To create your ticket, I need more information. Can you describe your problem in detail?"
        ),
        MessageKey.TICKET_CREATED_SUCCESS: (
            "✅ Your ticket #{ticket_id} has been created successfully!\n\n"
            "📋 *Title:* {title}\n🔥 *Priority:* {priority}\n\n"
            "We will process your request as soon as possible. "
            "You can check the status by typing \"ticket status\"."
        ),
        MessageKey.TICKET_CREATION_ERROR: (
            "Sorry, an error occurred while creating your ticket. Please try again or contact an agent."
        ),
        MessageKey.TICKET_NO_TICKETS: (
            "You have no tickets in progress. Type \"create ticket\" to report a problem."
        ),
        MessageKey.TICKET_STATUS_HEADER: "📋 *Your support tickets*",
        MessageKey.TICKET_PRIORITY: "Priority",
        MessageKey.TICKET_CREATED: "Created on",
        MessageKey.TICKET_STATUS_ERROR: "Unable to retrieve your ticket status. Please try again later.",
        MessageKey.TICKET_DEFAULT_TITLE: "Support Request",
        MessageKey.MEDIA_IMAGE_RECEIVED: "Image received. How can I help you with this image?",
        MessageKey.MEDIA_AUDIO_RECEIVED: "Audio message received. Could you please rephrase in text?",
        MessageKey.MEDIA_VIDEO_RECEIVED: "Video received. How can I help you?",
        MessageKey.MEDIA_DOCUMENT_RECEIVED: "Document received. How can I help you with this document?",
        MessageKey.LOCATION_RECEIVED: "📍 Location received: {name}\n📍 Address: {address}",
        MessageKey.LOCATION_DEFAULT_NAME: "Position",
        MessageKey.LOCATION_DEFAULT_ADDRESS: "Address not available",
        MessageKey.CUSTOMER_DEFAULT_NAME: "dear customer",
    },
}


def validate_catalogs(catalogs: Dict[str, Dict[MessageKey, str]] = CATALOGS) -> None:
    """
    Verifica que cada catálogo tenga todas las claves.

    Raises:
        RuntimeError: Si algún idioma no define todas las claves
    """
    expected = set(MessageKey)
    for language, catalog in catalogs.items():
        missing = expected - set(catalog)
        if missing:
            names = ", ".join(sorted(key.value for key in missing))
            raise RuntimeError(f"Catálogo '{language}' incompleto: {names}")


validate_catalogs()


class _Params(dict):
    """Parámetros de formato: los ausentes se sustituyen por cadena vacía."""

    def __missing__(self, key):
        return ""


class LocalizationService:
    """
    Proveedor de textos localizados.

    Función pura sobre el catálogo estático; el único estado es la
    configuración de idiomas.
    """

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.default_language = settings.DEFAULT_LANGUAGE
        self.supported_languages: List[str] = list(settings.SUPPORTED_LANGUAGES)

        unsupported = [lang for lang in self.supported_languages if lang not in CATALOGS]
        if unsupported:
            logger.warning(f"⚠️ Idiomas sin catálogo, se usará '{self.default_language}': {unsupported}")

    def get_message(self, key: Union[MessageKey, str], language: Optional[str], **params) -> str:
        """
        Obtiene un mensaje localizado.

        Args:
            key: Clave del catálogo
            language: Idioma pedido
            **params: Valores para los placeholders del template

        Returns:
            Texto formateado, o la clave cruda si no existe en ningún catálogo
        """
        try:
            key = MessageKey(key)
        except ValueError:
            return str(key)

        template = (
            CATALOGS.get(language or "", {}).get(key)
            or CATALOGS.get(self.default_language, {}).get(key)
        )
        if template is None:
            return key.value

        return template.format_map(_Params(params))

    def get_error_message(self, language: Optional[str]) -> str:
        return self.get_message(MessageKey.ERROR_GENERAL, language)

    def get_fallback_message(self, language: Optional[str]) -> str:
        return self.get_message(MessageKey.FALLBACK_MESSAGE, language)

    def get_fallback_conversational_message(self, language: Optional[str]) -> str:
        return self.get_message(MessageKey.FALLBACK_CONVERSATIONAL, language)

    def is_language_supported(self, language: Optional[str]) -> bool:
        return language in self.supported_languages

    def resolve_language(self, language: Optional[str]) -> str:
        """Devuelve el idioma si está soportado, si no el idioma por defecto."""
        return language if self.is_language_supported(language) else self.default_language
