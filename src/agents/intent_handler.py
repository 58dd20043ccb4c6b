"""
Intent Handler - Acciones por intención y por botón

Traduce una intención clasificada (o un botón pulsado) en la respuesta
del bot: saludos, menús de ayuda y FAQ, tickets, transferencia a agente
humano, despedida y respuestas generadas por el modelo.
"""

from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from .intent_classifier import IntentClassifierAgent
from .ticket_message_handler import TicketMessageHandler
from ..db.models import User
from ..models.intents import IntentAnalysis, IntentType
from ..models.messages import (
    BotResponse, Button, InteractiveContent, InteractiveResponse, ListContent,
    ListResponse, ListRow, ListSection, TextResponse
)
from ..models.session import Session
from ..services.conversation_service import ConversationService
from ..services.knowledge_base_service import KnowledgeBaseService
from ..services.localization_service import LocalizationService, MessageKey
from ..utils.config import Settings, get_settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

FAQ_CONFIDENCE_THRESHOLD = 0.5
MIN_AI_RESPONSE_LENGTH = 15

UNHELPFUL_PHRASES = [
    "je ne peux pas vous aider", "i cannot help you",
    "je ne sais pas du tout", "i have no idea",
    "je ne comprends pas votre question", "i don't understand your question",
]

INTRODUCTION_PATTERNS = ["qui tu es", "qui es-tu", "who are you", "what are you"]
CAPABILITY_PATTERNS = ["que peux-tu faire", "tes capacités", "what can you do", "capabilities"]

AI_PROMPTS = {
    "fr": (
        "Tu es un assistant client professionnel et bienveillant. Réponds à cette question de "
        "manière utile et concise en français. Si tu ne peux pas répondre précisément, propose "
        "des alternatives ou suggère de contacter un agent humain. Question: \"{text}\""
    ),
    "en": (
        "You are a professional and helpful customer assistant. Answer this question in a useful "
        "and concise way in English. If you cannot answer precisely, suggest alternatives or "
        "recommend contacting a human agent. Question: \"{text}\""
    ),
}

IntentAction = Callable[[User, Session, str], Awaitable[BotResponse]]


def get_time_of_day(hour: Optional[int] = None) -> str:
    hour = datetime.now().hour if hour is None else hour
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


class IntentHandler:
    """
    Despachador de intenciones.

    Todas las acciones reciben el usuario, la sesión (mutable, se
    persiste al final del turno) y el texto original. El idioma de la
    respuesta es siempre `session.language`.
    """

    def __init__(
        self,
        localization: LocalizationService,
        ticket_handler: TicketMessageHandler,
        knowledge_base: KnowledgeBaseService,
        classifier: IntentClassifierAgent,
        conversation_service: ConversationService,
        settings: Optional[Settings] = None
    ):
        self.localization = localization
        self.ticket_handler = ticket_handler
        self.knowledge_base = knowledge_base
        self.classifier = classifier
        self.conversation_service = conversation_service
        self.settings = settings or get_settings()

        self._actions: Dict[IntentType, IntentAction] = {
            IntentType.GREETING: self.handle_greeting,
            IntentType.HELP: self.handle_help_intent,
            IntentType.CREATE_TICKET: self.handle_create_ticket,
            IntentType.CHECK_TICKET_STATUS: self.handle_check_ticket_status,
            IntentType.FAQ: self.handle_faq,
            IntentType.CONTACT_AGENT: self.initiate_human_handoff,
            IntentType.GOODBYE: self.handle_goodbye,
            IntentType.PRODUCT_INQUIRY: self.handle_product_inquiry,
        }

    def _msg(self, key: MessageKey, session: Session, **params) -> str:
        return self.localization.get_message(key, session.language, **params)

    # ================================
    # Dispatch
    # ================================

    async def handle_intent(self, analysis: IntentAnalysis, user: User, session: Session, text: str) -> BotResponse:
        """
        Ejecuta la acción asociada a la intención.

        Las intenciones sin acción propia (technical_support, complaint,
        billing_inquiry...) usan una respuesta generada o el menú de fallback.
        """
        action = self._actions.get(analysis.intent, self.handle_with_ai)
        return await action(user, session, text)

    async def handle_unmatched_text(self, user: User, session: Session, text: str) -> BotResponse:
        """
        Texto sin intención confiable: base de conocimiento, luego
        respuesta generada, luego menú de fallback.
        """
        match = await self.knowledge_base.search(text, session.language)
        if match is not None and match.confidence > self.settings.KB_CONFIDENCE_THRESHOLD:
            logger.info(f"📚 Respuesta desde KB #{match.id}", extra={"user_id": user.id})
            await self.knowledge_base.increment_usage(match.id)
            return TextResponse(content=match.answer)

        return await self.handle_with_ai(user, session, text)

    async def handle_button(
        self,
        button_id: Optional[str],
        user: User,
        session: Session,
        title: str = ""
    ) -> Optional[BotResponse]:
        """
        Acción para un botón o fila de lista conocidos.

        Returns:
            Respuesta, o None si el ID no es conocido y el título debe
            procesarse como texto libre
        """
        logger.info(f"🔘 Botón recibido: {button_id}", extra={"user_id": user.id})

        if button_id in ("help", "aide"):
            return await self.handle_help(user, session)
        if button_id == "faq":
            return await self.handle_faq(user, session, title)
        if button_id in ("contact_agent", "contacter_agent"):
            return await self.initiate_human_handoff(user, session, title)
        if button_id in ("greeting", "salutation"):
            return await self.handle_greeting(user, session, title)
        if button_id == "create_ticket":
            return TextResponse(content=self._msg(MessageKey.TICKET_NEED_MORE_INFO, session))
        if button_id == "check_ticket":
            return await self.ticket_handler.handle_check_ticket_status(user, session.language)

        return None

    # ================================
    # Actions
    # ================================

    async def handle_greeting(self, user: User, session: Session, text: str = "") -> InteractiveResponse:
        key = {
            "morning": MessageKey.GREETING_MORNING,
            "afternoon": MessageKey.GREETING_AFTERNOON,
            "evening": MessageKey.GREETING_EVENING,
        }[get_time_of_day()]
        name = user.name or self._msg(MessageKey.CUSTOMER_DEFAULT_NAME, session)

        return self.main_menu(self._msg(key, session, name=name), session)

    def main_menu(self, text: str, session: Session) -> InteractiveResponse:
        return InteractiveResponse(content=InteractiveContent(
            text=text,
            buttons=[
                Button(id="help", title=self._msg(MessageKey.BUTTON_HELP, session)),
                Button(id="faq", title=self._msg(MessageKey.BUTTON_FAQ, session)),
                Button(id="contact_agent", title=self._msg(MessageKey.BUTTON_CONTACT_AGENT, session)),
            ]
        ))

    async def handle_help_intent(self, user: User, session: Session, text: str) -> BotResponse:
        if self._matches(text, INTRODUCTION_PATTERNS):
            return TextResponse(content=self._msg(MessageKey.BOT_INTRODUCTION, session))

        answer = await self.generate_ai_response(text, session.language)
        if answer:
            return TextResponse(content=answer)

        return await self.handle_help(user, session)

    async def handle_help(self, user: User, session: Session, text: str = "") -> ListResponse:
        """Menú de ayuda en formato lista (tickets y soporte)."""
        return ListResponse(content=ListContent(
            text=self._msg(MessageKey.HELP_MAIN_TEXT, session),
            button_text=self._msg(MessageKey.HELP_BUTTON_TEXT, session),
            sections=[
                ListSection(
                    title=self._msg(MessageKey.HELP_TICKETS_TITLE, session),
                    rows=[
                        ListRow(
                            id="create_ticket",
                            title=self._msg(MessageKey.HELP_TICKETS_CREATE, session),
                            description=self._msg(MessageKey.HELP_TICKETS_CREATE_DESC, session)
                        ),
                        ListRow(
                            id="check_ticket",
                            title=self._msg(MessageKey.HELP_TICKETS_CHECK, session),
                            description=self._msg(MessageKey.HELP_TICKETS_CHECK_DESC, session)
                        ),
                    ]
                ),
                ListSection(
                    title=self._msg(MessageKey.HELP_SUPPORT_TITLE, session),
                    rows=[
                        ListRow(
                            id="faq",
                            title=self._msg(MessageKey.HELP_SUPPORT_FAQ, session),
                            description=self._msg(MessageKey.HELP_SUPPORT_FAQ_DESC, session)
                        ),
                        ListRow(
                            id="contact_agent",
                            title=self._msg(MessageKey.HELP_SUPPORT_AGENT, session),
                            description=self._msg(MessageKey.HELP_SUPPORT_AGENT_DESC, session)
                        ),
                    ]
                ),
            ]
        ))

    async def handle_create_ticket(self, user: User, session: Session, text: str) -> TextResponse:
        return await self.ticket_handler.handle_create_ticket(user, session.language, text)

    async def handle_check_ticket_status(self, user: User, session: Session, text: str = "") -> TextResponse:
        return await self.ticket_handler.handle_check_ticket_status(user, session.language)

    async def handle_faq(self, user: User, session: Session, text: str) -> BotResponse:
        if text:
            match = await self.knowledge_base.search(text, session.language)
            if match is not None and match.confidence > FAQ_CONFIDENCE_THRESHOLD:
                await self.knowledge_base.increment_usage(match.id)
                return TextResponse(content=match.answer)

        return InteractiveResponse(content=InteractiveContent(
            text=self._msg(MessageKey.FAQ_MAIN_TEXT, session),
            buttons=[
                Button(id="faq_products", title=self._msg(MessageKey.FAQ_PRODUCTS, session)),
                Button(id="faq_support", title=self._msg(MessageKey.FAQ_SUPPORT, session)),
                Button(id="contact_agent", title=self._msg(MessageKey.BUTTON_CONTACT_AGENT, session)),
            ]
        ))

    async def initiate_human_handoff(self, user: User, session: Session, text: str) -> TextResponse:
        """Marca la sesión para transferencia a un agente humano."""
        session.context["pendingHandoff"] = True
        session.context["handoffReason"] = (text or "")[:200]
        session.context["handoffTimestamp"] = datetime.now().isoformat()

        logger.info(f"🙋 Transferencia a agente solicitada: {(text or '')[:100]}", extra={"user_id": user.id})
        return TextResponse(content=self._msg(MessageKey.HANDOFF_INITIATED, session))

    async def handle_goodbye(self, user: User, session: Session, text: str = "") -> TextResponse:
        await self.conversation_service.end_conversation(session.conversation_id)
        return TextResponse(content=self._msg(MessageKey.GOODBYE_MESSAGE, session))

    async def handle_product_inquiry(self, user: User, session: Session, text: str) -> BotResponse:
        if self._matches(text, CAPABILITY_PATTERNS):
            return TextResponse(content=self._msg(MessageKey.BOT_CAPABILITIES, session))
        return await self.handle_with_ai(user, session, text)

    async def handle_with_ai(self, user: User, session: Session, text: str) -> BotResponse:
        answer = await self.generate_ai_response(text, session.language)
        if answer:
            return TextResponse(content=answer)
        return self.get_fallback_response(session)

    def get_fallback_response(self, session: Session) -> InteractiveResponse:
        return self.main_menu(self.localization.get_fallback_conversational_message(session.language), session)

    # ================================
    # Helpers
    # ================================

    @staticmethod
    def _matches(text: str, patterns) -> bool:
        lower_text = (text or "").lower()
        return any(pattern in lower_text for pattern in patterns)

    async def generate_ai_response(self, text: str, language: str) -> Optional[str]:
        """
        Respuesta libre del modelo.

        Returns:
            Texto generado, o None si falla, es demasiado corto o es una
            evasiva conocida
        """
        if not text:
            return None

        prompt = AI_PROMPTS.get(language, AI_PROMPTS["en"]).format(text=text)
        try:
            answer = await self.classifier.generate_response(prompt, language, max_tokens=200, temperature=0.7)
        except Exception as e:
            logger.error(f"❌ Error generando respuesta IA: {e}")
            return None

        answer = (answer or "").strip()
        if len(answer) < MIN_AI_RESPONSE_LENGTH or self._matches(answer, UNHELPFUL_PHRASES):
            logger.info("🤖 Respuesta IA descartada, usando menú")
            return None

        return answer
