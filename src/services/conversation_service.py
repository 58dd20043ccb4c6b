"""
Conversation Service - Usuarios, conversaciones y mensajes

Persistencia de la identidad del usuario y de las ventanas de
conversación. Invariante: como máximo una conversación ACTIVE por
usuario; una conversación que excede MAX_CONVERSATION_DURATION se
cierra (ENDED) antes de crear la siguiente.
"""

import json
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update

from ..db.database import Database
from ..db.models import (
    Conversation, ConversationStatus, Message, User
)
from ..models.messages import InboundMessage, MessageDirection
from ..utils.config import Settings, get_settings
from ..utils.errors import ConflictError, NotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ConversationService:
    """
    Servicio de persistencia para User, Conversation y Message.

    Los objetos devueltos están desacoplados de la sesión
    (expire_on_commit=False); sólo deben leerse sus columnas.
    """

    def __init__(self, database: Database, settings: Optional[Settings] = None):
        self.database = database
        self.settings = settings or get_settings()
        self.max_conversation_duration = timedelta(seconds=self.settings.MAX_CONVERSATION_DURATION)

    # ================================
    # Users
    # ================================

    async def get_or_create_user(
        self,
        phone_number: str,
        name: Optional[str] = None,
        language: Optional[str] = None
    ) -> User:
        """
        Obtiene el usuario por teléfono o lo crea.

        Actualiza el nombre cuando el canal reporta uno distinto.

        Args:
            phone_number: Número WhatsApp
            name: Nombre de contacto reportado
            language: Idioma inicial para usuarios nuevos
        """
        try:
            return await self._get_or_create_user(phone_number, name, language)
        except ConflictError:
            # Otro mensaje concurrente creó el usuario primero
            logger.warning(f"⚠️ Usuario {phone_number} creado concurrentemente, releyendo")
            return await self._get_or_create_user(phone_number, name, language)

    async def _get_or_create_user(
        self,
        phone_number: str,
        name: Optional[str],
        language: Optional[str]
    ) -> User:
        async with self.database.session() as session:
            user = await session.scalar(select(User).where(User.phone_number == phone_number))

            if user is None:
                user = User(
                    phone_number=phone_number,
                    name=name,
                    language=language or self.settings.DEFAULT_LANGUAGE
                )
                session.add(user)
                await session.flush()
                logger.info(f"👤 Nuevo usuario creado: {phone_number}", extra={"user_id": user.id})

            elif name and user.name != name:
                user.name = name
                user.updated_at = datetime.now()

            return user

    async def get_user(self, user_id: int) -> User:
        async with self.database.session() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError(f"Usuario {user_id} no encontrado")
            return user

    async def update_user_language(self, user_id: int, language: str) -> None:
        async with self.database.session() as session:
            result = await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(language=language, updated_at=datetime.now())
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Usuario {user_id} no encontrado")

        logger.info(f"🌐 Idioma actualizado a '{language}'", extra={"user_id": user_id})

    # ================================
    # Conversations
    # ================================

    async def get_or_create_conversation(self, user_id: int) -> Conversation:
        """
        Devuelve la conversación activa del usuario o crea una nueva.

        Si la activa superó la duración máxima se marca ENDED con
        `ended_at` antes de crear la siguiente.
        """
        now = datetime.now()

        async with self.database.session() as session:
            conversation = await session.scalar(
                select(Conversation)
                .where(
                    Conversation.user_id == user_id,
                    Conversation.status == ConversationStatus.ACTIVE
                )
                .order_by(Conversation.started_at.desc())
                .limit(1)
            )

            if conversation is not None:
                if now - conversation.started_at <= self.max_conversation_duration:
                    return conversation

                conversation.status = ConversationStatus.ENDED
                conversation.ended_at = now
                logger.info(
                    f"⌛ Conversación {conversation.id} expirada, cerrando",
                    extra={"user_id": user_id}
                )
                await session.flush()

            conversation = Conversation(
                user_id=user_id,
                status=ConversationStatus.ACTIVE,
                started_at=now,
                context="{}"
            )
            session.add(conversation)
            await session.flush()

            logger.info(f"💬 Nueva conversación {conversation.id}", extra={"user_id": user_id})
            return conversation

    async def end_conversation(self, conversation_id: int) -> None:
        """Marca la conversación como ENDED."""
        async with self.database.session() as session:
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFoundError(f"Conversación {conversation_id} no encontrada")

            if conversation.status != ConversationStatus.ENDED:
                conversation.status = ConversationStatus.ENDED
                conversation.ended_at = datetime.now()

        logger.info(f"👋 Conversación {conversation_id} finalizada")

    # ================================
    # Messages
    # ================================

    async def save_message(
        self,
        conversation_id: int,
        message: InboundMessage,
        direction: MessageDirection = MessageDirection.INCOMING
    ) -> Message:
        """Persiste el mensaje con processed=False."""
        async with self.database.session() as session:
            record = Message(
                conversation_id=conversation_id,
                content=json.dumps(message.content, ensure_ascii=False, default=str),
                message_type=message.message_type,
                direction=direction,
                whatsapp_message_id=message.message_id,
                timestamp=message.timestamp,
                processed=False
            )
            session.add(record)
            await session.flush()
            return record

    async def mark_message_processed(self, message_id: int) -> None:
        async with self.database.session() as session:
            await session.execute(
                update(Message).where(Message.id == message_id).values(processed=True)
            )
