"""
Modelos Pydantic para mensajes de WhatsApp.

Define el registro de mensaje entrante que recibe el procesador y las
variantes de respuesta (texto, botones, lista) que produce.
"""

from typing import Dict, List, Optional, Any, Union, Literal, Annotated
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    """Tipo de evento recibido por el webhook."""
    MESSAGE = "message"
    STATUS = "status"


class MessageType(str, Enum):
    """
    Tipos de mensaje soportados por la WhatsApp Business API.
    """
    TEXT = "text"                # Mensaje de texto regular
    INTERACTIVE = "interactive"  # Respuesta a botones o lista
    IMAGE = "image"              # Imagen con opcional caption
    AUDIO = "audio"              # Mensaje de voz
    VIDEO = "video"              # Video con opcional caption
    DOCUMENT = "document"        # Documento/archivo
    LOCATION = "location"        # Ubicación compartida
    UNKNOWN = "unknown"          # Tipo no reconocido

    @classmethod
    def parse(cls, value: Optional[str]) -> "MessageType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_media(self) -> bool:
        return self in (MessageType.IMAGE, MessageType.AUDIO, MessageType.VIDEO, MessageType.DOCUMENT)


class MessageDirection(str, Enum):
    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"


class Contact(BaseModel):
    """Contacto reportado por WhatsApp junto al mensaje."""
    name: Optional[str] = None
    phone_number: str = Field(description="Número en formato internacional sin '+'")


class InboundMessage(BaseModel):
    """
    Registro de mensaje entrante ya parseado por la capa de transporte.

    El contenido depende del tipo:
    - text: {"text"}
    - interactive: {"button_id", "button_title"} o {"list_id", "list_title", "list_description"}
    - image/audio/video/document: {"media_id", "mime_type", "caption"}
    - location: {"latitude", "longitude", "name", "address"}
    """
    model_config = ConfigDict(populate_by_name=True)

    type: EventType = Field(default=EventType.MESSAGE, description="message o status")

    message_id: str = Field(description="ID asignado por WhatsApp (wamid)")

    sender: str = Field(alias="from", description="Número del remitente")

    timestamp: datetime = Field(default_factory=datetime.now, description="Timestamp del mensaje")

    message_type: MessageType = Field(default=MessageType.TEXT, description="Tipo de mensaje")

    content: Dict[str, Any] = Field(default_factory=dict, description="Contenido específico del tipo")

    contact: Optional[Contact] = Field(default=None, description="Contacto del remitente")

    status: Optional[str] = Field(default=None, description="Estado de entrega (solo eventos status)")

    recipient_id: Optional[str] = Field(default=None, description="Destinatario (solo eventos status)")

    @field_validator('sender')
    @classmethod
    def normalize_sender(cls, v):
        """Quita el prefijo '+' del número."""
        return v.lstrip('+').strip()

    @property
    def text(self) -> str:
        """Texto utilizable del mensaje (texto, caption o título de botón)."""
        return (
            self.content.get("text")
            or self.content.get("caption")
            or self.content.get("button_title")
            or self.content.get("list_title")
            or ""
        )


# ================================
# Respuestas salientes
# ================================

class Button(BaseModel):
    id: str
    title: str = Field(max_length=20)

    @field_validator('title', mode='before')
    @classmethod
    def truncate_title(cls, v):
        # Límite de la API para títulos de botón
        return v[:20] if isinstance(v, str) else v


class ListRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = None

    @field_validator('title', mode='before')
    @classmethod
    def truncate_title(cls, v):
        return v[:24] if isinstance(v, str) else v


class ListSection(BaseModel):
    title: str
    rows: List[ListRow]


class InteractiveContent(BaseModel):
    text: str
    buttons: List[Button] = Field(max_length=3)
    header: Optional[str] = None
    footer: Optional[str] = None


class ListContent(BaseModel):
    text: str
    button_text: str
    sections: List[ListSection]
    header: Optional[str] = None
    footer: Optional[str] = None


class TextResponse(BaseModel):
    type: Literal["text"] = "text"
    content: str


class InteractiveResponse(BaseModel):
    type: Literal["interactive"] = "interactive"
    content: InteractiveContent


class ListResponse(BaseModel):
    type: Literal["list"] = "list"
    content: ListContent


BotResponse = Annotated[
    Union[TextResponse, InteractiveResponse, ListResponse],
    Field(discriminator="type")
]
