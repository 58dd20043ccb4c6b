"""
Modelos Pydantic para análisis de intenciones.

Este módulo define el conjunto fijo de intenciones, el resultado
normalizado del análisis NLP y el esquema con el que se valida
la salida JSON del modelo alojado.
"""

from typing import Dict, Optional, Any
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator


class IntentType(str, Enum):
    """
    Conjunto fijo de intenciones reconocidas por el agente.
    """
    GREETING = "greeting"
    HELP = "help"
    CREATE_TICKET = "create_ticket"
    CHECK_TICKET_STATUS = "check_ticket_status"
    FAQ = "faq"
    CONTACT_AGENT = "contact_agent"
    GOODBYE = "goodbye"
    COMPLAINT = "complaint"
    COMPLIMENT = "compliment"
    PRODUCT_INQUIRY = "product_inquiry"
    ORDER_STATUS = "order_status"
    REFUND_REQUEST = "refund_request"
    TECHNICAL_SUPPORT = "technical_support"
    BILLING_INQUIRY = "billing_inquiry"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "IntentType":
        """Convierte un valor arbitrario en intención, `unknown` si no es válido."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class IntentAnalysis(BaseModel):
    """
    Resultado normalizado de análisis de intención para un mensaje.

    Es lo que se guarda en cache y lo que consume el manejador de intenciones.
    """
    intent: IntentType = Field(description="Intención clasificada")

    confidence: float = Field(
        ge=0.0,
        le=1.0,
        description="Nivel de confianza de la clasificación (0.0-1.0)"
    )

    entities: Dict[str, Any] = Field(
        default_factory=dict,
        description="Entidades extraídas del mensaje"
    )

    sentiment: Sentiment = Field(default=Sentiment.NEUTRAL, description="Sentimiento detectado")

    original_text: str = Field(default="", max_length=200, description="Texto original truncado")

    language: str = Field(description="Idioma del análisis")

    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="Timestamp del análisis"
    )

    fallback: bool = Field(default=False, description="Si se usó clasificación por palabras clave")


class RawIntentPayload(BaseModel):
    """
    Esquema tolerante para la salida JSON del modelo.

    Los campos ausentes o mal tipados se sustituyen por valores seguros
    antes de normalizar a `IntentAnalysis`.
    """
    intent: Optional[str] = None
    confidence: Optional[float] = None
    entities: Optional[Dict[str, Any]] = None
    sentiment: Optional[str] = None

    @field_validator('confidence', mode='before')
    @classmethod
    def coerce_confidence(cls, v):
        try:
            return float(v)
        except (TypeError, ValueError):
            return None

    @field_validator('entities', mode='before')
    @classmethod
    def coerce_entities(cls, v):
        return v if isinstance(v, dict) else None

    @field_validator('intent', 'sentiment', mode='before')
    @classmethod
    def coerce_text(cls, v):
        return v if isinstance(v, str) else None


class SentimentResult(BaseModel):
    """Resultado de análisis de sentimiento."""
    sentiment: Sentiment = Sentiment.NEUTRAL
    score: float = Field(default=0.5, ge=0.0, le=1.0)
