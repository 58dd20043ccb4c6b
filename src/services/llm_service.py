"""
LLM Service - Integración con el modelo alojado (API compatible OpenAI)

Servicio de bajo nivel para completions de chat. Funciona con OpenAI u
OpenRouter vía OPENAI_BASE_URL. Un solo intento por invocación: los
errores de cuota/rate limit se traducen a ServiceUnavailableError y el
resto se propaga para que cada llamador aplique su degradación.
"""

import json
import re
import time
from typing import Dict, List, Any, Optional, Sequence, Union
from datetime import datetime
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI
from langchain_core.messages import BaseMessage

from ..utils.config import Settings, get_settings
from ..utils.errors import ServiceUnavailableError
from ..utils.logger import get_logger, log_api_call

logger = get_logger(__name__)

_ROLE_MAPPING = {"human": "user", "ai": "assistant", "system": "system"}

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass
class APICallStats:
    """Estadísticas de llamadas a la API."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_tokens_used: int = 0
    average_response_time: float = 0.0
    last_call_time: Optional[datetime] = None
    rate_limit_hits: int = 0


ChatMessages = Sequence[Union[BaseMessage, Dict[str, str]]]


def to_openai_messages(messages: ChatMessages) -> List[Dict[str, str]]:
    """Convierte mensajes de un ChatPromptTemplate al formato de la API."""
    converted = []
    for message in messages:
        if isinstance(message, BaseMessage):
            converted.append({
                "role": _ROLE_MAPPING.get(message.type, "user"),
                "content": str(message.content)
            })
        else:
            converted.append(message)
    return converted


def parse_json_response(raw: str) -> Any:
    """
    Parsea JSON devuelto por el modelo.

    Tolera bloques ```json``` y texto alrededor del objeto.

    Raises:
        ValueError: Si no hay JSON válido en la respuesta
    """
    text = _FENCE_PATTERN.sub("", (raw or "").strip()).strip()

    try:
        return json.loads(text)
    except ValueError:
        pass

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return json.loads(text[start:end + 1])

    raise ValueError(f"Respuesta sin JSON válido: {text[:80]!r}")


class LLMService:
    """
    Servicio principal para el modelo alojado.

    Features:
    - Cliente AsyncOpenAI con timeout de conexión y sin reintentos
    - Distinción de errores de cuota/rate limit
    - Estadísticas de uso y health check
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncOpenAI] = None):
        self.settings = settings or get_settings()
        config = self.settings.openai_config
        self.client = client or AsyncOpenAI(
            api_key=config["api_key"] or "not-configured",
            base_url=config["base_url"],
            timeout=config["timeout"],
            max_retries=config["max_retries"]
        )
        self.model = self.settings.OPENAI_MODEL
        self.stats = APICallStats()

    async def complete(
        self,
        messages: ChatMessages,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        model: Optional[str] = None
    ) -> str:
        """
        Ejecuta un chat completion y devuelve el texto generado.

        Args:
            messages: Mensajes (de ChatPromptTemplate o dicts role/content)
            max_tokens: Tokens máximos (default OPENAI_MAX_TOKENS)
            temperature: Temperature (default OPENAI_TEMPERATURE)
            model: Modelo específico

        Returns:
            Contenido de texto de la primera opción

        Raises:
            ServiceUnavailableError: Cuota agotada o rate limit
            openai.APIError: Cualquier otro error de la API
        """

        start_time = time.time()

        try:
            response = await self.client.chat.completions.create(
                model=model or self.model,
                messages=to_openai_messages(messages),
                max_tokens=max_tokens or self.settings.OPENAI_MAX_TOKENS,
                temperature=self.settings.OPENAI_TEMPERATURE if temperature is None else temperature
            )

        except openai.RateLimitError as e:
            duration = (time.time() - start_time) * 1000
            self.stats.rate_limit_hits += 1
            self._update_stats(None, duration, success=False)
            log_api_call(logger, "LLM", "chat.completions", duration, False, "rate limit / quota")
            raise ServiceUnavailableError(
                "Servicio IA temporalmente no disponible (cuota o rate limit)",
                {"status_code": getattr(e, "status_code", None)}
            ) from e

        except Exception as e:
            duration = (time.time() - start_time) * 1000
            self._update_stats(None, duration, success=False)
            log_api_call(logger, "LLM", "chat.completions", duration, False, str(e))
            raise

        duration = (time.time() - start_time) * 1000
        self._update_stats(response, duration, success=True)
        log_api_call(logger, "LLM", "chat.completions", duration, True)

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    def _update_stats(self, response: Any, processing_time: float, success: bool):
        """Actualiza estadísticas de llamadas API."""

        self.stats.total_calls += 1
        self.stats.last_call_time = datetime.now()

        if success and response:
            self.stats.successful_calls += 1

            usage = getattr(response, "usage", None)
            if usage is not None and getattr(usage, "total_tokens", None):
                self.stats.total_tokens_used += usage.total_tokens
        else:
            self.stats.failed_calls += 1

        # Actualizar tiempo promedio de respuesta
        if success and self.stats.successful_calls > 0:
            self.stats.average_response_time = (
                (self.stats.average_response_time * (self.stats.successful_calls - 1) + processing_time)
                / self.stats.successful_calls
            )

    def get_stats(self) -> Dict[str, Any]:
        """Obtiene estadísticas del servicio."""

        success_rate = 0.0
        if self.stats.total_calls > 0:
            success_rate = (self.stats.successful_calls / self.stats.total_calls) * 100

        return {
            "total_calls": self.stats.total_calls,
            "successful_calls": self.stats.successful_calls,
            "failed_calls": self.stats.failed_calls,
            "success_rate_percent": success_rate,
            "total_tokens_used": self.stats.total_tokens_used,
            "average_response_time_ms": self.stats.average_response_time,
            "rate_limit_hits": self.stats.rate_limit_hits,
            "last_call_time": self.stats.last_call_time
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Verifica salud del modelo alojado.

        Returns:
            Estado de salud y métricas básicas
        """

        try:
            start_time = time.time()

            await self.complete(
                [{"role": "user", "content": "Test de conectividad - responde solo 'OK'"}],
                max_tokens=5,
                temperature=0
            )

            return {
                "status": "healthy",
                "response_time_ms": (time.time() - start_time) * 1000,
                "model": self.model,
                "api_accessible": True,
                "stats": self.get_stats()
            }

        except Exception as e:
            logger.error(f"❌ Health check falló: {e}")

            return {
                "status": "unhealthy",
                "error": str(e),
                "model": self.model,
                "api_accessible": False,
                "stats": self.get_stats()
            }
