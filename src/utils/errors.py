"""
Jerarquía de errores del agente.

Los servicios de persistencia y tickets propagan estos errores hasta el
procesador de mensajes, que los captura en un único punto. La capa HTTP
los traduce a códigos de estado.
"""

from typing import Any, Dict, Optional


class ChatbotError(Exception):
    """Error base del sistema."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(ChatbotError):
    """Entrada inválida para una operación de almacenamiento."""
    status_code = 400


class NotFoundError(ChatbotError):
    """Recurso no encontrado."""
    status_code = 404


class ConflictError(ChatbotError):
    """Violación de unicidad reportada por la base de datos."""
    status_code = 409


class ServiceUnavailableError(ChatbotError):
    """Cuota o rate limit del modelo alojado agotado."""
    status_code = 503


class WhatsAppAPIError(ChatbotError):
    """Error devuelto por la API de WhatsApp Business."""
    status_code = 502

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        http_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.code = code
        self.http_status = http_status


class InternalError(ChatbotError):
    """Error inesperado."""
    status_code = 500
