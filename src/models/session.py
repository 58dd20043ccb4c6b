"""
Modelo de sesión efímera por usuario.

La sesión vive en Redis con TTL propio y se reconstruye desde
User/Conversation cuando expira.
"""

from typing import Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field


class Session(BaseModel):
    """
    Estado de trabajo por usuario.

    El contexto guarda marcas como `pendingHandoff`, `handoffReason`
    y `handoffTimestamp`.
    """
    conversation_id: int = Field(description="Conversación activa")

    language: str = Field(description="Idioma activo de la sesión")

    context: Dict[str, Any] = Field(default_factory=dict, description="Contexto libre")

    last_activity: datetime = Field(default_factory=datetime.now, description="Última actividad")
