"""
Modelos Pydantic para tickets de soporte.

Incluye los enums compartidos con la capa ORM, la vista de lectura de un
ticket (cacheable en Redis) y las estructuras de búsqueda y estadísticas.
"""

from typing import Dict, List, Optional, Any
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field

from .intents import IntentType


class TicketStatus(str, Enum):
    """Estados del ciclo de vida de un ticket."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_CUSTOMER = "WAITING_CUSTOMER"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TicketPriority(str, Enum):
    """Prioridades de ticket, de menor a mayor."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TicketRead(BaseModel):
    """
    Vista de lectura de un ticket.

    Se construye desde la fila ORM y es lo que se serializa en cache.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    title: str
    description: str
    category: Optional[str] = None
    priority: TicketPriority = TicketPriority.NORMAL
    status: TicketStatus = TicketStatus.OPEN
    assigned_agent: Optional[str] = None
    resolution: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class TicketInfo(BaseModel):
    """Título y descripción extraídos de texto libre."""
    title: str
    description: str


class TicketIntent(BaseModel):
    """Resultado del detector local de intención de ticket."""
    intent: IntentType
    confidence: float = Field(ge=0.0, le=1.0)
    entities: Dict[str, Any] = Field(default_factory=dict)


class TicketSearchFilters(BaseModel):
    """Filtros estructurados para búsqueda de tickets."""
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    category: Optional[str] = None
    assigned_agent: Optional[str] = None
    user_id: Optional[int] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class TicketPage(BaseModel):
    """Página de resultados de búsqueda."""
    tickets: List[TicketRead]
    total: int
    limit: int
    offset: int
    has_more: bool


class TicketStats(BaseModel):
    """Conteos agregados de tickets."""
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)
