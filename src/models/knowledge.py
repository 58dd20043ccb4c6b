"""
Modelos Pydantic para la base de conocimiento (FAQ).
"""

from typing import Dict, List, Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class MatchSource(str, Enum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"


class KnowledgeBaseEntryRead(BaseModel):
    """Vista de lectura de una entrada, cacheable."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    question: str
    answer: str
    category: Optional[str] = None
    language: str
    keywords: List[str] = Field(default_factory=list)
    usage_count: int = 0
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class KnowledgeBaseMatch(BaseModel):
    """Resultado de búsqueda con su confianza y el nivel que lo produjo."""
    id: int
    question: str
    answer: str
    category: Optional[str] = None
    confidence: float = Field(ge=0.0, le=1.0)
    source: MatchSource


class KnowledgeBasePage(BaseModel):
    entries: List[KnowledgeBaseEntryRead]
    total: int
    limit: int
    offset: int
    has_more: bool


class KnowledgeBaseStats(BaseModel):
    total: int = 0
    active: int = 0
    by_language: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)
