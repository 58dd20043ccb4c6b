"""
Ticket Service - Almacén de tickets de soporte

CRUD de tickets con prioridad y categoría automáticas, búsqueda,
estadísticas y barridos periódicos (escalado y cierre automático).

Cada mutación invalida las entradas de cache por ID y por usuario antes
de devolver, de modo que una lectura posterior nunca ve datos viejos.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, or_, select, update

from .cache_service import CacheService
from ..db.database import Database
from ..db.models import Ticket
from ..models.tickets import (
    TicketPage, TicketPriority, TicketRead, TicketSearchFilters,
    TicketStats, TicketStatus
)
from ..utils.config import Settings, get_settings
from ..utils.errors import NotFoundError, ValidationError
from ..utils.logger import get_logger, log_ticket_event

logger = get_logger(__name__)

URGENT_KEYWORDS = {
    "fr": ["urgent", "critique", "bloqué", "panne", "ne fonctionne pas", "cassé", "erreur critique"],
    "en": ["urgent", "critical", "blocked", "down", "not working", "broken", "critical error"],
}

HIGH_PRIORITY_KEYWORDS = {
    "fr": ["important", "rapidement", "vite", "problème", "bug", "dysfonctionnement"],
    "en": ["important", "quickly", "fast", "problem", "bug", "malfunction"],
}

# El orden importa: gana la primera categoría con coincidencia
CATEGORY_KEYWORDS = {
    "fr": {
        "technique": ["bug", "erreur", "ne fonctionne pas", "plantage", "lent", "connexion"],
        "facturation": ["facture", "paiement", "prix", "coût", "remboursement", "abonnement"],
        "commande": ["commande", "livraison", "expédition", "reçu", "produit"],
        "compte": ["compte", "profil", "mot de passe", "connexion", "accès"],
        "général": ["information", "question", "aide", "comment"],
    },
    "en": {
        "technical": ["bug", "error", "not working", "crash", "slow", "connection"],
        "billing": ["invoice", "payment", "price", "cost", "refund", "subscription"],
        "order": ["order", "delivery", "shipping", "received", "product"],
        "account": ["account", "profile", "password", "login", "access"],
        "general": ["information", "question", "help", "how"],
    },
}

DEFAULT_CATEGORY = {"fr": "général", "en": "general"}

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000


def determine_priority(text: str, language: str = "fr") -> TicketPriority:
    """
    Prioridad por palabras clave: URGENT antes que HIGH, NORMAL por defecto.
    """
    lower_text = (text or "").lower()

    urgent_words = URGENT_KEYWORDS.get(language, URGENT_KEYWORDS["fr"])
    if any(word in lower_text for word in urgent_words):
        return TicketPriority.URGENT

    high_words = HIGH_PRIORITY_KEYWORDS.get(language, HIGH_PRIORITY_KEYWORDS["fr"])
    if any(word in lower_text for word in high_words):
        return TicketPriority.HIGH

    return TicketPriority.NORMAL


def determine_category(text: str, language: str = "fr") -> str:
    lower_text = (text or "").lower()
    categories = CATEGORY_KEYWORDS.get(language, CATEGORY_KEYWORDS["fr"])

    for category, words in categories.items():
        if any(word in lower_text for word in words):
            return category

    return DEFAULT_CATEGORY.get(language, DEFAULT_CATEGORY["fr"])


class TicketService:
    """
    Servicio de tickets.

    Features:
    - Creación con prioridad/categoría automáticas
    - Lecturas cacheadas por ID, usuario y estadísticas
    - Cambios de estado validados contra el ciclo de vida
    - Barridos de escalado y cierre automático
    """

    def __init__(self, database: Database, cache: CacheService, settings: Optional[Settings] = None):
        self.database = database
        self.cache = cache
        self.settings = settings or get_settings()
        self.cache_ttl = self.settings.TICKET_CACHE_TTL

    # ================================
    # Cache helpers
    # ================================

    @staticmethod
    def _ticket_key(ticket_id: int) -> str:
        return f"ticket:{ticket_id}"

    async def _invalidate(self, ticket_id: Optional[int] = None, user_id: Optional[int] = None):
        if ticket_id is not None:
            await self.cache.delete(self._ticket_key(ticket_id))
        if user_id is not None:
            await self.cache.delete_pattern(f"tickets:user:{user_id}:*")
        await self.cache.delete_pattern("tickets:stats:*")

    async def _cache_set(self, key: str, value: Any):
        try:
            await self.cache.set(key, value, self.cache_ttl)
        except Exception as e:
            logger.warning(f"⚠️ No se pudo cachear {key}: {e}")

    # ================================
    # CRUD
    # ================================

    async def create_ticket(
        self,
        user_id: int,
        title: str,
        description: str,
        category: Optional[str] = None,
        language: str = "fr",
        priority: Optional[TicketPriority] = None
    ) -> TicketRead:
        """
        Crea un ticket.

        Args:
            user_id: Propietario
            title: Título (obligatorio)
            description: Descripción (obligatoria)
            category: Categoría; se infiere del texto si no se da
            language: Idioma para las tablas de palabras clave
            priority: Prioridad; se infiere del texto si no se da

        Raises:
            ValidationError: Título o descripción vacíos
        """
        if not title or not title.strip():
            raise ValidationError("El título del ticket es obligatorio")
        if not description or not description.strip():
            raise ValidationError("La descripción del ticket es obligatoria")

        full_text = f"{title} {description}"
        priority = priority or determine_priority(full_text, language)
        category = category or determine_category(full_text, language)

        async with self.database.session() as session:
            ticket = Ticket(
                user_id=user_id,
                title=title.strip()[:MAX_TITLE_LENGTH],
                description=description.strip()[:MAX_DESCRIPTION_LENGTH],
                category=category,
                priority=priority,
                status=TicketStatus.OPEN
            )
            session.add(ticket)
            await session.flush()
            result = TicketRead.model_validate(ticket)

        await self._invalidate(user_id=user_id)

        log_ticket_event(
            logger, "created", result.id, user_id,
            priority=result.priority.value, category=result.category
        )

        if self.settings.TICKET_AUTO_ASSIGN:
            await self.auto_assign_ticket(result.id)

        return result

    async def auto_assign_ticket(self, ticket_id: int):
        # Sin pool de agentes: solo se registra el intento
        log_ticket_event(logger, "auto_assignment_attempted", ticket_id, result="not_implemented")

    async def get_ticket(self, ticket_id: int, user_id: Optional[int] = None) -> TicketRead:
        """
        Obtiene un ticket por ID.

        Raises:
            NotFoundError: Si no existe o pertenece a otro usuario
        """
        cached = await self.cache.get(self._ticket_key(ticket_id))
        if cached is not None:
            ticket = TicketRead.model_validate(cached)
        else:
            async with self.database.session() as session:
                row = await session.get(Ticket, ticket_id)
                if row is None:
                    raise NotFoundError(f"Ticket {ticket_id} no encontrado")
                ticket = TicketRead.model_validate(row)
            await self._cache_set(self._ticket_key(ticket_id), ticket.model_dump(mode="json"))

        if user_id is not None and ticket.user_id != user_id:
            raise NotFoundError(f"Ticket {ticket_id} no encontrado")

        return ticket

    async def get_user_tickets(
        self,
        user_id: int,
        status: Optional[TicketStatus] = None,
        limit: int = 10,
        offset: int = 0
    ) -> List[TicketRead]:
        """Tickets del usuario, más recientes primero."""
        status_key = status.value if status else "all"
        cache_key = f"tickets:user:{user_id}:{status_key}:{limit}:{offset}"

        cached = await self.cache.get(cache_key)
        if cached is not None:
            return [TicketRead.model_validate(item) for item in cached]

        stmt = select(Ticket).where(Ticket.user_id == user_id)
        if status:
            stmt = stmt.where(Ticket.status == status)
        stmt = stmt.order_by(Ticket.created_at.desc(), Ticket.id.desc()).limit(limit).offset(offset)

        async with self.database.session() as session:
            tickets = [TicketRead.model_validate(row) for row in (await session.scalars(stmt)).all()]

        await self._cache_set(cache_key, [ticket.model_dump(mode="json") for ticket in tickets])
        return tickets

    async def update_ticket_status(
        self,
        ticket_id: int,
        new_status: Union[TicketStatus, str],
        resolution: Optional[str] = None,
        agent_id: Optional[str] = None
    ) -> TicketRead:
        """
        Cambia el estado de un ticket.

        Raises:
            ValidationError: Estado fuera del ciclo de vida (sin mutar nada)
            NotFoundError: Ticket inexistente
        """
        try:
            status = TicketStatus(new_status)
        except ValueError:
            raise ValidationError(
                f"Estado de ticket inválido: {new_status}",
                {"allowed": [s.value for s in TicketStatus]}
            )

        async with self.database.session() as session:
            ticket = await session.get(Ticket, ticket_id)
            if ticket is None:
                raise NotFoundError(f"Ticket {ticket_id} no encontrado")

            previous = ticket.status
            ticket.status = status
            ticket.updated_at = datetime.now()
            if resolution is not None:
                ticket.resolution = resolution
            if agent_id is not None:
                ticket.assigned_agent = agent_id
            if status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
                ticket.resolved_at = datetime.now()

            await session.flush()
            result = TicketRead.model_validate(ticket)

        await self._invalidate(ticket_id, result.user_id)
        log_ticket_event(
            logger, "status_changed", ticket_id, result.user_id,
            previous=previous.value, new=status.value, agent=agent_id
        )
        return result

    async def assign_ticket(self, ticket_id: int, agent_id: str) -> TicketRead:
        """Asigna un agente y pasa el ticket a IN_PROGRESS."""
        async with self.database.session() as session:
            ticket = await session.get(Ticket, ticket_id)
            if ticket is None:
                raise NotFoundError(f"Ticket {ticket_id} no encontrado")

            ticket.assigned_agent = agent_id
            ticket.status = TicketStatus.IN_PROGRESS
            ticket.updated_at = datetime.now()
            await session.flush()
            result = TicketRead.model_validate(ticket)

        await self._invalidate(ticket_id, result.user_id)
        log_ticket_event(logger, "assigned", ticket_id, result.user_id, agent=agent_id)
        return result

    # ================================
    # Search & stats
    # ================================

    async def search_tickets(
        self,
        query: Optional[str] = None,
        filters: Optional[TicketSearchFilters] = None,
        limit: int = 20,
        offset: int = 0
    ) -> TicketPage:
        """
        Búsqueda de texto libre (título, descripción, resolución) más filtros.
        """
        filters = filters or TicketSearchFilters()
        conditions = []

        if query and query.strip():
            pattern = f"%{query.strip().lower()}%"
            conditions.append(or_(
                func.lower(Ticket.title).like(pattern),
                func.lower(Ticket.description).like(pattern),
                func.lower(Ticket.resolution).like(pattern)
            ))

        if filters.status:
            conditions.append(Ticket.status == filters.status)
        if filters.priority:
            conditions.append(Ticket.priority == filters.priority)
        if filters.category:
            conditions.append(Ticket.category == filters.category)
        if filters.assigned_agent:
            conditions.append(Ticket.assigned_agent == filters.assigned_agent)
        if filters.user_id is not None:
            conditions.append(Ticket.user_id == filters.user_id)
        if filters.date_from:
            conditions.append(Ticket.created_at >= filters.date_from)
        if filters.date_to:
            conditions.append(Ticket.created_at <= filters.date_to)

        async with self.database.session() as session:
            total = await session.scalar(select(func.count()).select_from(Ticket).where(*conditions)) or 0
            rows = (await session.scalars(
                select(Ticket)
                .where(*conditions)
                .order_by(Ticket.created_at.desc(), Ticket.id.desc())
                .limit(limit)
                .offset(offset)
            )).all()

        return TicketPage(
            tickets=[TicketRead.model_validate(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + limit < total
        )

    async def get_ticket_stats(
        self,
        user_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None
    ) -> TicketStats:
        cache_key = (
            f"tickets:stats:{user_id or 'all'}:"
            f"{date_from.isoformat() if date_from else 'none'}:"
            f"{date_to.isoformat() if date_to else 'none'}"
        )
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return TicketStats.model_validate(cached)

        conditions = []
        if user_id is not None:
            conditions.append(Ticket.user_id == user_id)
        if date_from:
            conditions.append(Ticket.created_at >= date_from)
        if date_to:
            conditions.append(Ticket.created_at <= date_to)

        async with self.database.session() as session:
            total = await session.scalar(select(func.count()).select_from(Ticket).where(*conditions))
            by_status = await session.execute(
                select(Ticket.status, func.count()).where(*conditions).group_by(Ticket.status)
            )
            by_priority = await session.execute(
                select(Ticket.priority, func.count()).where(*conditions).group_by(Ticket.priority)
            )
            by_category = await session.execute(
                select(Ticket.category, func.count()).where(*conditions).group_by(Ticket.category)
            )

            stats = TicketStats(
                total=total or 0,
                by_status={status.value: count for status, count in by_status.all()},
                by_priority={priority.value: count for priority, count in by_priority.all()},
                by_category={(category or "uncategorized"): count for category, count in by_category.all()}
            )

        await self._cache_set(cache_key, stats.model_dump(mode="json"))
        return stats

    # ================================
    # Sweeps
    # ================================

    async def check_tickets_for_escalation(self) -> List[TicketRead]:
        """
        Tickets OPEN de prioridad HIGH/URGENT, sin agente y más viejos que
        TICKET_ESCALATION_TIMEOUT. Solo se registran en el log.
        """
        now = datetime.now()
        cutoff = now - timedelta(seconds=self.settings.TICKET_ESCALATION_TIMEOUT)

        async with self.database.session() as session:
            rows = (await session.scalars(
                select(Ticket).where(
                    Ticket.status == TicketStatus.OPEN,
                    Ticket.priority.in_([TicketPriority.HIGH, TicketPriority.URGENT]),
                    Ticket.created_at < cutoff,
                    Ticket.assigned_agent.is_(None)
                ).order_by(Ticket.created_at)
            )).all()
            tickets = [TicketRead.model_validate(row) for row in rows]

        for ticket in tickets:
            age_minutes = int((now - ticket.created_at).total_seconds() // 60)
            log_ticket_event(
                logger, "escalation_required", ticket.id, ticket.user_id,
                priority=ticket.priority.value, age_minutes=age_minutes
            )

        return tickets

    async def auto_close_resolved_tickets(self) -> int:
        """
        Cierra los tickets RESOLVED hace más de TICKET_AUTO_CLOSE_DAYS.

        Returns:
            Número de tickets cerrados
        """
        cutoff = datetime.now() - timedelta(days=self.settings.TICKET_AUTO_CLOSE_DAYS)

        async with self.database.session() as session:
            targets = (await session.execute(
                select(Ticket.id, Ticket.user_id).where(
                    Ticket.status == TicketStatus.RESOLVED,
                    Ticket.resolved_at < cutoff
                )
            )).all()

            if targets:
                await session.execute(
                    update(Ticket)
                    .where(Ticket.id.in_([ticket_id for ticket_id, _ in targets]))
                    .values(status=TicketStatus.CLOSED, updated_at=datetime.now())
                )

        for ticket_id, user_id in targets:
            await self._invalidate(ticket_id, user_id)

        if targets:
            logger.info(f"🎫 {len(targets)} tickets resueltos cerrados automáticamente")

        return len(targets)

    async def run_maintenance(self) -> Dict[str, int]:
        """Ejecuta ambos barridos; usado por la tarea periódica."""
        escalations = await self.check_tickets_for_escalation()
        closed = await self.auto_close_resolved_tickets()
        return {"escalations": len(escalations), "auto_closed": closed}
