"""
Knowledge Base Service - Búsqueda en FAQ en dos niveles

1. Nivel keywords: coincidencia de substring y palabras clave, con score
   normalizado. Un score > 0.8 corta la búsqueda (sin llamar al modelo).
2. Nivel semántico: el modelo alojado puntúa la relevancia de las
   entradas más usadas.

Los resultados combinados se cachean por hash de la consulta
normalizada + idioma + límite. Los fallos del modelo nunca se propagan.
"""

import re
from typing import Any, Dict, List, Optional

from langchain_core.prompts import ChatPromptTemplate
from sqlalchemy import func, or_, select

from .cache_service import CacheService, hash_text
from .llm_service import LLMService, parse_json_response
from ..db.database import Database
from ..db.models import KnowledgeBaseEntry
from ..models.knowledge import (
    KnowledgeBaseEntryRead, KnowledgeBaseMatch, KnowledgeBasePage,
    KnowledgeBaseStats, MatchSource
)
from ..utils.config import Settings, get_settings
from ..utils.errors import NotFoundError, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

KEYWORD_SHORT_CIRCUIT_SCORE = 0.8
KEYWORD_MIN_SCORE = 0.3
SEMANTIC_POOL_SIZE = 20

_STOPWORDS = {
    "fr": {
        "les", "des", "une", "pour", "dans", "avec", "sans", "sur", "vous", "nous",
        "est", "sont", "comment", "quels", "quelle", "quel", "votre", "vos", "notre",
        "nos", "ceci", "cela", "cette", "mais", "donc", "puis", "peux", "puis-je", "pouvez",
    },
    "en": {
        "the", "and", "for", "with", "without", "your", "our", "are", "how", "what",
        "this", "that", "can", "you", "from", "into", "will", "have", "has", "does",
    },
}

RELEVANCE_PROMPTS = {
    "fr": ChatPromptTemplate.from_messages([
        ("system",
         "Tu es un expert en recherche d'information. Évalue la pertinence de chaque question "
         "par rapport à la requête utilisateur.\n\n"
         "Donne un score de 0 à 1 pour chaque question :\n"
         "- 1.0 : Parfaitement pertinent\n"
         "- 0.8-0.9 : Très pertinent\n"
         "- 0.6-0.7 : Moyennement pertinent\n"
         "- 0.3-0.5 : Peu pertinent\n"
         "- 0.0-0.2 : Non pertinent\n\n"
         "Réponds uniquement avec un JSON valide: {{\"scores\": [0.9, 0.1, ...]}} "
         "avec un score par question, dans le même ordre."),
        ("human", "Requête: \"{query}\"\n\nQuestions:\n{questions}"),
    ]),
    "en": ChatPromptTemplate.from_messages([
        ("system",
         "You are an information retrieval expert. Evaluate the relevance of each question "
         "to the user query.\n\n"
         "Give a score from 0 to 1 for each question:\n"
         "- 1.0: Perfectly relevant\n"
         "- 0.8-0.9: Very relevant\n"
         "- 0.6-0.7: Moderately relevant\n"
         "- 0.3-0.5: Slightly relevant\n"
         "- 0.0-0.2: Not relevant\n\n"
         "Respond only with valid JSON: {{\"scores\": [0.9, 0.1, ...]}} "
         "with one score per question, in the same order."),
        ("human", "Query: \"{query}\"\n\nQuestions:\n{questions}"),
    ]),
}

KEYWORDS_PROMPT = ChatPromptTemplate.from_messages([
    ("system",
     "Extract 5-10 important keywords in {language} from the text to facilitate search. "
     "Respond only with valid JSON: {{\"keywords\": [\"word1\", \"word2\"]}}"),
    ("human", "{text}"),
])

DEFAULT_ENTRIES: Dict[str, List[Dict[str, Any]]] = {
    "fr": [
        {
            "question": "Comment puis-je vous contacter ?",
            "answer": (
                "Vous pouvez nous contacter via ce chat WhatsApp 24h/24 et 7j/7. Pour parler à un "
                "agent humain, tapez 'agent' ou utilisez le bouton correspondant."
            ),
            "category": "général",
            "keywords": ["contact", "joindre", "parler", "agent", "humain"],
        },
        {
            "question": "Quels sont vos horaires d'ouverture ?",
            "answer": (
                "Notre service client automatisé est disponible 24h/24 et 7j/7. Nos agents humains "
                "sont disponibles du lundi au vendredi de 9h à 18h."
            ),
            "category": "général",
            "keywords": ["horaires", "ouverture", "disponible", "heures"],
        },
        {
            "question": "Comment créer un ticket de support ?",
            "answer": (
                "Pour créer un ticket, décrivez simplement votre problème dans ce chat. Je créerai "
                "automatiquement un ticket et vous donnerai un numéro de suivi."
            ),
            "category": "technique",
            "keywords": ["ticket", "support", "problème", "aide"],
        },
    ],
    "en": [
        {
            "question": "How can I contact you?",
            "answer": (
                "You can contact us through this WhatsApp chat 24/7. To speak with a human agent, "
                "type 'agent' or use the corresponding button."
            ),
            "category": "general",
            "keywords": ["contact", "reach", "speak", "agent", "human"],
        },
        {
            "question": "What are your opening hours?",
            "answer": (
                "Our automated customer service is available 24/7. Our human agents are available "
                "Monday to Friday from 9 AM to 6 PM."
            ),
            "category": "general",
            "keywords": ["hours", "opening", "available", "time"],
        },
        {
            "question": "How do I create a support ticket?",
            "answer": (
                "To create a ticket, simply describe your problem in this chat. I will automatically "
                "create a ticket and give you a tracking number."
            ),
            "category": "technical",
            "keywords": ["ticket", "support", "problem", "help"],
        },
    ],
}


def tokenize(text: str) -> List[str]:
    """Palabras en minúscula de más de 2 caracteres."""
    return [word for word in re.findall(r"\w+", text.lower()) if len(word) > 2]


class KnowledgeBaseService:
    """
    Servicio de base de conocimiento.

    Features:
    - Búsqueda keyword + semántica con cache
    - CRUD de entradas con invalidación de cache
    - Generación automática de keywords
    - Carga de FAQ por defecto
    """

    def __init__(
        self,
        database: Database,
        cache: CacheService,
        llm_service: LLMService,
        settings: Optional[Settings] = None
    ):
        self.database = database
        self.cache = cache
        self.llm_service = llm_service
        self.settings = settings or get_settings()

        self.similarity_threshold = self.settings.KB_SIMILARITY_THRESHOLD
        self.cache_ttl = self.settings.KB_CACHE_TTL
        self.search_cache_ttl = self.settings.KB_SEARCH_CACHE_TTL

        self.stats = {
            "searches": 0,
            "cache_hits": 0,
            "keyword_short_circuits": 0,
            "semantic_calls": 0,
            "semantic_errors": 0,
            "no_results": 0
        }

    @staticmethod
    def _normalize(query: Optional[str]) -> str:
        return (query or "").strip().lower()

    def _search_cache_key(self, normalized: str, language: str, limit: int) -> str:
        return f"kb:search:{hash_text(normalized)}:{language}:{limit}"

    # ================================
    # Search
    # ================================

    async def search(self, query: str, language: str, limit: int = 5) -> Optional[KnowledgeBaseMatch]:
        """
        Busca la mejor respuesta para una consulta.

        Args:
            query: Texto del usuario
            language: Idioma de las entradas a considerar
            limit: Máximo de resultados combinados a cachear

        Returns:
            Mejor coincidencia o None (nunca lanza excepción)
        """
        self.stats["searches"] += 1

        normalized = self._normalize(query)
        if not normalized:
            logger.debug("📚 Consulta vacía, búsqueda omitida")
            return None

        try:
            cache_key = self._search_cache_key(normalized, language, limit)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                self.stats["cache_hits"] += 1
                return KnowledgeBaseMatch.model_validate(cached[0]) if cached else None

            keyword_results = await self.search_by_keywords(normalized, language, limit)

            if keyword_results and keyword_results[0].confidence > KEYWORD_SHORT_CIRCUIT_SCORE:
                self.stats["keyword_short_circuits"] += 1
                results = keyword_results[:limit]
                await self._cache_results(cache_key, results)
                logger.info(f"📚 KB match por keywords ({results[0].confidence:.2f}): #{results[0].id}")
                return results[0]

            semantic_results = await self.search_semantic(normalized, language, limit)
            results = self._merge_results(keyword_results, semantic_results)[:limit]
            await self._cache_results(cache_key, results)

            if not results:
                self.stats["no_results"] += 1
                return None

            best = results[0]
            logger.info(f"📚 KB match {best.source.value} ({best.confidence:.2f}): #{best.id}")
            return best

        except Exception as e:
            logger.error(f"❌ Error buscando en base de conocimiento: {e}")
            return None

    async def _cache_results(self, cache_key: str, results: List[KnowledgeBaseMatch]):
        try:
            await self.cache.set(
                cache_key,
                [result.model_dump(mode="json") for result in results],
                self.search_cache_ttl
            )
        except Exception as e:
            logger.warning(f"⚠️ No se pudo cachear búsqueda: {e}")

    @staticmethod
    def _merge_results(*groups: List[KnowledgeBaseMatch]) -> List[KnowledgeBaseMatch]:
        """Combina resultados, deja la mejor confianza por entrada y ordena."""
        best: Dict[int, KnowledgeBaseMatch] = {}
        for group in groups:
            for match in group:
                current = best.get(match.id)
                if current is None or match.confidence > current.confidence:
                    best[match.id] = match
        return sorted(best.values(), key=lambda match: match.confidence, reverse=True)

    async def _get_active_entries(self, language: str, limit: Optional[int] = None) -> List[KnowledgeBaseEntry]:
        async with self.database.session() as session:
            stmt = (
                select(KnowledgeBaseEntry)
                .where(KnowledgeBaseEntry.is_active.is_(True), KnowledgeBaseEntry.language == language)
                .order_by(KnowledgeBaseEntry.usage_count.desc(), KnowledgeBaseEntry.id)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return list((await session.scalars(stmt)).all())

    async def search_by_keywords(self, query: str, language: str, limit: int = 5) -> List[KnowledgeBaseMatch]:
        """
        Nivel keywords.

        Candidatas: entradas activas del idioma cuya pregunta contiene la
        consulta o cuyas keywords intersectan las palabras de la consulta.
        """
        normalized = self._normalize(query)
        words = tokenize(normalized)
        word_set = set(words)

        candidates = []
        for entry in await self._get_active_entries(language):
            keywords = {keyword.lower() for keyword in (entry.keywords or [])}
            if normalized in entry.question.lower() or keywords & word_set:
                candidates.append(entry)
            if len(candidates) >= limit * 2:
                break

        results = []
        for entry in candidates:
            score = self.calculate_keyword_score(normalized, words, entry)
            if score > KEYWORD_MIN_SCORE:
                results.append(self._to_match(entry, score, MatchSource.KEYWORD))

        return sorted(results, key=lambda match: match.confidence, reverse=True)

    @staticmethod
    def calculate_keyword_score(query: str, words: List[str], entry: KnowledgeBaseEntry) -> float:
        """
        Score normalizado en [0, 1].

        2 por substring exacto, 1 por palabra contenida en alguna keyword,
        0.5 por palabra contenida en alguna palabra de la pregunta y 0.2
        extra si la entrada tiene uso alto.
        """
        question = entry.question.lower()
        question_words = question.split()
        keywords = [keyword.lower() for keyword in (entry.keywords or [])]

        score = 0.0
        if query in question:
            score += 2

        for word in words:
            if any(word in keyword for keyword in keywords):
                score += 1
            if any(word in question_word for question_word in question_words):
                score += 0.5

        if (entry.usage_count or 0) > 10:
            score += 0.2

        max_score = len(words) + 2
        return min(score / max_score, 1.0)

    async def search_semantic(self, query: str, language: str, limit: int = 5) -> List[KnowledgeBaseMatch]:
        """
        Nivel semántico: el modelo puntúa las entradas más usadas.

        Devuelve lista vacía ante cualquier fallo del modelo.
        """
        entries = await self._get_active_entries(language, SEMANTIC_POOL_SIZE)
        if not entries:
            return []

        scores = await self.evaluate_semantic_relevance(query, entries, language)

        results = []
        for entry, score in zip(entries, scores):
            if score > self.similarity_threshold:
                results.append(self._to_match(entry, score, MatchSource.SEMANTIC))

        return sorted(results, key=lambda match: match.confidence, reverse=True)[:limit]

    async def evaluate_semantic_relevance(
        self,
        query: str,
        entries: List[KnowledgeBaseEntry],
        language: str
    ) -> List[float]:
        self.stats["semantic_calls"] += 1
        prompt = RELEVANCE_PROMPTS.get(language, RELEVANCE_PROMPTS["en"])
        questions = "\n".join(f"{index}. {entry.question}" for index, entry in enumerate(entries, 1))

        try:
            raw = await self.llm_service.complete(
                prompt.format_messages(query=query, questions=questions),
                max_tokens=500,
                temperature=0.1
            )
            payload = parse_json_response(raw)
            scores = payload.get("scores", []) if isinstance(payload, dict) else []
            return [self._clamp(score) for score in scores]

        except Exception as e:
            self.stats["semantic_errors"] += 1
            logger.error(f"❌ Error evaluando relevancia semántica: {e}")
            return []

    @staticmethod
    def _clamp(value: Any) -> float:
        try:
            return max(0.0, min(1.0, float(value)))
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def _to_match(entry: KnowledgeBaseEntry, score: float, source: MatchSource) -> KnowledgeBaseMatch:
        return KnowledgeBaseMatch(
            id=entry.id,
            question=entry.question,
            answer=entry.answer,
            category=entry.category,
            confidence=round(score, 4),
            source=source
        )

    # ================================
    # Administration
    # ================================

    async def add_entry(
        self,
        question: str,
        answer: str,
        category: Optional[str],
        language: str,
        keywords: Optional[List[str]] = None
    ) -> KnowledgeBaseEntryRead:
        """
        Añade una entrada. Si no se dan keywords se generan automáticamente.

        Raises:
            ValidationError: Si la pregunta o la respuesta están vacías
        """
        if not question or not question.strip() or not answer or not answer.strip():
            raise ValidationError("La pregunta y la respuesta son obligatorias")

        if not keywords:
            keywords = await self.generate_keywords(f"{question} {answer}", language)

        async with self.database.session() as session:
            entry = KnowledgeBaseEntry(
                question=question.strip(),
                answer=answer.strip(),
                category=category or ("général" if language == "fr" else "general"),
                language=language,
                keywords=[keyword.lower() for keyword in keywords],
                usage_count=0,
                is_active=True
            )
            session.add(entry)
            await session.flush()
            result = KnowledgeBaseEntryRead.model_validate(entry)

        await self.cache.delete_pattern("kb:search:*")
        logger.info(f"📚 Entrada KB #{result.id} añadida ({language}, {len(result.keywords)} keywords)")
        return result

    async def update_entry(self, entry_id: int, **updates: Any) -> KnowledgeBaseEntryRead:
        allowed = {"question", "answer", "category", "language", "keywords", "is_active"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValidationError(f"Campos no modificables: {sorted(unknown)}")

        async with self.database.session() as session:
            entry = await session.get(KnowledgeBaseEntry, entry_id)
            if entry is None:
                raise NotFoundError(f"Entrada KB {entry_id} no encontrada")

            for field, value in updates.items():
                setattr(entry, field, value)
            await session.flush()
            result = KnowledgeBaseEntryRead.model_validate(entry)

        await self.cache.delete_pattern("kb:search:*")
        await self.cache.delete(f"kb:entry:{entry_id}")
        logger.info(f"📚 Entrada KB #{entry_id} actualizada: {sorted(updates)}")
        return result

    async def delete_entry(self, entry_id: int) -> None:
        async with self.database.session() as session:
            entry = await session.get(KnowledgeBaseEntry, entry_id)
            if entry is None:
                raise NotFoundError(f"Entrada KB {entry_id} no encontrada")
            await session.delete(entry)

        await self.cache.delete_pattern("kb:search:*")
        await self.cache.delete(f"kb:entry:{entry_id}")
        logger.info(f"🗑️ Entrada KB #{entry_id} eliminada")

    async def get_entry(self, entry_id: int) -> KnowledgeBaseEntryRead:
        cache_key = f"kb:entry:{entry_id}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return KnowledgeBaseEntryRead.model_validate(cached)

        async with self.database.session() as session:
            entry = await session.get(KnowledgeBaseEntry, entry_id)
            if entry is None:
                raise NotFoundError(f"Entrada KB {entry_id} no encontrada")
            result = KnowledgeBaseEntryRead.model_validate(entry)

        try:
            await self.cache.set(cache_key, result.model_dump(mode="json"), self.cache_ttl)
        except Exception as e:
            logger.warning(f"⚠️ No se pudo cachear entrada {entry_id}: {e}")
        return result

    async def list_entries(
        self,
        language: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> KnowledgeBasePage:
        conditions = []
        if language:
            conditions.append(KnowledgeBaseEntry.language == language)
        if category:
            conditions.append(KnowledgeBaseEntry.category == category)
        if is_active is not None:
            conditions.append(KnowledgeBaseEntry.is_active.is_(is_active))
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(or_(
                func.lower(KnowledgeBaseEntry.question).like(pattern),
                func.lower(KnowledgeBaseEntry.answer).like(pattern)
            ))

        async with self.database.session() as session:
            total = await session.scalar(
                select(func.count()).select_from(KnowledgeBaseEntry).where(*conditions)
            )
            entries = (await session.scalars(
                select(KnowledgeBaseEntry)
                .where(*conditions)
                .order_by(KnowledgeBaseEntry.usage_count.desc(), KnowledgeBaseEntry.id)
                .limit(limit)
                .offset(offset)
            )).all()

        return KnowledgeBasePage(
            entries=[KnowledgeBaseEntryRead.model_validate(entry) for entry in entries],
            total=total or 0,
            limit=limit,
            offset=offset,
            has_more=offset + limit < (total or 0)
        )

    async def increment_usage(self, entry_id: int) -> None:
        """Incrementa el contador de uso (best-effort, no transaccional con la lectura)."""
        try:
            async with self.database.session() as session:
                entry = await session.get(KnowledgeBaseEntry, entry_id)
                if entry is not None:
                    entry.usage_count = (entry.usage_count or 0) + 1
            await self.cache.delete(f"kb:entry:{entry_id}")
        except Exception as e:
            logger.warning(f"⚠️ No se pudo incrementar uso de #{entry_id}: {e}")

    async def generate_keywords(self, text: str, language: str) -> List[str]:
        """
        Genera keywords con el modelo; si falla usa palabras significativas del texto.
        """
        try:
            raw = await self.llm_service.complete(
                KEYWORDS_PROMPT.format_messages(text=text, language=language),
                max_tokens=200,
                temperature=0.3
            )
            payload = parse_json_response(raw)
            keywords = payload.get("keywords", []) if isinstance(payload, dict) else []
            keywords = [str(keyword).strip().lower() for keyword in keywords if str(keyword).strip()]
            if keywords:
                return keywords[:10]
        except Exception as e:
            logger.warning(f"⚠️ Generación de keywords con IA falló, usando heurística: {e}")

        return self._extract_local_keywords(text, language)

    @staticmethod
    def _extract_local_keywords(text: str, language: str) -> List[str]:
        stopwords = _STOPWORDS.get(language, set())
        keywords: List[str] = []
        for word in re.findall(r"\w+", text.lower()):
            if len(word) > 3 and word not in stopwords and word not in keywords:
                keywords.append(word)
            if len(keywords) >= 10:
                break
        return keywords

    async def get_stats(self, language: Optional[str] = None) -> KnowledgeBaseStats:
        conditions = [KnowledgeBaseEntry.language == language] if language else []

        async with self.database.session() as session:
            total = await session.scalar(
                select(func.count()).select_from(KnowledgeBaseEntry).where(*conditions)
            )
            active = await session.scalar(
                select(func.count()).select_from(KnowledgeBaseEntry)
                .where(*conditions, KnowledgeBaseEntry.is_active.is_(True))
            )
            by_language = (await session.execute(
                select(KnowledgeBaseEntry.language, func.count())
                .where(*conditions)
                .group_by(KnowledgeBaseEntry.language)
            )).all()
            by_category = (await session.execute(
                select(KnowledgeBaseEntry.category, func.count())
                .where(*conditions)
                .group_by(KnowledgeBaseEntry.category)
            )).all()

        return KnowledgeBaseStats(
            total=total or 0,
            active=active or 0,
            by_language={lang: count for lang, count in by_language},
            by_category={(category or "uncategorized"): count for category, count in by_category}
        )

    async def initialize_default_entries(self, language: str) -> int:
        """
        Carga las FAQ por defecto si el idioma no tiene entradas.

        Returns:
            Número de entradas añadidas
        """
        async with self.database.session() as session:
            existing = await session.scalar(
                select(func.count()).select_from(KnowledgeBaseEntry)
                .where(KnowledgeBaseEntry.language == language)
            )

        if existing:
            logger.info(f"📚 Base de conocimiento ya inicializada para {language}")
            return 0

        entries = self.get_default_entries(language)
        for entry in entries:
            await self.add_entry(
                entry["question"], entry["answer"], entry["category"], language, entry["keywords"]
            )

        logger.info(f"✅ {len(entries)} entradas por defecto añadidas para {language}")
        return len(entries)

    @staticmethod
    def get_default_entries(language: str) -> List[Dict[str, Any]]:
        return DEFAULT_ENTRIES.get(language, DEFAULT_ENTRIES["fr"])

    def get_service_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
