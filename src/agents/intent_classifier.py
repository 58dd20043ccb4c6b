"""
Intent Classifier Agent - Clasificación de intenciones con el modelo alojado

Clasifica mensajes en el conjunto fijo de intenciones, detecta idioma y
ofrece análisis de sentimiento, extracción de entidades y generación de
texto libre.

`analyze_intent` y `detect_language` nunca lanzan excepciones: ante
cualquier fallo del modelo degradan a heurísticas por palabras clave.
"""

import time
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.prompts import ChatPromptTemplate

from ..models.intents import (
    IntentAnalysis, IntentType, RawIntentPayload, Sentiment, SentimentResult
)
from ..services.cache_service import CacheService, hash_text
from ..services.llm_service import LLMService, parse_json_response
from ..utils.config import Settings, get_settings
from ..utils.errors import ServiceUnavailableError
from ..utils.logger import get_logger, log_intent_classification

logger = get_logger(__name__)

# Orden de evaluación del fallback: gana la primera intención con coincidencia
FALLBACK_KEYWORDS: List[Tuple[IntentType, List[str]]] = [
    (IntentType.GREETING, ["bonjour", "bonsoir", "salut", "hello", "hi", "good morning", "good evening"]),
    (IntentType.HELP, ["aide", "aider", "help", "assistance", "support"]),
    (IntentType.CREATE_TICKET, ["problème", "bug", "erreur", "problem", "issue", "error"]),
    (IntentType.CONTACT_AGENT, ["agent", "humain", "personne", "human", "person", "representative"]),
    (IntentType.GOODBYE, ["au revoir", "bye", "goodbye", "merci", "thank you"]),
    (IntentType.COMPLAINT, ["mécontent", "insatisfait", "nul", "mauvais", "unhappy", "bad", "terrible"]),
]

FALLBACK_CONFIDENCE = 0.6
UNKNOWN_CONFIDENCE = 0.1

FRENCH_MARKERS = ["bonjour", "merci", "problème", "aide", "comment", "pourquoi", "quand"]
ENGLISH_MARKERS = ["hello", "thank", "problem", "help", "how", "why", "when"]

_NO_LANGUAGE = "unknown"

_INTENT_LIST = "\n".join(f"- {intent.value}" for intent in IntentType if intent != IntentType.UNKNOWN)

INTENT_PROMPTS = {
    "fr": ChatPromptTemplate.from_messages([
        ("system",
         "Tu es un assistant IA spécialisé dans l'analyse d'intentions pour un service client WhatsApp.\n\n"
         "Détermine l'intention principale du message parmi ces catégories :\n"
         f"{_INTENT_LIST}\n\n"
         "Réponds uniquement avec un JSON valide contenant :\n"
         "- \"intent\": l'intention détectée\n"
         "- \"confidence\": score de confiance (0-1)\n"
         "- \"entities\": objets extraits du texte\n"
         "- \"sentiment\": positive, negative ou neutral"),
        ("human", "Texte à analyser: \"{text}\""),
    ]),
    "en": ChatPromptTemplate.from_messages([
        ("system",
         "You are an AI assistant specialized in intent analysis for WhatsApp customer service.\n\n"
         "Determine the main intent of the message from these categories:\n"
         f"{_INTENT_LIST}\n\n"
         "Respond only with valid JSON containing:\n"
         "- \"intent\": detected intent\n"
         "- \"confidence\": confidence score (0-1)\n"
         "- \"entities\": extracted objects from text\n"
         "- \"sentiment\": positive, negative or neutral"),
        ("human", "Text to analyze: \"{text}\""),
    ]),
}

LANGUAGE_PROMPT = ChatPromptTemplate.from_messages([
    ("system",
     "Détecte la langue du texte suivant. Réponds uniquement avec le code de langue "
     "(fr, en, es, etc.). Si incertain, réponds \"unknown\"."),
    ("human", "Texte: \"{text}\""),
])

SENTIMENT_PROMPTS = {
    "fr": ChatPromptTemplate.from_messages([
        ("system",
         "Analyse le sentiment de ce texte. Réponds uniquement avec un JSON contenant "
         "\"sentiment\" (positive, negative, neutral) et \"score\" (0-1)."),
        ("human", "Texte: \"{text}\""),
    ]),
    "en": ChatPromptTemplate.from_messages([
        ("system",
         "Analyze the sentiment of this text. Respond only with JSON containing "
         "\"sentiment\" (positive, negative, neutral) and \"score\" (0-1)."),
        ("human", "Text: \"{text}\""),
    ]),
}

ENTITY_PROMPTS = {
    "fr": ChatPromptTemplate.from_messages([
        ("system",
         "Extrait les entités importantes de ce texte : numéros (commandes, tickets, téléphone), "
         "dates et heures, noms de produits, montants, emails, noms de personnes.\n\n"
         "Réponds uniquement avec un JSON {{\"entities\": {{\"type\": \"valeur\"}}}}"),
        ("human", "Texte: \"{text}\""),
    ]),
    "en": ChatPromptTemplate.from_messages([
        ("system",
         "Extract important entities from this text: numbers (orders, tickets, phone), "
         "dates and times, product names, money amounts, emails, person names.\n\n"
         "Respond only with JSON {{\"entities\": {{\"type\": \"value\"}}}}"),
        ("human", "Text: \"{text}\""),
    ]),
}


class IntentClassifierAgent:
    """
    Agente de clasificación de intenciones.

    Features:
    - Prompt JSON-only con validación por esquema
    - Cache por hash de texto + idioma
    - Fallback por palabras clave ante cualquier fallo
    - Detección de idioma heurística con consulta al modelo en casos dudosos
    - Estadísticas de uso y health check
    """

    def __init__(
        self,
        llm_service: LLMService,
        cache: CacheService,
        settings: Optional[Settings] = None
    ):
        self.llm_service = llm_service
        self.cache = cache
        self.settings = settings or get_settings()
        self.supported_languages = list(self.settings.SUPPORTED_LANGUAGES)

        self.stats = {
            "classifications_performed": 0,
            "cache_hits": 0,
            "successful_classifications": 0,
            "fallback_classifications": 0,
            "language_detections": 0,
            "average_processing_time_ms": 0.0,
            "intent_distribution": {intent.value: 0 for intent in IntentType}
        }

    # ================================
    # Intent
    # ================================

    async def analyze_intent(self, text: str, language: str) -> IntentAnalysis:
        """
        Clasifica la intención de un mensaje.

        Args:
            text: Texto del usuario
            language: Idioma del prompt y del resultado

        Returns:
            IntentAnalysis normalizado (nunca lanza excepción)
        """
        start_time = time.time()
        cache_key = f"nlp:intent:{hash_text(text)}:{language}"

        cached = await self.cache.get(cache_key)
        if cached is not None:
            try:
                analysis = IntentAnalysis.model_validate(cached)
                self.stats["cache_hits"] += 1
                logger.debug(f"🎯 Intent desde cache: {analysis.intent.value}")
                return analysis
            except ValueError:
                logger.warning(f"⚠️ Intent cacheado inválido, se recalcula: {cache_key}")

        self.stats["classifications_performed"] += 1

        try:
            prompt = INTENT_PROMPTS.get(language, INTENT_PROMPTS["en"])
            raw = await self.llm_service.complete(
                prompt.format_messages(text=text),
                max_tokens=500,
                temperature=0.3
            )
            analysis = self._normalize(parse_json_response(raw), text, language)
            self.stats["successful_classifications"] += 1

        except Exception as e:
            logger.error(f"❌ Error analizando intención, usando palabras clave: {e}")
            analysis = self.fallback_intent_analysis(text, language)
            self.stats["fallback_classifications"] += 1

        else:
            try:
                await self.cache.set(
                    cache_key,
                    analysis.model_dump(mode="json"),
                    self.settings.INTENT_CACHE_TTL
                )
            except Exception as e:
                logger.warning(f"⚠️ No se pudo cachear intent: {e}")

        processing_time = (time.time() - start_time) * 1000
        self._update_stats(analysis, processing_time)
        log_intent_classification(
            logger=logger,
            language=language,
            message=text,
            intent_type=analysis.intent.value,
            confidence=analysis.confidence,
            processing_time=processing_time,
            fallback=analysis.fallback
        )
        return analysis

    def _normalize(self, payload: Any, text: str, language: str) -> IntentAnalysis:
        """
        Normaliza la salida del modelo.

        Raises:
            ValueError: Si la salida no es un objeto JSON
        """
        if not isinstance(payload, dict):
            raise ValueError("La respuesta del modelo no es un objeto JSON")

        raw = RawIntentPayload.model_validate(payload)

        try:
            sentiment = Sentiment(raw.sentiment.lower()) if raw.sentiment else Sentiment.NEUTRAL
        except ValueError:
            sentiment = Sentiment.NEUTRAL

        return IntentAnalysis(
            intent=IntentType.parse(raw.intent),
            confidence=max(0.0, min(1.0, raw.confidence or 0.0)),
            entities=raw.entities or {},
            sentiment=sentiment,
            original_text=text[:200],
            language=language
        )

    def fallback_intent_analysis(self, text: str, language: str) -> IntentAnalysis:
        """Clasificación por palabras clave (confianza 0.6, o unknown a 0.1)."""
        lower_text = text.lower()

        for intent, keywords in FALLBACK_KEYWORDS:
            if any(keyword in lower_text for keyword in keywords):
                return IntentAnalysis(
                    intent=intent,
                    confidence=FALLBACK_CONFIDENCE,
                    original_text=text[:200],
                    language=language,
                    fallback=True
                )

        return IntentAnalysis(
            intent=IntentType.UNKNOWN,
            confidence=UNKNOWN_CONFIDENCE,
            original_text=text[:200],
            language=language,
            fallback=True
        )

    # ================================
    # Language
    # ================================

    @staticmethod
    def quick_language_detection(text: str) -> Optional[str]:
        lower_text = text.lower()
        french = sum(1 for word in FRENCH_MARKERS if word in lower_text)
        english = sum(1 for word in ENGLISH_MARKERS if word in lower_text)

        if french > english:
            return "fr"
        if english > french:
            return "en"
        return None

    async def detect_language(self, text: str) -> Optional[str]:
        """
        Detecta el idioma del texto.

        Returns:
            Código soportado o None si es desconocido (nunca lanza excepción)
        """
        self.stats["language_detections"] += 1
        cache_key = f"nlp:lang:{hash_text(text)}"

        cached = await self.cache.get(cache_key)
        if cached is not None:
            return None if cached == _NO_LANGUAGE else cached

        language = self.quick_language_detection(text)

        if language is None:
            try:
                raw = await self.llm_service.complete(
                    LANGUAGE_PROMPT.format_messages(text=text),
                    max_tokens=10,
                    temperature=0.1
                )
                language = raw.strip().strip('."\'').lower() or None
            except Exception as e:
                logger.error(f"❌ Error detectando idioma: {e}")
                return None

        if language not in self.supported_languages:
            language = None

        try:
            await self.cache.set(cache_key, language or _NO_LANGUAGE, self.settings.LANGUAGE_CACHE_TTL)
        except Exception as e:
            logger.warning(f"⚠️ No se pudo cachear idioma: {e}")

        logger.debug(f"🌐 Idioma detectado: {language}")
        return language

    # ================================
    # Sentiment, entities, generation
    # ================================

    async def analyze_sentiment(self, text: str, language: str) -> SentimentResult:
        """
        Analiza el sentimiento del texto.

        Raises:
            ServiceUnavailableError: Cuota o rate limit del modelo
        """
        cache_key = f"nlp:sentiment:{hash_text(text)}:{language}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return SentimentResult.model_validate(cached)

        try:
            prompt = SENTIMENT_PROMPTS.get(language, SENTIMENT_PROMPTS["en"])
            raw = await self.llm_service.complete(
                prompt.format_messages(text=text),
                max_tokens=100,
                temperature=0.3
            )
            payload = parse_json_response(raw)
            result = SentimentResult(
                sentiment=Sentiment(str(payload.get("sentiment", "neutral")).lower()),
                score=max(0.0, min(1.0, float(payload.get("score", 0.5))))
            )
        except ServiceUnavailableError:
            raise
        except Exception as e:
            logger.error(f"❌ Error analizando sentimiento: {e}")
            return SentimentResult()

        try:
            await self.cache.set(cache_key, result.model_dump(mode="json"), self.settings.INTENT_CACHE_TTL)
        except Exception as e:
            logger.warning(f"⚠️ No se pudo cachear sentimiento: {e}")
        return result

    async def extract_entities(self, text: str, language: str) -> Dict[str, Any]:
        """
        Extrae entidades (números, fechas, productos, montos...).

        Raises:
            ServiceUnavailableError: Cuota o rate limit del modelo
        """
        cache_key = f"nlp:entities:{hash_text(text)}:{language}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            prompt = ENTITY_PROMPTS.get(language, ENTITY_PROMPTS["en"])
            raw = await self.llm_service.complete(
                prompt.format_messages(text=text),
                max_tokens=300,
                temperature=0.2
            )
            payload = parse_json_response(raw)
            entities = payload.get("entities") if isinstance(payload, dict) else None
            entities = entities if isinstance(entities, dict) else {}
        except ServiceUnavailableError:
            raise
        except Exception as e:
            logger.error(f"❌ Error extrayendo entidades: {e}")
            return {}

        try:
            await self.cache.set(cache_key, entities, self.settings.INTENT_CACHE_TTL)
        except Exception as e:
            logger.warning(f"⚠️ No se pudo cachear entidades: {e}")
        return entities

    async def generate_response(
        self,
        prompt: str,
        language: str,
        max_tokens: int = 200,
        temperature: float = 0.7
    ) -> str:
        """
        Genera texto libre para el prompt dado.

        Raises:
            ServiceUnavailableError: Ante cualquier fallo del modelo
        """
        try:
            return await self.llm_service.complete(
                [{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature
            )
        except ServiceUnavailableError:
            raise
        except Exception as e:
            logger.error(f"❌ Error generando respuesta ({language}): {e}")
            raise ServiceUnavailableError("No se pudo generar una respuesta") from e

    # ================================
    # Stats & health
    # ================================

    def _update_stats(self, analysis: IntentAnalysis, processing_time: float):
        self.stats["intent_distribution"][analysis.intent.value] += 1

        total = self.stats["classifications_performed"]
        current_avg = self.stats["average_processing_time_ms"]
        self.stats["average_processing_time_ms"] = (current_avg * (total - 1) + processing_time) / total

    def get_stats(self) -> Dict[str, Any]:
        fallback_rate = 0.0
        if self.stats["classifications_performed"] > 0:
            fallback_rate = (
                self.stats["fallback_classifications"] / self.stats["classifications_performed"]
            ) * 100

        return {
            **self.stats,
            "fallback_rate_percent": fallback_rate,
            "confidence_threshold": self.settings.INTENT_CONFIDENCE_THRESHOLD
        }

    async def health_check(self) -> Dict[str, Any]:
        llm_health = await self.llm_service.health_check()
        return {
            "status": llm_health["status"],
            "model": llm_health.get("model"),
            "error": llm_health.get("error"),
            "stats": self.get_stats()
        }
