"""
Tests para IntentClassifierAgent.

El modelo alojado se sustituye por `mock_llm_service`; el cache corre
sobre fakeredis.
"""

import json

import pytest

from src.models.intents import IntentType, Sentiment
from src.utils.errors import ServiceUnavailableError
from tests.factories import intent_json


class TestAnalyzeIntent:
    """Tests de clasificación de intención."""

    @pytest.mark.asyncio
    async def test_model_output_is_normalized(self, intent_classifier, mock_llm_service):
        # Arrange
        mock_llm_service.complete.return_value = intent_json("greeting", 0.95, "positive")

        # Act
        analysis = await intent_classifier.analyze_intent("Bonjour", "fr")

        # Assert
        assert analysis.intent == IntentType.GREETING
        assert analysis.confidence == 0.95
        assert analysis.sentiment == Sentiment.POSITIVE
        assert analysis.language == "fr"
        assert analysis.fallback is False

    @pytest.mark.asyncio
    async def test_out_of_set_intent_and_confidence_are_clamped(self, intent_classifier, mock_llm_service):
        """Intención desconocida pasa a unknown y la confianza se recorta a [0, 1]."""

        # Arrange
        mock_llm_service.complete.return_value = json.dumps({
            "intent": "dance", "confidence": 1.7, "entities": "none", "sentiment": "ecstatic"
        })

        # Act
        analysis = await intent_classifier.analyze_intent("Dansons", "fr")

        # Assert
        assert analysis.intent == IntentType.UNKNOWN
        assert analysis.confidence == 1.0
        assert analysis.entities == {}
        assert analysis.sentiment == Sentiment.NEUTRAL

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, intent_classifier, mock_llm_service):
        # Arrange
        mock_llm_service.complete.return_value = intent_json("help", 0.9)

        # Act
        first = await intent_classifier.analyze_intent("J'ai besoin d'aide", "fr")
        second = await intent_classifier.analyze_intent("J'ai besoin d'aide", "fr")

        # Assert
        assert first.intent == second.intent == IntentType.HELP
        assert mock_llm_service.complete.await_count == 1
        assert intent_classifier.get_stats()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_is_per_language(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.return_value = intent_json("help", 0.9)

        await intent_classifier.analyze_intent("help", "fr")
        await intent_classifier.analyze_intent("help", "en")

        assert mock_llm_service.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back_to_keywords(self, intent_classifier, mock_llm_service):
        """Salida no JSON degrada a palabras clave con confianza 0.6."""

        # Arrange
        mock_llm_service.complete.return_value = "Je pense que c'est une salutation."

        # Act
        analysis = await intent_classifier.analyze_intent("Bonjour tout le monde", "fr")

        # Assert
        assert analysis.intent == IntentType.GREETING
        assert analysis.confidence == 0.6
        assert analysis.fallback is True

    @pytest.mark.asyncio
    async def test_model_failure_without_keywords_is_unknown(self, intent_classifier, mock_llm_service):
        # Arrange
        mock_llm_service.complete.side_effect = ServiceUnavailableError("quota")

        # Act
        analysis = await intent_classifier.analyze_intent("xyz qwerty", "fr")

        # Assert
        assert analysis.intent == IntentType.UNKNOWN
        assert analysis.confidence == 0.1
        assert intent_classifier.get_stats()["fallback_classifications"] == 1

    @pytest.mark.asyncio
    async def test_fallback_results_are_not_cached(self, intent_classifier, mock_llm_service):
        # Arrange
        mock_llm_service.complete.side_effect = [RuntimeError("down"), intent_json("complaint", 0.8)]

        # Act
        first = await intent_classifier.analyze_intent("C'est nul", "fr")
        second = await intent_classifier.analyze_intent("C'est nul", "fr")

        # Assert
        assert first.fallback is True
        assert second.fallback is False
        assert second.confidence == 0.8

    @pytest.mark.parametrize("text,expected", [
        ("Salut !", IntentType.GREETING),
        ("I need help", IntentType.HELP),
        ("J'ai un bug", IntentType.CREATE_TICKET),
        ("Je veux un agent", IntentType.CONTACT_AGENT),
        ("Au revoir", IntentType.GOODBYE),
        ("Service terrible", IntentType.COMPLAINT),
    ])
    def test_fallback_keyword_order(self, intent_classifier, text, expected):
        assert intent_classifier.fallback_intent_analysis(text, "fr").intent == expected


class TestDetectLanguage:
    """Tests de detección de idioma."""

    @pytest.mark.asyncio
    async def test_french_markers(self, intent_classifier, mock_llm_service):
        assert await intent_classifier.detect_language("Bonjour, j'ai besoin d'aide") == "fr"
        mock_llm_service.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_english_markers(self, intent_classifier, mock_llm_service):
        assert await intent_classifier.detect_language("Hello, I need help with my order") == "en"
        mock_llm_service.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsupported_language_is_none_and_cached(self, intent_classifier, mock_llm_service):
        """Un idioma fuera de la lista soportada devuelve None, también desde cache."""

        # Arrange
        mock_llm_service.complete.return_value = "es"

        # Act
        first = await intent_classifier.detect_language("Hola")
        second = await intent_classifier.detect_language("Hola")

        # Assert
        assert first is None
        assert second is None
        assert mock_llm_service.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_model_answer_is_cleaned(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.return_value = ' "EN". '

        assert await intent_classifier.detect_language("Okay") == "en"

    @pytest.mark.asyncio
    async def test_model_failure_returns_none(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.side_effect = RuntimeError("down")

        assert await intent_classifier.detect_language("Ok") is None


class TestAuxiliaryAnalysis:
    """Tests de sentimiento, entidades y generación."""

    @pytest.mark.asyncio
    async def test_sentiment(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.return_value = '{"sentiment": "negative", "score": 0.8}'

        result = await intent_classifier.analyze_sentiment("Je suis déçu", "fr")

        assert result.sentiment == Sentiment.NEGATIVE
        assert result.score == 0.8

    @pytest.mark.asyncio
    async def test_sentiment_degrades_to_neutral(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.return_value = "???"

        result = await intent_classifier.analyze_sentiment("Je suis déçu", "fr")

        assert result.sentiment == Sentiment.NEUTRAL

    @pytest.mark.asyncio
    async def test_sentiment_propagates_quota_errors(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.side_effect = ServiceUnavailableError("quota")

        with pytest.raises(ServiceUnavailableError):
            await intent_classifier.analyze_sentiment("Je suis déçu", "fr")

    @pytest.mark.asyncio
    async def test_extract_entities(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.return_value = '{"entities": {"order_number": "A-1234"}}'

        entities = await intent_classifier.extract_entities("Commande A-1234", "fr")

        assert entities == {"order_number": "A-1234"}

    @pytest.mark.asyncio
    async def test_generate_response(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.return_value = "Voici la réponse."

        assert await intent_classifier.generate_response("prompt", "fr") == "Voici la réponse."

    @pytest.mark.asyncio
    async def test_generate_response_wraps_errors(self, intent_classifier, mock_llm_service):
        mock_llm_service.complete.side_effect = RuntimeError("down")

        with pytest.raises(ServiceUnavailableError):
            await intent_classifier.generate_response("prompt", "fr")
