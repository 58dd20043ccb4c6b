"""
Tests para IntentHandler.
"""

import pytest
from sqlalchemy import select

from src.agents.intent_handler import get_time_of_day
from src.db.models import Conversation, ConversationStatus
from src.models.intents import IntentAnalysis, IntentType
from src.models.messages import InteractiveResponse, ListResponse, TextResponse
from src.services.localization_service import MessageKey
from tests.factories import seed_french_entries


def analysis_for(intent: IntentType, confidence: float = 0.9) -> IntentAnalysis:
    return IntentAnalysis(intent=intent, confidence=confidence, language="fr")


class TestTimeOfDay:

    @pytest.mark.parametrize("hour,expected", [
        (0, "morning"), (11, "morning"), (12, "afternoon"), (17, "afternoon"), (18, "evening"), (23, "evening"),
    ])
    def test_boundaries(self, hour, expected):
        assert get_time_of_day(hour) == expected


class TestButtons:
    """Tests de botones y filas de lista."""

    @pytest.mark.asyncio
    async def test_unknown_button_returns_none(self, intent_handler, sample_user, sample_session):
        assert await intent_handler.handle_button("something_else", sample_user, sample_session) is None

    @pytest.mark.asyncio
    async def test_help_button_shows_list_menu(self, intent_handler, sample_user, sample_session):
        # Act
        response = await intent_handler.handle_button("help", sample_user, sample_session)

        # Assert
        assert isinstance(response, ListResponse)
        assert len(response.content.sections) == 2
        row_ids = [row.id for section in response.content.sections for row in section.rows]
        assert row_ids == ["create_ticket", "check_ticket", "faq", "contact_agent"]

    @pytest.mark.asyncio
    async def test_create_ticket_row_asks_for_details(self, intent_handler, localization, sample_user, sample_session):
        response = await intent_handler.handle_button("create_ticket", sample_user, sample_session)

        assert response.content == localization.get_message(MessageKey.TICKET_NEED_MORE_INFO, "fr")

    @pytest.mark.asyncio
    async def test_contact_agent_button_starts_handoff(self, intent_handler, sample_user, sample_session):
        await intent_handler.handle_button("contact_agent", sample_user, sample_session, "Contacter un agent")

        assert sample_session.context["pendingHandoff"] is True


class TestIntentActions:
    """Tests de acciones por intención."""

    @pytest.mark.asyncio
    async def test_greeting_uses_name_and_main_menu(self, intent_handler, sample_user, sample_session):
        # Act
        response = await intent_handler.handle_intent(
            analysis_for(IntentType.GREETING), sample_user, sample_session, "Bonjour"
        )

        # Assert
        assert isinstance(response, InteractiveResponse)
        assert "Marie" in response.content.text
        assert [b.id for b in response.content.buttons] == ["help", "faq", "contact_agent"]
        assert [b.title for b in response.content.buttons] == ["Aide", "FAQ", "Contacter un agent"]

    @pytest.mark.asyncio
    async def test_handoff_marks_session(self, intent_handler, localization, sample_user, sample_session):
        # Act
        response = await intent_handler.handle_intent(
            analysis_for(IntentType.CONTACT_AGENT), sample_user, sample_session, "Je veux parler à quelqu'un"
        )

        # Assert
        assert response.content == localization.get_message(MessageKey.HANDOFF_INITIATED, "fr")
        assert sample_session.context["pendingHandoff"] is True
        assert sample_session.context["handoffReason"] == "Je veux parler à quelqu'un"
        assert "handoffTimestamp" in sample_session.context

    @pytest.mark.asyncio
    async def test_goodbye_ends_conversation(self, intent_handler, database, sample_user, sample_session):
        # Act
        response = await intent_handler.handle_intent(
            analysis_for(IntentType.GOODBYE), sample_user, sample_session, "Au revoir"
        )

        # Assert
        assert isinstance(response, TextResponse)
        async with database.session() as session:
            status = await session.scalar(
                select(Conversation.status).where(Conversation.id == sample_session.conversation_id)
            )
        assert status == ConversationStatus.ENDED

    @pytest.mark.asyncio
    async def test_introduction_question(self, intent_handler, localization, mock_llm_service,
                                         sample_user, sample_session):
        response = await intent_handler.handle_intent(
            analysis_for(IntentType.HELP), sample_user, sample_session, "Mais qui es-tu ?"
        )

        assert response.content == localization.get_message(MessageKey.BOT_INTRODUCTION, "fr")
        mock_llm_service.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_faq_without_match_shows_faq_menu(self, intent_handler, sample_user, sample_session):
        # Act
        response = await intent_handler.handle_intent(
            analysis_for(IntentType.FAQ), sample_user, sample_session, "questions fréquentes"
        )

        # Assert
        assert isinstance(response, InteractiveResponse)
        assert [b.id for b in response.content.buttons] == ["faq_products", "faq_support", "contact_agent"]

    @pytest.mark.asyncio
    async def test_intent_without_action_uses_ai(self, intent_handler, mock_llm_service, sample_user, sample_session):
        # Arrange
        mock_llm_service.complete.return_value = "Votre remboursement sera traité sous 5 jours ouvrés."

        # Act
        response = await intent_handler.handle_intent(
            analysis_for(IntentType.REFUND_REQUEST), sample_user, sample_session, "Je veux être remboursé"
        )

        # Assert
        assert response == TextResponse(content="Votre remboursement sera traité sous 5 jours ouvrés.")

    @pytest.mark.asyncio
    async def test_capabilities_question(self, intent_handler, localization, sample_user, sample_session):
        response = await intent_handler.handle_intent(
            analysis_for(IntentType.PRODUCT_INQUIRY), sample_user, sample_session, "Que peux-tu faire ?"
        )

        assert response.content == localization.get_message(MessageKey.BOT_CAPABILITIES, "fr")


class TestUnmatchedText:
    """Tests del camino de baja confianza."""

    @pytest.mark.asyncio
    async def test_knowledge_base_answer_counts_usage(self, intent_handler, knowledge_base_service,
                                                      mock_llm_service, sample_user, sample_session):
        # Arrange
        entries = await seed_french_entries(knowledge_base_service)

        # Act
        response = await intent_handler.handle_unmatched_text(
            sample_user, sample_session, "horaires d'ouverture"
        )

        # Assert
        assert response == TextResponse(content=entries[1].answer)
        assert (await knowledge_base_service.get_entry(entries[1].id)).usage_count == 1
        mock_llm_service.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unhelpful_ai_answer_falls_back_to_menu(self, intent_handler, localization, mock_llm_service,
                                                           sample_user, sample_session):
        """Una evasiva conocida del modelo se sustituye por el menú de fallback."""

        # Arrange
        mock_llm_service.complete.return_value = "Désolé, je ne sais pas du tout."

        # Act
        response = await intent_handler.handle_unmatched_text(sample_user, sample_session, "blabla")

        # Assert
        assert isinstance(response, InteractiveResponse)
        assert response.content.text == localization.get_fallback_conversational_message("fr")

    @pytest.mark.asyncio
    async def test_short_ai_answer_falls_back_to_menu(self, intent_handler, mock_llm_service,
                                                       sample_user, sample_session):
        mock_llm_service.complete.return_value = "Ok."

        response = await intent_handler.handle_unmatched_text(sample_user, sample_session, "blabla")

        assert isinstance(response, InteractiveResponse)

    @pytest.mark.asyncio
    async def test_ai_failure_falls_back_to_menu(self, intent_handler, mock_llm_service, sample_user, sample_session):
        mock_llm_service.complete.side_effect = RuntimeError("down")

        response = await intent_handler.handle_unmatched_text(sample_user, sample_session, "blabla")

        assert isinstance(response, InteractiveResponse)
        assert [b.id for b in response.content.buttons] == ["help", "faq", "contact_agent"]
