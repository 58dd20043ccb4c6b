"""
Tests para TicketMessageHandler.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.agents.ticket_message_handler import TicketMessageHandler
from src.models.intents import IntentType
from src.models.tickets import TicketInfo
from src.services.localization_service import MessageKey


class TestDetection:
    """Tests del detector local."""

    def test_status_phrases_win_over_creation(self, ticket_handler):
        """Las frases de consulta contienen "ticket" y se evalúan primero."""

        # Act
        result = ticket_handler.analyze_ticket_intent("Je voudrais voir mes tickets", "fr")

        # Assert
        assert result.intent == IntentType.CHECK_TICKET_STATUS
        assert result.confidence == 0.8

    def test_creation_request_carries_extracted_info(self, ticket_handler):
        # Act
        result = ticket_handler.analyze_ticket_intent("create ticket: Refund: I was charged twice", "en")

        # Assert
        assert result.intent == IntentType.CREATE_TICKET
        assert result.entities == {"title": "Refund", "description": "I was charged twice"}

    def test_no_ticket_words(self, ticket_handler):
        assert ticket_handler.analyze_ticket_intent("Quels sont vos horaires ?", "fr") is None


class TestExtraction:
    """Tests de extracción de título y descripción."""

    def test_separator_splits_title_and_description(self, ticket_handler):
        info = ticket_handler.extract_ticket_info("Login broken: I cannot sign in since yesterday", "en")

        assert info.title == "Login broken"
        assert info.description == "I cannot sign in since yesterday"

    def test_trigger_phrase_is_removed(self, ticket_handler):
        info = ticket_handler.extract_ticket_info(
            "créer un ticket: Paiement refusé: ma carte est refusée depuis hier", "fr"
        )

        assert info.title == "Paiement refusé"
        assert info.description == "ma carte est refusée depuis hier"

    def test_title_from_first_words_without_separator(self, ticket_handler):
        # Arrange
        text = "Le site ne charge plus depuis ce matin malgré plusieurs tentatives"

        # Act
        info = ticket_handler.extract_ticket_info(text, "fr")

        # Assert
        assert info.title == "Le site ne charge plus depuis ce matin"
        assert info.description == text

    def test_long_title_is_shortened(self, ticket_handler):
        title = ticket_handler.generate_title_from_text(
            "Impossible d'accéder à l'espace client professionnel depuis la nouvelle version", "fr"
        )

        assert len(title) == 50
        assert title.endswith("...")

    def test_empty_text_gets_default_title(self, ticket_handler):
        assert ticket_handler.generate_title_from_text("", "en") == "Support Request"

    def test_validation_errors(self):
        # Act
        empty = TicketMessageHandler.validate_ticket_info(TicketInfo(title=" ", description=""))
        too_long = TicketMessageHandler.validate_ticket_info(TicketInfo(title="t" * 201, description="d"))
        valid = TicketMessageHandler.validate_ticket_info(TicketInfo(title="Titre", description="Détails"))

        # Assert
        assert empty == ["Title is required", "Description is required"]
        assert too_long == ["Title is too long (max 200 characters)"]
        assert valid == []


class TestHandlers:
    """Tests de creación y consulta."""

    @pytest.mark.asyncio
    async def test_create_ticket_confirmation(self, ticket_handler, ticket_service, sample_user):
        # Act
        response = await ticket_handler.handle_create_ticket(
            sample_user, "fr", "créer un ticket: Paiement refusé: ma carte est refusée depuis hier"
        )

        # Assert
        tickets = await ticket_service.get_user_tickets(sample_user.id)
        assert len(tickets) == 1
        assert tickets[0].title == "Paiement refusé"
        assert f"#{tickets[0].id}" in response.content
        assert "Paiement refusé" in response.content

    @pytest.mark.asyncio
    async def test_create_ticket_failure_is_reported(self, localization, formatter, sample_user):
        # Arrange
        failing = MagicMock()
        failing.create_ticket = AsyncMock(side_effect=RuntimeError("db down"))
        handler = TicketMessageHandler(failing, localization, formatter)

        # Act
        response = await handler.handle_create_ticket(sample_user, "en", "Login broken: cannot sign in")

        # Assert
        assert response.content == localization.get_message(MessageKey.TICKET_CREATION_ERROR, "en")

    @pytest.mark.asyncio
    async def test_status_without_tickets(self, ticket_handler, localization, sample_user):
        response = await ticket_handler.handle_check_ticket_status(sample_user, "fr")

        assert response.content == localization.get_message(MessageKey.TICKET_NO_TICKETS, "fr")

    @pytest.mark.asyncio
    async def test_status_lists_recent_tickets(self, ticket_handler, ticket_service, sample_user):
        # Arrange
        await ticket_service.create_ticket(sample_user.id, "Facture incorrecte", "Montant erroné")

        # Act
        response = await ticket_handler.handle_check_ticket_status(sample_user, "fr")

        # Assert
        assert response.content.startswith("📋 *Vos tickets de support*")
        assert "Facture incorrecte" in response.content
