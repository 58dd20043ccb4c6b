"""
Tests de los formatters y helpers de logging.
"""

import json
import logging

from src.utils.logger import HumanReadableFormatter, StructuredFormatter, log_message_event, log_ticket_event


class CapturingHandler(logging.Handler):

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def capture(name: str):
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    handler = CapturingHandler()
    logger.addHandler(handler)
    return logger, handler


class TestFormatters:
    """Tests de la presentación del contexto."""

    def test_structured_formatter_includes_ticket_context(self):
        # Arrange
        logger, handler = capture("tests.logger.structured")
        log_ticket_event(logger, "created", 42, user_id=7, priority="HIGH")

        # Act
        data = json.loads(StructuredFormatter().format(handler.records[0]))

        # Assert
        assert data["message"] == "🎫 Ticket #42: created"
        assert data["ticket_id"] == 42
        assert data["user_id"] == 7
        assert data["ticket_event"] == "created"
        assert data["ticket_details"] == {"priority": "HIGH"}

    def test_human_formatter_tags_message_context(self):
        # Arrange
        logger, handler = capture("tests.logger.human")
        log_message_event(logger, "processed", "wamid.1", "33612345678", "text", processing_time=12.4)

        # Act
        line = HumanReadableFormatter().format(handler.records[0])

        # Assert
        assert "✅ Mensaje wamid.1 procesado en 12ms" in line
        assert line.endswith("[msg:wamid.1, ms:12]")

    def test_empty_context_is_omitted(self):
        # Arrange
        record = logging.LogRecord("tests", logging.INFO, __file__, 1, "hola", None, None)

        # Act
        line = HumanReadableFormatter().format(record)
        data = json.loads(StructuredFormatter().format(record))

        # Assert
        assert not line.endswith("]")
        assert "ticket_id" not in data
