"""
Tests para el adaptador de WhatsApp Cloud API.

Las llamadas HTTP se resuelven con `httpx.MockTransport`, sin red.
"""

import hashlib
import hmac
import json

import httpx
import pytest

from src.models.messages import (
    Button, EventType, InteractiveContent, InteractiveResponse, ListContent,
    ListResponse, ListRow, ListSection, MessageType, TextResponse
)
from src.services.whatsapp_service import WhatsAppService, parse_webhook_payload, verify_signature
from src.utils.errors import WhatsAppAPIError


def build_service(test_settings, handler):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://graph.test/v18.0"
    )
    return WhatsAppService(test_settings, client=client)


class TestSignature:
    """Tests de X-Hub-Signature-256."""

    def test_valid_signature(self):
        body = b'{"object":"whatsapp_business_account"}'
        digest = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

        assert verify_signature(body, f"sha256={digest}", "secret") is True

    def test_tampered_body_is_rejected(self):
        digest = hmac.new(b"secret", b"original", hashlib.sha256).hexdigest()

        assert verify_signature(b"tampered", f"sha256={digest}", "secret") is False

    def test_missing_signature_is_rejected(self):
        assert verify_signature(b"{}", None, "secret") is False

    def test_no_secret_skips_verification(self):
        assert verify_signature(b"{}", None, None) is True


class TestPayloadParsing:
    """Tests del parseo de payloads del webhook."""

    def test_text_message_and_status(self, webhook_payload):
        # Act
        events = parse_webhook_payload(webhook_payload)

        # Assert
        assert len(events) == 2
        message, status = events
        assert message.type == EventType.MESSAGE
        assert message.sender == "33612345678"
        assert message.message_type == MessageType.TEXT
        assert message.text == "Bonjour"
        assert message.contact.name == "Marie"
        assert status.type == EventType.STATUS
        assert status.status == "delivered"
        assert status.message_id == "wamid.out.001"

    def test_interactive_button_reply(self):
        # Arrange
        payload = {
            "entry": [{
                "changes": [{
                    "field": "messages",
                    "value": {
                        "messages": [{
                            "from": "33612345678",
                            "id": "wamid.button",
                            "timestamp": "1700000000",
                            "type": "interactive",
                            "interactive": {
                                "type": "button_reply",
                                "button_reply": {"id": "help", "title": "Aide"}
                            }
                        }]
                    }
                }]
            }]
        }

        # Act
        events = parse_webhook_payload(payload)

        # Assert
        assert events[0].message_type == MessageType.INTERACTIVE
        assert events[0].content == {"button_id": "help", "button_title": "Aide"}
        assert events[0].contact.phone_number == "33612345678"

    def test_other_fields_are_ignored(self):
        payload = {"entry": [{"changes": [{"field": "account_update", "value": {"messages": [{}]}}]}]}

        assert parse_webhook_payload(payload) == []

    def test_unknown_message_type(self):
        # Arrange
        payload = {
            "entry": [{
                "changes": [{
                    "field": "messages",
                    "value": {"messages": [{"from": "+33612345678", "id": "wamid.x", "type": "sticker"}]}
                }]
            }]
        }

        # Act
        events = parse_webhook_payload(payload)

        # Assert
        assert events[0].message_type == MessageType.UNKNOWN
        assert events[0].sender == "33612345678"


class TestWhatsAppService:
    """Tests del envío de mensajes."""

    @pytest.mark.asyncio
    async def test_send_text_message(self, test_settings):
        """El cuerpo sigue el formato de la Cloud API y se devuelve el wamid."""

        # Arrange
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"messages": [{"id": "wamid.sent.1"}]})

        service = build_service(test_settings, handler)

        # Act
        message_id = await service.send_text_message("33612345678", "Bonjour !")

        # Assert
        assert message_id == "wamid.sent.1"
        assert requests[0].url.path == "/v18.0/123456789/messages"
        body = json.loads(requests[0].content)
        assert body["messaging_product"] == "whatsapp"
        assert body["to"] == "33612345678"
        assert body["text"]["body"] == "Bonjour !"
        assert service.get_stats()["messages_sent"] == 1

    @pytest.mark.asyncio
    async def test_api_error_is_translated(self, test_settings):
        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "Invalid parameter", "code": 100}})

        service = build_service(test_settings, handler)

        # Act
        with pytest.raises(WhatsAppAPIError) as exc_info:
            await service.send_text_message("33612345678", "Bonjour")

        # Assert
        assert exc_info.value.code == 100
        assert exc_info.value.http_status == 400
        assert exc_info.value.message == "Invalid parameter"
        assert service.get_stats()["send_errors"] == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_translated(self, test_settings):
        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        service = build_service(test_settings, handler)

        # Act & Assert
        with pytest.raises(WhatsAppAPIError) as exc_info:
            await service.send_text_message("33612345678", "Bonjour")
        assert exc_info.value.http_status == 503

    @pytest.mark.asyncio
    async def test_mark_as_read_failure_is_not_raised(self, test_settings):
        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        service = build_service(test_settings, handler)

        # Act & Assert
        assert await service.mark_message_as_read("wamid.in.1") is False

    @pytest.mark.asyncio
    async def test_empty_success_body_is_accepted(self, test_settings):
        """Un 200 sin cuerpo JSON no es un error."""

        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"")

        service = build_service(test_settings, handler)

        # Act
        read = await service.mark_message_as_read("wamid.in.1")
        message_id = await service.send_text_message("33612345678", "Bonjour")

        # Assert
        assert read is True
        assert message_id is None

    @pytest.mark.asyncio
    async def test_send_response_dispatches_by_variant(self, test_settings):
        """Botones y listas se envían como mensajes interactivos."""

        # Arrange
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"messages": [{"id": f"wamid.{len(bodies)}"}]})

        service = build_service(test_settings, handler)
        buttons = InteractiveResponse(content=InteractiveContent(
            text="Que voulez-vous faire ?",
            buttons=[Button(id="help", title="Aide"), Button(id="faq", title="FAQ")]
        ))
        menu = ListResponse(content=ListContent(
            text="Menu",
            button_text="Options",
            sections=[ListSection(title="Support", rows=[ListRow(id="faq", title="FAQ")])]
        ))

        # Act
        await service.send_response("33612345678", TextResponse(content="Salut"))
        await service.send_response("33612345678", buttons)
        await service.send_response("33612345678", menu)

        # Assert
        assert bodies[0]["type"] == "text"
        assert bodies[1]["interactive"]["type"] == "button"
        assert bodies[1]["interactive"]["action"]["buttons"][1]["reply"] == {"id": "faq", "title": "FAQ"}
        assert bodies[2]["interactive"]["type"] == "list"
        assert bodies[2]["interactive"]["action"]["sections"][0]["rows"][0]["id"] == "faq"

    @pytest.mark.asyncio
    async def test_health_check_reports_unhealthy(self, test_settings):
        # Arrange
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "Invalid token"}})

        service = build_service(test_settings, handler)

        # Act
        health = await service.check_api_health()

        # Assert
        assert health["status"] == "unhealthy"
        assert health["error"] == "Invalid token"
