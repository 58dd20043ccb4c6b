"""
WhatsApp Service - Adaptador de la WhatsApp Cloud API (Graph API)

Envía las respuestas del bot (texto, botones, lista) y parsea los
payloads del webhook a `InboundMessage`. Todas las llamadas HTTP usan un
único `httpx.AsyncClient` con timeout fijo y sin reintentos propios.
"""

import hashlib
import hmac
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ..models.messages import (
    BotResponse, Contact, EventType, InboundMessage, InteractiveContent,
    InteractiveResponse, ListContent, ListResponse, MessageType, TextResponse
)
from ..utils.config import Settings, get_settings
from ..utils.errors import WhatsAppAPIError
from ..utils.logger import get_logger, log_api_call

logger = get_logger(__name__)


# ================================
# Webhook parsing
# ================================

def verify_signature(body: bytes, signature: Optional[str], app_secret: Optional[str]) -> bool:
    """
    Verifica la cabecera X-Hub-Signature-256.

    Sin app secret configurado la verificación se omite.
    """
    if not app_secret:
        return True
    if not signature:
        return False

    digest = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, f"sha256={digest}")


def _parse_timestamp(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value))
    except (TypeError, ValueError, OverflowError):
        return datetime.now()


def extract_message_content(message: Dict[str, Any]) -> Dict[str, Any]:
    """Extrae el contenido relevante según el tipo de mensaje."""
    message_type = message.get("type")

    if message_type == "text":
        return {"text": (message.get("text") or {}).get("body", "")}

    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        if interactive.get("type") == "button_reply":
            reply = interactive.get("button_reply") or {}
            return {"button_id": reply.get("id"), "button_title": reply.get("title")}
        if interactive.get("type") == "list_reply":
            reply = interactive.get("list_reply") or {}
            return {
                "list_id": reply.get("id"),
                "list_title": reply.get("title"),
                "list_description": reply.get("description")
            }
        return {}

    if message_type in ("image", "audio", "video", "document"):
        media = message.get(message_type) or {}
        return {
            "media_id": media.get("id"),
            "mime_type": media.get("mime_type"),
            "caption": media.get("caption")
        }

    if message_type == "location":
        location = message.get("location") or {}
        return {
            "latitude": location.get("latitude"),
            "longitude": location.get("longitude"),
            "name": location.get("name"),
            "address": location.get("address")
        }

    return {"raw": message}


def parse_webhook_payload(payload: Dict[str, Any]) -> List[InboundMessage]:
    """
    Convierte un payload del webhook en eventos.

    Recorre todas las entradas y cambios con field == "messages"; cada
    mensaje y cada estado produce un `InboundMessage` independiente.
    """
    events: List[InboundMessage] = []

    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "messages":
                continue

            value = change.get("value") or {}
            contacts = {c.get("wa_id"): c for c in value.get("contacts") or []}

            for message in value.get("messages") or []:
                sender = message.get("from") or ""
                contact = contacts.get(sender) or {}
                events.append(InboundMessage(
                    type=EventType.MESSAGE,
                    message_id=message.get("id", ""),
                    sender=sender,
                    timestamp=_parse_timestamp(message.get("timestamp")),
                    message_type=MessageType.parse(message.get("type")),
                    content=extract_message_content(message),
                    contact=Contact(
                        name=(contact.get("profile") or {}).get("name"),
                        phone_number=contact.get("wa_id") or sender
                    )
                ))

            for status in value.get("statuses") or []:
                recipient = status.get("recipient_id") or ""
                events.append(InboundMessage(
                    type=EventType.STATUS,
                    message_id=status.get("id", ""),
                    sender=recipient,
                    recipient_id=recipient,
                    timestamp=_parse_timestamp(status.get("timestamp")),
                    message_type=MessageType.UNKNOWN,
                    status=status.get("status")
                ))

    return events


# ================================
# Outbound adapter
# ================================

class WhatsAppService:
    """
    Cliente de la WhatsApp Cloud API.

    Features:
    - Envío de texto, botones, listas y templates
    - Marcado de lectura y consulta de media
    - Errores de la API traducidos a WhatsAppAPIError
    - Estadísticas de envío y health check
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        config = self.settings.whatsapp_config
        self.phone_number_id = config["phone_number_id"]
        self.client = client or httpx.AsyncClient(
            base_url=config["api_url"],
            timeout=config["timeout"],
            headers={
                "Authorization": f"Bearer {config['token']}",
                "Content-Type": "application/json"
            }
        )

        self.stats = {
            "messages_sent": 0,
            "send_errors": 0,
            "read_receipts": 0,
            "last_sent_at": None
        }

    async def close(self):
        await self.client.aclose()
        logger.info("🔌 Cliente WhatsApp cerrado")

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Ejecuta una llamada a la Graph API.

        Raises:
            WhatsAppAPIError: Respuesta de error o fallo de transporte
        """
        start_time = time.time()

        try:
            response = await self.client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            duration = (time.time() - start_time) * 1000
            log_api_call(logger, "WhatsApp", path, duration, False, str(e))
            raise WhatsAppAPIError("Sin respuesta de la API de WhatsApp", http_status=503) from e

        duration = (time.time() - start_time) * 1000

        if response.is_error:
            try:
                error = response.json().get("error", {})
            except ValueError:
                error = {}
            message = error.get("message") or f"Error API WhatsApp ({response.status_code})"
            log_api_call(logger, "WhatsApp", path, duration, False, message)
            raise WhatsAppAPIError(message, code=error.get("code"), http_status=response.status_code)

        log_api_call(logger, "WhatsApp", path, duration, True)
        try:
            return response.json()
        except ValueError:
            return {}

    async def _send(self, to: str, payload: Dict[str, Any]) -> Optional[str]:
        body = {"messaging_product": "whatsapp", "to": to, **payload}

        try:
            data = await self._request("POST", f"/{self.phone_number_id}/messages", body)
        except WhatsAppAPIError:
            self.stats["send_errors"] += 1
            raise

        self.stats["messages_sent"] += 1
        self.stats["last_sent_at"] = datetime.now()

        messages = data.get("messages") or [{}]
        message_id = messages[0].get("id")
        logger.info(f"📤 Mensaje {payload.get('type')} enviado a {to} ({message_id})")
        return message_id

    async def send_response(self, to: str, response: BotResponse) -> Optional[str]:
        """
        Envía una respuesta del bot según su variante.

        Returns:
            ID del mensaje asignado por WhatsApp
        """
        if isinstance(response, TextResponse):
            return await self.send_text_message(to, response.content)
        if isinstance(response, InteractiveResponse):
            return await self.send_interactive_message(to, response.content)
        if isinstance(response, ListResponse):
            return await self.send_list_message(to, response.content)

        raise WhatsAppAPIError(f"Tipo de respuesta no soportado: {type(response).__name__}")

    async def send_text_message(self, to: str, text: str, preview_url: bool = False) -> Optional[str]:
        return await self._send(to, {
            "type": "text",
            "text": {"body": text, "preview_url": preview_url}
        })

    async def send_interactive_message(self, to: str, content: InteractiveContent) -> Optional[str]:
        interactive: Dict[str, Any] = {
            "type": "button",
            "body": {"text": content.text},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": button.id, "title": button.title}}
                    for button in content.buttons
                ]
            }
        }
        if content.header:
            interactive["header"] = {"type": "text", "text": content.header}
        if content.footer:
            interactive["footer"] = {"text": content.footer}

        return await self._send(to, {"type": "interactive", "interactive": interactive})

    async def send_list_message(self, to: str, content: ListContent) -> Optional[str]:
        interactive: Dict[str, Any] = {
            "type": "list",
            "body": {"text": content.text},
            "action": {
                "button": content.button_text,
                "sections": [
                    {
                        "title": section.title,
                        "rows": [
                            {"id": row.id, "title": row.title, "description": row.description or ""}
                            for row in section.rows
                        ]
                    }
                    for section in content.sections
                ]
            }
        }
        if content.header:
            interactive["header"] = {"type": "text", "text": content.header}
        if content.footer:
            interactive["footer"] = {"text": content.footer}

        return await self._send(to, {"type": "interactive", "interactive": interactive})

    async def send_template_message(
        self,
        to: str,
        template_name: str,
        language_code: str = "fr",
        components: Optional[List[Dict[str, Any]]] = None
    ) -> Optional[str]:
        return await self._send(to, {
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language_code},
                "components": components or []
            }
        })

    async def mark_message_as_read(self, message_id: str) -> bool:
        """Marca un mensaje como leído. Los fallos se registran y no se propagan."""
        try:
            await self._request("POST", f"/{self.phone_number_id}/messages", {
                "messaging_product": "whatsapp",
                "status": "read",
                "message_id": message_id
            })
            self.stats["read_receipts"] += 1
            return True
        except WhatsAppAPIError as e:
            logger.warning(f"⚠️ No se pudo marcar {message_id} como leído: {e.message}")
            return False
        except Exception as e:
            logger.warning(f"⚠️ Error inesperado marcando {message_id} como leído: {e}")
            return False

    async def get_media_info(self, media_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/{media_id}")

    async def check_api_health(self) -> Dict[str, Any]:
        start_time = time.time()
        try:
            await self._request("GET", f"/{self.phone_number_id}")
            return {
                "status": "healthy",
                "response_time_ms": (time.time() - start_time) * 1000,
                "timestamp": datetime.now().isoformat()
            }
        except WhatsAppAPIError as e:
            return {
                "status": "unhealthy",
                "error": e.message,
                "timestamp": datetime.now().isoformat()
            }

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
