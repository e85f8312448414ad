"""WhatsApp delivery through the Twilio Messaging REST API."""

import base64
import hashlib
import hmac
from typing import Any, Mapping, Optional

import httpx

from supportbot.channels.base import ChannelAdapter
from supportbot.config import settings
from supportbot.logging_config import get_logger
from supportbot.schemas import NormalizedMessage, TwilioWebhookBody
from supportbot.services.retry import with_retry

logger = get_logger("whatsapp_twilio")

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
WHATSAPP_PREFIX = "whatsapp:"

MEDIA_PLACEHOLDERS = {
    "image": "[image]",
    "audio": "[voice message]",
    "video": "[video]",
    "document": "[document]",
}


class ChannelSendError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def split_message(text: str, limit: int) -> list[str]:
    """Split at the last paragraph break before ``limit``, else hard-cut at ``limit``."""
    chunks = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n\n", 0, limit)
        if cut <= 0:
            chunks.append(remaining[:limit])
            remaining = remaining[limit:]
        else:
            chunks.append(remaining[:cut])
            remaining = remaining[cut + 2 :]
    if remaining:
        chunks.append(remaining)
    return chunks


def _media_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    major = content_type.split("/", 1)[0].lower()
    if major in ("image", "audio", "video"):
        return major
    return "document"


def _with_prefix(number: str) -> str:
    return number if number.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{number}"


class WhatsAppTwilioAdapter(ChannelAdapter):
    channel_type = "WHATSAPP"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        max_message_length: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep_func=None,
    ):
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_whatsapp_number
        self.max_message_length = max_message_length or settings.whatsapp_max_message_length
        self._client = client
        self.sleep_func = sleep_func

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"

    async def _post(self, data: dict) -> dict:
        if self._client is not None:
            response = await self._client.post(self.messages_url, data=data, auth=(self.account_sid, self.auth_token))
        else:
            async with httpx.AsyncClient(timeout=15.0) as client:
                response = await client.post(self.messages_url, data=data, auth=(self.account_sid, self.auth_token))

        if response.status_code >= 400:
            raise ChannelSendError(
                f"Twilio API error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()

    async def send_message(self, to: str, text: str) -> None:
        if not self.account_sid or not self.auth_token or not self.from_number:
            raise ChannelSendError("Twilio credentials are not configured")

        chunks = split_message(text, self.max_message_length)
        retry_kwargs = {"sleep_func": self.sleep_func} if self.sleep_func is not None else {}

        for index, chunk in enumerate(chunks):
            data = {
                "From": _with_prefix(self.from_number),
                "To": _with_prefix(to),
                "Body": chunk,
            }
            if settings.webhook_base_url:
                data["StatusCallback"] = f"{settings.webhook_base_url.rstrip('/')}/health"

            result = await with_retry(
                lambda data=data: self._post(data),
                operation_name="Twilio send",
                **retry_kwargs,
            )
            logger.info(
                "WhatsApp message sent via Twilio",
                extra={"context": {"to": to, "sid": result.get("sid"), "chunk": index + 1, "chunks": len(chunks)}},
            )

    def parse_webhook(self, payload: Mapping[str, Any]) -> Optional[NormalizedMessage]:
        try:
            body = TwilioWebhookBody(**dict(payload))
        except Exception as e:
            logger.error(f"Failed to parse Twilio webhook: {e}")
            return None

        if not body.From:
            return None

        text = (body.Body or "").strip()
        has_media = body.MediaUrl0 is not None and (body.NumMedia or "0") != "0"
        if not text and not has_media:
            return None

        media_type = _media_type(body.MediaContentType0) if has_media else None
        if not text:
            text = MEDIA_PLACEHOLDERS.get(media_type, "[attachment]")

        return NormalizedMessage(
            channel_type=self.channel_type,
            channel_user_id=body.From.replace(WHATSAPP_PREFIX, ""),
            channel_message_id=body.MessageSid,
            text=text,
            user_name=body.ProfileName or None,
            media_url=body.MediaUrl0 if has_media else None,
            media_type=media_type,
            raw_payload=body.model_dump(),
        )

    def verify_signature(self, url: str, params: Mapping[str, Any], signature: Optional[str]) -> bool:
        """Twilio signs the full URL followed by every POST param, sorted by name."""
        if not self.auth_token or not signature:
            return False
        payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
        digest = hmac.new(self.auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, signature)
