from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response
from sqlalchemy.orm import Session

from supportbot.channels import WhatsAppTwilioAdapter
from supportbot.config import settings
from supportbot.database import get_db
from supportbot.logging_config import get_logger
from supportbot.models import WebhookLog
from supportbot.services.queue_service import enqueue_inbound_message

logger = get_logger("webhook")

router = APIRouter()

EMPTY_TWIML = "<Response></Response>"

whatsapp_adapter = WhatsAppTwilioAdapter()


def get_whatsapp_adapter() -> WhatsAppTwilioAdapter:
    return whatsapp_adapter


def _twiml() -> Response:
    return Response(content=EMPTY_TWIML, media_type="text/xml")


def _webhook_url(request: Request) -> str:
    if settings.webhook_base_url:
        return f"{settings.webhook_base_url.rstrip('/')}/webhooks/whatsapp"
    return str(request.url)


def _log_webhook(db: Session, payload: dict) -> None:
    try:
        db.add(WebhookLog(channel="WHATSAPP", event_type="twilio_message", payload=payload))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to log webhook: {e}")


@router.post("/webhooks/whatsapp")
async def whatsapp_webhook(
    request: Request,
    db: Session = Depends(get_db),
    adapter: WhatsAppTwilioAdapter = Depends(get_whatsapp_adapter),
):
    """Twilio inbound message. Replies are sent asynchronously by the worker."""
    form = await request.form()
    params = {key: value for key, value in form.items() if isinstance(value, str)}

    signature = request.headers.get("X-Twilio-Signature")
    if not adapter.verify_signature(_webhook_url(request), params, signature):
        if settings.environment == "production":
            logger.warning("Invalid Twilio signature")
            return PlainTextResponse("Forbidden", status_code=403)
        logger.debug("Twilio signature not verified (non-production)")

    if params.get("Body") == "PING_WEBHOOK":
        return PlainTextResponse("Webhook reachable")

    _log_webhook(db, params)

    try:
        normalized = adapter.parse_webhook(params)
        if normalized is None:
            return _twiml()
        enqueue_inbound_message(db, normalized)
    except Exception as e:
        db.rollback()
        logger.error(
            f"Failed to enqueue message: {e}",
            extra={"context": {"message_sid": params.get("MessageSid")}},
        )

    return _twiml()
