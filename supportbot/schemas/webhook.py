from typing import Optional

from pydantic import BaseModel


class TwilioWebhookBody(BaseModel):
    """Form fields Twilio posts for an inbound WhatsApp message."""

    MessageSid: Optional[str] = None
    AccountSid: Optional[str] = None
    From: Optional[str] = None
    To: Optional[str] = None
    Body: Optional[str] = None
    NumMedia: Optional[str] = "0"
    MediaUrl0: Optional[str] = None
    MediaContentType0: Optional[str] = None
    ProfileName: Optional[str] = None
    WaId: Optional[str] = None
