from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class NormalizedMessage(BaseModel):
    channel_type: str = "WHATSAPP"
    channel_user_id: str
    channel_message_id: Optional[str] = None
    text: str
    user_name: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[Literal["image", "audio", "video", "document"]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    raw_payload: Any = None


class ContextMessage(BaseModel):
    role: str  # USER, ASSISTANT
    content: str


class ConversationContext(BaseModel):
    conversation_id: str
    user_id: str
    client_id: str
    messages: list[ContextMessage] = Field(default_factory=list)
    summary: Optional[str] = None
    system_prompt: str
    handoff_message: str
    conversation_status: str = "ACTIVE"
    token_usage_limit: int
    monthly_token_usage: int = 0
    user_name: Optional[str] = None
