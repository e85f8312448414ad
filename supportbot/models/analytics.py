import uuid

from sqlalchemy import Column, Float, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.sql import func

from supportbot.database import Base


class ConversationAnalytics(Base):
    __tablename__ = "conversation_analytics"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False, unique=True)
    client_id = Column(Text, nullable=False, index=True)
    message_count = Column(Integer, nullable=False, default=0)
    user_message_count = Column(Integer, nullable=False, default=0)
    ai_message_count = Column(Integer, nullable=False, default=0)
    intent = Column(Text)
    sentiment = Column(Text)
    total_tokens_used = Column(Integer, nullable=False, default=0)
    total_cost_used = Column(Float, nullable=False, default=0.0)
    avg_response_time_ms = Column(Integer)
    handoff_reason = Column(Text)
    first_message_at = Column(TIMESTAMP(timezone=True))
    last_message_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
