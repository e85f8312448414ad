import uuid

from sqlalchemy import Column, ForeignKey, Index, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from supportbot.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (Index("ix_conversations_lookup", "user_id", "channel", "client_id", "status", "updated_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("chat_users.id"), nullable=False)
    client_id = Column(Text, nullable=False)
    channel = Column(Text, nullable=False)  # WHATSAPP, TELEGRAM, WEB
    status = Column(Text, nullable=False, default="ACTIVE")  # ACTIVE, HANDOFF, PAUSED, CLOSED
    summary = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    user = relationship("ChatUser", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation")
    escalations = relationship("EscalationQueueEntry", back_populates="conversation")
