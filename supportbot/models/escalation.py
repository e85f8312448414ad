import uuid

from sqlalchemy import Column, ForeignKey, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from supportbot.database import Base


class EscalationQueueEntry(Base):
    __tablename__ = "escalation_queue"
    __table_args__ = (
        # At most one open entry per conversation
        Index(
            "uq_escalation_queue_open_conversation",
            "conversation_id",
            unique=True,
            postgresql_where=text("status <> 'RESOLVED'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False, index=True)
    queue_type = Column(Text, nullable=False)  # SUPPORT, SALES, COMPLAINT, TECHNICAL, GENERAL
    priority = Column(Integer, nullable=False, default=3)
    reason = Column(Text)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, ASSIGNED, IN_PROGRESS, RESOLVED
    assigned_to = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    resolved_at = Column(TIMESTAMP(timezone=True))

    conversation = relationship("Conversation", back_populates="escalations")
