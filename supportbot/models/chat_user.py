import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from supportbot.database import Base


class ChatUser(Base):
    __tablename__ = "chat_users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text)
    phone = Column(Text)
    is_vip = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    channels = relationship("UserChannel", back_populates="user")
    conversations = relationship("Conversation", back_populates="user")


class UserChannel(Base):
    __tablename__ = "user_channels"
    __table_args__ = (UniqueConstraint("channel_type", "channel_user_id", name="uq_user_channels_channel_user"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("chat_users.id"), nullable=False)
    channel_type = Column(Text, nullable=False)  # WHATSAPP, TELEGRAM, WEB
    channel_user_id = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    user = relationship("ChatUser", back_populates="channels")
