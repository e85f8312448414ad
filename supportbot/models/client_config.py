from sqlalchemy import Column, Float, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.sql import func

from supportbot.database import Base


class ClientConfig(Base):
    __tablename__ = "client_configs"

    client_id = Column(Text, primary_key=True)
    business_name = Column(Text)
    system_prompt = Column(Text)
    welcome_message = Column(Text)
    fallback_message = Column(Text)  # sent on handoff
    channels = Column(JSONB, nullable=False, default=dict)

    monthly_token_usage = Column(Integer, nullable=False, default=0)
    monthly_token_cap = Column(Integer)
    last_reset_month = Column(Text)  # YYYY-MM

    daily_cost_usage = Column(Float, nullable=False, default=0.0)
    daily_cost_cap = Column(Float)
    monthly_cost_usage = Column(Float, nullable=False, default=0.0)
    monthly_cost_cap = Column(Float)
    last_cost_reset_date = Column(Text)  # YYYY-MM-DD

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
