from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class EscalationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    queue_type: str
    priority: int
    reason: Optional[str] = None
    status: str
    assigned_to: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class AssignRequest(BaseModel):
    assigned_to: str


class EscalationStats(BaseModel):
    pending: int
    assigned: int
    in_progress: int
    resolved: int
    avg_priority: float


class ClientAnalyticsSummary(BaseModel):
    total_conversations: int
    total_messages: int
    total_tokens_used: int
    total_cost_used: float
    avg_response_time_ms: int
    intent_breakdown: dict[str, int]
    handoff_count: int


class IntentShare(BaseModel):
    intent: str
    count: int
    percentage: int


class ConversationAnalyticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    conversation_id: UUID
    client_id: str
    message_count: int
    user_message_count: int
    ai_message_count: int
    intent: Optional[str] = None
    total_tokens_used: int
    total_cost_used: float
    avg_response_time_ms: Optional[int] = None
    handoff_reason: Optional[str] = None
