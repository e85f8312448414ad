"""Admin API: escalation queue and analytics."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from supportbot.config import settings
from supportbot.database import get_db
from supportbot.schemas.admin import (
    AssignRequest,
    ClientAnalyticsSummary,
    ConversationAnalyticsResponse,
    EscalationResponse,
    EscalationStats,
    IntentShare,
)
from supportbot.services.analytics_service import get_client_analytics, get_conversation_analytics, get_top_intents
from supportbot.services.escalation_service import (
    assign_escalation,
    get_assigned_escalations,
    get_escalation_stats,
    get_pending_escalations,
    mark_in_progress,
    resolve_escalation,
)
from supportbot.services.result import Result

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _unwrap(result: Result) -> EscalationResponse:
    if not result.ok:
        raise HTTPException(status_code=result.http_status, detail=result.error)
    return EscalationResponse.model_validate(result.value)


# === ESCALATIONS ===


@router.get("/escalations", response_model=list[EscalationResponse])
async def list_pending_escalations(
    queue_type: Optional[str] = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    entries = get_pending_escalations(db, queue_type=queue_type.upper() if queue_type else None, limit=limit)
    return [EscalationResponse.model_validate(entry) for entry in entries]


@router.get("/escalations/stats", response_model=EscalationStats)
async def escalation_stats(
    queue_type: Optional[str] = None,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    return EscalationStats(**get_escalation_stats(db, queue_type=queue_type.upper() if queue_type else None))


@router.get("/agents/{assigned_to}/escalations", response_model=list[EscalationResponse])
async def list_agent_escalations(
    assigned_to: str,
    include_resolved: bool = False,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    entries = get_assigned_escalations(db, assigned_to, include_resolved=include_resolved)
    return [EscalationResponse.model_validate(entry) for entry in entries]


@router.post("/escalations/{escalation_id}/assign", response_model=EscalationResponse)
async def assign(
    escalation_id: UUID,
    body: AssignRequest,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    if not body.assigned_to.strip():
        raise HTTPException(status_code=400, detail="assigned_to cannot be empty")
    return _unwrap(assign_escalation(db, escalation_id, body.assigned_to.strip()))


@router.post("/escalations/{escalation_id}/start", response_model=EscalationResponse)
async def start(
    escalation_id: UUID,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    return _unwrap(mark_in_progress(db, escalation_id))


@router.post("/escalations/{escalation_id}/resolve", response_model=EscalationResponse)
async def resolve(
    escalation_id: UUID,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    return _unwrap(resolve_escalation(db, escalation_id))


# === ANALYTICS ===


@router.get("/analytics/{client_id}", response_model=ClientAnalyticsSummary)
async def client_analytics(
    client_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    return ClientAnalyticsSummary(**get_client_analytics(db, client_id, start=start, end=end))


@router.get("/analytics/{client_id}/intents", response_model=list[IntentShare])
async def top_intents(
    client_id: str,
    limit: int = 5,
    start: Optional[datetime] = None,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    return [IntentShare(**row) for row in get_top_intents(db, client_id, limit=limit, start=start)]


@router.get("/conversations/{conversation_id}/analytics", response_model=ConversationAnalyticsResponse)
async def conversation_analytics(
    conversation_id: UUID,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    row = get_conversation_analytics(db, conversation_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"No analytics for conversation {conversation_id}")
    return ConversationAnalyticsResponse.model_validate(row)
