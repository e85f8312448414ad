"""Per-conversation analytics counters.

Writes here are best-effort: failures are logged and never propagated.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from supportbot.logging_config import get_logger
from supportbot.models import ConversationAnalytics

logger = get_logger("analytics_service")


@dataclass
class AnalyticsEvent:
    conversation_id: UUID
    client_id: str
    intent: Optional[str] = None
    sentiment: Optional[str] = None
    tokens_used: Optional[int] = None
    cost_used: Optional[float] = None
    response_time_ms: Optional[int] = None


def _get(db: Session, conversation_id: UUID) -> Optional[ConversationAnalytics]:
    return db.query(ConversationAnalytics).filter(ConversationAnalytics.conversation_id == conversation_id).first()


def rolling_response_time(previous: Optional[int], latest: Optional[int]) -> Optional[int]:
    if not latest:
        return previous
    if previous is None:
        return latest
    return round(previous * 0.8 + latest * 0.2)


def record_analytics(db: Session, event: AnalyticsEvent) -> None:
    """Count an inbound user message; creates the row on first use."""
    try:
        now = datetime.now(timezone.utc)
        row = _get(db, event.conversation_id)
        if row:
            row.message_count = (row.message_count or 0) + 1
            row.user_message_count = (row.user_message_count or 0) + 1
            row.intent = event.intent or row.intent
            row.sentiment = event.sentiment or row.sentiment
            row.total_tokens_used = (row.total_tokens_used or 0) + (event.tokens_used or 0)
            row.total_cost_used = (row.total_cost_used or 0.0) + (event.cost_used or 0.0)
            row.avg_response_time_ms = rolling_response_time(row.avg_response_time_ms, event.response_time_ms)
            row.last_message_at = now
            row.updated_at = now
        else:
            db.add(
                ConversationAnalytics(
                    conversation_id=event.conversation_id,
                    client_id=event.client_id,
                    message_count=1,
                    user_message_count=1,
                    ai_message_count=0,
                    intent=event.intent,
                    sentiment=event.sentiment,
                    total_tokens_used=event.tokens_used or 0,
                    total_cost_used=event.cost_used or 0.0,
                    avg_response_time_ms=event.response_time_ms,
                    first_message_at=now,
                    last_message_at=now,
                )
            )
        db.commit()
        logger.debug("Analytics recorded", extra={"context": {"conversation_id": str(event.conversation_id)}})
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to record analytics: {e}", extra={"context": {"conversation_id": str(event.conversation_id)}})


def record_ai_response(
    db: Session,
    conversation_id: UUID,
    tokens_used: int,
    cost_used: float,
    response_time_ms: Optional[int] = None,
) -> None:
    try:
        row = _get(db, conversation_id)
        if row is None:
            logger.warning(f"No analytics row for conversation {conversation_id}, skipping AI response stats")
            return
        row.message_count = (row.message_count or 0) + 1
        row.ai_message_count = (row.ai_message_count or 0) + 1
        row.total_tokens_used = (row.total_tokens_used or 0) + (tokens_used or 0)
        row.total_cost_used = (row.total_cost_used or 0.0) + (cost_used or 0.0)
        row.avg_response_time_ms = rolling_response_time(row.avg_response_time_ms, response_time_ms)
        row.last_message_at = datetime.now(timezone.utc)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to record AI response analytics: {e}")


def record_handoff(db: Session, conversation_id: UUID, reason: str) -> None:
    try:
        row = _get(db, conversation_id)
        if row is None:
            logger.warning(f"No analytics row for conversation {conversation_id}, skipping handoff reason")
            return
        row.handoff_reason = reason
        db.commit()
        logger.debug("Handoff recorded in analytics", extra={"context": {"conversation_id": str(conversation_id)}})
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to record handoff analytics: {e}")


def _scoped(query, client_id: str, start: Optional[datetime], end: Optional[datetime]):
    query = query.filter(ConversationAnalytics.client_id == client_id)
    if start:
        query = query.filter(ConversationAnalytics.created_at >= start)
    if end:
        query = query.filter(ConversationAnalytics.created_at <= end)
    return query


EMPTY_SUMMARY = {
    "total_conversations": 0,
    "total_messages": 0,
    "total_tokens_used": 0,
    "total_cost_used": 0.0,
    "avg_response_time_ms": 0,
    "intent_breakdown": {},
    "handoff_count": 0,
}


def get_client_analytics(
    db: Session,
    client_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    try:
        totals = _scoped(
            db.query(
                func.count(ConversationAnalytics.id),
                func.sum(ConversationAnalytics.message_count),
                func.sum(ConversationAnalytics.total_tokens_used),
                func.sum(ConversationAnalytics.total_cost_used),
                func.avg(ConversationAnalytics.avg_response_time_ms),
            ),
            client_id,
            start,
            end,
        ).one()

        intent_rows = (
            _scoped(
                db.query(ConversationAnalytics.intent, func.count(ConversationAnalytics.id)),
                client_id,
                start,
                end,
            )
            .group_by(ConversationAnalytics.intent)
            .all()
        )

        handoff_count = (
            _scoped(db.query(func.count(ConversationAnalytics.id)), client_id, start, end)
            .filter(ConversationAnalytics.handoff_reason.isnot(None))
            .scalar()
        )

        conversations, messages, tokens, cost, avg_ms = totals
        return {
            "total_conversations": conversations or 0,
            "total_messages": int(messages or 0),
            "total_tokens_used": int(tokens or 0),
            "total_cost_used": float(cost or 0.0),
            "avg_response_time_ms": round(float(avg_ms or 0)),
            "intent_breakdown": {intent: count for intent, count in intent_rows if intent},
            "handoff_count": handoff_count or 0,
        }
    except Exception as e:
        logger.error(f"Failed to get client analytics: {e}", extra={"context": {"client_id": client_id}})
        return dict(EMPTY_SUMMARY, intent_breakdown={})


def get_conversation_analytics(db: Session, conversation_id: UUID) -> Optional[ConversationAnalytics]:
    try:
        return _get(db, conversation_id)
    except Exception as e:
        logger.error(f"Failed to get conversation analytics: {e}")
        return None


def get_top_intents(
    db: Session,
    client_id: str,
    limit: int = 5,
    start: Optional[datetime] = None,
) -> list[dict]:
    try:
        base = _scoped(db.query(func.count(ConversationAnalytics.id)), client_id, start, None).filter(
            ConversationAnalytics.intent.isnot(None)
        )
        total = base.scalar() or 0

        count_col = func.count(ConversationAnalytics.id)
        rows = (
            _scoped(db.query(ConversationAnalytics.intent, count_col), client_id, start, None)
            .filter(ConversationAnalytics.intent.isnot(None))
            .group_by(ConversationAnalytics.intent)
            .order_by(count_col.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "intent": intent,
                "count": count,
                "percentage": round(count / total * 100) if total else 0,
            }
            for intent, count in rows
        ]
    except Exception as e:
        logger.error(f"Failed to get top intents: {e}", extra={"context": {"client_id": client_id}})
        return []
