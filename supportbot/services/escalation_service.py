from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from supportbot.logging_config import get_logger
from supportbot.models import EscalationQueueEntry
from supportbot.services.conversation_service import close_conversation
from supportbot.services.result import Result

logger = get_logger("escalation_service")

ACTIVE_STATUSES = ("PENDING", "ASSIGNED", "IN_PROGRESS")

# RESOLVED is terminal.
ALLOWED_STATUS_CHANGES = {
    "PENDING": {"ASSIGNED", "RESOLVED"},
    "ASSIGNED": {"ASSIGNED", "IN_PROGRESS", "RESOLVED"},
    "IN_PROGRESS": {"RESOLVED"},
    "RESOLVED": set(),
}


def create_escalation(
    db: Session,
    conversation_id: UUID,
    queue_type: str,
    priority: int,
    reason: Optional[str] = None,
) -> Optional[EscalationQueueEntry]:
    """Queue the conversation for a human agent.

    Returns None when the conversation already has an open entry, including
    one inserted concurrently by another message of the same conversation.
    """
    entry = EscalationQueueEntry(
        conversation_id=conversation_id,
        queue_type=queue_type,
        priority=priority,
        reason=reason,
        status="PENDING",
        created_at=datetime.now(timezone.utc),
    )
    try:
        with db.begin_nested():
            db.add(entry)
            db.flush()
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Escalation already open for conversation",
            extra={"context": {"conversation_id": str(conversation_id)}},
        )
        return None

    logger.info(
        "Escalation created",
        extra={
            "context": {
                "escalation_id": str(entry.id),
                "conversation_id": str(conversation_id),
                "queue_type": queue_type,
                "priority": priority,
            }
        },
    )
    return entry


def has_active_escalation(db: Session, conversation_id: UUID) -> bool:
    count = (
        db.query(func.count(EscalationQueueEntry.id))
        .filter(
            EscalationQueueEntry.conversation_id == conversation_id,
            EscalationQueueEntry.status.in_(ACTIVE_STATUSES),
        )
        .scalar()
    )
    return bool(count)


def get_pending_escalations(
    db: Session,
    queue_type: Optional[str] = None,
    limit: int = 50,
) -> list[EscalationQueueEntry]:
    """Pending entries, most urgent first, oldest first within a priority."""
    query = db.query(EscalationQueueEntry).filter(EscalationQueueEntry.status == "PENDING")
    if queue_type:
        query = query.filter(EscalationQueueEntry.queue_type == queue_type)
    return query.order_by(EscalationQueueEntry.priority.asc(), EscalationQueueEntry.created_at.asc()).limit(limit).all()


def get_assigned_escalations(
    db: Session,
    assigned_to: str,
    include_resolved: bool = False,
) -> list[EscalationQueueEntry]:
    query = db.query(EscalationQueueEntry).filter(EscalationQueueEntry.assigned_to == assigned_to)
    if not include_resolved:
        query = query.filter(EscalationQueueEntry.status.in_(("ASSIGNED", "IN_PROGRESS")))
    return query.order_by(EscalationQueueEntry.priority.asc(), EscalationQueueEntry.created_at.asc()).all()


def _change_status(
    db: Session,
    escalation_id: UUID,
    new_status: str,
    **updates,
) -> Result[EscalationQueueEntry]:
    entry = db.query(EscalationQueueEntry).filter(EscalationQueueEntry.id == escalation_id).first()
    if entry is None:
        return Result.not_found("Escalation", escalation_id)

    if new_status not in ALLOWED_STATUS_CHANGES.get(entry.status, set()):
        return Result.invalid_status("escalation", entry.status, new_status)

    entry.status = new_status
    for key, value in updates.items():
        setattr(entry, key, value)
    db.commit()

    logger.info(f"Escalation {escalation_id} -> {new_status}", extra={"context": updates or None})
    return Result.success(entry)


def assign_escalation(db: Session, escalation_id: UUID, assigned_to: str) -> Result[EscalationQueueEntry]:
    return _change_status(db, escalation_id, "ASSIGNED", assigned_to=assigned_to)


def mark_in_progress(db: Session, escalation_id: UUID) -> Result[EscalationQueueEntry]:
    return _change_status(db, escalation_id, "IN_PROGRESS")


def resolve_escalation(db: Session, escalation_id: UUID) -> Result[EscalationQueueEntry]:
    """Resolve the entry and close its conversation so the customer starts fresh next time."""
    result = _change_status(db, escalation_id, "RESOLVED", resolved_at=datetime.now(timezone.utc))
    if result.ok:
        close_conversation(db, result.value.conversation_id)
    return result


def get_escalation_stats(db: Session, queue_type: Optional[str] = None) -> dict:
    def _count(status: str) -> int:
        query = db.query(func.count(EscalationQueueEntry.id)).filter(EscalationQueueEntry.status == status)
        if queue_type:
            query = query.filter(EscalationQueueEntry.queue_type == queue_type)
        return query.scalar() or 0

    avg_query = db.query(func.avg(EscalationQueueEntry.priority)).filter(EscalationQueueEntry.status != "RESOLVED")
    if queue_type:
        avg_query = avg_query.filter(EscalationQueueEntry.queue_type == queue_type)
    avg_priority = avg_query.scalar()

    return {
        "pending": _count("PENDING"),
        "assigned": _count("ASSIGNED"),
        "in_progress": _count("IN_PROGRESS"),
        "resolved": _count("RESOLVED"),
        "avg_priority": float(avg_priority) if avg_priority is not None else 3.0,
    }
