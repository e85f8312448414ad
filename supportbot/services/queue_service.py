from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from supportbot.logging_config import get_logger
from supportbot.models import InboundJob
from supportbot.schemas import NormalizedMessage

logger = get_logger("queue_service")


def enqueue_inbound_message(db: Session, msg: NormalizedMessage, *, priority: int = 2) -> uuid.UUID:
    """Persist one inbound message as a PENDING job.

    Redelivered webhooks may enqueue the same message twice; the message store
    drops the duplicate when the job runs.
    """
    now = datetime.now(timezone.utc)
    job = InboundJob(
        id=uuid.uuid4(),
        channel_type=msg.channel_type,
        channel_message_id=msg.channel_message_id,
        payload_json=msg.model_dump(mode="json"),
        priority=priority,
        status="PENDING",
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.commit()
    logger.info(
        "Inbound message enqueued",
        extra={"context": {"job_id": str(job.id), "channel_message_id": msg.channel_message_id}},
    )
    return job.id


def claim_pending_jobs(db: Session, *, limit: int = 20, stale_after_seconds: float = 300) -> list[dict[str, Any]]:
    """Claim due PENDING jobs, plus PROCESSING jobs abandoned by a crashed or stopped worker.

    A job counts as abandoned once it has stayed PROCESSING for longer than
    ``stale_after_seconds`` without a status update.
    """
    rows = (
        db.execute(
            text(
                """
                WITH cte AS (
                    SELECT id
                    FROM inbound_jobs
                    WHERE (
                        status = 'PENDING'
                        AND (next_attempt_at IS NULL OR next_attempt_at <= NOW())
                    ) OR (
                        status = 'PROCESSING'
                        AND updated_at < NOW() - make_interval(secs => :stale_after)
                    )
                    ORDER BY priority, created_at
                    LIMIT :limit
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE inbound_jobs
                SET status = 'PROCESSING',
                    attempts = attempts + 1,
                    updated_at = NOW()
                FROM cte
                WHERE inbound_jobs.id = cte.id
                RETURNING inbound_jobs.id,
                          inbound_jobs.channel_type,
                          inbound_jobs.channel_message_id,
                          inbound_jobs.payload_json,
                          inbound_jobs.attempts,
                          inbound_jobs.created_at
                """
            ),
            {"limit": limit, "stale_after": stale_after_seconds},
        )
        .mappings()
        .all()
    )
    db.commit()
    return [dict(row) for row in rows]


def mark_job_status(
    db: Session,
    *,
    job_id,
    status: str,
    last_error: str | None = None,
    next_attempt_at: datetime | None = None,
) -> None:
    db.execute(
        text(
            """
            UPDATE inbound_jobs
            SET status = :status,
                last_error = :last_error,
                next_attempt_at = :next_attempt_at,
                updated_at = NOW()
            WHERE id = :id
            """
        ),
        {"id": job_id, "status": status, "last_error": last_error, "next_attempt_at": next_attempt_at},
    )
    db.commit()


def schedule_retry(
    db: Session,
    *,
    job_id,
    attempts: int,
    error: str,
    max_attempts: int,
    retry_backoff_seconds: float,
    now: datetime | None = None,
) -> bool:
    """Put a failed job back as PENDING with exponential backoff, or mark it FAILED.

    Returns True when another attempt was scheduled.
    """
    if attempts >= max_attempts:
        mark_job_status(db, job_id=job_id, status="FAILED", last_error=error[:500])
        logger.error(
            "Job failed permanently",
            extra={"context": {"job_id": str(job_id), "attempts": attempts, "error": error}},
        )
        return False

    backoff = retry_backoff_seconds * (2 ** max(attempts - 1, 0))
    next_attempt_at = (now or datetime.now(timezone.utc)) + timedelta(seconds=backoff)
    mark_job_status(
        db,
        job_id=job_id,
        status="PENDING",
        last_error=error[:500],
        next_attempt_at=next_attempt_at,
    )
    logger.warning(
        "Job retry scheduled",
        extra={"context": {"job_id": str(job_id), "attempts": attempts, "backoff_seconds": backoff}},
    )
    return True
