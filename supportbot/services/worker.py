"""Queue consumer: bounded concurrency plus a job-start rate limit."""

import asyncio
import time
from collections import deque
from typing import Callable, Optional

from sqlalchemy.orm import Session

from supportbot.config import settings
from supportbot.database import SessionLocal
from supportbot.logging_config import get_logger
from supportbot.schemas import NormalizedMessage
from supportbot.services.message_router import MessageRouter, RoutingOutcome
from supportbot.services.queue_service import claim_pending_jobs, mark_job_status, schedule_retry

logger = get_logger("worker")


class RateLimiter:
    """Sliding one-second window: at most ``max_per_second`` acquisitions."""

    def __init__(self, max_per_second: int, clock: Callable[[], float] = time.monotonic, sleep_func=asyncio.sleep):
        self.max_per_second = max_per_second
        self.clock = clock
        self.sleep_func = sleep_func
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self.clock()
                while self._starts and now - self._starts[0] >= 1.0:
                    self._starts.popleft()
                if len(self._starts) < self.max_per_second:
                    self._starts.append(now)
                    return
                await self.sleep_func(1.0 - (now - self._starts[0]))


class MessageWorker:
    def __init__(
        self,
        router: MessageRouter,
        session_factory: Callable[[], Session] = SessionLocal,
        concurrency: Optional[int] = None,
        rate_limit_per_second: Optional[int] = None,
        claim_limit: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        rate_limiter: Optional[RateLimiter] = None,
        stale_after_seconds: Optional[float] = None,
    ):
        self.router = router
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.worker_concurrency
        self.claim_limit = claim_limit or settings.worker_claim_limit
        self.max_attempts = max_attempts or settings.queue_max_attempts
        self.retry_backoff_seconds = (
            settings.queue_retry_backoff_seconds if retry_backoff_seconds is None else retry_backoff_seconds
        )
        self.rate_limiter = rate_limiter or RateLimiter(rate_limit_per_second or settings.worker_rate_limit_per_second)
        self.stale_after_seconds = stale_after_seconds or settings.queue_stale_after_seconds
        self._semaphore = asyncio.Semaphore(self.concurrency)

    async def run_once(self) -> dict[str, int]:
        """Claim one batch and process it. Returns per-result counts."""
        db = self.session_factory()
        try:
            rows = claim_pending_jobs(db, limit=self.claim_limit, stale_after_seconds=self.stale_after_seconds)
        finally:
            db.close()

        results = {"claimed": len(rows), "done": 0, "failed": 0, "retry_scheduled": 0}
        if not rows:
            return results

        statuses = await asyncio.gather(*(self._dispatch(row) for row in rows))
        for status in statuses:
            results[status] += 1
        return results

    async def _dispatch(self, row: dict) -> str:
        async with self._semaphore:
            await self.rate_limiter.acquire()
            return await self._process_job(row)

    async def _process_job(self, row: dict) -> str:
        job_id = row.get("id")
        attempts = int(row.get("attempts") or 0)
        db = self.session_factory()
        try:
            try:
                msg = NormalizedMessage.model_validate(row.get("payload_json") or {})
            except Exception as exc:
                mark_job_status(db, job_id=job_id, status="FAILED", last_error=f"invalid_payload:{exc}"[:500])
                return "failed"

            try:
                outcome = await self.router.process_message(msg)
                error = "processing_failed" if outcome == RoutingOutcome.FAILED else None
            except asyncio.CancelledError:
                # Worker shutdown: hand the job back for the next claim
                mark_job_status(db, job_id=job_id, status="PENDING", last_error="worker_cancelled")
                logger.warning("Job released on shutdown", extra={"context": {"job_id": str(job_id)}})
                raise
            except Exception as exc:
                error = str(exc)

            if error is None:
                mark_job_status(db, job_id=job_id, status="DONE")
                return "done"

            scheduled = schedule_retry(
                db,
                job_id=job_id,
                attempts=attempts,
                error=error,
                max_attempts=self.max_attempts,
                retry_backoff_seconds=self.retry_backoff_seconds,
            )
            return "retry_scheduled" if scheduled else "failed"
        finally:
            db.close()

    async def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        interval = max(interval_seconds or settings.worker_poll_interval_seconds, 0.1)
        while True:
            try:
                await asyncio.sleep(interval)
                results = await self.run_once()
                if results["claimed"]:
                    logger.info("Worker processed batch", extra={"context": results})
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Worker loop failed", extra={"context": {"error": str(exc)}})
