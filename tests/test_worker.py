import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import pytest

from supportbot.schemas import NormalizedMessage
from supportbot.services.message_router import RoutingOutcome
from supportbot.services.queue_service import claim_pending_jobs, schedule_retry
from supportbot.services.worker import MessageWorker, RateLimiter

WORKER = "supportbot.services.worker"


def _row(attempts=1, payload=None):
    msg = NormalizedMessage(channel_user_id="+15550001", channel_message_id=f"SM{uuid4().hex[:6]}", text="hi")
    return {
        "id": uuid4(),
        "channel_type": "WHATSAPP",
        "attempts": attempts,
        "payload_json": msg.model_dump(mode="json") if payload is None else payload,
    }


def _worker(router, **kwargs):
    values = {
        "session_factory": Mock,
        "concurrency": 5,
        "claim_limit": 20,
        "max_attempts": 3,
        "retry_backoff_seconds": 2.0,
        "rate_limiter": RateLimiter(1000),
    }
    values.update(kwargs)
    return MessageWorker(router, **values)


class TestRateLimiter:
    def test_waits_when_window_full(self):
        now = [0.0]
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)
            now[0] += seconds

        limiter = RateLimiter(2, clock=lambda: now[0], sleep_func=fake_sleep)

        async def acquire_three():
            for _ in range(3):
                await limiter.acquire()

        asyncio.run(acquire_three())

        assert delays == [1.0]

    def test_no_wait_under_limit(self):
        sleep = AsyncMock()
        limiter = RateLimiter(20, clock=lambda: 0.0, sleep_func=sleep)

        async def acquire_many():
            for _ in range(20):
                await limiter.acquire()

        asyncio.run(acquire_many())

        sleep.assert_not_awaited()


class TestRunOnce:
    @patch(f"{WORKER}.mark_job_status")
    @patch(f"{WORKER}.claim_pending_jobs")
    def test_processes_claimed_jobs(self, mock_claim, mock_mark):
        rows = [_row(), _row()]
        mock_claim.return_value = rows
        router = Mock()
        router.process_message = AsyncMock(return_value=RoutingOutcome.AI_REPLY)

        results = asyncio.run(_worker(router).run_once())

        assert results == {"claimed": 2, "done": 2, "failed": 0, "retry_scheduled": 0}
        assert router.process_message.await_count == 2
        statuses = {call.kwargs["status"] for call in mock_mark.call_args_list}
        assert statuses == {"DONE"}

    @patch(f"{WORKER}.claim_pending_jobs")
    def test_empty_queue(self, mock_claim):
        mock_claim.return_value = []
        router = Mock()
        router.process_message = AsyncMock()

        results = asyncio.run(_worker(router).run_once())

        assert results["claimed"] == 0
        router.process_message.assert_not_awaited()

    @patch(f"{WORKER}.schedule_retry")
    @patch(f"{WORKER}.claim_pending_jobs")
    def test_failed_outcome_schedules_retry(self, mock_claim, mock_retry):
        row = _row(attempts=1)
        mock_claim.return_value = [row]
        mock_retry.return_value = True
        router = Mock()
        router.process_message = AsyncMock(return_value=RoutingOutcome.FAILED)

        results = asyncio.run(_worker(router).run_once())

        assert results["retry_scheduled"] == 1
        kwargs = mock_retry.call_args.kwargs
        assert kwargs["job_id"] == row["id"]
        assert kwargs["attempts"] == 1
        assert kwargs["max_attempts"] == 3

    @patch(f"{WORKER}.mark_job_status")
    @patch(f"{WORKER}.claim_pending_jobs")
    def test_duplicate_outcome_is_done(self, mock_claim, mock_mark):
        mock_claim.return_value = [_row()]
        router = Mock()
        router.process_message = AsyncMock(return_value=RoutingOutcome.DUPLICATE)

        results = asyncio.run(_worker(router).run_once())

        assert results["done"] == 1

    @patch(f"{WORKER}.mark_job_status")
    @patch(f"{WORKER}.claim_pending_jobs")
    def test_invalid_payload_fails_job(self, mock_claim, mock_mark):
        mock_claim.return_value = [_row(payload={"text": "no sender"})]
        router = Mock()
        router.process_message = AsyncMock()

        results = asyncio.run(_worker(router).run_once())

        assert results["failed"] == 1
        assert mock_mark.call_args.kwargs["status"] == "FAILED"
        router.process_message.assert_not_awaited()

    @patch(f"{WORKER}.mark_job_status")
    @patch(f"{WORKER}.claim_pending_jobs")
    def test_concurrency_is_bounded(self, mock_claim, mock_mark):
        mock_claim.return_value = [_row() for _ in range(8)]
        state = {"in_flight": 0, "peak": 0}

        async def slow(msg):
            state["in_flight"] += 1
            state["peak"] = max(state["peak"], state["in_flight"])
            await asyncio.sleep(0.01)
            state["in_flight"] -= 1
            return RoutingOutcome.AI_REPLY

        router = Mock()
        router.process_message = slow

        results = asyncio.run(_worker(router, concurrency=2).run_once())

        assert results["done"] == 8
        assert state["peak"] == 2

    @patch(f"{WORKER}.claim_pending_jobs")
    def test_claim_passes_stale_window(self, mock_claim):
        mock_claim.return_value = []

        asyncio.run(_worker(Mock(), stale_after_seconds=90).run_once())

        assert mock_claim.call_args.kwargs["stale_after_seconds"] == 90

    @patch(f"{WORKER}.mark_job_status")
    def test_cancelled_job_is_released(self, mock_mark):
        row = _row()
        router = Mock()
        router.process_message = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(_worker(router)._process_job(row))

        kwargs = mock_mark.call_args.kwargs
        assert kwargs["job_id"] == row["id"]
        assert kwargs["status"] == "PENDING"
        assert kwargs["last_error"] == "worker_cancelled"


class TestClaimPendingJobs:
    def test_reclaims_stale_processing_jobs(self):
        db = Mock()
        db.execute.return_value.mappings.return_value.all.return_value = []

        claim_pending_jobs(db, limit=5, stale_after_seconds=120)

        statement, params = db.execute.call_args.args
        sql = str(statement)
        assert "status = 'PROCESSING'" in sql
        assert "updated_at < NOW() - make_interval(secs => :stale_after)" in sql
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert params == {"limit": 5, "stale_after": 120}
        db.commit.assert_called_once()


class TestScheduleRetry:
    @patch("supportbot.services.queue_service.mark_job_status")
    def test_backoff_grows_exponentially(self, mock_mark):
        now = datetime(2026, 10, 19, tzinfo=timezone.utc)

        assert schedule_retry(
            Mock(), job_id="j", attempts=2, error="boom", max_attempts=3, retry_backoff_seconds=2.0, now=now
        )

        kwargs = mock_mark.call_args.kwargs
        assert kwargs["status"] == "PENDING"
        assert kwargs["next_attempt_at"] == now + timedelta(seconds=4)

    @patch("supportbot.services.queue_service.mark_job_status")
    def test_gives_up_after_max_attempts(self, mock_mark):
        scheduled = schedule_retry(
            Mock(), job_id="j", attempts=3, error="boom", max_attempts=3, retry_backoff_seconds=2.0
        )

        assert scheduled is False
        assert mock_mark.call_args.kwargs["status"] == "FAILED"
