"""Exponential-backoff retry for external calls (LLM API, Twilio, ...).

Usage::

    reply = await with_retry(
        lambda: provider.agenerate(messages),
        request_id=str(conversation_id),
        operation_name="LLM generate",
    )

Pass a custom ``is_retryable`` predicate to change which errors are retried,
for example to also retry HTTP 408::

    with_retry(fn, is_retryable=lambda e: is_transient_error(e) or get_http_status(e) == 408)
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from supportbot.config import settings
from supportbot.logging_config import get_logger

logger = get_logger("retry")

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
TRANSIENT_MESSAGE_HINTS = (
    "econnreset",
    "econnrefused",
    "etimedout",
    "timeout",
    "timed out",
    "network",
    "connection reset",
    "connection refused",
    "socket hang up",
)


def get_http_status(error: BaseException) -> Optional[int]:
    """Extract an HTTP status code from common exception shapes, or None."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value

    response = getattr(error, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            value = getattr(response, attr, None)
            if isinstance(value, int):
                return value

    return None


def is_transient_error(error: BaseException) -> bool:
    """Default retry predicate: network errors and HTTP 429/500/502/503/504.

    HTTP 400/401/403/404 and anything unrecognised are not retried.
    """
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True

    status = get_http_status(error)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES

    message = str(error).lower()
    return any(hint in message for hint in TRANSIENT_MESSAGE_HINTS)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: Optional[int] = None,
    base_delay_ms: Optional[int] = None,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    request_id: Optional[str] = None,
    operation_name: str = "API call",
    sleep_func=asyncio.sleep,
) -> T:
    """Run ``fn`` with up to ``max_retries`` retries (``max_retries + 1`` attempts in total).

    Before retry ``i`` (0-based) waits ``base_delay_ms * 2**i`` milliseconds.
    Non-retryable errors and the last failure are logged at ERROR and re-raised.
    """
    max_retries = settings.retry_max_retries if max_retries is None else max_retries
    base_delay_ms = settings.retry_base_delay_ms if base_delay_ms is None else base_delay_ms
    total_attempts = max_retries + 1

    for attempt in range(total_attempts):
        try:
            return await fn()
        except Exception as exc:
            retryable = is_retryable(exc)
            is_last = attempt == max_retries

            if is_last or not retryable:
                logger.error(
                    f"{operation_name} failed permanently after {attempt + 1} attempt(s)",
                    extra={
                        "context": {
                            "request_id": request_id,
                            "attempt": attempt + 1,
                            "total_attempts": total_attempts,
                            "retryable": retryable,
                            "http_status": get_http_status(exc),
                            "error": str(exc),
                        }
                    },
                )
                raise

            delay_ms = base_delay_ms * (2**attempt)
            logger.warning(
                f"{operation_name} failed (attempt {attempt + 1}/{total_attempts}), retrying in {delay_ms} ms",
                extra={
                    "context": {
                        "request_id": request_id,
                        "attempt": attempt + 1,
                        "total_attempts": total_attempts,
                        "retry_in_ms": delay_ms,
                        "http_status": get_http_status(exc),
                        "error": str(exc),
                    }
                },
            )
            await sleep_func(delay_ms / 1000)

    raise RuntimeError("unreachable")  # pragma: no cover
