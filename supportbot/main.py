import asyncio
import os

from fastapi import FastAPI

from supportbot.config import settings
from supportbot.logging_config import get_logger, setup_logging
from supportbot.routers import admin, webhook
from supportbot.services.message_router import MessageRouter
from supportbot.services.worker import MessageWorker

setup_logging(settings.log_level)

app = FastAPI(
    title="Support Bot API",
    description="Multi-tenant WhatsApp customer support pipeline",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(admin.router)

worker_logger = get_logger("worker")
_worker_task: asyncio.Task | None = None


def _is_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.worker_enabled


def build_worker() -> MessageWorker:
    router = MessageRouter()
    router.register_adapter(webhook.get_whatsapp_adapter())
    return MessageWorker(router)


@app.on_event("startup")
async def start_worker() -> None:
    global _worker_task
    if not _is_worker_enabled():
        return
    if _worker_task is None or _worker_task.done():
        _worker_task = asyncio.create_task(build_worker().run_forever())
        worker_logger.info(
            "Message worker started",
            extra={
                "context": {
                    "concurrency": settings.worker_concurrency,
                    "rate_limit_per_second": settings.worker_rate_limit_per_second,
                }
            },
        )


@app.on_event("shutdown")
async def stop_worker() -> None:
    global _worker_task
    if _worker_task is None:
        return
    _worker_task.cancel()
    try:
        await _worker_task
    except asyncio.CancelledError:
        pass
    _worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok", "environment": settings.environment}
