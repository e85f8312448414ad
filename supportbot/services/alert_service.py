"""Operator alerts sent to a Telegram chat.

Alerts are best-effort: a missing configuration or a Telegram outage is
logged and reported as ``False``, never raised. The same level and message
is sent at most once per ``alert_cooldown_seconds`` so a failure that repeats
on every inbound message pages operators once.
"""

import time
from typing import Optional

import httpx

from supportbot.config import settings
from supportbot.logging_config import get_logger

logger = get_logger("alert_service")

TELEGRAM_API = "https://api.telegram.org"

LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}

_last_sent: dict[tuple[str, str], float] = {}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} *{level}* [{settings.environment}]\n\n{message}"
    if context:
        lines = "\n".join(f"  {key}: {value}" for key, value in context.items())
        text += f"\n\n```\n{lines}\n```"
    return text


def _in_cooldown(key: tuple[str, str], now: float) -> bool:
    sent_at = _last_sent.get(key)
    return sent_at is not None and now - sent_at < settings.alert_cooldown_seconds


async def send_alert(level: str, message: str, context: Optional[dict] = None, *, clock=time.monotonic) -> bool:
    """Post an alert to the operator chat. Returns True only if Telegram accepted it."""
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}")
        return False

    key = (level, message)
    now = clock()
    if _in_cooldown(key, now):
        logger.debug("Alert suppressed during cooldown", extra={"context": {"level": level, "alert": message}})
        return False

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                f"{TELEGRAM_API}/bot{settings.alert_bot_token}/sendMessage",
                json={
                    "chat_id": settings.alert_chat_id,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                },
            )
    except Exception as e:
        logger.error(f"Failed to send alert: {e}")
        return False

    if response.status_code != 200:
        logger.error(f"Telegram rejected alert: HTTP {response.status_code}")
        return False

    _last_sent[key] = now
    return True


async def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert("ERROR", message, context)


async def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert("CRITICAL", message, context)
