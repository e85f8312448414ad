"""Structured JSON logging.

Every record is one JSON object on stdout. Extra fields travel in
``extra={"context": {...}}``; credentials in the context are redacted and
customer phone numbers are masked before the record is written.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

REDACTED = "[redacted]"

SECRET_KEYS = frozenset(
    {"api_key", "auth_token", "authorization", "openai_api_key", "password", "token", "twilio_auth_token"}
)
PHONE_KEYS = frozenset({"channel_user_id", "from", "phone", "to"})


def mask_phone(value: str) -> str:
    """Keep the country prefix and last four digits: ``+234***5678``."""
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}***{value[-4:]}"


def scrub_context(context: dict[str, Any]) -> dict[str, Any]:
    cleaned = {}
    for key, value in context.items():
        lowered = key.lower()
        if lowered in SECRET_KEYS and value:
            cleaned[key] = REDACTED
        elif lowered in PHONE_KEYS and isinstance(value, str):
            cleaned[key] = mask_phone(value)
        else:
            cleaned[key] = value
    return cleaned


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = scrub_context(context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send all logging through one stdout JSON handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    # Per-request noise from the HTTP clients and the access log
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"supportbot.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Carries per-message fields (channel, user, conversation) on every record.

    A call may add fields with ``context={...}``; they override the fixed ones.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = {**self.extra, **(kwargs.pop("context", None) or {})}
        if context:
            kwargs["extra"] = {"context": context}
        return msg, kwargs
