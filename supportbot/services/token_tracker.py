from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from supportbot.logging_config import get_logger
from supportbot.models import ClientConfig
from supportbot.services.usage_period import month_key

logger = get_logger("token_tracker")


@dataclass
class TokenCapStatus:
    exceeded: bool
    current_usage: int
    cap: Optional[int]
    remaining: Optional[int]


UNKNOWN_STATUS = TokenCapStatus(exceeded=False, current_usage=0, cap=None, remaining=None)


def _status(usage: int, cap: Optional[int]) -> TokenCapStatus:
    if not cap:
        return TokenCapStatus(exceeded=False, current_usage=usage, cap=None, remaining=None)
    return TokenCapStatus(
        exceeded=usage >= cap,
        current_usage=usage,
        cap=cap,
        remaining=max(0, cap - usage),
    )


def _get_config(db: Session, client_id: str) -> Optional[ClientConfig]:
    return db.query(ClientConfig).filter(ClientConfig.client_id == client_id).first()


def check_token_cap(db: Session, client_id: str, today: Optional[date] = None) -> TokenCapStatus:
    """Current monthly token status; persists the month reset when one is due."""
    try:
        config = _get_config(db, client_id)
        if not config:
            logger.warning(f"Client config not found for token cap: {client_id}")
            return UNKNOWN_STATUS

        current_month = month_key(today)
        usage = config.monthly_token_usage or 0

        if config.last_reset_month != current_month:
            logger.info(f"Resetting token usage for client {client_id} (new month: {current_month})")
            config.monthly_token_usage = 0
            config.last_reset_month = current_month
            db.commit()
            usage = 0

        status = _status(usage, config.monthly_token_cap)
        if status.exceeded:
            logger.warning(f"Client {client_id} exceeded monthly token cap: {usage}/{status.cap}")
        return status
    except Exception as e:
        db.rollback()
        logger.error(f"Token cap check failed, allowing request: {e}", extra={"context": {"client_id": client_id}})
        return UNKNOWN_STATUS


def increment_token_usage(
    db: Session,
    client_id: str,
    tokens: int,
    today: Optional[date] = None,
) -> TokenCapStatus:
    """Add tokens from a completed call. Never raises."""
    try:
        if tokens < 0:
            logger.warning(f"Negative token increment ({tokens}) for client {client_id}, using 0")
            tokens = 0

        config = _get_config(db, client_id)
        if not config:
            logger.warning(f"Client config not found, cannot increment tokens: {client_id}")
            return UNKNOWN_STATUS

        current_month = month_key(today)
        usage = config.monthly_token_usage or 0
        if config.last_reset_month != current_month:
            usage = 0

        new_usage = usage + tokens
        config.monthly_token_usage = new_usage
        config.last_reset_month = current_month
        db.commit()

        logger.info(f"Token usage for client {client_id}: +{tokens} (total: {new_usage})")

        status = _status(new_usage, config.monthly_token_cap)
        if status.exceeded:
            logger.warning(f"Client {client_id} now exceeds monthly token cap: {new_usage}/{status.cap}")
        return status
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to increment token usage: {e}", extra={"context": {"client_id": client_id}})
        return UNKNOWN_STATUS


def get_token_usage(db: Session, client_id: str, today: Optional[date] = None) -> TokenCapStatus:
    """Read-only view; a due month reset is reported as zero usage without writing."""
    try:
        config = _get_config(db, client_id)
        if not config:
            return UNKNOWN_STATUS
        usage = config.monthly_token_usage or 0
        if config.last_reset_month != month_key(today):
            usage = 0
        return _status(usage, config.monthly_token_cap)
    except Exception as e:
        logger.error(f"Failed to read token usage: {e}", extra={"context": {"client_id": client_id}})
        return UNKNOWN_STATUS
