"""Per-tenant cost caps (daily and monthly) for model calls.

Pricing is an average blended rate for a small chat model; the guard is a
soft business control, so every persistence failure fails open.
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from supportbot.config import settings
from supportbot.logging_config import get_logger
from supportbot.models import ClientConfig
from supportbot.services.usage_period import date_key, month_key

logger = get_logger("cost_guard")

DAILY_LIMIT_REASON = "Daily cost limit reached"
MONTHLY_LIMIT_REASON = "Monthly cost limit reached"

DAILY_LIMIT_MESSAGE = (
    "Our automated assistant has reached its daily usage limit. "
    "Please try again tomorrow or contact us directly for immediate assistance."
)
MONTHLY_LIMIT_MESSAGE = (
    "Our automated assistant has reached its monthly usage limit. "
    "Please contact us directly for assistance."
)


@dataclass
class CostEstimate:
    estimated_tokens: int
    estimated_cost: float
    model: str


@dataclass
class CostGuardResult:
    allowed: bool
    reason: Optional[str] = None
    current_daily_cost: Optional[float] = None
    daily_cost_cap: Optional[float] = None
    current_monthly_cost: Optional[float] = None
    monthly_cost_cap: Optional[float] = None
    estimated_cost: Optional[float] = None


def estimate_context_tokens(contents: Iterable[str]) -> int:
    """Roughly 4 characters per token plus a fixed system prompt overhead."""
    total_chars = sum(len(content or "") for content in contents)
    return math.ceil(total_chars / 4) + settings.context_token_overhead


def estimate_cost(context_tokens: int, expected_output_tokens: Optional[int] = None) -> CostEstimate:
    if expected_output_tokens is None:
        expected_output_tokens = settings.expected_output_tokens
    total_tokens = context_tokens + expected_output_tokens
    return CostEstimate(
        estimated_tokens=total_tokens,
        estimated_cost=total_tokens * settings.cost_per_token,
        model=settings.llm_model,
    )


def tokens_to_cost(tokens: int) -> float:
    return max(tokens, 0) * settings.cost_per_token


def _effective_costs(config: ClientConfig, today: Optional[date]) -> tuple[float, float]:
    """Daily and monthly cost after applying any reset that is due."""
    daily_cost = config.daily_cost_usage or 0.0
    monthly_cost = config.monthly_cost_usage or 0.0
    last_reset = config.last_cost_reset_date

    if last_reset != date_key(today):
        daily_cost = 0.0
        last_month = last_reset[:7] if last_reset else None
        if last_month != month_key(today):
            monthly_cost = 0.0

    return daily_cost, monthly_cost


def check_cost_guard(
    db: Session,
    client_id: str,
    estimated_cost: float,
    today: Optional[date] = None,
) -> CostGuardResult:
    """Reject the call if the estimate would push daily or monthly cost over its cap.

    The daily cap is checked first.
    """
    try:
        config = db.query(ClientConfig).filter(ClientConfig.client_id == client_id).first()
        if not config:
            logger.warning(f"Client config not found for cost guard: {client_id}")
            return CostGuardResult(allowed=True)

        daily_cost, monthly_cost = _effective_costs(config, today)

        if config.daily_cost_cap and daily_cost + estimated_cost > config.daily_cost_cap:
            logger.warning(
                "Daily cost cap would be exceeded",
                extra={
                    "context": {
                        "client_id": client_id,
                        "daily_cost": daily_cost,
                        "daily_cost_cap": config.daily_cost_cap,
                        "estimated_cost": estimated_cost,
                    }
                },
            )
            return CostGuardResult(
                allowed=False,
                reason=DAILY_LIMIT_REASON,
                current_daily_cost=daily_cost,
                daily_cost_cap=config.daily_cost_cap,
                estimated_cost=estimated_cost,
            )

        if config.monthly_cost_cap and monthly_cost + estimated_cost > config.monthly_cost_cap:
            logger.warning(
                "Monthly cost cap would be exceeded",
                extra={
                    "context": {
                        "client_id": client_id,
                        "monthly_cost": monthly_cost,
                        "monthly_cost_cap": config.monthly_cost_cap,
                        "estimated_cost": estimated_cost,
                    }
                },
            )
            return CostGuardResult(
                allowed=False,
                reason=MONTHLY_LIMIT_REASON,
                current_monthly_cost=monthly_cost,
                monthly_cost_cap=config.monthly_cost_cap,
                estimated_cost=estimated_cost,
            )

        return CostGuardResult(
            allowed=True,
            current_daily_cost=daily_cost,
            daily_cost_cap=config.daily_cost_cap,
            current_monthly_cost=monthly_cost,
            monthly_cost_cap=config.monthly_cost_cap,
            estimated_cost=estimated_cost,
        )
    except Exception as e:
        logger.error(f"Cost guard check failed, allowing request: {e}", extra={"context": {"client_id": client_id}})
        return CostGuardResult(allowed=True)


def increment_cost_usage(
    db: Session,
    client_id: str,
    actual_cost: float,
    today: Optional[date] = None,
) -> None:
    """Add the actual cost of a completed call. Never raises."""
    try:
        config = db.query(ClientConfig).filter(ClientConfig.client_id == client_id).first()
        if not config:
            logger.warning(f"Client config not found, cannot increment cost: {client_id}")
            return

        # Usage may be stale since the check; reapply the reset.
        daily_cost, monthly_cost = _effective_costs(config, today)

        config.daily_cost_usage = daily_cost + actual_cost
        config.monthly_cost_usage = monthly_cost + actual_cost
        config.last_cost_reset_date = date_key(today)
        db.commit()

        logger.info(
            "Cost usage incremented",
            extra={
                "context": {
                    "client_id": client_id,
                    "actual_cost": actual_cost,
                    "daily_cost": config.daily_cost_usage,
                    "monthly_cost": config.monthly_cost_usage,
                }
            },
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to increment cost usage: {e}", extra={"context": {"client_id": client_id}})


def cost_limit_message(reason: Optional[str]) -> str:
    if reason and "Daily" in reason:
        return DAILY_LIMIT_MESSAGE
    return MONTHLY_LIMIT_MESSAGE
