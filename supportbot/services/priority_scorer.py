"""Message priority scoring.

Priority levels (lower number = more urgent):
1 = critical (escalations, VIP complaints)
2 = high (complaints, urgent support)
3 = medium (support, sales)
4 = normal (FAQ, general)
5 = low (feedback)
"""

import math
from dataclasses import dataclass

from supportbot.logging_config import get_logger
from supportbot.services.intent_classifier import Intent

logger = get_logger("priority_scorer")

INTENT_PRIORITY = {
    Intent.ESCALATION: 1,
    Intent.COMPLAINT: 2,
    Intent.SUPPORT: 3,
    Intent.SALES: 3,
    Intent.FAQ: 4,
    Intent.GENERAL: 4,
    Intent.FEEDBACK: 5,
}

QUEUE_TYPE_BY_INTENT = {
    Intent.SUPPORT: "SUPPORT",
    Intent.SALES: "SALES",
    Intent.COMPLAINT: "COMPLAINT",
    Intent.ESCALATION: "COMPLAINT",
    Intent.FAQ: "TECHNICAL",
}


@dataclass(frozen=True)
class PriorityScore:
    priority: int
    reason: str


def compute_message_priority(
    intent: Intent,
    confidence: float,
    is_vip: bool = False,
    message_count: int = 1,
) -> PriorityScore:
    priority = INTENT_PRIORITY[intent]
    reasons = [f"Base priority for {intent.value}"]

    if is_vip and priority > 1:
        priority -= 1
        reasons.append("VIP user boost")

    if intent in (Intent.ESCALATION, Intent.COMPLAINT) and confidence > 0.85:
        priority = max(1, priority - 1)
        reasons.append("high confidence boost")

    # Several messages without resolution; never promotes past 2
    if message_count > 3 and priority > 2:
        priority = max(2, priority - 1)
        reasons.append("conversation persistence boost")

    priority = max(1, min(5, priority))
    reason = ", ".join(reasons)

    logger.debug(
        "Computed message priority",
        extra={
            "context": {
                "intent": intent.value,
                "confidence": confidence,
                "is_vip": is_vip,
                "message_count": message_count,
                "priority": priority,
                "reason": reason,
            }
        },
    )
    return PriorityScore(priority=priority, reason=reason)


def should_fast_track(intent: Intent, is_vip: bool) -> bool:
    return intent == Intent.ESCALATION or (intent == Intent.COMPLAINT and is_vip)


def escalation_queue_type(intent: Intent) -> str:
    return QUEUE_TYPE_BY_INTENT.get(intent, "GENERAL")


def estimate_queue_position(priority: int, queue_size: int) -> int:
    """Rough position estimate: priority 1 jumps to the front, priority 5 waits behind most."""
    priority_factor = (6 - priority) / 5
    return math.ceil(queue_size * (1 - priority_factor))
