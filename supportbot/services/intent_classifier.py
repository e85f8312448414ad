import re
from dataclasses import dataclass
from enum import Enum

from supportbot.logging_config import get_logger

logger = get_logger("intent_classifier")


class Intent(str, Enum):
    ESCALATION = "ESCALATION"
    COMPLAINT = "COMPLAINT"
    SUPPORT = "SUPPORT"
    SALES = "SALES"
    FAQ = "FAQ"
    FEEDBACK = "FEEDBACK"
    GENERAL = "GENERAL"


@dataclass(frozen=True)
class IntentClassification:
    intent: Intent
    confidence: float


ESCALATION_PATTERNS = (
    re.compile(r"\b(urgent|emergency|immediately|asap|critical|help me now)\b", re.IGNORECASE),
    re.compile(
        r"\b(talk|speak|chat) (to|with) (a|an|the|your) (manager|supervisor|boss|real person)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(not (satisfied|happy)|unsatisfied|unhappy)\b", re.IGNORECASE),
)

COMPLAINT_PATTERNS = (
    re.compile(r"\b(complaint|complain|issue|problem|broken|not working|doesn't work)\b", re.IGNORECASE),
    re.compile(r"\b(terrible|awful|horrible|worst|bad (service|experience))\b", re.IGNORECASE),
    re.compile(r"\b(disappointed|frustrat(ed|ing)|annoyed|angry)\b", re.IGNORECASE),
)

# Scored categories, in tie-break order.
SCORED_PATTERNS: dict[Intent, tuple[re.Pattern, ...]] = {
    Intent.SUPPORT: (
        re.compile(r"\b(help|support|assist|trouble|can't|cannot|unable to)\b", re.IGNORECASE),
        re.compile(r"\b(how (do|can) i|how to)\b", re.IGNORECASE),
        re.compile(r"\b(not sure|confused|don't understand)\b", re.IGNORECASE),
        re.compile(r"\b(fix|solve|resolve)\b", re.IGNORECASE),
    ),
    Intent.SALES: (
        re.compile(r"\b(buy|purchase|order|price|cost|pay|payment)\b", re.IGNORECASE),
        re.compile(r"\b(discount|promo|offer|deal)\b", re.IGNORECASE),
        re.compile(r"\b(available|in stock|shipping)\b", re.IGNORECASE),
        re.compile(r"\b(product|service|package)\b", re.IGNORECASE),
    ),
    Intent.FAQ: (
        re.compile(r"\b(what is|what are|tell me about|explain)\b", re.IGNORECASE),
        re.compile(r"\b(hours|open|closed|location|address)\b", re.IGNORECASE),
        re.compile(r"\b(when|where|who|why)\b", re.IGNORECASE),
    ),
    Intent.FEEDBACK: (
        re.compile(r"\b(feedback|suggestion|recommend|improve)\b", re.IGNORECASE),
        re.compile(r"\b(like|love|great|excellent|amazing|good)\b", re.IGNORECASE),
        re.compile(r"\b(thank|thanks|appreciate)\b", re.IGNORECASE),
    ),
}


def _matches_any(text: str, patterns: tuple[re.Pattern, ...]) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def classify_intent(text: str) -> IntentClassification:
    """Classify message text with ordered regex rules.

    Escalation and complaint phrases short-circuit before keyword scoring so a
    higher keyword count elsewhere can never shadow them.
    """
    normalized = (text or "").strip().lower()

    if _matches_any(normalized, ESCALATION_PATTERNS):
        logger.debug("Intent classified as ESCALATION", extra={"context": {"text": text}})
        return IntentClassification(Intent.ESCALATION, 0.9)

    if _matches_any(normalized, COMPLAINT_PATTERNS):
        logger.debug("Intent classified as COMPLAINT", extra={"context": {"text": text}})
        return IntentClassification(Intent.COMPLAINT, 0.85)

    top_intent = Intent.GENERAL
    max_score = 0
    for intent, patterns in SCORED_PATTERNS.items():
        score = sum(1 for pattern in patterns if pattern.search(normalized))
        if score > max_score:
            max_score = score
            top_intent = intent

    confidence = min(0.75 + 0.1 * max_score, 0.95) if max_score > 0 else 0.5
    confidence = round(confidence, 2)

    logger.debug(
        "Intent classification complete",
        extra={"context": {"intent": top_intent.value, "confidence": confidence, "score": max_score}},
    )
    return IntentClassification(top_intent, confidence)


def should_escalate(intent: Intent, confidence: float) -> bool:
    """High-confidence escalation or complaint goes straight to a human."""
    return intent in (Intent.ESCALATION, Intent.COMPLAINT) and confidence > 0.8


def requires_human_attention(intent: Intent, message_count: int) -> bool:
    if intent in (Intent.ESCALATION, Intent.COMPLAINT):
        return True
    # Support issue still open after several messages
    return intent == Intent.SUPPORT and message_count > 3
