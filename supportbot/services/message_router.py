"""Per-message pipeline: dedup, classification, handoff, usage guards, AI reply."""

import re
import time
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.orm import Session

from supportbot.channels.base import ChannelAdapter
from supportbot.config import settings
from supportbot.database import SessionLocal
from supportbot.logging_config import LoggerAdapter, get_logger
from supportbot.schemas import ConversationContext, NormalizedMessage
from supportbot.services.ai_service import FALLBACK_RESPONSE, AIResponseGenerator
from supportbot.services.alert_service import alert_error
from supportbot.services.analytics_service import AnalyticsEvent, record_ai_response, record_analytics, record_handoff
from supportbot.services.conversation_service import (
    count_user_messages,
    is_vip_user,
    load_context,
    resolve_conversation,
    resolve_user,
    save_ai_response,
    save_user_message,
    set_handoff_status,
    update_message_classification,
)
from supportbot.services.cost_guard import (
    check_cost_guard,
    cost_limit_message,
    estimate_context_tokens,
    estimate_cost,
    increment_cost_usage,
    tokens_to_cost,
)
from supportbot.services.escalation_service import create_escalation, has_active_escalation
from supportbot.services.intent_classifier import classify_intent, requires_human_attention, should_escalate
from supportbot.services.personality import PersonalityPolicy
from supportbot.services.priority_scorer import compute_message_priority, escalation_queue_type, should_fast_track
from supportbot.services.state_machine import ConversationStatus
from supportbot.services.token_tracker import increment_token_usage

logger = get_logger("message_router")

TOKEN_LIMIT_MESSAGE = (
    "Our automated assistant is temporarily unavailable. "
    "Please contact us directly for assistance."
)


class RoutingOutcome(str, Enum):
    DUPLICATE = "duplicate"
    HANDOFF_SILENT = "handoff_silent"
    HANDOFF = "handoff"
    COST_LIMITED = "cost_limited"
    TOKEN_LIMITED = "token_limited"
    AI_REPLY = "ai_reply"
    NO_ADAPTER = "no_adapter"
    FAILED = "failed"


def build_handoff_pattern(keywords: list[str]) -> Optional[re.Pattern]:
    """Whole-word, case-insensitive match on any handoff keyword."""
    words = [re.escape(word.strip()) for word in keywords if word and word.strip()]
    if not words:
        return None
    return re.compile(r"\b(" + "|".join(words) + r")\b", re.IGNORECASE)


class MessageRouter:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        ai_generator: Optional[AIResponseGenerator] = None,
        client_id: Optional[str] = None,
        handoff_keywords: Optional[list[str]] = None,
    ):
        self.session_factory = session_factory
        self.ai_generator = ai_generator or AIResponseGenerator(personality=PersonalityPolicy())
        self.client_id = client_id or settings.default_client_id
        self.handoff_pattern = build_handoff_pattern(
            settings.handoff_keywords if handoff_keywords is None else handoff_keywords
        )
        self.adapters: dict[str, ChannelAdapter] = {}

    def register_adapter(self, adapter: ChannelAdapter) -> None:
        self.adapters[adapter.channel_type] = adapter
        logger.info("Channel adapter registered", extra={"context": {"channel": adapter.channel_type}})

    def is_handoff_keyword(self, text: str) -> bool:
        return bool(self.handoff_pattern and self.handoff_pattern.search(text or ""))

    async def process_message(self, msg: NormalizedMessage) -> RoutingOutcome:
        """Run one inbound message through the pipeline. Never raises."""
        start = time.monotonic()
        log = LoggerAdapter(
            logger,
            {
                "channel": msg.channel_type,
                "channel_user_id": msg.channel_user_id,
                "channel_message_id": msg.channel_message_id,
            },
        )
        db = self.session_factory()
        state = {"saved": False}
        try:
            outcome = await self._process(db, msg, log, state)
            log.info(
                "Message processed",
                context={"outcome": outcome.value, "total_latency_ms": round((time.monotonic() - start) * 1000, 2)},
            )
            return outcome
        except Exception as exc:
            log.error("Message processing failed", context={"error": str(exc)}, exc_info=True)
            try:
                db.rollback()
            except Exception as rollback_exc:
                log.warning("Rollback failed", context={"error": str(rollback_exc)})
            if state["saved"]:
                await self._send_apology(msg, log)
            return RoutingOutcome.FAILED
        finally:
            db.close()

    async def _send_apology(self, msg: NormalizedMessage, log: LoggerAdapter) -> None:
        adapter = self.adapters.get(msg.channel_type)
        if adapter is None:
            return
        try:
            await adapter.send_message(msg.channel_user_id, FALLBACK_RESPONSE)
        except Exception as exc:
            log.error("Failed to send apology", context={"error": str(exc)})

    async def _process(self, db: Session, msg: NormalizedMessage, log: LoggerAdapter, state: dict) -> RoutingOutcome:
        # Identity, conversation and the dedup gate
        user_id = resolve_user(db, msg)
        conversation_id = resolve_conversation(db, user_id, msg.channel_type, self.client_id)
        if not save_user_message(db, conversation_id, msg.text, msg.channel_message_id):
            log.warning("Duplicate message, skipping")
            return RoutingOutcome.DUPLICATE

        state["saved"] = True
        log.extra["conversation_id"] = str(conversation_id)

        ctx = load_context(db, conversation_id, self.client_id)
        classification = classify_intent(msg.text)
        message_count = count_user_messages(db, conversation_id)
        is_vip = is_vip_user(db, user_id)
        score = compute_message_priority(
            classification.intent,
            classification.confidence,
            is_vip=is_vip,
            message_count=message_count,
        )
        update_message_classification(
            db,
            msg.channel_message_id,
            classification.intent.value,
            classification.confidence,
            score.priority,
        )
        record_analytics(
            db,
            AnalyticsEvent(
                conversation_id=conversation_id,
                client_id=self.client_id,
                intent=classification.intent.value,
            ),
        )

        if ctx.conversation_status == ConversationStatus.HANDOFF.value:
            log.info("Message received in HANDOFF state, saved for agent, no automated reply")
            return RoutingOutcome.HANDOFF_SILENT

        adapter = self.adapters.get(msg.channel_type)
        if adapter is None:
            log.error("No adapter for channel")
            return RoutingOutcome.NO_ADAPTER

        handoff_reason = self._handoff_reason(msg.text, classification, message_count)
        if handoff_reason:
            # A HANDOFF conversation always has an open escalation entry
            queued = await self._queue_escalation(db, conversation_id, classification, is_vip, score, handoff_reason, log)
            set_handoff_status(db, conversation_id)
            if not queued:
                log.info("Escalation already open, handoff message not repeated")
                return RoutingOutcome.HANDOFF_SILENT

            record_handoff(db, conversation_id, handoff_reason)
            save_ai_response(db, conversation_id, ctx.handoff_message)
            await adapter.send_message(msg.channel_user_id, ctx.handoff_message)
            log.info("Conversation escalated to HANDOFF", context={"reason": handoff_reason, "priority": score.priority})
            return RoutingOutcome.HANDOFF

        estimate = estimate_cost(estimate_context_tokens([ctx.system_prompt] + [m.content for m in ctx.messages]))
        guard = check_cost_guard(db, self.client_id, estimate.estimated_cost)
        if not guard.allowed:
            limit_message = cost_limit_message(guard.reason)
            save_ai_response(db, conversation_id, limit_message)
            await adapter.send_message(msg.channel_user_id, limit_message)
            log.warning(
                "Cost guard rejected AI call",
                context={"reason": guard.reason, "estimated_cost": estimate.estimated_cost},
            )
            return RoutingOutcome.COST_LIMITED

        if ctx.monthly_token_usage >= ctx.token_usage_limit:
            save_ai_response(db, conversation_id, TOKEN_LIMIT_MESSAGE)
            await adapter.send_message(msg.channel_user_id, TOKEN_LIMIT_MESSAGE)
            log.warning(
                "Monthly token limit exceeded, AI call skipped",
                context={"monthly_token_usage": ctx.monthly_token_usage, "token_usage_limit": ctx.token_usage_limit},
            )
            return RoutingOutcome.TOKEN_LIMITED

        generation_start = time.monotonic()
        result = await self.ai_generator.generate(ctx)
        response_time_ms = round((time.monotonic() - generation_start) * 1000)
        save_ai_response(db, conversation_id, result.response)

        tokens_used = result.tokens_used or 0
        if tokens_used:
            self._record_usage(db, ctx, tokens_used, log)

        await adapter.send_message(msg.channel_user_id, result.response)

        record_ai_response(db, conversation_id, tokens_used, tokens_to_cost(tokens_used), response_time_ms)
        log.info(
            "AI reply sent",
            context={"tokens_used": tokens_used, "mode": result.mode, "fallback": result.failed},
        )
        return RoutingOutcome.AI_REPLY

    def _handoff_reason(self, text: str, classification, message_count: int) -> Optional[str]:
        if self.is_handoff_keyword(text):
            return "Handoff keyword"
        if should_escalate(classification.intent, classification.confidence):
            return f"{classification.intent.value} detected"
        if requires_human_attention(classification.intent, message_count):
            return f"{classification.intent.value} unresolved after {message_count} messages"
        return None

    def _record_usage(self, db: Session, ctx: ConversationContext, tokens_used: int, log: LoggerAdapter) -> None:
        try:
            increment_token_usage(db, ctx.client_id, tokens_used)
            increment_cost_usage(db, ctx.client_id, tokens_to_cost(tokens_used))
        except Exception as exc:
            log.warning("Failed to update usage", context={"error": str(exc)})

    async def _queue_escalation(
        self,
        db: Session,
        conversation_id,
        classification,
        is_vip: bool,
        score,
        handoff_reason: str,
        log: LoggerAdapter,
    ) -> bool:
        """True when a new entry was queued, False when one was already open."""
        if has_active_escalation(db, conversation_id):
            return False
        try:
            entry = create_escalation(
                db,
                conversation_id,
                queue_type=escalation_queue_type(classification.intent),
                priority=1 if should_fast_track(classification.intent, is_vip) else score.priority,
                reason=f"{handoff_reason}; {score.reason}",
            )
        except Exception as exc:
            db.rollback()
            log.error("Failed to create escalation", context={"error": str(exc)})
            await alert_error("Escalation could not be queued", {"conversation_id": str(conversation_id)})
            raise
        return entry is not None
