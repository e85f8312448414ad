"""Model reply generation with retry, failure classification and a safe fallback."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from supportbot.config import settings
from supportbot.logging_config import get_logger
from supportbot.schemas import ConversationContext
from supportbot.services.alert_service import alert_error
from supportbot.services.llm import LLMProvider, OpenAIProvider
from supportbot.services.personality import PersonalityPolicy
from supportbot.services.retry import get_http_status, with_retry

logger = get_logger("ai_service")

FALLBACK_RESPONSE = (
    "I'm sorry, I'm experiencing a temporary issue. "
    "Please try again in a moment, or type 'agent' to speak with a human."
)


class FailureType(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    TIMEOUT = "timeout"
    NETWORK = "network"
    BAD_REQUEST = "bad_request"
    UNKNOWN = "unknown"


RETRYABLE_FAILURES = {FailureType.RATE_LIMIT, FailureType.SERVER, FailureType.TIMEOUT, FailureType.NETWORK}

FAILURE_HINTS = {
    FailureType.AUTH: "check the LLM API key and account access",
    FailureType.RATE_LIMIT: "provider rate limit hit; consider lowering worker concurrency",
    FailureType.SERVER: "provider-side error; usually transient",
    FailureType.TIMEOUT: "request timed out; check provider status or raise llm_timeout_seconds",
    FailureType.NETWORK: "network error reaching the provider",
    FailureType.BAD_REQUEST: "request rejected; check model name and message payload",
    FailureType.UNKNOWN: "unexpected error",
}


def classify_failure(error: BaseException) -> FailureType:
    if isinstance(error, httpx.TimeoutException):
        return FailureType.TIMEOUT
    if isinstance(error, httpx.NetworkError):
        return FailureType.NETWORK

    status = get_http_status(error)
    if status in (401, 403):
        return FailureType.AUTH
    if status == 429:
        return FailureType.RATE_LIMIT
    if status is not None and status >= 500:
        return FailureType.SERVER
    if status in (400, 404, 422):
        return FailureType.BAD_REQUEST

    message = str(error).lower()
    if "timeout" in message or "timed out" in message:
        return FailureType.TIMEOUT
    if "network" in message or "connection" in message or "econn" in message:
        return FailureType.NETWORK
    return FailureType.UNKNOWN


def is_retryable_llm_error(error: BaseException) -> bool:
    return classify_failure(error) in RETRYABLE_FAILURES


@dataclass
class GenerationResult:
    response: str
    tokens_used: Optional[int] = None
    mode: Optional[str] = None
    failed: bool = False


def get_llm_provider() -> LLMProvider:
    return OpenAIProvider(
        api_key=settings.openai_api_key or "",
        default_model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_seconds=settings.llm_timeout_seconds,
    )


class AIResponseGenerator:
    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        personality: Optional[PersonalityPolicy] = None,
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        sleep_func=None,
    ):
        self._provider = provider
        self.personality = personality
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.sleep_func = sleep_func

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = get_llm_provider()
        return self._provider

    def build_messages(self, ctx: ConversationContext, addendum: Optional[str] = None) -> list[dict]:
        system_prompt = ctx.system_prompt
        if ctx.user_name:
            system_prompt += f'\n\nThe customer\'s name is "{ctx.user_name}". Use their name naturally in conversation.'
        if addendum:
            system_prompt += f"\n\n{addendum}"

        messages = [{"role": "system", "content": system_prompt}]
        if ctx.summary:
            messages.append({"role": "system", "content": f"Previous conversation summary: {ctx.summary}"})

        # History already ends with the persisted user turn.
        for msg in ctx.messages:
            messages.append({"role": "user" if msg.role == "USER" else "assistant", "content": msg.content})
        return messages

    def _latest_user_text(self, ctx: ConversationContext) -> str:
        for msg in reversed(ctx.messages):
            if msg.role == "USER":
                return msg.content
        return ""

    async def generate(self, ctx: ConversationContext) -> GenerationResult:
        """Produce a reply for the conversation. Never raises."""
        start = time.monotonic()
        mode = self.personality.select(self._latest_user_text(ctx)) if self.personality else None
        temperature = mode.temperature if mode else settings.llm_temperature
        max_tokens = mode.max_tokens if mode else settings.llm_max_tokens

        try:
            messages = self.build_messages(ctx, mode.prompt_addendum() if mode else None)
            retry_kwargs = {}
            if self.sleep_func is not None:
                retry_kwargs["sleep_func"] = self.sleep_func

            response = await with_retry(
                lambda: self.provider.agenerate(messages, temperature=temperature, max_tokens=max_tokens),
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
                is_retryable=is_retryable_llm_error,
                request_id=ctx.conversation_id,
                operation_name="LLM generate",
                **retry_kwargs,
            )
        except Exception as exc:
            failure = classify_failure(exc)
            logger.error(
                f"AI generation failed ({failure.value}): {FAILURE_HINTS[failure]}",
                extra={
                    "context": {
                        "conversation_id": ctx.conversation_id,
                        "failure_type": failure.value,
                        "http_status": get_http_status(exc),
                        "error": str(exc),
                    }
                },
            )
            if failure == FailureType.AUTH:
                await alert_error("LLM authentication failed", {"hint": FAILURE_HINTS[failure]})
            return GenerationResult(response=FALLBACK_RESPONSE, mode=mode.name if mode else None, failed=True)

        text = (response.content or "").strip()
        if not text:
            logger.warning("LLM returned empty content", extra={"context": {"conversation_id": ctx.conversation_id}})
            return GenerationResult(
                response=FALLBACK_RESPONSE,
                tokens_used=response.total_tokens,
                mode=mode.name if mode else None,
                failed=True,
            )

        logger.info(
            "AI response generated",
            extra={
                "context": {
                    "conversation_id": ctx.conversation_id,
                    "tokens_used": response.total_tokens,
                    "latency_ms": round((time.monotonic() - start) * 1000, 2),
                    "model": response.model,
                    "mode": mode.name if mode else None,
                }
            },
        )
        return GenerationResult(response=text, tokens_used=response.total_tokens, mode=mode.name if mode else None)
