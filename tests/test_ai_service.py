import asyncio
from unittest.mock import AsyncMock, Mock, patch

import httpx

from supportbot.schemas import ContextMessage, ConversationContext
from supportbot.services.ai_service import (
    FALLBACK_RESPONSE,
    AIResponseGenerator,
    FailureType,
    classify_failure,
    is_retryable_llm_error,
)
from supportbot.services.llm import LLMError, LLMResponse
from supportbot.services.personality import PersonalityPolicy


def _ctx(**overrides):
    values = {
        "conversation_id": "conv-1",
        "user_id": "user-1",
        "client_id": "acme",
        "messages": [
            ContextMessage(role="USER", content="Hi"),
            ContextMessage(role="ASSISTANT", content="Hello! How can I help?"),
            ContextMessage(role="USER", content="What are your hours?"),
        ],
        "system_prompt": "You are the Acme assistant.",
        "handoff_message": "A human will reply.",
        "token_usage_limit": 100000,
    }
    values.update(overrides)
    return ConversationContext(**values)


def _generator(provider, **kwargs):
    return AIResponseGenerator(provider=provider, max_retries=2, base_delay_ms=1, sleep_func=AsyncMock(), **kwargs)


class TestClassifyFailure:
    def test_auth(self):
        assert classify_failure(LLMError(401)) == FailureType.AUTH
        assert classify_failure(LLMError(403)) == FailureType.AUTH

    def test_rate_limit(self):
        assert classify_failure(LLMError(429)) == FailureType.RATE_LIMIT

    def test_server(self):
        assert classify_failure(LLMError(503)) == FailureType.SERVER

    def test_bad_request(self):
        assert classify_failure(LLMError(400)) == FailureType.BAD_REQUEST

    def test_timeout(self):
        assert classify_failure(httpx.ReadTimeout("slow")) == FailureType.TIMEOUT

    def test_network(self):
        assert classify_failure(httpx.ConnectError("refused")) == FailureType.NETWORK

    def test_unknown(self):
        assert classify_failure(ValueError("weird")) == FailureType.UNKNOWN

    def test_retryable(self):
        assert is_retryable_llm_error(LLMError(503)) is True
        assert is_retryable_llm_error(LLMError(401)) is False


class TestBuildMessages:
    def test_system_then_history(self):
        messages = _generator(Mock()).build_messages(_ctx())

        assert messages[0] == {"role": "system", "content": "You are the Acme assistant."}
        assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
        assert messages[-1]["content"] == "What are your hours?"

    def test_includes_user_name_and_addendum(self):
        messages = _generator(Mock()).build_messages(_ctx(user_name="Ana"), "Tone: warm.")

        assert '"Ana"' in messages[0]["content"]
        assert messages[0]["content"].endswith("Tone: warm.")

    def test_summary_as_second_system_message(self):
        messages = _generator(Mock()).build_messages(_ctx(summary="Asked about refunds"))

        assert messages[1]["role"] == "system"
        assert "Asked about refunds" in messages[1]["content"]


class TestGenerate:
    def test_returns_model_reply(self):
        provider = Mock()
        provider.agenerate = AsyncMock(
            return_value=LLMResponse(content=" We open at 9. ", model="gpt-4o-mini", usage={"total_tokens": 42})
        )

        result = asyncio.run(_generator(provider).generate(_ctx()))

        assert result.response == "We open at 9."
        assert result.tokens_used == 42
        assert result.failed is False

    def test_retries_transient_then_succeeds(self):
        provider = Mock()
        provider.agenerate = AsyncMock(
            side_effect=[LLMError(503), LLMResponse(content="ok", model="m", usage={"total_tokens": 5})]
        )

        result = asyncio.run(_generator(provider).generate(_ctx()))

        assert result.response == "ok"
        assert provider.agenerate.await_count == 2

    def test_fallback_after_exhaustion(self):
        provider = Mock()
        provider.agenerate = AsyncMock(side_effect=LLMError(503))

        result = asyncio.run(_generator(provider).generate(_ctx()))

        assert result.response == FALLBACK_RESPONSE
        assert result.failed is True
        assert provider.agenerate.await_count == 3

    @patch("supportbot.services.ai_service.alert_error")
    def test_auth_failure_not_retried_and_alerts(self, mock_alert):
        provider = Mock()
        provider.agenerate = AsyncMock(side_effect=LLMError(401, "invalid api key"))

        result = asyncio.run(_generator(provider).generate(_ctx()))

        assert result.response == FALLBACK_RESPONSE
        assert provider.agenerate.await_count == 1
        mock_alert.assert_awaited_once()

    def test_empty_content_falls_back(self):
        provider = Mock()
        provider.agenerate = AsyncMock(return_value=LLMResponse(content="   ", model="m", usage=None))

        result = asyncio.run(_generator(provider).generate(_ctx()))

        assert result.response == FALLBACK_RESPONSE
        assert result.failed is True

    def test_personality_overrides_temperature(self):
        provider = Mock()
        provider.agenerate = AsyncMock(return_value=LLMResponse(content="ok", model="m"))
        ctx = _ctx(messages=[ContextMessage(role="USER", content="I think my password was stolen")])

        result = asyncio.run(_generator(provider, personality=PersonalityPolicy()).generate(ctx))

        assert result.mode == "security"
        kwargs = provider.agenerate.await_args.kwargs
        assert kwargs["temperature"] == 0.4
        assert kwargs["max_tokens"] == 300
        system_prompt = provider.agenerate.await_args.args[0][0]["content"]
        assert "risk-aware" in system_prompt
