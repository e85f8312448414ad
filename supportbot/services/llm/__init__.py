from supportbot.services.llm.base import LLMError, LLMProvider, LLMResponse
from supportbot.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]
