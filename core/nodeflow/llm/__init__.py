"""LLM provider abstraction."""

from nodeflow.llm.litellm import LiteLLMProvider
from nodeflow.llm.mock import MockLLMProvider
from nodeflow.llm.provider import LLMProvider, LLMResponse, build_user_content

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "MockLLMProvider",
    "build_user_content",
]
