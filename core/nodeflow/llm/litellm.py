"""LiteLLM-backed provider.

LiteLLM gives a single ``completion`` call over Gemini, OpenAI, Anthropic and
others; the model string carries the provider prefix (``gemini/gemini-2.0-flash``).
"""

import logging
from typing import Any

import litellm

from nodeflow.config import DEFAULT_MODEL
from nodeflow.llm.provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class LiteLLMProvider(LLMProvider):
    """
    LLM provider that routes every call through ``litellm.completion``.

    Example:
        llm = LiteLLMProvider(model="gemini/gemini-2.0-flash", api_key=key)
        response = llm.complete([{"role": "user", "content": "hello"}])
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        api_base: str | None = None,
        **extra_kwargs: Any,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.extra_kwargs = extra_kwargs

    def complete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        full_messages = list(messages)
        if system:
            full_messages.insert(0, {"role": "system", "content": system})

        kwargs: dict[str, Any] = {
            "model": model or self.model,
            "messages": full_messages,
            "max_tokens": max_tokens,
            **self.extra_kwargs,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        logger.debug(f"LLM request to {kwargs['model']} with {len(full_messages)} messages")
        response = litellm.completion(**kwargs)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or kwargs["model"],
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "",
            raw_response=response,
        )
