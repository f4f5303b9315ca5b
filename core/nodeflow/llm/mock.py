"""Deterministic LLM provider for tests and offline runs."""

from typing import Any

from nodeflow.llm.provider import LLMProvider, LLMResponse


class MockLLMProvider(LLMProvider):
    """
    Returns canned responses without any network access.

    With no scripted responses it echoes the last user message's text, which
    keeps workflow tests readable: ``"hello"`` in, ``"echo: hello"`` out.
    """

    def __init__(self, responses: list[str] | None = None, model: str = "mock-model"):
        self.model = model
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    def complete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> LLMResponse:
        self.calls.append(
            {"messages": messages, "system": system, "model": model or self.model}
        )
        if self.responses:
            content = self.responses.pop(0)
        else:
            content = f"echo: {_last_user_text(messages)}"
        return LLMResponse(
            content=content,
            model=model or self.model,
            input_tokens=10,
            output_tokens=len(content.split()),
            stop_reason="stop",
        )


def _last_user_text(messages: list[dict[str, Any]]) -> str:
    for message in reversed(messages):
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, str):
            return content
        for part in content or []:
            if part.get("type") == "text":
                return part.get("text", "")
    return ""
