"""LLM adapters for the investigation loop.

Provides a base interface and concrete adapters for OpenAI-compatible
chat completion APIs (with function calling) and a deterministic mock
used when no endpoint is configured.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from app.config import get_llm_settings
from llm_synthesis.schema import CompletionMessage, ToolCall

logger = logging.getLogger(__name__)


class LLMTransportError(Exception):
    """Raised when the completion endpoint cannot be reached or errors out."""


class BaseLLMAdapter(ABC):
    """Abstract base for all LLM adapters."""

    is_live: bool = True

    @abstractmethod
    def complete(
        self,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
    ) -> CompletionMessage:
        """Submit a conversation and return the assistant's reply.

        Args:
            messages: OpenAI-style transcript (system, user, assistant, tool).
            tools: Optional function-calling tool definitions.

        Returns:
            The reply, carrying free text and/or tool invocations.

        Raises:
            LLMTransportError: If the endpoint call fails.
        """

    def generate(self, prompt: str, system: Optional[str] = None) -> str:
        """Single-turn convenience wrapper returning the reply text."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return self.complete(messages).content or ""


class OpenAILLMAdapter(BaseLLMAdapter):
    """Adapter for OpenAI-compatible chat completion APIs.

    Works with any endpoint speaking the OpenAI chat completions protocol
    (set ``base_url``), including tool calling.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        max_tokens: int = 4096,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.7,
    ) -> None:
        """Initialise the OpenAI adapter.

        Args:
            model: Model identifier.
            max_tokens: Maximum tokens in the completion.
            api_key: API key for the endpoint.
            base_url: Optional base URL for OpenAI-compatible endpoints.
            temperature: Sampling temperature.
        """
        try:
            import openai  # type: ignore[import-untyped]
        except ImportError as exc:
            raise ImportError(
                "openai package is required for OpenAILLMAdapter. "
                "Install it with: pip install openai"
            ) from exc

        client_kwargs: dict = {"api_key": api_key or ""}
        if base_url:
            client_kwargs["base_url"] = base_url

        self._client = openai.OpenAI(**client_kwargs)
        self._error_type = openai.OpenAIError
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    def complete(
        self,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
    ) -> CompletionMessage:
        request: dict = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "stream": False,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"

        try:
            response = self._client.chat.completions.create(**request)
        except self._error_type as exc:
            raise LLMTransportError(f"Completion request failed: {exc}") from exc

        if not response.choices:
            raise LLMTransportError("Completion response contained no choices.")

        message = response.choices[0].message
        tool_calls = tuple(
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=call.function.arguments or "",
            )
            for call in (message.tool_calls or [])
        )
        return CompletionMessage(content=message.content, tool_calls=tool_calls)


# ---------------------------------------------------------------------------
# Fixed mock responses used when no endpoint is configured.
# ---------------------------------------------------------------------------
PLACEHOLDER_FINDING = {
    "title": "Placeholder finding: no live analysis endpoint configured",
    "phenomenon": (
        "This finding was generated without a completion endpoint. Configure "
        "LLM_API_KEY to scan the segmentation for real share gaps."
    ),
}

_MOCK_SCAN_RESPONSE_JSON = json.dumps({"findings": [PLACEHOLDER_FINDING]}, indent=2)

_MOCK_CAUSE_RESPONSE = {
    "causes": [
        {
            "problem": "placeholder",
            "statement": (
                "Placeholder cause: no live analysis endpoint is configured, so no "
                "data queries were run for this finding."
            ),
        }
    ]
}

_MOCK_CAUSE_RESPONSE_TEXT = "```json\n" + json.dumps(_MOCK_CAUSE_RESPONSE, indent=2) + "\n```"


class MockLLMAdapter(BaseLLMAdapter):
    """Deterministic adapter that returns fixed placeholder replies.

    Conversations offered tools are deep-dives and get a placeholder cause;
    all other conversations are scans and get one placeholder finding. No
    tool calls are ever requested.
    """

    is_live = False

    def complete(
        self,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
    ) -> CompletionMessage:
        if tools:
            return CompletionMessage(content=_MOCK_CAUSE_RESPONSE_TEXT)
        return CompletionMessage(content=_MOCK_SCAN_RESPONSE_JSON)


def build_adapter() -> BaseLLMAdapter:
    """Create the adapter selected by ``LLM_ADAPTER``.

    The OpenAI adapter needs an API key; without one the mock is used and a
    warning is logged.
    """
    settings = get_llm_settings()
    if settings.adapter == "mock":
        return MockLLMAdapter()
    if settings.adapter != "openai":
        logger.warning("Unknown LLM_ADAPTER=%r; using mock adapter", settings.adapter)
        return MockLLMAdapter()
    if not settings.api_key:
        logger.warning("No LLM API key configured; using mock adapter")
        return MockLLMAdapter()
    return OpenAILLMAdapter(
        model=settings.model,
        max_tokens=settings.max_tokens,
        api_key=settings.api_key,
        base_url=settings.base_url,
        temperature=settings.temperature,
    )
