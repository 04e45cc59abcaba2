"""
LLM provider abstractions for the homecommand conversation package.

Defines the `LLMProvider` Protocol so the `AgenticLoop` can drive either
tool-calling wire protocol through one bounded loop:

- `OpenAICompatibleProvider` (this module) speaks Chat Completions function
  calling via `openai.AsyncOpenAI` / `openai.AsyncAzureOpenAI`. It serves the
  OpenAI, Azure OpenAI, GitHub Copilot and Z.ai back ends.
- `AnthropicProvider` (``anthropic_provider``) speaks the Messages API
  tool-use protocol.

Also provides the exception hierarchy for LLM API errors.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from homecommand.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Custom exception hierarchy
# ---------------------------------------------------------------------------


class LLMError(Exception):
    """Base exception for all LLM provider errors."""


# Provider failures surface to callers under this name.
ProviderError = LLMError


class LLMRateLimitError(LLMError):
    """Raised when the LLM API returns a rate-limit (429) response."""


class LLMConnectionError(LLMError):
    """Raised when the LLM API endpoint cannot be reached."""


class LLMTimeoutError(LLMError):
    """Raised when a command exceeds its wall-clock budget."""


class LLMAPIError(LLMError):
    """Raised for other LLM API errors (e.g., 5xx, authentication failures).

    Attributes:
        status_code: HTTP status code from the API, or ``None`` if unavailable.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Core data types
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    """A tool invocation requested by the LLM.

    Attributes:
        id: Unique call ID returned by the LLM (used to correlate the result).
        name: Name of the tool to invoke.
        arguments: Parsed JSON arguments dict.
    """

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class CompletionResult:
    """Result of a single LLM completion call, normalized across protocols.

    Attributes:
        finish_reason: ``"stop"`` for a final text response, ``"tool_calls"``
            when the LLM wants to invoke tools. Other vendor reasons are
            passed through unchanged.
        content: Text carried by the turn, if any.
        tool_calls: Requested tool invocations in emitted order.
        raw_message: The assistant message in the provider's own wire
            format, appended to history before tool results.
    """

    finish_reason: str
    content: str | None
    tool_calls: list[ToolCall]
    raw_message: dict[str, Any]


# ---------------------------------------------------------------------------
# LLMProvider Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for LLM backends used by AgenticLoop.

    Messages are passed in Chat Completions shape (``role``/``content``
    dicts, with a leading ``system`` message); providers translate them to
    their own wire format.
    """

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[ToolDefinition],
    ) -> CompletionResult:
        """Send a completion request to the LLM.

        Raises:
            LLMRateLimitError: If the API returns a 429 rate-limit response.
            LLMConnectionError: If the API endpoint cannot be reached.
            LLMAPIError: For other API-level failures.
        """
        ...

    def format_tool_results(
        self, results: list[tuple[ToolCall, str]]
    ) -> list[dict[str, Any]]:
        """Return the messages that carry one round's tool results."""
        ...

    async def aclose(self) -> None:
        """Release the underlying HTTP client."""
        ...


# ---------------------------------------------------------------------------
# Chat Completions implementation
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """LLM provider backed by any OpenAI-compatible endpoint.

    Works with:
    - OpenAI (default base URL)
    - Azure OpenAI (pass an ``AsyncAzureOpenAI`` as *client*)
    - GitHub Copilot (``https://api.githubcopilot.com``)
    - Z.ai (``https://api.z.ai/api/v1``)

    Attributes:
        model: The model (or Azure deployment) identifier.
        temperature: Sampling temperature, or ``None`` for the vendor default.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        default_headers: dict[str, str] | None = None,
        temperature: float | None = None,
        client: Any = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        if client is None:
            client = AsyncOpenAI(
                api_key=api_key, base_url=base_url, default_headers=default_headers
            )
        self._client = client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[ToolDefinition],
    ) -> CompletionResult:
        """Call the LLM and return a structured `CompletionResult`.

        Raises:
            LLMRateLimitError: If the API returns a 429 response.
            LLMConnectionError: If the API endpoint cannot be reached.
            LLMAPIError: For other API-level failures (e.g. 4xx/5xx).
        """
        openai_tools = [t.to_openai_format() for t in tools]

        kwargs: dict[str, Any] = {"model": self.model, "messages": messages}
        if openai_tools:
            kwargs["tools"] = openai_tools
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        logger.debug(
            "LLM request: model=%s, messages=%d, tools=%d",
            self.model,
            len(messages),
            len(openai_tools),
        )

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except RateLimitError as exc:
            logger.warning("LLM rate limit exceeded: %s", exc)
            raise LLMRateLimitError(f"Rate limit exceeded: {exc}") from exc
        except APITimeoutError as exc:
            logger.error("LLM request timed out: %s", exc)
            raise LLMConnectionError(f"LLM request timed out: {exc}") from exc
        except APIConnectionError as exc:
            logger.error("LLM connection failed: %s", exc)
            raise LLMConnectionError(f"Could not connect to LLM endpoint: {exc}") from exc
        except APIStatusError as exc:
            logger.error("LLM API error %d: %s", exc.status_code, exc)
            raise LLMAPIError(
                f"LLM API returned status {exc.status_code}: {exc}",
                status_code=exc.status_code,
            ) from exc

        if not response.choices:
            raise LLMAPIError("LLM response contained no choices")

        choice = response.choices[0]
        finish_reason = choice.finish_reason or "stop"
        message = choice.message

        tool_calls: list[ToolCall] = []
        for tc in message.tool_calls or []:
            if getattr(tc, "type", "function") != "function":
                continue
            try:
                args = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("Malformed arguments for tool %r; using {}", tc.function.name)
                args = {}
            if not isinstance(args, dict):
                args = {}
            tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=args))

        # Build the raw assistant message for appending to history
        raw_message: dict[str, Any] = {"role": "assistant", "content": message.content}
        if tool_calls:
            raw_message["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(tc.arguments),
                    },
                }
                for tc in tool_calls
            ]

        logger.debug(
            "LLM response: finish_reason=%s, tool_calls=%d",
            finish_reason,
            len(tool_calls),
        )

        return CompletionResult(
            finish_reason=finish_reason,
            content=message.content,
            tool_calls=tool_calls,
            raw_message=raw_message,
        )

    def format_tool_results(
        self, results: list[tuple[ToolCall, str]]
    ) -> list[dict[str, Any]]:
        """One ``tool`` message per call, in call order."""
        return [
            {"role": "tool", "tool_call_id": tc.id, "content": result}
            for tc, result in results
        ]

    async def aclose(self) -> None:
        """Close the client's connection pool."""
        await self._client.close()
