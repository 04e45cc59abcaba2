"""
Messages API (tool-use) provider for the homecommand agentic loop.

A single model turn may carry several ``tool_use`` content blocks. The loop
executes them in order and this provider packs every result into one
``user`` message made of ``tool_result`` blocks, which is what the Messages
API expects on the following request.

System messages in the loop's history are lifted into the top-level
``system`` parameter.
"""

from __future__ import annotations

import logging
from typing import Any

from anthropic import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
    RateLimitError,
)

from homecommand.conversation.providers import (
    CompletionResult,
    LLMAPIError,
    LLMConnectionError,
    LLMRateLimitError,
    ToolCall,
)
from homecommand.tools.registry import ToolDefinition

logger = logging.getLogger(__name__)

# Messages API stop_reason -> normalized finish_reason
_STOP_REASONS = {
    "end_turn": "stop",
    "tool_use": "tool_calls",
}


def _block_to_param(block: Any) -> dict[str, Any] | None:
    """Convert a response content block into a request content param."""
    block_type = getattr(block, "type", None)
    if block_type == "text":
        return {"type": "text", "text": block.text}
    if block_type == "tool_use":
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": dict(block.input or {}),
        }
    return None


class AnthropicProvider:
    """LLM provider backed by the Messages API.

    Attributes:
        model: Model identifier, e.g. ``"claude-3-5-sonnet-20241022"``.
        max_tokens: Output token cap per request.
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        max_tokens: int = 1024,
        client: Any = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        if client is None:
            client = AsyncAnthropic(api_key=api_key)
        self._client = client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[ToolDefinition],
    ) -> CompletionResult:
        """Call the Messages API and normalize the response.

        Raises:
            LLMRateLimitError: If the API returns a 429 response.
            LLMConnectionError: If the API endpoint cannot be reached.
            LLMAPIError: For other API-level failures.
        """
        system_parts = [m["content"] for m in messages if m.get("role") == "system"]
        conversation = [m for m in messages if m.get("role") != "system"]

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": conversation,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        if tools:
            kwargs["tools"] = [t.to_anthropic_format() for t in tools]

        logger.debug(
            "LLM request: model=%s, messages=%d, tools=%d",
            self.model,
            len(conversation),
            len(tools),
        )

        try:
            response = await self._client.messages.create(**kwargs)
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

        blocks = list(response.content or [])
        text = next((b.text for b in blocks if getattr(b, "type", None) == "text"), None)
        tool_calls = [
            ToolCall(id=b.id, name=b.name, arguments=dict(b.input or {}))
            for b in blocks
            if getattr(b, "type", None) == "tool_use"
        ]
        stop_reason = response.stop_reason or "end_turn"
        finish_reason = _STOP_REASONS.get(stop_reason, stop_reason)

        content_params = [p for p in (_block_to_param(b) for b in blocks) if p is not None]
        raw_message = {"role": "assistant", "content": content_params}

        logger.debug(
            "LLM response: stop_reason=%s, tool_calls=%d",
            stop_reason,
            len(tool_calls),
        )

        return CompletionResult(
            finish_reason=finish_reason,
            content=text,
            tool_calls=tool_calls,
            raw_message=raw_message,
        )

    def format_tool_results(
        self, results: list[tuple[ToolCall, str]]
    ) -> list[dict[str, Any]]:
        """All results of a round in a single ``user`` turn."""
        if not results:
            return []
        return [
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": tc.id, "content": result}
                    for tc, result in results
                ],
            }
        ]

    async def aclose(self) -> None:
        """Close the client's connection pool."""
        await self._client.close()
