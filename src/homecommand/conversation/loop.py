"""
AgenticLoop: the bounded tool-calling engine shared by every provider.

This module implements the core "agentic" behaviour: calling the LLM,
dispatching tool calls the LLM requests, feeding results back, and
repeating until the LLM produces a final text response.

States per round::

    AwaitingModel -> Done             (final turn, or a non-tool stop)
    AwaitingModel -> ExecutingTools   (model asked for tools)
    ExecutingTools -> AwaitingModel

The round bound is the loop's only built-in cancellation. Reaching it
returns ``ROUNDS_EXHAUSTED_TEXT`` rather than raising, because tool side
effects may already have happened.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Awaitable, Callable

from homecommand.conversation.providers import (
    CompletionResult,
    LLMProvider,
    ToolCall,
)
from homecommand.tools.registry import ToolDefinition, validate_arguments

logger = logging.getLogger(__name__)

# Callable type for async tool dispatcher functions.
# Receives (tool_name, tool_arguments) and returns a string result.
ToolDispatcher = Callable[[str, dict[str, Any]], Awaitable[str]]

DEFAULT_MAX_ROUNDS = 10
EMPTY_REPLY_TEXT = "Done."
ROUNDS_EXHAUSTED_TEXT = "Command processed."

DEFAULT_SYSTEM_PROMPT = (
    "You are a smart home assistant. "
    "You have tools to control the home. Execute the user's command using the "
    "available tools and reply with a concise, friendly confirmation."
)


class AgenticLoop:
    """Executes the LLM + tool-calling loop for a single command.

    Typical usage::

        loop = AgenticLoop(provider=my_provider, tool_dispatcher=my_dispatcher)
        response_text = await loop.run(
            user_text="Lock the car",
            chat_history=[],
            tools=registry.list_tools(),
        )

    Attributes:
        provider: The LLM backend (any `LLMProvider` implementation).
        tool_dispatcher: Async callable ``(name, args) -> result_str`` that
            executes tool calls.
        max_rounds: Maximum number of LLM calls per command. Default: 10.
        system_prompt: Optional system message prepended to every command.
    """

    def __init__(
        self,
        provider: LLMProvider,
        tool_dispatcher: ToolDispatcher,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        system_prompt: str | None = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.provider = provider
        self.tool_dispatcher = tool_dispatcher
        self.max_rounds = max_rounds
        self.system_prompt = system_prompt

    async def run(
        self,
        user_text: str,
        chat_history: list[dict[str, Any]],
        tools: list[ToolDefinition] | None = None,
    ) -> str:
        """Run one command through the agentic loop.

        Args:
            user_text: The operator's command.
            chat_history: Prior ``{"role", "content"}`` messages. These are
                not mutated; the loop works on a local copy.
            tools: Tool definitions available for this command.

        Returns:
            The LLM's final text, ``EMPTY_REPLY_TEXT`` when the final turn
            carries no text, or ``ROUNDS_EXHAUSTED_TEXT`` when the round
            bound is hit.
        """
        tools = tools or []
        definitions = {t.name: t for t in tools}
        messages: list[dict[str, Any]] = []

        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})

        messages.extend(
            {"role": m["role"], "content": m["content"]} for m in chat_history
        )
        messages.append({"role": "user", "content": user_text})

        turn_start = time.monotonic()

        for round_no in range(self.max_rounds):
            logger.debug("Agentic loop round %d/%d", round_no + 1, self.max_rounds)

            llm_t0 = time.monotonic()
            result: CompletionResult = await self.provider.complete(messages, tools)
            logger.debug(
                "LLM call %d took %.3fs (finish_reason=%s)",
                round_no + 1,
                time.monotonic() - llm_t0,
                result.finish_reason,
            )

            if result.finish_reason == "tool_calls" and result.tool_calls:
                messages.append(result.raw_message)
                outcomes = await self._dispatch_tool_calls(result.tool_calls, definitions)
                messages.extend(self.provider.format_tool_results(outcomes))
                continue

            if result.finish_reason != "stop":
                logger.warning(
                    "Unexpected finish_reason=%r; returning content as-is",
                    result.finish_reason,
                )
            logger.info(
                "Loop complete after %d round(s) in %.3fs",
                round_no + 1,
                time.monotonic() - turn_start,
            )
            return result.content or EMPTY_REPLY_TEXT

        logger.warning(
            "Loop reached max_rounds=%d without a final response", self.max_rounds
        )
        return ROUNDS_EXHAUSTED_TEXT

    async def _dispatch_tool_calls(
        self,
        tool_calls: list[ToolCall],
        definitions: dict[str, ToolDefinition],
    ) -> list[tuple[ToolCall, str]]:
        """Run *tool_calls* one after another, in emitted order.

        A failing tool produces an ``{"error": ...}`` result instead of
        aborting the loop, so the model can report the failure.
        """
        outcomes: list[tuple[ToolCall, str]] = []
        for tc in tool_calls:
            definition = definitions.get(tc.name)
            problems = validate_arguments(definition, tc.arguments) if definition else []
            if problems:
                logger.warning("Rejected arguments for tool %r: %s", tc.name, problems)
                outcomes.append(
                    (tc, f"Invalid arguments for {tc.name}: {'; '.join(problems)}")
                )
                continue

            logger.debug("Dispatching tool: %s(%s)", tc.name, tc.arguments)
            tools_t0 = time.monotonic()
            try:
                result_str = await self.tool_dispatcher(tc.name, tc.arguments)
            except Exception as exc:
                logger.error("Tool %r failed: %s", tc.name, exc, exc_info=True)
                result_str = json.dumps({"error": str(exc) or type(exc).__name__})
            logger.debug(
                "Tool %r finished in %.3fs", tc.name, time.monotonic() - tools_t0
            )
            outcomes.append((tc, result_str))
        return outcomes
