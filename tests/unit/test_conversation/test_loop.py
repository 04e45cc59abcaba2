"""Unit tests for homecommand.conversation.loop.AgenticLoop."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from homecommand.conversation.loop import (
    DEFAULT_SYSTEM_PROMPT,
    EMPTY_REPLY_TEXT,
    ROUNDS_EXHAUSTED_TEXT,
    AgenticLoop,
)
from homecommand.conversation.providers import CompletionResult, ToolCall
from homecommand.tools.definitions import HOME_TOOLS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stop_result(text: str | None) -> CompletionResult:
    """Build a CompletionResult that ends the loop (no tool calls)."""
    return CompletionResult(
        finish_reason="stop",
        content=text,
        tool_calls=[],
        raw_message={"role": "assistant", "content": text},
    )


def _tool_call_result(calls: list[tuple[str, str, dict[str, Any]]]) -> CompletionResult:
    """Build a CompletionResult that requests tool calls.

    Args:
        calls: List of (id, name, arguments) tuples.
    """
    tool_calls = [ToolCall(id=id_, name=name, arguments=args) for id_, name, args in calls]
    raw_tc = [
        {
            "id": tc.id,
            "type": "function",
            "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
        }
        for tc in tool_calls
    ]
    return CompletionResult(
        finish_reason="tool_calls",
        content=None,
        tool_calls=tool_calls,
        raw_message={"role": "assistant", "content": None, "tool_calls": raw_tc},
    )


def _format_openai(results: list[tuple[ToolCall, str]]) -> list[dict[str, Any]]:
    return [
        {"role": "tool", "tool_call_id": tc.id, "content": result} for tc, result in results
    ]


def _make_provider(*results: CompletionResult) -> MagicMock:
    """Return a mock LLMProvider that yields results in sequence."""
    mock = MagicMock()
    mock.complete = AsyncMock(side_effect=list(results))
    mock.format_tool_results = MagicMock(side_effect=_format_openai)
    return mock


async def _noop_dispatcher(name: str, args: dict[str, Any]) -> str:
    return f"result_of_{name}"


# ---------------------------------------------------------------------------
# Direct response (no tool calls)
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_run_returns_text_on_stop() -> None:
    provider = _make_provider(_stop_result("Hello, world!"))
    loop = AgenticLoop(provider=provider, tool_dispatcher=_noop_dispatcher)

    result = await loop.run(user_text="Hi", chat_history=[], tools=[])

    assert result == "Hello, world!"
    provider.complete.assert_awaited_once()


@pytest.mark.anyio
async def test_run_falls_back_when_final_turn_has_no_text() -> None:
    provider = _make_provider(_stop_result(None))
    loop = AgenticLoop(provider=provider, tool_dispatcher=_noop_dispatcher)

    assert await loop.run(user_text="Hi", chat_history=[]) == EMPTY_REPLY_TEXT == "Done."


@pytest.mark.anyio
async def test_run_returns_content_for_unexpected_finish_reason() -> None:
    provider = _make_provider(
        CompletionResult(
            finish_reason="length",
            content="Partial answer",
            tool_calls=[],
            raw_message={"role": "assistant", "content": "Partial answer"},
        )
    )
    loop = AgenticLoop(provider=provider, tool_dispatcher=_noop_dispatcher)

    assert await loop.run(user_text="Hi", chat_history=[]) == "Partial answer"


@pytest.mark.anyio
async def test_message_order_system_history_user() -> None:
    provider = _make_provider(_stop_result("ok"))
    loop = AgenticLoop(provider=provider, tool_dispatcher=_noop_dispatcher)
    history = [
        {"role": "user", "content": "Turn on the lights", "created_at": "x"},
        {"role": "assistant", "content": "Lights are on."},
    ]

    await loop.run(user_text="And lock the car", chat_history=history)

    messages = provider.complete.call_args.args[0]
    assert messages == [
        {"role": "system", "content": DEFAULT_SYSTEM_PROMPT},
        {"role": "user", "content": "Turn on the lights"},
        {"role": "assistant", "content": "Lights are on."},
        {"role": "user", "content": "And lock the car"},
    ]
    # Caller's history is left alone.
    assert len(history) == 2


@pytest.mark.anyio
async def test_no_system_prompt_when_disabled() -> None:
    provider = _make_provider(_stop_result("ok"))
    loop = AgenticLoop(provider=provider, tool_dispatcher=_noop_dispatcher, system_prompt=None)

    await loop.run(user_text="Hi", chat_history=[])

    messages = provider.complete.call_args.args[0]
    assert messages == [{"role": "user", "content": "Hi"}]


@pytest.mark.anyio
async def test_tools_are_passed_to_provider() -> None:
    provider = _make_provider(_stop_result("ok"))
    loop = AgenticLoop(provider=provider, tool_dispatcher=_noop_dispatcher)

    await loop.run(user_text="Hi", chat_history=[], tools=list(HOME_TOOLS))

    assert provider.complete.call_args.args[1] == list(HOME_TOOLS)


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_single_tool_call_then_final_text() -> None:
    provider = _make_provider(
        _tool_call_result([("call_1", "lock_car", {})]),
        _stop_result("Done, car locked."),
    )
    dispatcher = AsyncMock(return_value="Locked")
    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)

    result = await loop.run(user_text="Lock the car", chat_history=[], tools=list(HOME_TOOLS))

    assert result == "Done, car locked."
    dispatcher.assert_awaited_once_with("lock_car", {})
    assert provider.complete.await_count == 2

    messages = provider.complete.call_args.args[0]
    assert messages[-2]["role"] == "assistant"
    assert messages[-2]["tool_calls"][0]["id"] == "call_1"
    assert messages[-1] == {"role": "tool", "tool_call_id": "call_1", "content": "Locked"}


@pytest.mark.anyio
async def test_multiple_tool_calls_run_in_emitted_order() -> None:
    provider = _make_provider(
        _tool_call_result(
            [
                ("c1", "start_robot", {"robot": "broombot"}),
                ("c2", "start_robot", {"robot": "mopbot"}),
                ("c3", "lock_car", {}),
            ]
        ),
        _stop_result("All set."),
    )
    order: list[str] = []

    async def dispatcher(name: str, args: dict[str, Any]) -> str:
        order.append(args.get("robot", name))
        return "ok"

    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)
    await loop.run(user_text="Clean up and lock", chat_history=[], tools=list(HOME_TOOLS))

    assert order == ["broombot", "mopbot", "lock_car"]
    results = provider.format_tool_results.call_args.args[0]
    assert [tc.id for tc, _ in results] == ["c1", "c2", "c3"]


@pytest.mark.anyio
async def test_invalid_arguments_are_not_dispatched() -> None:
    provider = _make_provider(
        _tool_call_result([("c1", "start_car", {"temperature": 45})]),
        _stop_result("That temperature is out of range."),
    )
    dispatcher = AsyncMock(return_value="Started")
    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)

    result = await loop.run(user_text="Heat to 45", chat_history=[], tools=list(HOME_TOOLS))

    assert result == "That temperature is out of range."
    dispatcher.assert_not_awaited()
    (_, text), = provider.format_tool_results.call_args.args[0]
    assert text == "Invalid arguments for start_car: 'temperature' must be <= 30"


@pytest.mark.anyio
async def test_missing_required_argument_is_reported() -> None:
    provider = _make_provider(
        _tool_call_result([("c1", "start_robot", {})]),
        _stop_result("Which robot?"),
    )
    dispatcher = AsyncMock(return_value="ok")
    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)

    await loop.run(user_text="Start the robot", chat_history=[], tools=list(HOME_TOOLS))

    dispatcher.assert_not_awaited()
    (_, text), = provider.format_tool_results.call_args.args[0]
    assert "missing required argument 'robot'" in text


@pytest.mark.anyio
async def test_tool_not_in_catalogue_still_reaches_dispatcher() -> None:
    provider = _make_provider(
        _tool_call_result([("c1", "teleport", {})]),
        _stop_result("I can't do that."),
    )
    dispatcher = AsyncMock(return_value="Unknown tool: teleport")
    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)

    await loop.run(user_text="Teleport me", chat_history=[], tools=list(HOME_TOOLS))

    dispatcher.assert_awaited_once_with("teleport", {})


@pytest.mark.anyio
async def test_tool_exception_becomes_error_result() -> None:
    provider = _make_provider(
        _tool_call_result([("c1", "lock_car", {})]),
        _stop_result("Sorry, the car did not respond."),
    )
    dispatcher = AsyncMock(side_effect=RuntimeError("car offline"))
    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)

    result = await loop.run(user_text="Lock the car", chat_history=[], tools=list(HOME_TOOLS))

    assert result == "Sorry, the car did not respond."
    (_, text), = provider.format_tool_results.call_args.args[0]
    assert json.loads(text) == {"error": "car offline"}


@pytest.mark.anyio
async def test_tool_exception_without_message_uses_type_name() -> None:
    provider = _make_provider(
        _tool_call_result([("c1", "lock_car", {})]),
        _stop_result("Timed out."),
    )
    dispatcher = AsyncMock(side_effect=TimeoutError())
    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)

    await loop.run(user_text="Lock the car", chat_history=[], tools=list(HOME_TOOLS))

    (_, text), = provider.format_tool_results.call_args.args[0]
    assert json.loads(text) == {"error": "TimeoutError"}


# ---------------------------------------------------------------------------
# Round bound
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_loop_stops_after_max_rounds() -> None:
    provider = MagicMock()
    provider.complete = AsyncMock(return_value=_tool_call_result([("c", "lock_car", {})]))
    provider.format_tool_results = MagicMock(side_effect=_format_openai)
    dispatcher = AsyncMock(return_value="Locked")
    loop = AgenticLoop(provider=provider, tool_dispatcher=dispatcher)

    result = await loop.run(user_text="Lock forever", chat_history=[], tools=list(HOME_TOOLS))

    assert result == ROUNDS_EXHAUSTED_TEXT == "Command processed."
    assert provider.complete.await_count == 10
    assert dispatcher.await_count == 10


@pytest.mark.anyio
async def test_custom_max_rounds() -> None:
    provider = MagicMock()
    provider.complete = AsyncMock(return_value=_tool_call_result([("c", "lock_car", {})]))
    provider.format_tool_results = MagicMock(side_effect=_format_openai)
    loop = AgenticLoop(
        provider=provider, tool_dispatcher=AsyncMock(return_value="ok"), max_rounds=3
    )

    assert await loop.run(user_text="x", chat_history=[]) == ROUNDS_EXHAUSTED_TEXT
    assert provider.complete.await_count == 3
