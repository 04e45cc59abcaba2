"""
Tool registry for the homecommand agentic loop.

Provides ``ToolRegistry``, the provider-agnostic catalogue of actions the
model may invoke, plus ``validate_arguments`` which checks a model-supplied
argument dict against a ``ToolDefinition`` before it is dispatched.

Both provider adapters read the same registry, so the capability surface the
model sees never drifts between vendors.

Typical usage::

    from homecommand.tools.definitions import default_registry

    registry = default_registry()
    result = await loop.run(
        user_text="Lock the car",
        chat_history=[],
        tools=registry.list_tools(),
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# JSON schema type name -> accepted Python types.
# bool is excluded from numbers explicitly in _type_matches.
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


# ---------------------------------------------------------------------------
# Core data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolParameter:
    """Schema for a single tool parameter.

    Attributes:
        type: JSON schema type name (``"string"``, ``"number"``, ...).
        description: Human-readable description shown to the model.
        enum: Allowed values, if the parameter is an enumeration.
        minimum: Inclusive lower bound for numeric parameters.
        maximum: Inclusive upper bound for numeric parameters.
    """

    type: str
    description: str | None = None
    enum: tuple[str, ...] | None = None
    minimum: float | None = None
    maximum: float | None = None

    def to_schema(self) -> dict[str, Any]:
        """Serialise to a JSON schema property dict, omitting unset keys."""
        schema: dict[str, Any] = {"type": self.type}
        if self.description is not None:
            schema["description"] = self.description
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        return schema


@dataclass(frozen=True)
class ToolDefinition:
    """Describes a callable tool available to the LLM.

    Attributes:
        name: The tool's unique name (used by the LLM to invoke it).
        description: Human-readable description shown in the LLM's tool prompt.
        parameters: Ordered mapping of parameter name to ``ToolParameter``.
        required: Names of parameters the model must supply.
    """

    name: str
    description: str
    parameters: dict[str, ToolParameter] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def to_schema(self) -> dict[str, Any]:
        """Return the JSON schema object describing this tool's input."""
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {
                name: param.to_schema() for name, param in self.parameters.items()
            },
        }
        if self.required:
            schema["required"] = list(self.required)
        return schema

    def to_openai_format(self) -> dict[str, Any]:
        """Serialise to the Chat Completions function-tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.to_schema(),
            },
        }

    def to_anthropic_format(self) -> dict[str, Any]:
        """Serialise to the Messages API tool format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.to_schema(),
        }


# ---------------------------------------------------------------------------
# Argument validation
# ---------------------------------------------------------------------------


def _type_matches(expected: str, value: Any) -> bool:
    accepted = _JSON_TYPES.get(expected)
    if accepted is None:
        return True
    if expected in ("number", "integer") and isinstance(value, bool):
        return False
    if expected == "integer" and isinstance(value, float):
        return value.is_integer()
    return isinstance(value, accepted)


def validate_arguments(definition: ToolDefinition, arguments: dict[str, Any]) -> list[str]:
    """Check *arguments* against *definition*.

    Unknown extra arguments are tolerated; ``None`` values are treated as
    omitted.

    Returns:
        A list of human-readable problems. Empty when the arguments are valid.
    """
    problems: list[str] = []

    for name in definition.required:
        if arguments.get(name) is None:
            problems.append(f"missing required argument {name!r}")

    for name, value in arguments.items():
        param = definition.parameters.get(name)
        if param is None or value is None:
            continue
        if not _type_matches(param.type, value):
            problems.append(f"{name!r} must be of type {param.type}")
            continue
        if param.enum is not None and value not in param.enum:
            allowed = ", ".join(param.enum)
            problems.append(f"{name!r} must be one of: {allowed}")
        if param.minimum is not None and value < param.minimum:
            problems.append(f"{name!r} must be >= {param.minimum:g}")
        if param.maximum is not None and value > param.maximum:
            problems.append(f"{name!r} must be <= {param.maximum:g}")

    return problems


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Ordered, name-unique catalogue of ``ToolDefinition`` objects.

    The registry is populated once at startup and treated as read-only
    afterwards.
    """

    def __init__(self, definitions: list[ToolDefinition] | None = None) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: ToolDefinition) -> None:
        """Register a tool definition.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if definition.name in self._tools:
            raise ValueError(f"Tool {definition.name!r} is already registered.")
        self._tools[definition.name] = definition
        logger.debug("Registered tool: %r", definition.name)

    def list_tools(self) -> list[ToolDefinition]:
        """Return all registered definitions (insertion order)."""
        return list(self._tools.values())

    def get(self, name: str) -> ToolDefinition | None:
        """Return the definition for *name*, or ``None`` if unknown."""
        return self._tools.get(name)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
