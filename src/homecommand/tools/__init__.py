"""
Home-automation tools for the homecommand agentic loop.

- ``ToolRegistry`` / ``ToolDefinition``: the provider-agnostic catalogue.
- ``HOME_TOOLS`` / ``default_registry()``: the fixed home catalogue.
- ``ToolExecutor``: runs a tool against a ``HomeCapabilities`` bundle.

Quick-start example::

    from homecommand.tools import ToolExecutor, default_registry

    registry = default_registry()
    executor = ToolExecutor()
    dispatcher = executor.as_dispatcher(capabilities)
"""

from homecommand.tools.capabilities import HomeCapabilities
from homecommand.tools.definitions import HOME_TOOLS, default_registry
from homecommand.tools.executor import ToolExecutor
from homecommand.tools.registry import (
    ToolDefinition,
    ToolParameter,
    ToolRegistry,
    validate_arguments,
)

__all__ = [
    "HOME_TOOLS",
    "HomeCapabilities",
    "ToolDefinition",
    "ToolExecutor",
    "ToolParameter",
    "ToolRegistry",
    "default_registry",
    "validate_arguments",
]
