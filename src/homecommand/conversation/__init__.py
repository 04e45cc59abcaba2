"""
homecommand conversation package.

Implements the provider adapters, the bounded tool-calling loop, command
orchestration and the HTTP surface.
"""

from homecommand.conversation.anthropic_provider import AnthropicProvider
from homecommand.conversation.entity import ConversationResult, ConversationService
from homecommand.conversation.loop import AgenticLoop, ToolDispatcher
from homecommand.conversation.orchestrator import (
    CommandOrchestrator,
    build_provider,
    resolve_provider_name,
)
from homecommand.conversation.providers import (
    CompletionResult,
    LLMAPIError,
    LLMConnectionError,
    LLMError,
    LLMProvider,
    LLMRateLimitError,
    LLMTimeoutError,
    OpenAICompatibleProvider,
    ProviderError,
    ToolCall,
)

__all__ = [
    "AgenticLoop",
    "AnthropicProvider",
    "CommandOrchestrator",
    "CompletionResult",
    "ConversationResult",
    "ConversationService",
    "LLMAPIError",
    "LLMConnectionError",
    "LLMError",
    "LLMProvider",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "OpenAICompatibleProvider",
    "ProviderError",
    "ToolCall",
    "ToolDispatcher",
    "build_provider",
    "resolve_provider_name",
]
