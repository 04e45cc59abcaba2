"""
Command orchestration: provider selection and one bounded command run.

``build_provider`` turns ``Settings`` into a concrete `LLMProvider`. All
credential checks happen before any client object is created, so a missing
key never results in a partial network call.

``CommandOrchestrator.execute_command`` wires provider, tool executor and
`AgenticLoop` together for one command and enforces an overall wall-clock
budget.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from openai import AsyncAzureOpenAI

from homecommand.config import ConfigurationError, Settings
from homecommand.conversation.anthropic_provider import AnthropicProvider
from homecommand.conversation.loop import DEFAULT_SYSTEM_PROMPT, AgenticLoop
from homecommand.conversation.providers import (
    LLMProvider,
    LLMTimeoutError,
    OpenAICompatibleProvider,
)
from homecommand.tools.capabilities import HomeCapabilities
from homecommand.tools.definitions import default_registry
from homecommand.tools.executor import ToolExecutor
from homecommand.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

COPILOT_BASE_URL = "https://api.githubcopilot.com"
COPILOT_HEADERS = {"Copilot-Integration-Id": "vscode-chat"}

# Accepted AI_PROVIDER values -> canonical provider name
_PROVIDER_ALIASES: dict[str, str] = {
    "anthropic": "anthropic",
    "copilot": "copilot",
    "github-copilot": "copilot",
    "zai": "zai",
    "z.ai": "zai",
    "openai": "openai",
    "azure-openai": "azure-openai",
}

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-3-5-sonnet-20241022",
    "copilot": "gpt-4o",
    "zai": "glm-4-flash",
    "openai": "gpt-4o",
}


def resolve_provider_name(value: str | None) -> str:
    """Map an ``AI_PROVIDER`` value (case-insensitive, aliases allowed) to a provider.

    Raises:
        ConfigurationError: If the value is not a supported provider.
    """
    key = (value or "copilot").strip().lower()
    name = _PROVIDER_ALIASES.get(key)
    if name is None:
        raise ConfigurationError(
            f'Unknown AI_PROVIDER "{key}". '
            "Supported values: anthropic, copilot, zai, openai, azure-openai"
        )
    return name


def _require(value: str | None, variable: str, provider_label: str) -> str:
    if not value:
        raise ConfigurationError(f"{variable} is not set for {provider_label} provider")
    return value


def build_provider(settings: Settings) -> LLMProvider:
    """Construct the provider adapter selected by *settings*.

    ``AI_MODEL`` overrides the provider's default model.

    Raises:
        ConfigurationError: For an unknown provider or a missing credential.
            Raised before any client is constructed.
    """
    name = resolve_provider_name(settings.ai_provider)
    override = settings.ai_model or None

    if name == "anthropic":
        api_key = _require(settings.anthropic_api_key, "ANTHROPIC_API_KEY", "Anthropic")
        return AnthropicProvider(
            model=override or DEFAULT_MODELS["anthropic"], api_key=api_key
        )

    if name == "copilot":
        token = _require(settings.github_token, "GITHUB_TOKEN", "GitHub Copilot")
        return OpenAICompatibleProvider(
            model=override or DEFAULT_MODELS["copilot"],
            api_key=token,
            base_url=COPILOT_BASE_URL,
            default_headers=dict(COPILOT_HEADERS),
        )

    if name == "zai":
        api_key = _require(settings.zai_api_key, "ZAI_API_KEY", "Z.ai")
        return OpenAICompatibleProvider(
            model=override or DEFAULT_MODELS["zai"],
            api_key=api_key,
            base_url=settings.zai_base_url,
        )

    if name == "openai":
        api_key = _require(settings.openai_api_key, "OPENAI_API_KEY", "OpenAI")
        return OpenAICompatibleProvider(
            model=override or DEFAULT_MODELS["openai"], api_key=api_key
        )

    # azure-openai
    api_key = _require(settings.azure_openai_api_key, "AZURE_OPENAI_API_KEY", "azure-openai")
    endpoint = _require(settings.azure_openai_endpoint, "AZURE_OPENAI_ENDPOINT", "azure-openai")
    client = AsyncAzureOpenAI(
        api_key=api_key,
        azure_endpoint=endpoint,
        api_version=settings.azure_openai_api_version,
    )
    return OpenAICompatibleProvider(
        model=override or settings.azure_openai_deployment, client=client
    )


class CommandOrchestrator:
    """Runs natural-language commands against the home tool catalogue.

    The orchestrator itself holds no per-command state; the tool executor is
    long-lived so background resyncs outlive the command that scheduled them.

    Attributes:
        settings: Provider selection, credentials and budgets.
        registry: Tool catalogue offered to the model.
        executor: Tool executor shared across commands.
    """

    def __init__(
        self,
        settings: Settings,
        registry: ToolRegistry | None = None,
        executor: ToolExecutor | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.settings = settings
        self.registry = registry or default_registry()
        self.executor = executor or ToolExecutor(resync_delay=settings.resync_delay)
        self.system_prompt = system_prompt

    async def execute_command(
        self,
        command_text: str,
        capabilities: HomeCapabilities,
        history: Sequence[dict[str, Any]] = (),
    ) -> str:
        """Run *command_text* and return the model's reply.

        Args:
            command_text: The operator's command.
            capabilities: Device collaborators the tools act on.
            history: Prior ``{"role", "content"}`` turns, oldest first.

        Raises:
            ConfigurationError: If provider settings are invalid.
            LLMError: If the vendor API fails.
            LLMTimeoutError: If the command exceeds ``command_timeout``.
        """
        provider = build_provider(self.settings)
        loop = AgenticLoop(
            provider=provider,
            tool_dispatcher=self.executor.as_dispatcher(
                capabilities, timeout=self.settings.tool_timeout
            ),
            max_rounds=self.settings.max_rounds,
            system_prompt=self.system_prompt,
        )

        logger.info(
            "Executing command via %s (history=%d messages)",
            type(provider).__name__,
            len(history),
        )
        try:
            return await asyncio.wait_for(
                loop.run(
                    user_text=command_text,
                    chat_history=list(history),
                    tools=self.registry.list_tools(),
                ),
                timeout=self.settings.command_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "Command exceeded its %.1fs budget", self.settings.command_timeout
            )
            raise LLMTimeoutError(
                f"Command did not finish within {self.settings.command_timeout:g} seconds"
            ) from exc
        finally:
            # One client per command; release its connection pool.
            await provider.aclose()
