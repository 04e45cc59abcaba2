"""
homecommand - Main Entry Point.

Loads configuration, wires the orchestrator, the encrypted conversation
store and the external collaborators (device capabilities, speech), and
serves the REST API with uvicorn.

Architecture:
    - config.py: Configuration management
    - tools/: Tool catalogue, capability interfaces, executor
    - conversation/: Provider adapters, bounded loop, orchestrator, HTTP server
    - memory/: Per-user encryption and conversation storage
    - main.py: Wiring and entry point
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import inspect
import logging
from typing import Any

from homecommand.config import ConfigurationError, Settings, get_settings
from homecommand.conversation.entity import ConversationService
from homecommand.conversation.orchestrator import CommandOrchestrator, resolve_provider_name
from homecommand.conversation.server import create_app
from homecommand.memory.crypto import ConversationCrypto
from homecommand.memory.store import ConversationStore, SQLiteConversationRepository

logger = logging.getLogger(__name__)


def load_factory(path: str, setting: str) -> Any:
    """Import ``"package.module:callable"`` and return the callable.

    Raises:
        ConfigurationError: If the path is malformed or cannot be imported.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"{setting} must look like 'package.module:factory'")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"{setting} could not be loaded: {exc}") from exc


async def _call_factory(factory: Any) -> Any:
    result = factory()
    if inspect.isawaitable(result):
        result = await result
    return result


def build_store(settings: Settings) -> ConversationStore | None:
    """Return the encrypted store, or ``None`` when no encryption key is configured."""
    if not settings.conversation_encryption_key:
        logger.warning(
            "CONVERSATION_ENCRYPTION_KEY not set; conversation persistence disabled"
        )
        return None
    crypto = ConversationCrypto.from_hex(settings.conversation_encryption_key)
    return ConversationStore(SQLiteConversationRepository(settings.database_path), crypto)


def build_service(settings: Settings) -> ConversationService:
    """Wire orchestrator and store from *settings*."""
    # Fail at startup on an unknown provider rather than on the first command.
    provider = resolve_provider_name(settings.ai_provider)
    logger.info("Using AI provider %s", provider)
    return ConversationService(
        orchestrator=CommandOrchestrator(settings),
        store=build_store(settings),
        max_history_turns=settings.max_history_turns,
    )


async def main(settings: Settings) -> None:
    """Build the application and serve it until interrupted."""
    import uvicorn

    if not settings.capabilities_factory:
        raise ConfigurationError(
            "CAPABILITIES_FACTORY is not set; it must name a factory returning "
            "HomeCapabilities"
        )
    capabilities = await _call_factory(
        load_factory(settings.capabilities_factory, "CAPABILITIES_FACTORY")
    )
    speech = None
    if settings.speech_factory:
        speech = await _call_factory(load_factory(settings.speech_factory, "SPEECH_FACTORY"))

    service = build_service(settings)
    app = create_app(service, capabilities, speech=speech)

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    try:
        await server.serve()
    finally:
        await service.orchestrator.executor.aclose()
        logger.info("Server shutdown complete")


def cli_main() -> None:
    """Entry point for the homecommand console script."""
    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="Natural-language home control API"
    )
    parser.add_argument("--host", default=settings.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.port, help="Bind port")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    settings.host = args.host
    settings.port = args.port
    if args.debug:
        settings.log_level = "DEBUG"

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    asyncio.run(main(settings))


if __name__ == "__main__":
    cli_main()
