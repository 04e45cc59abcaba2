"""
homecommand - natural-language home control with encrypted conversation memory.

A command such as "lock the car" is handed to a large language model that
may call a fixed catalogue of home-automation tools before replying. The
exchange can be stored per user, encrypted with a key derived from one
master secret.

It includes:

- Tool registry and executor over device capability interfaces
- Two provider adapters (Messages API tool use, Chat Completions function
  calling) driven by one bounded loop
- Per-user AES-256-GCM envelope encryption and an owner-scoped store
- A FastAPI surface for commands, voice and conversations

Quick Start:
    >>> from homecommand.config import Settings
    >>> from homecommand.conversation.orchestrator import CommandOrchestrator
    >>> orchestrator = CommandOrchestrator(Settings(ai_provider="openai"))
    >>> reply = await orchestrator.execute_command("Lock the car", capabilities)
"""

from homecommand.config import ConfigurationError, Settings, get_settings

__version__ = "0.1.0"
__all__ = ["ConfigurationError", "Settings", "get_settings"]
