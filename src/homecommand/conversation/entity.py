"""
ConversationService: command orchestration plus encrypted memory.

Connects the `CommandOrchestrator` to the `ConversationStore` for one
caller: loads the decrypted history of the requested conversation (if it
exists yet), runs the command, and creates the conversation and appends the
new turn only when the command succeeded.

When no store is configured (no ``CONVERSATION_ENCRYPTION_KEY``), commands
run statelessly and conversation ids are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from homecommand.conversation.orchestrator import CommandOrchestrator
from homecommand.memory.store import ConversationStore
from homecommand.tools.capabilities import HomeCapabilities

logger = logging.getLogger(__name__)


@dataclass
class ConversationResult:
    """Result of a single command.

    Attributes:
        response_text: The reply to show or speak.
        conversation_id: Conversation the turn was stored in, if any.
        extra: Optional metadata (history length, persistence flag, ...).
    """

    response_text: str
    conversation_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class ConversationService:
    """Runs commands on behalf of an identity subject.

    Attributes:
        orchestrator: Runs the provider loop.
        store: Encrypted conversation storage, or ``None`` when disabled.
        max_history_turns: Maximum prior turns (user + assistant pairs)
            sent to the model. ``0`` disables truncation.
    """

    def __init__(
        self,
        orchestrator: CommandOrchestrator,
        store: ConversationStore | None = None,
        max_history_turns: int = 20,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.max_history_turns = max_history_turns

    @property
    def persistence_enabled(self) -> bool:
        return self.store is not None

    def _truncate_history(self, history: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Return a window of *history* capped at ``max_history_turns``."""
        if self.max_history_turns == 0:
            return list(history)
        keep = self.max_history_turns * 2
        if len(history) > keep:
            logger.debug(
                "History window: dropping %d oldest message(s) to stay within "
                "max_history_turns=%d",
                len(history) - keep,
                self.max_history_turns,
            )
            return history[-keep:]
        return list(history)

    # Store access is blocking sqlite I/O; callers run these in a worker thread.

    @staticmethod
    def _load_history(
        store: ConversationStore, conversation_id: str, owner_sub: str
    ) -> list[dict[str, Any]]:
        if not store.exists(conversation_id):
            return []
        # Raises ConversationNotFoundError when another subject owns the id.
        return [m.as_chat_message() for m in store.history(conversation_id, owner_sub)]

    @staticmethod
    def _record_turn(
        store: ConversationStore,
        conversation_id: str,
        owner_sub: str,
        text: str,
        response_text: str,
        is_voice: bool,
    ) -> None:
        store.ensure(conversation_id, owner_sub)
        store.append_turn(
            conversation_id, owner_sub, text, response_text, is_voice=is_voice
        )

    async def handle_command(
        self,
        owner_sub: str,
        text: str,
        capabilities: HomeCapabilities,
        conversation_id: str | None = None,
        is_voice: bool = False,
    ) -> ConversationResult:
        """Process one command for *owner_sub*.

        Args:
            owner_sub: Identity subject of the caller.
            text: The command text.
            capabilities: Device collaborators.
            conversation_id: Conversation to continue (created by its first
                successful command).
            is_voice: Whether the command arrived through the voice endpoint.

        Raises:
            ConfigurationError: Provider settings are invalid.
            LLMError: The vendor call failed or timed out.
            ConversationNotFoundError: The id belongs to another subject.
        """
        store = self.store if conversation_id else None
        if conversation_id and store is None:
            logger.debug(
                "Conversation storage disabled; running %r statelessly", conversation_id
            )

        history: list[dict[str, Any]] = []
        if store is not None:
            history = await asyncio.to_thread(
                self._load_history, store, conversation_id, owner_sub
            )
            history = self._truncate_history(history)

        logger.info(
            "Processing command: conversation_id=%r, chars=%d, history_len=%d",
            conversation_id,
            len(text),
            len(history),
        )

        response_text = await self.orchestrator.execute_command(
            text, capabilities, history=history
        )

        if store is not None:
            await asyncio.to_thread(
                self._record_turn,
                store,
                conversation_id,
                owner_sub,
                text,
                response_text,
                is_voice,
            )

        return ConversationResult(
            response_text=response_text,
            conversation_id=conversation_id if store is not None else None,
            extra={"history_len": len(history), "persisted": store is not None},
        )
