"""
HTTP server for the homecommand conversation service.

Exposes command execution, voice round-trips and encrypted conversation
management over a REST API.

Endpoints
---------
POST   /command                    Run one text command.
POST   /voice                      Run one command from audio (or text), reply as audio.
POST   /conversations              Create a conversation.
GET    /conversations              List the caller's conversations.
GET    /conversations/{id}         Get one conversation with decrypted messages.
PATCH  /conversations/{id}         Rename a conversation.
DELETE /conversations/{id}         Delete a conversation.
GET    /health                     Health / readiness check.

Authentication is an upstream concern. By default the caller's identity is
taken from the ``X-Auth-Subject`` / ``X-Auth-Role`` headers set by the
authenticating proxy; pass a different ``identity_dependency`` to
``create_app`` to plug in another scheme. Command and voice endpoints
require the ``admin`` role.

Usage (standalone)::

    from homecommand.conversation.server import create_app
    import uvicorn

    app = create_app(service, capabilities, speech=speech_services)
    uvicorn.run(app, host="0.0.0.0", port=8080)
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable
from urllib.parse import quote

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from homecommand.config import ConfigurationError
from homecommand.conversation.entity import ConversationResult, ConversationService
from homecommand.conversation.providers import LLMError, LLMTimeoutError
from homecommand.memory.crypto import ConversationCryptoError
from homecommand.memory.store import ConversationNotFoundError, ConversationStore
from homecommand.services.speech import SpeechServices
from homecommand.tools.capabilities import HomeCapabilities

logger = logging.getLogger(__name__)

PRIVILEGED_ROLE = "admin"
TRANSCRIPT_HEADER = "X-Transcript"
RESPONSE_TEXT_HEADER = "X-Response-Text"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass
class Identity:
    """The authenticated caller."""

    sub: str
    role: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.role == PRIVILEGED_ROLE


async def header_identity(
    x_auth_subject: str | None = Header(default=None),
    x_auth_role: str | None = Header(default=None),
) -> Identity:
    """Read the caller identity forwarded by the authenticating proxy."""
    if not x_auth_subject:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Identity(sub=x_auth_subject, role=x_auth_role)


IdentityDependency = Callable[..., Awaitable[Identity]]


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CommandRequest(_ApiModel):
    """Body for POST /command."""

    command: str = Field(..., min_length=1, description="Natural-language command.")
    conversation_id: str | None = Field(
        default=None, description="Conversation to continue. Omit for a one-off command."
    )


class CommandResponse(_ApiModel):
    """Response body for POST /command."""

    response: str
    conversation_id: str | None = None


class VoiceRequest(_ApiModel):
    """Body for POST /voice. Exactly one of ``audio`` / ``text`` is required."""

    audio: str | None = Field(default=None, description="Base64-encoded audio.")
    filename: str | None = Field(default=None, description="Audio file name (format hint).")
    text: str | None = None
    conversation_id: str | None = None


class CreateConversationRequest(_ApiModel):
    title: str | None = None


class RenameConversationRequest(_ApiModel):
    title: str = Field(..., min_length=1)


class MessageOut(_ApiModel):
    role: str
    content: str
    is_voice: bool = False
    created_at: datetime | None = None


class ConversationOut(_ApiModel):
    id: str
    title: str | None = None
    created_at: datetime
    updated_at: datetime


class ConversationSummaryOut(ConversationOut):
    message_count: int = 0


class ConversationDetailOut(ConversationOut):
    messages: list[MessageOut] = Field(default_factory=list)


class HealthResponse(_ApiModel):
    status: str
    persistence_enabled: bool
    voice_enabled: bool


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def _conversation_out(conversation: Any, model: type[ConversationOut] = ConversationOut) -> Any:
    data = {
        "id": conversation.id,
        "title": conversation.title,
        "created_at": conversation.created_at,
        "updated_at": conversation.updated_at,
    }
    if model is ConversationSummaryOut:
        data["message_count"] = conversation.message_count
    if model is ConversationDetailOut:
        data["messages"] = [
            MessageOut(
                role=m.role,
                content=m.content,
                is_voice=m.is_voice,
                created_at=m.created_at,
            )
            for m in conversation.messages
        ]
    return model(**data)


def create_app(
    service: ConversationService,
    capabilities: HomeCapabilities,
    speech: SpeechServices | None = None,
    identity_dependency: IdentityDependency = header_identity,
) -> FastAPI:
    """Create a FastAPI application wrapping *service*.

    Args:
        service: A fully initialised ``ConversationService``.
        capabilities: Device collaborators handed to every command.
        speech: STT/TTS collaborators; the voice endpoint answers 503 without them.
        identity_dependency: FastAPI dependency returning the caller ``Identity``.

    Returns:
        A configured ``FastAPI`` application ready to be served or used in
        tests via ``httpx.AsyncClient(transport=ASGITransport(app=app))``.
    """
    app = FastAPI(
        title="homecommand",
        description="Natural-language home control with encrypted conversation memory.",
        version="0.1.0",
    )

    def require_privileged(identity: Identity = Depends(identity_dependency)) -> Identity:
        if not identity.is_privileged:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return identity

    def require_store() -> ConversationStore:
        if service.store is None:
            raise HTTPException(
                status_code=503, detail="Conversation storage is not configured"
            )
        return service.store

    async def run_command(
        identity: Identity,
        text: str,
        conversation_id: str | None,
        is_voice: bool,
    ) -> ConversationResult:
        try:
            return await service.handle_command(
                identity.sub,
                text,
                capabilities,
                conversation_id=conversation_id,
                is_voice=is_voice,
            )
        except ConfigurationError as exc:
            logger.error("Command rejected by configuration: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        except LLMTimeoutError as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        except LLMError as exc:
            logger.error("Command failed at the LLM provider: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except ConversationNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Conversation not found") from exc
        except ConversationCryptoError as exc:
            logger.error("Could not open conversation %r: %s", conversation_id, exc)
            raise HTTPException(
                status_code=500, detail="Unable to read conversation history"
            ) from exc

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Return server health and feature flags."""
        return HealthResponse(
            status="ok",
            persistence_enabled=service.persistence_enabled,
            voice_enabled=speech is not None,
        )

    @app.post("/command", response_model=CommandResponse)
    async def command(
        body: CommandRequest,
        identity: Identity = Depends(require_privileged),
    ) -> CommandResponse:
        """Run one natural-language command through the provider loop."""
        logger.info(
            "POST /command: sub=%r conversation_id=%r", identity.sub, body.conversation_id
        )
        result = await run_command(identity, body.command, body.conversation_id, False)
        return CommandResponse(
            response=result.response_text, conversation_id=result.conversation_id
        )

    @app.post("/voice")
    async def voice(
        body: VoiceRequest,
        identity: Identity = Depends(require_privileged),
    ) -> Response:
        """Transcribe (or take text), run the command, and reply with audio.

        The transcript and reply text are echoed percent-encoded in the
        ``X-Transcript`` and ``X-Response-Text`` headers.
        """
        if (body.audio is None) == (body.text is None):
            raise HTTPException(
                status_code=400, detail="Provide exactly one of 'audio' or 'text'"
            )
        if speech is None:
            raise HTTPException(status_code=503, detail="Voice services are not configured")

        if body.audio is not None:
            try:
                audio = base64.b64decode(body.audio, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise HTTPException(status_code=400, detail="Invalid base64 audio") from exc
            transcript = await speech.stt.transcribe(audio, body.filename or "audio.webm")
        else:
            transcript = body.text or ""

        if not transcript.strip():
            raise HTTPException(status_code=400, detail="No speech detected")

        logger.info(
            "POST /voice: sub=%r conversation_id=%r", identity.sub, body.conversation_id
        )
        result = await run_command(identity, transcript, body.conversation_id, True)
        audio_out, media_type = await speech.tts.synthesize(result.response_text)
        return Response(
            content=audio_out,
            media_type=media_type,
            headers={
                TRANSCRIPT_HEADER: quote(transcript, safe=""),
                RESPONSE_TEXT_HEADER: quote(result.response_text, safe=""),
            },
        )

    # Plain ``def`` routes: FastAPI runs them in its threadpool, off the event
    # loop, since every store call here is blocking sqlite I/O.

    @app.post("/conversations", response_model=ConversationOut, status_code=201)
    def create_conversation(
        body: CreateConversationRequest,
        identity: Identity = Depends(identity_dependency),
        store: ConversationStore = Depends(require_store),
    ) -> ConversationOut:
        return _conversation_out(store.create(identity.sub, title=body.title))

    @app.get("/conversations", response_model=list[ConversationSummaryOut])
    def list_conversations(
        identity: Identity = Depends(identity_dependency),
        store: ConversationStore = Depends(require_store),
    ) -> list[ConversationSummaryOut]:
        return [
            _conversation_out(c, ConversationSummaryOut) for c in store.list(identity.sub)
        ]

    @app.get("/conversations/{conversation_id}", response_model=ConversationDetailOut)
    def get_conversation(
        conversation_id: str,
        identity: Identity = Depends(identity_dependency),
        store: ConversationStore = Depends(require_store),
    ) -> ConversationDetailOut:
        try:
            detail = store.get(conversation_id, identity.sub)
        except ConversationNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Conversation not found") from exc
        except ConversationCryptoError as exc:
            logger.error("Could not open conversation %r: %s", conversation_id, exc)
            raise HTTPException(
                status_code=500, detail="Unable to read conversation"
            ) from exc
        return _conversation_out(detail, ConversationDetailOut)

    @app.patch("/conversations/{conversation_id}", response_model=ConversationOut)
    def rename_conversation(
        conversation_id: str,
        body: RenameConversationRequest,
        identity: Identity = Depends(identity_dependency),
        store: ConversationStore = Depends(require_store),
    ) -> ConversationOut:
        try:
            conversation = store.rename(conversation_id, identity.sub, body.title)
        except ConversationNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Conversation not found") from exc
        return _conversation_out(conversation)

    @app.delete("/conversations/{conversation_id}", status_code=204)
    def delete_conversation(
        conversation_id: str,
        identity: Identity = Depends(identity_dependency),
        store: ConversationStore = Depends(require_store),
    ) -> None:
        try:
            store.delete(conversation_id, identity.sub)
        except ConversationNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Conversation not found") from exc

    return app
