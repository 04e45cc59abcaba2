"""Speech collaborators used by the voice endpoint.

Transcription and synthesis engines live outside this package; the voice
endpoint only needs objects with the shapes below.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class SpeechToText(Protocol):
    async def transcribe(self, audio: bytes, filename: str = "audio.webm") -> str: ...


class TextToSpeech(Protocol):
    async def synthesize(self, text: str) -> tuple[bytes, str]:
        """Return ``(audio_bytes, media_type)`` for *text*."""
        ...


@dataclass
class SpeechServices:
    stt: SpeechToText
    tts: TextToSpeech
