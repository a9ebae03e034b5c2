"""
Overlay Plans — Audio Transcriber.

Voice messages are transcribed with OpenAI Whisper; the text then flows into
the same chat pipeline as typed messages.

This is the only module that talks to OpenAI directly for audio. Text
completions go through src.core.llm regardless of provider.
"""

from __future__ import annotations

import logging
from pathlib import Path

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        from src.config import settings
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY or settings.LLM_API_KEY)
    return _client


async def transcribe_audio(file_path: str, language: str | None = None) -> str:
    """Transcribe an audio file using OpenAI Whisper.

    Args:
        file_path: Path to the audio file (OGG, MP3, etc.).
        language: Optional ISO-639-1 hint ("en", "fr", "ru").

    Returns:
        Transcribed text string.

    Raises:
        Exception: If the Whisper API call fails.
    """
    kwargs = {"language": language} if language else {}
    try:
        with open(file_path, "rb") as audio_file:
            response = await _get_client().audio.transcriptions.create(
                model="whisper-1",
                file=audio_file,
                **kwargs,
            )
        text = response.text.strip()
        logger.info("Transcribed %d chars from %s", len(text), Path(file_path).name)
        return text
    except Exception as exc:
        logger.error("Whisper transcription failed for %s: %s", file_path, exc)
        raise
