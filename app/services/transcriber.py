"""Speech-to-text for spoken answers via an OpenAI-compatible Whisper endpoint.

Any provider speaking the OpenAI audio API works (OpenAI itself, Groq, a
local server) by pointing TRANSCRIPTION_BASE_URL at it.
"""

import logging
from pathlib import Path

from app.config import settings
from app.errors import TranscriptionError
from app.services.ai_client import upstream_retry

logger = logging.getLogger(__name__)


def resolve_audio_path(audio_ref: str) -> Path:
    path = Path(audio_ref)
    if not path.is_absolute():
        path = Path(settings.audio_storage_dir) / path
    return path


async def transcribe(audio_ref: str) -> dict:
    """Return {"text", "durationSeconds", "language"} for an audio file.

    Raises TranscriptionError when the file is missing or the endpoint
    keeps failing after retries.
    """
    path = resolve_audio_path(audio_ref)
    if not path.is_file():
        raise TranscriptionError(f"Transcription failed: audio file not found ({audio_ref})")

    try:
        result = await _whisper_transcribe(path)
    except Exception as e:
        logger.error("Transcription of %s failed: %s", audio_ref, e)
        raise TranscriptionError(f"Transcription failed: {e}") from e

    text = (getattr(result, "text", None) or "").strip()
    logger.info("Transcribed %s: %d characters", audio_ref, len(text))
    return {
        "text": text,
        "durationSeconds": getattr(result, "duration", None) or 0,
        "language": getattr(result, "language", None) or settings.transcription_language,
    }


@upstream_retry("Transcription")
async def _whisper_transcribe(path: Path):
    from openai import AsyncOpenAI

    client = AsyncOpenAI(
        api_key=settings.transcription_api_key or settings.api_key,
        base_url=settings.transcription_base_url or None,
    )
    with open(path, "rb") as audio:
        return await client.audio.transcriptions.create(
            file=audio,
            model=settings.transcription_model,
            language=settings.transcription_language,
            response_format="verbose_json",
            temperature=0.0,
        )
