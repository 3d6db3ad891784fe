"""Speech-to-text for mixed call recordings via the OpenAI transcription API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from calls.errors import TranscriptionFailedError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


class CallTranscriber:
    """Transcribes one file into verbose JSON with word timestamps."""

    def __init__(self, client: AsyncOpenAI | None = None, *, model: str | None = None) -> None:
        if client is None or model is None:
            settings = get_settings()
            if client is None:
                if not settings.openai_api_key:
                    raise ValueError("OPENAI_API_KEY must be configured for transcription.")
                client = AsyncOpenAI(api_key=settings.openai_api_key)
            model = model or settings.transcription_model
        self._client = client
        self._model = model

    async def transcribe(self, path: Path) -> dict[str, Any]:
        try:
            with path.open("rb") as audio_file:
                transcription = await self._client.audio.transcriptions.create(
                    file=audio_file,
                    model=self._model,
                    response_format="verbose_json",
                    timestamp_granularities=["word"],
                )
        except (OpenAIError, OSError) as exc:
            LOGGER.exception("Transcription failed for %s", path)
            raise TranscriptionFailedError(str(exc)) from exc

        return transcription.model_dump()
