"""OpenAITranscriptionAdapter — remote speech-to-text via the audio transcriptions API."""

import logging
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from chunkscribe.adapters.openai.errors import classify_openai_error
from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.models import TranscriptSegment
from chunkscribe.ports.transcription import TranscriptionOptions, TranscriptionPort
from chunkscribe.use_cases.concurrency import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "whisper-1"


def _field(segment: Any, name: str) -> Any:
    return segment.get(name) if isinstance(segment, dict) else getattr(segment, name, None)


class OpenAITranscriptionAdapter(TranscriptionPort):
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout: float = 600.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self._model = model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    async def transcribe(
        self,
        audio: AudioBuffer,
        options: TranscriptionOptions,
        cancel: Optional[CancelToken] = None,
    ) -> list[TranscriptSegment]:
        if cancel is not None:
            cancel.raise_if_cancelled()
        if audio.duration <= 0:
            return []

        kwargs: dict[str, Any] = {
            "model": self._model,
            "file": ("chunk.wav", audio.to_wav_bytes(), "audio/wav"),
            "response_format": "verbose_json",
            "timestamp_granularities": ["segment"],
        }
        if options.language:
            kwargs["language"] = options.language
        if options.prompt:
            kwargs["prompt"] = options.prompt

        try:
            response = await self._client.audio.transcriptions.create(**kwargs)
        except openai.OpenAIError as e:
            raise classify_openai_error(e) from e

        segments = []
        for seg in _field(response, "segments") or []:
            text = (_field(seg, "text") or "").strip()
            if text:
                segments.append(TranscriptSegment(start=float(_field(seg, "start")), end=float(_field(seg, "end")), text=text))
        logger.debug(f"Transcribed {audio.duration:.1f}s into {len(segments)} segments")
        return segments

    def model_name(self) -> str:
        return self._model

    def is_local(self) -> bool:
        return False
