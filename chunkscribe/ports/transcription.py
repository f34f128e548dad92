"""TranscriptionPort — abstract interface for speech-to-text engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.models import TranscriptSegment
from chunkscribe.use_cases.concurrency import CancelToken


@dataclass
class TranscriptionOptions:
    language: Optional[str] = None
    prompt: Optional[str] = None


class TranscriptionPort(ABC):
    @abstractmethod
    async def transcribe(
        self,
        audio: AudioBuffer,
        options: TranscriptionOptions,
        cancel: Optional[CancelToken] = None,
    ) -> list[TranscriptSegment]:
        """Transcribe a slice. Returns ordered segments relative to the slice start."""

    @abstractmethod
    def model_name(self) -> str:
        """Return the human-readable model name for usage reports."""

    @abstractmethod
    def is_local(self) -> bool:
        """Whether the engine runs in-process and needs the local concurrency limit."""
