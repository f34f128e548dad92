"""AudioProcessingPort — abstract interface for audio preprocessing."""

from abc import ABC, abstractmethod

from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.models import SpeechWindow


class AudioProcessingPort(ABC):
    @abstractmethod
    def convert_to_wav(self, input_path: str, sample_rate: int = 16000) -> str:
        """Convert audio to 16kHz mono WAV. Returns path to converted file."""

    @abstractmethod
    def load(self, wav_path: str) -> AudioBuffer:
        """Decode a WAV file into mono float32 samples."""

    @abstractmethod
    def sample_for_profiles(
        self,
        audio: AudioBuffer,
        windows: list[SpeechWindow],
        target_seconds: float = 480.0,
        sample_count: int = 8,
    ) -> AudioBuffer:
        """Build a bounded, representative excerpt for speaker profiling."""
