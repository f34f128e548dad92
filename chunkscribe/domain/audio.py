"""In-memory mono audio shared by the segmenter, transcribers and sampler."""

import io
from dataclasses import dataclass

import numpy as np
import soundfile

DEFAULT_SAMPLE_RATE = 16000


@dataclass
class AudioBuffer:
    """Mono float32 samples at a fixed sample rate."""
    samples: np.ndarray
    sample_rate: int = DEFAULT_SAMPLE_RATE

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def slice(self, start: float, end: float) -> "AudioBuffer":
        """Return the [start, end) window in seconds, clamped to the buffer."""
        first = max(0, int(round(start * self.sample_rate)))
        last = min(len(self.samples), int(round(end * self.sample_rate)))
        return AudioBuffer(self.samples[first:max(first, last)], self.sample_rate)

    def to_wav_bytes(self) -> bytes:
        """Encode as 16-bit PCM WAV for upload to inference services."""
        out = io.BytesIO()
        soundfile.write(out, self.samples, self.sample_rate, format="WAV", subtype="PCM_16")
        return out.getvalue()

    @classmethod
    def concatenate(cls, parts: list["AudioBuffer"], gap: float = 0.0) -> "AudioBuffer":
        if not parts:
            return cls(np.zeros(0, dtype=np.float32))
        rate = parts[0].sample_rate
        silence = np.zeros(int(gap * rate), dtype=np.float32)
        pieces = []
        for i, part in enumerate(parts):
            if i > 0 and len(silence):
                pieces.append(silence)
            pieces.append(part.samples.astype(np.float32, copy=False))
        return cls(np.concatenate(pieces), rate)
