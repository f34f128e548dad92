"""SherpaTranscriptionAdapter — local offline ASR with token timestamps.

A chunk slice is split into sub-chunks that fit the encoder's attention
window (~100s max), decoded as one batch of streams off the event loop,
and the token timestamps are regrouped into caption-sized segments at
silence gaps.

Decoding is CPU/GPU bound and has little parallel headroom, which is why
is_local() routes it through the LOCAL_CONCURRENCY limit.
"""

import asyncio
import logging
import os
from typing import Optional

import numpy as np

from chunkscribe.domain.audio import DEFAULT_SAMPLE_RATE, AudioBuffer
from chunkscribe.domain.models import TranscriptSegment
from chunkscribe.ports.transcription import TranscriptionOptions, TranscriptionPort
from chunkscribe.use_cases.concurrency import CancelToken

logger = logging.getLogger(__name__)

REQUIRED_FILES = ["encoder.int8.onnx", "decoder.int8.onnx", "joiner.int8.onnx", "tokens.txt"]

DEFAULT_MODEL_DIR = "/models/sherpa-onnx"

# Parakeet TDT's self-attention supports ~100s; 80s leaves a margin.
MAX_CHUNK_SECONDS = 80

# Gap between tokens (seconds) that starts a new caption.
SEGMENT_SILENCE_THRESHOLD = 0.5

# Caption length cap (seconds).
MAX_SEGMENT_DURATION = 7.0


def group_tokens(tokens: list[str], timestamps: list[float], duration: float) -> list[TranscriptSegment]:
    """Group timestamped tokens into segments at silence gaps or length caps."""
    if not tokens:
        return []

    segments: list[TranscriptSegment] = []
    current: list[str] = [tokens[0]]
    start = prev = timestamps[0]

    def _flush(end: float) -> None:
        text = "".join(current).strip()
        if text:
            segments.append(TranscriptSegment(start=start, end=end, text=text))

    for token, ts in zip(tokens[1:], timestamps[1:]):
        if ts - prev > SEGMENT_SILENCE_THRESHOLD or ts - start > MAX_SEGMENT_DURATION:
            _flush(prev + 0.1)
            current, start = [token], ts
        else:
            current.append(token)
        prev = ts
    _flush(min(prev + 0.1, duration))
    return segments


class SherpaTranscriptionAdapter(TranscriptionPort):
    def __init__(self, model_dir: str = DEFAULT_MODEL_DIR, provider: str = "cuda", num_threads: int = 4):
        self._model_dir = model_dir
        self._provider = provider
        self._num_threads = num_threads
        self._recognizer = None

    def load(self) -> None:
        """Load the transducer model. Called lazily on first use."""
        import sherpa_onnx

        missing = [f for f in REQUIRED_FILES if not os.path.exists(os.path.join(self._model_dir, f))]
        if missing:
            raise FileNotFoundError(f"Missing model files in {self._model_dir}: {missing}")

        logger.info(f"Loading Sherpa-ONNX ASR model from {self._model_dir} (provider={self._provider})")
        self._recognizer = sherpa_onnx.OfflineRecognizer.from_transducer(
            encoder=os.path.join(self._model_dir, "encoder.int8.onnx"),
            decoder=os.path.join(self._model_dir, "decoder.int8.onnx"),
            joiner=os.path.join(self._model_dir, "joiner.int8.onnx"),
            tokens=os.path.join(self._model_dir, "tokens.txt"),
            model_type="nemo_transducer",
            provider=self._provider,
            num_threads=self._num_threads,
        )
        logger.info("ASR model loaded")

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
        return await asyncio.to_thread(self._decode, audio)

    def _decode(self, audio: AudioBuffer) -> list[TranscriptSegment]:
        if self._recognizer is None:
            self.load()
        if audio.sample_rate != DEFAULT_SAMPLE_RATE:
            raise ValueError(f"Expected {DEFAULT_SAMPLE_RATE}Hz audio, got {audio.sample_rate}Hz")

        samples = audio.samples.astype(np.float32, copy=False)
        sub_len = MAX_CHUNK_SECONDS * audio.sample_rate
        count = max(1, int(np.ceil(len(samples) / sub_len)))

        streams = []
        offsets = []
        for i in range(count):
            stream = self._recognizer.create_stream()
            stream.accept_waveform(audio.sample_rate, samples[i * sub_len:(i + 1) * sub_len])
            streams.append(stream)
            offsets.append(i * MAX_CHUNK_SECONDS)
        self._recognizer.decode_streams(streams)

        tokens: list[str] = []
        timestamps: list[float] = []
        for stream, offset in zip(streams, offsets):
            result = stream.result
            tokens.extend(result.tokens)
            timestamps.extend(t + offset for t in result.timestamps)

        segments = group_tokens(tokens, timestamps, audio.duration)
        logger.debug(f"Decoded {audio.duration:.1f}s in {count} stream(s): {len(segments)} segments")
        return segments

    def model_name(self) -> str:
        return "parakeet-tdt-0.6b-v2-int8"

    def is_local(self) -> bool:
        return True
