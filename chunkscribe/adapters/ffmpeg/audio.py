"""FFmpegAudioAdapter — audio preprocessing and segmentation.

ffmpeg converts any input to 16kHz mono WAV. numpy then finds speech
windows by frame energy, and chunk boundaries are moved into the silence
gap closest to each target boundary.
"""

import os
import asyncio
import logging
import tempfile
import subprocess
from typing import Optional

import numpy as np
import soundfile

from chunkscribe.domain.audio import DEFAULT_SAMPLE_RATE, AudioBuffer
from chunkscribe.domain.models import ChunkSpec, SegmentationResult, SpeechWindow
from chunkscribe.ports.audio import AudioProcessingPort
from chunkscribe.ports.segmentation import SegmentProviderPort
from chunkscribe.use_cases.concurrency import CancelToken, wait_cancellable

logger = logging.getLogger(__name__)

# Energy VAD
FRAME_SECONDS = 0.03
ENERGY_FLOOR = 0.01
NOISE_MULTIPLIER = 2.0
PEAK_FRACTION = 0.5
MIN_SPEECH_SECONDS = 0.3
MIN_SILENCE_SECONDS = 0.4

# Smart split search window: +/- min(10% of target, 30s)
SEARCH_FRACTION = 0.1
MAX_SEARCH_SECONDS = 30.0
MIN_CHUNK_SECONDS = 10.0

# Speaker sampling
MIN_SAMPLE_WINDOW = 5.0
SAMPLE_GAP_SECONDS = 0.5


def detect_speech(audio: AudioBuffer) -> list[SpeechWindow]:
    """Energy-based voice activity windows.

    Frames louder than 2x the 20th-percentile RMS count as voiced. The
    threshold is capped at half the 95th-percentile RMS so recordings with
    little silence still register, and never drops below ENERGY_FLOOR.
    Silences shorter than MIN_SILENCE_SECONDS are bridged.
    """
    frame = max(1, int(audio.sample_rate * FRAME_SECONDS))
    count = len(audio.samples) // frame
    if count == 0:
        return []
    frames = audio.samples[:count * frame].astype(np.float32).reshape(count, frame)
    rms = np.sqrt(np.mean(frames ** 2, axis=1))
    noise = float(np.percentile(rms, 20)) * NOISE_MULTIPLIER
    threshold = max(ENERGY_FLOOR, min(noise, float(np.percentile(rms, 95)) * PEAK_FRACTION))
    voiced = rms > threshold
    frame_seconds = frame / audio.sample_rate
    bridge = int(np.ceil(MIN_SILENCE_SECONDS / frame_seconds))

    windows: list[SpeechWindow] = []

    def _emit(first: int, last: int) -> None:
        start, end = first * frame_seconds, (last + 1) * frame_seconds
        if end - start >= MIN_SPEECH_SECONDS:
            windows.append(SpeechWindow(start, end, energy=float(rms[first:last + 1].mean())))

    first: Optional[int] = None
    last = 0
    for i, is_voiced in enumerate(voiced):
        if is_voiced:
            if first is None:
                first = i
            last = i
        elif first is not None and i - last >= bridge:
            _emit(first, last)
            first = None
    if first is not None:
        _emit(first, last)
    return windows


def find_split(
    windows: list[SpeechWindow],
    chunk_start: float,
    target_end: float,
    target_duration: float,
    total_duration: float,
) -> float:
    """Split point near target_end that avoids cutting through speech."""
    search = min(target_duration * SEARCH_FRACTION, MAX_SEARCH_SECONDS)
    search_start = max(chunk_start + MIN_CHUNK_SECONDS, target_end - search)
    search_end = min(total_duration, target_end + search)
    relevant = [w for w in windows if w.end > search_start and w.start < search_end]
    if not relevant:
        return target_end

    candidates = []
    for before, after in zip(relevant, relevant[1:]):
        if before.end >= search_start and after.start <= search_end:
            candidates.append((before.end + after.start) / 2)
    if relevant[0].start > search_start:
        candidates.append(relevant[0].start - 0.1)
    if relevant[-1].end < search_end:
        candidates.append(relevant[-1].end + 0.1)
    candidates = [c for c in candidates if chunk_start < c < total_duration]
    if not candidates:
        logger.debug(f"No silence near {target_end:.2f}s, hard cut")
        return target_end
    best = min(candidates, key=lambda c: abs(c - target_end))
    logger.debug(f"Smart split at {best:.2f}s (target {target_end:.2f}s)")
    return best


def plan_chunks(windows: list[SpeechWindow], total_duration: float, target_duration: float) -> list[ChunkSpec]:
    """Ordered, contiguous, 1-based chunk specs covering the recording."""
    if total_duration <= 0:
        return []
    if target_duration <= 0:
        raise ValueError(f"Chunk duration must be positive, got {target_duration}")
    chunks: list[ChunkSpec] = []
    start = 0.0
    while start < total_duration:
        target_end = start + target_duration
        if target_end >= total_duration:
            end = total_duration
        else:
            end = find_split(windows, start, target_end, target_duration, total_duration)
        chunks.append(ChunkSpec(index=len(chunks) + 1, start=round(start, 3), end=round(end, 3)))
        start = end
    return chunks


class FFmpegAudioAdapter(AudioProcessingPort, SegmentProviderPort):
    def convert_to_wav(self, input_path: str, sample_rate: int = DEFAULT_SAMPLE_RATE) -> str:
        temp_file = tempfile.NamedTemporaryFile(suffix=".wav", delete=False)
        temp_file.close()
        output_path = temp_file.name

        try:
            cmd = [
                "ffmpeg", "-y",
                "-i", input_path,
                "-c:a", "pcm_s16le",
                "-ar", str(sample_rate),
                "-ac", "1",
                output_path,
            ]
            result = subprocess.run(cmd, capture_output=True, text=True)
            if result.returncode != 0:
                logger.error(f"Error converting audio: {result.stderr}")
                raise RuntimeError(f"Failed to convert audio: {result.stderr}")
            return output_path

        except Exception:
            if os.path.exists(output_path):
                os.unlink(output_path)
            raise

    def load(self, wav_path: str) -> AudioBuffer:
        samples, sample_rate = soundfile.read(wav_path, dtype="float32")
        if len(samples.shape) > 1:
            samples = samples.mean(axis=1)
        if sample_rate != DEFAULT_SAMPLE_RATE:
            logger.warning(f"Audio is {sample_rate}Hz, resampling to {DEFAULT_SAMPLE_RATE}Hz")
            target_len = int(len(samples) * DEFAULT_SAMPLE_RATE / sample_rate)
            indices = np.linspace(0, len(samples) - 1, target_len)
            samples = np.interp(indices, np.arange(len(samples)), samples).astype(np.float32)
            sample_rate = DEFAULT_SAMPLE_RATE
        audio = AudioBuffer(samples, sample_rate)
        logger.info(f"Audio loaded: {audio.duration:.2f}s @ {sample_rate}Hz")
        return audio

    async def segment(
        self,
        audio: AudioBuffer,
        target_chunk_duration: float,
        cancel: Optional[CancelToken] = None,
    ) -> SegmentationResult:
        windows = await wait_cancellable(asyncio.to_thread(detect_speech, audio), cancel)
        chunks = plan_chunks(windows, audio.duration, target_chunk_duration)
        logger.info(
            f"Segmented {audio.duration:.1f}s into {len(chunks)} chunk(s) "
            f"(target {target_chunk_duration}s, {len(windows)} speech windows)"
        )
        return SegmentationResult(chunks=chunks, windows=windows, duration=audio.duration)

    def sample_for_profiles(
        self,
        audio: AudioBuffer,
        windows: list[SpeechWindow],
        target_seconds: float = 480.0,
        sample_count: int = 8,
    ) -> AudioBuffer:
        """Take the strongest long speech window from each of sample_count zones.

        Without usable windows the first target_seconds of audio is used.
        """
        candidates = [w for w in windows if w.duration >= MIN_SAMPLE_WINDOW]
        if not candidates or sample_count < 1:
            logger.info(f"No speech windows for sampling, using first {target_seconds:.0f}s")
            return audio.slice(0, min(audio.duration, target_seconds))

        per_sample = target_seconds / sample_count
        zone = audio.duration / sample_count
        picks = []
        for z in range(sample_count):
            low, high = z * zone, (z + 1) * zone
            in_zone = [w for w in candidates if low <= w.start < high]
            if in_zone:
                picks.append(max(in_zone, key=lambda w: w.duration * max(w.energy, 1e-6)))

        parts = [audio.slice(w.start, min(w.end, w.start + per_sample)) for w in picks]
        sample = AudioBuffer.concatenate(parts, gap=SAMPLE_GAP_SECONDS)
        logger.info(f"Sampled {len(parts)} excerpt(s), {sample.duration:.1f}s for speaker profiling")
        return sample
