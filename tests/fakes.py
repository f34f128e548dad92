"""Fakes for the pipeline ports, shared by the test modules.

FakeAudio encodes the chunk index into the sample values (index * 0.01) so
fakes further down the pipeline can tell which chunk a slice came from.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import Callable, Optional

import numpy as np

from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.errors import RetryableError
from chunkscribe.domain.models import ChunkSpec, SegmentationResult, TokenUsage, TranscriptSegment
from chunkscribe.models import (
    GlossaryResponse, GlossaryTermSchema, RefinedItem, RefinementResponse, SpeakerCharacteristicsSchema,
    SpeakerProfileSchema, SpeakerProfilesResponse, TranslatedItem, TranslationResponse,
)
from chunkscribe.ports.audio import AudioProcessingPort
from chunkscribe.ports.generation import GenerationPort, GenerationResult
from chunkscribe.ports.progress import ProgressPort
from chunkscribe.ports.segmentation import SegmentProviderPort
from chunkscribe.ports.transcription import TranscriptionPort
from chunkscribe.use_cases.concurrency import CancelToken
from chunkscribe.use_cases.context import PipelineContext, PipelineLimits, ProgressRecorder
from chunkscribe.use_cases.retry import RetryPolicy
from chunkscribe.use_cases.usage_report import UsageReporter

SAMPLE_RATE = 1000
FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0)


def chunk_index_of(audio: AudioBuffer) -> int:
    if len(audio.samples) == 0:
        return 0
    return int(round(float(audio.samples[0]) * 100))


class FakeAudio(AudioProcessingPort, SegmentProviderPort):
    def __init__(self, chunk_count: int = 3, chunk_duration: float = 300.0):
        self.chunk_duration = chunk_duration
        per_chunk = int(chunk_duration * SAMPLE_RATE)
        self.samples = np.concatenate(
            [np.full(per_chunk, 0.01 * (i + 1), dtype=np.float32) for i in range(chunk_count)]
        ) if chunk_count else np.zeros(0, dtype=np.float32)
        self.sampled = 0

    def convert_to_wav(self, input_path: str, sample_rate: int = 16000) -> str:
        return input_path

    def load(self, wav_path: str) -> AudioBuffer:
        return AudioBuffer(self.samples, SAMPLE_RATE)

    async def segment(self, audio, target_chunk_duration, cancel=None) -> SegmentationResult:
        count = int(np.ceil(audio.duration / target_chunk_duration)) if audio.duration else 0
        chunks = [
            ChunkSpec(index=i + 1, start=i * target_chunk_duration,
                      end=min((i + 1) * target_chunk_duration, audio.duration))
            for i in range(count)
        ]
        return SegmentationResult(chunks=chunks, windows=[], duration=audio.duration)

    def sample_for_profiles(self, audio, windows, target_seconds=480.0, sample_count=8) -> AudioBuffer:
        self.sampled += 1
        return audio.slice(0, min(audio.duration, target_seconds))


class FakeTranscriber(TranscriptionPort):
    """Three 10s segments per chunk, chunk-relative, with optional per-chunk delay."""

    def __init__(
        self,
        delays: Optional[dict[int, float]] = None,
        fail: Optional[dict[int, Exception]] = None,
        empty: tuple[int, ...] = (),
        local: bool = False,
        default_delay: float = 0.0,
    ):
        self.delays = delays or {}
        self.fail = fail or {}
        self.empty = empty
        self.local = local
        self.default_delay = default_delay
        self.active = 0
        self.peak = 0
        self.calls: list[int] = []

    async def transcribe(self, audio, options, cancel=None) -> list[TranscriptSegment]:
        index = chunk_index_of(audio)
        self.calls.append(index)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays.get(index, self.default_delay))
        finally:
            self.active -= 1
        if index in self.fail:
            raise self.fail[index]
        if index in self.empty:
            return [TranscriptSegment(0.0, 2.0, "[Music]")]
        return [
            TranscriptSegment(start=n * 20.0, end=n * 20.0 + 10.0, text=f"chunk {index} raw {n}")
            for n in range(3)
        ]

    def model_name(self) -> str:
        return "fake-asr"

    def is_local(self) -> bool:
        return self.local


def default_response(request, attempt: int):
    """Deterministic well-formed output for every generative step."""
    index = request.chunk_index
    if request.step == "glossary":
        return GlossaryResponse(terms=[GlossaryTermSchema(term=f"Term{index}", translation=f"术语{index}")])
    if request.step == "refinement":
        return RefinementResponse(segments=[
            RefinedItem(start=n * 20.0 + 0.5, end=n * 20.0 + 9.5, text=f"chunk {index} line {n}")
            for n in range(3)
        ])
    if request.step == "translation":
        return TranslationResponse(items=[
            TranslatedItem(id=item_id, text_translated=f"T:{item_id}") for item_id in request.metadata["ids"]
        ])
    if request.step == "speaker_profiles":
        return SpeakerProfilesResponse(speakers=[
            SpeakerProfileSchema(
                id="Speaker 1",
                characteristics=SpeakerCharacteristicsSchema(gender="female", name="Alice"),
                sample_quotes=["hello there"],
                confidence=0.9,
            )
        ])
    raise AssertionError(f"unexpected step {request.step}")


class FakeGenerator(GenerationPort):
    """Records every call. handler(request, attempt) returns a model or an exception."""

    def __init__(self, handler: Optional[Callable] = None, delay: float = 0.0, delays: Optional[dict] = None):
        self.handler = handler or default_response
        self.delay = delay
        self.delays = delays or {}
        self.calls: list = []
        self.call_times: list[float] = []
        self.attempts: dict = defaultdict(int)
        self.active: dict = defaultdict(int)
        self.peak: dict = defaultdict(int)

    async def generate(self, request, cancel=None) -> GenerationResult:
        key = (request.step, request.chunk_index)
        self.attempts[key] += 1
        attempt = self.attempts[key]
        self.calls.append(request)
        self.call_times.append(time.monotonic())
        self.active[request.step] += 1
        self.peak[request.step] = max(self.peak[request.step], self.active[request.step])
        try:
            await asyncio.sleep(self.delays.get(key, self.delay))
        finally:
            self.active[request.step] -= 1
        result = self.handler(request, attempt)
        if isinstance(result, Exception):
            raise result
        return GenerationResult(
            data=result,
            usage=TokenUsage(model=request.model, prompt_tokens=100, output_tokens=20, total_tokens=120),
        )

    def steps(self, step: str) -> list:
        return [c for c in self.calls if c.step == step]


class FakeProgress(ProgressPort):
    def __init__(self):
        self.updates: list = []

    def report(self, status) -> None:
        self.updates.append(status)

    def for_id(self, id) -> list:
        return [u for u in self.updates if u.id == id]


def make_context(progress: Optional[FakeProgress] = None, cancel: Optional[CancelToken] = None, **limits) -> PipelineContext:
    """Build inside a running loop."""
    return PipelineContext(
        cancel=cancel or CancelToken(),
        progress=ProgressRecorder(progress or FakeProgress()),
        usage=UsageReporter(),
        limits=PipelineLimits(**limits),
        retry=FAST_RETRY,
    )


def transient(message: str = "503 service unavailable") -> RetryableError:
    return RetryableError(message)
