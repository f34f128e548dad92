"""GenerateSubtitlesUseCase — orchestrates the chunked subtitle pipeline.

Accepts all ports via dependency injection. Fans the chunks out under a
high admission limit while the transcription and pipeline semaphores do the
real throttling; the glossary and speaker profile producers run alongside
as supervised background tasks.
"""

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from chunkscribe.domain.errors import PipelineCancelled
from chunkscribe.domain.models import (
    ChunkResult, ChunkStatus, GlossaryExtractionResult, GlossaryTerm, SpeakerProfile, SubtitleSegment,
)
from chunkscribe.mappers import segments_to_srt
from chunkscribe.ports.artifacts import ArtifactSinkPort
from chunkscribe.ports.audio import AudioProcessingPort
from chunkscribe.ports.generation import GenerationPort
from chunkscribe.ports.progress import ProgressPort
from chunkscribe.ports.segmentation import SegmentProviderPort
from chunkscribe.ports.transcription import TranscriptionOptions, TranscriptionPort
from chunkscribe.post_processing import select_chunks_by_duration
from chunkscribe.use_cases.chunk_processor import ChunkProcessor
from chunkscribe.use_cases.concurrency import CancelToken, map_in_parallel
from chunkscribe.use_cases.context import PipelineContext, PipelineLimits, ProgressRecorder
from chunkscribe.use_cases.glossary import ConfirmGlossary, GlossaryExtractor, GlossaryHandler
from chunkscribe.use_cases.refinement import Refiner
from chunkscribe.use_cases.retry import RetryPolicy
from chunkscribe.use_cases.shared_future import SharedFuture
from chunkscribe.use_cases.speakers import SpeakerProfiler
from chunkscribe.use_cases.translation import Translator
from chunkscribe.use_cases.usage_report import UsageReporter

logger = logging.getLogger(__name__)

MIN_ADMISSION = 20


@dataclass
class GenerateSubtitlesRequest:
    """All parameters for one subtitle run."""
    audio_path: str
    target_language: str = "zh-CN"
    source_language: Optional[str] = None
    genre: str = "general"
    chunk_duration: float = 300
    pipeline_concurrency: int = 5
    local_concurrency: int = 1
    glossary_concurrency: int = 2
    enable_glossary: bool = True
    glossary_sample_minutes: Union[str, float] = "all"
    glossary: List[GlossaryTerm] = field(default_factory=list)
    enable_diarization: bool = False
    enable_speaker_pre_analysis: bool = True
    translate: bool = True
    translation_batch_size: int = 20
    post_check_retries: int = 1
    refinement_model: str = "gpt-4o-audio-preview"
    translation_model: str = "gpt-4o-mini"
    glossary_model: str = "gpt-4o-audio-preview"
    speaker_model: str = "gpt-4o-audio-preview"
    request_timeout: Optional[float] = 600
    convert: bool = True

    @classmethod
    def from_config(cls, cfg, audio_path: str, **overrides) -> "GenerateSubtitlesRequest":
        """Defaults from the process Config, then explicit overrides."""
        values = dict(
            audio_path=audio_path,
            target_language=cfg.target_language,
            genre=cfg.genre,
            chunk_duration=cfg.chunk_duration,
            pipeline_concurrency=cfg.concurrency_flash,
            local_concurrency=cfg.local_concurrency,
            glossary_concurrency=cfg.concurrency_pro,
            enable_glossary=cfg.enable_auto_glossary,
            glossary_sample_minutes=cfg.glossary_sample_minutes,
            enable_diarization=cfg.enable_diarization,
            enable_speaker_pre_analysis=cfg.enable_speaker_pre_analysis,
            translation_batch_size=cfg.translation_batch_size,
            refinement_model=cfg.refinement_model,
            translation_model=cfg.translation_model,
            glossary_model=cfg.glossary_model,
            speaker_model=cfg.speaker_model,
            request_timeout=cfg.request_timeout,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class SubtitleRunResult:
    subtitles: List[SubtitleSegment]
    chunk_results: List[ChunkResult]
    glossary: List[GlossaryTerm] = field(default_factory=list)
    glossary_results: List[GlossaryExtractionResult] = field(default_factory=list)
    speaker_profiles: List[SpeakerProfile] = field(default_factory=list)
    usage: Dict[str, Any] = field(default_factory=dict)
    statuses: List[ChunkStatus] = field(default_factory=list)
    translation_fallbacks: int = 0
    cancelled: bool = False
    duration: float = 0.0


def merge_chunk_results(results: List[ChunkResult], layer: str = "final") -> List[SubtitleSegment]:
    """Concatenate one layer of every chunk, in chunk order."""
    merged: List[SubtitleSegment] = []
    for result in results:
        merged.extend(getattr(result, layer))
    return merged


class GenerateSubtitlesUseCase:
    def __init__(
        self,
        audio: AudioProcessingPort,
        segmenter: SegmentProviderPort,
        transcription: TranscriptionPort,
        generation: GenerationPort,
        progress: Optional[ProgressPort] = None,
        artifacts: Optional[ArtifactSinkPort] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        self._audio = audio
        self._segmenter = segmenter
        self._transcription = transcription
        self._generation = generation
        self._progress = progress
        self._artifacts = artifacts
        self._retry = retry or RetryPolicy()

    async def execute(
        self,
        req: GenerateSubtitlesRequest,
        cancel: Optional[CancelToken] = None,
        confirm_glossary: Optional[ConfirmGlossary] = None,
        on_intermediate: Optional[Callable[[List[SubtitleSegment]], None]] = None,
    ) -> SubtitleRunResult:
        """Run the full pipeline and return the merged result."""
        cancel = cancel or CancelToken()
        job_id = uuid.uuid4().hex[:12]
        logger.info(f"[{job_id}] Generating subtitles for {req.audio_path}")

        # 1. Decode audio
        wav_file = req.audio_path
        if req.convert:
            wav_file = await asyncio.to_thread(self._audio.convert_to_wav, req.audio_path)
        try:
            audio = await asyncio.to_thread(self._audio.load, wav_file)
        finally:
            if wav_file != req.audio_path:
                try:
                    os.unlink(wav_file)
                except OSError as e:
                    logger.warning(f"Cleanup error: {e}")

        # 2. Segment
        segmentation = await self._segmenter.segment(audio, req.chunk_duration, cancel)
        chunks = segmentation.chunks
        total = len(chunks)

        # 3. Run context
        transcription_limit = req.local_concurrency if self._transcription.is_local() else req.pipeline_concurrency
        limits = PipelineLimits(
            pipeline=max(1, req.pipeline_concurrency),
            transcription=max(1, transcription_limit),
            glossary=max(1, req.glossary_concurrency),
            admission=max(total, req.pipeline_concurrency, MIN_ADMISSION),
        )
        ctx = PipelineContext(
            cancel=cancel,
            progress=ProgressRecorder(self._progress),
            usage=UsageReporter(),
            limits=limits,
            retry=self._retry,
            artifacts=self._artifacts,
        )
        logger.info(
            f"[{job_id}] {total} chunk(s), {audio.duration:.1f}s audio; concurrency: "
            f"admission={limits.admission}, transcription={limits.transcription}, "
            f"pipeline={limits.pipeline}, glossary={limits.glossary}"
        )

        # 4. Background producers
        glossary_handler, glossary_future = self._start_glossary(ctx, req, audio, chunks, confirm_glossary)
        speakers_future = self._start_speakers(ctx, req, audio, segmentation.windows)

        # 5. Chunks
        processor = ChunkProcessor(
            ctx=ctx,
            audio=audio,
            transcriber=self._transcription,
            refiner=Refiner(
                ctx, self._generation, req.refinement_model, req.genre,
                max_retries=req.post_check_retries, timeout=req.request_timeout,
            ),
            translator=Translator(
                ctx, self._generation, req.translation_model, req.target_language, req.genre,
                batch_size=req.translation_batch_size, max_retries=req.post_check_retries,
                timeout=req.request_timeout,
            ) if req.translate else None,
            glossary=glossary_future,
            speakers=speakers_future,
            options=TranscriptionOptions(language=req.source_language),
            total=total,
        )
        chunk_results = [ChunkResult(chunk=chunk) for chunk in chunks]

        async def run_chunk(chunk, position: int) -> None:
            chunk_results[position] = await processor.process(chunk)
            if on_intermediate is not None:
                try:
                    on_intermediate(merge_chunk_results(chunk_results))
                except Exception as e:
                    logger.warning(f"Intermediate result callback failed: {e}")

        try:
            await map_in_parallel(chunks, limits.admission, run_chunk, cancel)
        except PipelineCancelled:
            logger.info(f"[{job_id}] Run cancelled; returning completed chunks")
        finally:
            # 6. Supervise the producers before declaring the run finished
            glossary_terms = await glossary_future.settle()
            profiles = await speakers_future.settle() if speakers_future is not None else ()

        for result in chunk_results:
            if result.status == "pending":
                result.status = "cancelled"

        # 7. Merge in chunk order
        subtitles = merge_chunk_results(chunk_results)
        ctx.usage.log_report()
        ctx.save_artifact("full_raw.srt", segments_to_srt(merge_chunk_results(chunk_results, "raw")))
        ctx.save_artifact("full_refined.srt", segments_to_srt(merge_chunk_results(chunk_results, "refined")))
        ctx.save_artifact("full_final.srt", segments_to_srt(subtitles, bilingual=True))
        ctx.save_artifact("usage.json", ctx.usage.as_dict())

        failed = [r.chunk.index for r in chunk_results if r.status == "error"]
        fallbacks = sum(r.translation_fallbacks for r in chunk_results)
        logger.info(
            f"[{job_id}] Done: {len(subtitles)} subtitles from {total} chunk(s)"
            + (f", failed chunks {failed}" if failed else "")
            + (f", {fallbacks} translation fallback(s)" if fallbacks else "")
        )

        return SubtitleRunResult(
            subtitles=subtitles,
            chunk_results=chunk_results,
            glossary=list(glossary_terms),
            glossary_results=glossary_handler.results if glossary_handler else [],
            speaker_profiles=list(profiles),
            usage=ctx.usage.as_dict(),
            statuses=ctx.progress.statuses(),
            translation_fallbacks=fallbacks,
            cancelled=cancel.cancelled,
            duration=audio.duration,
        )

    def _start_glossary(self, ctx, req, audio, chunks, confirm):
        seed = tuple(req.glossary)
        if not req.enable_glossary or not chunks:
            return None, SharedFuture.resolved(seed, name="glossary")
        selected = select_chunks_by_duration(chunks, req.glossary_sample_minutes, req.chunk_duration)
        logger.info(f"[Glossary] Extracting from {len(selected)}/{len(chunks)} chunk(s)")
        extractor = GlossaryExtractor(
            ctx, self._generation, audio, req.glossary_model, req.target_language, req.genre,
            concurrency=ctx.limits.glossary, timeout=req.request_timeout,
        )
        handler = GlossaryHandler(ctx, extractor, selected, seed=seed, confirm=confirm)
        future = SharedFuture(handler.run, default=seed, name="glossary")
        future.start()
        return handler, future

    def _start_speakers(self, ctx, req, audio, windows):
        if not (req.enable_diarization and req.enable_speaker_pre_analysis):
            return None
        profiler = SpeakerProfiler(
            ctx, self._generation, self._audio, audio, windows, req.speaker_model, req.genre,
            timeout=req.request_timeout,
        )
        future = SharedFuture(profiler.run, default=(), name="speakers")
        future.start()
        return future
