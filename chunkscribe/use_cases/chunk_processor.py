"""ChunkProcessor — drives one chunk from audio slice to final captions.

transcribe -> clean -> wait(glossary, speakers) -> refine -> translate
-> reconcile -> done. Every failure is contained here: the orchestrator
always gets a ChunkResult back, possibly empty or partial.
"""

import logging
from typing import Optional

from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.errors import PipelineCancelled, actionable_message
from chunkscribe.domain.models import (
    ChunkResult, ChunkSpec, GlossaryTerm, SpeakerProfile, Stage, Status, SubtitleSegment,
)
from chunkscribe.ports.transcription import TranscriptionOptions, TranscriptionPort
from chunkscribe.post_processing import best_available, clean_segments, reconcile_timestamps, shift_timestamps
from chunkscribe.use_cases.concurrency import wait_cancellable
from chunkscribe.use_cases.context import PipelineContext
from chunkscribe.use_cases.refinement import Refiner
from chunkscribe.use_cases.retry import call_with_retry
from chunkscribe.use_cases.shared_future import SharedFuture
from chunkscribe.use_cases.translation import Translator

logger = logging.getLogger(__name__)

COMPLETED = "completed"
COMPLETED_NO_CONTENT = "completed_no_content"
FAILED = "error"
CANCELLED = "cancelled"


class ChunkProcessor:
    def __init__(
        self,
        ctx: PipelineContext,
        audio: AudioBuffer,
        transcriber: TranscriptionPort,
        refiner: Refiner,
        translator: Optional[Translator],
        glossary: SharedFuture[tuple[GlossaryTerm, ...]],
        speakers: Optional[SharedFuture[tuple[SpeakerProfile, ...]]] = None,
        options: Optional[TranscriptionOptions] = None,
        total: int = 1,
    ):
        self._ctx = ctx
        self._audio = audio
        self._transcriber = transcriber
        self._refiner = refiner
        self._translator = translator
        self._glossary = glossary
        self._speakers = speakers
        self._options = options or TranscriptionOptions()
        self._total = total

    def _report(self, chunk: ChunkSpec, status: Status, stage: Optional[Stage] = None, message: Optional[str] = None) -> None:
        self._ctx.progress.report(chunk.index, self._total, status, stage, message)

    async def _transcribe(self, chunk: ChunkSpec, clip: AudioBuffer) -> list[SubtitleSegment]:
        ctx = self._ctx
        self._report(chunk, Status.PENDING, Stage.TRANSCRIBING, "Waiting for transcription slot")
        async with ctx.transcription_semaphore.slot(ctx.cancel):
            self._report(chunk, Status.PROCESSING, Stage.TRANSCRIBING)
            transcript = await call_with_retry(
                lambda: wait_cancellable(self._transcriber.transcribe(clip, self._options, ctx.cancel), ctx.cancel),
                ctx.retry, ctx.cancel, label=f"[Chunk {chunk.index}] transcription",
            )
        return [
            SubtitleSegment(id=f"{chunk.index}-{n}", start=s.start, end=s.end, original=s.text.strip(), speaker=s.speaker)
            for n, s in enumerate(transcript, 1)
        ]

    async def process(self, chunk: ChunkSpec) -> ChunkResult:
        ctx = self._ctx
        label = f"[Chunk {chunk.index}]"
        result = ChunkResult(chunk=chunk)
        try:
            # 1. Transcribe
            clip = self._audio.slice(chunk.start, chunk.end)
            raw = await self._transcribe(chunk, clip)
            ctx.save_artifact(f"chunk_{chunk.index:03d}_transcript.json", raw)

            # 2. Clean
            raw = clean_segments(raw)
            result.raw = shift_timestamps(raw, chunk.start)
            logger.info(f"{label} Transcribed {len(raw)} segment(s)")
            if not raw:
                result.status = COMPLETED_NO_CONTENT
                self._report(chunk, Status.COMPLETED, message="No speech detected")
                return result

            # 3. Wait for shared context
            self._report(chunk, Status.PROCESSING, Stage.WAITING_GLOSSARY)
            glossary = await self._glossary.get(ctx.cancel)
            profiles: tuple[SpeakerProfile, ...] = ()
            if self._speakers is not None:
                self._report(chunk, Status.PROCESSING, Stage.WAITING_SPEAKERS)
                profiles = await self._speakers.get(ctx.cancel)

            # 4-5. Refine and translate hold one pipeline slot
            self._report(chunk, Status.PENDING, Stage.WAITING_REFINEMENT)
            async with ctx.pipeline_semaphore.slot(ctx.cancel):
                self._report(chunk, Status.PROCESSING, Stage.REFINING)
                refinement = await self._refiner.refine(chunk, clip, raw, glossary, profiles)
                to_global = reconcile_timestamps if refinement.generated else shift_timestamps
                result.refined = to_global(refinement.segments, chunk.start)
                ctx.save_artifact(f"chunk_{chunk.index:03d}_refined.json", result.refined)

                if self._translator is not None:
                    self._report(chunk, Status.PROCESSING, Stage.TRANSLATING)
                    translation = await self._translator.translate(refinement.segments, glossary, chunk.index)
                    result.translation_fallbacks = translation.fallbacks
                    # 6. Reconcile
                    result.translated = to_global(translation.segments, chunk.start)
                    ctx.save_artifact(f"chunk_{chunk.index:03d}_translated.json", result.translated)

            result.final = best_available(result.translated, result.refined, result.raw)
            result.status = COMPLETED
            self._report(chunk, Status.COMPLETED, message=f"{len(result.final)} subtitles")
            return result

        except PipelineCancelled:
            logger.info(f"{label} Cancelled")
            result.status = CANCELLED
            result.final = best_available(result.translated, result.refined, result.raw)
            self._report(chunk, Status.CANCELLED, message="Cancelled")
            return result
        except Exception as e:
            logger.exception(f"{label} Failed: {e}")
            result.status = FAILED
            result.error = actionable_message(e)
            result.final = best_available(result.translated, result.refined, result.raw)
            self._report(chunk, Status.ERROR, message=result.error)
            return result
