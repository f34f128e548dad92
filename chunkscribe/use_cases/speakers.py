"""Speaker profiling: one sampled inference call per run.

Produces the speaker profile set behind the run's second SharedFuture.
Any failure degrades to an empty set so chunks fall back to per-chunk
voice detection.
"""

import asyncio
import logging
from collections import Counter
from typing import Iterable, Optional

from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.errors import PipelineCancelled, actionable_message
from chunkscribe.domain.models import SpeakerCharacteristics, SpeakerProfile, SpeechWindow, Stage, Status
from chunkscribe.models import SpeakerProfileSchema, SpeakerProfilesResponse
from chunkscribe.ports.audio import AudioProcessingPort
from chunkscribe.ports.generation import GenerationPort, GenerationRequest
from chunkscribe.use_cases.context import PipelineContext
from chunkscribe.use_cases.prompts import speaker_prompt

logger = logging.getLogger(__name__)

PROGRESS_ID = "speakers"
DEFAULT_SAMPLE_SECONDS = 480.0
DEFAULT_SAMPLE_COUNT = 8


def to_profile(schema: SpeakerProfileSchema, use_name: bool = True) -> SpeakerProfile:
    """Domain profile; an inferred name replaces the generic id when use_name is set."""
    c = schema.characteristics
    name = (c.name or "").strip() if use_name else ""
    return SpeakerProfile(
        id=name or schema.id,
        characteristics=SpeakerCharacteristics(
            gender=c.gender, name=c.name, pitch=c.pitch, speed=c.speed, accent=c.accent, tone=c.tone,
        ),
        sample_quotes=tuple(schema.sample_quotes),
        confidence=schema.confidence,
    )


def to_profiles(schemas: Iterable[SpeakerProfileSchema]) -> tuple[SpeakerProfile, ...]:
    """Profiles with unique ids. A name inferred for more than one speaker keeps their generic ids."""
    schemas = list(schemas)
    names = Counter((s.characteristics.name or "").strip().lower() for s in schemas)
    return tuple(
        to_profile(s, use_name=names[(s.characteristics.name or "").strip().lower()] == 1)
        for s in schemas
    )


class SpeakerProfiler:
    def __init__(
        self,
        ctx: PipelineContext,
        generator: GenerationPort,
        audio_port: AudioProcessingPort,
        audio: AudioBuffer,
        windows: list[SpeechWindow],
        model: str,
        genre: str = "general",
        target_seconds: float = DEFAULT_SAMPLE_SECONDS,
        sample_count: int = DEFAULT_SAMPLE_COUNT,
        timeout: Optional[float] = None,
    ):
        self._ctx = ctx
        self._generator = generator
        self._audio_port = audio_port
        self._audio = audio
        self._windows = windows
        self._model = model
        self._genre = genre
        self._target_seconds = target_seconds
        self._sample_count = sample_count
        self._timeout = timeout

    async def run(self) -> tuple[SpeakerProfile, ...]:
        progress = self._ctx.progress
        progress.report(PROGRESS_ID, 1, Status.PROCESSING, Stage.PROFILING_SPEAKERS, "Sampling audio")
        try:
            sample = await asyncio.to_thread(
                self._audio_port.sample_for_profiles,
                self._audio, self._windows, self._target_seconds, self._sample_count,
            )
            if sample.duration <= 0:
                logger.warning("Speaker profiling skipped: no audio to sample")
                progress.report(PROGRESS_ID, 1, Status.COMPLETED, message="No audio to sample")
                return ()

            logger.info(f"Profiling speakers from a {sample.duration:.1f}s sample")
            system, user = speaker_prompt(self._genre)
            request = GenerationRequest(
                step="speaker_profiles",
                model=self._model,
                system_prompt=system,
                prompt=user,
                schema=SpeakerProfilesResponse,
                audio=sample.to_wav_bytes(),
                timeout=self._timeout,
            )
            result = await self._ctx.generate(self._generator, request)
            profiles = to_profiles(result.data.speakers)
        except PipelineCancelled:
            progress.report(PROGRESS_ID, 1, Status.CANCELLED, message="Speaker profiling cancelled")
            raise
        except Exception as e:
            logger.warning(f"Speaker profiling failed, continuing without profiles: {e}")
            progress.report(PROGRESS_ID, 1, Status.ERROR, message=actionable_message(e))
            return ()

        logger.info(f"Identified {len(profiles)} speaker(s): {', '.join(p.id for p in profiles)}")
        self._ctx.save_artifact("speaker_profiles.json", list(profiles))
        progress.report(PROGRESS_ID, 1, Status.COMPLETED, message=f"{len(profiles)} speakers")
        return profiles
