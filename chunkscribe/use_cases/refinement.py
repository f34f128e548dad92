"""Refinement: re-derive caption timing and wording from the chunk audio."""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.errors import PipelineCancelled
from chunkscribe.domain.models import ChunkSpec, GlossaryTerm, SpeakerProfile, SubtitleSegment
from chunkscribe.models import RefinedItem, RefinementResponse
from chunkscribe.ports.generation import GenerationPort, GenerationRequest
from chunkscribe.use_cases.context import PipelineContext
from chunkscribe.use_cases.post_check import (
    CheckIssue, ValidationFailed, check_non_empty, check_timings, check_unique_ids, with_post_check,
)
from chunkscribe.use_cases.prompts import refinement_prompt

logger = logging.getLogger(__name__)


@dataclass
class RefinementOutcome:
    """generated is False when the raw transcript was kept."""
    segments: list[SubtitleSegment] = field(default_factory=list)
    generated: bool = False


def validate_refinement(response: RefinementResponse) -> list[CheckIssue]:
    if not response.segments:
        return [CheckIssue("empty_output", "no segments returned")]
    return (
        check_timings(response.segments)
        + check_non_empty(response.segments, "text")
        + check_unique_ids(item.id for item in response.segments)
    )


def _usable(item: RefinedItem) -> bool:
    return 0 <= item.start < item.end and bool(item.text.strip())


def match_speaker(label: Optional[str], profiles: Sequence[SpeakerProfile]) -> Optional[str]:
    """Map a model speaker label onto a known profile id when possible."""
    if not label:
        return None
    wanted = label.strip().lower()
    for profile in profiles:
        if profile.id.lower() == wanted or (profile.characteristics.name or "").lower() == wanted:
            return profile.id
    return label.strip()


class Refiner:
    def __init__(
        self,
        ctx: PipelineContext,
        generator: GenerationPort,
        model: str,
        genre: str = "general",
        max_retries: int = 1,
        timeout: Optional[float] = None,
    ):
        self._ctx = ctx
        self._generator = generator
        self._model = model
        self._genre = genre
        self._max_retries = max_retries
        self._timeout = timeout

    async def refine(
        self,
        chunk: ChunkSpec,
        clip: AudioBuffer,
        raw: list[SubtitleSegment],
        glossary: Sequence[GlossaryTerm],
        profiles: Sequence[SpeakerProfile],
    ) -> RefinementOutcome:
        """Refine raw chunk-relative segments. Falls back to raw on any failure."""
        label = f"[Chunk {chunk.index}]"
        fallback = RefinementOutcome([replace(seg) for seg in raw], generated=False)

        system, user = refinement_prompt(raw, chunk.duration, glossary, profiles, self._genre)
        request = GenerationRequest(
            step="refinement",
            model=self._model,
            system_prompt=system,
            prompt=user,
            schema=RefinementResponse,
            audio=clip.to_wav_bytes(),
            chunk_index=chunk.index,
            timeout=self._timeout,
        )

        async def generate() -> RefinementResponse:
            return (await self._ctx.generate(self._generator, request)).data

        try:
            outcome = await with_post_check(
                generate, validate_refinement, self._max_retries, f"Chunk {chunk.index} refinement", self._ctx.cancel,
            )
        except PipelineCancelled:
            raise
        except Exception as e:
            logger.warning(f"{label} Refinement failed, keeping raw transcript: {e}")
            return fallback

        items = outcome.value.segments
        if isinstance(outcome, ValidationFailed):
            items = [item for item in items if _usable(item)]
            logger.warning(f"{label} Using {len(items)}/{len(outcome.value.segments)} valid refined segments")
        if not items:
            logger.warning(f"{label} Refinement produced no usable segments, keeping raw transcript")
            return fallback

        segments = [
            SubtitleSegment(
                id=f"{chunk.index}-{n}",
                start=item.start,
                end=item.end,
                original=item.text.strip(),
                speaker=match_speaker(item.speaker, profiles),
            )
            for n, item in enumerate(sorted(items, key=lambda i: i.start), 1)
        ]
        logger.info(f"{label} Refined {len(raw)} raw segments into {len(segments)}")
        return RefinementOutcome(segments, generated=True)
