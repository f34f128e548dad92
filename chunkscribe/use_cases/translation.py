"""Batched translation with per-id fallback to the original text."""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from chunkscribe.domain.errors import PipelineCancelled
from chunkscribe.domain.models import GlossaryTerm, SubtitleSegment
from chunkscribe.models import TranslationResponse
from chunkscribe.ports.generation import GenerationPort, GenerationRequest
from chunkscribe.post_processing import clean_non_speech_annotations
from chunkscribe.use_cases.context import PipelineContext
from chunkscribe.use_cases.post_check import CheckIssue, check_ids_present, check_non_empty, with_post_check
from chunkscribe.use_cases.prompts import translation_prompt

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20


@dataclass
class TranslationOutcome:
    segments: list[SubtitleSegment] = field(default_factory=list)
    fallbacks: int = 0


def validate_translation(expected_ids: Sequence[str]):
    wanted = set(expected_ids)

    def _validate(response: TranslationResponse) -> list[CheckIssue]:
        relevant = [item for item in response.items if item.id in wanted]
        return check_ids_present(expected_ids, (item.id for item in relevant)) + check_non_empty(
            relevant, "text_translated"
        )
    return _validate


class Translator:
    def __init__(
        self,
        ctx: PipelineContext,
        generator: GenerationPort,
        model: str,
        target_language: str,
        genre: str = "general",
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = 1,
        timeout: Optional[float] = None,
    ):
        self._ctx = ctx
        self._generator = generator
        self._model = model
        self._target_language = target_language
        self._genre = genre
        self._batch_size = max(1, batch_size)
        self._max_retries = max_retries
        self._timeout = timeout

    async def translate(
        self,
        segments: Sequence[SubtitleSegment],
        glossary: Sequence[GlossaryTerm],
        chunk_index: Optional[int] = None,
    ) -> TranslationOutcome:
        """Translate every segment. Output has exactly the input ids, in input order."""
        if not segments:
            return TranslationOutcome()
        outcome = TranslationOutcome()
        batches = [segments[i:i + self._batch_size] for i in range(0, len(segments), self._batch_size)]
        for number, batch in enumerate(batches, 1):
            context = batches[number - 2][-1].original if number > 1 else None
            translated, fallbacks = await self._translate_batch(batch, glossary, chunk_index, number, context)
            outcome.segments.extend(translated)
            outcome.fallbacks += fallbacks
        if outcome.fallbacks:
            prefix = f"[Chunk {chunk_index}] " if chunk_index is not None else ""
            logger.warning(f"{prefix}{outcome.fallbacks} segment(s) kept their original text")
        return outcome

    async def _translate_batch(
        self,
        batch: Sequence[SubtitleSegment],
        glossary: Sequence[GlossaryTerm],
        chunk_index: Optional[int],
        number: int,
        context: Optional[str],
    ) -> tuple[list[SubtitleSegment], int]:
        step = f"Chunk {chunk_index} translation batch {number}" if chunk_index is not None else f"translation batch {number}"
        expected = [seg.id for seg in batch]
        system, user = translation_prompt(batch, self._target_language, glossary, self._genre, context)
        request = GenerationRequest(
            step="translation",
            model=self._model,
            system_prompt=system,
            prompt=user,
            schema=TranslationResponse,
            chunk_index=chunk_index,
            timeout=self._timeout,
            metadata={"ids": expected},
        )

        async def generate() -> TranslationResponse:
            return (await self._ctx.generate(self._generator, request)).data

        translations: dict[str, str] = {}
        try:
            outcome = await with_post_check(
                generate, validate_translation(expected), self._max_retries, step, self._ctx.cancel,
            )
            for item in outcome.value.items:
                translations.setdefault(item.id, clean_non_speech_annotations(item.text_translated))
        except PipelineCancelled:
            raise
        except Exception as e:
            logger.warning(f"[{step}] failed, keeping original text for {len(batch)} segment(s): {e}")

        result = []
        fallbacks = 0
        for seg in batch:
            text = translations.get(seg.id, "")
            if not text:
                text = seg.original
                fallbacks += 1
            result.append(replace(seg, translated=text))
        return result, fallbacks
