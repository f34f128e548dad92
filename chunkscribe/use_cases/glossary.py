"""Glossary extraction and publication.

GlossaryExtractor runs the two-pass per-chunk extraction. GlossaryHandler is
the producer behind the run's glossary SharedFuture: it seeds, extracts,
merges, optionally waits for a human confirmation and then publishes.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Optional

from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.errors import PipelineCancelled, actionable_message
from chunkscribe.domain.models import (
    ChunkSpec, Confidence, GlossaryExtractionResult, GlossaryTerm, Stage, Status,
)
from chunkscribe.models import GlossaryResponse
from chunkscribe.ports.generation import GenerationPort, GenerationRequest
from chunkscribe.post_processing import GlossaryConflict, merge_glossary_terms
from chunkscribe.use_cases.concurrency import map_in_parallel, wait_cancellable
from chunkscribe.use_cases.context import PipelineContext
from chunkscribe.use_cases.prompts import glossary_prompt

logger = logging.getLogger(__name__)

PROGRESS_ID = "glossary"


class GlossaryExtractor:
    def __init__(
        self,
        ctx: PipelineContext,
        generator: GenerationPort,
        audio: AudioBuffer,
        model: str,
        target_language: str,
        genre: str = "general",
        concurrency: int = 2,
        timeout: Optional[float] = None,
    ):
        self._ctx = ctx
        self._generator = generator
        self._audio = audio
        self._model = model
        self._target_language = target_language
        self._genre = genre
        self._concurrency = max(1, concurrency)
        self._timeout = timeout
        self.completed = 0
        self.retried: List[int] = []

    async def extract_chunk(self, chunk: ChunkSpec) -> GlossaryExtractionResult:
        """One chunk, with transient-error retry. Raises once attempts are exhausted."""
        clip = self._audio.slice(chunk.start, chunk.end).to_wav_bytes()
        system, user = glossary_prompt(self._target_language, self._genre)
        request = GenerationRequest(
            step="glossary",
            model=self._model,
            system_prompt=system,
            prompt=user,
            schema=GlossaryResponse,
            audio=clip,
            chunk_index=chunk.index,
            timeout=self._timeout,
        )
        result = await self._ctx.generate(self._generator, request)
        terms = [
            GlossaryTerm(term=t.term.strip(), translation=t.translation.strip(), notes=t.notes)
            for t in result.data.terms
            if t.term.strip() and t.translation.strip()
        ]
        return GlossaryExtractionResult(chunk_index=chunk.index, terms=terms, confidence=Confidence.HIGH)

    def _report(self, total: int) -> None:
        self._ctx.progress.report(
            PROGRESS_ID, total, Status.PROCESSING, Stage.EXTRACTING_GLOSSARY,
            f"{self.completed}/{total}",
        )

    async def extract(self, chunks: List[ChunkSpec]) -> List[GlossaryExtractionResult]:
        """Two-pass extraction over chunks. Results keep the order of chunks.

        Pass 1 runs at the configured concurrency. Every chunk that fails it,
        whatever the cause, is set aside and retried once more in pass 2 at half
        that concurrency. The completed counter only moves once a chunk's
        outcome is final.
        """
        total = len(chunks)
        results: List[GlossaryExtractionResult] = [GlossaryExtractionResult.failed(c.index) for c in chunks]
        failed: List[tuple[int, ChunkSpec]] = []
        self.completed = 0
        self.retried = []
        self._report(total)

        async def first_pass(chunk: ChunkSpec, position: int) -> None:
            try:
                results[position] = await self.extract_chunk(chunk)
            except PipelineCancelled:
                raise
            except Exception as e:
                logger.warning(f"[Glossary] Chunk {chunk.index} failed, queued for retry: {e}")
                results[position] = GlossaryExtractionResult.failed(chunk.index, actionable_message(e))
                failed.append((position, chunk))
                return
            self.completed += 1
            self._report(total)

        await map_in_parallel(chunks, self._concurrency, first_pass, self._ctx.cancel)

        if failed:
            self._ctx.cancel.raise_if_cancelled()
            failed.sort(key=lambda item: item[0])
            self.retried = [chunk.index for _, chunk in failed]
            retry_concurrency = max(1, self._concurrency // 2)
            logger.info(
                f"[Glossary] Retrying {len(failed)} failed chunk(s) {self.retried} "
                f"at concurrency {retry_concurrency}"
            )

            async def second_pass(item: tuple[int, ChunkSpec], _: int) -> None:
                position, chunk = item
                try:
                    results[position] = await self.extract_chunk(chunk)
                    logger.info(f"[Glossary] Chunk {chunk.index} recovered on retry")
                except PipelineCancelled:
                    raise
                except Exception as e:
                    logger.warning(f"[Glossary] Chunk {chunk.index} still failing after retry: {e}")
                    results[position] = GlossaryExtractionResult.failed(chunk.index, actionable_message(e))
                self.completed += 1
                self._report(total)

            await map_in_parallel(failed, retry_concurrency, second_pass, self._ctx.cancel)

        succeeded = sum(1 for r in results if not r.is_failure)
        logger.info(
            f"[Glossary] Extraction finished: {succeeded}/{total} chunks succeeded, "
            f"{sum(len(r.terms) for r in results)} terms, {total - succeeded} failed"
        )
        return results


@dataclass
class GlossaryReview:
    """What a confirmation hook sees before the glossary is published."""
    results: List[GlossaryExtractionResult]
    terms: List[GlossaryTerm]
    total_terms: int
    has_failures: bool
    glossary_chunks: List[ChunkSpec]
    conflicts: List[GlossaryConflict] = field(default_factory=list)


ConfirmGlossary = Callable[[GlossaryReview], Awaitable[Iterable[GlossaryTerm]]]


class GlossaryHandler:
    def __init__(
        self,
        ctx: PipelineContext,
        extractor: Optional[GlossaryExtractor],
        chunks: List[ChunkSpec],
        seed: Iterable[GlossaryTerm] = (),
        confirm: Optional[ConfirmGlossary] = None,
    ):
        self._ctx = ctx
        self._extractor = extractor
        self._chunks = chunks
        self._seed = list(seed)
        self._confirm = confirm
        self.results: List[GlossaryExtractionResult] = []

    async def run(self) -> tuple[GlossaryTerm, ...]:
        """Produce the run glossary. Raises on failure so the future falls back to the seed."""
        if self._extractor is None:
            return tuple(self._seed)

        total = len(self._chunks)
        progress = self._ctx.progress
        try:
            self.results = await self._extractor.extract(self._chunks)
        except PipelineCancelled:
            progress.report(PROGRESS_ID, total, Status.CANCELLED, message="Glossary extraction cancelled")
            raise
        except Exception as e:
            logger.warning(f"[Glossary] Extraction failed, continuing with seeded terms: {e}")
            progress.report(PROGRESS_ID, total, Status.ERROR, message=actionable_message(e))
            raise

        merge = merge_glossary_terms(self.results, self._seed)
        terms = list(merge.unique)
        total_terms = sum(len(r.terms) for r in self.results)
        has_failures = any(r.is_failure for r in self.results)

        if self._confirm is not None and (total_terms > 0 or has_failures):
            progress.report(
                PROGRESS_ID, total, Status.PROCESSING, Stage.CONFIRMING_GLOSSARY,
                "Waiting for glossary confirmation",
            )
            review = GlossaryReview(
                results=self.results,
                terms=terms,
                total_terms=total_terms,
                has_failures=has_failures,
                glossary_chunks=self._chunks,
                conflicts=merge.conflicts,
            )
            try:
                terms = list(await wait_cancellable(self._confirm(review), self._ctx.cancel))
            except PipelineCancelled:
                progress.report(PROGRESS_ID, total, Status.CANCELLED, message="Glossary confirmation cancelled")
                raise
            logger.info(f"[Glossary] Confirmed {len(terms)} terms")

        self._ctx.save_artifact("glossary.json", {"results": self.results, "terms": terms})
        progress.report(PROGRESS_ID, total, Status.COMPLETED, message=f"{len(terms)} terms")
        return tuple(terms)
