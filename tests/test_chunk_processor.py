"""Tests for the per-chunk state machine."""

from __future__ import annotations

import asyncio

from chunkscribe.domain.errors import FatalError
from chunkscribe.domain.models import ChunkSpec, GlossaryTerm, Status
from chunkscribe.models import RefinedItem, RefinementResponse
from chunkscribe.use_cases.chunk_processor import (
    CANCELLED, COMPLETED, COMPLETED_NO_CONTENT, FAILED, ChunkProcessor,
)
from chunkscribe.use_cases.refinement import Refiner
from chunkscribe.use_cases.shared_future import SharedFuture
from chunkscribe.use_cases.translation import Translator

from fakes import FakeAudio, FakeGenerator, FakeProgress, FakeTranscriber, default_response, make_context, transient

CHUNK_2 = ChunkSpec(2, 300.0, 600.0)


def process(
    chunk: ChunkSpec = CHUNK_2,
    transcriber: FakeTranscriber = None,
    generator: FakeGenerator = None,
    glossary_producer=None,
    cancel_after: float = None,
    progress: FakeProgress = None,
    translate: bool = True,
):
    transcriber = transcriber or FakeTranscriber()
    generator = generator or FakeGenerator()
    audio = FakeAudio(chunk_count=3).load("in.wav")

    async def scenario():
        ctx = make_context(progress)
        if glossary_producer is None:
            glossary = SharedFuture.resolved((GlossaryTerm("Term", "术语"),), name="glossary")
        else:
            glossary = SharedFuture(glossary_producer, default=(), name="glossary")
            glossary.start()
        processor = ChunkProcessor(
            ctx=ctx,
            audio=audio,
            transcriber=transcriber,
            refiner=Refiner(ctx, generator, "gpt-4o-audio-preview"),
            translator=Translator(ctx, generator, "gpt-4o-mini", "zh-CN") if translate else None,
            glossary=glossary,
            total=3,
        )
        if cancel_after is not None:
            asyncio.get_running_loop().call_later(cancel_after, ctx.cancel.cancel, "user")
        result = await asyncio.wait_for(processor.process(chunk), timeout=5)
        await glossary.settle()
        return result

    return asyncio.run(scenario())


class TestChunkProcessor:
    def test_full_pipeline_produces_global_translated_captions(self) -> None:
        result = process()
        assert result.status == COMPLETED
        assert [s.start for s in result.raw] == [300.0, 320.0, 340.0]
        assert [s.start for s in result.refined] == [300.5, 320.5, 340.5]
        assert [s.translated for s in result.translated] == ["T:2-1", "T:2-2", "T:2-3"]
        assert result.final == result.translated
        assert result.final[0].start == 300.5

    def test_transcribes_the_right_slice(self) -> None:
        transcriber = FakeTranscriber()
        process(ChunkSpec(3, 600.0, 900.0), transcriber=transcriber)
        assert transcriber.calls == [3]

    def test_absolute_refinement_output_is_not_shifted_again(self) -> None:
        def absolute(request, attempt):
            if request.step == "refinement":
                return RefinementResponse(segments=[RefinedItem(start=301.0, end=305.0, text="absolute")])
            return default_response(request, attempt)

        result = process(generator=FakeGenerator(absolute))
        assert result.refined[0].start == 301.0
        assert result.final[0].start == 301.0

    def test_failed_refinement_keeps_raw_transcript(self) -> None:
        def no_refinement(request, attempt):
            if request.step == "refinement":
                return FatalError("permission_denied")
            return default_response(request, attempt)

        result = process(generator=FakeGenerator(no_refinement))
        assert result.status == COMPLETED
        assert [s.original for s in result.refined] == ["chunk 2 raw 0", "chunk 2 raw 1", "chunk 2 raw 2"]
        assert [s.start for s in result.refined] == [300.0, 320.0, 340.0]
        assert result.final[0].translated == "T:2-1"

    def test_without_translator_final_is_refined(self) -> None:
        result = process(translate=False)
        assert result.translated == []
        assert result.final == result.refined

    def test_no_speech_completes_without_inference(self) -> None:
        generator = FakeGenerator()
        result = process(transcriber=FakeTranscriber(empty=(2,)), generator=generator)
        assert result.status == COMPLETED_NO_CONTENT
        assert result.final == []
        assert generator.calls == []

    def test_transcription_retries_transient_errors(self) -> None:
        transcriber = FakeTranscriber(fail={2: transient()})
        result = process(transcriber=transcriber)
        assert transcriber.calls == [2, 2, 2]
        assert result.status == FAILED

    def test_fatal_transcription_error_is_contained(self) -> None:
        progress = FakeProgress()
        transcriber = FakeTranscriber(fail={2: FatalError("invalid_api_key")})
        result = process(transcriber=transcriber, progress=progress)
        assert result.status == FAILED
        assert "API key" in result.error
        assert result.final == []
        assert progress.for_id(2)[-1].status == Status.ERROR
        assert transcriber.calls == [2]

    def test_cancel_while_waiting_for_glossary_keeps_raw(self) -> None:
        async def slow_glossary():
            await asyncio.sleep(0.3)
            return ()

        progress = FakeProgress()
        generator = FakeGenerator()
        result = process(glossary_producer=slow_glossary, cancel_after=0.05, progress=progress, generator=generator)
        assert result.status == CANCELLED
        assert len(result.final) == 3
        assert result.final == result.raw
        assert generator.calls == []
        assert progress.for_id(2)[-1].status == Status.CANCELLED
