"""Tests for the OpenAI generation and transcription adapters with a mocked client."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import numpy as np
import openai
import pytest

from chunkscribe.adapters.openai.errors import classify_openai_error
from chunkscribe.adapters.openai.generation import OpenAIGenerationAdapter, parse_json_payload
from chunkscribe.adapters.openai.transcription import OpenAITranscriptionAdapter
from chunkscribe.adapters.sherpa.transcription import group_tokens
from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.errors import FatalError, MalformedOutputError, RetryableError
from chunkscribe.models import GlossaryResponse, TranslationResponse
from chunkscribe.ports.generation import GenerationRequest
from chunkscribe.ports.transcription import TranscriptionOptions

from fakes import make_context

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def status_error(cls, status: int, message: str = "error", body=None):
    return cls(message, response=httpx.Response(status, request=REQUEST), body=body)


def completion(text: str, audio_tokens: int = 0):
    usage = SimpleNamespace(
        prompt_tokens=100,
        completion_tokens=20,
        total_tokens=120,
        prompt_tokens_details=SimpleNamespace(audio_tokens=audio_tokens, cached_tokens=10),
        completion_tokens_details=SimpleNamespace(reasoning_tokens=5),
    )
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))], usage=usage)


def mock_client(response=None, error=None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response, side_effect=error)
    client.audio.transcriptions.create = AsyncMock(return_value=response, side_effect=error)
    return client


def glossary_request(audio: bytes = None) -> GenerationRequest:
    return GenerationRequest(
        step="glossary",
        model="gpt-4o-audio-preview",
        system_prompt="system",
        prompt="user",
        schema=GlossaryResponse,
        audio=audio,
        chunk_index=1,
    )


# ---------------------------------------------------------------------------
# JSON parsing
# ---------------------------------------------------------------------------


class TestParseJsonPayload:
    def test_plain_json(self) -> None:
        assert parse_json_payload('{"terms": []}') == {"terms": []}

    def test_code_fence(self) -> None:
        assert parse_json_payload('```json\n{"terms": []}\n```') == {"terms": []}

    def test_surrounding_prose(self) -> None:
        assert parse_json_payload('Here you go: {"a": 1} hope it helps') == {"a": 1}

    def test_invalid_json_is_retryable(self) -> None:
        with pytest.raises(MalformedOutputError):
            parse_json_payload("not json at all")


# ---------------------------------------------------------------------------
# Generation adapter
# ---------------------------------------------------------------------------


class TestOpenAIGenerationAdapter:
    def test_validates_against_schema_and_reports_usage(self) -> None:
        client = mock_client(completion('{"terms": [{"term": "Pod", "translation": "容器组"}]}', audio_tokens=60))
        adapter = OpenAIGenerationAdapter(client=client)
        result = asyncio.run(adapter.generate(glossary_request(audio=b"RIFF")))

        assert result.data.terms[0].term == "Pod"
        assert result.usage.audio_input_tokens == 60
        assert result.usage.text_input_tokens == 40
        assert result.usage.cached_tokens == 10
        assert result.usage.thoughts_tokens == 5

        kwargs = client.chat.completions.create.call_args.kwargs
        parts = kwargs["messages"][1]["content"]
        assert parts[1]["type"] == "input_audio"
        assert "response_format" not in kwargs

    def test_text_only_requests_use_json_mode(self) -> None:
        client = mock_client(completion('{"items": []}'))
        request = GenerationRequest(
            step="translation", model="gpt-4o-mini", system_prompt="s", prompt="p", schema=TranslationResponse,
        )
        asyncio.run(OpenAIGenerationAdapter(client=client).generate(request))
        assert client.chat.completions.create.call_args.kwargs["response_format"] == {"type": "json_object"}

    def test_bare_list_is_wrapped(self) -> None:
        client = mock_client(completion('[{"term": "Pod", "translation": "容器组"}]'))
        result = asyncio.run(OpenAIGenerationAdapter(client=client).generate(glossary_request()))
        assert len(result.data.terms) == 1

    def test_schema_mismatch_is_malformed_output(self) -> None:
        client = mock_client(completion('{"terms": [{"term": "Pod"}]}'))
        with pytest.raises(MalformedOutputError):
            asyncio.run(OpenAIGenerationAdapter(client=client).generate(glossary_request()))

    def test_malformed_output_carries_usage(self) -> None:
        client = mock_client(completion("not json at all", audio_tokens=60))
        with pytest.raises(MalformedOutputError) as exc_info:
            asyncio.run(OpenAIGenerationAdapter(client=client).generate(glossary_request()))
        assert exc_info.value.usage.total_tokens == 120
        assert exc_info.value.usage.audio_input_tokens == 60

    def test_rejected_responses_are_billed(self) -> None:
        client = mock_client(completion("not json at all"))
        adapter = OpenAIGenerationAdapter(client=client)

        async def scenario():
            ctx = make_context()
            with pytest.raises(MalformedOutputError):
                await ctx.generate(adapter, glossary_request())
            return ctx.usage.as_dict()

        report = asyncio.run(scenario())
        assert client.chat.completions.create.await_count == 3
        assert report["total_requests"] == 3
        assert report["models"]["gpt-4o-audio-preview"]["requests"] == 3

    def test_sdk_errors_are_classified(self) -> None:
        client = mock_client(error=status_error(openai.AuthenticationError, 401))
        with pytest.raises(FatalError) as exc_info:
            asyncio.run(OpenAIGenerationAdapter(client=client).generate(glossary_request()))
        assert exc_info.value.code == "invalid_api_key"


class TestClassifyOpenAIError:
    def test_rate_limit_is_retryable(self) -> None:
        assert isinstance(classify_openai_error(status_error(openai.RateLimitError, 429)), RetryableError)

    def test_insufficient_quota_is_fatal(self) -> None:
        error = status_error(openai.RateLimitError, 429, body={"code": "insufficient_quota"})
        classified = classify_openai_error(error)
        assert isinstance(classified, FatalError)
        assert classified.code == "quota_exceeded"

    def test_region_block(self) -> None:
        error = status_error(openai.PermissionDeniedError, 403, "Country, region, or territory not supported")
        assert classify_openai_error(error).code == "unsupported_region"

    def test_server_errors_are_retryable(self) -> None:
        assert isinstance(classify_openai_error(status_error(openai.InternalServerError, 503)), RetryableError)

    def test_connection_errors_are_retryable(self) -> None:
        assert isinstance(classify_openai_error(openai.APITimeoutError(request=REQUEST)), RetryableError)
        assert isinstance(classify_openai_error(openai.APIConnectionError(request=REQUEST)), RetryableError)

    def test_bad_request_is_fatal(self) -> None:
        assert isinstance(classify_openai_error(status_error(openai.BadRequestError, 400)), FatalError)


# ---------------------------------------------------------------------------
# Transcription adapters
# ---------------------------------------------------------------------------


class TestOpenAITranscriptionAdapter:
    def test_maps_verbose_segments(self) -> None:
        response = SimpleNamespace(segments=[
            {"start": 0.0, "end": 2.5, "text": " Hello "},
            {"start": 2.5, "end": 3.0, "text": "  "},
            {"start": 3.0, "end": 5.0, "text": "world"},
        ])
        client = mock_client(response)
        adapter = OpenAITranscriptionAdapter(client=client)
        audio = AudioBuffer(np.zeros(16000, dtype=np.float32))
        segments = asyncio.run(adapter.transcribe(audio, TranscriptionOptions(language="en")))

        assert [(s.start, s.end, s.text) for s in segments] == [(0.0, 2.5, "Hello"), (3.0, 5.0, "world")]
        kwargs = client.audio.transcriptions.create.call_args.kwargs
        assert kwargs["language"] == "en"
        assert kwargs["response_format"] == "verbose_json"
        assert not adapter.is_local()

    def test_empty_audio_skips_the_call(self) -> None:
        client = mock_client(SimpleNamespace(segments=[]))
        adapter = OpenAITranscriptionAdapter(client=client)
        audio = AudioBuffer(np.zeros(0, dtype=np.float32))
        assert asyncio.run(adapter.transcribe(audio, TranscriptionOptions())) == []
        client.audio.transcriptions.create.assert_not_called()


class TestGroupTokens:
    def test_splits_on_silence_gaps(self) -> None:
        tokens = [" Hello", " there", " General", " Kenobi"]
        timestamps = [0.0, 0.3, 2.0, 2.4]
        segments = group_tokens(tokens, timestamps, duration=3.0)
        assert [s.text for s in segments] == ["Hello there", "General Kenobi"]
        assert segments[0].start == 0.0
        assert segments[1].end == pytest.approx(2.5)

    def test_caps_segment_length(self) -> None:
        tokens = [" a"] * 20
        timestamps = [i * 0.45 for i in range(20)]
        segments = group_tokens(tokens, timestamps, duration=10.0)
        assert len(segments) == 2
        assert all(s.end - s.start <= 7.6 for s in segments)

    def test_no_tokens(self) -> None:
        assert group_tokens([], [], 1.0) == []
