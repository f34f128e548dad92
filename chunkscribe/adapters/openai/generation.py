"""OpenAIGenerationAdapter — structured JSON output from an OpenAI-compatible chat API.

Audio-capable steps send the chunk as an input_audio part. The reply is
parsed as JSON and validated against the request's pydantic schema; any
mismatch is raised as MalformedOutputError so the caller retries.
"""

import base64
import json
import logging
from typing import Any, Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from chunkscribe.adapters.openai.errors import classify_openai_error
from chunkscribe.domain.errors import MalformedOutputError
from chunkscribe.domain.models import TokenUsage
from chunkscribe.ports.generation import GenerationPort, GenerationRequest, GenerationResult
from chunkscribe.use_cases.concurrency import CancelToken

logger = logging.getLogger(__name__)


def parse_json_payload(text: str) -> Any:
    """Parse a JSON reply, tolerating code fences and surrounding prose."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
        cleaned = cleaned.strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = cleaned.find(opener), cleaned.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                continue
    raise MalformedOutputError(f"Response is not valid JSON: {cleaned[:120]!r}")


class OpenAIGenerationAdapter(GenerationPort):
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 600.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        # Retries are handled by the pipeline so they stay cancellable.
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    async def generate(self, request: GenerationRequest, cancel: Optional[CancelToken] = None) -> GenerationResult:
        if cancel is not None:
            cancel.raise_if_cancelled()

        content: list[dict] = [{"type": "text", "text": request.prompt}]
        if request.audio:
            content.append({
                "type": "input_audio",
                "input_audio": {"data": base64.b64encode(request.audio).decode("ascii"), "format": "wav"},
            })
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": content},
            ],
        }
        if not request.audio:
            kwargs["response_format"] = {"type": "json_object"}
        if request.timeout:
            kwargs["timeout"] = request.timeout

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise classify_openai_error(e) from e

        usage = self._usage(request.model, response)
        text = response.choices[0].message.content if response.choices else None
        try:
            payload = parse_json_payload(text or "")
        except MalformedOutputError as e:
            e.usage = usage
            raise
        if isinstance(payload, list):
            # Bare arrays are accepted for single-list schemas.
            payload = {next(iter(request.schema.model_fields)): payload}
        try:
            data = request.schema.model_validate(payload)
        except ValidationError as e:
            raise MalformedOutputError(
                f"{request.step}: response does not match {request.schema.__name__} ({e.error_count()} error(s))",
                usage=usage,
            ) from e

        return GenerationResult(data=data, usage=usage, raw_text=text or "")

    @staticmethod
    def _usage(model: str, response: Any) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if usage is None:
            return TokenUsage(model=model)
        prompt_details = getattr(usage, "prompt_tokens_details", None)
        completion_details = getattr(usage, "completion_tokens_details", None)
        audio_tokens = getattr(prompt_details, "audio_tokens", 0) or 0
        prompt_tokens = usage.prompt_tokens or 0
        return TokenUsage(
            model=model,
            prompt_tokens=prompt_tokens,
            output_tokens=usage.completion_tokens or 0,
            total_tokens=usage.total_tokens or 0,
            text_input_tokens=max(0, prompt_tokens - audio_tokens),
            audio_input_tokens=audio_tokens,
            cached_tokens=getattr(prompt_details, "cached_tokens", 0) or 0,
            thoughts_tokens=getattr(completion_details, "reasoning_tokens", 0) or 0,
        )
