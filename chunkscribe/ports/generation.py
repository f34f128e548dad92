"""GenerationPort — abstract interface for structured-output generative models."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Type

from pydantic import BaseModel

from chunkscribe.domain.models import TokenUsage
from chunkscribe.use_cases.concurrency import CancelToken


@dataclass
class GenerationRequest:
    """One structured-output call. audio is WAV bytes when the step listens."""
    step: str
    model: str
    system_prompt: str
    prompt: str
    schema: Type[BaseModel]
    audio: Optional[bytes] = None
    chunk_index: Optional[int] = None
    timeout: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationResult:
    data: BaseModel
    usage: Optional[TokenUsage] = None
    raw_text: str = ""


class GenerationPort(ABC):
    @abstractmethod
    async def generate(
        self,
        request: GenerationRequest,
        cancel: Optional[CancelToken] = None,
    ) -> GenerationResult:
        """Run the call and parse it into request.schema.

        Raises RetryableError (including MalformedOutputError) or FatalError.
        """
