"""SegmentProviderPort — abstract interface for splitting a recording into chunks."""

from abc import ABC, abstractmethod
from typing import Optional

from chunkscribe.domain.audio import AudioBuffer
from chunkscribe.domain.models import SegmentationResult
from chunkscribe.use_cases.concurrency import CancelToken


class SegmentProviderPort(ABC):
    @abstractmethod
    async def segment(
        self,
        audio: AudioBuffer,
        target_chunk_duration: float,
        cancel: Optional[CancelToken] = None,
    ) -> SegmentationResult:
        """Return ordered chunk specs (1-based) plus optional voice-activity windows."""
