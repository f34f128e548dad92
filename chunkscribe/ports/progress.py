"""ProgressPort — abstract interface for reporting pipeline progress."""

from abc import ABC, abstractmethod

from chunkscribe.domain.models import ChunkStatus


class ProgressPort(ABC):
    @abstractmethod
    def report(self, status: ChunkStatus) -> None:
        """Report a status update. Must return quickly and never block the pipeline."""
