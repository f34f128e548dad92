"""UsageSinkPort — abstract interface for per-call resource accounting."""

from abc import ABC, abstractmethod

from chunkscribe.domain.models import TokenUsage


class UsageSinkPort(ABC):
    @abstractmethod
    def record(self, usage: TokenUsage) -> None:
        """Accumulate the counters of one inference call."""
