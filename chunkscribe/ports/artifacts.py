"""ArtifactSinkPort — abstract interface for optional debug dumps."""

from abc import ABC, abstractmethod


class ArtifactSinkPort(ABC):
    @abstractmethod
    def save(self, name: str, content: str) -> None:
        """Persist an intermediate JSON or SRT dump under the given name."""
