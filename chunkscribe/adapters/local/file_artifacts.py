"""FileArtifactSink — writes debug dumps into a per-run directory."""

import logging
import os
import time
from pathlib import Path
from typing import Optional

from chunkscribe.ports.artifacts import ArtifactSinkPort

logger = logging.getLogger(__name__)


class FileArtifactSink(ArtifactSinkPort):
    def __init__(self, base_dir: str, run_name: Optional[str] = None):
        self._dir = Path(base_dir) / (run_name or time.strftime("run-%Y%m%d-%H%M%S"))

    @property
    def directory(self) -> Path:
        return self._dir

    def save(self, name: str, content: str) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / os.path.basename(name)
        path.write_text(content, encoding="utf-8")
        logger.debug(f"Saved artifact {path}")
