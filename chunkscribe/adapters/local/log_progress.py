"""LogProgressAdapter — reports pipeline progress via logging."""

import logging

from chunkscribe.domain.models import ChunkStatus, Status
from chunkscribe.ports.progress import ProgressPort

logger = logging.getLogger(__name__)


class LogProgressAdapter(ProgressPort):
    def report(self, status: ChunkStatus) -> None:
        label = f"Chunk {status.id}/{status.total}" if isinstance(status.id, int) else status.id
        msg = f"[{label}] {status.status.value}"
        if status.stage:
            msg += f" ({status.stage.value})"
        if status.message:
            msg += f": {status.message}"
        if status.status == Status.ERROR:
            logger.warning(msg)
        else:
            logger.info(msg)
