"""Run-scoped state shared by every stage of one pipeline run."""

import json
import logging
from dataclasses import asdict, dataclass, field, is_dataclass
from typing import Any, Dict, Optional, Union

from chunkscribe.domain.errors import MalformedOutputError
from chunkscribe.domain.models import ChunkStatus, Stage, Status
from chunkscribe.ports.artifacts import ArtifactSinkPort
from chunkscribe.ports.generation import GenerationPort, GenerationRequest, GenerationResult
from chunkscribe.ports.progress import ProgressPort
from chunkscribe.use_cases.concurrency import CancelToken, Semaphore, wait_cancellable
from chunkscribe.use_cases.retry import RetryPolicy, call_with_retry
from chunkscribe.use_cases.usage_report import UsageReporter

logger = logging.getLogger(__name__)


class ProgressRecorder:
    """Forwards updates to the sink and keeps the latest status per id."""

    def __init__(self, sink: Optional[ProgressPort] = None):
        self._sink = sink
        self._latest: Dict[Union[int, str], ChunkStatus] = {}

    def report(
        self,
        id: Union[int, str],
        total: int,
        status: Status,
        stage: Optional[Stage] = None,
        message: Optional[str] = None,
    ) -> None:
        update = ChunkStatus(id=id, total=total, status=status, stage=stage, message=message)
        self._latest[id] = update
        if self._sink is None:
            return
        try:
            self._sink.report(update)
        except Exception as e:
            logger.warning(f"Progress sink failed for {id}: {e}")

    def statuses(self) -> list[ChunkStatus]:
        """Latest status per id: chunks in index order, then named tasks."""
        chunks = sorted((k for k in self._latest if isinstance(k, int)))
        tasks = [k for k in self._latest if not isinstance(k, int)]
        return [self._latest[k] for k in chunks + tasks]

    def latest(self, id: Union[int, str]) -> Optional[ChunkStatus]:
        return self._latest.get(id)


@dataclass
class PipelineLimits:
    pipeline: int = 5
    transcription: int = 5
    glossary: int = 2
    admission: int = 20


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


@dataclass
class PipelineContext:
    """Passed by reference to every stage. Holds no per-chunk state."""
    cancel: CancelToken
    progress: ProgressRecorder
    usage: UsageReporter
    limits: PipelineLimits = field(default_factory=PipelineLimits)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    artifacts: Optional[ArtifactSinkPort] = None
    transcription_semaphore: Optional[Semaphore] = None
    pipeline_semaphore: Optional[Semaphore] = None

    def __post_init__(self):
        if self.transcription_semaphore is None:
            self.transcription_semaphore = Semaphore(self.limits.transcription, "transcription")
        if self.pipeline_semaphore is None:
            self.pipeline_semaphore = Semaphore(self.limits.pipeline, "pipeline")

    async def generate(self, generator: GenerationPort, request: GenerationRequest) -> GenerationResult:
        """One structured call with transient-error retry and usage accounting."""

        async def attempt() -> GenerationResult:
            try:
                result = await wait_cancellable(generator.generate(request, self.cancel), self.cancel)
            except MalformedOutputError as e:
                # Rejected responses are still billed.
                if e.usage is not None:
                    self.usage.record(e.usage)
                raise
            if result.usage is not None:
                self.usage.record(result.usage)
            return result

        label = request.step if request.chunk_index is None else f"[Chunk {request.chunk_index}] {request.step}"
        return await call_with_retry(attempt, self.retry, self.cancel, label=label)

    def save_artifact(self, name: str, content: Any) -> None:
        """Best-effort debug dump. Never raises."""
        if self.artifacts is None:
            return
        try:
            if not isinstance(content, str):
                content = json.dumps(_to_jsonable(content), ensure_ascii=False, indent=2, default=str)
            self.artifacts.save(name, content)
        except Exception as e:
            logger.warning(f"Failed to save artifact {name}: {e}")
