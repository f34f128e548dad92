"""Framework-agnostic domain models for chunkscribe.

Pipeline stages pass these dataclasses around. Pydantic DTOs and structured
output schemas live in models.py, with mappers at the boundary.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class Status(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class Stage(str, Enum):
    TRANSCRIBING = "transcribing"
    CLEANING = "cleaning"
    WAITING_GLOSSARY = "waiting_glossary"
    WAITING_SPEAKERS = "waiting_speakers"
    WAITING_REFINEMENT = "waiting_refinement"
    REFINING = "refining"
    TRANSLATING = "translating"
    RECONCILING = "reconciling"
    EXTRACTING_GLOSSARY = "extracting_glossary"
    CONFIRMING_GLOSSARY = "confirming_glossary"
    PROFILING_SPEAKERS = "profiling_speakers"


class Confidence(str, Enum):
    HIGH = "high"
    LOW = "low"


@dataclass(frozen=True)
class ChunkSpec:
    """A time window of the recording. index is 1-based."""
    index: int
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class SpeechWindow:
    """A voice-activity window reported by the segment provider."""
    start: float
    end: float
    energy: float = 0.0

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class SegmentationResult:
    chunks: list[ChunkSpec] = field(default_factory=list)
    windows: list[SpeechWindow] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class TranscriptSegment:
    """A single transcribed speech segment, relative to the slice it came from."""
    start: float
    end: float
    text: str
    speaker: Optional[str] = None
    confidence: Optional[float] = None


@dataclass
class SubtitleSegment:
    """One caption line. Timings are chunk-relative until reconciliation."""
    id: str
    start: float
    end: float
    original: str
    translated: str = ""
    speaker: Optional[str] = None


@dataclass(frozen=True)
class GlossaryTerm:
    term: str
    translation: str
    notes: Optional[str] = None


@dataclass
class GlossaryExtractionResult:
    """One chunk's extraction outcome. LOW with no terms marks an exhausted failure."""
    chunk_index: int
    terms: list[GlossaryTerm] = field(default_factory=list)
    confidence: Confidence = Confidence.HIGH
    error: Optional[str] = None

    @classmethod
    def failed(cls, chunk_index: int, error: Optional[str] = None) -> "GlossaryExtractionResult":
        return cls(chunk_index=chunk_index, terms=[], confidence=Confidence.LOW, error=error)

    @property
    def is_failure(self) -> bool:
        return self.confidence == Confidence.LOW and not self.terms


@dataclass(frozen=True)
class SpeakerCharacteristics:
    gender: str = "unknown"
    name: Optional[str] = None
    pitch: Optional[str] = None
    speed: Optional[str] = None
    accent: Optional[str] = None
    tone: Optional[str] = None


@dataclass(frozen=True)
class SpeakerProfile:
    """A distinguishable voice, published once per run."""
    id: str
    characteristics: SpeakerCharacteristics = SpeakerCharacteristics()
    sample_quotes: tuple[str, ...] = ()
    confidence: float = 0.0


@dataclass
class ChunkResult:
    """Layered output of one chunk. final is the best layer available."""
    chunk: ChunkSpec
    raw: list[SubtitleSegment] = field(default_factory=list)
    refined: list[SubtitleSegment] = field(default_factory=list)
    translated: list[SubtitleSegment] = field(default_factory=list)
    final: list[SubtitleSegment] = field(default_factory=list)
    status: str = "pending"
    error: Optional[str] = None
    translation_fallbacks: int = 0


@dataclass
class ChunkStatus:
    """A progress update. id is a chunk index or a task name such as "glossary"."""
    id: Union[int, str]
    total: int
    status: Status
    stage: Optional[Stage] = None
    message: Optional[str] = None


@dataclass
class TokenUsage:
    """Resource counters for one inference call."""
    model: str
    prompt_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    text_input_tokens: int = 0
    audio_input_tokens: int = 0
    cached_tokens: int = 0
    thoughts_tokens: int = 0
