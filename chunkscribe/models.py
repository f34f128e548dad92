import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

_TIMESTAMP_RE = re.compile(r"^(?:(\d+):)?(\d+):(\d+(?:[.,]\d+)?)$")


def parse_timestamp(value: Union[str, int, float]) -> float:
    """Accept seconds or HH:MM:SS,mmm / MM:SS.mmm strings."""
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        return float(text.replace(",", "."))
    except ValueError:
        pass
    match = _TIMESTAMP_RE.match(text)
    if not match:
        raise ValueError(f"Unrecognized timestamp: {value!r}")
    hours, minutes, seconds = match.groups()
    return int(hours or 0) * 3600 + int(minutes) * 60 + float(seconds.replace(",", "."))


# --- Structured output schemas (one per generative step) ---

class RefinedItem(BaseModel):
    """A refined caption line as returned by the model."""
    id: Optional[str] = None
    start: float
    end: float
    text: str
    speaker: Optional[str] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_time(cls, v):
        return parse_timestamp(v)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return None if v is None else str(v)


class RefinementResponse(BaseModel):
    segments: List[RefinedItem] = []


class TranslatedItem(BaseModel):
    id: str
    text_translated: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return str(v)


class TranslationResponse(BaseModel):
    items: List[TranslatedItem] = []


class GlossaryTermSchema(BaseModel):
    term: str
    translation: str
    notes: Optional[str] = None


class GlossaryResponse(BaseModel):
    terms: List[GlossaryTermSchema] = []


class SpeakerCharacteristicsSchema(BaseModel):
    gender: str = "unknown"
    name: Optional[str] = None
    pitch: Optional[str] = None
    speed: Optional[str] = None
    accent: Optional[str] = None
    tone: Optional[str] = None


class SpeakerProfileSchema(BaseModel):
    id: str
    characteristics: SpeakerCharacteristicsSchema = SpeakerCharacteristicsSchema()
    sample_quotes: List[str] = Field(default_factory=list, alias="sampleQuotes")
    confidence: float = 0.0

    model_config = {"populate_by_name": True}


class SpeakerProfilesResponse(BaseModel):
    speakers: List[SpeakerProfileSchema] = []


# --- API DTOs ---

class SubtitleSegmentDTO(BaseModel):
    """One caption line in the API response."""
    id: str
    start: float
    end: float
    text: str
    translated: str = ""
    speaker: Optional[str] = None


class GlossaryTermDTO(BaseModel):
    term: str
    translation: str
    notes: Optional[str] = None


class ChunkStatusDTO(BaseModel):
    """Last known status for a chunk or background task."""
    id: Union[int, str]
    total: int
    status: str
    stage: Optional[str] = None
    message: Optional[str] = None


class SpeakerProfileDTO(BaseModel):
    id: str
    gender: str = "unknown"
    name: Optional[str] = None
    sample_quotes: List[str] = []
    confidence: float = 0.0


class SubtitleResponse(BaseModel):
    """Response format for subtitle generation"""
    subtitles: List[SubtitleSegmentDTO]
    glossary: List[GlossaryTermDTO] = []
    speakers: List[SpeakerProfileDTO] = []
    statuses: List[ChunkStatusDTO] = []
    usage: Dict[str, Any] = {}
    translation_fallbacks: int = 0
    cancelled: bool = False
    duration: Optional[float] = None
