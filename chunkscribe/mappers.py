"""Domain <-> DTO mappers.

Converts pipeline results into the pydantic API response and renders
segments as SRT.
"""

from typing import List

from chunkscribe.domain.models import ChunkStatus, GlossaryTerm, SpeakerProfile, SubtitleSegment
from chunkscribe.models import (
    ChunkStatusDTO, GlossaryTermDTO, SpeakerProfileDTO, SubtitleResponse, SubtitleSegmentDTO,
)


def segment_to_dto(seg: SubtitleSegment) -> SubtitleSegmentDTO:
    """Convert a domain SubtitleSegment to its API DTO."""
    return SubtitleSegmentDTO(
        id=seg.id,
        start=round(seg.start, 3),
        end=round(seg.end, 3),
        text=seg.original,
        translated=seg.translated,
        speaker=seg.speaker,
    )


def segments_to_dtos(segments: List[SubtitleSegment]) -> List[SubtitleSegmentDTO]:
    """Convert a list of domain segments to DTOs, preserving order."""
    return [segment_to_dto(seg) for seg in segments]


def dto_to_term(dto: GlossaryTermDTO) -> GlossaryTerm:
    return GlossaryTerm(term=dto.term, translation=dto.translation, notes=dto.notes)


def term_to_dto(term: GlossaryTerm) -> GlossaryTermDTO:
    return GlossaryTermDTO(term=term.term, translation=term.translation, notes=term.notes)


def status_to_dto(status: ChunkStatus) -> ChunkStatusDTO:
    return ChunkStatusDTO(
        id=status.id,
        total=status.total,
        status=status.status.value,
        stage=status.stage.value if status.stage else None,
        message=status.message,
    )


def profile_to_dto(profile: SpeakerProfile) -> SpeakerProfileDTO:
    return SpeakerProfileDTO(
        id=profile.id,
        gender=profile.characteristics.gender,
        name=profile.characteristics.name,
        sample_quotes=list(profile.sample_quotes),
        confidence=profile.confidence,
    )


def run_result_to_response(result) -> SubtitleResponse:
    """Build the API response from a SubtitleRunResult."""
    return SubtitleResponse(
        subtitles=segments_to_dtos(result.subtitles),
        glossary=[term_to_dto(t) for t in result.glossary],
        speakers=[profile_to_dto(p) for p in result.speaker_profiles],
        statuses=[status_to_dto(s) for s in result.statuses],
        usage=result.usage,
        translation_fallbacks=result.translation_fallbacks,
        cancelled=result.cancelled,
        duration=result.duration,
    )


def format_srt_time(seconds: float) -> str:
    """Format seconds as HH:MM:SS,mmm."""
    millis = max(0, int(round(seconds * 1000)))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def segments_to_srt(segments: List[SubtitleSegment], bilingual: bool = False) -> str:
    """Render segments as SRT. bilingual puts the translation under the original."""
    blocks = []
    for n, seg in enumerate(segments, 1):
        lines = [seg.original]
        if bilingual and seg.translated and seg.translated != seg.original:
            lines.append(seg.translated)
        text = "\n".join(lines)
        if seg.speaker:
            text = f"[{seg.speaker}] {text}"
        blocks.append(f"{n}\n{format_srt_time(seg.start)} --> {format_srt_time(seg.end)}\n{text}\n")
    return "\n".join(blocks)
