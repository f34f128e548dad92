"""Pure segment functions used between pipeline stages.

Non-speech cleaning, timestamp shifting and reconciliation, glossary merging
and glossary chunk selection. Nothing here performs I/O.
"""

import math
import re
import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Union

from chunkscribe.domain.models import ChunkSpec, GlossaryExtractionResult, GlossaryTerm, SubtitleSegment

logger = logging.getLogger(__name__)

NON_SPEECH_KEYWORDS = [
    "laughter", "laughs", "laughing", "music", "applause", "clapping", "cough", "coughing",
    "sigh", "sighs", "inaudible", "noise", "silence", "background", "breathing", "crosstalk",
    "sound", "static", "beep", "whistle", "cheering", "crying", "singing", "humming",
    "笑", "拍手", "音楽", "咳", "ため息", "雑音", "无声", "音乐", "掌声", "咳嗽", "叹气", "笑声", "噪音",
]

# [Music], (laughs), *applause*: removed only when the annotation names a non-speech sound.
_ANNOTATION_RE = re.compile(r"\[[^\]]*\]|\([^)]*\)|（[^）]*）|\*[^*]+\*|【[^】]*】")
_KEYWORD_RE = re.compile("|".join(re.escape(k) for k in NON_SPEECH_KEYWORDS), re.IGNORECASE)
_MUSIC_NOTES_RE = re.compile(r"[♪♫♬]+")
_WHITESPACE_RE = re.compile(r"\s{2,}")


def clean_non_speech_annotations(text: str) -> str:
    """Strip bracketed non-speech annotations and music notes from a caption.

    Bracketed text that does not name a non-speech sound (e.g. "[John]") is kept.
    """
    if not text:
        return ""
    cleaned = _ANNOTATION_RE.sub(
        lambda m: "" if _KEYWORD_RE.search(m.group(0)) else m.group(0), text
    )
    cleaned = _MUSIC_NOTES_RE.sub("", cleaned)
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def clean_segments(segments: List[SubtitleSegment]) -> List[SubtitleSegment]:
    """Clean every segment's original text and drop those left empty."""
    cleaned = []
    for seg in segments:
        text = clean_non_speech_annotations(seg.original)
        if text:
            cleaned.append(replace(seg, original=text))
    dropped = len(segments) - len(cleaned)
    if dropped:
        logger.debug(f"Dropped {dropped} non-speech segment(s)")
    return cleaned


def shift_timestamps(segments: List[SubtitleSegment], offset: float) -> List[SubtitleSegment]:
    """Return copies of segments moved by offset seconds."""
    if offset == 0:
        return [replace(seg) for seg in segments]
    return [replace(seg, start=seg.start + offset, end=seg.end + offset) for seg in segments]


def reconcile_timestamps(segments: List[SubtitleSegment], chunk_start: float) -> List[SubtitleSegment]:
    """Convert a generated chunk response to recording-global timestamps.

    The first segment's start is compared against 0 (slice-relative) and
    chunk_start (absolute). If it is closer to 0, every segment is shifted by
    chunk_start. A first chunk (chunk_start == 0) is returned unchanged. Small
    offsets with large model timing error can be misclassified.
    """
    if not segments or chunk_start == 0:
        return [replace(seg) for seg in segments]
    first = segments[0].start
    distance_relative = abs(first - 0.0)
    distance_absolute = abs(first - chunk_start)
    if distance_relative < distance_absolute:
        logger.debug(f"Timestamps look chunk-relative (first={first:.2f}s), shifting by {chunk_start:.2f}s")
        return shift_timestamps(segments, chunk_start)
    return [replace(seg) for seg in segments]


def best_available(*layers: Sequence[SubtitleSegment]) -> List[SubtitleSegment]:
    """First non-empty layer, in priority order."""
    for layer in layers:
        if layer:
            return list(layer)
    return []


def select_chunks_by_duration(
    chunks: List[ChunkSpec],
    sample_minutes: Union[str, int, float, None],
    chunk_duration: float,
) -> List[ChunkSpec]:
    """Chunks covered by a glossary sampling budget: "all" or the first N minutes."""
    if sample_minutes in (None, "all", "") or chunk_duration <= 0:
        return list(chunks)
    minutes = float(sample_minutes)
    if minutes <= 0:
        return list(chunks)
    count = max(1, math.ceil(minutes * 60 / chunk_duration))
    return list(chunks[:count])


@dataclass
class GlossaryConflict:
    term: str
    options: List[GlossaryTerm] = field(default_factory=list)


@dataclass
class GlossaryMerge:
    unique: List[GlossaryTerm] = field(default_factory=list)
    duplicates: int = 0
    conflicts: List[GlossaryConflict] = field(default_factory=list)


def _term_key(term: str) -> str:
    return term.strip().lower()


def merge_glossary_terms(
    results: Iterable[GlossaryExtractionResult],
    seed: Optional[Iterable[GlossaryTerm]] = None,
) -> GlossaryMerge:
    """Merge seeded and extracted terms keyed on the stripped, lowercased term.

    An identical translation counts as a duplicate. A differing translation is
    recorded as a conflict and the first-seen translation is kept.
    """
    merge = GlossaryMerge()
    by_key: dict[str, GlossaryTerm] = {}
    conflicts: dict[str, GlossaryConflict] = {}

    def _add(term: GlossaryTerm) -> None:
        key = _term_key(term.term)
        if not key or not term.translation.strip():
            return
        existing = by_key.get(key)
        if existing is None:
            by_key[key] = term
            merge.unique.append(term)
        elif _term_key(existing.translation) == _term_key(term.translation):
            merge.duplicates += 1
        else:
            conflict = conflicts.get(key)
            if conflict is None:
                conflict = conflicts[key] = GlossaryConflict(term=existing.term, options=[existing])
                merge.conflicts.append(conflict)
            if all(_term_key(o.translation) != _term_key(term.translation) for o in conflict.options):
                conflict.options.append(term)

    for term in seed or []:
        _add(term)
    for result in sorted(results, key=lambda r: r.chunk_index):
        for term in result.terms:
            _add(term)

    logger.info(
        f"[Glossary] Merged {len(merge.unique)} unique terms "
        f"({merge.duplicates} duplicates, {len(merge.conflicts)} conflicts)"
    )
    return merge
