"""Prompt builders for the generative steps.

Each builder returns (system_prompt, user_prompt). The response shape is
enforced separately by the pydantic schema passed with the request.
"""

import json
from typing import Iterable, Optional, Sequence

from chunkscribe.domain.models import GlossaryTerm, SpeakerProfile, SubtitleSegment


def _glossary_block(glossary: Sequence[GlossaryTerm]) -> str:
    if not glossary:
        return ""
    lines = "\n".join(
        f"- {t.term} -> {t.translation}" + (f" ({t.notes})" if t.notes else "") for t in glossary
    )
    return f"\nUse these fixed translations consistently:\n{lines}\n"


def _speaker_block(profiles: Sequence[SpeakerProfile]) -> str:
    if not profiles:
        return ""
    described = []
    for p in profiles:
        c = p.characteristics
        traits = ", ".join(v for v in (c.gender, c.pitch, c.speed, c.accent, c.tone) if v)
        quotes = "; ".join(f'"{q}"' for q in p.sample_quotes[:2])
        described.append(f"- {p.id}: {traits}" + (f" e.g. {quotes}" if quotes else ""))
    return "\nKnown speakers (label each line with one of these ids):\n" + "\n".join(described) + "\n"


def glossary_prompt(target_language: str, genre: str) -> tuple[str, str]:
    system = (
        "You extract terminology from audio that needs a consistent translation: "
        "names of people, places, organizations, products and domain jargon."
    )
    user = (
        f"Listen to the audio ({genre} content) and list the terms with their {target_language} "
        'translations. Respond with JSON: {"terms": [{"term": str, "translation": str, "notes": str|null}]}. '
        "Return an empty list if there are none."
    )
    return system, user


def speaker_prompt(genre: str) -> tuple[str, str]:
    system = "You identify and describe the distinct speakers in an audio recording."
    user = (
        f"The audio is a sample of {genre} content stitched from several excerpts. "
        "Describe each distinct voice. Respond with JSON: "
        '{"speakers": [{"id": "Speaker 1", "characteristics": {"gender": str, "name": str|null, '
        '"pitch": str, "speed": str, "accent": str, "tone": str}, "sample_quotes": [str], '
        '"confidence": float}]}.'
    )
    return system, user


def refinement_prompt(
    raw: Iterable[SubtitleSegment],
    chunk_duration: float,
    glossary: Sequence[GlossaryTerm],
    profiles: Sequence[SpeakerProfile],
    genre: str,
) -> tuple[str, str]:
    system = (
        "You correct machine transcripts against the original audio. Fix misheard words, "
        "split or merge lines at natural pauses and correct the timing of every line."
    )
    transcript = json.dumps(
        [{"start": round(s.start, 3), "end": round(s.end, 3), "text": s.original} for s in raw],
        ensure_ascii=False,
    )
    user = (
        f"The audio slice is {chunk_duration:.1f}s long ({genre} content). Timestamps are seconds "
        f"from the start of the slice.{_glossary_block(glossary)}{_speaker_block(profiles)}\n"
        f"Raw transcript:\n{transcript}\n\n"
        'Respond with JSON: {"segments": [{"start": float, "end": float, "text": str, "speaker": str|null}]}.'
    )
    return system, user


def translation_prompt(
    batch: Iterable[SubtitleSegment],
    target_language: str,
    glossary: Sequence[GlossaryTerm],
    genre: str,
    context: Optional[str] = None,
) -> tuple[str, str]:
    system = (
        f"You translate subtitles into {target_language}. Keep each line short and natural, "
        "translate every id exactly once and never merge lines."
    )
    items = json.dumps([{"id": s.id, "text": s.original} for s in batch], ensure_ascii=False)
    user = (
        f"Content genre: {genre}.{_glossary_block(glossary)}"
        + (f"\nPreceding context: {context}\n" if context else "\n")
        + f"Lines:\n{items}\n\n"
        'Respond with JSON: {"items": [{"id": str, "text_translated": str}]}.'
    )
    return system, user
