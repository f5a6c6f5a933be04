"""Note-level comparison of a render against a reference MIDI export."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from typing import List, Sequence, Tuple

from .model import NoteEvent
from .timeline import round_half_up

NoteKey = Tuple[int, int, int, int]


def note_key(note: NoteEvent) -> NoteKey:
    # velocity is not compared
    return (note.channel, note.pitch, note.start_tick, note.duration)


def _sort_key(note: NoteEvent) -> Tuple[int, int, int, int]:
    return (note.start_tick, note.channel, note.pitch, note.duration)


@dataclass(frozen=True)
class NoteDiff:
    expected_count: int
    actual_count: int
    matched: int
    missing: Tuple[NoteEvent, ...]     # in expected only
    extra: Tuple[NoteEvent, ...]       # in actual only

    @property
    def is_match(self) -> bool:
        return not self.missing and not self.extra


def rescale_notes(notes: Sequence[NoteEvent], from_ppq: int, to_ppq: int) -> List[NoteEvent]:
    if from_ppq <= 0 or to_ppq <= 0:
        raise ValueError("ppq must be positive.")
    if from_ppq == to_ppq:
        return list(notes)
    scale = to_ppq / from_ppq
    rescaled: List[NoteEvent] = []
    for note in notes:
        start = round_half_up(note.start_tick * scale)
        end = round_half_up(note.end_tick * scale)
        if end > start:
            rescaled.append(replace(note, start_tick=start, duration=end - start))
    return rescaled


def compare_notes(expected: Sequence[NoteEvent], actual: Sequence[NoteEvent]) -> NoteDiff:
    """Multiset comparison of two note lists on (channel, pitch, start, duration)."""
    remaining = Counter(note_key(n) for n in actual)
    missing: List[NoteEvent] = []
    matched = 0
    for note in sorted(expected, key=_sort_key):
        key = note_key(note)
        if remaining[key] > 0:
            remaining[key] -= 1
            matched += 1
        else:
            missing.append(note)

    extra: List[NoteEvent] = []
    for note in sorted(actual, key=_sort_key):
        key = note_key(note)
        if remaining[key] > 0:
            remaining[key] -= 1
            extra.append(note)

    return NoteDiff(
        expected_count=len(expected),
        actual_count=len(actual),
        matched=matched,
        missing=tuple(missing),
        extra=tuple(extra),
    )


def _describe(note: NoteEvent) -> str:
    return f"ch={note.channel:<2d} pitch={note.pitch:<3d} start={note.start_tick:<7d} dur={note.duration}"


def format_diff(diff: NoteDiff, limit: int = 5) -> str:
    lines = [
        f"notes expected={diff.expected_count} actual={diff.actual_count} "
        f"matched={diff.matched} missing={len(diff.missing)} extra={len(diff.extra)}"
    ]
    for label, notes in (("missing", diff.missing), ("extra", diff.extra)):
        for note in notes[:limit]:
            lines.append(f"  {label:<7s} {_describe(note)}")
        if len(notes) > limit:
            lines.append(f"  ... {len(notes) - limit} more {label}")
    return "\n".join(lines)
