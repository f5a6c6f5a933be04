"""Removal of overlapping notes that share a channel and pitch."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from .model import NoteEvent


def fix_overlapped_notes(notes: Sequence[NoteEvent]) -> List[NoteEvent]:
    """
    Make notes on the same (channel, pitch) non-overlapping.

    Per group, in start order: a note ending at or before an active note's end
    is dropped; of two notes starting together only the longer survives (the
    earlier one on a tie); otherwise the active note is cut where the new one
    starts. Survivors keep their input order.
    """
    result: List[Optional[NoteEvent]] = list(notes)
    groups: Dict[Tuple[int, int], List[int]] = {}
    for index, note in enumerate(notes):
        groups.setdefault((note.channel, note.pitch), []).append(index)

    for indexes in groups.values():
        indexes.sort(key=lambda i: (notes[i].start_tick, i))
        active: List[int] = []
        for index in indexes:
            current = result[index]
            if current is None:
                continue
            removed = False
            pos = 0
            while pos < len(active):
                active_index = active[pos]
                held = result[active_index]
                if held is None or held.end_tick <= current.start_tick:
                    del active[pos]
                    continue
                if held.end_tick >= current.end_tick:
                    result[index] = None
                    removed = True
                    break
                if held.start_tick == current.start_tick:
                    if current.duration <= held.duration:
                        result[index] = None
                        removed = True
                        break
                    result[active_index] = None
                    del active[pos]
                    continue
                # held starts earlier and ends inside current: cut it
                result[active_index] = replace(held, duration=current.start_tick - held.start_tick)
                del active[pos]
            if not removed:
                active.append(index)

    return [note for note in result if note is not None]
