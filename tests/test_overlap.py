from __future__ import annotations

from style_reharm.model import NoteEvent
from style_reharm.overlap import fix_overlapped_notes


def note(start: int, duration: int, pitch: int = 60, channel: int = 0, velocity: int = 100) -> NoteEvent:
    return NoteEvent(channel=channel, pitch=pitch, velocity=velocity, start_tick=start, duration=duration)


def test_earlier_note_is_cut_where_next_starts() -> None:
    assert fix_overlapped_notes([note(0, 100), note(50, 100)]) == [note(0, 50), note(50, 100)]


def test_contained_note_is_dropped() -> None:
    assert fix_overlapped_notes([note(0, 200), note(50, 50)]) == [note(0, 200)]
    assert fix_overlapped_notes([note(0, 200), note(50, 150)]) == [note(0, 200)]


def test_same_start_keeps_longer_note() -> None:
    assert fix_overlapped_notes([note(0, 100), note(0, 200)]) == [note(0, 200)]
    assert fix_overlapped_notes([note(0, 100, velocity=1), note(0, 100, velocity=2)]) == [note(0, 100, velocity=1)]


def test_touching_notes_are_untouched() -> None:
    notes = [note(0, 100), note(100, 100)]
    assert fix_overlapped_notes(notes) == notes


def test_other_pitch_or_channel_is_independent() -> None:
    notes = [note(0, 100), note(50, 100, pitch=61), note(50, 100, channel=1)]
    assert fix_overlapped_notes(notes) == notes


def test_input_order_is_kept() -> None:
    notes = [note(50, 100, pitch=64), note(0, 10, pitch=60), note(0, 100, pitch=64)]
    assert fix_overlapped_notes(notes) == [note(50, 100, pitch=64), note(0, 10, pitch=60), note(0, 50, pitch=64)]


def test_result_has_no_overlaps_and_is_stable() -> None:
    notes = [
        note(0, 400), note(100, 50), note(120, 500), note(120, 30),
        note(300, 300), note(600, 10), note(0, 1000, pitch=62), note(10, 5, pitch=62),
    ]
    once = fix_overlapped_notes(notes)
    by_key = {}
    for n in once:
        by_key.setdefault((n.channel, n.pitch), []).append(n)
    for group in by_key.values():
        group.sort(key=lambda n: n.start_tick)
        for a, b in zip(group, group[1:]):
            assert a.end_tick <= b.start_tick
    assert all(n.duration > 0 for n in once)
    assert fix_overlapped_notes(once) == once
