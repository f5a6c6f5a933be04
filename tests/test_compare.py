from __future__ import annotations

import pytest

from style_reharm.compare import compare_notes, format_diff, rescale_notes
from style_reharm.model import NoteEvent


def note(pitch: int, start: int, duration: int = 100, channel: int = 0, velocity: int = 100) -> NoteEvent:
    return NoteEvent(channel=channel, pitch=pitch, velocity=velocity, start_tick=start, duration=duration)


def test_identical_lists_match_ignoring_velocity_and_order() -> None:
    expected = [note(60, 0), note(64, 0), note(60, 100)]
    actual = [note(60, 100, velocity=1), note(64, 0), note(60, 0)]
    diff = compare_notes(expected, actual)
    assert diff.is_match
    assert diff.matched == 3


def test_missing_and_extra_notes() -> None:
    diff = compare_notes([note(60, 0), note(60, 0), note(62, 50)], [note(60, 0), note(63, 50)])
    assert not diff.is_match
    assert diff.matched == 1
    assert diff.missing == (note(60, 0), note(62, 50))
    assert diff.extra == (note(63, 50),)


def test_rescale_notes() -> None:
    assert rescale_notes([note(60, 240, 240)], 480, 960) == [note(60, 480, 480)]
    assert rescale_notes([note(60, 1, 1)], 960, 480) == []
    with pytest.raises(ValueError):
        rescale_notes([], 0, 960)


def test_format_diff_limits_listing() -> None:
    diff = compare_notes([note(60 + i, 0) for i in range(7)], [])
    text = format_diff(diff, limit=2)
    assert text.splitlines()[0] == "notes expected=7 actual=0 matched=0 missing=7 extra=0"
    assert text.count("missing ch=") == 2
    assert "... 5 more missing" in text
