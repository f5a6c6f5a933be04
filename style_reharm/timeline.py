"""Chord charts ("C7 | F7 | C7 G7 | N.C.") and the tick timeline built from them."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from .errors import ParseError
from .harmony import chord_tones_for_symbol, parse_chord_root

DEFAULT_CHORD = "C7"

_NO_CHORD_RE = re.compile(r"^n\.?c\.?$", re.IGNORECASE)


# ----------------------------
# Data model
# ----------------------------

@dataclass(frozen=True)
class TimeSignature:
    numerator: int
    denominator: int

    @property
    def beats_per_bar(self) -> float:
        # Quarter-note beats per bar
        return self.numerator * (4.0 / self.denominator)


DEFAULT_TIME_SIGNATURE = TimeSignature(4, 4)


@dataclass(frozen=True)
class ChordChart:
    bars: Tuple[Tuple[str, ...], ...]


@dataclass(frozen=True)
class ChordSegment:
    """A half-open tick span [start_tick, end_tick) during which one chord is active."""
    start_tick: int
    end_tick: int
    root: int                   # pitch class 0..11
    tones: Tuple[int, ...]      # semitone offsets from the root
    symbol: str = ""


# ----------------------------
# Parsing
# ----------------------------

def parse_time_signature(value: str) -> TimeSignature:
    """Parse '4/4', '3/4', '6/8' into a TimeSignature."""
    s = value.strip()
    parts = s.split("/")
    if len(parts) != 2:
        raise ParseError(f"Invalid time signature '{value}'. Expected format like '4/4'.")
    try:
        num = int(parts[0].strip())
        den = int(parts[1].strip())
    except ValueError as e:
        raise ParseError(f"Invalid time signature '{value}'. Numerator/denominator must be integers.") from e
    if num <= 0 or den <= 0:
        raise ParseError(f"Invalid time signature '{value}'. Numerator/denominator must be positive.")
    if den & (den - 1) != 0:
        raise ParseError(f"Invalid time signature '{value}'. Denominator should be a power of 2 (e.g. 4, 8, 16).")
    return TimeSignature(numerator=num, denominator=den)


def parse_chord_chart(text: str) -> ChordChart:
    """
    Split a chord chart into bars of chord tokens.

    Bars are separated by '|' or newlines. An empty bar, or an 'N.C.' token,
    repeats the last chord seen (initially C7).
    """
    sanitized = text.replace("\r", "").replace("\n", "|").strip()
    raw_bars = sanitized.split("|") if sanitized else []
    bars: List[Tuple[str, ...]] = []
    last_chord = DEFAULT_CHORD

    for raw in raw_bars:
        chords: List[str] = []
        for token in raw.split():
            if _NO_CHORD_RE.match(token):
                chords.append(last_chord)
                continue
            chords.append(token)
            last_chord = token
        bars.append(tuple(chords) if chords else (last_chord,))

    return ChordChart(bars=tuple(bars))


# ----------------------------
# Timeline
# ----------------------------

def ticks_per_bar(time_signature: TimeSignature, ticks_per_beat: int) -> float:
    return ticks_per_beat * time_signature.beats_per_bar


def round_half_up(value: float) -> int:
    # floor(x + 0.5); round() would send halves to the even neighbour
    return int(math.floor(value + 0.5))


def build_chord_timeline(
    chart: ChordChart,
    *,
    ticks_per_bar: float,
    total_bars: Optional[int] = None,
) -> List[ChordSegment]:
    """
    Expand a chart into contiguous chord segments covering [0, total_bars * ticks_per_bar).

    The chart loops when total_bars exceeds its length. Each bar's span is split
    evenly between its chords; neighbours with the same root and tones merge.
    """
    bars: Sequence[Tuple[str, ...]] = chart.bars or ((DEFAULT_CHORD,),)
    bars_to_render = len(bars) if total_bars is None else total_bars
    segments: List[ChordSegment] = []

    for bar_index in range(bars_to_render):
        bar = bars[bar_index % len(bars)] or (DEFAULT_CHORD,)
        ticks_per_chord = ticks_per_bar / len(bar)
        bar_start = bar_index * ticks_per_bar
        for chord_index, chord in enumerate(bar):
            start_tick = round_half_up(bar_start + chord_index * ticks_per_chord)
            end_tick = round_half_up(bar_start + (chord_index + 1) * ticks_per_chord)
            if end_tick <= start_tick:
                continue
            root = parse_chord_root(chord)
            tones = chord_tones_for_symbol(chord)
            last = segments[-1] if segments else None
            if last is not None and last.root == root and last.tones == tones:
                segments[-1] = replace(last, end_tick=end_tick)
            else:
                segments.append(ChordSegment(start_tick=start_tick, end_tick=end_tick, root=root, tones=tones, symbol=chord))

    return segments
