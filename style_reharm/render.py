"""
Render entry points: style bytes + part name + chord chart -> notes or MIDI bytes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .codec import build_midi_file, decode_style
from .errors import PartNotFound
from .model import NoteEvent, ProgramChange
from .timeline import (
    DEFAULT_CHORD,
    DEFAULT_TIME_SIGNATURE,
    ChordSegment,
    TimeSignature,
    build_chord_timeline,
    parse_chord_chart,
    round_half_up,
    ticks_per_bar,
)
from .voicing import NoteMapping, render_part

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_TICKS_PER_BEAT = 960
RENDER_TRACK_NAME = "style-reharm render"


@dataclass(frozen=True)
class RenderOptions:
    part: str
    bars: Optional[int] = None
    chord_chart: Optional[str] = None
    chord_timeline: Optional[Sequence[ChordSegment]] = None
    tempo_bpm: Optional[float] = None
    output_ticks_per_beat: int = DEFAULT_OUTPUT_TICKS_PER_BEAT
    time_signature: Optional[TimeSignature] = None    # overrides the style's own


@dataclass(frozen=True)
class RenderedSong:
    notes: List[NoteEvent]
    total_ticks: int
    ticks_per_beat: int
    tempo: int                      # us per quarter note
    time_signature: TimeSignature
    programs_by_channel: Dict[int, ProgramChange]


def tempo_to_microseconds(tempo_bpm: Optional[float], fallback: int) -> int:
    if not tempo_bpm or tempo_bpm <= 0:
        return fallback
    return round_half_up(60_000_000 / tempo_bpm)


def render_style_to_notes(
    data: bytes,
    options: RenderOptions,
    on_note: Optional[Callable[[NoteMapping], None]] = None,
) -> RenderedSong:
    """
    Decode a style file and re-harmonize one of its parts.

    Raises PartNotFound when ``options.part`` names no marker of the style,
    and ValueError for a non-positive bar count or output resolution.
    """
    if options.output_ticks_per_beat <= 0:
        raise ValueError("output_ticks_per_beat must be positive.")
    if options.bars is not None and options.bars < 1:
        raise ValueError("bars must be >= 1.")

    style = decode_style(data)
    part = style.find_part(options.part)
    if part is None:
        raise PartNotFound(options.part, [p.marker for p in style.parts])

    time_signature = options.time_signature or style.time_signature or DEFAULT_TIME_SIGNATURE
    tempo = tempo_to_microseconds(options.tempo_bpm, style.tempo)
    bar_ticks = ticks_per_bar(time_signature, options.output_ticks_per_beat)

    bars = options.bars
    timeline = list(options.chord_timeline) if options.chord_timeline is not None else None
    if timeline is None:
        chart = parse_chord_chart(options.chord_chart if options.chord_chart is not None else DEFAULT_CHORD)
        bars = bars or len(chart.bars) or 1
        timeline = build_chord_timeline(chart, ticks_per_bar=bar_ticks, total_bars=bars)
    if not bars:
        last_end = timeline[-1].end_tick if timeline else bar_ticks
        bars = max(1, round_half_up(last_end / bar_ticks))

    casm = style.casm_for(part)
    logger.debug("Rendering part %r for %d bars over %d chord segments", part.marker, bars, len(timeline))
    rendered = render_part(
        part,
        casm,
        timeline,
        bars=bars,
        time_signature=time_signature,
        input_ticks_per_beat=style.ticks_per_beat,
        output_ticks_per_beat=options.output_ticks_per_beat,
        on_note=on_note,
    )

    programs: Dict[int, ProgramChange] = {}
    for channel, change in part.programs_by_channel.items():
        programs[casm.channel_map.get(channel, channel)] = change

    return RenderedSong(
        notes=rendered.notes,
        total_ticks=rendered.total_ticks,
        ticks_per_beat=options.output_ticks_per_beat,
        tempo=tempo,
        time_signature=time_signature,
        programs_by_channel=programs,
    )


def song_to_midi(song: RenderedSong) -> bytes:
    return build_midi_file(
        ticks_per_beat=song.ticks_per_beat,
        tempo=song.tempo,
        time_signature=song.time_signature,
        notes=song.notes,
        format_type=1,
        track_name=RENDER_TRACK_NAME,
        end_tick=song.total_ticks + 1,
        programs_by_channel=song.programs_by_channel,
    )


def render_style_to_midi(data: bytes, options: RenderOptions) -> bytes:
    """Like render_style_to_notes, encoded as a format-1 standard MIDI file."""
    return song_to_midi(render_style_to_notes(data, options))
