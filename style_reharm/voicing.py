"""
Voicing engine: re-harmonizes a style part over a chord timeline.

Every source note is tiled across the requested bars, split at chord changes,
and given a destination pitch by one of three modes chosen from the channel's
settings:

    chord   (ntr 1/2)         the channel's whole pitch set is re-voiced for the
                              destination chord with minimal movement
    melody  (ntr 0, ntt != 0) each note keeps its degree role, snapped near the
                              root-shifted pitch
    root    (otherwise)       plain transposition by the root difference
"""

from __future__ import annotations

import bisect
import enum
import itertools
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .casm import ChannelSettings, CasmInfo
from .harmony import (
    ChordProfile,
    ChordTypeInfo,
    Degree,
    chord_type_info,
    degree_most_probable,
    extract_quality,
    fit_degree_advanced,
    fit_degree_for_slot,
    fit_degree_melody_mode,
    normalize_pitch_class,
    profile_for,
    same_chord_type,
    sort_degrees,
)
from .model import NoteEvent, StylePart
from .overlap import fix_overlapped_notes
from .timeline import DEFAULT_CHORD, ChordSegment, TimeSignature, round_half_up

DRUM_CHANNELS = frozenset((8, 9))
DEFAULT_CHORD_TONES = (0, 4, 7, 10)


class MappingMode(enum.Enum):
    CHORD = "chord"
    MELODY = "melody"
    ROOT = "root"


def mapping_mode(settings: Optional[ChannelSettings]) -> MappingMode:
    if settings is None:
        return MappingMode.ROOT
    if settings.is_chord_mode:
        return MappingMode.CHORD
    if settings.is_melody_mode:
        return MappingMode.MELODY
    return MappingMode.ROOT


@dataclass(frozen=True)
class NoteMapping:
    """Trace of how one output note was derived, for debugging and comparisons."""
    source_channel: int
    dest_channel: int
    source_pitch: int
    dest_pitch: int
    source_rel_pitch: int
    dest_rel_pitch: int
    source_degree: Degree
    dest_degree: Degree
    mode: MappingMode
    start_tick: int
    duration: int
    segment: ChordSegment
    source_root: int
    target_root: int
    settings: Optional[ChannelSettings]


@dataclass(frozen=True)
class PartRender:
    notes: List[NoteEvent]
    total_ticks: int


# ----------------------------
# Pitch placement
# ----------------------------

def lower_pitch(reference: int, rel_pitch: int, inclusive: bool) -> int:
    """Highest pitch with pitch class ``rel_pitch`` below (or at, if inclusive) ``reference``."""
    ref_pc = normalize_pitch_class(reference)
    octave = reference // 12
    pitch = octave * 12 + rel_pitch
    if (rel_pitch == ref_pc and not inclusive) or rel_pitch > ref_pc:
        pitch = (octave - 1) * 12 + rel_pitch
    if pitch < 0:
        pitch += 12
    return pitch


def upper_pitch(reference: int, rel_pitch: int, inclusive: bool) -> int:
    """Lowest pitch with pitch class ``rel_pitch`` above (or at, if inclusive) ``reference``."""
    ref_pc = normalize_pitch_class(reference)
    octave = reference // 12
    pitch = octave * 12 + rel_pitch
    if (rel_pitch == ref_pc and not inclusive) or rel_pitch < ref_pc:
        pitch = (octave + 1) * 12 + rel_pitch
    if pitch > 127:
        pitch -= 12
    return pitch


def closest_pitch(reference: int, rel_pitch: int) -> int:
    """Nearest pitch with pitch class ``rel_pitch``; a tie goes to the lower one."""
    up = upper_pitch(reference, rel_pitch, True)
    low = lower_pitch(reference, rel_pitch, True)
    if up - reference < reference - low:
        return up
    return low


# ----------------------------
# Chord mode
# ----------------------------

def unique_permutations(values: Sequence[int]) -> List[Tuple[int, ...]]:
    return list(dict.fromkeys(itertools.permutations(values)))


def _skip_octaves(pitches: Sequence[int]) -> List[int]:
    """Whole octaves jumped between consecutive (ascending) pitches; 0 for the first."""
    return [0] + [(b - a) // 12 for a, b in zip(pitches, pitches[1:])]


def parallel_chord(
    source_pitches: Sequence[int],
    source_pcs: Sequence[int],
    unique_pc_count: int,
    dest_pcs: Sequence[int],
    start_below: bool,
) -> List[int]:
    """
    Stack ``dest_pcs`` in the shape of ``source_pitches``.

    The first pitch lands at/below (start_below) or at/above the lowest source
    pitch; each next one is stacked strictly upward, jumping as many extra
    octaves as the source does. Equal source pitch classes share a destination
    pitch class.
    """
    if not source_pitches or len(dest_pcs) != unique_pc_count:
        return []
    skips = _skip_octaves(source_pitches)
    first_pc = dest_pcs[0]
    if start_below:
        first = lower_pitch(source_pitches[0], first_pc, True)
    else:
        first = upper_pitch(source_pitches[0], first_pc, True)
    chord = [first]
    assigned: Dict[int, int] = {source_pcs[0]: first_pc}
    next_index = 1

    last = first
    for i in range(1, len(source_pitches)):
        dest_pc = assigned.get(source_pcs[i])
        if dest_pc is None:
            dest_pc = dest_pcs[min(next_index, len(dest_pcs) - 1)]
            next_index += 1
            assigned[source_pcs[i]] = dest_pc
        for _ in range(skips[i] + 1):
            last = upper_pitch(last, dest_pc, False)
        chord.append(last)
    return chord


def chord_score(
    source_pitches: Sequence[int],
    dest_pitches: Sequence[int],
    dest_info: Optional[ChordTypeInfo] = None,
    dest_root: Optional[int] = None,
) -> float:
    """Movement cost of a candidate voicing (lower is better)."""
    if not source_pitches or len(source_pitches) != len(dest_pitches):
        return math.inf
    distance = sum(abs(s - d) for s, d in zip(source_pitches, dest_pitches))
    top_delta = abs(source_pitches[-1] - dest_pitches[-1])
    low_delta = abs(source_pitches[0] - dest_pitches[0])
    score = distance + 3 * top_delta + low_delta

    size = len(dest_pitches)
    if size > 2:
        top = dest_pitches[-1]
        bottom = dest_pitches[0]
        span = top - bottom
        if dest_info is not None and dest_info.is_thirteenth and span < 11:
            score += 4 * size
        if dest_pitches[-2] == top - 1:
            score += 3 * size
        if span == 13:
            score += 4 * size
        if (dest_pitches[1] - bottom >= 9 and dest_root is not None
                and normalize_pitch_class(bottom) != dest_root):
            score += 2 * size
    return score


def relative_pitch_delta(source_rel: int, dest_rel: int) -> int:
    """Signed pitch-class distance folded into -5..6."""
    delta = dest_rel - source_rel
    if delta > 6:
        delta -= 12
    elif delta < -5:
        delta += 12
    return delta


def dest_degrees_chord_mode(
    src_info: ChordTypeInfo,
    dest_info: ChordTypeInfo,
    src_degrees: Sequence[Degree],
    source_root: int,
    dest_root: int,
) -> Dict[Degree, Degree]:
    """
    Pair each source degree with a destination degree.

    Source and destination are first matched slot by slot along the
    destination's most important slots; leftover source degrees take the
    remaining slot whose pitch class is nearest.
    """
    result: Dict[Degree, Degree] = {}
    remaining = sort_degrees(src_degrees)
    if len(remaining) <= 2:
        for degree in remaining:
            result[degree] = fit_degree_advanced(dest_info.profile, degree)
        return result

    # With enough destination degrees each slot is used once.
    exclusive = len(dest_info.degrees) >= len(remaining)
    slots = list(dest_info.most_important[:len(remaining)] if exclusive else dest_info.most_important)

    for slot in list(slots):
        src_degree = fit_degree_for_slot(src_info, slot)
        if src_degree in remaining:
            result[src_degree] = fit_degree_for_slot(dest_info, slot)
            remaining.remove(src_degree)
            if exclusive:
                slots.remove(slot)

    for src_degree in remaining:
        if not slots:
            result[src_degree] = fit_degree_advanced(dest_info.profile, src_degree)
            continue
        src_rel = normalize_pitch_class(source_root + src_degree.pitch)
        closest = slots[0]
        smallest = math.inf
        for slot in slots:
            dest_rel = normalize_pitch_class(dest_root + fit_degree_for_slot(dest_info, slot).pitch)
            delta = abs(relative_pitch_delta(src_rel, dest_rel))
            if delta < smallest:
                smallest = delta
                closest = slot
        result[src_degree] = fit_degree_for_slot(dest_info, closest)
        if exclusive:
            slots.remove(closest)

    return result


@dataclass(frozen=True)
class SourceChordData:
    """What a channel plays in the source pattern, relative to its source chord."""
    pitches: Tuple[int, ...]          # distinct, ascending
    pcs: Tuple[int, ...]              # pitch class of each entry of ``pitches``
    unique_pcs: Tuple[int, ...]
    source_root: int
    profile: ChordProfile
    used_degrees: Tuple[Degree, ...]
    type_info: ChordTypeInfo


def source_chord_data(pitches: Sequence[int], source_root: int, source_quality: str) -> SourceChordData:
    ordered = sorted(set(pitches))
    pcs = tuple(normalize_pitch_class(p) for p in ordered)
    unique_pcs = tuple(dict.fromkeys(pcs))
    root = normalize_pitch_class(source_root)
    info = chord_type_info(source_quality)
    degrees = dict.fromkeys(
        degree_most_probable(pc - root, info.profile.is_major) for pc in unique_pcs
    )
    return SourceChordData(
        pitches=tuple(ordered),
        pcs=pcs,
        unique_pcs=unique_pcs,
        source_root=root,
        profile=info.profile,
        used_degrees=tuple(sort_degrees(list(degrees))),
        type_info=info,
    )


@dataclass(frozen=True)
class ChordModeMapping:
    pitch_map: Mapping[int, int]
    degree_map: Mapping[Degree, Degree]


def chord_mode_mapping(data: SourceChordData, segment: ChordSegment, dest_info: ChordTypeInfo) -> Optional[ChordModeMapping]:
    """Best re-voicing of a channel's source pitch set over one destination chord."""
    if not data.pitches:
        return None
    dest_root = normalize_pitch_class(segment.root)
    degree_map = dest_degrees_chord_mode(data.type_info, dest_info, data.used_degrees, data.source_root, dest_root)
    dest_pcs = [
        normalize_pitch_class(dest_root + degree_map.get(d, fit_degree_advanced(dest_info.profile, d)).pitch)
        for d in data.used_degrees
    ]

    best: Optional[List[int]] = None
    best_score = math.inf
    for permutation in unique_permutations(dest_pcs):
        for start_below in (False, True):
            candidate = parallel_chord(data.pitches, data.pcs, len(data.unique_pcs), permutation, start_below)
            score = chord_score(data.pitches, candidate, dest_info, dest_root)
            if score < best_score:
                best_score = score
                best = candidate

    if not best:
        return None
    return ChordModeMapping(pitch_map=dict(zip(data.pitches, best)), degree_map=degree_map)


# ----------------------------
# Rendering
# ----------------------------

class _RenderContext:
    """Per-call lookups and memo tables; discarded when render_part returns."""

    def __init__(self, segments: Sequence[ChordSegment], casm: CasmInfo, source: Mapping[int, SourceChordData]) -> None:
        self.segments = segments
        self.starts = [s.start_tick for s in segments]
        self.casm = casm
        self.source = source
        self._dest_info: Dict[object, ChordTypeInfo] = {}
        self._chord_mode: Dict[Tuple[int, int], Optional[ChordModeMapping]] = {}

    def segment_index(self, tick: int) -> int:
        index = bisect.bisect_right(self.starts, tick) - 1
        if index >= 0 and tick < self.segments[index].end_tick:
            return index
        return len(self.segments) - 1

    def dest_info(self, segment: ChordSegment) -> ChordTypeInfo:
        key = segment.symbol or (segment.root, segment.tones)
        info = self._dest_info.get(key)
        if info is None:
            info = chord_type_info(extract_quality(segment.symbol))
            self._dest_info[key] = info
        return info

    def chord_mode(self, channel: int, index: int) -> Optional[ChordModeMapping]:
        key = (channel, index)
        if key not in self._chord_mode:
            data = self.source.get(channel)
            segment = self.segments[index]
            self._chord_mode[key] = (
                chord_mode_mapping(data, segment, self.dest_info(segment)) if data is not None else None
            )
        return self._chord_mode[key]


def _collect_source_data(part: StylePart, casm: CasmInfo) -> Dict[int, SourceChordData]:
    pitches: Dict[int, List[int]] = {}
    for note in part.notes:
        if note.channel not in DRUM_CHANNELS:
            pitches.setdefault(note.channel, []).append(note.pitch)
    return {
        channel: source_chord_data(
            channel_pitches,
            casm.source_root_by_channel.get(channel, 0),
            casm.source_quality_by_channel.get(channel, ""),
        )
        for channel, channel_pitches in pitches.items()
    }


def _fold_into_window(pitch: int, settings: Optional[ChannelSettings]) -> int:
    if settings is not None:
        while pitch > settings.note_high:
            pitch -= 12
        while pitch < settings.note_low:
            pitch += 12
    return max(0, min(127, pitch))


def render_part(
    part: StylePart,
    casm: CasmInfo,
    chord_timeline: Sequence[ChordSegment],
    *,
    bars: int,
    time_signature: TimeSignature,
    input_ticks_per_beat: int,
    output_ticks_per_beat: int,
    on_note: Optional[Callable[[NoteMapping], None]] = None,
) -> PartRender:
    """
    Loop ``part`` over ``bars`` bars and re-harmonize it along ``chord_timeline``.

    Notes are split at every chord change they cross. The result has no
    overlapping notes on the same channel and pitch.
    """
    if bars < 1:
        raise ValueError("bars must be >= 1.")
    beats_per_bar = time_signature.beats_per_bar
    total_ticks = round_half_up(bars * beats_per_bar * output_ticks_per_beat)
    scale = output_ticks_per_beat / input_ticks_per_beat
    if part.length_ticks > 0:
        part_length = round_half_up(part.length_ticks * scale)
    else:
        part_length = round_half_up(beats_per_bar * output_ticks_per_beat)
    if part_length <= 0:
        return PartRender(notes=[], total_ticks=total_ticks)

    segments = list(chord_timeline) or [
        ChordSegment(start_tick=0, end_tick=total_ticks, root=0, tones=DEFAULT_CHORD_TONES, symbol=DEFAULT_CHORD)
    ]
    source = _collect_source_data(part, casm)
    ctx = _RenderContext(segments, casm, source)
    default_profile = profile_for("")
    notes: List[NoteEvent] = []

    for base_tick in range(0, total_ticks, part_length):
        for note in part.notes:
            note_start = base_tick + round_half_up(note.start_tick * scale)
            note_end = min(note_start + round_half_up(note.duration * scale), total_ticks)
            if note_start >= total_ticks or note_end <= note_start:
                continue

            stops = [s.start_tick for s in segments if note_start < s.start_tick < note_end]
            stops.append(note_end)
            span_start = note_start
            for stop in stops:
                if stop <= span_start:
                    continue
                index = ctx.segment_index(span_start)
                segment = segments[index]
                pitch, mapping_trace = _map_note(ctx, note, index, segment, default_profile)
                notes.append(NoteEvent(
                    channel=casm.channel_map.get(note.channel, note.channel),
                    pitch=pitch,
                    velocity=note.velocity,
                    start_tick=span_start,
                    duration=stop - span_start,
                ))
                if on_note is not None:
                    on_note(mapping_trace(span_start, stop - span_start))
                span_start = stop

    return PartRender(notes=fix_overlapped_notes(notes), total_ticks=total_ticks)


def _map_note(
    ctx: _RenderContext,
    note: NoteEvent,
    index: int,
    segment: ChordSegment,
    default_profile: ChordProfile,
) -> Tuple[int, Callable[[int, int], NoteMapping]]:
    """Destination pitch of ``note`` over ``segment``, plus a factory for its trace record."""
    casm = ctx.casm
    settings = casm.settings_by_channel.get(note.channel)
    dest_channel = casm.channel_map.get(note.channel, note.channel)
    target_root = normalize_pitch_class(segment.root)
    source_root = normalize_pitch_class(casm.source_root_by_channel.get(note.channel, 0))
    data = ctx.source.get(note.channel)
    source_profile = data.profile if data is not None else default_profile
    src_rel = normalize_pitch_class(note.pitch - source_root)
    src_degree = degree_most_probable(src_rel, source_profile.is_major)
    dest_info = ctx.dest_info(segment)
    dest_profile = dest_info.profile
    dest_degree = src_degree
    mode = MappingMode.ROOT
    pitch = note.pitch

    if dest_channel not in DRUM_CHANNELS:
        mode = mapping_mode(settings)
        if mode is MappingMode.CHORD:
            mapping = ctx.chord_mode(note.channel, index)
            if mapping is not None:
                dest_degree = mapping.degree_map.get(src_degree, fit_degree_advanced(dest_profile, src_degree))
                pitch = mapping.pitch_map.get(note.pitch, pitch)
            else:
                dest_degree = fit_degree_advanced(dest_profile, src_degree)
        elif mode is MappingMode.MELODY:
            shifted = note.pitch + normalize_pitch_class(target_root - source_root)
            type_info = data.type_info if data is not None else None
            if settings.bass_on and same_chord_type(type_info, dest_info):
                dest_pc = normalize_pitch_class(target_root + src_rel)
                pitch = closest_pitch(shifted, dest_pc)
                dest_degree = degree_most_probable(src_rel, dest_profile.is_major)
            else:
                dest_degree = fit_degree_melody_mode(dest_profile, src_degree)
                pitch = closest_pitch(shifted, normalize_pitch_class(target_root + dest_degree.pitch))
        else:
            pitch = note.pitch + (target_root - source_root)

        if (mode is not MappingMode.CHORD and settings is not None and settings.ntr == 0
                and target_root > normalize_pitch_class(settings.chord_root_upper)):
            pitch -= 12

    pitch = _fold_into_window(pitch, settings)
    dest_rel = normalize_pitch_class(pitch - target_root)
    if mode is MappingMode.ROOT:
        dest_degree = degree_most_probable(dest_rel, dest_profile.is_major)

    def trace(start_tick: int, duration: int) -> NoteMapping:
        return NoteMapping(
            source_channel=note.channel,
            dest_channel=dest_channel,
            source_pitch=note.pitch,
            dest_pitch=pitch,
            source_rel_pitch=src_rel,
            dest_rel_pitch=dest_rel,
            source_degree=src_degree,
            dest_degree=dest_degree,
            mode=mode,
            start_tick=start_tick,
            duration=duration,
            segment=segment,
            source_root=source_root,
            target_root=target_root,
            settings=settings,
        )

    return pitch, trace
