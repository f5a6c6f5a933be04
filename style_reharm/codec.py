"""
MIDI side of a style file, read and written with mido.

A style file is a format-0 standard MIDI file whose single track is cut into
parts by marker meta events ('SFF2', 'SInt', 'Main A', ...), followed by
proprietary chunks (CASM, OTSc, ...) that mido never reads because the header
only announces one track.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import mido

from .casm import EMPTY_CASM_INFO, SFF1, SFF2, CasmInfo, normalize_part_name, parse_casm
from .errors import StructuralParseError
from .model import NoteEvent, ProgramChange, StylePart
from .timeline import TimeSignature

logger = logging.getLogger(__name__)

DEFAULT_TEMPO = 500000  # us per quarter note, 120 bpm
DEFAULT_TICKS_PER_BEAT = 480

_MIDI_READ_ERRORS = (OSError, EOFError, ValueError, KeyError, IndexError)


@dataclass(frozen=True)
class ParsedStyle:
    ticks_per_beat: int
    tempo: int
    time_signature: Optional[TimeSignature]
    parts: Tuple[StylePart, ...]
    casm_by_part: Mapping[str, CasmInfo]
    sff_type: Optional[str] = None

    @property
    def default_casm(self) -> CasmInfo:
        return next(iter(self.casm_by_part.values()), EMPTY_CASM_INFO)

    def find_part(self, name: str) -> Optional[StylePart]:
        part_id = normalize_part_name(name)
        for part in self.parts:
            if part.id == part_id:
                return part
        return None

    def casm_for(self, part: StylePart) -> CasmInfo:
        return self.casm_by_part.get(part.id, self.default_casm)


# ----------------------------
# Decoding
# ----------------------------

def read_midi(data: bytes) -> mido.MidiFile:
    try:
        return mido.MidiFile(file=io.BytesIO(data), clip=True)
    except _MIDI_READ_ERRORS as e:
        raise StructuralParseError(f"Not a readable MIDI/style file: {e}") from e


def with_absolute_ticks(track: Iterable[mido.Message]) -> Iterable[Tuple[int, mido.Message]]:
    tick = 0
    for msg in track:
        tick += msg.time
        yield tick, msg


def tempo_from_track(track: Iterable[mido.Message]) -> Optional[int]:
    for msg in track:
        if msg.type == "set_tempo":
            return msg.tempo
    return None


def time_signature_from_track(track: Iterable[mido.Message]) -> Optional[TimeSignature]:
    for msg in track:
        if msg.type == "time_signature":
            return TimeSignature(numerator=msg.numerator, denominator=msg.denominator)
    return None


class _NotePairer:
    """Pairs note-on/note-off messages (note-on with velocity 0 counts as note-off)."""

    def __init__(self) -> None:
        self.active: Dict[Tuple[int, int], Tuple[int, int]] = {}

    def feed(self, tick: int, msg: mido.Message) -> Optional[NoteEvent]:
        if msg.type not in ("note_on", "note_off"):
            return None
        key = (msg.channel, msg.note)
        if msg.type == "note_on" and msg.velocity > 0:
            self.active[key] = (tick, msg.velocity)
            return None
        started = self.active.pop(key, None)
        if started is None:
            return None
        start_tick, velocity = started
        if tick - start_tick <= 0:
            return None
        return NoteEvent(channel=msg.channel, pitch=msg.note, velocity=velocity,
                         start_tick=start_tick, duration=tick - start_tick)


def collect_notes(track: Iterable[mido.Message]) -> Tuple[List[NoteEvent], int]:
    """Coalesce one track into NoteEvents with absolute ticks. Returns (notes, end_tick)."""
    pairer = _NotePairer()
    notes: List[NoteEvent] = []
    end_tick = 0
    for tick, msg in with_absolute_ticks(track):
        end_tick = max(end_tick, tick)
        note = pairer.feed(tick, msg)
        if note is not None:
            notes.append(note)
    return notes, end_tick


def read_midi_notes(data: bytes) -> Tuple[List[NoteEvent], int]:
    """All notes of a MIDI file, every track, sorted by (start, channel, pitch, duration)."""
    midi = read_midi(data)
    notes: List[NoteEvent] = []
    for track in midi.tracks:
        notes.extend(collect_notes(track)[0])
    notes.sort(key=lambda n: (n.start_tick, n.channel, n.pitch, n.duration))
    return notes, midi.ticks_per_beat


@dataclass
class _PartBuilder:
    marker: str
    start_tick: int
    programs: Dict[int, ProgramChange]
    notes: List[NoteEvent] = field(default_factory=list)
    length_ticks: int = 0

    def freeze(self) -> StylePart:
        return StylePart(
            id=normalize_part_name(self.marker),
            marker=self.marker,
            start_tick=self.start_tick,
            length_ticks=self.length_ticks,
            notes=tuple(self.notes),
            programs_by_channel=MappingProxyType(dict(self.programs)),
        )


def _split_parts(track: Sequence[mido.Message]) -> List[StylePart]:
    parts: List[_PartBuilder] = []
    current: Optional[_PartBuilder] = None
    pairer = _NotePairer()
    programs: Dict[int, ProgramChange] = {}
    bank_msb: Dict[int, int] = {}
    bank_lsb: Dict[int, int] = {}
    tick = 0

    for tick, msg in with_absolute_ticks(track):
        if msg.type == "marker":
            if current is not None:
                current.length_ticks = max(0, tick - current.start_tick)
            current = _PartBuilder(marker=msg.text, start_tick=tick, programs=dict(programs))
            parts.append(current)
            continue

        if msg.type == "control_change":
            if msg.control == 0:
                bank_msb[msg.channel] = msg.value
            elif msg.control == 32:
                bank_lsb[msg.channel] = msg.value
            continue

        if msg.type == "program_change":
            change = ProgramChange(
                program=msg.program,
                bank_msb=bank_msb.get(msg.channel),
                bank_lsb=bank_lsb.get(msg.channel),
            )
            programs[msg.channel] = change
            if current is not None:
                current.programs[msg.channel] = change
            continue

        note = pairer.feed(tick, msg)
        if note is None or current is None:
            continue
        if note.start_tick < current.start_tick:
            # started in an earlier part
            continue
        current.notes.append(NoteEvent(
            channel=note.channel,
            pitch=note.pitch,
            velocity=note.velocity,
            start_tick=note.start_tick - current.start_tick,
            duration=note.duration,
        ))

    if current is not None:
        current.length_ticks = max(0, tick - current.start_tick)
    return [builder.freeze() for builder in parts]


def detect_sff_type(track: Iterable[mido.Message]) -> Optional[str]:
    for msg in track:
        if msg.type == "marker" and msg.text in (SFF1, SFF2):
            return msg.text
    return None


def decode_style(data: bytes) -> ParsedStyle:
    """Read a style file: parts from the MIDI track, channel settings from CASM."""
    midi = read_midi(data)
    track = list(midi.tracks[0]) if midi.tracks else []
    sff_type = detect_sff_type(track)
    casm_by_part = parse_casm(data, sff_type)
    parts = _split_parts(track)
    logger.debug("Decoded style: %s, %d parts, CASM for %d parts", sff_type, len(parts), len(casm_by_part))
    return ParsedStyle(
        ticks_per_beat=midi.ticks_per_beat or DEFAULT_TICKS_PER_BEAT,
        tempo=tempo_from_track(track) or DEFAULT_TEMPO,
        time_signature=time_signature_from_track(track),
        parts=tuple(parts),
        casm_by_part=MappingProxyType(casm_by_part),
        sff_type=sff_type,
    )


# ----------------------------
# Encoding
# ----------------------------

_EVENT_ORDER = {"control_change": 1, "program_change": 2, "note_off": 3, "note_on": 4}


def _event_rank(msg: mido.Message) -> int:
    if msg.is_meta:
        return 0
    return _EVENT_ORDER.get(msg.type, 4)


def _to_track(events: List[Tuple[int, mido.Message]], end_tick: Optional[int] = None) -> mido.MidiTrack:
    events = sorted(events, key=lambda item: (item[0], _event_rank(item[1])))
    track = mido.MidiTrack()
    last_tick = 0
    for tick, msg in events:
        track.append(msg.copy(time=tick - last_tick))
        last_tick = tick
    final_tick = last_tick if end_tick is None else end_tick
    track.append(mido.MetaMessage("end_of_track", time=max(0, final_tick - last_tick)))
    return track


def build_midi_file(
    *,
    ticks_per_beat: int,
    tempo: int,
    time_signature: TimeSignature,
    notes: Sequence[NoteEvent],
    format_type: int = 0,
    track_name: Optional[str] = None,
    end_tick: Optional[int] = None,
    programs_by_channel: Optional[Mapping[int, ProgramChange]] = None,
) -> bytes:
    """
    Encode notes (plus tempo, time signature and tick-0 program changes) as a
    standard MIDI file. Format 1 puts meta events and notes on separate tracks.
    """
    if ticks_per_beat <= 0:
        raise ValueError("ticks_per_beat must be positive.")
    if format_type not in (0, 1):
        raise ValueError("format_type must be 0 or 1.")

    meta_events: List[Tuple[int, mido.Message]] = []
    if track_name:
        meta_events.append((0, mido.MetaMessage("track_name", name=track_name)))
    meta_events.append((0, mido.MetaMessage("set_tempo", tempo=tempo)))
    meta_events.append((0, mido.MetaMessage(
        "time_signature",
        numerator=time_signature.numerator,
        denominator=time_signature.denominator,
        clocks_per_click=24,
        notated_32nd_notes_per_beat=8,
    )))

    note_events: List[Tuple[int, mido.Message]] = []
    for note in notes:
        note_events.append((note.start_tick, mido.Message(
            "note_on", channel=note.channel, note=note.pitch, velocity=note.velocity)))
        note_events.append((note.end_tick, mido.Message(
            "note_off", channel=note.channel, note=note.pitch, velocity=0)))
    for channel, change in (programs_by_channel or {}).items():
        if change.bank_msb is not None:
            note_events.append((0, mido.Message("control_change", channel=channel, control=0, value=change.bank_msb)))
        if change.bank_lsb is not None:
            note_events.append((0, mido.Message("control_change", channel=channel, control=32, value=change.bank_lsb)))
        note_events.append((0, mido.Message("program_change", channel=channel, program=change.program)))

    last_note_tick = max((tick for tick, _ in note_events), default=0)
    meta_end = end_tick if end_tick is not None else last_note_tick

    midi = mido.MidiFile(type=format_type, ticks_per_beat=ticks_per_beat)
    if format_type == 1:
        midi.tracks.append(_to_track(meta_events, meta_end))
        midi.tracks.append(_to_track(note_events))
    else:
        midi.tracks.append(_to_track(meta_events + note_events, meta_end))

    buffer = io.BytesIO()
    midi.save(file=buffer)
    return buffer.getvalue()
