from __future__ import annotations

import io
import struct
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import mido
import pytest

NoteSpec = Tuple[int, int, int, int, int]          # channel, pitch, velocity, start, duration
PartSpec = Tuple[str, int, Sequence[NoteSpec]]     # marker, length ticks, notes

_RANK = {"control_change": 1, "program_change": 2, "note_off": 3, "note_on": 4}


def section(tag: str, payload: bytes) -> bytes:
    return tag.encode("latin-1") + struct.pack(">I", len(payload)) + payload


def settings_record(ntr: int = 0, ntt: int = 0, bass_on: bool = False, upper: int = 11,
                    low: int = 0, high: int = 127, rtr: int = 0) -> bytes:
    return bytes([ntr, ntt | (0x80 if bass_on else 0), upper, low, high, rtr])


def channel_header(src: int, dest: int, root: int = 0, chord_code: int = 0) -> bytes:
    return (
        bytes([src])
        + b"Chan    "            # name
        + bytes([dest, 0])       # dest, editable
        + b"\x0f\xff"            # muted notes
        + b"\x00" * 5            # muted chord types
        + bytes([root, chord_code])
    )


def ctab(src: int, dest: int, *, root: int = 0, chord_code: int = 0, **settings) -> bytes:
    payload = channel_header(src, dest, root, chord_code) + settings_record(**settings) + b"\x00"
    return section("Ctab", payload)


def ctb2(src: int, dest: int, *, root: int = 0, chord_code: int = 0, **settings) -> bytes:
    payload = (
        channel_header(src, dest, root, chord_code)
        + bytes([0, 127])                  # middle zone bounds
        + settings_record(ntr=9, ntt=9)    # low zone
        + settings_record(**settings)      # middle zone
        + settings_record(ntr=9, ntt=9)    # high zone
        + b"\x00" * 7
    )
    return section("Ctb2", payload)


def cseg(part_names: str, *subsections: bytes) -> bytes:
    return section("CSEG", section("Sdec", part_names.encode("latin-1")) + b"".join(subsections))


def casm(*csegs: bytes) -> bytes:
    return section("CASM", b"".join(csegs))


def build_style(
    parts: Sequence[PartSpec],
    casm_block: bytes = b"",
    *,
    ticks_per_beat: int = 480,
    sff_marker: Optional[str] = "SFF2",
    programs: Optional[Dict[int, int]] = None,
    tempo: int = 500000,
) -> bytes:
    """A format-0 style file: meta events, part markers with their notes, then the CASM block."""
    events: List[Tuple[int, mido.Message]] = [
        (0, mido.MetaMessage("time_signature", numerator=4, denominator=4)),
        (0, mido.MetaMessage("set_tempo", tempo=tempo)),
    ]
    if sff_marker:
        events.append((0, mido.MetaMessage("marker", text=sff_marker)))
    for channel, program in (programs or {}).items():
        events.append((0, mido.Message("control_change", channel=channel, control=0, value=0)))
        events.append((0, mido.Message("program_change", channel=channel, program=program)))

    offset = 0
    for marker, length, notes in parts:
        events.append((offset, mido.MetaMessage("marker", text=marker)))
        for channel, pitch, velocity, start, duration in notes:
            events.append((offset + start, mido.Message("note_on", channel=channel, note=pitch, velocity=velocity)))
            events.append((offset + start + duration, mido.Message("note_off", channel=channel, note=pitch)))
        offset += length

    events.sort(key=lambda item: (item[0], 0 if item[1].is_meta else _RANK[item[1].type]))
    track = mido.MidiTrack()
    last = 0
    for tick, msg in events:
        track.append(msg.copy(time=tick - last))
        last = tick
    track.append(mido.MetaMessage("end_of_track", time=offset - last))

    midi = mido.MidiFile(type=0, ticks_per_beat=ticks_per_beat)
    midi.tracks.append(track)
    buffer = io.BytesIO()
    midi.save(file=buffer)
    return buffer.getvalue() + casm_block


def read_back(data: bytes) -> mido.MidiFile:
    return mido.MidiFile(file=io.BytesIO(data))


MAIN_A_NOTES: List[NoteSpec] = [
    (0, 36, 100, 0, 480),       # bass: C2, one beat
    (1, 60, 90, 0, 960),        # chord: C E G, two beats
    (1, 64, 90, 0, 960),
    (1, 67, 90, 0, 960),
]
MAIN_B_NOTES: List[NoteSpec] = [
    (1, 72, 80, 0, 480),
]


def sample_casm() -> bytes:
    # chord code 0 is "Maj"
    return casm(cseg(
        "Main A,Main B",
        ctab(0, 10, root=0, chord_code=0, ntr=0, ntt=1, bass_on=True, upper=5),
        ctab(1, 11, root=0, chord_code=0, ntr=1, ntt=0),
    ))


@pytest.fixture
def sample_style() -> bytes:
    """SFF2 style, 480 ppq, 4/4: one-bar 'Main A' (bass + C triad) and one-bar 'Main B'."""
    return build_style(
        [("Main A", 1920, MAIN_A_NOTES), ("Main B", 1920, MAIN_B_NOTES)],
        sample_casm(),
        programs={0: 32, 1: 4},
    )


@pytest.fixture
def plain_style() -> bytes:
    """Same parts without any CASM block."""
    return build_style([("Main A", 1920, MAIN_A_NOTES), ("Main B", 1920, MAIN_B_NOTES)])


def pitches_on(notes: Iterable, channel: int) -> List[int]:
    return [n.pitch for n in notes if n.channel == channel]
