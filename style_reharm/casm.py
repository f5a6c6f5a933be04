"""
Reader for the CASM block of a style file.

Layout (all sizes big-endian u32):

    CASM <size>
      CSEG <size>
        Sdec <size> "Main A,Main B"        part names the CSEG applies to
        Ctab <size> ...                    channel settings (one harmonization zone)
        Ctb2 <size> ...                    channel settings (low/middle/high zones)
        Cntt <size> <channel> <ntt|bass>   late ntt / bass override
      CSEG <size>
        ...

A damaged section never aborts the whole block: the bad section is skipped
and whatever was read before it is kept.
"""

from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

SFF1 = "SFF1"
SFF2 = "SFF2"

CHANNEL_SETTINGS_MIN_SIZE = 20

# Chord type names indexed by (0x21 - code); code 0x22 maps to index 2.
YAMAHA_CHORD_NAMES: Tuple[str, ...] = (
    "1+2+5",
    "sus4",
    "1+5",
    "1+8",
    "7aug",
    "Maj7aug",
    "7(#9)",
    "7(b13)",
    "7(b9)",
    "7(13)",
    "7#11",
    "7(9)",
    "7b5",
    "7sus4",
    "7th",
    "dim7",
    "dim",
    "minMaj7(9)",
    "minMaj7",
    "min7(11)",
    "min7(9)",
    "min(9)",
    "m7b5",
    "min7",
    "min6",
    "min",
    "aug",
    "Maj6(9)",
    "Maj7(9)",
    "Maj(9)",
    "Maj7#11",
    "Maj7",
    "Maj6",
    "Maj",
)


# ----------------------------
# Data model
# ----------------------------

@dataclass(frozen=True)
class ChannelSettings:
    """Harmonization settings of one source channel (the active zone of a Ctab/Ctb2 record)."""
    ntr: int                 # 0 = root transposition, 1/2 = chord transposition
    ntt: int                 # sub-mode; 0 with ntr=0 means plain transpose
    bass_on: bool
    chord_root_upper: int    # above this target root, ntr=0 channels drop an octave
    note_low: int
    note_high: int
    rtr: int                 # retrigger rule, kept for callers

    @property
    def is_chord_mode(self) -> bool:
        return self.ntr in (1, 2)

    @property
    def is_melody_mode(self) -> bool:
        return self.ntr == 0 and self.ntt != 0


@dataclass(frozen=True)
class CasmInfo:
    """Per-part channel table: source channel -> routing, source chord and settings."""
    channel_map: Mapping[int, int] = field(default_factory=lambda: MappingProxyType({}))
    source_root_by_channel: Mapping[int, int] = field(default_factory=lambda: MappingProxyType({}))
    source_quality_by_channel: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))
    settings_by_channel: Mapping[int, ChannelSettings] = field(default_factory=lambda: MappingProxyType({}))


EMPTY_CASM_INFO = CasmInfo()


@dataclass
class _CasmBuilder:
    channel_map: Dict[int, int] = field(default_factory=dict)
    source_root_by_channel: Dict[int, int] = field(default_factory=dict)
    source_quality_by_channel: Dict[int, str] = field(default_factory=dict)
    settings_by_channel: Dict[int, ChannelSettings] = field(default_factory=dict)
    ntt_overrides: Dict[int, Tuple[int, bool]] = field(default_factory=dict)

    def freeze(self) -> CasmInfo:
        settings = dict(self.settings_by_channel)
        for channel, (ntt, bass_on) in self.ntt_overrides.items():
            current = settings.get(channel)
            if current is None:
                continue
            settings[channel] = ChannelSettings(
                ntr=current.ntr,
                ntt=ntt,
                bass_on=bass_on,
                chord_root_upper=current.chord_root_upper,
                note_low=current.note_low,
                note_high=current.note_high,
                rtr=current.rtr,
            )
        return CasmInfo(
            channel_map=MappingProxyType(dict(self.channel_map)),
            source_root_by_channel=MappingProxyType(dict(self.source_root_by_channel)),
            source_quality_by_channel=MappingProxyType(dict(self.source_quality_by_channel)),
            settings_by_channel=MappingProxyType(settings),
        )


# ----------------------------
# Byte reading
# ----------------------------

class _Truncated(Exception):
    pass


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def remaining(self) -> int:
        return len(self.data) - self.offset

    def _take(self, length: int) -> bytes:
        if length > self.remaining():
            raise _Truncated(f"need {length} bytes at offset {self.offset}, have {self.remaining()}")
        chunk = self.data[self.offset:self.offset + length]
        self.offset += length
        return chunk

    def read_u8(self) -> int:
        return self._take(1)[0]

    def read_u32(self) -> int:
        return struct.unpack(">I", self._take(4))[0]

    def read_tag(self) -> str:
        return self._take(4).decode("latin-1")

    def read_bytes(self, length: int) -> bytes:
        return self._take(length)

    def skip(self, length: int) -> None:
        self.offset = min(len(self.data), self.offset + length)


def _iter_sections(reader: _Reader, where: str) -> Iterator[Tuple[str, bytes]]:
    """Yield (tag, payload) pairs until the reader is exhausted or a section is oversized."""
    while reader.remaining() >= 8:
        tag = reader.read_tag()
        size = reader.read_u32()
        if size > reader.remaining():
            logger.debug("%s: section %r declares %d bytes, only %d left; stopping", where, tag, size, reader.remaining())
            return
        yield tag, reader.read_bytes(size)


# ----------------------------
# Section parsing
# ----------------------------

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_part_name(name: str) -> str:
    """'Main A ' -> 'main_a'."""
    return _WHITESPACE_RE.sub("_", name.strip()).lower()


def chord_name_for_code(code: int) -> Optional[str]:
    if code > 0x22:
        return None
    index = 2 if code == 0x22 else 0x21 - code
    if 0 <= index < len(YAMAHA_CHORD_NAMES):
        return YAMAHA_CHORD_NAMES[index]
    return None


def _adapt_sff1_ntt(raw: int, bass_on: bool) -> Tuple[int, bool]:
    if raw == 3:
        return 1, True
    if raw == 4:
        return 3, bass_on
    return raw, bass_on


def _note_window(low: int, high: int) -> Tuple[int, int]:
    low = min(127, max(0, low))
    high = min(127, max(0, high))
    if low > high:
        low, high = high, low
    return low, high


def _read_settings(reader: _Reader, sff_type: Optional[str]) -> ChannelSettings:
    ntr = reader.read_u8()
    ntt_byte = reader.read_u8()
    bass_on = bool(ntt_byte & 0x80)
    ntt = ntt_byte & 0x7F
    if ntr != 2 and sff_type == SFF1:
        ntt, bass_on = _adapt_sff1_ntt(ntt, bass_on)
    chord_root_upper = reader.read_u8()
    note_low, note_high = _note_window(reader.read_u8(), reader.read_u8())
    rtr = reader.read_u8()
    return ChannelSettings(
        ntr=ntr,
        ntt=ntt,
        bass_on=bass_on,
        chord_root_upper=chord_root_upper,
        note_low=note_low,
        note_high=note_high,
        rtr=rtr,
    )


def _parse_channel_settings(data: bytes, info: _CasmBuilder, *, zoned: bool, sff_type: Optional[str]) -> None:
    """Parse a Ctab (zoned=False) or Ctb2 (zoned=True) section into ``info``."""
    if len(data) < CHANNEL_SETTINGS_MIN_SIZE:
        logger.debug("Channel settings section too short (%d bytes), skipped", len(data))
        return
    reader = _Reader(data)
    src_channel = reader.read_u8()
    reader.skip(8)   # name
    dest_channel = reader.read_u8()
    reader.skip(1)   # editable
    reader.skip(2)   # muted notes
    reader.skip(5)   # muted chord types
    source_root = reader.read_u8()
    chord_code = reader.read_u8()

    info.channel_map[src_channel] = dest_channel
    info.source_root_by_channel[src_channel] = source_root % 12
    chord_name = chord_name_for_code(chord_code)
    if chord_name is not None:
        info.source_quality_by_channel[src_channel] = chord_name
    else:
        logger.debug("Channel %d: unknown source chord type code 0x%02x", src_channel, chord_code)

    try:
        if zoned:
            reader.skip(2)   # middle zone low/high
            reader.skip(6)   # low zone
            info.settings_by_channel[src_channel] = _read_settings(reader, sff_type)
            reader.skip(6)   # high zone
            reader.skip(7)
        else:
            info.settings_by_channel[src_channel] = _read_settings(reader, sff_type)
            if reader.read_u8() != 0:   # special feature
                reader.skip(4)
    except _Truncated as exc:
        logger.debug("Channel %d: settings record truncated (%s)", src_channel, exc)


def _parse_ntt_override(data: bytes, info: _CasmBuilder) -> None:
    if len(data) < 2:
        return
    channel = data[0]
    info.ntt_overrides[channel] = (data[1] & 0x7F, bool(data[1] & 0x80))


def _parse_cseg(data: bytes, builders: Dict[str, _CasmBuilder], sff_type: Optional[str]) -> None:
    reader = _Reader(data)
    if reader.remaining() < 8 or reader.read_tag() != "Sdec":
        logger.debug("CSEG without Sdec header, skipped")
        return
    size = reader.read_u32()
    if size > reader.remaining():
        logger.debug("CSEG Sdec declares %d bytes, only %d left; skipped", size, reader.remaining())
        return
    names_text = reader.read_bytes(size).decode("latin-1").replace("\0", "")

    targets: List[_CasmBuilder] = []
    for name in names_text.split(","):
        part_id = normalize_part_name(name)
        if part_id:
            targets.append(builders.setdefault(part_id, _CasmBuilder()))
    if not targets:
        return

    for tag, payload in _iter_sections(reader, "CSEG"):
        for info in targets:
            if tag == "Ctab":
                _parse_channel_settings(payload, info, zoned=False, sff_type=sff_type)
            elif tag == "Ctb2":
                _parse_channel_settings(payload, info, zoned=True, sff_type=sff_type)
            elif tag == "Cntt":
                _parse_ntt_override(payload, info)


def parse_casm(data: bytes, sff_type: Optional[str] = None) -> Dict[str, CasmInfo]:
    """
    Parse the CASM block of a style file.

    Returns a mapping from normalized part name ('main_a') to its CasmInfo, in
    the order parts first appear. A file without a CASM block yields {}.
    """
    index = data.find(b"CASM")
    if index == -1 or index + 8 >= len(data):
        logger.debug("No CASM block found")
        return {}
    size = struct.unpack(">I", data[index + 4:index + 8])[0]
    start = index + 8
    payload = data[start:min(len(data), start + size)]

    builders: Dict[str, _CasmBuilder] = {}
    for tag, section in _iter_sections(_Reader(payload), "CASM"):
        if tag == "CSEG":
            _parse_cseg(section, builders, sff_type)

    return {part_id: builder.freeze() for part_id, builder in builders.items()}
