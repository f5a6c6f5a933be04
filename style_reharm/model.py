from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class NoteEvent:
    channel: int        # 0..15
    pitch: int          # MIDI note number
    velocity: int       # 1..127
    start_tick: int
    duration: int       # ticks, > 0

    @property
    def end_tick(self) -> int:
        return self.start_tick + self.duration


@dataclass(frozen=True)
class ProgramChange:
    program: int
    bank_msb: Optional[int] = None
    bank_lsb: Optional[int] = None


@dataclass(frozen=True)
class StylePart:
    """One marker-delimited pattern of a style ('Main A', 'Fill In AA', ...)."""
    id: str                         # normalized marker name
    marker: str
    start_tick: int
    length_ticks: int
    notes: Tuple[NoteEvent, ...]    # part-local ticks
    programs_by_channel: Mapping[int, ProgramChange] = field(default_factory=lambda: MappingProxyType({}))
