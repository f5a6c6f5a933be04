"""
Harmony model: chord-quality classification and scale-degree reasoning.

A chord quality string ("min7", "7(b9)", "Maj6(9)", "sus4", ...) is turned
into a ChordProfile: its family, whether it counts as major, and two lookup
tables mapping natural degrees and semitone offsets to concrete Degrees.
The fit_* functions answer "which degree of the destination chord plays the
role of this source degree?", which is what the voicing engine needs to move
a pattern written over one chord onto another.
"""

from __future__ import annotations

import enum
import functools
import logging
import re
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# ----------------------------
# Pitch helpers
# ----------------------------

NOTE_BASE_PC: Dict[str, int] = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}

_SYMBOL_RE = re.compile(r"([A-Ga-g])([#b]?)([^/]*)")
_MINOR_RE = re.compile(r"^(min|m)(?!aj)")


def normalize_pitch_class(value: int) -> int:
    return value % 12


def parse_chord_root(symbol: str) -> int:
    """Root pitch class of a chord symbol like 'F#m7' or 'Bb'. Unreadable roots fall back to C."""
    match = _SYMBOL_RE.match(symbol.strip())
    if not match:
        logger.debug("Unreadable chord root in %r, using C", symbol)
        return 0
    pc = NOTE_BASE_PC[match.group(1).upper()]
    if match.group(2) == "#":
        pc += 1
    elif match.group(2) == "b":
        pc -= 1
    return normalize_pitch_class(pc)


def extract_quality(symbol: str) -> str:
    """Quality part of a chord symbol: everything after the root, up to an optional slash bass."""
    match = _SYMBOL_RE.match(symbol.strip())
    return match.group(3) if match else ""


# ----------------------------
# Chord tones
# ----------------------------

def _unique(tones: Sequence[int]) -> Tuple[int, ...]:
    return tuple(dict.fromkeys(tones))


def _ninth_tone(q: str) -> int:
    if "b9" in q:
        return 1
    if "#9" in q:
        return 3
    return 2


def chord_tones_for_quality(quality: str) -> Tuple[int, ...]:
    """
    Semitone offsets from the root implied by a free-form quality string.
    Unknown qualities fall back to a major triad.
    """
    q = quality.strip().lower()
    if not q:
        return (0, 4, 7)
    if q == "1+8":
        return (0,)
    if q == "1+5":
        return (0, 7)
    if q in ("1+2+5", "2"):
        return (0, 2, 7)

    if q.startswith("maj7") or q.startswith("m7m") or "maj7" in q:
        tones = [0, 4, 7, 11]
        if "9" in q:
            tones.append(2)
        if "#11" in q:
            tones.append(6)
        if "11" in q and "#11" not in q:
            tones.append(5)
        if "13" in q:
            tones.append(8 if "b13" in q else 9)
        return _unique(tones)

    if _MINOR_RE.match(q):
        seventh = q.startswith("min7") or q.startswith("m7")
        tones = [0, 3, 7, 10] if seventh else [0, 3, 7]
        if "b5" in q:
            tones[2] = 6
        elif "#5" in q:
            tones[2] = 8
        if not seventh and "6" in q:
            tones.append(9)
        if "9" in q:
            tones.append(_ninth_tone(q))
        if "11" in q:
            tones.append(5)
        if "13" in q:
            tones.append(8 if "b13" in q else 9)
        return _unique(tones)

    if q.startswith("dim7"):
        return (0, 3, 6, 9)
    if q.startswith("dim"):
        return (0, 3, 6)

    if q.startswith("aug") or q.startswith("+"):
        return (0, 4, 8, 10) if "7" in q else (0, 4, 8)

    if q.startswith("sus"):
        tones = [0, 5, 7]
        if "7" in q:
            tones.append(10)
        if "9" in q:
            tones.append(_ninth_tone(q))
        if "13" in q:
            tones.append(8 if "b13" in q else 9)
        return _unique(tones)

    if "7" in q:
        tones = [0, 4, 7, 10]
        if "b5" in q:
            tones[2] = 6
        elif "#5" in q or "aug" in q:
            tones[2] = 8
        if "b9" in q:
            tones.append(1)
        elif "#9" in q:
            tones.append(3)
        elif "9" in q:
            tones.append(2)
        if "#11" in q:
            tones.append(6)
        elif "11" in q:
            tones.append(5)
        if "b13" in q:
            tones.append(8)
        elif "13" in q:
            tones.append(9)
        return _unique(tones)

    return (0, 4, 7)


def chord_tones_for_symbol(symbol: str) -> Tuple[int, ...]:
    return chord_tones_for_quality(extract_quality(symbol))


# ----------------------------
# Degrees
# ----------------------------

class NaturalDegree(enum.Enum):
    ROOT = "root"
    THIRD = "third"
    FOURTH = "fourth"
    FIFTH = "fifth"
    SIXTH = "sixth"
    SEVENTH = "seventh"
    NINTH = "ninth"
    ELEVENTH = "eleventh"
    THIRTEENTH = "thirteenth"


class Degree(enum.Enum):
    """A chord degree: semitone offset from the root, natural family and accidental."""

    ROOT = (0, NaturalDegree.ROOT, 0)
    NINTH_FLAT = (1, NaturalDegree.NINTH, -1)
    NINTH = (2, NaturalDegree.NINTH, 0)
    NINTH_SHARP = (3, NaturalDegree.NINTH, 1)
    THIRD_FLAT = (3, NaturalDegree.THIRD, -1)
    THIRD = (4, NaturalDegree.THIRD, 0)
    FOURTH_OR_ELEVENTH = (5, NaturalDegree.FOURTH, 0)
    ELEVENTH_SHARP = (6, NaturalDegree.ELEVENTH, 1)
    FIFTH_FLAT = (6, NaturalDegree.FIFTH, -1)
    FIFTH = (7, NaturalDegree.FIFTH, 0)
    FIFTH_SHARP = (8, NaturalDegree.FIFTH, 1)
    THIRTEENTH_FLAT = (8, NaturalDegree.THIRTEENTH, -1)
    SIXTH_OR_THIRTEENTH = (9, NaturalDegree.SIXTH, 0)
    SEVENTH_FLAT = (10, NaturalDegree.SEVENTH, -1)
    SEVENTH = (11, NaturalDegree.SEVENTH, 0)

    def __init__(self, pitch: int, natural: NaturalDegree, accidental: int) -> None:
        self.pitch = pitch
        self.natural = natural
        self.accidental = accidental


DEGREE_ORDER: Dict[Degree, int] = {degree: i for i, degree in enumerate(Degree)}


def sort_degrees(degrees: Sequence[Degree]) -> List[Degree]:
    return sorted(degrees, key=DEGREE_ORDER.__getitem__)


def degree_most_probable(rel_pitch: int, is_major: bool) -> Degree:
    """Most likely degree for a semitone offset from the root."""
    rel = normalize_pitch_class(rel_pitch)
    if rel == 3:
        return Degree.NINTH_SHARP if is_major else Degree.THIRD_FLAT
    return _MOST_PROBABLE[rel]


_MOST_PROBABLE: Dict[int, Degree] = {
    0: Degree.ROOT,
    1: Degree.NINTH_FLAT,
    2: Degree.NINTH,
    4: Degree.THIRD,
    5: Degree.FOURTH_OR_ELEVENTH,
    6: Degree.ELEVENTH_SHARP,
    7: Degree.FIFTH,
    8: Degree.THIRTEENTH_FLAT,
    9: Degree.SIXTH_OR_THIRTEENTH,
    10: Degree.SEVENTH_FLAT,
    11: Degree.SEVENTH,
}


# ----------------------------
# Chord profiles
# ----------------------------

class ChordFamily(enum.Enum):
    MAJOR = "major"
    MINOR = "minor"
    SEVENTH = "seventh"
    DIMINISHED = "diminished"
    SUS = "sus"
    OTHER = "other"


@dataclass(frozen=True)
class ChordProfile:
    family: ChordFamily
    is_major: bool
    extension: str                                   # normalized quality text
    degrees_by_natural: Mapping[NaturalDegree, Degree]
    degrees_by_pitch: Mapping[int, Degree]


def _is_special2(normalized: str) -> bool:
    return normalized in ("1+2+5", "2") or "sus2" in normalized


@functools.lru_cache(maxsize=256)
def profile_for(quality: str) -> ChordProfile:
    """Classify a quality string into a ChordProfile (case-insensitive)."""
    q = quality.strip().lower()
    is_root_only = q == "1+8"
    is_power_chord = q == "1+5"
    is_special2 = _is_special2(q)
    is_minor = _MINOR_RE.match(q) is not None
    has_sus = "sus" in q
    has_dim = "dim" in q
    has_maj = "maj" in q
    has_seventh = "7" in q
    is_major = not (is_root_only or is_power_chord or is_special2) and (
        has_maj or (not is_minor and not has_dim and not has_sus)
    )

    family = ChordFamily.MAJOR
    if has_sus:
        family = ChordFamily.SUS
    elif has_dim:
        family = ChordFamily.DIMINISHED
    elif is_minor:
        family = ChordFamily.MINOR
    elif has_seventh:
        family = ChordFamily.SEVENTH

    by_natural: Dict[NaturalDegree, Degree] = {}
    by_pitch: Dict[int, Degree] = {}

    def add(natural: NaturalDegree, degree: Degree) -> None:
        by_natural[natural] = degree
        by_pitch.setdefault(degree.pitch, degree)

    add(NaturalDegree.ROOT, Degree.ROOT)

    if is_root_only or is_power_chord or is_special2:
        if is_power_chord or is_special2:
            add(NaturalDegree.FIFTH, Degree.FIFTH)
        if is_special2:
            add(NaturalDegree.NINTH, Degree.NINTH)
        return ChordProfile(
            family=ChordFamily.SUS if is_special2 else ChordFamily.OTHER,
            is_major=False,
            extension=q,
            degrees_by_natural=MappingProxyType(by_natural),
            degrees_by_pitch=MappingProxyType(by_pitch),
        )

    if has_sus:
        add(NaturalDegree.FOURTH, Degree.FOURTH_OR_ELEVENTH)
    elif is_minor:
        add(NaturalDegree.THIRD, Degree.THIRD_FLAT)
    else:
        add(NaturalDegree.THIRD, Degree.THIRD)

    fifth = Degree.FIFTH
    if "b5" in q or q.startswith("dim"):
        fifth = Degree.FIFTH_FLAT
    elif "#5" in q or "aug" in q or "+" in q or "b13" in q:
        fifth = Degree.FIFTH_SHARP
    add(NaturalDegree.FIFTH, fifth)

    if "dim7" in q:
        add(NaturalDegree.SIXTH, Degree.SIXTH_OR_THIRTEENTH)
    elif "maj7" in q or "m7m" in q:
        add(NaturalDegree.SEVENTH, Degree.SEVENTH)
    elif has_seventh:
        add(NaturalDegree.SEVENTH, Degree.SEVENTH_FLAT)

    if "6" in q or "13" in q:
        add(NaturalDegree.SIXTH, Degree.SIXTH_OR_THIRTEENTH)

    if "b9" in q:
        add(NaturalDegree.NINTH, Degree.NINTH_FLAT)
    elif "#9" in q:
        add(NaturalDegree.NINTH, Degree.NINTH_SHARP)
    elif "9" in q:
        add(NaturalDegree.NINTH, Degree.NINTH)

    if "#11" in q:
        add(NaturalDegree.ELEVENTH, Degree.ELEVENTH_SHARP)
    elif "11" in q or has_sus:
        add(NaturalDegree.ELEVENTH, Degree.FOURTH_OR_ELEVENTH)

    if "b13" in q and "#5" not in q:
        add(NaturalDegree.THIRTEENTH, Degree.THIRTEENTH_FLAT)
    elif "13" in q:
        add(NaturalDegree.THIRTEENTH, Degree.SIXTH_OR_THIRTEENTH)

    return ChordProfile(
        family=family,
        is_major=is_major,
        extension=q,
        degrees_by_natural=MappingProxyType(by_natural),
        degrees_by_pitch=MappingProxyType(by_pitch),
    )


# ----------------------------
# Degree fitting
# ----------------------------

def fit_degree(profile: ChordProfile, degree: Degree) -> Optional[Degree]:
    """The profile's degree for the same natural family, else for the same semitone, else None."""
    natural = degree.natural
    direct = profile.degrees_by_natural.get(natural)
    if direct is not None:
        if natural is NaturalDegree.SEVENTH and "6" in profile.extension:
            return Degree.SIXTH_OR_THIRTEENTH
        if natural is NaturalDegree.SIXTH and NaturalDegree.SEVENTH in profile.degrees_by_natural:
            return profile.degrees_by_natural[NaturalDegree.SEVENTH]
        return direct
    return profile.degrees_by_pitch.get(degree.pitch)


def _is_half_diminished(profile: ChordProfile) -> bool:
    return "m7b5" in profile.extension or "m9b5" in profile.extension


def fit_degree_advanced(profile: ChordProfile, degree: Degree) -> Degree:
    """fit_degree, falling back to a fixed substitute when the profile lacks the degree."""
    direct = fit_degree(profile, degree)
    if direct is not None:
        return direct

    family = profile.family
    if degree in (Degree.NINTH_FLAT, Degree.NINTH, Degree.NINTH_SHARP):
        return Degree.NINTH_FLAT if _is_half_diminished(profile) else Degree.NINTH
    if degree in (Degree.THIRD_FLAT, Degree.THIRD):
        return Degree.FOURTH_OR_ELEVENTH
    if degree is Degree.FOURTH_OR_ELEVENTH:
        if family in (ChordFamily.MINOR, ChordFamily.DIMINISHED):
            return Degree.FOURTH_OR_ELEVENTH
        if 6 in profile.degrees_by_pitch:
            return Degree.ELEVENTH_SHARP
        return Degree.FOURTH_OR_ELEVENTH
    if degree is Degree.ELEVENTH_SHARP:
        if family is ChordFamily.SUS:
            return Degree.FOURTH_OR_ELEVENTH
        return profile.degrees_by_natural.get(NaturalDegree.FIFTH, Degree.FIFTH)
    if degree is Degree.THIRTEENTH_FLAT:
        return profile.degrees_by_natural.get(NaturalDegree.FIFTH, Degree.FIFTH)
    if degree is Degree.SIXTH_OR_THIRTEENTH:
        if _is_half_diminished(profile):
            return Degree.THIRTEENTH_FLAT
        return profile.degrees_by_pitch.get(8, Degree.SIXTH_OR_THIRTEENTH)
    if degree is Degree.SEVENTH_FLAT:
        if family is ChordFamily.MAJOR and NaturalDegree.SIXTH in profile.degrees_by_natural:
            return Degree.SEVENTH
        if "dim7" in profile.extension:
            return Degree.SIXTH_OR_THIRTEENTH
        return Degree.SEVENTH_FLAT
    if degree is Degree.SEVENTH:
        has_sixth = NaturalDegree.SIXTH in profile.degrees_by_natural
        if family is ChordFamily.SUS:
            return Degree.SEVENTH_FLAT
        if family is ChordFamily.MINOR and not has_sixth:
            return Degree.SEVENTH_FLAT
        if family is ChordFamily.DIMINISHED:
            return Degree.SIXTH_OR_THIRTEENTH if has_sixth else Degree.SEVENTH_FLAT
        return Degree.SEVENTH
    return degree


def fit_degree_melody_mode(profile: ChordProfile, degree: Degree) -> Degree:
    """
    Conservative fit for melodic lines: only ninth, seventh and sixth degrees are
    reinterpreted; anything else missing from the chord is kept as a passing tone.
    """
    direct = fit_degree(profile, degree)
    if direct is not None:
        return direct
    if degree.natural in (NaturalDegree.NINTH, NaturalDegree.SEVENTH) or degree is Degree.SIXTH_OR_THIRTEENTH:
        return fit_degree_advanced(profile, degree)
    return degree


# ----------------------------
# Chord type info (ordered degree lists)
# ----------------------------

class DegreeSlot(enum.Enum):
    ROOT = 0
    THIRD_OR_FOURTH = 1
    FIFTH = 2
    SIXTH_OR_SEVENTH = 3
    EXTENSION1 = 4
    EXTENSION2 = 5
    EXTENSION3 = 6


@dataclass(frozen=True)
class ChordTypeInfo:
    profile: ChordProfile
    normalized: str
    degrees: Tuple[Degree, ...]
    is_special2: bool
    base_has_six: bool
    is_thirteenth: bool
    most_important: Tuple[DegreeSlot, ...]


def _ordered_degrees(profile: ChordProfile, q: str) -> Tuple[Degree, ...]:
    by_natural = profile.degrees_by_natural
    degrees = [Degree.ROOT]
    if q == "1+8":
        return tuple(degrees)
    if q == "1+5" or _is_special2(q):
        degrees.append(by_natural.get(NaturalDegree.FIFTH, Degree.FIFTH))
        if _is_special2(q):
            degrees.append(by_natural.get(NaturalDegree.NINTH, Degree.NINTH))
        return tuple(degrees)

    third = by_natural.get(NaturalDegree.THIRD, by_natural.get(NaturalDegree.FOURTH))
    if third is not None:
        degrees.append(third)
    if NaturalDegree.FIFTH in by_natural:
        degrees.append(by_natural[NaturalDegree.FIFTH])

    has_seventh = NaturalDegree.SEVENTH in by_natural
    has_sixth = NaturalDegree.SIXTH in by_natural
    has_thirteenth = NaturalDegree.THIRTEENTH in by_natural
    if has_sixth and not has_seventh and not has_thirteenth:
        degrees.append(by_natural[NaturalDegree.SIXTH])
    if has_seventh:
        degrees.append(by_natural[NaturalDegree.SEVENTH])

    if NaturalDegree.NINTH in by_natural:
        degrees.append(by_natural[NaturalDegree.NINTH])

    if "11" in q and NaturalDegree.ELEVENTH in by_natural:
        degrees.append(by_natural[NaturalDegree.ELEVENTH])

    if has_thirteenth or (has_sixth and has_seventh) or "13" in q:
        thirteenth = by_natural.get(NaturalDegree.THIRTEENTH, by_natural.get(NaturalDegree.SIXTH))
        if thirteenth is not None:
            degrees.append(thirteenth)

    return tuple(degrees)


def degree_for_slot(info: ChordTypeInfo, slot: DegreeSlot) -> Optional[Degree]:
    if info.is_special2:
        index = {DegreeSlot.ROOT: 0, DegreeSlot.FIFTH: 1, DegreeSlot.EXTENSION1: 2}.get(slot)
    else:
        index = slot.value
    if index is None or index >= len(info.degrees):
        return None
    return info.degrees[index]


def fit_degree_for_slot(info: ChordTypeInfo, slot: DegreeSlot) -> Degree:
    direct = degree_for_slot(info, slot)
    if direct is not None:
        return direct
    profile = info.profile
    if slot is DegreeSlot.THIRD_OR_FOURTH:
        return fit_degree_advanced(profile, Degree.FOURTH_OR_ELEVENTH)
    if slot is DegreeSlot.SIXTH_OR_SEVENTH:
        return fit_degree_advanced(profile, Degree.SEVENTH)
    if slot is DegreeSlot.EXTENSION1:
        return fit_degree_advanced(profile, Degree.NINTH)
    if slot in (DegreeSlot.EXTENSION2, DegreeSlot.EXTENSION3):
        return fit_degree_advanced(profile, Degree.SIXTH_OR_THIRTEENTH)
    if slot is DegreeSlot.FIFTH:
        return profile.degrees_by_natural.get(NaturalDegree.FIFTH, Degree.FIFTH)
    return Degree.ROOT


def _most_important_slots(info: ChordTypeInfo) -> Tuple[DegreeSlot, ...]:
    slots: List[DegreeSlot] = []
    if not info.is_special2:
        slots.append(DegreeSlot.THIRD_OR_FOURTH)
    fifth = degree_for_slot(info, DegreeSlot.FIFTH)
    if fifth is not None and fifth is not Degree.FIFTH:
        slots.append(DegreeSlot.FIFTH)
    if degree_for_slot(info, DegreeSlot.SIXTH_OR_SEVENTH) is not None:
        slots.append(DegreeSlot.SIXTH_OR_SEVENTH)
    if degree_for_slot(info, DegreeSlot.EXTENSION1) is not None:
        slots.append(DegreeSlot.EXTENSION1)
    if info.base_has_six:
        slots.append(DegreeSlot.ROOT)
        if fifth is Degree.FIFTH:
            slots.append(DegreeSlot.FIFTH)
    else:
        if fifth is Degree.FIFTH:
            slots.append(DegreeSlot.FIFTH)
        slots.append(DegreeSlot.ROOT)
    for slot in (DegreeSlot.EXTENSION2, DegreeSlot.EXTENSION3):
        if degree_for_slot(info, slot) is not None:
            slots.append(slot)
    return tuple(slots)


@functools.lru_cache(maxsize=256)
def chord_type_info(quality: str) -> ChordTypeInfo:
    q = quality.strip().lower()
    profile = profile_for(quality)
    info = ChordTypeInfo(
        profile=profile,
        normalized=q,
        degrees=_ordered_degrees(profile, q),
        is_special2=_is_special2(q),
        base_has_six="6" in q and "13" not in q,
        is_thirteenth="13" in q,
        most_important=(),
    )
    return replace(info, most_important=_most_important_slots(info))


def same_chord_type(a: Optional[ChordTypeInfo], b: Optional[ChordTypeInfo]) -> bool:
    if a is None or b is None:
        return False
    return a.degrees == b.degrees
