from __future__ import annotations

import pytest

from style_reharm.harmony import (
    ChordFamily,
    Degree,
    DegreeSlot,
    NaturalDegree,
    chord_tones_for_symbol,
    chord_type_info,
    degree_most_probable,
    extract_quality,
    fit_degree_advanced,
    fit_degree_melody_mode,
    parse_chord_root,
    profile_for,
    same_chord_type,
    sort_degrees,
)


@pytest.mark.parametrize(
    "symbol, root",
    [("C", 0), ("F#m7", 6), ("Bb7", 10), ("Cb", 11), ("e", 4), ("G/B", 7), ("?", 0)],
)
def test_parse_chord_root(symbol: str, root: int) -> None:
    assert parse_chord_root(symbol) == root


def test_extract_quality_stops_at_slash_bass() -> None:
    assert extract_quality("Cm7/G") == "m7"
    assert extract_quality("F") == ""
    assert extract_quality("") == ""


@pytest.mark.parametrize(
    "symbol, tones",
    [
        ("C", (0, 4, 7)),
        ("Cmaj", (0, 4, 7)),
        ("Cm", (0, 3, 7)),
        ("Cmin7", (0, 3, 7, 10)),
        ("Cm7b5", (0, 3, 6, 10)),
        ("C7", (0, 4, 7, 10)),
        ("C7b9", (0, 4, 7, 10, 1)),
        ("Cmaj7", (0, 4, 7, 11)),
        ("Cdim7", (0, 3, 6, 9)),
        ("Caug", (0, 4, 8)),
        ("Csus4", (0, 5, 7)),
        ("Cm6", (0, 3, 7, 9)),
        ("Cwhatever", (0, 4, 7)),
    ],
)
def test_chord_tones_for_symbol(symbol: str, tones: tuple) -> None:
    assert chord_tones_for_symbol(symbol) == tones


def test_degree_most_probable_depends_on_major() -> None:
    assert degree_most_probable(3, True) is Degree.NINTH_SHARP
    assert degree_most_probable(3, False) is Degree.THIRD_FLAT
    assert degree_most_probable(15, False) is Degree.THIRD_FLAT
    assert degree_most_probable(-2, True) is Degree.SEVENTH_FLAT


def test_degree_carries_pitch_and_natural() -> None:
    assert Degree.SEVENTH_FLAT.pitch == 10
    assert Degree.SEVENTH_FLAT.natural is NaturalDegree.SEVENTH
    assert Degree.SEVENTH_FLAT.accidental == -1
    assert sort_degrees([Degree.FIFTH, Degree.ROOT, Degree.THIRD]) == [Degree.ROOT, Degree.THIRD, Degree.FIFTH]


def test_profile_minor_seventh() -> None:
    profile = profile_for("min7")
    assert profile.family is ChordFamily.MINOR
    assert not profile.is_major
    assert profile.degrees_by_natural[NaturalDegree.THIRD] is Degree.THIRD_FLAT
    assert profile.degrees_by_natural[NaturalDegree.SEVENTH] is Degree.SEVENTH_FLAT


def test_profile_major_is_not_minor() -> None:
    profile = profile_for("Maj7")
    assert profile.is_major
    assert profile.degrees_by_natural[NaturalDegree.THIRD] is Degree.THIRD
    assert profile.degrees_by_natural[NaturalDegree.SEVENTH] is Degree.SEVENTH


def test_profile_power_chord_has_no_third() -> None:
    profile = profile_for("1+5")
    assert not profile.is_major
    assert NaturalDegree.THIRD not in profile.degrees_by_natural
    assert profile.degrees_by_natural[NaturalDegree.FIFTH] is Degree.FIFTH


def test_fit_degree_advanced_sus_replaces_third() -> None:
    assert fit_degree_advanced(profile_for("sus4"), Degree.THIRD) is Degree.FOURTH_OR_ELEVENTH


def test_fit_degree_advanced_keeps_existing_degree() -> None:
    assert fit_degree_advanced(profile_for("7"), Degree.SEVENTH) is Degree.SEVENTH_FLAT
    assert fit_degree_advanced(profile_for("min"), Degree.THIRD) is Degree.THIRD_FLAT


def test_fit_degree_melody_mode_keeps_passing_tones() -> None:
    assert fit_degree_melody_mode(profile_for(""), Degree.FOURTH_OR_ELEVENTH) is Degree.FOURTH_OR_ELEVENTH
    assert fit_degree_melody_mode(profile_for("min"), Degree.SEVENTH) is Degree.SEVENTH_FLAT


def test_chord_type_info_dominant_seventh() -> None:
    info = chord_type_info("7")
    assert info.degrees == (Degree.ROOT, Degree.THIRD, Degree.FIFTH, Degree.SEVENTH_FLAT)
    assert info.most_important == (
        DegreeSlot.THIRD_OR_FOURTH,
        DegreeSlot.SIXTH_OR_SEVENTH,
        DegreeSlot.FIFTH,
        DegreeSlot.ROOT,
    )
    assert not info.is_thirteenth


def test_same_chord_type() -> None:
    assert same_chord_type(chord_type_info("Maj"), chord_type_info(""))
    assert not same_chord_type(chord_type_info("Maj"), chord_type_info("min"))
    assert not same_chord_type(None, chord_type_info(""))
