from __future__ import annotations

import struct

import pytest

from conftest import casm, cseg, ctab, ctb2, sample_casm, section
from style_reharm.casm import (
    SFF1,
    SFF2,
    chord_name_for_code,
    normalize_part_name,
    parse_casm,
)


def test_normalize_part_name() -> None:
    assert normalize_part_name("  Main   A ") == "main_a"
    assert normalize_part_name("Fill In AA") == "fill_in_aa"


@pytest.mark.parametrize(
    "code, name",
    [(0x00, "Maj"), (0x13, "7th"), (0x21, "1+2+5"), (0x22, "1+5"), (0x23, None), (0xFF, None)],
)
def test_chord_name_for_code(code: int, name) -> None:
    assert chord_name_for_code(code) == name


def test_parse_casm_applies_cseg_to_every_named_part() -> None:
    result = parse_casm(b"junk before" + sample_casm(), SFF2)

    assert list(result) == ["main_a", "main_b"]
    info = result["main_a"]
    assert dict(info.channel_map) == {0: 10, 1: 11}
    assert info.source_quality_by_channel[1] == "Maj"
    assert info.source_root_by_channel[1] == 0

    bass = info.settings_by_channel[0]
    assert bass.is_melody_mode
    assert bass.bass_on
    assert bass.chord_root_upper == 5

    chords = info.settings_by_channel[1]
    assert chords.is_chord_mode
    assert not chords.bass_on
    assert result["main_b"] == info


def test_parse_casm_without_block_is_empty() -> None:
    assert parse_casm(b"MThd and nothing else") == {}
    assert parse_casm(b"xxCASM\x00") == {}


def test_ctb2_reads_middle_zone() -> None:
    block = casm(cseg("Main A", ctb2(3, 3, root=2, chord_code=0x13, ntr=2, ntt=4, low=40, high=90)))
    settings = parse_casm(block, SFF2)["main_a"].settings_by_channel[3]
    assert (settings.ntr, settings.ntt, settings.note_low, settings.note_high) == (2, 4, 40, 90)


def test_inverted_note_window_is_swapped() -> None:
    block = casm(cseg("Main A", ctab(2, 2, low=96, high=36)))
    settings = parse_casm(block)["main_a"].settings_by_channel[2]
    assert (settings.note_low, settings.note_high) == (36, 96)


def test_sff1_ntt_quirk() -> None:
    block = casm(cseg("Main A", ctab(1, 1, ntr=0, ntt=3), ctab(2, 2, ntr=0, ntt=4, bass_on=True), ctab(3, 3, ntr=2, ntt=3)))
    info = parse_casm(block, SFF1)["main_a"]
    assert (info.settings_by_channel[1].ntt, info.settings_by_channel[1].bass_on) == (1, True)
    assert (info.settings_by_channel[2].ntt, info.settings_by_channel[2].bass_on) == (3, True)
    assert info.settings_by_channel[3].ntt == 3

    same_in_sff2 = parse_casm(block, SFF2)["main_a"]
    assert same_in_sff2.settings_by_channel[1].ntt == 3


def test_cntt_overrides_after_all_sections() -> None:
    block = casm(cseg(
        "Main A",
        section("Cntt", bytes([1, 0x82])),    # before the Ctab it overrides
        ctab(1, 1, ntr=0, ntt=0),
        section("Cntt", bytes([7, 0x01])),    # channel without settings
    ))
    info = parse_casm(block)["main_a"]
    assert info.settings_by_channel[1].ntt == 2
    assert info.settings_by_channel[1].bass_on
    assert 7 not in info.settings_by_channel


def test_short_section_does_not_abort_siblings() -> None:
    block = casm(cseg(
        "Main A",
        section("Ctab", b"\x01short"),
        ctab(2, 5, chord_code=0x13),
    ))
    info = parse_casm(block)["main_a"]
    assert 1 not in info.channel_map
    assert info.channel_map[2] == 5
    assert info.source_quality_by_channel[2] == "7th"


def test_truncated_settings_keep_channel_routing() -> None:
    header_only = ctab(4, 6)[8:8 + 22]     # routing + 2 bytes of settings
    block = casm(cseg("Main A", section("Ctab", header_only), ctab(5, 5)))
    info = parse_casm(block)["main_a"]
    assert info.channel_map[4] == 6
    assert 4 not in info.settings_by_channel
    assert 5 in info.settings_by_channel


def test_oversized_section_keeps_earlier_siblings() -> None:
    good = cseg("Main A", ctab(1, 1))
    oversized = b"CSEG" + struct.pack(">I", 10_000) + b"Sdec"
    payload = good + oversized
    block = b"CASM" + struct.pack(">I", len(payload)) + payload
    result = parse_casm(block, SFF2)
    assert list(result) == ["main_a"]
    assert result["main_a"].channel_map[1] == 1


def test_unknown_chord_code_leaves_quality_unset() -> None:
    info = parse_casm(casm(cseg("Main A", ctab(1, 1, chord_code=0x40))))["main_a"]
    assert 1 not in info.source_quality_by_channel
    assert info.channel_map[1] == 1


def test_bad_section_in_one_cseg_does_not_affect_the_next() -> None:
    broken = cseg("Main A", b"Ctab" + struct.pack(">I", 500) + b"xx")
    block = casm(broken, cseg("Main B", ctab(2, 7, ntr=1)))
    result = parse_casm(block)
    assert dict(result["main_a"].channel_map) == {}
    assert result["main_b"].channel_map[2] == 7
    assert result["main_b"].settings_by_channel[2].ntr == 1
