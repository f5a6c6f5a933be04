#!/usr/bin/env python3
"""
main.py

Re-harmonize one part of a Yamaha style file (.sty / .prs / .sst, SFF1 or
SFF2) over a chord chart and write the result as a standard MIDI file.

Install:
    pip install -e .

Chord chart format:
    - Bars are separated by '|' or newlines
    - Chords inside a bar split it evenly:  C7 | F7 | C7 G7 | C7
    - An empty bar, or 'N.C.', repeats the previous chord

Without --chart / --chart-file a 12-bar Bb blues is rendered.

Usage:
    python main.py --style Jazz.sty --output out.mid

    python main.py --style Jazz.sty --output out.mid \
        --part "Main B" --chart "Cm7 | F7 | Bbmaj7 | Ebmaj7" --bars 8 --tempo 140

    python main.py --style Jazz.sty --output out.mid --chart "C | F | G7" --time-signature 3/4
    python main.py --style Jazz.sty --list-parts
    python main.py --style Jazz.sty --output out.mid --compare reference.mid
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from style_reharm.codec import decode_style, read_midi_notes
from style_reharm.compare import compare_notes, format_diff, rescale_notes
from style_reharm.errors import ParseError, PartNotFound, StyleError
from style_reharm.render import (
    DEFAULT_OUTPUT_TICKS_PER_BEAT,
    RenderOptions,
    render_style_to_notes,
    song_to_midi,
)
from style_reharm.timeline import parse_time_signature
from style_reharm.voicing import NoteMapping

DEFAULT_PART = "Main A"
BLUES_CHART = "Bb7 | Bb7 | Bb7 | Bb7 | Eb7 | Eb7 | Bb7 | Bb7 | F7 | Eb7 | Bb7 | F7"


def format_mapping(m: NoteMapping) -> str:
    return (
        f"{m.start_tick:>7d} +{m.duration:<5d} ch {m.source_channel:>2d}->{m.dest_channel:<2d} "
        f"{m.mode.value:<6s} {m.source_pitch:>3d}->{m.dest_pitch:<3d} "
        f"{m.source_degree.name}->{m.dest_degree.name} "
        f"[{m.segment.symbol or m.segment.root}]"
    )


def _read_chart(args: argparse.Namespace) -> str:
    if args.chart_file:
        path = Path(args.chart_file)
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return path.read_text(encoding="latin-1")
    if args.chart is not None:
        return args.chart
    return BLUES_CHART


def _list_parts(style_path: Path, data: bytes) -> int:
    style = decode_style(data)
    print(f"Parts in {style_path} ({style.sff_type or 'unknown format'}):")
    for part in style.parts:
        has_casm = "casm" if part.id in style.casm_by_part else "-"
        print(f"  {part.marker:<16s} {part.length_ticks:>7d} ticks  {len(part.notes):>5d} notes  {has_casm}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Render a style-file accompaniment part over a chord chart into a standard MIDI file."
    )
    parser.add_argument("--style", required=True, help="Path to the style file (.sty/.prs/.sst).")
    parser.add_argument("--output", required=False, help="Path to output .mid file.")

    parser.add_argument("--part", default=DEFAULT_PART, help=f"Style part marker to render (default: {DEFAULT_PART}).")
    parser.add_argument("--bars", type=int, default=None,
                        help="Bars to render (default: number of bars in the chart).")
    chart_group = parser.add_mutually_exclusive_group()
    chart_group.add_argument("--chart", default=None, help="Chord chart text, e.g. 'C7 | F7 | C7 G7'.")
    chart_group.add_argument("--chart-file", default=None, help="Path to a chord chart text file.")
    parser.add_argument("--tempo", type=float, default=None, help="Tempo in BPM (default: the style's tempo).")
    parser.add_argument("--time-signature", default=None,
                        help="Time signature like 4/4, 3/4, 6/8 (default: the style's own).")
    parser.add_argument("--ppq", type=int, default=DEFAULT_OUTPUT_TICKS_PER_BEAT,
                        help=f"Output ticks per quarter note (default: {DEFAULT_OUTPUT_TICKS_PER_BEAT}).")

    parser.add_argument("--list-parts", action="store_true", help="List the style's parts and exit.")
    parser.add_argument("--trace", action="store_true", help="Print how every output note was derived.")
    parser.add_argument("--compare", default=None, metavar="REF.mid",
                        help="Compare the rendered notes with a reference MIDI file.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    style_path = Path(args.style)
    if not style_path.exists():
        print(f"Error: style file not found: {style_path}", file=sys.stderr)
        return 2
    if style_path.is_dir():
        print(f"Error: style path is a directory: {style_path}", file=sys.stderr)
        return 2

    try:
        data = style_path.read_bytes()
    except OSError as e:
        print(f"Error reading style file: {e}", file=sys.stderr)
        return 2

    if args.list_parts:
        try:
            return _list_parts(style_path, data)
        except StyleError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    if not args.output:
        parser.error("--output is required unless --list-parts is used.")
    output_path = Path(args.output)
    if output_path.suffix.lower() != ".mid":
        print(f"Error: output file must have .mid extension: {output_path}", file=sys.stderr)
        return 2
    if args.bars is not None and args.bars < 1:
        print("Error: --bars must be >= 1.", file=sys.stderr)
        return 2
    if args.ppq <= 0:
        print("Error: --ppq must be > 0.", file=sys.stderr)
        return 2
    if args.tempo is not None and args.tempo <= 0:
        print("Error: --tempo must be > 0.", file=sys.stderr)
        return 2

    time_signature = None
    if args.time_signature is not None:
        try:
            time_signature = parse_time_signature(args.time_signature)
        except ParseError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

    try:
        chart = _read_chart(args)
    except OSError as e:
        print(f"Error reading chord chart: {e}", file=sys.stderr)
        return 2

    options = RenderOptions(
        part=args.part,
        bars=args.bars,
        chord_chart=chart,
        tempo_bpm=args.tempo,
        output_ticks_per_beat=args.ppq,
        time_signature=time_signature,
    )
    mappings: List[NoteMapping] = []

    try:
        song = render_style_to_notes(data, options, on_note=mappings.append if args.trace else None)
    except PartNotFound as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except StyleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        output_path.write_bytes(song_to_midi(song))
    except (OSError, ValueError) as e:
        print(f"Error writing MIDI: {e}", file=sys.stderr)
        return 1

    for mapping in mappings:
        print(format_mapping(mapping))

    ts = song.time_signature
    print("Wrote MIDI successfully.")
    print(f"  style:          {style_path}")
    print(f"  output:         {output_path}")
    print(f"  part:           {args.part}")
    print(f"  time signature: {ts.numerator}/{ts.denominator}  (beats/bar={ts.beats_per_bar:g})")
    print(f"  bpm:            {60_000_000 / song.tempo:g}")
    print(f"  ticks/beat:     {song.ticks_per_beat}")
    print(f"  total ticks:    {song.total_ticks}")
    print(f"  channels:       {', '.join(str(c) for c in sorted({n.channel for n in song.notes})) or '-'}")
    print(f"  notes:          {len(song.notes)}")

    if args.compare:
        try:
            reference, reference_ppq = read_midi_notes(Path(args.compare).read_bytes())
        except (OSError, StyleError) as e:
            print(f"Error reading reference MIDI: {e}", file=sys.stderr)
            return 1
        reference = rescale_notes(reference, reference_ppq, song.ticks_per_beat)
        diff = compare_notes(reference, song.notes)
        print(format_diff(diff))
        return 0 if diff.is_match else 3

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
