"""Exception types raised by the style re-harmonization pipeline."""

from __future__ import annotations

from typing import Sequence, Tuple


class StyleError(Exception):
    """Base class for every error raised by ``style_reharm``."""


class ParseError(StyleError, ValueError):
    """User-supplied text (a time signature such as '4/4') could not be parsed."""


class StructuralParseError(StyleError, ValueError):
    """The container could not be read as a style file at all."""


class PartNotFound(StyleError, LookupError):
    """The requested accompaniment part is not present in the style."""

    def __init__(self, part: str, available: Sequence[str]) -> None:
        self.part = part
        self.available: Tuple[str, ...] = tuple(available)
        super().__init__(f'Style part "{part}" not found. Available markers: {", ".join(self.available)}')
