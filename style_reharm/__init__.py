"""Re-harmonize Yamaha style-file accompaniment parts over arbitrary chord charts."""

from .errors import ParseError, PartNotFound, StructuralParseError, StyleError
from .render import RenderedSong, RenderOptions, render_style_to_midi, render_style_to_notes

__all__ = [
    "ParseError",
    "PartNotFound",
    "RenderOptions",
    "RenderedSong",
    "StructuralParseError",
    "StyleError",
    "render_style_to_midi",
    "render_style_to_notes",
]

__version__ = "0.1.0"
