"""Color primitives and palette snapping.

Provides:
    - ``Color``: four 8-bit channels (R, G, B, A), exact equality
    - Canonical hex formatting (``#RRGGBBAA``, uppercase) and parsing
    - Nearest-palette lookup (squared RGB distance, lowest index on ties)

Distance metric:
    d(c, p) = (c.r - p.r)^2 + (c.g - p.g)^2 + (c.b - p.b)^2

Alpha never takes part in the metric.  The same rule is embedded in
the generated Lua scripts (see ``sprite_control.lua.snippets``) so that
palette-snapped draws land on the index this module predicts.

Usage:
    from sprite_utils.color import Color, nearest_palette_color
    red = Color.from_hex("#FF0000")
    snapped = nearest_palette_color(Color(250, 10, 10), palette)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence, Union

import numpy as np

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")

TRANSPARENT_HEX = "#00000000"


@dataclass(frozen=True, slots=True)
class Color:
    """RGBA color with 8-bit channels.

    Parameters
    ----------
    r, g, b : int
        Color channels in [0, 255].
    a : int
        Alpha channel in [0, 255], default 255 (opaque).
    alpha_given : bool
        False when the color was parsed from an RGB-only form (6-digit
        hex or 3-sequence).  Snapping then takes the palette entry's
        alpha.  Not part of equality.
    """

    r: int
    g: int
    b: int
    a: int = 255
    alpha_given: bool = field(default=True, compare=False, repr=False)

    def __post_init__(self) -> None:
        for name in ("r", "g", "b", "a"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise ValueError(f"Color channel {name} must be an int, got {value!r}")
            if not 0 <= value <= 255:
                raise ValueError(f"Color channel {name} must be in [0, 255], got {value}")

    @classmethod
    def from_hex(cls, text: str) -> Color:
        """Parse ``#RRGGBB`` or ``#RRGGBBAA`` (case-insensitive, ``#`` optional).

        Raises
        ------
        ValueError
            If *text* is not a 6- or 8-digit hex color.
        """
        if not isinstance(text, str):
            raise ValueError(f"Hex color must be a string, got {type(text).__name__}")
        m = _HEX_RE.match(text.strip())
        if m is None:
            raise ValueError(f"Invalid hex color: {text!r} (expected #RRGGBB or #RRGGBBAA)")
        digits = m.group(1)
        r, g, b = (int(digits[i:i + 2], 16) for i in (0, 2, 4))
        if len(digits) == 8:
            return cls(r, g, b, int(digits[6:8], 16))
        return cls(r, g, b, 255, alpha_given=False)

    @classmethod
    def coerce(cls, value: ColorLike) -> Color:
        """Accept a ``Color``, a hex string, or an RGB/RGBA sequence."""
        if isinstance(value, Color):
            return value
        if isinstance(value, str):
            return cls.from_hex(value)
        channels = tuple(value)
        if len(channels) == 3:
            return cls(*channels, alpha_given=False)
        if len(channels) == 4:
            return cls(*channels)
        raise ValueError(f"Color sequence must have 3 or 4 channels, got {len(channels)}")

    def to_hex(self) -> str:
        """Canonical ``#RRGGBBAA`` form (uppercase)."""
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}{self.a:02X}"

    def to_hex_rgb(self) -> str:
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.r, self.g, self.b, self.a)

    def with_alpha(self, a: int) -> Color:
        return Color(self.r, self.g, self.b, a)

    @property
    def is_transparent(self) -> bool:
        return self.a == 0


ColorLike = Union[Color, str, Sequence[int]]


# ---------------------------------------------------------------------------
# Palette snapping
# ---------------------------------------------------------------------------


def _palette_array(palette: Sequence[ColorLike]) -> np.ndarray:
    """Stack palette RGB channels into an ``(N, 3)`` int64 array."""
    colors = [Color.coerce(p) for p in palette]
    if not colors:
        return np.zeros((0, 3), dtype=np.int64)
    return np.array([(c.r, c.g, c.b) for c in colors], dtype=np.int64)


def squared_rgb_distance(a: ColorLike, b: ColorLike) -> int:
    ca, cb = Color.coerce(a), Color.coerce(b)
    return (ca.r - cb.r) ** 2 + (ca.g - cb.g) ** 2 + (ca.b - cb.b) ** 2


def nearest_palette_index(
    color: ColorLike,
    palette: Sequence[ColorLike],
    exclude: int | None = None,
) -> int:
    """Index of the palette entry closest to *color* in RGB.

    Parameters
    ----------
    color : ColorLike
        Query color.  Alpha is ignored.
    palette : Sequence[ColorLike]
        Ordered palette; position is the index.
    exclude : int, optional
        Index removed from the candidate set (the transparent index of
        an indexed sprite).

    Returns
    -------
    int
        Lowest index among the entries at minimum squared distance.

    Raises
    ------
    ValueError
        If no candidate entry remains.
    """
    query = Color.coerce(color)
    rgb = _palette_array(palette)
    if rgb.shape[0] == 0:
        raise ValueError("Palette is empty")

    diff = rgb - np.array([query.r, query.g, query.b], dtype=np.int64)
    dist = np.einsum("ij,ij->i", diff, diff)
    if exclude is not None and 0 <= exclude < dist.shape[0]:
        if dist.shape[0] == 1:
            raise ValueError(f"Palette has no entries besides excluded index {exclude}")
        dist[exclude] = np.iinfo(np.int64).max
    # argmin returns the first occurrence of the minimum
    return int(np.argmin(dist))


def nearest_palette_color(
    color: ColorLike,
    palette: Sequence[ColorLike],
    exclude: int | None = None,
) -> Color:
    """Palette entry closest to *color*.

    The queried alpha is kept when the query defines one (see
    ``Color.alpha_given``).  An RGB-only query (3-sequence or 6-digit
    hex, also after coercion to ``Color``) takes the palette entry's
    alpha.
    """
    idx = nearest_palette_index(color, palette, exclude=exclude)
    entry = Color.coerce(palette[idx])
    if _defines_alpha(color):
        return entry.with_alpha(Color.coerce(color).a)
    return entry.with_alpha(entry.a)


def _defines_alpha(color: ColorLike) -> bool:
    return Color.coerce(color).alpha_given


def parse_palette(colors: Sequence[ColorLike]) -> tuple[Color, ...]:
    """Coerce a sequence of color specs into a tuple of ``Color``."""
    return tuple(Color.coerce(c) for c in colors)
