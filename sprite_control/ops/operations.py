"""Sprite operations -- the vocabulary between callers and Lua scripts.

Every sprite action is an immutable, slotted dataclass.  Operations use
**semantic** names (``DeleteLayer``, not ``spr:deleteLayer``), pixel
coordinates with a top-left origin, and **1-based** frame numbers, the
way the engine numbers frames.

Constructor-time validation raises ``ValueError``, so an invalid request
never turns into a script and never reaches the engine.  Colors accept a
``Color``, a hex string, or an RGB(A) sequence and are normalized to
``Color``; pixel and point lists accept dicts or tuples and are
normalized to tuples of ``Pixel`` / ``Point``.

Grouping
--------
- Canvas: ``CreateCanvas``, ``GetSpriteInfo``
- Structure: ``AddLayer``, ``DeleteLayer``, ``AddFrame``, ``DeleteFrame``,
  ``SetFrameDuration``
- Animation: ``CreateTag``, ``DeleteTag``, ``DuplicateFrame``, ``LinkCel``
- Palette: ``SetPalette``, ``GetPalette``
- Drawing: ``DrawPixels``, ``DrawLine``, ``DrawContour``,
  ``DrawRectangle``, ``DrawCircle``, ``FillArea``, ``DrawWithDither``
- Inspection: ``GetPixels``
- Export: ``ExportSprite``, ``ExportSpritesheet``
- Files: ``SaveAs``, ``ImportImage``
"""

from __future__ import annotations

import math
from abc import ABC
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Literal, Mapping, Sequence

from sprite_utils.color import Color, parse_palette
from sprite_utils.dither import PATTERN_NAMES

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

MAX_CANVAS_SIZE = 65535
MAX_DURATION_MS = 65535
MAX_PALETTE_SIZE = 256
MAX_BRUSH_SIZE = 100
MAX_SHEET_PADDING = 100

COLOR_MODES = ("rgb", "grayscale", "indexed")
EXPORT_FORMATS = ("png", "gif", "jpg", "jpeg", "bmp")
SHEET_LAYOUTS = ("horizontal", "vertical", "rows", "columns", "packed")
TAG_DIRECTIONS = ("forward", "reverse", "pingpong")
SPRITE_EXTENSIONS = (".aseprite", ".ase")

ColorMode = Literal["rgb", "grayscale", "indexed"]

# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Point:
    """Integer canvas position (top-left origin, +Y down)."""

    x: int
    y: int

    def __post_init__(self) -> None:
        _require_int("x", self.x)
        _require_int("y", self.y)

    @classmethod
    def coerce(cls, value: Any) -> Point:
        if isinstance(value, Point):
            return value
        if isinstance(value, Mapping):
            return cls(value["x"], value["y"])
        x, y = value
        return cls(x, y)


@dataclass(frozen=True, slots=True)
class Pixel:
    """One pixel write: position plus color."""

    x: int
    y: int
    color: Color

    def __post_init__(self) -> None:
        _require_int("x", self.x)
        _require_int("y", self.y)
        object.__setattr__(self, "color", Color.coerce(self.color))

    @classmethod
    def coerce(cls, value: Any) -> Pixel:
        if isinstance(value, Pixel):
            return value
        if isinstance(value, Mapping):
            return cls(value["x"], value["y"], value["color"])
        x, y, color = value
        return cls(x, y, color)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _require_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _require_range(name: str, value: Any, lo: int, hi: int) -> None:
    _require_int(name, value)
    if not lo <= value <= hi:
        raise ValueError(f"{name} must be in [{lo}, {hi}], got {value}")


def _require_positive(name: str, value: Any) -> None:
    _require_int(name, value)
    if value < 1:
        raise ValueError(f"{name} must be > 0, got {value}")


def _require_frame(value: Any, name: str = "frame") -> None:
    _require_int(name, value)
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")


def _require_name(name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string, got {value!r}")


def _set_color(op: object, field_name: str) -> None:
    object.__setattr__(op, field_name, Color.coerce(getattr(op, field_name)))


def _require_bool(name: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean, got {value!r}")


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Operation(ABC):
    """Base class for all sprite operations."""

    pass


@dataclass(frozen=True, slots=True)
class LayerFrameOperation(Operation):
    """Operation addressed at one layer in one frame."""

    layer: str
    frame: int

    def __post_init__(self) -> None:
        _require_name("layer", self.layer)
        _require_frame(self.frame)


# ---------------------------------------------------------------------------
# Canvas
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CreateCanvas(Operation):
    """Create a new sprite file.

    Parameters
    ----------
    width, height : int
        Canvas size in pixels, 1..65535.
    color_mode : ``"rgb"`` | ``"grayscale"`` | ``"indexed"``
        Fixed for the life of the sprite.
    path : str
        Where the ``.aseprite`` file is written.
    """

    width: int
    height: int
    color_mode: ColorMode
    path: str

    def __post_init__(self) -> None:
        _require_range("width", self.width, 1, MAX_CANVAS_SIZE)
        _require_range("height", self.height, 1, MAX_CANVAS_SIZE)
        if self.color_mode not in COLOR_MODES:
            raise ValueError(
                f"color_mode must be one of {COLOR_MODES}, got {self.color_mode!r}"
            )
        _require_name("path", self.path)


@dataclass(frozen=True, slots=True)
class GetSpriteInfo(Operation):
    """Report size, color mode, layers and frames as JSON."""

    pass


# ---------------------------------------------------------------------------
# Layers and frames
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AddLayer(Operation):
    """Append a new layer on top of the stack."""

    name: str

    def __post_init__(self) -> None:
        _require_name("name", self.name)


@dataclass(frozen=True, slots=True)
class DeleteLayer(Operation):
    """Delete a layer by name.  Refused when it is the only layer."""

    name: str

    def __post_init__(self) -> None:
        _require_name("name", self.name)


@dataclass(frozen=True, slots=True)
class AddFrame(Operation):
    """Append a frame.

    Parameters
    ----------
    duration_ms : int
        Frame duration in milliseconds, 1..65535.
    """

    duration_ms: int = 100

    def __post_init__(self) -> None:
        _require_range("duration_ms", self.duration_ms, 1, MAX_DURATION_MS)


@dataclass(frozen=True, slots=True)
class DeleteFrame(Operation):
    """Delete a frame by number.  Refused when it is the only frame."""

    frame: int

    def __post_init__(self) -> None:
        _require_frame(self.frame)


@dataclass(frozen=True, slots=True)
class SetFrameDuration(Operation):
    frame: int
    duration_ms: int

    def __post_init__(self) -> None:
        _require_frame(self.frame)
        _require_range("duration_ms", self.duration_ms, 1, MAX_DURATION_MS)


# ---------------------------------------------------------------------------
# Animation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CreateTag(Operation):
    """Name an inclusive frame range for playback.

    Parameters
    ----------
    name : str
        Tag name; unique within the sprite.
    from_frame, to_frame : int
        1-based, ``from_frame <= to_frame``.
    direction : str
        ``forward``, ``reverse`` or ``pingpong``.
    """

    name: str
    from_frame: int
    to_frame: int
    direction: str = "forward"

    def __post_init__(self) -> None:
        _require_name("name", self.name)
        _require_frame(self.from_frame, "from_frame")
        _require_frame(self.to_frame, "to_frame")
        if self.from_frame > self.to_frame:
            raise ValueError(
                f"from_frame must be <= to_frame, got {self.from_frame} > {self.to_frame}"
            )
        if self.direction not in TAG_DIRECTIONS:
            raise ValueError(
                f"direction must be one of {TAG_DIRECTIONS}, got {self.direction!r}"
            )


@dataclass(frozen=True, slots=True)
class DeleteTag(Operation):
    """Remove a tag by name; its frames stay."""

    name: str

    def __post_init__(self) -> None:
        _require_name("name", self.name)


@dataclass(frozen=True, slots=True)
class DuplicateFrame(Operation):
    """Copy a frame (cels and duration) into a new frame.

    Parameters
    ----------
    frame : int
        1-based source frame.
    insert_after : int
        The copy becomes frame ``insert_after + 1``; ``0`` appends it.
    """

    frame: int
    insert_after: int = 0

    def __post_init__(self) -> None:
        _require_frame(self.frame)
        _require_int("insert_after", self.insert_after)
        if self.insert_after < 0:
            raise ValueError(
                f"insert_after must be >= 1, or 0 to append, got {self.insert_after}"
            )


@dataclass(frozen=True, slots=True)
class LinkCel(Operation):
    """Show the source frame's cel of ``layer`` in the target frame too."""

    layer: str
    source_frame: int
    target_frame: int

    def __post_init__(self) -> None:
        _require_name("layer", self.layer)
        _require_frame(self.source_frame, "source_frame")
        _require_frame(self.target_frame, "target_frame")
        if self.source_frame == self.target_frame:
            raise ValueError(
                f"source_frame and target_frame must differ, both are {self.source_frame}"
            )


# ---------------------------------------------------------------------------
# Palette
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SetPalette(Operation):
    """Replace the sprite palette.  List position becomes the palette index."""

    colors: tuple[Color, ...]

    def __post_init__(self) -> None:
        if isinstance(self.colors, (str, bytes)):
            raise ValueError("colors must be a sequence of colors, not a string")
        colors = parse_palette(self.colors)
        if not 1 <= len(colors) <= MAX_PALETTE_SIZE:
            raise ValueError(
                f"palette must have 1..{MAX_PALETTE_SIZE} colors, got {len(colors)}"
            )
        object.__setattr__(self, "colors", colors)


@dataclass(frozen=True, slots=True)
class GetPalette(Operation):
    pass


# ---------------------------------------------------------------------------
# Drawing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DrawPixels(LayerFrameOperation):
    """Write individual pixels.

    Parameters
    ----------
    pixels : tuple[Pixel, ...]
        At least one pixel.  Positions outside the canvas are clipped.
    use_palette : bool
        Snap each color to the nearest palette entry before writing.
    """

    pixels: tuple[Pixel, ...] = ()
    use_palette: bool = False

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        pixels = tuple(Pixel.coerce(p) for p in self.pixels)
        if not pixels:
            raise ValueError("pixels must contain at least one pixel")
        object.__setattr__(self, "pixels", pixels)
        _require_bool("use_palette", self.use_palette)


@dataclass(frozen=True, slots=True)
class DrawLine(LayerFrameOperation):
    """Straight line between two points with a square brush."""

    start: Point = Point(0, 0)
    end: Point = Point(0, 0)
    color: Color = Color(0, 0, 0)
    thickness: int = 1
    use_palette: bool = False

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        object.__setattr__(self, "start", Point.coerce(self.start))
        object.__setattr__(self, "end", Point.coerce(self.end))
        _set_color(self, "color")
        _require_range("thickness", self.thickness, 1, MAX_BRUSH_SIZE)
        _require_bool("use_palette", self.use_palette)


@dataclass(frozen=True, slots=True)
class DrawContour(LayerFrameOperation):
    """Polyline through ``points``; ``closed`` joins the last point to the first."""

    points: tuple[Point, ...] = ()
    color: Color = Color(0, 0, 0)
    thickness: int = 1
    closed: bool = False
    use_palette: bool = False

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        points = tuple(Point.coerce(p) for p in self.points)
        if len(points) < 2:
            raise ValueError(f"contour needs at least 2 points, got {len(points)}")
        object.__setattr__(self, "points", points)
        _set_color(self, "color")
        _require_range("thickness", self.thickness, 1, MAX_BRUSH_SIZE)
        _require_bool("closed", self.closed)
        _require_bool("use_palette", self.use_palette)


@dataclass(frozen=True, slots=True)
class DrawRectangle(LayerFrameOperation):
    """Axis-aligned rectangle covering ``[x, x+width) x [y, y+height)``."""

    x: int = 0
    y: int = 0
    width: int = 1
    height: int = 1
    color: Color = Color(0, 0, 0)
    filled: bool = False
    use_palette: bool = False

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        _require_int("x", self.x)
        _require_int("y", self.y)
        _require_positive("width", self.width)
        _require_positive("height", self.height)
        _set_color(self, "color")
        _require_bool("filled", self.filled)
        _require_bool("use_palette", self.use_palette)


@dataclass(frozen=True, slots=True)
class DrawCircle(LayerFrameOperation):
    """Circle inscribed in the ``2r+1`` square centred on ``(center_x, center_y)``."""

    center_x: int = 0
    center_y: int = 0
    radius: int = 1
    color: Color = Color(0, 0, 0)
    filled: bool = False
    use_palette: bool = False

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        _require_int("center_x", self.center_x)
        _require_int("center_y", self.center_y)
        _require_positive("radius", self.radius)
        _set_color(self, "color")
        _require_bool("filled", self.filled)
        _require_bool("use_palette", self.use_palette)


@dataclass(frozen=True, slots=True)
class FillArea(LayerFrameOperation):
    """Contiguous flood fill from ``(x, y)``.

    Parameters
    ----------
    tolerance : int
        Color distance the paint bucket still treats as "same", 0..255.
    """

    x: int = 0
    y: int = 0
    color: Color = Color(0, 0, 0)
    tolerance: int = 0
    use_palette: bool = False

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        _require_int("x", self.x)
        _require_int("y", self.y)
        _set_color(self, "color")
        _require_range("tolerance", self.tolerance, 0, 255)
        _require_bool("use_palette", self.use_palette)


@dataclass(frozen=True, slots=True)
class DrawWithDither(LayerFrameOperation):
    """Two-color ordered dither over a rectangle.

    Parameters
    ----------
    color1, color2 : Color
        ``color1`` lands where ``ratio`` exceeds the pattern threshold.
    pattern : str
        One of ``sprite_utils.dither.PATTERN_NAMES``.
    ratio : float
        Share of ``color1``, in [0, 1].
    """

    x: int = 0
    y: int = 0
    width: int = 1
    height: int = 1
    color1: Color = Color(0, 0, 0)
    color2: Color = Color(255, 255, 255)
    pattern: str = "bayer_4x4"
    ratio: float = 0.5

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        _require_int("x", self.x)
        _require_int("y", self.y)
        _require_positive("width", self.width)
        _require_positive("height", self.height)
        _set_color(self, "color1")
        _set_color(self, "color2")
        if self.pattern not in PATTERN_NAMES:
            raise ValueError(
                f"Unsupported dither pattern {self.pattern!r}; "
                f"expected one of: {', '.join(PATTERN_NAMES)}"
            )
        if isinstance(self.ratio, bool) or not isinstance(self.ratio, (int, float)):
            raise ValueError(f"ratio must be a number, got {self.ratio!r}")
        if not (math.isfinite(self.ratio) and 0.0 <= self.ratio <= 1.0):
            raise ValueError(f"ratio must be in [0, 1], got {self.ratio}")
        object.__setattr__(self, "ratio", float(self.ratio))


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GetPixels(LayerFrameOperation):
    """Read ``count`` pixels starting at row-major ``offset`` of a rectangle.

    Row-major means y ascending outer, x ascending inner, so position
    ``i`` is ``(x + i % width, y + i // width)``.
    """

    x: int = 0
    y: int = 0
    width: int = 1
    height: int = 1
    offset: int = 0
    count: int = 1

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        _require_int("x", self.x)
        _require_int("y", self.y)
        _require_positive("width", self.width)
        _require_positive("height", self.height)
        _require_int("offset", self.offset)
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        _require_positive("count", self.count)

    @property
    def total(self) -> int:
        return self.width * self.height

    @property
    def expected_count(self) -> int:
        """Number of positions this read covers."""
        return max(0, min(self.offset + self.count, self.total) - self.offset)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def export_format(path: str) -> str:
    """Output format implied by the file extension (lowercase, no dot)."""
    return PurePath(path).suffix.lower().lstrip(".")


@dataclass(frozen=True, slots=True)
class ExportSprite(Operation):
    """Flatten visible layers and write an image file.

    Parameters
    ----------
    output_path : str
        Destination; the extension selects the format
        (png, gif, jpg/jpeg, bmp).
    frame : int
        1-based frame to export, or ``0`` for every frame in the
        format's multi-frame form.
    """

    output_path: str
    frame: int = 0

    def __post_init__(self) -> None:
        _require_name("output_path", self.output_path)
        fmt = export_format(self.output_path)
        if fmt not in EXPORT_FORMATS:
            raise ValueError(
                f"Unsupported export format {fmt or '(none)'!r}; "
                f"expected one of: {', '.join(EXPORT_FORMATS)}"
            )
        _require_int("frame", self.frame)
        if self.frame < 0:
            raise ValueError(f"frame must be >= 1, or 0 for all frames, got {self.frame}")


@dataclass(frozen=True, slots=True)
class ExportSpritesheet(Operation):
    """Lay every frame out on one image.

    Parameters
    ----------
    layout : str
        ``horizontal``, ``vertical``, ``rows``, ``columns`` or ``packed``.
    padding : int
        Border and inner padding in pixels, 0..100.
    include_json : bool
        Also write frame metadata next to the sheet (``.json``).
    """

    output_path: str
    layout: str = "horizontal"
    padding: int = 0
    include_json: bool = False

    def __post_init__(self) -> None:
        _require_name("output_path", self.output_path)
        if export_format(self.output_path) not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported spritesheet format: {self.output_path!r}")
        if self.layout not in SHEET_LAYOUTS:
            raise ValueError(
                f"Unsupported spritesheet layout {self.layout!r}; "
                f"expected one of: {', '.join(SHEET_LAYOUTS)}"
            )
        _require_range("padding", self.padding, 0, MAX_SHEET_PADDING)
        _require_bool("include_json", self.include_json)

    @property
    def metadata_path(self) -> str | None:
        if not self.include_json:
            return None
        return str(PurePath(self.output_path).with_suffix(".json"))


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SaveAs(Operation):
    """Write the sprite to a new ``.aseprite``/``.ase`` file.

    The original file is left as it was before this call.
    """

    output_path: str

    def __post_init__(self) -> None:
        _require_name("output_path", self.output_path)
        if PurePath(self.output_path).suffix.lower() not in SPRITE_EXTENSIONS:
            raise ValueError(
                f"output_path must end in {' or '.join(SPRITE_EXTENSIONS)}, "
                f"got {self.output_path!r}"
            )


@dataclass(frozen=True, slots=True)
class ImportImage(LayerFrameOperation):
    """Place an external image as the cel of ``layer`` in ``frame``.

    The layer is created on top of the stack when it does not exist.
    ``(x, y)`` is the cel's top-left corner on the canvas.
    """

    image_path: str = ""
    x: int = 0
    y: int = 0

    def __post_init__(self) -> None:
        LayerFrameOperation.__post_init__(self)
        _require_name("image_path", self.image_path)
        _require_int("x", self.x)
        _require_int("y", self.y)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

OPERATION_TYPES: dict[str, type[Operation]] = {
    "create_canvas": CreateCanvas,
    "get_sprite_info": GetSpriteInfo,
    "add_layer": AddLayer,
    "delete_layer": DeleteLayer,
    "add_frame": AddFrame,
    "delete_frame": DeleteFrame,
    "set_frame_duration": SetFrameDuration,
    "create_tag": CreateTag,
    "delete_tag": DeleteTag,
    "duplicate_frame": DuplicateFrame,
    "link_cel": LinkCel,
    "set_palette": SetPalette,
    "get_palette": GetPalette,
    "draw_pixels": DrawPixels,
    "draw_line": DrawLine,
    "draw_contour": DrawContour,
    "draw_rectangle": DrawRectangle,
    "draw_circle": DrawCircle,
    "fill_area": FillArea,
    "draw_with_dither": DrawWithDither,
    "get_pixels": GetPixels,
    "export_sprite": ExportSprite,
    "export_spritesheet": ExportSpritesheet,
    "save_as": SaveAs,
    "import_image": ImportImage,
}


def build_operation(name: str, params: Mapping[str, Any] | None = None) -> Operation:
    """Construct an operation from its snake_case name and keyword params.

    Raises
    ------
    ValueError
        Unknown name, unexpected parameter, or a failed invariant.
    """
    try:
        cls = OPERATION_TYPES[name]
    except KeyError:
        raise ValueError(f"Unknown operation: {name!r}") from None
    try:
        return cls(**dict(params or {}))
    except TypeError as exc:
        raise ValueError(f"Invalid parameters for {name}: {exc}") from exc


def operation_name(op: Operation | type[Operation]) -> str:
    cls = op if isinstance(op, type) else type(op)
    for name, candidate in OPERATION_TYPES.items():
        if candidate is cls:
            return name
    return cls.__name__
