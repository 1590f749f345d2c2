"""Lua script generator -- sprite operations to Aseprite batch scripts.

Each operation becomes one self-contained script that opens nothing
itself (the engine is started with the sprite as its document), performs
its mutation inside ``app.transaction``, saves, and prints a literal
confirmation string or a JSON document on stdout.  Failures are raised
with ``error(...)`` so they surface on stderr with a non-zero exit.

Script layout::

    -- sprite_control: <OperationName>
    <prelude + helper functions>           (static, see snippets.py)
    local <param> = <literal>              (one line per parameter)
    <body>                                 (static, see snippets.py)

``lua_literal`` is the single place where Python values become Lua
source, and therefore the only place where user-supplied names and paths
are escaped.  The generator keeps no state between calls: the same
operation always renders to byte-identical text.
"""

from __future__ import annotations

import logging
import math
from io import StringIO
from typing import Any, Callable

import numpy as np

from sprite_control.lua import snippets
from sprite_control.ops.operations import (
    AddFrame,
    AddLayer,
    CreateCanvas,
    CreateTag,
    DeleteFrame,
    DeleteLayer,
    DeleteTag,
    DrawCircle,
    DrawContour,
    DrawLine,
    DrawPixels,
    DrawRectangle,
    DrawWithDither,
    DuplicateFrame,
    ExportSprite,
    ExportSpritesheet,
    FillArea,
    GetPalette,
    GetPixels,
    GetSpriteInfo,
    ImportImage,
    LinkCel,
    Operation,
    Pixel,
    Point,
    SaveAs,
    SetFrameDuration,
    SetPalette,
)
from sprite_utils.color import Color
from sprite_utils.dither import get_matrix, pattern_levels

logger = logging.getLogger(__name__)


class ScriptGenerationError(Exception):
    """Raised when an operation cannot be rendered to Lua."""

    pass


class RawLua(str):
    """Lua source emitted verbatim by ``lua_literal`` (engine constants only)."""

    pass


_COLOR_MODE_LUA = {
    "rgb": RawLua("ColorMode.RGB"),
    "grayscale": RawLua("ColorMode.GRAYSCALE"),
    "indexed": RawLua("ColorMode.INDEXED"),
}

_ANI_DIR_LUA = {
    "forward": RawLua("AniDir.FORWARD"),
    "reverse": RawLua("AniDir.REVERSE"),
    "pingpong": RawLua("AniDir.PING_PONG"),
}

# ---------------------------------------------------------------------------
# Serializer
# ---------------------------------------------------------------------------

_LUA_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def lua_string(text: str) -> str:
    """Quote *text* as a Lua string literal.

    Backslash, double quote, newline, carriage return and tab use their
    short escapes; any other control character becomes a ``\\ddd``
    decimal escape.  Non-ASCII characters pass through unchanged (the
    script file is UTF-8 and Lua strings are byte strings).
    """
    out = ['"']
    for ch in text:
        if ch in _LUA_ESCAPES:
            out.append(_LUA_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\{ord(ch):03d}")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def lua_literal(value: Any) -> str:
    """Render a Python value as Lua source.

    Supported: ``None``, ``bool``, ``int``, finite ``float``, ``str``,
    ``RawLua``, ``Color`` (``{r, g, b, a}``; alpha is ``nil`` for RGB-only
    colors), ``Point`` (``{x, y}``), ``Pixel`` (``{x, y, {r, g, b, a}}``),
    numpy arrays, and lists or tuples of any of these (Lua sequences).

    Raises
    ------
    ScriptGenerationError
        For unsupported types or non-finite floats.
    """
    if value is None:
        return "nil"
    if isinstance(value, RawLua):
        return str(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        if not math.isfinite(value):
            raise ScriptGenerationError(f"Cannot render non-finite number {value!r}")
        return repr(float(value))
    if isinstance(value, str):
        return lua_string(value)
    if isinstance(value, Color):
        alpha = value.a if value.alpha_given else "nil"
        return f"{{{value.r}, {value.g}, {value.b}, {alpha}}}"
    if isinstance(value, Point):
        return f"{{{value.x}, {value.y}}}"
    if isinstance(value, Pixel):
        return f"{{{value.x}, {value.y}, {lua_literal(value.color)}}}"
    if isinstance(value, np.ndarray):
        return lua_literal(value.tolist())
    if isinstance(value, (list, tuple)):
        items = [lua_literal(v) for v in value]
        if any(isinstance(v, (list, tuple, Color, Point, Pixel, np.ndarray)) for v in value):
            return "{\n\t" + ",\n\t".join(items) + ",\n}" if items else "{}"
        return "{" + ", ".join(items) + "}"
    raise ScriptGenerationError(f"Cannot render {type(value).__name__} as Lua")


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

_DRAWING_HELPERS = (
    snippets.JSON_HELPERS,
    snippets.LAYER_HELPERS,
    snippets.COLOR_HELPERS,
    snippets.CANVAS_HELPERS,
)


class LuaGenerator:
    """Convert sprite operations to Lua scripts for ``aseprite --batch``.

    Examples
    --------
    >>> gen = LuaGenerator()
    >>> script = gen.generate(DeleteLayer(name="Sketch"))
    >>> "Cannot delete the last layer" in script
    True
    """

    def __init__(self) -> None:
        self._handlers: dict[type, Callable[[Any, StringIO], None]] = {
            CreateCanvas: self._gen_create_canvas,
            GetSpriteInfo: self._gen_get_sprite_info,
            AddLayer: self._gen_add_layer,
            DeleteLayer: self._gen_delete_layer,
            AddFrame: self._gen_add_frame,
            DeleteFrame: self._gen_delete_frame,
            SetFrameDuration: self._gen_set_frame_duration,
            CreateTag: self._gen_create_tag,
            DeleteTag: self._gen_delete_tag,
            DuplicateFrame: self._gen_duplicate_frame,
            LinkCel: self._gen_link_cel,
            SetPalette: self._gen_set_palette,
            GetPalette: self._gen_get_palette,
            DrawPixels: self._gen_draw_pixels,
            DrawLine: self._gen_draw_line,
            DrawContour: self._gen_draw_contour,
            DrawRectangle: self._gen_draw_rectangle,
            DrawCircle: self._gen_draw_circle,
            FillArea: self._gen_fill_area,
            DrawWithDither: self._gen_draw_with_dither,
            GetPixels: self._gen_get_pixels,
            ExportSprite: self._gen_export_sprite,
            ExportSpritesheet: self._gen_export_spritesheet,
            SaveAs: self._gen_save_as,
            ImportImage: self._gen_import_image,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, op: Operation) -> str:
        """Render one operation as a complete Lua script.

        Parameters
        ----------
        op : Operation
            A validated operation descriptor.

        Returns
        -------
        str
            Script text, identical for identical operations.

        Raises
        ------
        ScriptGenerationError
            If *op* is not a known operation type.
        """
        handler = self._handlers.get(type(op))
        if handler is None:
            raise ScriptGenerationError(f"Unsupported operation: {type(op).__name__}")

        buf = StringIO()
        buf.write(f"-- sprite_control: {type(op).__name__}\n")
        handler(op, buf)
        script = buf.getvalue()
        logger.debug("Generated %s script (%d bytes)", type(op).__name__, len(script))
        return script

    @property
    def supported_operations(self) -> tuple[type, ...]:
        return tuple(self._handlers)

    # ------------------------------------------------------------------
    # Assembly helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _write_prelude(buf: StringIO, *helpers: str) -> None:
        buf.write(snippets.SPRITE_PRELUDE)
        for block in helpers:
            buf.write(block)
        buf.write("\n")

    @staticmethod
    def _bind(buf: StringIO, **params: Any) -> None:
        for name, value in params.items():
            buf.write(f"local {name} = {lua_literal(value)}\n")

    # ------------------------------------------------------------------
    # Canvas
    # ------------------------------------------------------------------

    def _gen_create_canvas(self, op: CreateCanvas, buf: StringIO) -> None:
        self._bind(
            buf,
            width=op.width,
            height=op.height,
            colorMode=_COLOR_MODE_LUA[op.color_mode],
            path=op.path,
        )
        buf.write(snippets.CREATE_CANVAS)

    def _gen_get_sprite_info(self, op: GetSpriteInfo, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.JSON_HELPERS)
        buf.write(snippets.GET_SPRITE_INFO)

    # ------------------------------------------------------------------
    # Layers and frames
    # ------------------------------------------------------------------

    def _gen_add_layer(self, op: AddLayer, buf: StringIO) -> None:
        self._write_prelude(buf)
        self._bind(buf, layerName=op.name)
        buf.write(snippets.ADD_LAYER)

    def _gen_delete_layer(self, op: DeleteLayer, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.LAYER_HELPERS)
        self._bind(buf, layerName=op.name)
        buf.write(snippets.DELETE_LAYER)

    def _gen_add_frame(self, op: AddFrame, buf: StringIO) -> None:
        self._write_prelude(buf)
        self._bind(buf, durationMs=op.duration_ms)
        buf.write(snippets.ADD_FRAME)

    def _gen_delete_frame(self, op: DeleteFrame, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.LAYER_HELPERS)
        self._bind(buf, frameNumber=op.frame)
        buf.write(snippets.DELETE_FRAME)

    def _gen_set_frame_duration(self, op: SetFrameDuration, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.LAYER_HELPERS)
        self._bind(buf, frameNumber=op.frame, durationMs=op.duration_ms)
        buf.write(snippets.SET_FRAME_DURATION)

    # ------------------------------------------------------------------
    # Animation
    # ------------------------------------------------------------------

    def _gen_create_tag(self, op: CreateTag, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.TAG_HELPERS)
        self._bind(
            buf,
            tagName=op.name,
            fromFrame=op.from_frame,
            toFrame=op.to_frame,
            aniDir=_ANI_DIR_LUA[op.direction],
        )
        buf.write(snippets.CREATE_TAG)

    def _gen_delete_tag(self, op: DeleteTag, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.TAG_HELPERS)
        self._bind(buf, tagName=op.name)
        buf.write(snippets.DELETE_TAG)

    def _gen_duplicate_frame(self, op: DuplicateFrame, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.LAYER_HELPERS)
        self._bind(buf, frameNumber=op.frame, insertAfter=op.insert_after)
        buf.write(snippets.DUPLICATE_FRAME)

    def _gen_link_cel(self, op: LinkCel, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.LAYER_HELPERS)
        self._bind(
            buf,
            layerName=op.layer,
            sourceFrame=op.source_frame,
            targetFrame=op.target_frame,
        )
        buf.write(snippets.LINK_CEL)

    # ------------------------------------------------------------------
    # Palette
    # ------------------------------------------------------------------

    def _gen_set_palette(self, op: SetPalette, buf: StringIO) -> None:
        self._write_prelude(buf)
        self._bind(buf, colors=list(op.colors))
        buf.write(snippets.SET_PALETTE)

    def _gen_get_palette(self, op: GetPalette, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.JSON_HELPERS)
        buf.write(snippets.GET_PALETTE)

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def _bind_target(self, buf: StringIO, op: Any) -> None:
        self._write_prelude(buf, *_DRAWING_HELPERS)
        self._bind(buf, layerName=op.layer, frameNumber=op.frame)

    def _gen_draw_pixels(self, op: DrawPixels, buf: StringIO) -> None:
        self._bind_target(buf, op)
        self._bind(buf, usePalette=op.use_palette, pixels=list(op.pixels))
        buf.write(snippets.DRAW_PIXELS)

    def _write_tool_strokes(
        self,
        buf: StringIO,
        op: Any,
        tool: str,
        strokes: list[list[Point]],
        brush_size: int,
        body: str,
    ) -> None:
        self._bind_target(buf, op)
        self._bind(
            buf,
            toolName=tool,
            color=op.color,
            usePalette=op.use_palette,
            brushSize=brush_size,
            strokes=strokes,
        )
        buf.write(body)

    def _gen_draw_line(self, op: DrawLine, buf: StringIO) -> None:
        self._write_tool_strokes(
            buf, op, "line", [[op.start, op.end]], op.thickness, snippets.DRAW_LINE,
        )

    def _gen_draw_contour(self, op: DrawContour, buf: StringIO) -> None:
        pts = list(op.points)
        segments = [[a, b] for a, b in zip(pts, pts[1:])]
        if op.closed:
            segments.append([pts[-1], pts[0]])
        self._write_tool_strokes(
            buf, op, "line", segments, op.thickness, snippets.DRAW_CONTOUR,
        )

    def _gen_draw_rectangle(self, op: DrawRectangle, buf: StringIO) -> None:
        corners = [
            Point(op.x, op.y),
            Point(op.x + op.width - 1, op.y + op.height - 1),
        ]
        tool = "filled_rectangle" if op.filled else "rectangle"
        self._write_tool_strokes(buf, op, tool, [corners], 1, snippets.DRAW_RECTANGLE)

    def _gen_draw_circle(self, op: DrawCircle, buf: StringIO) -> None:
        r = op.radius
        bbox = [
            Point(op.center_x - r, op.center_y - r),
            Point(op.center_x + r, op.center_y + r),
        ]
        tool = "filled_ellipse" if op.filled else "ellipse"
        self._write_tool_strokes(buf, op, tool, [bbox], 1, snippets.DRAW_CIRCLE)

    def _gen_fill_area(self, op: FillArea, buf: StringIO) -> None:
        self._bind_target(buf, op)
        self._bind(
            buf,
            color=op.color,
            usePalette=op.use_palette,
            seed=Point(op.x, op.y),
            tolerance=op.tolerance,
        )
        buf.write(snippets.FILL_AREA)

    def _gen_draw_with_dither(self, op: DrawWithDither, buf: StringIO) -> None:
        self._bind_target(buf, op)
        self._bind(
            buf,
            x=op.x,
            y=op.y,
            width=op.width,
            height=op.height,
            color1=op.color1,
            color2=op.color2,
            ratio=op.ratio,
            levels=pattern_levels(op.pattern),
            matrix=get_matrix(op.pattern),
        )
        buf.write(snippets.DRAW_WITH_DITHER)

    # ------------------------------------------------------------------
    # Inspection and export
    # ------------------------------------------------------------------

    def _gen_get_pixels(self, op: GetPixels, buf: StringIO) -> None:
        self._write_prelude(
            buf, snippets.JSON_HELPERS, snippets.LAYER_HELPERS, snippets.PIXEL_READ_HELPERS,
        )
        self._bind(
            buf,
            layerName=op.layer,
            frameNumber=op.frame,
            x=op.x,
            y=op.y,
            width=op.width,
            height=op.height,
            offset=op.offset,
            count=op.count,
        )
        buf.write(snippets.GET_PIXELS)

    def _gen_export_sprite(self, op: ExportSprite, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.LAYER_HELPERS)
        self._bind(buf, outputPath=op.output_path, frameNumber=op.frame)
        buf.write(snippets.EXPORT_SPRITE)

    def _gen_export_spritesheet(self, op: ExportSpritesheet, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.JSON_HELPERS)
        self._bind(
            buf,
            outputPath=op.output_path,
            layout=op.layout,
            padding=op.padding,
            metadataPath=op.metadata_path,
        )
        buf.write(snippets.EXPORT_SPRITESHEET)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _gen_save_as(self, op: SaveAs, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.JSON_HELPERS)
        self._bind(buf, outputPath=op.output_path)
        buf.write(snippets.SAVE_AS)

    def _gen_import_image(self, op: ImportImage, buf: StringIO) -> None:
        self._write_prelude(buf, snippets.LAYER_HELPERS)
        self._bind(
            buf,
            layerName=op.layer,
            frameNumber=op.frame,
            imagePath=op.image_path,
            x=op.x,
            y=op.y,
        )
        buf.write(snippets.IMPORT_IMAGE)
