"""Sprite tools -- validated operations in, typed results out.

Orchestrates one engine call per operation:

    build operation (validate)  ->  LuaGenerator  ->  AsepriteClient
        ->  success marker / JSON  ->  typed result

Error mapping
-------------
Validation
    Any invalid argument raises ``ToolValidationError`` before a script
    is generated or a process started.
Domain refusal
    Engine diagnostics that contain a known refusal string (deleting
    the last layer or frame) raise ``DomainRefusal``, a ``ScriptError``
    that keeps the engine's text unchanged.
Operational
    Engine failures propagate as the client's exceptions; stdout that
    lacks the expected marker or is not valid JSON raises ``ToolError``.

Nothing is retried.  Calls against the same sprite path are serialized
in-process by a per-path lock (disable with ``serialize_paths=False``);
separate processes sharing a sprite must coordinate on their own.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Sequence

from PIL import UnidentifiedImageError

from sprite_control.engine.aseprite_client import AsepriteClient, ScriptError
from sprite_control.lua.generator import LuaGenerator
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
    SaveAs,
    SetFrameDuration,
    SetPalette,
    operation_name,
)
from sprite_control.paging import PixelRegion, next_cursor, plan_page
from sprite_utils.color import Color
from sprite_utils.fs import ensure_dir, image_summary
from sprite_utils.logging_config import log_context

logger = logging.getLogger(__name__)

REFUSALS = (
    "Cannot delete the last layer",
    "Cannot delete the last frame",
)

SUCCESS_MARKERS: dict[type[Operation], str] = {
    AddLayer: "Layer added successfully",
    DeleteLayer: "Layer deleted successfully",
    DeleteFrame: "Frame deleted successfully",
    SetFrameDuration: "Frame duration set successfully",
    SetPalette: "Palette set successfully",
    DrawPixels: "Pixels drawn successfully",
    DrawLine: "Line drawn successfully",
    DrawContour: "Contour drawn successfully",
    DrawRectangle: "Rectangle drawn successfully",
    DrawCircle: "Circle drawn successfully",
    FillArea: "Area filled successfully",
    DrawWithDither: "Dithering applied successfully",
    ExportSprite: "Exported successfully",
    CreateTag: "Tag created successfully",
    DeleteTag: "Tag deleted successfully",
    LinkCel: "Cel linked successfully",
    ImportImage: "Image imported successfully",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ToolError(Exception):
    """Operation failed after the engine ran (unexpected or unparseable output)."""

    pass


class ToolValidationError(ToolError, ValueError):
    """Invalid arguments; raised before any engine process is started."""

    pass


class DomainRefusal(ScriptError):
    """The engine refused a mutation that would break a sprite invariant.

    ``refusal`` holds the matched diagnostic (for example
    ``"Cannot delete the last layer"``); ``stderr`` and ``stdout`` are
    the engine's streams, unmodified.
    """

    def __init__(self, returncode: int, stderr: str, stdout: str, refusal: str) -> None:
        super().__init__(returncode, stderr, stdout)
        self.refusal = refusal

    def __reduce__(self):
        return (type(self), (self.returncode, self.stderr, self.stdout, self.refusal))


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LayerInfo:
    name: str
    visible: bool


@dataclass(frozen=True)
class TagInfo:
    name: str
    from_frame: int
    to_frame: int
    direction: str


@dataclass(frozen=True)
class SpriteInfo:
    """Sprite metadata as reported by the engine."""

    width: int
    height: int
    color_mode: str
    frame_count: int
    layer_count: int
    layers: tuple[LayerInfo, ...]
    frame_durations_ms: tuple[int, ...]
    transparent_index: int
    tags: tuple[TagInfo, ...] = ()

    @property
    def layer_names(self) -> list[str]:
        return [layer.name for layer in self.layers]


@dataclass(frozen=True)
class PaletteInfo:
    colors: tuple[Color, ...]

    @property
    def size(self) -> int:
        return len(self.colors)


@dataclass(frozen=True)
class PixelPage:
    """One page of a pixel read.

    ``next_cursor`` is ``""`` once the region is exhausted.
    """

    pixels: tuple[Pixel, ...]
    next_cursor: str
    total_pixels: int
    offset: int


@dataclass(frozen=True)
class ExportResult:
    """Exported file and, when readable by Pillow, what it contains."""

    path: str
    frame: int
    size_bytes: int | None
    image: dict[str, Any] | None


@dataclass(frozen=True)
class SpritesheetResult:
    spritesheet_path: str
    frame_count: int
    metadata_path: str | None


# ---------------------------------------------------------------------------
# Per-path serialization
# ---------------------------------------------------------------------------


class PathLocks:
    """One ``threading.Lock`` per normalized sprite path."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, path: str | Path) -> Iterator[None]:
        key = os.path.normcase(os.path.abspath(str(path)))
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class SpriteTools:
    """High-level sprite operations over an ``AsepriteClient``.

    Parameters
    ----------
    client : AsepriteClient
        Engine client (or any object with a compatible ``execute_lua``).
    generator : LuaGenerator | None
        Script generator; a fresh one by default.
    serialize_paths : bool
        Serialize calls that target the same sprite path.
    timeout : float | None
        Per-call timeout override; ``None`` uses the client default.
    """

    def __init__(
        self,
        client: AsepriteClient,
        generator: LuaGenerator | None = None,
        *,
        serialize_paths: bool = True,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._gen = generator if generator is not None else LuaGenerator()
        self._locks = PathLocks() if serialize_paths else None
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Generic execution
    # ------------------------------------------------------------------

    def execute(
        self,
        op: Operation,
        sprite_path: str | Path | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        """Run *op* and return raw stdout.

        ``CreateCanvas`` runs without a document; every other operation
        needs *sprite_path*.

        Raises
        ------
        ToolValidationError
            If *sprite_path* is missing for a sprite operation.
        DomainRefusal
            If the engine refused the mutation.
        """
        if isinstance(op, CreateCanvas):
            target, lock_path = None, op.path
        else:
            if sprite_path is None or str(sprite_path) == "":
                raise ToolValidationError(
                    f"{operation_name(op)} requires a sprite path"
                )
            target = lock_path = sprite_path

        script = self._gen.generate(op)
        name = operation_name(op)
        with log_context(op=name), self._hold(lock_path):
            try:
                output = self._client.execute_lua(
                    script, target, timeout=self._timeout, cancel=cancel,
                )
            except ScriptError as exc:
                refusal = _match_refusal(exc.diagnostic)
                if refusal is None:
                    raise
                logger.warning("%s refused: %s", name, refusal)
                raise DomainRefusal(exc.returncode, exc.stderr, exc.stdout, refusal) from exc
        logger.debug("%s completed on %s", name, lock_path)
        return output

    def run(
        self,
        op: Operation,
        sprite_path: str | Path | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> Any:
        """Run *op* and parse its output into the matching result type."""
        output = self.execute(op, sprite_path, cancel=cancel)
        return self._parse(op, output)

    # ------------------------------------------------------------------
    # Canvas
    # ------------------------------------------------------------------

    def create_canvas(
        self, width: int, height: int, color_mode: str, path: str | Path,
    ) -> str:
        """Create a sprite file; returns its path."""
        op = _build(CreateCanvas, width=width, height=height,
                    color_mode=color_mode, path=str(path))
        return self.run(op)

    def get_sprite_info(self, sprite_path: str | Path) -> SpriteInfo:
        return self.run(GetSpriteInfo(), sprite_path)

    # ------------------------------------------------------------------
    # Layers and frames
    # ------------------------------------------------------------------

    def add_layer(self, sprite_path: str | Path, name: str) -> str:
        return self.run(_build(AddLayer, name=name), sprite_path)

    def delete_layer(self, sprite_path: str | Path, name: str) -> str:
        """Delete layer *name*.

        Raises
        ------
        DomainRefusal
            ``"Cannot delete the last layer"`` when it is the only layer.
        """
        return self.run(_build(DeleteLayer, name=name), sprite_path)

    def add_frame(self, sprite_path: str | Path, duration_ms: int = 100) -> int:
        """Append a frame; returns the new frame count."""
        return self.run(_build(AddFrame, duration_ms=duration_ms), sprite_path)

    def delete_frame(self, sprite_path: str | Path, frame: int) -> str:
        """Delete *frame* (1-based).

        Raises
        ------
        DomainRefusal
            ``"Cannot delete the last frame"`` when it is the only frame.
        """
        return self.run(_build(DeleteFrame, frame=frame), sprite_path)

    def set_frame_duration(
        self, sprite_path: str | Path, frame: int, duration_ms: int,
    ) -> str:
        op = _build(SetFrameDuration, frame=frame, duration_ms=duration_ms)
        return self.run(op, sprite_path)

    # ------------------------------------------------------------------
    # Animation
    # ------------------------------------------------------------------

    def create_tag(
        self,
        sprite_path: str | Path,
        name: str,
        from_frame: int,
        to_frame: int,
        direction: str = "forward",
    ) -> str:
        op = _build(CreateTag, name=name, from_frame=from_frame, to_frame=to_frame,
                    direction=direction)
        return self.run(op, sprite_path)

    def delete_tag(self, sprite_path: str | Path, name: str) -> str:
        return self.run(_build(DeleteTag, name=name), sprite_path)

    def duplicate_frame(
        self, sprite_path: str | Path, frame: int, insert_after: int = 0,
    ) -> int:
        """Copy *frame*; returns the new frame's number."""
        op = _build(DuplicateFrame, frame=frame, insert_after=insert_after)
        return self.run(op, sprite_path)

    def link_cel(
        self, sprite_path: str | Path, layer: str, source_frame: int, target_frame: int,
    ) -> str:
        op = _build(LinkCel, layer=layer, source_frame=source_frame,
                    target_frame=target_frame)
        return self.run(op, sprite_path)

    # ------------------------------------------------------------------
    # Palette
    # ------------------------------------------------------------------

    def set_palette(self, sprite_path: str | Path, colors: Sequence[Any]) -> str:
        return self.run(_build(SetPalette, colors=colors), sprite_path)

    def get_palette(self, sprite_path: str | Path) -> PaletteInfo:
        return self.run(GetPalette(), sprite_path)

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def draw_pixels(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        pixels: Sequence[Any],
        use_palette: bool = False,
    ) -> str:
        op = _build(DrawPixels, layer=layer, frame=frame, pixels=pixels,
                    use_palette=use_palette)
        return self.run(op, sprite_path)

    def draw_line(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        x1: int,
        y1: int,
        x2: int,
        y2: int,
        color: Any,
        thickness: int = 1,
        use_palette: bool = False,
    ) -> str:
        op = _build(DrawLine, layer=layer, frame=frame, start=(x1, y1), end=(x2, y2),
                    color=color, thickness=thickness, use_palette=use_palette)
        return self.run(op, sprite_path)

    def draw_contour(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        points: Sequence[Any],
        color: Any,
        thickness: int = 1,
        closed: bool = False,
        use_palette: bool = False,
    ) -> str:
        op = _build(DrawContour, layer=layer, frame=frame, points=points, color=color,
                    thickness=thickness, closed=closed, use_palette=use_palette)
        return self.run(op, sprite_path)

    def draw_rectangle(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        x: int,
        y: int,
        width: int,
        height: int,
        color: Any,
        filled: bool = False,
        use_palette: bool = False,
    ) -> str:
        op = _build(DrawRectangle, layer=layer, frame=frame, x=x, y=y, width=width,
                    height=height, color=color, filled=filled, use_palette=use_palette)
        return self.run(op, sprite_path)

    def draw_circle(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        center_x: int,
        center_y: int,
        radius: int,
        color: Any,
        filled: bool = False,
        use_palette: bool = False,
    ) -> str:
        op = _build(DrawCircle, layer=layer, frame=frame, center_x=center_x,
                    center_y=center_y, radius=radius, color=color, filled=filled,
                    use_palette=use_palette)
        return self.run(op, sprite_path)

    def fill_area(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        x: int,
        y: int,
        color: Any,
        tolerance: int = 0,
        use_palette: bool = False,
    ) -> str:
        op = _build(FillArea, layer=layer, frame=frame, x=x, y=y, color=color,
                    tolerance=tolerance, use_palette=use_palette)
        return self.run(op, sprite_path)

    def draw_with_dither(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        x: int,
        y: int,
        width: int,
        height: int,
        color1: Any,
        color2: Any,
        pattern: str = "bayer_4x4",
        ratio: float = 0.5,
    ) -> str:
        op = _build(DrawWithDither, layer=layer, frame=frame, x=x, y=y, width=width,
                    height=height, color1=color1, color2=color2, pattern=pattern,
                    ratio=ratio)
        return self.run(op, sprite_path)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_pixels(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        x: int,
        y: int,
        width: int,
        height: int,
        cursor: str | None = None,
        page_size: int | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> PixelPage:
        """Read one page of a rectangle in row-major order.

        Parameters
        ----------
        cursor : str | None
            ``next_cursor`` of the previous page; ``None``/``""`` starts
            at the first pixel.
        page_size : int | None
            Pixels per page; ``None`` → 1000, otherwise clamped to
            ``[1, 10000]``.

        Raises
        ------
        ToolValidationError
            Invalid rectangle, frame, or cursor.
        """
        # Validates layer, frame and rectangle before the cursor is looked at
        _build(GetPixels, layer=layer, frame=frame, x=x, y=y, width=width, height=height)
        try:
            region = PixelRegion(layer, frame, x, y, width, height)
            page = plan_page(region, cursor, page_size)
        except ValueError as exc:
            raise ToolValidationError(str(exc)) from exc

        op = _build(GetPixels, layer=layer, frame=frame, x=x, y=y, width=width,
                    height=height, offset=page.offset, count=page.count)
        pixels = self.run(op, sprite_path, cancel=cancel)
        return PixelPage(
            pixels=pixels,
            next_cursor=next_cursor(region, page.offset, len(pixels)),
            total_pixels=region.total,
            offset=page.offset,
        )

    def iter_pixels(
        self,
        sprite_path: str | Path,
        layer: str,
        frame: int,
        x: int,
        y: int,
        width: int,
        height: int,
        page_size: int | None = None,
    ) -> Iterator[Pixel]:
        """Yield every pixel of the rectangle, following the cursor chain."""
        cursor: str | None = None
        while True:
            page = self.get_pixels(sprite_path, layer, frame, x, y, width, height,
                                   cursor=cursor, page_size=page_size)
            yield from page.pixels
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_sprite(
        self, sprite_path: str | Path, output_path: str | Path, frame: int = 0,
    ) -> ExportResult:
        """Flatten visible layers into *output_path* (frame 0 = all frames)."""
        op = _build(ExportSprite, output_path=str(output_path), frame=frame)
        return self.run(op, sprite_path)

    def export_spritesheet(
        self,
        sprite_path: str | Path,
        output_path: str | Path,
        layout: str = "horizontal",
        padding: int = 0,
        include_json: bool = False,
    ) -> SpritesheetResult:
        op = _build(ExportSpritesheet, output_path=str(output_path), layout=layout,
                    padding=padding, include_json=include_json)
        return self.run(op, sprite_path)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def save_as(self, sprite_path: str | Path, output_path: str | Path) -> str:
        """Write a copy of the sprite to *output_path*; returns that path.

        Parent directories of *output_path* are created first.
        """
        op = _build(SaveAs, output_path=str(output_path))
        ensure_dir(Path(op.output_path).parent)
        return self.run(op, sprite_path)

    def import_image(
        self,
        sprite_path: str | Path,
        image_path: str | Path,
        layer: str,
        frame: int,
        x: int = 0,
        y: int = 0,
    ) -> str:
        """Place an image file as a cel; *layer* is created if missing.

        Raises
        ------
        ToolValidationError
            If *image_path* does not exist or Pillow cannot read it.
        """
        op = _build(ImportImage, layer=layer, frame=frame, image_path=str(image_path),
                    x=x, y=y)
        try:
            summary = image_summary(op.image_path)
        except (OSError, UnidentifiedImageError) as exc:
            raise ToolValidationError(f"Cannot import {op.image_path}: {exc}") from exc
        logger.debug("Importing %dx%d %s image", summary["width"], summary["height"],
                     summary["format"])
        return self.run(op, sprite_path)

    # ------------------------------------------------------------------
    # Output parsing
    # ------------------------------------------------------------------

    def _parse(self, op: Operation, output: str) -> Any:
        if isinstance(op, CreateCanvas):
            return op.path
        if isinstance(op, (AddFrame, DuplicateFrame)):
            return _parse_frame_number(op, output)
        if isinstance(op, GetSpriteInfo):
            return _parse_sprite_info(_parse_json(op, output))
        if isinstance(op, GetPalette):
            return _parse_palette(_parse_json(op, output))
        if isinstance(op, GetPixels):
            return _parse_pixels(op, _parse_json(op, output))
        if isinstance(op, ExportSpritesheet):
            return _parse_spritesheet(_parse_json(op, output))
        if isinstance(op, SaveAs):
            return _parse_saved_path(_parse_json(op, output))

        marker = SUCCESS_MARKERS[type(op)]
        if marker not in output:
            raise ToolError(
                f"{operation_name(op)}: engine output lacks {marker!r}: {output!r}"
            )
        if isinstance(op, ExportSprite):
            return _export_result(op)
        return marker

    @contextmanager
    def _hold(self, path: str | Path) -> Iterator[None]:
        if self._locks is None:
            yield
            return
        with self._locks.hold(path):
            yield


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build(cls: type[Operation], **params: Any) -> Operation:
    try:
        return cls(**params)
    except (ValueError, TypeError) as exc:
        raise ToolValidationError(str(exc)) from exc


def _match_refusal(diagnostic: str) -> str | None:
    for refusal in REFUSALS:
        if refusal in diagnostic:
            return refusal
    return None


def _parse_json(op: Operation, output: str) -> Any:
    """Decode the JSON document the script printed.

    The engine may print warnings before the script's own output, so the
    last non-empty line is tried when the whole text is not JSON.
    """
    text = output.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    lines = [line for line in text.splitlines() if line.strip()]
    if lines:
        try:
            return json.loads(lines[-1])
        except json.JSONDecodeError:
            pass
    raise ToolError(f"{operation_name(op)}: engine output is not JSON: {output!r}")


def _parse_frame_number(op: Operation, output: str) -> int:
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines or not lines[-1].isdigit():
        raise ToolError(f"{operation_name(op)}: expected a frame number, got {output!r}")
    return int(lines[-1])


def _parse_sprite_info(data: Any) -> SpriteInfo:
    try:
        return SpriteInfo(
            width=int(data["width"]),
            height=int(data["height"]),
            color_mode=str(data["color_mode"]),
            frame_count=int(data["frame_count"]),
            layer_count=int(data["layer_count"]),
            layers=tuple(
                LayerInfo(name=str(l["name"]), visible=bool(l["visible"]))
                for l in data["layers"]
            ),
            frame_durations_ms=tuple(int(d) for d in data.get("frame_durations_ms", [])),
            transparent_index=int(data.get("transparent_index", 0)),
            tags=tuple(
                TagInfo(
                    name=str(t["name"]),
                    from_frame=int(t["from_frame"]),
                    to_frame=int(t["to_frame"]),
                    direction=str(t["direction"]),
                )
                for t in data.get("tags", [])
            ),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ToolError(f"get_sprite_info: malformed result: {exc}") from exc


def _parse_palette(data: Any) -> PaletteInfo:
    try:
        colors = tuple(Color.from_hex(c) for c in data["colors"])
        size = int(data["size"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ToolError(f"get_palette: malformed result: {exc}") from exc
    if size != len(colors):
        raise ToolError(f"get_palette: size {size} does not match {len(colors)} colors")
    return PaletteInfo(colors=colors)


def _parse_pixels(op: GetPixels, data: Any) -> tuple[Pixel, ...]:
    if not isinstance(data, list):
        raise ToolError(f"get_pixels: expected a JSON array, got {type(data).__name__}")
    try:
        pixels = tuple(
            Pixel(int(p["x"]), int(p["y"]), Color.from_hex(p["color"])) for p in data
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ToolError(f"get_pixels: malformed pixel entry: {exc}") from exc
    if len(pixels) != op.expected_count:
        raise ToolError(
            f"get_pixels: expected {op.expected_count} pixels, engine returned {len(pixels)}"
        )
    return pixels


def _parse_saved_path(data: Any) -> str:
    try:
        if data["success"] is not True:
            raise ValueError(f"success is {data['success']!r}")
        return str(data["file_path"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ToolError(f"save_as: malformed result: {exc}") from exc


def _parse_spritesheet(data: Any) -> SpritesheetResult:
    try:
        return SpritesheetResult(
            spritesheet_path=str(data["spritesheet_path"]),
            frame_count=int(data["frame_count"]),
            metadata_path=data.get("metadata_path"),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ToolError(f"export_spritesheet: malformed result: {exc}") from exc


def _export_result(op: ExportSprite) -> ExportResult:
    path = Path(op.output_path)
    if not path.exists():
        # Multi-frame exports to single-image formats are written as a
        # numbered sequence; there is no single file to describe
        return ExportResult(path=str(path), frame=op.frame, size_bytes=None, image=None)
    return ExportResult(
        path=str(path),
        frame=op.frame,
        size_bytes=path.stat().st_size,
        image=image_summary(path),
    )
