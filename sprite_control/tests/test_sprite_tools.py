"""Tests for the sprite tools facade.

Uses a mocked ``AsepriteClient`` to verify:
    - Validation errors are raised before the engine is called
    - Success markers are required; JSON output is parsed into typed results
    - Lifecycle refusals become DomainRefusal with the engine text intact
    - Pixel reads follow the cursor chain over the whole rectangle
    - Calls on the same sprite path are serialized
"""

from __future__ import annotations

import json
import pickle
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from PIL import Image

from sprite_control.engine.aseprite_client import AsepriteClient, EngineTimeoutError, ScriptError
from sprite_control.ops.operations import CreateCanvas, GetPalette, Pixel
from sprite_control.tools.sprite_tools import (
    DomainRefusal,
    ExportResult,
    PaletteInfo,
    PathLocks,
    SpriteInfo,
    SpritesheetResult,
    SpriteTools,
    TagInfo,
    ToolError,
    ToolValidationError,
)
from sprite_utils.color import Color

SPRITE = "hero.aseprite"


@pytest.fixture()
def client() -> MagicMock:
    return MagicMock(spec=AsepriteClient)


@pytest.fixture()
def tools(client: MagicMock) -> SpriteTools:
    return SpriteTools(client)


def _binding(script: str, name: str) -> str:
    m = re.search(rf"^local {name} = (.*)$", script, re.MULTILINE)
    assert m is not None
    return m.group(1)


def _fake_pixel_engine(width: int, color: str = "#FF0000FF"):
    """execute_lua side effect that answers get_pixels scripts like the engine."""

    def run(script, sprite_path=None, *, timeout=None, cancel=None):
        offset = int(_binding(script, "offset"))
        count = int(_binding(script, "count"))
        x0 = int(_binding(script, "x"))
        y0 = int(_binding(script, "y"))
        total = width * int(_binding(script, "height"))
        out = []
        for i in range(offset, min(offset + count, total)):
            out.append({"x": x0 + i % width, "y": y0 + i // width, "color": color})
        return json.dumps(out) + "\n"

    return run


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_bad_canvas_never_reaches_engine(self, tools: SpriteTools, client: MagicMock) -> None:
        with pytest.raises(ToolValidationError, match="width"):
            tools.create_canvas(0, 10, "rgb", "a.aseprite")
        client.execute_lua.assert_not_called()

    def test_bad_color(self, tools: SpriteTools, client: MagicMock) -> None:
        with pytest.raises(ToolValidationError, match="Invalid hex color"):
            tools.draw_pixels(SPRITE, "Layer 1", 1, [(0, 0, "#XYZ")])
        client.execute_lua.assert_not_called()

    def test_validation_error_is_value_error(self) -> None:
        assert issubclass(ToolValidationError, ValueError)
        assert issubclass(ToolValidationError, ToolError)

    def test_sprite_path_required(self, tools: SpriteTools, client: MagicMock) -> None:
        with pytest.raises(ToolValidationError, match="requires a sprite path"):
            tools.run(GetPalette(), None)
        client.execute_lua.assert_not_called()

    def test_invalid_cursor(self, tools: SpriteTools, client: MagicMock) -> None:
        with pytest.raises(ToolValidationError, match="invalid cursor"):
            tools.get_pixels(SPRITE, "Layer 1", 1, 0, 0, 4, 4, cursor="bogus!")
        client.execute_lua.assert_not_called()

    def test_import_missing_image(
        self, tools: SpriteTools, client: MagicMock, tmp_path: Path,
    ) -> None:
        with pytest.raises(ToolValidationError, match="Cannot import"):
            tools.import_image(SPRITE, tmp_path / "nope.png", "Ref", 1)
        client.execute_lua.assert_not_called()

    def test_import_unreadable_image(
        self, tools: SpriteTools, client: MagicMock, tmp_path: Path,
    ) -> None:
        bogus = tmp_path / "notes.png"
        bogus.write_text("not an image")
        with pytest.raises(ToolValidationError, match="Cannot import"):
            tools.import_image(SPRITE, bogus, "Ref", 1)
        client.execute_lua.assert_not_called()

    def test_tag_range_checked(self, tools: SpriteTools, client: MagicMock) -> None:
        with pytest.raises(ToolValidationError, match="from_frame must be <= to_frame"):
            tools.create_tag(SPRITE, "walk", 3, 1)
        client.execute_lua.assert_not_called()

    def test_bad_pattern(self, tools: SpriteTools, client: MagicMock) -> None:
        with pytest.raises(ToolValidationError, match="Unsupported dither pattern"):
            tools.draw_with_dither(SPRITE, "L", 1, 0, 0, 4, 4, "#000000", "#FFFFFF",
                                   pattern="floyd_steinberg")
        client.execute_lua.assert_not_called()


# ---------------------------------------------------------------------------
# Execution and markers
# ---------------------------------------------------------------------------


class TestExecution:
    def test_create_canvas_runs_without_document(
        self, tools: SpriteTools, client: MagicMock,
    ) -> None:
        client.execute_lua.return_value = "out/a.aseprite\n"
        assert tools.create_canvas(8, 8, "indexed", "out/a.aseprite") == "out/a.aseprite"
        script, sprite = client.execute_lua.call_args.args
        assert sprite is None
        assert "ColorMode.INDEXED" in script

    def test_marker_required(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = "Layer added successfully\n"
        assert tools.add_layer(SPRITE, "Outline") == "Layer added successfully"
        client.execute_lua.assert_called_once()
        assert client.execute_lua.call_args.args[1] == SPRITE

    def test_missing_marker(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = "\n"
        with pytest.raises(ToolError, match="lacks 'Pixels drawn successfully'"):
            tools.draw_pixels(SPRITE, "Layer 1", 1, [(0, 0, "#FF0000")])

    def test_timeout_and_cancel_forwarded(self, client: MagicMock) -> None:
        client.execute_lua.return_value = "Line drawn successfully"
        tools = SpriteTools(client, timeout=5.0)
        tools.draw_line(SPRITE, "L", 1, 0, 0, 3, 3, "#000000")
        kwargs = client.execute_lua.call_args.kwargs
        assert kwargs == {"timeout": 5.0, "cancel": None}

    @pytest.mark.parametrize("call, marker", [
        (lambda t: t.delete_layer(SPRITE, "L"), "Layer deleted successfully"),
        (lambda t: t.delete_frame(SPRITE, 2), "Frame deleted successfully"),
        (lambda t: t.set_frame_duration(SPRITE, 1, 80), "Frame duration set successfully"),
        (lambda t: t.set_palette(SPRITE, ["#000000"]), "Palette set successfully"),
        (lambda t: t.draw_contour(SPRITE, "L", 1, [(0, 0), (2, 2)], "#000000"),
         "Contour drawn successfully"),
        (lambda t: t.draw_rectangle(SPRITE, "L", 1, 0, 0, 2, 2, "#000000"),
         "Rectangle drawn successfully"),
        (lambda t: t.draw_circle(SPRITE, "L", 1, 4, 4, 2, "#000000"), "Circle drawn successfully"),
        (lambda t: t.fill_area(SPRITE, "L", 1, 0, 0, "#000000"), "Area filled successfully"),
        (lambda t: t.draw_with_dither(SPRITE, "L", 1, 0, 0, 4, 4, "#000000", "#FFFFFF"),
         "Dithering applied successfully"),
        (lambda t: t.create_tag(SPRITE, "walk", 1, 2), "Tag created successfully"),
        (lambda t: t.delete_tag(SPRITE, "walk"), "Tag deleted successfully"),
        (lambda t: t.link_cel(SPRITE, "L", 1, 2), "Cel linked successfully"),
    ])
    def test_success_strings(self, tools: SpriteTools, client: MagicMock, call, marker) -> None:
        client.execute_lua.return_value = marker + "\n"
        assert call(tools) == marker

    def test_engine_errors_propagate(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.side_effect = EngineTimeoutError("aseprite command timed out after 30s")
        with pytest.raises(EngineTimeoutError):
            tools.add_layer(SPRITE, "L")
        assert client.execute_lua.call_count == 1


class TestRefusals:
    def test_last_layer(self, tools: SpriteTools, client: MagicMock) -> None:
        stderr = "script.lua:40: Cannot delete the last layer\n"
        client.execute_lua.side_effect = ScriptError(1, stderr, "")
        with pytest.raises(DomainRefusal) as exc_info:
            tools.delete_layer(SPRITE, "Layer 1")
        err = exc_info.value
        assert isinstance(err, ScriptError)
        assert err.refusal == "Cannot delete the last layer"
        assert err.stderr == stderr
        assert err.returncode == 1
        assert "Cannot delete the last layer" in str(err)

    def test_last_frame(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.side_effect = ScriptError(1, "", "Cannot delete the last frame")
        with pytest.raises(DomainRefusal, match="Cannot delete the last frame"):
            tools.delete_frame(SPRITE, 1)

    def test_other_script_errors_unchanged(self, tools: SpriteTools, client: MagicMock) -> None:
        original = ScriptError(1, "Layer not found: Ghost", "")
        client.execute_lua.side_effect = original
        with pytest.raises(ScriptError) as exc_info:
            tools.delete_layer(SPRITE, "Ghost")
        assert exc_info.value is original
        assert not isinstance(exc_info.value, DomainRefusal)

    def test_refusal_pickles(self) -> None:
        err = DomainRefusal(1, "Cannot delete the last layer", "", "Cannot delete the last layer")
        clone = pickle.loads(pickle.dumps(err))
        assert clone.refusal == err.refusal
        assert clone.stderr == err.stderr


# ---------------------------------------------------------------------------
# Parsed results
# ---------------------------------------------------------------------------


class TestResults:
    def test_sprite_info(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = (
            "warning: something unrelated\n"
            '{"width":64,"height":32,"color_mode":"indexed","frame_count":2,'
            '"layer_count":2,"layers":[{"name":"Layer 1","visible":true},'
            '{"name":"Shade","visible":false}],"frame_durations_ms":[100,80],'
            '"transparent_index":255}\n'
        )
        info = tools.get_sprite_info(SPRITE)
        assert isinstance(info, SpriteInfo)
        assert (info.width, info.height, info.color_mode) == (64, 32, "indexed")
        assert info.layer_names == ["Layer 1", "Shade"]
        assert info.layers[1].visible is False
        assert info.frame_durations_ms == (100, 80)
        assert info.transparent_index == 255

    def test_sprite_info_malformed(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = '{"width":64}'
        with pytest.raises(ToolError, match="malformed"):
            tools.get_sprite_info(SPRITE)

    def test_not_json(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = "oops"
        with pytest.raises(ToolError, match="not JSON"):
            tools.get_palette(SPRITE)

    def test_palette(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = '{"colors":["#000000FF","#FF000080"],"size":2}'
        palette = tools.get_palette(SPRITE)
        assert isinstance(palette, PaletteInfo)
        assert palette.colors == (Color(0, 0, 0), Color(255, 0, 0, 128))
        assert palette.size == 2

    def test_palette_size_mismatch(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = '{"colors":["#000000FF"],"size":3}'
        with pytest.raises(ToolError, match="does not match"):
            tools.get_palette(SPRITE)

    def test_add_frame_count(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = "3\n"
        assert tools.add_frame(SPRITE, 120) == 3
        assert _binding(client.execute_lua.call_args.args[0], "durationMs") == "120"

    def test_add_frame_garbage(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = "done"
        with pytest.raises(ToolError, match="expected a frame number"):
            tools.add_frame(SPRITE)

    def test_spritesheet(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = (
            '{"spritesheet_path":"sheet.png","frame_count":4,"metadata_path":"sheet.json"}'
        )
        result = tools.export_spritesheet(SPRITE, "sheet.png", include_json=True)
        assert result == SpritesheetResult("sheet.png", 4, "sheet.json")

    def test_export_png(self, tools: SpriteTools, client: MagicMock, tmp_path: Path) -> None:
        out = tmp_path / "out.png"

        def write_png(script, sprite_path=None, *, timeout=None, cancel=None):
            Image.new("RGBA", (16, 8), (255, 0, 0, 255)).save(out)
            return "Exported successfully\n"

        client.execute_lua.side_effect = write_png
        result = tools.export_sprite(SPRITE, out, frame=1)
        assert isinstance(result, ExportResult)
        assert result.path == str(out)
        assert result.size_bytes == out.stat().st_size
        assert result.image["mode"] == "RGBA"
        assert (result.image["width"], result.image["height"]) == (16, 8)

    def test_export_without_single_file(
        self, tools: SpriteTools, client: MagicMock, tmp_path: Path,
    ) -> None:
        client.execute_lua.return_value = "Exported successfully\n"
        result = tools.export_sprite(SPRITE, tmp_path / "anim.png", frame=0)
        assert result.size_bytes is None
        assert result.image is None

    def test_sprite_info_tags(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = (
            '{"width":8,"height":8,"color_mode":"rgb","frame_count":4,"layer_count":1,'
            '"layers":[{"name":"Layer 1","visible":true}],"frame_durations_ms":[100,100,100,100],'
            '"tags":[{"name":"walk","from_frame":1,"to_frame":3,"direction":"pingpong"}],'
            '"transparent_index":0}'
        )
        info = tools.get_sprite_info(SPRITE)
        assert info.tags == (TagInfo("walk", 1, 3, "pingpong"),)

    def test_duplicate_frame_number(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = "2\n"
        assert tools.duplicate_frame(SPRITE, 1, insert_after=1) == 2
        script = client.execute_lua.call_args.args[0]
        assert _binding(script, "insertAfter") == "1"

    def test_save_as(self, tools: SpriteTools, client: MagicMock, tmp_path: Path) -> None:
        target = tmp_path / "copies" / "hero.aseprite"
        client.execute_lua.return_value = json.dumps(
            {"success": True, "file_path": str(target)}) + "\n"
        assert tools.save_as(SPRITE, target) == str(target)
        assert target.parent.is_dir()
        assert client.execute_lua.call_args.args[1] == SPRITE

    def test_save_as_malformed(self, tools: SpriteTools, client: MagicMock, tmp_path: Path) -> None:
        client.execute_lua.return_value = '{"success":false}'
        with pytest.raises(ToolError, match="save_as: malformed"):
            tools.save_as(SPRITE, tmp_path / "copy.aseprite")

    def test_import_image(self, tools: SpriteTools, client: MagicMock, tmp_path: Path) -> None:
        ref = tmp_path / "ref.png"
        Image.new("RGBA", (4, 4), (0, 0, 255, 255)).save(ref)
        client.execute_lua.return_value = "Image imported successfully\n"
        assert tools.import_image(SPRITE, ref, "Reference", 1, x=2) == "Image imported successfully"
        script = client.execute_lua.call_args.args[0]
        assert _binding(script, "imagePath") == f'"{ref}"'
        assert _binding(script, "x") == "2"


# ---------------------------------------------------------------------------
# Pixel reads
# ---------------------------------------------------------------------------


class TestGetPixels:
    def test_single_page(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.side_effect = _fake_pixel_engine(width=2)
        page = tools.get_pixels(SPRITE, "Layer 1", 1, 5, 6, 2, 2)
        assert page.total_pixels == 4
        assert page.next_cursor == ""
        assert page.pixels == (
            Pixel(5, 6, Color(255, 0, 0)),
            Pixel(6, 6, Color(255, 0, 0)),
            Pixel(5, 7, Color(255, 0, 0)),
            Pixel(6, 7, Color(255, 0, 0)),
        )

    def test_default_page_size(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.side_effect = _fake_pixel_engine(width=50)
        page = tools.get_pixels(SPRITE, "Layer 1", 1, 0, 0, 50, 50)
        assert len(page.pixels) == 1000
        assert page.next_cursor != ""
        assert _binding(client.execute_lua.call_args.args[0], "count") == "1000"

    def test_cursor_chain_covers_region(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.side_effect = _fake_pixel_engine(width=3)
        seen: list[tuple[int, int]] = []
        cursor = None
        pages = 0
        while True:
            page = tools.get_pixels(SPRITE, "L", 1, 0, 0, 3, 3, cursor=cursor, page_size=4)
            seen.extend((p.x, p.y) for p in page.pixels)
            pages += 1
            if not page.next_cursor:
                break
            cursor = page.next_cursor
        assert pages == 3
        assert seen == [(x, y) for y in range(3) for x in range(3)]

    def test_iter_pixels(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.side_effect = _fake_pixel_engine(width=5, color="#00000000")
        pixels = list(tools.iter_pixels(SPRITE, "L", 1, 0, 0, 5, 4, page_size=3))
        assert len(pixels) == 20
        assert all(p.color.is_transparent for p in pixels)

    def test_cursor_from_other_region(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.side_effect = _fake_pixel_engine(width=4)
        page = tools.get_pixels(SPRITE, "L", 1, 0, 0, 4, 4, page_size=2)
        with pytest.raises(ToolValidationError, match="different layer"):
            tools.get_pixels(SPRITE, "Other", 1, 0, 0, 4, 4, cursor=page.next_cursor)

    def test_count_mismatch(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = '[{"x":0,"y":0,"color":"#000000FF"}]'
        with pytest.raises(ToolError, match="expected 4 pixels"):
            tools.get_pixels(SPRITE, "L", 1, 0, 0, 2, 2)

    def test_not_a_list(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = '{"x":0}'
        with pytest.raises(ToolError, match="expected a JSON array"):
            tools.get_pixels(SPRITE, "L", 1, 0, 0, 1, 1)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class TestPathLocks:
    def test_same_path_serialized(self, client: MagicMock) -> None:
        active = 0
        peak = 0
        guard = threading.Lock()

        def slow(script, sprite_path=None, *, timeout=None, cancel=None):
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with guard:
                active -= 1
            return "Layer added successfully"

        client.execute_lua.side_effect = slow
        tools = SpriteTools(client)
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda i: tools.add_layer(SPRITE, f"L{i}"), range(4)))
        assert peak == 1

    def test_equivalent_paths_share_lock(self, tmp_path: Path) -> None:
        locks = PathLocks()
        a = tmp_path / "x.aseprite"
        b = tmp_path / "sub" / ".." / "x.aseprite"
        with locks.hold(a):
            acquired = threading.Event()

            def other() -> None:
                with locks.hold(b):
                    acquired.set()

            t = threading.Thread(target=other)
            t.start()
            assert not acquired.wait(0.1)
        t.join(timeout=2)
        assert acquired.is_set()

    def test_create_canvas_locks_target(self, tools: SpriteTools, client: MagicMock) -> None:
        client.execute_lua.return_value = "a.aseprite"
        op = CreateCanvas(width=1, height=1, color_mode="rgb", path="a.aseprite")
        assert tools.run(op) == "a.aseprite"
