"""Test color primitives and palette snapping.

Tests for sprite_utils.color:
    - Hex parsing (6/8 digits, optional '#', case-insensitive) and rejection
    - Canonical uppercase #RRGGBBAA formatting
    - Nearest palette index: squared RGB distance, lowest index on ties
    - Alpha handling when snapping

Run:
    pytest tests/test_color.py -v
"""

from __future__ import annotations

import numpy as np
import pytest

from sprite_utils.color import (
    TRANSPARENT_HEX,
    Color,
    nearest_palette_color,
    nearest_palette_index,
    parse_palette,
    squared_rgb_distance,
)


class TestColorParsing:
    def test_rgb_hex_defaults_to_opaque(self) -> None:
        assert Color.from_hex("#FF0000") == Color(255, 0, 0, 255)

    def test_rgba_hex(self) -> None:
        assert Color.from_hex("#11223344") == Color(0x11, 0x22, 0x33, 0x44)

    def test_hash_optional_and_case_insensitive(self) -> None:
        assert Color.from_hex("00ff00") == Color.from_hex("#00FF00")
        assert Color.from_hex("aAbBcCdD") == Color(0xAA, 0xBB, 0xCC, 0xDD)

    @pytest.mark.parametrize("text", ["#FFF", "#FF00000", "#GG0000", "", "#FF0000FF00", "red"])
    def test_invalid_hex_rejected(self, text: str) -> None:
        with pytest.raises(ValueError, match="Invalid hex color"):
            Color.from_hex(text)

    def test_non_string_rejected(self) -> None:
        with pytest.raises(ValueError, match="must be a string"):
            Color.from_hex(0xFF0000)  # type: ignore[arg-type]

    def test_channel_range_checked(self) -> None:
        with pytest.raises(ValueError, match=r"in \[0, 255\]"):
            Color(256, 0, 0)
        with pytest.raises(ValueError, match=r"in \[0, 255\]"):
            Color(0, 0, 0, -1)

    def test_bool_channel_rejected(self) -> None:
        with pytest.raises(ValueError, match="must be an int"):
            Color(True, 0, 0)  # type: ignore[arg-type]

    def test_numpy_integer_channels_accepted(self) -> None:
        assert Color(np.uint8(10), 0, 0).r == 10

    def test_coerce_sequences(self) -> None:
        assert Color.coerce((1, 2, 3)) == Color(1, 2, 3, 255)
        assert Color.coerce([1, 2, 3, 4]) == Color(1, 2, 3, 4)
        with pytest.raises(ValueError, match="3 or 4 channels"):
            Color.coerce((1, 2))

    def test_alpha_given_tracks_source_form(self) -> None:
        assert not Color.from_hex("#102030").alpha_given
        assert Color.from_hex("#102030FF").alpha_given
        assert not Color.coerce((1, 2, 3)).alpha_given
        assert Color.coerce((1, 2, 3, 255)).alpha_given
        assert Color(1, 2, 3).alpha_given
        assert Color.from_hex("#102030").with_alpha(9).alpha_given

    def test_frozen(self) -> None:
        c = Color(1, 2, 3)
        with pytest.raises(AttributeError):
            c.r = 5  # type: ignore[misc]


class TestColorFormatting:
    def test_to_hex_uppercase_with_alpha(self) -> None:
        assert Color(171, 205, 239).to_hex() == "#ABCDEFFF"

    def test_to_hex_rgb(self) -> None:
        assert Color(1, 2, 3, 4).to_hex_rgb() == "#010203"

    def test_hex_roundtrip_is_canonical(self) -> None:
        assert Color.from_hex("#abcdef80").to_hex() == "#ABCDEF80"

    def test_transparent_constant(self) -> None:
        assert Color.from_hex(TRANSPARENT_HEX).is_transparent
        assert Color(0, 0, 0, 0).to_hex() == TRANSPARENT_HEX

    def test_with_alpha(self) -> None:
        assert Color(9, 9, 9).with_alpha(0) == Color(9, 9, 9, 0)


class TestPaletteSnapping:
    PALETTE = ["#000000", "#FF0000", "#00FF00", "#0000FF", "#FFFFFF"]

    def test_squared_distance(self) -> None:
        assert squared_rgb_distance("#000000", "#030405") == 9 + 16 + 25

    def test_distance_ignores_alpha(self) -> None:
        assert squared_rgb_distance(Color(1, 1, 1, 0), Color(1, 1, 1, 255)) == 0

    def test_exact_match(self) -> None:
        assert nearest_palette_index("#00FF00", self.PALETTE) == 2

    def test_nearest(self) -> None:
        assert nearest_palette_index(Color(250, 10, 10), self.PALETTE) == 1
        assert nearest_palette_index(Color(200, 200, 210), self.PALETTE) == 4

    def test_result_is_argmin(self) -> None:
        palette = parse_palette(["#102030", "#405060", "#708090", "#A0B0C0"])
        query = Color(90, 100, 110)
        idx = nearest_palette_index(query, palette)
        distances = [squared_rgb_distance(query, p) for p in palette]
        assert distances[idx] == min(distances)

    def test_tie_goes_to_lowest_index(self) -> None:
        # (0,0,0) and (2,0,0) are both at distance 1 from (1,0,0)
        palette = [Color(2, 0, 0), Color(0, 0, 0)]
        assert nearest_palette_index(Color(1, 0, 0), palette) == 0
        assert nearest_palette_index(Color(1, 0, 0), list(reversed(palette))) == 0

    def test_duplicate_entries_lowest_index(self) -> None:
        palette = ["#FF0000", "#00FF00", "#00FF00"]
        assert nearest_palette_index("#00FF00", palette) == 1

    def test_exclude_skips_index(self) -> None:
        palette = ["#000000", "#000000", "#FFFFFF"]
        assert nearest_palette_index("#000000", palette, exclude=0) == 1

    def test_exclude_out_of_range_ignored(self) -> None:
        assert nearest_palette_index("#000000", self.PALETTE, exclude=99) == 0

    def test_empty_palette_rejected(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            nearest_palette_index("#000000", [])

    def test_excluding_only_entry_rejected(self) -> None:
        with pytest.raises(ValueError, match="no entries besides"):
            nearest_palette_index("#000000", ["#000000"], exclude=0)

    def test_snapped_color_keeps_query_alpha(self) -> None:
        snapped = nearest_palette_color(Color(250, 0, 0, 128), self.PALETTE)
        assert snapped == Color(255, 0, 0, 128)

    def test_rgb_query_takes_palette_alpha(self) -> None:
        palette = ["#FF000080", "#00FF00"]
        assert nearest_palette_color("#FE0000", palette) == Color(255, 0, 0, 0x80)
        assert nearest_palette_color((254, 0, 0), palette) == Color(255, 0, 0, 0x80)

    def test_coerced_rgb_query_takes_palette_alpha(self) -> None:
        query = Color.coerce("#F01010")
        snapped = nearest_palette_color(query, [Color(255, 0, 0, 128)])
        assert snapped.a == 128
        assert snapped.alpha_given
