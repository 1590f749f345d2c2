"""Ordered-dither threshold matrices.

Each named pattern is a small periodic integer matrix.  The threshold at
canvas position ``(x, y)`` is::

    matrix[y mod N][x mod N] / levels

where ``levels`` is one more than the largest entry (``N*N`` for the
Bayer matrices, ``2`` for the binary texture patterns), so thresholds
always lie in ``[0, 1)``.  A pixel takes ``color1`` when the requested
ratio is strictly greater than its threshold and ``color2`` otherwise.

The generated dither script embeds these exact matrices, so anything
computed here (expected split, per-pixel choice) matches what the
engine writes.
"""

from __future__ import annotations

from typing import Literal

import numpy as np

# ---------------------------------------------------------------------------
# Pattern table
# ---------------------------------------------------------------------------

_BAYER_2 = [
    [0, 2],
    [3, 1],
]

_BAYER_4 = [
    [0, 8, 2, 10],
    [12, 4, 14, 6],
    [3, 11, 1, 9],
    [15, 7, 13, 5],
]

_BAYER_8 = [
    [0, 32, 8, 40, 2, 34, 10, 42],
    [48, 16, 56, 24, 50, 18, 58, 26],
    [12, 44, 4, 36, 14, 46, 6, 38],
    [60, 28, 52, 20, 62, 30, 54, 22],
    [3, 35, 11, 43, 1, 33, 9, 41],
    [51, 19, 59, 27, 49, 17, 57, 25],
    [15, 47, 7, 39, 13, 45, 5, 37],
    [63, 31, 55, 23, 61, 29, 53, 21],
]

PATTERNS: dict[str, np.ndarray] = {
    "bayer_2x2": np.array(_BAYER_2, dtype=np.int32),
    "bayer_4x4": np.array(_BAYER_4, dtype=np.int32),
    "bayer_8x8": np.array(_BAYER_8, dtype=np.int32),
    "checkerboard": np.array([[0, 1], [1, 0]], dtype=np.int32),
    "grass": np.array([
        [1, 0, 1, 0, 1, 0],
        [0, 1, 1, 0, 0, 1],
        [1, 1, 0, 1, 0, 0],
        [0, 1, 0, 1, 1, 0],
        [1, 0, 0, 0, 1, 1],
        [0, 0, 1, 1, 0, 1],
    ], dtype=np.int32),
    "water": np.array([
        [0, 0, 1, 1, 0, 0],
        [0, 1, 1, 1, 1, 0],
        [1, 1, 0, 0, 1, 1],
        [1, 0, 0, 0, 0, 1],
        [0, 1, 1, 1, 1, 0],
        [0, 0, 1, 1, 0, 0],
    ], dtype=np.int32),
    "stone": np.array([
        [0, 0, 0, 1, 1, 0],
        [0, 1, 0, 0, 1, 1],
        [0, 0, 1, 1, 0, 0],
        [1, 1, 0, 0, 0, 1],
        [1, 0, 0, 1, 1, 0],
        [0, 1, 1, 0, 0, 0],
    ], dtype=np.int32),
    "cloud": np.array([
        [0, 0, 0, 0, 1, 1],
        [0, 0, 0, 1, 1, 1],
        [0, 0, 1, 1, 1, 0],
        [0, 1, 1, 1, 0, 0],
        [1, 1, 1, 0, 0, 0],
        [1, 1, 0, 0, 0, 0],
    ], dtype=np.int32),
    "brick": np.array([
        [0, 0, 0, 0, 1, 0, 0, 0],
        [0, 0, 0, 0, 1, 0, 0, 0],
        [1, 1, 1, 1, 1, 1, 1, 1],
        [0, 0, 1, 0, 0, 0, 0, 1],
        [0, 0, 1, 0, 0, 0, 0, 1],
        [1, 1, 1, 1, 1, 1, 1, 1],
        [0, 0, 0, 0, 1, 0, 0, 0],
        [0, 0, 0, 0, 1, 0, 0, 0],
    ], dtype=np.int32),
    "dots": np.array([
        [1, 0, 0, 0],
        [0, 0, 0, 0],
        [0, 0, 1, 0],
        [0, 0, 0, 0],
    ], dtype=np.int32),
    "diagonal": np.array([
        [1, 0, 0, 0],
        [0, 1, 0, 0],
        [0, 0, 1, 0],
        [0, 0, 0, 1],
    ], dtype=np.int32),
    "cross": np.array([
        [0, 1, 0],
        [1, 1, 1],
        [0, 1, 0],
    ], dtype=np.int32),
    "noise": np.array([
        [1, 0, 1, 0, 0, 1],
        [0, 1, 0, 1, 1, 0],
        [1, 0, 0, 1, 0, 1],
        [0, 1, 1, 0, 1, 0],
        [0, 0, 1, 0, 1, 1],
        [1, 1, 0, 1, 0, 0],
    ], dtype=np.int32),
    "horizontal_lines": np.array([
        [1, 1, 1, 1],
        [0, 0, 0, 0],
        [1, 1, 1, 1],
        [0, 0, 0, 0],
    ], dtype=np.int32),
    "vertical_lines": np.array([
        [1, 0, 1, 0],
        [1, 0, 1, 0],
        [1, 0, 1, 0],
        [1, 0, 1, 0],
    ], dtype=np.int32),
}

for _m in PATTERNS.values():
    _m.setflags(write=False)

PATTERN_NAMES: tuple[str, ...] = tuple(PATTERNS)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def get_matrix(pattern: str) -> np.ndarray:
    """Return the read-only threshold matrix for *pattern*.

    Raises
    ------
    ValueError
        If *pattern* is not a known pattern name.
    """
    try:
        return PATTERNS[pattern]
    except KeyError:
        raise ValueError(
            f"Unsupported dither pattern {pattern!r}; "
            f"expected one of: {', '.join(PATTERN_NAMES)}"
        ) from None


def pattern_levels(pattern: str) -> int:
    """Number of threshold levels (normalization divisor) of *pattern*."""
    return int(get_matrix(pattern).max()) + 1


def dither_threshold(pattern: str, x: int, y: int) -> float:
    """Normalized threshold in ``[0, 1)`` at canvas position ``(x, y)``."""
    m = get_matrix(pattern)
    n_rows, n_cols = m.shape
    return float(m[y % n_rows, x % n_cols]) / pattern_levels(pattern)


def dither_choice(pattern: str, ratio: float, x: int, y: int) -> Literal[1, 2]:
    """Which of the two colors lands on ``(x, y)`` for *ratio*."""
    return 1 if ratio > dither_threshold(pattern, x, y) else 2


def dither_mask(
    pattern: str,
    ratio: float,
    x: int,
    y: int,
    width: int,
    height: int,
) -> np.ndarray:
    """Boolean ``(height, width)`` mask, ``True`` where ``color1`` is written.

    Positions are absolute canvas coordinates starting at ``(x, y)``.
    """
    if width < 1 or height < 1:
        raise ValueError(f"Dither rect must be at least 1x1, got {width}x{height}")
    m = get_matrix(pattern)
    n_rows, n_cols = m.shape
    ys = (np.arange(y, y + height) % n_rows)[:, None]
    xs = (np.arange(x, x + width) % n_cols)[None, :]
    thresholds = m[ys, xs] / float(pattern_levels(pattern))
    return ratio > thresholds
