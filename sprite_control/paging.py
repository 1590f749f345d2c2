"""Cursor pagination for pixel reads.

A pixel read covers a rectangle scanned in row-major order (y ascending
outer, x ascending inner).  Large rectangles are read page by page: the
caller passes an opaque ``cursor`` and a ``page_size`` and receives the
pixels for ``[offset, min(offset + page_size, total))`` plus a
``next_cursor`` that is non-empty only while pixels remain.

Cursor format
-------------
URL-safe base64 (unpadded) of ``px1:<offset>:<region digest>``.  The
digest binds a cursor to the layer, frame and rectangle it was issued
for, so replaying it against another region is rejected instead of
silently reading the wrong pixels.  Cursors assume the sprite does not
change between pages; concurrent edits are neither detected nor
recovered from.

Every decoding failure raises ``CursorError`` (a ``ValueError``): an
invalid cursor never falls back to offset 0.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass

DEFAULT_PAGE_SIZE = 1000
MAX_PAGE_SIZE = 10000

_CURSOR_VERSION = "px1"
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class CursorError(ValueError):
    """Raised when a pagination cursor cannot be decoded for a region."""

    pass


@dataclass(frozen=True, slots=True)
class PixelRegion:
    """Rectangle of one layer in one frame, the unit a cursor belongs to."""

    layer: str
    frame: int
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ValueError(
                f"region must be at least 1x1, got {self.width}x{self.height}"
            )

    @property
    def total(self) -> int:
        return self.width * self.height

    def position(self, index: int) -> tuple[int, int]:
        """Canvas ``(x, y)`` of row-major *index*."""
        return self.x + index % self.width, self.y + index // self.width

    def digest(self) -> str:
        key = "\x00".join(
            str(v) for v in (self.layer, self.frame, self.x, self.y, self.width, self.height)
        )
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PageRequest:
    """One page of a region: positions ``[offset, offset + count)``."""

    offset: int
    count: int
    total: int

    @property
    def end(self) -> int:
        return self.offset + self.count


def clamp_page_size(page_size: int | None) -> int:
    """``None`` → ``DEFAULT_PAGE_SIZE``; otherwise clamp to ``[1, MAX_PAGE_SIZE]``."""
    if page_size is None:
        return DEFAULT_PAGE_SIZE
    if isinstance(page_size, bool) or not isinstance(page_size, int):
        raise ValueError(f"page_size must be an integer, got {page_size!r}")
    return max(1, min(page_size, MAX_PAGE_SIZE))


def encode_cursor(offset: int, region: PixelRegion) -> str:
    if offset < 0:
        raise ValueError(f"cursor offset must be >= 0, got {offset}")
    raw = f"{_CURSOR_VERSION}:{offset}:{region.digest()}".encode("ascii")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None, region: PixelRegion) -> int:
    """Offset encoded in *cursor*; ``None`` or ``""`` means the first page.

    Raises
    ------
    CursorError
        Malformed token, foreign region, or offset outside ``[0, total)``.
    """
    if cursor is None or cursor == "":
        return 0
    if not isinstance(cursor, str) or not _TOKEN_RE.match(cursor):
        raise CursorError(f"invalid cursor: {cursor!r}")

    try:
        raw = base64.urlsafe_b64decode(cursor + "=" * (-len(cursor) % 4))
        text = raw.decode("ascii")
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise CursorError(f"invalid cursor: {cursor!r}") from exc

    parts = text.split(":")
    if len(parts) != 3 or parts[0] != _CURSOR_VERSION or not parts[1].isdigit():
        raise CursorError(f"invalid cursor: {cursor!r}")
    if parts[2] != region.digest():
        raise CursorError("cursor was issued for a different layer, frame or rectangle")

    offset = int(parts[1])
    if offset >= region.total:
        raise CursorError(f"cursor offset {offset} outside region of {region.total} pixels")
    return offset


def plan_page(
    region: PixelRegion,
    cursor: str | None = None,
    page_size: int | None = None,
) -> PageRequest:
    """Resolve ``(cursor, page_size)`` into the positions to read."""
    offset = decode_cursor(cursor, region)
    size = clamp_page_size(page_size)
    count = min(size, region.total - offset)
    return PageRequest(offset=offset, count=count, total=region.total)


def next_cursor(region: PixelRegion, offset: int, returned: int) -> str:
    """Cursor for the page after ``offset + returned``; ``""`` when done."""
    following = offset + returned
    if following >= region.total:
        return ""
    return encode_cursor(following, region)
