"""Tool facade -- one validated, typed call per sprite operation."""

from sprite_control.tools.sprite_tools import (
    REFUSALS,
    SUCCESS_MARKERS,
    DomainRefusal,
    ExportResult,
    LayerInfo,
    PaletteInfo,
    PathLocks,
    PixelPage,
    SpriteInfo,
    SpritesheetResult,
    SpriteTools,
    ToolError,
    ToolValidationError,
)

__all__ = [
    "REFUSALS",
    "SUCCESS_MARKERS",
    "DomainRefusal",
    "ExportResult",
    "LayerInfo",
    "PaletteInfo",
    "PathLocks",
    "PixelPage",
    "SpriteInfo",
    "SpritesheetResult",
    "SpriteTools",
    "ToolError",
    "ToolValidationError",
]
