"""Sprite operations -- immutable descriptors rendered into Lua scripts."""

from sprite_control.ops.operations import (
    OPERATION_TYPES,
    AddFrame,
    AddLayer,
    CreateCanvas,
    DeleteFrame,
    DeleteLayer,
    DrawCircle,
    DrawContour,
    DrawLine,
    DrawPixels,
    DrawRectangle,
    DrawWithDither,
    ExportSprite,
    ExportSpritesheet,
    FillArea,
    GetPalette,
    GetPixels,
    GetSpriteInfo,
    LayerFrameOperation,
    Operation,
    Pixel,
    Point,
    SetFrameDuration,
    SetPalette,
    build_operation,
    operation_name,
)

__all__ = [
    "OPERATION_TYPES",
    "AddFrame",
    "AddLayer",
    "CreateCanvas",
    "DeleteFrame",
    "DeleteLayer",
    "DrawCircle",
    "DrawContour",
    "DrawLine",
    "DrawPixels",
    "DrawRectangle",
    "DrawWithDither",
    "ExportSprite",
    "ExportSpritesheet",
    "FillArea",
    "GetPalette",
    "GetPixels",
    "GetSpriteInfo",
    "LayerFrameOperation",
    "Operation",
    "Pixel",
    "Point",
    "SetFrameDuration",
    "SetPalette",
    "build_operation",
    "operation_name",
]
