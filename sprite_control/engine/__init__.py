"""
Engine communication module.

Runs generated Lua scripts through the Aseprite executable in batch mode
with bounded duration and typed failures.
"""

from sprite_control.engine.aseprite_client import (
    AsepriteClient,
    AsepriteError,
    EngineCancelledError,
    EngineNotFoundError,
    EngineTimeoutError,
    ExecutionInterrupted,
    ScriptError,
    SpriteNotFoundError,
)

__all__ = [
    "AsepriteClient",
    "AsepriteError",
    "EngineCancelledError",
    "EngineNotFoundError",
    "EngineTimeoutError",
    "ExecutionInterrupted",
    "ScriptError",
    "SpriteNotFoundError",
]
