"""Lua script generation from sprite operations."""

from sprite_control.lua.generator import (
    LuaGenerator,
    ScriptGenerationError,
    lua_literal,
    lua_string,
)

__all__ = ["LuaGenerator", "ScriptGenerationError", "lua_literal", "lua_string"]
