"""
Sprite Control Package.

Drives the Aseprite batch engine through generated Lua scripts: every
operation is validated in Python, rendered into a self-contained script,
run in a fresh ``aseprite --batch`` process, and its output parsed into
a typed result.

Subpackages:
    ops: Immutable operation descriptors (the intermediate representation)
    lua: Lua script generation from operations
    engine: Aseprite process client (temp scripts, timeouts, cancellation)
    tools: High-level facade mapping engine output to typed results
    configs: Engine configuration loading and validation

Modules:
    paging: Cursor pagination for pixel reads
"""

__all__ = ["ops", "lua", "engine", "tools", "configs", "paging"]
