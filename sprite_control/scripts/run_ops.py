#!/usr/bin/env python3
"""
Run Ops Script.

Execute a batch of sprite operations from a ``sprite_ops.v1`` YAML file.

Usage:
    python -m sprite_control.scripts.run_ops job.yaml
    python -m sprite_control.scripts.run_ops job.yaml --config engine.yaml
    python -m sprite_control.scripts.run_ops job.yaml --dry-run

Operations run in file order against the file's ``sprite``.  A
``create_canvas`` entry without a ``path`` parameter creates the file's
``sprite``.  The first failure stops the batch with exit status 1.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from sprite_control.configs.loader import ConfigError, build_client, load_config
from sprite_control.engine.aseprite_client import AsepriteError
from sprite_control.lua.generator import LuaGenerator
from sprite_control.ops.operations import OPERATION_TYPES, build_operation
from sprite_control.tools.sprite_tools import SpriteTools, ToolError, ToolValidationError
from sprite_utils.logging_config import install_excepthook, log_context, setup_logging
from sprite_utils.validators import OpsFileV1, load_ops_file

logger = logging.getLogger(__name__)

# get_pixels pages through SpriteTools.get_pixels, so offset and count are
# not accepted from the file; cursor and page_size replace them
_REGION_PARAMS = ("layer", "frame", "x", "y", "width", "height")
_PAGING_PARAMS = ("cursor", "page_size")


def format_result(result: Any) -> str:
    """Render a tool result as one line of text."""
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        return json.dumps(dataclasses.asdict(result), default=str)
    return str(result)


def _resolve_params(name: str, params: dict[str, Any], sprite: str | None) -> dict[str, Any]:
    params = dict(params)
    if name == "create_canvas" and "path" not in params and sprite is not None:
        params["path"] = sprite
    return params


def check_get_pixels_params(params: dict[str, Any]) -> None:
    """Reject get_pixels parameters that SpriteTools.get_pixels does not take.

    Raises
    ------
    ToolValidationError
        Unknown or missing parameter names.
    """
    unknown = sorted(set(params) - set(_REGION_PARAMS) - set(_PAGING_PARAMS))
    if unknown:
        raise ToolValidationError(
            f"Invalid parameters for get_pixels: unexpected {', '.join(unknown)} "
            f"(page with cursor and page_size)"
        )
    missing = [name for name in _REGION_PARAMS if name not in params]
    if missing:
        raise ToolValidationError(
            f"Invalid parameters for get_pixels: missing {', '.join(missing)}"
        )


def run_batch(ops_file: OpsFileV1, tools: SpriteTools) -> int:
    """Run every operation in order.  Returns the number completed."""
    total = len(ops_file.operations)
    for index, entry in enumerate(ops_file.operations, start=1):
        params = _resolve_params(entry.op, entry.params, ops_file.sprite)
        with log_context(step=index):
            if entry.op == "get_pixels":
                check_get_pixels_params(params)
                result = tools.get_pixels(ops_file.sprite, **params)
            else:
                op = build_operation(entry.op, params)
                result = tools.run(op, ops_file.sprite)
        print(f"[{index}/{total}] {entry.op}: {format_result(result)}")
    return total


def dry_run(ops_file: OpsFileV1) -> None:
    """Print the generated Lua for every operation without running it."""
    gen = LuaGenerator()
    for index, entry in enumerate(ops_file.operations, start=1):
        params = _resolve_params(entry.op, entry.params, ops_file.sprite)
        if entry.op == "get_pixels":
            check_get_pixels_params(params)
            params = {k: v for k, v in params.items() if k not in _PAGING_PARAMS}
        script = gen.generate(build_operation(entry.op, params))
        print(f"--- [{index}] {entry.op} ---")
        print(script)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run a batch of sprite operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Available operations: {', '.join(OPERATION_TYPES)}",
    )
    parser.add_argument(
        "file",
        type=str,
        help="Operations file (YAML, schema sprite_ops.v1)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Configuration file path",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate Lua scripts but don't execute",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    setup_logging(**config.logging.as_kwargs(), context={"app": "run_ops"})
    install_excepthook()

    try:
        ops_file = load_ops_file(args.file, known_ops=OPERATION_TYPES)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        print(f"Error loading operations file: {e}", file=sys.stderr)
        return 1

    logger.info("Loaded %d operations from %s", len(ops_file.operations), args.file)

    try:
        if args.dry_run:
            dry_run(ops_file)
        else:
            tools = SpriteTools(build_client(config))
            run_batch(ops_file, tools)
    except KeyboardInterrupt:
        print("\nBatch interrupted.", file=sys.stderr)
        return 1
    except (AsepriteError, ToolError, ValueError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        logger.error("Batch failed: %s", e)
        return 1

    print("Batch completed successfully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
