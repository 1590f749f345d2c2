#!/usr/bin/env python3
"""Verify the Aseprite engine is usable.

Loads the configuration, asks the engine for its version, and sweeps
temporary Lua scripts older than ``engine.temp_max_age_s``.

Usage::

    python -m sprite_control.scripts.check_engine
    python -m sprite_control.scripts.check_engine --config /path/to/engine.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys

from sprite_control.configs.loader import ConfigError, build_client, load_config
from sprite_control.engine.aseprite_client import AsepriteError
from sprite_utils.logging_config import install_excepthook, setup_logging

logger = logging.getLogger(__name__)


def check_engine(config_path: str | None = None) -> bool:
    """Run the engine checks.  Returns ``True`` if all pass."""
    print("=" * 60)
    print("  ASEPRITE ENGINE CHECK")
    print("=" * 60)

    try:
        config = load_config(config_path)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"[FAIL] Configuration: {exc}")
        return False

    setup_logging(**config.logging.as_kwargs(), context={"app": "check_engine"})
    install_excepthook()

    print("\n[OK] Configuration loaded")
    print(f"     Engine:   {config.engine.aseprite_path}")
    print(f"     Temp dir: {config.engine.temp_dir}")

    client = build_client(config)
    ok = True

    # --- Version -----------------------------------------------------------
    try:
        version = client.get_version()
        print(f"[PASS] Engine version: {version}")
    except AsepriteError as exc:
        print(f"[FAIL] Engine version: {exc}")
        ok = False

    # --- Temp sweep --------------------------------------------------------
    removed = client.cleanup_old_temp_files(config.engine.temp_max_age_s)
    print(f"[OK] Removed {removed} stale temp script(s)")

    print("=" * 60)
    print("  ALL CHECKS PASSED" if ok else "  CHECKS FAILED")
    print("=" * 60)
    return ok


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check the Aseprite engine")
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Configuration file path",
    )
    args = parser.parse_args(argv)
    return 0 if check_engine(args.config) else 1


if __name__ == "__main__":
    sys.exit(main())
