"""Shared pytest hooks for the sprite_control tests.

Tests marked ``engine`` drive a real Aseprite binary and are skipped
when none is on PATH.  The run header states which case applies, so a
green run without the binary is not mistaken for engine coverage.
"""

import shutil


def pytest_report_header(config):
    binary = shutil.which("aseprite")
    if binary is None:
        return "aseprite: not found on PATH, engine-marked tests will be SKIPPED"
    return f"aseprite: {binary} (engine-marked tests enabled)"
