"""Tests for the Aseprite process client.

Uses a fake engine (a small Python executable written to ``tmp_path``)
to verify:
    - Command line shape: --batch [sprite] --script <temp file>
    - Verbatim stdout on success; ScriptError with both streams on failure
    - Temp scripts removed on success, failure, timeout and cancellation
    - Missing sprite detected before any process starts
    - Timeout and cancellation kill the engine
    - Concurrent calls never share a temp script
"""

from __future__ import annotations

import os
import pickle
import stat
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

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

pytestmark = pytest.mark.skipif(
    sys.platform == "win32", reason="fake engine relies on a shebang line",
)


# ---------------------------------------------------------------------------
# Fake engine
# ---------------------------------------------------------------------------

FAKE_ENGINE = """#!@PYTHON@
import sys
import time

args = sys.argv[1:]
if args == ["--version"]:
    print("Aseprite 1.3.7-x64")
    sys.exit(0)

with open(@RECORD@, "a", encoding="utf-8") as f:
    f.write(" ".join(args) + "\\n")

script = args[args.index("--script") + 1]
with open(script, encoding="utf-8") as f:
    body = f.read()

if "SLEEP" in body:
    time.sleep(30)
if "FAIL" in body:
    sys.stderr.write("script.lua:3: Cannot delete the last layer\\n")
    sys.stdout.write("partial\\n")
    sys.exit(1)
sys.stdout.write(body)
"""


class FakeEngine:
    def __init__(self, root: Path) -> None:
        self.path = root / "fake-aseprite"
        self.record = root / "calls.log"
        text = FAKE_ENGINE.replace("@PYTHON@", sys.executable).replace(
            "@RECORD@", repr(str(self.record)),
        )
        self.path.write_text(text, encoding="utf-8")
        self.path.chmod(self.path.stat().st_mode | stat.S_IXUSR)

    @property
    def calls(self) -> list[str]:
        if not self.record.exists():
            return []
        return self.record.read_text(encoding="utf-8").splitlines()


@pytest.fixture()
def engine(tmp_path: Path) -> FakeEngine:
    return FakeEngine(tmp_path)


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path / "scripts"


@pytest.fixture()
def client(engine: FakeEngine, temp_dir: Path) -> AsepriteClient:
    return AsepriteClient(str(engine.path), temp_dir=temp_dir, timeout=10.0)


@pytest.fixture()
def sprite(tmp_path: Path) -> Path:
    p = tmp_path / "hero.aseprite"
    p.write_bytes(b"\x00")
    return p


def _leftover_scripts(temp_dir: Path) -> list[Path]:
    return list(temp_dir.glob("*.lua")) if temp_dir.exists() else []


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_empty_path(self) -> None:
        with pytest.raises(ValueError, match="exec_path"):
            AsepriteClient("")

    def test_bad_timeout(self) -> None:
        with pytest.raises(ValueError, match="timeout must be > 0"):
            AsepriteClient("aseprite", timeout=0)

    def test_default_temp_dir(self) -> None:
        assert AsepriteClient("aseprite").temp_dir.name == "pixel-mcp"


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestExecuteLua:
    def test_returns_stdout_verbatim(self, client: AsepriteClient) -> None:
        script = 'print("hi")\n-- second line\n'
        assert client.execute_lua(script) == script

    def test_command_line_without_sprite(self, client: AsepriteClient, engine: FakeEngine) -> None:
        client.execute_lua("x")
        (call,) = engine.calls
        parts = call.split(" ")
        assert parts[0] == "--batch"
        assert parts[1] == "--script"
        assert parts[2].endswith(".lua")

    def test_command_line_with_sprite(
        self, client: AsepriteClient, engine: FakeEngine, sprite: Path,
    ) -> None:
        client.execute_lua("x", sprite)
        (call,) = engine.calls
        parts = call.split(" ")
        assert parts[:2] == ["--batch", str(sprite)]
        assert parts[2] == "--script"

    def test_empty_sprite_path_means_no_document(
        self, client: AsepriteClient, engine: FakeEngine,
    ) -> None:
        client.execute_lua("x", "")
        assert engine.calls[0].startswith("--batch --script ")

    def test_temp_script_removed(self, client: AsepriteClient, temp_dir: Path) -> None:
        client.execute_lua("x")
        assert _leftover_scripts(temp_dir) == []

    def test_missing_sprite_starts_nothing(
        self, client: AsepriteClient, engine: FakeEngine, tmp_path: Path, temp_dir: Path,
    ) -> None:
        with pytest.raises(SpriteNotFoundError, match="sprite file not found"):
            client.execute_lua("x", tmp_path / "missing.aseprite")
        assert engine.calls == []
        assert _leftover_scripts(temp_dir) == []


class TestFailures:
    def test_script_error_carries_streams(self, client: AsepriteClient, temp_dir: Path) -> None:
        with pytest.raises(ScriptError) as exc_info:
            client.execute_lua("FAIL")
        err = exc_info.value
        assert err.returncode == 1
        assert "Cannot delete the last layer" in err.stderr
        assert err.stdout == "partial\n"
        assert str(err).startswith("aseprite command failed (exit status 1)")
        assert "Cannot delete the last layer" in err.diagnostic
        assert _leftover_scripts(temp_dir) == []

    def test_script_error_pickles(self) -> None:
        err = ScriptError(2, "boom", "out")
        clone = pickle.loads(pickle.dumps(err))
        assert (clone.returncode, clone.stderr, clone.stdout) == (2, "boom", "out")
        assert str(clone) == str(err)

    def test_engine_not_found(self, tmp_path: Path) -> None:
        client = AsepriteClient(str(tmp_path / "no-such-binary"), temp_dir=tmp_path / "s")
        with pytest.raises(EngineNotFoundError, match="not found"):
            client.execute_lua("x")
        assert _leftover_scripts(tmp_path / "s") == []

    def test_engine_not_executable(self, tmp_path: Path) -> None:
        binary = tmp_path / "not-exec"
        binary.write_text("#!/bin/sh\n")
        binary.chmod(0o644)
        client = AsepriteClient(str(binary), temp_dir=tmp_path / "s")
        with pytest.raises(EngineNotFoundError):
            client.execute_lua("x")

    def test_hierarchy(self) -> None:
        for cls in (EngineNotFoundError, SpriteNotFoundError, ScriptError, EngineTimeoutError,
                    EngineCancelledError):
            assert issubclass(cls, AsepriteError)
        assert issubclass(EngineTimeoutError, ExecutionInterrupted)
        assert issubclass(EngineCancelledError, ExecutionInterrupted)


class TestInterruption:
    def test_timeout_kills_engine(self, client: AsepriteClient, temp_dir: Path) -> None:
        started = time.monotonic()
        with pytest.raises(EngineTimeoutError, match="timed out after 0.5s"):
            client.execute_lua("SLEEP", timeout=0.5)
        assert time.monotonic() - started < 10
        assert _leftover_scripts(temp_dir) == []

    def test_invalid_timeout(self, client: AsepriteClient) -> None:
        with pytest.raises(ValueError, match="timeout must be > 0"):
            client.execute_lua("x", timeout=0)

    def test_cancel(self, client: AsepriteClient, temp_dir: Path) -> None:
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(EngineCancelledError):
                client.execute_lua("SLEEP", cancel=cancel)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 10
        assert _leftover_scripts(temp_dir) == []

    def test_pre_set_cancel(self, client: AsepriteClient) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(EngineCancelledError):
            client.execute_lua("x", cancel=cancel)


class TestConcurrency:
    def test_parallel_calls_use_distinct_scripts(
        self, client: AsepriteClient, engine: FakeEngine, temp_dir: Path,
    ) -> None:
        scripts = [f"-- call {i}\n" for i in range(6)]
        with ThreadPoolExecutor(max_workers=6) as pool:
            outputs = list(pool.map(client.execute_lua, scripts))
        assert outputs == scripts
        script_paths = {call.split(" ")[-1] for call in engine.calls}
        assert len(script_paths) == 6
        assert _leftover_scripts(temp_dir) == []


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class TestMaintenance:
    def test_get_version(self, client: AsepriteClient) -> None:
        assert client.get_version() == "Aseprite 1.3.7-x64"

    def test_cleanup_old_temp_files(self, client: AsepriteClient, temp_dir: Path) -> None:
        temp_dir.mkdir(parents=True)
        old = temp_dir / "script-old.lua"
        fresh = temp_dir / "script-new.lua"
        foreign = temp_dir / "notes.txt"
        for p in (old, fresh, foreign):
            p.write_text("x")
        past = time.time() - 7200
        os.utime(old, (past, past))
        os.utime(foreign, (past, past))

        assert client.cleanup_old_temp_files(3600) == 1
        assert not old.exists()
        assert fresh.exists()
        assert foreign.exists()
