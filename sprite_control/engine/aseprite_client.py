"""Aseprite batch-mode client.

Handles:
    - One subprocess per call: ``aseprite --batch [sprite] --script <file>``
    - Scoped temp script files (``script-*.lua``, mode 0600) removed on
      success, engine error, timeout and cancellation alike
    - Per-call timeout and cooperative cancellation via ``threading.Event``
    - Verbatim stdout on success; verbatim stderr/stdout in ``ScriptError``
    - Version probing and sweeping of temp scripts left by killed processes

The client keeps no state between calls and is safe to share between
threads working on *different* sprite files.  Two overlapping calls on
the *same* sprite path are not coordinated here: the engine's own
open/save is not transaction-safe across processes, so callers must
serialize them (``SpriteTools`` does this with a per-path lock).
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Sequence

from sprite_utils.fs import remove_stale_files, scoped_temp_file

logger = logging.getLogger(__name__)

SCRIPT_PREFIX = "script-"
SCRIPT_SUFFIX = ".lua"

DEFAULT_TIMEOUT_S = 30.0
DEFAULT_TEMP_DIR = Path(tempfile.gettempdir()) / "pixel-mcp"

# How often a call waiting on the engine checks its cancel event
_CANCEL_POLL_S = 0.05

# Grace period for reaping a killed engine process
_REAP_TIMEOUT_S = 5.0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class AsepriteError(Exception):
    """Base exception for all engine client errors."""

    pass


class EngineNotFoundError(AsepriteError):
    """The engine binary is missing or not executable."""

    pass


class SpriteNotFoundError(AsepriteError):
    """The target sprite file does not exist (checked before launching)."""

    pass


class ExecutionInterrupted(AsepriteError):
    """The engine was killed before finishing; partial output was discarded."""

    pass


class EngineTimeoutError(ExecutionInterrupted):
    """The engine did not finish within the call's timeout."""

    pass


class EngineCancelledError(ExecutionInterrupted):
    """The caller's cancel event was set while the engine was running."""

    pass


class ScriptError(AsepriteError):
    """The engine exited non-zero.

    Attributes
    ----------
    returncode : int
        Process exit status.
    stderr, stdout : str
        Captured streams, unmodified.
    """

    def __init__(self, returncode: int, stderr: str, stdout: str) -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        message = f"aseprite command failed (exit status {returncode})"
        if stderr:
            message += f"\nstderr: {stderr}"
        message += f"\nstdout: {stdout}"
        super().__init__(message)

    @property
    def diagnostic(self) -> str:
        """Engine diagnostic text: stderr, followed by stdout when both are set."""
        return "\n".join(s for s in (self.stderr, self.stdout) if s)

    def __reduce__(self):
        return (type(self), (self.returncode, self.stderr, self.stdout))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AsepriteClient:
    """Run Lua scripts through ``aseprite --batch``.

    Parameters
    ----------
    exec_path : str
        Path to the Aseprite executable.
    temp_dir : str | Path | None
        Directory for temporary script files.  ``None`` uses
        ``<system tmp>/pixel-mcp``.
    timeout : float
        Default per-call timeout in seconds.
    log_timing : bool
        Log wall-clock time of every engine call at INFO level
        (DEBUG otherwise).

    Examples
    --------
    >>> client = AsepriteClient("/usr/bin/aseprite", timeout=10.0)
    >>> out = client.execute_lua('print("hi")')
    >>> out.strip()
    'hi'
    """

    def __init__(
        self,
        exec_path: str,
        temp_dir: str | Path | None = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        log_timing: bool = False,
    ) -> None:
        if not exec_path:
            raise ValueError("exec_path must be a non-empty path")
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")
        self.exec_path = str(exec_path)
        self.temp_dir = Path(temp_dir) if temp_dir is not None else DEFAULT_TEMP_DIR
        self.timeout = float(timeout)
        self.log_timing = log_timing

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute_lua(
        self,
        script: str,
        sprite_path: str | Path | None = None,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Run *script* against *sprite_path* and return stdout verbatim.

        Parameters
        ----------
        script : str
            Complete Lua script.
        sprite_path : str | Path | None
            Sprite opened as the active document.  ``None`` (or ``""``)
            runs the script with no document, as canvas creation does.
        timeout : float | None
            Seconds before the engine is killed.  ``None`` uses the
            client default.
        cancel : threading.Event | None
            Setting this event kills the engine and aborts the call.

        Returns
        -------
        str
            Engine stdout, uninterpreted.

        Raises
        ------
        SpriteNotFoundError
            If *sprite_path* is given but missing (no process started).
        EngineNotFoundError
            If the engine binary cannot be launched.
        EngineTimeoutError, EngineCancelledError
            If the engine was killed.
        ScriptError
            If the engine exited non-zero.
        """
        args: list[str] = ["--batch"]
        if sprite_path is not None and str(sprite_path) != "":
            sprite = Path(sprite_path)
            if not sprite.exists():
                raise SpriteNotFoundError(f"sprite file not found: {sprite}")
            args.append(str(sprite))

        with scoped_temp_file(
            self.temp_dir, script, prefix=SCRIPT_PREFIX, suffix=SCRIPT_SUFFIX,
        ) as script_path:
            args.extend(["--script", str(script_path)])
            return self.execute_command(args, timeout=timeout, cancel=cancel)

    def execute_command(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """Run the engine with raw *args*; same error contract as ``execute_lua``."""
        limit = self.timeout if timeout is None else float(timeout)
        if limit <= 0:
            raise ValueError(f"timeout must be > 0, got {limit}")

        cmd = [self.exec_path, *args]
        logger.debug("Running %s", " ".join(cmd))
        started = time.monotonic()

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise EngineNotFoundError(
                f"aseprite executable not found: {self.exec_path}"
            ) from exc
        except PermissionError as exc:
            raise EngineNotFoundError(
                f"aseprite executable is not runnable: {self.exec_path}"
            ) from exc

        try:
            stdout, stderr = self._wait(proc, started + limit, limit, cancel)
        finally:
            if proc.poll() is None:
                self._kill(proc)

        elapsed = time.monotonic() - started
        logger.log(
            logging.INFO if self.log_timing else logging.DEBUG,
            "aseprite exited with %d after %.3fs", proc.returncode, elapsed,
        )

        if proc.returncode != 0:
            raise ScriptError(proc.returncode, stderr, stdout)
        return stdout

    def get_version(self) -> str:
        """First line of ``aseprite --version``.

        Raises
        ------
        AsepriteError
            If the engine prints nothing.
        """
        output = self.execute_command(["--version"])
        for line in output.splitlines():
            if line.strip():
                return line.strip()
        raise AsepriteError(f"failed to parse version from output: {output!r}")

    def cleanup_old_temp_files(self, max_age_s: float) -> int:
        """Delete temp scripts older than *max_age_s*; return how many."""
        return remove_stale_files(
            self.temp_dir, f"{SCRIPT_PREFIX}*{SCRIPT_SUFFIX}", max_age_s,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _wait(
        self,
        proc: subprocess.Popen,
        deadline: float,
        limit: float,
        cancel: threading.Event | None,
    ) -> tuple[str, str]:
        """Collect output until exit, deadline, or cancellation."""
        while True:
            if cancel is not None and cancel.is_set():
                self._kill(proc)
                logger.warning("aseprite call cancelled (pid %d)", proc.pid)
                raise EngineCancelledError("aseprite command cancelled")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._kill(proc)
                logger.warning("aseprite call timed out after %gs (pid %d)", limit, proc.pid)
                raise EngineTimeoutError(f"aseprite command timed out after {limit:g}s")

            step = remaining if cancel is None else min(remaining, _CANCEL_POLL_S)
            try:
                # Retrying communicate() after TimeoutExpired loses no output
                return proc.communicate(timeout=step)
            except subprocess.TimeoutExpired:
                continue

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        """Kill *proc* and reap it, discarding whatever it wrote."""
        proc.kill()
        try:
            proc.communicate(timeout=_REAP_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            logger.warning("aseprite process %d did not exit after kill", proc.pid)
