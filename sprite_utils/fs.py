"""Filesystem helpers: scoped temp scripts, YAML, image probing.

Provides:
    - Scoped temporary script files (created 0600, removed on every exit path)
    - Stale temp-file sweeping for files left behind by killed processes
    - YAML loading
    - Exported-image inspection via Pillow

All paths use pathlib.Path.

Usage:
    from sprite_utils import fs
    with fs.scoped_temp_file(temp_dir, script_text, prefix="script-", suffix=".lua") as p:
        ...  # p exists here, and is gone afterwards
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

import yaml
from PIL import Image

logger = logging.getLogger(__name__)


def ensure_dir(p: Union[str, Path]) -> Path:
    """Create directory if it doesn't exist, return Path object.

    Parameters
    ----------
    p : Union[str, Path]
        Directory path

    Returns
    -------
    Path
        Path object (guaranteed to exist)
    """
    p = Path(p)
    p.mkdir(parents=True, exist_ok=True)
    return p


# ---------------------------------------------------------------------------
# Temporary files
# ---------------------------------------------------------------------------


@contextmanager
def scoped_temp_file(
    directory: Union[str, Path],
    text: str,
    *,
    prefix: str = "tmp-",
    suffix: str = "",
    encoding: str = "utf-8",
) -> Iterator[Path]:
    """Write *text* to a fresh, exclusively owned file and remove it on exit.

    Parameters
    ----------
    directory : Union[str, Path]
        Parent directory (created if missing).
    text : str
        File content.
    prefix, suffix : str
        Name pattern passed to ``tempfile.mkstemp``.

    Yields
    ------
    Path
        Path of the temporary file.  It is unlinked when the ``with``
        block exits, whether normally or by exception (including
        ``KeyboardInterrupt``).

    Notes
    -----
    ``mkstemp`` creates the file with mode 0600 and ``O_EXCL``, so two
    concurrent callers never share an artifact.
    """
    directory = ensure_dir(directory)
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory)
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove temp file %s: %s", path, exc)


def remove_stale_files(
    directory: Union[str, Path],
    pattern: str,
    max_age_s: float,
    *,
    now: Optional[float] = None,
) -> int:
    """Delete files matching *pattern* older than *max_age_s* seconds.

    Returns
    -------
    int
        Number of files removed.  A missing directory counts as zero.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0
    now = time.time() if now is None else now
    removed = 0
    for path in directory.glob(pattern):
        try:
            if not path.is_file():
                continue
            if now - path.stat().st_mtime > max_age_s:
                path.unlink()
                removed += 1
        except FileNotFoundError:
            # Removed concurrently
            continue
    if removed:
        logger.info("Removed %d stale file(s) from %s", removed, directory)
    return removed


# ---------------------------------------------------------------------------
# YAML
# ---------------------------------------------------------------------------


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """Load YAML file safely.

    Raises
    ------
    FileNotFoundError
        If file doesn't exist
    yaml.YAMLError
        If YAML parsing fails
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Failed to parse YAML file {path}: {e}") from e


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


def image_summary(path: Union[str, Path]) -> Dict[str, Any]:
    """Describe an image file using Pillow.

    Parameters
    ----------
    path : Union[str, Path]
        Image file path (PNG, GIF, JPEG, BMP).

    Returns
    -------
    dict
        ``{"format", "mode", "width", "height", "n_frames", "palette_size"}``.
        ``palette_size`` is ``None`` for non-palette images.

    Raises
    ------
    FileNotFoundError
        If *path* doesn't exist
    PIL.UnidentifiedImageError
        If the file is not a readable image
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    with Image.open(path) as img:
        palette_size = None
        if img.mode == "P":
            palette = img.getpalette() or []
            palette_size = len(palette) // 3
        return {
            "format": img.format,
            "mode": img.mode,
            "width": img.width,
            "height": img.height,
            "n_frames": getattr(img, "n_frames", 1),
            "palette_size": palette_size,
        }
