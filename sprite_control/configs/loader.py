"""Configuration loader for sprite control.

Loads and validates ``engine.yaml`` into typed, frozen dataclasses.
The engine path, temp directory and timeouts come from the config;
nothing is read from environment variables.

Usage::

    from sprite_control.configs.loader import load_config, build_client
    cfg = load_config()                      # default path
    cfg = load_config("/custom/engine.yaml") # explicit path
    client = build_client(cfg)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sprite_control.engine.aseprite_client import DEFAULT_TEMP_DIR, AsepriteClient
from sprite_utils.fs import load_yaml
from sprite_utils.logging_config import LEVELS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "engine.yaml"

# Accepted spellings of the log levels (lower-case "warn" included)
_LEVEL_ALIASES = {"WARN": "WARNING"}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """Aseprite executable and invocation settings."""

    aseprite_path: str
    temp_dir: Path
    timeout_s: float
    temp_max_age_s: float = 3600.0
    enable_timing: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    """Arguments for ``sprite_utils.logging_config.setup_logging``."""

    log_level: str = "INFO"
    log_file: str | None = None
    json: bool = False

    def as_kwargs(self) -> dict[str, Any]:
        return {"log_level": self.log_level, "log_file": self.log_file, "json": self.json}


@dataclass(frozen=True)
class AppConfig:
    """Top-level configuration object."""

    engine: EngineConfig
    logging: LoggingConfig


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _parse_level(raw: Any) -> str:
    level = str(raw).upper()
    level = _LEVEL_ALIASES.get(level, level)
    if level not in LEVELS:
        raise ConfigError(
            f"logging.log_level must be one of {', '.join(LEVELS)}, got {raw!r}"
        )
    return level


def _validate_config(cfg: AppConfig) -> None:
    e = cfg.engine
    if not e.aseprite_path.strip():
        raise ConfigError("engine.aseprite_path must be a non-empty path")
    if e.timeout_s <= 0:
        raise ConfigError(f"engine.timeout_s must be > 0, got {e.timeout_s}")
    if e.temp_max_age_s < 0:
        raise ConfigError(
            f"engine.temp_max_age_s must be >= 0, got {e.temp_max_age_s}"
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load and validate configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``engine.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    AppConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    path = DEFAULT_CONFIG_PATH if path is None else Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    try:
        # -- engine ---------------------------------------------------------
        ed = data["engine"]
        temp_dir = ed.get("temp_dir")
        engine = EngineConfig(
            aseprite_path=str(ed["aseprite_path"]),
            temp_dir=Path(temp_dir) if temp_dir else DEFAULT_TEMP_DIR,
            timeout_s=float(ed.get("timeout_s", 30.0)),
            temp_max_age_s=float(ed.get("temp_max_age_s", 3600.0)),
            enable_timing=bool(ed.get("enable_timing", False)),
        )

        # -- logging (optional) ---------------------------------------------
        ld = data.get("logging") or {}
        log_cfg = LoggingConfig(
            log_level=_parse_level(ld.get("log_level", "INFO")),
            log_file=str(ld["log_file"]) if ld.get("log_file") else None,
            json=bool(ld.get("json", False)),
        )

        config = AppConfig(engine=engine, logging=log_cfg)
        _validate_config(config)
        logger.info("Configuration loaded successfully")
        return config

    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc


def build_client(cfg: AppConfig) -> AsepriteClient:
    """Construct an ``AsepriteClient`` from validated config."""
    return AsepriteClient(
        exec_path=cfg.engine.aseprite_path,
        temp_dir=cfg.engine.temp_dir,
        timeout=cfg.engine.timeout_s,
        log_timing=cfg.engine.enable_timing,
    )
