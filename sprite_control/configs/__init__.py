"""Engine configuration loading and validation."""

from sprite_control.configs.loader import (
    AppConfig,
    ConfigError,
    EngineConfig,
    LoggingConfig,
    build_client,
    load_config,
)

__all__ = [
    "AppConfig",
    "ConfigError",
    "EngineConfig",
    "LoggingConfig",
    "build_client",
    "load_config",
]
