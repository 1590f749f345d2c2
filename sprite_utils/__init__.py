"""Shared helpers with no dependency on sprite_control.

Modules:
    - color: color values and palette snapping
    - dither: ordered-dither threshold matrices
    - fs: temp script files, YAML loading, image summaries
    - logging_config: root logger setup and context fields
    - validators: batch-file schema

Typical use:
    from sprite_utils.logging_config import setup_logging, log_context
    from sprite_utils.color import Color, nearest_palette_index
"""

from . import color, dither, fs, logging_config, validators

__all__ = ['color', 'dither', 'fs', 'logging_config', 'validators']
