"""Schema validation for batch operation files.

A batch file (``sprite_ops.v1``) lists sprite operations to run in
order against one sprite::

    schema: sprite_ops.v1
    sprite: out/hero.aseprite
    operations:
      - op: create_canvas
        params: {width: 32, height: 32, color_mode: indexed}
      - op: set_palette
        params: {colors: ["#000000", "#FF0000"]}
      - op: draw_rectangle
        params: {layer: Layer 1, x: 0, y: 0, width: 4, height: 4,
                 color: "#FF0000", filled: true, use_palette: true}

Only the envelope is validated here; operation parameters are checked
by the operation dataclasses when the runner builds them.  The set of
accepted ``op`` names is supplied by the caller through the validation
context, which keeps this module free of upward imports.

Usage:
    from sprite_utils import validators
    ops_file = validators.load_ops_file("job.yaml", known_ops=OPERATION_TYPES)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from sprite_utils.fs import load_yaml


class OperationSpec(BaseModel):
    """One entry of the ``operations`` list."""

    model_config = ConfigDict(extra="forbid")

    op: str = Field(..., min_length=1, description="Operation name (snake_case)")
    params: Dict[str, Any] = Field(default_factory=dict, description="Operation parameters")

    @field_validator('op')
    @classmethod
    def validate_op(cls, v: str, info: ValidationInfo) -> str:
        known = (info.context or {}).get("known_ops")
        if known is not None and v not in known:
            raise ValueError(f"Unknown operation {v!r}; expected one of: {', '.join(sorted(known))}")
        return v


class OpsFileV1(BaseModel):
    """Batch file envelope (``sprite_ops.v1``)."""

    model_config = ConfigDict(extra="forbid")

    schema_version: Literal["sprite_ops.v1"] = Field(..., alias="schema")
    sprite: Optional[str] = Field(None, description="Sprite path the operations target")
    operations: List[OperationSpec] = Field(..., min_length=1)

    @model_validator(mode='after')
    def validate_sprite_target(self) -> 'OpsFileV1':
        # Everything except create_canvas needs an existing sprite to act on
        if self.sprite is None and any(o.op != "create_canvas" for o in self.operations):
            raise ValueError("'sprite' is required unless every operation is create_canvas")
        return self


def validate_ops_file(
    data: Dict[str, Any],
    known_ops: Optional[Iterable[str]] = None,
) -> OpsFileV1:
    """Validate an already-parsed batch document.

    Raises
    ------
    pydantic.ValidationError
        On any schema violation.
    """
    context = {"known_ops": frozenset(known_ops)} if known_ops is not None else None
    return OpsFileV1.model_validate(data, context=context)


def load_ops_file(
    path: Union[str, Path],
    known_ops: Optional[Iterable[str]] = None,
) -> OpsFileV1:
    """Load and validate a batch file.

    Raises
    ------
    FileNotFoundError
        If *path* doesn't exist
    ValueError
        If the file is empty
    pydantic.ValidationError
        On any schema violation
    """
    data = load_yaml(path)
    if data is None:
        raise ValueError(f"Empty operations file: {path}")
    return validate_ops_file(data, known_ops)
