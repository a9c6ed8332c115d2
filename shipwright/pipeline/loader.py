"""Load and validate pipeline YAML definitions."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from shipwright.errors import PipelineLoadError
from shipwright.pipeline.schema import PipelineDefinition


def parse_pipeline(raw: str, *, source: str = "<string>") -> PipelineDefinition:
    """Validate YAML text as a PipelineDefinition."""
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise PipelineLoadError(f"Invalid YAML in {source}: {e}", path=source) from e

    if not isinstance(data, dict):
        raise PipelineLoadError(
            f"Expected a YAML mapping in {source}, got {type(data).__name__}", path=source
        )

    try:
        return PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise PipelineLoadError(f"Validation failed for {source}:\n{e}", path=source) from e


def load_pipeline(path: Path) -> PipelineDefinition:
    """Read a YAML file and validate it as a PipelineDefinition."""
    try:
        raw = path.read_text()
    except OSError as e:
        raise PipelineLoadError(f"Cannot read {path}: {e}", path=str(path)) from e
    return parse_pipeline(raw, source=str(path))
