"""Pipeline definitions: schema, YAML loading and the definition store."""

from shipwright.errors import PipelineLoadError, PipelineNotFoundError
from shipwright.pipeline.loader import load_pipeline, parse_pipeline
from shipwright.pipeline.schema import (
    ArtifactProfileSpec,
    GatePredicateSpec,
    GateSpec,
    InputSpec,
    PipelineDefinition,
    PipelineMetadata,
    PipelineSpec,
    Placement,
    SecretSpec,
    StepSpec,
)
from shipwright.pipeline.store import PipelineStore

__all__ = [
    "ArtifactProfileSpec",
    "GatePredicateSpec",
    "GateSpec",
    "InputSpec",
    "PipelineDefinition",
    "PipelineLoadError",
    "PipelineMetadata",
    "PipelineNotFoundError",
    "PipelineSpec",
    "PipelineStore",
    "Placement",
    "SecretSpec",
    "StepSpec",
    "load_pipeline",
    "parse_pipeline",
]
