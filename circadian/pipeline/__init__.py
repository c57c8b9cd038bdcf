from circadian.pipeline.engine import (
    PipelineContext,
    PipelineDefinition,
    PipelineEngine,
    PipelineOutcome,
    PipelineStep,
)
from circadian.pipeline.errors import (
    MalformedOutputError,
    PipelineError,
    StepFailedError,
    UnknownSessionTypeError,
)
from circadian.pipeline.registry import PipelineRegistry, get_registry

__all__ = [
    "PipelineContext",
    "PipelineDefinition",
    "PipelineEngine",
    "PipelineOutcome",
    "PipelineStep",
    "PipelineError",
    "StepFailedError",
    "MalformedOutputError",
    "UnknownSessionTypeError",
    "PipelineRegistry",
    "get_registry",
]
