"""Session type to pipeline lookup."""

from circadian.pipeline.engine import PipelineDefinition
from circadian.pipeline.errors import UnknownSessionTypeError
from circadian.pipeline.sessions import ALL_PIPELINES


class PipelineRegistry:
    """Registry for pipeline definitions."""

    def __init__(self) -> None:
        self._pipelines: dict[str, PipelineDefinition] = {}

    def register(self, definition: PipelineDefinition) -> None:
        """Register a pipeline, replacing any previous one for its session type."""
        self._pipelines[definition.session_type] = definition

    def get(self, session_type: str) -> PipelineDefinition:
        """Get the pipeline for a session type.

        Raises:
            UnknownSessionTypeError: nothing is registered for it
        """
        definition = self._pipelines.get(session_type)
        if definition is None:
            raise UnknownSessionTypeError(session_type)
        return definition

    def __contains__(self, session_type: object) -> bool:
        return session_type in self._pipelines

    def list_available(self) -> list[str]:
        """List all registered session types."""
        return list(self._pipelines.keys())

    def describe(self) -> list[dict[str, object]]:
        return [
            {
                "session_type": d.session_type,
                "category": d.category,
                "steps": [s.name for s in d.steps],
                "notifies": d.notify_priority is not None,
                "description": d.description,
            }
            for d in self._pipelines.values()
        ]


def build_registry() -> PipelineRegistry:
    registry = PipelineRegistry()
    for definition in ALL_PIPELINES:
        registry.register(definition)
    return registry


_registry = build_registry()


def get_registry() -> PipelineRegistry:
    """Get the global pipeline registry."""
    return _registry
