class PipelineError(Exception):
    """Base class for pipeline failures. Fails the job."""


class StepFailedError(PipelineError):
    """A step produced no usable output."""

    def __init__(self, step: str, reason: str) -> None:
        self.step = step
        super().__init__(f"Step {step!r} failed: {reason}")


class MalformedOutputError(PipelineError):
    """Generation output could not be parsed into the expected shape."""


class UnknownSessionTypeError(PipelineError):
    """No pipeline is registered for a session type."""

    def __init__(self, session_type: str) -> None:
        self.session_type = session_type
        super().__init__(f"No pipeline registered for session type {session_type!r}")
