"""Generic multi-step pipeline engine.

A pipeline is an ordered list of reasoning steps. Each step builds a prompt from
the shared context (gathered inputs, recent memory, every earlier step's output),
calls the text generator and stores its result back into the context. Any step may
end the run with the terminal marker; the last step's output becomes the Output
Record.
"""

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from circadian.config import PipelineConfig, get_config, get_settings
from circadian.core.clock import ReferenceClock, get_clock, get_expiry, utc_now
from circadian.core.logging import get_logger
from circadian.models.notification import Notification, NotificationStatus
from circadian.models.output import OutputRecord
from circadian.pipeline.errors import MalformedOutputError, StepFailedError
from circadian.pipeline.memory import RecentMemory, load_recent_memory
from circadian.pipeline.parsing import is_terminal_marker, parse_json_object, parse_titled_output
from circadian.services.generation import TextGenerator
from circadian.services.search import SearchProvider

logger = get_logger(__name__)


@dataclass
class PipelineContext:
    """State threaded through one pipeline run."""

    user_id: uuid.UUID
    session_type: str
    now: datetime
    local_day: str
    time_of_day: str
    day_start: datetime
    day_end: datetime
    job_id: uuid.UUID | None = None
    inputs: dict[str, Any] = field(default_factory=dict)
    memory: RecentMemory = field(default_factory=RecentMemory)
    steps: dict[str, Any] = field(default_factory=dict)
    fetched: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def variant(self) -> str | None:
        return self.metadata.get("variant")

    def add_topic(self, topic: str) -> None:
        self.metadata.setdefault("topics", []).append(topic)

    def add_query(self, query: str) -> None:
        self.metadata.setdefault("queries", []).append(query)

    def transcript(self) -> str:
        """Earlier step outputs, in order, as a prompt block."""
        if not self.steps:
            return ""
        parts = []
        for name, output in self.steps.items():
            text = output if isinstance(output, str) else _render_value(output)
            parts.append(f"[{name}]\n{text}")
        return "\n\n".join(parts)


def _render_value(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        return "\n".join(f"{k}: {v}" for k, v in value.items())
    return str(value)


PromptBuilder = Callable[[PipelineContext], str]
Gather = Callable[[AsyncSession, PipelineContext], Awaitable[dict[str, Any] | None]]
Fetch = Callable[[PipelineContext, SearchProvider], Awaitable[Any]]
Accept = Callable[[PipelineContext, Any], bool]


@dataclass
class PipelineStep:
    """One reasoning step.

    ``fetch`` runs before the prompt is built and its result is stored in
    ``ctx.fetched[name]``. ``accept`` returning False ends the run with nothing
    to report.
    """

    name: str
    prompt: PromptBuilder
    max_tokens: int = 800
    temperature: float = 0.7
    expects: Literal["text", "json"] = "text"
    schema: type[BaseModel] | None = None
    fetch: Fetch | None = None
    accept: Accept | None = None
    allow_terminal: bool = True


@dataclass
class PipelineDefinition:
    """Everything needed to run one session type."""

    session_type: str
    category: str
    steps: list[PipelineStep]
    gather: Gather
    default_title: str = "A thought"
    min_body_length: int | None = None
    notify_priority: float | None = 0.5
    memory_lookback_days: int | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"Pipeline {self.session_type} has no steps")
        if self.steps[-1].expects != "text":
            raise ValueError(f"Final step of {self.session_type} must produce text")


@dataclass
class PipelineOutcome:
    """Result of a pipeline run. ``produced`` is False for empty successes."""

    produced: bool
    output_id: uuid.UUID | None = None
    notification_id: uuid.UUID | None = None
    title: str | None = None
    reason: str | None = None
    steps_run: int = 0

    @property
    def result_count(self) -> int:
        return 1 if self.produced else 0


class PipelineEngine:
    """Runs pipeline definitions against a generator and search provider."""

    def __init__(
        self,
        generator: TextGenerator,
        search: SearchProvider,
        clock: ReferenceClock | None = None,
        config: PipelineConfig | None = None,
        notification_ttl_hours: int | None = None,
    ) -> None:
        self.generator = generator
        self.search = search
        self.clock = clock or get_clock()
        self.config = config or get_config().pipeline
        self.notification_ttl_hours = notification_ttl_hours or get_settings().notification_ttl_hours

    def build_context(
        self,
        definition: PipelineDefinition,
        user_id: uuid.UUID,
        job_id: uuid.UUID | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
        local_day: str | None = None,
    ) -> PipelineContext:
        now = now or utc_now()
        local_day = local_day or self.clock.local_date_key(now)
        day_start, day_end = self.clock.local_day_bounds(local_day)
        return PipelineContext(
            user_id=user_id,
            session_type=definition.session_type,
            now=now,
            local_day=local_day,
            time_of_day=self.clock.time_of_day(now),
            day_start=day_start,
            day_end=day_end,
            job_id=job_id,
            metadata=dict(metadata or {}),
        )

    async def run(
        self,
        db: AsyncSession,
        definition: PipelineDefinition,
        user_id: uuid.UUID,
        job_id: uuid.UUID | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
        local_day: str | None = None,
    ) -> PipelineOutcome:
        """Run a pipeline end to end.

        Writes an OutputRecord (and a pending Notification when the pipeline
        notifies) for a genuine result. Does not commit.

        Raises:
            StepFailedError: a step returned empty output
            MalformedOutputError: a JSON step could not be parsed
        """
        ctx = self.build_context(definition, user_id, job_id, metadata, now, local_day)
        log = logger.bind(session_type=definition.session_type, user_id=str(user_id))

        inputs = await definition.gather(db, ctx)
        if inputs is None:
            log.info("pipeline_no_input")
            return PipelineOutcome(produced=False, reason="no_input")
        ctx.inputs = inputs

        ctx.memory = await load_recent_memory(
            db,
            user_id,
            lookback_days=definition.memory_lookback_days or self.config.memory_lookback_days,
            limit=self.config.memory_limit,
            now=ctx.now,
        )

        final_text = ""
        for index, step in enumerate(definition.steps, start=1):
            if step.fetch is not None:
                ctx.fetched[step.name] = await step.fetch(ctx, self.search)

            prompt = step.prompt(ctx)
            raw = await self.generator.generate(
                prompt, max_tokens=step.max_tokens, temperature=step.temperature
            )
            if raw is None or not raw.strip():
                raise StepFailedError(step.name, "empty output")

            if step.allow_terminal and is_terminal_marker(raw, self.config.terminal_marker):
                log.bind(step=step.name).info("pipeline_terminal_marker")
                return PipelineOutcome(produced=False, reason="terminal_marker", steps_run=index)

            value = self._parse_step(step, raw)
            ctx.steps[step.name] = value

            if step.accept is not None and not step.accept(ctx, value):
                log.bind(step=step.name).info("pipeline_step_rejected")
                return PipelineOutcome(produced=False, reason=f"rejected:{step.name}", steps_run=index)

            final_text = raw

        default_title = definition.default_title.format(
            date=self.clock.format_local(ctx.now, "%b %d, %Y")
        )
        parsed = parse_titled_output(final_text, default_title)
        min_length = definition.min_body_length or self.config.min_body_length
        if len(parsed.body) < min_length:
            log.bind(body_length=len(parsed.body)).info("pipeline_output_too_short")
            return PipelineOutcome(produced=False, reason="too_short", steps_run=len(definition.steps))

        record = OutputRecord(
            id=uuid.uuid4(),
            user_id=user_id,
            session_type=definition.session_type,
            category=definition.category,
            title=parsed.title[:512],
            body=parsed.body,
            source_job_id=job_id,
            metadata_json=self._record_metadata(ctx),
            produced_at=ctx.now,
        )
        db.add(record)

        notification_id = None
        if definition.notify_priority is not None:
            notification = Notification(
                id=uuid.uuid4(),
                user_id=user_id,
                output_id=record.id,
                status=NotificationStatus.PENDING,
                priority=definition.notify_priority,
                expires_at=get_expiry(hours=self.notification_ttl_hours, now=ctx.now),
                created_at=ctx.now,
            )
            db.add(notification)
            notification_id = notification.id

        await db.flush()
        log.bind(output_id=str(record.id), title=record.title).info("pipeline_output_created")
        return PipelineOutcome(
            produced=True,
            output_id=record.id,
            notification_id=notification_id,
            title=record.title,
            steps_run=len(definition.steps),
        )

    def _parse_step(self, step: PipelineStep, raw: str) -> Any:
        if step.expects == "text":
            return raw.strip()

        data = parse_json_object(raw)
        if step.schema is None:
            return data
        try:
            return step.schema.model_validate(data)
        except ValidationError as e:
            raise MalformedOutputError(f"Step {step.name!r} returned invalid JSON: {e}") from e

    def _record_metadata(self, ctx: PipelineContext) -> dict[str, Any]:
        steps = {
            name: value.model_dump() if isinstance(value, BaseModel) else value
            for name, value in ctx.steps.items()
        }
        return {**ctx.metadata, "steps": steps, "local_day": ctx.local_day}
