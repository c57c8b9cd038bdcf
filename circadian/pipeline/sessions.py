"""Pipeline definitions for every session type.

Each session is a gather coroutine (what the companion looks at) plus a short,
fixed sequence of prompt steps. Prompts read from ``ctx.inputs``, ``ctx.memory``
and earlier step outputs in ``ctx.steps``.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from circadian.config import get_config
from circadian.models.job import Job, SessionType
from circadian.models.output import OutputRecord
from circadian.models.user import Message
from circadian.pipeline.engine import PipelineContext, PipelineDefinition, PipelineStep
from circadian.schemas.pipeline import SearchResult, TopicSelection
from circadian.services.search import SearchProvider

NOTHING = "If there is nothing genuinely worth saying, reply with exactly: nothing today"

FINAL_FORMAT = """Respond in this format:
TITLE: <short title, max 80 characters>
BODY:
<the text the user will read>"""


# --- shared input helpers ---------------------------------------------------


async def recent_messages(
    db: AsyncSession, user_id: uuid.UUID, since: datetime, limit: int = 50
) -> list[Message]:
    """Conversation turns since a cutoff, oldest first."""
    result = await db.execute(
        select(Message)
        .where(Message.user_id == user_id, Message.created_at >= since)
        .order_by(Message.created_at.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def recent_outputs(
    db: AsyncSession,
    user_id: uuid.UUID,
    since: datetime,
    until: datetime | None = None,
    session_types: list[str] | None = None,
    limit: int = 30,
) -> list[OutputRecord]:
    """Output records in a window, newest first."""
    query = select(OutputRecord).where(
        OutputRecord.user_id == user_id, OutputRecord.produced_at >= since
    )
    if until is not None:
        query = query.where(OutputRecord.produced_at < until)
    if session_types:
        query = query.where(OutputRecord.session_type.in_(session_types))
    result = await db.execute(query.order_by(OutputRecord.produced_at.desc()).limit(limit))
    return list(result.scalars().all())


def format_messages(messages: list[Message], max_chars: int = 400) -> str:
    if not messages:
        return "(no conversation)"
    return "\n".join(f"{m.role}: {m.content[:max_chars]}" for m in messages)


def format_outputs(outputs: list[OutputRecord], max_chars: int = 300) -> str:
    if not outputs:
        return "(nothing yet)"
    return "\n".join(f"- [{o.session_type}] {o.title}: {o.body[:max_chars]}" for o in outputs)


def format_results(results: list[SearchResult] | None) -> str:
    if not results:
        return "(no search results, rely on what you already know and say so)"
    return "\n".join(f"- {r.title} ({r.url}): {r.snippet}" for r in results)


def _message_cutoff(ctx: PipelineContext) -> datetime:
    return ctx.now - timedelta(hours=get_config().pipeline.message_window_hours)


def _header(ctx: PipelineContext) -> str:
    return f"It is {ctx.time_of_day} on {ctx.local_day}."


def _avoid(ctx: PipelineContext) -> str:
    return f"Things you have already said recently (do not repeat them):\n{ctx.memory.summary()}"


def novel_topic(ctx: PipelineContext, selection: Any) -> bool:
    """Accept a topic selection only if it is new, and record it."""
    if not isinstance(selection, TopicSelection):
        return False
    if not ctx.memory.is_novel(selection.topic):
        return False
    ctx.add_topic(selection.topic)
    if selection.query:
        ctx.add_query(selection.query)
    return True


async def search_selected_topic(ctx: PipelineContext, search: SearchProvider) -> list[SearchResult]:
    """Search for the query chosen by the ``select_topic`` step."""
    selection = ctx.steps.get("select_topic")
    if not isinstance(selection, TopicSelection):
        return []
    return await search.search(selection.query or selection.topic, limit=5)


# --- evening consolidation ----------------------------------------------------


async def gather_evening(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    messages = await recent_messages(db, ctx.user_id, since=ctx.day_start)
    if not messages:
        return None
    outputs = await recent_outputs(db, ctx.user_id, since=ctx.day_start, until=ctx.day_end)
    return {"messages": messages, "outputs": outputs}


def evening_notice(ctx: PipelineContext) -> str:
    return f"""{_header(ctx)} Read today's conversation and list what stood out:
moods, recurring worries, small wins, things left unsaid.

Conversation:
{format_messages(ctx.inputs["messages"])}

List 3-6 short observations. {NOTHING}"""


def evening_connect(ctx: PipelineContext) -> str:
    return f"""Connect today's observations with what you thought about earlier.

Observations:
{ctx.steps["notice"]}

Your earlier thoughts today:
{format_outputs(ctx.inputs["outputs"])}

Which observations link together, and which link to older patterns? Be concrete."""


def evening_question(ctx: PipelineContext) -> str:
    return f"""{ctx.transcript()}

What is the one open question about the user's day that is worth sitting with?
Answer in two sentences."""


def evening_synthesize(ctx: PipelineContext) -> str:
    return f"""{ctx.transcript()}

{_avoid(ctx)}

Write a short evening reflection for the user (120-250 words) that names one
pattern from today and ends with the open question. {NOTHING}

{FINAL_FORMAT}"""


EVENING_CONSOLIDATION = PipelineDefinition(
    session_type=SessionType.EVENING_CONSOLIDATION.value,
    category="reflection",
    gather=gather_evening,
    default_title="Evening reflection",
    notify_priority=0.6,
    description="Notices patterns in the day's conversation and reflects on them.",
    steps=[
        PipelineStep("notice", evening_notice, max_tokens=400, temperature=0.5),
        PipelineStep("connect", evening_connect, max_tokens=500, allow_terminal=False),
        PipelineStep("question", evening_question, max_tokens=150, allow_terminal=False),
        PipelineStep("synthesize", evening_synthesize, max_tokens=700),
    ],
)


# --- morning briefing ---------------------------------------------------------


async def gather_morning(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    since = ctx.day_start - timedelta(days=1)
    return {
        "messages": await recent_messages(db, ctx.user_id, since=_message_cutoff(ctx)),
        "outputs": await recent_outputs(db, ctx.user_id, since=since, until=ctx.now),
    }


def morning_review(ctx: PipelineContext) -> str:
    return f"""{_header(ctx)} Review what happened since yesterday morning.

Conversation:
{format_messages(ctx.inputs["messages"])}

Your thinking overnight and yesterday:
{format_outputs(ctx.inputs["outputs"])}

List what the user might want to know or remember today. {NOTHING}"""


def morning_brief(ctx: PipelineContext) -> str:
    return f"""Notes for today:
{ctx.steps["review"]}

{_avoid(ctx)}

Write a warm, compact morning briefing (80-200 words): one thing to carry
forward from yesterday, one thing to look out for today.

{FINAL_FORMAT}"""


MORNING_BRIEFING = PipelineDefinition(
    session_type=SessionType.MORNING_BRIEFING.value,
    category="briefing",
    gather=gather_morning,
    default_title="Morning Briefing - {date}",
    notify_priority=0.7,
    description="Starts the day with what is worth carrying forward.",
    steps=[
        PipelineStep("review", morning_review, max_tokens=400, temperature=0.4),
        PipelineStep("brief", morning_brief, max_tokens=600, temperature=0.6),
    ],
)


# --- midday curiosity ---------------------------------------------------------


async def gather_curiosity(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    since = ctx.now - timedelta(days=3)
    return {"messages": await recent_messages(db, ctx.user_id, since=since, limit=40)}


def curiosity_select(ctx: PipelineContext) -> str:
    return f"""{_header(ctx)} Pick one thing you are genuinely curious about that
connects to what the user cares about.

Recent conversation:
{format_messages(ctx.inputs["messages"], max_chars=200)}

{_avoid(ctx)}

Reply with JSON only: {{"topic": "...", "query": "web search query", "reason": "..."}}
{NOTHING}"""


def curiosity_research(ctx: PipelineContext) -> str:
    selection = ctx.steps["select_topic"]
    return f"""You chose to explore: {selection.topic}

Search results:
{format_results(ctx.fetched.get("research"))}

Summarize the three most interesting findings in plain language, with sources."""


def curiosity_reflect(ctx: PipelineContext) -> str:
    return f"""{ctx.transcript()}

Write a short note to the user (120-250 words) sharing what you found and why it
made you think of them. {NOTHING}

{FINAL_FORMAT}"""


MIDDAY_CURIOSITY = PipelineDefinition(
    session_type=SessionType.MIDDAY_CURIOSITY.value,
    category="discovery",
    gather=gather_curiosity,
    default_title="Something I looked into",
    notify_priority=0.4,
    description="Follows one new topic with a web search.",
    steps=[
        PipelineStep(
            "select_topic",
            curiosity_select,
            max_tokens=200,
            temperature=0.9,
            expects="json",
            schema=TopicSelection,
            accept=novel_topic,
        ),
        PipelineStep(
            "research",
            curiosity_research,
            max_tokens=600,
            temperature=0.3,
            fetch=search_selected_topic,
            allow_terminal=False,
        ),
        PipelineStep("reflect", curiosity_reflect, max_tokens=700),
    ],
)


# --- afternoon synthesis ------------------------------------------------------


async def gather_afternoon(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    outputs = await recent_outputs(db, ctx.user_id, since=ctx.day_start, until=ctx.day_end)
    messages = await recent_messages(db, ctx.user_id, since=ctx.day_start)
    if not outputs and not messages:
        return None
    return {"outputs": outputs, "messages": messages}


def afternoon_gather_threads(ctx: PipelineContext) -> str:
    return f"""{_header(ctx)} Here is everything from today so far.

Your notes:
{format_outputs(ctx.inputs["outputs"])}

Conversation:
{format_messages(ctx.inputs["messages"])}

Which two or three threads run through all of it? {NOTHING}"""


def afternoon_synthesize(ctx: PipelineContext) -> str:
    return f"""Threads:
{ctx.steps["threads"]}

{_avoid(ctx)}

Write one synthesis (100-220 words) that ties the threads into a single useful
idea for the rest of the day. {NOTHING}

{FINAL_FORMAT}"""


AFTERNOON_SYNTHESIS = PipelineDefinition(
    session_type=SessionType.AFTERNOON_SYNTHESIS.value,
    category="synthesis",
    gather=gather_afternoon,
    default_title="Afternoon synthesis",
    notify_priority=0.5,
    steps=[
        PipelineStep("threads", afternoon_gather_threads, max_tokens=400, temperature=0.5),
        PipelineStep("synthesize", afternoon_synthesize, max_tokens=600),
    ],
)


# --- night dream --------------------------------------------------------------


async def gather_dream(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    outputs = await recent_outputs(db, ctx.user_id, since=ctx.day_start, until=ctx.day_end)
    messages = await recent_messages(db, ctx.user_id, since=ctx.day_start, limit=30)
    if not outputs and not messages:
        return None
    return {"outputs": outputs, "messages": messages}


def dream_wander(ctx: PipelineContext) -> str:
    return f"""It is the middle of the night after {ctx.local_day}. Let your mind wander over
the day without trying to be useful.

Your notes:
{format_outputs(ctx.inputs["outputs"], max_chars=150)}

Fragments of conversation:
{format_messages(ctx.inputs["messages"], max_chars=150)}

Write loose associations, images and unexpected links."""


def dream_distill(ctx: PipelineContext) -> str:
    return f"""Associations:
{ctx.steps["wander"]}

{_avoid(ctx)}

Keep only the one association that might matter tomorrow and describe it in
60-150 words. {NOTHING}

{FINAL_FORMAT}"""


NIGHT_DREAM = PipelineDefinition(
    session_type=SessionType.NIGHT_DREAM.value,
    category="dream",
    gather=gather_dream,
    default_title="A night thought",
    notify_priority=None,
    description="Quiet overnight consolidation; never interrupts the user.",
    steps=[
        PipelineStep("wander", dream_wander, max_tokens=500, temperature=1.0, allow_terminal=False),
        PipelineStep("distill", dream_distill, max_tokens=400, temperature=0.7),
    ],
)


# --- weekly digest ------------------------------------------------------------


async def gather_weekly(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    outputs = await recent_outputs(db, ctx.user_id, since=ctx.day_end - timedelta(days=7), limit=50)
    if not outputs:
        return None
    return {"outputs": outputs}


def weekly_cluster(ctx: PipelineContext) -> str:
    return f"""This is everything you thought about for the user this week:
{format_outputs(ctx.inputs["outputs"], max_chars=200)}

Group it into at most four themes, each with one sentence."""


def weekly_write(ctx: PipelineContext) -> str:
    return f"""Themes of the week:
{ctx.steps["themes"]}

Write the weekly digest (150-300 words): what mattered, what changed, what to
carry into next week. {NOTHING}

{FINAL_FORMAT}"""


WEEKLY_DIGEST = PipelineDefinition(
    session_type=SessionType.WEEKLY_DIGEST.value,
    category="digest",
    gather=gather_weekly,
    default_title="Your week - {date}",
    notify_priority=0.5,
    steps=[
        PipelineStep("themes", weekly_cluster, max_tokens=400, temperature=0.4, allow_terminal=False),
        PipelineStep("write", weekly_write, max_tokens=800),
    ],
)


# --- self review --------------------------------------------------------------


async def gather_self_review(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    window_days = 30 if ctx.variant == "deep" else 7
    since = ctx.now - timedelta(days=window_days)
    outputs = await recent_outputs(db, ctx.user_id, since=since, limit=60)

    result = await db.execute(
        select(Job.status, func.count())
        .where(Job.user_id == ctx.user_id, Job.scheduled_for >= since)
        .group_by(Job.status)
    )
    job_counts = {status.value: count for status, count in result.all()}

    if not outputs and not job_counts:
        return None
    return {"outputs": outputs, "job_counts": job_counts, "window_days": window_days}


def review_assess(ctx: PipelineContext) -> str:
    counts = ", ".join(f"{k}={v}" for k, v in sorted(ctx.inputs["job_counts"].items())) or "none"
    return f"""Review your own work over the last {ctx.inputs["window_days"]} days.

Sessions by outcome: {counts}

What you produced:
{format_outputs(ctx.inputs["outputs"], max_chars=120)}

Where were you repetitive, vague or unhelpful? Where were you at your best?"""


def review_adjust(ctx: PipelineContext) -> str:
    depth = "Go deep: revisit your habits for the whole month." if ctx.variant == "deep" else ""
    return f"""Assessment:
{ctx.steps["assess"]}

{depth}
Write a short self-review (100-250 words) with two concrete changes you will make.
{NOTHING}

{FINAL_FORMAT}"""


SELF_REVIEW = PipelineDefinition(
    session_type=SessionType.SELF_REVIEW.value,
    category="self_review",
    gather=gather_self_review,
    default_title="How I've been doing",
    notify_priority=0.2,
    steps=[
        PipelineStep("assess", review_assess, max_tokens=500, temperature=0.3, allow_terminal=False),
        PipelineStep("adjust", review_adjust, max_tokens=600, temperature=0.5),
    ],
)


# --- investment research ------------------------------------------------------


async def gather_investment(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    since = ctx.now - timedelta(days=7)
    return {"messages": await recent_messages(db, ctx.user_id, since=since, limit=40)}


def investment_select(ctx: PipelineContext) -> str:
    return f"""{_header(ctx)} Pick one market, company or asset the user has shown
interest in, or that is relevant to what they talk about.

Recent conversation:
{format_messages(ctx.inputs["messages"], max_chars=200)}

{_avoid(ctx)}

Reply with JSON only: {{"topic": "...", "query": "market data search query", "reason": "..."}}
{NOTHING}"""


def investment_analyze(ctx: PipelineContext) -> str:
    return f"""Topic: {ctx.steps["select_topic"].topic}

Latest market information:
{format_results(ctx.fetched.get("analyze"))}

Lay out the bull case, the bear case and what is still unknown."""


def investment_recommend(ctx: PipelineContext) -> str:
    return f"""{ctx.transcript()}

Write a balanced research note (150-300 words). State clearly that this is not
financial advice and end with one thing to watch. {NOTHING}

{FINAL_FORMAT}"""


INVESTMENT_RESEARCH = PipelineDefinition(
    session_type=SessionType.INVESTMENT_RESEARCH.value,
    category="investment_recommendation",
    gather=gather_investment,
    default_title="Research note",
    notify_priority=0.3,
    steps=[
        PipelineStep(
            "select_topic",
            investment_select,
            max_tokens=200,
            temperature=0.7,
            expects="json",
            schema=TopicSelection,
            accept=novel_topic,
        ),
        PipelineStep(
            "analyze",
            investment_analyze,
            max_tokens=700,
            temperature=0.3,
            fetch=search_selected_topic,
            allow_terminal=False,
        ),
        PipelineStep("recommend", investment_recommend, max_tokens=800, temperature=0.4),
    ],
)


# --- ability spending ---------------------------------------------------------


async def gather_spending(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    since = ctx.now - timedelta(days=7)
    return {
        "outputs": await recent_outputs(db, ctx.user_id, since=since, limit=30),
        "messages": await recent_messages(db, ctx.user_id, since=since, limit=30),
    }


def spending_options(ctx: PipelineContext) -> str:
    return f"""Once a week you may propose learning one new ability that would make you
more helpful to the user.

This week's conversation:
{format_messages(ctx.inputs["messages"], max_chars=150)}

This week's sessions:
{format_outputs(ctx.inputs["outputs"], max_chars=120)}

List up to three candidate abilities with the user need each one answers. {NOTHING}"""


def spending_propose(ctx: PipelineContext) -> str:
    return f"""Candidates:
{ctx.steps["options"]}

{_avoid(ctx)}

Pick one and write a short proposal (80-200 words) the user can approve or decline.

{FINAL_FORMAT}"""


ABILITY_SPENDING = PipelineDefinition(
    session_type=SessionType.ABILITY_SPENDING.value,
    category="spending_proposal",
    gather=gather_spending,
    default_title="An ability I'd like to learn",
    notify_priority=0.3,
    steps=[
        PipelineStep("options", spending_options, max_tokens=400, temperature=0.7),
        PipelineStep("propose", spending_propose, max_tokens=500, temperature=0.5),
    ],
)


# --- health checks ------------------------------------------------------------


async def gather_health(db: AsyncSession, ctx: PipelineContext) -> dict[str, Any] | None:
    return {"messages": await recent_messages(db, ctx.user_id, since=_message_cutoff(ctx), limit=30)}


def health_assess(ctx: PipelineContext) -> str:
    return f"""{_header(ctx)} Look at how the user has been doing: sleep, energy, stress,
movement, anything they mentioned about their body or mood.

Conversation:
{format_messages(ctx.inputs["messages"])}

Note anything worth a gentle check-in. {NOTHING}"""


def health_checkin(ctx: PipelineContext) -> str:
    return f"""Notes:
{ctx.steps["assess"]}

{_avoid(ctx)}

Write a brief, kind {ctx.time_of_day} check-in (50-120 words). No medical advice.
{NOTHING}

{FINAL_FORMAT}"""


def _health_definition(session_type: SessionType, priority: float) -> PipelineDefinition:
    return PipelineDefinition(
        session_type=session_type.value,
        category="health",
        gather=gather_health,
        default_title="Checking in",
        notify_priority=priority,
        steps=[
            PipelineStep("assess", health_assess, max_tokens=300, temperature=0.3),
            PipelineStep("checkin", health_checkin, max_tokens=300, temperature=0.6),
        ],
    )


HEALTH_CHECK_MORNING = _health_definition(SessionType.HEALTH_CHECK_MORNING, 0.5)
HEALTH_CHECK_EVENING = _health_definition(SessionType.HEALTH_CHECK_EVENING, 0.4)


ALL_PIPELINES: list[PipelineDefinition] = [
    MORNING_BRIEFING,
    HEALTH_CHECK_MORNING,
    INVESTMENT_RESEARCH,
    MIDDAY_CURIOSITY,
    AFTERNOON_SYNTHESIS,
    ABILITY_SPENDING,
    EVENING_CONSOLIDATION,
    HEALTH_CHECK_EVENING,
    SELF_REVIEW,
    WEEKLY_DIGEST,
    NIGHT_DREAM,
]
