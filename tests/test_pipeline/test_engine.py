"""Tests for the pipeline engine and the session definitions it runs."""

import json
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from circadian.models.notification import Notification, NotificationStatus
from circadian.models.output import OutputRecord
from circadian.pipeline.engine import PipelineDefinition, PipelineStep
from circadian.pipeline.errors import MalformedOutputError, StepFailedError
from circadian.pipeline.sessions import (
    EVENING_CONSOLIDATION,
    MIDDAY_CURIOSITY,
    MORNING_BRIEFING,
    NIGHT_DREAM,
    SELF_REVIEW,
)
from circadian.schemas.pipeline import SearchResult

pytestmark = pytest.mark.asyncio

# 21:00 CDT on Monday 2026-03-09
NOW = datetime(2026, 3, 10, 2, 0)
TODAY = datetime(2026, 3, 9, 20, 0)  # 15:00 CDT
YESTERDAY = datetime(2026, 3, 9, 4, 0)  # 23:00 CDT on Mar 8

REFLECTION = (
    "TITLE: Circling back\nBODY:\nYou returned to the launch three times today and each time "
    "you sounded a little calmer. That shift is worth noticing."
)


async def _outputs(db):
    return list((await db.execute(select(OutputRecord))).scalars().all())


async def _notifications(db):
    return list((await db.execute(select(Notification))).scalars().all())


class TestPipelineDefinition:
    """Tests for definition validation."""

    async def test_requires_steps(self):
        async def gather(db, ctx):
            return {}

        with pytest.raises(ValueError):
            PipelineDefinition(session_type="empty", category="x", steps=[], gather=gather)

    async def test_final_step_must_be_text(self):
        async def gather(db, ctx):
            return {}

        with pytest.raises(ValueError):
            PipelineDefinition(
                session_type="json_last",
                category="x",
                gather=gather,
                steps=[PipelineStep("pick", lambda ctx: "pick", expects="json")],
            )


class TestEveningConsolidation:
    """Tests for the four-step evening pipeline."""

    async def test_no_messages_today_is_empty_success(
        self, db_session, user_factory, message_factory, make_engine, scripted
    ):
        user = await user_factory()
        await message_factory(user, created_at=YESTERDAY)
        generator = scripted()

        outcome = await make_engine(generator).run(db_session, EVENING_CONSOLIDATION, user.id, now=NOW)

        assert not outcome.produced
        assert outcome.reason == "no_input"
        assert generator.calls == 0

    async def test_full_run_creates_output_and_notification(
        self, db_session, user_factory, message_factory, make_engine, scripted
    ):
        user = await user_factory()
        await message_factory(user, "The launch is next week and I'm nervous.", created_at=TODAY)
        await message_factory(user, "Actually it's fine, we're ready.", created_at=TODAY + timedelta(hours=1))
        await message_factory(user, "This one is from yesterday.", created_at=YESTERDAY)
        generator = scripted(
            "- worry about the launch\n- calmer later on",
            "The worry and the calm are linked.",
            "What made the second conversation calmer?",
            REFLECTION,
        )

        outcome = await make_engine(generator).run(db_session, EVENING_CONSOLIDATION, user.id, now=NOW)

        assert outcome.produced
        assert outcome.steps_run == 4
        assert outcome.title == "Circling back"
        assert generator.calls == 4

        # Only today's conversation is read
        assert "nervous" in generator.prompts[0]
        assert "from yesterday" not in generator.prompts[0]
        # Later steps see earlier outputs
        assert "calmer later on" in generator.prompts[1]
        assert "[question]" in generator.prompts[3]

        [record] = await _outputs(db_session)
        assert record.category == "reflection"
        assert record.body.startswith("You returned to the launch")
        assert record.produced_at == NOW
        assert record.metadata_json["local_day"] == "2026-03-09"
        assert set(record.metadata_json["steps"]) == {"notice", "connect", "question", "synthesize"}

        [notification] = await _notifications(db_session)
        assert notification.output_id == record.id
        assert notification.status == NotificationStatus.PENDING
        assert notification.priority == EVENING_CONSOLIDATION.notify_priority
        assert notification.expires_at == NOW + timedelta(hours=24)

    async def test_terminal_marker_stops_run(self, db_session, user_factory, message_factory, make_engine, scripted):
        user = await user_factory()
        await message_factory(user, created_at=TODAY)
        generator = scripted("Nothing today.")

        outcome = await make_engine(generator).run(db_session, EVENING_CONSOLIDATION, user.id, now=NOW)

        assert not outcome.produced
        assert outcome.reason == "terminal_marker"
        assert outcome.steps_run == 1
        assert generator.calls == 1
        assert await _outputs(db_session) == []

    async def test_marker_ignored_where_not_allowed(
        self, db_session, user_factory, message_factory, make_engine, scripted
    ):
        """The connect step cannot end the run; its output is just text."""
        user = await user_factory()
        await message_factory(user, created_at=TODAY)
        generator = scripted("notes", "nothing today", "a question", REFLECTION)

        outcome = await make_engine(generator).run(db_session, EVENING_CONSOLIDATION, user.id, now=NOW)

        assert outcome.produced
        assert generator.calls == 4

    async def test_terminal_marker_on_final_step(
        self, db_session, user_factory, message_factory, make_engine, scripted
    ):
        user = await user_factory()
        await message_factory(user, created_at=TODAY)
        generator = scripted("notes", "links", "a question", "  nothing today  ")

        outcome = await make_engine(generator).run(db_session, EVENING_CONSOLIDATION, user.id, now=NOW)

        assert not outcome.produced
        assert outcome.reason == "terminal_marker"
        assert outcome.steps_run == 4

    async def test_short_output_is_not_recorded(self, db_session, user_factory, message_factory, make_engine, scripted):
        user = await user_factory()
        await message_factory(user, created_at=TODAY)
        generator = scripted("notes", "links", "a question", "TITLE: Hi\nBODY:\nToo short.")

        outcome = await make_engine(generator).run(db_session, EVENING_CONSOLIDATION, user.id, now=NOW)

        assert not outcome.produced
        assert outcome.reason == "too_short"
        assert await _outputs(db_session) == []

    async def test_empty_step_raises(self, db_session, user_factory, message_factory, make_engine, scripted):
        user = await user_factory()
        await message_factory(user, created_at=TODAY)

        with pytest.raises(StepFailedError):
            await make_engine(scripted("")).run(db_session, EVENING_CONSOLIDATION, user.id, now=NOW)

    async def test_explicit_local_day_overrides_now(
        self, db_session, user_factory, message_factory, make_engine, scripted
    ):
        """A job for Mar 9 that runs after local midnight still reads Mar 9."""
        user = await user_factory()
        await message_factory(user, created_at=TODAY)
        after_midnight = datetime(2026, 3, 10, 7, 0)  # 02:00 CDT on Mar 10

        outcome = await make_engine(scripted("notes", "links", "a question", REFLECTION)).run(
            db_session, EVENING_CONSOLIDATION, user.id, now=after_midnight, local_day="2026-03-09"
        )

        assert outcome.produced


class TestNotificationPolicy:
    """Tests for which sessions notify."""

    async def test_night_dream_does_not_notify(self, db_session, user_factory, message_factory, make_engine, scripted):
        user = await user_factory()
        await message_factory(user, created_at=TODAY)
        generator = scripted("loose associations", REFLECTION)

        outcome = await make_engine(generator).run(
            db_session, NIGHT_DREAM, user.id, now=datetime(2026, 3, 10, 7, 0), local_day="2026-03-09"
        )

        assert outcome.produced
        assert outcome.notification_id is None
        assert await _notifications(db_session) == []

    async def test_default_title_includes_local_date(self, db_session, user_factory, make_engine, scripted):
        user = await user_factory()
        morning = datetime(2026, 3, 9, 12, 0)  # 07:00 CDT
        generator = scripted(
            "Yesterday you mentioned the launch.",
            "Good morning. Yesterday you said the launch prep was finally under control, "
            "so today might be a good day to rest a little.",
        )

        outcome = await make_engine(generator).run(db_session, MORNING_BRIEFING, user.id, now=morning)

        assert outcome.title == "Morning Briefing - Mar 09, 2026"


class TestMiddayCuriosity:
    """Tests for topic selection, novelty and search."""

    async def test_novel_topic_is_researched(
        self, db_session, user_factory, message_factory, make_engine, scripted, fake_search
    ):
        user = await user_factory()
        await message_factory(user, "I went to the coast last weekend.", created_at=TODAY)
        selection = {"topic": "Tidal energy storage", "query": "tidal energy storage 2026", "reason": "coast"}
        generator = scripted(json.dumps(selection), "Three findings about tides.", REFLECTION)
        search = fake_search(SearchResult(title="Tidal lagoons", url="https://example.com/t", snippet="..."))

        outcome = await make_engine(generator, search).run(db_session, MIDDAY_CURIOSITY, user.id, now=NOW)

        assert outcome.produced
        assert search.queries == ["tidal energy storage 2026"]
        assert "Tidal lagoons" in generator.prompts[1]

        [record] = await _outputs(db_session)
        assert record.category == "discovery"
        assert record.metadata_json["topics"] == ["Tidal energy storage"]
        assert record.metadata_json["queries"] == ["tidal energy storage 2026"]
        assert record.metadata_json["steps"]["select_topic"]["topic"] == "Tidal energy storage"

    async def test_repeated_topic_is_rejected(
        self, db_session, user_factory, output_factory, make_engine, scripted, fake_search
    ):
        user = await user_factory()
        await output_factory(
            user,
            title="Tides",
            metadata={"topics": ["tidal energy storage"]},
            produced_at=NOW - timedelta(days=2),
        )
        generator = scripted('{"topic": "Tidal energy storage", "query": "tidal storage"}')
        search = fake_search()

        outcome = await make_engine(generator, search).run(db_session, MIDDAY_CURIOSITY, user.id, now=NOW)

        assert not outcome.produced
        assert outcome.reason == "rejected:select_topic"
        assert outcome.steps_run == 1
        assert search.queries == []

    async def test_malformed_selection_raises(self, db_session, user_factory, make_engine, scripted):
        user = await user_factory()

        with pytest.raises(MalformedOutputError):
            await make_engine(scripted("I'd like to look into tides.")).run(
                db_session, MIDDAY_CURIOSITY, user.id, now=NOW
            )

    async def test_selection_missing_topic_raises(self, db_session, user_factory, make_engine, scripted):
        user = await user_factory()

        with pytest.raises(MalformedOutputError):
            await make_engine(scripted('{"query": "tides"}')).run(db_session, MIDDAY_CURIOSITY, user.id, now=NOW)

    async def test_memory_reaches_prompt(self, db_session, user_factory, output_factory, make_engine, scripted):
        user = await user_factory()
        await output_factory(user, title="Why sourdough needs patience", produced_at=NOW - timedelta(days=1))
        generator = scripted("nothing today")

        await make_engine(generator).run(db_session, MIDDAY_CURIOSITY, user.id, now=NOW)

        assert "Why sourdough needs patience" in generator.prompts[0]


class TestSelfReview:
    """Tests for the monthly deep variant."""

    async def test_deep_variant_widens_window(self, db_session, user_factory, output_factory, make_engine, scripted):
        user = await user_factory()
        await output_factory(user, title="Three weeks ago", produced_at=NOW - timedelta(days=21))
        generator = scripted("assessment", REFLECTION)

        outcome = await make_engine(generator).run(
            db_session, SELF_REVIEW, user.id, now=NOW, metadata={"variant": "deep"}
        )

        assert outcome.produced
        assert "last 30 days" in generator.prompts[0]
        assert "Three weeks ago" in generator.prompts[0]
        assert "Go deep" in generator.prompts[1]

    async def test_regular_variant_has_nothing_to_review(
        self, db_session, user_factory, output_factory, make_engine, scripted
    ):
        user = await user_factory()
        await output_factory(user, title="Three weeks ago", produced_at=NOW - timedelta(days=21))

        outcome = await make_engine(scripted()).run(db_session, SELF_REVIEW, user.id, now=NOW)

        assert outcome.reason == "no_input"
