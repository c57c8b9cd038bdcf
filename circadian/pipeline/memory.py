"""Anti-repetition memory.

Recent output titles, topics and search queries for a user, used to keep
prompts and topic choices from repeating what was already said.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from circadian.core.clock import get_cutoff
from circadian.models.output import OutputRecord

SIMILARITY_THRESHOLD = 0.6
MIN_SIGNIFICANT_TOKENS = 3

STOPWORDS = frozenset(
    "a an and are as at be by for from how in into is it its of on or that the this to "
    "what when where which who why with about your you my our their".split()
)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def significant_tokens(text: str) -> set[str]:
    """Lowercased word tokens minus stopwords and one-letter noise."""
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) > 1 and t not in STOPWORDS}


def _words(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _contains_run(haystack: list[str], needle: list[str]) -> bool:
    """Whether ``needle`` appears as a contiguous run of whole words in ``haystack``."""
    size = len(needle)
    if not size or size > len(haystack):
        return False
    return any(haystack[i : i + size] == needle for i in range(len(haystack) - size + 1))


@dataclass
class RecentMemory:
    """Snapshot of what a user has recently been told."""

    titles: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    queries: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.titles or self.topics or self.queries)

    def _history(self) -> list[str]:
        return [*self.titles, *self.topics, *self.queries]

    def is_novel(self, candidate: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
        """Whether a candidate topic/title differs enough from recent history.

        A candidate is a repeat when one contains the other as a run of whole
        words, or when the Jaccard overlap of significant tokens reaches
        ``threshold``. Empty history and candidates too short to compare are
        always novel; history entries that short are ignored.
        """
        if self.is_empty:
            return True

        candidate_tokens = significant_tokens(candidate)
        if len(candidate_tokens) < MIN_SIGNIFICANT_TOKENS:
            return True

        words = _words(candidate)
        for previous in self._history():
            prev_tokens = significant_tokens(previous)
            # Too short to say anything about the candidate
            if len(prev_tokens) < MIN_SIGNIFICANT_TOKENS:
                continue

            prev_words = _words(previous)
            if _contains_run(prev_words, words) or _contains_run(words, prev_words):
                return False

            overlap = len(candidate_tokens & prev_tokens) / len(candidate_tokens | prev_tokens)
            if overlap >= threshold:
                return False
        return True

    def summary(self, max_items: int = 10) -> str:
        """Prompt block listing recent output to avoid."""
        if self.is_empty:
            return "Nothing yet. Anything is fair game."

        lines = []
        if self.titles:
            lines.append("Recent titles:")
            lines.extend(f"- {t}" for t in self.titles[:max_items])
        if self.topics:
            lines.append("Recent topics:")
            lines.extend(f"- {t}" for t in self.topics[:max_items])
        if self.queries:
            lines.append("Recent searches:")
            lines.extend(f"- {q}" for q in self.queries[:max_items])
        return "\n".join(lines)


def _append_unique(target: list[str], value: object) -> None:
    if isinstance(value, str) and value.strip() and value not in target:
        target.append(value.strip())


async def load_recent_memory(
    db: AsyncSession,
    user_id: uuid.UUID,
    lookback_days: int = 14,
    limit: int = 20,
    now: datetime | None = None,
) -> RecentMemory:
    """Load recent output records for a user, newest first."""
    cutoff = get_cutoff(days=lookback_days, now=now)
    result = await db.execute(
        select(OutputRecord)
        .where(OutputRecord.user_id == user_id, OutputRecord.produced_at >= cutoff)
        .order_by(OutputRecord.produced_at.desc())
        .limit(limit)
    )

    memory = RecentMemory()
    for record in result.scalars().all():
        _append_unique(memory.titles, record.title)
        meta = record.metadata_json or {}
        for topic in meta.get("topics", []):
            _append_unique(memory.topics, topic)
        for query in meta.get("queries", []):
            _append_unique(memory.queries, query)
    return memory
