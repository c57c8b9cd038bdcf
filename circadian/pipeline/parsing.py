"""Parsing of raw generation output.

Every step result passes through here: terminal-marker detection, titled output
and JSON payloads.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

from circadian.pipeline.errors import MalformedOutputError

DEFAULT_TERMINAL_MARKER = "nothing today"

TITLE_RE = re.compile(r"^\s*\**TITLE\**\s*:\**\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)
BODY_RE = re.compile(r"^\s*\**BODY\**\s*:\**\s*", re.IGNORECASE | re.MULTILINE)
HEADING_RE = re.compile(r"^\s*#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)
FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

_STRIP_CHARS = " \t\r\n\"'`*"


@dataclass
class TitledOutput:
    title: str
    body: str


def is_terminal_marker(text: str | None, marker: str = DEFAULT_TERMINAL_MARKER) -> bool:
    """True when the whole output is the "nothing to report" marker.

    Case-insensitive exact match after trimming whitespace, quotes, emphasis
    and one trailing period. A marker embedded in longer prose does not count.
    """
    if text is None:
        return False
    cleaned = text.strip(_STRIP_CHARS)
    if cleaned.endswith("."):
        cleaned = cleaned[:-1].strip(_STRIP_CHARS)
    return cleaned.lower() == marker.strip().lower()


def _clean_title(title: str) -> str:
    return title.strip(_STRIP_CHARS).strip()


def parse_titled_output(text: str, default_title: str) -> TitledOutput:
    """Split final-step output into title and body.

    Accepts ``TITLE: ...`` with an optional ``BODY:`` label, a leading markdown
    heading, or plain prose (which gets ``default_title``).
    """
    text = text.strip()

    title_match = TITLE_RE.search(text)
    if title_match:
        title = _clean_title(title_match.group(1))
        rest = (text[: title_match.start()] + text[title_match.end() :]).strip()
        body_match = BODY_RE.search(rest)
        if body_match:
            rest = rest[body_match.end() :]
        return TitledOutput(title=title or default_title, body=rest.strip())

    heading_match = HEADING_RE.search(text)
    if heading_match and not text[: heading_match.start()].strip():
        body = text[heading_match.end() :]
        body_match = BODY_RE.search(body)
        if body_match and not body[: body_match.start()].strip():
            body = body[body_match.end() :]
        return TitledOutput(title=_clean_title(heading_match.group(1)) or default_title, body=body.strip())

    body_match = BODY_RE.match(text)
    if body_match:
        text = text[body_match.end() :]
    return TitledOutput(title=default_title, body=text.strip())


def parse_json_object(text: str) -> dict[str, Any]:
    """Extract a JSON object from model output.

    Tolerates code fences and prose around the object.

    Raises:
        MalformedOutputError: no JSON object could be decoded
    """
    candidates: list[str] = []
    fence = FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            value = json.loads(candidate.strip())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value

    raise MalformedOutputError(f"Expected a JSON object, got: {text[:120]!r}")
