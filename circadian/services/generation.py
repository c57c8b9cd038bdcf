"""Text-generation adapter.

Pipelines depend on the ``TextGenerator`` protocol only; ``OpenAIGenerator`` is the
production implementation. Errors propagate so the executor can fail the job.
"""

from typing import Protocol

import backoff
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError

from circadian.config import get_settings
from circadian.core.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are the inner voice of a personal AI companion.
Between conversations you think on your own: you notice patterns, follow your
curiosity and prepare things that will genuinely help the person you talk with.

Rules:
- Write in first person, warm and specific, never generic
- Ground every claim in the context you are given
- Never invent facts about the user
- If there is truly nothing worth saying, answer exactly: nothing today"""


class GenerationError(RuntimeError):
    """The generation service returned no usable completion."""


class TextGenerator(Protocol):
    """Protocol for text generation backends."""

    async def generate(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        """Return the completion text for a prompt."""
        ...


class OpenAIGenerator:
    """Chat-completions backed generator."""

    def __init__(self, client: AsyncOpenAI | None = None, model: str | None = None) -> None:
        settings = get_settings()
        self.model = model or settings.llm_model
        self.client = client or AsyncOpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.llm_timeout_seconds,
        )

    @backoff.on_exception(
        backoff.expo,
        (RateLimitError, APITimeoutError, APIConnectionError),
        max_tries=5,
        max_time=120,
    )
    async def generate(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )

        if not response.choices:
            raise GenerationError("Completion returned no choices")

        content = response.choices[0].message.content or ""
        if response.usage:
            logger.bind(
                model=self.model,
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
            ).debug("generation_completed")
        return content


def get_generator() -> TextGenerator:
    """Build the production generator from settings."""
    settings = get_settings()
    if not settings.openai_api_key:
        logger.warning("openai_api_key_not_set")
    return OpenAIGenerator()
