"""Web-search / market-data provider adapter."""

from typing import Any, Protocol

import httpx

from circadian.config import get_settings
from circadian.core.logging import get_logger
from circadian.core.retry import RetryConfig, retry_with_backoff
from circadian.schemas.pipeline import SearchResult

logger = get_logger(__name__)


class SearchProvider(Protocol):
    """Protocol for search backends."""

    async def search(self, query: str, *, limit: int = 5) -> list[SearchResult]:
        """Return results for a query, best first."""
        ...


class HttpSearchProvider:
    """JSON search API over httpx.

    Expects ``GET {url}?q=...&limit=...`` returning ``{"results": [{title, url, snippet}]}``.
    An unconfigured provider returns no results so pipelines degrade to
    reasoning over context only.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = base_url if base_url is not None else settings.search_api_url
        self.api_key = api_key if api_key is not None else settings.search_api_key
        self.timeout = timeout or settings.search_timeout_seconds
        self.transport = transport
        self.retry_config = RetryConfig(max_attempts=3, backoff_base=1.0, backoff_max=10.0)

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def search(self, query: str, *, limit: int = 5) -> list[SearchResult]:
        if not self.configured:
            logger.bind(query=query).debug("search_provider_not_configured")
            return []

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:

            async def _fetch() -> dict[str, Any]:
                response = await client.get(
                    self.base_url,
                    params={"q": query, "limit": limit},
                    headers=headers,
                )
                response.raise_for_status()
                return response.json()

            data = await retry_with_backoff(
                _fetch, config=self.retry_config, operation_name=f"search:{query[:40]}"
            )

        results = [SearchResult.model_validate(r) for r in data.get("results", [])[:limit]]
        logger.bind(query=query, results=len(results)).info("search_completed")
        return results


def get_search_provider() -> SearchProvider:
    return HttpSearchProvider()
