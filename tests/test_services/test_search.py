"""Tests for the HTTP search adapter."""

import httpx
import pytest

from circadian.core.retry import RetryConfig
from circadian.services.search import HttpSearchProvider

pytestmark = pytest.mark.asyncio

RESULTS = {
    "results": [
        {"title": "Tidal lagoons", "url": "https://example.com/1", "snippet": "Lagoons store energy."},
        {"title": "Tidal turbines", "url": "https://example.com/2"},
        {"title": "Tidal maps", "url": "https://example.com/3"},
    ]
}


def _provider(handler, **kwargs) -> HttpSearchProvider:
    provider = HttpSearchProvider(
        base_url="https://search.example.com/v1/search",
        api_key=kwargs.pop("api_key", "secret"),
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )
    provider.retry_config = RetryConfig(max_attempts=2, backoff_base=0.0, jitter=False)
    return provider


class TestHttpSearchProvider:
    """Tests for HttpSearchProvider.search."""

    async def test_unconfigured_returns_nothing(self):
        provider = HttpSearchProvider(base_url="", api_key="")
        assert await provider.search("tides") == []

    async def test_parses_results(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json=RESULTS)

        results = await _provider(handler).search("tidal energy", limit=2)

        assert [r.title for r in results] == ["Tidal lagoons", "Tidal turbines"]
        assert results[1].snippet == ""
        assert seen["params"] == {"q": "tidal energy", "limit": "2"}
        assert seen["auth"] == "Bearer secret"

    async def test_retries_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json=RESULTS)

        results = await _provider(handler).search("tides")

        assert len(calls) == 2
        assert len(results) == 3

    async def test_gives_up_after_max_attempts(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route to host")

        with pytest.raises(httpx.ConnectError):
            await _provider(handler).search("tides")
