"""Web search: Google Custom Search JSON API over httpx.

``search()`` never raises: no match, misconfiguration, HTTP errors and
malformed payloads all degrade to an empty list (logged as a warning).
Cancellation still propagates so a closed session aborts the call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from errors import SearchUnavailable

logger = logging.getLogger(__name__)

# Custom Search caps ``num`` at 10.
_MAX_NUM = 10


@dataclass
class SearchResult:
    title: str
    link: str
    snippet: str = ""
    display_link: str = ""

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "link": self.link,
            "snippet": self.snippet,
            "displayLink": self.display_link,
        }


@dataclass
class SearchResultSet:
    """Results of one search, scoped to the request that ran it."""
    query: str
    results: list[SearchResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.results)

    def to_dict(self) -> dict:
        return {
            "status": "complete",
            "query": self.query,
            "results": [r.to_dict() for r in self.results],
        }


class SearchService:
    """Thin async client for the Custom Search API."""

    def __init__(
        self,
        api_key: str,
        engine_id: str,
        *,
        endpoint: str = "https://www.googleapis.com/customsearch/v1",
        max_results: int = 3,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._engine_id = engine_id
        self._endpoint = endpoint
        self.max_results = max_results
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> SearchService:
        from settings import settings

        return cls(
            settings.SEARCH_API_KEY,
            settings.SEARCH_ENGINE_ID,
            endpoint=settings.SEARCH_ENDPOINT,
            max_results=settings.SEARCH_MAX_RESULTS,
            timeout=settings.SEARCH_TIMEOUT,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._engine_id)

    async def _fetch(self, query: str, max_results: int) -> list[SearchResult]:
        if not self.configured:
            raise SearchUnavailable("search credentials are not configured")
        params = {
            "key": self._api_key,
            "cx": self._engine_id,
            "q": query,
            "num": max(1, min(max_results, _MAX_NUM)),
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(self._endpoint, params=params)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SearchUnavailable(f"search request failed: {e}") from e

        if not isinstance(data, dict):
            raise SearchUnavailable("search response is not a JSON object")
        items = data.get("items") or []
        return [
            SearchResult(
                title=item.get("title", ""),
                link=item.get("link", ""),
                snippet=item.get("snippet", ""),
                display_link=item.get("displayLink", ""),
            )
            for item in items[:max_results]
            if isinstance(item, dict)
        ]

    async def search(self, query: str, max_results: int | None = None) -> list[SearchResult]:
        """Top results for *query*; empty on no match or any failure."""
        try:
            return await self._fetch(query, max_results or self.max_results)
        except SearchUnavailable as e:
            logger.warning(f"Search for {query!r} unavailable: {e}")
            return []

    async def search_with_results(self, query: str) -> SearchResultSet:
        results = await self.search(query)
        if not results:
            logger.info(f"Search for {query!r} returned no results")
        return SearchResultSet(query=query, results=results)
