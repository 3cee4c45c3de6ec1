"""Web search client used by the search-backed tools."""

from dataclasses import dataclass
from typing import Protocol

import httpx

SNIPPET_LENGTH = 300


class SearchError(Exception):
    def __init__(self, status_code: int | None, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class SearchNotConfiguredError(SearchError):
    def __init__(self) -> None:
        super().__init__(None, "Search is not configured")


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    snippet: str
    published_date: str | None = None


class SearchClient(Protocol):
    async def search(
        self, query: str, max_results: int = 5, days: int | None = None
    ) -> list[SearchResult]: ...


class TavilySearchClient:
    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.tavily.com",
        timeout_s: float = 10.0,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s

    async def search(
        self, query: str, max_results: int = 5, days: int | None = None
    ) -> list[SearchResult]:
        if not self._api_key:
            raise SearchNotConfiguredError()

        body: dict[str, object] = {
            "api_key": self._api_key,
            "query": query,
            "max_results": max_results,
            "include_answer": False,
        }
        if days is not None:
            body["days"] = days

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(f"{self._base_url}/search", json=body)
        except httpx.TimeoutException as exc:
            raise SearchError(None, "Search request timed out") from exc
        except httpx.HTTPError as exc:
            raise SearchError(None, "Search request failed") from exc

        if resp.status_code >= 400:
            raise SearchError(resp.status_code, f"Search API error: {resp.status_code}")

        payload = resp.json()
        raw_results = payload.get("results") if isinstance(payload, dict) else None
        results: list[SearchResult] = []
        for item in raw_results if isinstance(raw_results, list) else []:
            if not isinstance(item, dict):
                continue
            published = item.get("published_date")
            results.append(
                SearchResult(
                    title=str(item.get("title", "")),
                    url=str(item.get("url", "")),
                    snippet=str(item.get("content", ""))[:SNIPPET_LENGTH],
                    published_date=str(published) if published else None,
                )
            )
        return results
