"""Google Custom Search collaborator used by the `web_search` tool.

Failures never raise: a misconfigured or unreachable search backend returns a
single synthetic result describing the problem so the model can narrate it.
"""

from __future__ import annotations

import logging
from typing import Any, TypedDict

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


class SearchResult(TypedDict):
    title: str
    link: str
    snippet: str


def _error_result(title: str, snippet: str) -> dict[str, list[SearchResult]]:
    return {"results": [{"title": title, "link": "", "snippet": snippet}]}


class WebSearchService:
    """Query the search backend and normalize its items."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._http_client = http_client

    @property
    def configured(self) -> bool:
        return bool(self._settings.google_api_key and self._settings.google_cse_id)

    async def search(self, query: str) -> dict[str, list[SearchResult]]:
        if not self.configured:
            logger.warning("Google API key or CSE ID not configured")
            return _error_result(
                "Web Search Configuration Error",
                "Web search is not properly configured. Google API credentials are "
                "missing. Please check your environment variables for "
                "GOOGLE_API_KEY and GOOGLE_CSE_ID.",
            )

        assert self._settings.google_api_key is not None
        params = {
            "key": self._settings.google_api_key.get_secret_value(),
            "cx": self._settings.google_cse_id,
            "q": query,
            "num": self._settings.search_result_limit,
        }
        logger.info("[WebSearch] Searching for: %s", query)

        try:
            response = await self._get(str(self._settings.search_base_url), params)
        except httpx.HTTPError as exc:
            logger.error("[WebSearch] Search request failed: %s", exc)
            return _error_result(
                "Google Search Network Error",
                f"Network error occurred while searching: {exc}",
            )

        if response.status_code >= 400:
            logger.error(
                "[WebSearch] Request failed: %s %s",
                response.status_code,
                response.text[:500],
            )
            return _error_result(
                "Google Search API Error",
                f"Google Search API returned error {response.status_code}. "
                "Please check your API configuration.",
            )

        try:
            data = response.json()
        except ValueError:
            logger.error("[WebSearch] Response was not JSON")
            return _error_result(
                "Google Search API Error",
                "Google Search API returned an unreadable response.",
            )

        results = self._normalize_items(data)
        logger.info("[WebSearch] Returning %d results", len(results))
        return {"results": results[: self._settings.search_result_limit]}

    async def _get(self, url: str, params: dict[str, Any]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.get(url, params=params)
        async with httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0)) as client:
            return await client.get(url, params=params)

    @staticmethod
    def _normalize_items(data: Any) -> list[SearchResult]:
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            logger.info("[WebSearch] No items found in response")
            return []
        results: list[SearchResult] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            results.append(
                {
                    "title": str(item.get("title") or ""),
                    "link": str(item.get("link") or ""),
                    "snippet": str(item.get("snippet") or ""),
                }
            )
        return results


__all__ = ["SearchResult", "WebSearchService"]
