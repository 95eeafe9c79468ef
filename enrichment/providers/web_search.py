"""
Brave Search API client for the keyword web-search fallback.

Results are normalized so the extractor and heuristic code don't care which
search backend produced them.
"""

from __future__ import annotations

import contextlib
from typing import Any, Optional
from urllib.parse import urlparse

import structlog
from pydantic import BaseModel, Field

from enrichment.config import ProviderConfig, get_settings
from enrichment.resilience.client import ResilientClient

logger = structlog.get_logger()

WEB_SEARCH_UPSTREAM = "web_search"


class NormalizedResult(BaseModel):
    """A single normalized search result."""

    title: str = ""
    url: str = ""
    snippet: str = ""
    extra_snippets: list[str] = Field(default_factory=list)
    domain: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.domain and self.url:
            with contextlib.suppress(ValueError):
                self.domain = (urlparse(self.url).hostname or "").lower()

    def text_blocks(self) -> list[str]:
        return [t for t in (self.title, self.snippet, *self.extra_snippets) if t]


class SearchResponse(BaseModel):
    query: str
    provider: str = "brave"
    results: list[NormalizedResult] = Field(default_factory=list)
    ok: bool = True
    error: Optional[str] = None
    retry_count: int = 0


def format_results_for_extraction(results: list[NormalizedResult], limit: int, max_chars: int) -> str:
    """Title/description/snippets of the top ``limit`` hits, separated and capped."""
    parts: list[str] = []
    for hit in results[:limit]:
        lines: list[str] = []
        if hit.title:
            lines.append(f"Title: {hit.title}")
        if hit.snippet:
            lines.append(f"Description: {hit.snippet}")
        if hit.extra_snippets:
            lines.append(f"Snippets: {' | '.join(hit.extra_snippets)}")
        if lines:
            lines.append(f"URL: {hit.url}")
            parts.append("\n".join(lines))
    return "\n\n---\n\n".join(parts)[:max_chars]


class BraveSearchTool:
    """Brave Search API via the shared resilient client (``web_search`` breaker)."""

    def __init__(self, resilient: ResilientClient, providers: Optional[ProviderConfig] = None) -> None:
        cfg = providers or get_settings().providers
        self.api_key = cfg.web_search_api_key
        self.url = cfg.web_search_url
        self.max_results = cfg.web_search_results
        self._resilient = resilient

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def search(self, query: str, max_results: Optional[int] = None) -> SearchResponse:
        """Execute a Brave search. Never raises; failures come back with ok=False."""
        if not self.is_configured:
            logger.warning("brave_no_api_key")
            return SearchResponse(query=query, ok=False, error="web search not configured")

        result = await self._resilient.request_json(
            WEB_SEARCH_UPSTREAM,
            "GET",
            self.url,
            headers={
                "X-Subscription-Token": self.api_key,
                "Accept": "application/json",
            },
            params={"q": query, "count": max_results or self.max_results},
        )
        if not result.success:
            return SearchResponse(query=query, ok=False, error=result.error, retry_count=result.retry_count)

        data = result.data
        if not isinstance(data, dict):
            logger.warning("brave_unexpected_response_type", type=type(data).__name__)
            return SearchResponse(query=query, retry_count=result.retry_count)
        web = data.get("web")
        if not isinstance(web, dict):
            web = {}
        raw_results = web.get("results", [])
        if not isinstance(raw_results, list):
            raw_results = []

        results = []
        for item in raw_results:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            extra = item.get("extra_snippets")
            results.append(
                NormalizedResult(
                    title=item.get("title") or "",
                    url=item.get("url") or "",
                    snippet=item.get("description") or "",
                    extra_snippets=[s for s in extra if isinstance(s, str)] if isinstance(extra, list) else [],
                )
            )

        logger.info("brave_search_complete", num_results=len(results), retry_count=result.retry_count)
        return SearchResponse(query=query, results=results, retry_count=result.retry_count)
