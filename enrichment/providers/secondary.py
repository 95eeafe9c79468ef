"""
Secondary strategy: keyword web search, then extraction or heuristics.

The top hits go through the same extraction model as the primary path. If
completion credentials are missing, the completion breaker is open, or the
model's output can't be parsed or validates to nothing but placeholder
text, the heuristic extractor runs over the same hits instead and the result is marked as not AI-generated.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Optional

import structlog

from enrichment.llm_client import COMPLETION_UPSTREAM
from enrichment.models import CompanyIdentity, ProviderSource
from enrichment.prompts.templates import COMPANY_SEARCH_QUERY_TEMPLATE
from enrichment.providers.base import EnrichmentProvider, ProviderOutcome
from enrichment.providers.extraction import ProfileExtractor, social_links_from_urls
from enrichment.providers.heuristic import HeuristicExtractor
from enrichment.providers.web_search import (
    WEB_SEARCH_UPSTREAM,
    BraveSearchTool,
    format_results_for_extraction,
)
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry
from enrichment.validation.profile import DEFAULT_PLACEHOLDER_PHRASES, is_fallback_content, validate_profile

logger = structlog.get_logger()

MAX_SOURCE_URLS = 5


class WebSearchProvider(EnrichmentProvider):
    name = "web_search"
    source = ProviderSource.SECONDARY
    upstreams = (WEB_SEARCH_UPSTREAM,)

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        search: BraveSearchTool,
        heuristic: HeuristicExtractor,
        extractor: Optional[ProfileExtractor] = None,
        hit_limit: int = 8,
        context_chars: int = 6000,
        placeholder_phrases: Iterable[str] = DEFAULT_PLACEHOLDER_PHRASES,
    ) -> None:
        super().__init__(breakers)
        self.search = search
        self.heuristic = heuristic
        self.extractor = extractor
        self.hit_limit = hit_limit
        self.context_chars = context_chars
        self.placeholder_phrases = tuple(placeholder_phrases)

    def is_configured(self) -> bool:
        return self.search.is_configured

    def _can_use_model(self) -> bool:
        return (
            self.extractor is not None
            and self.extractor.llm.is_configured
            and not self.breakers.is_open(COMPLETION_UPSTREAM)
        )

    def _is_usable(self, fields: dict[str, Any], identity: CompanyIdentity) -> bool:
        """Model output counts only if it validates to a real, non-placeholder profile."""
        validation = validate_profile(fields)
        return validation.is_valid and not is_fallback_content(
            validation.profile, identity.domain, self.placeholder_phrases
        )

    async def try_enrich(self, identity: CompanyIdentity) -> ProviderOutcome:
        query = COMPANY_SEARCH_QUERY_TEMPLATE.format(
            company_name=identity.display_name,
            domain=identity.domain,
        )
        response = await self.search.search(query)
        if not response.ok:
            return ProviderOutcome.failure(
                self.source,
                response.error or "web search failed",
                retry_count=response.retry_count,
            )
        if not response.results:
            return ProviderOutcome.failure(self.source, "web search returned no results", retry_count=response.retry_count)

        top_hits = response.results[: self.hit_limit]
        source_urls = [hit.url for hit in top_hits][:MAX_SOURCE_URLS]
        retries = response.retry_count
        warnings: list[str] = []
        model_outcome: Optional[ProviderOutcome] = None

        if self._can_use_model():
            context = format_results_for_extraction(top_hits, self.hit_limit, self.context_chars)
            parsed = await self.extractor.extract(identity, context, from_search_results=True)
            retries += parsed.retry_count
            if parsed.ok:
                fields = dict(parsed.data)
                social = social_links_from_urls(hit.url for hit in top_hits)
                if social:
                    fields["socialLinks"] = social
                model_outcome = ProviderOutcome(
                    ok=True,
                    source=self.source,
                    fields=fields,
                    ai_generated=True,
                    citation_urls=source_urls,
                    retry_count=retries,
                )
                if self._is_usable(fields, identity):
                    logger.info("web_search_extraction_complete", fields=sorted(fields), hits=len(top_hits))
                    return model_outcome
                logger.warning("web_search_extraction_unusable", fields=sorted(fields))
                warnings.append("AI extraction returned no usable profile; used keyword extraction")
            else:
                logger.warning("web_search_extraction_failed", error=parsed.error)
                warnings.append("AI extraction failed; used keyword extraction")
        else:
            warnings.append("AI extraction unavailable; used keyword extraction")

        fields = self.heuristic.extract(top_hits, identity.domain)
        if not fields:
            if model_outcome is not None:
                # Placeholder-quality model output beats nothing; the orchestrator flags it
                model_outcome.retry_count = retries
                return model_outcome
            return ProviderOutcome.failure(
                self.source,
                "keyword extraction found no company information",
                retry_count=retries,
                warnings=warnings,
            )
        logger.info("heuristic_extraction_complete", fields=sorted(fields), hits=len(top_hits))
        return ProviderOutcome(
            ok=True,
            source=self.source,
            fields=fields,
            ai_generated=False,
            citation_urls=source_urls,
            warnings=warnings,
            retry_count=retries,
        )
