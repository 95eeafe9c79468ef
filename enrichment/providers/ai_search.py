"""
Primary strategy: AI search followed by structured extraction.

The search-capable model answers a research question in free text with source
links; the extraction model then maps that text onto the profile shape.
Social links are taken from the cited URLs, not from the model's JSON.
"""

from __future__ import annotations

import structlog

from enrichment.llm_client import COMPLETION_UPSTREAM, LLMClient, LLMTask
from enrichment.models import CompanyIdentity, ProviderSource
from enrichment.prompts.templates import COMPANY_RESEARCH_USER_TEMPLATE
from enrichment.providers.base import EnrichmentProvider, ProviderOutcome
from enrichment.providers.extraction import ProfileExtractor, extract_citations, social_links_from_urls
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry

logger = structlog.get_logger()


class AISearchProvider(EnrichmentProvider):
    name = "ai_search"
    source = ProviderSource.PRIMARY
    upstreams = (COMPLETION_UPSTREAM,)

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        llm: LLMClient,
        extractor: ProfileExtractor,
    ) -> None:
        super().__init__(breakers)
        self.llm = llm
        self.extractor = extractor

    def is_configured(self) -> bool:
        return self.llm.is_configured

    async def try_enrich(self, identity: CompanyIdentity) -> ProviderOutcome:
        prompt = COMPANY_RESEARCH_USER_TEMPLATE.format(
            company_name=identity.display_name,
            domain=identity.domain,
        )
        research = await self.llm.generate(LLMTask.RESEARCH, prompt)
        if not research.success or not research.data:
            return ProviderOutcome.failure(
                self.source,
                research.error or "AI search returned no content",
                retry_count=research.retry_count,
            )

        citations = extract_citations(research.data)
        parsed = await self.extractor.extract(identity, research.data)
        retries = research.retry_count + parsed.retry_count
        if not parsed.ok:
            logger.warning("ai_search_extraction_failed", error=parsed.error)
            return ProviderOutcome.failure(
                self.source,
                f"extraction failed: {parsed.error}",
                retry_count=retries,
            )

        fields = dict(parsed.data)
        social = social_links_from_urls(citations)
        if social:
            fields["socialLinks"] = social

        logger.info(
            "ai_search_complete",
            fields=sorted(fields),
            citations=len(citations),
            retry_count=retries,
        )
        return ProviderOutcome(
            ok=True,
            source=self.source,
            fields=fields,
            ai_generated=True,
            citation_urls=citations,
            retry_count=retries,
        )
