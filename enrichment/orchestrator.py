"""
Enrichment orchestrator: one request from validated URL to response.

Order of operations: validate URLs -> cache lookup -> credentials check ->
rate limit -> provider chain (primary, secondary with heuristic fallback) ->
validate and score -> cache write. Steps run sequentially; nothing fans out.

A provider result that is placeholder text ("visit the website ...") does not
stop the chain. It is kept as a candidate and only returned, flagged as a
fallback and never cached, when no later provider does better.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog
from redis.asyncio import Redis

from enrichment.config import Settings, get_settings
from enrichment.errors import ProvidersNotConfiguredError, RateLimitExceededError, ValidationError
from enrichment.identity import HttpIdentityClient, IdentityClient
from enrichment.llm_client import LLMClient
from enrichment.models import (
    CompanyIdentity,
    EnrichedProfile,
    EnrichmentRequest,
    EnrichmentResponse,
    ProviderSource,
)
from enrichment.observability import metrics as obs_metrics
from enrichment.observability.logging import generate_request_id, mask_domain
from enrichment.providers.ai_search import AISearchProvider
from enrichment.providers.base import EnrichmentProvider
from enrichment.providers.extraction import ProfileExtractor
from enrichment.providers.heuristic import HeuristicExtractor
from enrichment.providers.secondary import WebSearchProvider
from enrichment.providers.web_search import BraveSearchTool
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry
from enrichment.resilience.client import ResilientClient
from enrichment.stores.cache import EnrichmentCache
from enrichment.stores.factory import Stores, build_stores
from enrichment.stores.rate_limiter import RateLimiter
from enrichment.validation.profile import (
    DEFAULT_PLACEHOLDER_PHRASES,
    calculate_confidence,
    is_fallback_content,
    validate_profile,
)
from enrichment.validation.url import validate_enrichment_url

logger = structlog.get_logger()

TERMINAL_FALLBACK_WARNING = "Could not retrieve company information from any source"


@dataclass
class _ChainResult:
    profile: EnrichedProfile
    source: ProviderSource
    is_fallback: bool
    warnings: list[str] = field(default_factory=list)
    retry_count: int = 0


class EnrichmentOrchestrator:
    """Runs the enrichment flow for one request at a time; safe to share across requests."""

    def __init__(
        self,
        providers: list[EnrichmentProvider],
        cache: EnrichmentCache,
        rate_limiter: RateLimiter,
        max_urls_per_request: int = 3,
        placeholder_phrases: Iterable[str] = DEFAULT_PLACEHOLDER_PHRASES,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.providers = providers
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.max_urls_per_request = max_urls_per_request
        self.placeholder_phrases = tuple(placeholder_phrases)
        self._clock = clock

    @property
    def has_configured_provider(self) -> bool:
        return any(p.is_configured() for p in self.providers)

    def _elapsed_ms(self, start: float) -> int:
        return int(round((self._clock() - start) * 1000))

    def validate_urls(self, urls: list[str]) -> list[CompanyIdentity]:
        """Canonicalize every URL in the request; the first invalid one fails the request."""
        if not urls:
            raise ValidationError("urls array is required and must not be empty")
        if len(urls) > self.max_urls_per_request:
            raise ValidationError(f"Maximum {self.max_urls_per_request} URLs per request")
        return [validate_enrichment_url(u) for u in urls]

    async def enrich(self, request: EnrichmentRequest, request_id: Optional[str] = None) -> EnrichmentResponse:
        """
        Enrich the first URL of ``request`` for its tenant.

        Raises:
            ValidationError / UrlValidationError: bad input, before any I/O.
            ProvidersNotConfiguredError: no upstream credentials at all.
            RateLimitExceededError: tenant quota exhausted; nothing was called.
        """
        request_id = request_id or generate_request_id()
        start = self._clock()
        async with obs_metrics.track_request():
            identities = self.validate_urls(request.urls)
            identity = identities[0]
            warnings: list[str] = []
            if len(identities) > 1:
                warnings.append(
                    f"Only the first URL is enriched; {len(identities) - 1} additional URL(s) ignored"
                )

            logger.info(
                "enrichment_started",
                target=mask_domain(identity.domain),
                url_count=len(identities),
                use_cache=request.use_cache,
                force_refresh=request.force_refresh,
            )

            if request.use_cache and not request.force_refresh:
                lookup = await self.cache.get(request.tenant_id, identity.domain)
                if lookup.found and lookup.entry is not None:
                    profile = lookup.entry.profile.model_copy(update={"source": ProviderSource.CACHE})
                    duration_ms = self._elapsed_ms(start)
                    logger.info(
                        "enrichment_cache_hit",
                        target=mask_domain(identity.domain),
                        remaining_ttl_seconds=int(lookup.remaining_ttl_seconds),
                        duration_ms=duration_ms,
                    )
                    obs_metrics.record_request("cache", "success", duration_ms / 1000, profile.confidence)
                    return EnrichmentResponse(
                        success=True,
                        enrichment=profile,
                        provider=ProviderSource.CACHE,
                        cached=True,
                        duration_ms=duration_ms,
                        confidence=profile.confidence,
                        request_id=request_id,
                        warnings=warnings or None,
                    )

            if not self.has_configured_provider:
                logger.error("enrichment_not_configured")
                raise ProvidersNotConfiguredError("Enrichment service not configured. Please contact support.")

            if request.is_privileged:
                obs_metrics.record_rate_limit("bypassed")
            else:
                decision = await self.rate_limiter.check_and_increment(request.tenant_id)
                if not decision.allowed:
                    obs_metrics.record_request("none", "rate_limited", self._elapsed_ms(start) / 1000)
                    raise RateLimitExceededError("Rate limit exceeded. Please try again later.", decision)

            result = await self._run_chain(identity)
            warnings.extend(result.warnings)

            if not result.is_fallback and request.use_cache:
                await self.cache.set(request.tenant_id, identity.domain, result.profile, result.source.value)

            duration_ms = self._elapsed_ms(start)
            outcome = "fallback" if result.is_fallback else "success"
            obs_metrics.record_request(result.source.value, outcome, duration_ms / 1000, result.profile.confidence)
            logger.info(
                "enrichment_complete",
                target=mask_domain(identity.domain),
                provider=result.source.value,
                is_fallback=result.is_fallback,
                confidence=result.profile.confidence,
                fields_enriched=result.profile.populated_fields(),
                retry_count=result.retry_count,
                duration_ms=duration_ms,
            )
            return EnrichmentResponse(
                success=not result.is_fallback,
                enrichment=result.profile,
                provider=result.source,
                cached=False,
                duration_ms=duration_ms,
                confidence=result.profile.confidence,
                is_fallback=result.is_fallback,
                request_id=request_id,
                warnings=warnings or None,
            )

    async def _run_chain(self, identity: CompanyIdentity) -> _ChainResult:
        candidate: Optional[_ChainResult] = None
        retries = 0

        for provider in self.providers:
            if not provider.is_configured():
                logger.debug("provider_skipped", provider=provider.name, reason="not_configured")
                continue
            open_upstream = provider.open_breaker()
            if open_upstream:
                logger.warning("provider_skipped", provider=provider.name, reason="circuit_open", upstream=open_upstream)
                continue

            outcome = await provider.try_enrich(identity)
            retries += outcome.retry_count
            if not outcome.ok:
                logger.warning(
                    "provider_failed",
                    provider=provider.name,
                    error=(outcome.error or "")[:200],
                    retry_count=outcome.retry_count,
                )
                continue

            validation = validate_profile({**outcome.fields, "citationUrls": outcome.citation_urls})
            if not validation.is_valid:
                logger.warning("provider_empty_result", provider=provider.name, dropped=validation.fields_dropped)
                continue

            profile = validation.profile.model_copy(
                update={"source": outcome.source, "ai_generated": outcome.ai_generated}
            )
            profile.confidence = calculate_confidence(profile)
            result = _ChainResult(
                profile=profile,
                source=outcome.source,
                is_fallback=False,
                warnings=[*outcome.warnings, *validation.warnings],
                retry_count=retries,
            )

            if is_fallback_content(profile, identity.domain, self.placeholder_phrases):
                logger.warning("provider_placeholder_result", provider=provider.name, confidence=profile.confidence)
                result.is_fallback = True
                if candidate is None or profile.confidence > candidate.profile.confidence:
                    candidate = result
                continue

            return result

        if candidate is not None:
            candidate.retry_count = retries
            return candidate

        logger.warning("all_providers_failed", target=mask_domain(identity.domain), retry_count=retries)
        return _ChainResult(
            profile=EnrichedProfile(confidence=0.0, source=ProviderSource.FALLBACK, ai_generated=True),
            source=ProviderSource.FALLBACK,
            is_fallback=True,
            warnings=[TERMINAL_FALLBACK_WARNING],
            retry_count=retries,
        )


# ── Wiring ──


@dataclass
class EnrichmentServices:
    """Everything a process needs to serve requests; close() releases connections."""

    orchestrator: EnrichmentOrchestrator
    stores: Stores
    resilient: ResilientClient
    identity: IdentityClient

    async def close(self) -> None:
        await self.identity.close()
        await self.resilient.close()
        await self.stores.close()


def build_services(
    settings: Optional[Settings] = None,
    *,
    redis: Optional[Redis] = None,
    identity: Optional[IdentityClient] = None,
    llm: Optional[LLMClient] = None,
    resilient: Optional[ResilientClient] = None,
) -> EnrichmentServices:
    """
    Build the provider chain, stores and clients from settings.

    Any collaborator may be injected (tests); a passed ``resilient`` client
    also supplies the breaker registry every provider checks.
    """
    settings = settings or get_settings()
    res = settings.resilience
    if resilient is None:
        breakers = CircuitBreakerRegistry(
            failure_threshold=res.breaker_failure_threshold,
            cooldown_seconds=res.breaker_cooldown_seconds,
        )
        resilient = ResilientClient(
            breakers,
            timeout=res.request_timeout,
            max_retries=res.max_retries,
            base_delay=res.base_retry_delay,
        )
    breakers = resilient.breakers
    llm = llm or LLMClient(resilient, settings.providers, res)
    extractor = ProfileExtractor(llm, context_chars=settings.providers.extraction_context_chars)
    heuristics = settings.heuristics or {}
    placeholder_phrases = heuristics.get("placeholder_phrases") or DEFAULT_PLACEHOLDER_PHRASES
    providers: list[EnrichmentProvider] = [
        AISearchProvider(breakers, llm, extractor),
        WebSearchProvider(
            breakers,
            BraveSearchTool(resilient, settings.providers),
            HeuristicExtractor(heuristics.get("industries")),
            extractor=extractor,
            hit_limit=settings.providers.extraction_hit_limit,
            context_chars=settings.providers.extraction_context_chars,
            placeholder_phrases=placeholder_phrases,
        ),
    ]
    stores = build_stores(settings, redis=redis)
    orchestrator = EnrichmentOrchestrator(
        providers,
        stores.cache,
        stores.rate_limiter,
        max_urls_per_request=settings.limits.max_urls_per_request,
        placeholder_phrases=placeholder_phrases,
    )
    return EnrichmentServices(
        orchestrator=orchestrator,
        stores=stores,
        resilient=resilient,
        identity=identity or HttpIdentityClient(resilient, settings.identity),
    )
