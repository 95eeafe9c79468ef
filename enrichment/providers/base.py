"""Provider strategy interface shared by the fallback chain."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from enrichment.models import CompanyIdentity, ProviderSource
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry


@dataclass
class ProviderOutcome:
    """
    What one strategy produced for one company.

    ``fields`` is raw, unvalidated profile data (camelCase or snake_case keys);
    the orchestrator runs it through validate_profile. ``skipped`` means the
    strategy never called out (missing credentials or an open breaker).
    """

    ok: bool
    source: ProviderSource
    fields: dict[str, Any] = field(default_factory=dict)
    ai_generated: bool = True
    citation_urls: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None
    skipped: bool = False
    retry_count: int = 0

    @classmethod
    def failure(
        cls,
        source: ProviderSource,
        error: str,
        *,
        skipped: bool = False,
        retry_count: int = 0,
        warnings: Optional[list[str]] = None,
    ) -> ProviderOutcome:
        return cls(
            ok=False,
            source=source,
            error=error,
            skipped=skipped,
            retry_count=retry_count,
            warnings=list(warnings or []),
        )


class EnrichmentProvider(ABC):
    """One step of the fallback chain."""

    name: str = "provider"
    source: ProviderSource = ProviderSource.PRIMARY
    # Breaker names this strategy cannot work without
    upstreams: tuple[str, ...] = ()

    def __init__(self, breakers: CircuitBreakerRegistry) -> None:
        self.breakers = breakers

    @abstractmethod
    def is_configured(self) -> bool:
        """True when the credentials this strategy needs are present."""

    def open_breaker(self) -> Optional[str]:
        """Name of the first required upstream whose breaker is open, if any."""
        for upstream in self.upstreams:
            if self.breakers.is_open(upstream):
                return upstream
        return None

    @abstractmethod
    async def try_enrich(self, identity: CompanyIdentity) -> ProviderOutcome:
        """Attempt enrichment. Must not raise for upstream faults."""
