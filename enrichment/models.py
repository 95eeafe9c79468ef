"""
Core data models for the company enrichment pipeline.

Every profile carries provenance (source, ai_generated, citation_urls,
confidence) so callers can branch on data quality. Models serialize to the
wire in camelCase via aliases; Python code uses snake_case names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UTC = timezone.utc


def _now_utc() -> datetime:
    return datetime.now(UTC)


class _WireModel(BaseModel):
    """Base for models that travel over the API in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ═══════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════


class ProviderSource(str, Enum):
    """Where an enrichment result came from."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    CACHE = "cache"
    FALLBACK = "fallback"


# ═══════════════════════════════════════════════════════════
# Identity & request
# ═══════════════════════════════════════════════════════════


class CompanyIdentity(BaseModel):
    """Canonical company target derived from a validated URL. Immutable."""

    model_config = ConfigDict(frozen=True)

    domain: str
    display_name: str
    normalized_url: str


class EnrichmentRequest(BaseModel):
    """One enrichment call for a tenant. Lives for the duration of the request."""

    tenant_id: str
    urls: list[str] = Field(min_length=1)
    use_cache: bool = True
    force_refresh: bool = False
    is_privileged: bool = False


class AuthContext(BaseModel):
    """Result of resolving a bearer token against a tenant."""

    ok: bool
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    is_privileged: bool = False


# ═══════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════


class SocialLinks(_WireModel):
    linkedin: Optional[str] = None
    twitter: Optional[str] = None
    github: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.linkedin or self.twitter or self.github)


class EnrichedProfile(_WireModel):
    """Structured company profile plus provenance."""

    description: Optional[str] = None
    industry: Optional[str] = None
    location: Optional[str] = None
    founded_year: Optional[str] = None
    company_size: Optional[str] = None
    key_people: Optional[list[str]] = None
    product_summary: Optional[str] = None
    social_links: Optional[SocialLinks] = None

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: Optional[ProviderSource] = None
    ai_generated: bool = True
    citation_urls: list[str] = Field(default_factory=list)

    def has_field(self, name: str) -> bool:
        """True when a content field is present and non-empty."""
        value = getattr(self, name, None)
        if value is None:
            return False
        if isinstance(value, SocialLinks):
            return not value.is_empty()
        if isinstance(value, (list, str)):
            return len(value) > 0
        return True

    def populated_fields(self) -> list[str]:
        return [name for name in CONTENT_FIELDS if self.has_field(name)]


CONTENT_FIELDS: tuple[str, ...] = (
    "description",
    "industry",
    "location",
    "founded_year",
    "company_size",
    "key_people",
    "product_summary",
    "social_links",
)


# ═══════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════


class CacheEntry(BaseModel):
    """A cached profile for one (tenant, domain) pair."""

    tenant_id: str
    domain: str
    profile: EnrichedProfile
    provider: str
    fetched_at: datetime = Field(default_factory=_now_utc)
    expires_at: datetime
    hit_count: int = 0
    last_accessed_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _now_utc()) >= self.expires_at


class CacheLookup(BaseModel):
    found: bool
    entry: Optional[CacheEntry] = None
    remaining_ttl_seconds: float = 0.0


class RateLimitDecision(BaseModel):
    """Outcome of one atomic check-and-increment."""

    allowed: bool
    remaining_minute: int = 0
    remaining_day: int = 0
    balance: int = 0
    limit_minute: int = 0
    minute_reset_at: Optional[datetime] = None
    day_reset_at: Optional[datetime] = None
    fail_open: bool = False

    def retry_after_seconds(self, now: Optional[datetime] = None) -> int:
        """Seconds until the window that blocked this attempt resets (at least 1)."""
        now = now or _now_utc()
        if self.remaining_minute <= 0 and self.minute_reset_at is not None:
            target = self.minute_reset_at.timestamp() + 60
        elif self.remaining_day <= 0 and self.day_reset_at is not None:
            target = self.day_reset_at.timestamp() + 24 * 60 * 60
        else:
            # Balance exhaustion has no window; a day is the honest hint.
            return 24 * 60 * 60
        return max(1, int(round(target - now.timestamp())))


# ═══════════════════════════════════════════════════════════
# Response
# ═══════════════════════════════════════════════════════════


class EnrichmentResponse(_WireModel):
    success: bool
    enrichment: Optional[EnrichedProfile] = None
    provider: ProviderSource
    cached: bool = False
    duration_ms: int = 0
    confidence: Optional[float] = None
    is_fallback: bool = False
    request_id: str = ""
    warnings: Optional[list[str]] = None

    def to_wire(self) -> dict[str, Any]:
        body = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        # confidence and enrichment are part of the contract even when null
        body.setdefault("confidence", None)
        body.setdefault("enrichment", None)
        return body
