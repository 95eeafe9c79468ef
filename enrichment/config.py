"""
Centralized configuration for the company enrichment service.

All settings are loaded from environment variables with sensible defaults.
Pydantic Settings provides validation and type coercion; a small YAML overlay
carries the tunable keyword tables used by the heuristic extractor.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env then .env.local (so .env.local overrides).
_repo_root = Path(__file__).resolve().parent.parent
load_dotenv(_repo_root / ".env")
_env_local = _repo_root / ".env.local"
if _env_local.exists():
    load_dotenv(_env_local, override=True)


class ProviderConfig(BaseSettings):
    """Upstream credentials and model identifiers."""

    # OpenAI-compatible completion endpoint (Groq by default). One key drives
    # both the AI-search model and the cheaper extraction model.
    completion_api_key: str = Field(default="", alias="GROQ_API_KEY")
    completion_api_base: str = Field(
        default="https://api.groq.com/openai/v1",
        alias="COMPLETION_API_BASE",
    )
    search_model: str = Field(default="compound-beta", alias="SEARCH_MODEL")
    extraction_model: str = Field(
        default="meta-llama/llama-4-scout-17b-16e-instruct",
        alias="EXTRACTION_MODEL",
    )
    temperature: float = 0.1
    search_max_tokens: int = 2000
    extraction_max_tokens: int = 1000

    # Keyword web search (Brave Search API)
    web_search_api_key: str = Field(default="", alias="BRAVE_SEARCH_API_KEY")
    web_search_url: str = Field(
        default="https://api.search.brave.com/res/v1/web/search",
        alias="WEB_SEARCH_URL",
    )
    web_search_results: int = Field(default=10, alias="WEB_SEARCH_RESULTS")
    # Only the top N hits are fed into extraction
    extraction_hit_limit: int = 8
    extraction_context_chars: int = 6000

    @property
    def has_completion(self) -> bool:
        return bool(self.completion_api_key.strip())

    @property
    def has_web_search(self) -> bool:
        return bool(self.web_search_api_key.strip())


class ResilienceConfig(BaseSettings):
    """Timeouts, retries and circuit breaker tuning for upstream calls."""

    request_timeout: float = Field(default=15.0, alias="UPSTREAM_TIMEOUT_SECONDS")
    max_retries: int = Field(default=2, alias="UPSTREAM_MAX_RETRIES")
    # Backoff before retry n (0-based) is base_delay * 2**n
    base_retry_delay: float = Field(default=0.5, alias="UPSTREAM_RETRY_BASE_DELAY")
    breaker_failure_threshold: int = Field(default=5, alias="BREAKER_FAILURE_THRESHOLD")
    breaker_cooldown_seconds: float = Field(default=30.0, alias="BREAKER_COOLDOWN_SECONDS")


class LimitsConfig(BaseSettings):
    """Per-tenant quota defaults applied when a tenant's counter is first created."""

    max_requests_per_minute: int = Field(default=10, alias="RATE_LIMIT_PER_MINUTE")
    max_requests_per_day: int = Field(default=100, alias="RATE_LIMIT_PER_DAY")
    initial_balance: int = Field(default=100, alias="RATE_LIMIT_INITIAL_BALANCE")
    max_urls_per_request: int = 3


class CacheConfig(BaseSettings):
    """Enrichment result cache."""

    ttl_seconds: int = Field(default=24 * 60 * 60, alias="CACHE_TTL_SECONDS")
    max_entries_per_tenant: int = Field(default=1000, alias="CACHE_MAX_ENTRIES_PER_TENANT")


class StoreConfig(BaseSettings):
    """Backing store for the durable rate limiter and cache."""

    backend: str = Field(default="redis", alias="STORE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    key_prefix: str = Field(default="enrich", alias="STORE_KEY_PREFIX")
    # Seconds; bounds both the connect and every command
    timeout: float = Field(default=0.5, alias="STORE_TIMEOUT_SECONDS")


class IdentityConfig(BaseSettings):
    """External identity/session service that resolves bearer tokens to tenant membership."""

    service_url: str = Field(default="", alias="IDENTITY_SERVICE_URL")
    timeout: float = Field(default=5.0, alias="IDENTITY_TIMEOUT_SECONDS")


class ObservabilityConfig(BaseSettings):
    """Logging and Prometheus metrics."""

    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")
    metrics_enabled: bool = Field(default=False, alias="PROMETHEUS_METRICS_ENABLED")

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


class YAMLConfigLoader:
    """Loads YAML config files from a configurable directory."""

    def __init__(self, config_dir: str | Path = "config") -> None:
        self._dir = _repo_root / config_dir

    def load(self, filename: str) -> dict[str, Any]:
        """Load a YAML file; returns empty dict if the file is missing or not a mapping."""
        path = self._dir / filename
        if not path.exists():
            return {}
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}


class Settings(BaseSettings):
    """Root settings container; all config hangs off this object."""

    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    # YAML-loaded keyword tables (populated in get_settings)
    heuristics: dict[str, Any] = Field(default_factory=dict)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance. Cached after first call."""
    settings = Settings()
    settings.heuristics = YAMLConfigLoader().load("enrichment.yaml")
    return settings
