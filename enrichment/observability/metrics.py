"""
Prometheus metrics for the enrichment service.

All metrics are no-op when observability.metrics_enabled is False.
Exposes record_request, track_request, record_upstream_call,
record_breaker_transition, record_cache_lookup, record_rate_limit and
render_latest (for GET /metrics).
"""

from __future__ import annotations

import contextlib
import time
from typing import Any, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from enrichment.config import get_settings


def _enabled() -> bool:
    return bool(get_settings().observability.metrics_enabled)


# Lazy registry: only create metrics when enabled and first used
_metrics_created = False


def _ensure_metrics() -> bool:
    global _metrics_created
    if _metrics_created or not _enabled():
        return _metrics_created
    _create_metrics()
    _metrics_created = True
    return True


def _create_metrics() -> None:
    """Create all Prometheus metrics (called once when enabled)."""
    # Requests (business)
    _requests = Counter(
        "enrichment_requests_total",
        "Enrichment requests by provider and outcome",
        ["provider", "outcome"],
    )
    _request_duration = Histogram(
        "enrichment_request_duration_seconds",
        "End-to-end enrichment latency",
        ["provider"],
        buckets=[0.05, 0.25, 1, 2.5, 5, 10, 30],
    )
    _confidence = Histogram(
        "enrichment_confidence_score",
        "Confidence score of returned profiles",
        ["provider"],
        buckets=[0.2, 0.4, 0.6, 0.8, 1.0],
    )
    _in_flight = Gauge(
        "enrichment_requests_in_flight",
        "Enrichment requests currently running",
        [],
    )

    # Upstreams (operational)
    _upstream_duration = Histogram(
        "upstream_call_duration_seconds",
        "Upstream call latency including retries",
        ["upstream", "outcome"],
        buckets=[0.25, 0.5, 1, 2, 5, 15, 45],
    )
    _upstream_errors = Counter(
        "upstream_call_errors_total",
        "Failed or short-circuited upstream calls",
        ["upstream", "outcome"],
    )
    _breaker_transitions = Counter(
        "circuit_breaker_transitions_total",
        "Circuit breaker state changes",
        ["upstream", "state"],
    )

    # Stores
    _cache_lookups = Counter(
        "enrichment_cache_lookups_total",
        "Cache lookups by result",
        ["result"],
    )
    _rate_limit = Counter(
        "rate_limit_decisions_total",
        "Rate limiter decisions",
        ["outcome"],
    )

    _registry = {
        "requests": _requests,
        "request_duration": _request_duration,
        "confidence": _confidence,
        "in_flight": _in_flight,
        "upstream_duration": _upstream_duration,
        "upstream_errors": _upstream_errors,
        "breaker_transitions": _breaker_transitions,
        "cache_lookups": _cache_lookups,
        "rate_limit": _rate_limit,
    }
    setattr(_MetricsCollector, "_registry", _registry)


class _MetricsCollector:
    """Collector that delegates to Prometheus when enabled, no-op otherwise."""

    _registry: dict[str, Any] = {}

    def _get(self, name: str) -> Any:
        _ensure_metrics()
        return self._registry.get(name)

    # --- Requests ---
    @contextlib.asynccontextmanager
    async def track_request(self):
        g = self._get("in_flight")
        if g:
            g.inc()
        try:
            yield
        finally:
            if g:
                g.dec()

    def record_request(
        self,
        provider: str,
        outcome: str,
        duration_seconds: float,
        confidence: Optional[float] = None,
    ) -> None:
        provider = provider or "unknown"
        c = self._get("requests")
        d = self._get("request_duration")
        conf = self._get("confidence")
        if c:
            c.labels(provider=provider, outcome=outcome or "unknown").inc()
        if d and duration_seconds >= 0:
            d.labels(provider=provider).observe(duration_seconds)
        if conf and confidence is not None:
            conf.labels(provider=provider).observe(confidence)

    # --- Upstreams ---
    def record_upstream_call(self, upstream: str, outcome: str, duration: float) -> None:
        upstream = (upstream or "unknown")[:64]
        h = self._get("upstream_duration")
        if h and outcome != "short_circuited":
            h.labels(upstream=upstream, outcome=outcome).observe(duration)
        if outcome != "success":
            e = self._get("upstream_errors")
            if e:
                e.labels(upstream=upstream, outcome=outcome).inc()

    def record_breaker_transition(self, upstream: str, state: str) -> None:
        c = self._get("breaker_transitions")
        if c:
            c.labels(upstream=(upstream or "unknown")[:64], state=state).inc()

    # --- Stores ---
    def record_cache_lookup(self, hit: bool) -> None:
        c = self._get("cache_lookups")
        if c:
            c.labels(result="hit" if hit else "miss").inc()

    def record_rate_limit(self, outcome: str) -> None:
        """outcome: allowed/rejected/fail_open/bypassed."""
        c = self._get("rate_limit")
        if c:
            c.labels(outcome=outcome).inc()

    # --- Exposition ---
    def render_latest(self) -> Optional[tuple[bytes, str]]:
        """Prometheus text exposition, or None when metrics are disabled."""
        if not _ensure_metrics():
            return None
        return generate_latest(), CONTENT_TYPE_LATEST


metrics = _MetricsCollector()
