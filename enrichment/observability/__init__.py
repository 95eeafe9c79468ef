"""Observability: structlog setup with PII scrubbing, and Prometheus metrics."""

from enrichment.observability.metrics import metrics

__all__ = ["metrics"]
