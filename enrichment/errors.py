"""
Error taxonomy for the enrichment service.

Request-level errors carry the HTTP status and a machine-readable code so the
API layer can map them without knowing where they were raised. Upstream errors
are split into transient (retry) and permanent (fail fast) for the resilient
client's retry policy.
"""

from __future__ import annotations


class EnrichmentError(Exception):
    """Base for all errors surfaced to the caller."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(EnrichmentError):
    """Bad request payload; never retried."""

    status_code = 400
    code = "validation_error"


class UrlValidationError(ValidationError):
    """URL rejected by canonicalization or the SSRF guard."""

    code = "invalid_url"


class AuthenticationError(EnrichmentError):
    """Missing, malformed or rejected bearer token."""

    status_code = 401
    code = "auth_error"


class AuthorizationError(EnrichmentError):
    """Authenticated caller is not a member of the requested tenant."""

    status_code = 403
    code = "forbidden"


class RateLimitExceededError(EnrichmentError):
    """Tenant quota exhausted; carries the decision for Retry-After headers."""

    status_code = 429
    code = "rate_limit"

    def __init__(self, message: str, decision: object) -> None:
        super().__init__(message)
        self.decision = decision


class ProvidersNotConfiguredError(EnrichmentError):
    """Neither the completion nor the web-search upstream has credentials."""

    status_code = 503
    code = "not_configured"


class IdentityServiceError(EnrichmentError):
    """The identity service could not be reached or answered unexpectedly."""

    status_code = 500
    code = "identity_unavailable"


# ── Upstream taxonomy: retry only transient, fail fast on permanent ──


class UpstreamError(Exception):
    """Base for failures talking to a third-party provider."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientUpstreamError(UpstreamError):
    """Rate limit, 5xx, timeout or connection failure. Safe to retry."""


class PermanentUpstreamError(UpstreamError):
    """Bad credentials, bad request or malformed response. Do not retry."""


class StoreError(Exception):
    """Backing store (counter or cache) failure."""
