"""
structlog configuration with request correlation and production PII scrubbing.

Call configure_logging() once at process start (API lifespan or CLI). Every
module then logs through ``structlog.get_logger()``; request id and masked
tenant id are merged in from contextvars so log lines from one request can be
stitched together without passing a logger around.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Optional

import structlog

from enrichment.config import Settings, get_settings

SENSITIVE_KEYS: frozenset[str] = frozenset({
    "url",
    "urls",
    "domain",
    "company",
    "company_name",
    "companyname",
    "description",
    "key_people",
    "keypeople",
    "email",
    "linkedin",
    "twitter",
    "github",
    "api_key",
    "apikey",
    "token",
    "authorization",
    "preview",
    "raw",
    "content",
})

ID_KEYS: frozenset[str] = frozenset({"tenant_id", "user_id"})

# Set by configure_logging; mask_* helpers and the scrubber read it.
_production = False


def _scrub_value(value: Any) -> str:
    if isinstance(value, str):
        return f"[SCRUBBED:{len(value)}chars]"
    if isinstance(value, (list, tuple, set)):
        return f"[SCRUBBED:{len(value)}items]"
    return "[SCRUBBED]"


def mask_domain(domain: str, production: Optional[bool] = None) -> str:
    """``shop.acme.io`` -> ``***.io`` in production (TLD only); unchanged otherwise."""
    if not (_production if production is None else production):
        return domain
    if "." in domain:
        return "***." + domain.rsplit(".", 1)[-1]
    return "***"


def mask_id(value: str, production: Optional[bool] = None) -> str:
    """Keep the last four characters of an id in production. Short ids pass through."""
    if not (_production if production is None else production) or len(value) < 8:
        return value
    return f"***{value[-4:]}"


def scrub_mapping(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively replace sensitive values; ids are masked rather than dropped."""
    scrubbed: dict[str, Any] = {}
    for key, value in data.items():
        lowered = key.lower()
        if lowered in SENSITIVE_KEYS:
            scrubbed[key] = _scrub_value(value)
        elif lowered in ID_KEYS and isinstance(value, str):
            scrubbed[key] = mask_id(value, production=True)
        elif isinstance(value, dict):
            scrubbed[key] = scrub_mapping(value)
        elif isinstance(value, list):
            scrubbed[key] = [scrub_mapping(v) if isinstance(v, dict) else v for v in value]
        else:
            scrubbed[key] = value
    return scrubbed


class SensitiveDataScrubber:
    """structlog processor: scrub event_dict values when enabled (production)."""

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled

    def __call__(self, logger: object, method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if not self.enabled:
            return event_dict
        return scrub_mapping(event_dict)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Install the structlog processor chain for this process."""
    global _production
    settings = settings or get_settings()
    obs = settings.observability
    _production = obs.is_production

    level = logging.getLevelName(obs.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    if _production and level < logging.INFO:
        level = logging.INFO

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if obs.log_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            SensitiveDataScrubber(enabled=_production),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# ── Request correlation ──

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(n: int) -> str:
    out = ""
    while n:
        n, rem = divmod(n, 36)
        out = _BASE36[rem] + out
    return out or "0"


def generate_request_id() -> str:
    """Short sortable id: ``enr-<ms since epoch, base36>-<random>``."""
    return f"enr-{_to_base36(int(time.time() * 1000))}-{secrets.token_hex(3)}"


def bind_request_context(
    request_id: str,
    tenant_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    context: dict[str, Any] = {"request_id": request_id}
    if tenant_id:
        context["tenant_id"] = mask_id(tenant_id)
    if user_id:
        context["user_id"] = mask_id(user_id)
    structlog.contextvars.bind_contextvars(**context)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
