"""
Company Enrichment Service: main entry point.

Usage:
    python -m enrichment.main serve --port 8080
    python -m enrichment.main enrich stripe.com --tenant 3f8a...-uuid
    python -m enrichment.main enrich https://www.spacex.com --tenant 3f8a... --force-refresh --json
    python -m enrichment.main purge-cache
    python -m enrichment.main credit 3f8a...-uuid 50
"""

from __future__ import annotations

# Load .env before any other imports so settings see the right keys
import enrichment.config  # noqa: F401

import argparse
import asyncio
import json
import sys

import structlog
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from enrichment.config import get_settings
from enrichment.errors import EnrichmentError, RateLimitExceededError, StoreError
from enrichment.models import EnrichmentRequest, EnrichmentResponse
from enrichment.observability.logging import bind_request_context, configure_logging, generate_request_id
from enrichment.orchestrator import build_services

_CUSTOM_THEME = Theme({
    "accent": "bold #ea580c",
    "muted": "#64748b",
    "value": "#e2e8f0",
    "warn": "bold #f59e0b",
    "error": "bold #dc2626",
})

console = Console(theme=_CUSTOM_THEME, highlight=False)
logger = structlog.get_logger()


def _display_response(response: EnrichmentResponse) -> None:
    """Rich-formatted enrichment result."""
    table = Table(title="Enrichment", border_style="#ea580c", title_style="bold #ea580c")
    table.add_column("Field", style="bold #94a3b8")
    table.add_column("Value", style="#e2e8f0", overflow="fold")
    table.add_row("Request ID", response.request_id)
    table.add_row("Provider", response.provider.value)
    table.add_row("Cached", "yes" if response.cached else "no")
    table.add_row("Fallback", "[warn]yes[/warn]" if response.is_fallback else "no")
    table.add_row("Confidence", f"[accent]{(response.confidence or 0.0):.2f}[/accent]")
    table.add_row("Duration", f"{response.duration_ms} ms")

    profile = response.enrichment
    if profile is not None:
        table.add_row("AI generated", "yes" if profile.ai_generated else "no")
        for label, value in (
            ("Industry", profile.industry),
            ("Location", profile.location),
            ("Founded", profile.founded_year),
            ("Size", profile.company_size),
        ):
            if value:
                table.add_row(label, value)
        if profile.key_people:
            table.add_row("Key people", "\n".join(profile.key_people))
        if profile.social_links and not profile.social_links.is_empty():
            links = profile.social_links.model_dump(exclude_none=True)
            table.add_row("Social", "\n".join(f"{k}: {v}" for k, v in links.items()))
        if profile.citation_urls:
            table.add_row("Sources", "\n".join(profile.citation_urls))
    console.print(table)

    if profile is not None and profile.description:
        console.print(Panel(profile.description, title="[accent]Description[/accent]", border_style="#ea580c"))
    if profile is not None and profile.product_summary:
        console.print(Panel(profile.product_summary, title="[accent]Products[/accent]", border_style="#64748b"))
    for warning in response.warnings or []:
        console.print(f"[warn]⚠[/warn] {warning}")


async def run_enrich(
    url: str,
    tenant_id: str,
    use_cache: bool,
    force_refresh: bool,
    bypass_limits: bool,
    as_json: bool,
) -> int:
    services = build_services()
    request_id = generate_request_id()
    bind_request_context(request_id, tenant_id=tenant_id)
    try:
        response = await services.orchestrator.enrich(
            EnrichmentRequest(
                tenant_id=tenant_id,
                urls=[url],
                use_cache=use_cache,
                force_refresh=force_refresh,
                is_privileged=bypass_limits,
            ),
            request_id=request_id,
        )
    except RateLimitExceededError as exc:
        console.print(f"[error]✗ {exc.message}[/error] (retry after {exc.decision.retry_after_seconds()}s)")
        return 2
    except EnrichmentError as exc:
        console.print(f"[error]✗ {exc.message}[/error] [muted]({exc.code})[/muted]")
        return 1
    finally:
        await services.close()

    if as_json:
        console.print_json(json.dumps(response.to_wire()))
    else:
        _display_response(response)
    return 0 if response.success else 3


async def run_purge_cache() -> int:
    services = build_services()
    try:
        removed = await services.stores.cache.purge_expired()
    except StoreError as exc:
        console.print(f"[error]✗ Cache store unavailable:[/error] {escape(str(exc))}")
        return 1
    finally:
        await services.close()
    console.print(f"[accent]▪[/accent] Purged [accent]{removed}[/accent] expired cache entries")
    return 0


async def run_credit(tenant_id: str, amount: int) -> int:
    services = build_services()
    try:
        balance = await services.stores.rate_limiter.credit_balance(tenant_id, amount)
    except EnrichmentError as exc:
        console.print(f"[error]✗ {exc.message}[/error]")
        return 1
    except StoreError as exc:
        console.print(f"[error]✗ Counter store unavailable:[/error] {escape(str(exc))}")
        return 1
    finally:
        await services.close()
    console.print(f"[accent]▪[/accent] Tenant balance is now [accent]{balance}[/accent]")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Company Enrichment Service")
    sub = parser.add_subparsers(dest="command")

    srv = sub.add_parser("serve", help="Run the HTTP API")
    srv.add_argument("--host", default="0.0.0.0", help="Bind address")
    srv.add_argument("--port", type=int, default=8080, help="Port")
    srv.add_argument("--reload", action="store_true", help="Reload on code changes (development)")

    enr = sub.add_parser("enrich", help="Enrich one company URL")
    enr.add_argument("url", help="Company URL or domain")
    enr.add_argument("--tenant", required=True, help="Tenant id the result is cached and billed under")
    enr.add_argument("--no-cache", action="store_true", help="Skip cache read and write")
    enr.add_argument("--force-refresh", action="store_true", help="Skip cache read; still write the result")
    enr.add_argument("--bypass-limits", action="store_true", help="Do not charge the tenant's rate limit")
    enr.add_argument("--json", action="store_true", help="Print the wire response as JSON")

    sub.add_parser("purge-cache", help="Delete expired cache entries across tenants")

    cr = sub.add_parser("credit", help="Top up a tenant's pre-paid balance")
    cr.add_argument("tenant", help="Tenant id")
    cr.add_argument("amount", type=int, help="Units to add (positive)")

    args = parser.parse_args()
    settings = get_settings()

    if args.command == "serve":
        uvicorn.run(
            "enrichment.api.app:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=settings.observability.log_level.lower(),
        )
        return

    configure_logging(settings)
    if args.command == "enrich":
        code = asyncio.run(
            run_enrich(
                args.url,
                args.tenant,
                use_cache=not args.no_cache,
                force_refresh=args.force_refresh,
                bypass_limits=args.bypass_limits,
                as_json=args.json,
            )
        )
    elif args.command == "purge-cache":
        code = asyncio.run(run_purge_cache())
    elif args.command == "credit":
        code = asyncio.run(run_credit(args.tenant, args.amount))
    else:
        parser.print_help()
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
