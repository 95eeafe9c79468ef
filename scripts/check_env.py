#!/usr/bin/env python3
"""
Check that the keys and endpoints in .env are valid and reachable.

Loads .env from the project root (parent of scripts/), then runs a minimal
request against each configured dependency: the completion endpoint, Brave
Search, Redis and the identity service. Run it before `enrichment serve` to
avoid every request degrading to the terminal fallback because of a bad key.

Usage:
    python scripts/check_env.py
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import httpx
from dotenv import load_dotenv
from redis.asyncio import Redis
from redis.exceptions import RedisError

# Project root = parent of scripts/
PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

ENV_KEYS = (
    "GROQ_API_KEY",
    "COMPLETION_API_BASE",
    "BRAVE_SEARCH_API_KEY",
    "REDIS_URL",
    "STORE_BACKEND",
    "IDENTITY_SERVICE_URL",
)


def load_env() -> bool:
    """Load .env into os.environ (override=True so we test keys from .env). Returns True if file exists."""
    if not ENV_FILE.exists():
        print(f"[FAIL] No .env found at {ENV_FILE}")
        return False
    in_shell = [k for k in ENV_KEYS if os.environ.get(k)]
    if in_shell:
        print("[WARN] These are set in your shell and override .env when you run the service:")
        for k in in_shell:
            print(f"       {k}")
        print("       To use .env instead, run: unset " + " ".join(in_shell))
        print()
    load_dotenv(ENV_FILE, override=True)
    return True


def mask(key: str) -> str:
    """Mask key for display."""
    val = os.environ.get(key, "")
    if not val or len(val) < 8:
        return "(not set)" if not val else "(too short)"
    return f"{val[:6]}...{val[-4:]}"


async def check_completion() -> tuple[bool, str]:
    """Test GROQ_API_KEY with a minimal chat completion on the extraction model."""
    key = os.environ.get("GROQ_API_KEY", "").strip()
    if not key:
        return False, "GROQ_API_KEY not set (AI search and AI extraction disabled)"
    base = (os.environ.get("COMPLETION_API_BASE", "") or "https://api.groq.com/openai/v1").strip().rstrip("/")
    model = os.environ.get("EXTRACTION_MODEL", "") or "meta-llama/llama-4-scout-17b-16e-instruct"
    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            r = await client.post(
                f"{base}/chat/completions",
                headers={"Authorization": f"Bearer {key}", "Content-Type": "application/json"},
                json={"model": model, "max_tokens": 5, "messages": [{"role": "user", "content": "Say OK"}]},
            )
    except httpx.HTTPError as e:
        return False, str(e)
    if r.status_code == 200:
        return True, "OK"
    if r.status_code == 401:
        return False, "Invalid or expired key (401)"
    if r.status_code == 429:
        return False, "Rate limited (429)"
    if r.status_code == 404:
        return True, "OK (key valid; model ID may differ)"
    return False, f"HTTP {r.status_code}: {r.text[:200]}"


async def check_brave() -> tuple[bool, str]:
    """Test BRAVE_SEARCH_API_KEY with a minimal web search."""
    key = os.environ.get("BRAVE_SEARCH_API_KEY", "").strip()
    if not key:
        return False, "BRAVE_SEARCH_API_KEY not set (web-search fallback disabled)"
    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            r = await client.get(
                "https://api.search.brave.com/res/v1/web/search",
                headers={"X-Subscription-Token": key, "Accept": "application/json"},
                params={"q": "test", "count": 1},
            )
    except httpx.HTTPError as e:
        return False, str(e)
    if r.status_code == 200:
        return True, "OK"
    if r.status_code in (401, 403):
        return False, "Invalid key (401/403)"
    if r.status_code == 422:
        return False, "Invalid key or subscription (422)"
    return False, f"HTTP {r.status_code}: {r.text[:200]}"


async def check_redis() -> tuple[bool, str]:
    """PING the rate-limit/cache store unless the in-memory backend is selected."""
    if os.environ.get("STORE_BACKEND", "redis").strip().lower() == "memory":
        return True, "OK (memory backend; single process only)"
    url = os.environ.get("REDIS_URL", "") or "redis://localhost:6379/0"
    redis = Redis.from_url(url, decode_responses=True, socket_connect_timeout=5)
    try:
        await redis.ping()
    except RedisError as e:
        return False, str(e)
    finally:
        await redis.aclose()
    return True, "OK"


async def check_identity() -> tuple[bool, str]:
    """Check the identity service answers at all (an unauthenticated 401 counts as reachable)."""
    base = os.environ.get("IDENTITY_SERVICE_URL", "").strip().rstrip("/")
    if not base:
        return False, "IDENTITY_SERVICE_URL not set (every API request will fail with 500)"
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            r = await client.get(f"{base}/v1/tenants/00000000-0000-0000-0000-000000000000/membership")
    except httpx.HTTPError as e:
        return False, str(e)
    if r.status_code < 500:
        return True, f"OK (HTTP {r.status_code})"
    return False, f"HTTP {r.status_code}: {r.text[:200]}"


async def main() -> int:
    print("Loading .env from", ENV_FILE)
    if not load_env():
        return 1

    print()
    checks = [
        ("GROQ_API_KEY (AI search / extraction)", mask("GROQ_API_KEY"), check_completion),
        ("BRAVE_SEARCH_API_KEY (Web search fallback)", mask("BRAVE_SEARCH_API_KEY"), check_brave),
        ("REDIS_URL (Rate limits / cache)", mask("REDIS_URL"), check_redis),
        ("IDENTITY_SERVICE_URL (Auth)", os.environ.get("IDENTITY_SERVICE_URL", "(not set)"), check_identity),
    ]

    failed = 0
    for name, shown, coro in checks:
        ok, msg = await coro()
        status = "[OK]  " if ok else "[FAIL]"
        if not ok:
            failed += 1
        print(f"  {status} {name}")
        print(f"         Value: {shown}")
        print(f"         → {msg}")
        print()

    if failed:
        print("Fix the failing entries above, then run: python scripts/check_env.py")
        return 1
    print("All dependencies are reachable.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
