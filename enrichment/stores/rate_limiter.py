"""
Per-tenant rate limiter backed by an external counter store.

One record per tenant holds a minute counter, a day counter, the start of each
window and a pre-paid balance. check_and_increment resets stale windows, then
allows only if both counters are under their limits and the balance is
positive; an allowed attempt increments both counters and spends one unit of
balance. All of that happens in one atomic step inside the store (a Lua
script on Redis, an asyncio.Lock in memory), so concurrent requests for the
same tenant can never over-admit.

A store failure fails open: the request is allowed and the decision is
flagged ``fail_open``.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from enrichment.config import LimitsConfig, get_settings
from enrichment.errors import StoreError, ValidationError
from enrichment.models import RateLimitDecision
from enrichment.observability import metrics as obs_metrics

logger = structlog.get_logger()

MINUTE_MS = 60 * 1000
DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class CounterSnapshot:
    """Raw store answer; times are epoch milliseconds."""

    allowed: bool
    remaining_minute: int
    remaining_day: int
    balance: int
    minute_reset_at: int
    day_reset_at: int


class CounterStore(ABC):
    """Atomic check-and-increment over per-tenant counters."""

    @abstractmethod
    async def check_and_increment(
        self,
        tenant_id: str,
        now_ms: int,
        max_per_minute: int,
        max_per_day: int,
        initial_balance: int,
    ) -> CounterSnapshot:
        """Raises StoreError when the backing store is unavailable."""

    @abstractmethod
    async def credit(self, tenant_id: str, amount: int, initial_balance: int) -> int:
        """Add ``amount`` to the balance and return the new balance."""

    async def close(self) -> None:
        return None


# ── Redis ──

_CHECK_AND_INCREMENT_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local max_minute = tonumber(ARGV[2])
local max_day = tonumber(ARGV[3])
local initial_balance = tonumber(ARGV[4])

local state = redis.call('HMGET', key, 'minute_count', 'day_count', 'minute_reset_at', 'day_reset_at', 'balance')
local minute_count = tonumber(state[1]) or 0
local day_count = tonumber(state[2]) or 0
local minute_reset_at = tonumber(state[3]) or now
local day_reset_at = tonumber(state[4]) or now
local balance = tonumber(state[5])
if balance == nil then balance = initial_balance end

if now - minute_reset_at >= 60000 then
  minute_count = 0
  minute_reset_at = now
end
if now - day_reset_at >= 86400000 then
  day_count = 0
  day_reset_at = now
end

local allowed = 0
if minute_count < max_minute and day_count < max_day and balance > 0 then
  allowed = 1
  minute_count = minute_count + 1
  day_count = day_count + 1
  balance = balance - 1
  redis.call('HSET', key,
    'minute_count', minute_count,
    'day_count', day_count,
    'minute_reset_at', minute_reset_at,
    'day_reset_at', day_reset_at,
    'balance', balance)
end

return {
  allowed,
  math.max(0, max_minute - minute_count),
  math.max(0, max_day - day_count),
  math.max(0, balance),
  minute_reset_at,
  day_reset_at,
}
"""

_CREDIT_LUA = """
local balance = tonumber(redis.call('HGET', KEYS[1], 'balance'))
if balance == nil then balance = tonumber(ARGV[2]) end
balance = balance + tonumber(ARGV[1])
redis.call('HSET', KEYS[1], 'balance', balance)
return balance
"""


class RedisCounterStore(CounterStore):
    """Counters in a Redis hash per tenant; atomicity comes from server-side Lua."""

    def __init__(self, redis: Redis, key_prefix: str = "enrich") -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._check_script = redis.register_script(_CHECK_AND_INCREMENT_LUA)
        self._credit_script = redis.register_script(_CREDIT_LUA)

    def _key(self, tenant_id: str) -> str:
        return f"{self._prefix}:ratelimit:{tenant_id}"

    async def check_and_increment(
        self,
        tenant_id: str,
        now_ms: int,
        max_per_minute: int,
        max_per_day: int,
        initial_balance: int,
    ) -> CounterSnapshot:
        try:
            raw: list[Any] = await self._check_script(
                keys=[self._key(tenant_id)],
                args=[now_ms, max_per_minute, max_per_day, initial_balance],
            )
        except RedisError as exc:
            raise StoreError(f"rate limit store unavailable: {exc}") from exc
        allowed, rem_minute, rem_day, balance, minute_reset, day_reset = (int(v) for v in raw)
        return CounterSnapshot(
            allowed=bool(allowed),
            remaining_minute=rem_minute,
            remaining_day=rem_day,
            balance=balance,
            minute_reset_at=minute_reset,
            day_reset_at=day_reset,
        )

    async def credit(self, tenant_id: str, amount: int, initial_balance: int) -> int:
        try:
            return int(await self._credit_script(keys=[self._key(tenant_id)], args=[amount, initial_balance]))
        except RedisError as exc:
            raise StoreError(f"rate limit store unavailable: {exc}") from exc

    async def close(self) -> None:
        await self._redis.aclose()


# ── In-process ──


@dataclass
class _TenantCounters:
    minute_count: int
    day_count: int
    minute_reset_at: int
    day_reset_at: int
    balance: int


class InMemoryCounterStore(CounterStore):
    """Same contract as RedisCounterStore for tests and single-process development."""

    def __init__(self) -> None:
        self._records: dict[str, _TenantCounters] = {}
        self._lock = asyncio.Lock()

    async def check_and_increment(
        self,
        tenant_id: str,
        now_ms: int,
        max_per_minute: int,
        max_per_day: int,
        initial_balance: int,
    ) -> CounterSnapshot:
        async with self._lock:
            current = self._records.get(tenant_id) or _TenantCounters(0, 0, now_ms, now_ms, initial_balance)
            # Work on a copy so a rejection leaves the stored record untouched
            rec = _TenantCounters(**vars(current))
            if now_ms - rec.minute_reset_at >= MINUTE_MS:
                rec.minute_count, rec.minute_reset_at = 0, now_ms
            if now_ms - rec.day_reset_at >= DAY_MS:
                rec.day_count, rec.day_reset_at = 0, now_ms

            allowed = rec.minute_count < max_per_minute and rec.day_count < max_per_day and rec.balance > 0
            if allowed:
                rec.minute_count += 1
                rec.day_count += 1
                rec.balance -= 1
                self._records[tenant_id] = rec

            return CounterSnapshot(
                allowed=allowed,
                remaining_minute=max(0, max_per_minute - rec.minute_count),
                remaining_day=max(0, max_per_day - rec.day_count),
                balance=max(0, rec.balance),
                minute_reset_at=rec.minute_reset_at,
                day_reset_at=rec.day_reset_at,
            )

    async def credit(self, tenant_id: str, amount: int, initial_balance: int) -> int:
        async with self._lock:
            rec = self._records.get(tenant_id)
            if rec is None:
                now_ms = int(time.time() * 1000)
                rec = _TenantCounters(0, 0, now_ms, now_ms, initial_balance)
                self._records[tenant_id] = rec
            rec.balance += amount
            return rec.balance


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class RateLimiter:
    """Tenant quota gate in front of the provider chain."""

    def __init__(
        self,
        store: CounterStore,
        limits: Optional[LimitsConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.limits = limits or get_settings().limits
        self._clock = clock

    async def check_and_increment(self, tenant_id: str) -> RateLimitDecision:
        """Atomic check-and-increment. Never raises for store failures (fails open)."""
        limits = self.limits
        now_ms = int(self._clock() * 1000)
        try:
            snap = await self.store.check_and_increment(
                tenant_id,
                now_ms,
                limits.max_requests_per_minute,
                limits.max_requests_per_day,
                limits.initial_balance,
            )
        except StoreError as exc:
            logger.warning("rate_limiter_fail_open", tenant_id=tenant_id, error=str(exc)[:200])
            obs_metrics.record_rate_limit("fail_open")
            return RateLimitDecision(
                allowed=True,
                remaining_minute=limits.max_requests_per_minute,
                remaining_day=limits.max_requests_per_day,
                balance=limits.initial_balance,
                limit_minute=limits.max_requests_per_minute,
                fail_open=True,
            )

        decision = RateLimitDecision(
            allowed=snap.allowed,
            remaining_minute=snap.remaining_minute,
            remaining_day=snap.remaining_day,
            balance=snap.balance,
            limit_minute=limits.max_requests_per_minute,
            minute_reset_at=_from_ms(snap.minute_reset_at),
            day_reset_at=_from_ms(snap.day_reset_at),
        )
        if decision.allowed:
            obs_metrics.record_rate_limit("allowed")
        else:
            obs_metrics.record_rate_limit("rejected")
            logger.info(
                "rate_limit_exceeded",
                tenant_id=tenant_id,
                remaining_minute=decision.remaining_minute,
                remaining_day=decision.remaining_day,
                balance=decision.balance,
            )
        return decision

    async def credit_balance(self, tenant_id: str, amount: int) -> int:
        """Top up a tenant's pre-paid balance. Store errors propagate (operator action)."""
        if amount <= 0:
            raise ValidationError("Credit amount must be positive")
        balance = await self.store.credit(tenant_id, amount, self.limits.initial_balance)
        logger.info("rate_limit_balance_credited", tenant_id=tenant_id, amount=amount, balance=balance)
        return balance
