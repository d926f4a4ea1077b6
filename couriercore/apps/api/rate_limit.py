from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import threading
import time
from typing import Awaitable, Callable, Protocol

from fastapi import Request, Response
from redis.asyncio import Redis

from couriercore.core.config import get_settings
from couriercore.core.errors import RateLimitExceeded, RateLimitUnavailable
from couriercore.domain.tenancy import PLAN_ENTERPRISE, PLAN_PRO, TenantContext


logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

# Paths that never count against a quota.
BYPASS_PATH_PREFIXES: tuple[str, ...] = ("/health", "/v1/health", "/v1/onboarding")


class WindowCounter(Protocol):
    # Atomically add one to (tenant_id, window) and return the post-increment count.
    async def increment(self, tenant_id: str, window: int) -> int: ...


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_s: int

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        return headers


class MemoryWindowCounter:
    """Single-process fixed-window counter.

    Each tenant owns one (window, count) slot. A call for a newer window
    overwrites the slot, so elapsed windows are abandoned without a sweep and
    a rejected call never leaks into the next window.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[str, tuple[int, int]] = {}

    async def increment(self, tenant_id: str, window: int) -> int:
        # The lock guards only the dict update; nothing is awaited while holding it.
        with self._lock:
            current_window, count = self._slots.get(tenant_id, (window, 0))
            if current_window != window:
                count = 0
            count += 1
            self._slots[tenant_id] = (window, count)
            return count

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()


class RedisWindowCounter:
    def __init__(
        self, *, prefix: str, client_factory: Callable[[], Awaitable[Redis]] | None = None
    ) -> None:
        self._prefix = prefix
        self._client_factory = client_factory or _get_redis

    def key_for(self, tenant_id: str, window: int) -> str:
        return f"{self._prefix}:{tenant_id}:{window}"

    async def increment(self, tenant_id: str, window: int) -> int:
        # INCR and EXPIRE run in one MULTI block so concurrent replicas never double-admit.
        redis = await self._client_factory()
        key = self.key_for(tenant_id, window)
        async with redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, WINDOW_SECONDS * 2)
            count, _ = await pipe.execute()
        return int(count)


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def _get_redis() -> Redis:
    # Cache Redis connections to avoid reconnecting per request.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            _redis_loop = current_loop
    return _redis_pool


def quota_for_plan(plan: str) -> int:
    settings = get_settings()
    if plan == PLAN_ENTERPRISE:
        return settings.rl_enterprise_per_minute
    if plan == PLAN_PRO:
        return settings.rl_pro_per_minute
    # Unknown plans get the smallest quota.
    return settings.rl_free_per_minute


class RateLimiter:
    def __init__(
        self,
        counter: WindowCounter,
        *,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        # Allow injecting time for deterministic window rollover tests.
        self._counter = counter
        self._time_provider = time_provider or time.time

    @property
    def counter(self) -> WindowCounter:
        return self._counter

    async def check(self, *, tenant_id: str, plan: str) -> RateLimitDecision:
        now = self._time_provider()
        window = int(now // WINDOW_SECONDS)
        reset_at = (window + 1) * WINDOW_SECONDS
        limit = quota_for_plan(plan)
        count = await self._counter.increment(tenant_id, window)
        allowed = count <= limit
        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=reset_at,
            retry_after_s=0 if allowed else max(1, int(reset_at - now)),
        )


_rate_limiter: RateLimiter | None = None


def _build_rate_limiter() -> RateLimiter:
    settings = get_settings()
    if settings.rl_backend.lower() == "redis":
        return RateLimiter(RedisWindowCounter(prefix=settings.rl_redis_prefix))
    return RateLimiter(MemoryWindowCounter())


def get_rate_limiter() -> RateLimiter:
    # Cache the limiter so in-process counters are shared by every request.
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = _build_rate_limiter()
    return _rate_limiter


def configure_rate_limiter(limiter: RateLimiter) -> None:
    # Swap in a limiter with an injected counter or clock.
    global _rate_limiter
    _rate_limiter = limiter


def reset_rate_limiter_state() -> None:
    # Drop counters and cached Redis connections for deterministic test setup.
    global _rate_limiter, _redis_pool, _redis_loop
    _rate_limiter = None
    _redis_pool = None
    _redis_loop = None


def is_bypassed(path: str) -> bool:
    return path.startswith(BYPASS_PATH_PREFIXES)


async def enforce_rate_limit(
    *,
    request: Request,
    response: Response,
    context: TenantContext,
) -> RateLimitDecision | None:
    # Runs after tenant resolution; admitted responses carry the quota headers.
    settings = get_settings()
    if not settings.rate_limit_enabled or is_bypassed(request.url.path):
        return None

    limiter = get_rate_limiter()
    try:
        decision = await limiter.check(tenant_id=context.tenant_id, plan=context.plan)
    except Exception as exc:  # noqa: BLE001 - guard against Redis connectivity failures
        if settings.rl_fail_mode.lower() == "closed":
            logger.error("rate_limit_unavailable path=%s", request.url.path)
            raise RateLimitUnavailable("Rate limit backend unavailable") from exc
        response.headers["X-RateLimit-Status"] = "degraded"
        logger.warning("rate_limit_degraded path=%s", request.url.path)
        return None

    if decision.allowed:
        response.headers.update(decision.headers())
        return decision

    logger.info(
        "rate_limited tenant_id=%s plan=%s limit=%s path=%s",
        context.tenant_id,
        context.plan,
        decision.limit,
        request.url.path,
    )
    headers = decision.headers()
    headers["Retry-After"] = str(decision.retry_after_s)
    raise RateLimitExceeded(
        "Rate limit exceeded",
        details={
            "plan": context.plan,
            "limit": decision.limit,
            "retry_after_s": decision.retry_after_s,
        },
        headers=headers,
    )
