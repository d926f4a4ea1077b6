from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from couriercore.apps.api.rate_limit import (
    MemoryWindowCounter,
    RateLimiter,
    RedisWindowCounter,
    quota_for_plan,
)
from couriercore.core.config import get_settings


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_plan_quotas_follow_settings(monkeypatch) -> None:
    monkeypatch.setenv("RL_PRO_PER_MINUTE", "7")
    get_settings.cache_clear()
    assert quota_for_plan("free") == 60
    assert quota_for_plan("pro") == 7
    assert quota_for_plan("enterprise") == 1000
    assert quota_for_plan("mystery") == 60


@pytest.mark.asyncio
async def test_request_over_quota_rejected_and_next_window_admits(monkeypatch) -> None:
    monkeypatch.setenv("RL_FREE_PER_MINUTE", "3")
    get_settings.cache_clear()
    clock = _Clock(1_000_020.0)
    limiter = RateLimiter(MemoryWindowCounter(), time_provider=clock)

    decisions = [await limiter.check(tenant_id="t1", plan="free") for _ in range(4)]
    assert [decision.allowed for decision in decisions] == [True, True, True, False]
    assert [decision.remaining for decision in decisions] == [2, 1, 0, 0]
    rejected = decisions[-1]
    assert rejected.reset_at == 1_000_020 - (1_000_020 % 60) + 60
    assert rejected.retry_after_s == rejected.reset_at - 1_000_020

    clock.now = float(rejected.reset_at)
    admitted = await limiter.check(tenant_id="t1", plan="free")
    assert admitted.allowed
    # The rejected call did not leak into the new window.
    assert admitted.remaining == 2


@pytest.mark.asyncio
async def test_tenants_have_independent_counters(monkeypatch) -> None:
    monkeypatch.setenv("RL_FREE_PER_MINUTE", "1")
    get_settings.cache_clear()
    limiter = RateLimiter(MemoryWindowCounter(), time_provider=_Clock(120.0))
    assert (await limiter.check(tenant_id="a", plan="free")).allowed
    assert (await limiter.check(tenant_id="b", plan="free")).allowed
    assert not (await limiter.check(tenant_id="a", plan="free")).allowed


@pytest.mark.asyncio
async def test_concurrent_tasks_never_exceed_quota(monkeypatch) -> None:
    monkeypatch.setenv("RL_FREE_PER_MINUTE", "25")
    get_settings.cache_clear()
    limiter = RateLimiter(MemoryWindowCounter(), time_provider=_Clock(600.0))
    decisions = await asyncio.gather(
        *(limiter.check(tenant_id="t1", plan="free") for _ in range(100))
    )
    assert sum(1 for decision in decisions if decision.allowed) == 25


def test_memory_counter_is_atomic_across_threads() -> None:
    counter = MemoryWindowCounter()

    def _bump() -> int:
        return asyncio.run(counter.increment("t1", 42))

    with ThreadPoolExecutor(max_workers=8) as pool:
        counts = list(pool.map(lambda _: _bump(), range(400)))
    # Every post-increment value is handed out exactly once.
    assert sorted(counts) == list(range(1, 401))


class _FakePipeline:
    def __init__(self, store: dict[str, int], expiries: dict[str, int]) -> None:
        self._store = store
        self._expiries = expiries
        self._ops: list[tuple[str, str, int | None]] = []

    async def __aenter__(self) -> "_FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    def incr(self, key: str) -> None:
        self._ops.append(("incr", key, None))

    def expire(self, key: str, seconds: int) -> None:
        self._ops.append(("expire", key, seconds))

    async def execute(self) -> list[int | bool]:
        results: list[int | bool] = []
        for op, key, arg in self._ops:
            if op == "incr":
                self._store[key] = self._store.get(key, 0) + 1
                results.append(self._store[key])
            else:
                self._expiries[key] = int(arg or 0)
                results.append(True)
        return results


class _FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, int] = {}
        self.expiries: dict[str, int] = {}
        self.transactions: list[bool] = []

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        self.transactions.append(transaction)
        return _FakePipeline(self.store, self.expiries)


@pytest.mark.asyncio
async def test_redis_counter_uses_transactional_incr_with_expiry() -> None:
    fake = _FakeRedis()

    async def _client() -> _FakeRedis:
        return fake

    counter = RedisWindowCounter(prefix="courier:rl", client_factory=_client)
    assert await counter.increment("t1", 10) == 1
    assert await counter.increment("t1", 10) == 2
    assert await counter.increment("t1", 11) == 1
    assert fake.store == {"courier:rl:t1:10": 2, "courier:rl:t1:11": 1}
    assert fake.expiries["courier:rl:t1:10"] == 120
    assert fake.transactions == [True, True, True]
