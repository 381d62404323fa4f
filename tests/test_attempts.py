"""
tests/test_attempts.py -- Unit tests for LoginAttemptTracker.
"""

from __future__ import annotations

import asyncio

import pytest

from auth.attempts import LoginAttemptTracker
from core.errors import RateLimited

IP = "203.0.113.50"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock: FakeClock) -> LoginAttemptTracker:
    return LoginAttemptTracker(max_attempts=5, lockout_seconds=900, clock=clock)


class TestLockout:
    @pytest.mark.asyncio
    async def test_below_limit_is_allowed(self, tracker: LoginAttemptTracker) -> None:
        for _ in range(4):
            await tracker.record_failure(IP)
        await tracker.check(IP)
        assert tracker.attempts_for(IP) == 4

    @pytest.mark.asyncio
    async def test_fifth_failure_locks_out(self, tracker: LoginAttemptTracker) -> None:
        for _ in range(5):
            await tracker.record_failure(IP)
        with pytest.raises(RateLimited) as excinfo:
            await tracker.check(IP)
        assert excinfo.value.retry_after == 900

    @pytest.mark.asyncio
    async def test_retry_after_counts_down(self, tracker: LoginAttemptTracker, clock: FakeClock) -> None:
        for _ in range(5):
            await tracker.record_failure(IP)
        clock.now += 600
        with pytest.raises(RateLimited) as excinfo:
            await tracker.check(IP)
        assert excinfo.value.retry_after == 300

    @pytest.mark.asyncio
    async def test_counter_resets_after_window(self, tracker: LoginAttemptTracker, clock: FakeClock) -> None:
        for _ in range(5):
            await tracker.record_failure(IP)
        clock.now += 901
        await tracker.check(IP)
        assert tracker.attempts_for(IP) == 0, "an expired lockout starts the IP from zero"

    @pytest.mark.asyncio
    async def test_reset_clears_counter(self, tracker: LoginAttemptTracker) -> None:
        for _ in range(5):
            await tracker.record_failure(IP)
        await tracker.reset(IP)
        await tracker.check(IP)
        assert tracker.attempts_for(IP) == 0

    @pytest.mark.asyncio
    async def test_ips_are_independent(self, tracker: LoginAttemptTracker) -> None:
        for _ in range(5):
            await tracker.record_failure(IP)
        await tracker.check("198.51.100.1")


class TestExpiry:
    @pytest.mark.asyncio
    async def test_stale_partial_count_is_dropped_on_check(
        self, tracker: LoginAttemptTracker, clock: FakeClock
    ) -> None:
        for _ in range(3):
            await tracker.record_failure(IP)
        clock.now += 900
        await tracker.check(IP)
        assert tracker.tracked_ips() == 0

    @pytest.mark.asyncio
    async def test_stale_partial_count_restarts_on_next_failure(
        self, tracker: LoginAttemptTracker, clock: FakeClock
    ) -> None:
        for _ in range(4):
            await tracker.record_failure(IP)
        clock.now += 901
        assert await tracker.record_failure(IP) == 1
        await tracker.check(IP)

    @pytest.mark.asyncio
    async def test_sweep_drops_ips_never_seen_again(self, clock: FakeClock) -> None:
        tracker = LoginAttemptTracker(max_attempts=5, lockout_seconds=900, clock=clock, sweep_every=10)
        for n in range(9):
            await tracker.record_failure(f"198.51.100.{n}")
        clock.now += 901
        await tracker.record_failure(IP)
        assert tracker.tracked_ips() == 1
        assert tracker.attempts_for(IP) == 1

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_entries(self, tracker: LoginAttemptTracker, clock: FakeClock) -> None:
        await tracker.record_failure("198.51.100.1")
        clock.now += 600
        await tracker.record_failure(IP)
        clock.now += 400
        assert tracker.sweep() == 1
        assert tracker.attempts_for(IP) == 1


@pytest.mark.asyncio
async def test_concurrent_failures_are_all_counted(tracker: LoginAttemptTracker) -> None:
    counts = await asyncio.gather(*(tracker.record_failure(IP) for _ in range(50)))
    assert sorted(counts) == list(range(1, 51))
    assert tracker.attempts_for(IP) == 50
