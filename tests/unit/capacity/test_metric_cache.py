"""
Tests for the metric cache.

Covers TTL freshness, single-flight sharing of in-flight queries,
failure handling, cancellation and the per-day value cache.
"""

import asyncio
from datetime import UTC, date, datetime, timedelta

import pytest

from adapters.memory.biometric_source import InMemoryBiometricSource
from capacity.config import CacheConfig
from capacity.domain.models import BiometricSample, MetricKind
from capacity.services.metric_cache import (
    CacheEntry,
    MetricCache,
    cycle_day,
    most_recent_value,
    total_hours,
)
from capacity.services.sources import Result

START = datetime(2026, 9, 14, 9, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def hrv(value: float, hours_ago: float) -> BiometricSample:
    return BiometricSample(kind=MetricKind.HRV, value=value, start=START - timedelta(hours=hours_ago))


class ScriptedSource:
    """Answers each HRV query with the next (delay, value) pair."""

    def __init__(self, *replies: tuple[float, float]) -> None:
        self.replies = list(replies)
        self.call_count = 0

    async def query(self, kind, date_range, sample_limit=None) -> Result[list[BiometricSample], Exception]:
        delay, value = self.replies[self.call_count]
        self.call_count += 1
        await asyncio.sleep(delay)
        return Result.ok([hrv(value, hours_ago=0)])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source() -> InMemoryBiometricSource:
    return InMemoryBiometricSource(
        [
            hrv(41.0, hours_ago=20),
            hrv(47.5, hours_ago=2),
            hrv(39.0, hours_ago=9),
            BiometricSample(kind=MetricKind.RESTING_HR, value=61.0, start=START - timedelta(hours=3)),
        ]
    )


@pytest.fixture
def cache(source: InMemoryBiometricSource, clock: FakeClock) -> MetricCache:
    return MetricCache(source, CacheConfig(), clock=clock)


class TestReducers:
    def test_most_recent_ignores_source_order(self) -> None:
        samples = [hrv(41.0, 20), hrv(47.5, 2), hrv(39.0, 9)]

        assert most_recent_value(samples) == 47.5
        assert most_recent_value([]) is None

    def test_total_hours_sums_durations(self) -> None:
        night = BiometricSample(
            kind=MetricKind.SLEEP_HOURS, value=1.0, start=START - timedelta(hours=9), end=START - timedelta(hours=2)
        )
        nap = BiometricSample(
            kind=MetricKind.SLEEP_HOURS, value=1.0, start=START + timedelta(hours=4), end=START + timedelta(hours=4, minutes=30)
        )

        assert total_hours([night, nap]) == pytest.approx(7.5)
        assert total_hours([]) is None

    def test_cycle_day_counts_from_latest_flow(self) -> None:
        def flow(day: date, value: float = 1.0) -> BiometricSample:
            return BiometricSample(
                kind=MetricKind.CYCLE_DAY, value=value, start=datetime(day.year, day.month, day.day, 8, tzinfo=UTC)
            )

        samples = [flow(date(2026, 8, 10)), flow(date(2026, 9, 8)), flow(date(2026, 9, 10), value=0.0)]

        assert cycle_day(samples, date(2026, 9, 12)) == 5
        assert cycle_day(samples, date(2026, 9, 8)) == 1
        assert cycle_day([], date(2026, 9, 12)) is None

    def test_entry_without_ttl_never_expires(self) -> None:
        entry = CacheEntry(value=1, fetched_at=START, ttl_seconds=None)

        assert entry.is_fresh(START + timedelta(days=365))


class TestFreshness:
    async def test_value_is_most_recent_sample(self, cache: MetricCache) -> None:
        assert await cache.get(MetricKind.HRV) == 47.5
        assert cache.cached_value(MetricKind.HRV) == 47.5

    async def test_fresh_value_is_served_from_cache(
        self, cache: MetricCache, source: InMemoryBiometricSource, clock: FakeClock
    ) -> None:
        await cache.get(MetricKind.HRV)
        clock.advance(minutes=29)
        await cache.get(MetricKind.HRV)

        assert source.call_count == 1

    async def test_expired_value_is_queried_again(
        self, cache: MetricCache, source: InMemoryBiometricSource, clock: FakeClock
    ) -> None:
        await cache.get(MetricKind.HRV)
        clock.advance(minutes=31)
        await cache.get(MetricKind.HRV)

        assert source.call_count == 2

    async def test_force_refresh_bypasses_fresh_value(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        await cache.get(MetricKind.HRV)
        source.add(BiometricSample(kind=MetricKind.HRV, value=52.0, start=START))

        assert await cache.refresh(MetricKind.HRV) == 52.0
        assert source.call_count == 2

    async def test_queries_use_metric_sample_limits(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        await cache.get(MetricKind.HRV)
        await cache.get(MetricKind.RESTING_HR)
        await cache.get(MetricKind.SLEEP_HOURS)

        assert [limit for _, _, limit in source.calls] == [50, 10, None]
        _, hrv_range, _ = source.calls[0]
        assert hrv_range.end - hrv_range.start == timedelta(hours=72)

    async def test_missing_samples_yield_none(self, cache: MetricCache) -> None:
        assert await cache.get(MetricKind.WORKOUT_MINUTES) is None


class TestSingleFlight:
    @pytest.mark.performance
    async def test_concurrent_readers_share_one_query(self, clock: FakeClock) -> None:
        source = InMemoryBiometricSource([hrv(44.0, 1)], delay_seconds=0.05)
        cache = MetricCache(source, clock=clock)

        readings = await asyncio.gather(*(cache.get(MetricKind.HRV) for _ in range(8)))

        assert readings == [44.0] * 8
        assert source.call_count == 1
        assert cache.active_queries == []

    @pytest.mark.performance
    async def test_expired_entry_is_requeried_once_for_concurrent_readers(
        self, clock: FakeClock
    ) -> None:
        source = InMemoryBiometricSource([hrv(44.0, 1)], delay_seconds=0.05)
        cache = MetricCache(source, clock=clock)
        await cache.get(MetricKind.HRV)
        clock.advance(minutes=30)

        readings = await asyncio.gather(*(cache.get(MetricKind.HRV) for _ in range(6)))

        assert readings == [44.0] * 6
        assert source.call_count == 2

    async def test_slow_read_does_not_overwrite_forced_refresh(self, clock: FakeClock) -> None:
        source = ScriptedSource((0.2, 1.0), (0.01, 2.0))
        cache = MetricCache(source, clock=clock)

        slow = asyncio.create_task(cache.get(MetricKind.HRV))
        await asyncio.sleep(0.01)

        assert await cache.refresh(MetricKind.HRV) == 2.0
        assert await slow == 1.0
        assert cache.cached_value(MetricKind.HRV) == 2.0
        assert cache.active_queries == []

    async def test_active_queries_lists_in_flight_keys(self, clock: FakeClock) -> None:
        source = InMemoryBiometricSource([hrv(44.0, 1)], delay_seconds=0.05)
        cache = MetricCache(source, clock=clock)

        reader = asyncio.create_task(cache.get(MetricKind.HRV))
        await asyncio.sleep(0.01)

        assert cache.active_queries == ["value:hrv"]
        assert await reader == 44.0
        assert cache.active_queries == []

    async def test_different_metrics_query_independently(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        hrv_value, rhr_value = await asyncio.gather(
            cache.get(MetricKind.HRV), cache.get(MetricKind.RESTING_HR)
        )

        assert (hrv_value, rhr_value) == (47.5, 61.0)
        assert source.call_count == 2


class TestFailures:
    async def test_error_result_is_not_cached(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        source.error = PermissionError("authorization denied")

        assert await cache.get(MetricKind.HRV) is None
        assert cache.cached_value(MetricKind.HRV) is None

        source.error = None
        assert await cache.get(MetricKind.HRV) == 47.5
        assert source.call_count == 2

    async def test_raising_source_yields_none(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        source.raise_error = RuntimeError("bridge crashed")

        assert await cache.get(MetricKind.RESTING_HR) is None
        assert cache.active_queries == []

    async def test_timeout_yields_none(self, clock: FakeClock) -> None:
        source = InMemoryBiometricSource([hrv(44.0, 1)], delay_seconds=1.0)
        cache = MetricCache(source, CacheConfig(query_timeout_seconds=0.05), clock=clock)

        assert await cache.get(MetricKind.HRV) is None
        assert cache.active_queries == []

    async def test_history_failure_is_empty(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        source.error = RuntimeError("unavailable")

        assert await cache.history(MetricKind.HRV, days=30) == []


class TestCancellation:
    async def test_last_waiter_cancelling_cancels_query(self, clock: FakeClock) -> None:
        source = InMemoryBiometricSource([hrv(44.0, 1)], delay_seconds=1.0)
        cache = MetricCache(source, clock=clock)

        reader = asyncio.create_task(cache.get(MetricKind.HRV))
        await asyncio.sleep(0.01)
        reader.cancel()

        with pytest.raises(asyncio.CancelledError):
            await reader
        await asyncio.sleep(0.01)

        assert cache.active_queries == []
        assert cache.cached_value(MetricKind.HRV) is None

    async def test_remaining_waiter_still_gets_value(self, clock: FakeClock) -> None:
        source = InMemoryBiometricSource([hrv(44.0, 1)], delay_seconds=0.05)
        cache = MetricCache(source, clock=clock)

        first = asyncio.create_task(cache.get(MetricKind.HRV))
        second = asyncio.create_task(cache.get(MetricKind.HRV))
        await asyncio.sleep(0.01)
        first.cancel()

        assert await second == 44.0
        assert source.call_count == 1
        assert first.cancelled()

    async def test_cancelled_refresh_keeps_previous_value(self, clock: FakeClock) -> None:
        source = InMemoryBiometricSource([hrv(44.0, 1)])
        cache = MetricCache(source, clock=clock)
        assert await cache.get(MetricKind.HRV) == 44.0
        source.add(hrv(50.0, hours_ago=0))
        source.delay_seconds = 1.0

        refresh = asyncio.create_task(cache.refresh(MetricKind.HRV))
        await asyncio.sleep(0.01)
        refresh.cancel()

        with pytest.raises(asyncio.CancelledError):
            await refresh
        await asyncio.sleep(0.01)

        assert cache.cached_value(MetricKind.HRV) == 44.0
        assert cache.active_queries == []

    async def test_close_cancels_in_flight_and_clears(self, clock: FakeClock) -> None:
        source = InMemoryBiometricSource([hrv(44.0, 1)], delay_seconds=1.0)
        cache = MetricCache(source, clock=clock)

        reader = asyncio.create_task(cache.get(MetricKind.HRV))
        await asyncio.sleep(0.01)
        await cache.close()

        assert await reader is None
        assert cache.active_queries == []

    async def test_session_clears_on_exit(self, cache: MetricCache) -> None:
        async with cache.session() as session:
            assert await session.get(MetricKind.HRV) == 47.5

        assert cache.cached_value(MetricKind.HRV) is None


class TestSnapshotsAndDays:
    async def test_snapshot_collects_every_metric(self, cache: MetricCache) -> None:
        snapshot = await cache.snapshot()

        assert snapshot.hrv == 47.5
        assert snapshot.resting_hr == 61.0
        assert snapshot.sleep_hours is None
        assert not snapshot.is_empty

    async def test_refresh_all_queries_again(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        await cache.snapshot()
        await cache.refresh_all()

        assert source.call_count == 2 * len(MetricKind)

    async def test_history_returns_samples(self, cache: MetricCache) -> None:
        samples = await cache.history(MetricKind.HRV, days=30)

        assert sorted(s.value for s in samples) == [39.0, 41.0, 47.5]

    async def test_past_day_values_are_cached(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        yesterday = START.date() - timedelta(days=1)
        source.add(
            BiometricSample(
                kind=MetricKind.SLEEP_HOURS,
                value=1.0,
                start=datetime(2026, 9, 12, 23, tzinfo=UTC),
                end=datetime(2026, 9, 13, 7, tzinfo=UTC),
            )
        )

        assert await cache.value_for_day(MetricKind.SLEEP_HOURS, yesterday) == pytest.approx(8.0)
        assert await cache.value_for_day(MetricKind.SLEEP_HOURS, yesterday) == pytest.approx(8.0)
        assert source.call_count == 1

    async def test_today_is_always_queried(
        self, cache: MetricCache, source: InMemoryBiometricSource
    ) -> None:
        await cache.value_for_day(MetricKind.HRV, START.date())
        await cache.value_for_day(MetricKind.HRV, START.date())

        assert source.call_count == 2

    async def test_cycle_day_for_day(self, cache: MetricCache, source: InMemoryBiometricSource) -> None:
        source.add(
            BiometricSample(kind=MetricKind.CYCLE_DAY, value=2.0, start=datetime(2026, 9, 1, 7, tzinfo=UTC))
        )

        assert await cache.value_for_day(MetricKind.CYCLE_DAY, date(2026, 9, 13)) == 13


class TestBounds:
    async def test_least_recently_used_entries_are_evicted(
        self, source: InMemoryBiometricSource, clock: FakeClock
    ) -> None:
        source.add(*(hrv(40.0 + d, hours_ago=24 * d) for d in range(1, 4)))
        cache = MetricCache(source, CacheConfig(max_entries=3), clock=clock)
        days = [START.date() - timedelta(days=d) for d in range(1, 4)]

        await cache.get(MetricKind.HRV)
        for day in days[:2]:
            await cache.value_for_day(MetricKind.HRV, day)
        await cache.get(MetricKind.HRV)
        await cache.value_for_day(MetricKind.HRV, days[2])

        assert cache.size == 3
        assert cache.cached_value(MetricKind.HRV) == 47.5
        calls = source.call_count
        await cache.value_for_day(MetricKind.HRV, days[0])
        assert source.call_count == calls + 1

    async def test_idle_keys_hold_no_lock(self, cache: MetricCache) -> None:
        await asyncio.gather(*(cache.get(MetricKind.HRV) for _ in range(4)))
        await cache.history(MetricKind.HRV, days=7)

        assert cache._locks == {}
