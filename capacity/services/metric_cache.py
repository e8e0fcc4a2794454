"""
TTL cache with single-flight queries in front of the biometric source.

Key patterns:
- Per-key asyncio.Lock around check-and-register, so concurrent callers on a
  cold key share one query
- One shared Task per in-flight key; callers await it through asyncio.shield
  and the query is cancelled only when its last waiter goes away
- Failures (error results, exceptions, timeouts) yield None and are never cached
- Only the query currently registered for a key may store its result
- Entries are bounded by least-recent use; idle keys keep no lock
"""

import asyncio
from collections import OrderedDict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any, TypeVar

import structlog

from capacity.config import CacheConfig
from capacity.domain.errors import SourceQueryFailedError
from capacity.domain.models import BiometricSample, BiometricSnapshot, DateRange, MetricKind, to_local
from capacity.services.sources import BiometricSource

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SLEEP_DAY_LOOKBACK = timedelta(hours=12)


@dataclass
class CacheEntry:
    value: Any
    fetched_at: datetime
    ttl_seconds: float | None

    def is_fresh(self, now: datetime) -> bool:
        if self.ttl_seconds is None:
            return True
        return (now - self.fetched_at).total_seconds() < self.ttl_seconds


# Reducers: samples -> the single value reported for a metric


def most_recent_value(samples: list[BiometricSample]) -> float | None:
    if not samples:
        return None
    return max(samples, key=lambda s: s.end or s.start).value


def total_hours(samples: list[BiometricSample]) -> float | None:
    if not samples:
        return None
    return sum(s.duration.total_seconds() for s in samples) / 3600.0


def total_minutes(samples: list[BiometricSample]) -> float | None:
    if not samples:
        return None
    return sum(s.duration.total_seconds() for s in samples) / 60.0


def cycle_day(samples: list[BiometricSample], day: date, tz: tzinfo = UTC) -> int | None:
    """Days since the most recent flow sample started on or before ``day``, plus one."""
    starts = [
        to_local(s.start, tz).date()
        for s in samples
        if s.value > 0 and to_local(s.start, tz).date() <= day
    ]
    if not starts:
        return None
    return (day - max(starts)).days + 1


class MetricCache:
    """
    Caches current, historical and per-day biometric values.

    Design principles:
    - One source query per key at a time, whatever the number of callers
    - Values expire per metric TTL; past-day values never expire
    - Cancellation never leaves a partial entry behind
    """

    def __init__(
        self,
        source: BiometricSource,
        config: CacheConfig | None = None,
        tz: tzinfo = UTC,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.config = config or CacheConfig()
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._waiters: dict[asyncio.Task[Any], int] = {}
        self.logger = logger.bind(component="metric_cache")

    # Introspection

    @property
    def active_queries(self) -> list[str]:
        """Keys with a query currently in flight."""
        return sorted(self._in_flight)

    def cached_value(self, kind: MetricKind) -> Any:
        entry = self._entries.get(self._value_key(kind))
        return entry.value if entry is not None else None

    @property
    def size(self) -> int:
        """Number of stored entries across values, histories and days."""
        return len(self._entries)

    # Single-flight core

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        """Hold the per-key lock; it is dropped once no caller holds or awaits it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _store(self, key: str, value: Any, ttl_seconds: float | None) -> None:
        self._entries[key] = CacheEntry(value, self._clock(), ttl_seconds)
        self._entries.move_to_end(key)
        while len(self._entries) > self.config.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.logger.debug("metric_cache_evicted", key=evicted)

    async def _get(
        self,
        key: str,
        ttl_seconds: float | None,
        loader: Callable[[], Awaitable[T | None]],
        force: bool = False,
        store: bool = True,
    ) -> T | None:
        async with self._key_lock(key):
            task: asyncio.Task[Any] | None = None
            if not force:
                entry = self._entries.get(key)
                if entry is not None and entry.is_fresh(self._clock()):
                    self._entries.move_to_end(key)
                    self.logger.debug("metric_cache_hit", key=key)
                    return entry.value
                task = self._in_flight.get(key)
            if task is None:
                task = asyncio.create_task(
                    self._run(key, ttl_seconds, loader, store), name=f"metric-query:{key}"
                )
                self._in_flight[key] = task
                self._waiters[task] = 0
            self._waiters[task] += 1

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and current is not None and not current.cancelling():
                # The query was cancelled underneath us (cache closed); the caller was not.
                return None
            raise
        finally:
            self._release(task)

    def _release(self, task: asyncio.Task[Any]) -> None:
        remaining = self._waiters.get(task, 0) - 1
        if remaining > 0:
            self._waiters[task] = remaining
            return
        self._waiters.pop(task, None)
        if not task.done():
            self.logger.info("metric_query_abandoned", task=task.get_name())
            task.cancel()

    async def _run(
        self,
        key: str,
        ttl_seconds: float | None,
        loader: Callable[[], Awaitable[T | None]],
        store: bool,
    ) -> T | None:
        self.logger.debug("metric_query_started", key=key)
        try:
            value = await asyncio.wait_for(loader(), timeout=self.config.query_timeout_seconds)
        except TimeoutError:
            self.logger.warning(
                "metric_query_timeout", key=key, timeout_seconds=self.config.query_timeout_seconds
            )
            return None
        except SourceQueryFailedError as e:
            self.logger.warning("metric_query_failed", key=key, error=e.reason)
            return None
        except Exception as e:
            self.logger.exception("unexpected_metric_query_error", key=key, error=str(e))
            return None
        finally:
            # A forced refresh may have replaced this query while it ran.
            owner = self._in_flight.get(key) is asyncio.current_task()
            if owner:
                del self._in_flight[key]

        if store and owner and value is not None:
            self._store(key, value, ttl_seconds)
        self.logger.debug("metric_query_completed", key=key, has_value=value is not None)
        return value

    async def _fetch(
        self, kind: MetricKind, date_range: DateRange, limit: int | None
    ) -> list[BiometricSample]:
        result = await self.source.query(kind, date_range, limit)
        if result.is_err():
            raise SourceQueryFailedError(kind.value, str(result.unwrap_err()))
        return result.unwrap()

    # Current values

    @staticmethod
    def _value_key(kind: MetricKind) -> str:
        return f"value:{kind.value}"

    def _current_range(self, kind: MetricKind, now: datetime) -> DateRange:
        if kind in (MetricKind.HRV, MetricKind.RESTING_HR):
            lookback = timedelta(hours=self.config.quantity_lookback_hours)
        elif kind is MetricKind.CYCLE_DAY:
            lookback = timedelta(days=self.config.cycle_lookback_days)
        else:
            lookback = timedelta(hours=self.config.daily_lookback_hours)
        return DateRange.last(lookback, now)

    def _reduce(self, kind: MetricKind, samples: list[BiometricSample], day: date) -> Any:
        if kind in (MetricKind.HRV, MetricKind.RESTING_HR):
            return most_recent_value(samples)
        if kind is MetricKind.SLEEP_HOURS:
            return total_hours(samples)
        if kind is MetricKind.WORKOUT_MINUTES:
            return total_minutes(samples)
        return cycle_day(samples, day, self.tz)

    async def get(self, kind: MetricKind, force: bool = False) -> Any:
        """Current value of ``kind``: cached while fresh, else one shared query.

        Returns None when the source fails, times out or has no samples.
        """

        async def load() -> Any:
            now = self._clock()
            samples = await self._fetch(
                kind, self._current_range(kind, now), self.config.sample_limit_for(kind)
            )
            return self._reduce(kind, samples, to_local(now, self.tz).date())

        return await self._get(self._value_key(kind), self.config.ttl_for(kind), load, force)

    async def refresh(self, kind: MetricKind) -> Any:
        return await self.get(kind, force=True)

    async def _gather(self, force: bool) -> BiometricSnapshot:
        async with asyncio.TaskGroup() as task_group:
            tasks = {
                kind: task_group.create_task(self.get(kind, force=force)) for kind in MetricKind
            }
        values = {kind.value: task.result() for kind, task in tasks.items()}
        return BiometricSnapshot(**values)

    async def snapshot(self) -> BiometricSnapshot:
        """All current metric values, gathered concurrently."""
        return await self._gather(force=False)

    async def refresh_all(self) -> BiometricSnapshot:
        self.logger.info("metric_refresh_all")
        return await self._gather(force=True)

    # History and per-day values

    async def history(self, kind: MetricKind, days: int) -> list[BiometricSample]:
        """Raw samples over the last ``days`` days; failures yield an empty list."""

        async def load() -> list[BiometricSample]:
            return await self._fetch(kind, DateRange.last(timedelta(days=days), self._clock()), None)

        samples = await self._get(f"history:{kind.value}:{days}", self.config.ttl_for(kind), load)
        return samples if samples is not None else []

    def _day_range(self, kind: MetricKind, day: date) -> DateRange:
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        end = datetime.combine(day, time.max, tzinfo=self.tz)
        if kind is MetricKind.SLEEP_HOURS:
            start -= SLEEP_DAY_LOOKBACK
        elif kind is MetricKind.CYCLE_DAY:
            start -= timedelta(days=self.config.cycle_lookback_days)
        return DateRange(start=start, end=end)

    async def value_for_day(self, kind: MetricKind, day: date) -> Any:
        """Value of ``kind`` on a calendar day.

        Past days are cached for the life of the cache; today's value is
        always queried.
        """
        today = to_local(self._clock(), self.tz).date()

        async def load() -> Any:
            samples = await self._fetch(kind, self._day_range(kind, day), None)
            return self._reduce(kind, samples, day)

        return await self._get(
            f"day:{kind.value}:{day.isoformat()}", None, load, store=day < today
        )

    # Lifecycle

    async def close(self) -> None:
        """Cancel in-flight queries and drop every cached value."""
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        self._in_flight.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._entries.clear()
        self.logger.info("metric_cache_closed", cancelled_queries=len(tasks))

    @asynccontextmanager
    async def session(self) -> AsyncIterator["MetricCache"]:
        """
        Async context manager for the cache lifecycle.

        Pattern: queries started inside the block never outlive it.
        """
        self.logger.info("metric_cache_session_started")
        try:
            yield self
        finally:
            await self.close()
            self.logger.info("metric_cache_session_ended")
