"""
Statistical analysis over logged symptoms and activities.

The statistics are plain functions over record lists so they can run
without a store. ``AnalysisEngine`` wraps them with a days-back window,
reads the event store, and degrades store failures to empty results.
"""

import statistics
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta, tzinfo

import structlog

from capacity.config import AnalysisConfig
from capacity.domain.errors import InvalidRangeError
from capacity.domain.models import (
    AnalysisSummary,
    CorrelationKind,
    CorrelationResult,
    MetricKind,
    SymptomRecord,
    TimePattern,
    TrendDirection,
    TrendResult,
    to_local,
)
from capacity.services.contributors import ActivityEvent
from capacity.services.sources import EventStore

logger = structlog.get_logger(__name__)

PHYSIOLOGICAL_METRICS: tuple[MetricKind, ...] = (
    MetricKind.HRV,
    MetricKind.RESTING_HR,
    MetricKind.SLEEP_HOURS,
)

HIGH_SEVERITY = 4
LOW_SEVERITY = 2


def _mean(values: Sequence[float]) -> float | None:
    return statistics.fmean(values) if values else None


def _group_by_name(symptoms: Iterable[SymptomRecord]) -> dict[str, list[SymptomRecord]]:
    grouped: dict[str, list[SymptomRecord]] = defaultdict(list)
    for record in symptoms:
        grouped[record.symptom_name].append(record)
    return dict(grouped)


def _peak(counts: Counter[int]) -> int:
    """Most frequent key; ties go to the smallest key."""
    return max(sorted(counts), key=lambda key: counts[key])


def passes_noise_floor(coefficient: float, floor: float = 0.15) -> bool:
    return abs(coefficient) >= floor


def detect_trends(
    symptoms: Iterable[SymptomRecord],
    now: datetime,
    days: int,
    epsilon: float = 0.5,
) -> list[TrendResult]:
    """Compare mean severity in the older and recent half of ``[now - days, now]``."""
    window_start = now - timedelta(days=days)
    midpoint = now - timedelta(days=days / 2)
    in_window = [s for s in symptoms if window_start <= s.effective_date <= now]

    results: list[TrendResult] = []
    for name, records in _group_by_name(in_window).items():
        older = [r.severity for r in records if r.effective_date < midpoint]
        recent = [r.severity for r in records if r.effective_date >= midpoint]
        older_mean, recent_mean = _mean(older), _mean(recent)
        is_positive = records[0].is_positive

        direction = TrendDirection.STABLE
        if older_mean is not None and recent_mean is not None:
            diff = recent_mean - older_mean
            if is_positive:
                diff = -diff
            if diff > epsilon:
                direction = TrendDirection.WORSENING
            elif diff < -epsilon:
                direction = TrendDirection.IMPROVING

        results.append(
            TrendResult(
                symptom_name=name,
                direction=direction,
                is_positive=is_positive,
                occurrences=len(records),
                average_severity=statistics.fmean(r.severity for r in records),
                older_mean=older_mean,
                recent_mean=recent_mean,
            )
        )

    results.sort(key=lambda t: (-t.occurrences, t.symptom_name))
    return results


def activity_correlations(
    activities: Iterable[ActivityEvent],
    symptoms: Iterable[SymptomRecord],
    window_hours: float = 24.0,
    min_occurrences: int = 2,
    min_strength: float = 0.2,
) -> list[CorrelationResult]:
    """Compare symptom severity shortly after an activity with the rest.

    A symptom entry follows an activity when it is logged after it, no more
    than ``window_hours`` later.
    """
    window = timedelta(hours=window_hours)
    activity_times: dict[str, list[datetime]] = defaultdict(list)
    for activity in activities:
        activity_times[activity.name].append(activity.effective_date)
    grouped = _group_by_name(symptoms)

    results: list[CorrelationResult] = []
    for activity_name, times in activity_times.items():
        for symptom_name, records in grouped.items():
            after: list[int] = []
            baseline: list[int] = []
            for record in records:
                follows = any(
                    timedelta(0) < record.effective_date - t <= window for t in times
                )
                (after if follows else baseline).append(record.severity)

            if len(after) < min_occurrences:
                continue

            average_after = statistics.fmean(after)
            average_baseline = statistics.fmean(baseline) if baseline else 0.0
            strength = (average_after - average_baseline) / max(
                average_after, average_baseline, 1.0
            )
            is_positive = records[0].is_positive
            if is_positive:
                strength = -strength
            if abs(strength) <= min_strength:
                continue

            results.append(
                CorrelationResult(
                    kind=CorrelationKind.ACTIVITY,
                    subject=activity_name,
                    symptom_name=symptom_name,
                    strength=strength,
                    occurrences=len(after),
                    is_positive=is_positive,
                    baseline_occurrences=len(baseline),
                    average_after=average_after,
                    average_baseline=average_baseline,
                    window_hours=window_hours,
                )
            )

    results.sort(key=lambda c: abs(c.strength), reverse=True)
    return results


def time_patterns(
    symptoms: Iterable[SymptomRecord],
    tz: tzinfo = UTC,
    min_occurrences: int = 5,
) -> list[TimePattern]:
    """Peak hour of day and weekday (0 = Monday) per symptom."""
    results: list[TimePattern] = []
    for name, records in _group_by_name(symptoms).items():
        if len(records) < min_occurrences:
            continue
        local = [to_local(r.effective_date, tz) for r in records]
        hours = Counter(moment.hour for moment in local)
        weekdays = Counter(moment.weekday() for moment in local)
        results.append(
            TimePattern(
                symptom_name=name,
                peak_hour=_peak(hours),
                peak_weekday=_peak(weekdays),
                occurrences=len(records),
                hour_counts=dict(hours),
                weekday_counts=dict(weekdays),
            )
        )

    results.sort(key=lambda p: (-p.occurrences, p.symptom_name))
    return results


def physiological_correlations(
    symptoms: Iterable[SymptomRecord],
    metrics: Sequence[MetricKind] = PHYSIOLOGICAL_METRICS,
    min_pairs: int = 3,
    noise_floor: float = 0.15,
) -> list[CorrelationResult]:
    """Pearson correlation between severity and co-recorded biometric values."""
    results: list[CorrelationResult] = []
    for name, records in _group_by_name(symptoms).items():
        for metric in metrics:
            pairs = [
                (float(r.severity), value)
                for r in records
                if r.biometrics is not None
                and (value := r.biometrics.value_for(metric)) is not None
            ]
            if len(pairs) < min_pairs:
                continue

            severities, values = zip(*pairs, strict=True)
            try:
                coefficient = statistics.correlation(severities, values)
            except statistics.StatisticsError:
                # Constant severity or constant metric.
                continue
            if not passes_noise_floor(coefficient, noise_floor):
                continue

            results.append(
                CorrelationResult(
                    kind=CorrelationKind.PHYSIOLOGICAL,
                    subject=metric.display_name,
                    symptom_name=name,
                    strength=coefficient,
                    occurrences=len(pairs),
                    is_positive=records[0].is_positive,
                    metric=metric,
                    average_with_high_symptoms=_mean(
                        [v for s, v in pairs if s >= HIGH_SEVERITY]
                    ),
                    average_with_low_symptoms=_mean([v for s, v in pairs if s <= LOW_SEVERITY]),
                )
            )

    results.sort(key=lambda c: abs(c.strength), reverse=True)
    return results


class AnalysisEngine:
    """
    Runs the analyses over a days-back window read from the event store.

    Design principles:
    - Synchronous and side-effect free apart from store reads
    - Insufficient data is an empty list, never an exception
    - Store failures are logged and degrade to empty results
    """

    def __init__(
        self,
        store: EventStore,
        config: AnalysisConfig | None = None,
        tz: tzinfo = UTC,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.config = config or AnalysisConfig()
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger.bind(component="analysis_engine")

    def _window(self, days: int | None) -> tuple[int, datetime, datetime]:
        days = self.config.default_days if days is None else days
        if days <= 0:
            raise InvalidRangeError(f"analysis window must be positive, got {days} days")
        days = min(days, self.config.max_days)
        now = self._clock()
        return days, now - timedelta(days=days), now

    def _symptoms(self, start: datetime, end: datetime) -> list[SymptomRecord]:
        try:
            return self.store.symptoms(start, end)
        except Exception as e:
            self.logger.warning("event_store_read_failed", collection="symptoms", error=str(e))
            return []

    def _activities(self, start: datetime, end: datetime) -> list[ActivityEvent]:
        try:
            return self.store.activities(start, end)
        except Exception as e:
            self.logger.warning("event_store_read_failed", collection="activities", error=str(e))
            return []

    def analyse_trends(self, days: int | None = None) -> list[TrendResult]:
        days, start, now = self._window(days)
        trends = detect_trends(
            self._symptoms(start, now), now, days, epsilon=self.config.trend_epsilon
        )
        self.logger.info("trends_analysed", days=days, results=len(trends))
        return trends

    def analyse_activity_correlations(self, days: int | None = None) -> list[CorrelationResult]:
        days, start, now = self._window(days)
        activities = self._activities(start, now)
        if not activities:
            return []
        correlations = activity_correlations(
            activities,
            self._symptoms(start, now),
            window_hours=self.config.correlation_window_hours,
            min_occurrences=self.config.min_activity_occurrences,
            min_strength=self.config.min_activity_strength,
        )
        self.logger.info("activity_correlations_analysed", days=days, results=len(correlations))
        return correlations

    def analyse_time_patterns(self, days: int | None = None) -> list[TimePattern]:
        days, start, now = self._window(days)
        patterns = time_patterns(
            self._symptoms(start, now),
            tz=self.tz,
            min_occurrences=self.config.min_pattern_occurrences,
        )
        self.logger.info("time_patterns_analysed", days=days, results=len(patterns))
        return patterns

    def analyse_physiological_correlations(
        self, days: int | None = None
    ) -> list[CorrelationResult]:
        days, start, now = self._window(days)
        correlations = physiological_correlations(
            self._symptoms(start, now),
            min_pairs=self.config.min_physiological_pairs,
            noise_floor=self.config.physiological_noise_floor,
        )
        self.logger.info(
            "physiological_correlations_analysed", days=days, results=len(correlations)
        )
        return correlations

    def summary(self, days: int | None = None) -> AnalysisSummary:
        """All four analyses over the same window."""
        days, _, now = self._window(days)
        return AnalysisSummary(
            days=days,
            generated_at=now,
            trends=self.analyse_trends(days),
            activity_correlations=self.analyse_activity_correlations(days),
            time_patterns=self.analyse_time_patterns(days),
            physiological_correlations=self.analyse_physiological_correlations(days),
        )
