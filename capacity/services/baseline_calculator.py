"""
Personal baselines for heart rate variability and resting heart rate.

Baselines are recomputed from a 30-day history read through the metric cache
and persisted as JSON in key-value settings. A recomputation that fails,
lacks samples or is cancelled leaves the previous baseline in place.
"""

import asyncio
import math
import statistics
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

import structlog
from pydantic import ValidationError

from capacity.config import BaselineConfig
from capacity.domain.models import Baseline, MetricKind
from capacity.services.metric_cache import MetricCache
from capacity.services.sources import KeyValueSettings

logger = structlog.get_logger(__name__)

MIN_BASELINE_SAMPLES = 10
EVALUATION_DEVIATIONS = 0.5

SETTINGS_KEYS: dict[MetricKind, str] = {
    MetricKind.HRV: "hrv_baseline",
    MetricKind.RESTING_HR: "resting_hr_baseline",
}

# (low, high) used until a baseline is calibrated
FALLBACK_THRESHOLDS: dict[MetricKind, tuple[float, float]] = {
    MetricKind.HRV: (30.0, 50.0),
    MetricKind.RESTING_HR: (55.0, 75.0),
}


def compute_baseline(
    metric: MetricKind,
    values: Sequence[float],
    now: datetime | None = None,
    min_samples: int = MIN_BASELINE_SAMPLES,
) -> Baseline | None:
    """Mean and population standard deviation, or None below ``min_samples``."""
    finite = [v for v in values if math.isfinite(v)]
    if len(finite) < min_samples:
        return None
    return Baseline(
        metric=metric,
        mean=statistics.fmean(finite),
        standard_deviation=statistics.pstdev(finite),
        sample_count=len(finite),
        computed_at=now or datetime.now(UTC),
    )


def evaluate_against(metric: MetricKind, value: float, baseline: Baseline | None) -> int:
    """-1 below, 1 above, 0 within half a standard deviation of the mean.

    Uncalibrated or missing baselines fall back to fixed thresholds.
    """
    if baseline is None or not baseline.is_calibrated:
        low, high = FALLBACK_THRESHOLDS[metric]
    else:
        low = baseline.threshold(-EVALUATION_DEVIATIONS)
        high = baseline.threshold(EVALUATION_DEVIATIONS)
    if value > high:
        return 1
    if value < low:
        return -1
    return 0


class BaselineStore:
    """Holds the current baselines and mirrors them into key-value settings."""

    def __init__(self, settings: KeyValueSettings) -> None:
        self.settings = settings
        self.logger = logger.bind(component="baseline_store")
        self._baselines: dict[MetricKind, Baseline] = {}
        self._load()

    def _load(self) -> None:
        for metric, key in SETTINGS_KEYS.items():
            raw = self.settings.get(key)
            if raw is None:
                continue
            try:
                self._baselines[metric] = Baseline.model_validate_json(raw)
            except ValidationError as e:
                self.logger.warning("stored_baseline_unreadable", metric=metric.value, error=str(e))

    def get(self, metric: MetricKind) -> Baseline | None:
        return self._baselines.get(metric)

    @property
    def hrv(self) -> Baseline | None:
        return self.get(MetricKind.HRV)

    @property
    def resting_hr(self) -> Baseline | None:
        return self.get(MetricKind.RESTING_HR)

    def replace(self, baseline: Baseline) -> None:
        """Overwrite the stored baseline for ``baseline.metric`` wholesale."""
        key = SETTINGS_KEYS.get(baseline.metric)
        if key is None:
            raise ValueError(f"No baseline is kept for {baseline.metric.value}")
        self.settings.set(key, baseline.model_dump_json())
        self._baselines[baseline.metric] = baseline
        self.logger.info(
            "baseline_replaced",
            metric=baseline.metric.value,
            mean=round(baseline.mean, 2),
            standard_deviation=round(baseline.standard_deviation, 2),
            sample_count=baseline.sample_count,
        )

    def reset(self) -> None:
        for key in SETTINGS_KEYS.values():
            self.settings.delete(key)
        self._baselines.clear()
        self.logger.info("baselines_reset")

    def evaluate(self, metric: MetricKind, value: float) -> int:
        return evaluate_against(metric, value, self.get(metric))

    def evaluate_hrv(self, value: float) -> int:
        return self.evaluate(MetricKind.HRV, value)

    def evaluate_resting_hr(self, value: float) -> int:
        return self.evaluate(MetricKind.RESTING_HR, value)


class BaselineCalculator:
    """Recomputes baselines from cached history."""

    def __init__(
        self,
        cache: MetricCache,
        store: BaselineStore,
        config: BaselineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.cache = cache
        self.store = store
        self.config = config or BaselineConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger.bind(component="baseline_calculator")

    async def update_baseline(self, metric: MetricKind) -> Baseline | None:
        samples = await self.cache.history(metric, self.config.lookback_days)
        baseline = compute_baseline(
            metric,
            [s.value for s in samples],
            now=self._clock(),
            min_samples=self.config.min_samples,
        )
        if baseline is None:
            self.logger.info(
                "baseline_not_updated",
                metric=metric.value,
                samples=len(samples),
                required=self.config.min_samples,
            )
            return None
        self.store.replace(baseline)
        return baseline

    async def update_hrv_baseline(self) -> Baseline | None:
        return await self.update_baseline(MetricKind.HRV)

    async def update_resting_hr_baseline(self) -> Baseline | None:
        return await self.update_baseline(MetricKind.RESTING_HR)

    async def update_baselines(self) -> dict[MetricKind, Baseline | None]:
        """Recompute every configured baseline concurrently."""
        async with asyncio.TaskGroup() as task_group:
            tasks = {
                metric: task_group.create_task(self.update_baseline(metric))
                for metric in self.config.metrics
            }
        return {metric: task.result() for metric, task in tasks.items()}
