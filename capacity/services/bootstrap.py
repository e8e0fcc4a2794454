"""
Service wiring and startup.

``build_services`` assembles the analytics core from its collaborators.
``bootstrap`` warms the metric cache and recomputes baselines under a hard
wall-clock timeout so startup never hangs on a slow biometric source.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum

import structlog
from pydantic import BaseModel, Field

from capacity.config import AppConfig, get_config
from capacity.domain.models import Baseline, BiometricSnapshot, MetricKind
from capacity.services.analysis_engine import AnalysisEngine
from capacity.services.baseline_calculator import BaselineCalculator, BaselineStore
from capacity.services.capacity_settings import CapacitySettings
from capacity.services.load_calculator import LoadCalculator
from capacity.services.load_score_cache import LoadScoreCache
from capacity.services.metric_cache import MetricCache
from capacity.services.sources import BiometricSource, EventStore, KeyValueSettings

logger = structlog.get_logger(__name__)


class BootstrapState(str, Enum):
    READY = "ready"
    DEGRADED = "degraded"
    TIMED_OUT = "timed_out"


class BootstrapStatus(BaseModel):
    """Outcome of startup; degraded states still leave every service usable."""

    state: BootstrapState
    elapsed_seconds: float = Field(ge=0.0)
    snapshot: BiometricSnapshot = Field(default_factory=BiometricSnapshot)
    baselines_updated: list[MetricKind] = Field(default_factory=list)
    error: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.state is BootstrapState.READY


@dataclass
class CapacityServices:
    """Everything a caller needs, built from one configuration."""

    config: AppConfig
    store: EventStore
    capacity_settings: CapacitySettings
    load_calculator: LoadCalculator
    analysis_engine: AnalysisEngine
    metric_cache: MetricCache
    baseline_store: BaselineStore
    baseline_calculator: BaselineCalculator


def build_services(
    store: EventStore,
    source: BiometricSource,
    settings: KeyValueSettings,
    config: AppConfig | None = None,
) -> CapacityServices:
    config = config or get_config()
    tz = config.tzinfo

    capacity_settings = CapacitySettings.load(settings, default_preset=config.condition_preset)
    metric_cache = MetricCache(source, config.cache, tz=tz)
    baseline_store = BaselineStore(settings)

    logger.info(
        "services_built",
        preset=capacity_settings.preset.value,
        timezone=config.timezone,
        environment=config.environment,
    )
    return CapacityServices(
        config=config,
        store=store,
        capacity_settings=capacity_settings,
        load_calculator=LoadCalculator(
            capacity_settings.load_config(config.load), tz=tz, score_cache=LoadScoreCache()
        ),
        analysis_engine=AnalysisEngine(store, config.analysis, tz=tz),
        metric_cache=metric_cache,
        baseline_store=baseline_store,
        baseline_calculator=BaselineCalculator(metric_cache, baseline_store, config.baseline),
    )


async def _warm(
    cache: MetricCache, calculator: BaselineCalculator
) -> tuple[BiometricSnapshot, dict[MetricKind, Baseline | None]]:
    async with asyncio.TaskGroup() as task_group:
        snapshot_task = task_group.create_task(cache.snapshot())
        baselines_task = task_group.create_task(calculator.update_baselines())
    return snapshot_task.result(), baselines_task.result()


async def bootstrap(
    cache: MetricCache,
    calculator: BaselineCalculator,
    timeout_seconds: float,
) -> BootstrapStatus:
    """Warm the cache and baselines; never takes longer than ``timeout_seconds``."""
    start = time.perf_counter()
    log = logger.bind(component="bootstrap")

    try:
        snapshot, baselines = await asyncio.wait_for(
            _warm(cache, calculator), timeout=timeout_seconds
        )
    except TimeoutError:
        elapsed = time.perf_counter() - start
        log.warning("bootstrap_timeout", timeout_seconds=timeout_seconds)
        return BootstrapStatus(
            state=BootstrapState.TIMED_OUT,
            elapsed_seconds=elapsed,
            error=f"bootstrap exceeded {timeout_seconds}s",
        )
    except Exception as e:
        elapsed = time.perf_counter() - start
        log.exception("bootstrap_failed", error=str(e))
        return BootstrapStatus(state=BootstrapState.DEGRADED, elapsed_seconds=elapsed, error=str(e))

    elapsed = time.perf_counter() - start
    updated = [metric for metric, baseline in baselines.items() if baseline is not None]
    state = BootstrapState.DEGRADED if snapshot.is_empty else BootstrapState.READY
    log.info(
        "bootstrap_completed",
        state=state.value,
        baselines_updated=[m.value for m in updated],
        duration_seconds=round(elapsed, 3),
    )
    return BootstrapStatus(
        state=state, elapsed_seconds=elapsed, snapshot=snapshot, baselines_updated=updated
    )


async def bootstrap_services(services: CapacityServices) -> BootstrapStatus:
    return await bootstrap(
        services.metric_cache,
        services.baseline_calculator,
        services.config.bootstrap_timeout_seconds,
    )
