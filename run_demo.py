"""
End-to-end demonstration of the analytics pipeline.

This script exercises:
1. Configuration loading and validation
2. Load scoring with decay, recovery modifiers and felt-load overrides
3. Trend, correlation and time-pattern analysis
4. Metric cache warm-up, baselines and physiological state
5. Degraded behaviour when the store or biometric source fails

Run with: uv run python run_demo.py
"""

import asyncio
import random
from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.memory.biometric_source import InMemoryBiometricSource
from adapters.memory.event_store import InMemoryEventStore
from adapters.memory.settings import InMemorySettings
from capacity.config import get_config, print_config_summary, validate_config
from capacity.domain.models import BiometricSample, BiometricSnapshot, MetricKind, SymptomRecord
from capacity.logging import configure_logging
from capacity.services import (
    ActivityEvent,
    CapacityServices,
    MealEvent,
    SleepEvent,
    bootstrap,
    build_services,
    classify_state,
)

console = Console()

NOW = datetime.now(UTC).replace(minute=0, second=0, microsecond=0)


def build_store(days: int = 30, seed: int = 7) -> InMemoryEventStore:
    """Synthetic month: walks make fatigue worse the next day, sleep quality varies."""
    rng = random.Random(seed)
    store = InMemoryEventStore()

    for offset in range(days, 0, -1):
        day = NOW - timedelta(days=offset)
        walked = rng.random() < 0.4
        if walked:
            store.add(
                ActivityEvent(
                    name="Long walk",
                    physical_exertion=4,
                    cognitive_exertion=1,
                    emotional_load=2,
                    duration_minutes=rng.choice([45, 60, 90]),
                    created_at=day.replace(hour=10),
                )
            )
        store.add(
            MealEvent(
                name="Dinner",
                physical_exertion=1,
                cognitive_exertion=2,
                emotional_load=1,
                duration_minutes=45,
                created_at=day.replace(hour=19),
            )
        )
        bed = day.replace(hour=22) - timedelta(days=1)
        store.add(
            SleepEvent(
                quality=rng.randint(2, 5),
                bed_time=bed,
                wake_time=bed + timedelta(hours=rng.uniform(5.5, 9.0)),
            )
        )

        fatigue = 2 + (2 if walked else 0) + (1 if offset < days // 2 else 0)
        store.add(
            SymptomRecord(
                symptom_name="Fatigue",
                severity=fatigue + rng.choice([-1, 0, 0, 1]),
                created_at=day.replace(hour=rng.choice([15, 16, 16, 17])),
                biometrics=BiometricSnapshot(
                    hrv=70 - fatigue * 8 + rng.uniform(-3, 3),
                    resting_hr=55 + fatigue * 4 + rng.uniform(-2, 2),
                    sleep_hours=rng.uniform(5.5, 9.0),
                ),
            ),
            SymptomRecord(
                symptom_name="Energy",
                severity=4 - (1 if walked else 0),
                is_positive=True,
                created_at=day.replace(hour=9),
            ),
        )
    return store


def build_source(days: int = 30, seed: int = 11) -> InMemoryBiometricSource:
    rng = random.Random(seed)
    source = InMemoryBiometricSource(delay_seconds=0.05)
    for hours_ago in range(0, days * 24, 8):
        moment = NOW - timedelta(hours=hours_ago)
        source.add(
            BiometricSample(kind=MetricKind.HRV, value=rng.gauss(48, 6), start=moment),
            BiometricSample(kind=MetricKind.RESTING_HR, value=rng.gauss(62, 3), start=moment),
        )
    source.add(
        BiometricSample(
            kind=MetricKind.SLEEP_HOURS,
            value=1,
            start=NOW - timedelta(hours=9),
            end=NOW - timedelta(hours=1, minutes=30),
        ),
        BiometricSample(
            kind=MetricKind.WORKOUT_MINUTES,
            value=1,
            start=NOW - timedelta(hours=5),
            end=NOW - timedelta(hours=4, minutes=20),
        ),
    )
    return source


async def demo_configuration() -> bool:
    console.print(Panel("Configuration", style="blue"))
    try:
        validate_config()
        print_config_summary()
        return True
    except Exception as e:
        console.print(f"Configuration failed: {e}", style="red")
        return False


async def demo_load(services: CapacityServices) -> bool:
    console.print(Panel("Load scoring", style="blue"))
    today = NOW.date()
    start = today - timedelta(days=13)
    scores = services.load_calculator.calculate_from_store(
        services.store, start, today, felt_multipliers={today: 1.2}
    )

    table = Table(title=f"Daily load ({services.capacity_settings.preset.display_name})")
    table.add_column("Day", style="cyan")
    table.add_column("Raw", style="white")
    table.add_column("Decayed", style="green")
    table.add_column("Modifier", style="yellow")
    table.add_column("Risk", style="magenta")
    table.add_column("Felt", style="white")
    for score in scores:
        table.add_row(
            score.date.isoformat(),
            f"{score.raw_load:.1f}",
            f"{score.decayed_load:.1f}",
            f"{score.recovery_modifier:.2f}",
            score.effective_risk_level.description,
            "-" if score.felt_load is None else f"{score.felt_load:.1f}",
        )
    console.print(table)

    score_cache = services.load_calculator.score_cache
    if score_cache is not None:
        score_cache.reset_statistics()
        services.load_calculator.calculate_from_store(
            services.store, start, today, felt_multipliers={today: 1.2}
        )
        stats = score_cache.statistics()
        console.print(
            f"Recalculated from cache: {stats.hits} hits, {stats.misses} misses", style="dim"
        )
    return len(scores) == 14


async def demo_analysis(services: CapacityServices) -> bool:
    console.print(Panel("Analysis", style="blue"))
    summary = services.analysis_engine.summary(30)

    for trend in summary.trends:
        console.print(
            f"{trend.symptom_name}: {trend.direction.value} ({trend.period_comparison})",
            style="cyan",
        )
    for correlation in summary.activity_correlations + summary.physiological_correlations:
        console.print(
            f"{correlation.subject} ~ {correlation.symptom_name}: "
            f"{correlation.strength:+.2f} ({correlation.correlation_type})",
            style="magenta",
        )
    for pattern in summary.time_patterns:
        console.print(
            f"{pattern.symptom_name} peaks around {pattern.peak_hour:02d}:00", style="yellow"
        )
    return summary.has_enough_data


async def demo_biometrics(services: CapacityServices) -> bool:
    console.print(Panel("Biometrics", style="blue"))
    async with services.metric_cache.session() as cache:
        status = await bootstrap(
            cache, services.baseline_calculator, services.config.bootstrap_timeout_seconds
        )
        console.print(f"Bootstrap: {status.state.value} in {status.elapsed_seconds:.2f}s")

        readers = await asyncio.gather(*(cache.get(MetricKind.HRV) for _ in range(5)))
        console.print(
            f"Five concurrent HRV reads: {readers[0]} ms (all equal: {len(set(readers)) == 1})"
        )

        baseline = services.baseline_store.hrv
        if baseline is not None:
            console.print(
                f"HRV baseline {baseline.mean:.1f} +/- {baseline.standard_deviation:.1f} "
                f"from {baseline.sample_count} samples"
            )
        state = classify_state(status.snapshot, services.baseline_store)
        console.print(f"Physiological state: {state.display_text if state else 'no signal'}")
        return status.is_ready


async def demo_degraded() -> bool:
    console.print(Panel("Degraded collaborators", style="blue"))
    store = InMemoryEventStore()
    store.unavailable = True
    source = InMemoryBiometricSource()
    source.error = ConnectionError("biometric bridge offline")

    services = build_services(store, source, InMemorySettings(), get_config())
    trends = services.analysis_engine.analyse_trends()
    value = await services.metric_cache.get(MetricKind.HRV)
    console.print(f"Trends with store down: {trends}; HRV with source down: {value}")
    return trends == [] and value is None and services.metric_cache.active_queries == []


async def run_all() -> None:
    config = get_config()
    configure_logging(config.logging)
    console.print(Panel("Capacity Analytics - Pipeline Demo", style="bold blue"))

    services = build_services(build_store(), build_source(), InMemorySettings(), config)
    steps = [
        ("Configuration", demo_configuration()),
        ("Load scoring", demo_load(services)),
        ("Analysis", demo_analysis(services)),
        ("Biometrics", demo_biometrics(services)),
        ("Degraded collaborators", demo_degraded()),
    ]

    results = []
    for name, step in steps:
        console.print(f"\n{'=' * 60}")
        try:
            results.append((name, await step))
        except Exception as e:
            console.print(f"{name} failed with exception: {e}", style="red")
            results.append((name, False))

    summary = Table(title="Summary")
    summary.add_column("Step", style="cyan")
    summary.add_column("Result", style="white")
    for name, ok in results:
        summary.add_row(name, "[green]PASS[/green]" if ok else "[red]FAIL[/red]")
    console.print(summary)


if __name__ == "__main__":
    asyncio.run(run_all())
