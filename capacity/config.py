"""
Configuration management with environment variable support and validation.

Design principles:
- Every tunable product constant (half-life, thresholds, windows, TTLs) lives here
- Validation at startup (fail fast)
- Type safety with Pydantic
- Environment overrides for the values that differ between deployments
"""

import os
from functools import lru_cache
from typing import Literal, cast
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from capacity.domain.models import MetricKind, RiskLevel

# Load environment variables from .env file
load_dotenv()

FELT_LOAD_MULTIPLIERS: tuple[float, ...] = (0.6, 0.8, 1.0, 1.2, 1.4)


class RiskThresholds(BaseModel):
    """Lower bounds of the caution, high and critical bands."""

    safe: float = Field(default=40.0, gt=0.0, description="Loads below this are safe")
    caution: float = Field(default=70.0, gt=0.0, description="Loads below this are caution")
    high: float = Field(default=90.0, gt=0.0, description="Loads below this are high")

    @model_validator(mode="after")
    def strictly_increasing(self) -> "RiskThresholds":
        if not self.safe < self.caution < self.high:
            raise ValueError("risk thresholds must satisfy safe < caution < high")
        return self

    def classify(self, load: float) -> RiskLevel:
        if load < self.safe:
            return RiskLevel.SAFE
        if load < self.caution:
            return RiskLevel.CAUTION
        if load < self.high:
            return RiskLevel.HIGH
        return RiskLevel.CRITICAL

    def scaled(self, factor: float) -> "RiskThresholds":
        return RiskThresholds(
            safe=self.safe * factor, caution=self.caution * factor, high=self.high * factor
        )


class LoadConfig(BaseModel):
    """Load calculator tuning."""

    half_life_days: float = Field(
        default=3.0, gt=0.0, description="Days for carried load to halve at a neutral modifier"
    )
    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    symptom_multiplier: float = Field(
        default=1.0, ge=0.0, description="Sensitivity applied to symptom-derived load"
    )
    max_load: float | None = Field(default=100.0, gt=0.0, description="Cap for daily load")
    min_recovery_modifier: float = Field(default=0.2, gt=0.0)
    max_recovery_modifier: float = Field(default=2.0, gt=0.0)

    @model_validator(mode="after")
    def modifier_bounds_ordered(self) -> "LoadConfig":
        if self.min_recovery_modifier > self.max_recovery_modifier:
            raise ValueError("min_recovery_modifier must not exceed max_recovery_modifier")
        return self

    @property
    def base_decay(self) -> float:
        """Fraction of yesterday's load retained at a neutral recovery modifier."""
        return 0.5 ** (1.0 / self.half_life_days)


class AnalysisConfig(BaseModel):
    """Analysis engine windows and minimum-evidence thresholds."""

    default_days: int = Field(default=30, gt=0, le=365, description="Default days-back window")
    max_days: int = Field(default=365, gt=0)
    trend_epsilon: float = Field(
        default=0.5, ge=0.0, description="Mean severity change treated as no change"
    )
    correlation_window_hours: float = Field(
        default=24.0, gt=0.0, description="How long after an activity a symptom counts"
    )
    min_activity_occurrences: int = Field(default=2, ge=1)
    min_activity_strength: float = Field(default=0.2, ge=0.0, le=1.0)
    min_pattern_occurrences: int = Field(default=5, ge=1)
    min_physiological_pairs: int = Field(default=3, ge=2)
    physiological_noise_floor: float = Field(default=0.15, ge=0.0, le=1.0)


class CacheConfig(BaseModel):
    """Metric cache TTLs, lookbacks and query limits."""

    ttl_seconds: dict[MetricKind, float] = Field(
        default_factory=lambda: {
            MetricKind.HRV: 30 * 60,
            MetricKind.RESTING_HR: 60 * 60,
            MetricKind.SLEEP_HOURS: 6 * 3600,
            MetricKind.WORKOUT_MINUTES: 6 * 3600,
            MetricKind.CYCLE_DAY: 6 * 3600,
        }
    )
    sample_limits: dict[MetricKind, int | None] = Field(
        default_factory=lambda: {
            MetricKind.HRV: 50,
            MetricKind.RESTING_HR: 10,
            MetricKind.SLEEP_HOURS: None,
            MetricKind.WORKOUT_MINUTES: None,
            MetricKind.CYCLE_DAY: None,
        }
    )
    quantity_lookback_hours: float = Field(default=72.0, gt=0.0)
    daily_lookback_hours: float = Field(default=24.0, gt=0.0)
    cycle_lookback_days: int = Field(default=45, gt=0)
    query_timeout_seconds: float = Field(default=10.0, gt=0.0)
    max_entries: int = Field(
        default=500, gt=0, description="Stored entries kept before least-recently-used eviction"
    )

    @field_validator("ttl_seconds")
    @classmethod
    def every_metric_has_ttl(cls, v: dict[MetricKind, float]) -> dict[MetricKind, float]:
        missing = [kind.value for kind in MetricKind if kind not in v]
        if missing:
            raise ValueError(f"missing TTL for metrics: {', '.join(missing)}")
        if any(ttl < 0 for ttl in v.values()):
            raise ValueError("TTL values must not be negative")
        return v

    def ttl_for(self, kind: MetricKind) -> float:
        return self.ttl_seconds[kind]

    def sample_limit_for(self, kind: MetricKind) -> int | None:
        return self.sample_limits.get(kind)


class BaselineConfig(BaseModel):
    """Metric baseline calculation."""

    lookback_days: int = Field(default=30, gt=0)
    min_samples: int = Field(default=10, gt=1)
    metrics: list[MetricKind] = Field(
        default_factory=lambda: [MetricKind.HRV, MetricKind.RESTING_HR]
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    timezone: str = Field(default="UTC", description="IANA zone used for calendar days")
    condition_preset: str = Field(default="standard", description="Capacity settings preset")
    bootstrap_timeout_seconds: float = Field(default=15.0, gt=0.0)

    load: LoadConfig = Field(default_factory=LoadConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    baseline: BaselineConfig = Field(default_factory=BaselineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    load_config = LoadConfig(
        half_life_days=float(os.getenv("LOAD_HALF_LIFE_DAYS", "3.0")),
    )

    analysis_config = AnalysisConfig(
        default_days=int(os.getenv("ANALYSIS_DAYS", "30")),
        correlation_window_hours=float(os.getenv("CORRELATION_WINDOW_HOURS", "24")),
    )

    cache_config = CacheConfig(
        query_timeout_seconds=float(os.getenv("BIOMETRIC_QUERY_TIMEOUT_SECONDS", "10.0")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        timezone=os.getenv("TIMEZONE", "UTC"),
        condition_preset=os.getenv("CONDITION_PRESET", "standard").strip().lower(),
        bootstrap_timeout_seconds=float(os.getenv("BOOTSTRAP_TIMEOUT_SECONDS", "15.0")),
        load=load_config,
        analysis=analysis_config,
        cache=cache_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"Configuration loaded for {config.environment} environment")
        print(f"Calendar days computed in {config.timezone}")
    except Exception as e:
        print(f"Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")
    print(f"Time zone: {config.timezone}")

    print("\nLOAD")
    print(f"Preset: {config.condition_preset}")
    print(f"Half-life: {config.load.half_life_days} days (base decay {config.load.base_decay:.3f})")
    thresholds = config.load.thresholds
    print(f"Thresholds: safe<{thresholds.safe} caution<{thresholds.caution} high<{thresholds.high}")

    print("\nANALYSIS")
    print(f"Window: {config.analysis.default_days} days")
    print(f"Correlation window: {config.analysis.correlation_window_hours}h")

    print("\nBIOMETRICS")
    for kind, ttl in config.cache.ttl_seconds.items():
        print(f"{kind.display_name} TTL: {ttl / 60:.0f} min")


if __name__ == "__main__":
    print_config_summary()
