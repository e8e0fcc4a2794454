"""
Domain models for the capacity analytics core.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; every value object is frozen so results
computed for one query window can be shared freely between callers.
"""

from datetime import UTC, date, datetime, timedelta, tzinfo
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

SEVERITY_MIN = 1
SEVERITY_MAX = 5

_NEGATIVE_DESCRIPTORS = ("Stable", "Manageable", "Challenging", "Severe", "Crisis")
_POSITIVE_DESCRIPTORS = ("Very low", "Low", "Moderate", "High", "Very high")


def clamp_severity(value: float) -> int:
    """Round and clamp a severity (or any 1-5 rating) into [1, 5]."""
    return max(SEVERITY_MIN, min(SEVERITY_MAX, int(round(value))))


def severity_descriptor(value: float, is_positive: bool = False) -> str:
    """Human label for a severity on the negative or positive symptom scale."""
    scale = _POSITIVE_DESCRIPTORS if is_positive else _NEGATIVE_DESCRIPTORS
    return scale[clamp_severity(value) - 1]


def as_utc(moment: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware datetimes pass through unchanged."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


def to_local(moment: datetime, tz: tzinfo) -> datetime:
    """Convert to ``tz``; naive datetimes are taken to be UTC."""
    return as_utc(moment).astimezone(tz)


# Naive input is read as UTC so every stored timestamp compares with aware windows.
AwareTimestamp = Annotated[datetime, AfterValidator(as_utc)]


class MetricKind(str, Enum):
    """Biometric metrics provided by the external source."""

    HRV = "hrv"
    RESTING_HR = "resting_hr"
    SLEEP_HOURS = "sleep_hours"
    WORKOUT_MINUTES = "workout_minutes"
    CYCLE_DAY = "cycle_day"

    @property
    def display_name(self) -> str:
        return _METRIC_DISPLAY_NAMES[self]


_METRIC_DISPLAY_NAMES = {
    MetricKind.HRV: "HRV",
    MetricKind.RESTING_HR: "Resting heart rate",
    MetricKind.SLEEP_HOURS: "Sleep hours",
    MetricKind.WORKOUT_MINUTES: "Workout minutes",
    MetricKind.CYCLE_DAY: "Cycle day",
}


class RiskLevel(str, Enum):
    """Coarse classification of load magnitude, ordered safe < critical."""

    SAFE = "safe"
    CAUTION = "caution"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)

    @property
    def description(self) -> str:
        return _RISK_DESCRIPTIONS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


_RISK_DESCRIPTIONS = {
    RiskLevel.SAFE: "Safe",
    RiskLevel.CAUTION: "Caution",
    RiskLevel.HIGH: "High risk",
    RiskLevel.CRITICAL: "Rest needed",
}


class TrendDirection(str, Enum):
    """Wellbeing-relative direction of a symptom over the analysis window."""

    IMPROVING = "improving"
    WORSENING = "worsening"
    STABLE = "stable"


class CorrelationKind(str, Enum):
    ACTIVITY = "activity"
    PHYSIOLOGICAL = "physiological"


class DateRange(BaseModel):
    """Inclusive time span used for store and source queries."""

    model_config = ConfigDict(frozen=True)

    start: AwareTimestamp
    end: AwareTimestamp

    @model_validator(mode="after")
    def end_not_before_start(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError(f"range end {self.end} precedes start {self.start}")
        return self

    @classmethod
    def last(cls, duration: timedelta, now: datetime | None = None) -> "DateRange":
        end = now or datetime.now(UTC)
        return cls(start=end - duration, end=end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class BiometricSample(BaseModel):
    """One physiological sample returned by the biometric source."""

    model_config = ConfigDict(frozen=True)

    kind: MetricKind
    value: float
    start: AwareTimestamp
    end: AwareTimestamp | None = None

    @model_validator(mode="before")
    @classmethod
    def default_end_to_start(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("end") is None:
            return {**data, "end": data.get("start")}
        return data

    @property
    def duration(self) -> timedelta:
        return (self.end or self.start) - self.start


class BiometricSnapshot(BaseModel):
    """Biometric values co-recorded with a symptom entry or gathered on demand."""

    model_config = ConfigDict(frozen=True)

    hrv: float | None = Field(None, description="Heart rate variability (SDNN, ms)")
    resting_hr: float | None = Field(None, description="Resting heart rate (bpm)")
    sleep_hours: float | None = None
    workout_minutes: float | None = None
    cycle_day: int | None = None

    def value_for(self, kind: MetricKind) -> float | None:
        value = getattr(self, kind.value)
        return float(value) if value is not None else None

    @property
    def is_empty(self) -> bool:
        return all(self.value_for(kind) is None for kind in MetricKind)


class SymptomRecord(BaseModel):
    """A logged symptom occurrence."""

    model_config = ConfigDict(frozen=True)

    symptom_name: str = Field(min_length=1)
    severity: int
    is_positive: bool = Field(
        default=False, description="True for wellbeing positives such as Energy"
    )
    created_at: AwareTimestamp = Field(default_factory=lambda: datetime.now(UTC))
    backdated_at: AwareTimestamp | None = None
    note: str | None = None
    biometrics: BiometricSnapshot | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def clamp(cls, v: float) -> int:
        return clamp_severity(v)

    @property
    def effective_date(self) -> datetime:
        return self.backdated_at or self.created_at

    @property
    def normalised_severity(self) -> int:
        """Burden on a single axis: high energy is low burden."""
        return SEVERITY_MAX + 1 - self.severity if self.is_positive else self.severity

    @property
    def descriptor(self) -> str:
        return severity_descriptor(self.severity, self.is_positive)


class LoadScore(BaseModel):
    """Capacity load for one calendar day."""

    model_config = ConfigDict(frozen=True)

    date: date
    raw_load: float = Field(ge=0.0)
    decayed_load: float = Field(ge=0.0)
    risk_level: RiskLevel
    recovery_modifier: float = Field(default=1.0, gt=0.0)
    felt_load: float | None = Field(None, ge=0.0)
    felt_load_multiplier: float | None = None
    effective_risk_level: RiskLevel

    @property
    def effective_load(self) -> float:
        return self.felt_load if self.felt_load is not None else self.decayed_load


class LoadBreakdown(BaseModel):
    """Per-category load contributions for a single day."""

    model_config = ConfigDict(frozen=True)

    activity_load: float = 0.0
    meal_load: float = 0.0
    sleep_load: float = 0.0
    symptom_load: float = 0.0
    other_load: float = 0.0

    @computed_field(return_type=float)
    def total_load(self) -> float:
        return (
            self.activity_load + self.meal_load + self.sleep_load + self.symptom_load + self.other_load
        )

    def percentage(self, category: Literal["activity", "meal", "sleep", "symptom", "other"]) -> float:
        total = self.total_load
        if total <= 0:
            return 0.0
        return getattr(self, f"{category}_load") / total * 100


class Baseline(BaseModel):
    """Personal mean/stddev for one biometric metric."""

    model_config = ConfigDict(frozen=True)

    metric: MetricKind
    mean: float
    standard_deviation: float = Field(ge=0.0)
    sample_count: int = Field(ge=0)
    computed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_calibrated(self) -> bool:
        return self.sample_count >= 10

    def threshold(self, deviations: float) -> float:
        return self.mean + deviations * self.standard_deviation


class TrendResult(BaseModel):
    """Direction of one symptom between the older and recent half of a window."""

    model_config = ConfigDict(frozen=True)

    symptom_name: str
    direction: TrendDirection
    is_positive: bool
    occurrences: int = Field(ge=1)
    average_severity: float
    older_mean: float | None = None
    recent_mean: float | None = None

    @property
    def period_comparison(self) -> str:
        older = "-" if self.older_mean is None else f"{self.older_mean:.1f}"
        recent = "-" if self.recent_mean is None else f"{self.recent_mean:.1f}"
        return f"{older} -> {recent}"


class CorrelationResult(BaseModel):
    """Association between an activity or biometric metric and a symptom.

    Positive strength means the subject goes with a worse wellbeing outcome,
    negative strength with a better one, regardless of symptom polarity for
    activity correlations.
    """

    model_config = ConfigDict(frozen=True)

    kind: CorrelationKind
    subject: str = Field(description="Activity name or biometric metric")
    symptom_name: str
    strength: float = Field(ge=-1.0, le=1.0)
    occurrences: int = Field(ge=1)
    is_positive: bool = False

    # Activity correlations
    baseline_occurrences: int | None = None
    average_after: float | None = None
    average_baseline: float | None = None
    window_hours: float | None = None

    # Physiological correlations
    metric: MetricKind | None = None
    average_with_high_symptoms: float | None = None
    average_with_low_symptoms: float | None = None

    @field_validator("strength", mode="before")
    @classmethod
    def clamp_strength(cls, v: float) -> float:
        return max(-1.0, min(1.0, float(v)))

    @property
    def correlation_type(self) -> Literal["worsening", "improving", "neutral"]:
        if self.strength > 0.3:
            return "worsening"
        if self.strength < -0.3:
            return "improving"
        return "neutral"


class TimePattern(BaseModel):
    """Most frequent hour and weekday at which a symptom is logged."""

    model_config = ConfigDict(frozen=True)

    symptom_name: str
    peak_hour: int = Field(ge=0, le=23)
    peak_weekday: int = Field(ge=0, le=6, description="0 = Monday")
    occurrences: int = Field(ge=1)
    hour_counts: dict[int, int] = Field(default_factory=dict)
    weekday_counts: dict[int, int] = Field(default_factory=dict)


class AnalysisSummary(BaseModel):
    """All analyses for one window, as surfaced to the analysis screen."""

    model_config = ConfigDict(frozen=True)

    days: int
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    trends: list[TrendResult] = Field(default_factory=list)
    activity_correlations: list[CorrelationResult] = Field(default_factory=list)
    time_patterns: list[TimePattern] = Field(default_factory=list)
    physiological_correlations: list[CorrelationResult] = Field(default_factory=list)

    @property
    def has_enough_data(self) -> bool:
        return bool(
            self.trends
            or self.activity_correlations
            or self.time_patterns
            or self.physiological_correlations
        )
