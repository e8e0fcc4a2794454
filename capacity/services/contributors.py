"""
Load contributor abstraction.

Any object exposing ``effective_date``, ``load_contribution`` and
``recovery_modifier`` can be folded into the load calculation. The concrete
events shipped here carry a tagged ``kind`` and take their default behaviour
from one strategy per category:

- Exertion (activities, meals): adds load, never changes recovery speed.
- Recovery (sleep): changes recovery speed, adds load only when a main
  period was very poor.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from capacity.domain.models import AwareTimestamp, SymptomRecord, as_utc, clamp_severity

# Keeps one activity's contribution on the same 0-100 scale as the risk thresholds.
LOAD_SCALE = 6.0
MAX_DURATION_WEIGHT = 2.0
MAIN_PERIOD_MIN_HOURS = 3.0

TYPE_WEIGHTS: dict[str, float] = {
    "activity": 1.0,
    "meal": 0.5,
}

MAIN_PERIOD_MODIFIERS: dict[int, float] = {
    1: 0.5,
    2: 0.7,
    3: 1.0,
    4: 1.2,
    5: 1.4,
}


@runtime_checkable
class LoadContributor(Protocol):
    """Anything that adds load to a day or changes how fast load decays."""

    @property
    def effective_date(self) -> datetime: ...

    @property
    def load_contribution(self) -> float: ...

    @property
    def recovery_modifier(self) -> float | None: ...


class ContributorCategory(str, Enum):
    EXERTION = "exertion"
    RECOVERY = "recovery"


class ContributorKind(str, Enum):
    """Coarse identification used for breakdowns and analytics."""

    ACTIVITY = "activity"
    MEAL = "meal"
    SLEEP = "sleep"
    SYMPTOM = "symptom"
    OTHER = "other"


class ExertionStrategy:
    """Default behaviour for exertion events."""

    category = ContributorCategory.EXERTION

    @staticmethod
    def duration_weight(duration_minutes: float | None) -> float:
        if duration_minutes is None:
            return 1.0
        return min(max(duration_minutes, 0.0) / 60.0, MAX_DURATION_WEIGHT)

    def load_contribution(self, event: "ExertionEvent") -> float:
        average = (event.physical_exertion + event.cognitive_exertion + event.emotional_load) / 3.0
        return average * self.duration_weight(event.duration_minutes) * event.type_weight * LOAD_SCALE

    def recovery_modifier(self, event: "ExertionEvent") -> float | None:
        return None


class RecoveryStrategy:
    """Default behaviour for recovery periods such as sleep."""

    category = ContributorCategory.RECOVERY

    def load_contribution(self, event: "RecoveryEvent") -> float:
        if event.is_main_period and event.quality <= 2:
            return (3 - event.quality) * 5.0
        return 0.0

    def recovery_modifier(self, event: "RecoveryEvent") -> float | None:
        if event.is_main_period:
            return MAIN_PERIOD_MODIFIERS.get(event.quality, 1.0)
        return 1.1 if event.quality >= 4 else 0.95


STRATEGIES: dict[ContributorCategory, ExertionStrategy | RecoveryStrategy] = {
    ContributorCategory.EXERTION: ExertionStrategy(),
    ContributorCategory.RECOVERY: RecoveryStrategy(),
}

CATEGORY_BY_KIND: dict[str, ContributorCategory] = {
    "activity": ContributorCategory.EXERTION,
    "meal": ContributorCategory.EXERTION,
    "sleep": ContributorCategory.RECOVERY,
}


def strategy_for(kind: str) -> ExertionStrategy | RecoveryStrategy:
    return STRATEGIES[CATEGORY_BY_KIND[kind]]


def _now() -> datetime:
    return datetime.now(UTC)


class ExertionEvent(BaseModel):
    """An activity or meal with physical, cognitive and emotional exertion levels."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["activity", "meal"]
    name: str = "Unnamed"
    physical_exertion: int = Field(1, validation_alias=AliasChoices("physical_exertion", "physical"))
    cognitive_exertion: int = Field(
        1, validation_alias=AliasChoices("cognitive_exertion", "cognitive")
    )
    emotional_load: int = Field(1, validation_alias=AliasChoices("emotional_load", "emotional"))
    duration_minutes: float | None = Field(None, ge=0.0)
    type_weight: float = Field(default=0.0, ge=0.0, description="Defaults by kind")
    created_at: AwareTimestamp = Field(default_factory=_now)
    backdated_at: AwareTimestamp | None = None
    note: str | None = None

    @model_validator(mode="before")
    @classmethod
    def default_type_weight(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("type_weight") is None:
            kind = data.get("kind") or cls.model_fields["kind"].default
            return {**data, "type_weight": TYPE_WEIGHTS.get(kind, 1.0)}
        return data

    @field_validator("physical_exertion", "cognitive_exertion", "emotional_load", mode="before")
    @classmethod
    def clamp_level(cls, v: float) -> int:
        return clamp_severity(v)

    @property
    def effective_date(self) -> datetime:
        return self.backdated_at or self.created_at

    @property
    def load_contribution(self) -> float:
        return strategy_for(self.kind).load_contribution(self)  # type: ignore[arg-type]

    @property
    def recovery_modifier(self) -> float | None:
        return strategy_for(self.kind).recovery_modifier(self)  # type: ignore[arg-type]


class RecoveryEvent(BaseModel):
    """A sleep period; main overnight sleep or a nap.

    ``duration_hours`` falls back to ``wake_time - bed_time`` and
    ``is_main_period`` to ``duration_hours > 3`` when not given.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["sleep"] = "sleep"
    quality: int = 3
    duration_hours: float = Field(default=0.0, ge=0.0)
    is_main_period: bool = False
    bed_time: AwareTimestamp | None = None
    wake_time: AwareTimestamp | None = None
    created_at: AwareTimestamp = Field(default_factory=_now)
    backdated_at: AwareTimestamp | None = None
    note: str | None = None

    @model_validator(mode="before")
    @classmethod
    def derive_period(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("duration_hours") is None:
            bed, wake = data.get("bed_time"), data.get("wake_time")
            if isinstance(bed, datetime) and isinstance(wake, datetime):
                slept = as_utc(wake) - as_utc(bed)
                data["duration_hours"] = max(slept.total_seconds() / 3600.0, 0.0)
            else:
                data["duration_hours"] = 0.0
        if data.get("is_main_period") is None:
            data["is_main_period"] = float(data["duration_hours"]) > MAIN_PERIOD_MIN_HOURS
        return data

    @field_validator("quality", mode="before")
    @classmethod
    def clamp_quality(cls, v: float) -> int:
        return clamp_severity(v)

    @property
    def effective_date(self) -> datetime:
        """Wake time when known: sleep affects the day you wake into."""
        return self.wake_time or self.backdated_at or self.created_at

    @property
    def load_contribution(self) -> float:
        return strategy_for(self.kind).load_contribution(self)  # type: ignore[arg-type]

    @property
    def recovery_modifier(self) -> float | None:
        return strategy_for(self.kind).recovery_modifier(self)  # type: ignore[arg-type]


class ActivityEvent(ExertionEvent):
    kind: Literal["activity"] = "activity"


class MealEvent(ExertionEvent):
    kind: Literal["meal"] = "meal"
    meal_type: str | None = None


SleepEvent = RecoveryEvent

_KIND_IDENTIFIERS: list[tuple[ContributorKind, Callable[[object], bool]]] = [
    (ContributorKind.SYMPTOM, lambda obj: isinstance(obj, SymptomRecord)),
    (
        ContributorKind.ACTIVITY,
        lambda obj: isinstance(obj, ExertionEvent) and obj.kind == "activity",
    ),
    (ContributorKind.MEAL, lambda obj: isinstance(obj, ExertionEvent) and obj.kind == "meal"),
    (ContributorKind.SLEEP, lambda obj: isinstance(obj, RecoveryEvent)),
]


def contributor_kind(obj: object) -> ContributorKind:
    """Identify a contributor's kind; unknown protocol implementations are OTHER."""
    for kind, matches in _KIND_IDENTIFIERS:
        if matches(obj):
            return kind
    return ContributorKind.OTHER
