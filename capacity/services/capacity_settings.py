"""
Condition presets and personal capacity tuning for the load calculator.

A preset bundles a capacity level (risk thresholds), a sensitivity profile
(symptom multiplier) and a recovery window (decay half-life). Changing any
one of those away from the preset's value switches the preset to custom.
A personal calibration of three good days then scales the thresholds.
"""

from datetime import UTC, datetime
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from capacity.config import LoadConfig, RiskThresholds
from capacity.domain.models import RiskLevel
from capacity.services.sources import KeyValueSettings

logger = structlog.get_logger(__name__)

SETTINGS_KEY = "capacity_settings"
CALIBRATION_DAYS = 3
STANDARD_GOOD_DAY_LOAD = 30.0
MIN_ADJUSTMENT = 0.8
MAX_ADJUSTMENT = 1.2


class CapacityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def thresholds(self) -> RiskThresholds:
        return _CAPACITY_THRESHOLDS[self]


_CAPACITY_THRESHOLDS = {
    CapacityLevel.LOW: RiskThresholds(safe=32.0, caution=56.0, high=72.0),
    CapacityLevel.MEDIUM: RiskThresholds(safe=40.0, caution=70.0, high=90.0),
    CapacityLevel.HIGH: RiskThresholds(safe=48.0, caution=80.0, high=95.0),
}


class SensitivityProfile(str, Enum):
    SENSITIVE = "sensitive"
    STANDARD = "standard"
    RESILIENT = "resilient"

    @property
    def symptom_multiplier(self) -> float:
        return {"sensitive": 1.5, "standard": 1.0, "resilient": 0.7}[self.value]


class RecoveryWindow(str, Enum):
    QUICK = "12h"
    STANDARD = "24h"
    MODERATE = "48h"
    EXTENDED = "72h"

    @property
    def hours(self) -> int:
        return int(self.value.removesuffix("h"))

    @property
    def half_life_days(self) -> float:
        """Longer windows keep load around longer; 24h is the 3-day default."""
        return {"12h": 1.5, "24h": 3.0, "48h": 4.5, "72h": 6.0}[self.value]


class ConditionPreset(str, Enum):
    STANDARD = "standard"
    MECFS = "mecfs"
    FIBROMYALGIA = "fibromyalgia"
    PCOS = "pcos"
    PTSD = "ptsd"
    LONG_COVID = "longcovid"
    AUTOIMMUNE = "autoimmune"
    CUSTOM = "custom"

    @property
    def display_name(self) -> str:
        return _PRESET_NAMES[self]

    @property
    def capacity(self) -> CapacityLevel:
        return _PRESET_VALUES[self][0]

    @property
    def sensitivity(self) -> SensitivityProfile:
        return _PRESET_VALUES[self][1]

    @property
    def recovery_window(self) -> RecoveryWindow:
        return _PRESET_VALUES[self][2]


_PRESET_NAMES = {
    ConditionPreset.STANDARD: "Standard",
    ConditionPreset.MECFS: "ME/CFS",
    ConditionPreset.FIBROMYALGIA: "Fibromyalgia",
    ConditionPreset.PCOS: "PCOS",
    ConditionPreset.PTSD: "PTSD",
    ConditionPreset.LONG_COVID: "Long COVID",
    ConditionPreset.AUTOIMMUNE: "Autoimmune conditions",
    ConditionPreset.CUSTOM: "Custom settings",
}

_PRESET_VALUES: dict[ConditionPreset, tuple[CapacityLevel, SensitivityProfile, RecoveryWindow]] = {
    ConditionPreset.STANDARD: (CapacityLevel.MEDIUM, SensitivityProfile.STANDARD, RecoveryWindow.STANDARD),
    ConditionPreset.MECFS: (CapacityLevel.LOW, SensitivityProfile.SENSITIVE, RecoveryWindow.EXTENDED),
    ConditionPreset.FIBROMYALGIA: (CapacityLevel.LOW, SensitivityProfile.SENSITIVE, RecoveryWindow.MODERATE),
    ConditionPreset.PCOS: (CapacityLevel.MEDIUM, SensitivityProfile.STANDARD, RecoveryWindow.STANDARD),
    ConditionPreset.PTSD: (CapacityLevel.MEDIUM, SensitivityProfile.SENSITIVE, RecoveryWindow.MODERATE),
    ConditionPreset.LONG_COVID: (CapacityLevel.LOW, SensitivityProfile.SENSITIVE, RecoveryWindow.EXTENDED),
    ConditionPreset.AUTOIMMUNE: (CapacityLevel.LOW, SensitivityProfile.STANDARD, RecoveryWindow.MODERATE),
    ConditionPreset.CUSTOM: (CapacityLevel.MEDIUM, SensitivityProfile.STANDARD, RecoveryWindow.STANDARD),
}


class GoodDayBaseline(BaseModel):
    """Average load of days the user marked as good."""

    model_config = ConfigDict(frozen=True)

    established_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    average_good_day_load: float = Field(ge=0.0)
    sample_count: int = Field(ge=0)

    @property
    def is_calibrated(self) -> bool:
        return self.sample_count >= CALIBRATION_DAYS


class CapacitySettings(BaseModel):
    """User-tunable load settings; produces the LoadConfig the calculator uses."""

    model_config = ConfigDict(validate_assignment=True)

    preset: ConditionPreset = ConditionPreset.STANDARD
    capacity: CapacityLevel = CapacityLevel.MEDIUM
    sensitivity: SensitivityProfile = SensitivityProfile.STANDARD
    recovery_window: RecoveryWindow = RecoveryWindow.STANDARD
    baseline: GoodDayBaseline | None = None
    is_calibrating: bool = False
    calibration_loads: list[float] = Field(default_factory=list)

    @classmethod
    def from_preset(cls, preset: ConditionPreset | str) -> "CapacitySettings":
        settings = cls()
        settings.apply_preset(ConditionPreset(preset))
        return settings

    def apply_preset(self, preset: ConditionPreset) -> None:
        self.preset = preset
        if preset is not ConditionPreset.CUSTOM:
            self.capacity = preset.capacity
            self.sensitivity = preset.sensitivity
            self.recovery_window = preset.recovery_window

    def adjust(
        self,
        capacity: CapacityLevel | None = None,
        sensitivity: SensitivityProfile | None = None,
        recovery_window: RecoveryWindow | None = None,
    ) -> None:
        """Change individual settings; diverging from the preset makes it custom."""
        if capacity is not None:
            self.capacity = capacity
        if sensitivity is not None:
            self.sensitivity = sensitivity
        if recovery_window is not None:
            self.recovery_window = recovery_window
        if self.preset is not ConditionPreset.CUSTOM and (
            self.capacity is not self.preset.capacity
            or self.sensitivity is not self.preset.sensitivity
            or self.recovery_window is not self.preset.recovery_window
        ):
            self.preset = ConditionPreset.CUSTOM

    # Calibration

    def start_calibration(self) -> None:
        self.is_calibrating = True
        self.calibration_loads = []

    def record_good_day(self, load: float) -> None:
        if not self.is_calibrating:
            return
        self.calibration_loads = [*self.calibration_loads, load]
        if len(self.calibration_loads) >= CALIBRATION_DAYS:
            self._complete_calibration()

    def cancel_calibration(self) -> None:
        self.is_calibrating = False
        self.calibration_loads = []

    def reset_baseline(self) -> None:
        self.baseline = None
        self.cancel_calibration()

    def _complete_calibration(self) -> None:
        loads = self.calibration_loads
        self.baseline = GoodDayBaseline(
            average_good_day_load=sum(loads) / len(loads), sample_count=len(loads)
        )
        self.cancel_calibration()
        logger.info(
            "capacity_calibration_completed",
            average_good_day_load=round(self.baseline.average_good_day_load, 2),
        )

    # Derived configuration

    @property
    def threshold_adjustment(self) -> float:
        if self.baseline is None or not self.baseline.is_calibrated:
            return 1.0
        ratio = self.baseline.average_good_day_load / STANDARD_GOOD_DAY_LOAD
        return max(MIN_ADJUSTMENT, min(MAX_ADJUSTMENT, ratio))

    @property
    def thresholds(self) -> RiskThresholds:
        return self.capacity.thresholds.scaled(self.threshold_adjustment)

    def risk_level(self, load: float) -> RiskLevel:
        return self.thresholds.classify(load)

    def load_config(self, base: LoadConfig | None = None) -> LoadConfig:
        base = base or LoadConfig()
        return base.model_copy(
            update={
                "thresholds": self.thresholds,
                "symptom_multiplier": self.sensitivity.symptom_multiplier,
                "half_life_days": self.recovery_window.half_life_days,
            }
        )

    # Persistence

    def save(self, settings: KeyValueSettings) -> None:
        settings.set(SETTINGS_KEY, self.model_dump_json())

    @classmethod
    def load(cls, settings: KeyValueSettings, default_preset: str = "standard") -> "CapacitySettings":
        raw = settings.get(SETTINGS_KEY)
        if raw is not None:
            try:
                return cls.model_validate_json(raw)
            except ValidationError as e:
                logger.warning("stored_capacity_settings_unreadable", error=str(e))
        return cls.from_preset(default_preset)
