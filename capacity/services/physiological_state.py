"""Coarse physiological state derived from a biometric snapshot."""

from enum import Enum

from capacity.domain.models import BiometricSnapshot, MetricKind
from capacity.services.baseline_calculator import BaselineStore, evaluate_against


class PhysiologicalState(str, Enum):
    RELAXED = "relaxed"
    ELEVATED = "elevated"
    FATIGUED = "fatigued"
    RECOVERED = "recovered"
    ACTIVE = "active"
    MENSTRUAL = "menstrual"
    PRE_MENSTRUAL = "pre_menstrual"
    OVULATION = "ovulation"

    @property
    def display_text(self) -> str:
        return _DISPLAY_TEXT[self]


_DISPLAY_TEXT = {
    PhysiologicalState.RELAXED: "Body: quiet signals",
    PhysiologicalState.ELEVATED: "Body: higher tension",
    PhysiologicalState.FATIGUED: "Body: fatigue markers",
    PhysiologicalState.RECOVERED: "Body: recovery pattern",
    PhysiologicalState.ACTIVE: "Body: busy signals",
    PhysiologicalState.MENSTRUAL: "Cycle: menstrual",
    PhysiologicalState.PRE_MENSTRUAL: "Cycle: pre-menstrual",
    PhysiologicalState.OVULATION: "Cycle: ovulation",
}


def cycle_phase(cycle_day: int | None) -> PhysiologicalState | None:
    if cycle_day is None:
        return None
    if 1 <= cycle_day <= 5:
        return PhysiologicalState.MENSTRUAL
    if 12 <= cycle_day <= 16:
        return PhysiologicalState.OVULATION
    if 24 <= cycle_day <= 28:
        return PhysiologicalState.PRE_MENSTRUAL
    return None


def classify_state(
    snapshot: BiometricSnapshot,
    baselines: BaselineStore | None = None,
    flow_recorded: bool = False,
) -> PhysiologicalState | None:
    """
    Pick the best-supported state for a snapshot.

    Cycle phase wins outright. Otherwise each signal adds points to candidate
    states and the highest score wins (ties in declaration order); no signal
    at all gives None. Without a baseline store HRV and resting heart rate
    are judged against fixed population thresholds.
    """
    phase = cycle_phase(snapshot.cycle_day)
    if phase is not None:
        return phase
    if flow_recorded:
        return PhysiologicalState.MENSTRUAL

    scores = dict.fromkeys(
        (
            PhysiologicalState.RELAXED,
            PhysiologicalState.ELEVATED,
            PhysiologicalState.FATIGUED,
            PhysiologicalState.RECOVERED,
            PhysiologicalState.ACTIVE,
        ),
        0,
    )

    if snapshot.hrv is not None:
        hrv = _evaluate(MetricKind.HRV, snapshot.hrv, baselines)
        if hrv == 1:
            scores[PhysiologicalState.RELAXED] += 2
            scores[PhysiologicalState.RECOVERED] += 1
        elif hrv == 0:
            scores[PhysiologicalState.RELAXED] += 1
        else:
            scores[PhysiologicalState.ELEVATED] += 2

    if snapshot.resting_hr is not None:
        resting = _evaluate(MetricKind.RESTING_HR, snapshot.resting_hr, baselines)
        if resting == -1:
            scores[PhysiologicalState.RECOVERED] += 2
            scores[PhysiologicalState.RELAXED] += 1
        elif resting == 0:
            scores[PhysiologicalState.RECOVERED] += 1
        else:
            scores[PhysiologicalState.ELEVATED] += 1
            scores[PhysiologicalState.FATIGUED] += 1

    if snapshot.sleep_hours is not None:
        if snapshot.sleep_hours < 6:
            scores[PhysiologicalState.FATIGUED] += 2
        elif snapshot.sleep_hours > 8:
            scores[PhysiologicalState.RECOVERED] += 2
            scores[PhysiologicalState.RELAXED] += 1
        else:
            scores[PhysiologicalState.RECOVERED] += 1

    if snapshot.workout_minutes is not None:
        if snapshot.workout_minutes > 30:
            scores[PhysiologicalState.ACTIVE] += 3
        elif snapshot.workout_minutes > 0:
            scores[PhysiologicalState.ACTIVE] += 2

    state, score = max(scores.items(), key=lambda item: item[1])
    return state if score > 0 else None


def _evaluate(metric: MetricKind, value: float, baselines: BaselineStore | None) -> int:
    return evaluate_against(metric, value, baselines.get(metric) if baselines else None)
