import pytest

from adapters.memory.settings import InMemorySettings
from capacity.domain.models import Baseline, BiometricSnapshot, MetricKind
from capacity.services.baseline_calculator import BaselineStore
from capacity.services.physiological_state import PhysiologicalState, classify_state, cycle_phase


@pytest.mark.parametrize(
    "day,phase",
    [
        (None, None),
        (1, PhysiologicalState.MENSTRUAL),
        (5, PhysiologicalState.MENSTRUAL),
        (8, None),
        (14, PhysiologicalState.OVULATION),
        (26, PhysiologicalState.PRE_MENSTRUAL),
        (31, None),
    ],
)
def test_cycle_phase(day: int | None, phase: PhysiologicalState | None) -> None:
    assert cycle_phase(day) is phase


@pytest.mark.parametrize(
    "snapshot,state",
    [
        (BiometricSnapshot(sleep_hours=5.0, resting_hr=80.0), PhysiologicalState.FATIGUED),
        (BiometricSnapshot(workout_minutes=45.0, hrv=40.0), PhysiologicalState.ACTIVE),
        (BiometricSnapshot(hrv=25.0, resting_hr=60.0), PhysiologicalState.ELEVATED),
        (BiometricSnapshot(sleep_hours=9.0, resting_hr=60.0), PhysiologicalState.RECOVERED),
        (BiometricSnapshot(hrv=40.0), PhysiologicalState.RELAXED),
    ],
)
def test_signal_scoring(snapshot: BiometricSnapshot, state: PhysiologicalState) -> None:
    assert classify_state(snapshot) is state


def test_cycle_phase_wins_over_signals() -> None:
    snapshot = BiometricSnapshot(cycle_day=14, workout_minutes=90.0)

    assert classify_state(snapshot) is PhysiologicalState.OVULATION


def test_flow_recorded_means_menstrual() -> None:
    assert classify_state(BiometricSnapshot(hrv=60.0), flow_recorded=True) is PhysiologicalState.MENSTRUAL


def test_no_signal_gives_no_state() -> None:
    assert classify_state(BiometricSnapshot()) is None
    assert classify_state(BiometricSnapshot(workout_minutes=0.0)) is None


def test_personal_baseline_changes_reading() -> None:
    baselines = BaselineStore(InMemorySettings())
    baselines.replace(Baseline(metric=MetricKind.HRV, mean=70.0, standard_deviation=10.0, sample_count=30))
    snapshot = BiometricSnapshot(hrv=60.0)

    assert classify_state(snapshot) is PhysiologicalState.RELAXED
    assert classify_state(snapshot, baselines) is PhysiologicalState.ELEVATED


def test_every_state_has_display_text() -> None:
    assert all(state.display_text for state in PhysiologicalState)
