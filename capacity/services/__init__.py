"""
Core services for the application.

This package contains the load calculator, analysis engine, metric cache,
baseline calculation and the collaborator protocols they depend on.
"""

from .analysis_engine import AnalysisEngine
from .baseline_calculator import BaselineCalculator, BaselineStore, compute_baseline
from .bootstrap import BootstrapStatus, CapacityServices, bootstrap, build_services
from .capacity_settings import CapacitySettings, ConditionPreset
from .contributors import ActivityEvent, LoadContributor, MealEvent, SleepEvent
from .load_calculator import LoadCalculator
from .load_score_cache import LoadScoreCache
from .metric_cache import MetricCache
from .physiological_state import PhysiologicalState, classify_state
from .sources import BiometricSource, EventStore, KeyValueSettings, Result

__all__ = [
    "ActivityEvent",
    "AnalysisEngine",
    "BaselineCalculator",
    "BaselineStore",
    "BiometricSource",
    "BootstrapStatus",
    "CapacityServices",
    "CapacitySettings",
    "ConditionPreset",
    "EventStore",
    "KeyValueSettings",
    "LoadCalculator",
    "LoadContributor",
    "LoadScoreCache",
    "MealEvent",
    "MetricCache",
    "PhysiologicalState",
    "Result",
    "SleepEvent",
    "bootstrap",
    "build_services",
    "classify_state",
    "compute_baseline",
]
