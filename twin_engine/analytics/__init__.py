"""
Analytics module for the Financial Twin engine.

Read-only derivations over a committed snapshot and its transactions:
stress simulation, forward projection, anomaly detection, cohort
benchmarking and pillar explanations. None of these ever write a snapshot.
"""

from .anomalies import Anomaly, AnomalyDetector, AnomalyReport, detect_anomalies
from .benchmark import (
    DEFAULT_COHORT_STATS,
    BenchmarkResult,
    CohortRegistry,
    MetricBenchmark,
    benchmark,
    cohort_key,
    percentile_rank,
)
from .explain import InfluentialTransaction, PillarExplanation, explain_all, explain_pillar
from .stress import (
    BUILT_IN_SCENARIOS,
    StressResult,
    StressScenario,
    StressSimulator,
    resolve_scenario,
    simulate_stress,
)
from .time_machine import (
    PRESET_MODIFIERS,
    ProjectedMonth,
    ScenarioModifier,
    TimeMachine,
    TimeMachineResult,
    resolve_modifiers,
    simulate_time_machine,
)

__all__ = [
    "Anomaly",
    "AnomalyDetector",
    "AnomalyReport",
    "detect_anomalies",
    "DEFAULT_COHORT_STATS",
    "BenchmarkResult",
    "CohortRegistry",
    "MetricBenchmark",
    "benchmark",
    "cohort_key",
    "percentile_rank",
    "InfluentialTransaction",
    "PillarExplanation",
    "explain_all",
    "explain_pillar",
    "BUILT_IN_SCENARIOS",
    "StressResult",
    "StressScenario",
    "StressSimulator",
    "resolve_scenario",
    "simulate_stress",
    "PRESET_MODIFIERS",
    "ProjectedMonth",
    "ScenarioModifier",
    "TimeMachine",
    "TimeMachineResult",
    "resolve_modifiers",
    "simulate_time_machine",
]
