"""
Scoring module for the Financial Twin engine.

This module contains the monthly feature builder and the pillar scoring engine.
"""

from .feature_builder import (
    MonthlyData,
    MonthlyFeatureBuilder,
    clamp,
    liquid_balance,
    mean,
    slope,
    std,
)
from .scoring_engine import (
    LendingReadiness,
    PillarScores,
    ScoreResult,
    ScoringEngine,
    compute_lending_readiness,
    compute_overall_score,
    runway_months,
)

__all__ = [
    # Feature builder
    "MonthlyData",
    "MonthlyFeatureBuilder",
    "clamp",
    "liquid_balance",
    "mean",
    "slope",
    "std",
    # Scoring engine
    "LendingReadiness",
    "PillarScores",
    "ScoreResult",
    "ScoringEngine",
    "compute_lending_readiness",
    "compute_overall_score",
    "runway_months",
]
