"""
Percentile benchmarking against precomputed cohort statistics.

Cohorts are keyed by coarse demographic buckets (``age_range``, ``region``,
``income_range``). Only summary statistics are held: either a quantile table
per metric or a mean and standard deviation. Raw peer data is never needed.

Cohort statistics file format (JSON)::

    {
      "cohorts": {
        "all": {"size": 5000, "metrics": {"overall_score": {"mean": 55, "std": 15}}},
        "age_range=25-34|region=CA": {
          "size": 420,
          "metrics": {"overall_score": {"quantiles": {"10": 31, "50": 57, "90": 80}}}
        }
      }
    }
"""

import json
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..config.scoring_config import ANALYTICS_CONFIG, PILLARS
from ..exceptions import InvalidInputError
from ..models import Transaction
from ..scoring.feature_builder import MonthlyFeatureBuilder, mean
from ..snapshots.store import TwinSnapshot

logger = logging.getLogger(__name__)

ALL_COHORT = "all"

METRIC_LABELS = {
    "overall_score": "Overall Score",
    "income_stability": "Income Stability",
    "spending_discipline": "Spending Discipline",
    "debt_trajectory": "Debt Trajectory",
    "financial_resilience": "Financial Resilience",
    "growth_momentum": "Growth Momentum",
    "savings_rate": "Savings Rate",
    "debt_to_income": "Debt-to-Income",
}

# National-level fallback used when no cohort file is configured
DEFAULT_COHORT_STATS = {
    "cohorts": {
        ALL_COHORT: {
            "size": 10000,
            "metrics": {
                "overall_score": {"mean": 55, "std": 15},
                "income_stability": {"mean": 58, "std": 18},
                "spending_discipline": {"mean": 52, "std": 17},
                "debt_trajectory": {"mean": 60, "std": 20},
                "financial_resilience": {"mean": 45, "std": 22},
                "growth_momentum": {"mean": 50, "std": 16},
                "savings_rate": {"mean": 15, "std": 8},
                "debt_to_income": {"mean": 28, "std": 12, "lower_is_better": True},
            },
        },
    },
}


def cohort_key(demographics: Dict[str, str]) -> str:
    """Canonical key for a set of demographic buckets, e.g. ``age_range=25-34|region=CA``."""
    parts = [f"{name}={demographics[name]}" for name in sorted(demographics) if demographics[name]]
    return "|".join(parts) or ALL_COHORT


def percentile_rank(value: float, stats: Dict) -> int:
    """
    Percentile of ``value`` within a cohort metric, clipped to 1-99.

    Uses linear interpolation over the quantile table when present, otherwise
    a normal approximation from mean and standard deviation.
    """
    if "quantiles" in stats:
        points = sorted((float(level), float(v)) for level, v in stats["quantiles"].items())
        levels = [p[0] for p in points]
        values = [p[1] for p in points]
        pct = float(np.interp(value, values, levels))
    else:
        sd = float(stats.get("std") or 0)
        if sd <= 0:
            pct = 50.0
        else:
            z = (value - float(stats["mean"])) / sd
            pct = 50.0 * (1 + math.erf(z / math.sqrt(2)))
    if stats.get("lower_is_better"):
        pct = 100.0 - pct
    return int(max(1, min(99, round(pct))))


def _metric_mean(stats: Dict) -> float:
    if "mean" in stats:
        return float(stats["mean"])
    return float(np.mean([float(v) for v in stats["quantiles"].values()]))


def _metric_median(stats: Dict) -> float:
    quantiles = stats.get("quantiles") or {}
    for key in ("50", "50.0", "p50"):
        if key in quantiles:
            return float(quantiles[key])
    if "quantiles" in stats:
        points = sorted((float(level), float(v)) for level, v in quantiles.items())
        return float(np.interp(50.0, [p[0] for p in points], [p[1] for p in points]))
    return float(stats["mean"])


class CohortRegistry:
    """Cohort summary statistics with fallback to broader cohorts."""

    def __init__(self, stats: Optional[Dict] = None, config: Optional[Dict] = None):
        self.config = config or ANALYTICS_CONFIG["benchmark"]
        self.cohorts: Dict[str, Dict] = dict((stats or DEFAULT_COHORT_STATS)["cohorts"])
        self._validate()

    @classmethod
    def from_json(cls, json_path: str, config: Optional[Dict] = None) -> "CohortRegistry":
        """
        Load cohort statistics from a JSON file.

        Raises:
            FileNotFoundError: If the file does not exist
            InvalidInputError: If the file is not valid cohort statistics
        """
        if not os.path.exists(json_path):
            raise FileNotFoundError(f"Cohort statistics file not found: {json_path}")
        with open(json_path, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except ValueError as exc:
                raise InvalidInputError(f"Cohort statistics file {json_path} is not valid JSON") from exc
        if not isinstance(data, dict) or not isinstance(data.get("cohorts"), dict):
            raise InvalidInputError(f"Cohort statistics file {json_path} has no 'cohorts' object")
        registry = cls(data, config)
        logger.info("Loaded %d cohort(s) from %s", len(registry.cohorts), json_path)
        return registry

    def _validate(self):
        if ALL_COHORT not in self.cohorts:
            raise InvalidInputError("Cohort statistics must include the 'all' cohort")
        for key, cohort in self.cohorts.items():
            for metric, stats in cohort.get("metrics", {}).items():
                if "quantiles" not in stats and "mean" not in stats:
                    raise InvalidInputError(f"Cohort {key} metric {metric} needs 'quantiles' or 'mean'")

    def candidates(self, demographics: Dict[str, str]) -> List[str]:
        """Cohort keys to try, most specific first, ending with 'all'."""
        order = self.config["fallback_order"]
        unknown = [name for name in demographics if name not in order]
        if unknown:
            raise InvalidInputError(f"Unknown demographic dimension(s): {', '.join(sorted(unknown))}")

        active = [name for name in order if demographics.get(name)]
        keys = []
        while active:
            keys.append(cohort_key({name: demographics[name] for name in active}))
            active = active[:-1]
        keys.append(ALL_COHORT)
        return keys

    def resolve(self, demographics: Dict[str, str]) -> Tuple[str, Dict]:
        """Most specific cohort that exists and is large enough."""
        min_size = self.config["min_cohort_size"]
        for key in self.candidates(demographics):
            cohort = self.cohorts.get(key)
            if cohort is None:
                continue
            if key != ALL_COHORT and cohort.get("size", 0) < min_size:
                logger.debug("Cohort %s too small (%s); falling back", key, cohort.get("size"))
                continue
            return key, cohort
        return ALL_COHORT, self.cohorts[ALL_COHORT]


@dataclass
class MetricBenchmark:
    metric: str
    label: str
    value: float
    percentile: int
    cohort_mean: float
    cohort_median: float

    def to_dict(self) -> Dict:
        return {
            "metric": self.metric,
            "label": self.label,
            "value": self.value,
            "percentile": self.percentile,
            "cohort_mean": self.cohort_mean,
            "cohort_median": self.cohort_median,
        }


@dataclass
class BenchmarkResult:
    """Percentile ranks of a snapshot within its cohort."""
    snapshot_id: str
    cohort_key: str
    requested_cohort: str
    cohort_size: int
    metrics: Dict[str, MetricBenchmark] = field(default_factory=dict)
    insights: List[str] = field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return self.cohort_key != self.requested_cohort

    def to_dict(self) -> Dict:
        return {
            "snapshot_id": self.snapshot_id,
            "cohort_key": self.cohort_key,
            "requested_cohort": self.requested_cohort,
            "fell_back": self.fell_back,
            "cohort_size": self.cohort_size,
            "metrics": {name: m.to_dict() for name, m in self.metrics.items()},
            "insights": self.insights,
        }


def _profile_metrics(snapshot: TwinSnapshot, transactions: List[Transaction]) -> Dict[str, float]:
    values = {"overall_score": snapshot.overall_score}
    values.update(snapshot.pillar_scores.to_dict())

    monthly = MonthlyFeatureBuilder().build(list(transactions), None, snapshot.analysis_window_months)
    avg_deposits = mean([m.deposits for m in monthly])
    if avg_deposits > 0:
        values["savings_rate"] = round(mean([m.deposits - m.spending for m in monthly]) / avg_deposits * 100, 2)
        values["debt_to_income"] = round(mean([m.debt_to_income for m in monthly]) * 100, 2)
    return values


def _insights(metrics: Dict[str, MetricBenchmark]) -> List[str]:
    insights = []
    overall = metrics.get("overall_score")
    if overall is not None:
        if overall.percentile >= 75:
            insights.append(f"Overall score is in the top {100 - overall.percentile}% of the cohort.")
        elif overall.percentile <= 25:
            insights.append("Overall score is in the bottom quartile. Focus on the weakest pillar to climb.")

    pillars = [metrics[name] for name in PILLARS if name in metrics]
    if pillars:
        best = max(pillars, key=lambda m: m.percentile)
        worst = min(pillars, key=lambda m: m.percentile)
        insights.append(f"Strongest area: {best.label} (top {100 - best.percentile}%).")
        if worst.percentile < 40:
            insights.append(f"Biggest opportunity: {worst.label}. Improving it would have the most impact.")

    savings = metrics.get("savings_rate")
    if savings is not None:
        if savings.value > savings.cohort_mean:
            insights.append(f"Savings rate of {savings.value:.1f}% beats the cohort average of {savings.cohort_mean:.1f}%.")
        else:
            insights.append(f"Savings rate is {savings.value:.1f}% vs the cohort average of {savings.cohort_mean:.1f}%.")
    return insights


def benchmark(
    snapshot: TwinSnapshot,
    transactions: List[Transaction],
    cohorts: Optional[CohortRegistry] = None,
    demographics: Optional[Dict[str, str]] = None,
) -> BenchmarkResult:
    """
    Rank a snapshot's scores within the best-matching cohort.

    Args:
        snapshot: Committed snapshot
        transactions: Twin transactions (for savings rate and DTI)
        cohorts: Cohort statistics (defaults to the built-in national cohort)
        demographics: Bucket values keyed by dimension name

    Raises:
        InvalidInputError: Unknown demographic dimension
    """
    registry = cohorts or CohortRegistry()
    demographics = {name: value for name, value in (demographics or {}).items() if value}
    requested = cohort_key(demographics)
    key, cohort = registry.resolve(demographics)
    if key != requested:
        logger.info("Cohort %s unavailable; benchmarking against %s", requested, key)

    values = _profile_metrics(snapshot, transactions)
    metrics = {}
    for name, stats in cohort.get("metrics", {}).items():
        if name not in values:
            continue
        metrics[name] = MetricBenchmark(
            metric=name,
            label=METRIC_LABELS.get(name, name.replace("_", " ").title()),
            value=values[name],
            percentile=percentile_rank(values[name], stats),
            cohort_mean=round(_metric_mean(stats), 2),
            cohort_median=round(_metric_median(stats), 2),
        )

    return BenchmarkResult(
        snapshot_id=snapshot.id,
        cohort_key=key,
        requested_cohort=requested,
        cohort_size=int(cohort.get("size", 0)),
        metrics=metrics,
        insights=_insights(metrics),
    )
