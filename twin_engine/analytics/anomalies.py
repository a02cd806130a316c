"""
Anomaly detector.

Compares recent per-category spending against a trailing baseline and runs
a few whole-profile checks (income volatility, spending spikes, shrinking
surplus). Every finding carries an ``info``/``warning``/``alert`` severity.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from ..config.scoring_config import ANALYTICS_CONFIG
from ..models import Transaction
from ..scoring.feature_builder import MonthlyData, MonthlyFeatureBuilder, mean, slope, std
from ..snapshots.store import TwinSnapshot

logger = logging.getLogger(__name__)

SEVERITY_RANK = {"alert": 3, "warning": 2, "info": 1}


@dataclass
class Anomaly:
    """A single flagged deviation."""
    type: str
    severity: str
    title: str
    description: str
    metric: str
    current_value: float
    baseline_value: Optional[float] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class AnomalyReport:
    """All anomalies found for a twin plus an overall health score."""
    snapshot_id: str
    anomalies: List[Anomaly] = field(default_factory=list)
    health_score: int = 100
    summary: str = ""
    months_analysed: int = 0

    def to_dict(self) -> Dict:
        return {
            "snapshot_id": self.snapshot_id,
            "anomalies": [a.to_dict() for a in self.anomalies],
            "health_score": self.health_score,
            "summary": self.summary,
            "months_analysed": self.months_analysed,
        }


def _money(minor_units: float) -> str:
    return "%.2f" % (minor_units / 100)


class AnomalyDetector:
    """Pattern deviation over time for one twin."""

    def __init__(self, params: Optional[Dict] = None, feature_builder: Optional[MonthlyFeatureBuilder] = None):
        """
        Args:
            params: Overrides for ANALYTICS_CONFIG["anomalies"]
            feature_builder: Monthly aggregation (defaults to a new builder)
        """
        self.config = {**ANALYTICS_CONFIG["anomalies"], **(params or {})}
        self.feature_builder = feature_builder or MonthlyFeatureBuilder()

    def detect(self, snapshot: TwinSnapshot, transactions: List[Transaction]) -> AnomalyReport:
        window = snapshot.analysis_window_months
        monthly = self.feature_builder.build(list(transactions), None, window)
        windowed = self.feature_builder.filter_window(list(transactions), window)

        anomalies: List[Anomaly] = []
        anomalies.extend(self._category_deviations(windowed, [m.month for m in monthly]))
        anomalies.extend(self._income_volatility(monthly))
        anomalies.extend(self._spending_spikes(monthly))
        anomalies.extend(self._savings_decline(monthly))

        anomalies.sort(key=lambda a: SEVERITY_RANK[a.severity], reverse=True)
        health = self._health_score(anomalies)
        logger.debug("Found %d anomalies for snapshot %s", len(anomalies), snapshot.id)
        return AnomalyReport(
            snapshot_id=snapshot.id,
            anomalies=anomalies,
            health_score=health,
            summary=self._summary(anomalies, health),
            months_analysed=len(monthly),
        )

    # ----------------------------
    # Per-category deviation
    # ----------------------------
    def _tier(self, deviation: float) -> Optional[str]:
        thresholds = self.config["thresholds"]
        for severity in ("alert", "warning", "info"):
            if deviation >= thresholds[severity]:
                return severity
        return None

    def _category_deviations(self, transactions: List[Transaction], months: List[str]) -> List[Anomaly]:
        recent_n = self.config["recent_months"]
        baseline_n = self.config["baseline_months"]
        if len(months) < recent_n + baseline_n:
            return []

        rows = [
            {"month": t.month, "category": t.resolved_category, "amount": t.amount}
            for t in transactions
            if t.amount > 0 and t.resolved_category not in ("savings_transfer", "investment")
        ]
        if not rows:
            return []

        pivot = pd.DataFrame(rows).pivot_table(
            index="month", columns="category", values="amount", aggfunc="sum", fill_value=0
        )
        pivot = pivot.reindex(months, fill_value=0)
        recent = pivot.iloc[-recent_n:].mean()
        baseline = pivot.iloc[-(recent_n + baseline_n):-recent_n].mean()

        anomalies = []
        for category in sorted(pivot.columns):
            base = float(baseline[category])
            if base < self.config["min_baseline_spend"]:
                continue
            current = float(recent[category])
            deviation = (current - base) / base
            severity = self._tier(abs(deviation))
            if severity is None:
                continue
            direction = "up" if deviation > 0 else "down"
            anomalies.append(Anomaly(
                type="category_deviation",
                severity=severity,
                title=f"{category.replace('_', ' ').title()} spending {direction}",
                description=(
                    f"Recent {category} spending of {_money(current)}/month is "
                    f"{abs(deviation) * 100:.0f}% {'above' if deviation > 0 else 'below'} "
                    f"the trailing average of {_money(base)}."
                ),
                metric="Monthly category spending",
                current_value=round(current, 2),
                baseline_value=round(base, 2),
                category=category,
            ))
        return anomalies

    # ----------------------------
    # Whole-profile checks
    # ----------------------------
    def _income_volatility(self, monthly: List[MonthlyData]) -> List[Anomaly]:
        incomes = [m.deposits for m in monthly]
        avg = mean(incomes)
        if len(incomes) < 3 or avg == 0:
            return []
        cv = std(incomes) / avg
        if cv <= self.config["income_cv_warning"]:
            return []
        return [Anomaly(
            type="income_volatility",
            severity="alert" if cv > self.config["income_cv_alert"] else "warning",
            title="High Income Volatility",
            description=f"Monthly income varies significantly (coefficient of variation {cv * 100:.0f}%).",
            metric="Income coefficient of variation",
            current_value=round(cv, 4),
        )]

    def _spending_spikes(self, monthly: List[MonthlyData]) -> List[Anomaly]:
        spending = [m.spending for m in monthly]
        avg = mean(spending)
        if avg == 0:
            return []
        anomalies = []
        for m in monthly[-self.config["spike_lookback_months"]:]:
            ratio = m.spending / avg
            if ratio <= self.config["spike_ratio_warning"]:
                continue
            anomalies.append(Anomaly(
                type="spending_spike",
                severity="alert" if ratio > self.config["spike_ratio_alert"] else "warning",
                title=f"Spending Spike in {m.month}",
                description=(
                    f"Spending in {m.month} was {_money(m.spending)}, "
                    f"{(ratio - 1) * 100:.0f}% above the average of {_money(avg)}."
                ),
                metric="Monthly total spending",
                current_value=float(m.spending),
                baseline_value=round(avg, 2),
            ))
        return anomalies

    def _savings_decline(self, monthly: List[MonthlyData]) -> List[Anomaly]:
        surpluses = [m.deposits - m.spending for m in monthly]
        if not surpluses:
            return []
        trend = slope(surpluses)
        avg = mean(surpluses)
        if trend < self.config["surplus_slope_warning"] and avg > 0:
            return [Anomaly(
                type="savings_decline",
                severity="alert" if trend < self.config["surplus_slope_alert"] else "warning",
                title="Savings Rate Declining",
                description="Monthly surplus (income minus spending) has been shrinking over time.",
                metric="Monthly surplus trend",
                current_value=round(trend, 2),
            )]
        if avg < 0:
            return [Anomaly(
                type="savings_decline",
                severity="alert",
                title="Spending Exceeds Income",
                description=f"On average {_money(abs(avg))} more is spent than earned each month.",
                metric="Average monthly surplus",
                current_value=round(avg, 2),
            )]
        return []

    # ----------------------------
    # Summary
    # ----------------------------
    def _health_score(self, anomalies: List[Anomaly]) -> int:
        penalties = self.config["health_penalties"]
        score = 100 - sum(penalties[a.severity] for a in anomalies)
        return max(0, min(100, score))

    @staticmethod
    def _summary(anomalies: List[Anomaly], health: int) -> str:
        if not anomalies:
            return "No anomalies detected. Financial patterns look healthy and consistent."
        counts = {severity: sum(1 for a in anomalies if a.severity == severity) for severity in SEVERITY_RANK}
        labels = {"alert": "alert", "warning": "warning", "info": "insight"}
        parts = [
            f"{counts[s]} {labels[s]}{'s' if counts[s] > 1 else ''}"
            for s in ("alert", "warning", "info") if counts[s]
        ]
        advice = (
            "Address the alerts first." if counts["alert"]
            else "No critical issues, but the warnings are worth reviewing." if counts["warning"]
            else "Nothing urgent."
        )
        return f"Found {', '.join(parts)}. Health score: {health}/100. {advice}"


def detect_anomalies(
    snapshot: TwinSnapshot,
    transactions: List[Transaction],
    params: Optional[Dict] = None,
) -> AnomalyReport:
    """Run every detector against a twin's committed snapshot and transactions."""
    return AnomalyDetector(params).detect(snapshot, transactions)
