"""
Stress-test simulator.

Applies a hypothetical income reduction, expense increase or one-time
emergency expense to a twin's transactions, re-scores them in memory and
reports the change against the committed snapshot. Nothing is written to the
snapshot store.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..config.scoring_config import ANALYTICS_CONFIG, PILLARS
from ..exceptions import InvalidInputError
from ..models import Account, Transaction
from ..scoring.feature_builder import liquid_balance, mean
from ..scoring.scoring_engine import ScoringEngine, compute_overall_score
from ..snapshots.store import TwinSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StressScenario:
    """A what-if shock. Reductions/increases are fractions, the emergency is in minor units."""
    id: str
    label: str
    description: str
    income_reduction: float = 0.0
    expense_increase: float = 0.0
    emergency_expense: int = 0


BUILT_IN_SCENARIOS = {
    s.id: s for s in (
        StressScenario("lose_primary_income", "Lose Primary Income Source",
                       "What if you lost your largest income source entirely?", income_reduction=0.65),
        StressScenario("income_50_cut", "50% Income Reduction",
                       "What if your total income dropped by half?", income_reduction=0.5),
        StressScenario("income_25_cut", "25% Income Reduction",
                       "What if your income decreased by 25%?", income_reduction=0.25),
        StressScenario("expense_spike_30", "30% Expense Increase",
                       "What if your monthly expenses jumped 30%?", expense_increase=0.3),
        StressScenario("medical_emergency", "Medical Emergency (5,000)",
                       "What if you had a sudden 5,000 medical bill?", emergency_expense=500000),
        StressScenario("car_repair", "Major Car Repair (3,000)",
                       "What if you needed a 3,000 car repair?", emergency_expense=300000),
        StressScenario("job_loss_6_months", "Job Loss (6 months unemployed)",
                       "What if you lost your job and it took 6 months to find a new one?",
                       income_reduction=1.0),
    )
}


def _percent(value, name: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")
    if value < 0 or (name == "income_reduction_percent" and value > 100):
        raise InvalidInputError(f"{name} out of range: {value}")
    return value / 100.0


def resolve_scenario(
    scenario_id: str,
    income_reduction_percent: Optional[float] = None,
    expense_increase_percent: Optional[float] = None,
    emergency_expense: Optional[int] = None,
    label: Optional[str] = None,
) -> StressScenario:
    """
    Look up a built-in scenario or build a custom one.

    Raises:
        InvalidInputError: Unknown scenario id or out-of-range custom values
    """
    if scenario_id in BUILT_IN_SCENARIOS:
        return BUILT_IN_SCENARIOS[scenario_id]
    if scenario_id != "custom":
        raise InvalidInputError(f"Unknown stress scenario: {scenario_id!r}")

    emergency = emergency_expense or 0
    if isinstance(emergency, bool) or not isinstance(emergency, int) or emergency < 0:
        raise InvalidInputError(f"emergency_expense must be a non-negative integer, got {emergency_expense!r}")
    return StressScenario(
        id="custom",
        label=label or "Custom Scenario",
        description="User-defined income reduction, expense increase or emergency expense.",
        income_reduction=_percent(income_reduction_percent, "income_reduction_percent"),
        expense_increase=_percent(expense_increase_percent, "expense_increase_percent"),
        emergency_expense=emergency,
    )


@dataclass
class StressResult:
    """Outcome of one stress simulation."""
    scenario_id: str
    scenario_label: str
    pillar_scores: Dict[str, float]
    pillar_deltas: Dict[str, float]
    overall_score: float
    overall_delta: float
    months_of_runway: float
    runway_capped: bool
    impact_severity: str
    breakdown: Dict[str, int] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    baseline_snapshot_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "scenario_id": self.scenario_id,
            "scenario_label": self.scenario_label,
            "pillar_scores": self.pillar_scores,
            "pillar_deltas": self.pillar_deltas,
            "overall_score": self.overall_score,
            "overall_delta": self.overall_delta,
            "months_of_runway": self.months_of_runway,
            "runway_capped": self.runway_capped,
            "impact_severity": self.impact_severity,
            "breakdown": self.breakdown,
            "recommendations": self.recommendations,
            "baseline_snapshot_id": self.baseline_snapshot_id,
        }


class StressSimulator:
    """Hypothetical re-scoring against a committed snapshot."""

    def __init__(self, engine: Optional[ScoringEngine] = None, config: Optional[Dict] = None):
        self.engine = engine or ScoringEngine()
        self.config = config or ANALYTICS_CONFIG["stress"]
        self.runway_cap = float(self.config["runway_cap_months"])

    def simulate(
        self,
        snapshot: TwinSnapshot,
        transactions: List[Transaction],
        account_balances: Optional[Iterable[Account]],
        scenario: StressScenario,
    ) -> StressResult:
        """
        Run a scenario against a twin.

        Args:
            snapshot: Committed snapshot used as the baseline (not modified)
            transactions: The twin's categorised transactions
            account_balances: Current account balances
            scenario: Shock to apply

        Returns:
            StressResult with pillar deltas, runway and recommendations
        """
        accounts = list(account_balances or [])
        stressed = [self._apply(txn, scenario) for txn in transactions]
        if scenario.emergency_expense:
            accounts.append(Account(id="stress-emergency", balance=-scenario.emergency_expense))

        result = self.engine.score(
            stressed,
            account_balances=accounts,
            analysis_window_months=snapshot.analysis_window_months,
        )

        baseline = snapshot.pillar_scores.to_dict()
        simulated = result.pillar_scores.to_dict()
        deltas = {name: round(simulated[name] - baseline[name], 2) for name in PILLARS}
        overall = compute_overall_score(result.pillar_scores, snapshot.weights_version)

        monthly = self.engine.feature_builder.build(
            list(transactions), None, snapshot.analysis_window_months
        )
        avg_income = mean([m.deposits for m in monthly])
        avg_expenses = mean([m.spending for m in monthly])
        sim_income = avg_income * (1 - scenario.income_reduction)
        sim_expenses = avg_expenses * (1 + scenario.expense_increase)
        sim_surplus = sim_income - sim_expenses
        savings = max(liquid_balance(account_balances) - scenario.emergency_expense, 0)

        runway, capped = self._runway(savings, sim_surplus)
        severity = self._severity(runway)

        logger.info(
            "Stress scenario %s on snapshot %s: runway %.1f months (%s)",
            scenario.id, snapshot.id, runway, severity,
        )
        return StressResult(
            scenario_id=scenario.id,
            scenario_label=scenario.label,
            pillar_scores=simulated,
            pillar_deltas=deltas,
            overall_score=overall,
            overall_delta=round(overall - snapshot.overall_score, 2),
            months_of_runway=runway,
            runway_capped=capped,
            impact_severity=severity,
            breakdown={
                "current_monthly_income": round(avg_income),
                "simulated_monthly_income": round(sim_income),
                "current_monthly_expenses": round(avg_expenses),
                "simulated_monthly_expenses": round(sim_expenses),
                "current_monthly_surplus": round(avg_income - avg_expenses),
                "simulated_monthly_surplus": round(sim_surplus),
                "effective_savings": round(savings),
            },
            recommendations=self._recommendations(
                runway, scenario, baseline, avg_income, avg_expenses
            ),
            baseline_snapshot_id=snapshot.id,
        )

    @staticmethod
    def _apply(txn: Transaction, scenario: StressScenario) -> Transaction:
        if txn.amount < 0:
            if txn.is_income_deposit and scenario.income_reduction:
                return txn.with_updates(amount=-round(-txn.amount * (1 - scenario.income_reduction)))
            return txn
        if scenario.expense_increase and txn.resolved_category not in ("savings_transfer", "investment"):
            return txn.with_updates(amount=round(txn.amount * (1 + scenario.expense_increase)))
        return txn

    def _runway(self, savings: float, surplus: float):
        if surplus >= 0:
            return self.runway_cap, True
        months = round(savings / abs(surplus), 1)
        if months >= self.runway_cap:
            return self.runway_cap, True
        return months, False

    def _severity(self, runway: float) -> str:
        for band in self.config["severity_bands"]:
            if runway >= band["min_runway"]:
                return band["severity"]
        return self.config["severity_bands"][-1]["severity"]

    @staticmethod
    def _recommendations(
        runway: float,
        scenario: StressScenario,
        pillars: Dict[str, float],
        avg_income: float,
        avg_expenses: float,
    ) -> List[str]:
        recs = []
        if runway < 3:
            recs.append("Build an emergency fund covering at least 3 months of expenses; this is the top priority.")

        if scenario.income_reduction > 0:
            if pillars["income_stability"] < 60:
                recs.append("Diversify income streams. Relying on a single source makes you vulnerable to disruptions.")
            recs.append("Identify non-essential expenses you could cut immediately if income dropped.")

        if scenario.expense_increase > 0:
            recs.append("Review recurring subscriptions and discretionary spending for quick wins.")
            if avg_expenses > avg_income * 0.8:
                recs.append("Your expense-to-income ratio is already tight. Small spending increases could push you into deficit.")

        if scenario.emergency_expense > 0:
            if pillars["financial_resilience"] < 50:
                recs.append(
                    "An emergency of %.2f would significantly impact your finances. "
                    "Consider a dedicated emergency fund." % (scenario.emergency_expense / 100)
                )
            recs.append("Look into insurance options to protect against unexpected large expenses.")

        if 6 <= runway < 12:
            recs.append("You have a reasonable buffer; pushing it to 6-12 months would give more breathing room.")
        elif runway >= 12:
            recs.append("Your financial cushion is solid. Consider whether excess savings could be invested.")

        if not recs:
            recs.append("Your current financial position handles this scenario well.")
        return recs


def simulate_stress(
    snapshot: TwinSnapshot,
    transactions: List[Transaction],
    account_balances: Optional[Iterable[Account]],
    scenario: StressScenario,
    engine: Optional[ScoringEngine] = None,
) -> StressResult:
    """Convenience wrapper around StressSimulator.simulate."""
    return StressSimulator(engine).simulate(snapshot, transactions, account_balances, scenario)
