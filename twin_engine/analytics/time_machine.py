"""
Time machine projection.

Projects a twin's finances forward month by month from its real monthly
averages, with optional behaviour changes (extra saving, faster debt payoff,
cancelled subscriptions, a raise, a lost income stream, a salaried job or a
one-off bill). The projected months are scored in memory and compared with
the committed snapshot. Nothing is written to the snapshot store.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..config.scoring_config import ANALYTICS_CONFIG, PILLARS
from ..exceptions import InvalidInputError
from ..models import Account, Transaction
from ..scoring.feature_builder import MonthlyData, liquid_balance, mean, slope
from ..scoring.scoring_engine import ScoringEngine, compute_overall_score, runway_months
from ..snapshots.store import TwinSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScenarioModifier:
    """A behaviour change applied to every projected month. Amounts are minor units."""
    id: str
    label: str
    description: str
    income_change_percent: float = 0.0
    extra_monthly_savings: int = 0
    extra_monthly_debt_payment: int = 0
    monthly_expense_change: int = 0
    subscriptions_cancelled: int = 0
    one_time_expense: int = 0
    switch_to_salaried: bool = False
    lose_income_stream: bool = False


PRESET_MODIFIERS = {
    m.id: m for m in (
        ScenarioModifier("keep_current", "Keep Living Like This",
                         "Project your current habits forward with no changes."),
        ScenarioModifier("save_200", "+200/month to savings",
                         "Redirect 200 each month from spending into savings.",
                         extra_monthly_savings=20000),
        ScenarioModifier("cancel_subscriptions", "Cancel two subscriptions",
                         "Drop two streaming or delivery subscriptions.",
                         subscriptions_cancelled=2),
        ScenarioModifier("extra_debt_300", "Pay extra 300 toward debt",
                         "Accelerate debt payoff with an extra 300 each month.",
                         extra_monthly_debt_payment=30000),
        ScenarioModifier("lose_income_stream", "Lose one income stream",
                         "Simulate losing one of your income sources.",
                         lose_income_stream=True),
        ScenarioModifier("switch_to_salaried", "Switch to salaried job",
                         "Replace irregular income with a steady paycheck.",
                         switch_to_salaried=True),
        ScenarioModifier("raise_income_15", "Raise income 15%",
                         "Get a raise, a new client or a side income boost.",
                         income_change_percent=15.0),
        ScenarioModifier("emergency_2000", "Emergency expense (2,000)",
                         "An unexpected 2,000 bill in the first projected month.",
                         one_time_expense=200000),
    )
}

_CUSTOM_INT_FIELDS = (
    "extra_monthly_savings",
    "extra_monthly_debt_payment",
    "subscriptions_cancelled",
    "one_time_expense",
)
_CUSTOM_BOOL_FIELDS = ("switch_to_salaried", "lose_income_stream")


def _custom_modifier(data: Dict[str, Any], index: int) -> ScenarioModifier:
    allowed = {"label", "income_change_percent", "monthly_expense_change"}
    allowed.update(_CUSTOM_INT_FIELDS, _CUSTOM_BOOL_FIELDS)
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise InvalidInputError(f"Unknown modifier field(s): {', '.join(unknown)}")

    values: Dict[str, Any] = {}
    pct = data.get("income_change_percent", 0.0)
    if isinstance(pct, bool) or not isinstance(pct, (int, float)) or pct < -100:
        raise InvalidInputError(f"income_change_percent must be a number >= -100, got {pct!r}")
    values["income_change_percent"] = float(pct)

    change = data.get("monthly_expense_change", 0)
    if isinstance(change, bool) or not isinstance(change, int):
        raise InvalidInputError(f"monthly_expense_change must be an integer, got {change!r}")
    values["monthly_expense_change"] = change

    for name in _CUSTOM_INT_FIELDS:
        value = data.get(name, 0)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidInputError(f"{name} must be a non-negative integer, got {value!r}")
        values[name] = value
    for name in _CUSTOM_BOOL_FIELDS:
        value = data.get(name, False)
        if not isinstance(value, bool):
            raise InvalidInputError(f"{name} must be true or false, got {value!r}")
        values[name] = value

    return ScenarioModifier(
        id=f"custom-{index}",
        label=data.get("label") or "Custom Change",
        description="User-defined behaviour change.",
        **values,
    )


def resolve_modifiers(items: Optional[Sequence[Union[str, Dict[str, Any]]]]) -> List[ScenarioModifier]:
    """
    Turn preset ids and custom modifier objects into ScenarioModifiers.

    Raises:
        InvalidInputError: Unknown preset id or invalid custom values
    """
    if items is None:
        return []
    if not isinstance(items, (list, tuple)):
        raise InvalidInputError("modifiers must be a list")
    modifiers = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            if item not in PRESET_MODIFIERS:
                raise InvalidInputError(f"Unknown time machine modifier: {item!r}")
            modifiers.append(PRESET_MODIFIERS[item])
        elif isinstance(item, dict):
            modifiers.append(_custom_modifier(item, index))
        else:
            raise InvalidInputError(f"Modifier must be a preset id or an object, got {item!r}")
    return modifiers


def add_months(month: str, count: int) -> str:
    """YYYY-MM key ``count`` months after ``month``."""
    year, mon = (int(p) for p in month.split("-"))
    total = year * 12 + (mon - 1) + count
    return f"{total // 12:04d}-{total % 12 + 1:02d}"


@dataclass
class ProjectedMonth:
    """One projected month (minor units, outflows positive)."""
    month: str
    deposits: int
    spending: int
    debt: int
    savings: int
    end_balance: int
    net_savings: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TimeMachineResult:
    """Outcome of one forward projection."""
    months_projected: int
    active_modifiers: List[str]
    current_pillar_scores: Dict[str, float]
    projected_pillar_scores: Dict[str, float]
    pillar_deltas: Dict[str, float]
    current_overall_score: float
    projected_overall_score: float
    overall_delta: float
    projected_lending_readiness: Dict[str, float]
    projected_months: List[ProjectedMonth] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    baseline_snapshot_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "months_projected": self.months_projected,
            "active_modifiers": self.active_modifiers,
            "current_pillar_scores": self.current_pillar_scores,
            "projected_pillar_scores": self.projected_pillar_scores,
            "pillar_deltas": self.pillar_deltas,
            "current_overall_score": self.current_overall_score,
            "projected_overall_score": self.projected_overall_score,
            "overall_delta": self.overall_delta,
            "projected_lending_readiness": self.projected_lending_readiness,
            "projected_months": [m.to_dict() for m in self.projected_months],
            "metrics": self.metrics,
            "baseline_snapshot_id": self.baseline_snapshot_id,
        }


class TimeMachine:
    """Forward projection of a twin's monthly finances."""

    def __init__(self, engine: Optional[ScoringEngine] = None, config: Optional[Dict] = None):
        self.engine = engine or ScoringEngine()
        self.config = config or ANALYTICS_CONFIG["time_machine"]

    def project(
        self,
        snapshot: TwinSnapshot,
        transactions: List[Transaction],
        account_balances: Optional[Iterable[Account]],
        modifiers: Optional[Sequence[ScenarioModifier]] = None,
        months_forward: Optional[int] = None,
    ) -> TimeMachineResult:
        """
        Project a twin forward and score the projected months.

        Args:
            snapshot: Committed snapshot used as the baseline (not modified)
            transactions: The twin's categorised transactions
            account_balances: Current account balances
            modifiers: Behaviour changes; all of them apply together
            months_forward: Months to project (defaults to the configured horizon)

        Returns:
            TimeMachineResult with projected months, scores and metrics

        Raises:
            InvalidInputError: months_forward outside 1..max_months_forward
        """
        months_forward = self.config["default_months_forward"] if months_forward is None else months_forward
        max_months = self.config["max_months_forward"]
        if isinstance(months_forward, bool) or not isinstance(months_forward, int) \
                or not 1 <= months_forward <= max_months:
            raise InvalidInputError(f"months_forward must be an integer from 1 to {max_months}, got {months_forward!r}")
        modifiers = list(modifiers or [])

        accounts = list(account_balances or [])
        history = self.engine.feature_builder.build(
            list(transactions), accounts, snapshot.analysis_window_months
        )
        start_balance = liquid_balance(accounts)
        projected = self._project_months(history, transactions, start_balance, modifiers, months_forward)

        synthetic = self._synthetic_monthly(history, projected, modifiers)
        end_balance = projected[-1].end_balance if projected else start_balance
        result = self.engine.score_months(synthetic, end_balance, months_forward)

        baseline = snapshot.pillar_scores.to_dict()
        simulated = result.pillar_scores.to_dict()
        overall = compute_overall_score(result.pillar_scores, snapshot.weights_version)

        logger.info(
            "Projected twin %s forward %d month(s) with %d modifier(s): overall %.2f -> %.2f",
            snapshot.twin_id, months_forward, len(modifiers), snapshot.overall_score, overall,
        )
        return TimeMachineResult(
            months_projected=len(projected),
            active_modifiers=[m.label for m in modifiers],
            current_pillar_scores=baseline,
            projected_pillar_scores=simulated,
            pillar_deltas={name: round(simulated[name] - baseline[name], 2) for name in PILLARS},
            current_overall_score=snapshot.overall_score,
            projected_overall_score=overall,
            overall_delta=round(overall - snapshot.overall_score, 2),
            projected_lending_readiness=result.lending_readiness.to_dict(),
            projected_months=projected,
            metrics=self._metrics(history, projected, start_balance, overall),
            baseline_snapshot_id=snapshot.id,
        )

    # ----------------------------
    # Projection
    # ----------------------------
    def _subscription_cost(self, transactions: List[Transaction], window_start: str) -> float:
        """Average charge of one subscription in the analysed window."""
        charges = [
            t.amount for t in transactions
            if t.resolved_category == "subscriptions" and t.amount > 0 and t.month >= window_start
        ]
        return mean(charges) if charges else float(self.config["default_subscription_cost"])

    def _project_months(
        self,
        history: List[MonthlyData],
        transactions: List[Transaction],
        start_balance: int,
        modifiers: List[ScenarioModifier],
        months_forward: int,
    ) -> List[ProjectedMonth]:
        if not history:
            logger.info("No history to project from")
            return []

        deposits = [m.deposits for m in history]
        avg_income = mean(deposits)
        income_slope = slope(deposits)
        avg_debt = mean([m.debt for m in history])
        avg_essential = mean([m.essential - m.debt for m in history])
        avg_discretionary = mean([m.discretionary for m in history])
        avg_savings = mean([m.savings for m in history])
        avg_sources = mean([m.income_source_count for m in history])

        income_factor = 1 + sum(m.income_change_percent for m in modifiers) / 100
        if any(m.lose_income_stream for m in modifiers) and avg_sources > 1:
            income_factor *= (avg_sources - 1) / avg_sources
        extra_savings = sum(m.extra_monthly_savings for m in modifiers)
        extra_debt = sum(m.extra_monthly_debt_payment for m in modifiers)
        expense_change = sum(m.monthly_expense_change for m in modifiers)
        one_time = sum(m.one_time_expense for m in modifiers)
        cancelled = sum(m.subscriptions_cancelled for m in modifiers)
        subscription_saving = cancelled * self._subscription_cost(transactions, history[0].month) if cancelled else 0.0

        months = []
        balance = float(start_balance)
        for i in range(1, months_forward + 1):
            income = max((avg_income + income_slope * i) * income_factor, 0.0)
            debt = max(avg_debt + extra_debt, 0.0)
            discretionary = max(avg_discretionary + expense_change - extra_savings - subscription_saving, 0.0)
            spending = avg_essential + debt + discretionary
            if i == 1:
                spending += one_time

            # Money moved into savings stays the holder's, so only spending leaves the balance
            net = income - spending
            balance += net
            months.append(ProjectedMonth(
                month=add_months(history[-1].month, i),
                deposits=round(income),
                spending=round(spending),
                debt=round(debt),
                savings=round(avg_savings + extra_savings),
                end_balance=round(balance),
                net_savings=round(net),
            ))
        return months

    @staticmethod
    def _synthetic_monthly(
        history: List[MonthlyData],
        projected: List[ProjectedMonth],
        modifiers: List[ScenarioModifier],
    ) -> List[MonthlyData]:
        """MonthlyData for the projected months, in the shape the pillar scores read."""
        if not projected:
            return []
        avg_spending = mean([m.spending - m.debt for m in history])
        avg_essential = mean([m.essential - m.debt for m in history])
        essential_share = avg_essential / avg_spending if avg_spending > 0 else 0.5

        source_count = round(mean([m.income_source_count for m in history]))
        if any(m.lose_income_stream for m in modifiers):
            source_count = max(1, source_count - 1)
        has_payroll = any(m.has_payroll for m in history) or any(m.switch_to_salaried for m in modifiers)
        avg_investment = round(mean([m.investment for m in history]))

        synthetic = []
        for month in projected:
            consumption = month.spending - month.debt
            essential = round(consumption * essential_share)
            synthetic.append(MonthlyData(
                month=month.month,
                deposits=month.deposits,
                spending=month.spending,
                essential=essential + month.debt,
                discretionary=consumption - essential,
                debt=month.debt,
                savings=month.savings,
                investment=avg_investment,
                net_flow=month.net_savings,
                end_balance=month.end_balance,
                income_sources={f"projected-source-{k}" for k in range(source_count)},
                has_payroll=has_payroll,
            ))
        return synthetic

    def _approval_probability(self, overall: float) -> int:
        for band in self.config["approval_bands"]:
            if overall >= band["min_overall"]:
                return band["probability"]
        return self.config["approval_bands"][-1]["probability"]

    def _metrics(
        self,
        history: List[MonthlyData],
        projected: List[ProjectedMonth],
        start_balance: int,
        projected_overall: float,
    ) -> Dict[str, Any]:
        cap = float(ANALYTICS_CONFIG["stress"]["runway_cap_months"])
        end_balance = projected[-1].end_balance if projected else start_balance
        current_spending = mean([m.spending for m in history])
        projected_spending = mean([m.spending for m in projected])
        overdrawn = sum(1 for m in projected if m.end_balance < 0)

        def runway(balance, spending):
            if not history:
                return 0.0
            return round(min(runway_months(balance, spending), cap), 1)

        return {
            "current_balance": start_balance,
            "projected_balance": end_balance,
            "balance_change": end_balance - start_balance,
            "current_runway_months": runway(start_balance, current_spending),
            "projected_runway_months": runway(end_balance, projected_spending),
            "overdraft_probability": round(100 * overdrawn / len(projected)) if projected else 0,
            "loan_approval_probability": self._approval_probability(projected_overall) if projected else 0,
            "total_saved_or_lost": sum(m.net_savings for m in projected),
            "total_debt_paid": sum(m.debt for m in projected),
        }


def simulate_time_machine(
    snapshot: TwinSnapshot,
    transactions: List[Transaction],
    account_balances: Optional[Iterable[Account]],
    modifiers: Optional[Sequence[ScenarioModifier]] = None,
    months_forward: Optional[int] = None,
    engine: Optional[ScoringEngine] = None,
) -> TimeMachineResult:
    """Convenience wrapper around TimeMachine.project."""
    return TimeMachine(engine).project(snapshot, transactions, account_balances, modifiers, months_forward)
