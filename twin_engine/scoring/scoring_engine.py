"""
Financial Twin Scoring Engine.
Computes the five pillar scores, the weighted overall score and the
per-product lending readiness scores.
"""

import logging
import operator
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional

from ..config.scoring_config import ANALYTICS_CONFIG, CURRENT_WEIGHTS_VERSION, PILLARS, SCORING_CONFIG
from ..exceptions import InvalidInputError
from ..models import Account, Transaction
from .feature_builder import (
    MonthlyData,
    MonthlyFeatureBuilder,
    clamp,
    liquid_balance,
    mean,
    slope,
    std,
)

logger = logging.getLogger(__name__)

_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class PillarScores:
    """Five pillar scores, each in [0, 100]."""
    income_stability: float = 0.0
    spending_discipline: float = 0.0
    debt_trajectory: float = 0.0
    financial_resilience: float = 0.0
    growth_momentum: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "PillarScores":
        return cls(**{name: float(data.get(name, 0.0)) for name in PILLARS})


@dataclass(frozen=True)
class LendingReadiness:
    """Per-product readiness scores, each in [0, 100]."""
    personal: float = 0.0
    auto: float = 0.0
    mortgage: float = 0.0
    small_business: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "LendingReadiness":
        return cls(**{name: float(data.get(name, 0.0)) for name in cls.__dataclass_fields__})


@dataclass
class ScoreResult:
    """Complete scoring result for one transaction set."""
    pillar_scores: PillarScores
    lending_readiness: LendingReadiness
    overall_score: float
    transaction_count: int
    analysis_window_months: int
    months_analysed: int = 0
    low_confidence: bool = False
    weights_version: str = CURRENT_WEIGHTS_VERSION
    liquid_balance: int = 0
    monthly_data: List[MonthlyData] = field(default_factory=list)
    breakdown: Dict[str, Dict] = field(default_factory=dict)


def compute_overall_score(pillars: PillarScores, weights_version: Optional[str] = None) -> float:
    """
    Weighted sum of the pillars with the versioned weights, rounded to 2 dp.

    Raises:
        InvalidInputError: If the weights version is unknown.
    """
    version = weights_version or CURRENT_WEIGHTS_VERSION
    weights = SCORING_CONFIG["overall_weights"].get(version)
    if weights is None:
        raise InvalidInputError(f"Unknown weights version: {version}")
    weighted = sum(getattr(pillars, name) * weight for name, weight in weights.items())
    return round(clamp(weighted), 2)


def compute_lending_readiness(pillars: PillarScores, config: Optional[Dict] = None) -> LendingReadiness:
    """Recombine pillar scores into per-product readiness scores."""
    products = config or SCORING_CONFIG["lending_readiness"]
    values = pillars.to_dict()
    values["min_pillar"] = min(values[name] for name in PILLARS)

    scores = {}
    for product, product_config in products.items():
        score = sum(values[name] * weight for name, weight in product_config["weights"].items())
        for adjustment in product_config.get("adjustments", []):
            if not _condition_holds(values, adjustment["when"]):
                continue
            if "and" in adjustment and not _condition_holds(values, adjustment["and"]):
                continue
            if adjustment["action"] == "cap":
                score = min(score, adjustment["value"])
            elif adjustment["action"] == "add":
                score += adjustment["value"]
        scores[product] = round(clamp(score), 2)
    return LendingReadiness(**scores)


def _condition_holds(values: Dict[str, float], condition) -> bool:
    key, op, threshold = condition
    return _OPERATORS[op](values[key], threshold)


class ScoringEngine:
    """
    Financial Twin scoring engine.

    Stateless: the same transactions and balances always give the same result.
    """

    def __init__(self, feature_builder: Optional[MonthlyFeatureBuilder] = None):
        """Initialize the scoring engine with configuration."""
        self.scoring_config = SCORING_CONFIG
        self.weights_version = self.scoring_config["weights_version"]
        self.min_months = self.scoring_config["min_months_for_confidence"]
        self.default_window = self.scoring_config["default_analysis_window_months"]
        self.feature_builder = feature_builder or MonthlyFeatureBuilder()

    def score(
        self,
        transactions: Optional[List[Transaction]],
        account_balances: Optional[Iterable[Account]] = None,
        analysis_window_months: Optional[int] = None
    ) -> ScoreResult:
        """
        Score a twin's transaction history.

        Args:
            transactions: Categorised transactions (any order)
            account_balances: Current account balances
            analysis_window_months: Months of history to analyse

        Returns:
            ScoreResult with pillars, overall and lending readiness

        Raises:
            InvalidInputError: Missing transaction set, bad window or malformed transaction
        """
        if transactions is None:
            raise InvalidInputError("Transaction set is required")
        window = self.default_window if analysis_window_months is None else analysis_window_months
        if isinstance(window, bool) or not isinstance(window, int) or window <= 0:
            raise InvalidInputError(f"Analysis window must be a positive number of months, got {window!r}")

        accounts = list(account_balances or [])
        monthly = self.feature_builder.build(list(transactions), accounts, window)
        return self.score_months(monthly, liquid_balance(accounts), window)

    def score_months(self, monthly: List[MonthlyData], balance: int, analysis_window_months: int) -> ScoreResult:
        """
        Score an already aggregated monthly series.

        Projections build their own series and score it here; ``score`` is the
        entry point for real transaction histories.
        """
        transaction_count = sum(m.transaction_count for m in monthly)

        breakdown: Dict[str, Dict] = {}
        if monthly:
            pillar_values = {
                "income_stability": self._calculate_income_stability(monthly, breakdown),
                "spending_discipline": self._calculate_spending_discipline(monthly, breakdown),
                "debt_trajectory": self._calculate_debt_trajectory(monthly, breakdown),
                "financial_resilience": self._calculate_financial_resilience(monthly, balance, breakdown),
                "growth_momentum": self._calculate_growth_momentum(monthly, breakdown),
            }
        else:
            pillar_values = {name: 0.0 for name in PILLARS}

        pillars = PillarScores(**{name: round(clamp(value), 2) for name, value in pillar_values.items()})
        low_confidence = len(monthly) < self.min_months
        if low_confidence:
            logger.info("Only %d month(s) of history; flagging low confidence", len(monthly))

        return ScoreResult(
            pillar_scores=pillars,
            lending_readiness=compute_lending_readiness(pillars),
            overall_score=compute_overall_score(pillars, self.weights_version),
            transaction_count=transaction_count,
            analysis_window_months=analysis_window_months,
            months_analysed=len(monthly),
            low_confidence=low_confidence,
            weights_version=self.weights_version,
            liquid_balance=balance,
            monthly_data=monthly,
            breakdown=breakdown,
        )

    def _calculate_income_stability(self, monthly: List[MonthlyData], breakdown: Dict) -> float:
        """
        Score = 100 - CV * 100, plus source and payroll bonuses, minus
        zero-income and declining-trend penalties.
        """
        config = self.scoring_config["income_stability"]
        deposits = [m.deposits for m in monthly]
        avg = mean(deposits)
        cv = 1.0 if avg == 0 else std(deposits) / avg
        base = 100 - cv * 100

        source_bonus = min(
            mean([m.income_source_count for m in monthly]) * config["source_bonus_per_source"],
            config["source_bonus_cap"],
        )
        payroll_fraction = sum(1 for m in monthly if m.has_payroll) / len(monthly)
        payroll_bonus = config["payroll_bonus"] if payroll_fraction >= config["payroll_fraction_for_bonus"] else 0
        zero_months = sum(1 for d in deposits if d == 0)
        zero_penalty = zero_months * config["zero_income_month_penalty"]

        trend = 0.0 if avg == 0 else slope(deposits) / avg
        trend_penalty = config["declining_trend_penalty"] if trend < config["declining_trend_threshold"] else 0

        breakdown["income_stability"] = {
            "coefficient_of_variation": round(cv, 4),
            "base": round(base, 2),
            "source_bonus": source_bonus,
            "payroll_fraction": round(payroll_fraction, 4),
            "payroll_bonus": payroll_bonus,
            "zero_income_months": zero_months,
            "zero_income_penalty": zero_penalty,
            "normalised_trend": round(trend, 4),
            "trend_penalty": trend_penalty,
        }
        return base + source_bonus + payroll_bonus + zero_penalty + trend_penalty

    def _calculate_spending_discipline(self, monthly: List[MonthlyData], breakdown: Dict) -> float:
        """
        Score = ratio_points * (1 - discretionary / income), plus savings and
        trend adjustments, minus overdraft months.
        """
        config = self.scoring_config["spending_discipline"]
        total_income = sum(m.deposits for m in monthly)
        total_discretionary = sum(m.discretionary for m in monthly)
        if total_income <= 0:
            ratio = 1.0 if total_discretionary > 0 else 0.0
        else:
            ratio = total_discretionary / total_income
        base = config["ratio_points"] * (1 - min(ratio, 1.0))

        savings_bonus = config["savings_bonus"] if any(m.savings > 0 for m in monthly) else 0

        ratio_trend = slope([m.discretionary_ratio for m in monthly])
        if ratio_trend < -config["trend_threshold"]:
            trend_adjustment = config["improving_trend_bonus"]
        elif ratio_trend > config["trend_threshold"]:
            trend_adjustment = config["worsening_trend_penalty"]
        else:
            trend_adjustment = 0

        overdraft_months = sum(1 for m in monthly if m.overdrawn)
        overdraft_penalty = overdraft_months * config["overdraft_month_penalty"]

        breakdown["spending_discipline"] = {
            "discretionary_ratio": round(ratio, 4),
            "base": round(base, 2),
            "savings_bonus": savings_bonus,
            "ratio_trend": round(ratio_trend, 4),
            "trend_adjustment": trend_adjustment,
            "overdraft_months": overdraft_months,
            "overdraft_penalty": overdraft_penalty,
        }
        return base + savings_bonus + trend_adjustment + overdraft_penalty

    def _calculate_debt_trajectory(self, monthly: List[MonthlyData], breakdown: Dict) -> float:
        """Score = 100 - average DTI * 100, adjusted by the DTI trend."""
        config = self.scoring_config["debt_trajectory"]
        dti = [m.debt_to_income for m in monthly]
        avg_dti = mean(dti)
        base = 100 - avg_dti * 100

        dti_slope = slope(dti)
        if dti_slope < -config["trend_threshold"]:
            trend_adjustment = config["improving_trend_bonus"]
        elif dti_slope > config["trend_threshold"]:
            trend_adjustment = config["worsening_trend_penalty"]
        else:
            trend_adjustment = 0
        high_dti_penalty = config["high_dti_penalty"] if avg_dti > config["high_dti_threshold"] else 0

        breakdown["debt_trajectory"] = {
            "average_dti": round(avg_dti, 4),
            "base": round(base, 2),
            "dti_slope": round(dti_slope, 6),
            "trend_adjustment": trend_adjustment,
            "high_dti_penalty": high_dti_penalty,
        }
        return base + trend_adjustment + high_dti_penalty

    def _calculate_financial_resilience(self, monthly: List[MonthlyData], balance: int, breakdown: Dict) -> float:
        """Runway coverage plus buffer, recovery and balance consistency bonuses."""
        config = self.scoring_config["financial_resilience"]
        spending = [m.spending for m in monthly]
        avg_spending = mean(spending)
        runway = runway_months(balance, avg_spending)
        coverage = min(runway * config["points_per_runway_month"], config["runway_points_cap"])

        balances = [m.end_balance for m in monthly]
        buffer_bonus = config["positive_buffer_bonus"] if all(b > 0 for b in balances) else 0

        recovered = any(
            spending[i] > avg_spending * config["spike_ratio"] and spending[i + 1] < avg_spending
            for i in range(len(spending) - 1)
        )
        recovery_bonus = config["recovery_bonus"] if recovered else 0

        balance_mean = mean(balances)
        consistency = 0.0 if balance_mean == 0 else clamp(1 - std(balances) / abs(balance_mean), 0.0, 1.0)
        consistency_bonus = consistency * config["consistency_points"]

        breakdown["financial_resilience"] = {
            "runway_months": round(runway, 2),
            "coverage_points": round(coverage, 2),
            "buffer_bonus": buffer_bonus,
            "recovery_bonus": recovery_bonus,
            "balance_consistency": round(consistency, 4),
            "consistency_bonus": round(consistency_bonus, 2),
        }
        return coverage + buffer_bonus + recovery_bonus + consistency_bonus

    def _calculate_growth_momentum(self, monthly: List[MonthlyData], breakdown: Dict) -> float:
        """Savings rate plus the normalised trend of monthly net savings."""
        config = self.scoring_config["growth_momentum"]
        net = [m.deposits - m.spending for m in monthly]
        avg_deposits = mean([m.deposits for m in monthly])
        savings_rate = 0.0 if avg_deposits == 0 else mean(net) / avg_deposits
        base = max(savings_rate, 0.0) * config["savings_rate_points"]

        if avg_deposits == 0:
            trend_points = 0.0
        else:
            cap = config["trend_points_cap"]
            trend_points = clamp(slope(net) / avg_deposits * config["trend_multiplier"], -cap, cap)

        investment_bonus = config["investment_bonus"] if any(m.investment > 0 for m in monthly) else 0

        breakdown["growth_momentum"] = {
            "savings_rate": round(savings_rate, 4),
            "base": round(base, 2),
            "trend_points": round(trend_points, 2),
            "investment_bonus": investment_bonus,
        }
        return base + trend_points + investment_bonus


def runway_months(balance: float, monthly_outflow: float) -> float:
    """
    Months the balance lasts at the given monthly outflow.

    A non-positive balance gives 0; no outflow with a positive balance gives
    the stress-test cap.
    """
    if balance <= 0:
        return 0.0
    if monthly_outflow <= 0:
        return float(ANALYTICS_CONFIG["stress"]["runway_cap_months"])
    return balance / monthly_outflow
