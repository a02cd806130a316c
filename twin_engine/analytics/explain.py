"""
Pillar explainability.

For a pillar, picks the transactions whose categorised amounts weighed most
on its score, tags each ``positive`` or ``negative``, and turns the scoring
breakdown into short human-readable reasons.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..config.scoring_config import ANALYTICS_CONFIG, PILLARS, SCORING_CONFIG
from ..exceptions import InvalidInputError
from ..models import ESSENTIAL_CATEGORIES, NON_DISCRETIONARY_CATEGORIES, Account, Transaction
from ..scoring.scoring_engine import ScoringEngine
from ..snapshots.store import TwinSnapshot

logger = logging.getLogger(__name__)

PILLAR_LABELS = {
    "income_stability": "Income Stability",
    "spending_discipline": "Spending Discipline",
    "debt_trajectory": "Debt Trajectory",
    "financial_resilience": "Financial Resilience",
    "growth_momentum": "Growth Momentum",
}

POSITIVE = "positive"
NEGATIVE = "negative"


def _money(minor_units: float) -> str:
    return "%.2f" % (abs(minor_units) / 100)


def _label(txn: Transaction) -> str:
    return txn.merchant_text or txn.resolved_category.replace("_", " ")


@dataclass
class InfluentialTransaction:
    transaction_id: str
    date: str
    merchant_text: Optional[str]
    category: str
    amount: int
    impact: str
    reason: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class PillarExplanation:
    """Reasons and evidence behind one pillar score."""
    pillar: str
    label: str
    score: float
    snapshot_id: str
    reasons: List[str] = field(default_factory=list)
    influential_transactions: List[InfluentialTransaction] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "pillar": self.pillar,
            "label": self.label,
            "score": self.score,
            "snapshot_id": self.snapshot_id,
            "reasons": self.reasons,
            "influential_transactions": [t.to_dict() for t in self.influential_transactions],
        }


# ----------------------------
# Transaction impact per pillar
# ----------------------------
Impact = Optional[Tuple[str, str]]


def _income_impact(txn: Transaction, breakdown: Dict) -> Impact:
    if txn.amount < 0 and txn.is_income_deposit:
        if txn.is_recurring:
            return POSITIVE, f"Recurring income deposit ({_money(txn.amount)}); regularity supports the score."
        return POSITIVE, f"Income deposit ({_money(txn.amount)}) anchors monthly income."
    return None


def _spending_impact(txn: Transaction, breakdown: Dict) -> Impact:
    if txn.amount <= 0 or txn.resolved_category == "investment":
        return None
    if txn.resolved_category == "savings_transfer":
        return POSITIVE, f"Savings transfer ({_money(txn.amount)}) earns the savings bonus."
    if txn.resolved_category in ESSENTIAL_CATEGORIES:
        return POSITIVE, f"{_label(txn)} ({_money(txn.amount)}) is essential spending and keeps the discretionary share low."
    if txn.resolved_category not in NON_DISCRETIONARY_CATEGORIES:
        return NEGATIVE, f"{_label(txn)} ({_money(txn.amount)}) is discretionary and raises the discretionary ratio."
    return None


def _debt_impact(txn: Transaction, breakdown: Dict) -> Impact:
    if txn.amount <= 0 or txn.resolved_category != "debt_payment":
        return None
    avg_dti = breakdown.get("average_dti", 0.0)
    if avg_dti < SCORING_CONFIG["debt_trajectory"]["high_dti_threshold"]:
        return POSITIVE, f"Debt payment to {_label(txn)} ({_money(txn.amount)}) is a manageable share of income."
    return NEGATIVE, f"Debt payment to {_label(txn)} ({_money(txn.amount)}) is a significant share of income."


def _resilience_impact(txn: Transaction, breakdown: Dict) -> Impact:
    if txn.amount < 0 and txn.is_income_deposit:
        return POSITIVE, f"Deposit ({_money(txn.amount)}) replenishes the balance cushion."
    if txn.amount > 0 and txn.resolved_category not in ("savings_transfer", "investment"):
        return NEGATIVE, f"{_label(txn)} ({_money(txn.amount)}) draws down the balance cushion."
    return None


def _growth_impact(txn: Transaction, breakdown: Dict) -> Impact:
    if txn.amount > 0 and txn.resolved_category == "investment":
        return POSITIVE, f"Investment ({_money(txn.amount)}) contributes the investment bonus."
    if txn.amount > 0 and txn.resolved_category == "savings_transfer":
        return POSITIVE, f"Savings transfer ({_money(txn.amount)}) grows net worth."
    if txn.amount > 0 and txn.resolved_category not in NON_DISCRETIONARY_CATEGORIES:
        return NEGATIVE, f"{_label(txn)} ({_money(txn.amount)}) reduces monthly net savings."
    return None


_IMPACT_FUNCTIONS: Dict[str, Callable[[Transaction, Dict], Impact]] = {
    "income_stability": _income_impact,
    "spending_discipline": _spending_impact,
    "debt_trajectory": _debt_impact,
    "financial_resilience": _resilience_impact,
    "growth_momentum": _growth_impact,
}


# ----------------------------
# Reasons from the scoring breakdown
# ----------------------------
def _income_reasons(b: Dict) -> List[str]:
    cv = b["coefficient_of_variation"]
    if cv < 0.15:
        reasons = [f"Income is very consistent month to month ({cv * 100:.0f}% variation)."]
    elif cv < 0.35:
        reasons = [f"Moderate income variation ({cv * 100:.0f}%)."]
    else:
        reasons = [f"High income volatility ({cv * 100:.0f}% variation) lowers this score."]
    if b["source_bonus"]:
        reasons.append(f"Multiple income sources add {b['source_bonus']:.0f} points.")
    if b["payroll_bonus"]:
        reasons.append(f"Regular payroll deposits earn a +{b['payroll_bonus']} regularity bonus.")
    else:
        reasons.append("Payroll deposits are not regular enough for the regularity bonus.")
    if b["zero_income_months"]:
        reasons.append(f"{b['zero_income_months']} month(s) with no income cost {abs(b['zero_income_penalty'])} points.")
    if b["trend_penalty"]:
        reasons.append("Income is trending down.")
    return reasons


def _spending_reasons(b: Dict) -> List[str]:
    reasons = [f"Discretionary spending is {b['discretionary_ratio'] * 100:.0f}% of income."]
    if b["savings_bonus"]:
        reasons.append(f"Savings transfers earn a +{b['savings_bonus']} bonus.")
    else:
        reasons.append("No savings transfers detected.")
    if b["trend_adjustment"] > 0:
        reasons.append("The discretionary share is falling over time.")
    elif b["trend_adjustment"] < 0:
        reasons.append("The discretionary share is rising over time.")
    if b["overdraft_months"]:
        reasons.append(f"{b['overdraft_months']} month(s) ended overdrawn.")
    else:
        reasons.append("No overdrawn months.")
    return reasons


def _debt_reasons(b: Dict) -> List[str]:
    reasons = [f"Average debt-to-income ratio is {b['average_dti'] * 100:.1f}%."]
    if b["trend_adjustment"] > 0:
        reasons.append("Debt-to-income is improving.")
    elif b["trend_adjustment"] < 0:
        reasons.append("Debt-to-income is rising faster than income.")
    if b["high_dti_penalty"]:
        reasons.append("Debt-to-income exceeds the 43% lending threshold.")
    return reasons


def _resilience_reasons(b: Dict) -> List[str]:
    reasons = [f"Liquid balance covers about {b['runway_months']:.1f} month(s) of spending."]
    if b["buffer_bonus"]:
        reasons.append("The balance stayed positive every month.")
    if b["recovery_bonus"]:
        reasons.append("Spending recovered quickly after a spike.")
    reasons.append(f"Balance consistency is {b['balance_consistency'] * 100:.0f}%.")
    return reasons


def _growth_reasons(b: Dict) -> List[str]:
    reasons = [f"Average savings rate is {b['savings_rate'] * 100:.1f}% of income."]
    if b["trend_points"] > 0:
        reasons.append("Monthly net savings are trending up.")
    elif b["trend_points"] < 0:
        reasons.append("Monthly net savings are trending down.")
    if b["investment_bonus"]:
        reasons.append(f"Investment activity adds a +{b['investment_bonus']} bonus.")
    return reasons


_REASON_FUNCTIONS = {
    "income_stability": _income_reasons,
    "spending_discipline": _spending_reasons,
    "debt_trajectory": _debt_reasons,
    "financial_resilience": _resilience_reasons,
    "growth_momentum": _growth_reasons,
}


def explain_pillar(
    snapshot: TwinSnapshot,
    transactions: List[Transaction],
    pillar: str,
    limit: Optional[int] = None,
    account_balances: Optional[Iterable[Account]] = None,
    engine: Optional[ScoringEngine] = None,
) -> PillarExplanation:
    """
    Explain one pillar of a committed snapshot.

    Args:
        snapshot: Committed snapshot whose pillar score is explained
        transactions: Twin transactions
        pillar: Pillar name
        limit: Maximum number of influential transactions
        account_balances: Current balances (used for resilience reasons)
        engine: Scoring engine used to rebuild the breakdown

    Returns:
        PillarExplanation; transactions ordered by absolute amount

    Raises:
        InvalidInputError: Unknown pillar or non-positive limit
    """
    if pillar not in PILLARS:
        raise InvalidInputError(f"Unknown pillar {pillar!r}; expected one of {', '.join(PILLARS)}")
    if limit is None:
        limit = ANALYTICS_CONFIG["explain"]["default_limit"]
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise InvalidInputError(f"limit must be a positive integer, got {limit!r}")

    engine = engine or ScoringEngine()
    window = snapshot.analysis_window_months
    result = engine.score(list(transactions), account_balances, window)
    breakdown = result.breakdown.get(pillar, {})

    impact_of = _IMPACT_FUNCTIONS[pillar]
    windowed = engine.feature_builder.filter_window(list(transactions), window)
    ranked = sorted(windowed, key=lambda t: (-abs(t.amount), t.date, t.id))
    influential = []
    for txn in ranked:
        impact = impact_of(txn, breakdown)
        if impact is None:
            continue
        influential.append(InfluentialTransaction(
            transaction_id=txn.id,
            date=txn.date.isoformat(),
            merchant_text=txn.merchant_text,
            category=txn.resolved_category,
            amount=txn.amount,
            impact=impact[0],
            reason=impact[1],
        ))
        if len(influential) >= limit:
            break

    if breakdown:
        reasons = _REASON_FUNCTIONS[pillar](breakdown)[:5]
    else:
        reasons = ["Not enough transaction history to explain this score."]

    return PillarExplanation(
        pillar=pillar,
        label=PILLAR_LABELS[pillar],
        score=getattr(snapshot.pillar_scores, pillar),
        snapshot_id=snapshot.id,
        reasons=reasons,
        influential_transactions=influential,
    )


def explain_all(
    snapshot: TwinSnapshot,
    transactions: List[Transaction],
    limit: Optional[int] = None,
    account_balances: Optional[Iterable[Account]] = None,
) -> List[PillarExplanation]:
    """Explanations for every pillar, in pillar order."""
    engine = ScoringEngine()
    return [
        explain_pillar(snapshot, transactions, name, limit, account_balances, engine)
        for name in PILLARS
    ]
