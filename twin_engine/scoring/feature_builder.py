"""
Monthly Feature Builder for the Financial Twin engine.
Aggregates categorised transactions into per-month figures for the pillar scores.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional, Sequence, Set

import numpy as np

from ..exceptions import InvalidInputError
from ..income.income_detector import IncomeDetector
from ..models import (
    ESSENTIAL_CATEGORIES,
    NON_DISCRETIONARY_CATEGORIES,
    Account,
    Transaction,
    validate_transaction,
)

# Initialize logger for this module
logger = logging.getLogger(__name__)


# ----------------------------
# Numeric helpers
# ----------------------------
def clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return min(hi, max(lo, value))


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def std(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(values))


def slope(values: Sequence[float]) -> float:
    """
    Ordinary-least-squares slope of values against their index.

    Returns 0 for fewer than two values.
    """
    if len(values) < 2:
        return 0.0
    x = np.arange(len(values), dtype=float)
    return float(np.polyfit(x, np.asarray(values, dtype=float), 1)[0])


def month_key(d: date) -> str:
    return d.strftime("%Y-%m")


def month_range(first: str, last: str) -> List[str]:
    """Contiguous YYYY-MM keys from first to last inclusive."""
    year, month = (int(p) for p in first.split("-"))
    end_year, end_month = (int(p) for p in last.split("-"))
    months = []
    while (year, month) <= (end_year, end_month):
        months.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year += 1
            month = 1
    return months


def liquid_balance(account_balances: Optional[Iterable[Account]]) -> int:
    """Sum of balances held in liquid (depository) accounts."""
    if account_balances is None:
        return 0
    total = 0
    for account in account_balances:
        if not isinstance(account, Account):
            raise InvalidInputError(f"Expected Account, got {type(account).__name__}")
        if account.is_liquid:
            total += account.balance
    return total


@dataclass
class MonthlyData:
    """Per-month aggregate figures (currency minor units, outflows positive)."""
    month: str
    deposits: int = 0  # income deposits only
    other_inflows: int = 0
    spending: int = 0  # consumption and debt service, excludes savings/investment moves
    essential: int = 0
    discretionary: int = 0
    debt: int = 0
    savings: int = 0
    investment: int = 0
    net_flow: int = 0  # all inflows minus all outflows
    end_balance: int = 0
    income_sources: Set[str] = field(default_factory=set)
    has_payroll: bool = False
    transaction_count: int = 0

    @property
    def income_source_count(self) -> int:
        return len(self.income_sources)

    @property
    def overdrawn(self) -> bool:
        return self.end_balance < 0

    @property
    def discretionary_ratio(self) -> float:
        """Discretionary spend as a share of income; 1 when there is spend but no income."""
        if self.deposits <= 0:
            return 1.0 if self.discretionary > 0 else 0.0
        return self.discretionary / self.deposits

    @property
    def debt_to_income(self) -> float:
        if self.deposits <= 0:
            return 1.0 if self.debt > 0 else 0.0
        return self.debt / self.deposits


class MonthlyFeatureBuilder:
    """Builds the monthly series the pillar scores are computed from."""

    def __init__(self, income_detector: Optional[IncomeDetector] = None):
        self.income_detector = income_detector or IncomeDetector()

    def filter_window(self, transactions: List[Transaction], window_months: int) -> List[Transaction]:
        """
        Keep transactions in the last ``window_months`` calendar months.

        The window ends at the month of the latest transaction so results do
        not depend on the wall clock.
        """
        if not transactions:
            return []
        last = max(t.date for t in transactions)
        year, month = last.year, last.month - (window_months - 1)
        while month <= 0:
            month += 12
            year -= 1
        start = f"{year:04d}-{month:02d}"
        return [t for t in transactions if t.month >= start]

    def build(
        self,
        transactions: List[Transaction],
        account_balances: Optional[Iterable[Account]] = None,
        window_months: int = 12
    ) -> List[MonthlyData]:
        """
        Aggregate transactions by month.

        Args:
            transactions: Categorised transactions
            account_balances: Current account balances
            window_months: Analysis window in months

        Returns:
            Contiguous, chronologically ordered MonthlyData list; months with
            no activity are present with zero figures
        """
        for txn in transactions:
            validate_transaction(txn)

        windowed = self.filter_window(transactions, window_months)
        if not windowed:
            return []

        months = month_range(min(t.month for t in windowed), max(t.month for t in windowed))
        by_month = {m: MonthlyData(month=m) for m in months}
        for txn in windowed:
            self._accumulate(by_month[txn.month], txn)

        monthly = [by_month[m] for m in months]
        self._reconstruct_balances(monthly, liquid_balance(account_balances))
        logger.debug("Built %d months from %d transactions", len(monthly), len(windowed))
        return monthly

    def _accumulate(self, data: MonthlyData, txn: Transaction) -> None:
        data.transaction_count += 1
        data.net_flow -= txn.amount

        if txn.amount < 0:
            inflow = -txn.amount
            if txn.is_income_deposit:
                data.deposits += inflow
                data.income_sources.add(self.income_detector.income_source_key(txn))
                if self.income_detector.is_payroll(txn):
                    data.has_payroll = True
            else:
                data.other_inflows += inflow
            return

        category = txn.resolved_category
        if category == "savings_transfer":
            data.savings += txn.amount
            return
        if category == "investment":
            data.investment += txn.amount
            return

        data.spending += txn.amount
        if category in ESSENTIAL_CATEGORIES:
            data.essential += txn.amount
        if category == "debt_payment":
            data.debt += txn.amount
        if category not in NON_DISCRETIONARY_CATEGORIES:
            data.discretionary += txn.amount

    @staticmethod
    def _reconstruct_balances(monthly: List[MonthlyData], current_balance: int) -> None:
        # Walk backwards from today's liquid balance
        balance = current_balance
        for data in reversed(monthly):
            data.end_balance = balance
            balance -= data.net_flow
