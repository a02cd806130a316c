"""
Income Detection Module for the Financial Twin engine.

Flags income deposits and payroll credits from amount sign, descriptive
keywords and upstream hints, and marks recurring merchants by frequency
across the full transaction set.
"""

from collections import Counter
from typing import Iterable, List, Optional

from ..config.scoring_config import RESOLVER_CONFIG
from ..models import Transaction
from ..patterns.category_rules import (
    INCOME_EXCLUSION_KEYWORDS,
    OTHER_INCOME_KEYWORDS,
    PAYROLL_KEYWORDS,
)


class IncomeDetector:
    """Detects income through layered logic: exclusions → hint → keywords → amount sign."""

    INCOME_HINT_MARKERS = ("payroll", "income", "deposit")

    def __init__(self, min_occurrences: Optional[int] = None):
        self.min_occurrences = (
            min_occurrences if min_occurrences is not None
            else RESOLVER_CONFIG["recurring_min_occurrences"]
        )

    # ----------------------------
    # Keyword tests
    # ----------------------------
    @staticmethod
    def _text(txn: Transaction) -> str:
        return (txn.merchant_text or "").upper().strip()

    def matches_payroll_patterns(self, description: Optional[str]) -> bool:
        if not description:
            return False
        d = description.upper()
        return any(k in d for k in PAYROLL_KEYWORDS)

    def matches_other_income_patterns(self, description: Optional[str]) -> bool:
        if not description:
            return False
        d = description.upper()
        return any(k in d for k in OTHER_INCOME_KEYWORDS)

    def _looks_like_internal_transfer(self, description: Optional[str]) -> bool:
        d = (description or "").upper()
        return any(k in d for k in INCOME_EXCLUSION_KEYWORDS)

    def _hint_says_income(self, hint: Optional[str]) -> bool:
        h = (hint or "").lower()
        return any(marker in h for marker in self.INCOME_HINT_MARKERS)

    # ----------------------------
    # Classification
    # ----------------------------
    def is_income_deposit(self, txn: Transaction) -> bool:
        """
        Decide whether an inflow counts as income.

        Outflows are never income. Payroll and benefit keywords always count;
        refunds, reversals and transfers between the holder's own accounts do
        not; any other inflow counts.
        """
        if txn.amount >= 0:
            return False

        text = self._text(txn)
        # "TAX REFUND" is income even though it contains "REFUND"
        if self.matches_other_income_patterns(text) or self.matches_payroll_patterns(text):
            return True
        if self._hint_says_income(txn.raw_category_hint):
            return True
        if self._looks_like_internal_transfer(text):
            return False
        if txn.resolved_category in ("savings_transfer", "investment"):
            return False

        return True

    def is_payroll(self, txn: Transaction) -> bool:
        """Income deposit whose text or hint marks it as employer pay."""
        if not self.is_income_deposit(txn):
            return False
        if self.matches_payroll_patterns(txn.merchant_text):
            return True
        return "payroll" in (txn.raw_category_hint or "").lower()

    def income_source_key(self, txn: Transaction) -> str:
        """Key used to count distinct income sources."""
        text = self._text(txn)
        return text or (txn.raw_category_hint or "unknown").lower()

    # ----------------------------
    # Recurring detection
    # ----------------------------
    @staticmethod
    def _merchant_key(txn: Transaction) -> str:
        return (txn.merchant_text or "").lower().strip()

    def merchant_frequency(self, transactions: Iterable[Transaction]) -> Counter:
        return Counter(
            key for key in (self._merchant_key(t) for t in transactions) if key
        )

    def mark_recurring(self, transactions: List[Transaction]) -> List[Transaction]:
        """
        Refresh ``is_recurring`` over the full transaction set.

        A merchant seen at least ``min_occurrences`` times is recurring. Rows
        whose flag is unchanged are returned as-is.
        """
        frequency = self.merchant_frequency(transactions)
        marked = []
        for txn in transactions:
            key = self._merchant_key(txn)
            recurring = bool(key) and frequency[key] >= self.min_occurrences
            if recurring != txn.is_recurring:
                txn = txn.with_updates(is_recurring=recurring)
            marked.append(txn)
        return marked
