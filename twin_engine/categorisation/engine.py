"""
Category Resolver for the Financial Twin engine.
Maps raw bank transactions onto the semantic category taxonomy.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..config.scoring_config import RESOLVER_CONFIG
from ..income.income_detector import IncomeDetector
from ..models import OTHER_CATEGORY, CategoryRule, Transaction
from ..patterns.category_rules import CATEGORY_RULES, HINT_CATEGORY_MAP
from .pattern_matching import first_matching_rule
from .preprocess import map_hint_to_category, normalize_text

logger = logging.getLogger(__name__)


@dataclass
class CategoryMatch:
    """Result of transaction categorization."""
    category: str
    confidence: float
    match_method: str  # 'hint', 'payroll', 'keyword', 'regex', 'fuzzy', 'income_fallback', 'none'
    rule: Optional[CategoryRule] = None


class CategoryResolver:
    """
    Resolves a transaction's semantic category.

    A confident upstream hint wins; otherwise the ordered rule list is walked
    and the first matching rule decides. The resolver holds no mutable state,
    so resolving the same transaction twice always gives the same answer.
    """

    def __init__(
        self,
        rules: Optional[Sequence[CategoryRule]] = None,
        hint_map: Optional[Dict[str, str]] = None,
        income_detector: Optional[IncomeDetector] = None,
        config: Optional[Dict] = None
    ):
        self.rules = tuple(rules if rules is not None else CATEGORY_RULES)
        self.hint_map = hint_map if hint_map is not None else HINT_CATEGORY_MAP
        self.income_detector = income_detector or IncomeDetector()
        self.config = config or RESOLVER_CONFIG
        self.hint_threshold = self.config["hint_confidence_threshold"]
        self.fuzzy_threshold = self.config["fuzzy_threshold"]
        self.confidence = self.config["confidence"]

    def resolve(self, txn: Transaction) -> str:
        """Return the semantic category for a transaction."""
        return self.resolve_match(txn).category

    def resolve_match(self, txn: Transaction) -> CategoryMatch:
        """
        Resolve a transaction and report how the category was reached.

        Args:
            txn: Transaction to resolve

        Returns:
            CategoryMatch with category, confidence and match method
        """
        # 1. Confident upstream hint
        hint_match = self._match_hint(txn)
        if hint_match:
            return hint_match

        # 2. No text to match on
        text = normalize_text(txn.merchant_text)
        if not text:
            return CategoryMatch(OTHER_CATEGORY, self.confidence["none"], "none")

        # 3. Pay credited under a merchant name ("WALMART DIRECT DEP") is income
        if txn.amount < 0 and self.income_detector.matches_payroll_patterns(text):
            return CategoryMatch("income", self.confidence["payroll"], "payroll")

        # 4. Ordered rule walk, first match wins
        rule = first_matching_rule(text, self.rules, self.fuzzy_threshold)
        if rule:
            return CategoryMatch(rule.category, self.confidence[rule.kind], rule.kind, rule)

        # 5. Unmatched inflows that look like income
        if self.income_detector.is_income_deposit(txn):
            return CategoryMatch("income", self.confidence["income_fallback"], "income_fallback")

        return CategoryMatch(OTHER_CATEGORY, self.confidence["none"], "none")

    def _match_hint(self, txn: Transaction) -> Optional[CategoryMatch]:
        if txn.hint_confidence is None or txn.hint_confidence <= self.hint_threshold:
            return None
        mapped = map_hint_to_category(txn.raw_category_hint, self.hint_map)
        if not mapped or mapped == OTHER_CATEGORY:
            return None
        return CategoryMatch(mapped, float(txn.hint_confidence), "hint")

    def categorize(self, txn: Transaction) -> Transaction:
        """
        Return a recategorised copy of the transaction.

        Identity is preserved; only the derived fields change.
        """
        match = self.resolve_match(txn)
        resolved = txn.with_updates(
            resolved_category=match.category,
            confidence_score=round(match.confidence, 4),
        )
        return resolved.with_updates(
            is_income_deposit=self.income_detector.is_income_deposit(resolved)
        )

    def categorize_all(self, transactions: List[Transaction]) -> List[Transaction]:
        """Categorise a batch and refresh recurring flags across it."""
        categorized = [self.categorize(txn) for txn in transactions]
        logger.debug("Categorised %d transactions", len(categorized))
        return self.income_detector.mark_recurring(categorized)
