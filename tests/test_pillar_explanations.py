"""
Tests for pillar explanations.
"""

import unittest
from datetime import date

from twin_engine.analytics.explain import explain_all, explain_pillar
from twin_engine.exceptions import InvalidInputError
from twin_engine.models import Account, Transaction
from twin_engine.scoring.scoring_engine import ScoringEngine
from twin_engine.snapshots.store import build_snapshot


def _txn(txn_id, month, day, amount, category, merchant, income=False, recurring=False):
    return Transaction(
        id=txn_id,
        twin_id="twin-1",
        date=date(2024, month, day),
        amount=amount,
        merchant_text=merchant,
        resolved_category=category,
        is_income_deposit=income,
        is_recurring=recurring,
    )


class TestPillarExplanations(unittest.TestCase):
    """Test influential transactions and reasons per pillar."""

    def setUp(self):
        """Set up test fixtures."""
        self.transactions = []
        for month in (1, 2, 3):
            self.transactions.extend([
                _txn(f"pay-{month}", month, 1, -400000, "income", "ACME PAYROLL", income=True, recurring=True),
                _txn(f"rent-{month}", month, 2, 200000, "rent", "OAK PROPERTY MGMT", recurring=True),
                _txn(f"amzn-{month}", month, 12, 50000, "shopping", "AMAZON MKTPLACE"),
                _txn(f"loan-{month}", month, 15, 40000, "debt_payment", "NAVIENT", recurring=True),
                _txn(f"coffee-{month}", month, 20, 700, "dining", "STARBUCKS"),
            ])
        self.accounts = [Account(id="chk", balance=800000)]
        self.snapshot = build_snapshot("twin-1", ScoringEngine().score(self.transactions, self.accounts))

    def test_spending_discipline_ranks_by_amount(self):
        explanation = explain_pillar(self.snapshot, self.transactions, "spending_discipline", limit=4)
        ranked = [(t.transaction_id, t.impact) for t in explanation.influential_transactions]
        self.assertEqual(ranked, [
            ("rent-1", "positive"),
            ("rent-2", "positive"),
            ("rent-3", "positive"),
            ("amzn-1", "negative"),
        ])
        self.assertEqual(explanation.score, self.snapshot.pillar_scores.spending_discipline)
        self.assertTrue(explanation.reasons[0].startswith("Discretionary spending is"))

    def test_income_deposits_explain_income_stability(self):
        explanation = explain_pillar(self.snapshot, self.transactions, "income_stability")
        self.assertEqual(len(explanation.influential_transactions), 3)
        for txn in explanation.influential_transactions:
            self.assertEqual(txn.impact, "positive")
            self.assertTrue(txn.reason.startswith("Recurring income deposit"))
        self.assertIn("Regular payroll deposits earn a +15 regularity bonus.", explanation.reasons)

    def test_manageable_debt_is_positive(self):
        explanation = explain_pillar(self.snapshot, self.transactions, "debt_trajectory")
        self.assertEqual({t.impact for t in explanation.influential_transactions}, {"positive"})
        self.assertEqual(explanation.reasons[0], "Average debt-to-income ratio is 10.0%.")

    def test_reasons_are_capped(self):
        for explanation in explain_all(self.snapshot, self.transactions, account_balances=self.accounts):
            self.assertLessEqual(len(explanation.reasons), 5)
            self.assertLessEqual(len(explanation.influential_transactions), 3)

    def test_explain_all_covers_every_pillar(self):
        explanations = explain_all(self.snapshot, self.transactions, limit=2)
        self.assertEqual(
            [e.pillar for e in explanations],
            ["income_stability", "spending_discipline", "debt_trajectory",
             "financial_resilience", "growth_momentum"],
        )

    def test_empty_history_has_fallback_reason(self):
        explanation = explain_pillar(self.snapshot, [], "growth_momentum")
        self.assertEqual(explanation.influential_transactions, [])
        self.assertEqual(explanation.reasons, ["Not enough transaction history to explain this score."])

    def test_invalid_arguments(self):
        with self.assertRaises(InvalidInputError):
            explain_pillar(self.snapshot, self.transactions, "charisma")
        with self.assertRaises(InvalidInputError):
            explain_pillar(self.snapshot, self.transactions, "income_stability", limit=0)


if __name__ == '__main__':
    unittest.main()
