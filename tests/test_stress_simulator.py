"""
Tests for stress-test simulation.
"""

import unittest
from datetime import date

from twin_engine.analytics.stress import (
    BUILT_IN_SCENARIOS,
    StressSimulator,
    resolve_scenario,
)
from twin_engine.exceptions import InvalidInputError
from twin_engine.models import Account, Transaction
from twin_engine.scoring.scoring_engine import ScoringEngine
from twin_engine.snapshots.store import SnapshotStore


def _txn(txn_id, month, amount, category, income=False, merchant=None):
    return Transaction(
        id=txn_id,
        twin_id="twin-1",
        date=date(2024, month, 3),
        amount=amount,
        merchant_text=merchant or category.upper(),
        resolved_category=category,
        is_income_deposit=income,
    )


class TestStressSimulator(unittest.TestCase):
    """Test scenario simulation against a committed snapshot."""

    def setUp(self):
        """Set up test fixtures."""
        self.transactions = []
        for month in (1, 2, 3):
            self.transactions.extend([
                _txn(f"pay-{month}", month, -400000, "income", income=True, merchant="ACME PAYROLL"),
                _txn(f"rent-{month}", month, 200000, "rent"),
                _txn(f"groc-{month}", month, 100000, "groceries"),
            ])
        self.accounts = [Account(id="chk", balance=600000)]
        self.engine = ScoringEngine()
        self.store = SnapshotStore()
        self.snapshot = self.store.commit("twin-1", self.engine.score(self.transactions, self.accounts))
        self.simulator = StressSimulator(self.engine)

    def test_job_loss_runway(self):
        """Savings divided by the simulated monthly deficit."""
        result = self.simulator.simulate(
            self.snapshot, self.transactions, self.accounts, BUILT_IN_SCENARIOS["job_loss_6_months"]
        )
        self.assertEqual(result.months_of_runway, 2.0)
        self.assertFalse(result.runway_capped)
        self.assertEqual(result.impact_severity, "high")
        self.assertLess(result.pillar_deltas["income_stability"], 0)
        self.assertEqual(result.breakdown["simulated_monthly_income"], 0)
        self.assertEqual(result.breakdown["simulated_monthly_surplus"], -300000)
        self.assertEqual(result.baseline_snapshot_id, self.snapshot.id)
        self.assertTrue(any("emergency fund" in r for r in result.recommendations))

    def test_simulation_never_touches_snapshot(self):
        before = self.snapshot.to_dict()
        self.simulator.simulate(
            self.snapshot, self.transactions, self.accounts, BUILT_IN_SCENARIOS["income_50_cut"]
        )
        self.assertEqual(self.snapshot.to_dict(), before)
        self.assertEqual(self.snapshot.compute_hash(), self.snapshot.content_hash)
        self.assertEqual(len(self.store.history("twin-1")), 1)

    def test_surplus_caps_runway(self):
        """A scenario that still leaves a surplus reports the capped runway."""
        result = self.simulator.simulate(
            self.snapshot, self.transactions, self.accounts, BUILT_IN_SCENARIOS["expense_spike_30"]
        )
        self.assertEqual(result.months_of_runway, 36)
        self.assertTrue(result.runway_capped)
        self.assertEqual(result.impact_severity, "low")
        self.assertEqual(result.breakdown["simulated_monthly_expenses"], 390000)

    def test_emergency_expense(self):
        result = self.simulator.simulate(
            self.snapshot, self.transactions, self.accounts, BUILT_IN_SCENARIOS["medical_emergency"]
        )
        self.assertEqual(result.breakdown["effective_savings"], 100000)
        self.assertTrue(result.runway_capped)
        self.assertTrue(any("insurance" in r for r in result.recommendations))

    def test_accounts_not_mutated(self):
        accounts = list(self.accounts)
        self.simulator.simulate(
            self.snapshot, self.transactions, accounts, BUILT_IN_SCENARIOS["car_repair"]
        )
        self.assertEqual(accounts, self.accounts)

    def test_overall_delta_matches_scores(self):
        result = self.simulator.simulate(
            self.snapshot, self.transactions, self.accounts, BUILT_IN_SCENARIOS["income_25_cut"]
        )
        self.assertAlmostEqual(result.overall_delta, round(result.overall_score - self.snapshot.overall_score, 2))


class TestResolveScenario(unittest.TestCase):
    """Test scenario lookup and custom scenario validation."""

    def test_built_in(self):
        scenario = resolve_scenario("lose_primary_income")
        self.assertEqual(scenario.income_reduction, 0.65)

    def test_custom(self):
        scenario = resolve_scenario(
            "custom", income_reduction_percent=40, expense_increase_percent=10, emergency_expense=125000
        )
        self.assertAlmostEqual(scenario.income_reduction, 0.4)
        self.assertAlmostEqual(scenario.expense_increase, 0.1)
        self.assertEqual(scenario.emergency_expense, 125000)
        self.assertEqual(scenario.label, "Custom Scenario")

    def test_invalid_scenarios(self):
        with self.assertRaises(InvalidInputError):
            resolve_scenario("meteor_strike")
        with self.assertRaises(InvalidInputError):
            resolve_scenario("custom", income_reduction_percent=120)
        with self.assertRaises(InvalidInputError):
            resolve_scenario("custom", expense_increase_percent=-5)
        with self.assertRaises(InvalidInputError):
            resolve_scenario("custom", income_reduction_percent="half")
        with self.assertRaises(InvalidInputError):
            resolve_scenario("custom", emergency_expense=99.5)


if __name__ == '__main__':
    unittest.main()
