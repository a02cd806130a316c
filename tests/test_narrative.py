"""
Tests for narrative summaries.
"""

import unittest

from twin_engine.exceptions import InvalidInputError
from twin_engine.narrative import (
    NarrativeService,
    build_score_summary,
    score_tier,
    template_narrative,
)
from twin_engine.scoring.scoring_engine import (
    PillarScores,
    ScoreResult,
    compute_lending_readiness,
    compute_overall_score,
)
from twin_engine.snapshots.store import build_snapshot


def _snapshot(pillars, low_confidence=False):
    return build_snapshot("twin-1", ScoreResult(
        pillar_scores=pillars,
        lending_readiness=compute_lending_readiness(pillars),
        overall_score=compute_overall_score(pillars),
        transaction_count=90,
        analysis_window_months=12,
        months_analysed=6,
        low_confidence=low_confidence,
    ))


class TestScoreSummary(unittest.TestCase):
    """Test the structured summary."""

    def setUp(self):
        """Set up test fixtures."""
        self.snapshot = _snapshot(PillarScores(85, 45, 72, 30, 60))

    def test_summary_has_no_transactions(self):
        summary = build_score_summary(self.snapshot)
        self.assertEqual(summary["content_hash"], self.snapshot.content_hash)
        self.assertEqual(summary["strengths"], ["Income Stability", "Debt Trajectory"])
        self.assertEqual(summary["improvements"], ["Financial Resilience", "Spending Discipline"])
        self.assertNotIn("transactions", summary)

    def test_unknown_audience_rejected(self):
        with self.assertRaises(InvalidInputError):
            build_score_summary(self.snapshot, "regulator")

    def test_score_tiers(self):
        self.assertEqual(score_tier(85), "excellent")
        self.assertEqual(score_tier(65), "strong")
        self.assertEqual(score_tier(50), "moderate")
        self.assertEqual(score_tier(35), "developing")
        self.assertEqual(score_tier(10), "early-stage")


class TestNarrativeService(unittest.TestCase):
    """Test generator use and template fallback."""

    def setUp(self):
        """Set up test fixtures."""
        self.snapshot = _snapshot(PillarScores(85, 45, 72, 30, 60), low_confidence=True)

    def test_template_without_generator(self):
        result = NarrativeService().narrate(self.snapshot)
        self.assertEqual(result["source"], "template")
        self.assertTrue(result["narrative"].startswith("Your overall score is"))
        self.assertIn("limited history", result["narrative"])

    def test_institution_template(self):
        text = template_narrative(build_score_summary(self.snapshot, "institution"))
        self.assertTrue(text.startswith("FINANCIAL TWIN SUMMARY"))
        self.assertIn("Income Stability: 85.0 / 100", text)

    def test_generator_receives_summary(self):
        seen = []

        def generate(summary):
            seen.append(summary)
            return "Generated text."

        result = NarrativeService(generate).narrate(self.snapshot, "institution")
        self.assertEqual(result["narrative"], "Generated text.")
        self.assertEqual(result["source"], "generator")
        self.assertEqual(seen[0]["audience"], "institution")

    def test_failing_generator_falls_back(self):
        def generate(summary):
            raise RuntimeError("model unavailable")

        with self.assertLogs("twin_engine.narrative", level="WARNING"):
            result = NarrativeService(generate).narrate(self.snapshot)
        self.assertEqual(result["source"], "template")
        self.assertTrue(result["narrative"])


if __name__ == '__main__':
    unittest.main()
