"""
Tests for category rule CSV loading, environment settings and service wiring.
"""

import os
import shutil
import tempfile
import unittest
from datetime import date
from unittest import mock

from twin_engine.categorisation.engine import CategoryResolver
from twin_engine.config.rule_loader import load_category_rules_csv
from twin_engine.config.settings import Settings
from twin_engine.exceptions import InvalidInputError
from twin_engine.models import Transaction
from twin_engine.service import build_service
from twin_engine.sync.aggregator import InMemoryAggregator
from twin_engine.verification.ledger import InMemoryLedger


class TestRuleLoader(unittest.TestCase):
    """Test loading category rules from CSV."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir)

    def _write(self, text):
        path = os.path.join(self.test_dir, "rules.csv")
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
        return path

    def test_load_rules_sorted_by_priority(self):
        path = self._write(
            "pattern,category,priority,kind\n"
            "corner deli,dining,20,keyword\n"
            "\\bGYM\\b,entertainment,5,regex\n"
            ",groceries,1,keyword\n"
            "netflx,subscriptions,20,fuzzy\n"
        )
        rules = load_category_rules_csv(path)
        self.assertEqual([r.pattern for r in rules], ["\\bGYM\\b", "CORNER DELI", "NETFLX"])
        self.assertEqual(rules[0].kind, "regex")

    def test_loaded_rules_drive_resolver(self):
        rules = load_category_rules_csv(self._write("pattern,category,priority\ncorner deli,dining,1\n"))
        txn = Transaction(id="t1", twin_id="twin-1", date=date(2024, 1, 5), amount=900, merchant_text="Corner Deli NYC")
        self.assertEqual(CategoryResolver(rules=rules).resolve(txn), "dining")

    def test_unknown_category_rejected(self):
        with self.assertRaises(InvalidInputError):
            load_category_rules_csv(self._write("pattern,category,priority\nCASINO,gambling,1\n"))

    def test_unknown_kind_rejected(self):
        with self.assertRaises(InvalidInputError):
            load_category_rules_csv(self._write("pattern,category,priority,kind\nCASINO,other,1,glob\n"))

    def test_bad_priority_rejected(self):
        with self.assertRaises(InvalidInputError):
            load_category_rules_csv(self._write("pattern,category,priority\nCASINO,other,high\n"))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_category_rules_csv(os.path.join(self.test_dir, "missing.csv"))


class TestSettings(unittest.TestCase):
    """Test environment-driven settings."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()
        self.assertIsNone(settings.ledger_url)
        self.assertIsNone(settings.aggregator_url)
        self.assertEqual(settings.sync_workers, 4)
        self.assertEqual(settings.log_level, "INFO")

    def test_overrides(self):
        env = {
            "TWIN_LEDGER_URL": "https://ledger.example",
            "TWIN_SYNC_WORKERS": "8",
            "TWIN_LEDGER_TIMEOUT": "2.5",
            "TWIN_LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()
        self.assertEqual(settings.ledger_url, "https://ledger.example")
        self.assertEqual(settings.sync_workers, 8)
        self.assertEqual(settings.ledger_timeout_seconds, 2.5)
        self.assertEqual(settings.log_level, "DEBUG")


class TestBuildService(unittest.TestCase):
    """Test service wiring from settings."""

    def test_in_memory_collaborators_without_urls(self):
        with self.assertLogs("twin_engine.service", level="WARNING"):
            service = build_service(Settings())
        try:
            self.assertIsInstance(service.anchor.ledger, InMemoryLedger)
            self.assertIsInstance(service.coordinator.aggregator, InMemoryAggregator)
            self.assertIn("all", service.cohorts.cohorts)
        finally:
            service.shutdown()

    def test_custom_rules_file(self):
        test_dir = tempfile.mkdtemp()
        try:
            path = os.path.join(test_dir, "rules.csv")
            with open(path, 'w', encoding='utf-8') as f:
                f.write("pattern,category,priority\ncorner deli,dining,1\n")
            service = build_service(Settings(category_rules_csv=path))
            try:
                self.assertEqual(len(service.coordinator.resolver.rules), 1)
            finally:
                service.shutdown()
        finally:
            shutil.rmtree(test_dir)


if __name__ == '__main__':
    unittest.main()
