"""
Tests for ledger anchoring, public verification and the retry helper.
"""

import unittest

import httpx

from twin_engine.exceptions import (
    InvalidInputError,
    LedgerError,
    LedgerTimeoutError,
)
from twin_engine.retry import backoff_delays, call_with_backoff
from twin_engine.scoring.scoring_engine import (
    PillarScores,
    ScoreResult,
    compute_lending_readiness,
    compute_overall_score,
)
from twin_engine.snapshots.store import SnapshotStore
from twin_engine.verification.anchor import (
    STATUS_ANCHORED,
    STATUS_FAILED,
    VerificationAnchor,
)
from twin_engine.verification.ledger import HttpLedgerClient, InMemoryLedger


def _result():
    pillars = PillarScores(70, 60, 80, 55, 40)
    return ScoreResult(
        pillar_scores=pillars,
        lending_readiness=compute_lending_readiness(pillars),
        overall_score=compute_overall_score(pillars),
        transaction_count=42,
        analysis_window_months=12,
    )


class TestVerificationAnchor(unittest.TestCase):
    """Test anchoring with retries."""

    def setUp(self):
        """Set up test fixtures."""
        self.ledger = InMemoryLedger()
        self.sleeps = []
        self.anchor = VerificationAnchor(self.ledger, sleep=self.sleeps.append)
        self.store = SnapshotStore()
        self.snapshot = self.store.commit("twin-1", _result())

    def tearDown(self):
        """Clean up test fixtures."""
        self.anchor.shutdown()

    def test_anchor_success(self):
        record = self.anchor.anchor(self.snapshot)
        self.assertTrue(record.verified)
        self.assertEqual(record.status, STATUS_ANCHORED)
        self.assertEqual(record.ledger_transaction_id, "mem-00000001")
        self.assertEqual(record.attempts, 1)
        self.assertEqual(self.sleeps, [])

    def test_ledger_message_hashes_twin_id(self):
        self.anchor.anchor(self.snapshot)
        message = self.ledger.messages[0]
        self.assertEqual(message["profile_hash"], self.snapshot.content_hash)
        self.assertNotIn("twin-1", message.values())
        self.assertEqual(len(message["twin_id_hash"]), 64)

    def test_outage_leaves_snapshot_current_and_unverified(self):
        """Three ledger timeouts give up without touching the committed snapshot."""
        self.ledger.fail_next(3)
        record = self.anchor.anchor(self.snapshot)

        self.assertFalse(record.verified)
        self.assertEqual(record.status, STATUS_FAILED)
        self.assertTrue(record.error_reason.startswith("LedgerTimeoutError"))
        self.assertEqual(record.attempts, 3)
        self.assertEqual(self.sleeps, [0.5, 1.0])
        self.assertEqual(self.store.current("twin-1").id, self.snapshot.id)
        self.assertEqual(self.anchor.record_for(self.snapshot.id), record)

    def test_recovers_within_retry_budget(self):
        self.ledger.fail_next(2)
        record = self.anchor.anchor(self.snapshot)
        self.assertTrue(record.verified)
        self.assertEqual(record.attempts, 3)

    def test_verify_known_and_unknown_hash(self):
        self.anchor.anchor(self.snapshot)
        found = self.anchor.verify(self.snapshot.content_hash)
        self.assertTrue(found.valid)
        self.assertEqual(found.ledger_transaction_id, "mem-00000001")

        missing = self.anchor.verify("f" * 64)
        self.assertFalse(missing.valid)
        self.assertIsNone(missing.ledger_transaction_id)

    def test_verify_raises_when_ledger_unreachable(self):
        self.ledger.fail_next(1)
        with self.assertRaises(LedgerError):
            self.anchor.verify(self.snapshot.content_hash)

    def test_anchor_async(self):
        future = self.anchor.anchor_async(self.snapshot)
        record = future.result(timeout=5)
        self.assertTrue(record.verified)
        self.assertTrue(self.anchor.record_for(self.snapshot.id).verified)


class TestRetry(unittest.TestCase):
    """Test bounded exponential backoff."""

    def test_backoff_delays(self):
        self.assertEqual(list(backoff_delays(5, 0.5, 1.5)), [0.5, 1.0, 1.5, 1.5])
        self.assertEqual(list(backoff_delays(1, 0.5, 8.0)), [])

    def test_non_retryable_error_propagates_immediately(self):
        calls = []

        def fail():
            calls.append(1)
            raise InvalidInputError("bad")

        with self.assertRaises(InvalidInputError):
            call_with_backoff(fail, retry_on=(LedgerError,), sleep=lambda s: None)
        self.assertEqual(len(calls), 1)

    def test_returns_value_after_retry(self):
        outcomes = [LedgerTimeoutError("slow"), "ok"]

        def flaky():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        self.assertEqual(call_with_backoff(flaky, retry_on=(LedgerError,), sleep=lambda s: None), "ok")

    def test_invalid_attempt_count(self):
        with self.assertRaises(ValueError):
            call_with_backoff(lambda: None, max_attempts=0)


class TestHttpLedgerClient(unittest.TestCase):
    """Test the HTTP ledger client against a mock transport."""

    def _client(self, handler):
        transport = httpx.MockTransport(handler)
        return HttpLedgerClient(
            "http://ledger.test",
            client=httpx.Client(base_url="http://ledger.test", transport=transport),
        )

    def test_submit(self):
        def handler(request):
            self.assertEqual(request.url.path, "/anchors")
            return httpx.Response(200, json={"transaction_id": "0.0.1234@1", "timestamp": "2025-01-01T00:00:00Z"})

        receipt = self._client(handler).submit("a" * 64, "twin-1")
        self.assertEqual(receipt.transaction_id, "0.0.1234@1")
        self.assertEqual(receipt.content_hash, "a" * 64)

    def test_lookup_not_found(self):
        client = self._client(lambda request: httpx.Response(404))
        self.assertIsNone(client.lookup("b" * 64))

    def test_server_error_raises_ledger_error(self):
        client = self._client(lambda request: httpx.Response(500))
        with self.assertRaises(LedgerError):
            client.submit("c" * 64)

    def test_timeout_raises_ledger_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with self.assertRaises(LedgerTimeoutError):
            self._client(handler).lookup("d" * 64)

    def test_missing_transaction_id_rejected(self):
        client = self._client(lambda request: httpx.Response(200, json={"timestamp": "now"}))
        with self.assertRaises(LedgerError):
            client.submit("e" * 64)


if __name__ == '__main__':
    unittest.main()
