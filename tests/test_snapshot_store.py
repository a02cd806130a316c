"""
Tests for content hashing and the append-only snapshot store.
"""

import json
import os
import shutil
import tempfile
import unittest

from twin_engine.scoring.scoring_engine import (
    PillarScores,
    ScoreResult,
    compute_lending_readiness,
    compute_overall_score,
)
from twin_engine.snapshots.hashing import canonical_payload, content_hash
from twin_engine.snapshots.store import SNAPSHOT_LOG_FILE, SnapshotStore, TwinSnapshot


def _result(income=70.0, spending=60.0, debt=80.0, resilience=55.0, growth=40.0, count=120):
    pillars = PillarScores(income, spending, debt, resilience, growth)
    return ScoreResult(
        pillar_scores=pillars,
        lending_readiness=compute_lending_readiness(pillars),
        overall_score=compute_overall_score(pillars),
        transaction_count=count,
        analysis_window_months=12,
        months_analysed=12,
    )


class TestContentHash(unittest.TestCase):
    """Test canonical hashing."""

    def _payload(self, pillars, overall=61.5):
        return canonical_payload(
            pillar_scores=pillars,
            overall_score=overall,
            lending_readiness={"personal": 60, "auto": 55.5, "mortgage": 40, "small_business": 30},
            transaction_count=10,
            analysis_window_months=12,
        )

    def test_hash_independent_of_key_order(self):
        forward = {"income_stability": 70, "spending_discipline": 60}
        backward = {"spending_discipline": 60, "income_stability": 70}
        self.assertEqual(content_hash(self._payload(forward)), content_hash(self._payload(backward)))

    def test_integer_and_float_scores_hash_alike(self):
        as_int = {"income_stability": 70}
        as_float = {"income_stability": 70.0}
        self.assertEqual(content_hash(self._payload(as_int)), content_hash(self._payload(as_float)))

    def test_any_score_change_alters_hash(self):
        base = content_hash(self._payload({"income_stability": 70.0}))
        nudged = content_hash(self._payload({"income_stability": 70.01}))
        self.assertNotEqual(base, nudged)

    def test_hash_is_sha256_hex(self):
        digest = content_hash(self._payload({"income_stability": 70}))
        self.assertEqual(len(digest), 64)
        int(digest, 16)


class TestSnapshotStore(unittest.TestCase):
    """Test snapshot commit and lookup."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = SnapshotStore()

    def test_commit_becomes_current(self):
        self.assertIsNone(self.store.current("twin-1"))
        first = self.store.commit("twin-1", _result())
        second = self.store.commit("twin-1", _result(income=75.0))
        self.assertEqual(self.store.current("twin-1").id, second.id)
        self.assertNotEqual(first.id, second.id)

    def test_history_newest_first(self):
        ids = [self.store.commit("twin-1", _result(income=60.0 + i)).id for i in range(3)]
        history = self.store.history("twin-1")
        self.assertEqual([s.id for s in history], list(reversed(ids)))
        self.assertEqual(len(self.store.history("twin-1", limit=2)), 2)

    def test_twins_are_isolated(self):
        self.store.commit("twin-1", _result())
        self.store.commit("twin-2", _result(income=10.0))
        self.assertEqual(len(self.store.history("twin-1")), 1)
        self.assertEqual(self.store.twin_ids(), ["twin-1", "twin-2"])

    def test_lookup_by_id_and_hash(self):
        snapshot = self.store.commit("twin-1", _result())
        self.assertIs(self.store.get(snapshot.id), snapshot)
        self.assertEqual([s.id for s in self.store.find_by_hash(snapshot.content_hash)], [snapshot.id])
        self.assertEqual(self.store.find_by_hash("0" * 64), [])

    def test_stored_hash_matches_recomputation(self):
        snapshot = self.store.commit("twin-1", _result())
        self.assertEqual(snapshot.compute_hash(), snapshot.content_hash)

    def test_overall_always_derived_from_pillars(self):
        snapshot = self.store.commit("twin-1", _result())
        self.assertEqual(snapshot.overall_score, compute_overall_score(snapshot.pillar_scores))

    def test_same_scores_same_hash(self):
        """Two snapshots of identical scores share a content hash but not an id."""
        first = self.store.commit("twin-1", _result())
        second = self.store.commit("twin-1", _result())
        self.assertEqual(first.content_hash, second.content_hash)
        self.assertNotEqual(first.id, second.id)

    def test_round_trip_through_dict(self):
        snapshot = self.store.commit("twin-1", _result())
        restored = TwinSnapshot.from_dict(snapshot.to_dict())
        self.assertEqual(restored, snapshot)


class TestSnapshotPersistence(unittest.TestCase):
    """Test the JSON-lines snapshot log."""

    def setUp(self):
        """Set up test fixtures."""
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.test_dir)

    def test_reload_restores_current(self):
        store = SnapshotStore(self.test_dir)
        store.commit("twin-1", _result())
        latest = store.commit("twin-1", _result(income=90.0))

        reloaded = SnapshotStore(self.test_dir)
        self.assertEqual(reloaded.current("twin-1").id, latest.id)
        self.assertEqual(len(reloaded.history("twin-1")), 2)
        self.assertEqual(reloaded.rejected, [])

    def test_tampered_snapshot_rejected_on_load(self):
        store = SnapshotStore(self.test_dir)
        honest = store.commit("twin-1", _result())
        tampered = store.commit("twin-1", _result(income=50.0))

        log_file = os.path.join(self.test_dir, SNAPSHOT_LOG_FILE)
        with open(log_file, 'r', encoding='utf-8') as f:
            lines = [json.loads(line) for line in f if line.strip()]
        lines[1]["pillar_scores"]["income_stability"] = 99.0
        with open(log_file, 'w', encoding='utf-8') as f:
            for row in lines:
                f.write(json.dumps(row) + '\n')

        reloaded = SnapshotStore(self.test_dir)
        self.assertEqual(reloaded.rejected, [tampered.id])
        self.assertEqual(reloaded.current("twin-1").id, honest.id)

    def test_torn_last_line_skipped_on_load(self):
        """A half-written record from an interrupted append does not stop start-up."""
        store = SnapshotStore(self.test_dir)
        first = store.commit("twin-1", _result())

        log_file = os.path.join(self.test_dir, SNAPSHOT_LOG_FILE)
        with open(log_file, 'a', encoding='utf-8') as f:
            f.write('{"id": "x", "twin_')

        with self.assertLogs("twin_engine.snapshots.store", level="ERROR"):
            reloaded = SnapshotStore(self.test_dir)
        self.assertEqual(reloaded.rejected, ["line 2"])
        self.assertEqual(reloaded.current("twin-1").id, first.id)

        # The next append starts on a fresh line and survives another reload
        second = reloaded.commit("twin-1", _result(income=50.0))
        with self.assertLogs("twin_engine.snapshots.store", level="ERROR"):
            again = SnapshotStore(self.test_dir)
        self.assertEqual(again.rejected, ["line 2"])
        self.assertEqual(again.current("twin-1").id, second.id)
        self.assertEqual(len(again.history("twin-1")), 2)

    def test_malformed_record_skipped_on_load(self):
        store = SnapshotStore(self.test_dir)
        store.commit("twin-1", _result())
        log_file = os.path.join(self.test_dir, SNAPSHOT_LOG_FILE)
        with open(log_file, 'a', encoding='utf-8') as f:
            f.write('{"id": "y"}\n')
        newest = store.commit("twin-1", _result(income=65.0))

        with self.assertLogs("twin_engine.snapshots.store", level="ERROR"):
            reloaded = SnapshotStore(self.test_dir)
        self.assertEqual(reloaded.rejected, ["line 2"])
        self.assertEqual(reloaded.current("twin-1").id, newest.id)


if __name__ == '__main__':
    unittest.main()
