"""
Tests for the Financial Twin HTTP API.
"""

import unittest
from datetime import date

from twin_api import create_app
from twin_engine.categorisation.engine import CategoryResolver
from twin_engine.models import Account, Transaction
from twin_engine.scoring.scoring_engine import ScoringEngine
from twin_engine.service import REFRESH_FAILED_MESSAGE, TwinService
from twin_engine.snapshots.store import SnapshotStore
from twin_engine.sync.aggregator import InMemoryAggregator
from twin_engine.sync.coordinator import SyncCoordinator
from twin_engine.sync.repository import TransactionRepository
from twin_engine.verification.anchor import VerificationAnchor
from twin_engine.verification.ledger import InMemoryLedger


def _feed():
    transactions = []
    for month in (1, 2, 3, 4):
        transactions.extend([
            Transaction(f"pay-{month}", "", date(2024, month, 1), -420000, "ACME CORP PAYROLL"),
            Transaction(f"rent-{month}", "", date(2024, month, 2), 150000, "OAK PROPERTY MGMT"),
            Transaction(f"food-{month}", "", date(2024, month, 8), 45000, "KROGER #221"),
            Transaction(f"fun-{month}", "", date(2024, month, 18), 20000 * month, "AMAZON MKTPLACE"),
        ])
    return transactions


class TestTwinAPI(unittest.TestCase):
    """Test API endpoints against in-memory collaborators."""

    def setUp(self):
        """Set up test fixtures."""
        self.aggregator = InMemoryAggregator()
        self.ledger = InMemoryLedger()
        self.store = SnapshotStore()
        self.repository = TransactionRepository()
        self.anchor = VerificationAnchor(self.ledger, sleep=lambda s: None)
        engine = ScoringEngine()
        coordinator = SyncCoordinator(
            self.aggregator,
            self.repository,
            CategoryResolver(),
            engine,
            self.store,
            self.anchor,
            token_provider=lambda twin_id: self.repository.access_token(twin_id) or twin_id,
            sleep=lambda s: None,
        )
        self.service = TwinService(self.store, self.anchor, coordinator, self.repository, engine=engine)
        self.service.link_account("twin-1", "tok-1", item_id="item-1")
        self.aggregator.set_accounts("tok-1", [Account(id="chk", balance=700000)])
        self.aggregator.add_transactions("tok-1", _feed())

        self.app = create_app(self.service)
        self.app.config['TESTING'] = True
        self.client = self.app.test_client()

    def tearDown(self):
        """Clean up test fixtures."""
        self.service.shutdown()

    def _regenerate(self):
        response = self.client.post('/twins/twin-1/regenerate')
        self.assertEqual(response.status_code, 202)
        return response.get_json()['run']

    # ----------------------------
    # Twin profile
    # ----------------------------
    def test_unknown_twin_returns_404(self):
        response = self.client.get('/twins/nobody')
        self.assertEqual(response.status_code, 404)
        self.assertIn('error', response.get_json())

    def test_regenerate_and_get_twin(self):
        run = self._regenerate()
        self.assertEqual(run['status'], 'COMPLETED')
        self.anchor.shutdown()

        data = self.client.get('/twins/twin-1').get_json()
        self.assertEqual(data['snapshot']['id'], run['snapshot_id'])
        self.assertEqual(data['snapshot']['transaction_count'], 16)
        self.assertTrue(data['verification']['verified'])
        self.assertEqual(data['refresh']['status'], 'COMPLETED')

    def test_failed_refresh_keeps_last_profile(self):
        first = self._regenerate()
        self.aggregator.fail_next(3)
        failed = self._regenerate()
        self.assertEqual(failed['status'], 'FAILED')

        data = self.client.get('/twins/twin-1').get_json()
        self.assertEqual(data['snapshot']['id'], first['snapshot_id'])
        self.assertEqual(data['refresh']['message'], REFRESH_FAILED_MESSAGE)

    def test_history_with_deltas(self):
        self._regenerate()
        self.aggregator.add_transactions("tok-1", [
            Transaction("bonus-4", "", date(2024, 4, 25), -300000, "ACME CORP PAYROLL"),
        ])
        self._regenerate()

        snapshots = self.client.get('/twins/twin-1/history').get_json()['snapshots']
        self.assertEqual(len(snapshots), 2)
        self.assertIsNotNone(snapshots[0]['deltas'])
        self.assertIsNone(snapshots[1]['deltas'])
        self.assertIn('income_stability', snapshots[0]['deltas']['pillar_scores'])

        limited = self.client.get('/twins/twin-1/history?limit=1').get_json()['snapshots']
        self.assertEqual(len(limited), 1)

    def test_history_bad_limit(self):
        self._regenerate()
        self.assertEqual(self.client.get('/twins/twin-1/history?limit=abc').status_code, 400)
        self.assertEqual(self.client.get('/twins/twin-1/history?limit=0').status_code, 400)

    # ----------------------------
    # Verification
    # ----------------------------
    def test_verify_anchored_hash(self):
        self._regenerate()
        self.anchor.shutdown()
        content_hash = self.store.current("twin-1").content_hash

        data = self.client.get(f'/verify/{content_hash}').get_json()
        self.assertTrue(data['valid'])
        self.assertTrue(data['snapshot_found'])

        unknown = self.client.get(f'/verify/{"a" * 64}').get_json()
        self.assertFalse(unknown['valid'])
        self.assertFalse(unknown['snapshot_found'])

    def test_verify_rejects_malformed_hash(self):
        self.assertEqual(self.client.get('/verify/not-a-hash').status_code, 400)

    def test_verify_ledger_unavailable(self):
        self.ledger.fail_next(1)
        response = self.client.get(f'/verify/{"b" * 64}')
        self.assertEqual(response.status_code, 503)

    # ----------------------------
    # Analytics
    # ----------------------------
    def test_stress_test(self):
        self._regenerate()
        response = self.client.post('/twins/twin-1/stress-test', json={'scenario_id': 'job_loss_6_months'})
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['scenario_id'], 'job_loss_6_months')
        self.assertIn('months_of_runway', data)

        custom = self.client.post('/twins/twin-1/stress-test', json={
            'scenario_id': 'custom', 'income_reduction_percent': 20, 'emergency_expense': 50000,
        })
        self.assertEqual(custom.status_code, 200)

    def test_stress_test_bad_requests(self):
        self._regenerate()
        self.assertEqual(self.client.post('/twins/twin-1/stress-test', json={}).status_code, 400)
        response = self.client.post('/twins/twin-1/stress-test', json={'scenario_id': 'meteor'})
        self.assertEqual(response.status_code, 400)

    def test_time_machine(self):
        self._regenerate()
        response = self.client.post('/twins/twin-1/time-machine', json={
            'modifiers': ['save_200', {'label': 'Side job', 'income_change_percent': 10}],
            'months_forward': 6,
        })
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['months_projected'], 6)
        self.assertEqual(len(data['projected_months']), 6)
        self.assertEqual(data['active_modifiers'], ['+200/month to savings', 'Side job'])
        self.assertEqual(len(self.store.history('twin-1')), 1)

        default = self.client.post('/twins/twin-1/time-machine')
        self.assertEqual(default.get_json()['months_projected'], 12)

    def test_time_machine_bad_requests(self):
        self._regenerate()
        bad_modifier = self.client.post('/twins/twin-1/time-machine', json={'modifiers': ['win_lottery']})
        self.assertEqual(bad_modifier.status_code, 400)
        bad_horizon = self.client.post('/twins/twin-1/time-machine', json={'months_forward': 100})
        self.assertEqual(bad_horizon.status_code, 400)
        self.assertEqual(self.client.post('/twins/nobody/time-machine', json={}).status_code, 404)

    def test_anomalies(self):
        self._regenerate()
        data = self.client.get('/twins/twin-1/anomalies').get_json()
        self.assertIn('health_score', data)
        self.assertEqual(data['months_analysed'], 4)

    def test_benchmark(self):
        self._regenerate()
        data = self.client.get('/twins/twin-1/benchmark?age_range=25-34').get_json()
        self.assertEqual(data['cohort_key'], 'all')
        self.assertTrue(data['fell_back'])
        self.assertIn('overall_score', data['metrics'])

    def test_pillar_explanations(self):
        self._regenerate()
        data = self.client.get('/twins/twin-1/pillar-explanations?pillar=spending_discipline&limit=2').get_json()
        self.assertEqual(len(data['pillars']), 1)
        self.assertEqual(len(data['pillars'][0]['influential_transactions']), 2)

        everything = self.client.get('/twins/twin-1/pillar-explanations').get_json()
        self.assertEqual(len(everything['pillars']), 5)

        self.assertEqual(self.client.get('/twins/twin-1/pillar-explanations?pillar=luck').status_code, 400)

    def test_narrative(self):
        self._regenerate()
        data = self.client.get('/twins/twin-1/narrative?audience=institution').get_json()
        self.assertEqual(data['source'], 'template')
        self.assertEqual(data['summary']['audience'], 'institution')
        self.assertEqual(self.client.get('/twins/twin-1/narrative?audience=press').status_code, 400)

    # ----------------------------
    # Sync
    # ----------------------------
    def test_webhook_accepted_once(self):
        body = {
            'webhook_type': 'TRANSACTIONS',
            'webhook_code': 'SYNC_UPDATES_AVAILABLE',
            'item_id': 'item-1',
            'webhook_id': 'wh-100',
        }
        first = self.client.post('/webhooks/aggregator', json=body)
        self.assertEqual(first.status_code, 202)
        second = self.client.post('/webhooks/aggregator', json=body)
        self.assertEqual(second.get_json()['run']['id'], first.get_json()['run']['id'])
        self.assertEqual(len(self.store.history("twin-1")), 1)

        dashboard = self.client.get('/twins/twin-1/sync').get_json()
        self.assertEqual(dashboard['total_syncs'], 1)
        self.assertEqual(dashboard['transactions_ingested'], 16)

    def test_webhook_ignored(self):
        response = self.client.post('/webhooks/aggregator', json={'webhook_type': 'ITEM', 'webhook_code': 'ERROR'})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.get_json()['accepted'])

    def test_webhook_requires_json(self):
        response = self.client.post('/webhooks/aggregator', data='hello', content_type='text/plain')
        self.assertEqual(response.status_code, 400)


if __name__ == '__main__':
    unittest.main()
