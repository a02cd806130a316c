"""
Twin Service.

Facade over the pipeline components used by the HTTP layer: current twin
view with verification and refresh status, history, public verification,
regeneration, webhook intake and the read-only analytics.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from .analytics.anomalies import detect_anomalies
from .analytics.benchmark import CohortRegistry, benchmark
from .analytics.explain import explain_all, explain_pillar
from .analytics.stress import StressSimulator, resolve_scenario
from .analytics.time_machine import TimeMachine, resolve_modifiers
from .categorisation.engine import CategoryResolver
from .config.rule_loader import load_category_rules_csv
from .config.scoring_config import ANCHOR_CONFIG, PILLARS
from .config.settings import Settings
from .exceptions import InvalidInputError, TwinNotFoundError
from .narrative import NarrativeService
from .scoring.scoring_engine import ScoringEngine
from .snapshots.store import SnapshotStore, TwinSnapshot
from .sync.aggregator import HttpAggregatorClient, InMemoryAggregator
from .sync.coordinator import SyncCoordinator, SyncStatus, parse_webhook
from .sync.repository import TransactionRepository
from .verification.anchor import VerificationAnchor, VerificationRecord
from .verification.ledger import HttpLedgerClient, InMemoryLedger

logger = logging.getLogger(__name__)

REFRESH_FAILED_MESSAGE = "refresh failed, showing last known profile"
REFRESH_IN_PROGRESS_MESSAGE = "refresh in progress"
REFRESH_OK_MESSAGE = "up to date"

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


class TwinService:
    """Entry point for everything the API exposes."""

    def __init__(
        self,
        store: SnapshotStore,
        anchor: VerificationAnchor,
        coordinator: SyncCoordinator,
        repository: TransactionRepository,
        cohorts: Optional[CohortRegistry] = None,
        narrative: Optional[NarrativeService] = None,
        engine: Optional[ScoringEngine] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.anchor = anchor
        self.coordinator = coordinator
        self.repository = repository
        self.cohorts = cohorts or CohortRegistry()
        self.narrative_service = narrative or NarrativeService()
        self.engine = engine or ScoringEngine()
        self.stress_simulator = StressSimulator(self.engine)
        self.time_machine = TimeMachine(self.engine)
        self._executor = executor

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self.anchor.shutdown()

    # ----------------------------
    # Twin view
    # ----------------------------
    def current_snapshot(self, twin_id: str) -> TwinSnapshot:
        """
        Raises:
            TwinNotFoundError: No snapshot has been committed for the twin
        """
        snapshot = self.store.current(twin_id)
        if snapshot is None:
            raise TwinNotFoundError(f"No profile for twin {twin_id}")
        return snapshot

    def verification_for(self, snapshot: TwinSnapshot) -> Dict:
        record = self.anchor.record_for(snapshot.id)
        if record is None:
            record = VerificationRecord(snapshot_id=snapshot.id, content_hash=snapshot.content_hash)
        return record.to_dict()

    def refresh_status(self, twin_id: str) -> Dict:
        run = self.coordinator.latest_run(twin_id)
        if run is None:
            return {"status": None, "message": REFRESH_OK_MESSAGE, "run": None}
        if run.status == SyncStatus.FAILED:
            message = REFRESH_FAILED_MESSAGE
        elif run.status in (SyncStatus.RECEIVED, SyncStatus.PROCESSING):
            message = REFRESH_IN_PROGRESS_MESSAGE
        else:
            message = REFRESH_OK_MESSAGE
        return {"status": run.status.value, "message": message, "run": run.to_dict()}

    def get_twin(self, twin_id: str) -> Dict:
        """Current snapshot with verification and refresh status."""
        snapshot = self.current_snapshot(twin_id)
        return {
            "snapshot": snapshot.to_dict(),
            "verification": self.verification_for(snapshot),
            "refresh": self.refresh_status(twin_id),
        }

    def history(self, twin_id: str, limit: Optional[int] = None) -> List[Dict]:
        """
        Snapshots newest first, each with its change against the one before it.
        """
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0):
            raise InvalidInputError(f"limit must be a positive integer, got {limit!r}")
        self.current_snapshot(twin_id)

        snapshots = self.store.history(twin_id)
        entries = []
        for i, snapshot in enumerate(snapshots[:limit] if limit else snapshots):
            entry = snapshot.to_dict()
            previous = snapshots[i + 1] if i + 1 < len(snapshots) else None
            if previous is None:
                entry["deltas"] = None
            else:
                before = previous.pillar_scores.to_dict()
                after = snapshot.pillar_scores.to_dict()
                entry["deltas"] = {
                    "overall_score": round(snapshot.overall_score - previous.overall_score, 2),
                    "pillar_scores": {name: round(after[name] - before[name], 2) for name in PILLARS},
                }
            entry["verification"] = self.verification_for(snapshot)
            entries.append(entry)
        return entries

    def verify(self, content_hash: str) -> Dict:
        """
        Public verification of a content hash against the ledger.

        Raises:
            InvalidInputError: Not a SHA-256 hex digest
            LedgerError: Ledger unreachable
        """
        content_hash = (content_hash or "").lower()
        if not _HASH_RE.match(content_hash):
            raise InvalidInputError("content hash must be a 64-character hex SHA-256 digest")
        result = self.anchor.verify(content_hash).to_dict()
        matches = self.store.find_by_hash(content_hash)
        result["snapshot_found"] = bool(matches)
        if matches:
            result["created_at"] = matches[0].created_at.isoformat()
        return result

    # ----------------------------
    # Sync
    # ----------------------------
    def link_account(self, twin_id: str, access_token: str, item_id: Optional[str] = None):
        self.repository.link_item(twin_id, item_id=item_id, access_token=access_token)

    def regenerate(self, twin_id: str) -> Dict:
        return self.coordinator.regenerate(twin_id).to_dict()

    def handle_webhook(self, body: Dict) -> Dict:
        """Accept an aggregator change notification; ignored types are acknowledged but not run."""
        if not isinstance(body, dict):
            raise InvalidInputError("Webhook body must be a JSON object")
        event = parse_webhook(body, self.repository.twin_for_item)
        if event is None:
            return {"accepted": False, "run": None}
        run = self.coordinator.handle_event(event)
        return {"accepted": True, "run": run.to_dict()}

    def sync_dashboard(self, twin_id: str) -> Dict:
        return self.coordinator.dashboard(twin_id)

    # ----------------------------
    # Analytics
    # ----------------------------
    def stress_test(self, twin_id: str, payload: Dict) -> Dict:
        if not isinstance(payload, dict) or not payload.get("scenario_id"):
            raise InvalidInputError("scenario_id is required")
        scenario = resolve_scenario(
            payload["scenario_id"],
            income_reduction_percent=payload.get("income_reduction_percent"),
            expense_increase_percent=payload.get("expense_increase_percent"),
            emergency_expense=payload.get("emergency_expense"),
            label=payload.get("label"),
        )
        snapshot = self.current_snapshot(twin_id)
        result = self.stress_simulator.simulate(
            snapshot,
            self.repository.transactions(twin_id),
            self.repository.accounts(twin_id),
            scenario,
        )
        return result.to_dict()

    def time_machine_projection(self, twin_id: str, payload: Optional[Dict] = None) -> Dict:
        payload = payload or {}
        if not isinstance(payload, dict):
            raise InvalidInputError("Projection request must be a JSON object")
        modifiers = resolve_modifiers(payload.get("modifiers"))
        snapshot = self.current_snapshot(twin_id)
        result = self.time_machine.project(
            snapshot,
            self.repository.transactions(twin_id),
            self.repository.accounts(twin_id),
            modifiers,
            payload.get("months_forward"),
        )
        return result.to_dict()

    def anomalies(self, twin_id: str, params: Optional[Dict] = None) -> Dict:
        snapshot = self.current_snapshot(twin_id)
        return detect_anomalies(snapshot, self.repository.transactions(twin_id), params).to_dict()

    def benchmark(self, twin_id: str, demographics: Optional[Dict[str, str]] = None) -> Dict:
        snapshot = self.current_snapshot(twin_id)
        return benchmark(snapshot, self.repository.transactions(twin_id), self.cohorts, demographics).to_dict()

    def pillar_explanations(self, twin_id: str, pillar: Optional[str] = None, limit: Optional[int] = None) -> Dict:
        snapshot = self.current_snapshot(twin_id)
        transactions = self.repository.transactions(twin_id)
        accounts = self.repository.accounts(twin_id)
        if pillar:
            explanations = [explain_pillar(snapshot, transactions, pillar, limit, accounts, self.engine)]
        else:
            explanations = explain_all(snapshot, transactions, limit, accounts)
        return {"snapshot_id": snapshot.id, "pillars": [e.to_dict() for e in explanations]}

    def narrative(self, twin_id: str, audience: str = "consumer") -> Dict:
        return self.narrative_service.narrate(self.current_snapshot(twin_id), audience)


def build_service(
    settings: Optional[Settings] = None,
    generate_narrative: Optional[Callable[[Dict], str]] = None,
) -> TwinService:
    """
    Wire up a TwinService from runtime settings.

    Collaborators without a configured URL run in-process.
    """
    settings = settings or Settings.from_env()

    rules = None
    if settings.category_rules_csv:
        rules = load_category_rules_csv(settings.category_rules_csv)
    resolver = CategoryResolver(rules=rules)

    cohorts = CohortRegistry()
    if settings.cohort_stats_json:
        cohorts = CohortRegistry.from_json(settings.cohort_stats_json)

    if settings.ledger_url:
        ledger = HttpLedgerClient(
            settings.ledger_url,
            api_key=settings.ledger_api_key,
            timeout_seconds=settings.ledger_timeout_seconds,
        )
    else:
        logger.warning("TWIN_LEDGER_URL not set; anchoring to an in-memory ledger")
        ledger = InMemoryLedger()

    if settings.aggregator_url:
        aggregator = HttpAggregatorClient(
            settings.aggregator_url,
            client_id=settings.aggregator_client_id,
            secret=settings.aggregator_secret,
            timeout_seconds=settings.aggregator_timeout_seconds,
        )
    else:
        logger.warning("TWIN_AGGREGATOR_URL not set; using an in-memory aggregator")
        aggregator = InMemoryAggregator()

    store = SnapshotStore(settings.snapshot_dir)
    repository = TransactionRepository()
    engine = ScoringEngine()
    anchor = VerificationAnchor(ledger, config={**ANCHOR_CONFIG, "background_workers": settings.anchor_workers})
    executor = ThreadPoolExecutor(max_workers=settings.sync_workers, thread_name_prefix="sync")
    coordinator = SyncCoordinator(
        aggregator,
        repository,
        resolver,
        engine,
        store,
        anchor,
        token_provider=lambda twin_id: repository.access_token(twin_id) or twin_id,
        executor=executor,
    )
    return TwinService(
        store,
        anchor,
        coordinator,
        repository,
        cohorts=cohorts,
        narrative=NarrativeService(generate_narrative),
        engine=engine,
        executor=executor,
    )
