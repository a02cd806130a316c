"""
Sync Coordinator.

Turns aggregator change notifications into twin refreshes. Each twin has its
own lane (a lock plus a FIFO of pending runs): a second event for a busy twin
waits its turn, while different twins refresh concurrently. A run either
commits a new snapshot and swaps in the merged transaction set, or changes
nothing.
"""

import hashlib
import json
import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from ..categorisation.engine import CategoryResolver
from ..config.scoring_config import SYNC_CONFIG
from ..exceptions import AggregatorError, ConsistencyError
from ..retry import call_with_backoff
from ..scoring.scoring_engine import ScoringEngine
from ..snapshots.store import SnapshotStore
from ..verification.anchor import VerificationAnchor
from .repository import TransactionRepository

logger = logging.getLogger(__name__)

MANUAL_WEBHOOK_TYPE = "MANUAL"
MANUAL_WEBHOOK_CODE = "USER_TRIGGERED"
MAX_REQUEUES = 5
REQUEUE_DELAY_SECONDS = 0.05


class SyncStatus(Enum):
    """Sync run lifecycle."""
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class ChangeEvent:
    """A notification that a twin's bank data changed."""
    twin_id: str
    event_id: Optional[str] = None
    webhook_type: str = SYNC_CONFIG["webhook_type"]
    webhook_code: str = ""
    new_transactions: int = 0
    removed_transaction_ids: List[str] = field(default_factory=list)
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def idempotency_key(self) -> str:
        """
        SHA-256 of the event's own identifier, or of its body when it has none.

        Body keys only coalesce notifications that arrive while an earlier one
        is still queued; see ``SyncCoordinator.handle_event``.
        """
        source = self.event_id
        if not source:
            source = json.dumps(self.body, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(source.encode("utf-8")).hexdigest()


@dataclass
class SyncRun:
    """One processing attempt for a change event."""
    id: str
    twin_id: str
    trigger_event_id: Optional[str]
    idempotency_key: str
    status: SyncStatus = SyncStatus.RECEIVED
    webhook_type: str = ""
    webhook_code: str = ""
    new_transaction_count: int = 0
    removed_transaction_count: int = 0
    notified_new_count: int = 0
    notified_removed_count: int = 0
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    processed_at: Optional[datetime] = None
    snapshot_id: Optional[str] = None
    requeues: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "twin_id": self.twin_id,
            "trigger_event_id": self.trigger_event_id,
            "idempotency_key": self.idempotency_key,
            "status": self.status.value,
            "webhook_type": self.webhook_type,
            "webhook_code": self.webhook_code,
            "new_transaction_count": self.new_transaction_count,
            "removed_transaction_count": self.removed_transaction_count,
            "notified_new_count": self.notified_new_count,
            "notified_removed_count": self.notified_removed_count,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "snapshot_id": self.snapshot_id,
        }


def parse_webhook(
    body: Dict[str, Any],
    twin_for_item: Callable[[str], Optional[str]],
    config: Optional[Dict] = None
) -> Optional[ChangeEvent]:
    """
    Turn an aggregator webhook body into a ChangeEvent.

    Returns None for webhooks that should not trigger a refresh: other
    webhook types, non-refresh codes, or items not linked to a twin.
    """
    config = config or SYNC_CONFIG
    webhook_type = body.get("webhook_type")
    webhook_code = body.get("webhook_code")
    item_id = body.get("item_id")

    if webhook_type != config["webhook_type"]:
        return None
    if webhook_code not in config["refresh_codes"]:
        return None

    twin_id = twin_for_item(item_id) if item_id else None
    if not twin_id:
        logger.warning("No twin linked to item %s", item_id)
        return None

    removed = [str(r) for r in body.get("removed_transactions") or []]
    return ChangeEvent(
        twin_id=twin_id,
        event_id=body.get("webhook_id") or body.get("event_id"),
        webhook_type=webhook_type,
        webhook_code=webhook_code,
        new_transactions=int(body.get("new_transactions") or 0),
        removed_transaction_ids=removed,
        body=body,
    )


class _Lane:
    """Per-twin serialisation state."""

    def __init__(self):
        self.lock = threading.Lock()
        self.queue: Deque[SyncRun] = deque()
        self.scheduled = False


class SyncCoordinator:
    """Processes change events into committed snapshots, one run per twin at a time."""

    def __init__(
        self,
        aggregator,
        repository: TransactionRepository,
        resolver: CategoryResolver,
        engine: ScoringEngine,
        store: SnapshotStore,
        anchor: VerificationAnchor,
        token_provider: Optional[Callable[[str], str]] = None,
        executor: Optional[Executor] = None,
        config: Optional[Dict] = None,
        sleep: Callable[[float], None] = time.sleep,
        analysis_window_months: Optional[int] = None,
    ):
        """
        Args:
            aggregator: Object with ``fetch_transactions`` and ``fetch_accounts``
            repository: Committed per-twin transaction state
            resolver: Category resolver for new and changed rows
            engine: Scoring engine
            store: Snapshot store
            anchor: Verification anchor (used fire-and-forget)
            token_provider: Maps a twin id to its aggregator access token
            executor: Runs lanes in the background; runs inline when None
            config: Retry settings (defaults to SYNC_CONFIG)
            sleep: Sleep function used between retries
            analysis_window_months: Window passed to the scoring engine
        """
        self.aggregator = aggregator
        self.repository = repository
        self.resolver = resolver
        self.engine = engine
        self.store = store
        self.anchor = anchor
        self.token_provider = token_provider or (lambda twin_id: twin_id)
        self.executor = executor
        self.config = config or SYNC_CONFIG
        self._sleep = sleep
        self.analysis_window_months = analysis_window_months

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._lanes: Dict[str, _Lane] = {}
        self._runs_by_key: Dict[str, SyncRun] = {}
        self._runs_by_twin: Dict[str, List[SyncRun]] = {}

    # ----------------------------
    # Intake
    # ----------------------------
    def handle_event(self, event: ChangeEvent) -> SyncRun:
        """
        Register a change event and schedule its run.

        Repeat deliveries of the same event return the existing run. An event
        without its own id is only folded into a run that has not started yet:
        that run fetches everything since the cursor, while a run already
        fetching or finished may have missed the change being announced.
        """
        key = event.idempotency_key
        with self._lock:
            existing = self._runs_by_key.get(key)
            if existing and (event.event_id or existing.status == SyncStatus.RECEIVED):
                logger.info("Duplicate event %s for twin %s; returning run %s",
                            event.event_id, event.twin_id, existing.id)
                return existing

            run = SyncRun(
                id=str(uuid.uuid4()),
                twin_id=event.twin_id,
                trigger_event_id=event.event_id,
                idempotency_key=key,
                webhook_type=event.webhook_type,
                webhook_code=event.webhook_code,
                notified_new_count=event.new_transactions,
                notified_removed_count=len(event.removed_transaction_ids),
            )
            self._runs_by_key[key] = run
            self._runs_by_twin.setdefault(event.twin_id, []).append(run)

            lane = self._lanes.setdefault(event.twin_id, _Lane())
            lane.queue.append(run)
            start = not lane.scheduled
            lane.scheduled = True

        logger.info("Run %s received for twin %s (%s/%s)",
                    run.id, run.twin_id, event.webhook_type, event.webhook_code)
        if start:
            self._schedule(event.twin_id)
        return run

    def regenerate(self, twin_id: str) -> SyncRun:
        """Enqueue a refresh that is not tied to an aggregator notification."""
        event = ChangeEvent(
            twin_id=twin_id,
            event_id=f"regenerate:{uuid.uuid4()}",
            webhook_type=MANUAL_WEBHOOK_TYPE,
            webhook_code=MANUAL_WEBHOOK_CODE,
        )
        return self.handle_event(event)

    def _schedule(self, twin_id: str):
        if self.executor is None:
            self._drain(twin_id)
        else:
            self.executor.submit(self._drain, twin_id)

    # ----------------------------
    # Lane processing
    # ----------------------------
    def _drain(self, twin_id: str):
        """Process a twin's queued runs in arrival order."""
        while True:
            with self._lock:
                lane = self._lanes[twin_id]
                if not lane.queue:
                    lane.scheduled = False
                    self._idle.notify_all()
                    return
                run = lane.queue.popleft()

            try:
                self._process(run, lane)
            except ConsistencyError as exc:
                self._requeue(run, lane, exc)
            except Exception as exc:
                # Worker boundary: a run failure must not kill the lane
                logger.error("Sync run %s crashed", run.id, exc_info=True)
                self._finish(run, SyncStatus.FAILED, error_message=str(exc))

    def _requeue(self, run: SyncRun, lane: _Lane, exc: ConsistencyError):
        with self._lock:
            run.requeues += 1
            if run.requeues <= MAX_REQUEUES:
                run.status = SyncStatus.RECEIVED
                lane.queue.appendleft(run)
                logger.warning("Run %s re-queued (%s)", run.id, exc)
                requeued = True
            else:
                requeued = False
        if requeued:
            self._sleep(REQUEUE_DELAY_SECONDS)
        else:
            self._finish(run, SyncStatus.FAILED, error_message=f"Gave up after {MAX_REQUEUES} re-queues: {exc}")

    def _begin(self, run: SyncRun):
        with self._lock:
            busy = [
                other for other in self._runs_by_twin.get(run.twin_id, [])
                if other is not run and other.status == SyncStatus.PROCESSING
            ]
            if busy:
                raise ConsistencyError(f"Run {busy[0].id} is already processing twin {run.twin_id}")
            run.status = SyncStatus.PROCESSING

    def _finish(self, run: SyncRun, status: SyncStatus, error_message: Optional[str] = None, **counts):
        with self._lock:
            run.status = status
            run.error_message = error_message
            run.processed_at = datetime.now(timezone.utc)
            for name, value in counts.items():
                setattr(run, name, value)

    def _process(self, run: SyncRun, lane: _Lane):
        if not lane.lock.acquire(blocking=False):
            raise ConsistencyError(f"Twin {run.twin_id} lane is locked")
        try:
            self._begin(run)
            try:
                self._execute(run)
            except Exception as exc:
                logger.error("Sync run %s for twin %s failed: %s", run.id, run.twin_id, exc, exc_info=True)
                self._finish(run, SyncStatus.FAILED, error_message=f"{type(exc).__name__}: {exc}")
        finally:
            lane.lock.release()

    def _fetch(self, func, description: str):
        return call_with_backoff(
            func,
            max_attempts=self.config["fetch_max_attempts"],
            base_delay=self.config["fetch_base_delay_seconds"],
            max_delay=self.config["fetch_max_delay_seconds"],
            retry_on=(AggregatorError,),
            sleep=self._sleep,
            description=description,
        )

    def _execute(self, run: SyncRun):
        twin_id = run.twin_id
        token = self.token_provider(twin_id)
        state = self.repository.get(twin_id)

        accounts = self._fetch(lambda: self.aggregator.fetch_accounts(token), f"Account fetch for {twin_id}")
        delta = self._fetch(
            lambda: self.aggregator.fetch_transactions(token, state.cursor),
            f"Transaction fetch for {twin_id}",
        )

        # Merge into a copy; the committed state is untouched until the end
        merged = state.by_id()
        removed = 0
        for txn_id in delta.removed:
            if merged.pop(txn_id, None) is not None:
                removed += 1
        changed = delta.added + delta.modified
        for txn in changed:
            merged[txn.id] = self.resolver.categorize(txn.with_updates(twin_id=twin_id))

        transactions = self.resolver.income_detector.mark_recurring(
            sorted(merged.values(), key=lambda t: (t.date, t.id))
        )
        result = self.engine.score(transactions, accounts, self.analysis_window_months)
        snapshot = self.store.commit(twin_id, result)
        self.repository.replace(twin_id, transactions, delta.next_cursor, accounts)

        self._finish(
            run,
            SyncStatus.COMPLETED,
            new_transaction_count=len(delta.added),
            removed_transaction_count=removed,
            snapshot_id=snapshot.id,
        )
        logger.info("Run %s completed: +%d ~%d -%d, snapshot %s",
                    run.id, len(delta.added), len(delta.modified), removed, snapshot.id)

        try:
            self.anchor.anchor_async(snapshot)
        except RuntimeError:
            # Executor shut down; the snapshot stays current and unverified
            logger.error("Could not schedule anchoring for snapshot %s", snapshot.id, exc_info=True)

    # ----------------------------
    # Queries
    # ----------------------------
    def runs(self, twin_id: str) -> List[SyncRun]:
        """Runs for a twin, newest first."""
        with self._lock:
            return list(reversed(self._runs_by_twin.get(twin_id, [])))

    def latest_run(self, twin_id: str) -> Optional[SyncRun]:
        with self._lock:
            runs = self._runs_by_twin.get(twin_id)
            return runs[-1] if runs else None

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no lane has queued or running work."""
        with self._idle:
            return self._idle.wait_for(
                lambda: not any(lane.scheduled for lane in self._lanes.values()),
                timeout=timeout,
            )

    def dashboard(self, twin_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Sync totals, health and recent runs for a twin."""
        now = now or datetime.now(timezone.utc)
        runs = self.runs(twin_id)
        last = runs[0] if runs else None

        health = "offline"
        if last:
            hours_since = (now - last.created_at).total_seconds() / 3600
            if hours_since < 48 and last.status != SyncStatus.FAILED:
                health = "healthy"
            elif hours_since < 168:
                health = "degraded"

        last_sync = None
        if last:
            last_sync = (last.processed_at or last.created_at).isoformat()

        return {
            "twin_id": twin_id,
            "last_sync_at": last_sync,
            "total_syncs": len(runs),
            "successful_syncs": sum(1 for r in runs if r.status == SyncStatus.COMPLETED),
            "failed_syncs": sum(1 for r in runs if r.status == SyncStatus.FAILED),
            "transactions_ingested": sum(r.new_transaction_count for r in runs),
            "sync_health": health,
            "next_expected_sync": (last.created_at + timedelta(hours=24)).isoformat() if last else None,
            "recent_runs": [r.to_dict() for r in runs[:20]],
        }
