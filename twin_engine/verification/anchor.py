"""
Verification Anchor.

Submits snapshot content hashes to an append-only ledger so a third party can
later confirm a profile was not altered. Anchoring runs after commit and
never blocks or fails it: a ledger outage leaves the snapshot current with an
unverified record.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, replace
from typing import Callable, Dict, Optional

from ..config.scoring_config import ANCHOR_CONFIG
from ..exceptions import LedgerError
from ..retry import call_with_backoff
from ..snapshots.store import TwinSnapshot

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_ANCHORED = "anchored"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class VerificationRecord:
    """Anchoring outcome for one snapshot."""
    snapshot_id: str
    content_hash: str
    ledger_transaction_id: Optional[str] = None
    ledger_timestamp: Optional[str] = None
    verified: bool = False
    error_reason: Optional[str] = None
    attempts: int = 0
    status: str = STATUS_PENDING

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class VerificationResult:
    """Answer to a public verification lookup."""
    content_hash: str
    valid: bool
    ledger_transaction_id: Optional[str] = None
    ledger_timestamp: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


class VerificationAnchor:
    """Anchors snapshot hashes on a ledger with bounded retries."""

    def __init__(
        self,
        ledger,
        config: Optional[Dict] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            ledger: Object with ``submit(content_hash, twin_id)`` and ``lookup(content_hash)``
            config: Retry settings (defaults to ANCHOR_CONFIG)
            executor: Executor for background anchoring; one is created if None
            sleep: Sleep function used between retries
        """
        self.ledger = ledger
        self.config = config or ANCHOR_CONFIG
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config["background_workers"],
            thread_name_prefix="anchor",
        )
        self._sleep = sleep
        self._lock = threading.Lock()
        self._records: Dict[str, VerificationRecord] = {}

    def _store(self, record: VerificationRecord) -> VerificationRecord:
        with self._lock:
            self._records[record.snapshot_id] = record
        return record

    def anchor(self, snapshot: TwinSnapshot) -> VerificationRecord:
        """
        Anchor a snapshot's content hash, retrying with exponential backoff.

        Returns:
            VerificationRecord; ``verified`` is False with ``error_reason``
            set when every attempt failed
        """
        attempts = {"count": 0}

        def _submit():
            attempts["count"] += 1
            return self.ledger.submit(snapshot.content_hash, snapshot.twin_id)

        try:
            receipt = call_with_backoff(
                _submit,
                max_attempts=self.config["max_attempts"],
                base_delay=self.config["base_delay_seconds"],
                max_delay=self.config["max_delay_seconds"],
                retry_on=(LedgerError,),
                sleep=self._sleep,
                description=f"Anchor of snapshot {snapshot.id}",
            )
        except LedgerError as exc:
            logger.error("Anchoring snapshot %s failed: %s", snapshot.id, exc)
            return self._store(VerificationRecord(
                snapshot_id=snapshot.id,
                content_hash=snapshot.content_hash,
                verified=False,
                error_reason=f"{type(exc).__name__}: {exc}",
                attempts=attempts["count"],
                status=STATUS_FAILED,
            ))

        logger.info("Anchored snapshot %s as %s", snapshot.id, receipt.transaction_id)
        return self._store(VerificationRecord(
            snapshot_id=snapshot.id,
            content_hash=snapshot.content_hash,
            ledger_transaction_id=receipt.transaction_id,
            ledger_timestamp=receipt.timestamp,
            verified=True,
            attempts=attempts["count"],
            status=STATUS_ANCHORED,
        ))

    def anchor_async(self, snapshot: TwinSnapshot) -> "Future[VerificationRecord]":
        """Record a pending anchor and submit it on the background executor."""
        self._store(VerificationRecord(snapshot_id=snapshot.id, content_hash=snapshot.content_hash))
        return self._executor.submit(self._anchor_logged, snapshot)

    def _anchor_logged(self, snapshot: TwinSnapshot) -> VerificationRecord:
        try:
            return self.anchor(snapshot)
        except Exception as exc:
            logger.error("Unexpected anchoring error for snapshot %s", snapshot.id, exc_info=True)
            with self._lock:
                pending = self._records.get(snapshot.id)
            return self._store(replace(
                pending or VerificationRecord(snapshot_id=snapshot.id, content_hash=snapshot.content_hash),
                verified=False,
                error_reason=f"{type(exc).__name__}: {exc}",
                status=STATUS_FAILED,
            ))

    def verify(self, content_hash: str) -> VerificationResult:
        """
        Look a content hash up on the ledger.

        Raises:
            LedgerError: If the ledger cannot be reached
        """
        receipt = self.ledger.lookup(content_hash)
        if receipt is None:
            return VerificationResult(content_hash=content_hash, valid=False)
        return VerificationResult(
            content_hash=content_hash,
            valid=True,
            ledger_transaction_id=receipt.transaction_id,
            ledger_timestamp=receipt.timestamp,
        )

    def record_for(self, snapshot_id: str) -> Optional[VerificationRecord]:
        with self._lock:
            return self._records.get(snapshot_id)

    def shutdown(self, wait: bool = True):
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
