"""
Append-only snapshot store.

Snapshots are never updated in place. A snapshot is fully built (including
its content hash) before it is appended under the store lock, so readers see
either the previous current snapshot or the new one and nothing in between.
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config.scoring_config import CURRENT_WEIGHTS_VERSION
from ..scoring.scoring_engine import (
    LendingReadiness,
    PillarScores,
    ScoreResult,
    compute_overall_score,
)
from .hashing import canonical_payload, content_hash

logger = logging.getLogger(__name__)

SNAPSHOT_LOG_FILE = "snapshots.jsonl"


@dataclass(frozen=True)
class TwinSnapshot:
    """Immutable, hashed score snapshot for one twin."""
    id: str
    twin_id: str
    created_at: datetime
    pillar_scores: PillarScores
    lending_readiness: LendingReadiness
    transaction_count: int
    analysis_window_months: int
    content_hash: str
    weights_version: str = CURRENT_WEIGHTS_VERSION
    low_confidence: bool = False
    months_analysed: int = 0

    @property
    def overall_score(self) -> float:
        # Always derived from the pillars so the two can never disagree
        return compute_overall_score(self.pillar_scores, self.weights_version)

    def hash_payload(self) -> Dict[str, Any]:
        return canonical_payload(
            pillar_scores=self.pillar_scores.to_dict(),
            overall_score=self.overall_score,
            lending_readiness=self.lending_readiness.to_dict(),
            transaction_count=self.transaction_count,
            analysis_window_months=self.analysis_window_months,
        )

    def compute_hash(self) -> str:
        return content_hash(self.hash_payload())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "twin_id": self.twin_id,
            "created_at": self.created_at.isoformat(),
            "pillar_scores": self.pillar_scores.to_dict(),
            "overall_score": self.overall_score,
            "lending_readiness": self.lending_readiness.to_dict(),
            "transaction_count": self.transaction_count,
            "analysis_window_months": self.analysis_window_months,
            "content_hash": self.content_hash,
            "weights_version": self.weights_version,
            "low_confidence": self.low_confidence,
            "months_analysed": self.months_analysed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TwinSnapshot":
        return cls(
            id=data["id"],
            twin_id=data["twin_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            pillar_scores=PillarScores.from_dict(data["pillar_scores"]),
            lending_readiness=LendingReadiness.from_dict(data["lending_readiness"]),
            transaction_count=int(data["transaction_count"]),
            analysis_window_months=int(data["analysis_window_months"]),
            content_hash=data["content_hash"],
            weights_version=data.get("weights_version", CURRENT_WEIGHTS_VERSION),
            low_confidence=bool(data.get("low_confidence", False)),
            months_analysed=int(data.get("months_analysed", 0)),
        )


def build_snapshot(twin_id: str, result: ScoreResult, created_at: Optional[datetime] = None) -> TwinSnapshot:
    """Build a snapshot from a score result, computing its content hash."""
    payload = canonical_payload(
        pillar_scores=result.pillar_scores.to_dict(),
        overall_score=compute_overall_score(result.pillar_scores, result.weights_version),
        lending_readiness=result.lending_readiness.to_dict(),
        transaction_count=result.transaction_count,
        analysis_window_months=result.analysis_window_months,
    )
    return TwinSnapshot(
        id=str(uuid.uuid4()),
        twin_id=twin_id,
        created_at=created_at or datetime.now(timezone.utc),
        pillar_scores=result.pillar_scores,
        lending_readiness=result.lending_readiness,
        transaction_count=result.transaction_count,
        analysis_window_months=result.analysis_window_months,
        content_hash=content_hash(payload),
        weights_version=result.weights_version,
        low_confidence=result.low_confidence,
        months_analysed=result.months_analysed,
    )


class SnapshotStore:
    """
    Append-only log of twin snapshots with a per-twin "current" pointer.

    Features:
    - current snapshot is always the most recently committed one
    - history newest first
    - lookup by snapshot id or content hash
    - optional JSON-lines persistence, re-verified on load
    """

    def __init__(self, persist_dir: Optional[str] = None):
        """
        Initialize the store.

        Args:
            persist_dir: Directory for the snapshot log; in-memory only if None
        """
        self.persist_dir = persist_dir
        self._lock = threading.Lock()
        self._by_twin: Dict[str, List[TwinSnapshot]] = {}
        self._by_id: Dict[str, TwinSnapshot] = {}
        self._by_hash: Dict[str, List[TwinSnapshot]] = {}
        self.rejected: List[str] = []
        self._torn_tail = False
        if self.persist_dir:
            self._ensure_dir()
            self._load()

    def _ensure_dir(self):
        """Create the persistence directory if it doesn't exist."""
        if not os.path.exists(self.persist_dir):
            os.makedirs(self.persist_dir)

    def _log_file(self) -> str:
        return os.path.join(self.persist_dir, SNAPSHOT_LOG_FILE)

    def _load(self):
        """Reload persisted snapshots, skipping unreadable lines and any whose hash no longer matches."""
        log_file = self._log_file()
        if not os.path.exists(log_file):
            return
        loaded = 0
        with open(log_file, 'r', encoding='utf-8') as f:
            for line_no, raw in enumerate(f, start=1):
                # A crash mid-append leaves a final line without its newline
                self._torn_tail = not raw.endswith('\n')
                line = raw.strip()
                if not line:
                    continue
                try:
                    snapshot = TwinSnapshot.from_dict(json.loads(line))
                except (ValueError, KeyError, TypeError) as e:
                    logger.error("Unreadable snapshot record at line %d of %s: %s", line_no, log_file, e)
                    self.rejected.append(f"line {line_no}")
                    continue
                if snapshot.compute_hash() != snapshot.content_hash:
                    logger.error(
                        "Snapshot %s (line %d) failed hash verification; not loaded",
                        snapshot.id, line_no,
                    )
                    self.rejected.append(snapshot.id)
                    continue
                self._index(snapshot)
                loaded += 1
        logger.info("Loaded %d snapshot(s) from %s", loaded, log_file)

    def _index(self, snapshot: TwinSnapshot):
        self._by_twin.setdefault(snapshot.twin_id, []).append(snapshot)
        self._by_id[snapshot.id] = snapshot
        self._by_hash.setdefault(snapshot.content_hash, []).append(snapshot)

    def commit(self, twin_id: str, result: ScoreResult) -> TwinSnapshot:
        """
        Append a new snapshot for a twin and make it current.

        Args:
            twin_id: Twin identifier
            result: Score result to freeze

        Returns:
            The committed snapshot
        """
        snapshot = build_snapshot(twin_id, result)
        with self._lock:
            if self.persist_dir:
                # Persist first: a failed write leaves nothing visible
                with open(self._log_file(), 'a', encoding='utf-8') as f:
                    if self._torn_tail:
                        f.write('\n')
                    f.write(json.dumps(snapshot.to_dict(), sort_keys=True) + '\n')
                self._torn_tail = False
            self._index(snapshot)
        logger.info(
            "Committed snapshot %s for twin %s (overall %.2f, hash %s)",
            snapshot.id, twin_id, snapshot.overall_score, snapshot.content_hash,
        )
        return snapshot

    def current(self, twin_id: str) -> Optional[TwinSnapshot]:
        with self._lock:
            snapshots = self._by_twin.get(twin_id)
            return snapshots[-1] if snapshots else None

    def history(self, twin_id: str, limit: Optional[int] = None) -> List[TwinSnapshot]:
        """Snapshots for a twin, newest first."""
        with self._lock:
            snapshots = list(reversed(self._by_twin.get(twin_id, [])))
        if limit is not None:
            snapshots = snapshots[:max(limit, 0)]
        return snapshots

    def get(self, snapshot_id: str) -> Optional[TwinSnapshot]:
        with self._lock:
            return self._by_id.get(snapshot_id)

    def find_by_hash(self, content_hash: str) -> List[TwinSnapshot]:
        with self._lock:
            return list(self._by_hash.get(content_hash, []))

    def twin_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._by_twin)
