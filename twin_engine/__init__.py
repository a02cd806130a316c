"""
Financial Twin Engine - tamper-evident financial profiles from bank feeds.

Turns a linked bank transaction feed into a scored, hashed and
ledger-anchored "Financial Twin" profile, with read-only analytics on top.

Main Components:
    - patterns: Ordered merchant-text category rules and hint map
    - config: Versioned scoring weights, thresholds and runtime settings
    - income: Income deposit, payroll and recurring detection
    - categorisation: Category resolver
    - scoring: Monthly features, pillar scores and lending readiness
    - snapshots: Canonical hashing and the append-only snapshot store
    - verification: Ledger clients and the verification anchor
    - sync: Aggregator clients, transaction repository and sync coordinator
    - analytics: Stress tests, anomalies, benchmarks and pillar explanations
"""

from typing import Dict, Iterable, List, Optional

from .models import Account, CategoryRule, Transaction

# Categorisation
from .categorisation.engine import CategoryMatch, CategoryResolver

# Income detection
from .income.income_detector import IncomeDetector

# Scoring
from .scoring.scoring_engine import (
    LendingReadiness,
    PillarScores,
    ScoreResult,
    ScoringEngine,
    compute_lending_readiness,
    compute_overall_score,
)

# Snapshots and verification
from .snapshots.store import SnapshotStore, TwinSnapshot, build_snapshot
from .verification.anchor import VerificationAnchor, VerificationRecord, VerificationResult

# Sync
from .sync.coordinator import ChangeEvent, SyncCoordinator, SyncRun, SyncStatus

# Service
from .service import TwinService, build_service

# Configuration
from .config.scoring_config import SCORING_CONFIG, CURRENT_WEIGHTS_VERSION

from .exceptions import (
    TwinEngineError,
    InvalidInputError,
    UpstreamError,
    AggregatorError,
    LedgerError,
    LedgerTimeoutError,
    ConsistencyError,
    TwinNotFoundError,
)


__version__ = "1.0.0"
__all__ = [
    # Models
    "Account",
    "CategoryRule",
    "Transaction",
    # Categorisation
    "CategoryMatch",
    "CategoryResolver",
    # Income detection
    "IncomeDetector",
    # Scoring
    "LendingReadiness",
    "PillarScores",
    "ScoreResult",
    "ScoringEngine",
    "compute_lending_readiness",
    "compute_overall_score",
    # Snapshots and verification
    "SnapshotStore",
    "TwinSnapshot",
    "build_snapshot",
    "VerificationAnchor",
    "VerificationRecord",
    "VerificationResult",
    # Sync
    "ChangeEvent",
    "SyncCoordinator",
    "SyncRun",
    "SyncStatus",
    # Service
    "TwinService",
    "build_service",
    # Configuration
    "SCORING_CONFIG",
    "CURRENT_WEIGHTS_VERSION",
    # Errors
    "TwinEngineError",
    "InvalidInputError",
    "UpstreamError",
    "AggregatorError",
    "LedgerError",
    "LedgerTimeoutError",
    "ConsistencyError",
    "TwinNotFoundError",
    # Main function
    "run_twin_scoring",
]


def run_twin_scoring(
    transactions: List[Dict],
    account_balances: Optional[Iterable[Account]] = None,
    analysis_window_months: Optional[int] = None,
    twin_id: str = "",
) -> Dict:
    """
    Categorise and score a raw transaction list in one call.

    Nothing is stored or anchored; the returned snapshot carries the content
    hash a committed snapshot of the same data would have.

    Args:
        transactions: Transaction dictionaries with keys:
            - id: Transaction id
            - date: ISO date string
            - amount: Integer minor units (positive=outflow, negative=inflow)
            - merchant_text: (Optional) Merchant / description text
            - raw_category_hint: (Optional) Upstream category label
            - hint_confidence: (Optional) Upstream confidence in [0, 1]
        account_balances: Current account balances
        analysis_window_months: Months of history to analyse
        twin_id: Twin identifier recorded on the snapshot

    Returns:
        Dictionary containing:
            - snapshot: Snapshot fields including content_hash
            - breakdown: Per-pillar score components
            - categorized_transactions: Transactions with resolved categories

    Raises:
        InvalidInputError: Malformed transactions or analysis window

    Example:
        >>> result = run_twin_scoring([
        ...     {"id": "t1", "date": "2025-01-15", "amount": -250000, "merchant_text": "ACME PAYROLL"},
        ...     {"id": "t2", "date": "2025-01-16", "amount": 4500, "merchant_text": "STARBUCKS #4821"},
        ... ])
        >>> result["categorized_transactions"][1]["resolved_category"]
        'dining'
    """
    if transactions is None:
        raise InvalidInputError("Transaction set is required")

    # Step 1: Categorise
    resolver = CategoryResolver()
    categorized = resolver.categorize_all([Transaction.from_dict(t, twin_id=twin_id) for t in transactions])

    # Step 2: Score
    result = ScoringEngine().score(categorized, account_balances, analysis_window_months)

    # Step 3: Freeze into an (unstored) snapshot
    snapshot = build_snapshot(twin_id, result)

    return {
        "snapshot": snapshot.to_dict(),
        "breakdown": result.breakdown,
        "categorized_transactions": [t.to_dict() for t in categorized],
    }
