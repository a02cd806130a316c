"""
Canonical serialisation and content hashing for twin snapshots.

The hash must be identical across processes and interpreter versions, so
every score is rendered as a fixed two-decimal string and keys are sorted.
"""

import hashlib
import json
from typing import Any, Dict, Mapping


def _score(value: float) -> str:
    return "%.2f" % round(float(value), 2)


def canonical_payload(
    pillar_scores: Mapping[str, float],
    overall_score: float,
    lending_readiness: Mapping[str, float],
    transaction_count: int,
    analysis_window_months: int,
) -> Dict[str, Any]:
    """Build the hashed view of a snapshot."""
    return {
        "pillar_scores": {name: _score(value) for name, value in pillar_scores.items()},
        "overall_score": _score(overall_score),
        "lending_readiness": {name: _score(value) for name, value in lending_readiness.items()},
        "transaction_count": int(transaction_count),
        "analysis_window_months": int(analysis_window_months),
    }


def canonical_json(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def content_hash(payload: Mapping[str, Any]) -> str:
    """SHA-256 hex digest of the canonical JSON of a payload."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
