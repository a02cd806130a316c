"""
Snapshot module for the Financial Twin engine.

This module contains canonical hashing and the append-only snapshot store.
"""

from .hashing import canonical_json, canonical_payload, content_hash
from .store import SnapshotStore, TwinSnapshot, build_snapshot

__all__ = [
    "canonical_json",
    "canonical_payload",
    "content_hash",
    "SnapshotStore",
    "TwinSnapshot",
    "build_snapshot",
]
