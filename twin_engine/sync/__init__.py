"""
Sync module for the Financial Twin engine.

This module contains the bank aggregator clients, the per-twin transaction
repository and the sync coordinator.
"""

from .aggregator import HttpAggregatorClient, InMemoryAggregator, TransactionDelta, to_minor_units
from .coordinator import ChangeEvent, SyncCoordinator, SyncRun, SyncStatus, parse_webhook
from .repository import TransactionRepository, TwinData

__all__ = [
    "HttpAggregatorClient",
    "InMemoryAggregator",
    "TransactionDelta",
    "to_minor_units",
    "ChangeEvent",
    "SyncCoordinator",
    "SyncRun",
    "SyncStatus",
    "parse_webhook",
    "TransactionRepository",
    "TwinData",
]
